"""
coinbid

A coin-backed auction engine:
- English auctions with proxy (auto-)bidding
- Anti-sniping end-time extension
- Buy-now and expiry settlement against escrowed coin balances
- Transactional notification outbox
"""
