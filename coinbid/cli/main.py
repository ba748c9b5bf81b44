"""
coinbid CLI - Operator command line for the auction engine.

Main entry point for all CLI commands.
"""

import json
from datetime import timedelta
from pathlib import Path

import click

from coinbid.core.auction.models import AuctionCategory, utcnow
from coinbid.core.config import load_config
from coinbid.utils.logger import get_logger, setup_from_config

logger = get_logger("cli")


def _engine(ctx):
    """Engine bound to the CLI's data directory, created on first use."""
    from coinbid.core.auction.engine import AuctionEngine
    from coinbid.core.storage import StorageManager

    if "engine" not in ctx.obj:
        cfg = ctx.obj["config"]
        storage = StorageManager(cfg.data_dir, cfg.db_name)
        ctx.obj["engine"] = AuctionEngine(storage, cfg)
        logger.debug(f"Engine opened on {cfg.db_path}")
        ctx.call_on_close(storage.close)
    return ctx.obj["engine"]


def _fail(ctx, failure):
    click.echo(f"✗ {failure.message}", err=True)
    if failure.details:
        click.echo(f"  {json.dumps(failure.details, default=str)}", err=True)
    ctx.exit(1)


def _dump(data):
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--data-dir", default=None, help="Data directory (default: COINBID_DATA_DIR or ./data)")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, data_dir):
    """coinbid - Coin-backed auction engine"""
    overrides = {"data_dir": Path(data_dir).expanduser()} if data_dir else {}
    cfg = load_config(**overrides)
    setup_from_config(cfg, debug=debug)

    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


# =============================================================================
# Actor Commands
# =============================================================================


@cli.group()
def actor():
    """Coin balance commands"""
    pass


@actor.command("deposit")
@click.argument("actor_id")
@click.argument("amount", type=int)
@click.pass_context
def actor_deposit(ctx, actor_id, amount):
    """Add coins to an actor's balance"""
    engine = _engine(ctx)
    ok, err = engine.deposit(actor_id, amount)
    if not ok:
        click.echo(f"✗ {err}", err=True)
        ctx.exit(1)
    click.echo(f"✓ Deposited {amount} coins to {actor_id}")
    click.echo(f"  Balance: {engine.get_balance(actor_id)}")


@actor.command("balance")
@click.argument("actor_id")
@click.pass_context
def actor_balance(ctx, actor_id):
    """Show an actor's coin balance"""
    click.echo(f"{actor_id}: {_engine(ctx).get_balance(actor_id)} coins")


# =============================================================================
# Auction Commands
# =============================================================================


@cli.group()
def auction():
    """Auction lifecycle commands"""
    pass


@auction.command("create")
@click.option("--seller", required=True, help="Seller actor id")
@click.option("--title", required=True, help="Auction title")
@click.option("--starting-price", required=True, type=int, help="Starting price in coins")
@click.option("--ends-in", default=60, type=int, help="Minutes until the auction ends")
@click.option("--buy-now", "buy_now_price", default=None, type=int, help="Buy-now price")
@click.option("--reserve", "reserve_price", default=None, type=int, help="Reserve price")
@click.option(
    "--category",
    default=AuctionCategory.OTHER.value,
    type=click.Choice([c.value for c in AuctionCategory]),
    help="Auction category",
)
@click.option("--description", default=None, help="Description")
@click.option("--no-auto-bid", is_flag=True, help="Disallow auto-bids")
@click.option("--anti-snipe", default=None, type=int, help="Anti-sniping window in minutes")
@click.option("--publish", is_flag=True, help="Publish immediately")
@click.pass_context
def auction_create(
    ctx, seller, title, starting_price, ends_in, buy_now_price, reserve_price,
    category, description, no_auto_bid, anti_snipe, publish,
):
    """Create a draft auction"""
    engine = _engine(ctx)
    created, failure = engine.create_auction(seller, {
        "title": title,
        "description": description,
        "category": category,
        "starting_price": starting_price,
        "buy_now_price": buy_now_price,
        "reserve_price": reserve_price,
        "ends_at": utcnow() + timedelta(minutes=ends_in),
        "allow_auto_bid": not no_auto_bid,
        "anti_snipe_minutes": anti_snipe,
    })
    if failure:
        _fail(ctx, failure)

    click.echo(f"✓ Auction created: {created.auction_id}")
    if publish:
        created, failure = engine.publish_auction(created.auction_id, seller)
        if failure:
            _fail(ctx, failure)
        click.echo(f"✓ Published, ends {created.ends_at.isoformat()}")


@auction.command("publish")
@click.argument("auction_id")
@click.option("--seller", required=True, help="Seller actor id")
@click.pass_context
def auction_publish(ctx, auction_id, seller):
    """Open a draft auction for bidding"""
    published, failure = _engine(ctx).publish_auction(auction_id, seller)
    if failure:
        _fail(ctx, failure)
    click.echo(f"✓ Auction {auction_id} is active until {published.ends_at.isoformat()}")


@auction.command("cancel")
@click.argument("auction_id")
@click.option("--actor", "actor_id", required=True, help="Seller (or admin) actor id")
@click.option("--admin", is_flag=True, help="Cancel as administrator")
@click.pass_context
def auction_cancel(ctx, auction_id, actor_id, admin):
    """Cancel an auction and refund its bidders"""
    _, failure = _engine(ctx).cancel_auction(auction_id, actor_id, admin=admin)
    if failure:
        _fail(ctx, failure)
    click.echo(f"✓ Auction {auction_id} cancelled")


@auction.command("show")
@click.argument("auction_id")
@click.pass_context
def auction_show(ctx, auction_id):
    """Show an auction as JSON"""
    found, failure = _engine(ctx).get_auction(auction_id)
    if failure:
        _fail(ctx, failure)
    _dump(found.to_dict())


@auction.command("list")
@click.option("--status", default="active", type=click.Choice(["all", "active", "ending_soon", "new"]))
@click.option(
    "--sort",
    default="ending_soon",
    type=click.Choice(["ending_soon", "newest", "most_bids", "price_low", "price_high"]),
)
@click.option("--seller", default=None, help="Only this seller's auctions")
@click.option("--buy-now", "has_buy_now", is_flag=True, help="Only auctions with buy-now")
@click.option("--page", default=1, type=int)
@click.option("--page-size", default=20, type=int)
@click.pass_context
def auction_list(ctx, status, sort, seller, has_buy_now, page, page_size):
    """List auctions as JSON"""
    result, failure = _engine(ctx).list_auctions(
        status=status,
        seller_id=seller,
        has_buy_now=has_buy_now,
        sort=sort,
        page=page,
        page_size=page_size,
    )
    if failure:
        _fail(ctx, failure)
    _dump(result.to_dict())


@auction.command("bids")
@click.argument("auction_id")
@click.option("--limit", default=None, type=int, help="Max bids to show")
@click.pass_context
def auction_bids(ctx, auction_id, limit):
    """Show an auction's bid history as JSON"""
    bids, failure = _engine(ctx).get_bids(auction_id, limit)
    if failure:
        _fail(ctx, failure)
    _dump([b.to_dict() for b in bids])


# =============================================================================
# Bid Commands
# =============================================================================


@cli.group()
def bid():
    """Bidding commands"""
    pass


@bid.command("place")
@click.argument("auction_id")
@click.option("--bidder", required=True, help="Bidder actor id")
@click.option("--amount", required=True, type=int, help="Bid amount in coins")
@click.option("--max-auto", "max_auto_bid", default=None, type=int, help="Auto-bid ceiling")
@click.pass_context
def bid_place(ctx, auction_id, bidder, amount, max_auto_bid):
    """Place a bid"""
    outcome, failure = _engine(ctx).place_bid(auction_id, bidder, amount, max_auto_bid)
    if failure:
        _fail(ctx, failure)

    status = "leading" if outcome.is_winning else "outbid"
    click.echo(f"✓ Bid {outcome.bid_id} accepted ({status})")
    click.echo(f"  Current bid: {outcome.current_bid}")
    click.echo(f"  Balance: {outcome.new_balance}")
    if outcome.auction_extended:
        click.echo(f"  Auction extended to {outcome.new_end_time.isoformat()}")


@bid.command("buy-now")
@click.argument("auction_id")
@click.option("--buyer", required=True, help="Buyer actor id")
@click.pass_context
def bid_buy_now(ctx, auction_id, buyer):
    """Buy an auction at its buy-now price"""
    outcome, failure = _engine(ctx).buy_now(auction_id, buyer)
    if failure:
        _fail(ctx, failure)
    click.echo(f"✓ Bought for {outcome.amount} coins")
    click.echo(f"  Balance: {outcome.new_balance}")


# =============================================================================
# Maintenance Commands
# =============================================================================


@cli.command("sweep")
@click.option("--limit", default=None, type=int, help="Max auctions to settle")
@click.pass_context
def sweep(ctx, limit):
    """Settle every expired auction"""
    report = _engine(ctx).sweep_expired(limit)
    click.echo(f"✓ Sweep: {len(report.sold)} sold, {len(report.ended)} ended, {len(report.failed)} failed")
    for auction_id, error in report.failed.items():
        click.echo(f"  ✗ {auction_id}: {error}", err=True)


@cli.group()
def outbox():
    """Notification outbox commands"""
    pass


@outbox.command("dispatch")
@click.option("--limit", default=100, type=int, help="Max notifications to send")
@click.pass_context
def outbox_dispatch(ctx, limit):
    """Deliver pending notifications"""
    sent, failed = _engine(ctx).dispatch_notifications(limit)
    click.echo(f"✓ Dispatched {sent} notifications ({failed} failed)")


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
def demo():
    """Run a proxy-bidding and buy-now walkthrough in a scratch database"""
    import tempfile

    from coinbid.core.auction.engine import AuctionEngine
    from coinbid.core.storage import StorageManager

    click.echo("=" * 60)
    click.echo("  COINBID - DEMO")
    click.echo("=" * 60)
    click.echo()

    with tempfile.TemporaryDirectory() as tmp:
        storage = StorageManager(Path(tmp))
        engine = AuctionEngine(storage)

        # Setup
        click.echo("📦 Funding actors...")
        for actor_id, coins in (("alice", 500), ("bob", 1000), ("carol", 1000), ("dave", 1000)):
            engine.deposit(actor_id, coins)
            click.echo(f"  ✓ {actor_id}: {coins} coins")
        click.echo()

        created, _ = engine.create_auction("model", {
            "title": "Signed polaroid",
            "starting_price": 100,
            "buy_now_price": 300,
            "ends_at": utcnow() + timedelta(hours=1),
        })
        engine.publish_auction(created.auction_id, "model")
        auction_id = created.auction_id
        click.echo(f"🏷️  Auction {auction_id[:8]}... starts at 100, buy now 300")
        click.echo()

        # Bids
        steps = [("alice", 100, None), ("bob", 120, 200), ("carol", 150, None)]
        for bidder_id, amount, ceiling in steps:
            outcome, failure = engine.place_bid(auction_id, bidder_id, amount, ceiling)
            if failure:
                click.echo(f"  ✗ {bidder_id}: {failure.message}")
                continue
            label = f"{amount}" + (f" (auto up to {ceiling})" if ceiling else "")
            click.echo(f"💰 {bidder_id} bids {label}")
            click.echo(f"  ✓ Current bid: {outcome.current_bid}, {bidder_id} {'leads' if outcome.is_winning else 'is outbid'}")
        click.echo()

        # Buy now
        click.echo("⚡ dave buys now...")
        outcome, failure = engine.buy_now(auction_id, "dave")
        if failure:
            click.echo(f"  ✗ {failure.message}")
        else:
            click.echo(f"  ✓ Sold to dave for {outcome.amount}")
        click.echo()

        click.echo("📊 Final balances:")
        for actor_id in ("alice", "bob", "carol", "dave", "model"):
            click.echo(f"  {actor_id}: {engine.get_balance(actor_id)}")
        audit = engine.balances.audit_auction(auction_id)
        click.echo(f"  In escrow: {audit.in_escrow}")
        storage.close()

    click.echo()
    click.echo("✅ Demo complete!")


if __name__ == "__main__":
    cli()
