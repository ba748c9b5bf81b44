"""Request schemas for auction creation and editing."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from coinbid.core.auction.models import AuctionCategory


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CreateAuctionRequest(BaseModel):
    """Schema for a new (draft) auction."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    deliverables: Optional[str] = Field(None, max_length=2000)
    category: AuctionCategory = AuctionCategory.OTHER
    starting_price: int = Field(..., ge=0)
    reserve_price: Optional[int] = Field(None, ge=0)
    buy_now_price: Optional[int] = Field(None, ge=0)
    ends_at: datetime
    allow_auto_bid: bool = True
    anti_snipe_minutes: Optional[int] = Field(None, ge=0)

    @field_validator("ends_at")
    @classmethod
    def ensure_utc(cls, value):
        return _as_utc(value)

    @model_validator(mode="after")
    def check_prices(self):
        if self.buy_now_price is not None and self.buy_now_price <= self.starting_price:
            raise ValueError("Buy now price must be greater than starting price")
        if self.reserve_price is not None and self.reserve_price <= self.starting_price:
            raise ValueError("Reserve price must be greater than starting price")
        return self


class UpdateAuctionRequest(BaseModel):
    """
    Schema for editing a draft auction.

    Only fields that are set are applied. Price relations are checked
    again by the engine against the merged auction.
    """

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    deliverables: Optional[str] = Field(None, max_length=2000)
    category: Optional[AuctionCategory] = None
    starting_price: Optional[int] = Field(None, ge=0)
    reserve_price: Optional[int] = Field(None, ge=0)
    buy_now_price: Optional[int] = Field(None, ge=0)
    ends_at: Optional[datetime] = None
    allow_auto_bid: Optional[bool] = None
    anti_snipe_minutes: Optional[int] = Field(None, ge=0)

    @field_validator("ends_at")
    @classmethod
    def ensure_utc(cls, value):
        return _as_utc(value)
