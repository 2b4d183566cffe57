# bidclock/schemas.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class AccountRecord(BaseModel):
    id: Optional[int] = None
    username: str = Field(min_length=1)
    password: str


class AccountOut(BaseModel):
    id: int
    username: str


class AuctionRecord(BaseModel):
    id: Optional[int] = None
    external_ref: str = Field(min_length=1)
    deadline: Optional[datetime] = None
    bid_amount: Decimal = Field(default=Decimal("0"), ge=0)
    address: str = ""
    account_username: str = ""
    bid_placed_at: Optional[datetime] = None


class RecordsFile(BaseModel):
    """Whole record set, as written by ``bidclock export``."""

    accounts: List[AccountRecord] = Field(default_factory=list)
    auctions: List[AuctionRecord] = Field(default_factory=list)


class PendingBidOut(BaseModel):
    auction_id: int
    account_username: str
    run_at: datetime


class StatusOut(BaseModel):
    message: str
