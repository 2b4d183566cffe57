# bidclock/db.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Optional

from sqlmodel import SQLModel, Field, create_engine, Session, select
from sqlalchemy.exc import SQLAlchemyError

from bidclock.schemas import AccountRecord, AuctionRecord, RecordsFile

log = logging.getLogger("bidclock.db")


class Account(SQLModel, table=True):
    __tablename__ = "account"
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True)
    password: str


class Auction(SQLModel, table=True):
    __tablename__ = "auction"
    id: Optional[int] = Field(default=None, primary_key=True)
    external_ref: str = Field(index=True, description="Venue listing reference")
    deadline: Optional[datetime] = Field(default=None, description="Bid time (UTC)")
    bid_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    address: str = ""
    account_username: str = Field(default="", index=True)
    bid_placed_at: Optional[datetime] = Field(
        default=None, description="When the bid sequence completed (UTC)"
    )


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; they were written as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _replace_all(s: Session, model: type[SQLModel], rows: list[SQLModel]) -> None:
    keep = {r.id for r in rows if r.id is not None}
    for existing in s.exec(select(model)).all():
        if existing.id not in keep:
            s.delete(existing)
    for row in rows:
        s.merge(row)


class RecordStore:
    """Accounts and auctions in SQLite, read and replaced as whole collections."""

    def __init__(self, url: str):
        self.engine = create_engine(
            url, echo=False, connect_args={"check_same_thread": False}
        )
        SQLModel.metadata.create_all(self.engine)

    # ---- whole-collection access -------------------------------------------

    def load_records(self) -> tuple[list[Account], list[Auction]]:
        with Session(self.engine) as s:
            accounts = s.exec(select(Account).order_by(Account.id)).all()
            auctions = s.exec(select(Auction).order_by(Auction.id)).all()
        for auction in auctions:
            auction.deadline = as_utc(auction.deadline)
            auction.bid_placed_at = as_utc(auction.bid_placed_at)
        return list(accounts), list(auctions)

    def save_records(
        self, accounts: Iterable[Account], auctions: Iterable[Auction]
    ) -> bool:
        auctions = [
            Auction(
                **a.model_dump(exclude={"deadline", "bid_placed_at"}),
                deadline=as_utc(a.deadline),
                bid_placed_at=as_utc(a.bid_placed_at),
            )
            for a in auctions
        ]
        with Session(self.engine) as s:
            try:
                _replace_all(s, Account, [Account(**a.model_dump()) for a in accounts])
                _replace_all(s, Auction, auctions)
                s.commit()
            except SQLAlchemyError:
                s.rollback()
                log.exception("Saving records failed")
                return False
        return True

    def mark_bid_placed(self, auction_id: int, when: datetime) -> Optional[Auction]:
        """Stamp one auction's outcome without touching any other row."""
        with Session(self.engine) as s:
            row = s.get(Auction, auction_id)
            if row is None:
                log.warning("Auction %s vanished before its outcome was saved", auction_id)
                return None
            row.bid_placed_at = when
            s.add(row)
            s.commit()
            s.refresh(row)
            return row

    # ---- single-record helpers for the CLI / API ---------------------------

    def add_account(self, username: str, password: str) -> Account:
        if not username:
            raise ValueError("username must not be empty")
        row = Account(username=username, password=password)
        with Session(self.engine) as s:
            existing = s.exec(select(Account).where(Account.username == username)).first()
            if existing:
                log.warning("Account %s already exists; adding a second entry", username)
            s.add(row)
            s.commit()
            s.refresh(row)
            return row

    def remove_account(self, account_id: int) -> bool:
        with Session(self.engine) as s:
            row = s.get(Account, account_id)
            if not row:
                return False
            s.delete(row)
            s.commit()
            return True

    def add_auction(
        self,
        external_ref: str,
        deadline: Optional[datetime] = None,
        bid_amount: Decimal = Decimal("0"),
        address: str = "",
        account_username: str = "",
    ) -> Auction:
        if bid_amount < 0:
            raise ValueError("bid amount must not be negative")
        with Session(self.engine) as s:
            existing = s.exec(
                select(Auction).where(Auction.external_ref == external_ref)
            ).first()
            if existing:
                raise ValueError(f"auction {external_ref} is already tracked")
            row = Auction(
                external_ref=external_ref,
                deadline=as_utc(deadline),
                bid_amount=bid_amount,
                address=address,
                account_username=account_username,
            )
            s.add(row)
            s.commit()
            s.refresh(row)
            return row

    def set_bid_amount(self, auction_id: int, bid_amount: Decimal) -> Optional[Auction]:
        if bid_amount < 0:
            raise ValueError("bid amount must not be negative")
        with Session(self.engine) as s:
            row = s.get(Auction, auction_id)
            if row is None:
                return None
            row.bid_amount = bid_amount
            s.add(row)
            s.commit()
            s.refresh(row)
            return row

    def remove_auction(self, auction_id: int) -> bool:
        with Session(self.engine) as s:
            row = s.get(Auction, auction_id)
            if not row:
                return False
            s.delete(row)
            s.commit()
            return True

    # ---- JSON import / export ----------------------------------------------

    def export_json(self, path: Path) -> int:
        accounts, auctions = self.load_records()
        payload = RecordsFile(
            accounts=[AccountRecord.model_validate(a, from_attributes=True) for a in accounts],
            auctions=[AuctionRecord.model_validate(a, from_attributes=True) for a in auctions],
        )
        path.write_text(payload.model_dump_json(indent=2), encoding="utf-8")
        return len(accounts) + len(auctions)

    def import_json(self, path: Path) -> bool:
        payload = RecordsFile.model_validate_json(path.read_text(encoding="utf-8"))
        return self.save_records(
            [Account(**a.model_dump()) for a in payload.accounts],
            [Auction(**a.model_dump()) for a in payload.auctions],
        )
