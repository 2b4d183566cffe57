# bidclock/web/api.py
from __future__ import annotations
from collections import Counter
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fasthtml.common import EventStream

from bidclock.db import Account, Auction, RecordStore
from bidclock.scheduler import BidScheduler
from bidclock.schemas import (
    AccountOut,
    AccountRecord,
    AuctionRecord,
    PendingBidOut,
    StatusOut,
)
from .logging_stream import get_log_generator

api = APIRouter(prefix="/api")


def get_bidder(request: Request) -> BidScheduler:
    return request.app.state.bidder


def get_store(bidder: BidScheduler = Depends(get_bidder)) -> RecordStore:
    return bidder.store


def _to_auction_out(a: Auction) -> AuctionRecord:
    return AuctionRecord.model_validate(a, from_attributes=True)


@api.get("/accounts", response_model=List[AccountOut])
def accounts(store: RecordStore = Depends(get_store)):
    accts, _ = store.load_records()
    return [AccountOut(id=a.id, username=a.username) for a in accts]


@api.put("/accounts", response_model=StatusOut)
def replace_accounts(
    payload: List[AccountRecord], store: RecordStore = Depends(get_store)
):
    _, auctions = store.load_records()
    if not store.save_records([Account(**a.model_dump()) for a in payload], auctions):
        raise HTTPException(500, "Saving accounts failed")
    return StatusOut(message=f"Saved {len(payload)} account(s)")


@api.get("/auctions", response_model=List[AuctionRecord])
def auctions(store: RecordStore = Depends(get_store)):
    _, rows = store.load_records()
    return [_to_auction_out(a) for a in rows]


@api.put("/auctions", response_model=StatusOut)
def replace_auctions(
    payload: List[AuctionRecord], store: RecordStore = Depends(get_store)
):
    dupes = [ref for ref, n in Counter(a.external_ref for a in payload).items() if n > 1]
    if dupes:
        raise HTTPException(409, f"Duplicate auction reference(s): {', '.join(dupes)}")
    accts, _ = store.load_records()
    if not store.save_records(accts, [Auction(**a.model_dump()) for a in payload]):
        raise HTTPException(500, "Saving auctions failed")
    return StatusOut(message=f"Saved {len(payload)} auction(s)")


@api.post("/auctions", response_model=AuctionRecord, status_code=201)
def add_auction(payload: AuctionRecord, store: RecordStore = Depends(get_store)):
    try:
        row = store.add_auction(
            payload.external_ref,
            deadline=payload.deadline,
            bid_amount=payload.bid_amount,
            address=payload.address,
            account_username=payload.account_username,
        )
    except ValueError as exc:
        raise HTTPException(409, str(exc))
    return _to_auction_out(row)


@api.delete("/auctions/{auction_id}", status_code=204)
def delete_auction(auction_id: int, store: RecordStore = Depends(get_store)):
    if not store.remove_auction(auction_id):
        raise HTTPException(404, "No such auction")


@api.post("/bids/schedule", response_model=List[AuctionRecord])
async def schedule_bids(bidder: BidScheduler = Depends(get_bidder)):
    rows = await bidder.schedule_all()
    return [_to_auction_out(a) for a in rows]


@api.get("/bids/pending", response_model=List[PendingBidOut])
async def pending_bids(bidder: BidScheduler = Depends(get_bidder)):
    return [
        PendingBidOut(
            auction_id=b.auction_id,
            account_username=b.account_username,
            run_at=b.run_at,
        )
        for b in bidder.pending
    ]


@api.post("/bids/cancel", response_model=StatusOut)
async def cancel_bids(bidder: BidScheduler = Depends(get_bidder)):
    return StatusOut(message=bidder.cancel_all_pending())


@api.post("/sessions/close", response_model=StatusOut)
async def close_sessions(bidder: BidScheduler = Depends(get_bidder)):
    return StatusOut(message=await bidder.close_all_sessions())


@api.get("/logs/stream")
async def logs_stream(request: Request, event: Optional[List[str]] = Query(None)):
    """Server-sent bid activity; repeat ``?event=placed&event=failed`` to narrow it."""
    return EventStream(get_log_generator(request.app.state.broadcast, event))
