"""
Bid submission against the venue's auction page.

Sequence per auction:
  • open the auction page
  • triple-click the bid input (select all) and type the amount, two decimals
  • click "Place Bid", wait for the confirmation dialog to render
  • click the confirm button
  • optionally wait for a configured confirmation marker

Reaching the end without a Playwright error counts as a placed bid.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from playwright.async_api import Error as PlaywrightError
from sqlalchemy.exc import SQLAlchemyError

from bidclock.browser import BrowserSession
from bidclock.core import InteractionFailure, VenuePage
from bidclock.db import Auction, RecordStore
from bidclock.settings import Settings

log = logging.getLogger("bidclock.bidder")

_SEPARATORS_RE = re.compile(r"[/\\]")
_CENTS = Decimal("0.01")


def bid_input_id(external_ref: str, suffix: str = "-place-bid-input") -> str:
    """``"stg/1234"`` → ``"STG1234-place-bid-input"``"""
    return _SEPARATORS_RE.sub("", external_ref.strip().upper()) + suffix


def auction_url(external_ref: str, settings: Settings) -> str:
    venue = settings.venue
    return venue.base_url + venue.auction_path.format(ref=external_ref)


def format_amount(amount: Decimal) -> str:
    return str(Decimal(amount).quantize(_CENTS, rounding=ROUND_HALF_UP))


async def submit_bid(page: VenuePage, auction: Auction, settings: Settings) -> None:
    venue, timeouts = settings.venue, settings.timeouts
    input_sel = f'[id="{bid_input_id(auction.external_ref, venue.bid_input_suffix)}"]'
    amount = format_amount(auction.bid_amount)

    try:
        await page.goto(
            auction_url(auction.external_ref, settings),
            wait_until="networkidle",
            timeout=timeouts.navigation_ms,
        )

        log.info("Typing $%s into %s", amount, input_sel)
        await page.wait_for_selector(input_sel, timeout=timeouts.field_ms)
        await page.click(input_sel, click_count=3)
        await page.type(input_sel, amount)

        await page.wait_for_selector(venue.place_bid_selector, timeout=timeouts.button_ms)
        await page.click(venue.place_bid_selector)
        log.debug("Clicked first 'Place Bid', waiting %d ms", timeouts.settle_ms)
        await page.wait_for_timeout(timeouts.settle_ms)

        await page.wait_for_selector(venue.confirm_bid_selector, timeout=timeouts.button_ms)
        await page.click(venue.confirm_bid_selector)
        log.debug("Clicked confirm 'Place Bid'")

        if venue.confirmation_selector:
            await page.wait_for_selector(
                venue.confirmation_selector, timeout=timeouts.button_ms
            )
    except PlaywrightError as exc:
        raise InteractionFailure(
            f"bid on {auction.external_ref} aborted: {exc}"
        ) from exc


async def place_bid(
    session: BrowserSession, auction: Auction, store: RecordStore, settings: Settings
) -> bool:
    """Run the bid sequence once; stamp and persist the outcome on success.

    Any failure leaves ``auction.bid_placed_at`` untouched and is not retried.
    """
    log.info("Placing bid on %s for %s", auction.external_ref, session.username)
    try:
        await submit_bid(session.page, auction, settings)
    except InteractionFailure as exc:
        log.error("%s", exc, extra={"bid_event": "failed"})
        return False

    placed_at = datetime.now(timezone.utc)
    auction.bid_placed_at = placed_at
    try:
        store.mark_bid_placed(auction.id, placed_at)
    except SQLAlchemyError:
        log.exception("Bid on %s placed but its outcome was not saved", auction.external_ref)
    log.info(
        "Bid placed on %s at %s",
        auction.external_ref,
        placed_at.isoformat(),
        extra={"bid_event": "placed"},
    )
    return True
