import asyncio, logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from playwright.async_api import Error as PlaywrightError

from bidclock.bidder import place_bid
from bidclock.browser import PlaywrightLauncher, SessionRegistry
from bidclock.db import Account, Auction, RecordStore, as_utc
from bidclock.login import ensure_authenticated
from bidclock.settings import Settings

log = logging.getLogger("bidclock.scheduler")


@dataclass
class ScheduledBid:
    job: Job
    auction_id: int
    account_username: str

    @property
    def run_at(self) -> datetime:
        return self.job.trigger.run_date


def is_eligible(auction: Auction) -> bool:
    try:
        return auction.bid_amount is not None and Decimal(auction.bid_amount) > 0
    except InvalidOperation:
        return False


def group_by_account(auctions: Iterable[Auction]) -> dict[str, list[Auction]]:
    """Bucket auctions by owning username; unassigned auctions are dropped."""
    grouped: dict[str, list[Auction]] = {}
    for auction in auctions:
        if not auction.account_username:
            continue
        grouped.setdefault(auction.account_username, []).append(auction)
    return grouped


class BidScheduler:
    """Logs every account in once and fires each auction's bid at its deadline."""

    def __init__(
        self,
        store: RecordStore,
        settings: Settings,
        registry: Optional[SessionRegistry] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.store = store
        self.settings = settings
        # an empty registry is falsy, so test against None
        if registry is None:
            registry = SessionRegistry(
                PlaywrightLauncher(
                    headless=settings.browser.headless,
                    default_timeout_ms=settings.timeouts.navigation_ms,
                )
            )
        self.registry = registry
        self._scheduler = scheduler if scheduler is not None else AsyncIOScheduler(timezone="UTC")
        self._pending: dict[int, ScheduledBid] = {}
        self._schedule_lock = asyncio.Lock()
        # bumped by every cancel; a pass started under an older value stops arming
        self._generation = 0

    @property
    def pending(self) -> list[ScheduledBid]:
        return sorted(self._pending.values(), key=lambda b: b.run_at)

    # ---- operations exposed to callers --------------------------------------

    async def schedule_all(self) -> list[Auction]:
        async with self._schedule_lock:
            cleared = self._cancel_pending()
            generation = self._generation
            if cleared:
                log.info("Cleared %d previously scheduled bid(s)", cleared)

            accounts, auctions = self.store.load_records()
            if not accounts or not auctions:
                log.info("No accounts or auctions, nothing to schedule")
                return auctions

            by_account = group_by_account(auctions)
            tasks, seen = [], set()
            for account in accounts:
                if account.username in seen:
                    log.warning("Duplicate account %s ignored", account.username)
                    continue
                seen.add(account.username)
                if by_account.get(account.username):
                    tasks.append(
                        self._handle_account(account, by_account[account.username], generation)
                    )

            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    log.error("Account task failed: %s", result, exc_info=result)
            log.info("%d bid(s) armed", len(self._pending))
            return auctions

    def cancel_all_pending(self) -> str:
        """Disarm every timer, including ones a running pass has yet to arm."""
        self._generation += 1
        count = self._cancel_pending()
        log.info("Canceled %d scheduled bid(s)", count, extra={"bid_event": "canceled"})
        return "All scheduled bids canceled. Browsers remain open."

    async def close_all_sessions(self) -> str:
        # armed timers survive this; they re-open a session when they fire
        await self.registry.close_all()
        return "All browser windows closed."

    async def shutdown(self) -> None:
        self._generation += 1
        self._cancel_pending()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        await self.registry.close_all()

    # ---- internals ----------------------------------------------------------

    async def _handle_account(
        self, account: Account, auctions: list[Auction], generation: int
    ) -> None:
        eligible = [a for a in auctions if is_eligible(a)]
        if not eligible:
            log.info("Skipping %s: no auction with a positive bid", account.username)
            return

        session = await self.registry.acquire(account.username)
        async with session.lock:
            await ensure_authenticated(session, account, self.settings)

        for auction in eligible:
            if generation != self._generation:
                log.info("Scheduling for %s canceled", account.username)
                return
            if auction.deadline is None:
                log.info("Auction %s has no bid time, skipping", auction.external_ref)
                continue
            run_at = as_utc(auction.deadline)
            delay = (run_at - datetime.now(timezone.utc)).total_seconds()
            if delay <= 0:
                try:
                    await self._attempt(account, auction)
                except PlaywrightError as exc:
                    log.error(
                        "Could not open a browser for %s: %s",
                        account.username,
                        exc,
                        extra={"bid_event": "failed"},
                    )
            else:
                self._arm(account, auction, run_at)
                log.info(
                    "Scheduled %s in %.1fs",
                    auction.external_ref,
                    delay,
                    extra={"bid_event": "armed"},
                )

    def _arm(self, account: Account, auction: Auction, run_at: datetime) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
        job = self._scheduler.add_job(
            self._fire,
            "date",
            run_date=run_at,
            args=[account, auction],
            id=f"bid-{auction.id}",
            replace_existing=True,
            misfire_grace_time=None,
        )
        self._pending[auction.id] = ScheduledBid(job, auction.id, account.username)

    async def _fire(self, account: Account, auction: Auction) -> None:
        self._pending.pop(auction.id, None)
        log.info("Bid time reached for %s", auction.external_ref)
        try:
            await self._attempt(account, auction)
        except PlaywrightError as exc:
            log.error(
                "Could not open a browser for %s: %s",
                account.username,
                exc,
                extra={"bid_event": "failed"},
            )

    async def _attempt(self, account: Account, auction: Auction) -> bool:
        session = await self.registry.acquire(account.username)
        async with session.lock:
            await ensure_authenticated(session, account, self.settings)
            return await place_bid(session, auction, self.store, self.settings)

    def _cancel_pending(self) -> int:
        pending = list(self._pending.values())
        self._pending.clear()
        for bid in pending:
            try:
                bid.job.remove()
            except JobLookupError:
                log.debug("Bid for auction %s already fired", bid.auction_id)
        return len(pending)
