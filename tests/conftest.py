import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from playwright.async_api import Error as PlaywrightError

from bidclock.browser import BrowserSession, SessionRegistry
from bidclock.db import RecordStore
from bidclock.scheduler import BidScheduler
from bidclock.settings import Settings


class FakePage:
    """Records every driver call; raises on any selector or URL in ``fail_on``."""

    def __init__(self, fail_on=(), delay=0.0):
        self.calls = []
        self.visits = []
        self.fail_on = set(fail_on)
        self.delay = delay

    async def _step(self, *call):
        if self.delay:
            await asyncio.sleep(self.delay)
        self._record(*call)

    def _record(self, *call):
        self.calls.append(call)
        if call[1] in self.fail_on:
            raise PlaywrightError(f"Timeout exceeded while waiting for {call[1]}")

    async def goto(self, url, **kwargs):
        self.visits.append((url, time.monotonic()))
        await self._step("goto", url)

    async def wait_for_selector(self, selector, **kwargs):
        await self._step("wait", selector)

    async def click(self, selector, **kwargs):
        await self._step("click", selector)

    async def type(self, selector, text, **kwargs):
        await self._step("type", selector, text)

    async def fill(self, selector, value, **kwargs):
        await self._step("fill", selector, value)

    async def wait_for_timeout(self, timeout):
        self._record("sleep", timeout)

    @asynccontextmanager
    async def expect_navigation(self, **kwargs):
        yield
        self._record("navigated", "")

    def bid_visits(self):
        return [url for url, _ in self.visits if "/auctions/" in url]


class FakeLauncher:
    def __init__(self, fail_on=(), broken_users=(), delay=0.0):
        self.sessions = []
        self.fail_on = fail_on
        self.delay = delay
        self.broken_users = set(broken_users)

    async def __call__(self, username):
        if username in self.broken_users:
            raise PlaywrightError("Browser closed unexpectedly")
        session = BrowserSession(username=username, page=FakePage(self.fail_on, self.delay))
        self.sessions.append(session)
        return session

    def launched_for(self):
        return [s.username for s in self.sessions]


def utc_in(seconds: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


@pytest.fixture
def settings(tmp_path):
    return Settings.model_validate(
        {
            "timeouts": {"settle_ms": 0},
            "storage": {"db_path": str(tmp_path / "bidclock.sqlite")},
            "logging": {"file": ""},
        }
    )


@pytest.fixture
def store(settings):
    return RecordStore(settings.db_url)


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def registry(launcher):
    return SessionRegistry(launcher)


@pytest_asyncio.fixture
async def bidder(store, settings, registry):
    b = BidScheduler(store, settings, registry=registry)
    yield b
    await b.shutdown()


@pytest.fixture
def seed(store):
    """Add accounts by username and auctions as (ref, deadline, amount, username)."""

    def _seed(accounts=(), auctions=()):
        for username in accounts:
            store.add_account(username, f"{username}-secret")
        for ref, deadline, amount, username in auctions:
            store.add_auction(
                ref,
                deadline=deadline,
                bid_amount=Decimal(amount),
                account_username=username,
            )

    return _seed
