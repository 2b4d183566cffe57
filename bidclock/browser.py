# bidclock/browser.py
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import async_playwright, Error as PlaywrightError

from bidclock.core import VenuePage

log = logging.getLogger("bidclock.browser")


@dataclass(eq=False)
class BrowserSession:
    """One browser per account: a context, a reusable page and the login flag."""

    username: str
    page: VenuePage
    browser: Any = None
    context: Any = None
    playwright: Any = None
    authenticated: bool = False
    closed: bool = False
    # held for one login or one bid attempt; a page is not safe for concurrent use
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def close(self) -> None:
        try:
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
        finally:
            if self.playwright:
                await self.playwright.stop()
            self.closed = True
            self.authenticated = False


Launcher = Callable[[str], Awaitable[BrowserSession]]


class PlaywrightLauncher:
    """Starts a Chromium instance with a fresh context and one page."""

    def __init__(self, headless: bool = False, default_timeout_ms: int = 60_000):
        self.headless = headless
        self.default_timeout_ms = default_timeout_ms

    async def __call__(self, username: str) -> BrowserSession:
        pw = await async_playwright().start()
        try:
            browser = await pw.chromium.launch(headless=self.headless)
            context = await browser.new_context()
            page = await context.new_page()
        except PlaywrightError:
            await pw.stop()
            raise
        page.set_default_timeout(self.default_timeout_ms)
        page.set_default_navigation_timeout(self.default_timeout_ms)
        return BrowserSession(
            username=username,
            page=page,
            browser=browser,
            context=context,
            playwright=pw,
        )


class SessionRegistry:
    """At most one live BrowserSession per account username."""

    def __init__(self, launcher: Launcher):
        self._launcher = launcher
        self._sessions: dict[str, BrowserSession] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, username: str) -> bool:
        return username in self._sessions

    def get(self, username: str) -> Optional[BrowserSession]:
        return self._sessions.get(username)

    async def acquire(self, username: str) -> BrowserSession:
        """Return the account's session, launching it on first use.

        An existing session is always handed back unchanged, whatever its
        login state. Concurrent callers for the same account wait on the
        per-account lock, so only one launch ever happens.
        """
        session = self._sessions.get(username)
        if session is not None:
            return session
        async with self._locks[username]:
            session = self._sessions.get(username)
            if session is None:
                log.info("Launching browser for %s", username)
                session = await self._launcher(username)
                self._sessions[username] = session
            return session

    async def close_all(self) -> int:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            try:
                await session.close()
            except PlaywrightError as exc:
                log.warning("Closing browser for %s failed: %s", session.username, exc)
        if sessions:
            log.info("Closed %d browser session(s)", len(sessions))
        return len(sessions)
