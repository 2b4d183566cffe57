# bidclock/login.py
from __future__ import annotations

import logging

from playwright.async_api import Error as PlaywrightError

from bidclock.browser import BrowserSession
from bidclock.core import AuthenticationFailure
from bidclock.db import Account
from bidclock.settings import Settings

log = logging.getLogger("bidclock.login")


async def _login(session: BrowserSession, account: Account, settings: Settings) -> None:
    venue, timeouts = settings.venue, settings.timeouts
    page = session.page
    try:
        await page.goto(
            venue.base_url + venue.login_path,
            wait_until="networkidle",
            timeout=timeouts.navigation_ms,
        )
        await page.wait_for_selector(venue.username_selector, timeout=timeouts.field_ms)
        await page.type(venue.username_selector, account.username)

        await page.wait_for_selector(venue.password_selector, timeout=timeouts.field_ms)
        await page.type(venue.password_selector, account.password)

        async with page.expect_navigation(
            wait_until="networkidle", timeout=timeouts.navigation_ms
        ):
            await page.click(venue.login_submit_selector)
    except PlaywrightError as exc:
        raise AuthenticationFailure(f"login for {account.username} failed: {exc}") from exc


async def ensure_authenticated(
    session: BrowserSession, account: Account, settings: Settings
) -> bool:
    """Log the session in unless it already is.

    A failed login is logged and leaves ``session.authenticated`` false; it
    is not raised, and callers go on to bid regardless.
    """
    if session.authenticated:
        log.debug("%s is already logged in, skipping login", account.username)
        return True

    log.info("Logging in %s", account.username)
    try:
        await _login(session, account, settings)
    except AuthenticationFailure as exc:
        log.error("%s", exc)
        return False

    session.authenticated = True
    log.info("Login successful for %s", account.username)
    return True
