from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class VenuePage(Protocol):
    """The slice of a Playwright ``Page`` the login and bid steps drive."""

    async def goto(self, url: str, **kwargs: Any) -> Any: ...

    async def wait_for_selector(self, selector: str, **kwargs: Any) -> Any: ...

    async def click(self, selector: str, **kwargs: Any) -> None: ...

    async def type(self, selector: str, text: str, **kwargs: Any) -> None: ...

    async def fill(self, selector: str, value: str, **kwargs: Any) -> None: ...

    async def wait_for_timeout(self, timeout: float) -> None: ...

    def expect_navigation(self, **kwargs: Any) -> AbstractAsyncContextManager: ...


class AuthenticationFailure(RuntimeError):
    """Raised when the login handshake against the venue errors out."""


class InteractionFailure(RuntimeError):
    """Raised when a navigation, wait or click of the bid sequence fails."""
