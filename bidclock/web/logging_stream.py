# bidclock/web/logging_stream.py
from __future__ import annotations
import asyncio, logging
from typing import Iterable

from fasthtml.common import sse_message

# Loggers whose records reach the stream. Bid lifecycle lines are tagged with
# ``extra={"bid_event": ...}`` and go out under that SSE event name.
STREAMED_LOGGERS = ("bidclock", "apscheduler")
BID_EVENTS = ("armed", "placed", "failed", "canceled")


def event_name(record: logging.LogRecord) -> str:
    event = getattr(record, "bid_event", None)
    return event if event in BID_EVENTS else "log"


class BroadcastHandler(logging.Handler):
    """Fans bidding activity out to connected SSE clients as ``(event, line)`` pairs."""

    def __init__(self, maxsize: int = 1000):
        super().__init__()
        self.maxsize = maxsize
        self._qs: set[asyncio.Queue[tuple[str, str]]] = set()

    @property
    def listeners(self) -> int:
        return len(self._qs)

    def register(self) -> asyncio.Queue[tuple[str, str]]:
        q: asyncio.Queue[tuple[str, str]] = asyncio.Queue(maxsize=self.maxsize)
        self._qs.add(q)
        q.put_nowait(("log", "bid stream connected"))
        return q

    def unregister(self, q: asyncio.Queue[tuple[str, str]]):
        self._qs.discard(q)

    def emit(self, record: logging.LogRecord):
        item = (event_name(record), self.format(record))
        for q in list(self._qs):
            if q.full():
                # slow client: lose its oldest line
                q.get_nowait()
            q.put_nowait(item)


async def get_log_generator(handler: BroadcastHandler, events: Iterable[str] | None = None):
    """Yield SSE chunks; ``events`` limits the stream to those event names."""
    wanted = set(events) if events else None
    q = handler.register()
    try:
        while True:
            event, line = await q.get()
            if wanted is None or event in wanted:
                yield sse_message(line, event=event)
    finally:
        handler.unregister(q)


def setup_broadcast_logging(handler: BroadcastHandler, level: int = logging.INFO):
    """Attach ``handler`` to the bidclock and apscheduler loggers."""
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s -- %(message)s", "%Y-%m-%d %H:%M:%S")
    )
    for name in STREAMED_LOGGERS:
        lg = logging.getLogger(name)
        if lg.level == logging.NOTSET or lg.level > level:
            lg.setLevel(level)
        if handler not in lg.handlers:
            lg.addHandler(handler)


def teardown_broadcast_logging(handler: BroadcastHandler):
    for name in STREAMED_LOGGERS:
        logging.getLogger(name).removeHandler(handler)
