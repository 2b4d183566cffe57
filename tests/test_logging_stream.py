import asyncio
import logging

import pytest

from bidclock.web.logging_stream import (
    BroadcastHandler,
    event_name,
    get_log_generator,
    setup_broadcast_logging,
    teardown_broadcast_logging,
)


def _record(msg: str, bid_event=None) -> logging.LogRecord:
    record = logging.LogRecord("bidclock.scheduler", logging.INFO, __file__, 1, msg, None, None)
    if bid_event is not None:
        record.bid_event = bid_event
    return record


def test_event_name_defaults_to_log():
    assert event_name(_record("x")) == "log"
    assert event_name(_record("x", "placed")) == "placed"
    assert event_name(_record("x", "bogus")) == "log"


@pytest.mark.asyncio
async def test_handler_fans_out_to_listeners():
    handler = BroadcastHandler()
    first, second = handler.register(), handler.register()

    handler.emit(_record("Bid placed on stg/1", "placed"))

    for q in (first, second):
        assert q.get_nowait() == ("log", "bid stream connected")
        assert q.get_nowait() == ("placed", "Bid placed on stg/1")


@pytest.mark.asyncio
async def test_full_queue_drops_oldest_line():
    handler = BroadcastHandler(maxsize=10)
    q = handler.register()
    for i in range(15):
        handler.emit(_record(f"line {i}"))

    assert q.qsize() == 10
    assert q.get_nowait() == ("log", "line 5")


@pytest.mark.asyncio
async def test_generator_frames_events_and_unregisters():
    handler = BroadcastHandler()
    gen = get_log_generator(handler)

    first = await gen.__anext__()
    assert first.startswith("event: log\n")
    assert "data: bid stream connected" in first
    assert first.endswith("\n\n")
    assert handler.listeners == 1

    await gen.aclose()
    assert handler.listeners == 0


@pytest.mark.asyncio
async def test_generator_filters_by_event():
    handler = BroadcastHandler()
    gen = get_log_generator(handler, ["placed"])
    pending = asyncio.ensure_future(gen.__anext__())
    await asyncio.sleep(0)

    handler.emit(_record("Scheduled stg/1 in 60.0s", "armed"))
    handler.emit(_record("Bid placed on stg/2", "placed"))
    chunk = await asyncio.wait_for(pending, 1)

    assert chunk.startswith("event: placed\n")
    assert "data: Bid placed on stg/2" in chunk
    await gen.aclose()


@pytest.mark.asyncio
async def test_setup_streams_only_bidclock_loggers():
    handler = BroadcastHandler()
    setup_broadcast_logging(handler)
    q = handler.register()
    q.get_nowait()
    try:
        logging.getLogger("bidclock.scheduler").info(
            "Scheduled %s", "stg/1", extra={"bid_event": "armed"}
        )
        logging.getLogger("somelib").warning("unrelated")
    finally:
        teardown_broadcast_logging(handler)

    event, line = q.get_nowait()
    assert event == "armed"
    assert line.endswith("bidclock.scheduler -- Scheduled stg/1")
    assert q.empty()

    logging.getLogger("bidclock.scheduler").info("after teardown")
    assert q.empty()
