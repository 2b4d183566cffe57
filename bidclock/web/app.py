from __future__ import annotations
import logging, os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from bidclock.db import RecordStore
from bidclock.scheduler import BidScheduler
from bidclock.settings import load_settings
from .api import api as api_router
from .logging_stream import BroadcastHandler, setup_broadcast_logging, teardown_broadcast_logging

if os.getenv("DEBUG_WEB", "0") == "1":
    import debugpy

    debugpy.listen(("0.0.0.0", 5679))
    if os.getenv("DEBUGPY_WAIT", "0") == "1":
        debugpy.wait_for_client()

logger = logging.getLogger("bidclock.web")


def create_app(bidder: Optional[BidScheduler] = None) -> FastAPI:
    """Build the HTTP app; without ``bidder`` one is made from settings on startup."""
    broadcast = BroadcastHandler()
    level_name = os.getenv("BIDCLOCK_LOG_LEVEL", "INFO").upper()
    setup_broadcast_logging(broadcast, level=getattr(logging, level_name, logging.INFO))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal bidder
        if bidder is None:
            settings = load_settings()
            bidder = BidScheduler(RecordStore(settings.db_url), settings)
        app.state.bidder = bidder
        app.state.broadcast = broadcast
        logger.info("bidclock web started")
        try:
            yield
        finally:
            await bidder.shutdown()
            logger.info("bidclock web stopped")
            teardown_broadcast_logging(broadcast)

    app = FastAPI(title="bidclock API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router)
    return app


app = create_app()
