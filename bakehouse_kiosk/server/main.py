"""
MODULE OVERVIEW:
The FastAPI application for the reference backend.

WHAT IS HAPPENING HERE:
`create_app()` builds the app; the module-level `app` is what Uvicorn loads.
The `lifespan` hooks the stream hub onto the internal bus on startup, so
anything the order and payment routes publish reaches the open /sse streams,
and unhooks it on shutdown.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from bakehouse_kiosk import __version__
from bakehouse_kiosk.server.hub import hub
from bakehouse_kiosk.server.middleware import TimingMiddleware
from bakehouse_kiosk.server.routes import payment, sse
from bakehouse_kiosk.shared.config import STREAM_TOPICS
from bakehouse_kiosk.shared.events import global_bus


@asynccontextmanager
async def lifespan(app: FastAPI):
    global_bus.subscribe(hub.on_bus_event)
    logger.info(f"backend started version={__version__} topics={','.join(STREAM_TOPICS)}")
    try:
        yield
    finally:
        global_bus.unsubscribe(hub.on_bus_event)
        logger.info(
            f"backend stopped clients={hub.client_count()} "
            f"events_dispatched={hub.total_events_dispatched}"
        )


def create_app() -> FastAPI:
    application = FastAPI(
        title="Bakehouse Kiosk Backend",
        description="Payment status, order events and live streams for the bakery kiosks",
        version=__version__,
        lifespan=lifespan,
    )

    application.add_middleware(TimingMiddleware)
    # Kiosks load the UI from another origin on the shop LAN.
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Process-Time-Ms", "X-Request-ID"],
    )

    application.include_router(payment.router, prefix="/api", tags=["Payments"])
    application.include_router(sse.router, prefix="/api", tags=["Streams"])

    @application.get("/healthz", tags=["Ops"])
    async def health_check():
        return {"status": "ok", "version": __version__}

    @application.get("/stats", tags=["Ops"])
    async def get_stats():
        return hub.get_stats()

    return application


app = create_app()
