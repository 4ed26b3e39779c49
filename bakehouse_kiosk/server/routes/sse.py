"""
MODULE OVERVIEW:
One Server-Sent Events endpoint per topic (/sse/orders, /sse/custom-cakes,
/sse/menu, ...).

WHAT IS HAPPENING HERE:
Each request streams a hub queue with `EventSourceResponse`. The generator
subscribes on its first step, so a client that leaves before the body starts
never holds a hub slot. sse-starlette writes a comment ping every
SSE_HEARTBEAT_INTERVAL_S so idle proxies keep the connection open and clients
can tell a quiet stream from a dead one. When the client goes away the
generator is cancelled and the `finally` block unsubscribes it.
"""
from typing import AsyncIterator

from fastapi import APIRouter, Header, HTTPException, Query
from sse_starlette.sse import EventSourceResponse

from bakehouse_kiosk.server.hub import hub
from bakehouse_kiosk.server.route_utils import bearer_subject, extract_client_id
from bakehouse_kiosk.shared.config import STREAM_TOPICS, settings

router = APIRouter()


async def queue_generator(
    topic: str,
    client_id: str,
    last_event_id: str | None = None,
    user_id: str | None = None,
) -> AsyncIterator[dict]:
    queue = hub.subscribe(topic, client_id, last_event_id=last_event_id, user_id=user_id)
    try:
        while True:
            yield await queue.get()
    finally:
        hub.unsubscribe(client_id)


@router.get("/sse/{topic}")
async def sse_endpoint(
    topic: str,
    client_id: str | None = Query(None),
    last_event_id: str | None = Header(None, alias="Last-Event-ID"),
    authorization: str | None = Header(None),
):
    if topic not in STREAM_TOPICS:
        raise HTTPException(status_code=404, detail=f"Unknown stream topic: {topic}")

    cid = extract_client_id(topic, client_id)
    return EventSourceResponse(
        queue_generator(topic, cid, last_event_id, bearer_subject(authorization)),
        ping=int(settings.SSE_HEARTBEAT_INTERVAL_S),
        headers={"Cache-Control": "no-cache, no-transform", "X-Accel-Buffering": "no"},
    )
