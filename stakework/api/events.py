"""SSE event stream endpoint."""

from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from stakework.auth import AuthAccount
from stakework.db_models import Account
from stakework.events import event_bus

router = APIRouter()

KEEPALIVE_INTERVAL = 30  # seconds


@router.get("/v1/events", responses={401: {"description": "Unauthorized"}})
async def event_stream(request: Request, account: Account = AuthAccount):
    """Subscribe to real-time notifications for tasks you create or work on."""
    queue = event_bus.subscribe(account.id)

    async def generate():
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_INTERVAL)
                    if event is None:
                        break
                    data = json.dumps({"type": event.type, "task_id": event.task_id, **event.data})
                    yield f"event: {event.type}\ndata: {data}\n\n"
                except TimeoutError:
                    yield ": keepalive\n\n"

                if await request.is_disconnected():
                    break
        finally:
            event_bus.unsubscribe(account.id, queue)

    return StreamingResponse(generate(), media_type="text/event-stream")
