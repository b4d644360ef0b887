from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from repairshop.core.config import get_settings
from repairshop.realtime import Subscriber, SubscriptionRegistry, ticket_channel
from repairshop.tickets.models import Requester

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def handle_client_message(
    registry: SubscriptionRegistry, subscriber: Subscriber, message: Any
) -> dict[str, Any]:
    """Apply one client frame and build the direct reply for it."""

    action = message.get("action") if isinstance(message, dict) else None
    if action == "ping":
        return {"type": "pong", "payload": {"timestamp": int(time.time() * 1000)}}

    if action in ("subscribe", "unsubscribe"):
        ticket_number = str(message.get("ticket_number") or "").strip().upper()
        if not ticket_number:
            return {"type": "error", "payload": {"message": "ticket_number is required"}}
        channel = ticket_channel(ticket_number)
        if action == "subscribe":
            registry.subscribe(subscriber, channel)
            return {"type": "subscribed", "payload": {"channel": channel}}
        registry.unsubscribe(subscriber, channel)
        return {"type": "unsubscribed", "payload": {"channel": channel}}

    return {"type": "error", "payload": {"message": f"Unknown action: {action}"}}


async def _resolve(websocket: WebSocket, token: str | None) -> Requester | None:
    accounts = getattr(websocket.app.state, "accounts", None)
    if not token or accounts is None:
        return None
    requester = await accounts.resolve_token(token)
    if requester is None:
        # unknown tokens fall back to an anonymous tracking connection
        logger.info("WebSocket token rejected; continuing anonymously")
    return requester


async def _forward_events(websocket: WebSocket, subscriber: Subscriber, send_lock: asyncio.Lock) -> None:
    while True:
        event = await subscriber.queue.get()
        async with send_lock:
            await websocket.send_json(event.to_message())


@router.websocket("/ws")
async def live_events(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    registry: SubscriptionRegistry = websocket.app.state.registry
    requester = await _resolve(websocket, token)
    await websocket.accept()

    subscriber = Subscriber(requester, queue_size=get_settings().subscriber_queue_size)
    channels = registry.connect(subscriber)
    send_lock = asyncio.Lock()
    await websocket.send_json({"type": "connected", "payload": {"channels": sorted(channels)}})
    sender = asyncio.create_task(_forward_events(websocket, subscriber, send_lock))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                reply: dict[str, Any] = {"type": "error", "payload": {"message": "Invalid JSON"}}
            else:
                reply = handle_client_message(registry, subscriber, message)
            async with send_lock:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.debug("Subscriber %s disconnected", subscriber.id)
    finally:
        registry.disconnect(subscriber)
        sender.cancel()
        try:
            with contextlib.suppress(asyncio.CancelledError):
                await sender
        except Exception:
            logger.warning("Event forwarding for subscriber %s failed", subscriber.id, exc_info=True)
