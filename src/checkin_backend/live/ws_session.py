"""
WebSocket bridge between viewers and the LiveQueryRouter.

Frames follow the publish/subscribe vocabulary viewers already speak:

    -> {"msg": "sub", "id": "s1", "name": "people", "params": ["C1"]}
    <- {"msg": "added", "sub": "s1", "collection": "people", "id": "P1", "fields": {...}}
    <- {"msg": "ready", "subs": ["s1"]}
    <- {"msg": "changed", ...} / {"msg": "removed", ...}
    -> {"msg": "unsub", "id": "s1"}
    <- {"msg": "nosub", "id": "s1"}
"""

import asyncio
import logging
from contextlib import suppress
from typing import Dict

from fastapi import WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from ..errors import AttendanceError
from .query_router import Delta, DeltaKind, LiveQueryRouter, PUBLICATIONS, Subscription

logger = logging.getLogger(__name__)


def delta_frame(sub_id: str, delta: Delta) -> dict:
    if delta.kind == DeltaKind.READY:
        return {"msg": "ready", "subs": [sub_id]}
    frame = {"msg": delta.kind.value, "sub": sub_id, "collection": delta.collection, "id": delta.id}
    if delta.kind != DeltaKind.REMOVED:
        frame["fields"] = delta.record.to_dict()
    return frame


class LiveSession:
    """
    One WebSocket connection and the subscriptions it opened.

    Router listeners run on writer threads; they only schedule frames onto
    this connection's event loop. A single sender task drains the outbox so
    frames leave in the order they were produced.
    """

    def __init__(self, websocket: WebSocket, router: LiveQueryRouter):
        self.websocket = websocket
        self.router = router
        self._loop = None
        self._outbox = None
        self._subs: Dict[str, Subscription] = {}

    async def run(self):
        await self.websocket.accept()
        self._loop = asyncio.get_running_loop()
        self._outbox = asyncio.Queue()
        sender = asyncio.create_task(self._pump())
        client = self.websocket.client
        logger.info(f"[LIVE] Viewer connected: {client}")

        try:
            while True:
                try:
                    message = await self.websocket.receive_json()
                except (ValueError, KeyError, TypeError):
                    # KeyError: binary frame read in text mode
                    self._send({"msg": "error", "reason": "Frames must be JSON objects"})
                    continue
                await self._handle(message)
        except WebSocketDisconnect:
            logger.info(f"[LIVE] Viewer disconnected: {client}")
        finally:
            for sub in self._subs.values():
                sub.cancel()
            self._subs.clear()
            sender.cancel()
            with suppress(asyncio.CancelledError):
                await sender

    def _send(self, frame: dict):
        self._outbox.put_nowait(frame)

    async def _pump(self):
        while True:
            frame = await self._outbox.get()
            try:
                await self.websocket.send_json(frame)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"[LIVE] Stopped sending to {self.websocket.client}: {e}")
                return

    def _listener_for(self, sub_id: str):
        def listener(delta: Delta):
            self._loop.call_soon_threadsafe(self._outbox.put_nowait, delta_frame(sub_id, delta))
        return listener

    async def _handle(self, message):
        if not isinstance(message, dict):
            self._send({"msg": "error", "reason": "Frames must be JSON objects"})
            return

        msg = message.get("msg")
        if msg == "sub":
            await self._subscribe(message)
        elif msg == "unsub":
            await self._unsubscribe(message.get("id"))
        elif msg == "ping":
            self._send({"msg": "pong"})
        else:
            self._send({"msg": "error", "reason": f"Unknown message type: {msg!r}"})

    async def _subscribe(self, message: dict):
        sub_id = message.get("id")
        name = message.get("name")
        params = message.get("params", [])

        if not isinstance(sub_id, str) or not sub_id or sub_id in self._subs:
            self._send({"msg": "error", "reason": f"Invalid or duplicate subscription id: {sub_id!r}"})
            return
        if not isinstance(params, list):
            self._send({"msg": "nosub", "id": sub_id, "error": "params must be a list"})
            return
        if name not in PUBLICATIONS:
            self._send({"msg": "nosub", "id": sub_id, "error": f"Unknown publication: {name!r}"})
            return

        # The initial scan reads the database, keep it off the event loop
        try:
            sub = await run_in_threadpool(
                self.router.subscribe, name, *params, listener=self._listener_for(sub_id)
            )
        except (AttendanceError, RuntimeError) as e:
            logger.error(f"[LIVE] Subscription {sub_id} to {name} failed: {e}")
            self._send({"msg": "nosub", "id": sub_id, "error": str(e)})
            return
        self._subs[sub_id] = sub

    async def _unsubscribe(self, sub_id):
        sub = self._subs.pop(sub_id, None) if isinstance(sub_id, str) else None
        if sub is None:
            self._send({"msg": "nosub", "id": sub_id, "error": "Not subscribed"})
            return
        await run_in_threadpool(sub.cancel)
        self._send({"msg": "nosub", "id": sub_id})
