"""
Backend Client for the Event Check-in API
==========================================
Client module for viewer processes: calls check-in / check-out and streams
live subscriptions from the backend.
"""

import aiohttp
import asyncio
import itertools
import logging
from typing import Any, AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)


class CheckinError(Exception):
    """A failure reported by the backend, carrying its kind and reason."""

    def __init__(self, kind: str, message: str, reason: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.reason = reason
        self.status = status

    def __repr__(self):
        return f"<CheckinError(kind={self.kind}, reason={self.reason}, status={self.status})>"


class CheckinClient:
    """
    Async client for communicating with the Check-in Backend.

    Usage:
        client = CheckinClient("http://localhost:8000")
        await client.check_in("P1")
        async for frame in client.subscribe("people", "C1"):
            ...
        await client.close()
    """

    def __init__(self, backend_url: str = "http://localhost:8000"):
        self.backend_url = backend_url.rstrip('/')
        self.session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()
        self._sub_ids = itertools.count(1)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        async with self._lock:
            if self.session is None or self.session.closed:
                self.session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=30)
                )
            return self.session

    async def close(self):
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def health_check(self) -> Dict[str, Any]:
        """Check backend health status."""
        try:
            session = await self._get_session()
            async with session.get(f"{self.backend_url}/") as response:
                if response.status == 200:
                    return await response.json()
                return {"status": "error", "code": response.status}
        except aiohttp.ClientError as e:
            logger.error(f"Health check failed: {e}")
            return {"status": "offline", "error": str(e)}

    async def call(self, method: str, *params) -> Dict[str, Any]:
        """
        Invoke a backend method.

        Args:
            method: Method name, e.g. "people.checkIn"
            params: Positional parameters sent as-is

        Returns:
            Result payload ({"success": True, "timestamp": ...})

        Raises:
            CheckinError: the backend rejected the call
        """
        session = await self._get_session()
        async with session.post(
            f"{self.backend_url}/methods/{method}",
            json={"params": list(params)}
        ) as response:
            payload = await response.json(content_type=None)
            if response.status == 200:
                return payload

            if isinstance(payload, dict) and "error" in payload:
                raise CheckinError(
                    payload["error"],
                    payload.get("message", ""),
                    reason=payload.get("reason"),
                    status=response.status
                )
            detail = payload.get("detail") if isinstance(payload, dict) else payload
            raise CheckinError("Internal", str(detail), status=response.status)

    async def check_in(self, person_id: str) -> Dict[str, Any]:
        return await self.call("people.checkIn", person_id)

    async def check_out(self, person_id: str) -> Dict[str, Any]:
        return await self.call("people.checkOut", person_id)

    async def subscribe(self, name: str, *params) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream frames of one subscription.

        Yields added/changed/removed/ready frames until the caller stops
        iterating or the server ends the subscription (nosub).
        """
        session = await self._get_session()
        ws_url = self.backend_url.replace("http", "ws", 1) + "/live"
        sub_id = f"sub-{next(self._sub_ids)}"

        async with session.ws_connect(ws_url) as ws:
            await ws.send_json({"msg": "sub", "id": sub_id, "name": name, "params": list(params)})
            logger.info(f"Subscribed to {name}{params} as {sub_id}")
            try:
                async for message in ws:
                    if message.type != aiohttp.WSMsgType.TEXT:
                        break
                    frame = message.json()
                    if frame.get("msg") == "nosub" and frame.get("id") == sub_id:
                        if frame.get("error"):
                            raise CheckinError("InvalidArgument", frame["error"])
                        return
                    if frame.get("msg") == "ready" or frame.get("sub") == sub_id:
                        yield frame
            finally:
                if not ws.closed:
                    await ws.send_json({"msg": "unsub", "id": sub_id})


# Global client instance
_client: Optional[CheckinClient] = None


def get_client(backend_url: str = "http://localhost:8000") -> CheckinClient:
    """Get or create the global client instance."""
    global _client
    if _client is None:
        _client = CheckinClient(backend_url)
    return _client


async def close_client():
    """Close the global client instance."""
    global _client
    if _client:
        await _client.close()
        _client = None
