"""Realtime load feed: collects query results pushed over a Pusher channel.

After the async query is accepted, the provider streams results as
``pushing_loads`` events on a per-query channel and signals the end with
``query_complete`` or ``pushing_loads_complete``. If no end signal arrives
before the deadline, whatever was collected so far is returned.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Protocol

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosedOK, WebSocketException

from loadscout.core.errors import ApiRequestError
from loadscout.core.schemas import LoadRecord
from loadscout.platforms.cloudtrucks.parser import parse_loads

logger = logging.getLogger(__name__)

PUSHING_LOADS = "pushing_loads"
COMPLETE_EVENTS = frozenset({"query_complete", "pushing_loads_complete"})
ERROR_EVENTS = frozenset({"pusher:error", "pusher:subscription_error"})
PROTOCOL_VERSION = 7


class LoadFeed(Protocol):
    """Anything that can turn a query channel into loads before a deadline."""

    async def collect(self, channel_name: str, timeout_s: float) -> list[LoadRecord]: ...


def decode_event(message: str | bytes) -> tuple[str, Any]:
    """Split a Pusher frame into (event name, decoded data).

    Pusher double-encodes ``data`` as a JSON string; it is decoded when possible.
    """
    try:
        frame = json.loads(message)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON feed frame")
        return "", None
    if not isinstance(frame, dict):
        return "", None
    event = str(frame.get("event", ""))
    data = frame.get("data")
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            pass
    return event, data


class PusherFeed:
    """Subscribes to a public Pusher channel over a websocket."""

    def __init__(
        self,
        app_key: str,
        cluster: str,
        *,
        connect: Callable[..., Any] = ws_connect,
    ) -> None:
        self._app_key = app_key
        self._cluster = cluster
        self._connect = connect

    @property
    def url(self) -> str:
        return (
            f"wss://ws-{self._cluster}.pusher.com/app/{self._app_key}"
            f"?protocol={PROTOCOL_VERSION}&client=loadscout&version=1.0"
        )

    async def collect(self, channel_name: str, timeout_s: float) -> list[LoadRecord]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        loads: list[LoadRecord] = []

        try:
            async with self._connect(self.url) as ws:
                await ws.send(json.dumps({
                    "event": "pusher:subscribe",
                    "data": {"channel": channel_name},
                }))
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        logger.info("Feed deadline reached with %d loads", len(loads))
                        break
                    try:
                        message = await asyncio.wait_for(ws.recv(), remaining)
                    except asyncio.TimeoutError:
                        logger.info("Feed deadline reached with %d loads", len(loads))
                        break
                    except ConnectionClosedOK:
                        logger.debug("Feed closed by server")
                        break

                    event, data = decode_event(message)
                    if event == PUSHING_LOADS:
                        loads.extend(parse_loads(data))
                    elif event in COMPLETE_EVENTS:
                        logger.debug("Feed complete: %s", event)
                        break
                    elif event == "pusher:ping":
                        await ws.send(json.dumps({"event": "pusher:pong", "data": {}}))
                    elif event in ERROR_EVENTS:
                        msg = f"Pusher {event}: {data}"
                        raise ApiRequestError(msg)
        except (OSError, WebSocketException) as e:
            msg = f"Load feed connection failed: {e}"
            raise ApiRequestError(msg) from e

        return loads
