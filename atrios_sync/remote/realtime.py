"""Change-event channel over the Supabase Realtime (Phoenix) websocket protocol.

One websocket per subscription. The channel is a latency optimization only:
it has no delivery guarantee, so callers pair it with a polling pass. Socket
failures are logged and the subscription reconnects after a delay until it
is closed.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import websockets

from ..store.kinds import EntityKind
from .filters import ALL, Predicate

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChannelStatus(str, Enum):
    CONNECTING = "CONNECTING"
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    CLOSED = "CLOSED"


@dataclass
class ChangeEvent:
    kind: EntityKind
    event_type: EventType
    record: dict[str, Any]
    old_record: dict[str, Any] | None = None
    commit_timestamp: str | None = None


EventHandler = Callable[[ChangeEvent], "Awaitable[None] | None"]


class Subscription(Protocol):
    status: ChannelStatus

    async def close(self) -> None: ...


class ChangeFeed(Protocol):
    async def subscribe(
        self,
        kind: EntityKind,
        predicate: Predicate | None,
        on_event: EventHandler,
    ) -> Subscription: ...


async def dispatch_event(handler: EventHandler, event: ChangeEvent) -> None:
    """Invoke a sync or async handler; handler errors are logged, never raised."""
    try:
        result = handler(event)
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Change handler failed for %s %s", event.kind.value, event.event_type.value)


# Protocol messages

def build_join_message(
    topic: str,
    kind: EntityKind,
    predicate: Predicate | None,
    *,
    schema: str = "public",
    access_token: str | None = None,
    ref: str = "1",
) -> dict[str, Any]:
    change: dict[str, Any] = {"event": "*", "schema": schema, "table": kind.remote_table}
    realtime_filter = (predicate or ALL).to_realtime_filter()
    if realtime_filter:
        change["filter"] = realtime_filter

    payload: dict[str, Any] = {
        "config": {
            "broadcast": {"self": False},
            "presence": {"key": ""},
            "postgres_changes": [change],
        }
    }
    if access_token:
        payload["access_token"] = access_token
    return {"topic": f"realtime:{topic}", "event": "phx_join", "payload": payload, "ref": ref}


def build_heartbeat_message(ref: str) -> dict[str, Any]:
    return {"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": ref}


def parse_change(message: dict[str, Any], kind: EntityKind) -> ChangeEvent | None:
    """Decode a ``postgres_changes`` frame; anything else returns None."""
    if message.get("event") != "postgres_changes":
        return None
    payload = message.get("payload") or {}
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return None

    table = data.get("table")
    if table and table != kind.remote_table:
        return None

    try:
        event_type = EventType(str(data.get("type") or data.get("eventType") or "").upper())
    except ValueError:
        return None

    record = data.get("record") if isinstance(data.get("record"), dict) else {}
    old_record = data.get("old_record") if isinstance(data.get("old_record"), dict) else None
    if event_type is EventType.DELETE and not record and old_record:
        record = old_record
    if not record.get("id"):
        return None

    return ChangeEvent(
        kind=kind,
        event_type=event_type,
        record=record,
        old_record=old_record,
        commit_timestamp=data.get("commit_timestamp"),
    )


@dataclass
class RealtimeSubscription:
    """One live channel: join, heartbeat, dispatch, reconnect until closed."""

    url: str
    topic: str
    kind: EntityKind
    predicate: Predicate | None
    on_event: EventHandler
    schema: str = "public"
    access_token: str | None = None
    heartbeat_seconds: float = 25.0
    reconnect_seconds: float = 5.0
    connect: Callable[..., Any] = websockets.connect
    status: ChannelStatus = ChannelStatus.CONNECTING
    _task: asyncio.Task | None = field(default=None, init=False, repr=False)
    _refs: Any = field(default_factory=lambda: itertools.count(1), init=False, repr=False)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"realtime-{self.topic}")

    async def close(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.status = ChannelStatus.CLOSED

    def _next_ref(self) -> str:
        return str(next(self._refs))

    async def _run(self) -> None:
        while True:
            self.status = ChannelStatus.CONNECTING
            try:
                async with self.connect(self.url) as ws:
                    join = build_join_message(
                        self.topic,
                        self.kind,
                        self.predicate,
                        schema=self.schema,
                        access_token=self.access_token,
                        ref=self._next_ref(),
                    )
                    await ws.send(json.dumps(join))
                    heartbeat = asyncio.create_task(self._heartbeat(ws))
                    try:
                        async for raw in ws:
                            await self._handle(raw)
                    finally:
                        heartbeat.cancel()
                        await asyncio.gather(heartbeat, return_exceptions=True)
                logger.info("Realtime channel %s closed by server", self.topic)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Realtime channel %s unavailable: %s", self.topic, exc)
            self.status = ChannelStatus.CHANNEL_ERROR
            await asyncio.sleep(self.reconnect_seconds)

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_seconds)
            await ws.send(json.dumps(build_heartbeat_message(self._next_ref())))

    async def _handle(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-JSON realtime frame on %s", self.topic)
            return
        if not isinstance(message, dict):
            return

        event = message.get("event")
        if event == "phx_reply" and message.get("topic") == f"realtime:{self.topic}":
            status = (message.get("payload") or {}).get("status")
            if status == "ok":
                if self.status is not ChannelStatus.SUBSCRIBED:
                    logger.info("Realtime channel %s subscribed", self.topic)
                self.status = ChannelStatus.SUBSCRIBED
            else:
                self.status = ChannelStatus.CHANNEL_ERROR
                logger.warning("Realtime join rejected on %s: %s", self.topic, message.get("payload"))
            return
        if event in ("phx_error", "phx_close"):
            self.status = ChannelStatus.CHANNEL_ERROR
            logger.warning("Realtime channel %s reported %s", self.topic, event)
            return

        change = parse_change(message, self.kind)
        if change is None:
            return
        if (
            change.event_type is not EventType.DELETE
            and self.predicate
            and not self.predicate.matches(change.record)
        ):
            return
        await dispatch_event(self.on_event, change)


class RealtimeChangeFeed:
    """Opens one :class:`RealtimeSubscription` per watched table/filter."""

    def __init__(
        self,
        url: str,
        *,
        schema: str = "public",
        access_token: str | None = None,
        heartbeat_seconds: float = 25.0,
        reconnect_seconds: float = 5.0,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.url = url
        self.schema = schema
        self.access_token = access_token
        self.heartbeat_seconds = heartbeat_seconds
        self.reconnect_seconds = reconnect_seconds
        self.connect = connect
        self._topics = itertools.count(1)

    @classmethod
    def from_settings(cls, settings) -> "RealtimeChangeFeed":
        return cls(
            settings.realtime_url,
            schema=settings.remote_schema,
            access_token=settings.supabase_key,
            heartbeat_seconds=settings.realtime_heartbeat_seconds,
            reconnect_seconds=settings.realtime_reconnect_seconds,
        )

    async def subscribe(
        self,
        kind: EntityKind,
        predicate: Predicate | None,
        on_event: EventHandler,
    ) -> RealtimeSubscription:
        kind = EntityKind.parse(kind)
        topic = f"{kind.remote_table}-{next(self._topics)}"
        subscription = RealtimeSubscription(
            url=self.url,
            topic=topic,
            kind=kind,
            predicate=predicate,
            on_event=on_event,
            schema=self.schema,
            access_token=self.access_token,
            heartbeat_seconds=self.heartbeat_seconds,
            reconnect_seconds=self.reconnect_seconds,
            connect=self.connect,
        )
        subscription.start()
        logger.debug("Subscribed to %s (%s)", kind.remote_table, (predicate or ALL).describe())
        return subscription
