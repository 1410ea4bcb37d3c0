"""MQTT change feed: paho-mqtt network thread -> asyncio loop.

Topics are ``<prefix>/<scope>`` where scope is ``issues`` or
``comments/<issue_id>``. Payloads are JSON objects
``{"kind": ..., "table": ..., "before": {...}, "after": {...}}``.

The network thread never touches subscriber state; every callback is
re-posted onto the loop with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from typing import Any, cast

import paho.mqtt.client as mqtt
import pydantic

from pyissuemap.config import IssueMapConfig
from pyissuemap.exceptions import IssueMapError
from pyissuemap.realtime import ChangeEvent, EventHandler, FeedStatus, StatusHandler


def parse_change_payload(payload: bytes) -> ChangeEvent:
    """Decode one MQTT payload into a :class:`ChangeEvent`."""
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise IssueMapError(f"Change payload is not JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise IssueMapError("Change payload is not a JSON object")
    try:
        return ChangeEvent.model_validate(parsed)
    except pydantic.ValidationError as exc:
        raise IssueMapError(f"Invalid change payload: {exc.error_count()} error(s)") from exc


class MqttChangeFeed:
    """Threaded paho-mqtt :class:`~pyissuemap.realtime.ChangeFeed`.

    Usage::

        feed = MqttChangeFeed(config, loop=asyncio.get_running_loop())
        await feed.astart()
        ...
        await feed.aclose()

    Connection loss reports ``transport_error`` to every scope; the next
    successful connect resubscribes and reports ``recovered``. After more
    than ``realtime_max_reconnect_attempts`` consecutive failed connects the
    feed gives up and reports ``closed``.
    """

    def __init__(
        self,
        config: IssueMapConfig,
        *,
        loop: asyncio.AbstractEventLoop,
        client_id: str | None = None,
        username: str | None = None,
        password: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._loop = loop
        self._client_id = client_id or f"pyissuemap-{secrets.token_hex(6)}"
        self._username = username
        self._password = password
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._handlers: dict[str, tuple[EventHandler, StatusHandler]] = {}
        self._connected = False
        self._had_connection = False
        self._failures = 0
        self._running = False
        self._stop_future: asyncio.Future[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def connected(self) -> bool:
        return self._connected

    def topic_for(self, scope: str) -> str:
        return f"{self._config.realtime_topic_prefix.rstrip('/')}/{scope}"

    def scope_for(self, topic: str) -> str | None:
        prefix = self._config.realtime_topic_prefix.rstrip("/") + "/"
        if not topic.startswith(prefix):
            return None
        return topic[len(prefix) :]

    # ------------------------------------------------------------------
    # Subscriber side (event loop thread)
    # ------------------------------------------------------------------

    def subscribe(self, scope: str, on_event: EventHandler, on_status: StatusHandler) -> None:
        self._handlers[scope] = (on_event, on_status)
        if self._connected and self._client is not None:
            self._subscribe_topic(self._client, scope, FeedStatus.SUBSCRIBED)

    def unsubscribe(self, scope: str) -> None:
        if self._handlers.pop(scope, None) is None:
            return
        client = self._client
        if self._connected and client is not None:
            self._logger.debug("MQTT unsubscribing topic=%s", self.topic_for(scope))
            client.unsubscribe(self.topic_for(scope))

    def _subscribe_topic(self, client: mqtt.Client, scope: str, status: FeedStatus) -> None:
        topic = self.topic_for(scope)
        self._logger.debug("MQTT subscribing topic=%s", topic)
        result, _mid = client.subscribe(topic, qos=1)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("MQTT subscribe failed topic=%s rc=%s", topic, result)
            self._emit_status(scope, FeedStatus.TRANSPORT_ERROR)
            return
        self._emit_status(scope, status)

    def _emit_status(self, scope: str, status: FeedStatus) -> None:
        handlers = self._handlers.get(scope)
        if handlers is None:
            return
        try:
            handlers[1](status)
        except Exception:
            self._logger.debug("MQTT status handler failed scope=%s", scope, exc_info=True)

    def _handle_connected(self) -> None:
        client = self._client
        if client is None:
            return
        self._connected = True
        self._failures = 0
        status = FeedStatus.RECOVERED if self._had_connection else FeedStatus.SUBSCRIBED
        self._had_connection = True
        for scope in list(self._handlers):
            self._subscribe_topic(client, scope, status)

    def _handle_disconnected(self) -> None:
        was_connected = self._connected
        self._connected = False
        if not was_connected:
            return
        for scope in list(self._handlers):
            self._emit_status(scope, FeedStatus.TRANSPORT_ERROR)

    def _handle_connect_failed(self) -> None:
        self._failures += 1
        limit = self._config.realtime_max_reconnect_attempts
        self._logger.warning("MQTT connect failed (%d/%d)", self._failures, limit)
        if self._failures <= limit:
            return
        self._logger.warning("MQTT giving up after %d failed connects", self._failures)
        for scope in list(self._handlers):
            self._emit_status(scope, FeedStatus.CLOSED)
        self._stop_future = self._loop.run_in_executor(None, self.stop)
        self._stop_future.add_done_callback(self._on_stop_done)

    def _on_stop_done(self, future: asyncio.Future[None]) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._logger.warning("MQTT stop after give-up failed: %s", exc)

    def _dispatch(self, topic: str, event: ChangeEvent) -> None:
        scope = self.scope_for(topic)
        handlers = self._handlers.get(scope) if scope is not None else None
        if handlers is None:
            self._logger.debug("MQTT event for unsubscribed topic=%s", topic)
            return
        handlers[0](event)

    # ------------------------------------------------------------------
    # Runtime (blocking; run in an executor)
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create the client and start its network loop."""
        self.stop()
        config = self._config
        self._logger.debug(
            "MQTT feed start requested host=%s port=%s prefix=%s client_id=%s",
            config.realtime_host,
            config.realtime_port,
            config.realtime_topic_prefix,
            self._client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if self._username:
            client.username_pw_set(self._username, self._password)
        if config.realtime_tls:
            client.tls_set()
        client.reconnect_delay_set(min_delay=1, max_delay=30)

        def on_connect(
            _c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._loop.call_soon_threadsafe(self._handle_connect_failed)
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            self._loop.call_soon_threadsafe(self._handle_connected)

        def on_connect_fail(_c: mqtt.Client, _userdata: Any) -> None:
            self._loop.call_soon_threadsafe(self._handle_connect_failed)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                event = parse_change_payload(msg.payload)
            except IssueMapError:
                self._logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._logger.debug("MQTT change topic=%s kind=%s table=%s", msg.topic, event.kind, event.table)
            self._loop.call_soon_threadsafe(self._dispatch, msg.topic, event)

        def on_disconnect(
            _c: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)
                self._loop.call_soon_threadsafe(self._handle_disconnected)

        client.on_connect = on_connect
        client.on_connect_fail = on_connect_fail
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        self._client = client
        self._running = True
        client.connect_async(config.realtime_host, config.realtime_port, keepalive=config.realtime_keepalive)
        client.loop_start()
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Disconnect and stop the network loop if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._connected = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    async def astart(self) -> None:
        await self._loop.run_in_executor(None, self.start)

    async def aclose(self) -> None:
        self._handlers.clear()
        try:
            await self._loop.run_in_executor(None, self.stop)
        except Exception:
            self._logger.debug("MQTT feed stop failed", exc_info=True)
