from __future__ import annotations

import asyncio
import logging
from typing import Any

import paho.mqtt.client as mqtt
import pytest

from pyissuemap._mqtt import MqttChangeFeed, parse_change_payload
from pyissuemap.config import IssueMapConfig
from pyissuemap.exceptions import IssueMapError
from pyissuemap.realtime import ChangeEvent, ChangeKind, FeedStatus, RealtimeReconciler, SubscriptionState
from pyissuemap.state.comments import CommentStore
from pyissuemap.state.store import FeatureStore

CONFIG = IssueMapConfig(realtime_topic_prefix="issuemap/changes/", realtime_max_reconnect_attempts=2)


class _FakeClient:
    def __init__(self, result: int = mqtt.MQTT_ERR_SUCCESS, stop_error: Exception | None = None) -> None:
        self.result = result
        self.stop_error = stop_error
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self.stopped = False

    def subscribe(self, topic: str, qos: int = 0) -> tuple[int, int]:
        self.subscribed.append(topic)
        return self.result, len(self.subscribed)

    def unsubscribe(self, topic: str) -> tuple[int, int]:
        self.unsubscribed.append(topic)
        return mqtt.MQTT_ERR_SUCCESS, 1

    def disconnect(self) -> None:
        return None

    def loop_stop(self) -> None:
        self.stopped = True
        if self.stop_error is not None:
            raise self.stop_error


class _Recorder:
    def __init__(self) -> None:
        self.events: list[ChangeEvent] = []
        self.statuses: list[FeedStatus] = []

    def on_event(self, event: ChangeEvent) -> None:
        self.events.append(event)

    def on_status(self, status: FeedStatus) -> None:
        self.statuses.append(status)


def _feed(client: _FakeClient | None = None) -> MqttChangeFeed:
    feed = MqttChangeFeed(CONFIG, loop=asyncio.get_running_loop(), client_id="test")
    feed._client = client if client is not None else _FakeClient()  # type: ignore[assignment]
    return feed


def test_parse_change_payload() -> None:
    event = parse_change_payload(b'{"kind": "INSERT", "table": "issues", "after": {"id": "a"}}')

    assert event.kind is ChangeKind.INSERT
    assert event.row == {"id": "a"}


@pytest.mark.parametrize("payload", [b"\xff\xfe", b"not json", b"[1, 2]", b'{"kind": "upsert", "table": "issues"}'])
def test_parse_change_payload_rejects_garbage(payload: bytes) -> None:
    with pytest.raises(IssueMapError):
        parse_change_payload(payload)


@pytest.mark.asyncio
async def test_topic_scope_mapping() -> None:
    feed = _feed()

    assert feed.topic_for("comments/42") == "issuemap/changes/comments/42"
    assert feed.scope_for("issuemap/changes/issues") == "issues"
    assert feed.scope_for("other/issues") is None


@pytest.mark.asyncio
async def test_first_connect_subscribes_then_recovery_after_drop() -> None:
    client = _FakeClient()
    feed = _feed(client)
    issues = _Recorder()
    feed.subscribe("issues", issues.on_event, issues.on_status)

    assert client.subscribed == []

    feed._handle_connected()
    feed._handle_disconnected()
    feed._handle_connected()

    assert client.subscribed == ["issuemap/changes/issues", "issuemap/changes/issues"]
    assert issues.statuses == [FeedStatus.SUBSCRIBED, FeedStatus.TRANSPORT_ERROR, FeedStatus.RECOVERED]
    assert feed.connected is True


@pytest.mark.asyncio
async def test_subscribe_while_connected_is_immediate() -> None:
    client = _FakeClient()
    feed = _feed(client)
    feed._handle_connected()
    thread = _Recorder()

    feed.subscribe("comments/a", thread.on_event, thread.on_status)
    feed.unsubscribe("comments/a")

    assert thread.statuses == [FeedStatus.SUBSCRIBED]
    assert client.unsubscribed == ["issuemap/changes/comments/a"]


@pytest.mark.asyncio
async def test_rejected_subscribe_reports_transport_error() -> None:
    feed = _feed(_FakeClient(result=mqtt.MQTT_ERR_NO_CONN))
    issues = _Recorder()
    feed.subscribe("issues", issues.on_event, issues.on_status)

    feed._handle_connected()

    assert issues.statuses == [FeedStatus.TRANSPORT_ERROR]


@pytest.mark.asyncio
async def test_disconnect_before_connect_is_silent() -> None:
    feed = _feed()
    issues = _Recorder()
    feed.subscribe("issues", issues.on_event, issues.on_status)

    feed._handle_disconnected()

    assert issues.statuses == []


@pytest.mark.asyncio
async def test_gives_up_after_max_failed_connects() -> None:
    feed = _feed()
    issues = _Recorder()
    feed.subscribe("issues", issues.on_event, issues.on_status)

    feed._handle_connect_failed()
    feed._handle_connect_failed()
    assert issues.statuses == []

    feed._handle_connect_failed()
    assert issues.statuses == [FeedStatus.CLOSED]


@pytest.mark.asyncio
async def test_stop_failure_after_give_up_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    client = _FakeClient(stop_error=RuntimeError("socket already gone"))
    feed = _feed(client)

    with caplog.at_level(logging.WARNING, logger="pyissuemap._mqtt"):
        for _ in range(3):
            feed._handle_connect_failed()
        assert feed._stop_future is not None
        await asyncio.wait([feed._stop_future])
        await asyncio.sleep(0)

    assert client.stopped is True
    assert "socket already gone" in caplog.text


@pytest.mark.asyncio
async def test_successful_connect_resets_failures() -> None:
    feed = _feed()
    issues = _Recorder()
    feed.subscribe("issues", issues.on_event, issues.on_status)

    feed._handle_connect_failed()
    feed._handle_connect_failed()
    feed._handle_connected()
    feed._handle_connect_failed()

    assert FeedStatus.CLOSED not in issues.statuses


@pytest.mark.asyncio
async def test_dispatch_routes_by_topic() -> None:
    feed = _feed()
    issues = _Recorder()
    thread = _Recorder()
    feed.subscribe("issues", issues.on_event, issues.on_status)
    feed.subscribe("comments/a", thread.on_event, thread.on_status)
    event = ChangeEvent(kind="insert", table="comments", after={"id": "c1", "issue_id": "a"})

    feed._dispatch("issuemap/changes/comments/a", event)
    feed._dispatch("issuemap/changes/comments/b", event)

    assert thread.events == [event]
    assert issues.events == []


@pytest.mark.asyncio
async def test_failing_status_handler_does_not_break_others() -> None:
    feed = _feed()
    good = _Recorder()

    def explode(_status: Any) -> None:
        raise RuntimeError("boom")

    feed.subscribe("comments/a", good.on_event, explode)
    feed.subscribe("issues", good.on_event, good.on_status)

    feed._handle_connected()

    assert good.statuses == [FeedStatus.SUBSCRIBED]


@pytest.mark.asyncio
async def test_thread_opened_during_outage_resyncs_after_reconnect() -> None:
    feed = _feed()
    thread_loads: list[str] = []

    async def resync() -> None:
        return None

    async def resync_comments(issue_id: str) -> None:
        thread_loads.append(issue_id)

    reconciler = RealtimeReconciler(feed, FeatureStore(), CommentStore(), resync, resync_comments=resync_comments)
    issues = reconciler.subscribe_issues()
    feed._handle_connected()
    feed._handle_disconnected()

    thread = reconciler.subscribe_comments("42")
    feed._handle_connected()
    await reconciler.drain()

    assert issues.state == SubscriptionState.ACTIVE
    assert thread.state == SubscriptionState.ACTIVE
    assert thread_loads == ["42"]
