"""
Unit tests for operation status streaming.
"""

import asyncio
import json

import pytest
from unittest.mock import MagicMock

from edge_shared.errors import DependencyUnavailableError
from edge_core.app.operations.models import OperationRecord
from edge_core.app.operations.streaming import (
    OperationSubscription,
    StreamError,
    format_sse,
    render_event,
    stream_operation_events,
)


def record(state, percentage=0.0, result=None):
    return OperationRecord.model_validate({
        "operationId": "op-1",
        "status": state,
        "progress": {"percentage": percentage},
        "result": result,
    })


def poller(*items):
    """Poll function returning ``items`` in order, repeating the last one."""
    queue = list(items)
    calls = []

    async def poll():
        calls.append(1)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    poll.calls = calls
    return poll


def parse_frame(frame):
    event_line, data_line = frame.strip().split("\n")
    return event_line[len("event: "):], json.loads(data_line[len("data: "):])


class TestOperationSubscription:
    """Test cases for OperationSubscription."""

    @pytest.mark.asyncio
    async def test_yields_until_terminal(self):
        """40% progress then completion: two updates, the last at 100%."""
        poll = poller(record("running", 40), record("completed", 40, {"ok": True}))
        subscription = OperationSubscription("op-1", poll, interval=0)

        received = [item async for item in subscription]

        assert [item.state.value for item in received] == ["running", "completed"]
        assert received[0].progress.percentage == 40
        assert received[1].progress.percentage == 100
        assert received[1].result == {"ok": True}
        assert not subscription.running
        await subscription.close()

    @pytest.mark.asyncio
    async def test_poll_error_ends_stream(self):
        poll = poller(DependencyUnavailableError("workflow_engine"))

        async with OperationSubscription("op-1", poll, interval=0) as subscription:
            received = [item async for item in subscription]

        assert len(received) == 1
        assert isinstance(received[0], StreamError)
        assert received[0].code == "DEPENDENCY_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_close_stops_polling(self):
        poll = poller(record("running", 10))
        subscription = OperationSubscription("op-1", poll, interval=0.01).start()

        await asyncio.sleep(0.05)
        await subscription.close()
        polls_at_close = len(poll.calls)
        await asyncio.sleep(0.05)

        assert not subscription.running
        assert len(poll.calls) == polls_at_close

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_tracks_gauge(self):
        metrics = MagicMock()
        subscription = OperationSubscription("op-1", poller(record("running")), interval=0.01, metrics=metrics)

        subscription.start()
        await subscription.close()
        await subscription.close()

        assert [c.args for c in metrics.adjust_gauge.call_args_list] == [
            ("active_operation_streams", 1),
            ("active_operation_streams", -1),
        ]

    @pytest.mark.asyncio
    async def test_close_without_start(self):
        subscription = OperationSubscription("op-1", poller(record("running")))
        await subscription.close()
        assert not subscription.running


class TestServerSentEvents:
    """SSE rendering."""

    def test_format_sse(self):
        assert format_sse("progress", {"a": 1}) == 'event: progress\ndata: {"a": 1}\n\n'

    @pytest.mark.parametrize(
        "state,event",
        [("running", "progress"), ("completed", "completed"), ("failed", "failed"), ("cancelled", "cancelled")],
    )
    def test_event_names(self, state, event):
        name, data = parse_frame(render_event(record(state)))
        assert name == event
        assert data["operationId"] == "op-1"
        assert data["status"] == state

    def test_error_frame(self):
        frame = render_event(StreamError(DependencyUnavailableError("workflow_engine")))
        name, data = parse_frame(frame)
        assert name == "error"
        assert data["error"]["code"] == "DEPENDENCY_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_stream_events_until_completion(self):
        poll = poller(record("running", 40), record("completed", result={"ok": True}))
        subscription = OperationSubscription("op-1", poll, interval=0)

        frames = [frame async for frame in stream_operation_events(subscription)]

        assert [parse_frame(f)[0] for f in frames] == ["progress", "completed"]
        assert parse_frame(frames[0])[1]["progress"]["percentage"] == 40
        assert parse_frame(frames[1])[1]["progress"]["percentage"] == 100
        assert not subscription.running

    @pytest.mark.asyncio
    async def test_disconnect_closes_subscription(self):
        poll = poller(record("running", 10))
        subscription = OperationSubscription("op-1", poll, interval=0.01)
        checks = []

        async def is_disconnected():
            checks.append(1)
            return len(checks) > 1

        frames = [frame async for frame in stream_operation_events(subscription, is_disconnected)]

        assert len(frames) == 1
        assert not subscription.running
