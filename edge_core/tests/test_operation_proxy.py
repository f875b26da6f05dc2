"""
Unit tests for the long-running operation proxy.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from edge_shared.errors import OperationNotFoundError
from edge_core.app.operations.models import InitiateResult, OperationRecord, OperationState
from edge_core.app.operations.proxy import OperationProxy


def record(state="running", percentage=0.0, result=None, operation_id="op-1"):
    return OperationRecord.model_validate({
        "operationId": operation_id,
        "workflowType": "tenant-backup",
        "status": state,
        "progress": {"percentage": percentage},
        "result": result,
        "tenantId": "t1",
    })


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestOperationRecord:
    """Engine state normalization."""

    @pytest.mark.parametrize("raw", ["pending", "queued", "RUNNING", "in_progress"])
    def test_non_terminal_states_are_running(self, raw):
        assert record(raw).state == OperationState.RUNNING

    def test_canceled_spelling(self):
        assert record("canceled").state == OperationState.CANCELLED

    def test_result_dropped_while_running(self):
        assert record("running", result={"x": 1}).result is None

    def test_completed_is_full_progress(self):
        completed = record("completed", percentage=40, result={"x": 1})
        assert completed.progress.percentage == 100.0
        assert completed.result == {"x": 1}

    def test_round_trips_through_cache_form(self):
        original = record("failed")
        assert OperationRecord.model_validate(original.to_cache()) == original


class TestOperationProxy:
    """Test cases for OperationProxy."""

    @pytest.fixture
    def workflow_client(self):
        client = AsyncMock()
        client.initiate.return_value = {"type": "async", "operationId": "op-1", "estimatedDuration": 30}
        client.get_status.return_value = record("running", 10)
        return client

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def proxy(self, workflow_client, cache, clock):
        return OperationProxy(workflow_client, cache, sleep=clock.sleep, clock=clock)

    @pytest.mark.asyncio
    async def test_async_initiate_returns_handle(self, proxy, workflow_client):
        result = await proxy.initiate("tenant-backup", {"a": 1}, tenant_id="t1", user_id="user-1", token="tok")

        assert result.synchronous is False
        assert result.to_response() == {
            "type": "async",
            "operationId": "op-1",
            "statusUrl": "/api/workflows/op-1/status",
            "streamUrl": "/api/workflows/op-1/stream",
            "estimatedDuration": 30,
        }
        workflow_client.initiate.assert_awaited_once_with(
            "tenant-backup", {"a": 1}, tenant_id="t1", user_id="user-1", synchronous=False, token="tok"
        )
        workflow_client.get_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_engine_sync_reply_is_returned(self, proxy, workflow_client):
        workflow_client.initiate.return_value = {"type": "sync", "data": {"backupId": "b-1"}}

        result = await proxy.initiate("tenant-backup", {}, synchronous=True)

        assert result.to_response() == {"type": "sync", "data": {"backupId": "b-1"}}

    @pytest.mark.asyncio
    async def test_sync_wait_returns_terminal_result(self, proxy, workflow_client, clock):
        workflow_client.get_status.side_effect = [
            record("running", 10),
            record("completed", result={"backupId": "b-1"}),
        ]

        result = await proxy.initiate("tenant-backup", {}, synchronous=True)

        assert isinstance(result, InitiateResult)
        assert result.synchronous is True
        assert result.to_response() == {
            "type": "sync",
            "data": {"backupId": "b-1"},
            "operationId": "op-1",
            "status": "completed",
        }
        assert clock.sleeps == [2.0]

    @pytest.mark.asyncio
    async def test_sync_wait_elapses_to_handle(self, proxy, workflow_client, clock):
        """An operation still running after the wait degrades to a handle."""
        result = await proxy.initiate("tenant-backup", {}, synchronous=True)

        assert result.synchronous is False
        assert result.handle.operation_id == "op-1"
        assert sum(clock.sleeps) == pytest.approx(5.0)
        assert workflow_client.get_status.await_count == 4

    @pytest.mark.asyncio
    async def test_terminal_status_is_cached_long(self, proxy, workflow_client, store):
        workflow_client.get_status.return_value = record("completed", result={"ok": True})

        first = await proxy.get_status("op-1")
        second = await proxy.get_status("op-1")

        assert first == second
        assert workflow_client.get_status.await_count == 1
        assert await store.ttl("edge:op:op-1") == 3600

    @pytest.mark.asyncio
    async def test_running_status_is_cached_briefly(self, proxy, store):
        await proxy.get_status("op-1")
        assert await store.ttl("edge:op:op-1") == 10

    @pytest.mark.asyncio
    async def test_refresh_bypasses_cache(self, proxy, workflow_client):
        await proxy.get_status("op-1")
        workflow_client.get_status.return_value = record("running", 60)

        refreshed = await proxy.refresh("op-1")

        assert refreshed.progress.percentage == 60
        assert (await proxy.get_status("op-1")).progress.percentage == 60

    @pytest.mark.asyncio
    async def test_unknown_operation_propagates(self, proxy, workflow_client):
        workflow_client.get_status.side_effect = OperationNotFoundError("op-404")

        with pytest.raises(OperationNotFoundError):
            await proxy.get_status("op-404")

    @pytest.mark.asyncio
    async def test_cancel_drops_cached_status(self, proxy, workflow_client, store):
        await proxy.get_status("op-1")

        invalidation = await proxy.cancel("op-1", token="tok", tenant_id="t1")

        assert invalidation.keys == ("edge:op:op-1",)
        assert "edge:op:op-1" not in store.data
        workflow_client.cancel.assert_awaited_once_with("op-1", token="tok", tenant_id="t1")

    @pytest.mark.asyncio
    async def test_subscription_reaches_terminal_within_one_interval(self, workflow_client, cache, store):
        """op-123 at 40% completes: the stream sees it on the next tick despite a cached running record."""
        proxy = OperationProxy(workflow_client, cache, poll_interval=0.05)
        workflow_client.get_status.side_effect = [
            record("running", 40, operation_id="op-123"),
            record("running", 40, operation_id="op-123"),
            record("completed", 40, {"ok": True}, operation_id="op-123"),
        ]
        await proxy.get_status("op-123", tenant_id="t1")

        async def collect():
            return [item async for item in proxy.subscribe("op-123", token="tok", tenant_id="t1")]

        received = await asyncio.wait_for(collect(), timeout=1.0)

        assert [item.state.value for item in received] == ["running", "completed"]
        assert received[-1].progress.percentage == 100
        assert workflow_client.get_status.await_count == 3
        assert workflow_client.get_status.await_args.kwargs == {"token": "tok", "tenant_id": "t1"}
        assert await store.ttl("edge:op:op-123") == 3600

    @pytest.mark.asyncio
    async def test_poll_metrics(self, workflow_client, cache):
        metrics = MagicMock()
        proxy = OperationProxy(workflow_client, cache, metrics=metrics)

        await proxy.get_status("op-1")
        await proxy.get_status("op-1")

        origins = [call.kwargs["origin"] for call in metrics.increment_counter.call_args_list]
        assert origins == ["engine", "cache"]

    def test_custom_route_prefix(self, workflow_client, cache):
        proxy = OperationProxy(workflow_client, cache, route_prefix="/ops/")
        handle = proxy.handle_for("op-9")
        assert handle.status_url == "/ops/op-9/status"
        assert handle.stream_url == "/ops/op-9/stream"
