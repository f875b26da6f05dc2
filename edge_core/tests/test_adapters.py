"""
Unit tests for the authority clients, using httpx's mock transport.
"""

import httpx
import pytest

from edge_shared.errors import (
    AccessDeniedError,
    AuthenticationError,
    DependencyTimeoutError,
    DependencyUnavailableError,
    EdgeCoreException,
    OperationNotFoundError,
    PermissionDeniedError,
    TenantNotFoundError,
    ValidationError,
)
from edge_shared.retry import RetryConfig
from edge_core.app.adapters.identity_client import IdentityClient
from edge_core.app.adapters.tenant_client import TenantAuthorityClient
from edge_core.app.adapters.workflow_client import WorkflowClient
from edge_core.app.operations.models import OperationState

BASE_URL = "http://authority.test"


class Recorder:
    """Mock transport handler that records requests and replays responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def make_client(cls, handler, attempts=1):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return cls(BASE_URL, client=http, retry_config=RetryConfig(max_attempts=attempts, base_delay=0, jitter=False))


TENANT_BODY = {
    "id": "t1",
    "name": "Acme",
    "status": "active",
    "subscriptionTier": "enterprise",
    "features": ["analytics"],
}


class TestIdentityClient:
    """Test cases for IdentityClient."""

    @pytest.mark.asyncio
    async def test_verify_token(self):
        handler = Recorder(httpx.Response(200, json={
            "valid": True,
            "user": {"id": "user-1", "email": "a@example.com", "tenantId": "t1", "roles": ["member"]},
        }))
        client = make_client(IdentityClient, handler)

        principal = await client.verify_token("tok")

        assert principal.id == "user-1"
        assert principal.tenant_id == "t1"
        assert handler.requests[0].url.path == "/auth/verify"

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        client = make_client(IdentityClient, Recorder(httpx.Response(401, json={"error": "nope"})))

        with pytest.raises(AuthenticationError) as exc_info:
            await client.verify_token("bad")

        assert exc_info.value.code == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_expired_token(self):
        client = make_client(IdentityClient, Recorder(httpx.Response(200, json={"valid": False, "error": "Token expired"})))

        with pytest.raises(AuthenticationError) as exc_info:
            await client.verify_token("old")

        assert exc_info.value.code == "TOKEN_EXPIRED"

    @pytest.mark.asyncio
    async def test_outage_is_unavailable_not_unauthenticated(self):
        request = httpx.Request("POST", f"{BASE_URL}/auth/verify")
        client = make_client(IdentityClient, Recorder(httpx.ConnectError("refused", request=request)))

        with pytest.raises(DependencyUnavailableError) as exc_info:
            await client.verify_token("tok")

        assert exc_info.value.status_code == 503


class TestTenantAuthorityClient:
    """Test cases for TenantAuthorityClient."""

    @pytest.mark.asyncio
    async def test_get_tenant_unwraps_envelope(self):
        handler = Recorder(httpx.Response(200, json={"data": TENANT_BODY}))
        client = make_client(TenantAuthorityClient, handler)

        tenant = await client.get_tenant("t1", token="tok")

        assert tenant.name == "Acme"
        assert tenant.subscription_tier.value == "enterprise"
        assert handler.requests[0].headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_unknown_tenant(self):
        client = make_client(TenantAuthorityClient, Recorder(httpx.Response(404)))

        with pytest.raises(TenantNotFoundError):
            await client.get_tenant("missing")

    @pytest.mark.asyncio
    async def test_rejected_update(self):
        client = make_client(TenantAuthorityClient, Recorder(httpx.Response(422, json={"error": "bad name"})))

        with pytest.raises(ValidationError) as exc_info:
            await client.update_tenant("t1", {"name": ""})

        assert exc_info.value.details["upstream"] == "bad name"

    @pytest.mark.asyncio
    async def test_validate_access_denial_is_an_answer(self):
        client = make_client(TenantAuthorityClient, Recorder(httpx.Response(403)))

        check = await client.validate_access("t1", "user-2")

        assert check.has_access is False

    @pytest.mark.asyncio
    async def test_forbidden_read(self):
        client = make_client(TenantAuthorityClient, Recorder(httpx.Response(403)))

        with pytest.raises(PermissionDeniedError):
            await client.get_configuration("t1")

    @pytest.mark.asyncio
    async def test_get_membership_fills_identity(self):
        client = make_client(
            TenantAuthorityClient,
            Recorder(httpx.Response(200, json={"membership": {"roles": ["admin"]}})),
        )

        membership = await client.get_membership("t1", "user-1")

        assert membership.tenant_id == "t1"
        assert membership.user_id == "user-1"
        assert membership.roles == ["admin"]

    @pytest.mark.asyncio
    async def test_missing_membership_is_denial(self):
        client = make_client(TenantAuthorityClient, Recorder(httpx.Response(404)))

        with pytest.raises(AccessDeniedError):
            await client.get_membership("t1", "user-2")

    @pytest.mark.asyncio
    async def test_list_memberships(self):
        handler = Recorder(httpx.Response(200, json={"memberships": [{"userId": "u1", "roles": ["member"]}]}))
        client = make_client(TenantAuthorityClient, handler)

        memberships = await client.list_memberships("t1", page=2, limit=10)

        assert [m.user_id for m in memberships] == ["u1"]
        assert handler.requests[0].url.params["page"] == "2"
        assert handler.requests[0].headers["X-Tenant-ID"] == "t1"

    @pytest.mark.asyncio
    async def test_list_user_tenants_missing_user(self):
        client = make_client(TenantAuthorityClient, Recorder(httpx.Response(404)))
        assert await client.list_user_tenants("ghost") == []

    @pytest.mark.asyncio
    async def test_switch_refused(self):
        client = make_client(TenantAuthorityClient, Recorder(httpx.Response(403)))

        with pytest.raises(AccessDeniedError):
            await client.switch_tenant("user-1", "t2", "t1")

    @pytest.mark.asyncio
    async def test_idempotent_read_is_retried(self):
        handler = Recorder(httpx.Response(503), httpx.Response(200, json=TENANT_BODY))
        client = make_client(TenantAuthorityClient, handler, attempts=2)

        tenant = await client.get_tenant("t1")

        assert tenant.id == "t1"
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_write_is_not_retried(self):
        handler = Recorder(httpx.Response(503), httpx.Response(200, json=TENANT_BODY))
        client = make_client(TenantAuthorityClient, handler, attempts=3)

        with pytest.raises(DependencyUnavailableError) as exc_info:
            await client.update_tenant("t1", {"name": "x"})

        assert exc_info.value.details["statusCode"] == 503
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        request = httpx.Request("GET", f"{BASE_URL}/api/v1/tenants/t1")
        client = make_client(TenantAuthorityClient, Recorder(httpx.ReadTimeout("slow", request=request)))

        with pytest.raises(DependencyTimeoutError) as exc_info:
            await client.get_tenant("t1")

        assert exc_info.value.status_code == 504

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self):
        handler = Recorder(httpx.Response(503))
        client = make_client(TenantAuthorityClient, handler)

        for _ in range(3):
            with pytest.raises(DependencyUnavailableError):
                await client.get_tenant("t1")

        with pytest.raises(DependencyUnavailableError) as exc_info:
            await client.get_tenant("t1")

        assert "circuit breaker open" in exc_info.value.message
        assert len(handler.requests) == 3
        assert client.circuit_breaker.is_open()

    @pytest.mark.asyncio
    async def test_not_found_does_not_trip_breaker(self):
        client = make_client(TenantAuthorityClient, Recorder(httpx.Response(404)))

        for _ in range(5):
            with pytest.raises(TenantNotFoundError):
                await client.get_tenant("missing")

        assert not client.circuit_breaker.is_open()

    @pytest.mark.asyncio
    async def test_health_check(self):
        client = make_client(TenantAuthorityClient, Recorder(httpx.Response(200, json={"status": "ok"})))
        assert await client.health_check() is True


class TestWorkflowClient:
    """Test cases for WorkflowClient."""

    @pytest.mark.asyncio
    async def test_initiate(self):
        handler = Recorder(httpx.Response(202, json={"type": "async", "operationId": "op-1"}))
        client = make_client(WorkflowClient, handler)

        response = await client.initiate("tenant-backup", {"a": 1}, tenant_id="t1", user_id="user-1")

        assert response["operationId"] == "op-1"
        assert handler.requests[0].url.path == "/api/v1/workflows/tenant-backup"

    @pytest.mark.asyncio
    async def test_rejected_initiation(self):
        client = make_client(WorkflowClient, Recorder(httpx.Response(400)))

        with pytest.raises(ValidationError):
            await client.initiate("tenant-backup", {})

    @pytest.mark.asyncio
    async def test_get_status(self):
        client = make_client(
            WorkflowClient,
            Recorder(httpx.Response(200, json={"data": {"status": "queued", "progress": {"percentage": 5}}})),
        )

        record = await client.get_status("op-1")

        assert record.operation_id == "op-1"
        assert record.state == OperationState.RUNNING

    @pytest.mark.asyncio
    async def test_unknown_operation(self):
        client = make_client(WorkflowClient, Recorder(httpx.Response(404)))

        with pytest.raises(OperationNotFoundError):
            await client.get_status("op-404")

    @pytest.mark.asyncio
    async def test_cancel_finished_operation(self):
        client = make_client(WorkflowClient, Recorder(httpx.Response(409)))

        with pytest.raises(EdgeCoreException) as exc_info:
            await client.cancel("op-1")

        assert exc_info.value.status_code == 409
        assert exc_info.value.code == "OPERATION_NOT_CANCELLABLE"
