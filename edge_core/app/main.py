"""
Edge core service: FastAPI application wiring the request pipeline to the
tenant, membership, analytics and workflow routes.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Body, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from edge_shared.base_service import BaseService
from edge_shared.circuit_breaker import CircuitBreaker, CircuitBreakerManager
from edge_shared.config import ServiceConfig
from edge_shared.errors import OperationNotFoundError, TenantRequiredError, ValidationError

from .access.permissions import CANCEL_WORKFLOW_PERMISSION, workflow_permission
from .access.validator import AccessValidator, AuthorizedContext
from .adapters.base import TRANSIENT_ERRORS
from .adapters.identity_client import IdentityClient
from .adapters.tenant_client import TenantAuthorityClient
from .adapters.workflow_client import WorkflowClient
from .caching.cache_manager import CacheManager, CacheTTLPolicy
from .caching.keys import CacheKeys
from .caching.store import RedisStore
from .domain.pipeline import RequestContext, RequestPipeline
from .domain.schemas import (
    MAX_BULK_INVITES,
    MAX_BULK_UPDATES,
    AnalyticsPeriod,
    BulkInviteRequest,
    BulkMembershipUpdateRequest,
    CacheFlushRequest,
    CacheType,
    TenantSwitchRequest,
    TenantUpdateRequest,
    WorkflowInitiateRequest,
)
from .operations.models import OperationRecord
from .operations.proxy import OperationProxy
from .operations.streaming import SSE_HEADERS, stream_operation_events
from .ratelimit.fixed_window import FixedWindowRateLimiter
from .ratelimit.policy import RateLimitPolicy
from .tenancy.models import Tenant, TenantMembership
from .tenancy.resolver import RequestInfo, TenantResolver


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _tenant_payload(tenant: Tenant) -> Dict[str, Any]:
    return tenant.model_dump(mode="json", by_alias=True)


class EdgeCoreService(BaseService):
    """Edge request-processing core."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[RedisStore] = None,
        identity_client: Optional[IdentityClient] = None,
        tenant_client: Optional[TenantAuthorityClient] = None,
        workflow_client: Optional[WorkflowClient] = None,
    ):
        super().__init__("edge_core", 8080, config)

        timeout = self.config.external_timeout_seconds
        self.circuit_breakers = CircuitBreakerManager()
        self.store = store or RedisStore(self.config.redis_url)
        self.cache = CacheManager(
            self.store,
            CacheTTLPolicy.from_config(self.config),
            keys=CacheKeys(self.config.cache_namespace),
            metrics=self.metrics,
        )
        self.identity_client = identity_client or IdentityClient(
            self.config.identity_service_url, timeout_seconds=timeout, circuit_breaker=self._breaker("identity")
        )
        self.tenant_client = tenant_client or TenantAuthorityClient(
            self.config.tenant_service_url, timeout_seconds=timeout, circuit_breaker=self._breaker("tenant_authority")
        )
        self.workflow_client = workflow_client or WorkflowClient(
            self.config.workflow_service_url, timeout_seconds=timeout, circuit_breaker=self._breaker("workflow_engine")
        )

        self.rate_limiter = FixedWindowRateLimiter(
            self.store,
            RateLimitPolicy.from_config(self.config),
            metrics=self.metrics,
            fail_open=self.config.rate_limit_fail_open,
        )
        self.resolver = TenantResolver(
            self.cache,
            self.tenant_client,
            reserved_subdomains=self.config.reserved_subdomains,
            metrics=self.metrics,
        )
        self.validator = AccessValidator(self.cache, self.tenant_client)
        self.operations = OperationProxy(
            self.workflow_client,
            self.cache,
            metrics=self.metrics,
            poll_interval=self.config.operation_poll_interval_seconds,
            sync_wait=self.config.operation_sync_wait_seconds,
        )
        self.pipeline = RequestPipeline(self.identity_client, self.resolver, self.validator, self.rate_limiter)

        self._setup_tenant_routes()
        self._setup_admin_routes()
        self._setup_workflow_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.edge_service = self

    def _breaker(self, name: str) -> CircuitBreaker:
        return self.circuit_breakers.get_circuit_breaker(
            name,
            failure_threshold=3,
            recovery_timeout=30.0,
            expected_exception=TRANSIENT_ERRORS,
        )

    async def shutdown(self):
        await self.identity_client.close()
        await self.tenant_client.close()
        await self.workflow_client.close()
        await self.store.close()

    async def _check_dependencies(self) -> Dict[str, str]:
        dependencies = {"cache_store": "ok" if await self.store.ping() else "unavailable"}
        for client in (self.identity_client, self.tenant_client, self.workflow_client):
            dependencies[client.service_name] = "circuit_open" if client.circuit_breaker.is_open() else "ok"
        return dependencies

    @staticmethod
    def _authorized(ctx: RequestContext) -> AuthorizedContext:
        if ctx.authorized is None:
            raise TenantRequiredError()
        return ctx.authorized

    def _setup_tenant_routes(self):
        """Tenant, membership, configuration and analytics routes."""

        @self.app.get("/api/tenant/current")
        async def get_current_tenant(request: Request):
            ctx = await self.pipeline.run(request, require_tenant=True)
            authorized = self._authorized(ctx)
            return {
                "tenant": _tenant_payload(authorized.tenant),
                "membership": authorized.context.membership.model_dump(mode="json", by_alias=True),
                "permissions": authorized.context.permissions,
                "features": authorized.context.features,
                "quotas": authorized.context.quotas.model_dump(mode="json", by_alias=True),
                "source": ctx.resolved.source.value,
                "timestamp": _now(),
            }

        @self.app.get("/api/tenants/{tenant_id}")
        async def get_tenant(tenant_id: str, request: Request):
            ctx = await self.pipeline.run(request, require_tenant=True)
            self.validator.require_permission(self._authorized(ctx), "tenant:read")
            return {
                "tenant": _tenant_payload(ctx.resolved.tenant),
                "cached": ctx.resolved.cache_hit,
                "timestamp": _now(),
            }

        @self.app.put("/api/tenants/{tenant_id}")
        async def update_tenant(tenant_id: str, request: Request, body: TenantUpdateRequest):
            ctx = await self.pipeline.run(request, "configuration", require_tenant=True)
            self.validator.require_permission(self._authorized(ctx), "tenant:write")

            await self.tenant_client.update_tenant(ctx.tenant_id, body.to_authority(), token=ctx.token)
            tenant = await self.resolver.refresh(ctx.tenant_id)
            return {"tenant": _tenant_payload(tenant), "timestamp": _now()}

        @self.app.get("/api/tenants/{tenant_id}/members")
        async def list_members(
            tenant_id: str,
            request: Request,
            page: int = Query(1, ge=1),
            limit: int = Query(50, ge=1, le=100),
        ):
            ctx = await self.pipeline.run(request, require_tenant=True)
            self.validator.require_permission(self._authorized(ctx), "tenant:members:read")

            # Only the default page is cached
            cacheable = page == 1 and limit == 50
            cached = await self.cache.get_memberships(ctx.tenant_id) if cacheable else None
            if cached is not None:
                members = [TenantMembership.model_validate(m) for m in cached]
            else:
                members = await self.tenant_client.list_memberships(ctx.tenant_id, page, limit, token=ctx.token)
                if cacheable:
                    await self.cache.set_memberships(ctx.tenant_id, [m.to_cache() for m in members])

            return {
                "members": [m.model_dump(mode="json", by_alias=True) for m in members],
                "page": page,
                "limit": limit,
                "cached": cached is not None,
                "timestamp": _now(),
            }

        @self.app.post("/api/tenants/{tenant_id}/members/bulk-update")
        async def bulk_update_members(tenant_id: str, request: Request, body: BulkMembershipUpdateRequest):
            ctx = await self.pipeline.run(request, "bulk_update_memberships", require_tenant=True)
            self.validator.require_permission(self._authorized(ctx), "tenant:members:manage")
            if len(body.updates) > MAX_BULK_UPDATES:
                raise ValidationError(
                    f"Maximum {MAX_BULK_UPDATES} membership updates allowed per bulk operation",
                    details={"count": len(body.updates)},
                )
            return await self._initiate(
                ctx,
                "bulk-update-memberships",
                {"updates": [u.model_dump(mode="json", by_alias=True, exclude_none=True) for u in body.updates]},
            )

        @self.app.post("/api/tenants/{tenant_id}/members/bulk-invite")
        async def bulk_invite_members(tenant_id: str, request: Request, body: BulkInviteRequest):
            ctx = await self.pipeline.run(request, "bulk_invite_users", require_tenant=True)
            self.validator.require_permission(self._authorized(ctx), "tenant:members:invite")
            if len(body.invitations) > MAX_BULK_INVITES:
                raise ValidationError(
                    f"Maximum {MAX_BULK_INVITES} invitations allowed per bulk operation",
                    details={"count": len(body.invitations)},
                )
            return await self._initiate(ctx, "bulk-invite-users", body.model_dump(mode="json", by_alias=True))

        @self.app.post("/api/tenant/switch")
        async def switch_tenant(request: Request, body: TenantSwitchRequest):
            ctx = await self.pipeline.run(request, "tenant_switch", resolve_tenant=False)

            target = await self.resolver.resolve(RequestInfo.build(headers={"X-Tenant-ID": body.target_tenant_id}))
            authorized = await self.validator.authorize(target, ctx.principal)

            result = await self.tenant_client.switch_tenant(
                ctx.user_id,
                body.target_tenant_id,
                body.current_tenant_id or ctx.principal.tenant_id,
                token=ctx.token,
            )
            await self.cache.apply(self.cache.contract.tenant_switched(ctx.user_id))

            return {
                "success": True,
                "newTenantId": authorized.tenant_id,
                "newSessionId": (result or {}).get("newSessionId"),
                "tenant": _tenant_payload(authorized.tenant),
                "permissions": authorized.context.permissions,
                "availableFeatures": authorized.context.features,
                "timestamp": _now(),
            }

        @self.app.get("/api/user/tenants")
        async def list_user_tenants(request: Request):
            ctx = await self.pipeline.run(request, resolve_tenant=False)

            cached = await self.cache.get_user_tenants(ctx.user_id)
            if cached is not None:
                tenants = [Tenant.model_validate(t) for t in cached]
            else:
                tenants = await self.tenant_client.list_user_tenants(ctx.user_id, token=ctx.token)
                await self.cache.set_user_tenants(ctx.user_id, [t.to_cache() for t in tenants])

            return {
                "tenants": [_tenant_payload(t) for t in tenants],
                "currentTenantId": ctx.principal.tenant_id,
                "cached": cached is not None,
                "timestamp": _now(),
            }

        @self.app.get("/api/tenants/{tenant_id}/analytics")
        async def get_analytics(
            tenant_id: str,
            request: Request,
            period: AnalyticsPeriod = Query(AnalyticsPeriod.DAY),
        ):
            ctx = await self.pipeline.run(request, "analytics", require_tenant=True)
            self.validator.require_permission(self._authorized(ctx), "tenant:analytics:read")

            analytics = await self.cache.get_analytics(ctx.tenant_id, period.value)
            cached = analytics is not None
            if not cached:
                analytics = await self.tenant_client.get_analytics(ctx.tenant_id, period.value, token=ctx.token)
                await self.cache.set_analytics(ctx.tenant_id, period.value, analytics)

            return {"analytics": analytics, "period": period.value, "cached": cached, "timestamp": _now()}

        @self.app.get("/api/tenants/{tenant_id}/configuration")
        async def get_configuration(tenant_id: str, request: Request):
            ctx = await self.pipeline.run(request, require_tenant=True)
            self.validator.require_permission(self._authorized(ctx), "tenant:config:read")

            configuration = await self.cache.get_configuration(ctx.tenant_id)
            cached = configuration is not None
            if not cached:
                configuration = await self.tenant_client.get_configuration(ctx.tenant_id, token=ctx.token)
                await self.cache.set_configuration(ctx.tenant_id, configuration)

            return {"configuration": configuration, "cached": cached, "timestamp": _now()}

        @self.app.put("/api/tenants/{tenant_id}/configuration")
        async def update_configuration(tenant_id: str, request: Request, configuration: Dict[str, Any] = Body(...)):
            ctx = await self.pipeline.run(request, "configuration", require_tenant=True)
            self.validator.require_permission(self._authorized(ctx), "tenant:config:write")

            updated = await self.tenant_client.update_configuration(ctx.tenant_id, configuration, token=ctx.token)
            await self.cache.apply(self.cache.contract.configuration_changed(ctx.tenant_id))
            return {"configuration": updated, "timestamp": _now()}

    def _setup_admin_routes(self):
        """Administrative cache routes."""

        @self.app.post("/api/admin/tenants/{tenant_id}/cache/flush")
        async def flush_tenant_cache(tenant_id: str, request: Request, body: Optional[CacheFlushRequest] = None):
            ctx = await self.pipeline.run(request, require_tenant=True)
            self.validator.require_role(self._authorized(ctx), "admin")

            cache_type = body.cache_type if body else CacheType.ALL
            contract = self.cache.contract
            if cache_type == CacheType.ALL:
                invalidation = contract.admin_flush(ctx.tenant_id)
            elif cache_type == CacheType.ANALYTICS:
                invalidation = contract.analytics_cleared(ctx.tenant_id)
            elif cache_type == CacheType.MEMBERSHIPS:
                invalidation = contract.membership_changed(ctx.tenant_id)
            else:
                invalidation = contract.configuration_changed(ctx.tenant_id)

            deleted = await self.cache.apply(invalidation)
            self.logger.info(
                "Tenant cache flushed",
                tenant_id=ctx.tenant_id,
                cache_type=cache_type.value,
                deleted=deleted,
            )
            return {
                "tenantId": ctx.tenant_id,
                "cacheType": cache_type.value,
                "invalidatedKeys": deleted,
                "timestamp": _now(),
            }

        @self.app.get("/api/admin/cache/stats")
        async def cache_stats(request: Request):
            ctx = await self.pipeline.run(request, require_tenant=True)
            self.validator.require_role(self._authorized(ctx), "admin")
            return self.cache.get_stats()

    def _setup_workflow_routes(self):
        """Long-running operation routes."""

        @self.app.post("/api/workflows/initiate")
        async def initiate_workflow(request: Request, body: WorkflowInitiateRequest):
            endpoint = body.workflow_type.replace("-", "_")
            if self.rate_limiter.policy.endpoint_limit(endpoint) is None:
                endpoint = "workflows"
            ctx = await self.pipeline.run(request, endpoint, require_tenant=True)

            permission = workflow_permission(body.workflow_type)
            if permission is None:
                raise ValidationError(
                    f"Unknown workflow type: {body.workflow_type}",
                    details={"workflowType": body.workflow_type},
                )
            self.validator.require_permission(self._authorized(ctx), permission)
            return await self._initiate(ctx, body.workflow_type, body.data, body.synchronous)

        @self.app.get("/api/workflows/{operation_id}/status")
        async def get_workflow_status(operation_id: str, request: Request):
            ctx = await self.pipeline.run(request, "workflows", require_tenant=True)
            record = await self._visible_operation(ctx, operation_id)
            return record.model_dump(mode="json", by_alias=True)

        @self.app.post("/api/workflows/{operation_id}/cancel")
        async def cancel_workflow(operation_id: str, request: Request):
            ctx = await self.pipeline.run(request, "workflows", require_tenant=True)
            self.validator.require_permission(self._authorized(ctx), CANCEL_WORKFLOW_PERMISSION)
            await self._visible_operation(ctx, operation_id)

            invalidation = await self.operations.cancel(operation_id, token=ctx.token, tenant_id=ctx.tenant_id)
            return {
                "operationId": operation_id,
                "cancelled": True,
                "invalidated": list(invalidation.keys),
                "timestamp": _now(),
            }

        @self.app.get("/api/workflows/{operation_id}/stream")
        async def stream_workflow(operation_id: str, request: Request):
            ctx = await self.pipeline.run(request, "workflows", require_tenant=True)
            await self._visible_operation(ctx, operation_id)

            subscription = self.operations.subscribe(operation_id, token=ctx.token, tenant_id=ctx.tenant_id)
            self.logger.info("Workflow stream started", operation_id=operation_id, tenant_id=ctx.tenant_id)
            return StreamingResponse(
                stream_operation_events(subscription, request.is_disconnected),
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )

    async def _visible_operation(self, ctx: RequestContext, operation_id: str) -> OperationRecord:
        """Status of an operation owned by the caller's tenant.

        Records from another tenant, or with no owning tenant at all, are
        reported as not found.
        """
        authorized = self._authorized(ctx)
        record = await self.operations.get_status(operation_id, token=ctx.token, tenant_id=authorized.tenant_id)
        if record.tenant_id != authorized.tenant_id:
            raise OperationNotFoundError(operation_id)
        return record

    async def _initiate(
        self,
        ctx: RequestContext,
        workflow_type: str,
        payload: Dict[str, Any],
        synchronous: bool = False,
    ) -> JSONResponse:
        result = await self.operations.initiate(
            workflow_type,
            payload,
            synchronous,
            tenant_id=ctx.tenant_id,
            user_id=ctx.user_id,
            token=ctx.token,
        )
        invalidation = self.cache.contract.for_workflow(workflow_type, ctx.tenant_id)
        if invalidation is not None:
            await self.cache.apply(invalidation)

        body = {**result.to_response(), "timestamp": _now()}
        return JSONResponse(status_code=200 if result.synchronous else 202, content=body)


def create_app():
    """Create FastAPI application."""
    service = EdgeCoreService()
    return service.app


if __name__ == "__main__":
    service = EdgeCoreService()
    service.run()
