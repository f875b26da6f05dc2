"""
Per-request pipeline: authenticate, resolve tenant, authorize, rate limit.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from fastapi import Request

from edge_shared.errors import AuthenticationError, TenantRequiredError
from edge_shared.logging import get_logger, set_request_id, set_user_context
from ..access.validator import AccessValidator, AuthorizedContext
from ..adapters.identity_client import IdentityClient
from ..ratelimit.fixed_window import FixedWindowRateLimiter, IdentityKeys, RateLimitDecision
from ..tenancy.models import Principal, ResolvedTenant
from ..tenancy.resolver import RequestInfo, TenantResolver, tenant_headers


@dataclass
class RequestContext:
    """Everything the pipeline learned about a request."""
    request_id: str
    client_ip: str
    principal: Optional[Principal] = None
    token: Optional[str] = None
    resolved: ResolvedTenant = field(default_factory=ResolvedTenant)
    authorized: Optional[AuthorizedContext] = None
    decision: Optional[RateLimitDecision] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def tenant_id(self) -> Optional[str]:
        return self.resolved.tenant_id if self.resolved.is_resolved else None

    @property
    def user_id(self) -> Optional[str]:
        return self.principal.id if self.principal else None


def get_client_ip(request: Request) -> str:
    """Extract the caller IP from standard headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"


def extract_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Invalid authorization header format", code="INVALID_TOKEN")
    return token.strip()


class RequestPipeline:
    """Runs the fixed pre-handler steps in order.

    Tenant resolution, access validation and rate limiting always run in that
    order; response headers gathered on the way are stashed on
    ``request.state.response_headers`` so they also reach error responses.
    """

    def __init__(
        self,
        identity_client: IdentityClient,
        resolver: TenantResolver,
        validator: AccessValidator,
        rate_limiter: FixedWindowRateLimiter,
    ):
        self.identity_client = identity_client
        self.resolver = resolver
        self.validator = validator
        self.rate_limiter = rate_limiter
        self.logger = get_logger("edge.pipeline")

    async def authenticate(self, request: Request, required: bool = True) -> Tuple[Optional[Principal], Optional[str]]:
        token = extract_bearer_token(request)
        if token is None:
            if required:
                raise AuthenticationError()
            return None, None

        principal = await self.identity_client.verify_token(token)
        set_user_context(user_id=principal.id)
        return principal, token

    async def run(
        self,
        request: Request,
        endpoint: Optional[str] = None,
        *,
        require_auth: bool = True,
        require_tenant: bool = False,
        resolve_tenant: bool = True,
    ) -> RequestContext:
        request_id = getattr(request.state, "request_id", None) or set_request_id(request.headers.get("X-Request-ID"))
        context = RequestContext(request_id=request_id, client_ip=get_client_ip(request))

        context.principal, context.token = await self.authenticate(request, required=require_auth)

        if resolve_tenant:
            context.resolved = await self.resolver.resolve(RequestInfo.from_request(request), context.principal)
        if require_tenant and not context.resolved.is_resolved:
            raise TenantRequiredError()
        if context.resolved.is_resolved:
            self._stash(request, context, tenant_headers(context.resolved.tenant))

        if context.resolved.is_resolved and context.principal is not None:
            context.authorized = await self.validator.authorize(context.resolved, context.principal)

        tenant = context.resolved.tenant
        context.decision = await self.rate_limiter.check(IdentityKeys(
            client_ip=context.client_ip,
            tenant_id=context.tenant_id,
            subscription_tier=tenant.subscription_tier.value if tenant else None,
            user_id=context.user_id,
            endpoint=endpoint,
        ))
        self._stash(request, context, context.decision.headers())
        context.decision.raise_for_rejection()

        return context

    @staticmethod
    def _stash(request: Request, context: RequestContext, headers: Dict[str, str]) -> None:
        context.headers.update(headers)
        stash = getattr(request.state, "response_headers", None)
        if stash is None:
            stash = {}
            request.state.response_headers = stash
        stash.update(headers)
