"""
Edge request-processing core shared by every BFF service.

Each inbound request flows through one pipeline:
- Tenant resolution: header/path/query/principal/subdomain, cached record,
  status gate
- Access validation: effective permission set per (tenant, principal)
- Rate limiting: global, tenant, user and endpoint fixed windows
- Cached views of tenant and long-running operation state

Structure:
- app.main: FastAPI app, routes, and pipeline wiring.
- app.adapters: HTTP clients for the identity, tenant and workflow authorities.
- app.caching: Store adapter, cache manager and invalidation contracts.
- app.ratelimit: Fixed-window counters and their policy.
- app.tenancy: Tenant models and the resolver.
- app.access: Permission matching and the access validator.
- app.operations: Long-running operation proxy and status streaming.
- app.domain: The per-request pipeline.
"""
