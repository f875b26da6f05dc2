"""
Clients for the external authorities.
"""

from .base import AuthorityClient, UpstreamServerError
from .identity_client import IdentityClient
from .tenant_client import TenantAuthorityClient
from .workflow_client import WorkflowClient

__all__ = [
    "AuthorityClient",
    "IdentityClient",
    "TenantAuthorityClient",
    "UpstreamServerError",
    "WorkflowClient",
]
