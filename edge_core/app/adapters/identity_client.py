"""
Identity Authority client.
"""

from pydantic import ValidationError as ModelValidationError

from edge_shared.errors import AuthenticationError
from ..tenancy.models import Principal
from .base import AuthorityClient


class IdentityClient(AuthorityClient):
    """Verifies bearer credentials. Mandatory: an outage is a 503, never a pass-through."""

    service_name = "identity"

    async def verify_token(self, token: str) -> Principal:
        """Verify a bearer token and return the principal it identifies."""
        response = await self.request("POST", "/auth/verify", json={"token": token})

        if response.status_code in (401, 403):
            raise AuthenticationError("Invalid or expired token", code="INVALID_TOKEN")
        if response.status_code != 200:
            raise AuthenticationError(
                f"Token verification failed: HTTP {response.status_code}",
                details={"statusCode": response.status_code},
                code="INVALID_TOKEN",
            )

        result = self.payload(response)
        if not result.get("valid"):
            error = (result.get("error") or "").lower()
            self.logger.warning("Token validation failed", error=error)
            if "expired" in error:
                raise AuthenticationError("Token has expired", code="TOKEN_EXPIRED")
            raise AuthenticationError("Invalid token", code="INVALID_TOKEN")

        claims = result.get("user") or result.get("claims") or {}
        try:
            return Principal.model_validate(claims)
        except ModelValidationError as exc:
            self.logger.error("Identity Authority returned a malformed principal", error=str(exc))
            raise AuthenticationError("Invalid token", code="INVALID_TOKEN") from exc
