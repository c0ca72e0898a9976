"""
Authorization service client for other services.
"""

import httpx
from typing import Any, Dict, Optional

from shared.config import BaseConfig
from shared.logging import get_logger
from shared.errors import AuthorizationError, ExternalServiceError, PrincipalNotFound


class AuthorizationClient:
    """Client for communicating with the Authorization service."""

    def __init__(self, authorization_service_url: str, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.authorization_service_url = authorization_service_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.logger = get_logger("authorization.client")

    async def check(self, principal_id: str, resource: str, operation: str,
                    apply_bypass: bool = True) -> Dict[str, Any]:
        """Return the raw decision payload for a request."""
        payload = {
            "principal_id": principal_id,
            "resource": resource,
            "operation": operation,
            "apply_bypass": apply_bypass
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.authorization_service_url}/authorization/check",
                    json=payload
                )
        except httpx.HTTPError as e:
            self.logger.error("Authorization service HTTP error", error=str(e))
            raise ExternalServiceError(
                "authorization",
                "Authorization service unavailable",
                details={"http_error": str(e)}
            )

        if response.status_code == 404:
            raise PrincipalNotFound(principal_id)

        if response.status_code != 200:
            self.logger.error(
                "Authorization service error",
                status_code=response.status_code,
                resource=resource,
                operation=operation
            )
            raise ExternalServiceError(
                "authorization",
                f"Unexpected status {response.status_code}",
                details={"status_code": response.status_code}
            )

        return response.json()

    async def require(self, principal_id: str, resource: str, operation: str) -> Dict[str, Any]:
        """Like ``check`` but raise AuthorizationError on deny."""
        result = await self.check(principal_id, resource, operation)

        if not result.get("allowed"):
            raise AuthorizationError(
                f"Access denied: {result.get('reason')}",
                details={"denied_by": result.get("denied_by"), "resource": resource, "operation": operation}
            )

        return result


def create_client(config: BaseConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> AuthorizationClient:
    """Build a client from the shared service configuration."""
    return AuthorizationClient(
        config.authorization_service_url,
        timeout=config.authorization_client_timeout,
        transport=transport
    )
