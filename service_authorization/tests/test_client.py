"""
Tests for the Authorization service client.
"""

import json

import httpx
import pytest

from shared.errors import AuthorizationError, ExternalServiceError, PrincipalNotFound
from shared.config import get_config
from service_authorization.app.client import AuthorizationClient, create_client


def client_for(handler):
    return AuthorizationClient("http://authorization:8011/", transport=httpx.MockTransport(handler))


class TestAuthorizationClient:
    """Test cases for AuthorizationClient."""

    @pytest.mark.asyncio
    async def test_check_posts_request(self):
        """The request body carries the principal and target."""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"allowed": True, "reason": "Allowed by rules"})

        result = await client_for(handler).check("alice", "listings", "sell")

        assert result["allowed"] is True
        assert seen["url"] == "http://authorization:8011/authorization/check"
        assert seen["body"] == {
            "principal_id": "alice",
            "resource": "listings",
            "operation": "sell",
            "apply_bypass": True
        }

    @pytest.mark.asyncio
    async def test_unknown_principal(self):
        """404 responses raise PrincipalNotFound."""
        client = client_for(lambda request: httpx.Response(404, json={"code": "PRINCIPAL_NOT_FOUND"}))

        with pytest.raises(PrincipalNotFound) as exc_info:
            await client.check("ghost", "listings", "sell")

        assert exc_info.value.identity == "ghost"

    @pytest.mark.asyncio
    async def test_server_error(self):
        """Other error statuses are external service errors."""
        client = client_for(lambda request: httpx.Response(503, json={"code": "RULE_STORE_UNAVAILABLE"}))

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.check("alice", "listings", "sell")

        assert exc_info.value.details["status_code"] == 503

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Transport failures are external service errors."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExternalServiceError):
            await client_for(handler).check("alice", "listings", "sell")

    @pytest.mark.asyncio
    async def test_require_denied(self):
        """require raises on deny."""
        client = client_for(lambda request: httpx.Response(200, json={
            "allowed": False,
            "reason": "Denied by global rule",
            "denied_by": "global"
        }))

        with pytest.raises(AuthorizationError) as exc_info:
            await client.require("alice", "listings", "sell")

        assert exc_info.value.details["denied_by"] == "global"

    @pytest.mark.asyncio
    async def test_require_allowed(self):
        """require returns the payload on allow."""
        client = client_for(lambda request: httpx.Response(200, json={"allowed": True}))

        assert (await client.require("alice", "listings", "sell"))["allowed"] is True

    @pytest.mark.asyncio
    async def test_create_client_uses_configuration(self):
        """URL and timeout come from the shared configuration."""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"allowed": True})

        config = get_config(
            "marketplace", 8000,
            authorization_service_url="http://authz.internal:9000",
            authorization_client_timeout=2.5
        )
        client = create_client(config, transport=httpx.MockTransport(handler))

        await client.check("alice", "listings", "sell")

        assert client.timeout == 2.5
        assert seen["url"] == "http://authz.internal:9000/authorization/check"
