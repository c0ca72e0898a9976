"""
Caller-side enforcement of authorization decisions.

The evaluator only answers whether the rules allow a request. The
administrator bypass and the mapping of denies and outages to HTTP
responses live here.
"""

from typing import Callable, Optional

from fastapi import HTTPException, Request

from shared.logging import get_logger, set_principal_context
from shared.errors import ExternalServiceError, PrincipalNotFound
from shared.metrics import MetricsCollector
from .rules.engine import AuthorizationEvaluator
from .rules.interfaces import PrincipalDirectory
from .rules.models import Decision, Individual


class AuthorizationGuard:
    """Resolve once, apply the administrator bypass, then ask the evaluator."""

    def __init__(self, directory: PrincipalDirectory, evaluator: AuthorizationEvaluator,
                 metrics: Optional[MetricsCollector] = None):
        self.directory = directory
        self.evaluator = evaluator
        self.metrics = metrics
        self.logger = get_logger("authorization.guard")

    async def check(self, principal_id: str, resource: str, operation: str,
                    apply_bypass: bool = True) -> Decision:
        """Return the effective decision for a request.

        PrincipalNotFound and collaborator outages propagate; ``enforce``
        is the fail-closed wrapper for request handlers.
        """
        individual = await self.directory.resolve(principal_id)

        if apply_bypass and individual.is_administrator:
            return self._bypass(individual, resource, operation)

        return await self.evaluator.decide(individual, resource, operation)

    async def enforce(self, principal_id: Optional[str], resource: str, operation: str) -> Decision:
        """Raise HTTPException unless the request may proceed."""
        if not principal_id:
            raise HTTPException(status_code=401, detail="Authentication required")

        set_principal_context(principal_id)

        try:
            decision = await self.check(principal_id, resource, operation)
        except PrincipalNotFound:
            self.logger.warning("Unknown principal", principal_id=principal_id)
            raise HTTPException(status_code=401, detail="Please sign in again")
        except ExternalServiceError as e:
            # Fail closed: an unreadable rule store never lets a request through.
            self.logger.error(
                "Authorization unavailable, denying",
                principal_id=principal_id,
                resource=resource,
                operation=operation,
                error=e.message
            )
            if self.metrics:
                self.metrics.record_decision(False, 0.0)
            raise HTTPException(status_code=503, detail="Authorization temporarily unavailable")

        if not decision.allowed:
            raise HTTPException(
                status_code=403,
                detail=f"You are not permitted to {operation} {resource}"
            )

        return decision

    async def require_administrator(self, principal_id: Optional[str]) -> Individual:
        """Resolve ``principal_id`` and insist on the administrator designation."""
        if not principal_id:
            raise HTTPException(status_code=401, detail="Authentication required")

        try:
            individual = await self.directory.resolve(principal_id)
        except PrincipalNotFound:
            raise HTTPException(status_code=401, detail="Please sign in again")
        except ExternalServiceError:
            raise HTTPException(status_code=503, detail="Authorization temporarily unavailable")

        if not individual.is_administrator:
            self.logger.info("Administrator required", principal_id=principal_id)
            raise HTTPException(status_code=403, detail="Administrator access required")
        return individual

    def _bypass(self, individual: Individual, resource: str, operation: str) -> Decision:
        if self.metrics:
            self.metrics.record_bypass()
        self.logger.info(
            "Administrator bypass",
            individual_id=individual.individual_id,
            resource=resource,
            operation=operation
        )
        return Decision(
            allowed=True,
            reason="Administrator bypass",
            individual_id=individual.individual_id,
            bypassed=True
        )


def require_permission(guard_provider: Callable[[], AuthorizationGuard], resource: str,
                       operation: str, header: str = "X-Principal-Id") -> Callable:
    """FastAPI dependency factory enforcing one (resource, operation) pair.

    Usage::

        @app.post("/listings", dependencies=[Depends(require_permission(get_guard, "listings", "sell"))])
    """
    async def dependency(request: Request) -> Decision:
        return await guard_provider().enforce(request.headers.get(header), resource, operation)

    return dependency


def require_administrator(guard_provider: Callable[[], AuthorizationGuard],
                          header: str = "X-Principal-Id") -> Callable:
    """FastAPI dependency factory for administrator-only endpoints."""
    async def dependency(request: Request) -> Individual:
        return await guard_provider().require_administrator(request.headers.get(header))

    return dependency
