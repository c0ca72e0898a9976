"""
Authorization service for the Bazaar Access Layer.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, Query

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import AccessLayerException, RuleNotFoundError, ValidationError

from .guard import AuthorizationGuard, require_administrator
from .rules.engine import AuthorizationEvaluator
from .rules.interfaces import PrincipalDirectory, RuleRepository
from .rules.models import (
    Rule, AuthorizationCheckRequest, AuthorizationCheckResponse,
    RuleCreateRequest, RuleUpdateRequest, RuleResponse, RuleListResponse
)
from .rules.validation import build_target, clean_markers
from .persistence.memory import InMemoryRuleStore, InMemoryPrincipalDirectory
from .persistence.postgres import PostgreSQLPersistence, PostgresRuleStore, PostgresPrincipalDirectory
from .persistence.seed import parse_seed, apply_seed

SERVICE_NAME = "authorization"
SERVICE_PORT = 8011


class AuthorizationService(BaseService):
    """Authorization service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None,
                 rule_store: Optional[RuleRepository] = None,
                 directory: Optional[PrincipalDirectory] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config)

        self.persistence: Optional[PostgreSQLPersistence] = None
        if rule_store is None or directory is None:
            rule_store, directory = self._build_backends()

        self.rule_store = rule_store
        self.directory = directory
        self.evaluator = AuthorizationEvaluator(directory, rule_store, self.metrics)
        self.guard = AuthorizationGuard(directory, self.evaluator, self.metrics)

        self._setup_authorization_routes()

    def _build_backends(self):
        backend = self.config.rule_store_backend.lower()

        if backend == "memory":
            return InMemoryRuleStore(), InMemoryPrincipalDirectory()

        if backend == "postgres":
            self.persistence = PostgreSQLPersistence(
                self.config.postgres_dsn,
                min_size=self.config.postgres_min_pool_size,
                max_size=self.config.postgres_max_pool_size,
                command_timeout=self.config.postgres_command_timeout
            )
            return PostgresRuleStore(self.persistence), PostgresPrincipalDirectory(self.persistence)

        raise AccessLayerException("INVALID_CONFIG", f"Unknown rule store backend: {backend}")

    def _setup_authorization_routes(self):
        """Set up authorization-specific routes."""

        admin_only = Depends(require_administrator(lambda: self.guard, self.config.principal_header))

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Bazaar Access Layer - Authorization Service",
                "version": "1.0.0",
                "backend": self.config.rule_store_backend,
                "capabilities": ["rule_evaluation", "administrator_bypass", "rule_administration"]
            }

        @self.app.post("/authorization/check", response_model=AuthorizationCheckResponse)
        async def check_authorization(request: AuthorizationCheckRequest):
            """Decide whether a principal may perform an operation."""
            decision = await self.guard.check(
                request.principal_id,
                request.resource,
                request.operation,
                apply_bypass=request.apply_bypass
            )
            return AuthorizationCheckResponse.from_decision(decision)

        @self.app.get("/authorization/rules", response_model=RuleListResponse, dependencies=[admin_only])
        async def list_rules(
            resource: Optional[str] = Query(None, description="Filter by resource"),
            page: int = Query(1, ge=1, description="Page number"),
            limit: int = Query(50, ge=1, le=100, description="Items per page")
        ):
            """List rules with optional filtering."""
            rules = await self.rule_store.list_rules(resource)

            start_idx = (page - 1) * limit
            return RuleListResponse(
                rules=[RuleResponse.from_rule(rule) for rule in rules[start_idx:start_idx + limit]],
                total=len(rules),
                page=page,
                limit=limit
            )

        @self.app.get("/authorization/rules/{rule_id}", response_model=RuleResponse, dependencies=[admin_only])
        async def get_rule(rule_id: str):
            """Get a single rule."""
            rule = await self.rule_store.get_rule(rule_id)
            if rule is None:
                raise RuleNotFoundError(rule_id)
            return RuleResponse.from_rule(rule)

        @self.app.post("/authorization/rules", response_model=RuleResponse, status_code=201,
                       dependencies=[admin_only])
        async def create_rule(request: RuleCreateRequest):
            """Create a rule for a target that has none yet."""
            rule = Rule(
                rule_id=str(uuid.uuid4()),
                target=build_target(request.scope, request.resource, request.operation),
                accepted_markers=clean_markers(request.accepted_markers),
                description=request.description
            )

            saved = await self.rule_store.save_rule(rule)
            self.logger.info("Rule created", rule_id=saved.rule_id, target=str(saved.target))
            return RuleResponse.from_rule(saved)

        @self.app.put("/authorization/rules/{rule_id}", response_model=RuleResponse, dependencies=[admin_only])
        async def update_rule(rule_id: str, request: RuleUpdateRequest):
            """Change the accepted markers or description of a rule."""
            rule = await self.rule_store.get_rule(rule_id)
            if rule is None:
                raise RuleNotFoundError(rule_id)

            if request.accepted_markers is not None:
                rule.accepted_markers = clean_markers(request.accepted_markers)
            if request.description is not None:
                rule.description = request.description
            rule.updated_at = datetime.now(timezone.utc)

            saved = await self.rule_store.save_rule(rule)
            self.logger.info(
                "Rule updated",
                rule_id=rule_id,
                target=str(saved.target),
                accepted_markers=list(saved.accepted_markers)
            )
            return RuleResponse.from_rule(saved)

        @self.app.delete("/authorization/rules/{rule_id}", dependencies=[admin_only])
        async def delete_rule(rule_id: str):
            """Delete a rule, lifting its restriction."""
            if not await self.rule_store.delete_rule(rule_id):
                raise RuleNotFoundError(rule_id)

            self.logger.info("Rule deleted", rule_id=rule_id)
            return {"success": True, "message": "Rule deleted successfully"}

        @self.app.post("/authorization/rules/reload", dependencies=[admin_only])
        async def reload_rules():
            """Re-read the seed file into the in-memory backend."""
            if not self.config.rules_seed_file or not isinstance(self.rule_store, InMemoryRuleStore) \
                    or not isinstance(self.directory, InMemoryPrincipalDirectory):
                raise ValidationError("Reload is only available for the seeded in-memory backend")

            counts = await self._load_seed_file()
            return {"success": True, **counts}

        @self.app.get("/authorization/stats", dependencies=[admin_only])
        async def get_stats():
            """Get authorization service statistics."""
            return {
                "rules": await self.rule_store.get_rule_stats(),
                "backend": self.config.rule_store_backend,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

    async def _check_dependencies(self):
        """Check authorization service dependencies."""
        return {
            "rule_store": "ok" if await self.rule_store.health_check() else "error",
            "principal_directory": "ok" if await self.directory.health_check() else "error",
        }

    async def _load_seed_file(self):
        """Parse the seed file off the event loop, then swap both backends at once."""
        path = self.config.rules_seed_file
        rules, individuals = await asyncio.to_thread(parse_seed, path)
        counts = apply_seed(rules, individuals, self.rule_store, self.directory)
        self.logger.info("Seed file loaded", path=path, **counts)
        return counts

    async def start(self):
        """Start authorization service components."""
        if self.persistence is not None:
            await self.persistence.start()

        if self.config.rules_seed_file and isinstance(self.rule_store, InMemoryRuleStore) \
                and isinstance(self.directory, InMemoryPrincipalDirectory):
            await self._load_seed_file()

        self.logger.info("Authorization service started", backend=self.config.rule_store_backend)

    async def stop(self):
        """Stop authorization service components."""
        if self.persistence is not None:
            await self.persistence.stop()

        self.logger.info("Authorization service stopped")


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create authorization service application."""
    service = AuthorizationService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    AuthorizationService(get_config(SERVICE_NAME, SERVICE_PORT)).run()
