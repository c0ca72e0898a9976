"""
PostgreSQL persistence layer for the Authorization Service.
"""

import asyncio
from typing import Dict, Any, Optional, List

import asyncpg

from shared.logging import get_logger
from shared.errors import (
    AccessLayerException, PrincipalNotFound, RuleConflictError,
    RuleStoreUnavailable, DirectoryUnavailable
)
from ..rules.interfaces import PrincipalDirectory, RuleRepository
from ..rules.models import Individual, Rule, RuleScope, RuleTarget

# Errors that mean "the database could not answer", as opposed to "no row".
DATABASE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

RULE_COLUMNS = "rule_id, scope, resource, operation, accepted_markers, description, created_at, updated_at"


class PostgreSQLPersistence:
    """Owns the connection pool and schema shared by the adapters."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10, command_timeout: float = 30.0):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("authorization.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except DATABASE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS authorization_rules (
                    rule_id VARCHAR(255) PRIMARY KEY,
                    scope VARCHAR(20) NOT NULL,
                    resource VARCHAR(100),
                    operation VARCHAR(100),
                    accepted_markers TEXT[] NOT NULL DEFAULT '{}',
                    description TEXT,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    CHECK (
                        (scope = 'global' AND resource IS NULL AND operation IS NULL)
                        OR (scope = 'operation' AND resource IS NOT NULL AND operation IS NOT NULL)
                    )
                );
            """)

            # One global row, one row per (resource, operation)
            await conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS uq_authorization_rules_global
                    ON authorization_rules(scope) WHERE scope = 'global';
            """)
            await conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS uq_authorization_rules_target
                    ON authorization_rules(resource, operation) WHERE scope = 'operation';
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS individuals (
                    individual_id VARCHAR(255) PRIMARY KEY,
                    is_administrator BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS individual_accounts (
                    account_id VARCHAR(255) PRIMARY KEY,
                    individual_id VARCHAR(255) NOT NULL REFERENCES individuals(individual_id) ON DELETE CASCADE
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS individual_markers (
                    individual_id VARCHAR(255) NOT NULL REFERENCES individuals(individual_id) ON DELETE CASCADE,
                    marker VARCHAR(100) NOT NULL,
                    PRIMARY KEY (individual_id, marker)
                );
            """)

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except DATABASE_ERRORS:
            return False


class PostgresRuleStore(RuleRepository):
    """Rule repository backed by the ``authorization_rules`` table."""

    def __init__(self, persistence: PostgreSQLPersistence):
        self.persistence = persistence
        self.logger = get_logger("authorization.persistence.rules")

    def _pool(self) -> asyncpg.Pool:
        if self.persistence.pool is None:
            raise RuleStoreUnavailable("PostgreSQL pool not started")
        return self.persistence.pool

    async def find_rule(self, target: RuleTarget) -> Optional[Rule]:
        try:
            async with self._pool().acquire() as conn:
                if target.is_global:
                    row = await conn.fetchrow(
                        f"SELECT {RULE_COLUMNS} FROM authorization_rules WHERE scope = 'global'"
                    )
                else:
                    row = await conn.fetchrow(
                        f"""SELECT {RULE_COLUMNS} FROM authorization_rules
                            WHERE scope = 'operation' AND resource = $1 AND operation = $2""",
                        target.resource, target.operation
                    )
        except DATABASE_ERRORS as e:
            self.logger.error("Error finding rule", target=str(target), error=str(e))
            raise RuleStoreUnavailable(details={"target": str(target), "error": str(e)})

        return self._row_to_rule(row) if row else None

    async def list_rules(self, resource: Optional[str] = None) -> List[Rule]:
        try:
            async with self._pool().acquire() as conn:
                if resource is None:
                    rows = await conn.fetch(f"""
                        SELECT {RULE_COLUMNS} FROM authorization_rules
                        ORDER BY scope = 'operation', resource, operation
                    """)
                else:
                    rows = await conn.fetch(f"""
                        SELECT {RULE_COLUMNS} FROM authorization_rules
                        WHERE resource = $1
                        ORDER BY operation
                    """, resource)
        except DATABASE_ERRORS as e:
            self.logger.error("Error listing rules", resource=resource, error=str(e))
            raise RuleStoreUnavailable(details={"error": str(e)})

        return [self._row_to_rule(row) for row in rows]

    async def get_rule(self, rule_id: str) -> Optional[Rule]:
        try:
            async with self._pool().acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT {RULE_COLUMNS} FROM authorization_rules WHERE rule_id = $1", rule_id
                )
        except DATABASE_ERRORS as e:
            self.logger.error("Error loading rule", rule_id=rule_id, error=str(e))
            raise RuleStoreUnavailable(details={"rule_id": rule_id, "error": str(e)})

        return self._row_to_rule(row) if row else None

    async def save_rule(self, rule: Rule) -> Rule:
        try:
            async with self._pool().acquire() as conn:
                row = await conn.fetchrow(f"""
                    INSERT INTO authorization_rules (
                        rule_id, scope, resource, operation, accepted_markers,
                        description, created_at, updated_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    ON CONFLICT (rule_id) DO UPDATE SET
                        accepted_markers = EXCLUDED.accepted_markers,
                        description = EXCLUDED.description,
                        updated_at = NOW()
                    RETURNING {RULE_COLUMNS}
                """,
                    rule.rule_id, rule.target.scope.value, rule.target.resource,
                    rule.target.operation, list(rule.accepted_markers), rule.description,
                    rule.created_at, rule.updated_at
                )
        except asyncpg.UniqueViolationError:
            raise RuleConflictError(
                f"A rule already exists for {rule.target}",
                {"target": str(rule.target)}
            )
        except DATABASE_ERRORS as e:
            self.logger.error("Error saving rule", rule_id=rule.rule_id, error=str(e))
            raise RuleStoreUnavailable(details={"rule_id": rule.rule_id, "error": str(e)})

        self.logger.info("Rule saved", rule_id=rule.rule_id, target=str(rule.target))
        return self._row_to_rule(row)

    async def delete_rule(self, rule_id: str) -> bool:
        try:
            async with self._pool().acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM authorization_rules WHERE rule_id = $1", rule_id
                )
        except DATABASE_ERRORS as e:
            self.logger.error("Error deleting rule", rule_id=rule_id, error=str(e))
            raise RuleStoreUnavailable(details={"rule_id": rule_id, "error": str(e)})

        if result == "DELETE 1":
            self.logger.info("Rule deleted", rule_id=rule_id)
            return True

        self.logger.warning("Rule not found for deletion", rule_id=rule_id)
        return False

    async def get_rule_stats(self) -> Dict[str, Any]:
        try:
            async with self._pool().acquire() as conn:
                stats = await conn.fetchrow("""
                    SELECT
                        COUNT(*) AS total_rules,
                        COUNT(*) FILTER (WHERE scope = 'global') AS global_rules,
                        COUNT(*) FILTER (WHERE cardinality(accepted_markers) > 0) AS restrictive_rules,
                        COUNT(DISTINCT resource) AS unique_resources
                    FROM authorization_rules
                """)
        except DATABASE_ERRORS as e:
            self.logger.error("Error getting rule stats", error=str(e))
            raise RuleStoreUnavailable(details={"error": str(e)})

        return dict(stats)

    async def health_check(self) -> bool:
        return await self.persistence.health_check()

    @staticmethod
    def _row_to_rule(row) -> Rule:
        """Convert database row to Rule object."""
        if row['scope'] == RuleScope.GLOBAL.value:
            target = RuleTarget.global_target()
        else:
            target = RuleTarget.for_operation(row['resource'], row['operation'])

        return Rule(
            rule_id=row['rule_id'],
            target=target,
            accepted_markers=tuple(row['accepted_markers'] or ()),
            description=row['description'],
            created_at=row['created_at'],
            updated_at=row['updated_at']
        )


class PostgresPrincipalDirectory(PrincipalDirectory):
    """Resolves login accounts through ``individual_accounts``."""

    def __init__(self, persistence: PostgreSQLPersistence):
        self.persistence = persistence
        self.logger = get_logger("authorization.directory.postgres")

    async def resolve(self, identity: str) -> Individual:
        if self.persistence.pool is None:
            raise DirectoryUnavailable("PostgreSQL pool not started")

        try:
            async with self.persistence.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT i.individual_id,
                           i.is_administrator,
                           COALESCE(array_agg(m.marker) FILTER (WHERE m.marker IS NOT NULL), '{}') AS markers
                    FROM individual_accounts a
                    JOIN individuals i ON i.individual_id = a.individual_id
                    LEFT JOIN individual_markers m ON m.individual_id = i.individual_id
                    WHERE a.account_id = $1
                    GROUP BY i.individual_id, i.is_administrator
                """, identity)
        except DATABASE_ERRORS as e:
            self.logger.error("Error resolving principal", principal_id=identity, error=str(e))
            raise DirectoryUnavailable(details={"principal_id": identity, "error": str(e)})

        if row is None:
            raise PrincipalNotFound(identity)

        return Individual(
            individual_id=row['individual_id'],
            markers=frozenset(row['markers'] or ()),
            is_administrator=row['is_administrator']
        )

    async def health_check(self) -> bool:
        return await self.persistence.health_check()
