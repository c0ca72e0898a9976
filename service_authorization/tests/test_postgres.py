"""
Unit tests for the PostgreSQL adapters, with asyncpg mocked out.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg

from shared.errors import (
    AccessLayerException, PrincipalNotFound, RuleConflictError,
    RuleStoreUnavailable, DirectoryUnavailable
)
from service_authorization.app.rules.models import Rule, RuleTarget, GLOBAL_TARGET
from service_authorization.app.persistence.postgres import (
    PostgreSQLPersistence, PostgresRuleStore, PostgresPrincipalDirectory
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def rule_row(**overrides):
    row = {
        "rule_id": "rule-1",
        "scope": "operation",
        "resource": "listings",
        "operation": "sell",
        "accepted_markers": ["verified_seller"],
        "description": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


class TestPostgresAdapters:
    """Test cases for PostgresRuleStore and PostgresPrincipalDirectory."""

    @pytest.fixture
    def conn(self):
        """Mock connection."""
        conn = MagicMock()
        conn.fetchrow = AsyncMock()
        conn.fetch = AsyncMock()
        conn.execute = AsyncMock()
        conn.fetchval = AsyncMock()
        return conn

    @pytest.fixture
    def persistence(self, conn):
        """Persistence with a mock pool handing out ``conn``."""
        persistence = PostgreSQLPersistence("postgres://test")
        pool = MagicMock()
        pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
        pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
        persistence.pool = pool
        return persistence

    @pytest.fixture
    def store(self, persistence):
        return PostgresRuleStore(persistence)

    @pytest.fixture
    def directory(self, persistence):
        return PostgresPrincipalDirectory(persistence)

    @pytest.mark.asyncio
    async def test_find_specific_rule(self, store, conn):
        """Specific lookups pass resource and operation as parameters."""
        conn.fetchrow.return_value = rule_row()

        rule = await store.find_rule(RuleTarget.for_operation("listings", "sell"))

        assert rule.target == RuleTarget.for_operation("listings", "sell")
        assert rule.accepted_markers == ("verified_seller",)
        args = conn.fetchrow.call_args[0]
        assert args[1:] == ("listings", "sell")

    @pytest.mark.asyncio
    async def test_find_global_rule(self, store, conn):
        """Global rows map back to the global target."""
        conn.fetchrow.return_value = rule_row(scope="global", resource=None, operation=None, accepted_markers=[])

        rule = await store.find_rule(GLOBAL_TARGET)

        assert rule.target.is_global
        assert rule.accepted_markers == ()
        assert "scope = 'global'" in conn.fetchrow.call_args[0][0]

    @pytest.mark.asyncio
    async def test_missing_rule_is_none(self, store, conn):
        """No row means no rule, not an error."""
        conn.fetchrow.return_value = None

        assert await store.find_rule(GLOBAL_TARGET) is None

    @pytest.mark.asyncio
    async def test_database_error_becomes_rule_store_unavailable(self, store, conn):
        """Driver errors surface as RuleStoreUnavailable."""
        conn.fetchrow.side_effect = asyncpg.PostgresError("connection lost")

        with pytest.raises(RuleStoreUnavailable):
            await store.find_rule(GLOBAL_TARGET)

    @pytest.mark.asyncio
    async def test_pool_not_started(self):
        """Lookups before start() fail as unavailable."""
        store = PostgresRuleStore(PostgreSQLPersistence("postgres://test"))

        with pytest.raises(RuleStoreUnavailable):
            await store.find_rule(GLOBAL_TARGET)

    @pytest.mark.asyncio
    async def test_save_rule(self, store, conn):
        """Saving returns the stored row."""
        conn.fetchrow.return_value = rule_row(accepted_markers=["a", "b"])
        rule = Rule(rule_id="rule-1", target=RuleTarget.for_operation("listings", "sell"),
                    accepted_markers=("a", "b"))

        saved = await store.save_rule(rule)

        assert saved.accepted_markers == ("a", "b")
        args = conn.fetchrow.call_args[0]
        assert args[1:6] == ("rule-1", "operation", "listings", "sell", ["a", "b"])

    @pytest.mark.asyncio
    async def test_save_rule_unique_violation(self, store, conn):
        """Unique index violations become RuleConflictError."""
        conn.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(RuleConflictError):
            await store.save_rule(Rule(rule_id="rule-2", target=GLOBAL_TARGET))

    @pytest.mark.asyncio
    async def test_delete_rule(self, store, conn):
        """Delete reports whether a row went away."""
        conn.execute.return_value = "DELETE 1"
        assert await store.delete_rule("rule-1") is True

        conn.execute.return_value = "DELETE 0"
        assert await store.delete_rule("rule-1") is False

    @pytest.mark.asyncio
    async def test_list_rules(self, store, conn):
        """Listing maps every row."""
        conn.fetch.return_value = [
            rule_row(rule_id="g", scope="global", resource=None, operation=None),
            rule_row(),
        ]

        rules = await store.list_rules()

        assert [r.rule_id for r in rules] == ["g", "rule-1"]

    @pytest.mark.asyncio
    async def test_resolve_individual(self, directory, conn):
        """Accounts resolve to individuals with their markers."""
        conn.fetchrow.return_value = {
            "individual_id": "ind-1",
            "is_administrator": False,
            "markers": ["beta", "verified"],
        }

        individual = await directory.resolve("alice")

        assert individual.individual_id == "ind-1"
        assert individual.markers == frozenset({"beta", "verified"})
        assert conn.fetchrow.call_args[0][1] == "alice"

    @pytest.mark.asyncio
    async def test_resolve_unknown_account(self, directory, conn):
        """Unknown accounts raise PrincipalNotFound."""
        conn.fetchrow.return_value = None

        with pytest.raises(PrincipalNotFound):
            await directory.resolve("nobody")

    @pytest.mark.asyncio
    async def test_resolve_database_error(self, directory, conn):
        """Driver errors surface as DirectoryUnavailable."""
        conn.fetchrow.side_effect = OSError("connection refused")

        with pytest.raises(DirectoryUnavailable):
            await directory.resolve("alice")

    @pytest.mark.asyncio
    async def test_health_check(self, persistence, conn):
        """Health check runs a trivial query."""
        conn.fetchval.return_value = 1
        assert await persistence.health_check() is True

        conn.fetchval.side_effect = asyncpg.PostgresError("down")
        assert await persistence.health_check() is False

    @pytest.mark.asyncio
    async def test_start_failure(self):
        """Pool creation failures are reported as POSTGRES_START_FAILED."""
        persistence = PostgreSQLPersistence("postgres://test")

        with patch("service_authorization.app.persistence.postgres.asyncpg.create_pool",
                   AsyncMock(side_effect=OSError("refused"))):
            with pytest.raises(AccessLayerException) as exc_info:
                await persistence.start()

        assert exc_info.value.code == "POSTGRES_START_FAILED"
