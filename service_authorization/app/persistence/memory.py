"""
In-memory rule store and principal directory.

Used for local runs (seeded from a YAML file) and by the tests.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Iterable, Tuple

from shared.logging import get_logger
from shared.errors import PrincipalNotFound
from ..rules.interfaces import PrincipalDirectory, RuleRepository
from ..rules.models import Individual, Rule, RuleTarget
from ..rules.validation import ensure_target_available


class InMemoryRuleStore(RuleRepository):
    """Dictionary-backed rule repository."""

    def __init__(self, rules: Optional[Iterable[Rule]] = None):
        self.logger = get_logger("authorization.persistence.memory")
        self.rules: Dict[str, Rule] = {}
        self._lock = asyncio.Lock()
        for rule in rules or []:
            ensure_target_available(self.rules.values(), rule)
            self.rules[rule.rule_id] = rule

    async def find_rule(self, target: RuleTarget) -> Optional[Rule]:
        for rule in self.rules.values():
            if rule.target == target:
                return rule
        return None

    async def list_rules(self, resource: Optional[str] = None) -> List[Rule]:
        rules = [
            rule for rule in self.rules.values()
            if resource is None or rule.target.resource == resource
        ]
        rules.sort(key=lambda r: (not r.target.is_global, r.target.resource or "", r.target.operation or ""))
        return rules

    async def get_rule(self, rule_id: str) -> Optional[Rule]:
        return self.rules.get(rule_id)

    async def save_rule(self, rule: Rule) -> Rule:
        async with self._lock:
            ensure_target_available(self.rules.values(), rule)
            if rule.rule_id in self.rules:
                rule.updated_at = datetime.now(timezone.utc)
            self.rules[rule.rule_id] = rule

        self.logger.info("Rule saved", rule_id=rule.rule_id, target=str(rule.target))
        return rule

    async def delete_rule(self, rule_id: str) -> bool:
        async with self._lock:
            rule = self.rules.pop(rule_id, None)

        if rule is None:
            self.logger.warning("Rule not found for deletion", rule_id=rule_id)
            return False

        self.logger.info("Rule deleted", rule_id=rule_id, target=str(rule.target))
        return True

    def replace_all(self, rules: Iterable[Rule]) -> None:
        """Swap in a new rule set, e.g. after reloading the seed file."""
        fresh: Dict[str, Rule] = {}
        for rule in rules:
            ensure_target_available(fresh.values(), rule)
            fresh[rule.rule_id] = rule
        self.rules = fresh
        self.logger.info("Rules replaced", total_rules=len(fresh))


class InMemoryPrincipalDirectory(PrincipalDirectory):
    """Maps login accounts to individuals held in memory."""

    def __init__(self):
        self.logger = get_logger("authorization.directory.memory")
        self.individuals: Dict[str, Individual] = {}
        self.accounts: Dict[str, str] = {}

    def register(self, individual: Individual, accounts: Optional[Iterable[str]] = None) -> Individual:
        """Add or replace an individual and link its login accounts.

        The individual id itself always resolves, so re-registration under a
        new account still lands on the same individual.
        """
        self.individuals[individual.individual_id] = individual
        self.accounts[individual.individual_id] = individual.individual_id
        for account in accounts or []:
            self.accounts[account] = individual.individual_id
        return individual

    def replace_all(self, individuals: Iterable[Tuple[Individual, Iterable[str]]]) -> None:
        """Swap in a new set of individuals; anyone not listed stops resolving."""
        fresh = InMemoryPrincipalDirectory()
        for individual, accounts in individuals:
            fresh.register(individual, accounts)
        self.individuals = fresh.individuals
        self.accounts = fresh.accounts
        self.logger.info("Individuals replaced", total_individuals=len(self.individuals))

    async def resolve(self, identity: str) -> Individual:
        individual_id = self.accounts.get(identity)
        if individual_id is None or individual_id not in self.individuals:
            self.logger.info("Principal not found", principal_id=identity)
            raise PrincipalNotFound(identity)
        return self.individuals[individual_id]
