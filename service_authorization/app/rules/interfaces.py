"""
Collaborator interfaces consumed by the evaluator.

The evaluator only ever reads through ``PrincipalDirectory.resolve`` and
``RuleStore.find_rule``. ``RuleRepository`` adds the administrative write
boundary used by the rules API and seed loading.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .models import Individual, Rule, RuleTarget


class PrincipalDirectory(ABC):
    """Resolves login identities to individuals."""

    @abstractmethod
    async def resolve(self, identity: str) -> Individual:
        """Return the individual behind ``identity``.

        Raises PrincipalNotFound when the identity is unknown and
        DirectoryUnavailable when the backend cannot be queried.
        """

    async def health_check(self) -> bool:
        return True


class RuleStore(ABC):
    """Read-only view of the rule table."""

    @abstractmethod
    async def find_rule(self, target: RuleTarget) -> Optional[Rule]:
        """Return the rule for ``target`` or None when unconfigured."""

    async def health_check(self) -> bool:
        return True


class RuleRepository(RuleStore):
    """Rule store with the administrative write boundary."""

    @abstractmethod
    async def list_rules(self, resource: Optional[str] = None) -> List[Rule]:
        ...

    @abstractmethod
    async def get_rule(self, rule_id: str) -> Optional[Rule]:
        ...

    @abstractmethod
    async def save_rule(self, rule: Rule) -> Rule:
        """Insert or update ``rule``.

        Raises RuleConflictError when another rule already owns the target.
        """

    @abstractmethod
    async def delete_rule(self, rule_id: str) -> bool:
        ...

    async def get_rule_stats(self) -> Dict[str, Any]:
        rules = await self.list_rules()
        return {
            "total_rules": len(rules),
            "global_rules": len([r for r in rules if r.target.is_global]),
            "restrictive_rules": len([r for r in rules if r.is_restrictive]),
            "unique_resources": len({r.target.resource for r in rules if not r.target.is_global}),
        }
