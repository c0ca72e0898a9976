"""
Write-boundary checks for rule data.

The evaluator trusts one rule per target and at most one global rule; these
helpers are where that is enforced before anything reaches a store.
"""

from typing import Any, Dict, Iterable, List, Optional

from shared.errors import RuleConflictError, ValidationError
from .models import Rule, RuleScope, RuleTarget, normalize_markers


def build_target(scope: Any, resource: Optional[str] = None, operation: Optional[str] = None) -> RuleTarget:
    """Build a rule target from loosely typed input."""
    try:
        scope = RuleScope(scope)
    except ValueError:
        raise ValidationError(f"Unknown rule scope: {scope!r}", {"scope": scope})

    resource = (resource or "").strip() or None
    operation = (operation or "").strip() or None

    if scope == RuleScope.GLOBAL:
        if resource or operation:
            raise ValidationError(
                "Global rules cannot name a resource or operation",
                {"resource": resource, "operation": operation}
            )
        return RuleTarget.global_target()

    if not resource or not operation:
        raise ValidationError(
            "Operation rules need both a resource and an operation",
            {"resource": resource, "operation": operation}
        )
    return RuleTarget.for_operation(resource, operation)


def clean_markers(markers: Optional[Iterable[Any]]) -> tuple:
    """Normalise a marker list, rejecting blank entries.

    A bare string is refused rather than iterated character by character.
    """
    if markers is None:
        return ()
    if not isinstance(markers, (list, tuple)):
        raise ValidationError("Markers must be a list", {"markers": str(markers)})

    for marker in markers:
        if not isinstance(marker, str) or not marker.strip():
            raise ValidationError("Markers must be non-empty strings", {"marker": marker})
    return normalize_markers(markers)



def ensure_target_available(rules: Iterable[Rule], candidate: Rule) -> None:
    """Raise RuleConflictError if another rule already owns ``candidate.target``."""
    for rule in rules:
        if rule.rule_id != candidate.rule_id and rule.target == candidate.target:
            raise RuleConflictError(
                f"A rule already exists for {candidate.target}",
                {"target": str(candidate.target), "existing_rule_id": rule.rule_id}
            )


def find_problems(entries: Iterable[Dict[str, Any]]) -> List[str]:
    """Report every problem in a list of raw rule entries without raising."""
    problems = []
    seen: Dict[RuleTarget, int] = {}

    for index, entry in enumerate(entries):
        label = f"rule #{index + 1}"
        if not isinstance(entry, dict):
            problems.append(f"{label}: must be a mapping")
            continue

        try:
            target = build_target(
                entry.get("scope", RuleScope.OPERATION.value),
                entry.get("resource"),
                entry.get("operation")
            )
        except ValidationError as e:
            problems.append(f"{label}: {e.message}")
            continue

        try:
            clean_markers(entry.get("accepted_markers"))
        except ValidationError as e:
            problems.append(f"{label}: {e.message}")

        if target in seen:
            problems.append(f"{label}: duplicate target {target} (first defined by rule #{seen[target] + 1})")
        else:
            seen[target] = index

    return problems


def find_individual_problems(entries: Iterable[Dict[str, Any]]) -> List[str]:
    """Report every problem in a list of raw individual entries without raising.

    Each login account, and each individual id, may belong to one individual only.
    """
    problems = []
    owners: Dict[str, str] = {}
    seen_ids = set()

    for index, entry in enumerate(entries):
        label = f"individual #{index + 1}"
        if not isinstance(entry, dict):
            problems.append(f"{label}: must be a mapping")
            continue

        individual_id = str(entry.get("id") or "").strip()
        if not individual_id:
            problems.append(f"{label}: id is required")
            continue
        if individual_id in seen_ids:
            problems.append(f"{label}: duplicate id {individual_id!r}")
            continue
        seen_ids.add(individual_id)

        try:
            clean_markers(entry.get("markers"))
        except ValidationError as e:
            problems.append(f"{label}: {e.message}")

        accounts = entry.get("accounts")
        if accounts is None:
            accounts = []
        elif not isinstance(accounts, (list, tuple)):
            problems.append(f"{label}: accounts must be a list")
            continue

        for account in [individual_id, *accounts]:
            account = str(account).strip()
            if not account:
                problems.append(f"{label}: accounts must be non-empty")
                continue
            owner = owners.setdefault(account, individual_id)
            if owner != individual_id:
                problems.append(f"{label}: account {account!r} already belongs to {owner}")

    return problems
