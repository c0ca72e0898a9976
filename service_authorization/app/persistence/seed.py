"""
YAML seed files for the in-memory backend.

Example::

    rules:
      - scope: global
        accepted_markers: [beta-tester]
      - resource: listings
        operation: sell
        accepted_markers: [verified-seller]
    individuals:
      - id: ind-1
        markers: [beta-tester, verified-seller]
        administrator: false
        accounts: [alice, alice@example.com]
"""

import uuid
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import yaml

from shared.logging import get_logger
from shared.errors import ValidationError
from ..rules.models import Individual, Rule, RuleScope
from ..rules.validation import build_target, clean_markers, find_problems, find_individual_problems
from .memory import InMemoryPrincipalDirectory, InMemoryRuleStore

logger = get_logger("authorization.persistence.seed")


def read_seed_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read and parse a seed file, raising ValidationError on bad YAML."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}", {"path": str(path)})
    except OSError as e:
        raise ValidationError(f"Cannot read seed file {path}: {e}", {"path": str(path)})

    if not isinstance(data, dict):
        raise ValidationError("Seed file must contain a mapping", {"path": str(path)})
    return data


def rules_from_entries(entries: List[Dict[str, Any]]) -> List[Rule]:
    """Build rules from raw entries, refusing the whole set on any problem."""
    problems = find_problems(entries)
    if problems:
        raise ValidationError("Invalid rule definitions", {"problems": problems})

    rules = []
    for entry in entries:
        target = build_target(
            entry.get("scope", RuleScope.OPERATION.value),
            entry.get("resource"),
            entry.get("operation")
        )
        rules.append(Rule(
            rule_id=str(entry.get("rule_id") or uuid.uuid5(uuid.NAMESPACE_URL, f"bazaar-rule:{target}")),
            target=target,
            accepted_markers=clean_markers(entry.get("accepted_markers")),
            description=entry.get("description")
        ))
    return rules


def individuals_from_entries(entries: List[Dict[str, Any]]) -> List[Tuple[Individual, List[str]]]:
    """Build (individual, accounts) pairs, refusing the whole set on any problem."""
    problems = find_individual_problems(entries)
    if problems:
        raise ValidationError("Invalid individual definitions", {"problems": problems})

    result = []
    for entry in entries:
        individual = Individual(
            individual_id=str(entry["id"]).strip(),
            markers=frozenset(clean_markers(entry.get("markers"))),
            is_administrator=bool(entry.get("administrator", False))
        )
        result.append((individual, [str(a).strip() for a in entry.get("accounts") or []]))
    return result


def parse_seed(path: Union[str, Path]) -> Tuple[List[Rule], List[Tuple[Individual, List[str]]]]:
    """Read and validate a seed file without touching any backend."""
    data = read_seed_file(path)

    rules = rules_from_entries(_section(data, "rules"))
    individuals = individuals_from_entries(_section(data, "individuals"))
    return rules, individuals


def apply_seed(rules: List[Rule],
               individuals: List[Tuple[Individual, List[str]]],
               rule_store: InMemoryRuleStore,
               directory: InMemoryPrincipalDirectory) -> Dict[str, int]:
    """Replace the contents of the in-memory backends with parsed seed data."""
    rule_store.replace_all(rules)
    directory.replace_all(individuals)
    return {"rules": len(rules), "individuals": len(individuals)}


def load_seed(path: Union[str, Path],
              rule_store: InMemoryRuleStore,
              directory: InMemoryPrincipalDirectory) -> Dict[str, int]:
    """Replace the contents of the in-memory backends with a seed file.

    Both sections are validated before either backend is touched.
    """
    counts = apply_seed(*parse_seed(path), rule_store, directory)
    logger.info("Seed file loaded", path=str(path), **counts)
    return counts


def _section(data: Dict[str, Any], name: str) -> List[Any]:
    entries = data.get(name) or []
    if not isinstance(entries, list):
        raise ValidationError(f"{name} must be a list", {"section": name})
    return entries
