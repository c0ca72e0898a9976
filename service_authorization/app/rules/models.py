"""
Rule and principal data models for the Authorization Service.
"""

from typing import Optional, List, Iterable, Tuple, FrozenSet
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class RuleScope(str, Enum):
    """Rule target variants."""
    GLOBAL = "global"
    OPERATION = "operation"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_markers(markers: Iterable[str]) -> Tuple[str, ...]:
    """Strip markers and drop duplicates, keeping first-seen order."""
    seen = []
    for marker in markers:
        marker = str(marker).strip()
        if marker and marker not in seen:
            seen.append(marker)
    return tuple(seen)


@dataclass(frozen=True)
class RuleTarget:
    """What a rule applies to.

    The global target is its own variant rather than a reserved resource
    name, so it can never collide with a real resource.
    """
    scope: RuleScope
    resource: Optional[str] = None
    operation: Optional[str] = None

    @classmethod
    def global_target(cls) -> "RuleTarget":
        return cls(scope=RuleScope.GLOBAL)

    @classmethod
    def for_operation(cls, resource: str, operation: str) -> "RuleTarget":
        return cls(scope=RuleScope.OPERATION, resource=resource, operation=operation)

    @property
    def is_global(self) -> bool:
        return self.scope == RuleScope.GLOBAL

    def __str__(self) -> str:
        if self.is_global:
            return "global"
        return f"{self.resource}#{self.operation}"


GLOBAL_TARGET = RuleTarget.global_target()


@dataclass
class Rule:
    """Authorization rule for one target."""
    rule_id: str
    target: RuleTarget
    accepted_markers: Tuple[str, ...] = ()
    description: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def marker_set(self) -> FrozenSet[str]:
        return frozenset(self.accepted_markers)

    @property
    def is_restrictive(self) -> bool:
        """An empty accepted set means the restriction is switched off."""
        return bool(self.accepted_markers)


@dataclass(frozen=True)
class Individual:
    """Durable identity behind one or more login accounts."""
    individual_id: str
    markers: FrozenSet[str] = frozenset()
    is_administrator: bool = False

    def has_marker(self, marker: str) -> bool:
        return marker in self.markers


@dataclass
class Decision:
    """Result of an authorization evaluation."""
    allowed: bool
    reason: str
    individual_id: Optional[str] = None
    matched_rules: List[str] = field(default_factory=list)
    denied_by: Optional[RuleTarget] = None
    bypassed: bool = False
    evaluation_time_ms: float = 0.0

    def __bool__(self) -> bool:
        return self.allowed


class AuthorizationCheckRequest(BaseModel):
    """Request model for an authorization check."""
    principal_id: str = Field(..., min_length=1, description="Authenticated principal identity")
    resource: str = Field(..., min_length=1, description="Resource name, e.g. a controller")
    operation: str = Field(..., min_length=1, description="Operation within the resource")
    apply_bypass: bool = Field(True, description="Honour the administrator bypass")


class AuthorizationCheckResponse(BaseModel):
    """Response model for an authorization check."""
    allowed: bool = Field(..., description="Whether the operation is permitted")
    reason: str = Field(..., description="Reason for the decision")
    matched_rules: List[str] = Field(default_factory=list, description="Rule IDs that were consulted")
    denied_by: Optional[str] = Field(None, description="Target of the rule that denied")
    bypassed: bool = Field(False, description="Allowed through the administrator bypass")
    evaluation_time_ms: float = Field(0.0, description="Evaluation time in milliseconds")

    @classmethod
    def from_decision(cls, decision: Decision) -> "AuthorizationCheckResponse":
        return cls(
            allowed=decision.allowed,
            reason=decision.reason,
            matched_rules=decision.matched_rules,
            denied_by=str(decision.denied_by) if decision.denied_by else None,
            bypassed=decision.bypassed,
            evaluation_time_ms=decision.evaluation_time_ms
        )


class RuleCreateRequest(BaseModel):
    """Request model for creating a rule."""
    scope: RuleScope = Field(RuleScope.OPERATION, description="global or operation")
    resource: Optional[str] = Field(None, description="Resource name")
    operation: Optional[str] = Field(None, description="Operation name")
    accepted_markers: List[str] = Field(default_factory=list, description="Markers that satisfy the rule")
    description: Optional[str] = Field(None, description="Rule description")


class RuleUpdateRequest(BaseModel):
    """Request model for updating a rule."""
    accepted_markers: Optional[List[str]] = Field(None, description="Markers that satisfy the rule")
    description: Optional[str] = Field(None, description="Rule description")


class RuleResponse(BaseModel):
    """Response model for rule operations."""
    rule_id: str
    scope: RuleScope
    resource: Optional[str]
    operation: Optional[str]
    accepted_markers: List[str]
    description: Optional[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_rule(cls, rule: Rule) -> "RuleResponse":
        return cls(
            rule_id=rule.rule_id,
            scope=rule.target.scope,
            resource=rule.target.resource,
            operation=rule.target.operation,
            accepted_markers=list(rule.accepted_markers),
            description=rule.description,
            created_at=rule.created_at,
            updated_at=rule.updated_at
        )


class RuleListResponse(BaseModel):
    """Response model for rule list."""
    rules: List[RuleResponse]
    total: int
    page: int
    limit: int
