"""
Rule evaluation engine for the Authorization Service.
"""

import time
from typing import Optional, Tuple

from shared.logging import get_logger
from shared.errors import ValidationError
from shared.metrics import MetricsCollector
from shared.tracing import trace_operation, add_span_attributes
from .interfaces import PrincipalDirectory, RuleStore
from .models import Rule, RuleTarget, Individual, Decision, GLOBAL_TARGET


def rule_allows(rule: Rule, individual: Individual) -> bool:
    """Check a single rule against an individual's markers.

    An empty accepted set is permissive: the restriction exists but is
    switched off. Otherwise one shared marker is enough.
    """
    if not rule.accepted_markers:
        return True
    return not rule.marker_set.isdisjoint(individual.markers)


class AuthorizationEvaluator:
    """Global-then-specific rule evaluation.

    Nothing is kept between calls; every evaluation reads the rule store.
    """

    def __init__(self, directory: PrincipalDirectory, rule_store: RuleStore,
                 metrics: Optional[MetricsCollector] = None):
        self.directory = directory
        self.rule_store = rule_store
        self.metrics = metrics
        self.logger = get_logger("authorization.evaluator")

    async def evaluate(self, principal_identity: str, resource: str, operation: str) -> Decision:
        """Resolve ``principal_identity`` and decide on (resource, operation).

        Raises PrincipalNotFound before any rule lookup when the identity is
        unknown. Collaborator outages propagate unchanged.
        """
        if not principal_identity:
            raise ValidationError("Principal identity is required")
        self._validate_request(resource, operation)

        with trace_operation("authorization.evaluate", resource=resource, operation=operation):
            individual = await self.directory.resolve(principal_identity)
            return await self._decide(individual, resource, operation)

    async def decide(self, individual: Individual, resource: str, operation: str) -> Decision:
        """Decide for an individual the caller has already resolved."""
        self._validate_request(resource, operation)

        with trace_operation("authorization.decide", resource=resource, operation=operation):
            return await self._decide(individual, resource, operation)

    async def _decide(self, individual: Individual, resource: str, operation: str) -> Decision:
        start_time = time.time()
        matched_rules = []

        global_ok, global_rule = await self._check(GLOBAL_TARGET, individual)
        if global_rule is not None:
            matched_rules.append(global_rule.rule_id)

        if not global_ok:
            # Global deny is unconditional; the specific rule is never read.
            return self._finish(Decision(
                allowed=False,
                reason="Denied by global rule",
                individual_id=individual.individual_id,
                matched_rules=matched_rules,
                denied_by=GLOBAL_TARGET
            ), start_time, resource, operation)

        target = RuleTarget.for_operation(resource, operation)
        specific_ok, specific_rule = await self._check(target, individual)
        if specific_rule is not None:
            matched_rules.append(specific_rule.rule_id)

        if not specific_ok:
            decision = Decision(
                allowed=False,
                reason=f"Denied by rule for {target}",
                individual_id=individual.individual_id,
                matched_rules=matched_rules,
                denied_by=target
            )
        elif not matched_rules:
            decision = Decision(
                allowed=True,
                reason="No rules configured",
                individual_id=individual.individual_id
            )
        else:
            decision = Decision(
                allowed=True,
                reason="Allowed by rules",
                individual_id=individual.individual_id,
                matched_rules=matched_rules
            )

        return self._finish(decision, start_time, resource, operation)

    async def _check(self, target: RuleTarget, individual: Individual) -> Tuple[bool, Optional[Rule]]:
        """Look up the rule for ``target``; a missing rule passes."""
        rule = await self.rule_store.find_rule(target)
        if self.metrics:
            self.metrics.record_rule_lookup(target.scope.value, rule is not None)

        if rule is None:
            return True, None
        return rule_allows(rule, individual), rule

    def _finish(self, decision: Decision, start_time: float, resource: str, operation: str) -> Decision:
        duration = time.time() - start_time
        decision.evaluation_time_ms = duration * 1000

        if self.metrics:
            self.metrics.record_decision(decision.allowed, duration)

        add_span_attributes(
            **{"authorization.allowed": decision.allowed,
               "authorization.individual_id": decision.individual_id}
        )

        log = self.logger.debug if decision.allowed else self.logger.info
        log(
            "Authorization decision",
            individual_id=decision.individual_id,
            resource=resource,
            operation=operation,
            allowed=decision.allowed,
            reason=decision.reason,
            matched_rules=decision.matched_rules
        )

        return decision

    @staticmethod
    def _validate_request(resource: str, operation: str) -> None:
        if not resource or not operation:
            raise ValidationError(
                "Resource and operation are required",
                {"resource": resource, "operation": operation}
            )
