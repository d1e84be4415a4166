"""ABAC policy evaluation.

Provides:
- ``PolicyEvaluator`` — registry of standalone policies and policy sets with
  per-policy matching and result combination.
- ``PolicyResult`` — outcome of one policy (or one policy set).
- ``combine_results()`` — the five combining algorithms.
- ``create_policy_evaluator()`` — factory.

Per policy: disabled -> not-applicable; otherwise subjects, resources,
actions and conditions must all match for the policy's effect to apply.
Identifier patterns go through ``safe_pattern_match``; no regex is ever
built from policy data.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

from .conditions import CustomConditionHandler, EvaluationContext, evaluate_conditions
from .constants import WILDCARD, CombiningAlgorithm, Decision, Effect, MatchType, PolicySubjectType
from .matching import safe_pattern_match
from .models import (
    AccessRequest,
    EvaluationResult,
    Obligation,
    Policy,
    PolicyResource,
    PolicySet,
    PolicySubject,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyResult:
    """Decision of a single policy, or of a whole policy set.

    ``matched`` lists the policy IDs behind the decision.
    """

    policy_id: str
    decision: Decision
    details: str = ""
    matched: tuple[str, ...] = ()
    obligations: tuple[Obligation, ...] = ()
    advice: tuple[str, ...] = ()

    @classmethod
    def not_applicable(cls, policy_id: str, details: str) -> PolicyResult:
        return cls(policy_id=policy_id, decision=Decision.NOT_APPLICABLE, details=details)


# ── Combining ───────────────────────────────────────────


def _decided(
    decision: Decision,
    reason: str,
    results: Sequence[PolicyResult],
    contributing: Sequence[PolicyResult],
) -> EvaluationResult:
    matched: list[str] = []
    for r in results:
        matched.extend(r.matched or (r.policy_id,))
    return EvaluationResult(
        allowed=decision == Decision.ALLOW,
        decision=decision,
        reason=reason,
        matching_policies=tuple(matched),
        obligations=tuple(o for r in contributing for o in r.obligations),
        advice=tuple(a for r in contributing for a in r.advice),
    )


def _deny_overrides(applicable: Sequence[PolicyResult]) -> EvaluationResult:
    denies = [r for r in applicable if r.decision == Decision.DENY]
    if denies:
        return _decided(Decision.DENY, "Deny policy matched", applicable, denies)
    allows = [r for r in applicable if r.decision == Decision.ALLOW]
    if allows:
        return _decided(Decision.ALLOW, "Allow policy matched, no deny", applicable, allows)
    return _decided(Decision.INDETERMINATE, "No conclusive policy decision", applicable, ())


def _permit_overrides(applicable: Sequence[PolicyResult]) -> EvaluationResult:
    allows = [r for r in applicable if r.decision == Decision.ALLOW]
    if allows:
        return _decided(Decision.ALLOW, "Allow policy matched", applicable, allows)
    denies = [r for r in applicable if r.decision == Decision.DENY]
    if denies:
        return _decided(Decision.DENY, "Deny policy matched, no allow", applicable, denies)
    return _decided(Decision.INDETERMINATE, "No conclusive policy decision", applicable, ())


def _first_applicable(applicable: Sequence[PolicyResult]) -> EvaluationResult:
    for result in applicable:
        if result.decision.conclusive:
            return _decided(result.decision, f"First applicable policy: {result.policy_id}", [result], [result])
    return _decided(Decision.INDETERMINATE, "No conclusive policy decision", applicable, ())


_COMBINERS = {
    CombiningAlgorithm.DENY_OVERRIDES: _deny_overrides,
    CombiningAlgorithm.PERMIT_OVERRIDES: _permit_overrides,
    CombiningAlgorithm.FIRST_APPLICABLE: _first_applicable,
    # Ordered variants receive input already sorted by priority.
    CombiningAlgorithm.ORDERED_DENY_OVERRIDES: _deny_overrides,
    CombiningAlgorithm.ORDERED_PERMIT_OVERRIDES: _permit_overrides,
}


def combine_results(results: Iterable[PolicyResult], algorithm: CombiningAlgorithm | str) -> EvaluationResult:
    """Reduce per-policy results with a combining algorithm.

    Only applicable (non ``not-applicable``) results take part. With none
    left the outcome is ``not-applicable``. The caller is responsible for
    priority ordering before ``first-applicable`` and the ordered variants.
    """
    applicable = [r for r in results if r.decision != Decision.NOT_APPLICABLE]
    if not applicable:
        return EvaluationResult(allowed=False, decision=Decision.NOT_APPLICABLE, reason="No applicable policies")
    return _COMBINERS[CombiningAlgorithm(algorithm)](applicable)


def sort_by_priority(policies: Iterable[Policy]) -> list[Policy]:
    """Highest priority first; stable for equal priorities."""
    return sorted(policies, key=lambda p: p.priority, reverse=True)


# ── Matching ────────────────────────────────────────────


def match_identifier(subject: PolicySubject, value: str) -> bool:
    if subject.match == MatchType.ANY:
        return True
    if subject.match == MatchType.PATTERN:
        return safe_pattern_match(subject.identifier, value)
    return subject.identifier == value


def subject_matches(subject: PolicySubject, request: AccessRequest) -> bool:
    caller = request.subject
    if subject.type == PolicySubjectType.USER:
        return match_identifier(subject, caller.id)
    if subject.type == PolicySubjectType.ROLE:
        return any(match_identifier(subject, role) for role in caller.roles or ())
    if subject.type == PolicySubjectType.GROUP:
        return any(match_identifier(subject, group) for group in caller.groups or ())
    if subject.type == PolicySubjectType.ATTRIBUTE:
        actual = caller.attributes.get(subject.identifier)
        if subject.value is None:
            return actual is not None
        return actual == subject.value
    return False


def resource_matches(resource: PolicyResource, request: AccessRequest) -> bool:
    target = request.resource
    if resource.type != WILDCARD and resource.type != target.type:
        return False
    if resource.identifier and resource.identifier != WILDCARD and target.id:
        if not safe_pattern_match(resource.identifier, target.id):
            return False
    if resource.attributes:
        for key, value in resource.attributes.items():
            if target.attributes.get(key) != value:
                return False
    return True


def action_matches(actions: Sequence[str], request: AccessRequest) -> bool:
    return any(action == WILDCARD or action == request.action for action in actions)


# ── Evaluator ───────────────────────────────────────────


class PolicyEvaluator:
    """Evaluates access requests against ABAC policies.

    Custom conditions are resolved through ``condition_handlers`` keyed by
    the condition's ``key``; an unregistered key never holds.

    Example::

        evaluator = PolicyEvaluator(
            default_combining_algorithm=CombiningAlgorithm.DENY_OVERRIDES,
        )
        evaluator.add_policy(Policy(
            id="business-hours",
            effect=Effect.ALLOW,
            resources=[PolicyResource(type="reports")],
            actions=["read"],
            conditions=[TimeCondition(operator="timeOfDay", value=[9 * 60, 17 * 60])],
        ))
        evaluator.evaluate(request).allowed
    """

    def __init__(
        self,
        policies: Iterable[Policy] | None = None,
        policy_sets: Iterable[PolicySet] | None = None,
        *,
        default_combining_algorithm: CombiningAlgorithm = CombiningAlgorithm.DENY_OVERRIDES,
        condition_handlers: Mapping[str, CustomConditionHandler] | None = None,
    ) -> None:
        self._policies: dict[str, Policy] = {}
        self._policy_sets: dict[str, PolicySet] = {}
        self._handlers: dict[str, CustomConditionHandler] = dict(condition_handlers or {})
        self.default_combining_algorithm = CombiningAlgorithm(default_combining_algorithm)
        if policies:
            self.add_policies(policies)
        for policy_set in policy_sets or ():
            self.add_policy_set(policy_set)

    # ── Policy management ──

    def add_policy(self, policy: Policy) -> None:
        self._policies[policy.id] = policy

    def add_policies(self, policies: Iterable[Policy]) -> None:
        for policy in policies:
            self.add_policy(policy)

    def remove_policy(self, policy_id: str) -> bool:
        return self._policies.pop(policy_id, None) is not None

    def update_policy(self, policy_id: str, **updates: Any) -> Policy | None:
        existing = self._policies.get(policy_id)
        if existing is None:
            return None
        data = existing.model_dump()
        data.update(updates)
        updated = Policy.model_validate(data)
        self._policies[policy_id] = updated
        return updated

    def get_policy(self, policy_id: str) -> Policy | None:
        return self._policies.get(policy_id)

    def get_all_policies(self) -> list[Policy]:
        return list(self._policies.values())

    def add_policy_set(self, policy_set: PolicySet) -> None:
        self._policy_sets[policy_set.id] = policy_set

    def remove_policy_set(self, policy_set_id: str) -> bool:
        return self._policy_sets.pop(policy_set_id, None) is not None

    def get_policy_set(self, policy_set_id: str) -> PolicySet | None:
        return self._policy_sets.get(policy_set_id)

    def get_all_policy_sets(self) -> list[PolicySet]:
        return list(self._policy_sets.values())

    def register_condition_handler(self, key: str, handler: CustomConditionHandler) -> None:
        self._handlers[key] = handler

    # ── Evaluation ──

    def evaluate(self, request: AccessRequest, context: Optional[EvaluationContext] = None) -> EvaluationResult:
        """Combine standalone policies and targeted policy sets with the default algorithm."""
        start = time.perf_counter()
        ctx = (context or EvaluationContext()).with_clock()

        policies = [p for p in self._policies.values() if p.enabled]
        for policy_set in self._policy_sets.values():
            if self._target_matches(policy_set, request):
                policies.extend(p for p in policy_set.policies if p.enabled)

        results = [self.evaluate_policy(p, request, ctx) for p in sort_by_priority(policies)]
        result = combine_results(results, self.default_combining_algorithm)
        logger.debug(
            "Policy evaluation for %s:%s -> %s (%d policies)",
            request.resource.type,
            request.action,
            result.decision.value,
            len(results),
        )
        return _timed(result, start)

    def evaluate_policy_set(
        self,
        policy_set_id: str,
        request: AccessRequest,
        context: Optional[EvaluationContext] = None,
    ) -> EvaluationResult:
        start = time.perf_counter()
        policy_set = self._policy_sets.get(policy_set_id)
        if policy_set is None:
            return _timed(
                EvaluationResult(
                    allowed=False,
                    decision=Decision.INDETERMINATE,
                    reason=f"Policy set not found: {policy_set_id}",
                ),
                start,
            )
        ctx = (context or EvaluationContext()).with_clock()
        return _timed(self._evaluate_set(policy_set, request, ctx), start)

    def evaluate_policy_sets(
        self,
        request: AccessRequest,
        context: Optional[EvaluationContext] = None,
    ) -> EvaluationResult:
        """Evaluate each set with its own algorithm, then combine the set decisions."""
        start = time.perf_counter()
        ctx = (context or EvaluationContext()).with_clock()

        set_results = []
        for policy_set in self._policy_sets.values():
            outcome = self._evaluate_set(policy_set, request, ctx)
            set_results.append(
                PolicyResult(
                    policy_id=policy_set.id,
                    decision=outcome.decision,
                    details=outcome.reason,
                    matched=outcome.matching_policies,
                    obligations=outcome.obligations,
                    advice=outcome.advice,
                )
            )

        return _timed(combine_results(set_results, self.default_combining_algorithm), start)

    def evaluate_policy(self, policy: Policy, request: AccessRequest, context: EvaluationContext) -> PolicyResult:
        if not policy.enabled:
            return PolicyResult.not_applicable(policy.id, "Policy is disabled")
        if policy.subjects and not any(subject_matches(s, request) for s in policy.subjects):
            return PolicyResult.not_applicable(policy.id, "Subject does not match")
        if policy.resources and not any(resource_matches(r, request) for r in policy.resources):
            return PolicyResult.not_applicable(policy.id, "Resource does not match")
        if policy.actions and not action_matches(policy.actions, request):
            return PolicyResult.not_applicable(policy.id, "Action does not match")
        if policy.conditions and not evaluate_conditions(policy.conditions, request, context, self._handlers):
            return PolicyResult.not_applicable(policy.id, "Conditions not met")

        decision = Decision.ALLOW if policy.effect == Effect.ALLOW else Decision.DENY
        return PolicyResult(
            policy_id=policy.id,
            decision=decision,
            details=f"Policy {policy.id} applies with effect: {policy.effect.value}",
            matched=(policy.id,),
            obligations=tuple(policy.obligations),
            advice=tuple(policy.advice),
        )

    # ── Internals ──

    def _evaluate_set(self, policy_set: PolicySet, request: AccessRequest, context: EvaluationContext) -> EvaluationResult:
        if not self._target_matches(policy_set, request):
            return EvaluationResult(
                allowed=False,
                decision=Decision.NOT_APPLICABLE,
                reason="Policy set target does not match",
            )
        policies: Sequence[Policy] = policy_set.policies
        if policy_set.combining_algorithm.ordered:
            policies = sort_by_priority(policies)
        results = [self.evaluate_policy(p, request, context) for p in policies]
        return combine_results(results, policy_set.combining_algorithm)

    @staticmethod
    def _target_matches(policy_set: PolicySet, request: AccessRequest) -> bool:
        if not policy_set.target:
            return True
        return any(resource_matches(r, request) for r in policy_set.target)


def _timed(result: EvaluationResult, start: float) -> EvaluationResult:
    return result.model_copy(update={"evaluation_time": (time.perf_counter() - start) * 1000})


def create_policy_evaluator(
    policies: Iterable[Policy] | None = None,
    policy_sets: Iterable[PolicySet] | None = None,
    **kwargs: Any,
) -> PolicyEvaluator:
    return PolicyEvaluator(policies, policy_sets, **kwargs)


__all__ = [
    "PolicyEvaluator",
    "PolicyResult",
    "action_matches",
    "combine_results",
    "create_policy_evaluator",
    "match_identifier",
    "resource_matches",
    "sort_by_priority",
    "subject_matches",
]
