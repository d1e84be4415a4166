"""Condition evaluation for ABAC policies and matrix entries.

Provides:
- ``EvaluationContext`` — environment supplied by the caller (clock, client IP,
  extra attributes).
- ``compare_value()`` — the generic comparator behind attribute, context and
  matrix conditions.
- ``evaluate_condition()`` — dispatch over the condition union, one evaluator
  per variant.
- ``CustomConditionHandler`` — protocol for injected ``custom`` conditions.

Every evaluator fails closed: incomparable values, malformed condition values
and unregistered custom handlers all yield ``False``.
"""

from __future__ import annotations

import hashlib
import ipaddress
import json
import logging
import re
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol

from ..exceptions import ConditionEvaluationError
from .constants import MAX_PATTERN_LENGTH, MAX_VALUE_LENGTH
from .models import (
    AccessRequest,
    AttributeCondition,
    ContextCondition,
    CustomCondition,
    IPCondition,
    LocationCondition,
    PermissionCondition,
    PolicyCondition,
    TimeCondition,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationContext:
    """Caller-supplied evaluation environment.

    ``now`` is epoch seconds; a request ``timestamp`` takes precedence.
    """

    now: Optional[float] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def with_clock(self) -> EvaluationContext:
        """Return a copy with ``now`` filled from the wall clock if unset."""
        if self.now is not None:
            return self
        return replace(self, now=time.time())

    def cache_key(self) -> str:
        """Stable digest of the environment, combined with the request digest by the engine."""
        payload = json.dumps(
            {
                "now": self.now,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "attributes": dict(self.attributes),
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class CustomConditionHandler(Protocol):
    """Callable evaluating a ``custom`` condition registered under its key."""

    def __call__(
        self,
        condition: CustomCondition,
        request: AccessRequest,
        context: EvaluationContext,
    ) -> bool: ...


# ── Comparator ──────────────────────────────────────────

_COLLECTIONS = (list, tuple, set, frozenset)


def _ordered(actual: Any, expected: Any, op: Callable[[Any, Any], bool]) -> bool:
    if actual is None or expected is None:
        return False
    try:
        return bool(op(actual, expected))
    except TypeError as e:
        raise ConditionEvaluationError(
            f"Cannot compare {type(actual).__name__} with {type(expected).__name__}"
        ) from e


_QUANTIFIED_GROUP = re.compile(r"\(([^()]*)\)[+*{]")
_ESCAPE = re.compile(r"\\.")


def _has_nested_quantifier(pattern: str) -> bool:
    """Detect a quantified group whose body is itself quantified, e.g. ``(a+)+``."""
    for match in _QUANTIFIED_GROUP.finditer(pattern):
        body = _ESCAPE.sub("", match.group(1))
        if any(ch in body for ch in "+*}"):
            return True
    return False


def _regex(actual: Any, expected: Any) -> bool:
    """Search ``expected`` in ``actual``.

    Regex conditions are trusted configuration, not caller input. Length caps
    and the nested-quantifier check reject the common catastrophic shapes but
    do not bound backtracking in general.
    """
    if not isinstance(expected, str) or not isinstance(actual, str):
        return False
    if len(expected) > MAX_PATTERN_LENGTH or len(actual) > MAX_VALUE_LENGTH:
        logger.debug("Regex condition exceeds length limits, rejecting")
        return False
    if _has_nested_quantifier(expected):
        logger.warning("Regex condition %r has nested quantifiers, rejecting", expected)
        return False
    try:
        return re.search(expected, actual) is not None
    except re.error as e:
        raise ConditionEvaluationError(f"Invalid regex condition: {e}") from e


def _contains(actual: Any, expected: Any) -> bool:
    if actual is None:
        return False
    if isinstance(actual, _COLLECTIONS):
        return expected in actual
    return str(expected) in str(actual)


def compare_value(operator: str, actual: Any, expected: Any) -> bool:
    """Compare ``actual`` with ``expected`` using a comparison operator.

    Unknown operators and incomparable operands yield ``False``.

    Example::

        compare_value("in", "eu", ["eu", "us"])        # True
        compare_value("greaterThan", "3", 2)           # False (incomparable)
        compare_value("regex", "INV-0042", r"^INV-\\d+$")  # True
    """
    try:
        if operator == "equals":
            return actual == expected
        if operator == "notEquals":
            return actual != expected
        if operator == "in":
            return isinstance(expected, _COLLECTIONS) and actual in expected
        if operator == "notIn":
            return isinstance(expected, _COLLECTIONS) and actual not in expected
        if operator == "contains":
            return _contains(actual, expected)
        if operator == "notContains":
            return actual is None or not _contains(actual, expected)
        if operator == "startsWith":
            return isinstance(actual, str) and actual.startswith(str(expected))
        if operator == "endsWith":
            return isinstance(actual, str) and actual.endswith(str(expected))
        if operator == "greaterThan":
            return _ordered(actual, expected, lambda a, b: a > b)
        if operator == "lessThan":
            return _ordered(actual, expected, lambda a, b: a < b)
        if operator == "exists":
            return actual is not None
        if operator == "regex":
            return _regex(actual, expected)
    except ConditionEvaluationError as e:
        logger.debug("Condition '%s' not satisfied: %s", operator, e.message)
        return False

    logger.warning("Unknown comparison operator '%s', treating as not satisfied", operator)
    return False


def evaluate_permission_condition(
    condition: PermissionCondition,
    resource_attributes: Mapping[str, Any],
    subject_attributes: Mapping[str, Any],
) -> bool:
    """Evaluate a matrix/structured-permission condition.

    ``field`` is read from the resource; the expected value comes from the
    subject attribute named by ``context_key`` when set.
    """
    actual = resource_attributes.get(condition.field)
    expected = subject_attributes.get(condition.context_key) if condition.context_key else condition.value
    return compare_value(condition.operator, actual, expected)


# ── Policy Conditions ───────────────────────────────────


def _pair(value: Any) -> tuple[Any, Any] | None:
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return value[0], value[1]
    return None


def evaluate_time_condition(condition: TimeCondition, request: AccessRequest, context: EvaluationContext) -> bool:
    now = request.context.timestamp if request.context.timestamp is not None else context.now
    if now is None:
        now = time.time()

    try:
        if condition.operator == "between":
            bounds = _pair(condition.value)
            return bounds is not None and bounds[0] <= now <= bounds[1]
        if condition.operator == "before":
            return now < condition.value
        if condition.operator == "after":
            return now > condition.value

        moment = datetime.fromtimestamp(now, tz=timezone.utc)
        if condition.operator == "dayOfWeek":
            return isinstance(condition.value, _COLLECTIONS) and moment.weekday() in condition.value
        if condition.operator == "timeOfDay":
            bounds = _pair(condition.value)
            minutes = moment.hour * 60 + moment.minute
            return bounds is not None and bounds[0] <= minutes <= bounds[1]
    except TypeError:
        logger.debug("Time condition value %r is not comparable", condition.value)
    return False


def _ip_matches_network(ip: str, networks: Any) -> bool:
    if isinstance(networks, str):
        networks = [networks]
    if not isinstance(networks, _COLLECTIONS):
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    for network in networks:
        try:
            if address in ipaddress.ip_network(network, strict=False):
                return True
        except (TypeError, ValueError):
            logger.debug("Ignoring invalid network %r in ip condition", network)
    return False


def evaluate_ip_condition(condition: IPCondition, request: AccessRequest, context: EvaluationContext) -> bool:
    ip = request.context.ip_address or context.client_ip
    if not ip:
        return condition.operator == "notIn"

    if condition.operator == "equals":
        return ip == condition.value
    if condition.operator == "in":
        return isinstance(condition.value, _COLLECTIONS) and ip in condition.value
    if condition.operator == "notIn":
        return isinstance(condition.value, _COLLECTIONS) and ip not in condition.value
    if condition.operator == "startsWith":
        return isinstance(condition.value, str) and ip.startswith(condition.value)
    if condition.operator == "cidr":
        return _ip_matches_network(ip, condition.value)
    return False


def evaluate_location_condition(
    condition: LocationCondition, request: AccessRequest, context: EvaluationContext
) -> bool:
    location = request.context.location
    if location is None:
        return condition.operator == "notIn"

    value = getattr(location, condition.key)
    if condition.operator == "equals":
        return value == condition.value
    if condition.operator == "in":
        return isinstance(condition.value, _COLLECTIONS) and value in condition.value
    if condition.operator == "notIn":
        return isinstance(condition.value, _COLLECTIONS) and value not in condition.value
    return False


def evaluate_attribute_condition(
    condition: AttributeCondition, request: AccessRequest, context: EvaluationContext
) -> bool:
    # Subject attributes first, then resource attributes.
    if not condition.key:
        return False
    value = request.subject.attributes.get(condition.key)
    if value is None:
        value = request.resource.attributes.get(condition.key)
    return compare_value(condition.operator, value, condition.value)


def evaluate_context_condition(
    condition: ContextCondition, request: AccessRequest, context: EvaluationContext
) -> bool:
    if not condition.key:
        return False
    value = request.context.attributes.get(condition.key)
    if value is None:
        value = context.attributes.get(condition.key)
    return compare_value(condition.operator, value, condition.value)


def evaluate_custom_condition(
    condition: CustomCondition,
    request: AccessRequest,
    context: EvaluationContext,
    handlers: Mapping[str, CustomConditionHandler],
) -> bool:
    handler = handlers.get(condition.key)
    if handler is None:
        logger.warning("No handler registered for custom condition '%s', denying", condition.key)
        return False
    try:
        return bool(handler(condition, request, context))
    except ConditionEvaluationError as e:
        logger.warning("Custom condition '%s' failed: %s", condition.key, e.message)
        return False
    except Exception:
        logger.exception("Custom condition handler '%s' raised", condition.key)
        return False


_EVALUATORS: dict[str, Callable[[Any, AccessRequest, EvaluationContext], bool]] = {
    "time": evaluate_time_condition,
    "ip": evaluate_ip_condition,
    "location": evaluate_location_condition,
    "attribute": evaluate_attribute_condition,
    "context": evaluate_context_condition,
}


def evaluate_condition(
    condition: PolicyCondition,
    request: AccessRequest,
    context: EvaluationContext,
    handlers: Mapping[str, CustomConditionHandler] | None = None,
) -> bool:
    """Evaluate one policy condition."""
    if isinstance(condition, CustomCondition):
        return evaluate_custom_condition(condition, request, context, handlers or {})
    evaluator = _EVALUATORS.get(condition.type)
    if evaluator is None:
        return False
    return evaluator(condition, request, context)


def evaluate_conditions(
    conditions: list[PolicyCondition],
    request: AccessRequest,
    context: EvaluationContext,
    handlers: Mapping[str, CustomConditionHandler] | None = None,
) -> bool:
    """All conditions must hold."""
    return all(evaluate_condition(c, request, context, handlers) for c in conditions)


__all__ = [
    "CustomConditionHandler",
    "EvaluationContext",
    "compare_value",
    "evaluate_attribute_condition",
    "evaluate_condition",
    "evaluate_conditions",
    "evaluate_context_condition",
    "evaluate_custom_condition",
    "evaluate_ip_condition",
    "evaluate_location_condition",
    "evaluate_permission_condition",
    "evaluate_time_condition",
]
