"""
Red Zone Condition Evaluator

Evaluates a rule expression against one resolved customer record.

Expression format (two levels, each with its own AND/OR):
{
    "logicOperator": "OR",
    "groups": [
        {"logicOperator": "AND", "conditions": [
            {"field": "nps", "operator": "less_than", "value": "5"}
        ]},
        {"logicOperator": "AND", "conditions": [
            {"field": "days_since_campaign", "operator": "greater_than", "value": "60"}
        ]}
    ]
}

Records are plain mappings, flat or nested. A field path is looked up as an
exact key first, then as a dotted path through nested mappings, object
attributes and list indices. When a condition names its entity type and the
record has a mapping under that key, the lookup is scoped to it first.

Evaluation never raises for data problems. A missing or uncoercible value is
a non-match for every operator except ``is_empty``. Structural problems are
rejected when the expression is parsed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter, ValidationError

from redzone.exceptions import RuleSchemaError, UnknownOperatorError
from redzone.schemas.red_zone import (
    ComparisonCondition,
    Condition,
    ConditionGroup,
    EntityType,
    FieldType,
    LogicOperator,
    PresenceCondition,
    RangeCondition,
    RedZoneRuleDefinition,
    RuleExpression,
    RuleMatch,
    TextCondition,
)
from redzone.services.coercion import (
    infer_field_type,
    is_date_only,
    is_empty_value,
    to_boolean,
    to_datetime,
    to_number,
    to_text,
)
from redzone.services.field_catalog import FieldCatalog

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self):
        return "MISSING"

    def __bool__(self):
        return False


MISSING = _Missing()

_condition_list = TypeAdapter(List[Condition])


# ============================================
# Parsing
# ============================================


def parse_rule_expression(data: Any) -> RuleExpression:
    """Validate a stored or submitted expression, upgrading the legacy list format."""
    if isinstance(data, RuleExpression):
        return data
    try:
        return RuleExpression.model_validate(data)
    except ValidationError as e:
        raise RuleSchemaError.from_validation_error(e, "Invalid rule expression") from e


def parse_conditions(data: Any) -> List[Condition]:
    """Validate a flat condition list such as a rule's resolution conditions."""
    if data is None:
        return []
    try:
        return _condition_list.validate_python(data)
    except ValidationError as e:
        raise RuleSchemaError.from_validation_error(e, "Invalid resolution conditions") from e


def parse_rule(rule: Any) -> RedZoneRuleDefinition:
    """Load a stored rule (ORM row or dict) into its validated definition."""
    try:
        if isinstance(rule, Mapping):
            return RedZoneRuleDefinition.model_validate(rule)
        return RedZoneRuleDefinition.model_validate(rule, from_attributes=True)
    except ValidationError as e:
        raise RuleSchemaError.from_validation_error(e, f"Invalid rule definition: {getattr(rule, 'name', rule)}") from e


# ============================================
# Field lookup
# ============================================


def _step(current: Any, part: str) -> Any:
    if isinstance(current, Mapping):
        return current.get(part, MISSING)
    if isinstance(current, (list, tuple)):
        try:
            index = int(part)
        except ValueError:
            return MISSING
        if -len(current) <= index < len(current):
            return current[index]
        return MISSING
    if current is None or isinstance(current, (str, bytes, int, float, bool)) or part.startswith("_"):
        return MISSING
    return getattr(current, part, MISSING)


def _lookup(source: Any, path: str) -> Any:
    if isinstance(source, Mapping) and path in source:
        return source[path]
    current = source
    for part in path.split("."):
        current = _step(current, part)
        if current is MISSING:
            return MISSING
    return current


def resolve_field_value(record: Any, path: str, entity_type: Optional[EntityType] = None) -> Any:
    """Return the value at ``path`` or ``MISSING``."""
    if entity_type is not None and isinstance(record, Mapping):
        scoped = record.get(entity_type.value)
        if isinstance(scoped, Mapping):
            value = _lookup(scoped, path)
            if value is not MISSING:
                return value
    return _lookup(record, path)


# ============================================
# Evaluation
# ============================================


def _combine(logic_operator: LogicOperator, results: Iterable[bool]) -> bool:
    if logic_operator == LogicOperator.OR:
        return any(results)
    return all(results)


def _as_datetime_pair(value: Any, target: str) -> Optional[Tuple[Any, Any]]:
    left = to_datetime(value)
    right = to_datetime(target)
    if left is None or right is None:
        return None
    if is_date_only(target):
        return left.date(), right.date()
    return left, right


def _as_number_pair(value: Any, target: str) -> Optional[Tuple[float, float]]:
    left = to_number(value)
    right = to_number(target)
    if left is None or right is None:
        return None
    return left, right


def _ordered_pair(value: Any, target: str, field_type: FieldType) -> Optional[Tuple[Any, Any]]:
    """Coerce both sides to something orderable, or None."""
    if field_type == FieldType.NUMBER:
        return _as_number_pair(value, target)
    if field_type == FieldType.DATE:
        return _as_datetime_pair(value, target)
    if field_type == FieldType.STRING:
        if isinstance(value, datetime):
            return _as_datetime_pair(value, target)
        return _as_number_pair(value, target) or _as_datetime_pair(value, target)
    return None


class ConditionEvaluator:
    """
    Evaluates rule expressions against resolved records.

    An optional field catalog supplies declared field types for conditions
    that do not carry one; otherwise the type is taken from the record value.
    """

    def __init__(self, catalog: Optional[FieldCatalog] = None):
        self.catalog = catalog

    def evaluate(self, expression: RuleExpression, record: Any) -> bool:
        """True when the record matches the expression."""
        return _combine(
            expression.logic_operator,
            (self.evaluate_group(group, record) for group in expression.groups),
        )

    def group_results(self, expression: RuleExpression, record: Any) -> List[bool]:
        """Per-group outcome, for showing rule authors which group matched."""
        return [self.evaluate_group(group, record) for group in expression.groups]

    def evaluate_group(self, group: ConditionGroup, record: Any) -> bool:
        return _combine(
            group.logic_operator,
            (self.evaluate_condition(condition, record) for condition in group.conditions),
        )

    def evaluate_all(self, conditions: Sequence[Condition], record: Any) -> bool:
        """Resolution conditions: all must hold. An empty list never resolves."""
        if not conditions:
            return False
        return all(self.evaluate_condition(condition, record) for condition in conditions)

    def resolve_field_type(self, condition: Condition, value: Any) -> FieldType:
        if condition.field_type is not None:
            return condition.field_type
        if self.catalog is not None:
            declared = self.catalog.field_type_for(condition.field, condition.entity_type)
            if declared is not None:
                return declared
        return infer_field_type(value)

    def evaluate_condition(self, condition: Condition, record: Any) -> bool:
        value = resolve_field_value(record, condition.field, condition.entity_type)
        if value is MISSING:
            logger.debug(f"Field '{condition.field}' not present in record")
            value = None

        if isinstance(condition, PresenceCondition):
            empty = is_empty_value(value)
            return empty if condition.operator == "is_empty" else not empty

        if value is None:
            return False

        field_type = self.resolve_field_type(condition, value)

        if isinstance(condition, ComparisonCondition):
            return self._compare(condition, value, field_type)
        if isinstance(condition, TextCondition):
            return self._match_text(condition, value)
        if isinstance(condition, RangeCondition):
            return self._in_range(condition, value, field_type)

        raise UnknownOperatorError(f"Unsupported operator: {condition.operator}")

    # Operators

    def _compare(self, condition: ComparisonCondition, value: Any, field_type: FieldType) -> bool:
        operator = condition.operator

        if operator in ("greater_than", "less_than"):
            pair = _ordered_pair(value, condition.value, field_type)
            if pair is None:
                return False
            left, right = pair
            return left > right if operator == "greater_than" else left < right

        if field_type == FieldType.NUMBER:
            pair = _as_number_pair(value, condition.value)
        elif field_type == FieldType.DATE:
            pair = _as_datetime_pair(value, condition.value)
        elif field_type == FieldType.BOOLEAN:
            left, right = to_boolean(value), to_boolean(condition.value)
            pair = None if left is None or right is None else (left, right)
        else:
            pair = (to_text(value), condition.value)

        if pair is None:
            return False
        left, right = pair
        if operator == "equals":
            return left == right
        if operator == "not_equals":
            return left != right
        raise UnknownOperatorError(f"Unsupported operator: {operator}")

    def _match_text(self, condition: TextCondition, value: Any) -> bool:
        text = to_text(value)
        if condition.operator == "contains":
            return condition.value in text
        if condition.operator == "starts_with":
            return text.startswith(condition.value)
        if condition.operator == "ends_with":
            return text.endswith(condition.value)
        raise UnknownOperatorError(f"Unsupported operator: {condition.operator}")

    def _in_range(self, condition: RangeCondition, value: Any, field_type: FieldType) -> bool:
        low, high = condition.bounds
        lower = _ordered_pair(value, low, field_type)
        upper = _ordered_pair(value, high, field_type)
        if lower is None or upper is None:
            return False
        return lower[1] <= lower[0] and upper[0] <= upper[1]

    # Rule sets

    def match_rules(self, rules: Iterable[RedZoneRuleDefinition], record: Any) -> List[RedZoneRuleDefinition]:
        """Enabled rules whose expression matches, in the given order."""
        return [rule for rule in rules if rule.enabled and self.evaluate(rule.conditions, record)]

    def most_severe_match(self, rules: Iterable[RedZoneRuleDefinition], record: Any) -> Optional[RuleMatch]:
        """Most severe matching rule; the earlier rule wins a tie."""
        best: Optional[RedZoneRuleDefinition] = None
        for rule in self.match_rules(rules, record):
            if best is None or rule.severity.rank > best.severity.rank:
                best = rule
        if best is None:
            return None
        return RuleMatch(rule_id=best.id, name=best.name, severity=best.severity)

    def should_resolve(self, rule: RedZoneRuleDefinition, record: Any) -> bool:
        """True when an auto-resolve rule's resolution conditions hold."""
        if not rule.auto_resolve:
            return False
        return self.evaluate_all(rule.resolution_conditions or [], record)
