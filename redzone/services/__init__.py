# Services module
from redzone.services.field_catalog import FieldCatalog, FieldCatalogResolver, get_available_operators
from redzone.services.condition_evaluator import (
    ConditionEvaluator,
    parse_conditions,
    parse_rule,
    parse_rule_expression,
    resolve_field_value,
)
from redzone.services.red_zone_monitor import RedZoneCheckResult, RedZoneMonitor, build_customer_record

__all__ = [
    "FieldCatalog",
    "FieldCatalogResolver",
    "get_available_operators",
    "ConditionEvaluator",
    "parse_conditions",
    "parse_rule",
    "parse_rule_expression",
    "resolve_field_value",
    "RedZoneCheckResult",
    "RedZoneMonitor",
    "build_customer_record",
]
