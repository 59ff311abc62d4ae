"""
Red Zone Pydantic Schemas
"""

from redzone.schemas.red_zone import (
    LogicOperator, FieldOperator, EntityType, FieldType, Severity, AlertStatus,
    Condition, ComparisonCondition, TextCondition, PresenceCondition, RangeCondition,
    ConditionGroup, RuleExpression,
    RedZoneRuleBase, RedZoneRuleCreate, RedZoneRuleUpdate, RedZoneRuleDefinition,
    RedZoneRuleResponse, RedZoneRuleListResponse, RuleMatch,
    FieldDescriptor, AvailableFields, OperatorDefinition,
    RedZoneAlertCreate, RedZoneAlertResolve, RedZoneAlertResponse, RedZoneAlertListResponse,
    RedZoneActivityLogResponse, RedZoneCheckResponse,
)

__all__ = [
    # Enums
    "LogicOperator",
    "FieldOperator",
    "EntityType",
    "FieldType",
    "Severity",
    "AlertStatus",
    # Conditions
    "Condition",
    "ComparisonCondition",
    "TextCondition",
    "PresenceCondition",
    "RangeCondition",
    "ConditionGroup",
    "RuleExpression",
    # Rules
    "RedZoneRuleBase",
    "RedZoneRuleCreate",
    "RedZoneRuleUpdate",
    "RedZoneRuleDefinition",
    "RedZoneRuleResponse",
    "RedZoneRuleListResponse",
    "RuleMatch",
    # Field catalog
    "FieldDescriptor",
    "AvailableFields",
    "OperatorDefinition",
    # Alerts
    "RedZoneAlertCreate",
    "RedZoneAlertResolve",
    "RedZoneAlertResponse",
    "RedZoneAlertListResponse",
    "RedZoneActivityLogResponse",
    "RedZoneCheckResponse",
]
