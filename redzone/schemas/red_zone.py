"""
Red Zone Schemas

Rule definitions are authored as JSON by the red zone settings screen and
stored as-is on the rule. Condition trees use camelCase keys on the wire
(``logicOperator``, ``entityType``, ``fieldType``); everything else is
snake_case.

A condition is a tagged union keyed on ``operator``:

- ComparisonCondition: equals, not_equals, greater_than, less_than
- TextCondition: contains, starts_with, ends_with
- PresenceCondition: is_empty, is_not_empty
- RangeCondition: in_range ("low,high")

Anything else fails validation, which is how unknown operators are rejected
at authoring time.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Iterator, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class LogicOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class FieldOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IN_RANGE = "in_range"


class EntityType(str, Enum):
    CUSTOMER = "customer"
    CUSTOMER_METRICS = "customer_metrics"
    SUBSCRIPTION = "subscription"
    INVOICE = "invoice"
    COMPANY = "company"  # Mapped from the external MySQL company database


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH_RISK = "high_risk"
    ATTENTION_NEEDED = "attention_needed"

    @property
    def rank(self) -> int:
        """Higher is more severe."""
        return {"critical": 3, "high_risk": 2, "attention_needed": 1}[self.value]


class AlertStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_stringify(item) for item in value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


# ============================================
# Conditions
# ============================================


class _ConditionBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    # Resolution criteria were historically stored with a field_path key
    field: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("field", "field_path", "fieldPath"),
        description="Field path to evaluate (e.g., 'nps_score', 'campaign_stats.sent')",
    )
    entity_type: Optional[EntityType] = Field(None, description="Entity the field belongs to")
    field_type: Optional[FieldType] = Field(None, description="Declared semantic type of the field")

    @field_validator("value", mode="before", check_fields=False)
    @classmethod
    def stringify_value(cls, v: Any) -> str:
        """Values are strings on the wire; numbers, booleans and pairs are normalized."""
        return _stringify(v)


class ComparisonCondition(_ConditionBase):
    """Equality and ordering against a single value."""

    operator: Literal["equals", "not_equals", "greater_than", "less_than"]
    value: str


class TextCondition(_ConditionBase):
    """Case-sensitive substring tests."""

    operator: Literal["contains", "starts_with", "ends_with"]
    value: str


class PresenceCondition(_ConditionBase):
    operator: Literal["is_empty", "is_not_empty"]
    value: str = ""


class RangeCondition(_ConditionBase):
    """Inclusive range; value is "low,high"."""

    operator: Literal["in_range"]
    value: str

    @field_validator("value")
    @classmethod
    def require_two_bounds(cls, v: str) -> str:
        parts = [part.strip() for part in v.split(",")]
        if len(parts) != 2 or not all(parts):
            raise ValueError("in_range value must have the form 'low,high'")
        return ",".join(parts)

    @property
    def bounds(self) -> tuple[str, str]:
        low, high = self.value.split(",")
        return low, high


Condition = Annotated[
    Union[ComparisonCondition, TextCondition, PresenceCondition, RangeCondition],
    Field(discriminator="operator"),
]


class ConditionGroup(BaseModel):
    """Conditions combined by the group's own AND/OR operator."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    logic_operator: LogicOperator = LogicOperator.AND
    conditions: list[Condition] = Field(..., min_length=1, description="At least one condition is required")

    @field_validator("logic_operator", mode="before")
    @classmethod
    def normalize_logic(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class RuleExpression(BaseModel):
    """
    Two-level rule tree: groups combined by the top-level operator.

    A bare list of conditions (the original storage format) is read as a
    single AND group.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    logic_operator: LogicOperator = LogicOperator.AND
    groups: list[ConditionGroup] = Field(..., min_length=1, description="At least one condition group is required")

    @field_validator("logic_operator", mode="before")
    @classmethod
    def normalize_logic(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="before")
    @classmethod
    def upgrade_legacy_format(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {
                "logicOperator": "AND",
                "groups": [{"logicOperator": "AND", "conditions": data}],
            }
        return data

    def iter_conditions(self) -> Iterator[Union[ComparisonCondition, TextCondition, PresenceCondition, RangeCondition]]:
        for group in self.groups:
            yield from group.conditions


# ============================================
# Rules
# ============================================


class RedZoneRuleBase(BaseModel):
    """Base red zone rule schema."""

    name: str = Field(..., min_length=3, max_length=200, description="Rule name must be at least 3 characters")
    description: Optional[str] = None
    severity: Severity = Severity.ATTENTION_NEEDED
    conditions: RuleExpression

    # Resolution
    auto_resolve: bool = False
    resolution_conditions: Optional[list[Condition]] = Field(
        None, description="Flat list combined with AND; required when auto_resolve is enabled"
    )
    team_lead_approval_required: bool = False

    notification_message: Optional[str] = Field(None, description="Used as the alert reason when present")
    enabled: bool = True

    @model_validator(mode="after")
    def require_resolution_conditions(self) -> "RedZoneRuleBase":
        if self.auto_resolve and not self.resolution_conditions:
            raise ValueError("resolution_conditions are required when auto_resolve is enabled")
        return self


class RedZoneRuleCreate(RedZoneRuleBase):
    """Schema for creating a rule."""
    created_by: Optional[int] = None


class RedZoneRuleUpdate(BaseModel):
    """Schema for updating a rule. Cross-field checks run on the merged rule."""
    name: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = None
    severity: Optional[Severity] = None
    conditions: Optional[RuleExpression] = None
    auto_resolve: Optional[bool] = None
    resolution_conditions: Optional[list[Condition]] = None
    team_lead_approval_required: Optional[bool] = None
    notification_message: Optional[str] = None
    enabled: Optional[bool] = None


class RedZoneRuleDefinition(RedZoneRuleBase):
    """A rule as the evaluator sees it, loaded from storage."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None


class RedZoneRuleResponse(BaseModel):
    """
    Rule response schema.

    Stored rules are returned as stored, even when they no longer pass the
    authoring checks; ``valid`` and ``errors`` report why the red zone check
    skips them.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    severity: Optional[Severity] = None
    conditions: Any = None
    auto_resolve: Optional[bool] = False
    resolution_conditions: Optional[list[Any]] = None
    team_lead_approval_required: Optional[bool] = False
    notification_message: Optional[str] = None
    enabled: Optional[bool] = True
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    valid: bool = True
    errors: list[dict[str, Any]] = Field(default_factory=list)


class RedZoneRuleListResponse(BaseModel):
    items: list[RedZoneRuleResponse]
    total: int


class RuleMatch(BaseModel):
    """Most severe matching rule for a record."""

    rule_id: Optional[int] = None
    name: str
    severity: Severity


# ============================================
# Rule authoring helpers
# ============================================


class RuleValidationRequest(BaseModel):
    """Raw condition tree to validate without saving."""
    conditions: Any = Field(..., description="RuleExpression JSON, or a legacy list of conditions")


class RuleValidationResponse(BaseModel):
    valid: bool
    conditions: Optional[RuleExpression] = None
    errors: list[dict[str, Any]] = Field(default_factory=list)


class RuleTestRequest(BaseModel):
    """Evaluate a rule against a record supplied by the caller."""
    conditions: RuleExpression
    record: dict[str, Any]
    resolution_conditions: Optional[list[Condition]] = None


class RuleTestResponse(BaseModel):
    matched: bool
    group_results: list[bool]
    resolution_matched: Optional[bool] = None


class RulePreviewRequest(BaseModel):
    """Preview which stored customers a rule would flag."""
    conditions: RuleExpression
    limit: Optional[int] = Field(None, ge=1, le=200, description="Sample size; defaults to the configured size")


class RulePreviewResponse(BaseModel):
    customers_evaluated: int
    total_matches: int
    sample_customers: list[dict[str, Any]]  # [{"id": 1, "name": "...", "nps_score": 3}]


# ============================================
# Field catalog
# ============================================


class FieldDescriptor(BaseModel):
    """A field usable in a rule condition."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    label: str
    entity_type: EntityType
    field_type: FieldType
    path: str


class AvailableFields(BaseModel):
    """Fields grouped by entity type. Every category is always present."""

    customer: list[FieldDescriptor] = Field(default_factory=list)
    customer_metrics: list[FieldDescriptor] = Field(default_factory=list)
    subscription: list[FieldDescriptor] = Field(default_factory=list)
    invoice: list[FieldDescriptor] = Field(default_factory=list)
    company: list[FieldDescriptor] = Field(default_factory=list)


class OperatorDefinition(BaseModel):
    name: FieldOperator
    display: str
    types: list[FieldType]


# ============================================
# Alerts
# ============================================


class RedZoneAlertCreate(BaseModel):
    """Schema for raising an alert manually."""
    customer_id: int
    reason: str = Field(..., min_length=1, max_length=500)
    severity: Severity
    rule_id: Optional[int] = None
    details: Optional[dict[str, Any]] = None
    notes: Optional[str] = None


class RedZoneAlertResolve(BaseModel):
    resolved_by: Optional[int] = None
    resolution_summary: Optional[str] = None


class RedZoneAlertResponse(BaseModel):
    """Alert response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    rule_id: Optional[int] = None
    reason: str
    severity: Severity
    status: AlertStatus
    details: Optional[dict[str, Any]] = None
    notes: Optional[str] = None
    resolution_summary: Optional[str] = None
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class RedZoneAlertListResponse(BaseModel):
    """Paginated alert list response."""
    items: list[RedZoneAlertResponse]
    total: int
    page: int
    page_size: int


class RedZoneActivityLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    alert_id: int
    action: str
    performed_by: Optional[int] = None
    details: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None


class RedZoneCheckResponse(BaseModel):
    customers_evaluated: int
    rules_evaluated: int
    alerts_raised: int
    alerts_resolved: int
    errors: list[str] = Field(default_factory=list)
    execution_time_ms: float = 0
