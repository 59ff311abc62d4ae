"""
Red Zone API Endpoints

Includes:
- Field and operator catalogs for the rule builder
- Rule CRUD, plus validate / test / preview helpers for rule authors
- Alert listing, manual alerts, resolution and activity history
- On-demand red zone check
"""

from dataclasses import asdict
from typing import Any, List, Optional

from fastapi import APIRouter, Query, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select

from redzone.api.deps import DbSession
from redzone.config import settings
from redzone.exceptions import BusinessRuleError, NotFoundError, RuleSchemaError, ValidationError
from redzone.models.customer import Customer
from redzone.models.red_zone import RedZoneActivityLog, RedZoneAlert, RedZoneRule
from redzone.schemas.red_zone import (
    AlertStatus,
    AvailableFields,
    FieldType,
    OperatorDefinition,
    RedZoneActivityLogResponse,
    RedZoneAlertCreate,
    RedZoneAlertListResponse,
    RedZoneAlertResolve,
    RedZoneAlertResponse,
    RedZoneCheckResponse,
    RedZoneRuleBase,
    RedZoneRuleCreate,
    RedZoneRuleListResponse,
    RedZoneRuleResponse,
    RedZoneRuleUpdate,
    RulePreviewRequest,
    RulePreviewResponse,
    RuleTestRequest,
    RuleTestResponse,
    RuleValidationRequest,
    RuleValidationResponse,
    Severity,
)
from redzone.services.condition_evaluator import ConditionEvaluator, parse_rule, parse_rule_expression
from redzone.services.field_catalog import FieldCatalogResolver, get_available_operators
from redzone.services.red_zone_monitor import RedZoneMonitor

router = APIRouter()

RULE_FIELDS = (
    "name",
    "description",
    "severity",
    "conditions",
    "auto_resolve",
    "resolution_conditions",
    "team_lead_approval_required",
    "notification_message",
    "enabled",
)


def _serialize_rule(data: RedZoneRuleBase) -> dict[str, Any]:
    """Column values for a validated rule; condition trees are stored in wire format."""
    return {
        "name": data.name,
        "description": data.description,
        "severity": data.severity.value,
        "conditions": data.conditions.model_dump(mode="json", by_alias=True, exclude_none=True),
        "auto_resolve": data.auto_resolve,
        "resolution_conditions": (
            [c.model_dump(mode="json", by_alias=True, exclude_none=True) for c in data.resolution_conditions]
            if data.resolution_conditions is not None
            else None
        ),
        "team_lead_approval_required": data.team_lead_approval_required,
        "notification_message": data.notification_message,
        "enabled": data.enabled,
    }


def _rule_response(rule: RedZoneRule) -> RedZoneRuleResponse:
    """Stored rule plus whether it still passes validation."""
    response = RedZoneRuleResponse.model_validate(rule)
    try:
        parse_rule(rule)
    except RuleSchemaError as e:
        response.valid = False
        response.errors = e.errors
    return response


async def _get_rule_or_404(db, rule_id: int) -> RedZoneRule:
    result = await db.execute(select(RedZoneRule).where(RedZoneRule.id == rule_id))
    rule = result.scalar_one_or_none()
    if not rule:
        raise NotFoundError("Red zone rule", rule_id)
    return rule


async def _get_alert_or_404(db, alert_id: int) -> RedZoneAlert:
    result = await db.execute(select(RedZoneAlert).where(RedZoneAlert.id == alert_id))
    alert = result.scalar_one_or_none()
    if not alert:
        raise NotFoundError("Red zone alert", alert_id)
    return alert


async def _ensure_unique_name(db, name: str, exclude_id: Optional[int] = None):
    query = select(RedZoneRule.id).where(RedZoneRule.name == name)
    if exclude_id is not None:
        query = query.where(RedZoneRule.id != exclude_id)
    existing = await db.execute(query)
    if existing.scalar_one_or_none() is not None:
        raise BusinessRuleError("Red zone rule with this name already exists")


# ============================================
# Catalogs
# ============================================


@router.get("/fields", response_model=AvailableFields)
async def get_available_fields(db: DbSession):
    """Fields usable in rule conditions, grouped by entity type."""
    return await FieldCatalogResolver(db).get_available_fields()


@router.get("/operators", response_model=List[OperatorDefinition])
async def list_operators(field_type: Optional[FieldType] = None):
    """Condition operators, optionally filtered to those valid for a field type."""
    return get_available_operators(field_type)


# ============================================
# Rules
# ============================================


@router.get("/rules", response_model=RedZoneRuleListResponse)
async def list_rules(
    db: DbSession,
    enabled: Optional[bool] = None,
    severity: Optional[Severity] = None,
):
    """List red zone rules in evaluation order."""
    query = select(RedZoneRule)

    if enabled is not None:
        query = query.where(RedZoneRule.enabled == enabled)
    if severity:
        query = query.where(RedZoneRule.severity == severity.value)

    result = await db.execute(query.order_by(RedZoneRule.id))
    rules = result.scalars().all()

    return RedZoneRuleListResponse(items=[_rule_response(rule) for rule in rules], total=len(rules))


@router.get("/rules/{rule_id}", response_model=RedZoneRuleResponse)
async def get_rule(rule_id: int, db: DbSession):
    """Get a specific rule."""
    return _rule_response(await _get_rule_or_404(db, rule_id))


@router.post("/rules", response_model=RedZoneRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(data: RedZoneRuleCreate, db: DbSession):
    """Create a new rule."""
    await _ensure_unique_name(db, data.name)

    rule = RedZoneRule(**_serialize_rule(data), created_by=data.created_by)
    db.add(rule)
    await db.commit()
    await db.refresh(rule)
    return _rule_response(rule)


@router.patch("/rules/{rule_id}", response_model=RedZoneRuleResponse)
async def update_rule(rule_id: int, data: RedZoneRuleUpdate, db: DbSession):
    """Update a rule. The merged rule is validated as a whole."""
    rule = await _get_rule_or_404(db, rule_id)

    merged = {field: getattr(rule, field) for field in RULE_FIELDS}
    merged.update({field: getattr(data, field) for field in data.model_fields_set})

    try:
        validated = RedZoneRuleBase.model_validate(merged)
    except PydanticValidationError as e:
        raise ValidationError.from_schema_error(RuleSchemaError.from_validation_error(e))

    if validated.name != rule.name:
        await _ensure_unique_name(db, validated.name, exclude_id=rule.id)

    for field, value in _serialize_rule(validated).items():
        setattr(rule, field, value)

    await db.commit()
    await db.refresh(rule)
    return _rule_response(rule)


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(rule_id: int, db: DbSession):
    """Delete a rule. Its alerts are kept and lose the rule reference."""
    rule = await _get_rule_or_404(db, rule_id)
    await db.delete(rule)
    await db.commit()


@router.post("/rules/validate", response_model=RuleValidationResponse)
async def validate_rule(data: RuleValidationRequest):
    """Validate a condition tree without saving it."""
    try:
        expression = parse_rule_expression(data.conditions)
    except RuleSchemaError as e:
        return RuleValidationResponse(valid=False, errors=e.errors)
    return RuleValidationResponse(valid=True, conditions=expression)


@router.post("/rules/test", response_model=RuleTestResponse)
async def try_rule(data: RuleTestRequest, db: DbSession):
    """Evaluate a condition tree against a record supplied by the caller."""
    catalog = await FieldCatalogResolver(db).get_catalog()
    evaluator = ConditionEvaluator(catalog)

    group_results = evaluator.group_results(data.conditions, data.record)
    resolution_matched = None
    if data.resolution_conditions is not None:
        resolution_matched = evaluator.evaluate_all(data.resolution_conditions, data.record)

    return RuleTestResponse(
        matched=evaluator.evaluate(data.conditions, data.record),
        group_results=group_results,
        resolution_matched=resolution_matched,
    )


@router.post("/rules/preview", response_model=RulePreviewResponse)
async def preview_rule(data: RulePreviewRequest, db: DbSession):
    """Count and sample the stored customers a condition tree would flag."""
    limit = data.limit or settings.REDZONE_PREVIEW_SAMPLE_SIZE
    preview = await RedZoneMonitor(db).preview(data.conditions, limit)
    return RulePreviewResponse(**asdict(preview))


# ============================================
# Alerts
# ============================================


@router.get("/alerts", response_model=RedZoneAlertListResponse)
async def list_alerts(
    db: DbSession,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    customer_id: Optional[int] = None,
    alert_status: Optional[AlertStatus] = Query(None, alias="status"),
    severity: Optional[Severity] = None,
):
    """List alerts with filtering."""
    query = select(RedZoneAlert)

    if customer_id is not None:
        query = query.where(RedZoneAlert.customer_id == customer_id)
    if alert_status:
        query = query.where(RedZoneAlert.status == alert_status.value)
    if severity:
        query = query.where(RedZoneAlert.severity == severity.value)

    # Get total count
    count_query = select(func.count()).select_from(query.subquery())
    total_result = await db.execute(count_query)
    total = total_result.scalar()

    # Apply pagination
    offset = (page - 1) * page_size
    query = query.order_by(RedZoneAlert.created_at.desc(), RedZoneAlert.id.desc()).offset(offset).limit(page_size)

    result = await db.execute(query)
    alerts = result.scalars().all()

    return RedZoneAlertListResponse(
        items=alerts,
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/alerts/{alert_id}", response_model=RedZoneAlertResponse)
async def get_alert(alert_id: int, db: DbSession):
    """Get a specific alert."""
    return await _get_alert_or_404(db, alert_id)


@router.post("/alerts", response_model=RedZoneAlertResponse, status_code=status.HTTP_201_CREATED)
async def create_alert(data: RedZoneAlertCreate, db: DbSession, performed_by: Optional[int] = None):
    """Flag a customer manually."""
    customer = await db.get(Customer, data.customer_id)
    if not customer:
        raise NotFoundError("Customer", data.customer_id)
    if data.rule_id is not None:
        await _get_rule_or_404(db, data.rule_id)

    alert = await RedZoneMonitor(db).create_alert(data, performed_by=performed_by)
    await db.commit()
    await db.refresh(alert)
    return alert


@router.post("/alerts/{alert_id}/resolve", response_model=RedZoneAlertResponse)
async def resolve_alert(alert_id: int, db: DbSession, data: Optional[RedZoneAlertResolve] = None):
    """Resolve an alert. Resolving an already resolved alert changes nothing."""
    alert = await _get_alert_or_404(db, alert_id)
    data = data or RedZoneAlertResolve()

    changed = await RedZoneMonitor(db).resolve(
        alert, resolved_by=data.resolved_by, summary=data.resolution_summary
    )
    if changed:
        await db.commit()
        await db.refresh(alert)
    return alert


@router.get("/alerts/{alert_id}/activity", response_model=List[RedZoneActivityLogResponse])
async def list_alert_activity(alert_id: int, db: DbSession):
    """Activity history of an alert, oldest first."""
    await _get_alert_or_404(db, alert_id)
    result = await db.execute(
        select(RedZoneActivityLog)
        .where(RedZoneActivityLog.alert_id == alert_id)
        .order_by(RedZoneActivityLog.created_at, RedZoneActivityLog.id)
    )
    return result.scalars().all()


# ============================================
# Check
# ============================================


@router.post("/check", response_model=RedZoneCheckResponse)
async def run_check(db: DbSession):
    """Run the red zone check now instead of waiting for the scheduler."""
    result = await RedZoneMonitor(db).run_check()
    return RedZoneCheckResponse(**asdict(result))
