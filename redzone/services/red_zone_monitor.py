"""
Red Zone Monitor

Runs enabled red zone rules against stored customers:

1. Load and validate enabled rules (a rule that fails validation is skipped
   and reported, the rest still run)
2. Build one record per customer from its columns, its computed metrics and
   the values synced from Chargebee and the company database
3. For each customer and rule:
   - open alert for the rule + resolution conditions hold -> auto-resolve
   - no open alert for the rule + rule matches -> raise a new alert
4. Refresh ``customers.in_red_zone`` from the alerts left open

Everything runs in the caller's session and is committed once at the end of
the check.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from redzone.exceptions import RuleSchemaError
from redzone.models.customer import Customer, CustomerMetrics
from redzone.models.red_zone import RedZoneAlert, RedZoneRule
from redzone.schemas.red_zone import (
    AlertStatus,
    EntityType,
    RedZoneAlertCreate,
    RedZoneRuleDefinition,
    RuleExpression,
)
from redzone.services.alert_lifecycle import raise_alert, raise_alert_for_rule, resolve_alert
from redzone.services.condition_evaluator import ConditionEvaluator, parse_rule
from redzone.services.field_catalog import FieldCatalogResolver

logger = logging.getLogger(__name__)

METRICS_EXCLUDED_COLUMNS = {"id", "customer_id"}


@dataclass
class RedZoneCheckResult:
    """Result of one red zone check run."""

    customers_evaluated: int = 0
    rules_evaluated: int = 0
    alerts_raised: int = 0
    alerts_resolved: int = 0
    errors: List[str] = field(default_factory=list)
    execution_time_ms: float = 0


@dataclass
class RulePreviewResult:
    customers_evaluated: int
    total_matches: int
    sample_customers: List[Dict[str, Any]] = field(default_factory=list)


def _row_to_dict(row: Any, excluded: set = frozenset()) -> Dict[str, Any]:
    return {
        column.key: getattr(row, column.key)
        for column in row.__table__.columns
        if column.key not in excluded
    }


def build_customer_record(customer: Customer, metrics: Optional[CustomerMetrics] = None) -> Dict[str, Any]:
    """
    Resolved record for one customer.

    Customer columns sit at the top level. Metrics and synced external values
    are available both under their entity key (``record["customer_metrics"]``,
    ``record["subscription"]``) and at the top level when the name is free.
    """
    customer_values = _row_to_dict(customer)
    record: Dict[str, Any] = dict(customer_values)
    record[EntityType.CUSTOMER.value] = customer_values

    metric_values = _row_to_dict(metrics, METRICS_EXCLUDED_COLUMNS) if metrics is not None else {}
    record[EntityType.CUSTOMER_METRICS.value] = metric_values
    for key, value in metric_values.items():
        record.setdefault(key, value)

    for entity, values in (customer.external_data or {}).items():
        if not isinstance(values, dict):
            continue
        record[entity] = values
        for key, value in values.items():
            record.setdefault(key, value)

    return record


class RedZoneMonitor:
    """Evaluates red zone rules against stored customers and manages their alerts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_rules(self, enabled_only: bool = True) -> Tuple[List[RedZoneRuleDefinition], List[str]]:
        """Validated rules in id order, plus an error message per rule that failed validation."""
        query = select(RedZoneRule).order_by(RedZoneRule.id)
        if enabled_only:
            query = query.where(RedZoneRule.enabled == True)  # noqa: E712
        result = await self.db.execute(query)

        rules: List[RedZoneRuleDefinition] = []
        errors: List[str] = []
        for row in result.scalars().all():
            try:
                rules.append(parse_rule(row))
            except RuleSchemaError as e:
                logger.error(f"Skipping red zone rule {row.id} ({row.name}): {e.message} {e.errors}")
                errors.append(f"Rule {row.id} ({row.name}): {e.message}")
        return rules, errors

    async def load_records(self, customer_ids: Optional[Sequence[int]] = None) -> List[Tuple[Customer, Dict[str, Any]]]:
        query = (
            select(Customer, CustomerMetrics)
            .outerjoin(CustomerMetrics, CustomerMetrics.customer_id == Customer.id)
            .order_by(Customer.id)
        )
        if customer_ids is not None:
            query = query.where(Customer.id.in_(customer_ids))
        result = await self.db.execute(query)
        return [(customer, build_customer_record(customer, metrics)) for customer, metrics in result.all()]

    async def get_evaluator(self) -> ConditionEvaluator:
        catalog = await FieldCatalogResolver(self.db).get_catalog()
        return ConditionEvaluator(catalog)

    async def _open_alerts_by_customer(self, customer_ids: Optional[Sequence[int]] = None) -> Dict[int, List[RedZoneAlert]]:
        query = select(RedZoneAlert).where(RedZoneAlert.status == AlertStatus.OPEN.value).order_by(RedZoneAlert.id)
        if customer_ids is not None:
            query = query.where(RedZoneAlert.customer_id.in_(customer_ids))
        result = await self.db.execute(query)
        grouped: Dict[int, List[RedZoneAlert]] = {}
        for alert in result.scalars().all():
            grouped.setdefault(alert.customer_id, []).append(alert)
        return grouped

    async def run_check(self, customer_ids: Optional[Sequence[int]] = None) -> RedZoneCheckResult:
        """Evaluate every enabled rule against every customer (or the given customers) and commit."""
        start_time = time.time()
        result = RedZoneCheckResult()

        rules, rule_errors = await self.load_rules()
        result.rules_evaluated = len(rules)
        result.errors.extend(rule_errors)

        evaluator = await self.get_evaluator()
        records = await self.load_records(customer_ids)
        open_alerts = await self._open_alerts_by_customer(customer_ids)
        now = datetime.utcnow()

        for customer, record in records:
            try:
                raised, resolved = self.evaluate_customer(
                    customer, record, rules, open_alerts.get(customer.id, []), evaluator, now
                )
            except Exception as e:
                logger.error(f"Red zone check failed for customer {customer.id}: {e}", exc_info=True)
                result.errors.append(f"Customer {customer.id}: {e}")
                continue
            result.customers_evaluated += 1
            result.alerts_raised += raised
            result.alerts_resolved += resolved

        await self.db.commit()

        result.execution_time_ms = (time.time() - start_time) * 1000
        return result

    def evaluate_customer(
        self,
        customer: Customer,
        record: Dict[str, Any],
        rules: Sequence[RedZoneRuleDefinition],
        open_alerts: Sequence[RedZoneAlert],
        evaluator: ConditionEvaluator,
        now: datetime,
    ) -> Tuple[int, int]:
        """
        Apply every rule to one customer. Returns (alerts raised, alerts resolved).

        All decisions are made before the session is touched, so a failure
        part way through leaves this customer unchanged.
        """
        open_by_rule: Dict[int, List[RedZoneAlert]] = {}
        for alert in open_alerts:
            if alert.rule_id is not None:
                open_by_rule.setdefault(alert.rule_id, []).append(alert)

        to_resolve: List[RedZoneAlert] = []
        to_raise: List[RedZoneRuleDefinition] = []
        for rule in rules:
            existing = open_by_rule.get(rule.id)
            if existing:
                # A resolved alert is not raised again in the same run
                if evaluator.should_resolve(rule, record):
                    to_resolve.extend(existing)
            elif evaluator.evaluate(rule.conditions, record):
                to_raise.append(rule)

        for alert in to_resolve:
            resolve_alert(self.db, alert, automatic=True, now=now)
        for rule in to_raise:
            raise_alert_for_rule(self.db, customer.id, rule, now)

        customer.in_red_zone = len(open_alerts) - len(to_resolve) + len(to_raise) > 0
        return len(to_raise), len(to_resolve)

    async def preview(self, expression: RuleExpression, limit: int) -> RulePreviewResult:
        """Which stored customers an expression would flag right now."""
        evaluator = await self.get_evaluator()
        records = await self.load_records()

        matches = [customer for customer, record in records if evaluator.evaluate(expression, record)]
        return RulePreviewResult(
            customers_evaluated=len(records),
            total_matches=len(matches),
            sample_customers=[
                {"id": c.id, "name": c.name, "status": c.status, "in_red_zone": bool(c.in_red_zone)}
                for c in matches[:limit]
            ],
        )

    # Manual alert handling

    async def create_alert(self, data: RedZoneAlertCreate, performed_by: Optional[int] = None) -> RedZoneAlert:
        alert = raise_alert(
            self.db,
            customer_id=data.customer_id,
            reason=data.reason,
            severity=data.severity,
            rule_id=data.rule_id,
            details=data.details,
            notes=data.notes,
            performed_by=performed_by,
        )
        await self.refresh_red_zone_flag(data.customer_id)
        return alert

    async def resolve(
        self, alert: RedZoneAlert, resolved_by: Optional[int] = None, summary: Optional[str] = None
    ) -> bool:
        """Resolve manually. Returns False when the alert was already resolved."""
        changed = resolve_alert(self.db, alert, resolved_by=resolved_by, summary=summary)
        if changed:
            await self.refresh_red_zone_flag(alert.customer_id)
        return changed

    async def refresh_red_zone_flag(self, customer_id: int) -> bool:
        open_count = await self.db.scalar(
            select(func.count(RedZoneAlert.id)).where(
                RedZoneAlert.customer_id == customer_id,
                RedZoneAlert.status == AlertStatus.OPEN.value,
            )
        )
        in_red_zone = bool(open_count)
        customer = await self.db.get(Customer, customer_id)
        if customer is not None:
            customer.in_red_zone = in_red_zone
        return in_red_zone
