"""
Red zone alert lifecycle.

An alert is raised ``open`` and ends ``resolved``, either by a CSM or
automatically when its rule's resolution conditions hold on a later check.
Resolved alerts are never reopened; a later match raises a new alert.

Every transition adds an activity log entry to the session. Nothing here
flushes or commits; the caller owns the transaction.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from redzone.models.red_zone import RedZoneActivityLog, RedZoneAlert
from redzone.schemas.red_zone import AlertStatus, RedZoneRuleDefinition, Severity


class AlertAction:
    CREATED = "created"
    RESOLVED = "resolved"
    AUTO_RESOLVED = "auto_resolved"


AUTO_RESOLUTION_SUMMARY = "Resolution conditions met"


def raise_alert(
    db: AsyncSession,
    customer_id: int,
    reason: str,
    severity: Severity,
    rule_id: Optional[int] = None,
    details: Optional[dict] = None,
    notes: Optional[str] = None,
    performed_by: Optional[int] = None,
) -> RedZoneAlert:
    """Add a new open alert and its ``created`` activity entry."""
    alert = RedZoneAlert(
        customer_id=customer_id,
        rule_id=rule_id,
        reason=reason[:500],
        severity=Severity(severity).value,
        status=AlertStatus.OPEN.value,
        details=details,
        notes=notes,
    )
    db.add(alert)
    log_activity(db, alert, AlertAction.CREATED, performed_by=performed_by, details={"severity": alert.severity})
    return alert


def raise_alert_for_rule(
    db: AsyncSession, customer_id: int, rule: RedZoneRuleDefinition, evaluated_at: datetime
) -> RedZoneAlert:
    return raise_alert(
        db,
        customer_id=customer_id,
        reason=rule.notification_message or rule.name,
        severity=rule.severity,
        rule_id=rule.id,
        details={
            "rule_name": rule.name,
            "evaluated_at": evaluated_at.isoformat(),
            "team_lead_approval_required": rule.team_lead_approval_required,
        },
    )


def resolve_alert(
    db: AsyncSession,
    alert: RedZoneAlert,
    resolved_by: Optional[int] = None,
    summary: Optional[str] = None,
    automatic: bool = False,
    now: Optional[datetime] = None,
) -> bool:
    """
    Move an open alert to resolved.

    Returns False, changing nothing, when the alert is already resolved.
    """
    if not alert.is_open:
        return False

    alert.status = AlertStatus.RESOLVED.value
    alert.resolved_at = now or datetime.utcnow()
    alert.resolved_by = resolved_by
    alert.resolution_summary = summary or (AUTO_RESOLUTION_SUMMARY if automatic else None)

    log_activity(
        db,
        alert,
        AlertAction.AUTO_RESOLVED if automatic else AlertAction.RESOLVED,
        performed_by=resolved_by,
        details={"resolution_summary": alert.resolution_summary} if alert.resolution_summary else None,
    )
    return True


def log_activity(
    db: AsyncSession,
    alert: RedZoneAlert,
    action: str,
    performed_by: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
) -> RedZoneActivityLog:
    entry = RedZoneActivityLog(alert=alert, action=action, performed_by=performed_by, details=details)
    db.add(entry)
    return entry
