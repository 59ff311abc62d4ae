"""
Red Zone Models

Rules flag at-risk customers; alerts record each flag until it is resolved
by a CSM or automatically by the rule's resolution conditions. Every alert
transition is written to the activity log.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Enum as SQLEnum, JSON, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from redzone.database import Base


severity_enum = SQLEnum("critical", "high_risk", "attention_needed", name="red_zone_severity_enum")


class RedZoneRule(Base):
    """
    Admin-defined red zone rule.

    ``conditions`` holds the rule expression JSON:
    {
        "logicOperator": "OR",
        "groups": [
            {"logicOperator": "AND", "conditions": [
                {"field": "nps", "operator": "less_than", "value": "5", "entityType": "customer_metrics"}
            ]},
            {"logicOperator": "AND", "conditions": [
                {"field": "days_since_campaign", "operator": "greater_than", "value": "60"}
            ]}
        ]
    }
    Rows written before groups existed hold a bare list of conditions.
    """

    __tablename__ = "red_zone_rules"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, unique=True)
    description = Column(Text)

    severity = Column(severity_enum, default="attention_needed")

    conditions = Column(JSON, nullable=False)

    # Resolution
    auto_resolve = Column(Boolean, default=False)
    resolution_conditions = Column(JSON)  # Flat list, all must hold
    team_lead_approval_required = Column(Boolean, default=False)

    notification_message = Column(Text)
    enabled = Column(Boolean, default=True, index=True)

    created_by = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<RedZoneRule id={self.id} name='{self.name}' severity={self.severity}>"


class RedZoneAlert(Base):
    """A customer flagged into the red zone."""

    __tablename__ = "red_zone_alerts"
    __table_args__ = (
        Index("ix_red_zone_alerts_customer_status", "customer_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    rule_id = Column(Integer, ForeignKey("red_zone_rules.id", ondelete="SET NULL"), index=True)  # Null for manual alerts

    reason = Column(String(500), nullable=False)
    severity = Column(severity_enum, nullable=False)
    status = Column(SQLEnum("open", "resolved", name="red_zone_alert_status_enum"), default="open", nullable=False)

    details = Column(JSON)  # {"rule_name": "...", "evaluated_at": "..."}
    notes = Column(Text)

    # Resolution
    resolution_summary = Column(Text)
    resolved_by = Column(Integer)  # Null when auto-resolved
    resolved_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def __repr__(self):
        return f"<RedZoneAlert id={self.id} customer_id={self.customer_id} status={self.status}>"


class RedZoneActivityLog(Base):
    """Audit trail of alert transitions."""

    __tablename__ = "red_zone_activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    alert_id = Column(Integer, ForeignKey("red_zone_alerts.id", ondelete="CASCADE"), nullable=False, index=True)

    action = Column(String(50), nullable=False)  # 'created', 'resolved', 'auto_resolved'
    performed_by = Column(Integer)  # Null for scheduled checks
    details = Column(JSON)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Lets a log entry be added alongside a not-yet-flushed alert
    alert = relationship("RedZoneAlert")

    def __repr__(self):
        return f"<RedZoneActivityLog alert_id={self.alert_id} action={self.action}>"
