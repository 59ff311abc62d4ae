from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, Float, Text, ForeignKey, JSON
from sqlalchemy.sql import func
from redzone.database import Base


class Customer(Base):
    """Customer account tracked by the customer success team."""

    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    industry = Column(String(100))
    website = Column(String(255))
    status = Column(String(50), default="active")

    # Revenue
    arr = Column(Float)
    mrr = Column(Float)
    add_on_revenue = Column(Float)

    # Lifecycle dates
    onboarding_start_date = Column(DateTime(timezone=True))
    onboarding_completion_date = Column(DateTime(timezone=True))
    renewal_date = Column(Date)
    last_review_meeting = Column(DateTime(timezone=True))

    # Engagement
    campaign_stats = Column(JSON)  # {"sent": 12, "opened": 7, "last_campaign_at": "2026-01-04"}
    nps_score = Column(Integer)
    data_tagging_percentage = Column(Float)

    assigned_to_user_id = Column(Integer, index=True)
    external_ids = Column(JSON)  # {"chargebee": "cb_123", "mysql_company": 42}

    # Values written by the billing and company sync jobs, keyed by entity:
    # {"subscription": {"plan_amount": 99}, "company": {"loyalty_enabled": true}}
    external_data = Column(JSON)

    in_red_zone = Column(Boolean, default=False, index=True)

    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Customer id={self.id} name='{self.name}'>"


class CustomerMetrics(Base):
    """
    Computed engagement metrics, one row per customer.

    Refreshed by the metrics job; the red zone check reads whatever was last
    computed.
    """

    __tablename__ = "customer_metrics"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, unique=True)

    days_since_campaign = Column(Integer)
    days_since_review_meeting = Column(Integer)
    onboarding_days = Column(Integer)
    monthly_campaign_count = Column(Integer)
    has_qr_loyalty_setup = Column(Boolean)
    nps = Column(Integer)
    data_tagging_percentage = Column(Float)
    revenue_change_pct = Column(Float)

    computed_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<CustomerMetrics customer_id={self.customer_id}>"
