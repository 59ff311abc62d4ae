"""
Customer record factory.

Generates resolved customer records as the red zone evaluator sees them.
"""

import factory
from faker import Faker

fake = Faker()


class CustomerRecordFactory(factory.Factory):
    """
    Factory for resolved customer records.

    Usage:
        record = CustomerRecordFactory()
        record = CustomerRecordFactory(nps=2)
        records = CustomerRecordFactory.create_batch(20)
    """

    class Meta:
        model = dict

    id = factory.Sequence(lambda n: n + 1)
    name = factory.LazyFunction(fake.company)
    industry = factory.LazyFunction(
        lambda: fake.random_element(["Retail", "Food & Beverage", "Fitness", "Salon"])
    )
    status = "active"
    mrr = factory.LazyFunction(lambda: float(fake.random_int(min=99, max=2500)))
    health_status = "healthy"
    nps = factory.LazyFunction(lambda: fake.random_int(min=6, max=10))
    days_since_campaign = factory.LazyFunction(lambda: fake.random_int(min=0, max=30))
    renewal_date = factory.LazyFunction(lambda: fake.date_between(start_date="+30d", end_date="+1y").isoformat())
    campaign_stats = factory.LazyFunction(
        lambda: {"sent": fake.random_int(min=1, max=40), "opened": fake.random_int(min=0, max=20)}
    )
    tags = factory.LazyFunction(lambda: ["loyalty", "newsletter"])
    in_red_zone = False


class AtRiskCustomerRecordFactory(CustomerRecordFactory):
    """Customer that should trip the standard engagement rules."""

    health_status = "at_risk"
    nps = 3
    days_since_campaign = 75


class HealthyCustomerRecordFactory(CustomerRecordFactory):
    health_status = "healthy"
    nps = 9
    days_since_campaign = 5
