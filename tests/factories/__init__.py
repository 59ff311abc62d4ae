"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .customer import CustomerRecordFactory, AtRiskCustomerRecordFactory, HealthyCustomerRecordFactory
from .red_zone import ConditionFactory, RulePayloadFactory, OrRulePayloadFactory, AutoResolveRulePayloadFactory

__all__ = [
    "CustomerRecordFactory",
    "AtRiskCustomerRecordFactory",
    "HealthyCustomerRecordFactory",
    # Red zone
    "ConditionFactory",
    "RulePayloadFactory",
    "OrRulePayloadFactory",
    "AutoResolveRulePayloadFactory",
]
