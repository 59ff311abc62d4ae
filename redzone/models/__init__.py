from redzone.models.customer import Customer, CustomerMetrics
from redzone.models.field_mapping import ChargebeeFieldMapping, MySQLFieldMapping
from redzone.models.red_zone import RedZoneRule, RedZoneAlert, RedZoneActivityLog

__all__ = [
    "Customer",
    "CustomerMetrics",
    "ChargebeeFieldMapping",
    "MySQLFieldMapping",
    "RedZoneRule",
    "RedZoneAlert",
    "RedZoneActivityLog",
]
