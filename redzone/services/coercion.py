"""
Value coercion for rule evaluation.

Record values come from several places (ORM columns, JSON blobs written by
the sync jobs, payloads posted to the rule tester), so a number may arrive
as ``5``, ``5.0``, ``Decimal("5")`` or ``"5"``. Every helper here returns
``None`` when a value cannot be coerced; callers treat that as a non-match.
"""

import math
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Optional

from redzone.schemas.red_zone import FieldType

TRUE_STRINGS = {"true", "1", "yes"}
FALSE_STRINGS = {"false", "0", "no"}


def to_number(value: Any) -> Optional[float]:
    """Coerce to a finite float. Booleans are not numbers."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _normalize(value: datetime) -> datetime:
    # Aware values compare as naive UTC
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_datetime(value: Any) -> Optional[datetime]:
    """Coerce ISO-8601 strings, dates and datetimes to a naive UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _normalize(value)
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return _normalize(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def is_date_only(value: str) -> bool:
    """True for a bare calendar date such as ``2026-03-01``."""
    text = value.strip()
    if len(text) != 10:
        return False
    try:
        date.fromisoformat(text)
    except ValueError:
        return False
    return True


def to_boolean(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    return None


def to_text(value: Any) -> str:
    """String form used by equality on string fields and the substring operators."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set, frozenset)):
        return ", ".join(to_text(item) for item in value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def is_empty_value(value: Any) -> bool:
    """None, blank strings and empty collections are empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def infer_field_type(value: Any) -> FieldType:
    """Field type implied by a record value's Python type."""
    if isinstance(value, bool):
        return FieldType.BOOLEAN
    if isinstance(value, (int, float, Decimal)):
        return FieldType.NUMBER
    if isinstance(value, (date, datetime)):
        return FieldType.DATE
    return FieldType.STRING
