"""
Shared column helpers for the workflow models.

Enumerated columns are closed string enums. They are enforced twice:
a CHECK constraint in the schema and a ``@validates`` hook that rejects
out-of-domain values with ``invalid_value`` before anything is flushed.
"""

import uuid
from datetime import date, datetime, timezone

from civictrack.core.exceptions import InvalidValueError
from civictrack.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def enum_check(column: str, values, name: str) -> db.CheckConstraint:
    """Build ``CHECK (column IN (...))`` from an enum tuple."""
    quoted = ",".join(f"'{v}'" for v in values)
    return db.CheckConstraint(f"{column} IN ({quoted})", name=name)


def check_enum(model: str, field: str, value, allowed, *, nullable: bool = False):
    """Return *value* if it belongs to *allowed*, else raise invalid_value."""
    if value is None and nullable:
        return value
    if value not in allowed:
        raise InvalidValueError(
            f"{model}.{field} must be one of {', '.join(allowed)} (got {value!r})",
            details={field: f"not in {list(allowed)}"},
        )
    return value


def iso(value) -> str | None:
    """Serialise a datetime/date; naive datetimes read back from SQLite are UTC."""
    if value is None:
        return None
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)
