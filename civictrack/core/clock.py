"""
Injectable time and id sources.

``create_app`` stores a clock and an id factory in ``app.extensions`` so that
tests can freeze ``now()`` / ``today()`` and get predictable ids. Services
never call ``datetime.now`` or ``uuid4`` directly; they go through
``get_clock()`` and ``new_id()``.
"""

import uuid
from datetime import date, datetime, timezone

from flask import current_app, has_app_context

CLOCK_EXTENSION = "civictrack.clock"
ID_FACTORY_EXTENSION = "civictrack.id_factory"


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


def uuid_factory() -> str:
    return str(uuid.uuid4())


_SYSTEM_CLOCK = SystemClock()


def get_clock():
    if has_app_context():
        return current_app.extensions.get(CLOCK_EXTENSION, _SYSTEM_CLOCK)
    return _SYSTEM_CLOCK


def new_id() -> str:
    factory = uuid_factory
    if has_app_context():
        factory = current_app.extensions.get(ID_FACTORY_EXTENSION, uuid_factory)
    return factory()
