"""
Department model: government departments that own issues and tenders.

Issues reference a department once they reach ``department_assigned``;
tenders reference the department that published them.
"""

from sqlalchemy.orm import validates

from civictrack.core.clock import get_clock, new_id
from civictrack.models import db
from civictrack.models.base import _utcnow, _uuid, check_enum, enum_check, iso

__all__ = [
    "DEPARTMENT_CATEGORIES",
    "DEFAULT_DEPARTMENTS",
    "Department",
    "seed_default_departments",
]


DEPARTMENT_CATEGORIES = (
    "administration", "public_works", "utilities", "environment",
    "safety", "parks", "planning", "finance",
)

DEFAULT_DEPARTMENTS = [
    {
        "name": "Public Works Department", "code": "PWD", "category": "public_works",
        "description": "Responsible for roads, bridges, and infrastructure maintenance",
        "contact_email": "pwd@city.gov",
    },
    {
        "name": "Water & Utilities Department", "code": "WUD", "category": "utilities",
        "description": "Manages water supply, sewage, and utility services",
        "contact_email": "water@city.gov",
    },
    {
        "name": "Parks & Recreation Department", "code": "PRD", "category": "parks",
        "description": "Maintains parks, gardens, and recreational facilities",
        "contact_email": "parks@city.gov",
    },
    {
        "name": "Environmental Services", "code": "ENV", "category": "environment",
        "description": "Handles environmental protection and waste management",
        "contact_email": "env@city.gov",
    },
    {
        "name": "Public Safety Department", "code": "PSD", "category": "safety",
        "description": "Ensures public safety and emergency response",
        "contact_email": "safety@city.gov",
    },
    {
        "name": "Urban Planning Department", "code": "UPD", "category": "planning",
        "description": "City planning and development oversight",
        "contact_email": "planning@city.gov",
    },
]


class Department(db.Model):
    __tablename__ = "departments"
    __table_args__ = (
        enum_check("category", DEPARTMENT_CATEGORIES, "ck_department_category"),
        db.Index("idx_departments_category", "category"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    code = db.Column(db.String(20), unique=True, nullable=False)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(30), nullable=False)
    contact_email = db.Column(db.String(200), nullable=True)
    contact_phone = db.Column(db.String(50), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @validates("category")
    def _validate_category(self, key, value):
        return check_enum("Department", key, value, DEPARTMENT_CATEGORIES)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "category": self.category,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Department {self.code}: {self.name}>"


def seed_default_departments() -> int:
    """Insert the default departments that are not present yet. Returns the count added."""
    existing = {code for (code,) in db.session.query(Department.code).all()}
    now = get_clock().now()
    added = 0
    for row in DEFAULT_DEPARTMENTS:
        if row["code"] in existing:
            continue
        db.session.add(Department(id=new_id(), created_at=now, updated_at=now, **row))
        added += 1
    db.session.flush()
    return added
