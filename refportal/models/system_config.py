"""
System configuration store — key/value rows edited by administrators.

The workflow engine reads two keys:
    APPROVAL_AUTHORITY_DESIGNATIONS  designations allowed to approve forms
    INTER_LAB_DISTRIBUTION_ROLES     roles allowed to distribute across labs

Values are JSON; legacy rows may hold a comma-separated string instead of a list.
"""

from datetime import datetime, timezone

from refportal.models import db

APPROVAL_AUTHORITY_KEY = "APPROVAL_AUTHORITY_DESIGNATIONS"
INTER_LAB_DISTRIBUTION_KEY = "INTER_LAB_DISTRIBUTION_ROLES"


class SystemConfig(db.Model):
    __tablename__ = "system_configs"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.JSON, nullable=True)
    description = db.Column(db.String(500))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def as_list(self) -> list[str]:
        """Normalise the stored value to a list of stripped strings."""
        if isinstance(self.value, list):
            return [str(v).strip() for v in self.value if str(v).strip()]
        if isinstance(self.value, str):
            return [v.strip() for v in self.value.split(",") if v.strip()]
        return []

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "value": self.value,
            "description": self.description,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
