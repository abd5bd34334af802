"""
Auth Models — portal users.

Authentication itself (password login, SSO, session issuance) lives outside
this service; the workflow engine only needs a stable user identity plus
the organisational attributes it checks: lab membership for delegation and
designation for approval authority.
"""

from datetime import datetime, timezone

from refportal.models import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    designation = db.Column(db.String(120), comment="e.g. Scientist, Principal Scientist, Director")
    lab_name = db.Column(db.String(200), index=True, comment="Organisational unit; delegation stays inside one lab")
    role = db.Column(db.String(50), default="user")
    avatar_url = db.Column(db.String(500))
    status = db.Column(db.String(20), default="active")  # active, inactive, suspended
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "designation": self.designation,
            "lab_name": self.lab_name,
            "role": self.role,
            "status": self.status,
        }

    def to_summary(self):
        """Compact identity used inside timelines and inbox rows."""
        return {
            "id": self.id,
            "full_name": self.full_name,
            "designation": self.designation,
            "lab_name": self.lab_name,
            "avatar_url": self.avatar_url,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
