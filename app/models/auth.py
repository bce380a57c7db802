"""
Sales Operations Platform
Identity model.

Models:
    - User: platform user; requesters and approvers reference users by id.

Authentication itself happens upstream (JWT middleware); this table is the
read interface used to validate approver lists and render names.
"""

from datetime import datetime, timezone

from app.models import db

USER_STATUSES = {"active", "invited", "inactive", "suspended"}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    role = db.Column(
        db.String(30), default="sales_rep",
        comment="admin | sales_manager | sales_rep | finance",
    )
    status = db.Column(db.String(20), default="active")  # active, invited, inactive, suspended
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "status": self.status,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_summary(self):
        """Compact identity used inside approval and quotation payloads."""
        return {"id": self.id, "full_name": self.full_name, "email": self.email}

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
