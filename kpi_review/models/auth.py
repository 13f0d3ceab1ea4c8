"""
Identity mirror - users known to the review engine.

Authentication and session handling live outside this service; the rows here
only give listings and audit trails a human-readable name for an id that
arrives in the caller's access token.
"""

from datetime import datetime, timezone

from kpi_review.models import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(100), default="staff")  # organisational role name
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_users_email", "email"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
