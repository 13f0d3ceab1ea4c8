"""
Score discrepancy records and their append-only history.

A Discrepancy flags a disagreement between the assignee's self-reported score
and the creator's review score on one deliverable (or one occurrence of it)
for one assignee.

Correlation key:
    (kpi_id, deliverable_id, period_label | NULL, assignee_id)

Lifecycle:
    NONE → open → meeting_booked → resolved
    open → resolved is also legal; resolved is terminal.

Records are never deleted while their KPI exists; ``history`` rows are
append-only.
"""

from datetime import datetime, timezone

from kpi_review.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_REASON = "Score discrepancy detected"

STATE_OPEN = "open"
STATE_MEETING_BOOKED = "meeting_booked"
STATE_RESOLVED = "resolved"

DISCREPANCY_STATES = (STATE_OPEN, STATE_MEETING_BOOKED, STATE_RESOLVED)

HISTORY_ACTIONS = {"created", "meeting-booked", "resolved"}

DISCREPANCY_TRANSITIONS = {
    STATE_OPEN:           [STATE_MEETING_BOOKED, STATE_RESOLVED],
    STATE_MEETING_BOOKED: [STATE_MEETING_BOOKED, STATE_RESOLVED],  # re-booking replaces the meeting
    STATE_RESOLVED:       [],
}


def validate_discrepancy_transition(old_state, new_state):
    """Return True if old_state → new_state is a legal lifecycle edge."""
    return new_state in DISCREPANCY_TRANSITIONS.get(old_state, [])


class Discrepancy(db.Model):
    __tablename__ = "discrepancies"

    id = db.Column(db.Integer, primary_key=True)
    kpi_id = db.Column(
        db.Integer, db.ForeignKey("kpis.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    deliverable_id = db.Column(
        db.Integer, db.ForeignKey("deliverables.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    deliverable_index = db.Column(db.Integer, nullable=False, default=0)  # display hint
    period_label = db.Column(db.String(20), nullable=True, index=True)
    assignee_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )

    # Score snapshots, same JSON shape as the deliverable score slots
    assignee_score = db.Column(db.JSON, nullable=False)
    creator_score = db.Column(db.JSON, nullable=False)
    resolved_score = db.Column(db.JSON, nullable=True)
    previous_score = db.Column(db.JSON, nullable=True)

    reason = db.Column(db.Text, nullable=False, default=DEFAULT_REASON)
    resolution_notes = db.Column(db.Text, nullable=True)
    resolved = db.Column(db.Boolean, nullable=False, default=False, index=True)
    flagged_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Meeting (advisory; replaced on re-booking)
    meeting_at = db.Column(db.DateTime(timezone=True), nullable=True)
    meeting_notes = db.Column(db.Text, nullable=True)
    meeting_booked_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    history = db.relationship(
        "DiscrepancyHistory",
        back_populates="discrepancy",
        cascade="all, delete-orphan",
        order_by="DiscrepancyHistory.id",
        lazy="selectin",
    )
    assignee = db.relationship("User", foreign_keys=[assignee_id])

    __table_args__ = (
        db.UniqueConstraint(
            "kpi_id", "deliverable_id", "period_label", "assignee_id",
            name="uq_discrepancy_correlation",
        ),
        db.Index("ix_discrepancy_kpi_assignee", "kpi_id", "assignee_id"),
    )

    @property
    def state(self) -> str:
        if self.resolved:
            return STATE_RESOLVED
        if self.meeting_at is not None:
            return STATE_MEETING_BOOKED
        return STATE_OPEN

    @property
    def meeting_booked(self) -> bool:
        return self.meeting_at is not None

    @property
    def difference(self) -> float:
        return abs(self.assignee_score["value"] - self.creator_score["value"])

    def meeting_dict(self):
        if self.meeting_at is None:
            return None
        return {
            "timestamp": _iso(self.meeting_at),
            "notes": self.meeting_notes or "",
            "booked_by": self.meeting_booked_by,
        }

    def to_dict(self, include_history=True):
        d = {
            "id": self.id,
            "kpi_id": self.kpi_id,
            "deliverable_id": self.deliverable_id,
            "deliverable_index": self.deliverable_index,
            "period_label": self.period_label,
            "assignee_id": self.assignee_id,
            "assignee_name": self.assignee.full_name if self.assignee else None,
            "assignee_score": self.assignee_score,
            "creator_score": self.creator_score,
            "resolved_score": self.resolved_score,
            "previous_score": self.previous_score,
            "difference": self.difference,
            "reason": self.reason or DEFAULT_REASON,
            "resolution_notes": self.resolution_notes or "",
            "resolved": self.resolved,
            "state": self.state,
            "flagged_at": _iso(self.flagged_at),
            "resolved_at": _iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "meeting": self.meeting_dict(),
            "meeting_booked": self.meeting_booked,
        }
        if include_history:
            d["history"] = [h.to_dict() for h in self.history]
        return d

    def __repr__(self):
        return (
            f"<Discrepancy #{self.id} kpi={self.kpi_id} deliverable={self.deliverable_id} "
            f"period={self.period_label} {self.state}>"
        )


class DiscrepancyHistory(db.Model):
    """Append-only audit entry for a discrepancy."""

    __tablename__ = "discrepancy_history"

    id = db.Column(db.Integer, primary_key=True)
    discrepancy_id = db.Column(
        db.Integer, db.ForeignKey("discrepancies.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    action = db.Column(db.String(30), nullable=False)  # created | meeting-booked | resolved
    by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    discrepancy = db.relationship("Discrepancy", back_populates="history")

    def to_dict(self):
        return {
            "action": self.action,
            "by": self.by,
            "timestamp": _iso(self.timestamp),
        }
