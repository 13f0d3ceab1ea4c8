"""
KPI Review Engine
KPI domain models.

Models:
    - Kpi:            a KPI authored by a creator (supervisor) and assigned to users / roles
    - Deliverable:    unit of work inside a KPI, single-instance or recurring
    - Occurrence:     one due instance of a recurring deliverable, keyed by period label
    - Scorecard:      one assignee's copy of a deliverable or occurrence (scores + status)
    - KpiUserStatus:  per-assignee KPI status (the creator may also set it globally)

Architecture:
    Kpi ──1:N──▶ Deliverable ──1:N──▶ Occurrence   (recurring mode only)
                 Deliverable ──1:N──▶ Scorecard    (one per assignee and period)
    Kpi ──N:M──▶ User                               (assignment set, via kpi_assignees)
    Kpi ──1:N──▶ KpiUserStatus

Score slots:
    Every member of the assignment set scores independently. A Scorecard
    carries that assignee's two embedded score slots, ``assignee_score`` and
    ``creator_score``, stored as JSON:

        {"value": 75, "notes": "...", "entered_by": 3,
         "timestamp": "2025-03-14T09:00:00+00:00", "supporting_documents": [url, ...]}

    Deliverable and Occurrence keep only the status shown on the creator's
    own board; a new Scorecard starts from that status.
"""

from datetime import datetime, timezone

from kpi_review.models import db


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

# Ordered: UI renders status options in this order.
DELIVERABLE_STATUSES = ("Pending", "In Progress", "Completed", "Approved")

PRIORITIES = {"High", "Medium", "Low"}

SCHEDULING_SINGLE = "single"
SCHEDULING_RECURRING = "recurring"

SCORE_MIN = 0
SCORE_MAX = 100

# Scorecard.period_label for single deliverables
NO_PERIOD = ""


kpi_assignees = db.Table(
    "kpi_assignees",
    db.Column("kpi_id", db.Integer, db.ForeignKey("kpis.id", ondelete="CASCADE"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Kpi(db.Model):
    __tablename__ = "kpis"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default="Pending")
    assigned_roles = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    creator = db.relationship("User", foreign_keys=[created_by])
    assignees = db.relationship("User", secondary=kpi_assignees, lazy="selectin")
    deliverables = db.relationship(
        "Deliverable",
        back_populates="kpi",
        cascade="all, delete-orphan",
        order_by="Deliverable.position",
        lazy="selectin",
    )
    user_statuses = db.relationship(
        "KpiUserStatus", back_populates="kpi", cascade="all, delete-orphan", lazy="selectin",
    )

    def assignee_ids(self) -> set[int]:
        return {u.id for u in self.assignees}

    def status_for(self, user_id: int | None) -> str:
        """Status as seen on ``user_id``'s board, falling back to the global one."""
        for entry in self.user_statuses:
            if entry.user_id == user_id:
                return entry.status
        return self.status

    def to_dict(self, include_deliverables=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "status": self.status,
            "assignee_ids": sorted(self.assignee_ids()),
            "assigned_roles": list(self.assigned_roles or []),
            "user_statuses": {str(s.user_id): s.status for s in self.user_statuses},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_deliverables:
            d["deliverables"] = [dl.to_dict() for dl in self.deliverables]
        return d

    def __repr__(self):
        return f"<Kpi {self.id}: {self.name}>"



class Deliverable(db.Model):
    """A unit of work inside a KPI.

    Scheduling mode is exactly one of:
        single     - ``timeline`` date, one scorecard per assignee on this row
        recurring  - ``recurrence_pattern`` plus occurrences keyed by period label

    ``position`` is a display/ordering hint only; every cross-record
    correlation uses ``id``.
    """

    __tablename__ = "deliverables"

    id = db.Column(db.Integer, primary_key=True)
    kpi_id = db.Column(
        db.Integer, db.ForeignKey("kpis.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(255), nullable=False)
    action = db.Column(db.Text, default="")
    indicator = db.Column(db.Text, default="")
    performance_target = db.Column(db.Text, default="")
    priority = db.Column(db.String(10), nullable=False, default="Medium")
    timeline = db.Column(db.Date, nullable=True)
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    recurrence_pattern = db.Column(db.String(100), nullable=True)  # Daily | Weekly | Monthly | Yearly | free text
    status = db.Column(db.String(20), nullable=False, default="Pending")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    kpi = db.relationship("Kpi", back_populates="deliverables")
    occurrences = db.relationship(
        "Occurrence",
        back_populates="deliverable",
        cascade="all, delete-orphan",
        order_by="Occurrence.period_label",
        lazy="selectin",
    )
    scorecards = db.relationship(
        "Scorecard",
        back_populates="deliverable",
        cascade="all, delete-orphan",
        order_by="Scorecard.assignee_id",
        lazy="selectin",
    )

    __table_args__ = (
        db.Index("ix_deliverables_kpi_position", "kpi_id", "position"),
    )

    @property
    def scheduling(self) -> str:
        return SCHEDULING_RECURRING if self.is_recurring else SCHEDULING_SINGLE

    def occurrence_for(self, period_label: str):
        """Return the persisted occurrence for ``period_label`` or None."""
        for occ in self.occurrences:
            if occ.period_label == period_label:
                return occ
        return None

    def scorecards_for(self, period_label: str | None) -> list:
        key = period_label or NO_PERIOD
        return [card for card in self.scorecards if card.period_label == key]

    def scorecard_for(self, period_label: str | None, assignee_id: int):
        """Return ``assignee_id``'s scorecard for the period (None = single mode) or None."""
        for card in self.scorecards_for(period_label):
            if card.assignee_id == assignee_id:
                return card
        return None

    def to_dict(self):
        d = {
            "id": self.id,
            "kpi_id": self.kpi_id,
            "position": self.position,
            "title": self.title,
            "action": self.action,
            "indicator": self.indicator,
            "performance_target": self.performance_target,
            "priority": self.priority,
            "scheduling": self.scheduling,
            "timeline": self.timeline.isoformat() if self.timeline else None,
            "recurrence_pattern": self.recurrence_pattern,
            "status": self.status,
        }
        if self.is_recurring:
            d["occurrences"] = [o.to_dict() for o in self.occurrences]
        else:
            d["scorecards"] = [c.to_dict() for c in self.scorecards_for(None)]
        return d

    def __repr__(self):
        return f"<Deliverable {self.id} kpi={self.kpi_id} [{self.scheduling}]>"


class Occurrence(db.Model):
    """One due instance of a recurring deliverable.

    ``period_label`` (e.g. "2025-03", "2025", "2025-03-14", "2025-03-14 09:00")
    is unique within its deliverable and is the sole correlation key for the
    occurrence across board, detector and storage.
    """

    __tablename__ = "occurrences"

    id = db.Column(db.Integer, primary_key=True)
    deliverable_id = db.Column(
        db.Integer, db.ForeignKey("deliverables.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    period_label = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="Pending")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    deliverable = db.relationship("Deliverable", back_populates="occurrences")

    __table_args__ = (
        db.UniqueConstraint("deliverable_id", "period_label", name="uq_occurrence_period"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "deliverable_id": self.deliverable_id,
            "period_label": self.period_label,
            "persisted": True,
            "status": self.status,
            "scorecards": [c.to_dict() for c in self.deliverable.scorecards_for(self.period_label)],
        }

    def __repr__(self):
        return f"<Occurrence {self.deliverable_id}/{self.period_label}>"


class Scorecard(db.Model):
    """One assignee's copy of a single deliverable or of one occurrence.

    Holds the two role-owned score slots and the status shown on that
    assignee's board. ``period_label`` is ``NO_PERIOD`` for single
    deliverables so the unique key also holds where NULLs compare distinct.
    """

    __tablename__ = "scorecards"

    id = db.Column(db.Integer, primary_key=True)
    deliverable_id = db.Column(
        db.Integer, db.ForeignKey("deliverables.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    period_label = db.Column(db.String(20), nullable=False, default=NO_PERIOD)
    assignee_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    assignee_score = db.Column(db.JSON, nullable=True)
    creator_score = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="Pending")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    deliverable = db.relationship("Deliverable", back_populates="scorecards")

    __table_args__ = (
        db.UniqueConstraint("deliverable_id", "period_label", "assignee_id", name="uq_scorecard_assignee"),
    )

    @property
    def period(self) -> str | None:
        return self.period_label or None

    @property
    def has_saved_assignee(self) -> bool:
        return self.assignee_score is not None

    @property
    def has_saved_creator(self) -> bool:
        return self.creator_score is not None

    def score_dict(self) -> dict:
        return {
            "assignee_score": self.assignee_score,
            "creator_score": self.creator_score,
            "has_saved_assignee": self.has_saved_assignee,
            "has_saved_creator": self.has_saved_creator,
            "status": self.status,
        }

    def to_dict(self):
        d = {
            "id": self.id,
            "deliverable_id": self.deliverable_id,
            "period_label": self.period,
            "assignee_id": self.assignee_id,
        }
        d.update(self.score_dict())
        return d

    def __repr__(self):
        return f"<Scorecard {self.deliverable_id}/{self.period_label or '-'} assignee={self.assignee_id}>"


class KpiUserStatus(db.Model):
    """KPI status as shown on one assignee's board."""

    __tablename__ = "kpi_user_statuses"

    id = db.Column(db.Integer, primary_key=True)
    kpi_id = db.Column(
        db.Integer, db.ForeignKey("kpis.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    status = db.Column(db.String(20), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    kpi = db.relationship("Kpi", back_populates="user_statuses")

    __table_args__ = (
        db.UniqueConstraint("kpi_id", "user_id", name="uq_kpi_user_status"),
    )
