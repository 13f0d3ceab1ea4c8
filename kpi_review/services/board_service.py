"""
Board read model.

Builds what a KPI board shows for one viewer: every deliverable with its
scores, status, the status values the viewer may pick and the matching
discrepancy. Recurring deliverables list their stored occurrences plus the
current period's occurrence, synthesized with status "Pending" when it does
not exist yet. Nothing is written here.

Cells on an assignee's board (the assignee's own, or the creator looking at
one assignee) carry only that assignee's scorecard. The creator's own board
shows the deliverable status and lists every assignee's scorecard under
``scorecards``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select

from kpi_review.core.exceptions import NotAuthorized
from kpi_review.models import db
from kpi_review.models.discrepancy import Discrepancy
from kpi_review.services.access import Caller, is_super_admin
from kpi_review.services.discrepancy_service import correlate_discrepancy
from kpi_review.services.kpi_service import get_kpi_or_404, unit_status
from kpi_review.services.recurrence import current_period_label, resolve_granularity
from kpi_review.services.status_projector import (
    VIEWER_NONE,
    allowed_statuses,
    board_target,
    kpi_has_self_score,
    viewer_kind,
)

_NO_SCORES = {
    "assignee_score": None,
    "creator_score": None,
    "has_saved_assignee": False,
    "has_saved_creator": False,
}


def _synthetic_occurrence(deliverable, label: str) -> dict:
    return {
        "id": None,
        "deliverable_id": deliverable.id,
        "period_label": label,
        "persisted": False,
        "status": "Pending",
    }


def _discrepancy(records, deliverable, label, assignee_id):
    record = correlate_discrepancy(
        records,
        deliverable.kpi_id,
        deliverable.position,
        assignee_id,
        period_label=label,
        deliverable_id=deliverable.id,
    )
    return record.to_dict() if record is not None else None


def _cell(base: dict, deliverable, period, label, records, viewer: str, target: int | None) -> dict:
    """One unit as seen on ``target``'s board (the creator's own board when None)."""
    cell = {k: v for k, v in base.items() if k != "scorecards"}
    card = deliverable.scorecard_for(label, target) if target is not None else None
    cell.update(card.score_dict() if card is not None else _NO_SCORES)
    cell["status"] = unit_status(period, card)
    cell["assignee_id"] = target
    cell["allowed_statuses"] = list(
        allowed_statuses(viewer, card is not None and card.has_saved_assignee, cell["status"])
    )
    if target is not None:
        cell["discrepancy"] = _discrepancy(records, deliverable, label, target)
        return cell

    cell["discrepancy"] = None
    cell["scorecards"] = []
    for other in deliverable.scorecards_for(label):
        entry = other.to_dict()
        entry["discrepancy"] = _discrepancy(records, deliverable, label, other.assignee_id)
        cell["scorecards"].append(entry)
    return cell


def build_board(kpi_id: int, caller: Caller, assignee_id: int | None = None, now: datetime | None = None) -> dict:
    """Return the board for ``kpi_id`` as seen by ``caller``.

    Args:
        kpi_id:      KPI to render.
        caller:      Viewer.
        assignee_id: Assignee whose board the creator is looking at; None for
                     the creator's own board. Ignored for assignees, who
                     always see their own.
        now:         Reference time for the current period (defaults to now).

    Raises:
        NotFoundError:   unknown KPI or assignee.
        NotAuthorized:   viewer has no relationship to the KPI.
        ValidationError: ``assignee_id`` is not in the KPI's assignment set.
    """
    kpi = get_kpi_or_404(kpi_id)
    viewer = viewer_kind(kpi, caller, assignee_id)
    if viewer == VIEWER_NONE and not is_super_admin(caller):
        raise NotAuthorized("You are not part of this KPI.")
    target = board_target(kpi, caller, viewer, assignee_id)
    now = now or datetime.now(timezone.utc)

    stmt = select(Discrepancy).where(Discrepancy.kpi_id == kpi.id)
    if target is not None:
        stmt = stmt.where(Discrepancy.assignee_id == target)
    records = db.session.execute(stmt).scalars().all()

    deliverables = []
    for deliverable in kpi.deliverables:
        row = deliverable.to_dict()
        if not deliverable.is_recurring:
            deliverables.append(_cell(row, deliverable, deliverable, None, records, viewer, target))
            continue

        labels = [o.period_label for o in deliverable.occurrences]
        current = current_period_label(deliverable.recurrence_pattern, now, labels)
        units = [(o.to_dict(), o) for o in deliverable.occurrences]
        if current not in labels:
            units.append((_synthetic_occurrence(deliverable, current), None))
            units.sort(key=lambda unit: unit[0]["period_label"])
        row["granularity"] = resolve_granularity(deliverable.recurrence_pattern, labels)
        row["current_period_label"] = current
        row["occurrences"] = [
            _cell(base, deliverable, period, base["period_label"], records, viewer, target)
            for base, period in units
        ]
        row["discrepancy"] = None
        deliverables.append(row)

    kpi_status = kpi.status_for(target)
    return {
        "kpi": kpi.to_dict(),
        "viewer": viewer,
        "assignee_id": target,
        "status": kpi_status,
        "allowed_statuses": list(allowed_statuses(viewer, kpi_has_self_score(kpi, target), kpi_status)),
        "deliverables": deliverables,
    }
