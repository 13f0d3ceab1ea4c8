"""
Status Projector - which status values a viewer may set.

    Viewer                                   no self-score        self-score exists
    ───────────────────────────────────────  ───────────────────  ─────────────────────
    assignee only                            Pending, In Progress  + Completed
    creator on their own board               all four              all four
    creator on a specific assignee's board   Pending, In Progress  all four
    neither                                  {current}            {current}

"Approved" is creator-only. The same table drives the board's status
controls (``allowed_statuses``) and every status write, so a value the
board would not offer is rejected with NotAuthorized.

"Self-score exists" is always read from the targeted assignee's own
scorecard: the caller's when they are an assignee, the viewed assignee's
when the creator looks at someone's board. Writes land on that scorecard;
the creator's own board writes the deliverable (or occurrence) status.
"""

from __future__ import annotations

import logging

from kpi_review.core.exceptions import NotAuthorized, ValidationError
from kpi_review.models import db
from kpi_review.models.kpi import DELIVERABLE_STATUSES, KpiUserStatus
from kpi_review.services.access import Caller, is_assignee, is_creator
from kpi_review.services.kpi_service import (
    check_assignment,
    get_deliverable_or_404,
    get_kpi_or_404,
    resolve_period,
    resolve_unit,
    unit_status,
)

logger = logging.getLogger(__name__)

_BASE = ("Pending", "In Progress")
_SELF_REPORTED = ("Pending", "In Progress", "Completed")
_FULL = DELIVERABLE_STATUSES

VIEWER_CREATOR_OWN = "creator_own_board"
VIEWER_CREATOR_ASSIGNEE = "creator_assignee_board"
VIEWER_ASSIGNEE = "assignee"
VIEWER_NONE = "read_only"


def viewer_kind(kpi, caller: Caller, assignee_id: int | None = None) -> str:
    """Classify the caller's relationship to ``kpi`` for the board being viewed."""
    if is_creator(kpi, caller):
        if assignee_id is None or assignee_id == caller.user_id:
            return VIEWER_CREATOR_OWN
        return VIEWER_CREATOR_ASSIGNEE
    if is_assignee(kpi, caller):
        return VIEWER_ASSIGNEE
    return VIEWER_NONE


def board_target(kpi, caller: Caller, viewer: str, assignee_id: int | None = None) -> int | None:
    """Assignee whose scorecards the viewer addresses; None for the creator's own board.

    Raises:
        NotFoundError / ValidationError: a requested assignee outside the
        KPI's assignment set.
    """
    if viewer == VIEWER_ASSIGNEE:
        return caller.user_id
    if viewer == VIEWER_CREATOR_OWN or assignee_id is None:
        return None
    check_assignment(kpi, assignee_id)
    return assignee_id


def allowed_statuses(viewer: str, has_self_score: bool, current_status: str) -> tuple:
    """Return the status values ``viewer`` may pick, in display order."""
    if viewer == VIEWER_CREATOR_OWN:
        return _FULL
    if viewer == VIEWER_CREATOR_ASSIGNEE:
        return _FULL if has_self_score else _BASE
    if viewer == VIEWER_ASSIGNEE:
        return _SELF_REPORTED if has_self_score else _BASE
    return (current_status,)


def _check_status(status) -> str:
    if status not in DELIVERABLE_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(DELIVERABLE_STATUSES)}",
            details={"status": status},
        )
    return status


def _enforce(viewer: str, status: str, has_self_score: bool, current: str, target: str) -> None:
    allowed = allowed_statuses(viewer, has_self_score, current)
    if status not in allowed:
        logger.warning("Status change rejected viewer=%s target=%s status=%s", viewer, target, status)
        raise NotAuthorized(
            f"You cannot set status '{status}' here.",
            details={"allowed": list(allowed), "status": status},
        )


def kpi_has_self_score(kpi, assignee_id: int | None) -> bool:
    """True if ``assignee_id`` (anyone when None) self-reported on any unit of the KPI."""
    for deliverable in kpi.deliverables:
        for card in deliverable.scorecards:
            if card.has_saved_assignee and (assignee_id is None or card.assignee_id == assignee_id):
                return True
    return False


# ── Public API ────────────────────────────────────────────────────────────────


def change_deliverable_status(
    caller: Caller,
    deliverable_id: int,
    occurrence_label: str | None,
    status: str,
    assignee_id: int | None = None,
) -> dict:
    """Set the status of a deliverable or one of its occurrences.

    Assignees write their own scorecard. The creator writes the scorecard of
    ``assignee_id`` when given, otherwise the deliverable (or occurrence)
    itself. A write on a period that has no stored occurrence or scorecard
    yet persists them.

    Returns:
        {deliverable_id, period_label, assignee_id, status}

    Raises:
        NotFoundError, MissingOccurrence, ValidationError, NotAuthorized.
    """
    status = _check_status(status)
    deliverable = get_deliverable_or_404(deliverable_id)
    kpi = deliverable.kpi
    viewer = viewer_kind(kpi, caller, assignee_id)
    target = board_target(kpi, caller, viewer, assignee_id)

    period, label = resolve_period(deliverable, occurrence_label)
    card = deliverable.scorecard_for(label, target) if target is not None else None
    has_score = card is not None and card.has_saved_assignee
    current = unit_status(period, card)
    _enforce(viewer, status, has_score, current, f"deliverable:{deliverable.id}")
    result = {"deliverable_id": deliverable.id, "period_label": label, "assignee_id": target}
    if viewer == VIEWER_NONE:
        return {**result, "status": current}

    if target is None:
        period, label = resolve_period(deliverable, label, create=True)
        period.status = status
    else:
        card, label = resolve_unit(deliverable, label, target, create=True)
        card.status = status
    db.session.commit()

    logger.info(
        "Deliverable status changed to %s", status,
        extra={
            "kpi_id": kpi.id,
            "deliverable_id": deliverable.id,
            "period_label": label,
            "assignee_id": target,
            "caller_id": caller.user_id,
        },
    )
    return {**result, "status": status}


def change_kpi_status(
    caller: Caller,
    kpi_id: int,
    status: str,
    assignee_id: int | None = None,
    promote_globally: bool = True,
) -> dict:
    """Set a KPI's status globally or on one assignee's board.

    - Creator on their own board: sets the global status; with
      ``promote_globally`` per-assignee entries are cleared so every board
      shows it.
    - Creator on an assignee's board: sets that assignee's entry.
    - Assignee: sets their own entry.

    Raises:
        NotFoundError, ValidationError, NotAuthorized.
    """
    status = _check_status(status)
    kpi = get_kpi_or_404(kpi_id)
    viewer = viewer_kind(kpi, caller, assignee_id)

    if viewer == VIEWER_CREATOR_OWN:
        _enforce(viewer, status, True, kpi.status, f"kpi:{kpi.id}")
        kpi.status = status
        if promote_globally:
            kpi.user_statuses.clear()
        target = None
    elif viewer in (VIEWER_CREATOR_ASSIGNEE, VIEWER_ASSIGNEE):
        target = board_target(kpi, caller, viewer, assignee_id)
        _enforce(viewer, status, kpi_has_self_score(kpi, target), kpi.status_for(target), f"kpi:{kpi.id}")
        entry = next((s for s in kpi.user_statuses if s.user_id == target), None)
        if entry is None:
            kpi.user_statuses.append(KpiUserStatus(user_id=target, status=status))
        else:
            entry.status = status
    else:
        _enforce(viewer, status, False, kpi.status, f"kpi:{kpi.id}")
        return kpi.to_dict()

    db.session.commit()
    logger.info(
        "KPI status changed to %s", status,
        extra={"kpi_id": kpi.id, "caller_id": caller.user_id, "assignee_id": target},
    )
    return kpi.to_dict()
