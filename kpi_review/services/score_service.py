"""
Score Capture Service.

Records the assignee's self-reported score and the creator's review score on
one assignee's scorecard for a deliverable (single mode) or for one
occurrence of it (recurring mode).

Business rules:
    - Each assignee has their own scorecard per deliverable period; scoring
      by one member of the assignment set never touches another's.
    - Each slot has exactly one writer: ``assignee_score`` is written only by
      the scorecard's assignee, ``creator_score`` only by the KPI creator.
      There is no shared-writer field.
    - Both slots are one-shot. A second submission fails with AlreadyScored;
      corrections happen only through the resolution workflow.
    - The creator cannot review before that assignee has self-reported.
    - Validation and authorization run before anything is written or uploaded.
    - Evidence is uploaded before the score is recorded; a failed upload
      aborts the submission and nothing is persisted.
    - Every successful write re-runs the discrepancy detector in the same
      transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from kpi_review.core.exceptions import (
    AlreadyScored,
    AssigneeScoreMissing,
    NotAuthorized,
    ValidationError,
)
from kpi_review.models import db
from kpi_review.services import discrepancy_detector
from kpi_review.services.access import Caller, is_assignee, is_creator
from kpi_review.services.evidence import discard_evidence, upload_evidence
from kpi_review.services.kpi_service import get_deliverable_or_404, resolve_unit
from kpi_review.utils.helpers import parse_score

logger = logging.getLogger(__name__)

ASSIGNEE = "assignee"
CREATOR = "creator"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_score(value, notes: str, entered_by: int, documents=None, now: datetime | None = None) -> dict:
    """Build the embedded score JSON stored in a score slot."""
    return {
        "value": value,
        "notes": notes,
        "entered_by": entered_by,
        "timestamp": (now or _utcnow()).isoformat(),
        "supporting_documents": list(documents or []),
    }


def _validate_input(value, notes) -> tuple:
    try:
        value = parse_score(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"value": value}) from exc
    notes = (notes or "").strip() if isinstance(notes, str) else ""
    if not notes:
        raise ValidationError("Notes are required with a score.", details={"notes": "required"})
    return value, notes


def _persist(deliverable, card, label, party: str, caller: Caller, urls: list[str]):
    """Commit the score write plus detector side effect; undo uploads on failure."""
    try:
        record = discrepancy_detector.evaluate(deliverable, card, label, caller.user_id)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        discard_evidence(urls)
        logger.warning(
            "Concurrent %s score write rejected deliverable_id=%s period=%s assignee_id=%s",
            party, deliverable.id, label, card.assignee_id,
        )
        raise AlreadyScored(
            f"This {'occurrence' if label else 'deliverable'} was scored concurrently.",
        ) from exc
    except Exception:
        db.session.rollback()
        discard_evidence(urls)
        raise
    return record


def _result(deliverable, card, label, party: str, record) -> dict:
    return {
        "deliverable_id": deliverable.id,
        "period_label": label,
        "assignee_id": card.assignee_id,
        "party": party,
        "score": card.assignee_score if party == ASSIGNEE else card.creator_score,
        "status": card.status,
        "discrepancy": record.to_dict() if record is not None else None,
    }


# ── Public API ─────────────────────────────────────────────────────────────────


def submit_assignee_score(
    caller: Caller,
    deliverable_id: int,
    occurrence_label: str | None,
    value,
    notes: str,
    evidence_files=None,
    timeout: float | None = None,
) -> dict:
    """Record the caller's self-reported score and mark their copy Completed.

    Every member of the assignment set scores on their own scorecard, so one
    assignee's submission never locks another's.

    Returns:
        {deliverable_id, period_label, assignee_id, party, score, status, discrepancy}

    Raises:
        NotFoundError:     unknown deliverable.
        NotAuthorized:     caller is not in the KPI's assignment set.
        MissingOccurrence: recurring deliverable without occurrence_label.
        ValidationError:   value outside [0, 100], empty notes, bad label.
        AlreadyScored:     the caller's assignee slot is already locked.
        UploadError / UploadTimeout: evidence store failure (nothing persisted).
    """
    deliverable = get_deliverable_or_404(deliverable_id)
    kpi = deliverable.kpi
    if not is_assignee(kpi, caller):
        logger.warning(
            "Assignee score rejected: user=%s not assigned to kpi_id=%s", caller.user_id, kpi.id,
        )
        raise NotAuthorized("Only an assigned user can submit the self-reported score.")

    card, label = resolve_unit(deliverable, occurrence_label, caller.user_id)
    value, notes = _validate_input(value, notes)
    if card is not None and card.has_saved_assignee:
        raise AlreadyScored(
            "The self-reported score is already saved and cannot be changed.",
            details={"deliverable_id": deliverable.id, "period_label": label, "assignee_id": caller.user_id},
        )

    urls = upload_evidence(evidence_files, timeout=timeout)

    try:
        card, label = resolve_unit(deliverable, label, caller.user_id, create=True)
        card.assignee_score = make_score(value, notes, caller.user_id, urls)
        card.status = "Completed"
    except Exception:
        db.session.rollback()
        discard_evidence(urls)
        raise

    record = _persist(deliverable, card, label, ASSIGNEE, caller, urls)
    logger.info(
        "Assignee score saved",
        extra={
            "kpi_id": kpi.id,
            "deliverable_id": deliverable.id,
            "period_label": label,
            "caller_id": caller.user_id,
        },
    )
    return _result(deliverable, card, label, ASSIGNEE, record)


def submit_creator_score(
    caller: Caller,
    deliverable_id: int,
    occurrence_label: str | None,
    value,
    notes: str,
    evidence_files=None,
    timeout: float | None = None,
    assignee_id: int | None = None,
) -> dict:
    """Record the KPI creator's review score on one assignee's scorecard.

    ``assignee_id`` names whose self-report is being reviewed. The status of
    that scorecard is left as is; approving is a separate status change.

    Raises:
        NotFoundError:        unknown deliverable.
        NotAuthorized:        caller is not the KPI creator.
        MissingOccurrence:    recurring deliverable without occurrence_label.
        ValidationError:      no assignee_id, value outside [0, 100], empty
                              notes, bad label.
        AssigneeScoreMissing: that assignee has not self-reported yet.
        AlreadyScored:        the creator slot of that scorecard is already locked.
        UploadError / UploadTimeout: evidence store failure (nothing persisted).
    """
    deliverable = get_deliverable_or_404(deliverable_id)
    kpi = deliverable.kpi
    if not is_creator(kpi, caller):
        logger.warning(
            "Creator score rejected: user=%s is not creator of kpi_id=%s", caller.user_id, kpi.id,
        )
        raise NotAuthorized("Only the KPI creator can submit the review score.")
    if assignee_id is None:
        raise ValidationError(
            "assignee_id is required to review a score.", details={"assignee_id": "required"},
        )

    card, label = resolve_unit(deliverable, occurrence_label, assignee_id)
    value, notes = _validate_input(value, notes)
    if card is None or not card.has_saved_assignee:
        raise AssigneeScoreMissing(
            "The assignee must submit a score before it can be reviewed.",
            details={"deliverable_id": deliverable.id, "period_label": label, "assignee_id": assignee_id},
        )
    if card.has_saved_creator:
        raise AlreadyScored(
            "The review score is already saved and cannot be changed.",
            details={"deliverable_id": deliverable.id, "period_label": label, "assignee_id": assignee_id},
        )

    urls = upload_evidence(evidence_files, timeout=timeout)
    card.creator_score = make_score(value, notes, caller.user_id, urls)

    record = _persist(deliverable, card, label, CREATOR, caller, urls)
    logger.info(
        "Creator score saved",
        extra={
            "kpi_id": kpi.id,
            "deliverable_id": deliverable.id,
            "period_label": label,
            "assignee_id": assignee_id,
            "caller_id": caller.user_id,
        },
    )
    return _result(deliverable, card, label, CREATOR, record)
