"""
Discrepancy resolution workflow and listing.

Lifecycle (see models.discrepancy):
    open ──book_meeting──▶ meeting_booked ──resolve──▶ resolved
      └──────────────────resolve─────────────────────────┘

Rules:
    - Either party (assignee or KPI creator) may book a meeting. Re-booking
      replaces the meeting date and notes; every booking appends history.
    - Only the KPI creator resolves. A corrected score is written into both
      score slots of the flagged assignee's scorecard so the detector cannot
      flag the pair again.
    - ``resolved`` is terminal.
    - Preconditions are checked before anything changes; a failed call leaves
      the record as it was.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from kpi_review.core.exceptions import DataIntegrityError, NotAuthorized, NotFoundError, ValidationError
from kpi_review.models import db
from kpi_review.models.discrepancy import (
    STATE_MEETING_BOOKED,
    STATE_RESOLVED,
    Discrepancy,
    DiscrepancyHistory,
    validate_discrepancy_transition,
)
from kpi_review.models.kpi import Kpi
from kpi_review.services.access import Caller, is_creator, is_super_admin
from kpi_review.services.evidence import discard_evidence, upload_evidence
from kpi_review.services.kpi_service import get_deliverable_or_404, resolve_unit
from kpi_review.utils.helpers import parse_datetime, parse_score

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_discrepancy_or_404(discrepancy_id: int) -> Discrepancy:
    record = db.session.get(Discrepancy, discrepancy_id)
    if record is None:
        raise NotFoundError(resource="Discrepancy", resource_id=discrepancy_id)
    return record


def _check_transition(record: Discrepancy, new_state: str) -> None:
    if not validate_discrepancy_transition(record.state, new_state):
        raise ValidationError(
            f"Cannot move discrepancy from '{record.state}' to '{new_state}'.",
            details={"discrepancy_id": record.id, "state": record.state},
        )


def _can_view(record: Discrepancy, kpi: Kpi | None, caller: Caller) -> bool:
    if is_super_admin(caller) or record.assignee_id == caller.user_id:
        return True
    return kpi is not None and is_creator(kpi, caller)


# ── Correlation ───────────────────────────────────────────────────────────────


def _get(record, key):
    if isinstance(record, dict):
        return record.get(key)
    return getattr(record, key, None)


def correlate_discrepancy(
    records,
    kpi_id: int,
    deliverable_index: int | None,
    assignee_id: int,
    period_label: str | None = None,
    deliverable_id: int | None = None,
):
    """Find the one record matching a board cell among ``records``.

    ``records`` may be Discrepancy rows or their dict form. A
    ``deliverable_index`` match is preferred; ``deliverable_id`` is the
    fallback when positions have shifted. An index match whose stored
    deliverable id contradicts ``deliverable_id`` is not a match.

    Records without a period label only match lookups without one, and a
    lookup with a label only matches records carrying the same label.

    Returns the record or None.

    Raises:
        DataIntegrityError: more than one record matches.
    """
    candidates = [
        r for r in records
        if _get(r, "kpi_id") == kpi_id
        and _get(r, "assignee_id") == assignee_id
        and (_get(r, "period_label") or None) == (period_label or None)
    ]

    matches = []
    if deliverable_index is not None:
        matches = [
            r for r in candidates
            if _get(r, "deliverable_index") == deliverable_index
            and (deliverable_id is None or _get(r, "deliverable_id") in (None, deliverable_id))
        ]
    if not matches and deliverable_id is not None:
        matches = [r for r in candidates if _get(r, "deliverable_id") == deliverable_id]

    if len(matches) > 1:
        raise DataIntegrityError(
            "Duplicate discrepancy records for one correlation key.",
            details={
                "kpi_id": kpi_id,
                "deliverable_index": deliverable_index,
                "deliverable_id": deliverable_id,
                "period_label": period_label,
                "assignee_id": assignee_id,
                "count": len(matches),
            },
        )
    return matches[0] if matches else None


# ── Workflow ──────────────────────────────────────────────────────────────────


def book_meeting(caller: Caller, discrepancy_id: int, date, notes: str = "", now: datetime | None = None) -> dict:
    """Attach (or replace) a resolution meeting.

    Raises:
        NotFoundError:   unknown discrepancy.
        NotAuthorized:   caller is neither the assignee nor the KPI creator.
        ValidationError: missing/invalid/past date, or the record is resolved.
    """
    record = get_discrepancy_or_404(discrepancy_id)
    kpi = db.session.get(Kpi, record.kpi_id)
    if record.assignee_id != caller.user_id and not (kpi and is_creator(kpi, caller)):
        logger.warning(
            "Meeting booking rejected: user=%s discrepancy_id=%s", caller.user_id, record.id,
        )
        raise NotAuthorized("Only the assignee or the KPI creator can book a meeting.")

    try:
        when = parse_datetime(date)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"date": date}) from exc
    reference = (now or _utcnow()).replace(second=0, microsecond=0)
    if when < reference:
        raise ValidationError(
            "The meeting date must not be in the past.", details={"date": when.isoformat()},
        )
    _check_transition(record, STATE_MEETING_BOOKED)

    record.meeting_at = when
    record.meeting_notes = (notes or "").strip()
    record.meeting_booked_by = caller.user_id
    record.history.append(DiscrepancyHistory(action="meeting-booked", by=caller.user_id))
    db.session.commit()

    logger.info(
        "Discrepancy meeting booked",
        extra={"discrepancy_id": record.id, "kpi_id": record.kpi_id, "caller_id": caller.user_id},
    )
    return record.to_dict()


def resolve_discrepancy(
    caller: Caller,
    discrepancy_id: int,
    resolution_notes: str,
    new_score=None,
    evidence_file=None,
    timeout: float | None = None,
) -> dict:
    """Close a discrepancy, optionally applying a corrected score.

    With ``new_score`` the corrected value replaces both score slots of the
    flagged assignee's scorecard for the deliverable (or occurrence). The
    assignee slot keeps its original author and gains ``corrected_by``; the
    replaced creator score is kept on the record as ``previous_score``.

    Raises:
        NotFoundError:   unknown discrepancy.
        NotAuthorized:   caller is not the KPI creator.
        ValidationError: empty notes, score outside [0, 100], already resolved.
        UploadError / UploadTimeout: evidence store failure (nothing persisted).
    """
    record = get_discrepancy_or_404(discrepancy_id)
    kpi = db.session.get(Kpi, record.kpi_id)
    if kpi is None or not is_creator(kpi, caller):
        logger.warning(
            "Resolution rejected: user=%s discrepancy_id=%s", caller.user_id, record.id,
        )
        raise NotAuthorized("Only the KPI creator can resolve a discrepancy.")

    notes = resolution_notes.strip() if isinstance(resolution_notes, str) else ""
    if not notes:
        raise ValidationError("Resolution notes are required.", details={"resolution_notes": "required"})
    if new_score is not None and new_score != "":
        try:
            new_score = parse_score(new_score)
        except ValueError as exc:
            raise ValidationError(str(exc), details={"new_score": new_score}) from exc
    else:
        new_score = None
    _check_transition(record, STATE_RESOLVED)

    card = None
    if new_score is not None:
        deliverable = get_deliverable_or_404(record.deliverable_id)
        card, _ = resolve_unit(deliverable, record.period_label, record.assignee_id)
        if card is None:
            raise DataIntegrityError(
                "The assignee scorecard for this discrepancy no longer exists.",
                details={
                    "discrepancy_id": record.id,
                    "period_label": record.period_label,
                    "assignee_id": record.assignee_id,
                },
            )

    urls = upload_evidence([evidence_file] if evidence_file is not None else [], timeout=timeout)
    now = _utcnow()
    try:
        if card is not None:
            corrected = {
                "value": new_score,
                "notes": notes,
                "entered_by": caller.user_id,
                "timestamp": now.isoformat(),
                "supporting_documents": urls,
            }
            record.previous_score = dict(card.creator_score or record.creator_score)
            record.resolved_score = corrected
            card.assignee_score = {
                **(card.assignee_score or {}),
                "value": new_score,
                "corrected_by": caller.user_id,
                "corrected_at": now.isoformat(),
            }
            card.creator_score = dict(corrected)
        elif urls:
            record.resolved_score = {
                "value": None,
                "notes": notes,
                "entered_by": caller.user_id,
                "timestamp": now.isoformat(),
                "supporting_documents": urls,
            }

        record.resolved = True
        record.resolution_notes = notes
        record.resolved_at = now
        record.resolved_by = caller.user_id
        record.history.append(DiscrepancyHistory(action="resolved", by=caller.user_id, timestamp=now))
        db.session.commit()
    except Exception:
        db.session.rollback()
        discard_evidence(urls)
        raise

    logger.info(
        "Discrepancy resolved",
        extra={
            "discrepancy_id": record.id,
            "kpi_id": record.kpi_id,
            "deliverable_id": record.deliverable_id,
            "period_label": record.period_label,
            "caller_id": caller.user_id,
        },
    )
    return record.to_dict()


# ── Listing ───────────────────────────────────────────────────────────────────


def _visible_query(caller: Caller, kpi_id=None, assignee_id=None, resolved=None):
    stmt = select(Discrepancy)
    if kpi_id is not None:
        stmt = stmt.where(Discrepancy.kpi_id == kpi_id)
    if assignee_id is not None:
        stmt = stmt.where(Discrepancy.assignee_id == assignee_id)
    if resolved is not None:
        stmt = stmt.where(Discrepancy.resolved == bool(resolved))

    if not is_super_admin(caller):
        created = select(Kpi.id).where(Kpi.created_by == caller.user_id)
        stmt = stmt.where(
            (Discrepancy.assignee_id == caller.user_id) | Discrepancy.kpi_id.in_(created)
        )
    return stmt.order_by(Discrepancy.flagged_at.desc(), Discrepancy.id.desc())


def list_discrepancies(caller: Caller, kpi_id=None, assignee_id=None, resolved=None) -> list[dict]:
    """Records visible to ``caller``, newest first.

    Super admins see everything; a KPI creator sees every record of their
    KPIs; anybody else sees only records where they are the assignee.
    """
    stmt = _visible_query(caller, kpi_id, assignee_id, resolved)
    return [r.to_dict(include_history=False) for r in db.session.execute(stmt).scalars()]


def discrepancy_stats(caller: Caller, kpi_id=None, assignee_id=None) -> dict:
    """Counts over the records visible to ``caller``.

    ``pending`` counts unresolved records; ``meeting_booked`` counts the
    unresolved ones with a meeting attached.
    """
    records = db.session.execute(_visible_query(caller, kpi_id, assignee_id)).scalars().all()
    resolved = sum(1 for r in records if r.resolved)
    return {
        "total": len(records),
        "resolved": resolved,
        "pending": len(records) - resolved,
        "meeting_booked": sum(1 for r in records if not r.resolved and r.meeting_booked),
    }


def get_discrepancy(caller: Caller, discrepancy_id: int) -> dict:
    record = get_discrepancy_or_404(discrepancy_id)
    if not _can_view(record, db.session.get(Kpi, record.kpi_id), caller):
        raise NotAuthorized("You cannot view this discrepancy.")
    return record.to_dict()
