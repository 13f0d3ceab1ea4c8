"""
Discrepancy detection.

``check_scores`` is the pure rule: a discrepancy exists iff both scores are
present and differ by strictly more than the threshold (10 points on the
0–100 scale by default).

``evaluate`` applies the rule to one assignee's scorecard and creates the
Discrepancy record when needed. It is idempotent: re-evaluating the same pair
returns the existing record untouched, and a resolved record is never
reopened here.

Callers own the transaction; ``evaluate`` only adds to the session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app, has_app_context
from sqlalchemy import select

from kpi_review.models import db
from kpi_review.models.discrepancy import DEFAULT_REASON, Discrepancy, DiscrepancyHistory

logger = logging.getLogger(__name__)

DIFF_THRESHOLD = 10


@dataclass(frozen=True)
class ScoreCheck:
    evaluable: bool
    difference: float | None
    flagged: bool


def _threshold() -> float:
    if has_app_context():
        return current_app.config.get("DISCREPANCY_THRESHOLD", DIFF_THRESHOLD)
    return DIFF_THRESHOLD


def _value(score):
    if score is None:
        return None
    if isinstance(score, dict):
        return score.get("value")
    return score


def check_scores(assignee_score, creator_score, threshold: float | None = None) -> ScoreCheck:
    """Compare two score slots (dicts or bare numbers).

    Returns a ScoreCheck; ``flagged`` is True iff abs(a - c) > threshold.
    """
    a, c = _value(assignee_score), _value(creator_score)
    if a is None or c is None:
        return ScoreCheck(evaluable=False, difference=None, flagged=False)
    limit = DIFF_THRESHOLD if threshold is None else threshold
    difference = abs(a - c)
    return ScoreCheck(evaluable=True, difference=difference, flagged=difference > limit)


def find_record(kpi_id: int, deliverable_id: int, period_label: str | None, assignee_id: int):
    """Return the discrepancy for the correlation key, or None."""
    stmt = select(Discrepancy).where(
        Discrepancy.kpi_id == kpi_id,
        Discrepancy.deliverable_id == deliverable_id,
        Discrepancy.assignee_id == assignee_id,
    )
    if period_label is None:
        stmt = stmt.where(Discrepancy.period_label.is_(None))
    else:
        stmt = stmt.where(Discrepancy.period_label == period_label)
    return db.session.execute(stmt).scalars().first()


def evaluate(deliverable, card, period_label: str | None, triggered_by: int) -> Discrepancy | None:
    """Run detection for one assignee's scorecard of a deliverable period.

    Args:
        deliverable:  Owning Deliverable (supplies kpi id and display index).
        card:         Scorecard carrying ``assignee_id`` and both score slots.
        period_label: Occurrence label, None for single-mode deliverables.
        triggered_by: User whose write caused this evaluation; recorded as the
                      actor of the ``created`` history entry.

    Returns:
        The Discrepancy for this correlation key if one exists after
        evaluation, else None.
    """
    check = check_scores(card.assignee_score, card.creator_score, _threshold())
    if not check.evaluable:
        return None

    assignee_id = card.assignee_id
    existing = find_record(deliverable.kpi_id, deliverable.id, period_label, assignee_id)
    if existing is not None:
        return existing
    if not check.flagged:
        return None

    record = Discrepancy(
        kpi_id=deliverable.kpi_id,
        deliverable_id=deliverable.id,
        deliverable_index=deliverable.position,
        period_label=period_label,
        assignee_id=assignee_id,
        assignee_score=dict(card.assignee_score),
        creator_score=dict(card.creator_score),
        reason=DEFAULT_REASON,
        resolved=False,
    )
    record.history.append(DiscrepancyHistory(action="created", by=triggered_by))
    db.session.add(record)

    logger.info(
        "Discrepancy flagged",
        extra={
            "kpi_id": deliverable.kpi_id,
            "deliverable_id": deliverable.id,
            "period_label": period_label,
            "assignee_id": assignee_id,
            "difference": check.difference,
        },
    )
    return record
