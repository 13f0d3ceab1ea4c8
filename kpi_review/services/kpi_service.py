"""
KPI authoring service - KPIs, deliverables and per-assignee unit lookup.

Rules:
  - Only the KPI creator performs structural edits (add deliverable, delete KPI).
  - A deliverable has exactly one scheduling mode: single (``timeline``) or
    recurring (``recurrence_pattern``).
  - Deliverables are never deleted on their own; deleting the KPI cascades to
    deliverables, occurrences, scorecards and discrepancy records.
  - Each assignee scores on their own scorecard; ``resolve_unit`` finds it.
  - db.session.commit() happens only in service modules.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from kpi_review.core.exceptions import MissingOccurrence, NotAuthorized, NotFoundError, ValidationError
from kpi_review.models import db
from kpi_review.models.auth import User
from kpi_review.models.discrepancy import Discrepancy
from kpi_review.models.kpi import (
    DELIVERABLE_STATUSES,
    NO_PERIOD,
    PRIORITIES,
    SCHEDULING_RECURRING,
    SCHEDULING_SINGLE,
    Deliverable,
    Kpi,
    Occurrence,
    Scorecard,
)
from kpi_review.services.access import Caller, is_assignee, is_creator, is_super_admin
from kpi_review.services.recurrence import label_matches, resolve_granularity
from kpi_review.utils.helpers import parse_date

logger = logging.getLogger(__name__)


# ── Lookups ───────────────────────────────────────────────────────────────────


def get_kpi_or_404(kpi_id: int) -> Kpi:
    kpi = db.session.get(Kpi, kpi_id)
    if kpi is None:
        raise NotFoundError(resource="Kpi", resource_id=kpi_id)
    return kpi


def get_deliverable_or_404(deliverable_id: int) -> Deliverable:
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None:
        raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)
    return deliverable


def resolve_period(deliverable: Deliverable, occurrence_label: str | None, *, create: bool = False):
    """Return ``(period, period_label)`` for the deliverable period being targeted.

    Single deliverables are their own period and take no label. Recurring ones
    require a label that matches their granularity; the period is the stored
    occurrence, or None when it does not exist yet. With ``create=True`` a
    missing occurrence is added to the session (persisted on commit).

    Raises:
        MissingOccurrence: recurring deliverable without a label.
        ValidationError:   label given for a single deliverable, or label shape
                           does not match the recurrence granularity.
    """
    label = (occurrence_label or "").strip() or None

    if not deliverable.is_recurring:
        if label is not None:
            raise ValidationError(
                "Single deliverables have no occurrences; omit occurrence_label.",
                details={"occurrence_label": label},
            )
        return deliverable, None

    if label is None:
        raise MissingOccurrence(
            "occurrence_label is required for recurring deliverables.",
            details={"deliverable_id": deliverable.id},
        )

    granularity = resolve_granularity(
        deliverable.recurrence_pattern, [o.period_label for o in deliverable.occurrences],
    )
    if not label_matches(label, granularity):
        raise ValidationError(
            f"Occurrence label '{label}' does not match the {granularity} recurrence of this deliverable.",
            details={"occurrence_label": label, "granularity": granularity},
        )

    occurrence = deliverable.occurrence_for(label)
    if occurrence is None and create:
        occurrence = Occurrence(period_label=label, status="Pending")
        deliverable.occurrences.append(occurrence)
    return occurrence, label


def resolve_unit(
    deliverable: Deliverable,
    occurrence_label: str | None,
    assignee_id: int,
    *,
    create: bool = False,
):
    """Return ``(scorecard, period_label)``: ``assignee_id``'s own scorable unit.

    The scorecard is None when that assignee has not touched the period yet.
    With ``create=True`` the period and the scorecard are added to the session;
    a new scorecard starts from the period's status.
    """
    period, label = resolve_period(deliverable, occurrence_label, create=create)
    card = deliverable.scorecard_for(label, assignee_id)
    if card is None and create:
        card = Scorecard(
            period_label=label or NO_PERIOD,
            assignee_id=assignee_id,
            status=period.status,
        )
        deliverable.scorecards.append(card)
    return card, label


def unit_status(period, card) -> str:
    """Status shown for a unit: the assignee's own copy, else the period's."""
    if card is not None:
        return card.status
    if period is not None:
        return period.status
    return "Pending"


def check_assignment(kpi: Kpi, user_id: int) -> User:
    """Return the user behind ``user_id`` if they belong to the KPI's assignment set.

    Raises:
        NotFoundError:   unknown user.
        ValidationError: the user is not assigned, directly or through a role.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    roles = (user.role,) if user.role else ()
    if not is_assignee(kpi, Caller(user_id=user.id, roles=roles)):
        raise ValidationError(
            f"User {user_id} is not assigned to this KPI.", details={"assignee_id": user_id},
        )
    return user


# ── Validation ────────────────────────────────────────────────────────────────


def _build_deliverable(data: dict, position: int) -> Deliverable:
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("Deliverable title is required.", details={"position": position})

    priority = (data.get("priority") or "Medium").strip().capitalize()
    if priority not in PRIORITIES:
        raise ValidationError(
            f"priority must be one of: {', '.join(sorted(PRIORITIES))}",
            details={"priority": data.get("priority"), "position": position},
        )

    pattern = (data.get("recurrence_pattern") or "").strip() or None
    timeline_raw = data.get("timeline")
    scheduling = (data.get("scheduling") or (SCHEDULING_RECURRING if pattern else SCHEDULING_SINGLE)).lower()

    if scheduling not in (SCHEDULING_SINGLE, SCHEDULING_RECURRING):
        raise ValidationError(
            "scheduling must be 'single' or 'recurring'.",
            details={"scheduling": scheduling, "position": position},
        )
    if scheduling == SCHEDULING_RECURRING:
        if not pattern:
            raise ValidationError(
                "recurrence_pattern is required for recurring deliverables.", details={"position": position},
            )
        if timeline_raw:
            raise ValidationError(
                "A deliverable is either single (timeline) or recurring (recurrence_pattern), not both.",
                details={"position": position},
            )
        timeline = None
    else:
        if pattern:
            raise ValidationError(
                "Single deliverables cannot declare a recurrence_pattern.", details={"position": position},
            )
        timeline = parse_date(timeline_raw)
        if timeline is None:
            raise ValidationError(
                "timeline (YYYY-MM-DD) is required for single deliverables.",
                details={"timeline": timeline_raw, "position": position},
            )

    status = data.get("status") or "Pending"
    if status not in DELIVERABLE_STATUSES:
        raise ValidationError(f"Unknown status '{status}'.", details={"position": position})

    return Deliverable(
        position=position,
        title=title,
        action=data.get("action") or "",
        indicator=data.get("indicator") or "",
        performance_target=data.get("performance_target") or "",
        priority=priority,
        timeline=timeline,
        is_recurring=scheduling == SCHEDULING_RECURRING,
        recurrence_pattern=pattern,
        status=status,
    )


def _load_users(user_ids) -> list[User]:
    users = []
    for uid in user_ids or []:
        try:
            uid = int(uid)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid user id '{uid}'.") from exc
        user = db.session.get(User, uid)
        if user is None:
            raise NotFoundError(resource="User", resource_id=uid)
        users.append(user)
    return users


# ── Public API ────────────────────────────────────────────────────────────────


def create_kpi(caller: Caller, data: dict) -> dict:
    """Create a KPI with its deliverables; the caller becomes its creator.

    Args:
        caller: Authoring supervisor.
        data:   {name, description?, assignee_ids[], assigned_roles[], deliverables[]}

    Returns:
        Serialized KPI including deliverables.

    Raises:
        ValidationError: missing name or an invalid deliverable definition.
        NotFoundError:   unknown creator or assignee user id.
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("KPI name is required.")
    if db.session.get(User, caller.user_id) is None:
        raise NotFoundError(resource="User", resource_id=caller.user_id)

    deliverables = [_build_deliverable(d or {}, i) for i, d in enumerate(data.get("deliverables") or [])]
    assignees = _load_users(data.get("assignee_ids"))
    roles = [str(r).strip() for r in data.get("assigned_roles") or [] if str(r).strip()]

    kpi = Kpi(
        name=name,
        description=data.get("description") or "",
        created_by=caller.user_id,
        status="Pending",
        assigned_roles=roles,
    )
    kpi.assignees = assignees
    kpi.deliverables = deliverables
    db.session.add(kpi)
    db.session.commit()

    logger.info(
        "KPI created id=%s creator=%s deliverables=%d assignees=%d",
        kpi.id, caller.user_id, len(deliverables), len(assignees),
    )
    return kpi.to_dict(include_deliverables=True)


def get_kpi(caller: Caller, kpi_id: int) -> dict:
    """Serialized KPI with deliverables, for its creator, assignees and super admins."""
    kpi = get_kpi_or_404(kpi_id)
    if not (is_creator(kpi, caller) or is_assignee(kpi, caller) or is_super_admin(caller)):
        logger.warning("KPI read rejected: user=%s kpi_id=%s", caller.user_id, kpi.id)
        raise NotAuthorized("You are not part of this KPI.")
    return kpi.to_dict(include_deliverables=True)


def add_deliverable(caller: Caller, kpi_id: int, data: dict) -> dict:
    """Append a deliverable to the end of the KPI (creator only)."""
    kpi = get_kpi_or_404(kpi_id)
    if not is_creator(kpi, caller):
        raise NotAuthorized("Only the KPI creator can add deliverables.")

    deliverable = _build_deliverable(data or {}, len(kpi.deliverables))
    kpi.deliverables.append(deliverable)
    db.session.commit()
    logger.info("Deliverable added kpi_id=%s deliverable_id=%s", kpi.id, deliverable.id)
    return deliverable.to_dict()


def delete_kpi(caller: Caller, kpi_id: int) -> None:
    """Delete a KPI and everything hanging off it (creator only)."""
    kpi = get_kpi_or_404(kpi_id)
    if not is_creator(kpi, caller):
        raise NotAuthorized("Only the KPI creator can delete it.")

    record_ids = db.session.execute(
        select(Discrepancy.id).where(Discrepancy.kpi_id == kpi.id)
    ).scalars().all()
    for record_id in record_ids:
        db.session.delete(db.session.get(Discrepancy, record_id))
    db.session.delete(kpi)
    db.session.commit()
    logger.info("KPI deleted id=%s by=%s discrepancies=%d", kpi_id, caller.user_id, len(record_ids))
