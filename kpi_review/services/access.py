"""
KPI relationship checks.

Works out how a caller relates to a KPI: its creator (supervisor), a member
of its assignment set, a super admin, or an unrelated third party. Department
and role hierarchy scoping belong to an external service; the assignment set
here is the explicit assignee list plus the role names the KPI targets.

Usage:
    from kpi_review.services.access import Caller, is_creator, is_assignee

    caller = Caller(user_id=7, roles=("lecturer",))
    if not is_assignee(kpi, caller):
        raise NotAuthorized(...)
"""

from dataclasses import dataclass, field

from flask import current_app, has_app_context

_DEFAULT_SUPER_ADMIN_ROLES = frozenset({"super_admin"})


@dataclass(frozen=True)
class Caller:
    """Identity of the user performing an operation (from the access token)."""

    user_id: int
    roles: tuple = field(default_factory=tuple)


def is_creator(kpi, caller: Caller) -> bool:
    return kpi.created_by == caller.user_id


def is_assignee(kpi, caller: Caller) -> bool:
    """True if the caller is in the KPI's assignment set."""
    if caller.user_id in kpi.assignee_ids():
        return True
    targeted = set(kpi.assigned_roles or [])
    return bool(targeted.intersection(caller.roles))


def is_super_admin(caller: Caller) -> bool:
    roles = _DEFAULT_SUPER_ADMIN_ROLES
    if has_app_context():
        roles = current_app.config.get("SUPER_ADMIN_ROLES", roles)
    return bool(set(roles).intersection(caller.roles))
