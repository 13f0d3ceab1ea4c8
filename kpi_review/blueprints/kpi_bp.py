"""
KPI Review Engine
KPI blueprint - authoring, boards, scoring and status changes.

Endpoints summary:
    KPI          /api/v1/kpis                               POST
                 /api/v1/kpis/<kpi_id>                      GET, DELETE
                 /api/v1/kpis/<kpi_id>/deliverables         POST
                 /api/v1/kpis/<kpi_id>/board                GET   (?assignee_id=)
                 /api/v1/kpis/<kpi_id>/status               PUT

    SCORING      /api/v1/deliverables/<id>/assignee-score   POST  (JSON or multipart)
                 /api/v1/deliverables/<id>/creator-score    POST  (JSON or multipart)
                 /api/v1/deliverables/<id>/status           PUT

Multipart score submissions carry ``value``, ``notes``, ``occurrence_label``,
``timeout`` and (creator score only) ``assignee_id`` as form fields and the
evidence under ``files``.
"""

import logging

from flask import Blueprint, request

from kpi_review.blueprints import current_caller, int_arg, json_body, register_error_handlers
from kpi_review.core.exceptions import ValidationError
from kpi_review.services import board_service, kpi_service, score_service, status_projector
from kpi_review.utils.errors import api_ok

logger = logging.getLogger(__name__)

kpi_bp = Blueprint("kpis", __name__, url_prefix="/api/v1")
register_error_handlers(kpi_bp)


# ── Helpers ──────────────────────────────────────────────────────────────────

def _score_payload():
    """Return (data, files) from a JSON or multipart score submission."""
    if request.mimetype == "multipart/form-data":
        return request.form.to_dict(), request.files.getlist("files")
    return json_body(), []


def _timeout(data):
    raw = data.get("timeout")
    if raw in (None, ""):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError("timeout must be a number of seconds.", details={"timeout": raw}) from exc
    if value <= 0:
        raise ValidationError("timeout must be positive.", details={"timeout": raw})
    return value


def _optional_int(data, key):
    raw = data.get(key)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"'{key}' must be an integer.", details={key: raw}) from exc


def _flag(data, key, default: bool) -> bool:
    """JSON boolean field; strings such as "false" are rejected, not coerced."""
    raw = data.get(key, default)
    if not isinstance(raw, bool):
        raise ValidationError(f"'{key}' must be true or false.", details={key: raw})
    return raw


# ═══════════════════════════════════════════════════════════════════════════
#  KPI AUTHORING
# ═══════════════════════════════════════════════════════════════════════════

@kpi_bp.route("/kpis", methods=["POST"])
def create_kpi():
    caller = current_caller()
    return api_ok(kpi_service.create_kpi(caller, json_body()), status=201)


@kpi_bp.route("/kpis/<int:kpi_id>", methods=["GET"])
def get_kpi(kpi_id):
    return api_ok(kpi_service.get_kpi(current_caller(), kpi_id))


@kpi_bp.route("/kpis/<int:kpi_id>", methods=["DELETE"])
def delete_kpi(kpi_id):
    kpi_service.delete_kpi(current_caller(), kpi_id)
    return api_ok({"deleted": kpi_id})


@kpi_bp.route("/kpis/<int:kpi_id>/deliverables", methods=["POST"])
def add_deliverable(kpi_id):
    caller = current_caller()
    return api_ok(kpi_service.add_deliverable(caller, kpi_id, json_body()), status=201)


@kpi_bp.route("/kpis/<int:kpi_id>/board", methods=["GET"])
def get_board(kpi_id):
    caller = current_caller()
    return api_ok(board_service.build_board(kpi_id, caller, assignee_id=int_arg("assignee_id")))


@kpi_bp.route("/kpis/<int:kpi_id>/status", methods=["PUT"])
def change_kpi_status(kpi_id):
    caller = current_caller()
    data = json_body()
    result = status_projector.change_kpi_status(
        caller,
        kpi_id,
        data.get("status"),
        assignee_id=_optional_int(data, "assignee_id"),
        promote_globally=_flag(data, "promote_globally", True),
    )
    return api_ok(result)


# ═══════════════════════════════════════════════════════════════════════════
#  SCORING
# ═══════════════════════════════════════════════════════════════════════════

@kpi_bp.route("/deliverables/<int:deliverable_id>/assignee-score", methods=["POST"])
def submit_assignee_score(deliverable_id):
    caller = current_caller()
    data, files = _score_payload()
    result = score_service.submit_assignee_score(
        caller,
        deliverable_id,
        data.get("occurrence_label"),
        data.get("value"),
        data.get("notes"),
        evidence_files=files,
        timeout=_timeout(data),
    )
    return api_ok(result, status=201)


@kpi_bp.route("/deliverables/<int:deliverable_id>/creator-score", methods=["POST"])
def submit_creator_score(deliverable_id):
    caller = current_caller()
    data, files = _score_payload()
    result = score_service.submit_creator_score(
        caller,
        deliverable_id,
        data.get("occurrence_label"),
        data.get("value"),
        data.get("notes"),
        evidence_files=files,
        timeout=_timeout(data),
        assignee_id=_optional_int(data, "assignee_id"),
    )
    return api_ok(result, status=201)


@kpi_bp.route("/deliverables/<int:deliverable_id>/status", methods=["PUT"])
def change_deliverable_status(deliverable_id):
    caller = current_caller()
    data = json_body()
    result = status_projector.change_deliverable_status(
        caller,
        deliverable_id,
        data.get("occurrence_label"),
        data.get("status"),
        assignee_id=_optional_int(data, "assignee_id"),
    )
    return api_ok(result)
