"""
KPI Review Engine
Discrepancy blueprint - listing, stats, meeting booking and resolution.

Endpoints summary:
    /api/v1/discrepancies                 GET   (?kpi_id=&assignee_id=&resolved=)
    /api/v1/discrepancies/stats           GET   (?kpi_id=&assignee_id=)
    /api/v1/discrepancies/<id>            GET
    /api/v1/discrepancies/<id>/book       PUT   {date, notes}
    /api/v1/discrepancies/<id>/resolve    PUT   {resolution_notes, new_score?}  (JSON or multipart + file)
"""

import logging

from flask import Blueprint, request

from kpi_review.blueprints import bool_arg, current_caller, int_arg, json_body, register_error_handlers
from kpi_review.services import discrepancy_service
from kpi_review.utils.errors import api_ok

logger = logging.getLogger(__name__)

discrepancy_bp = Blueprint("discrepancies", __name__, url_prefix="/api/v1/discrepancies")
register_error_handlers(discrepancy_bp)


@discrepancy_bp.route("", methods=["GET"])
def list_discrepancies():
    caller = current_caller()
    items = discrepancy_service.list_discrepancies(
        caller,
        kpi_id=int_arg("kpi_id"),
        assignee_id=int_arg("assignee_id"),
        resolved=bool_arg("resolved"),
    )
    return api_ok({"items": items, "total": len(items)})


@discrepancy_bp.route("/stats", methods=["GET"])
def discrepancy_stats():
    caller = current_caller()
    return api_ok(
        discrepancy_service.discrepancy_stats(
            caller, kpi_id=int_arg("kpi_id"), assignee_id=int_arg("assignee_id"),
        )
    )


@discrepancy_bp.route("/<int:discrepancy_id>", methods=["GET"])
def get_discrepancy(discrepancy_id):
    return api_ok(discrepancy_service.get_discrepancy(current_caller(), discrepancy_id))


@discrepancy_bp.route("/<int:discrepancy_id>/book", methods=["PUT"])
def book_meeting(discrepancy_id):
    caller = current_caller()
    data = json_body()
    return api_ok(
        discrepancy_service.book_meeting(caller, discrepancy_id, data.get("date"), data.get("notes") or "")
    )


@discrepancy_bp.route("/<int:discrepancy_id>/resolve", methods=["PUT"])
def resolve_discrepancy(discrepancy_id):
    caller = current_caller()
    if request.mimetype == "multipart/form-data":
        data = request.form.to_dict()
        evidence = request.files.get("file")
    else:
        data = json_body()
        evidence = None
    result = discrepancy_service.resolve_discrepancy(
        caller,
        discrepancy_id,
        data.get("resolution_notes"),
        new_score=data.get("new_score"),
        evidence_file=evidence,
    )
    return api_ok(result)
