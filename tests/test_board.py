"""
Tests: board read model.

Covers the synthesized current-period occurrence, per-viewer status options
and the discrepancy attached to each cell.
"""

from datetime import datetime, timezone

import pytest

from kpi_review.core.exceptions import NotAuthorized, NotFoundError, ValidationError
from kpi_review.models import db as _db
from kpi_review.models.kpi import Occurrence
from kpi_review.services import board_service, score_service, status_projector

NOW = datetime(2025, 3, 20, 8, 0, tzinfo=timezone.utc)


@pytest.fixture()
def kpi(make_kpi):
    return make_kpi()


def _row(board, index):
    return board["deliverables"][index]


def _review(creator, assignee, as_caller, deliverable_id, label, value):
    return score_service.submit_creator_score(
        as_caller(creator), deliverable_id, label, value, "checked", assignee_id=assignee.id,
    )


def test_current_occurrence_synthesized_but_not_stored(kpi, assignee, as_caller):
    board = board_service.build_board(kpi["id"], as_caller(assignee), now=NOW)
    recurring = _row(board, 1)

    assert recurring["granularity"] == "monthly"
    assert recurring["current_period_label"] == "2025-03"
    assert len(recurring["occurrences"]) == 1
    occurrence = recurring["occurrences"][0]
    assert occurrence["period_label"] == "2025-03"
    assert occurrence["persisted"] is False
    assert occurrence["status"] == "Pending"
    assert occurrence["id"] is None
    assert _db.session.query(Occurrence).count() == 0


def test_stored_occurrences_listed_in_period_order(kpi, assignee, as_caller):
    recurring_id = kpi["deliverables"][1]["id"]
    for label in ("2025-04", "2025-01"):
        score_service.submit_assignee_score(as_caller(assignee), recurring_id, label, 50, "done")

    board = board_service.build_board(kpi["id"], as_caller(assignee), now=NOW)
    occurrences = _row(board, 1)["occurrences"]
    assert [o["period_label"] for o in occurrences] == ["2025-01", "2025-03", "2025-04"]
    assert [o["persisted"] for o in occurrences] == [True, False, True]


def test_current_occurrence_not_duplicated_once_stored(kpi, assignee, as_caller):
    recurring_id = kpi["deliverables"][1]["id"]
    score_service.submit_assignee_score(as_caller(assignee), recurring_id, "2025-03", 50, "done")

    occurrences = _row(board_service.build_board(kpi["id"], as_caller(assignee), now=NOW), 1)["occurrences"]
    assert len(occurrences) == 1
    assert occurrences[0]["persisted"] is True
    assert occurrences[0]["status"] == "Completed"


def test_assignee_board_allowed_statuses(kpi, assignee, as_caller):
    single_id = kpi["deliverables"][0]["id"]
    board = board_service.build_board(kpi["id"], as_caller(assignee), now=NOW)
    assert board["viewer"] == "assignee"
    assert board["assignee_id"] == assignee.id
    assert _row(board, 0)["allowed_statuses"] == ["Pending", "In Progress"]
    assert board["allowed_statuses"] == ["Pending", "In Progress"]

    score_service.submit_assignee_score(as_caller(assignee), single_id, None, 50, "done")
    board = board_service.build_board(kpi["id"], as_caller(assignee), now=NOW)
    assert _row(board, 0)["allowed_statuses"] == ["Pending", "In Progress", "Completed"]
    assert board["allowed_statuses"] == ["Pending", "In Progress", "Completed"]


def test_creator_boards(kpi, creator, assignee, as_caller):
    own = board_service.build_board(kpi["id"], as_caller(creator), now=NOW)
    assert own["viewer"] == "creator_own_board"
    assert _row(own, 0)["allowed_statuses"] == ["Pending", "In Progress", "Completed", "Approved"]

    theirs = board_service.build_board(kpi["id"], as_caller(creator), assignee_id=assignee.id, now=NOW)
    assert theirs["viewer"] == "creator_assignee_board"
    assert _row(theirs, 0)["allowed_statuses"] == ["Pending", "In Progress"]


def test_discrepancy_attached_to_its_cell(kpi, creator, assignee, as_caller):
    single_id = kpi["deliverables"][0]["id"]
    recurring_id = kpi["deliverables"][1]["id"]
    score_service.submit_assignee_score(as_caller(assignee), single_id, None, 60, "done")
    flagged = _review(creator, assignee, as_caller, single_id, None, 75)
    score_service.submit_assignee_score(as_caller(assignee), recurring_id, "2025-03", 60, "done")
    _review(creator, assignee, as_caller, recurring_id, "2025-03", 65)

    board = board_service.build_board(kpi["id"], as_caller(creator), assignee_id=assignee.id, now=NOW)
    single = _row(board, 0)
    assert single["discrepancy"]["id"] == flagged["discrepancy"]["id"]
    assert single["discrepancy"]["difference"] == 15
    assert _row(board, 1)["occurrences"][0]["discrepancy"] is None


def test_board_status_reflects_per_assignee_entry(kpi, creator, assignee, as_caller):
    status_projector.change_kpi_status(as_caller(assignee), kpi["id"], "In Progress")

    assert board_service.build_board(kpi["id"], as_caller(assignee), now=NOW)["status"] == "In Progress"
    assert board_service.build_board(kpi["id"], as_caller(creator), now=NOW)["status"] == "Pending"


def test_outsider_cannot_view_board(kpi, outsider, as_caller):
    with pytest.raises(NotAuthorized):
        board_service.build_board(kpi["id"], as_caller(outsider), now=NOW)


def test_super_admin_views_read_only(kpi, outsider, as_caller):
    board = board_service.build_board(kpi["id"], as_caller(outsider, "super_admin"), now=NOW)
    assert board["viewer"] == "read_only"
    assert _row(board, 0)["allowed_statuses"] == ["Pending"]


def test_unknown_kpi(assignee, as_caller):
    with pytest.raises(NotFoundError):
        board_service.build_board(999, as_caller(assignee), now=NOW)


# ── Several assignees ─────────────────────────────────────────────────────────


@pytest.fixture()
def colleague(make_user):
    return make_user("Lecturer Bo", role="lecturer")


@pytest.fixture()
def shared_kpi(make_kpi, assignee, colleague):
    return make_kpi(assignees=[assignee, colleague])


def test_assignee_board_shows_only_their_own_scores(shared_kpi, assignee, colleague, as_caller):
    single_id = shared_kpi["deliverables"][0]["id"]
    score_service.submit_assignee_score(as_caller(assignee), single_id, None, 60, "mine")

    cell = _row(board_service.build_board(shared_kpi["id"], as_caller(colleague), now=NOW), 0)
    assert cell["assignee_id"] == colleague.id
    assert cell["assignee_score"] is None
    assert cell["has_saved_assignee"] is False
    assert cell["status"] == "Pending"
    assert cell["allowed_statuses"] == ["Pending", "In Progress"]

    cell = _row(board_service.build_board(shared_kpi["id"], as_caller(assignee), now=NOW), 0)
    assert cell["assignee_score"]["value"] == 60
    assert cell["status"] == "Completed"


def test_creator_view_of_one_assignee_uses_that_assignee_only(shared_kpi, creator, assignee, colleague, as_caller):
    single_id = shared_kpi["deliverables"][0]["id"]
    score_service.submit_assignee_score(as_caller(assignee), single_id, None, 60, "mine")

    board = board_service.build_board(shared_kpi["id"], as_caller(creator), assignee_id=colleague.id, now=NOW)
    cell = _row(board, 0)
    assert board["assignee_id"] == colleague.id
    assert cell["assignee_score"] is None
    assert cell["allowed_statuses"] == ["Pending", "In Progress"]
    assert board["allowed_statuses"] == ["Pending", "In Progress"]

    board = board_service.build_board(shared_kpi["id"], as_caller(creator), assignee_id=assignee.id, now=NOW)
    cell = _row(board, 0)
    assert cell["assignee_score"]["entered_by"] == assignee.id
    assert cell["allowed_statuses"] == ["Pending", "In Progress", "Completed", "Approved"]


def test_discrepancies_project_onto_the_right_assignee(shared_kpi, creator, assignee, colleague, as_caller):
    single_id = shared_kpi["deliverables"][0]["id"]
    score_service.submit_assignee_score(as_caller(assignee), single_id, None, 60, "mine")
    score_service.submit_assignee_score(as_caller(colleague), single_id, None, 80, "mine")
    flagged = _review(creator, assignee, as_caller, single_id, None, 75)
    _review(creator, colleague, as_caller, single_id, None, 85)

    def cell_for(user):
        board = board_service.build_board(shared_kpi["id"], as_caller(creator), assignee_id=user.id, now=NOW)
        return _row(board, 0)

    assert cell_for(assignee)["discrepancy"]["id"] == flagged["discrepancy"]["id"]
    assert cell_for(colleague)["discrepancy"] is None
    assert cell_for(colleague)["creator_score"]["value"] == 85

    own = _row(board_service.build_board(shared_kpi["id"], as_caller(creator), now=NOW), 0)
    assert own["assignee_id"] is None
    by_assignee = {card["assignee_id"]: card for card in own["scorecards"]}
    assert set(by_assignee) == {assignee.id, colleague.id}
    assert by_assignee[assignee.id]["discrepancy"]["id"] == flagged["discrepancy"]["id"]
    assert by_assignee[colleague.id]["discrepancy"] is None


def test_recurring_cells_are_per_assignee(shared_kpi, assignee, colleague, as_caller):
    recurring_id = shared_kpi["deliverables"][1]["id"]
    score_service.submit_assignee_score(as_caller(assignee), recurring_id, "2025-03", 70, "march")

    occurrence = _row(board_service.build_board(shared_kpi["id"], as_caller(colleague), now=NOW), 1)["occurrences"][0]
    assert occurrence["period_label"] == "2025-03"
    assert occurrence["persisted"] is True
    assert occurrence["assignee_score"] is None
    assert occurrence["status"] == "Pending"
    assert "scorecards" not in occurrence


def test_creator_cannot_open_board_of_unassigned_user(kpi, creator, outsider, as_caller):
    with pytest.raises(ValidationError):
        board_service.build_board(kpi["id"], as_caller(creator), assignee_id=outsider.id, now=NOW)
    with pytest.raises(NotFoundError):
        board_service.build_board(kpi["id"], as_caller(creator), assignee_id=999, now=NOW)
