"""
Tests: matching a board cell to its discrepancy record.

Pure function over plain dicts; duplicates must surface as DataIntegrityError.
"""

import pytest

from kpi_review.core.exceptions import DataIntegrityError
from kpi_review.models import db as _db
from kpi_review.models.discrepancy import Discrepancy
from kpi_review.services import score_service
from kpi_review.services.discrepancy_service import correlate_discrepancy


def _rec(rid, deliverable_index, deliverable_id, period_label=None, kpi_id=1, assignee_id=7):
    return {
        "id": rid,
        "kpi_id": kpi_id,
        "deliverable_index": deliverable_index,
        "deliverable_id": deliverable_id,
        "period_label": period_label,
        "assignee_id": assignee_id,
    }


def test_index_match_preferred_over_id_match():
    records = [_rec(1, 0, 100), _rec(2, 1, 101)]
    assert correlate_discrepancy(records, 1, 0, 7)["id"] == 1


def test_falls_back_to_deliverable_id_when_index_shifted():
    # deliverable 101 moved from position 1 to position 0
    records = [_rec(2, 1, 101)]
    assert correlate_discrepancy(records, 1, 0, 7, deliverable_id=101)["id"] == 2


def test_index_match_with_conflicting_id_is_ignored():
    # position 0 now holds deliverable 200; the record at index 0 belongs to 100
    records = [_rec(1, 0, 100), _rec(3, 4, 200)]
    assert correlate_discrepancy(records, 1, 0, 7, deliverable_id=200)["id"] == 3


def test_no_match_returns_none():
    assert correlate_discrepancy([_rec(1, 0, 100)], 1, 5, 7) is None
    assert correlate_discrepancy([_rec(1, 0, 100)], 2, 0, 7) is None
    assert correlate_discrepancy([_rec(1, 0, 100)], 1, 0, 8) is None
    assert correlate_discrepancy([], 1, 0, 7) is None


def test_period_label_must_match_for_recurring_lookup():
    records = [_rec(1, 0, 100, "2025-02"), _rec(2, 0, 100, "2025-03")]
    assert correlate_discrepancy(records, 1, 0, 7, period_label="2025-03")["id"] == 2
    assert correlate_discrepancy(records, 1, 0, 7, period_label="2025-04") is None


def test_records_without_period_match_only_non_recurring_lookups():
    records = [_rec(1, 0, 100)]
    assert correlate_discrepancy(records, 1, 0, 7)["id"] == 1
    assert correlate_discrepancy(records, 1, 0, 7, period_label="2025-03") is None


def test_non_recurring_lookup_ignores_period_records():
    records = [_rec(1, 0, 100, "2025-03")]
    assert correlate_discrepancy(records, 1, 0, 7) is None


def test_duplicate_key_is_a_data_integrity_error():
    records = [_rec(1, 0, 100, "2025-03"), _rec(2, 0, 100, "2025-03")]
    with pytest.raises(DataIntegrityError) as exc_info:
        correlate_discrepancy(records, 1, 0, 7, period_label="2025-03")
    assert exc_info.value.details["count"] == 2


def test_accepts_model_instances(make_kpi, creator, assignee, as_caller):
    kpi = make_kpi()
    deliverable = kpi["deliverables"][0]
    score_service.submit_assignee_score(as_caller(assignee), deliverable["id"], None, 10, "done")
    score_service.submit_creator_score(
        as_caller(creator), deliverable["id"], None, 90, "checked", assignee_id=assignee.id,
    )

    records = _db.session.query(Discrepancy).all()
    match = correlate_discrepancy(records, kpi["id"], 0, assignee.id, deliverable_id=deliverable["id"])
    assert match is records[0]
