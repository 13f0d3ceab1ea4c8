"""
Tests: discrepancy detection rule and record creation.

check_scores is pure; the threshold tests go through score submission so the
whole write → detect path is exercised.
"""

import pytest

from kpi_review.models import db as _db
from kpi_review.models.discrepancy import Discrepancy
from kpi_review.models.kpi import Deliverable
from kpi_review.services import discrepancy_detector, score_service
from kpi_review.services.discrepancy_detector import DIFF_THRESHOLD, check_scores


def test_threshold_constant():
    assert DIFF_THRESHOLD == 10


def test_missing_score_is_not_evaluable():
    check = check_scores({"value": 50}, None)
    assert check.evaluable is False
    assert check.flagged is False
    assert check.difference is None


def test_check_accepts_bare_numbers_and_slots():
    assert check_scores(40, 75).difference == 35
    assert check_scores({"value": 40}, {"value": 75}).flagged is True


@pytest.mark.parametrize(
    "a, c, flagged",
    [
        (60, 70, False),     # exactly 10: boundary, not a discrepancy
        (70, 60, False),
        (60, 70.5, True),
        (0, 100, True),
        (80, 82, False),
        (50, 50, False),
        (60, 71, True),
    ],
)
def test_flag_iff_difference_exceeds_ten(a, c, flagged):
    assert check_scores(a, c).flagged is flagged


def test_custom_threshold():
    assert check_scores(60, 66, threshold=5).flagged is True
    assert check_scores(60, 65, threshold=5).flagged is False


# ── Through the score capture service ─────────────────────────────────────


def _score_pair(make_kpi, creator, assignee, as_caller, a, c):
    kpi = make_kpi()
    single = kpi["deliverables"][0]
    score_service.submit_assignee_score(as_caller(assignee), single["id"], None, a, "done")
    review = score_service.submit_creator_score(
        as_caller(creator), single["id"], None, c, "checked", assignee_id=assignee.id,
    )
    return kpi, single, review


@pytest.mark.parametrize(
    "a, c, expect_record",
    [(60, 70, False), (60, 71, True), (80, 82, False), (75, 60, True)],
)
def test_record_created_iff_difference_exceeds_ten(make_kpi, creator, assignee, as_caller, a, c, expect_record):
    _, _, result = _score_pair(make_kpi, creator, assignee, as_caller, a, c)
    assert (result["discrepancy"] is not None) is expect_record
    assert (_db.session.query(Discrepancy).count() == 1) is expect_record


def test_record_carries_correlation_key_and_snapshots(make_kpi, creator, assignee, as_caller):
    kpi, single, result = _score_pair(make_kpi, creator, assignee, as_caller, 60, 75)
    record = result["discrepancy"]
    assert record["kpi_id"] == kpi["id"]
    assert record["deliverable_id"] == single["id"]
    assert record["deliverable_index"] == 0
    assert record["period_label"] is None
    assert record["assignee_id"] == assignee.id
    assert record["assignee_score"]["value"] == 60
    assert record["creator_score"]["value"] == 75
    assert record["difference"] == 15
    assert record["reason"] == "Score discrepancy detected"
    assert record["resolved"] is False
    assert record["state"] == "open"
    assert [h["action"] for h in record["history"]] == ["created"]


def test_evaluate_is_idempotent(make_kpi, creator, assignee, as_caller):
    _, single, result = _score_pair(make_kpi, creator, assignee, as_caller, 30, 90)
    deliverable = _db.session.get(Deliverable, single["id"])
    card = deliverable.scorecard_for(None, assignee.id)
    again = discrepancy_detector.evaluate(deliverable, card, None, creator.id)
    _db.session.commit()
    assert again.id == result["discrepancy"]["id"]
    assert _db.session.query(Discrepancy).count() == 1
    assert len(again.history) == 1


def test_recurring_occurrences_get_independent_records(make_kpi, creator, assignee, as_caller):
    kpi = make_kpi()
    recurring = kpi["deliverables"][1]
    for label in ("2025-01", "2025-02"):
        score_service.submit_assignee_score(as_caller(assignee), recurring["id"], label, 20, "done")
        score_service.submit_creator_score(
            as_caller(creator), recurring["id"], label, 90, "checked", assignee_id=assignee.id,
        )

    labels = sorted(d.period_label for d in _db.session.query(Discrepancy).all())
    assert labels == ["2025-01", "2025-02"]
