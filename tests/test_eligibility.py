from __future__ import annotations

from datetime import datetime, timedelta, timezone

from services.eligibility import (
    REASON_ALREADY_ACCEPTED,
    REASON_DECISION_PENDING,
    REASON_NO_PRIOR,
    REASON_WINDOW_ELAPSED,
    REASON_WITHIN_WINDOW,
    exception_request_eligibility,
    job_application_eligibility,
    resignation_eligibility,
)


NOW = datetime(2025, 3, 20, 12, 0, tzinfo=timezone.utc)


def test_job_application_without_prior_is_eligible():
    res = job_application_eligibility(None, None, now=NOW)
    assert res.eligible is True
    assert res.reason == REASON_NO_PRIOR
    assert res.next_eligible_at is None


def test_job_application_rejected_twenty_days_ago_is_eligible():
    res = job_application_eligibility(NOW - timedelta(days=20), "rejected", now=NOW)
    assert res.eligible is True
    assert res.reason == REASON_WINDOW_ELAPSED


def test_job_application_pending_five_days_ago_waits_fourteen_days():
    created = NOW - timedelta(days=5)
    res = job_application_eligibility(created, "pending", now=NOW)
    assert res.eligible is False
    assert res.reason == REASON_WITHIN_WINDOW
    assert res.next_eligible_at == created + timedelta(days=14)


def test_job_application_window_boundary_is_inclusive():
    created = NOW - timedelta(days=14)
    assert job_application_eligibility(created, "pending", now=NOW).eligible is True
    assert job_application_eligibility(created + timedelta(seconds=1), "pending", now=NOW).eligible is False


def test_accepted_job_application_never_reapplies():
    res = job_application_eligibility(NOW - timedelta(days=400), "accepted", now=NOW)
    assert res.eligible is False
    assert res.reason == REASON_ALREADY_ACCEPTED
    assert res.next_eligible_at is None


def test_exception_request_cooldown_is_24_hours():
    created = NOW - timedelta(hours=23)
    res = exception_request_eligibility(created, now=NOW)
    assert res.eligible is False
    assert res.next_eligible_at == created + timedelta(hours=24)

    assert exception_request_eligibility(NOW - timedelta(hours=24), now=NOW).eligible is True
    assert exception_request_eligibility(None, now=NOW).eligible is True


def test_resignation_blocked_only_while_hr_pending():
    assert resignation_eligibility(None).eligible is True

    pending = resignation_eligibility("pending")
    assert pending.eligible is False
    assert pending.reason == REASON_DECISION_PENDING
    assert pending.next_eligible_at is None

    assert resignation_eligibility("accepted").eligible is True
    assert resignation_eligibility("rejected").eligible is True


def test_eligibility_to_dict_uses_iso_timestamps():
    created = NOW - timedelta(days=5)
    out = job_application_eligibility(created, "pending", now=NOW).to_dict()
    assert out == {
        "eligible": False,
        "reason": REASON_WITHIN_WINDOW,
        "nextEligibleAt": "2025-03-29T12:00:00.000Z",
    }
