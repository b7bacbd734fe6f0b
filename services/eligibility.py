"""
Eligibility windows for new submissions.

Every rule looks only at the newest request of the same type owned by the user:

- job_application: blocked while the newest application is younger than the
  reapply window (pending or rejected); an accepted applicant never reapplies.
- exception_request: pure cooldown after the newest request, whatever its outcome.
- resignation: blocked while HR has not decided the newest one; no time window.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select

from models import (
    DECISION_ACCEPTED,
    DECISION_PENDING,
    DECISION_REJECTED,
    SLOT_APPLICATION,
    SLOT_HR,
    Request,
    RequestDecision,
)
from utils import ApiError, parse_datetime_maybe, to_iso_utc


REASON_NO_PRIOR = "NO_PRIOR_REQUEST"
REASON_WINDOW_ELAPSED = "WINDOW_ELAPSED"
REASON_WITHIN_WINDOW = "WITHIN_WINDOW"
REASON_ALREADY_ACCEPTED = "ALREADY_ACCEPTED"
REASON_DECISION_PENDING = "DECISION_PENDING"
REASON_PRIOR_DECIDED = "PRIOR_DECIDED"


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: str
    next_eligible_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "eligible": self.eligible,
            "reason": self.reason,
            "nextEligibleAt": to_iso_utc(self.next_eligible_at) if self.next_eligible_at else None,
        }


def _window_check(created_at: datetime, now: datetime, window: timedelta) -> Eligibility:
    next_at = created_at + window
    if now >= next_at:
        return Eligibility(True, REASON_WINDOW_ELAPSED)
    return Eligibility(False, REASON_WITHIN_WINDOW, next_at)


def job_application_eligibility(
    newest_created_at: Optional[datetime],
    newest_status: Optional[str],
    *,
    now: datetime,
    reapply_window: timedelta = timedelta(days=14),
) -> Eligibility:
    if newest_created_at is None:
        return Eligibility(True, REASON_NO_PRIOR)
    if newest_status not in {DECISION_PENDING, DECISION_REJECTED}:
        return Eligibility(False, REASON_ALREADY_ACCEPTED if newest_status == DECISION_ACCEPTED else REASON_PRIOR_DECIDED)
    return _window_check(newest_created_at, now, reapply_window)


def exception_request_eligibility(
    newest_created_at: Optional[datetime],
    *,
    now: datetime,
    cooldown: timedelta = timedelta(hours=24),
) -> Eligibility:
    if newest_created_at is None:
        return Eligibility(True, REASON_NO_PRIOR)
    return _window_check(newest_created_at, now, cooldown)


def resignation_eligibility(newest_hr_status: Optional[str]) -> Eligibility:
    if newest_hr_status is None:
        return Eligibility(True, REASON_NO_PRIOR)
    if newest_hr_status == DECISION_PENDING:
        return Eligibility(False, REASON_DECISION_PENDING)
    return Eligibility(True, REASON_PRIOR_DECIDED)


def newest_request(db, *, user_id: str, request_type: str, include_withdrawn: bool = False) -> Optional[Request]:
    q = select(Request).where(Request.userId == user_id).where(Request.type == request_type)
    if not include_withdrawn:
        q = q.where(Request.withdrawnAt.is_(None))
    return db.execute(q.order_by(Request.createdAt.desc()).limit(1)).scalars().first()


def _slot_status(db, request_id: str, slot: str) -> Optional[str]:
    return db.execute(
        select(RequestDecision.status).where(RequestDecision.requestId == request_id).where(RequestDecision.slot == slot)
    ).scalar_one_or_none()


def check_eligibility(db, *, user_id: str, request_type: str, now: datetime, cfg: Any) -> Eligibility:
    # A withdrawn exception request still starts the cooldown.
    newest = newest_request(
        db, user_id=user_id, request_type=request_type, include_withdrawn=(request_type == "exception_request")
    )

    if request_type == "job_application":
        if newest is None:
            return job_application_eligibility(None, None, now=now)
        return job_application_eligibility(
            parse_datetime_maybe(newest.createdAt),
            _slot_status(db, newest.requestId, SLOT_APPLICATION) or DECISION_PENDING,
            now=now,
            reapply_window=timedelta(days=int(cfg.JOB_REAPPLY_DAYS)),
        )

    if request_type == "exception_request":
        return exception_request_eligibility(
            parse_datetime_maybe(newest.createdAt) if newest else None,
            now=now,
            cooldown=timedelta(hours=int(cfg.EXCEPTION_COOLDOWN_HOURS)),
        )

    if request_type == "resignation":
        if newest is None:
            return resignation_eligibility(None)
        return resignation_eligibility(_slot_status(db, newest.requestId, SLOT_HR) or DECISION_PENDING)

    raise ApiError("INVALID_ARGUMENT", f"Unknown request type: {request_type}")


def assert_eligible(db, *, user_id: str, request_type: str, now: datetime, cfg: Any) -> None:
    result = check_eligibility(db, user_id=user_id, request_type=request_type, now=now, cfg=cfg)
    if result.eligible:
        return
    if result.next_eligible_at:
        raise ApiError(
            "FAILED_PRECONDITION",
            f"Not eligible to submit a new {request_type} until {to_iso_utc(result.next_eligible_at)}",
        )
    if result.reason == REASON_ALREADY_ACCEPTED:
        raise ApiError("FAILED_PRECONDITION", "Your application has already been accepted")
    raise ApiError("FAILED_PRECONDITION", f"Your latest {request_type} is still awaiting a decision")
