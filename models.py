from __future__ import annotations

from sqlalchemy import Boolean, Column, Integer, String, Text, UniqueConstraint

from db import Base


REQUEST_TYPES = ("job_application", "exception_request", "resignation")

DECISION_PENDING = "pending"
DECISION_ACCEPTED = "accepted"
DECISION_REJECTED = "rejected"
DECISION_STATUSES = (DECISION_PENDING, DECISION_ACCEPTED, DECISION_REJECTED)

# Decision slots per request type. Job applications carry one slot that either
# HR or IT may decide; exception/resignation requests carry one slot per department.
SLOT_APPLICATION = "APPLICATION"
SLOT_HR = "HR"
SLOT_IT = "IT"


class User(Base):
    __tablename__ = "users"

    # Admin-provisioned users are keyed by their email address; self-registered
    # users get a generated id.
    userId = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    fullName = Column(Text, nullable=False, default="")
    role = Column(String, nullable=False, default="employee", index=True)
    status = Column(String, nullable=False, default="active", index=True)  # active|neverLoggedIn
    firstLoginDone = Column(Boolean, nullable=False, default=False)
    lastLoginAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class AuthAccount(Base):
    """Password credential, created on first login independently of the User record."""

    __tablename__ = "auth_accounts"

    uid = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(Text, nullable=False, default="")
    email_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(Text, nullable=False, default="")
    last_login_at = Column(Text, nullable=False, default="")


class Session(Base):
    __tablename__ = "sessions"

    sessionId = Column(String, primary_key=True)
    tokenHash = Column(String, nullable=False, unique=True, index=True)
    tokenPrefix = Column(String, nullable=False, default="")
    userId = Column(String, nullable=False, default="", index=True)
    email = Column(String, nullable=False, default="")
    role = Column(String, nullable=False, default="")
    issuedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    lastSeenAt = Column(Text, nullable=False, default="")
    revokedAt = Column(Text, nullable=False, default="")
    revokedBy = Column(String, nullable=False, default="")


class VerificationCode(Base):
    __tablename__ = "email_verification_codes"

    # Existing user's userId, or the lowercased email for unknown addresses.
    key = Column(String, primary_key=True)
    email = Column(String, nullable=False, default="", index=True)
    code = Column(String, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")


class RateLimitCounter(Base):
    __tablename__ = "rate_limit_counters"
    __table_args__ = (UniqueConstraint("key_type", "key_hash", "window_id", name="uq_rate_limit_key_window"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    key_type = Column(String, nullable=False, default="", index=True)  # VERIFY_SEND
    key_hash = Column(String, nullable=False, default="", index=True)
    window_id = Column(String, nullable=False, default="", index=True)
    count = Column(Integer, nullable=False, default=0)
    first_at = Column(Text, nullable=False, default="")
    last_at = Column(Text, nullable=False, default="")


class Request(Base):
    """
    Polymorphic request record (job_application | exception_request | resignation).

    Columns that do not apply to a type stay at their defaults.
    """

    __tablename__ = "requests"

    requestId = Column(String, primary_key=True)
    uniqueId = Column(String, nullable=False, default="", index=True)
    type = Column(String, nullable=False, index=True)
    userId = Column(String, nullable=True, index=True)
    email = Column(String, nullable=False, default="", index=True)
    createdAt = Column(Text, nullable=False, default="", index=True)
    updatedAt = Column(Text, nullable=False, default="")
    # Set on withdrawal; the row is kept so cooldowns still see it.
    withdrawnAt = Column(Text, nullable=True)

    # job_application
    fullName = Column(Text, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    details = Column(Text, nullable=False, default="")
    resumeUrl = Column(Text, nullable=False, default="")
    resumeOriginalName = Column(Text, nullable=False, default="")

    # exception_request
    systemsNeededJson = Column(Text, nullable=False, default="[]")
    startDate = Column(String, nullable=False, default="")
    endDate = Column(String, nullable=True)

    # exception_request + resignation
    reason = Column(Text, nullable=False, default="")

    # resignation
    lastWorkingDay = Column(String, nullable=False, default="")
    resignationType = Column(String, nullable=False, default="")
    noticeAcknowledged = Column(Boolean, nullable=False, default=False)
    comments = Column(Text, nullable=False, default="")

    additionalFilesJson = Column(Text, nullable=False, default="[]")


class RequestDecision(Base):
    __tablename__ = "request_decisions"
    __table_args__ = (UniqueConstraint("requestId", "slot", name="uq_request_decision_slot"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    requestId = Column(String, nullable=False, index=True)
    slot = Column(String, nullable=False, index=True)  # APPLICATION|HR|IT
    required = Column(Boolean, nullable=False, default=True)
    status = Column(String, nullable=False, default=DECISION_PENDING, index=True)
    decisionBy = Column(String, nullable=True)
    lastUpdated = Column(Text, nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    entityType = Column(String, nullable=False, default="", index=True)
    entityId = Column(String, nullable=False, default="", index=True)
    action = Column(String, nullable=False, default="", index=True)
    fromState = Column(String, nullable=False, default="")
    toState = Column(String, nullable=False, default="")
    stageTag = Column(String, nullable=False, default="")
    remark = Column(Text, nullable=False, default="")
    actorUserId = Column(String, nullable=False, default="")
    actorRole = Column(String, nullable=False, default="")
    actorEmail = Column(String, nullable=False, default="")
    at = Column(Text, nullable=False, default="", index=True)
    correlationId = Column(String, nullable=False, default="")
    metaJson = Column(Text, nullable=False, default="{}")
