from __future__ import annotations

from sqlalchemy import Boolean, Column, Index, Integer, String, Text, UniqueConstraint, text

from app.db import Base


class DriveSession(Base):
    __tablename__ = "drive_sessions"

    driveSessionId = Column(String, primary_key=True)
    name = Column(Text, nullable=False, default="")
    type = Column(String, nullable=False, default="walk-in")
    jobId = Column(String, nullable=False, default="", index=True)
    description = Column(Text, nullable=False, default="")
    aptitudeCutoff = Column(Integer, nullable=False, default=60)
    technicalCutoff = Column(Integer, nullable=False, default=70)
    # Minutes.
    testDuration = Column(Integer, nullable=False, default=60)
    questionCount = Column(Integer, nullable=False, default=50)
    status = Column(String, nullable=False, default="draft", index=True)

    # Denormalized; only ever written by update_counts().
    totalCandidates = Column(Integer, nullable=False, default=0)
    registeredCandidates = Column(Integer, nullable=False, default=0)
    testCompleted = Column(Integer, nullable=False, default=0)
    aptitudeQualified = Column(Integer, nullable=False, default=0)
    technicalQualified = Column(Integer, nullable=False, default=0)
    interviewScheduled = Column(Integer, nullable=False, default=0)
    finalSelected = Column(Integer, nullable=False, default=0)

    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class DriveCandidate(Base):
    __tablename__ = "drive_candidates"
    __table_args__ = (
        UniqueConstraint("driveSessionId", "email", name="uq_drive_candidates_session_email"),
        Index("ix_drive_candidates_session_round", "driveSessionId", "currentRound"),
    )

    driveCandidateId = Column(String, primary_key=True)
    driveSessionId = Column(String, nullable=False, index=True)
    name = Column(Text, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    college = Column(Text, nullable=False, default="")
    registrationToken = Column(String, nullable=False, unique=True)
    registrationStatus = Column(String, nullable=False, default="invited", index=True)
    aptitudeScore = Column(Integer, nullable=True)
    technicalScore = Column(Integer, nullable=True)
    currentRound = Column(Integer, nullable=False, default=1)
    qualificationStatus = Column(String, nullable=True)
    interviewScheduled = Column(Boolean, nullable=False, default=False)
    interviewScheduledAt = Column(Text, nullable=False, default="")
    finalDecision = Column(String, nullable=False, default="")
    registeredAt = Column(Text, nullable=False, default="")
    testCompletedAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


_ACTIVE_SESSION = "status IN ('pending', 'in_progress')"


class TestSession(Base):
    __tablename__ = "test_sessions"
    __test__ = False  # keep pytest from collecting the model
    __table_args__ = (
        Index(
            "uq_test_sessions_active_round",
            "driveCandidateId",
            "testRound",
            unique=True,
            sqlite_where=text(_ACTIVE_SESSION),
            postgresql_where=text(_ACTIVE_SESSION),
        ),
        Index("ix_test_sessions_status_expires", "status", "expiresAt"),
    )

    testSessionId = Column(String, primary_key=True)
    driveCandidateId = Column(String, nullable=False, index=True)
    driveSessionId = Column(String, nullable=False, index=True)
    testToken = Column(String, nullable=False, unique=True)
    status = Column(String, nullable=False, default="pending")
    testRound = Column(Integer, nullable=False, default=1)
    totalQuestions = Column(Integer, nullable=False, default=0)
    answeredQuestions = Column(Integer, nullable=False, default=0)
    correctAnswers = Column(Integer, nullable=True)
    score = Column(Integer, nullable=True)
    # Seconds.
    timeSpent = Column(Integer, nullable=True)
    questionsJson = Column(Text, nullable=False, default="[]")
    responsesJson = Column(Text, nullable=False, default="{}")
    issuedAt = Column(Text, nullable=False, default="")
    linkExpiresAt = Column(Text, nullable=False, default="")
    startedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    completedAt = Column(Text, nullable=False, default="")
    completionReason = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class AptitudeQuestion(Base):
    __tablename__ = "aptitude_questions"

    questionId = Column(String, primary_key=True)
    # Empty string = shared across drives / jobs.
    driveSessionId = Column(String, nullable=False, default="", index=True)
    jobId = Column(String, nullable=False, default="", index=True)
    question = Column(Text, nullable=False, default="")
    optionsJson = Column(Text, nullable=False, default="[]")
    correctAnswer = Column(Integer, nullable=False, default=0)
    difficulty = Column(String, nullable=False, default="medium")
    category = Column(String, nullable=False, default="")
    testRound = Column(Integer, nullable=False, default=1, index=True)
    tagsJson = Column(Text, nullable=False, default="[]")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class CandidateNotification(Base):
    __tablename__ = "candidate_notifications"
    __table_args__ = (UniqueConstraint("driveCandidateId", "kind", name="uq_candidate_notifications_kind"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    driveCandidateId = Column(String, nullable=False, index=True)
    driveSessionId = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False)
    deliveredAt = Column(Text, nullable=False, default="")
    attempts = Column(Integer, nullable=False, default=0)
    lastError = Column(Text, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    entityType = Column(String, nullable=False, default="", index=True)
    entityId = Column(String, nullable=False, default="", index=True)
    action = Column(String, nullable=False, default="")
    fromState = Column(String, nullable=False, default="")
    toState = Column(String, nullable=False, default="")
    stageTag = Column(String, nullable=False, default="")
    remark = Column(Text, nullable=False, default="")
    actorUserId = Column(String, nullable=False, default="")
    actorRole = Column(String, nullable=False, default="")
    at = Column(Text, nullable=False, default="", index=True)
    metaJson = Column(Text, nullable=False, default="{}")
