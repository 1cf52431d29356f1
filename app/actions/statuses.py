"""Canonical drive/candidate states and the server-derived display fields built on them."""

from __future__ import annotations

from enum import Enum
from typing import Optional

DRIVE_STAGES = ("draft", "registration", "aptitude", "technical", "interview", "completed")

# Stage a drive must have reached once a round is under way.
ROUND_STAGE = {1: "aptitude", 2: "technical", 3: "interview"}
ROUND_NAME = {1: "aptitude", 2: "technical"}

SESSION_PENDING = "pending"
SESSION_IN_PROGRESS = "in_progress"
SESSION_COMPLETED = "completed"
SESSION_EXPIRED = "expired"
ACTIVE_SESSION_STATUSES = (SESSION_PENDING, SESSION_IN_PROGRESS)

QUALIFIED = "qualified"
NOT_QUALIFIED = "not_qualified"


class RegistrationStatus(str, Enum):
    INVITED = "invited"
    REGISTERED = "registered"
    APTITUDE_IN_PROGRESS = "aptitude_in_progress"
    APTITUDE_QUALIFIED = "aptitude_qualified"
    APTITUDE_NOT_QUALIFIED = "aptitude_not_qualified"
    TECHNICAL_IN_PROGRESS = "technical_in_progress"
    TECHNICAL_QUALIFIED = "technical_qualified"
    TECHNICAL_NOT_QUALIFIED = "technical_not_qualified"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    SELECTED = "selected"
    REJECTED = "rejected"


# Older free-text statuses still seen in filters and imported exports.
# "{round}" resolves against the candidate's current round; "{result}" against qualification.
LEGACY_STATUS_MAP = {
    "pending": "invited",
    "registered": "registered",
    "test_in_progress": "aptitude_in_progress",
    "test_completed": "aptitude_{result}",
    "aptitude_completed": "aptitude_{result}",
    "technical_completed": "technical_{result}",
    "qualified": "technical_qualified",
    "not_qualified": "{round}_not_qualified",
    "interview_scheduled": "interview_scheduled",
}


def stage_index(stage: str) -> int:
    try:
        return DRIVE_STAGES.index(str(stage or "").strip().lower())
    except ValueError:
        return -1


def map_legacy_status(value: str, *, currentRound: int = 1, qualified: Optional[bool] = None) -> Optional[RegistrationStatus]:
    s = str(value or "").strip().lower()
    if not s:
        return None
    try:
        return RegistrationStatus(s)
    except ValueError:
        pass

    template = LEGACY_STATUS_MAP.get(s)
    if template is None:
        return None
    round_name = ROUND_NAME.get(min(int(currentRound or 1), 2), "aptitude")
    result = "qualified" if qualified else "not_qualified"
    return RegistrationStatus(template.format(round=round_name, result=result))


def statuses_for_filter(value: str, *, currentRound: int = 1) -> list[RegistrationStatus]:
    """
    Canonical statuses a filter value selects. Legacy "completed" values resolve by
    score, so they select both the qualified and the not-qualified outcome.
    """

    s = str(value or "").strip().lower()
    if "{result}" in LEGACY_STATUS_MAP.get(s, ""):
        return [
            status
            for status in (
                map_legacy_status(s, currentRound=currentRound, qualified=True),
                map_legacy_status(s, currentRound=currentRound, qualified=False),
            )
            if status is not None
        ]
    status = map_legacy_status(s, currentRound=currentRound)
    return [status] if status is not None else []


def derive_registration_status(cand, *, in_progress_round: Optional[int] = None) -> RegistrationStatus:
    """Pure function of persisted candidate state (plus any running test round)."""
    decision = str(cand.finalDecision or "").strip().lower()
    if decision == "selected":
        return RegistrationStatus.SELECTED
    if decision == "rejected":
        return RegistrationStatus.REJECTED
    if cand.interviewScheduled:
        return RegistrationStatus.INTERVIEW_SCHEDULED

    qualified = cand.qualificationStatus == QUALIFIED
    if cand.technicalScore is not None:
        return RegistrationStatus.TECHNICAL_QUALIFIED if qualified else RegistrationStatus.TECHNICAL_NOT_QUALIFIED
    if in_progress_round == 2:
        return RegistrationStatus.TECHNICAL_IN_PROGRESS
    if cand.aptitudeScore is not None:
        return RegistrationStatus.APTITUDE_QUALIFIED if qualified else RegistrationStatus.APTITUDE_NOT_QUALIFIED
    if in_progress_round == 1:
        return RegistrationStatus.APTITUDE_IN_PROGRESS
    if cand.registeredAt:
        return RegistrationStatus.REGISTERED
    return RegistrationStatus.INVITED


def score_band(score: Optional[int]) -> str:
    if score is None:
        return "none"
    if score >= 80:
        return "high"
    if score >= 60:
        return "medium"
    return "low"


_TONES = {
    RegistrationStatus.INVITED: "neutral",
    RegistrationStatus.REGISTERED: "info",
    RegistrationStatus.APTITUDE_IN_PROGRESS: "info",
    RegistrationStatus.TECHNICAL_IN_PROGRESS: "info",
    RegistrationStatus.APTITUDE_QUALIFIED: "success",
    RegistrationStatus.TECHNICAL_QUALIFIED: "success",
    RegistrationStatus.INTERVIEW_SCHEDULED: "success",
    RegistrationStatus.SELECTED: "success",
    RegistrationStatus.APTITUDE_NOT_QUALIFIED: "danger",
    RegistrationStatus.TECHNICAL_NOT_QUALIFIED: "danger",
    RegistrationStatus.REJECTED: "danger",
}


def status_tone(status: str) -> str:
    try:
        return _TONES[RegistrationStatus(status)]
    except (ValueError, KeyError):
        return "neutral"
