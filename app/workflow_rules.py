"""
Workflow vocabulary and transition tables.

All status / stage / role values used by the issue and tender workflow are
defined here once. The engine consults ``ISSUE_TRANSITIONS`` and
``TENDER_TRANSITIONS`` for every action; no other module compares raw
status strings.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from app.errors import InvalidStateTransition, Unauthorized


class Role(str, Enum):
    CITIZEN = "citizen"
    ADMIN = "admin"
    AREA_SUPER_ADMIN = "area_super_admin"
    DEPARTMENT_ADMIN = "department_admin"
    CONTRACTOR = "contractor"


class IssueCategory(str, Enum):
    ROADS = "roads"
    UTILITIES = "utilities"
    ENVIRONMENT = "environment"
    SAFETY = "safety"
    PARKS = "parks"
    OTHER = "other"


class IssuePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class IssueStatus(str, Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"


class IssueStage(str, Enum):
    REPORTED = "reported"
    AREA_REVIEW = "area_review"
    DEPARTMENT_ASSIGNED = "department_assigned"
    CONTRACTOR_ASSIGNED = "contractor_assigned"
    DEPARTMENT_REVIEW = "department_review"
    RESOLVED = "resolved"


class AssignmentType(str, Enum):
    AREA_TO_DEPARTMENT = "area_to_department"
    DEPARTMENT_TO_CONTRACTOR = "department_to_contractor"


class TenderStatus(str, Enum):
    AVAILABLE = "available"
    AWARDED = "awarded"
    COMPLETED = "completed"


class TenderStage(str, Enum):
    CREATED = "created"
    AWARDED = "awarded"
    WORK_IN_PROGRESS = "work_in_progress"
    WORK_COMPLETED = "work_completed"
    VERIFIED = "verified"


class BidStatus(str, Enum):
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ProgressType(str, Enum):
    UPDATE = "update"
    COMPLETION = "completion"


class ProgressStatus(str, Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class VoteType(str, Enum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


class FeedbackType(str, Enum):
    COMPLAINT = "complaint"
    SUGGESTION = "suggestion"
    COMPLIMENT = "compliment"
    INQUIRY = "inquiry"


class FeedbackStatus(str, Enum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


ISSUE_STAGE_ORDER: Tuple[IssueStage, ...] = (
    IssueStage.REPORTED,
    IssueStage.AREA_REVIEW,
    IssueStage.DEPARTMENT_ASSIGNED,
    IssueStage.CONTRACTOR_ASSIGNED,
    IssueStage.DEPARTMENT_REVIEW,
    IssueStage.RESOLVED,
)

ISSUE_STATUS_ORDER: Tuple[IssueStatus, ...] = (
    IssueStatus.PENDING,
    IssueStatus.ACKNOWLEDGED,
    IssueStatus.IN_PROGRESS,
    IssueStatus.RESOLVED,
)

# assigned_department_id must be set exactly when the issue is in one of these
STAGES_WITH_DEPARTMENT: FrozenSet[IssueStage] = frozenset({
    IssueStage.DEPARTMENT_ASSIGNED,
    IssueStage.CONTRACTOR_ASSIGNED,
    IssueStage.DEPARTMENT_REVIEW,
    IssueStage.RESOLVED,
})

AWAITING_TRIAGE: Tuple[IssueStage, ...] = (IssueStage.REPORTED, IssueStage.AREA_REVIEW)

STAFF_ROLES: Tuple[Role, ...] = (Role.ADMIN, Role.AREA_SUPER_ADMIN, Role.DEPARTMENT_ADMIN)

POINTS_BY_PRIORITY: Dict[IssuePriority, int] = {
    IssuePriority.URGENT: 20,
    IssuePriority.HIGH: 15,
    IssuePriority.MEDIUM: 10,
    IssuePriority.LOW: 5,
}


@dataclass(frozen=True)
class Transition:
    """One legal move of the state machine."""
    action: str
    from_stages: Tuple[str, ...]
    to_stage: Optional[str]
    roles: Tuple[Role, ...]
    description: str = ""


def _transition(action, from_stages, to_stage, roles, description=""):
    return Transition(
        action=action,
        from_stages=tuple(s.value for s in from_stages),
        to_stage=to_stage.value if to_stage else None,
        roles=tuple(roles),
        description=description,
    )


ISSUE_TRANSITIONS: Dict[str, Transition] = {
    t.action: t for t in (
        _transition("begin_area_review", (IssueStage.REPORTED,), IssueStage.AREA_REVIEW,
                    (Role.AREA_SUPER_ADMIN,), "Area admin opens triage"),
        _transition("assign_to_department", AWAITING_TRIAGE, IssueStage.DEPARTMENT_ASSIGNED,
                    (Role.AREA_SUPER_ADMIN,), "Area admin hands the issue to a department"),
        _transition("create_tender", (IssueStage.DEPARTMENT_ASSIGNED,), IssueStage.CONTRACTOR_ASSIGNED,
                    (Role.DEPARTMENT_ADMIN,), "Department opens a tender for the issue"),
        _transition("mark_complete_directly", (IssueStage.DEPARTMENT_ASSIGNED,), IssueStage.RESOLVED,
                    (Role.DEPARTMENT_ADMIN,), "Department resolves without tendering"),
        _transition("await_department_review", (IssueStage.CONTRACTOR_ASSIGNED, IssueStage.DEPARTMENT_REVIEW),
                    IssueStage.DEPARTMENT_REVIEW, (Role.CONTRACTOR,), "Contractor reported completion"),
        _transition("resolve_from_tender", (IssueStage.DEPARTMENT_REVIEW,), IssueStage.RESOLVED,
                    (Role.DEPARTMENT_ADMIN,), "Department verified the tender work"),
    )
}

TENDER_TRANSITIONS: Dict[str, Transition] = {
    t.action: t for t in (
        _transition("submit_bid", (TenderStage.CREATED,), TenderStage.CREATED,
                    (Role.CONTRACTOR,), "Contractor bids on an open tender"),
        _transition("accept_bid", (TenderStage.CREATED,), TenderStage.AWARDED,
                    (Role.DEPARTMENT_ADMIN,), "Department awards the tender"),
        _transition("reject_bid", (TenderStage.CREATED,), TenderStage.CREATED,
                    (Role.DEPARTMENT_ADMIN,), "Department declines a single bid"),
        _transition("start_work", (TenderStage.AWARDED,), TenderStage.WORK_IN_PROGRESS,
                    (Role.CONTRACTOR,), "Awarded contractor starts work"),
        _transition("submit_progress_update", (TenderStage.WORK_IN_PROGRESS,), TenderStage.WORK_IN_PROGRESS,
                    (Role.CONTRACTOR,), "Awarded contractor reports progress"),
        _transition("submit_completion", (TenderStage.WORK_IN_PROGRESS,), TenderStage.WORK_COMPLETED,
                    (Role.CONTRACTOR,), "Awarded contractor reports completion"),
        _transition("approve_completion", (TenderStage.WORK_COMPLETED,), TenderStage.VERIFIED,
                    (Role.DEPARTMENT_ADMIN,), "Department accepts the completed work"),
        _transition("reject_completion", (TenderStage.WORK_COMPLETED,), TenderStage.WORK_IN_PROGRESS,
                    (Role.DEPARTMENT_ADMIN,), "Department sends the work back"),
    )
}


def check_role(transition: Transition, role: str) -> None:
    if role not in {r.value for r in transition.roles}:
        allowed = ", ".join(r.value for r in transition.roles)
        raise Unauthorized(
            f"Action '{transition.action}' requires role: {allowed}",
            code=f"{transition.action}.role_not_permitted",
        )


def check_stage(transition: Transition, current_stage: str, entity: str) -> None:
    if current_stage not in transition.from_stages:
        allowed = ", ".join(transition.from_stages)
        raise InvalidStateTransition(
            f"Cannot {transition.action.replace('_', ' ')}: {entity} is in stage "
            f"'{current_stage}', expected one of: {allowed}",
            code=f"{transition.action}.invalid_stage",
        )


def issue_transition(action: str) -> Transition:
    return ISSUE_TRANSITIONS[action]


def tender_transition(action: str) -> Transition:
    return TENDER_TRANSITIONS[action]


def stage_index(stage: str) -> int:
    return [s.value for s in ISSUE_STAGE_ORDER].index(stage)


def status_index(status: str) -> int:
    return [s.value for s in ISSUE_STATUS_ORDER].index(status)


def values(enum_cls) -> list:
    return [member.value for member in enum_cls]
