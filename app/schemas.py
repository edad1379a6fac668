from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Literal, Any


# ============================================================================
# Users / Identity
# ============================================================================

class UserBase(BaseModel):
    email: EmailStr
    name: Optional[str] = None


class UserCreate(UserBase):
    password: str
    name: str
    phone: Optional[str] = None
    role: Literal["citizen", "contractor"] = "citizen"  # staff accounts are provisioned, not self-registered


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class User(UserBase):
    id: int
    role: str
    phone: Optional[str] = None
    is_active: bool
    is_verified: bool = False
    points: int = 0
    assigned_area_id: Optional[int] = None
    assigned_department_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str
    expires_in: int  # seconds
    user: Optional[User] = None


class FCMTokenUpdate(BaseModel):
    fcm_token: str


class Actor(BaseModel):
    """The authenticated caller as the workflow engine sees it"""
    id: int
    role: str
    assigned_area_id: Optional[int] = None
    assigned_department_id: Optional[int] = None

    class Config:
        from_attributes = True


# ============================================================================
# Reference data
# ============================================================================

class Area(BaseModel):
    id: int
    name: str
    district: Optional[str] = None
    state: Optional[str] = None

    class Config:
        from_attributes = True


class Department(BaseModel):
    id: int
    name: str
    category: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True


# ============================================================================
# Issue Schemas
# ============================================================================

class IssueLocation(BaseModel):
    location_name: Optional[str] = None
    address: Optional[str] = None
    area: Optional[str] = None
    ward: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class IssueCreate(IssueLocation):
    title: str
    description: str
    category: str  # roads, utilities, environment, safety, parks, other
    priority: str = "medium"  # low, medium, high, urgent
    images: List[str] = []  # URLs returned by POST /api/attachments


class IssueUpdate(IssueLocation):
    """Reporter edits. Unknown fields (status, workflow_stage) are rejected."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    images: Optional[List[str]] = None


class IssueAssignDepartment(BaseModel):
    department_id: Optional[int] = None
    notes: Optional[str] = None


class IssueStatusUpdate(BaseModel):
    status: str  # acknowledged, in_progress, resolved
    notes: Optional[str] = None


class IssueComplete(BaseModel):
    resolution_notes: Optional[str] = None
    images: List[str] = []


class IssueAssignment(BaseModel):
    id: int
    assignment_type: str
    assigned_by: int
    assigned_department_id: Optional[int] = None
    assigned_to: Optional[int] = None
    assignment_notes: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Issue(BaseModel):
    id: int
    user_id: int
    title: str
    description: str
    category: str
    priority: str
    status: str
    workflow_stage: str
    location_name: Optional[str] = None
    address: Optional[str] = None
    area: Optional[str] = None
    ward: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    images: List[str] = []
    assigned_area_id: Optional[int] = None
    assigned_department_id: Optional[int] = None
    current_assignee_id: Optional[int] = None
    final_resolution_notes: Optional[str] = None
    version_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class IssueDetail(Issue):
    assignments: List[IssueAssignment] = []
    tender_id: Optional[int] = None


class IssueList(BaseModel):
    issues: List[Issue]
    total: int
    limit: int
    offset: int


class IssueReported(BaseModel):
    issue: Issue
    points_awarded: int


class TimelineEntry(BaseModel):
    id: int
    activity_type: str
    subject: str
    created_at: Optional[datetime] = None
    created_by_name: Optional[str] = None
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    extra_data: Optional[Any] = None


class IssueVoteCreate(BaseModel):
    vote_type: Literal["upvote", "downvote"]


class VoteTally(BaseModel):
    issue_id: int
    upvotes: int = 0
    downvotes: int = 0
    my_vote: Optional[str] = None  # None when the caller has not voted


class FeedIssue(Issue):
    upvotes: int = 0
    downvotes: int = 0
    my_vote: Optional[str] = None


# ============================================================================
# Tender Schemas
# ============================================================================

class TenderCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    estimated_budget_min: Decimal = Decimal(0)
    estimated_budget_max: Decimal = Decimal(0)
    deadline_date: Optional[datetime] = None
    submission_deadline: Optional[datetime] = None  # defaults to now + submission window
    requirements: List[str] = []


class StandaloneTenderCreate(TenderCreate):
    category: Optional[str] = None
    priority: Optional[str] = None
    location: Optional[str] = None
    area: Optional[str] = None
    ward: Optional[str] = None


class Tender(BaseModel):
    id: int
    source_issue_id: Optional[int] = None
    department_id: int
    posted_by: int
    title: str
    description: str
    category: Optional[str] = None
    priority: Optional[str] = None
    location: Optional[str] = None
    area: Optional[str] = None
    ward: Optional[str] = None
    estimated_budget_min: Optional[float] = None
    estimated_budget_max: Optional[float] = None
    deadline_date: datetime
    submission_deadline: datetime
    requirements: List[str] = []
    status: str
    workflow_stage: str
    awarded_contractor_id: Optional[int] = None
    awarded_amount: Optional[float] = None
    awarded_at: Optional[datetime] = None
    work_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TenderList(BaseModel):
    tenders: List[Tender]
    total: int


class BidCreate(BaseModel):
    amount: Decimal
    details: Optional[str] = None
    timeline: Optional[str] = None


class Bid(BaseModel):
    id: int
    tender_id: int
    user_id: int
    amount: float
    details: Optional[str] = None
    timeline: Optional[str] = None
    status: str
    submitted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BidDecision(BaseModel):
    """Result of accepting a bid: the awarded tender and every bid on it"""
    tender: Tender
    bids: List[Bid]


class WorkProgressCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    progress_percentage: int = 0
    images: List[str] = []
    materials_used: List[str] = []
    challenges_faced: Optional[str] = None


class CompletionCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = []
    materials_used: List[str] = []
    challenges_faced: Optional[str] = None


class WorkVerification(BaseModel):
    approved: bool
    verification_notes: Optional[str] = None


class WorkProgress(BaseModel):
    id: int
    tender_id: int
    contractor_id: int
    progress_type: str
    title: Optional[str] = None
    description: str
    progress_percentage: int
    images: List[str] = []
    materials_used: List[str] = []
    challenges_faced: Optional[str] = None
    status: str
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    verification_notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WorkVerificationResult(BaseModel):
    progress: WorkProgress
    tender: Tender
    issue: Optional[Issue] = None


class TenderDocumentCreate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    document_type: Optional[str] = None  # specification, drawing, permit, other


class TenderDocument(BaseModel):
    id: int
    tender_id: int
    uploaded_by: int
    name: str
    url: str
    document_type: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TenderDetail(Tender):
    bids: List[Bid] = []
    work_progress: List[WorkProgress] = []
    documents: List[TenderDocument] = []


class ContractorTender(Tender):
    """Tender as seen from the contractor dashboard, with the contractor's own bid"""
    my_bid: Optional[Bid] = None


# ============================================================================
# Notifications / attachments / dashboard
# ============================================================================

class Notification(BaseModel):
    id: int
    entity_type: str
    entity_id: int
    change_kind: str
    title: str
    message: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AttachmentUploaded(BaseModel):
    url: str
    content_type: str


class DashboardStats(BaseModel):
    total_issues: int
    issues_by_status: dict
    issues_by_stage: dict
    recent_issues: int  # reported in the last 7 days
    active_tenders: int
    tenders_by_stage: dict
    resolution_rate: int  # percent


# ============================================================================
# Feedback
# ============================================================================

class FeedbackCreate(BaseModel):
    type: Literal["complaint", "suggestion", "compliment", "inquiry"] = "complaint"
    subject: str
    message: str
    priority: Literal["low", "medium", "high"] = "medium"
    issue_id: Optional[int] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None


class FeedbackStatusUpdate(BaseModel):
    status: Literal["pending", "reviewed", "in_progress", "resolved", "closed"]
    admin_response: Optional[str] = None


class Feedback(BaseModel):
    id: int
    user_id: Optional[int] = None
    issue_id: Optional[int] = None
    type: str
    subject: str
    message: str
    priority: str
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    status: str
    admin_response: Optional[str] = None
    responded_by: Optional[int] = None
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
