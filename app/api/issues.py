"""
Issue API Endpoints

Provides endpoints for:
- Reporting and editing issues
- Role-scoped listing, community feed, votes and dashboard stats
- Workflow transitions (area review, department hand-off, tender, completion, status)
- Timeline
"""
from datetime import datetime
from typing import Optional, List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.api.auth import get_current_actor
from app.schemas import (
    Actor, IssueCreate, IssueUpdate, Issue as IssueSchema, IssueDetail, IssueList,
    IssueReported, IssueAssignDepartment, IssueStatusUpdate, IssueComplete, IssueAssignment,
    TenderCreate, Tender as TenderSchema, TimelineEntry, DashboardStats, FeedIssue, IssueVoteCreate, VoteTally
)
from app.services import community, workflow_queries
from app.services.audit import get_issue_timeline
from app.services.workflow import WorkflowEngine

router = APIRouter()


def issue_detail(issue) -> dict:
    data = IssueSchema.model_validate(issue).model_dump()
    data["assignments"] = [IssueAssignment.model_validate(a).model_dump() for a in issue.assignments]
    data["tender_id"] = issue.tender.id if issue.tender else None
    return data


# =============================================================================
# Reads
# =============================================================================

@router.get("", response_model=IssueList)
async def list_issues(
    stage: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """List the issues the caller is responsible for"""
    issues, total = workflow_queries.list_issues(
        db, actor, stage=stage, status=status, category=category,
        date_from=date_from, date_to=date_to, search=search, limit=limit, offset=offset
    )
    return {"issues": issues, "total": total, "limit": limit, "offset": offset}


@router.get("/feed", response_model=List[FeedIssue])
async def community_feed(
    category: Optional[str] = None,
    status: Optional[str] = None,
    area: Optional[str] = None,
    location: Optional[str] = None,
    date_from: Optional[datetime] = None,
    with_location: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Public feed of reported issues with community vote counts"""
    issues = workflow_queries.list_public_issues(
        db, category=category, status=status, area=area, location=location,
        date_from=date_from, with_location=with_location, limit=limit, offset=offset
    )
    return community.feed_entries(db, issues, actor)


@router.get("/stats", response_model=DashboardStats)
async def issue_stats(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return workflow_queries.dashboard_stats(db, actor)


@router.get("/{issue_id}", response_model=IssueDetail)
async def get_issue(issue_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return issue_detail(workflow_queries.get_issue(db, actor, issue_id))


@router.get("/{issue_id}/vote", response_model=VoteTally)
async def get_vote(issue_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Vote counts for an issue and the caller's own vote"""
    return community.get_issue_votes(db, actor, issue_id)


@router.get("/{issue_id}/timeline", response_model=List[TimelineEntry])
async def issue_timeline(issue_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Audit trail and hand-offs of an issue and its tender, oldest first"""
    issue = workflow_queries.get_issue(db, actor, issue_id)
    return get_issue_timeline(db, issue)


# =============================================================================
# Commands
# =============================================================================

@router.post("", response_model=IssueReported, status_code=201)
async def report_issue(data: IssueCreate, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    issue, points = WorkflowEngine(db).report_issue(actor, data)
    return {"issue": issue, "points_awarded": points}


@router.post("/{issue_id}/vote", response_model=VoteTally)
async def vote_on_issue(
    issue_id: int,
    data: IssueVoteCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Cast a vote; repeating the same vote withdraws it, the opposite vote switches it"""
    return community.vote_on_issue(db, actor, issue_id, data.vote_type)


@router.put("/{issue_id}", response_model=IssueSchema)
async def update_issue(
    issue_id: int,
    data: IssueUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Reporter edits descriptive fields; status and stage are not editable here"""
    return WorkflowEngine(db).update_issue_details(actor, issue_id, data)


@router.post("/{issue_id}/area-review", response_model=IssueSchema)
async def begin_area_review(issue_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return WorkflowEngine(db).begin_area_review(actor, issue_id)


@router.post("/{issue_id}/assign-department", response_model=IssueDetail)
async def assign_to_department(
    issue_id: int,
    data: IssueAssignDepartment,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    issue = WorkflowEngine(db).assign_to_department(actor, issue_id, data.department_id, data.notes)
    return issue_detail(issue)


@router.post("/{issue_id}/tender", response_model=TenderSchema, status_code=201)
async def create_tender(
    issue_id: int,
    data: TenderCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return WorkflowEngine(db).create_tender(actor, issue_id, data)


@router.post("/{issue_id}/complete", response_model=IssueSchema)
async def mark_complete(
    issue_id: int,
    data: IssueComplete,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Department resolves the issue without a tender"""
    return WorkflowEngine(db).mark_complete_directly(actor, issue_id, data.resolution_notes, data.images)


@router.put("/{issue_id}/status", response_model=IssueSchema)
async def update_status(
    issue_id: int,
    data: IssueStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return WorkflowEngine(db).update_issue_status(actor, issue_id, data.status, data.notes)
