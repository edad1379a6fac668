"""
Role-scoped reads over issues and tenders.

Every query narrows to what the actor may see or act on:
- admin: everything
- area_super_admin: issues in their area
- department_admin: issues handed to their department, and its tenders
- contractor: open tenders, tenders they bid on, tenders awarded to them
- citizen: their own issues
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import false, func, or_
from sqlalchemy.orm import Query, Session

from app.errors import NotFound, Unauthorized
from app.models import Area, Bid, Issue, Tender, WorkProgress
from app.schemas import Actor
from app.workflow_rules import IssueStatus, Role, TenderStage, TenderStatus

logger = logging.getLogger(__name__)


def _area_for(db: Session, actor: Actor) -> Optional[Area]:
    if actor.assigned_area_id is None:
        return None
    return db.query(Area).filter(Area.id == actor.assigned_area_id).first()


def scoped_issue_query(db: Session, actor: Actor) -> Query:
    """Base issue query for the actor. Contractors have no issue view."""
    query = db.query(Issue)

    if actor.role == Role.ADMIN.value:
        return query
    if actor.role == Role.AREA_SUPER_ADMIN.value:
        area = _area_for(db, actor)
        if area is None:
            return query.filter(false())
        return query.filter(or_(Issue.assigned_area_id == area.id, Issue.area == area.name))
    if actor.role == Role.DEPARTMENT_ADMIN.value:
        if actor.assigned_department_id is None:
            return query.filter(false())
        return query.filter(Issue.assigned_department_id == actor.assigned_department_id)
    if actor.role == Role.CITIZEN.value:
        return query.filter(Issue.user_id == actor.id)

    raise Unauthorized("Contractors cannot list issues", code="list_issues.role_not_permitted")


def scoped_tender_query(db: Session, actor: Actor) -> Query:
    """Base tender query for the actor. Citizens have no tender view."""
    query = db.query(Tender)

    if actor.role == Role.ADMIN.value:
        return query
    if actor.role == Role.DEPARTMENT_ADMIN.value:
        if actor.assigned_department_id is None:
            return query.filter(false())
        return query.filter(Tender.department_id == actor.assigned_department_id)
    if actor.role == Role.CONTRACTOR.value:
        my_bids = db.query(Bid.tender_id).filter(Bid.user_id == actor.id)
        return query.filter(or_(
            Tender.status == TenderStatus.AVAILABLE.value,
            Tender.id.in_(my_bids),
            Tender.awarded_contractor_id == actor.id,
        ))

    raise Unauthorized("Your role cannot list tenders", code="list_tenders.role_not_permitted")


def list_issues(
    db: Session,
    actor: Actor,
    stage: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0
) -> Tuple[List[Issue], int]:
    """Returns (page of issues newest first, total matching)"""
    query = scoped_issue_query(db, actor)

    if stage:
        query = query.filter(Issue.workflow_stage == stage)
    if status:
        query = query.filter(Issue.status == status)
    if category:
        query = query.filter(Issue.category == category)
    if date_from:
        query = query.filter(Issue.created_at >= date_from)
    if date_to:
        query = query.filter(Issue.created_at <= date_to)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Issue.title.ilike(pattern),
            Issue.description.ilike(pattern),
            Issue.location_name.ilike(pattern),
            Issue.address.ilike(pattern),
        ))

    total = query.count()
    issues = query.order_by(Issue.created_at.desc(), Issue.id.desc()).offset(offset).limit(limit).all()
    return issues, total


def get_issue(db: Session, actor: Actor, issue_id: int) -> Issue:
    if not db.query(Issue.id).filter(Issue.id == issue_id).first():
        raise NotFound(f"Issue {issue_id} not found", code="issue.not_found")
    issue = scoped_issue_query(db, actor).filter(Issue.id == issue_id).first()
    if issue is None:
        raise Unauthorized("You do not have access to this issue", code="issue.out_of_scope")
    return issue


def list_tenders(
    db: Session,
    actor: Actor,
    stage: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None
) -> List[Tender]:
    query = scoped_tender_query(db, actor)

    if stage:
        query = query.filter(Tender.workflow_stage == stage)
    if status:
        query = query.filter(Tender.status == status)
    if category:
        query = query.filter(Tender.category == category)
    if date_from:
        query = query.filter(Tender.created_at >= date_from)
    if date_to:
        query = query.filter(Tender.created_at <= date_to)

    return query.order_by(Tender.created_at.desc(), Tender.id.desc()).all()


def list_contractor_tenders(db: Session, actor: Actor) -> List[Tuple[Tender, Bid]]:
    """Tenders the contractor has bid on, each paired with that contractor's bid."""
    if actor.role != Role.CONTRACTOR.value:
        raise Unauthorized("Only contractors have a bid dashboard", code="list_contractor_tenders.role_not_permitted")

    return (
        db.query(Tender, Bid)
        .join(Bid, Bid.tender_id == Tender.id)
        .filter(Bid.user_id == actor.id)
        .order_by(Bid.submitted_at.desc(), Bid.id.desc())
        .all()
    )


def get_tender(db: Session, actor: Actor, tender_id: int) -> Tender:
    if not db.query(Tender.id).filter(Tender.id == tender_id).first():
        raise NotFound(f"Tender {tender_id} not found", code="tender.not_found")
    tender = scoped_tender_query(db, actor).filter(Tender.id == tender_id).first()
    if tender is None:
        raise Unauthorized("You do not have access to this tender", code="tender.out_of_scope")
    return tender


def list_bids(db: Session, actor: Actor, tender: Tender) -> List[Bid]:
    """Department admins see every bid (cheapest first); a contractor sees only their own."""
    query = db.query(Bid).filter(Bid.tender_id == tender.id)

    if actor.role == Role.ADMIN.value:
        pass
    elif actor.role == Role.DEPARTMENT_ADMIN.value:
        if actor.assigned_department_id != tender.department_id:
            raise Unauthorized("This tender belongs to another department", code="list_bids.out_of_scope")
    elif actor.role == Role.CONTRACTOR.value:
        query = query.filter(Bid.user_id == actor.id)
    else:
        raise Unauthorized("Your role cannot view bids", code="list_bids.role_not_permitted")

    return query.order_by(Bid.amount.asc(), Bid.id.asc()).all()


def list_work_progress(db: Session, actor: Actor, tender: Tender) -> List[WorkProgress]:
    allowed = (
        actor.role == Role.ADMIN.value
        or (actor.role == Role.DEPARTMENT_ADMIN.value and actor.assigned_department_id == tender.department_id)
        or (actor.role == Role.CONTRACTOR.value and tender.awarded_contractor_id == actor.id)
    )
    if not allowed:
        raise Unauthorized("Only the tender's department or awarded contractor can view progress",
                           code="list_work_progress.out_of_scope")

    return (
        db.query(WorkProgress)
        .filter(WorkProgress.tender_id == tender.id)
        .order_by(WorkProgress.created_at.desc(), WorkProgress.id.desc())
        .all()
    )


def list_public_issues(
    db: Session,
    category: Optional[str] = None,
    status: Optional[str] = None,
    area: Optional[str] = None,
    location: Optional[str] = None,
    date_from: Optional[datetime] = None,
    with_location: bool = False,
    limit: int = 50,
    offset: int = 0
) -> List[Issue]:
    """Read-only community feed, open to any signed-in user."""
    query = db.query(Issue)

    if category:
        query = query.filter(Issue.category == category)
    if status:
        query = query.filter(Issue.status == status)
    if area:
        query = query.filter(Issue.area == area)
    if location:
        pattern = f"%{location}%"
        query = query.filter(or_(Issue.location_name.ilike(pattern), Issue.address.ilike(pattern)))
    if date_from:
        query = query.filter(Issue.created_at >= date_from)
    if with_location:
        query = query.filter(Issue.latitude.isnot(None), Issue.longitude.isnot(None))

    return query.order_by(Issue.created_at.desc(), Issue.id.desc()).offset(offset).limit(limit).all()


def dashboard_stats(db: Session, actor: Actor) -> dict:
    """Counts within the actor's issue scope plus active tenders within their tender scope."""
    issues = scoped_issue_query(db, actor) if actor.role != Role.CONTRACTOR.value else None

    by_status = {}
    by_stage = {}
    total = 0
    recent = 0
    if issues is not None:
        subquery = issues.subquery()
        for status, count in db.query(subquery.c.status, func.count()).group_by(subquery.c.status).all():
            by_status[status] = count
        for stage, count in db.query(subquery.c.workflow_stage, func.count()).group_by(subquery.c.workflow_stage).all():
            by_stage[stage] = count
        total = sum(by_status.values())
        week_ago = datetime.utcnow() - timedelta(days=7)
        recent = issues.filter(Issue.created_at >= week_ago).count()

    tenders_by_stage = {}
    active_tenders = 0
    if actor.role != Role.CITIZEN.value:
        tenders = scoped_tender_query(db, actor).subquery()
        for stage, count in db.query(tenders.c.workflow_stage, func.count()).group_by(tenders.c.workflow_stage).all():
            tenders_by_stage[stage] = count
        active_tenders = sum(
            count for stage, count in tenders_by_stage.items() if stage != TenderStage.VERIFIED.value
        )

    resolved = by_status.get(IssueStatus.RESOLVED.value, 0)
    return {
        "total_issues": total,
        "issues_by_status": by_status,
        "issues_by_stage": by_stage,
        "recent_issues": recent,
        "active_tenders": active_tenders,
        "tenders_by_stage": tenders_by_stage,
        "resolution_rate": round(resolved / total * 100) if total else 0,
    }
