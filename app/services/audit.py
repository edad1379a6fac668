"""
Workflow Audit Trail Service

Records one audit row per workflow transition and formats the issue
timeline (audit rows + assignment hand-offs) for display.
"""
import json
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models import WorkflowAuditTrail, IssueAssignment, Issue, User

logger = logging.getLogger(__name__)


def log_workflow_action(
    db: Session,
    entity_type: str,
    entity_id: int,
    action: str,
    user_id: Optional[int],
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> WorkflowAuditTrail:
    """
    Add an audit row to the current unit of work.

    Args:
        db: Database session
        entity_type: issue, tender, bid or work_progress
        entity_id: ID of the entity that changed
        action: Transition name (assign_to_department, accept_bid, ...)
        user_id: Actor who triggered the transition
        old_value: Previous stage/status
        new_value: New stage/status
        details: Additional context as dictionary

    Returns:
        Created audit trail entry
    """
    audit = WorkflowAuditTrail(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        action_by=user_id,
        old_value=old_value,
        new_value=new_value,
        details=json.dumps(details, default=str) if details else None
    )
    db.add(audit)
    # Don't commit - the workflow engine commits the whole transition
    return audit


def format_timeline_entry(
    id: int,
    activity_type: str,
    subject: str,
    created_at: datetime,
    created_by_name: Optional[str],
    previous_value: Optional[str] = None,
    new_value: Optional[str] = None,
    extra_data: Optional[dict] = None
) -> dict:
    """Helper to format timeline activity consistently"""
    return {
        "id": id,
        "activity_type": activity_type,
        "subject": subject,
        "created_at": created_at,
        "created_by_name": created_by_name,
        "previous_value": previous_value,
        "new_value": new_value,
        "extra_data": extra_data
    }


def get_issue_timeline(db: Session, issue: Issue) -> List[dict]:
    """
    Aggregate the audit trail of an issue, its hand-offs and its tender
    (if any) into a single chronological list.
    """
    entries = []

    audit_filters = [(WorkflowAuditTrail.entity_type == "issue") & (WorkflowAuditTrail.entity_id == issue.id)]
    if issue.tender is not None:
        audit_filters.append(
            (WorkflowAuditTrail.entity_type == "tender") & (WorkflowAuditTrail.entity_id == issue.tender.id)
        )

    audits = db.query(WorkflowAuditTrail).filter(or_(*audit_filters)).all()

    for audit in audits:
        entries.append(format_timeline_entry(
            id=audit.id,
            activity_type=f"{audit.entity_type}_{audit.action}",
            subject=audit.action.replace("_", " ").capitalize(),
            created_at=audit.created_at,
            created_by_name=audit.actor.name if audit.actor else None,
            previous_value=audit.old_value,
            new_value=audit.new_value,
            extra_data=json.loads(audit.details) if audit.details else None
        ))

    assignments = db.query(IssueAssignment).filter(IssueAssignment.issue_id == issue.id).all()
    for assignment in assignments:
        assigner = db.query(User).filter(User.id == assignment.assigned_by).first()
        target = assignment.department.name if assignment.department else (
            assignment.assignee.name if assignment.assignee else None
        )
        entries.append(format_timeline_entry(
            id=assignment.id * 10000,  # offset to avoid ID clashes with audit rows
            activity_type=assignment.assignment_type,
            subject=f"Assigned to {target}" if target else "Assigned",
            created_at=assignment.created_at,
            created_by_name=assigner.name if assigner else None,
            extra_data={"notes": assignment.assignment_notes} if assignment.assignment_notes else None
        ))

    entries.sort(key=lambda e: (e["created_at"] or datetime.min, e["id"]))
    return entries
