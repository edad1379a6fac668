"""
Issue / Tender Workflow Engine

Single authority for every status and stage change of issues and tenders.

Each public method is one transactional command:
- checks role, scope, stage and input preconditions (in that order)
- applies all field updates, side records and audit rows in one session
- commits once, or rolls back everything on any error
- publishes notifications and awards points only after the commit

Usage:
    engine = WorkflowEngine(db)
    tender = engine.create_tender(actor, issue_id, TenderCreate(...))
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.errors import (
    ConflictError, DependencyFailure, InvalidStateTransition, NotFound,
    Unauthorized, WorkflowError, WorkflowValidationError
)
from app.models import (
    Area, Bid, Department, Issue, IssueAssignment, Tender, TenderDocument,
    User, WorkProgress
)
from app.schemas import (
    Actor, BidCreate, CompletionCreate, IssueCreate, IssueUpdate,
    StandaloneTenderCreate, TenderCreate, TenderDocumentCreate, WorkProgressCreate
)
from app.services.audit import log_workflow_action
from app.services.gamification import gamification_service, points_for_priority
from app.services.notifications import notification_service
from app.workflow_rules import (
    AssignmentType, BidStatus, IssueCategory, IssuePriority, IssueStage,
    IssueStatus, ProgressStatus, ProgressType, Role, STAFF_ROLES, TenderStage,
    TenderStatus, check_role, check_stage, issue_transition, status_index,
    tender_transition, values
)

logger = logging.getLogger(__name__)


def _utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize to naive UTC, the form every DateTime column stores."""
    if dt is not None and dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class WorkflowEngine:
    """Transactional commands for the issue and tender lifecycle"""

    def __init__(self, db: Session, notifier=None, gamification=None):
        self.db = db
        self.notifier = notifier or notification_service
        self.gamification = gamification or gamification_service

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self, action: str):
        try:
            yield
            self.db.commit()
        except WorkflowError:
            self.db.rollback()
            raise
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"{action}: lost optimistic concurrency race, rolled back")
            raise ConflictError(code=f"{action}.conflict")
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"{action}: integrity violation, rolled back: {e.orig}")
            raise ConflictError(code=f"{action}.duplicate")
        except OperationalError as e:
            self.db.rollback()
            logger.error(f"{action}: database unavailable, rolled back: {e.orig}")
            raise DependencyFailure("Database is temporarily unavailable", code=f"{action}.database_unavailable",
                                    retryable=True)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{action}: database error, rolled back: {e}")
            raise DependencyFailure("Database error", code=f"{action}.database_error")
        except Exception:
            self.db.rollback()
            logger.warning(f"{action}: failed, rolled back")
            raise

    def _publish(self, entity_type: str, entity_id: int, change_kind: str,
                 recipients: Iterable[Optional[int]] = (), title: Optional[str] = None,
                 message: Optional[str] = None) -> None:
        try:
            self.notifier.publish(entity_type, entity_id, change_kind, list(recipients),
                                  title=title, message=message)
        except Exception as e:
            logger.warning(f"Notification {entity_type}:{entity_id}:{change_kind} not published: {e}")

    def _award_points(self, user_id: int, amount: int, action: str) -> bool:
        try:
            return bool(self.gamification.award_points(user_id, amount, action))
        except Exception as e:
            logger.warning(f"Points for {action} not awarded to user {user_id}: {e}")
            return False

    def _get_issue(self, issue_id: int) -> Issue:
        issue = self.db.query(Issue).filter(Issue.id == issue_id).first()
        if not issue:
            raise NotFound(f"Issue {issue_id} not found", code="issue.not_found")
        return issue

    def _get_tender(self, tender_id: int) -> Tender:
        tender = self.db.query(Tender).filter(Tender.id == tender_id).first()
        if not tender:
            raise NotFound(f"Tender {tender_id} not found", code="tender.not_found")
        return tender

    def _get_bid(self, tender: Tender, bid_id: int) -> Bid:
        bid = self.db.query(Bid).filter(Bid.id == bid_id, Bid.tender_id == tender.id).first()
        if not bid:
            raise NotFound(f"Bid {bid_id} not found on tender {tender.id}", code="bid.not_found")
        return bid

    def _area_admin_ids(self, area_id: Optional[int]) -> List[int]:
        if area_id is None:
            return []
        rows = self.db.query(User.id).filter(
            User.role == Role.AREA_SUPER_ADMIN.value,
            User.assigned_area_id == area_id,
            User.is_active == True
        ).all()
        return [r.id for r in rows]

    def _department_admin_ids(self, department_id: Optional[int]) -> List[int]:
        if department_id is None:
            return []
        rows = self.db.query(User.id).filter(
            User.role == Role.DEPARTMENT_ADMIN.value,
            User.assigned_department_id == department_id,
            User.is_active == True
        ).all()
        return [r.id for r in rows]

    # ------------------------------------------------------------------
    # Scope checks
    # ------------------------------------------------------------------

    def _require_area_scope(self, actor: Actor, issue: Issue, action: str) -> None:
        area = None
        if actor.assigned_area_id is not None:
            area = self.db.query(Area).filter(Area.id == actor.assigned_area_id).first()
        if area is None or not (issue.assigned_area_id == area.id or issue.area == area.name):
            raise Unauthorized(f"Issue {issue.id} is outside your area", code=f"{action}.out_of_scope")

    def _require_department_scope(self, actor: Actor, department_id: Optional[int], action: str) -> None:
        if actor.assigned_department_id is None or department_id != actor.assigned_department_id:
            raise Unauthorized("This item belongs to another department", code=f"{action}.out_of_scope")

    def _require_awarded_contractor(self, actor: Actor, tender: Tender, action: str) -> None:
        if tender.awarded_contractor_id != actor.id:
            raise Unauthorized("Only the awarded contractor can do this", code=f"{action}.not_awarded_contractor")

    def _require_staff_scope(self, actor: Actor, issue: Issue, action: str) -> None:
        if actor.role not in {r.value for r in STAFF_ROLES}:
            raise Unauthorized(f"Action '{action}' requires a staff role", code=f"{action}.role_not_permitted")
        if actor.role == Role.AREA_SUPER_ADMIN.value:
            self._require_area_scope(actor, issue, action)
        elif actor.role == Role.DEPARTMENT_ADMIN.value:
            self._require_department_scope(actor, issue.assigned_department_id, action)

    # ------------------------------------------------------------------
    # Effects shared by several transitions
    # ------------------------------------------------------------------

    @staticmethod
    def _advance_status(issue: Issue, status: IssueStatus) -> None:
        """Move status forward; never backwards."""
        if status_index(status.value) > status_index(issue.status):
            issue.status = status.value

    def _resolve_directly(self, actor: Actor, issue: Issue, notes: str, action: str,
                          images: Optional[List[str]] = None) -> None:
        old_stage = issue.workflow_stage
        issue.status = IssueStatus.RESOLVED.value
        issue.workflow_stage = IssueStage.RESOLVED.value
        issue.resolved_at = datetime.utcnow()
        issue.final_resolution_notes = notes
        if images:
            issue.images = list(issue.images or []) + list(images)
        log_workflow_action(self.db, "issue", issue.id, action, actor.id,
                            old_value=old_stage, new_value=IssueStage.RESOLVED.value,
                            details={"notes": notes})

    def _validate_tender_fields(self, data: TenderCreate, action: str) -> Tuple[datetime, datetime]:
        """Returns (deadline_date, submission_deadline)"""
        if _blank(data.title):
            raise WorkflowValidationError("Tender title is required", code=f"{action}.title_required")
        if _blank(data.description):
            raise WorkflowValidationError("Tender description is required", code=f"{action}.description_required")
        if data.deadline_date is None:
            raise WorkflowValidationError("Tender deadline is required", code=f"{action}.deadline_required")
        if data.estimated_budget_min < 0 or data.estimated_budget_max < 0:
            raise WorkflowValidationError("Budget cannot be negative", code=f"{action}.negative_budget")
        if data.estimated_budget_max and data.estimated_budget_min > data.estimated_budget_max:
            raise WorkflowValidationError("Minimum budget exceeds maximum budget", code=f"{action}.budget_range")

        deadline = _utc(data.deadline_date)
        if deadline <= datetime.utcnow():
            raise WorkflowValidationError("Tender deadline must be in the future", code=f"{action}.deadline_past")

        submission_deadline = _utc(data.submission_deadline)
        if submission_deadline is None:
            submission_deadline = min(datetime.utcnow() + timedelta(days=settings.submission_window_days), deadline)
        elif submission_deadline > deadline:
            raise WorkflowValidationError("Bids must close before the work deadline",
                                          code=f"{action}.submission_after_deadline")
        return deadline, submission_deadline

    # ------------------------------------------------------------------
    # Issue transitions
    # ------------------------------------------------------------------

    def report_issue(self, actor: Actor, data: IssueCreate) -> Tuple[Issue, int]:
        """
        File a new issue on behalf of the actor.

        Returns:
            (issue, points awarded). Points are 0 when the award failed;
            the issue is persisted either way.
        """
        if _blank(data.title):
            raise WorkflowValidationError("Title is required", code="report_issue.title_required")
        if _blank(data.description):
            raise WorkflowValidationError("Description is required", code="report_issue.description_required")
        if data.category not in values(IssueCategory):
            raise WorkflowValidationError(f"Unknown category '{data.category}'", code="report_issue.invalid_category")
        if data.priority not in values(IssuePriority):
            raise WorkflowValidationError(f"Unknown priority '{data.priority}'", code="report_issue.invalid_priority")

        with self._unit_of_work("report_issue"):
            area = None
            if data.area:
                area = self.db.query(Area).filter(Area.name == data.area).first()

            issue = Issue(
                user_id=actor.id,
                title=data.title.strip(),
                description=data.description.strip(),
                category=data.category,
                priority=data.priority,
                status=IssueStatus.PENDING.value,
                workflow_stage=IssueStage.REPORTED.value,
                location_name=data.location_name,
                address=data.address,
                area=data.area,
                ward=data.ward,
                latitude=data.latitude,
                longitude=data.longitude,
                images=list(data.images),
                assigned_area_id=area.id if area else None,
            )
            self.db.add(issue)
            self.db.flush()
            log_workflow_action(self.db, "issue", issue.id, "report_issue", actor.id,
                                new_value=IssueStage.REPORTED.value,
                                details={"category": issue.category, "priority": issue.priority})
            recipients = self._area_admin_ids(issue.assigned_area_id)

        logger.info(f"Issue {issue.id} reported by user {actor.id} ({issue.category}/{issue.priority})")

        points = points_for_priority(issue.priority)
        awarded = self._award_points(actor.id, points, "report_issue")
        self._publish("issue", issue.id, "reported", recipients,
                      title="New issue reported", message=issue.title)
        return issue, points if awarded else 0

    def update_issue_details(self, actor: Actor, issue_id: int, data: IssueUpdate) -> Issue:
        """Reporter edits descriptive fields while the issue is still untriaged."""
        issue = self._get_issue(issue_id)
        if issue.user_id != actor.id:
            raise Unauthorized("Only the reporter can edit this issue", code="update_issue.not_reporter")
        if issue.workflow_stage != IssueStage.REPORTED.value:
            raise InvalidStateTransition("Issue can no longer be edited once triage has started",
                                         code="update_issue.invalid_stage")

        changes = data.model_dump(exclude_unset=True)
        if "category" in changes and changes["category"] not in values(IssueCategory):
            raise WorkflowValidationError(f"Unknown category '{changes['category']}'", code="update_issue.invalid_category")
        if "priority" in changes and changes["priority"] not in values(IssuePriority):
            raise WorkflowValidationError(f"Unknown priority '{changes['priority']}'", code="update_issue.invalid_priority")
        for field in ("title", "description"):
            if field in changes and _blank(changes[field]):
                raise WorkflowValidationError(f"{field.capitalize()} cannot be empty", code=f"update_issue.{field}_required")

        with self._unit_of_work("update_issue"):
            for field, value in changes.items():
                setattr(issue, field, value)
            if "area" in changes:
                area = self.db.query(Area).filter(Area.name == changes["area"]).first() if changes["area"] else None
                issue.assigned_area_id = area.id if area else None
            log_workflow_action(self.db, "issue", issue.id, "update_issue", actor.id,
                                details={"fields": sorted(changes)})

        logger.info(f"Issue {issue.id} edited by reporter ({', '.join(sorted(changes)) or 'no fields'})")
        return issue

    def begin_area_review(self, actor: Actor, issue_id: int) -> Issue:
        transition = issue_transition("begin_area_review")
        issue = self._get_issue(issue_id)
        check_role(transition, actor.role)
        self._require_area_scope(actor, issue, transition.action)
        check_stage(transition, issue.workflow_stage, "issue")

        with self._unit_of_work(transition.action):
            old_stage = issue.workflow_stage
            issue.workflow_stage = transition.to_stage
            log_workflow_action(self.db, "issue", issue.id, transition.action, actor.id,
                                old_value=old_stage, new_value=transition.to_stage)

        logger.info(f"Issue {issue.id} under area review by user {actor.id}")
        self._publish("issue", issue.id, "area_review", [issue.user_id], title="Your issue is being reviewed")
        return issue

    def assign_to_department(self, actor: Actor, issue_id: int, department_id: Optional[int],
                             notes: Optional[str] = None) -> Issue:
        transition = issue_transition("assign_to_department")
        issue = self._get_issue(issue_id)
        check_role(transition, actor.role)
        self._require_area_scope(actor, issue, transition.action)
        check_stage(transition, issue.workflow_stage, "issue")

        if department_id is None:
            raise WorkflowValidationError("A department is required", code="assign_to_department.department_required")
        department = self.db.query(Department).filter(Department.id == department_id).first()
        if not department:
            raise NotFound(f"Department {department_id} not found", code="assign_to_department.department_not_found")
        if not department.is_active:
            raise WorkflowValidationError(f"Department '{department.name}' is not active",
                                          code="assign_to_department.department_inactive")

        with self._unit_of_work(transition.action):
            old_stage = issue.workflow_stage
            self.db.add(IssueAssignment(
                issue_id=issue.id,
                assigned_by=actor.id,
                assignment_type=AssignmentType.AREA_TO_DEPARTMENT.value,
                assigned_department_id=department.id,
                assignment_notes=notes,
            ))
            issue.assigned_department_id = department.id
            issue.workflow_stage = transition.to_stage
            self._advance_status(issue, IssueStatus.ACKNOWLEDGED)
            log_workflow_action(self.db, "issue", issue.id, transition.action, actor.id,
                                old_value=old_stage, new_value=transition.to_stage,
                                details={"department_id": department.id, "notes": notes})
            recipients = self._department_admin_ids(department.id)

        logger.info(f"Issue {issue.id} assigned to department {department.id} by user {actor.id}")
        self._publish("issue", issue.id, "department_assigned", recipients + [issue.user_id],
                      title="Issue assigned to department", message=f"{issue.title} -> {department.name}")
        return issue

    def create_tender(self, actor: Actor, issue_id: int, data: TenderCreate) -> Tender:
        transition = issue_transition("create_tender")
        issue = self._get_issue(issue_id)
        check_role(transition, actor.role)
        self._require_department_scope(actor, issue.assigned_department_id, transition.action)
        if self.db.query(Tender.id).filter(Tender.source_issue_id == issue.id).first():
            raise ConflictError("A tender already exists for this issue", code="duplicate_tender")
        check_stage(transition, issue.workflow_stage, "issue")
        deadline, submission_deadline = self._validate_tender_fields(data, transition.action)

        with self._unit_of_work(transition.action):
            tender = Tender(
                source_issue_id=issue.id,
                department_id=issue.assigned_department_id,
                posted_by=actor.id,
                title=data.title.strip(),
                description=data.description.strip(),
                category=issue.category,
                priority=issue.priority,
                location=issue.address or issue.location_name,
                area=issue.area,
                ward=issue.ward,
                estimated_budget_min=data.estimated_budget_min,
                estimated_budget_max=data.estimated_budget_max,
                deadline_date=deadline,
                submission_deadline=submission_deadline,
                requirements=list(data.requirements),
                status=TenderStatus.AVAILABLE.value,
                workflow_stage=TenderStage.CREATED.value,
            )
            self.db.add(tender)
            old_stage = issue.workflow_stage
            issue.workflow_stage = transition.to_stage
            self._advance_status(issue, IssueStatus.IN_PROGRESS)
            self.db.flush()
            log_workflow_action(self.db, "tender", tender.id, "create_tender", actor.id,
                                new_value=TenderStage.CREATED.value, details={"source_issue_id": issue.id})
            log_workflow_action(self.db, "issue", issue.id, transition.action, actor.id,
                                old_value=old_stage, new_value=transition.to_stage,
                                details={"tender_id": tender.id})

        logger.info(f"Tender {tender.id} created for issue {issue.id} by user {actor.id}")
        self._publish("issue", issue.id, "tender_created", [issue.user_id], title="A tender was opened for your issue")
        self._publish("tender", tender.id, "created")
        return tender

    def post_tender(self, actor: Actor, data: StandaloneTenderCreate) -> Tender:
        """Open a tender that is not tied to a reported issue."""
        if actor.role != Role.DEPARTMENT_ADMIN.value:
            raise Unauthorized("Action 'post_tender' requires role: department_admin",
                               code="post_tender.role_not_permitted")
        if actor.assigned_department_id is None:
            raise Unauthorized("You are not assigned to a department", code="post_tender.no_department")
        if data.category is not None and data.category not in values(IssueCategory):
            raise WorkflowValidationError(f"Unknown category '{data.category}'", code="post_tender.invalid_category")
        if data.priority is not None and data.priority not in values(IssuePriority):
            raise WorkflowValidationError(f"Unknown priority '{data.priority}'", code="post_tender.invalid_priority")
        deadline, submission_deadline = self._validate_tender_fields(data, "post_tender")

        with self._unit_of_work("post_tender"):
            tender = Tender(
                department_id=actor.assigned_department_id,
                posted_by=actor.id,
                title=data.title.strip(),
                description=data.description.strip(),
                category=data.category,
                priority=data.priority,
                location=data.location,
                area=data.area,
                ward=data.ward,
                estimated_budget_min=data.estimated_budget_min,
                estimated_budget_max=data.estimated_budget_max,
                deadline_date=deadline,
                submission_deadline=submission_deadline,
                requirements=list(data.requirements),
                status=TenderStatus.AVAILABLE.value,
                workflow_stage=TenderStage.CREATED.value,
            )
            self.db.add(tender)
            self.db.flush()
            log_workflow_action(self.db, "tender", tender.id, "post_tender", actor.id,
                                new_value=TenderStage.CREATED.value)

        logger.info(f"Standalone tender {tender.id} posted by user {actor.id}")
        self._publish("tender", tender.id, "created")
        return tender

    def mark_complete_directly(self, actor: Actor, issue_id: int, notes: Optional[str],
                               images: Optional[List[str]] = None) -> Issue:
        transition = issue_transition("mark_complete_directly")
        issue = self._get_issue(issue_id)
        check_role(transition, actor.role)
        self._require_department_scope(actor, issue.assigned_department_id, transition.action)
        check_stage(transition, issue.workflow_stage, "issue")
        if _blank(notes):
            raise WorkflowValidationError("Resolution notes are required", code=f"{transition.action}.notes_required")

        with self._unit_of_work(transition.action):
            self._resolve_directly(actor, issue, notes.strip(), transition.action, images)

        logger.info(f"Issue {issue.id} resolved directly by user {actor.id}")
        self._publish("issue", issue.id, "resolved", [issue.user_id],
                      title="Your issue has been resolved", message=issue.final_resolution_notes)
        return issue

    def update_issue_status(self, actor: Actor, issue_id: int, status: str, notes: Optional[str] = None) -> Issue:
        """
        Staff status change (acknowledge / set in progress / resolve).

        Status only moves forward. Resolving is a direct completion and is
        only possible while the issue sits with its department.
        """
        action = "update_status"
        issue = self._get_issue(issue_id)
        self._require_staff_scope(actor, issue, action)

        allowed = (IssueStatus.ACKNOWLEDGED.value, IssueStatus.IN_PROGRESS.value, IssueStatus.RESOLVED.value)
        if status not in allowed:
            raise WorkflowValidationError(f"Status must be one of: {', '.join(allowed)}", code=f"{action}.invalid_status")
        if issue.status == IssueStatus.RESOLVED.value:
            raise InvalidStateTransition("Issue is already resolved", code=f"{action}.already_resolved")
        if status_index(status) <= status_index(issue.status):
            raise InvalidStateTransition(
                f"Cannot move status from '{issue.status}' to '{status}'", code=f"{action}.not_forward"
            )

        if status == IssueStatus.RESOLVED.value:
            if issue.workflow_stage != IssueStage.DEPARTMENT_ASSIGNED.value:
                raise InvalidStateTransition(
                    f"Issue in stage '{issue.workflow_stage}' cannot be resolved directly",
                    code=f"{action}.invalid_stage"
                )
            if _blank(notes):
                raise WorkflowValidationError("Resolution notes are required", code=f"{action}.notes_required")

        with self._unit_of_work(action):
            if status == IssueStatus.RESOLVED.value:
                self._resolve_directly(actor, issue, notes.strip(), action)
            else:
                old_status = issue.status
                issue.status = status
                log_workflow_action(self.db, "issue", issue.id, action, actor.id,
                                    old_value=old_status, new_value=status, details={"notes": notes} if notes else None)

        logger.info(f"Issue {issue.id} status -> {status} by user {actor.id}")
        self._publish("issue", issue.id, f"status_{status}", [issue.user_id],
                      title=f"Issue {status.replace('_', ' ')}", message=notes)
        return issue

    # ------------------------------------------------------------------
    # Tender transitions
    # ------------------------------------------------------------------

    def submit_bid(self, actor: Actor, tender_id: int, data: BidCreate) -> Bid:
        transition = tender_transition("submit_bid")
        tender = self._get_tender(tender_id)
        check_role(transition, actor.role)
        check_stage(transition, tender.workflow_stage, "tender")
        if tender.status != TenderStatus.AVAILABLE.value:
            raise InvalidStateTransition("Tender is not accepting bids", code="submit_bid.not_available")
        if tender.submission_deadline and tender.submission_deadline < datetime.utcnow():
            raise InvalidStateTransition("Bid submission deadline has passed", code="submit_bid.submission_closed")
        if data.amount is None or Decimal(data.amount) <= 0:
            raise WorkflowValidationError("Bid amount must be greater than zero", code="submit_bid.invalid_amount")
        existing = self.db.query(Bid.id).filter(Bid.tender_id == tender.id, Bid.user_id == actor.id).first()
        if existing:
            raise ConflictError("You have already bid on this tender", code="duplicate_bid")

        with self._unit_of_work(transition.action):
            bid = Bid(
                tender_id=tender.id,
                user_id=actor.id,
                amount=data.amount,
                details=data.details,
                timeline=data.timeline,
                status=BidStatus.SUBMITTED.value,
            )
            self.db.add(bid)
            # version_id bump: a bid and an award on the same tender cannot both commit
            tender.updated_at = datetime.utcnow()
            self.db.flush()
            log_workflow_action(self.db, "bid", bid.id, transition.action, actor.id,
                                new_value=BidStatus.SUBMITTED.value,
                                details={"tender_id": tender.id, "amount": data.amount})
            recipients = self._department_admin_ids(tender.department_id)

        logger.info(f"Bid {bid.id} of {data.amount} submitted on tender {tender.id} by contractor {actor.id}")
        self._publish("tender", tender.id, "bid_submitted", recipients, title="New bid received",
                      message=tender.title)
        return bid

    def accept_bid(self, actor: Actor, tender_id: int, bid_id: int) -> Tender:
        """
        Award the tender to one bid and reject every other pending bid.

        Guarded by the tender's version counter: when two admins accept at
        the same time only the first commit wins, the other gets ConflictError.
        """
        transition = tender_transition("accept_bid")
        tender = self._get_tender(tender_id)
        check_role(transition, actor.role)
        self._require_department_scope(actor, tender.department_id, transition.action)
        bid = self._get_bid(tender, bid_id)
        check_stage(transition, tender.workflow_stage, "tender")
        if tender.status != TenderStatus.AVAILABLE.value:
            raise InvalidStateTransition("Tender has already been awarded", code="accept_bid.not_available")
        if bid.status != BidStatus.SUBMITTED.value:
            raise InvalidStateTransition(f"Bid is already {bid.status}", code="accept_bid.bid_not_submitted")

        now = datetime.utcnow()
        with self._unit_of_work(transition.action):
            rejected_ids = []
            for other in tender.bids:
                if other.id == bid.id:
                    other.status = BidStatus.ACCEPTED.value
                elif other.status == BidStatus.SUBMITTED.value:
                    other.status = BidStatus.REJECTED.value
                    rejected_ids.append(other.user_id)

            tender.status = TenderStatus.AWARDED.value
            tender.workflow_stage = transition.to_stage
            tender.awarded_contractor_id = bid.user_id
            tender.awarded_amount = bid.amount
            tender.awarded_at = now
            log_workflow_action(self.db, "tender", tender.id, transition.action, actor.id,
                                old_value=TenderStage.CREATED.value, new_value=transition.to_stage,
                                details={"bid_id": bid.id, "contractor_id": bid.user_id, "amount": bid.amount,
                                         "rejected_bids": len(rejected_ids)})

            issue = tender.source_issue
            if issue is not None:
                self.db.add(IssueAssignment(
                    issue_id=issue.id,
                    assigned_by=actor.id,
                    assignment_type=AssignmentType.DEPARTMENT_TO_CONTRACTOR.value,
                    assigned_department_id=tender.department_id,
                    assigned_to=bid.user_id,
                    assignment_notes=f"Tender {tender.id} awarded",
                ))
                issue.current_assignee_id = bid.user_id
                log_workflow_action(self.db, "issue", issue.id, "contractor_assigned", actor.id,
                                    new_value=str(bid.user_id), details={"tender_id": tender.id})

        logger.info(f"Tender {tender.id} awarded to contractor {tender.awarded_contractor_id} "
                    f"(bid {bid.id}); {len(rejected_ids)} other bids rejected")
        self._publish("bid", bid.id, "bid_accepted", [bid.user_id], title="Your bid was accepted",
                      message=tender.title)
        if rejected_ids:
            self._publish("tender", tender.id, "bid_rejected", rejected_ids, title="Your bid was not selected",
                          message=tender.title)
        if tender.source_issue_id:
            self._publish("issue", tender.source_issue_id, "contractor_assigned",
                          [tender.source_issue.user_id], title="A contractor was assigned to your issue")
        return tender

    def reject_bid(self, actor: Actor, tender_id: int, bid_id: int, reason: Optional[str] = None) -> Bid:
        transition = tender_transition("reject_bid")
        tender = self._get_tender(tender_id)
        check_role(transition, actor.role)
        self._require_department_scope(actor, tender.department_id, transition.action)
        bid = self._get_bid(tender, bid_id)
        check_stage(transition, tender.workflow_stage, "tender")
        if bid.status != BidStatus.SUBMITTED.value:
            raise InvalidStateTransition(f"Bid is already {bid.status}", code="reject_bid.bid_not_submitted")

        with self._unit_of_work(transition.action):
            bid.status = BidStatus.REJECTED.value
            log_workflow_action(self.db, "bid", bid.id, transition.action, actor.id,
                                old_value=BidStatus.SUBMITTED.value, new_value=BidStatus.REJECTED.value,
                                details={"tender_id": tender.id, "reason": reason} if reason else {"tender_id": tender.id})

        logger.info(f"Bid {bid.id} on tender {tender.id} rejected by user {actor.id}")
        self._publish("bid", bid.id, "bid_rejected", [bid.user_id], title="Your bid was not selected", message=reason)
        return bid

    def start_work(self, actor: Actor, tender_id: int) -> Tender:
        transition = tender_transition("start_work")
        tender = self._get_tender(tender_id)
        check_role(transition, actor.role)
        check_stage(transition, tender.workflow_stage, "tender")
        self._require_awarded_contractor(actor, tender, transition.action)

        with self._unit_of_work(transition.action):
            tender.workflow_stage = transition.to_stage
            tender.work_started_at = datetime.utcnow()
            log_workflow_action(self.db, "tender", tender.id, transition.action, actor.id,
                                old_value=TenderStage.AWARDED.value, new_value=transition.to_stage)
            recipients = self._department_admin_ids(tender.department_id)

        logger.info(f"Work started on tender {tender.id} by contractor {actor.id}")
        self._publish("tender", tender.id, "work_started", recipients, title="Work started", message=tender.title)
        return tender

    def submit_progress_update(self, actor: Actor, tender_id: int, data: WorkProgressCreate) -> WorkProgress:
        transition = tender_transition("submit_progress_update")
        tender = self._get_tender(tender_id)
        check_role(transition, actor.role)
        check_stage(transition, tender.workflow_stage, "tender")
        self._require_awarded_contractor(actor, tender, transition.action)
        if _blank(data.description):
            raise WorkflowValidationError("Progress description is required",
                                          code=f"{transition.action}.description_required")
        if not 0 <= data.progress_percentage <= 100:
            raise WorkflowValidationError("Progress percentage must be between 0 and 100",
                                          code=f"{transition.action}.invalid_percentage")

        with self._unit_of_work(transition.action):
            progress = WorkProgress(
                tender_id=tender.id,
                contractor_id=actor.id,
                progress_type=ProgressType.UPDATE.value,
                title=data.title,
                description=data.description.strip(),
                progress_percentage=data.progress_percentage,
                images=list(data.images),
                materials_used=list(data.materials_used),
                challenges_faced=data.challenges_faced,
                status=ProgressStatus.SUBMITTED.value,
            )
            self.db.add(progress)
            self.db.flush()
            log_workflow_action(self.db, "work_progress", progress.id, transition.action, actor.id,
                                details={"tender_id": tender.id, "percentage": data.progress_percentage})
            recipients = self._department_admin_ids(tender.department_id)

        logger.info(f"Progress {data.progress_percentage}% reported on tender {tender.id}")
        self._publish("tender", tender.id, "progress_update", recipients,
                      title=f"Progress update: {data.progress_percentage}%", message=tender.title)
        return progress

    def submit_completion(self, actor: Actor, tender_id: int, data: CompletionCreate) -> WorkProgress:
        transition = tender_transition("submit_completion")
        tender = self._get_tender(tender_id)
        check_role(transition, actor.role)
        check_stage(transition, tender.workflow_stage, "tender")
        self._require_awarded_contractor(actor, tender, transition.action)
        if _blank(data.description):
            raise WorkflowValidationError("Completion description is required",
                                          code=f"{transition.action}.description_required")

        issue = tender.source_issue
        if issue is not None:
            check_stage(issue_transition("await_department_review"), issue.workflow_stage, "issue")

        with self._unit_of_work(transition.action):
            progress = WorkProgress(
                tender_id=tender.id,
                contractor_id=actor.id,
                progress_type=ProgressType.COMPLETION.value,
                title=data.title or "Work completed",
                description=data.description.strip(),
                progress_percentage=100,
                images=list(data.images),
                materials_used=list(data.materials_used),
                challenges_faced=data.challenges_faced,
                status=ProgressStatus.SUBMITTED.value,
            )
            self.db.add(progress)
            tender.workflow_stage = transition.to_stage
            self.db.flush()
            log_workflow_action(self.db, "tender", tender.id, transition.action, actor.id,
                                old_value=TenderStage.WORK_IN_PROGRESS.value, new_value=transition.to_stage,
                                details={"progress_id": progress.id})
            if issue is not None:
                old_stage = issue.workflow_stage
                issue.workflow_stage = IssueStage.DEPARTMENT_REVIEW.value
                log_workflow_action(self.db, "issue", issue.id, "await_department_review", actor.id,
                                    old_value=old_stage, new_value=IssueStage.DEPARTMENT_REVIEW.value,
                                    details={"tender_id": tender.id})
            recipients = self._department_admin_ids(tender.department_id)

        logger.info(f"Completion submitted on tender {tender.id} by contractor {actor.id}")
        self._publish("tender", tender.id, "completion_submitted", recipients,
                      title="Work completion awaiting verification", message=tender.title)
        return progress

    def verify_work(self, actor: Actor, tender_id: int, progress_id: int, approved: bool,
                    notes: Optional[str] = None) -> Tuple[WorkProgress, Tender, Optional[Issue]]:
        """
        Approve or reject a work progress record.

        Approving a completion record closes the tender and resolves its
        source issue in the same commit. Rejecting one sends the tender back
        to work_in_progress and leaves the issue where it is. Update records
        are approved or rejected without touching the tender.
        """
        transition = tender_transition("approve_completion" if approved else "reject_completion")
        tender = self._get_tender(tender_id)
        check_role(transition, actor.role)
        self._require_department_scope(actor, tender.department_id, "verify_work")

        progress = self.db.query(WorkProgress).filter(
            WorkProgress.id == progress_id, WorkProgress.tender_id == tender.id
        ).first()
        if not progress:
            raise NotFound(f"Work progress {progress_id} not found on tender {tender.id}", code="work_progress.not_found")
        if progress.status != ProgressStatus.SUBMITTED.value:
            raise InvalidStateTransition(f"Work progress is already {progress.status}", code="verify_work.already_verified")
        if not approved and _blank(notes):
            raise WorkflowValidationError("Rejection notes are required", code="verify_work.notes_required")

        is_completion = progress.progress_type == ProgressType.COMPLETION.value
        issue = tender.source_issue if is_completion else None
        if is_completion:
            check_stage(transition, tender.workflow_stage, "tender")
            if approved and issue is not None:
                check_stage(issue_transition("resolve_from_tender"), issue.workflow_stage, "issue")

        now = datetime.utcnow()
        new_status = ProgressStatus.APPROVED if approved else ProgressStatus.REJECTED
        with self._unit_of_work(transition.action):
            progress.status = new_status.value
            progress.verified_by = actor.id
            progress.verified_at = now
            progress.verification_notes = notes
            log_workflow_action(self.db, "work_progress", progress.id, "verify_work", actor.id,
                                old_value=ProgressStatus.SUBMITTED.value, new_value=new_status.value,
                                details={"tender_id": tender.id, "notes": notes})

            if is_completion:
                old_stage = tender.workflow_stage
                tender.workflow_stage = transition.to_stage
                if approved:
                    tender.status = TenderStatus.COMPLETED.value
                    tender.completed_at = now
                log_workflow_action(self.db, "tender", tender.id, transition.action, actor.id,
                                    old_value=old_stage, new_value=transition.to_stage)

                if approved and issue is not None:
                    old_issue_stage = issue.workflow_stage
                    issue.status = IssueStatus.RESOLVED.value
                    issue.workflow_stage = IssueStage.RESOLVED.value
                    issue.resolved_at = now
                    issue.final_resolution_notes = notes or progress.description
                    log_workflow_action(self.db, "issue", issue.id, "resolve_from_tender", actor.id,
                                        old_value=old_issue_stage, new_value=IssueStage.RESOLVED.value,
                                        details={"tender_id": tender.id})

        logger.info(f"Work progress {progress.id} on tender {tender.id} {new_status.value} by user {actor.id}")
        self._publish("work_progress", progress.id, f"work_{new_status.value}", [progress.contractor_id],
                      title=f"Your work was {new_status.value}", message=notes)
        if is_completion and approved and issue is not None:
            self._publish("issue", issue.id, "resolved", [issue.user_id], title="Your issue has been resolved",
                          message=issue.final_resolution_notes)
        return progress, tender, issue

    def attach_tender_document(self, actor: Actor, tender_id: int, data: TenderDocumentCreate) -> TenderDocument:
        tender = self._get_tender(tender_id)
        is_department_admin = (
            actor.role == Role.DEPARTMENT_ADMIN.value
            and actor.assigned_department_id is not None
            and actor.assigned_department_id == tender.department_id
        )
        is_awarded = actor.role == Role.CONTRACTOR.value and tender.awarded_contractor_id == actor.id
        if not (is_department_admin or is_awarded):
            raise Unauthorized("Only the tender's department or its awarded contractor can attach documents",
                               code="attach_document.not_permitted")
        if _blank(data.url):
            raise WorkflowValidationError("Document URL is required", code="attach_document.url_required")

        with self._unit_of_work("attach_document"):
            document = TenderDocument(
                tender_id=tender.id,
                uploaded_by=actor.id,
                name=data.name or data.url.rstrip("/").rsplit("/", 1)[-1],
                url=data.url,
                document_type=data.document_type,
            )
            self.db.add(document)
            self.db.flush()
            log_workflow_action(self.db, "tender", tender.id, "attach_document", actor.id,
                                details={"document_id": document.id, "name": document.name})

        logger.info(f"Document {document.id} attached to tender {tender.id} by user {actor.id}")
        return document
