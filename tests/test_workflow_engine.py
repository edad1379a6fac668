"""
Workflow engine: transitions, preconditions and side effects.
"""
from datetime import datetime, timedelta

import pytest

from app.errors import (
    ConflictError, InvalidStateTransition, NotFound, Unauthorized, WorkflowValidationError
)
from app.models import Bid, Issue, IssueAssignment, Tender, User, WorkflowAuditTrail, WorkProgress
from app.schemas import (
    BidCreate, CompletionCreate, IssueUpdate, StandaloneTenderCreate, TenderDocumentCreate,
    WorkProgressCreate
)
from app.services import workflow as workflow_module
from app.services.workflow import WorkflowEngine

from conftest import future, issue_payload, tender_payload


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def publish(self, entity_type, entity_id, change_kind, recipient_ids=(), title=None, message=None):
        self.events.append((entity_type, entity_id, change_kind, sorted(r for r in recipient_ids if r)))


class BrokenGamification:
    def award_points(self, user_id, amount, action):
        raise RuntimeError("points service down")


# =============================================================================
# Reporting
# =============================================================================

@pytest.mark.parametrize("priority,points", [("urgent", 20), ("high", 15), ("medium", 10), ("low", 5)])
def test_report_issue_awards_points_by_priority(db, engine, seed, priority, points):
    issue, awarded = engine.report_issue(seed.citizen, issue_payload(priority=priority))

    assert awarded == points
    assert issue.status == "pending"
    assert issue.workflow_stage == "reported"
    assert issue.assigned_area_id == seed.central.id

    db.expire_all()
    assert db.query(User).filter(User.id == seed.citizen.id).one().points == points


def test_report_issue_rejects_unknown_category(engine, seed):
    with pytest.raises(WorkflowValidationError) as exc:
        engine.report_issue(seed.citizen, issue_payload(category="weather"))
    assert exc.value.code == "report_issue.invalid_category"


def test_report_issue_requires_title(engine, seed):
    with pytest.raises(WorkflowValidationError) as exc:
        engine.report_issue(seed.citizen, issue_payload(title="   "))
    assert exc.value.code == "report_issue.title_required"


def test_points_failure_does_not_undo_report(db, seed):
    engine = WorkflowEngine(db, gamification=BrokenGamification())

    issue, awarded = engine.report_issue(seed.citizen, issue_payload())

    assert awarded == 0
    assert db.query(Issue).filter(Issue.id == issue.id).count() == 1


def test_notification_failure_does_not_undo_transition(db, seed):
    class BrokenNotifier:
        def publish(self, *args, **kwargs):
            raise RuntimeError("push gateway down")

    engine = WorkflowEngine(db, notifier=BrokenNotifier())
    issue, _ = engine.report_issue(seed.citizen, issue_payload())
    engine.assign_to_department(seed.area_admin, issue.id, seed.roads.id)

    db.expire_all()
    assert db.query(Issue).filter(Issue.id == issue.id).one().workflow_stage == "department_assigned"


def test_reporter_can_edit_until_triage(engine, seed):
    issue, _ = engine.report_issue(seed.citizen, issue_payload())

    edited = engine.update_issue_details(seed.citizen, issue.id, IssueUpdate(title="Two potholes on MG Road"))
    assert edited.title == "Two potholes on MG Road"

    with pytest.raises(Unauthorized):
        engine.update_issue_details(seed.neighbour, issue.id, IssueUpdate(title="Not mine"))

    engine.begin_area_review(seed.area_admin, issue.id)
    with pytest.raises(InvalidStateTransition) as exc:
        engine.update_issue_details(seed.citizen, issue.id, IssueUpdate(title="Too late"))
    assert exc.value.code == "update_issue.invalid_stage"


# =============================================================================
# Area triage
# =============================================================================

def test_assign_to_department_records_hand_off(db, engine, seed):
    issue, _ = engine.report_issue(seed.citizen, issue_payload())
    engine.begin_area_review(seed.area_admin, issue.id)

    issue = engine.assign_to_department(seed.area_admin, issue.id, seed.roads.id, "Road surface damage")

    assert issue.workflow_stage == "department_assigned"
    assert issue.status == "acknowledged"
    assert issue.assigned_department_id == seed.roads.id
    assignments = db.query(IssueAssignment).filter(IssueAssignment.issue_id == issue.id).all()
    assert len(assignments) == 1
    assert assignments[0].assignment_type == "area_to_department"
    assert assignments[0].assigned_by == seed.area_admin.id
    assert assignments[0].assigned_department_id == seed.roads.id


def test_assign_directly_from_reported(engine, seed):
    issue, _ = engine.report_issue(seed.citizen, issue_payload())
    issue = engine.assign_to_department(seed.area_admin, issue.id, seed.roads.id)
    assert issue.workflow_stage == "department_assigned"


def test_assign_outside_area_is_unauthorized(db, engine, seed):
    issue, _ = engine.report_issue(seed.citizen, issue_payload())

    with pytest.raises(Unauthorized) as exc:
        engine.assign_to_department(seed.other_area_admin, issue.id, seed.roads.id)
    assert exc.value.code == "assign_to_department.out_of_scope"

    db.expire_all()
    unchanged = db.query(Issue).filter(Issue.id == issue.id).one()
    assert unchanged.workflow_stage == "reported"
    assert unchanged.assigned_department_id is None
    assert db.query(IssueAssignment).count() == 0


@pytest.mark.parametrize("role", ["citizen", "contractor", "dept_admin"])
def test_assign_requires_area_admin_role(engine, seed, role):
    issue, _ = engine.report_issue(seed.citizen, issue_payload())
    with pytest.raises(Unauthorized) as exc:
        engine.assign_to_department(getattr(seed, role), issue.id, seed.roads.id)
    assert exc.value.code == "assign_to_department.role_not_permitted"


def test_assign_rejects_inactive_or_missing_department(engine, seed):
    issue, _ = engine.report_issue(seed.citizen, issue_payload())

    with pytest.raises(WorkflowValidationError) as exc:
        engine.assign_to_department(seed.area_admin, issue.id, seed.closed.id)
    assert exc.value.code == "assign_to_department.department_inactive"

    with pytest.raises(NotFound):
        engine.assign_to_department(seed.area_admin, issue.id, 9999)

    with pytest.raises(WorkflowValidationError):
        engine.assign_to_department(seed.area_admin, issue.id, None)


def test_stages_never_move_backwards(engine, seed, assigned_issue):
    with pytest.raises(InvalidStateTransition) as exc:
        engine.begin_area_review(seed.area_admin, assigned_issue.id)
    assert exc.value.code == "begin_area_review.invalid_stage"

    with pytest.raises(InvalidStateTransition):
        engine.assign_to_department(seed.area_admin, assigned_issue.id, seed.water.id)


def test_missing_issue_is_not_found(engine, seed):
    with pytest.raises(NotFound):
        engine.begin_area_review(seed.area_admin, 12345)


# =============================================================================
# Department decisions
# =============================================================================

def test_create_tender_moves_issue_to_contractor_assigned(db, engine, seed, assigned_issue):
    tender = engine.create_tender(seed.dept_admin, assigned_issue.id, tender_payload())

    assert tender.status == "available"
    assert tender.workflow_stage == "created"
    assert tender.source_issue_id == assigned_issue.id
    assert tender.department_id == seed.roads.id
    assert tender.submission_deadline <= tender.deadline_date

    db.expire_all()
    issue = db.query(Issue).filter(Issue.id == assigned_issue.id).one()
    assert issue.workflow_stage == "contractor_assigned"
    assert issue.status == "in_progress"


def test_second_tender_for_issue_is_conflict(db, engine, seed, assigned_issue):
    engine.create_tender(seed.dept_admin, assigned_issue.id, tender_payload())

    with pytest.raises(ConflictError) as exc:
        engine.create_tender(seed.dept_admin, assigned_issue.id, tender_payload(title="Again"))
    assert exc.value.code == "duplicate_tender"
    assert db.query(Tender).count() == 1


def test_create_tender_other_department_is_unauthorized(engine, seed, assigned_issue):
    with pytest.raises(Unauthorized):
        engine.create_tender(seed.other_dept_admin, assigned_issue.id, tender_payload())


@pytest.mark.parametrize("overrides,code", [
    ({"deadline_date": None}, "create_tender.deadline_required"),
    ({"title": ""}, "create_tender.title_required"),
    ({"description": None}, "create_tender.description_required"),
    ({"estimated_budget_min": 9000, "estimated_budget_max": 1000}, "create_tender.budget_range"),
])
def test_create_tender_validates_input(db, engine, seed, assigned_issue, overrides, code):
    with pytest.raises(WorkflowValidationError) as exc:
        engine.create_tender(seed.dept_admin, assigned_issue.id, tender_payload(**overrides))
    assert exc.value.code == code

    db.expire_all()
    assert db.query(Issue).filter(Issue.id == assigned_issue.id).one().workflow_stage == "department_assigned"


def test_mark_complete_directly(db, engine, seed, assigned_issue):
    with pytest.raises(WorkflowValidationError) as exc:
        engine.mark_complete_directly(seed.dept_admin, assigned_issue.id, "  ")
    assert exc.value.code == "mark_complete_directly.notes_required"

    issue = engine.mark_complete_directly(seed.dept_admin, assigned_issue.id, "Patched by in-house crew")

    assert issue.status == "resolved"
    assert issue.workflow_stage == "resolved"
    assert issue.resolved_at is not None
    assert issue.final_resolution_notes == "Patched by in-house crew"


def test_mark_complete_not_allowed_after_tender(engine, seed, open_tender):
    with pytest.raises(InvalidStateTransition):
        engine.mark_complete_directly(seed.dept_admin, open_tender.issue.id, "Done")


def test_status_only_moves_forward(engine, seed):
    issue, _ = engine.report_issue(seed.citizen, issue_payload())

    issue = engine.update_issue_status(seed.area_admin, issue.id, "in_progress")
    assert issue.status == "in_progress"
    assert issue.workflow_stage == "reported"

    with pytest.raises(InvalidStateTransition) as exc:
        engine.update_issue_status(seed.area_admin, issue.id, "acknowledged")
    assert exc.value.code == "update_status.not_forward"


def test_status_resolve_only_from_department_assigned(engine, seed, assigned_issue):
    other, _ = engine.report_issue(seed.citizen, issue_payload(title="Broken streetlight"))
    with pytest.raises(InvalidStateTransition) as exc:
        engine.update_issue_status(seed.admin, other.id, "resolved", "Fixed")
    assert exc.value.code == "update_status.invalid_stage"

    issue = engine.update_issue_status(seed.dept_admin, assigned_issue.id, "resolved", "Fixed on site")
    assert issue.workflow_stage == "resolved"
    assert issue.resolved_at is not None

    with pytest.raises(InvalidStateTransition) as exc:
        engine.update_issue_status(seed.dept_admin, assigned_issue.id, "in_progress")
    assert exc.value.code == "update_status.already_resolved"


def test_status_update_requires_staff(engine, seed):
    issue, _ = engine.report_issue(seed.citizen, issue_payload())
    with pytest.raises(Unauthorized):
        engine.update_issue_status(seed.citizen, issue.id, "acknowledged")
    with pytest.raises(Unauthorized):
        engine.update_issue_status(seed.dept_admin, issue.id, "acknowledged")


# =============================================================================
# Bidding and award
# =============================================================================

def test_accept_bid_awards_tender_and_rejects_siblings(db, engine, seed, open_tender):
    tender = engine.accept_bid(seed.dept_admin, open_tender.tender.id, open_tender.bid.id)

    assert tender.status == "awarded"
    assert tender.workflow_stage == "awarded"
    assert tender.awarded_contractor_id == seed.contractor.id
    assert float(tender.awarded_amount) == 5000
    assert tender.awarded_at is not None

    db.expire_all()
    statuses = {b.user_id: b.status for b in db.query(Bid).filter(Bid.tender_id == tender.id)}
    assert statuses == {seed.contractor.id: "accepted", seed.other_contractor.id: "rejected"}

    issue = db.query(Issue).filter(Issue.id == open_tender.issue.id).one()
    assert issue.current_assignee_id == seed.contractor.id
    hand_offs = [a.assignment_type for a in issue.assignments]
    assert hand_offs == ["area_to_department", "department_to_contractor"]


def test_accept_twice_is_invalid_transition(engine, seed, open_tender):
    engine.accept_bid(seed.dept_admin, open_tender.tender.id, open_tender.bid.id)

    with pytest.raises(InvalidStateTransition):
        engine.accept_bid(seed.dept_admin, open_tender.tender.id, open_tender.bid.id)
    with pytest.raises(InvalidStateTransition):
        engine.accept_bid(seed.dept_admin, open_tender.tender.id, open_tender.other_bid.id)


def test_accept_bid_other_department_is_unauthorized(engine, seed, open_tender):
    with pytest.raises(Unauthorized):
        engine.accept_bid(seed.other_dept_admin, open_tender.tender.id, open_tender.bid.id)


def test_reject_single_bid(engine, seed, open_tender):
    bid = engine.reject_bid(seed.dept_admin, open_tender.tender.id, open_tender.other_bid.id, "Timeline too long")
    assert bid.status == "rejected"

    with pytest.raises(InvalidStateTransition):
        engine.accept_bid(seed.dept_admin, open_tender.tender.id, open_tender.other_bid.id)


def test_one_bid_per_contractor(engine, seed, open_tender):
    with pytest.raises(ConflictError) as exc:
        engine.submit_bid(seed.contractor, open_tender.tender.id, BidCreate(amount=4000))
    assert exc.value.code == "duplicate_bid"


def test_bid_amount_must_be_positive(engine, seed, assigned_issue):
    tender = engine.create_tender(seed.dept_admin, assigned_issue.id, tender_payload())
    with pytest.raises(WorkflowValidationError) as exc:
        engine.submit_bid(seed.contractor, tender.id, BidCreate(amount=0))
    assert exc.value.code == "submit_bid.invalid_amount"


def test_bid_after_submission_deadline_is_rejected(db, engine, seed, assigned_issue):
    tender = engine.create_tender(seed.dept_admin, assigned_issue.id, tender_payload())
    tender.submission_deadline = datetime.utcnow() - timedelta(hours=1)
    db.commit()

    with pytest.raises(InvalidStateTransition) as exc:
        engine.submit_bid(seed.contractor, tender.id, BidCreate(amount=4000))
    assert exc.value.code == "submit_bid.submission_closed"


def test_only_contractors_bid(engine, seed, assigned_issue):
    tender = engine.create_tender(seed.dept_admin, assigned_issue.id, tender_payload())
    with pytest.raises(Unauthorized):
        engine.submit_bid(seed.citizen, tender.id, BidCreate(amount=100))


def test_standalone_tender(engine, seed):
    tender = engine.post_tender(seed.dept_admin, StandaloneTenderCreate(
        title="Annual drain cleaning",
        description="Desilt storm drains before monsoon",
        deadline_date=future(60),
        category="environment",
    ))
    assert tender.source_issue_id is None
    assert tender.department_id == seed.roads.id

    with pytest.raises(Unauthorized):
        engine.post_tender(seed.contractor, StandaloneTenderCreate(title="x", description="y", deadline_date=future()))


# =============================================================================
# Work and verification
# =============================================================================

def test_only_awarded_contractor_starts_work(engine, seed, open_tender):
    engine.accept_bid(seed.dept_admin, open_tender.tender.id, open_tender.bid.id)

    with pytest.raises(Unauthorized) as exc:
        engine.start_work(seed.other_contractor, open_tender.tender.id)
    assert exc.value.code == "start_work.not_awarded_contractor"

    tender = engine.start_work(seed.contractor, open_tender.tender.id)
    assert tender.workflow_stage == "work_in_progress"
    assert tender.work_started_at is not None


def test_progress_update_keeps_stage(engine, seed, tender_in_progress):
    tender_id = tender_in_progress.tender.id

    progress = engine.submit_progress_update(seed.contractor, tender_id, WorkProgressCreate(
        title="Base layer", description="Old asphalt removed", progress_percentage=40
    ))
    assert progress.progress_type == "update"
    assert progress.status == "submitted"

    with pytest.raises(WorkflowValidationError):
        engine.submit_progress_update(seed.contractor, tender_id, WorkProgressCreate(
            description="Too much", progress_percentage=140
        ))

    verified, tender, issue = engine.verify_work(seed.dept_admin, tender_id, progress.id, True)
    assert verified.status == "approved"
    assert tender.workflow_stage == "work_in_progress"
    assert issue is None


def test_completion_moves_issue_to_department_review(db, engine, seed, tender_in_progress):
    progress = engine.submit_completion(seed.contractor, tender_in_progress.tender.id, CompletionCreate(
        description="Resurfaced and compacted", images=["/uploads/after.jpg"]
    ))

    assert progress.progress_type == "completion"
    assert progress.progress_percentage == 100

    db.expire_all()
    assert db.query(Tender).filter(Tender.id == tender_in_progress.tender.id).one().workflow_stage == "work_completed"
    assert db.query(Issue).filter(Issue.id == tender_in_progress.issue.id).one().workflow_stage == "department_review"


def test_approve_completion_resolves_issue(db, engine, seed, tender_in_progress):
    completion = engine.submit_completion(seed.contractor, tender_in_progress.tender.id,
                                          CompletionCreate(description="Done"))

    progress, tender, issue = engine.verify_work(seed.dept_admin, tender_in_progress.tender.id, completion.id,
                                                 True, "Inspected, good finish")

    assert progress.status == "approved"
    assert progress.verified_by == seed.dept_admin.id
    assert tender.status == "completed"
    assert tender.workflow_stage == "verified"
    assert tender.completed_at is not None
    assert issue.status == "resolved"
    assert issue.workflow_stage == "resolved"
    assert issue.resolved_at is not None


def test_reject_completion_sends_work_back(db, engine, seed, tender_in_progress):
    completion = engine.submit_completion(seed.contractor, tender_in_progress.tender.id,
                                          CompletionCreate(description="Done"))

    with pytest.raises(WorkflowValidationError):
        engine.verify_work(seed.dept_admin, tender_in_progress.tender.id, completion.id, False)

    progress, tender, issue = engine.verify_work(seed.dept_admin, tender_in_progress.tender.id, completion.id,
                                                 False, "Edges not sealed")

    assert progress.status == "rejected"
    assert progress.verification_notes == "Edges not sealed"
    assert tender.workflow_stage == "work_in_progress"
    assert tender.status == "awarded"

    db.expire_all()
    issue = db.query(Issue).filter(Issue.id == tender_in_progress.issue.id).one()
    assert issue.status == "in_progress"
    assert issue.workflow_stage == "department_review"

    # contractor fixes and resubmits
    second = engine.submit_completion(seed.contractor, tender_in_progress.tender.id,
                                      CompletionCreate(description="Edges sealed"))
    _, tender, issue = engine.verify_work(seed.dept_admin, tender_in_progress.tender.id, second.id, True)
    assert issue.workflow_stage == "resolved"


def test_approval_cascade_is_all_or_nothing(db, engine, seed, tender_in_progress, monkeypatch):
    completion = engine.submit_completion(seed.contractor, tender_in_progress.tender.id,
                                          CompletionCreate(description="Done"))
    real_log = workflow_module.log_workflow_action

    def failing_log(session, entity_type, entity_id, action, *args, **kwargs):
        if action == "resolve_from_tender":
            raise RuntimeError("audit store unavailable")
        return real_log(session, entity_type, entity_id, action, *args, **kwargs)

    monkeypatch.setattr(workflow_module, "log_workflow_action", failing_log)
    audit_rows = db.query(WorkflowAuditTrail).count()

    with pytest.raises(RuntimeError):
        engine.verify_work(seed.dept_admin, tender_in_progress.tender.id, completion.id, True)

    db.expire_all()
    progress = db.query(WorkProgress).filter(WorkProgress.id == completion.id).one()
    tender = db.query(Tender).filter(Tender.id == tender_in_progress.tender.id).one()
    issue = db.query(Issue).filter(Issue.id == tender_in_progress.issue.id).one()
    assert progress.status == "submitted"
    assert progress.verified_by is None
    assert tender.status == "awarded"
    assert tender.workflow_stage == "work_completed"
    assert issue.status == "in_progress"
    assert issue.workflow_stage == "department_review"
    assert issue.resolved_at is None
    assert db.query(WorkflowAuditTrail).count() == audit_rows


def test_completion_cannot_be_verified_twice(engine, seed, tender_in_progress):
    completion = engine.submit_completion(seed.contractor, tender_in_progress.tender.id,
                                          CompletionCreate(description="Done"))
    engine.verify_work(seed.dept_admin, tender_in_progress.tender.id, completion.id, True)

    with pytest.raises(InvalidStateTransition):
        engine.verify_work(seed.dept_admin, tender_in_progress.tender.id, completion.id, True)


def test_attach_document_permissions(engine, seed, tender_in_progress):
    tender_id = tender_in_progress.tender.id

    document = engine.attach_tender_document(seed.dept_admin, tender_id, TenderDocumentCreate(
        url="https://files.example.com/boq/mg-road.pdf", document_type="specification"
    ))
    assert document.name == "mg-road.pdf"

    engine.attach_tender_document(seed.contractor, tender_id, TenderDocumentCreate(
        name="Permit", url="/uploads/permit.pdf", document_type="permit"
    ))

    with pytest.raises(Unauthorized):
        engine.attach_tender_document(seed.other_contractor, tender_id, TenderDocumentCreate(url="/uploads/x.pdf"))


def test_transitions_publish_after_commit(db, seed):
    notifier = RecordingNotifier()
    engine = WorkflowEngine(db, notifier=notifier)

    issue, _ = engine.report_issue(seed.citizen, issue_payload())
    engine.assign_to_department(seed.area_admin, issue.id, seed.roads.id)

    kinds = [event[2] for event in notifier.events]
    assert kinds == ["reported", "department_assigned"]
    assert notifier.events[0][3] == [seed.area_admin.id]
    assert sorted(notifier.events[1][3]) == sorted([seed.dept_admin.id, seed.citizen.id])


def test_failed_transition_publishes_nothing(db, seed):
    notifier = RecordingNotifier()
    engine = WorkflowEngine(db, notifier=notifier)
    issue, _ = engine.report_issue(seed.citizen, issue_payload())
    notifier.events.clear()

    with pytest.raises(Unauthorized):
        engine.assign_to_department(seed.other_area_admin, issue.id, seed.roads.id)
    assert notifier.events == []
