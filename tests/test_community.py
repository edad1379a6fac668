"""
Issue votes and citizen feedback.
"""
import pytest

from app.errors import NotFound, Unauthorized, WorkflowValidationError
from app.models import IssueVote, Notification
from app.schemas import FeedbackCreate
from app.services import community

from conftest import issue_payload


@pytest.fixture
def issue(engine, seed):
    issue, _ = engine.report_issue(seed.citizen, issue_payload())
    return issue


def test_vote_toggles_and_switches(db, seed, issue):
    tally = community.vote_on_issue(db, seed.neighbour, issue.id, "upvote")
    assert (tally["upvotes"], tally["downvotes"], tally["my_vote"]) == (1, 0, "upvote")

    tally = community.vote_on_issue(db, seed.neighbour, issue.id, "downvote")
    assert (tally["upvotes"], tally["downvotes"], tally["my_vote"]) == (0, 1, "downvote")

    tally = community.vote_on_issue(db, seed.neighbour, issue.id, "downvote")
    assert (tally["upvotes"], tally["downvotes"], tally["my_vote"]) == (0, 0, None)

    assert db.query(IssueVote).filter(IssueVote.issue_id == issue.id).count() == 0


def test_one_vote_per_user(db, seed, issue):
    community.vote_on_issue(db, seed.neighbour, issue.id, "upvote")
    community.vote_on_issue(db, seed.citizen, issue.id, "upvote")
    community.vote_on_issue(db, seed.contractor, issue.id, "downvote")

    tally = community.get_issue_votes(db, seed.citizen, issue.id)
    assert (tally["upvotes"], tally["downvotes"], tally["my_vote"]) == (2, 1, "upvote")
    assert db.query(IssueVote).filter(IssueVote.user_id == seed.neighbour.id).count() == 1


def test_vote_does_not_touch_workflow(db, seed, issue):
    version = issue.version_id
    community.vote_on_issue(db, seed.neighbour, issue.id, "upvote")

    db.refresh(issue)
    assert issue.version_id == version
    assert (issue.status, issue.workflow_stage) == ("pending", "reported")


def test_vote_rejects_unknown_type_and_issue(db, seed, issue):
    with pytest.raises(WorkflowValidationError) as exc:
        community.vote_on_issue(db, seed.neighbour, issue.id, "sideways")
    assert exc.value.code == "vote.invalid_type"

    with pytest.raises(NotFound):
        community.vote_on_issue(db, seed.neighbour, 999, "upvote")


def test_feed_entries_carry_counts(engine, db, seed, issue):
    other, _ = engine.report_issue(seed.neighbour, issue_payload(title="Broken streetlight", category="safety"))
    community.vote_on_issue(db, seed.neighbour, issue.id, "upvote")
    community.vote_on_issue(db, seed.admin, issue.id, "upvote")

    entries = {e["id"]: e for e in community.feed_entries(db, [issue, other], seed.neighbour)}
    assert (entries[issue.id]["upvotes"], entries[issue.id]["my_vote"]) == (2, "upvote")
    assert (entries[other.id]["upvotes"], entries[other.id]["my_vote"]) == (0, None)
    assert entries[issue.id]["title"] == "Pothole on MG Road"


def test_feedback_signed_in_and_anonymous(db, seed, issue):
    mine = community.create_feedback(db, seed.citizen, FeedbackCreate(
        type="suggestion", subject="More bins", message="Please add bins near the market", issue_id=issue.id
    ))
    anonymous = community.create_feedback(db, None, FeedbackCreate(
        subject="Noise", message="Construction at night", contact_email="anon@example.com"
    ))

    assert (mine.user_id, mine.status, mine.priority) == (seed.citizen.id, "pending", "medium")
    assert anonymous.user_id is None
    assert anonymous.type == "complaint"

    assert [f.id for f in community.list_feedback(db, seed.citizen)] == [mine.id]
    assert sorted(f.id for f in community.list_feedback(db, seed.admin)) == sorted([mine.id, anonymous.id])
    assert [f.id for f in community.list_feedback(db, seed.admin, type="suggestion")] == [mine.id]


def test_feedback_requires_subject_and_message(db, seed):
    with pytest.raises(WorkflowValidationError) as exc:
        community.create_feedback(db, seed.citizen, FeedbackCreate(subject="  ", message="text"))
    assert exc.value.code == "feedback.subject_required"

    with pytest.raises(WorkflowValidationError) as exc:
        community.create_feedback(db, seed.citizen, FeedbackCreate(subject="Hello", message=""))
    assert exc.value.code == "feedback.message_required"

    with pytest.raises(NotFound):
        community.create_feedback(db, seed.citizen, FeedbackCreate(subject="Hi", message="x", issue_id=999))


def test_admin_responds_to_feedback(db, seed):
    feedback = community.create_feedback(db, seed.citizen, FeedbackCreate(subject="Park lights", message="Out again"))

    reviewed = community.update_feedback_status(db, seed.admin, feedback.id, "reviewed")
    assert reviewed.status == "reviewed"
    assert reviewed.admin_response is None

    resolved = community.update_feedback_status(db, seed.admin, feedback.id, "resolved", "Lights replaced")
    assert resolved.admin_response == "Lights replaced"
    assert resolved.responded_by == seed.admin.id
    assert resolved.responded_at is not None

    kinds = [n.change_kind for n in db.query(Notification).filter(Notification.user_id == seed.citizen.id)]
    assert "feedback_resolved" in kinds


def test_only_admin_updates_feedback(db, seed):
    feedback = community.create_feedback(db, seed.citizen, FeedbackCreate(subject="Bus stop", message="No shelter"))

    with pytest.raises(Unauthorized):
        community.update_feedback_status(db, seed.dept_admin, feedback.id, "reviewed")
    with pytest.raises(WorkflowValidationError):
        community.update_feedback_status(db, seed.admin, feedback.id, "archived")
    with pytest.raises(NotFound):
        community.update_feedback_status(db, seed.admin, 999, "reviewed")
