"""
Role-scoped listing and lookup.
"""
import pytest

from app.errors import NotFound, Unauthorized
from app.schemas import BidCreate, StandaloneTenderCreate
from app.services import workflow_queries

from conftest import future, issue_payload, tender_payload


@pytest.fixture
def spread(engine, seed):
    """Issues in two areas, one handed to roads, plus a standalone water tender"""
    central_issue, _ = engine.report_issue(seed.citizen, issue_payload())
    north_issue, _ = engine.report_issue(seed.neighbour, issue_payload(title="Leaking main", category="utilities",
                                                                        area="North Ward", priority="high"))
    engine.assign_to_department(seed.area_admin, central_issue.id, seed.roads.id)
    roads_tender = engine.create_tender(seed.dept_admin, central_issue.id, tender_payload())

    water_admin_tender = engine.post_tender(seed.other_dept_admin, StandaloneTenderCreate(
        title="Valve replacement", description="Replace 3 sluice valves", deadline_date=future(45)
    ))
    return central_issue, north_issue, roads_tender, water_admin_tender


def ids(rows):
    return sorted(r.id for r in rows)


def test_issue_scope_per_role(db, seed, spread):
    central_issue, north_issue, _, _ = spread

    issues, total = workflow_queries.list_issues(db, seed.admin)
    assert total == 2

    issues, _ = workflow_queries.list_issues(db, seed.area_admin)
    assert ids(issues) == [central_issue.id]

    issues, _ = workflow_queries.list_issues(db, seed.other_area_admin)
    assert ids(issues) == [north_issue.id]

    issues, _ = workflow_queries.list_issues(db, seed.dept_admin)
    assert ids(issues) == [central_issue.id]

    issues, _ = workflow_queries.list_issues(db, seed.other_dept_admin)
    assert issues == []

    issues, _ = workflow_queries.list_issues(db, seed.neighbour)
    assert ids(issues) == [north_issue.id]

    with pytest.raises(Unauthorized):
        workflow_queries.list_issues(db, seed.contractor)


def test_issue_filters(db, seed, spread):
    central_issue, north_issue, _, _ = spread

    issues, total = workflow_queries.list_issues(db, seed.admin, category="utilities")
    assert ids(issues) == [north_issue.id]

    issues, _ = workflow_queries.list_issues(db, seed.admin, stage="contractor_assigned")
    assert ids(issues) == [central_issue.id]

    issues, _ = workflow_queries.list_issues(db, seed.admin, search="leaking")
    assert ids(issues) == [north_issue.id]

    issues, total = workflow_queries.list_issues(db, seed.admin, limit=1)
    assert len(issues) == 1
    assert total == 2


def test_get_issue_out_of_scope_vs_missing(db, seed, spread):
    central_issue, north_issue, _, _ = spread

    assert workflow_queries.get_issue(db, seed.citizen, central_issue.id).id == central_issue.id

    with pytest.raises(Unauthorized):
        workflow_queries.get_issue(db, seed.citizen, north_issue.id)
    with pytest.raises(Unauthorized):
        workflow_queries.get_issue(db, seed.other_area_admin, central_issue.id)
    with pytest.raises(NotFound):
        workflow_queries.get_issue(db, seed.admin, 999)


def test_tender_scope_per_role(db, engine, seed, spread):
    _, _, roads_tender, water_tender = spread

    assert ids(workflow_queries.list_tenders(db, seed.admin)) == sorted([roads_tender.id, water_tender.id])
    assert ids(workflow_queries.list_tenders(db, seed.dept_admin)) == [roads_tender.id]
    assert ids(workflow_queries.list_tenders(db, seed.other_dept_admin)) == [water_tender.id]

    with pytest.raises(Unauthorized):
        workflow_queries.list_tenders(db, seed.citizen)

    # contractors see open tenders, then keep seeing the ones they bid on once awarded
    assert ids(workflow_queries.list_tenders(db, seed.contractor)) == sorted([roads_tender.id, water_tender.id])

    bid = engine.submit_bid(seed.contractor, roads_tender.id, BidCreate(amount=5000))
    engine.submit_bid(seed.other_contractor, roads_tender.id, BidCreate(amount=6000))
    engine.accept_bid(seed.dept_admin, roads_tender.id, bid.id)

    assert ids(workflow_queries.list_tenders(db, seed.contractor)) == sorted([roads_tender.id, water_tender.id])
    assert ids(workflow_queries.list_tenders(db, seed.other_contractor)) == sorted([roads_tender.id, water_tender.id])
    assert ids(workflow_queries.list_tenders(db, seed.contractor, status="awarded")) == [roads_tender.id]


def test_awarded_tender_hidden_from_non_bidders(db, engine, seed, spread):
    _, _, roads_tender, water_tender = spread
    bid = engine.submit_bid(seed.contractor, roads_tender.id, BidCreate(amount=5000))
    engine.accept_bid(seed.dept_admin, roads_tender.id, bid.id)

    assert ids(workflow_queries.list_tenders(db, seed.other_contractor)) == [water_tender.id]
    with pytest.raises(Unauthorized):
        workflow_queries.get_tender(db, seed.other_contractor, roads_tender.id)


def test_contractor_tenders_are_those_with_a_bid(db, engine, seed, spread):
    _, _, roads_tender, water_tender = spread
    engine.submit_bid(seed.contractor, roads_tender.id, BidCreate(amount=5000))

    rows = workflow_queries.list_contractor_tenders(db, seed.contractor)
    assert [(t.id, float(b.amount)) for t, b in rows] == [(roads_tender.id, 5000.0)]
    assert workflow_queries.list_contractor_tenders(db, seed.other_contractor) == []

    with pytest.raises(Unauthorized):
        workflow_queries.list_contractor_tenders(db, seed.dept_admin)


def test_bids_visibility(db, engine, seed, spread):
    _, _, roads_tender, _ = spread
    engine.submit_bid(seed.contractor, roads_tender.id, BidCreate(amount=5000))
    engine.submit_bid(seed.other_contractor, roads_tender.id, BidCreate(amount=4200))

    amounts = [float(b.amount) for b in workflow_queries.list_bids(db, seed.dept_admin, roads_tender)]
    assert amounts == [4200.0, 5000.0]

    own = workflow_queries.list_bids(db, seed.contractor, roads_tender)
    assert [b.user_id for b in own] == [seed.contractor.id]

    with pytest.raises(Unauthorized):
        workflow_queries.list_bids(db, seed.other_dept_admin, roads_tender)


def test_public_feed_and_stats(db, seed, spread):
    feed = workflow_queries.list_public_issues(db, area="North Ward")
    assert [i.title for i in feed] == ["Leaking main"]
    assert len(workflow_queries.list_public_issues(db, with_location=True)) == 2

    stats = workflow_queries.dashboard_stats(db, seed.admin)
    assert stats["total_issues"] == 2
    assert stats["issues_by_stage"] == {"contractor_assigned": 1, "reported": 1}
    assert stats["active_tenders"] == 2
    assert stats["resolution_rate"] == 0

    citizen_stats = workflow_queries.dashboard_stats(db, seed.citizen)
    assert citizen_stats["total_issues"] == 1
    assert citizen_stats["active_tenders"] == 0
