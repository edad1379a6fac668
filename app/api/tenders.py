"""
Tender API Endpoints

Provides endpoints for:
- Posting and listing tenders (role scoped)
- Contractor bid dashboard
- Bidding, award and bid rejection
- Work start, progress updates, completion and verification
- Tender documents
"""
from datetime import datetime
from typing import Optional, List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.api.auth import get_current_actor
from app.schemas import (
    Actor, StandaloneTenderCreate, Tender as TenderSchema, TenderDetail, ContractorTender,
    BidCreate, Bid as BidSchema, BidDecision,
    WorkProgressCreate, CompletionCreate, WorkVerification, WorkProgress as WorkProgressSchema,
    WorkVerificationResult, TenderDocumentCreate, TenderDocument as TenderDocumentSchema
)
from app.services import workflow_queries
from app.services.workflow import WorkflowEngine
from app.workflow_rules import Role

router = APIRouter()


# =============================================================================
# Reads
# =============================================================================

@router.get("", response_model=List[TenderSchema])
async def list_tenders(
    stage: Optional[str] = None,
    status: Optional[str] = None,
    category: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return workflow_queries.list_tenders(
        db, actor, stage=stage, status=status, category=category, date_from=date_from, date_to=date_to
    )


@router.get("/mine", response_model=List[ContractorTender])
async def my_tenders(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Tenders the contractor has bid on, with their own bid"""
    rows = workflow_queries.list_contractor_tenders(db, actor)
    result = []
    for tender, bid in rows:
        data = TenderSchema.model_validate(tender).model_dump()
        data["my_bid"] = BidSchema.model_validate(bid).model_dump()
        result.append(data)
    return result


@router.get("/{tender_id}", response_model=TenderDetail)
async def get_tender(tender_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    """Tender with the bids and progress the caller is allowed to see"""
    tender = workflow_queries.get_tender(db, actor, tender_id)
    data = TenderSchema.model_validate(tender).model_dump()
    data["bids"] = [BidSchema.model_validate(b).model_dump() for b in workflow_queries.list_bids(db, actor, tender)]

    can_see_progress = (
        actor.role == Role.ADMIN.value
        or (actor.role == Role.DEPARTMENT_ADMIN.value and actor.assigned_department_id == tender.department_id)
        or tender.awarded_contractor_id == actor.id
    )
    data["work_progress"] = [
        WorkProgressSchema.model_validate(p).model_dump()
        for p in workflow_queries.list_work_progress(db, actor, tender)
    ] if can_see_progress else []
    data["documents"] = [TenderDocumentSchema.model_validate(d).model_dump() for d in tender.documents]
    return data


@router.get("/{tender_id}/bids", response_model=List[BidSchema])
async def list_bids(tender_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    tender = workflow_queries.get_tender(db, actor, tender_id)
    return workflow_queries.list_bids(db, actor, tender)


@router.get("/{tender_id}/progress", response_model=List[WorkProgressSchema])
async def list_progress(tender_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    tender = workflow_queries.get_tender(db, actor, tender_id)
    return workflow_queries.list_work_progress(db, actor, tender)


@router.get("/{tender_id}/documents", response_model=List[TenderDocumentSchema])
async def list_documents(tender_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    tender = workflow_queries.get_tender(db, actor, tender_id)
    return tender.documents


# =============================================================================
# Commands
# =============================================================================

@router.post("", response_model=TenderSchema, status_code=201)
async def post_tender(
    data: StandaloneTenderCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Open a tender that is not linked to a reported issue"""
    return WorkflowEngine(db).post_tender(actor, data)


@router.post("/{tender_id}/bids", response_model=BidSchema, status_code=201)
async def submit_bid(
    tender_id: int,
    data: BidCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return WorkflowEngine(db).submit_bid(actor, tender_id, data)


@router.post("/{tender_id}/bids/{bid_id}/accept", response_model=BidDecision)
async def accept_bid(
    tender_id: int,
    bid_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    tender = WorkflowEngine(db).accept_bid(actor, tender_id, bid_id)
    return {"tender": tender, "bids": tender.bids}


@router.post("/{tender_id}/bids/{bid_id}/reject", response_model=BidSchema)
async def reject_bid(
    tender_id: int,
    bid_id: int,
    reason: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return WorkflowEngine(db).reject_bid(actor, tender_id, bid_id, reason)


@router.post("/{tender_id}/start", response_model=TenderSchema)
async def start_work(tender_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return WorkflowEngine(db).start_work(actor, tender_id)


@router.post("/{tender_id}/progress", response_model=WorkProgressSchema, status_code=201)
async def submit_progress(
    tender_id: int,
    data: WorkProgressCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return WorkflowEngine(db).submit_progress_update(actor, tender_id, data)


@router.post("/{tender_id}/completion", response_model=WorkProgressSchema, status_code=201)
async def submit_completion(
    tender_id: int,
    data: CompletionCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return WorkflowEngine(db).submit_completion(actor, tender_id, data)


@router.post("/{tender_id}/progress/{progress_id}/verify", response_model=WorkVerificationResult)
async def verify_work(
    tender_id: int,
    progress_id: int,
    data: WorkVerification,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    progress, tender, issue = WorkflowEngine(db).verify_work(
        actor, tender_id, progress_id, data.approved, data.verification_notes
    )
    return {"progress": progress, "tender": tender, "issue": issue}


@router.post("/{tender_id}/documents", response_model=TenderDocumentSchema, status_code=201)
async def attach_document(
    tender_id: int,
    data: TenderDocumentCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return WorkflowEngine(db).attach_tender_document(actor, tender_id, data)
