from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, ForeignKey, Float, Numeric, JSON, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base


class Area(Base):
    """Geographic area an area super admin is responsible for"""
    __tablename__ = "areas"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, unique=True, index=True)
    district = Column(String(200), nullable=True)
    state = Column(String(200), nullable=True)
    created_at = Column(DateTime, default=func.now())


class Department(Base):
    """Municipal department that issues are handed over to"""
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, unique=True)
    category = Column(String(50), nullable=True)  # roads, utilities, environment, safety, parks, other
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    hashed_password = Column(String)
    is_active = Column(Boolean, default=True)
    is_verified = Column(Boolean, default=False)  # contractor vetting

    role = Column(String, default="citizen")  # citizen, admin, area_super_admin, department_admin, contractor
    assigned_area_id = Column(Integer, ForeignKey("areas.id"), nullable=True)
    assigned_department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)

    points = Column(Integer, default=0, nullable=False)
    fcm_token = Column(String, nullable=True)  # Firebase push token

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    assigned_area = relationship("Area")
    assigned_department = relationship("Department")


class Issue(Base):
    """
    Citizen-reported civic problem tracked through the resolution workflow.
    status / workflow_stage are only ever written by the workflow engine.
    """
    __tablename__ = "issues"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # reporter

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(30), nullable=False, index=True)  # roads, utilities, environment, safety, parks, other
    priority = Column(String(20), default="medium")  # low, medium, high, urgent

    status = Column(String(20), default="pending", index=True)  # pending, acknowledged, in_progress, resolved
    workflow_stage = Column(String(30), default="reported", index=True)
    # reported, area_review, department_assigned, contractor_assigned, department_review, resolved

    # Location
    location_name = Column(String(300), nullable=True)
    address = Column(String(500), nullable=True)
    area = Column(String(200), nullable=True, index=True)
    ward = Column(String(100), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    images = Column(JSON, default=list)  # attachment URLs, uploaded before the issue is filed

    # Routing
    assigned_area_id = Column(Integer, ForeignKey("areas.id"), nullable=True)
    assigned_department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    current_assignee_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    final_resolution_notes = Column(Text, nullable=True)

    version_id = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=func.now(), index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    resolved_at = Column(DateTime, nullable=True)

    # Relationships
    reporter = relationship("User", foreign_keys=[user_id])
    current_assignee = relationship("User", foreign_keys=[current_assignee_id])
    assigned_department = relationship("Department")
    assignments = relationship("IssueAssignment", back_populates="issue", order_by="IssueAssignment.id")
    tender = relationship("Tender", back_populates="source_issue", uselist=False)

    __mapper_args__ = {"version_id_col": version_id}


class IssueAssignment(Base):
    """Append-only hand-off record, one per workflow hand-off"""
    __tablename__ = "issue_assignments"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(Integer, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    assignment_type = Column(String(40), nullable=False)  # area_to_department, department_to_contractor
    assigned_department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True)
    assignment_notes = Column(Text, nullable=True)
    status = Column(String(20), default="active")
    created_at = Column(DateTime, default=func.now())

    # Relationships
    issue = relationship("Issue", back_populates="assignments")
    assigner = relationship("User", foreign_keys=[assigned_by])
    assignee = relationship("User", foreign_keys=[assigned_to])
    department = relationship("Department")


class Tender(Base):
    """Procurement request a department opens for contractors, usually derived from an issue"""
    __tablename__ = "tenders"

    id = Column(Integer, primary_key=True, index=True)
    source_issue_id = Column(Integer, ForeignKey("issues.id"), nullable=True, unique=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False, index=True)
    posted_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(30), nullable=True)
    priority = Column(String(20), nullable=True)
    location = Column(String(500), nullable=True)
    area = Column(String(200), nullable=True)
    ward = Column(String(100), nullable=True)

    estimated_budget_min = Column(Numeric(14, 2), default=0)
    estimated_budget_max = Column(Numeric(14, 2), default=0)
    deadline_date = Column(DateTime, nullable=False)  # work must be done by
    submission_deadline = Column(DateTime, nullable=False)  # bids accepted until
    requirements = Column(JSON, default=list)

    status = Column(String(20), default="available", index=True)  # available, awarded, completed
    workflow_stage = Column(String(30), default="created", index=True)
    # created, awarded, work_in_progress, work_completed, verified

    awarded_contractor_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    awarded_amount = Column(Numeric(14, 2), nullable=True)
    awarded_at = Column(DateTime, nullable=True)
    work_started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    version_id = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=func.now(), index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    source_issue = relationship("Issue", back_populates="tender")
    department = relationship("Department")
    poster = relationship("User", foreign_keys=[posted_by])
    awarded_contractor = relationship("User", foreign_keys=[awarded_contractor_id])
    bids = relationship("Bid", back_populates="tender", order_by="Bid.amount")
    work_progress = relationship("WorkProgress", back_populates="tender", order_by="desc(WorkProgress.id)")
    documents = relationship("TenderDocument", back_populates="tender", order_by="desc(TenderDocument.id)")

    __mapper_args__ = {"version_id_col": version_id}


class Bid(Base):
    """Contractor's priced offer against a tender"""
    __tablename__ = "bids"

    id = Column(Integer, primary_key=True, index=True)
    tender_id = Column(Integer, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # contractor
    amount = Column(Numeric(14, 2), nullable=False)
    details = Column(Text, nullable=True)
    timeline = Column(String(100), nullable=True)
    status = Column(String(20), default="submitted", index=True)  # submitted, accepted, rejected
    submitted_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    tender = relationship("Tender", back_populates="bids")
    contractor = relationship("User")

    __table_args__ = (UniqueConstraint("tender_id", "user_id", name="uq_bid_tender_contractor"),)


class WorkProgress(Base):
    """Progress update or completion report filed by the awarded contractor"""
    __tablename__ = "work_progress"

    id = Column(Integer, primary_key=True, index=True)
    tender_id = Column(Integer, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False, index=True)
    contractor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    progress_type = Column(String(20), nullable=False)  # update, completion
    title = Column(String(200), nullable=True)
    description = Column(Text, nullable=False)
    progress_percentage = Column(Integer, default=0)
    images = Column(JSON, default=list)
    materials_used = Column(JSON, default=list)
    challenges_faced = Column(Text, nullable=True)

    status = Column(String(20), default="submitted", index=True)  # submitted, approved, rejected
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verification_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=func.now())

    # Relationships
    tender = relationship("Tender", back_populates="work_progress")
    contractor = relationship("User", foreign_keys=[contractor_id])
    verifier = relationship("User", foreign_keys=[verified_by])


class TenderDocument(Base):
    """Document (drawings, BoQ, permits) attached to a tender by URL"""
    __tablename__ = "tender_documents"

    id = Column(Integer, primary_key=True, index=True)
    tender_id = Column(Integer, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String(255), nullable=False)
    url = Column(String(1000), nullable=False)
    document_type = Column(String(50), nullable=True)  # specification, drawing, permit, other
    created_at = Column(DateTime, default=func.now())

    # Relationships
    tender = relationship("Tender", back_populates="documents")
    uploader = relationship("User")


class Notification(Base):
    """Per-recipient record of a workflow state change"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    entity_type = Column(String(30), nullable=False)  # issue, tender, bid, work_progress
    entity_id = Column(Integer, nullable=False)
    change_kind = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=True)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=func.now())


class WorkflowAuditTrail(Base):
    """One row per committed workflow transition"""
    __tablename__ = "workflow_audit_trail"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String(30), nullable=False)  # issue, tender, bid, work_progress
    entity_id = Column(Integer, nullable=False)
    action = Column(String(50), nullable=False)
    action_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    old_value = Column(String(100), nullable=True)
    new_value = Column(String(100), nullable=True)
    details = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime, default=func.now())

    actor = relationship("User")

    __table_args__ = (Index("ix_audit_entity", "entity_type", "entity_id"),)


class IssueVote(Base):
    """One community vote per user per issue"""
    __tablename__ = "issue_votes"

    id = Column(Integer, primary_key=True, index=True)
    issue_id = Column(Integer, ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    vote_type = Column(String(10), nullable=False)  # upvote, downvote
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("issue_id", "user_id", name="uq_issue_vote_user"),)


class Feedback(Base):
    """
    Complaint, suggestion, compliment or inquiry sent to the municipality.
    May be anonymous; admins answer with a status and an optional response.
    """
    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    issue_id = Column(Integer, ForeignKey("issues.id"), nullable=True)

    type = Column(String(20), nullable=False, default="complaint")  # complaint, suggestion, compliment, inquiry
    subject = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(20), default="medium")  # low, medium, high
    contact_email = Column(String(255), nullable=True)
    contact_phone = Column(String(50), nullable=True)

    status = Column(String(20), default="pending", index=True)  # pending, reviewed, in_progress, resolved, closed
    admin_response = Column(Text, nullable=True)
    responded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    responded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now(), index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    author = relationship("User", foreign_keys=[user_id])
    responder = relationship("User", foreign_keys=[responded_by])
