"""
WALI-OS Database Models
SQLAlchemy ORM models for organizations, their projects and funding pipeline,
the assistant chat log, and the AI analysis caches.

Every user-owned table carries ``user_id`` and every query filters on it.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp used for every stored datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class UserProfile(Base):
    """
    Organization identity and registration data for a user.

    Holds the identifiers federal and foundation forms ask for (EIN, DUNS/UEI,
    CAGE, SAM.gov status), address and contact details, certifications and
    headline financials.
    """

    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    organization_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    organization_type: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="nonprofit, for_profit, government, educational, tribal, individual",
    )
    ein: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    tax_id: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    duns_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    uei: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    cage_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    sam_registration: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        doc="SAM.gov status: active, pending, expired",
    )
    audit_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    address_line1: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contact_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contact_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    mission_statement: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    organization_history: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    focus_areas: Mapped[Optional[list[str]]] = mapped_column(JSONType, nullable=True)
    populations_served: Mapped[Optional[list[str]]] = mapped_column(JSONType, nullable=True)
    service_areas: Mapped[Optional[list[str]]] = mapped_column(JSONType, nullable=True)
    certifications: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        doc="Flags such as minority_owned, woman_owned, veteran_owned, sba_8a, hubzone",
    )

    annual_budget: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    annual_revenue: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    employee_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    years_in_operation: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Project(Base):
    """A funding-seeking initiative owned by an organization."""

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    project_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="planning")
    total_budget: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    funding_needed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    timeline: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    target_population: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    goals: Mapped[Optional[list[str]]] = mapped_column(JSONType, nullable=True)
    expected_outcomes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    evaluation_plan: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    statement_of_need: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    geographic_scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    keywords: Mapped[Optional[list[str]]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Opportunity(Base):
    """A funding opportunity tracked for a user."""

    __tablename__ = "opportunities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    sponsor: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    amount_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    deadline_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    eligibility: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    organization_types: Mapped[Optional[list[str]]] = mapped_column(JSONType, nullable=True)
    focus_areas: Mapped[Optional[list[str]]] = mapped_column(JSONType, nullable=True)
    fit_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class Application(Base):
    """A drafted or submitted grant application tying a project to an opportunity."""

    __tablename__ = "applications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    opportunity_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("opportunities.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="draft",
        doc="draft, submitted, pending, awarded, rejected",
    )
    amount_requested: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    amount_awarded: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class Campaign(Base):
    """A crowdfunding campaign linked to a project."""

    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    platform: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    goal_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    raised_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# =============================================================================
# Assistant chat log
# =============================================================================


class AssistantSession(Base):
    """Chat session metadata for the assistant widget."""

    __tablename__ = "assistant_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    turns: Mapped[list["AssistantConversation"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="AssistantConversation.created_at",
    )


class AssistantConversation(Base):
    """
    One chat turn.

    Turns move one way from unsummarized to summarized once they are rolled
    into an AssistantSessionSummary.
    """

    __tablename__ = "assistant_conversations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assistant_sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    intent: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    summarized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    metadata_: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    session: Mapped["AssistantSession"] = relationship(back_populates="turns")

    __table_args__ = (
        Index("ix_assistant_conversations_session_summarized", "session_id", "summarized"),
    )


class AssistantSessionSummary(Base):
    """Condensed record covering a block of older turns in a session."""

    __tablename__ = "assistant_session_summaries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("assistant_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    summary_text: Mapped[str] = mapped_column(Text, nullable=False)
    covered_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    turns_covered: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str] = mapped_column(String(16), nullable=False, default="llm")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# =============================================================================
# AI caches
# =============================================================================


class OrgContextCache(Base):
    """Snapshot of build_org_context output, reused for a short TTL."""

    __tablename__ = "ai_org_context_cache"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    context: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    context_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class ProjectAIAnalysis(Base):
    """Cached AI analysis of a project."""

    __tablename__ = "project_ai_analysis"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    analysis: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    model: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class OpportunityAIAnalysis(Base):
    """Cached AI analysis of an opportunity for a user."""

    __tablename__ = "opportunity_ai_analysis"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    opportunity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("opportunities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    analysis: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    is_heuristic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class FieldDefinitionCache(Base):
    """
    Shared definition of a form field, keyed by its normalized name.

    Field definitions are generic (not user data), so rows are global.
    """

    __tablename__ = "field_definitions_cache"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    field_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    field_name: Mapped[str] = mapped_column(Text, nullable=False)
    definition: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    is_fallback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# =============================================================================
# Form assistant and form analysis cache
# =============================================================================


class FormAISession(Base):
    """An assistant conversation attached to one application form."""

    __tablename__ = "form_ai_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    form_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    form_context: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class FormAIMessage(Base):
    """A message inside a form assistant session."""

    __tablename__ = "form_ai_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("form_ai_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(32), nullable=False, default="chat")
    metadata_: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class FormAnalysisCache(Base):
    """Stored form analysis keyed by the uploaded file's hash."""

    __tablename__ = "form_analysis_cache"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    file_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    analysis_result: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_used_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_form_analysis_cache_user_hash", "user_id", "file_hash", unique=True),
    )
