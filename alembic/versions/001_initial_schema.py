"""Initial WALI-OS schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates all tables for WALI-OS:
- user_profiles, projects, opportunities, applications, campaigns: user-owned data
- assistant_sessions, assistant_conversations, assistant_session_summaries: chat log
- ai_org_context_cache, project_ai_analysis, opportunity_ai_analysis,
  field_definitions_cache: AI caches
- form_ai_sessions, form_ai_messages, form_analysis_cache: form assistant
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _user_id(unique: bool = False) -> sa.Column:
    return sa.Column("user_id", sa.String(64), nullable=False, unique=unique, index=True)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(), nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    """Create initial database schema."""

    # ==========================================================================
    # User-owned data
    # ==========================================================================
    op.create_table(
        "user_profiles",
        _id(),
        _user_id(unique=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("first_name", sa.Text(), nullable=True),
        sa.Column("last_name", sa.Text(), nullable=True),
        sa.Column("organization_name", sa.Text(), nullable=True),
        sa.Column("organization_type", sa.Text(), nullable=True),
        sa.Column("ein", sa.String(20), nullable=True),
        sa.Column("tax_id", sa.String(20), nullable=True),
        sa.Column("duns_number", sa.String(20), nullable=True),
        sa.Column("uei", sa.String(20), nullable=True),
        sa.Column("cage_code", sa.String(10), nullable=True),
        sa.Column("sam_registration", sa.String(20), nullable=True),
        sa.Column("audit_status", sa.String(20), nullable=True),
        sa.Column("address_line1", sa.Text(), nullable=True),
        sa.Column("city", sa.Text(), nullable=True),
        sa.Column("state", sa.String(32), nullable=True),
        sa.Column("zip_code", sa.String(16), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("website", sa.Text(), nullable=True),
        sa.Column("contact_name", sa.Text(), nullable=True),
        sa.Column("contact_title", sa.Text(), nullable=True),
        sa.Column("mission_statement", sa.Text(), nullable=True),
        sa.Column("organization_history", sa.Text(), nullable=True),
        sa.Column("focus_areas", postgresql.JSONB(), nullable=True),
        sa.Column("populations_served", postgresql.JSONB(), nullable=True),
        sa.Column("service_areas", postgresql.JSONB(), nullable=True),
        sa.Column("certifications", postgresql.JSONB(), nullable=True),
        sa.Column("annual_budget", sa.Float(), nullable=True),
        sa.Column("annual_revenue", sa.Float(), nullable=True),
        sa.Column("employee_count", sa.Integer(), nullable=True),
        sa.Column("years_in_operation", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "projects",
        _id(),
        _user_id(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("project_type", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="planning"),
        sa.Column("total_budget", sa.Float(), nullable=True),
        sa.Column("funding_needed", sa.Float(), nullable=True),
        sa.Column("timeline", sa.Text(), nullable=True),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column("target_population", sa.Text(), nullable=True),
        sa.Column("goals", postgresql.JSONB(), nullable=True),
        sa.Column("expected_outcomes", sa.Text(), nullable=True),
        sa.Column("evaluation_plan", sa.Text(), nullable=True),
        sa.Column("statement_of_need", sa.Text(), nullable=True),
        sa.Column("geographic_scope", sa.Text(), nullable=True),
        sa.Column("keywords", postgresql.JSONB(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "opportunities",
        _id(),
        _user_id(),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("sponsor", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount_min", sa.Float(), nullable=True),
        sa.Column("amount_max", sa.Float(), nullable=True),
        sa.Column("deadline_date", sa.DateTime(), nullable=True),
        sa.Column("eligibility", sa.Text(), nullable=True),
        sa.Column("organization_types", postgresql.JSONB(), nullable=True),
        sa.Column("focus_areas", postgresql.JSONB(), nullable=True),
        sa.Column("fit_score", sa.Float(), nullable=True),
        sa.Column("url", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_opportunities_user_deadline", "opportunities", ["user_id", "deadline_date"])

    op.create_table(
        "applications",
        _id(),
        _user_id(),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("projects.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "opportunity_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("opportunities.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("amount_requested", sa.Float(), nullable=True),
        sa.Column("amount_awarded", sa.Float(), nullable=True),
        sa.Column("deadline", sa.DateTime(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "campaigns",
        _id(),
        _user_id(),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("projects.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("platform", sa.Text(), nullable=True),
        sa.Column("goal_amount", sa.Float(), nullable=True),
        sa.Column("raised_amount", sa.Float(), nullable=True, server_default="0"),
        sa.Column("status", sa.String(32), nullable=False, server_default="active"),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        _timestamp("created_at"),
    )

    # ==========================================================================
    # Assistant chat log
    # ==========================================================================
    op.create_table(
        "assistant_sessions",
        _id(),
        _user_id(),
        sa.Column("title", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "assistant_conversations",
        _id(),
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("assistant_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _user_id(),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("intent", sa.String(64), nullable=True),
        sa.Column("summarized", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_assistant_conversations_session_summarized",
        "assistant_conversations",
        ["session_id", "summarized"],
    )
    op.create_index("ix_assistant_conversations_created_at", "assistant_conversations", ["created_at"])

    op.create_table(
        "assistant_session_summaries",
        _id(),
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("assistant_sessions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        _user_id(),
        sa.Column("summary_text", sa.Text(), nullable=False),
        sa.Column("covered_until", sa.DateTime(), nullable=False),
        sa.Column("turns_covered", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(16), nullable=False, server_default="llm"),
        _timestamp("created_at"),
    )

    # ==========================================================================
    # AI caches
    # ==========================================================================
    op.create_table(
        "ai_org_context_cache",
        _id(),
        _user_id(unique=True),
        sa.Column("context", postgresql.JSONB(), nullable=False),
        sa.Column("context_hash", sa.String(64), nullable=False),
        _timestamp("updated_at"),
    )

    op.create_table(
        "project_ai_analysis",
        _id(),
        _user_id(),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("analysis", postgresql.JSONB(), nullable=False),
        sa.Column("model", sa.Text(), nullable=True),
        _timestamp("updated_at"),
    )

    op.create_table(
        "opportunity_ai_analysis",
        _id(),
        _user_id(),
        sa.Column(
            "opportunity_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("opportunities.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("analysis", postgresql.JSONB(), nullable=False),
        sa.Column("is_heuristic", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("updated_at"),
    )

    op.create_table(
        "field_definitions_cache",
        _id(),
        sa.Column("field_key", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("field_name", sa.Text(), nullable=False),
        sa.Column("definition", postgresql.JSONB(), nullable=False),
        sa.Column("is_fallback", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("updated_at"),
    )

    # ==========================================================================
    # Form assistant
    # ==========================================================================
    op.create_table(
        "form_ai_sessions",
        _id(),
        _user_id(),
        sa.Column("form_title", sa.Text(), nullable=True),
        sa.Column("form_context", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "form_ai_messages",
        _id(),
        sa.Column(
            "session_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("form_ai_sessions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(32), nullable=False, server_default="chat"),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "form_analysis_cache",
        _id(),
        _user_id(),
        sa.Column("file_hash", sa.String(128), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("analysis_result", postgresql.JSONB(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("last_used_at"),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_form_analysis_cache_user_hash",
        "form_analysis_cache",
        ["user_id", "file_hash"],
        unique=True,
    )


def downgrade() -> None:
    """Drop all tables."""

    # Reverse order of creation (foreign keys)
    op.drop_table("form_analysis_cache")
    op.drop_table("form_ai_messages")
    op.drop_table("form_ai_sessions")
    op.drop_table("field_definitions_cache")
    op.drop_table("opportunity_ai_analysis")
    op.drop_table("project_ai_analysis")
    op.drop_table("ai_org_context_cache")
    op.drop_table("assistant_session_summaries")
    op.drop_table("assistant_conversations")
    op.drop_table("assistant_sessions")
    op.drop_table("campaigns")
    op.drop_table("applications")
    op.drop_table("opportunities")
    op.drop_table("projects")
    op.drop_table("user_profiles")
