"""
WALI-OS Test Configuration and Fixtures
Shared pytest fixtures for all test modules.
"""
import os
import tempfile
from datetime import timedelta
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tests.fixtures import TEST_USER_ID, make_completion
from walios.models import Application, Base, Opportunity, Project, UserProfile, utcnow


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create an async SQLite engine for testing."""
    # Use a unique temp file for each test to ensure complete isolation
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()

    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest_asyncio.fixture(scope="function")
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create an async session for testing."""
    async_session_maker = async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


# =============================================================================
# AI Provider Fixtures
# =============================================================================


@pytest.fixture
def fake_provider():
    """
    Stand-in for AIProviderService.

    ``generate_completion`` returns an empty JSON object unless a test sets
    ``return_value`` or ``side_effect``.
    """
    provider = MagicMock()
    provider.generate_completion = AsyncMock(return_value=make_completion("{}"))
    provider.get_provider_status = MagicMock(
        return_value={"providers": {"openai": {"configured": True}, "anthropic": {"configured": False}}}
    )
    provider.test_connections = AsyncMock(return_value={"openai": {"ok": True}})
    return provider


@pytest.fixture
def mock_email_service():
    """EmailService double that records sends without touching SendGrid."""
    service = MagicMock()
    service.is_configured = MagicMock(return_value=False)
    service.send_chat_history = AsyncMock(return_value={"status": "logged", "messageId": None})
    service.send_email = AsyncMock(return_value={"status": "logged", "messageId": None})
    return service


# =============================================================================
# API Client
# =============================================================================


@pytest_asyncio.fixture
async def client(async_session, fake_provider) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with the test database and fake AI provider."""
    from walios.database import get_db
    from walios.main import app
    from walios.services.ai_provider import get_ai_provider

    async def override_get_db():
        yield async_session
        await async_session.commit()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ai_provider] = lambda: fake_provider

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def sample_profile_data() -> dict[str, Any]:
    """Organization profile as the frontend sends it."""
    return {
        "organization_name": "Riverbend Community Health",
        "organization_type": "nonprofit",
        "ein": "12-3456789",
        "uei": "ABCDEF123456",
        "sam_registration": "active",
        "city": "Dayton",
        "state": "OH",
        "zip_code": "45402",
        "email": "grants@riverbend.org",
        "phone": "(937) 555-0100",
        "annual_budget": 850000,
        "years_in_operation": 12,
        "focus_areas": ["health", "community"],
        "service_areas": ["Ohio"],
    }


@pytest.fixture
def sample_project_data() -> dict[str, Any]:
    return {
        "name": "Mobile Health Clinic",
        "description": "A mobile clinic providing preventive health screenings to rural community members.",
        "project_type": "health",
        "status": "planning",
        "funding_needed": 150000,
        "total_budget": 200000,
        "target_population": "Rural families",
        "geographic_scope": "Ohio",
        "keywords": ["health", "rural", "clinic"],
    }


@pytest.fixture
def sample_opportunity_data() -> dict[str, Any]:
    return {
        "title": "Rural Health Outreach Grant",
        "sponsor": "Health Resources Foundation",
        "description": "Supports preventive health programs for rural community members.",
        "amount_min": 50000,
        "amount_max": 250000,
        "deadline_date": (utcnow() + timedelta(days=45)).isoformat(),
        "organization_types": ["nonprofit"],
        "focus_areas": ["health"],
        "eligibility": "Nonprofit organizations in Ohio",
    }


@pytest_asyncio.fixture
async def db_profile(async_session, sample_profile_data) -> UserProfile:
    """Persisted profile for TEST_USER_ID."""
    profile = UserProfile(user_id=TEST_USER_ID, **sample_profile_data)
    async_session.add(profile)
    await async_session.commit()
    await async_session.refresh(profile)
    return profile


@pytest_asyncio.fixture
async def db_project(async_session, sample_project_data) -> Project:
    project = Project(user_id=TEST_USER_ID, **sample_project_data)
    async_session.add(project)
    await async_session.commit()
    await async_session.refresh(project)
    return project


@pytest_asyncio.fixture
async def db_opportunity(async_session) -> Opportunity:
    opportunity = Opportunity(
        user_id=TEST_USER_ID,
        title="Rural Health Outreach Grant",
        sponsor="Health Resources Foundation",
        description="Supports preventive health programs.",
        amount_min=50000,
        amount_max=250000,
        deadline_date=utcnow() + timedelta(days=20),
        organization_types=["nonprofit"],
        focus_areas=["health"],
    )
    async_session.add(opportunity)
    await async_session.commit()
    await async_session.refresh(opportunity)
    return opportunity


@pytest_asyncio.fixture
async def db_applications(async_session, db_project) -> list[Application]:
    """One awarded and one submitted application."""
    applications = [
        Application(
            user_id=TEST_USER_ID,
            project_id=db_project.id,
            title="Awarded grant",
            status="awarded",
            amount_requested=100000,
            amount_awarded=75000,
        ),
        Application(
            user_id=TEST_USER_ID,
            project_id=db_project.id,
            title="Pending grant",
            status="submitted",
            amount_requested=50000,
        ),
    ]
    async_session.add_all(applications)
    await async_session.commit()
    return applications
