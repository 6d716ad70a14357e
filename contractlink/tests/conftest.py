import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from contractlink.common.enums import BidStatus, ContractStatus, MilestoneStatus, ProjectStatus, UserRole
from contractlink.common.security import create_access_token, get_password_hash
from contractlink.db.base import Base
from contractlink.db.models import *  # noqa: F401,F403 - ensure all models loaded

# In-memory SQLite shared across the connections of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client(db_session):
    from contractlink.api.deps import get_db
    from contractlink.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _make_user(db_session, role: UserRole, label: str):
    from contractlink.db.models.user import User

    suffix = uuid.uuid4().hex[:8]
    user = User(
        username=f"{label}_{suffix}",
        email=f"{label}_{suffix}@test.com",
        hashed_password=get_password_hash("testpass123"),
        full_name=f"Test {label.replace('_', ' ').title()}",
        role=role.value,
    )
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def company_user(db_session):
    return await _make_user(db_session, UserRole.COMPANY, "company")


@pytest.fixture
async def other_company_user(db_session):
    return await _make_user(db_session, UserRole.COMPANY, "other_company")


@pytest.fixture
async def contractor_user(db_session):
    return await _make_user(db_session, UserRole.CONTRACTOR, "contractor")


@pytest.fixture
async def other_contractor_user(db_session):
    return await _make_user(db_session, UserRole.CONTRACTOR, "other_contractor")


@pytest.fixture
async def admin_user(db_session):
    return await _make_user(db_session, UserRole.ADMIN, "admin")


def _headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture
def company_headers(company_user):
    return _headers(company_user)


@pytest.fixture
def other_company_headers(other_company_user):
    return _headers(other_company_user)


@pytest.fixture
def contractor_headers(contractor_user):
    return _headers(contractor_user)


@pytest.fixture
def other_contractor_headers(other_contractor_user):
    return _headers(other_contractor_user)


@pytest.fixture
def admin_headers(admin_user):
    return _headers(admin_user)


@pytest.fixture
def make_contract(db_session, company_user, contractor_user):
    """Factory creating an active contract between the company and contractor fixtures.

    Pass ``project`` to attach another contract to an existing project.
    """
    from contractlink.db.models.bid import Bid
    from contractlink.db.models.contract import Contract
    from contractlink.db.models.project import Project

    async def _make(project=None, contractor=None):
        if project is None:
            project = Project(
                company_id=company_user.id,
                title="Warehouse electrical refit",
                description="Replace the lighting and distribution boards in a 2,000 m2 warehouse",
                category="electrical",
                location="Leeds",
                budget_min=Decimal("1000.00"),
                budget_max=Decimal("5000.00"),
                status=ProjectStatus.IN_PROGRESS.value,
            )
            db_session.add(project)
            await db_session.flush()

        bid = Bid(
            project_id=project.id,
            contractor_id=(contractor or contractor_user).id,
            amount=Decimal("1500.00"),
            description="Full refit in two phases",
            delivery_time="6 weeks",
            status=BidStatus.ACCEPTED.value,
        )
        db_session.add(bid)
        await db_session.flush()

        contract = Contract(
            project_id=project.id,
            bid_id=bid.id,
            start_date=datetime.now(timezone.utc),
            status=ContractStatus.ACTIVE.value,
        )
        db_session.add(contract)
        await db_session.flush()
        await db_session.refresh(contract)
        return contract

    return _make


@pytest.fixture
def make_milestone(db_session):
    from contractlink.db.models.milestone import Milestone

    async def _make(contract, amount="500.00", status=MilestoneStatus.PENDING, order=0, title="Phase"):
        milestone = Milestone(
            contract_id=contract.id,
            title=title,
            description="Deliver the agreed scope for this phase",
            amount=Decimal(amount),
            order=order,
            status=MilestoneStatus(status).value,
        )
        db_session.add(milestone)
        await db_session.flush()
        await db_session.refresh(milestone)
        return milestone

    return _make
