from decimal import Decimal

import pytest
from sqlalchemy import select, update

from contractlink.common.enums import ContractStatus, MilestoneStatus, ProjectStatus
from contractlink.common.exceptions import (
    BadRequestError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from contractlink.core.milestones.progress import get_contract_progress
from contractlink.core.milestones.service import MilestoneService
from contractlink.db.models.milestone import Milestone
from contractlink.db.models.project import Project

service = MilestoneService()


@pytest.mark.asyncio
async def test_contractor_completes_pending_milestone(db_session, make_contract, make_milestone, contractor_user):
    contract = await make_contract()
    milestone = await make_milestone(contract)

    updated = await service.transition_status(
        milestone.id,
        "completed",
        "contractor",
        contractor_user.id,
        db_session,
        notes="Boards installed",
        deliverable_url="https://example.com/report.pdf",
    )

    assert updated.status == MilestoneStatus.COMPLETED.value
    assert updated.completion_date is not None
    assert updated.verification_date is None
    assert updated.notes == "Boards installed"
    assert updated.deliverable_url == "https://example.com/report.pdf"


@pytest.mark.asyncio
async def test_company_verifies_then_pays(db_session, make_contract, make_milestone, company_user):
    contract = await make_contract()
    milestone = await make_milestone(contract, status="completed")

    verified = await service.transition_status(milestone.id, "verified", "company", company_user.id, db_session)
    assert verified.status == "verified"
    assert verified.verification_date is not None

    paid = await service.transition_status(
        milestone.id, "paid", "company", company_user.id, db_session, payment_reference="TX-981"
    )
    assert paid.status == "paid"
    assert paid.payment_date is not None
    assert paid.payment_reference == "TX-981"


@pytest.mark.asyncio
async def test_non_bidder_contractor_is_forbidden_at_any_status(
    db_session, make_contract, make_milestone, other_contractor_user
):
    contract = await make_contract()
    for status in MilestoneStatus:
        milestone = await make_milestone(contract, status=status)
        with pytest.raises(PermissionDeniedError):
            await service.transition_status(
                milestone.id, "completed", "contractor", other_contractor_user.id, db_session
            )


@pytest.mark.asyncio
async def test_non_owner_company_cannot_verify_or_pay(
    db_session, make_contract, make_milestone, other_company_user
):
    contract = await make_contract()
    completed = await make_milestone(contract, status="completed")
    verified = await make_milestone(contract, status="verified", order=1)

    with pytest.raises(PermissionDeniedError):
        await service.transition_status(completed.id, "verified", "company", other_company_user.id, db_session)
    with pytest.raises(PermissionDeniedError):
        await service.transition_status(verified.id, "paid", "company", other_company_user.id, db_session)


@pytest.mark.asyncio
async def test_contractor_cannot_verify(db_session, make_contract, make_milestone, contractor_user):
    contract = await make_contract()
    milestone = await make_milestone(contract, status="completed")

    with pytest.raises(PermissionDeniedError):
        await service.transition_status(milestone.id, "verified", "contractor", contractor_user.id, db_session)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "current,requested",
    [("completed", "pending"), ("pending", "verified"), ("pending", "paid"), ("verified", "verified")],
)
async def test_admin_cannot_skip_or_go_back(db_session, make_contract, make_milestone, admin_user, current, requested):
    contract = await make_contract()
    milestone = await make_milestone(contract, status=current)

    with pytest.raises(InvalidTransitionError):
        await service.transition_status(milestone.id, requested, "admin", admin_user.id, db_session)


@pytest.mark.asyncio
async def test_admin_walks_full_sequence(db_session, make_contract, make_milestone, admin_user):
    contract = await make_contract()
    milestone = await make_milestone(contract)

    for status in ("completed", "verified", "paid"):
        milestone = await service.transition_status(milestone.id, status, "admin", admin_user.id, db_session)
        assert milestone.status == status

    assert milestone.completion_date is not None
    assert milestone.verification_date is not None
    assert milestone.payment_date is not None


@pytest.mark.asyncio
async def test_unknown_milestone(db_session, admin_user):
    with pytest.raises(NotFoundError):
        await service.transition_status(99999, "completed", "admin", admin_user.id, db_session)


@pytest.mark.asyncio
async def test_invalid_status_value(db_session, make_contract, make_milestone, admin_user):
    contract = await make_contract()
    milestone = await make_milestone(contract)

    with pytest.raises(ValidationError):
        await service.transition_status(milestone.id, "archived", "admin", admin_user.id, db_session)


@pytest.mark.asyncio
async def test_malformed_deliverable_url(db_session, make_contract, make_milestone, contractor_user):
    contract = await make_contract()
    milestone = await make_milestone(contract)

    with pytest.raises(ValidationError):
        await service.transition_status(
            milestone.id, "completed", "contractor", contractor_user.id, db_session,
            deliverable_url="not a url",
        )

    await db_session.refresh(milestone)
    assert milestone.status == "pending"


@pytest.mark.asyncio
async def test_unknown_role_is_forbidden(db_session, make_contract, make_milestone, contractor_user):
    contract = await make_contract()
    milestone = await make_milestone(contract)

    with pytest.raises(PermissionDeniedError):
        await service.transition_status(milestone.id, "completed", "inspector", contractor_user.id, db_session)


@pytest.mark.asyncio
async def test_transition_lost_to_concurrent_update(db_session, make_contract, make_milestone, contractor_user):
    contract = await make_contract()
    milestone = await make_milestone(contract)

    # Another request moves the row on; the loaded instance still reads "pending"
    await db_session.execute(
        update(Milestone)
        .where(Milestone.id == milestone.id)
        .values(status="completed")
        .execution_options(synchronize_session=False)
    )
    assert milestone.status == "pending"

    with pytest.raises(InvalidTransitionError):
        await service.transition_status(milestone.id, "completed", "contractor", contractor_user.id, db_session)


@pytest.mark.asyncio
async def test_paying_first_milestone_keeps_contract_active(db_session, make_contract, make_milestone, company_user):
    contract = await make_contract()
    m1 = await make_milestone(contract, amount="1000.00", status="verified", title="M1")
    await make_milestone(contract, amount="500.00", status="pending", order=1, title="M2")

    m1 = await service.transition_status(m1.id, "paid", "company", company_user.id, db_session)

    assert m1.status == "paid"
    assert m1.payment_date is not None
    await db_session.refresh(contract)
    assert contract.status == ContractStatus.ACTIVE.value

    summary = await get_contract_progress(contract.id, db_session)
    assert summary.paid_amount == Decimal("1000.00")
    assert summary.total_amount == Decimal("1500.00")


@pytest.mark.asyncio
async def test_paying_last_milestone_completes_contract_and_project(
    db_session, make_contract, make_milestone, company_user, contractor_user
):
    contract = await make_contract()
    await make_milestone(contract, amount="1000.00", status="paid", title="M1")
    m2 = await make_milestone(contract, amount="500.00", status="pending", order=1, title="M2")

    await service.transition_status(m2.id, "completed", "contractor", contractor_user.id, db_session)
    await service.transition_status(m2.id, "verified", "company", company_user.id, db_session)
    await db_session.refresh(contract)
    assert contract.status == ContractStatus.ACTIVE.value

    await service.transition_status(m2.id, "paid", "company", company_user.id, db_session)

    await db_session.refresh(contract)
    assert contract.status == ContractStatus.COMPLETED.value
    project = (await db_session.execute(select(Project).where(Project.id == contract.project_id))).scalar_one()
    await db_session.refresh(project)
    assert project.status == ProjectStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_project_stays_open_while_another_contract_is_active(
    db_session, make_contract, make_milestone, company_user, other_contractor_user
):
    first = await make_contract()
    project = (await db_session.execute(select(Project).where(Project.id == first.project_id))).scalar_one()
    await make_contract(project=project, contractor=other_contractor_user)
    milestone = await make_milestone(first, status="verified")

    await service.transition_status(milestone.id, "paid", "company", company_user.id, db_session)

    await db_session.refresh(first)
    assert first.status == ContractStatus.COMPLETED.value
    project = (await db_session.execute(select(Project).where(Project.id == first.project_id))).scalar_one()
    await db_session.refresh(project)
    assert project.status == ProjectStatus.IN_PROGRESS.value


@pytest.mark.asyncio
async def test_create_milestone(db_session, make_contract, company_user):
    contract = await make_contract()

    milestone = await service.create_milestone(
        contract_id=contract.id,
        title="Design sign-off",
        description="Drawings approved by the client",
        amount="750.00",
        order=0,
        actor_role="company",
        actor_id=company_user.id,
        db=db_session,
    )

    assert milestone.status == MilestoneStatus.PENDING.value
    assert milestone.amount == Decimal("750.00")
    assert milestone.completion_date is None
    assert milestone.verification_date is None
    assert milestone.payment_date is None


@pytest.mark.asyncio
async def test_create_milestone_requires_owning_company_or_admin(
    db_session, make_contract, other_company_user, contractor_user, admin_user
):
    contract = await make_contract()
    kwargs = dict(contract_id=contract.id, title="Phase one", description=None, amount=100, order=0, db=db_session)

    with pytest.raises(PermissionDeniedError):
        await service.create_milestone(actor_role="company", actor_id=other_company_user.id, **kwargs)
    with pytest.raises(PermissionDeniedError):
        await service.create_milestone(actor_role="contractor", actor_id=contractor_user.id, **kwargs)

    milestone = await service.create_milestone(actor_role="admin", actor_id=admin_user.id, **kwargs)
    assert milestone.contract_id == contract.id


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": 0},
        {"amount": "-5"},
        {"order": -1},
        {"title": "ab"},
        {"description": "too short"},
    ],
)
async def test_create_milestone_validation(db_session, make_contract, company_user, overrides):
    contract = await make_contract()
    kwargs = dict(
        contract_id=contract.id,
        title="Phase one",
        description="Deliver the first phase",
        amount="100.00",
        order=0,
        actor_role="company",
        actor_id=company_user.id,
        db=db_session,
    )
    kwargs.update(overrides)

    with pytest.raises(ValidationError):
        await service.create_milestone(**kwargs)


@pytest.mark.asyncio
async def test_create_milestone_on_completed_contract(db_session, make_contract, company_user):
    contract = await make_contract()
    contract.status = ContractStatus.COMPLETED.value
    await db_session.flush()

    with pytest.raises(BadRequestError):
        await service.create_milestone(
            contract_id=contract.id, title="Late addition", description=None, amount=50, order=3,
            actor_role="company", actor_id=company_user.id, db=db_session,
        )


@pytest.mark.asyncio
async def test_create_milestone_unknown_contract(db_session, company_user):
    with pytest.raises(NotFoundError):
        await service.create_milestone(
            contract_id=424242, title="Phase", description=None, amount=50, order=0,
            actor_role="company", actor_id=company_user.id, db=db_session,
        )


@pytest.mark.asyncio
async def test_list_milestones_ordered(db_session, make_contract, make_milestone):
    contract = await make_contract()
    await make_milestone(contract, order=2, title="Third")
    await make_milestone(contract, order=0, title="First")
    await make_milestone(contract, order=1, title="Second")

    milestones = await service.list_milestones(contract.id, db_session)
    assert [m.title for m in milestones] == ["First", "Second", "Third"]
