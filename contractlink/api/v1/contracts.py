from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from contractlink.api.deps import get_current_user, get_db, require_role
from contractlink.api.v1.milestones import MilestoneResponse
from contractlink.common.enums import UserRole
from contractlink.common.exceptions import PermissionDeniedError
from contractlink.core.milestones.progress import summarize
from contractlink.core.milestones.schemas import ContractProgress
from contractlink.core.milestones.service import MilestoneService
from contractlink.db.models.contract import Contract
from contractlink.db.models.user import User

router = APIRouter(prefix="/contracts/{contract_id}", tags=["Contracts"])

milestone_service = MilestoneService()


# ---------- Schemas ----------


class MilestoneCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str | None = None
    amount: Decimal
    order: int
    due_date: datetime | None = Field(default=None, alias="dueDate")


class ContractResponse(BaseModel):
    id: int
    project_id: int
    bid_id: int
    contractor_id: int
    company_id: int
    status: str
    start_date: datetime
    end_date: datetime | None
    terms_and_conditions: str | None


class ContractDetailResponse(ContractResponse):
    milestones: list[MilestoneResponse]
    progress: ContractProgress


class MilestoneListResponse(BaseModel):
    milestones: list[MilestoneResponse]
    progress: ContractProgress


# ---------- Endpoints ----------


@router.get("", response_model=ContractDetailResponse)
async def get_contract(
    contract_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    contract = await _get_contract_for_user(contract_id, current_user, db)
    milestones = await milestone_service.list_milestones(contract.id, db)

    return ContractDetailResponse(
        **_contract_fields(contract),
        milestones=[MilestoneResponse.for_user(m, contract, current_user) for m in milestones],
        progress=summarize(milestones),
    )


@router.get("/milestones", response_model=MilestoneListResponse)
async def list_milestones(
    contract_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    contract = await _get_contract_for_user(contract_id, current_user, db)
    milestones = await milestone_service.list_milestones(contract.id, db)

    return MilestoneListResponse(
        milestones=[MilestoneResponse.for_user(m, contract, current_user) for m in milestones],
        progress=summarize(milestones),
    )


@router.post("/milestones", response_model=MilestoneResponse, status_code=201)
async def create_milestone(
    contract_id: int,
    body: MilestoneCreateRequest,
    current_user: User = Depends(require_role(UserRole.COMPANY, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    milestone = await milestone_service.create_milestone(
        contract_id=contract_id,
        title=body.title,
        description=body.description,
        amount=body.amount,
        order=body.order,
        due_date=body.due_date,
        actor_role=current_user.role,
        actor_id=current_user.id,
        db=db,
    )
    contract = await _get_contract_for_user(contract_id, current_user, db)
    return MilestoneResponse.for_user(milestone, contract, current_user)


def _contract_fields(contract: Contract) -> dict:
    return {
        "id": contract.id,
        "project_id": contract.project_id,
        "bid_id": contract.bid_id,
        "contractor_id": contract.bid.contractor_id,
        "company_id": contract.project.company_id,
        "status": contract.status,
        "start_date": contract.start_date,
        "end_date": contract.end_date,
        "terms_and_conditions": contract.terms_and_conditions,
    }


async def _get_contract_for_user(contract_id: int, user: User, db: AsyncSession) -> Contract:
    contract = await milestone_service.get_contract(contract_id, db)

    if user.role == UserRole.ADMIN.value:
        return contract
    if user.role == UserRole.COMPANY.value and contract.project.company_id == user.id:
        return contract
    if user.role == UserRole.CONTRACTOR.value and contract.bid.contractor_id == user.id:
        return contract
    raise PermissionDeniedError("You do not have access to this contract")
