from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from contractlink.api.deps import get_current_user, get_db, get_optional_user, require_role
from contractlink.api.v1.projects import get_project_or_404
from contractlink.common.enums import BidStatus, ContractStatus, ProjectStatus, UserRole
from contractlink.common.exceptions import BadRequestError, NotFoundError, PermissionDeniedError
from contractlink.common.logging import get_logger
from contractlink.db.models.bid import Bid
from contractlink.db.models.contract import Contract
from contractlink.db.models.user import User

logger = get_logger("api.bids")

router = APIRouter(tags=["Bids"])


# ---------- Schemas ----------


class BidCreateRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    description: str = Field(min_length=10)
    delivery_time: str | None = None


class BidStatusUpdate(BaseModel):
    status: Literal["accepted", "rejected"]
    terms_and_conditions: str | None = None
    end_date: datetime | None = None


class BidResponse(BaseModel):
    id: int
    project_id: int
    contractor_id: int
    amount: Decimal
    description: str | None
    delivery_time: str | None
    status: str
    created_at: str

    @classmethod
    def from_orm_instance(cls, bid: Bid) -> "BidResponse":
        return cls(
            id=bid.id,
            project_id=bid.project_id,
            contractor_id=bid.contractor_id,
            amount=bid.amount,
            description=bid.description,
            delivery_time=bid.delivery_time,
            status=bid.status,
            created_at=bid.created_at.isoformat(),
        )


class BidListResponse(BaseModel):
    bids: list[BidResponse]
    total: int


class BidSummaryResponse(BaseModel):
    count: int
    average_bid: Decimal


class BidStatusResponse(BidResponse):
    contract_id: int | None = None


# ---------- Endpoints ----------


@router.get("/projects/{project_id}/bids", response_model=BidListResponse | BidSummaryResponse)
async def list_project_bids(
    project_id: int,
    current_user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    project = await get_project_or_404(project_id, db)

    result = await db.execute(
        select(Bid).where(Bid.project_id == project.id).order_by(Bid.amount, Bid.id)
    )
    bids = result.scalars().all()

    # Anonymous users and other companies only see aggregate figures
    if current_user is None or (
        current_user.role == UserRole.COMPANY.value and current_user.id != project.company_id
    ):
        average = sum((b.amount for b in bids), Decimal("0.00")) / len(bids) if bids else Decimal("0.00")
        return BidSummaryResponse(count=len(bids), average_bid=average.quantize(Decimal("0.01")))

    return BidListResponse(bids=[BidResponse.from_orm_instance(b) for b in bids], total=len(bids))


@router.post("/projects/{project_id}/bids", response_model=BidResponse, status_code=201)
async def create_bid(
    project_id: int,
    body: BidCreateRequest,
    current_user: User = Depends(require_role(UserRole.CONTRACTOR)),
    db: AsyncSession = Depends(get_db),
):
    project = await get_project_or_404(project_id, db)
    if project.status != ProjectStatus.OPEN.value:
        raise BadRequestError("Project is not open for bidding")

    bid = Bid(
        project_id=project.id,
        contractor_id=current_user.id,
        amount=body.amount,
        description=body.description,
        delivery_time=body.delivery_time,
        status=BidStatus.PENDING.value,
    )
    db.add(bid)
    await db.flush()
    await db.refresh(bid)

    logger.info("Contractor %s bid %s on project %s", current_user.id, bid.amount, project.id)
    return BidResponse.from_orm_instance(bid)


@router.get("/contractors/{contractor_id}/bids", response_model=BidListResponse)
async def list_contractor_bids(
    contractor_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if current_user.role != UserRole.ADMIN.value and current_user.id != contractor_id:
        raise PermissionDeniedError("You can only view your own bids")

    result = await db.execute(
        select(Bid)
        .where(Bid.contractor_id == contractor_id)
        .order_by(Bid.created_at.desc(), Bid.id.desc())
    )
    bids = result.scalars().all()
    return BidListResponse(bids=[BidResponse.from_orm_instance(b) for b in bids], total=len(bids))


@router.patch("/bids/{bid_id}/status", response_model=BidStatusResponse)
async def update_bid_status(
    bid_id: int,
    body: BidStatusUpdate,
    current_user: User = Depends(require_role(UserRole.COMPANY, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Bid).where(Bid.id == bid_id).execution_options(populate_existing=True)
    )
    bid = result.scalar_one_or_none()
    if not bid:
        raise NotFoundError("Bid", bid_id)

    project = bid.project
    if current_user.role != UserRole.ADMIN.value and project.company_id != current_user.id:
        raise PermissionDeniedError("You do not own the project for this bid")

    if bid.status != BidStatus.PENDING.value:
        raise BadRequestError(f"Bid is already '{bid.status}'")

    contract = None
    if body.status == BidStatus.ACCEPTED.value:
        if project.status != ProjectStatus.OPEN.value:
            raise BadRequestError("Project is no longer accepting bids")

        bid.status = BidStatus.ACCEPTED.value
        contract = Contract(
            project_id=project.id,
            bid_id=bid.id,
            start_date=datetime.now(timezone.utc),
            end_date=body.end_date,
            terms_and_conditions=body.terms_and_conditions,
            status=ContractStatus.ACTIVE.value,
        )
        db.add(contract)
        project.status = ProjectStatus.IN_PROGRESS.value

        await db.execute(
            update(Bid)
            .where(
                Bid.project_id == project.id,
                Bid.id != bid.id,
                Bid.status == BidStatus.PENDING.value,
            )
            .values(status=BidStatus.REJECTED.value)
            .execution_options(synchronize_session="fetch")
        )
    else:
        bid.status = BidStatus.REJECTED.value

    await db.flush()
    await db.refresh(bid)

    if contract is not None:
        logger.info("Bid %s accepted; contract %s created for project %s", bid.id, contract.id, project.id)

    response = BidStatusResponse.from_orm_instance(bid)
    response.contract_id = contract.id if contract is not None else None
    return response
