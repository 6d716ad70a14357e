from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from contractlink.api.deps import get_current_user, get_db
from contractlink.common.enums import MilestoneStatus, UserRole
from contractlink.core.milestones.service import MilestoneService
from contractlink.core.milestones.workflow import allowed_next_statuses
from contractlink.db.models.contract import Contract
from contractlink.db.models.milestone import Milestone
from contractlink.db.models.user import User

router = APIRouter(prefix="/milestones", tags=["Milestones"])

milestone_service = MilestoneService()


# ---------- Schemas ----------


class MilestoneStatusUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: MilestoneStatus
    notes: str | None = None
    deliverable_url: str | None = Field(default=None, alias="deliverableUrl")
    payment_reference: str | None = Field(default=None, alias="paymentReference")


class MilestoneResponse(BaseModel):
    id: int
    contract_id: int
    title: str
    description: str | None
    amount: Decimal
    order: int
    status: str
    due_date: datetime | None
    completion_date: datetime | None
    verification_date: datetime | None
    payment_date: datetime | None
    payment_reference: str | None
    deliverable_url: str | None
    notes: str | None
    next_statuses: list[str] = []

    @classmethod
    def for_user(cls, milestone: Milestone, contract: Contract, user: User) -> "MilestoneResponse":
        """Serialize ``milestone`` with the statuses ``user`` may move it to next."""
        is_party = (
            user.role == UserRole.ADMIN.value
            or (user.role == UserRole.COMPANY.value and contract.project.company_id == user.id)
            or (user.role == UserRole.CONTRACTOR.value and contract.bid.contractor_id == user.id)
        )
        next_statuses = (
            [s.value for s in allowed_next_statuses(MilestoneStatus(milestone.status), user.role)]
            if is_party
            else []
        )
        return cls(
            id=milestone.id,
            contract_id=milestone.contract_id,
            title=milestone.title,
            description=milestone.description,
            amount=milestone.amount,
            order=milestone.order,
            status=milestone.status,
            due_date=milestone.due_date,
            completion_date=milestone.completion_date,
            verification_date=milestone.verification_date,
            payment_date=milestone.payment_date,
            payment_reference=milestone.payment_reference,
            deliverable_url=milestone.deliverable_url,
            notes=milestone.notes,
            next_statuses=next_statuses,
        )


# ---------- Endpoints ----------


@router.patch("/{milestone_id}/status", response_model=MilestoneResponse)
async def update_milestone_status(
    milestone_id: int,
    body: MilestoneStatusUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    milestone = await milestone_service.transition_status(
        milestone_id=milestone_id,
        requested_status=body.status,
        actor_role=current_user.role,
        actor_id=current_user.id,
        db=db,
        notes=body.notes,
        deliverable_url=body.deliverable_url,
        payment_reference=body.payment_reference,
    )
    contract = await milestone_service.get_contract(milestone.contract_id, db)
    return MilestoneResponse.for_user(milestone, contract, current_user)
