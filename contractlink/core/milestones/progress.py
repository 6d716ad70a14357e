from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from contractlink.common.enums import MilestoneStatus
from contractlink.core.milestones.schemas import ContractProgress
from contractlink.core.milestones.workflow import PROGRESS_STATUSES
from contractlink.db.models.milestone import Milestone


def progress_percent(milestones: Iterable[Milestone]) -> float:
    statuses = [MilestoneStatus(m.status) for m in milestones]
    if not statuses:
        return 0.0
    done = sum(1 for s in statuses if s in PROGRESS_STATUSES)
    return done / len(statuses) * 100


def total_amount(milestones: Iterable[Milestone]) -> Decimal:
    return sum((Decimal(m.amount) for m in milestones), Decimal("0.00"))


def paid_amount(milestones: Iterable[Milestone]) -> Decimal:
    return sum(
        (Decimal(m.amount) for m in milestones if m.status == MilestoneStatus.PAID.value),
        Decimal("0.00"),
    )


def summarize(milestones: Iterable[Milestone]) -> ContractProgress:
    milestones = list(milestones)
    total = total_amount(milestones)
    paid = paid_amount(milestones)

    counts = {s.value: 0 for s in MilestoneStatus}
    for m in milestones:
        counts[MilestoneStatus(m.status).value] += 1

    return ContractProgress(
        total_milestones=len(milestones),
        progress_percent=progress_percent(milestones),
        total_amount=total,
        paid_amount=paid,
        remaining_amount=total - paid,
        status_counts=counts,
    )


async def get_contract_progress(contract_id: int, db: AsyncSession) -> ContractProgress:
    result = await db.execute(
        select(Milestone).where(Milestone.contract_id == contract_id)
    )
    return summarize(result.scalars().all())
