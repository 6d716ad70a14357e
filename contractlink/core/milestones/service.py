from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from contractlink.common.enums import ContractStatus, MilestoneStatus, ProjectStatus, UserRole
from contractlink.common.exceptions import (
    BadRequestError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from contractlink.common.logging import get_logger
from contractlink.core.milestones.workflow import TIMESTAMP_FIELDS, check_transition, parse_role
from contractlink.db.models.contract import Contract
from contractlink.db.models.milestone import Milestone

logger = get_logger("milestones.service")

_url_adapter = TypeAdapter(AnyHttpUrl)


class MilestoneService:
    async def list_milestones(self, contract_id: int, db: AsyncSession) -> list[Milestone]:
        result = await db.execute(
            select(Milestone)
            .where(Milestone.contract_id == contract_id)
            .order_by(Milestone.order, Milestone.id)
        )
        return list(result.scalars().all())

    async def create_milestone(
        self,
        contract_id: int,
        title: str,
        description: str | None,
        amount: Decimal | int | float | str,
        order: int,
        actor_role: str,
        actor_id: int,
        db: AsyncSession,
        due_date: datetime | None = None,
    ) -> Milestone:
        contract = await self.get_contract(contract_id, db)

        role = parse_role(actor_role)
        if role == UserRole.COMPANY:
            if contract.project.company_id != actor_id:
                raise PermissionDeniedError("Only the company that owns this project can add milestones")
        elif role != UserRole.ADMIN:
            raise PermissionDeniedError("Only companies and admins can add milestones")

        if contract.status == ContractStatus.COMPLETED.value:
            raise BadRequestError("Cannot add milestones to a completed contract")

        amount = _validate_amount(amount)
        if title is None or len(title.strip()) < 3:
            raise ValidationError("Title must be at least 3 characters")
        if description is not None and len(description.strip()) < 10:
            raise ValidationError("Description must be at least 10 characters")
        if order is None or order < 0:
            raise ValidationError("Order must be a non-negative integer")

        milestone = Milestone(
            contract_id=contract.id,
            title=title,
            description=description,
            amount=amount,
            order=order,
            due_date=due_date,
            status=MilestoneStatus.PENDING.value,
        )
        db.add(milestone)
        await db.flush()
        await db.refresh(milestone)

        logger.info(
            "Created milestone %s on contract %s (amount=%s, order=%d)",
            milestone.id,
            contract.id,
            milestone.amount,
            milestone.order,
        )
        return milestone

    async def transition_status(
        self,
        milestone_id: int,
        requested_status: str | MilestoneStatus,
        actor_role: str,
        actor_id: int,
        db: AsyncSession,
        notes: str | None = None,
        deliverable_url: str | None = None,
        payment_reference: str | None = None,
    ) -> Milestone:
        try:
            requested = MilestoneStatus(requested_status)
        except ValueError:
            raise ValidationError(
                f"status must be one of: {', '.join(s.value for s in MilestoneStatus)}"
            )
        if deliverable_url is not None:
            deliverable_url = _validate_url(deliverable_url)

        milestone = await self._get_milestone(milestone_id, db)
        contract = await self.get_contract(milestone.contract_id, db)
        current = MilestoneStatus(milestone.status)

        try:
            self._check_party(contract, actor_role, actor_id)
            check_transition(current, requested, actor_role)
        except (PermissionDeniedError, InvalidTransitionError) as e:
            logger.warning(
                "Rejected milestone %s transition %s -> %s by %s %s: %s",
                milestone.id,
                current.value,
                requested.value,
                actor_role,
                actor_id,
                e.detail,
            )
            raise

        values = {
            "status": requested.value,
            TIMESTAMP_FIELDS[requested]: datetime.now(timezone.utc),
        }
        if notes is not None:
            values["notes"] = notes
        if deliverable_url is not None:
            values["deliverable_url"] = deliverable_url
        if payment_reference is not None:
            values["payment_reference"] = payment_reference

        # Conditional on the status read above so a concurrent transition is not overwritten
        result = await db.execute(
            update(Milestone)
            .where(Milestone.id == milestone.id, Milestone.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "Milestone %s moved past '%s' before transition to '%s' was applied",
                milestone.id,
                current.value,
                requested.value,
            )
            raise InvalidTransitionError(
                current.value,
                requested.value,
                f"Milestone is no longer '{current.value}'; reload and try again",
            )

        await db.refresh(milestone)
        logger.info(
            "Milestone %s moved %s -> %s by %s %s",
            milestone.id,
            current.value,
            requested.value,
            actor_role,
            actor_id,
        )

        if requested == MilestoneStatus.PAID:
            await self._complete_contract_if_settled(contract, db)

        return milestone

    def _check_party(self, contract: Contract, actor_role: str, actor_id: int) -> None:
        role = parse_role(actor_role)
        if role == UserRole.ADMIN:
            return
        if role == UserRole.CONTRACTOR:
            if contract.bid.contractor_id != actor_id:
                raise PermissionDeniedError("You are not the contractor on this contract")
            return
        if role == UserRole.COMPANY:
            if contract.project.company_id != actor_id:
                raise PermissionDeniedError("You do not own the project for this contract")
            return
        raise PermissionDeniedError(f"Role '{actor_role}' cannot update milestone status")

    async def _complete_contract_if_settled(self, contract: Contract, db: AsyncSession) -> None:
        result = await db.execute(
            select(Milestone.status).where(Milestone.contract_id == contract.id)
        )
        statuses = result.scalars().all()
        if not statuses or any(s != MilestoneStatus.PAID.value for s in statuses):
            return

        contract.status = ContractStatus.COMPLETED.value
        await db.flush()
        logger.info("Contract %s completed: all %d milestones paid", contract.id, len(statuses))

        active_count = (
            await db.execute(
                select(func.count())
                .select_from(Contract)
                .where(
                    Contract.project_id == contract.project_id,
                    Contract.id != contract.id,
                    Contract.status == ContractStatus.ACTIVE.value,
                )
            )
        ).scalar() or 0
        if active_count:
            return

        project = contract.project
        project.status = ProjectStatus.COMPLETED.value
        await db.flush()
        logger.info("Project %s completed: no active contracts remain", project.id)

    async def _get_milestone(self, milestone_id: int, db: AsyncSession) -> Milestone:
        result = await db.execute(select(Milestone).where(Milestone.id == milestone_id))
        milestone = result.scalar_one_or_none()
        if not milestone:
            raise NotFoundError("Milestone", milestone_id)
        return milestone

    async def get_contract(self, contract_id: int, db: AsyncSession) -> Contract:
        result = await db.execute(
            select(Contract)
            .where(Contract.id == contract_id)
            .execution_options(populate_existing=True)
        )
        contract = result.scalar_one_or_none()
        if not contract:
            raise NotFoundError("Contract", contract_id)
        return contract


def _validate_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError):
        raise ValidationError("Amount must be a number")
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be greater than 0")
    return value


def _validate_url(url: str) -> str:
    try:
        _url_adapter.validate_python(url)
    except PydanticValidationError:
        raise ValidationError("Must provide a valid URL")
    return url
