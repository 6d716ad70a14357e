from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from contractlink.common.enums import BidStatus
from contractlink.db.base import BaseModel


class Bid(BaseModel):
    __tablename__ = "bids"

    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    contractor_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivery_time: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[BidStatus] = mapped_column(
        String(20), nullable=False, default=BidStatus.PENDING
    )

    # Relationships
    project = relationship("Project", lazy="selectin")
    contractor = relationship("User", lazy="selectin")
