from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from contractlink.common.enums import ContractStatus
from contractlink.db.base import BaseModel


class Contract(BaseModel):
    __tablename__ = "contracts"

    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    bid_id: Mapped[int] = mapped_column(
        ForeignKey("bids.id"), nullable=False, unique=True
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    terms_and_conditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ContractStatus] = mapped_column(
        String(20), nullable=False, default=ContractStatus.ACTIVE, index=True
    )

    # Relationships
    project = relationship("Project", lazy="selectin")
    bid = relationship("Bid", lazy="selectin")
