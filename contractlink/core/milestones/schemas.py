from decimal import Decimal

from pydantic import BaseModel


class ContractProgress(BaseModel):
    total_milestones: int
    progress_percent: float
    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    status_counts: dict[str, int]
