from contractlink.db.models.bid import Bid
from contractlink.db.models.contract import Contract
from contractlink.db.models.milestone import Milestone
from contractlink.db.models.project import Project
from contractlink.db.models.user import User

__all__ = [
    "Bid",
    "Contract",
    "Milestone",
    "Project",
    "User",
]
