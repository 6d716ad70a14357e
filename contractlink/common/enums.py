import enum


class UserRole(str, enum.Enum):
    COMPANY = "company"
    CONTRACTOR = "contractor"
    ADMIN = "admin"


class ProjectStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProjectCategory(str, enum.Enum):
    CONSTRUCTION = "construction"
    ELECTRICAL = "electrical"
    PAINTING = "painting"
    PLUMBING = "plumbing"
    LABOUR = "labour"
    TRANSPORTATION = "transportation"
    OTHER = "other"


class BidStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class ContractStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class MilestoneStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    VERIFIED = "verified"
    PAID = "paid"
