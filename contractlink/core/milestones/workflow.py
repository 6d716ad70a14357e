"""Milestone status rules: the fixed forward sequence and who may advance it."""

from contractlink.common.enums import MilestoneStatus, UserRole
from contractlink.common.exceptions import InvalidTransitionError, PermissionDeniedError

VALID_TRANSITIONS: dict[MilestoneStatus, list[MilestoneStatus]] = {
    MilestoneStatus.PENDING: [MilestoneStatus.COMPLETED],
    MilestoneStatus.COMPLETED: [MilestoneStatus.VERIFIED],
    MilestoneStatus.VERIFIED: [MilestoneStatus.PAID],
    MilestoneStatus.PAID: [],
}

_ALL_STEPS = {
    (from_status, to_status)
    for from_status, targets in VALID_TRANSITIONS.items()
    for to_status in targets
}

# role -> set of (from, to) steps that role may take
ROLE_PERMISSIONS: dict[UserRole, set[tuple[MilestoneStatus, MilestoneStatus]]] = {
    UserRole.CONTRACTOR: {
        (MilestoneStatus.PENDING, MilestoneStatus.COMPLETED),
    },
    UserRole.COMPANY: {
        (MilestoneStatus.COMPLETED, MilestoneStatus.VERIFIED),
        (MilestoneStatus.VERIFIED, MilestoneStatus.PAID),
    },
    UserRole.ADMIN: _ALL_STEPS,
}

# Date column stamped when a milestone enters the status
TIMESTAMP_FIELDS: dict[MilestoneStatus, str] = {
    MilestoneStatus.COMPLETED: "completion_date",
    MilestoneStatus.VERIFIED: "verification_date",
    MilestoneStatus.PAID: "payment_date",
}

PROGRESS_STATUSES = frozenset(
    {MilestoneStatus.COMPLETED, MilestoneStatus.VERIFIED, MilestoneStatus.PAID}
)


def parse_role(role: str | UserRole) -> UserRole | None:
    try:
        return UserRole(role)
    except ValueError:
        return None


def is_forward_step(from_status: MilestoneStatus, to_status: MilestoneStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def role_may_transition(
    role: str | UserRole, from_status: MilestoneStatus, to_status: MilestoneStatus
) -> bool:
    parsed = parse_role(role)
    if parsed is None:
        return False
    return (from_status, to_status) in ROLE_PERMISSIONS.get(parsed, set())


def is_legal_transition(
    from_status: MilestoneStatus, to_status: MilestoneStatus, role: str | UserRole
) -> bool:
    return is_forward_step(from_status, to_status) and role_may_transition(
        role, from_status, to_status
    )


def check_transition(
    from_status: MilestoneStatus, to_status: MilestoneStatus, role: str | UserRole
) -> None:
    """Raise unless ``role`` may move a milestone from ``from_status`` to ``to_status``.

    An unknown role is always forbidden. For a known role, a request that is
    not the next step in the sequence is an invalid transition, and a valid
    next step outside the role's permissions is forbidden.
    """
    parsed = parse_role(role)
    if parsed is None:
        raise PermissionDeniedError(f"Role '{role}' cannot update milestone status")

    if not is_forward_step(from_status, to_status):
        raise InvalidTransitionError(from_status.value, to_status.value)

    if not role_may_transition(parsed, from_status, to_status):
        raise PermissionDeniedError(
            f"A {parsed.value} cannot move a milestone from "
            f"'{from_status.value}' to '{to_status.value}'"
        )


def allowed_next_statuses(
    current: MilestoneStatus, role: str | UserRole
) -> list[MilestoneStatus]:
    return [
        target
        for target in VALID_TRANSITIONS.get(current, [])
        if role_may_transition(role, current, target)
    ]
