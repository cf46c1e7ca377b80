PENDING = "pending"
SLOT_A_SUBMITTED = "slotA_submitted"
SLOT_B_SUBMITTED = "slotB_submitted"
COMPLETED = "completed"
FLAKED = "flaked"
REPLACED = "replaced"

ALL_STATUSES = frozenset({PENDING, SLOT_A_SUBMITTED, SLOT_B_SUBMITTED, COMPLETED, FLAKED, REPLACED})
UNRESOLVED_STATUSES = frozenset({PENDING, SLOT_A_SUBMITTED, SLOT_B_SUBMITTED})
TERMINAL_STATUSES = frozenset({COMPLETED, FLAKED, REPLACED})

SUBMIT_A = "submit_a"
SUBMIT_B = "submit_b"
EXPIRE = "expire"
REPLACE = "replace"


class InvalidTransition(ValueError):
    pass


def transition_status(current: str, action: str) -> str:
    """Next status of a pairing after ``action``.

    Submissions are idempotent for the slot that already submitted. Terminal
    statuses never move; callers check ``TERMINAL_STATUSES`` before acting when
    they need to report that as an error.
    """
    if current not in ALL_STATUSES:
        raise InvalidTransition(f"unknown status {current!r}")

    if current in TERMINAL_STATUSES:
        return current

    if action == SUBMIT_A:
        if current == PENDING:
            return SLOT_A_SUBMITTED
        if current == SLOT_B_SUBMITTED:
            return COMPLETED
        return current

    if action == SUBMIT_B:
        if current == PENDING:
            return SLOT_B_SUBMITTED
        if current == SLOT_A_SUBMITTED:
            return COMPLETED
        return current

    if action == EXPIRE:
        return FLAKED

    if action == REPLACE:
        return REPLACED

    raise InvalidTransition(f"unknown action {action!r}")


def submit_action_for_slot(slot: str) -> str:
    if slot == "a":
        return SUBMIT_A
    if slot == "b":
        return SUBMIT_B
    raise InvalidTransition(f"unknown slot {slot!r}")
