"""Lifecycle state machines for orders, eSIM records and upload OTPs."""

from simbridge.common.errors import InvalidTransition


ORDER_RECEIVED = "RECEIVED"
ORDER_PROCESSING = "PROCESSING"
ORDER_COMPLETED = "COMPLETED"
ORDER_FAILED = "FAILED"

ORDER_TRANSITIONS: dict[str, set[str]] = {
    ORDER_RECEIVED: {ORDER_PROCESSING, ORDER_COMPLETED, ORDER_FAILED},
    ORDER_PROCESSING: {ORDER_COMPLETED, ORDER_FAILED},
    ORDER_COMPLETED: set(),
    ORDER_FAILED: set(),
}

ESIM_PENDING = "PENDING"
ESIM_PROCESS = "PROCESS"
ESIM_READY = "READY"
ESIM_COMPLETED = "COMPLETED"
ESIM_PENDING_CONFIRMATION = "PENDING_CONFIRMATION"
ESIM_DONE = "DONE"
ESIM_FAILED = "FAILED"

ESIM_TRANSITIONS: dict[str, set[str]] = {
    # PENDING: provisioning material stored, not yet confirmed by the delivery.
    ESIM_PENDING: {ESIM_READY, ESIM_COMPLETED, ESIM_FAILED},
    # PROCESS is only ever the finalize lock.
    ESIM_PROCESS: {ESIM_PENDING_CONFIRMATION, ESIM_DONE, ESIM_FAILED},
    ESIM_READY: {ESIM_PROCESS, ESIM_FAILED},
    ESIM_COMPLETED: {ESIM_PROCESS, ESIM_FAILED},
    ESIM_PENDING_CONFIRMATION: {ESIM_DONE, ESIM_FAILED},
    ESIM_FAILED: {ESIM_PROCESS},
    ESIM_DONE: set(),
}

# States from which a finalize attempt may take the PROCESS lock.
ESIM_LOCKABLE: tuple[str, ...] = (ESIM_READY, ESIM_COMPLETED, ESIM_FAILED)

SYNC_SUCCESS = "SUCCESS"
SYNC_FAILED = "FAILED"

OTP_PENDING = "PENDING"
OTP_CONFIRMED = "CONFIRMED"
OTP_EXPIRED = "EXPIRED"
OTP_FAILED = "FAILED"

# Sync ledger target services.
FULFILLMENT_TARGET = "fulfillment-api"
FINALIZE_TARGET = "finalize-pdf"


def validate_transition(current: str, new: str, transitions: dict[str, set[str]] = ORDER_TRANSITIONS) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in transitions.get(current, set()):
        raise InvalidTransition(f"Invalid transition: {current} -> {new}")


def predecessors(target: str, transitions: dict[str, set[str]]) -> tuple[str, ...]:
    """States that may legally move to `target`."""

    return tuple(sorted(state for state, targets in transitions.items() if target in targets))


def is_terminal_order_status(status: str) -> bool:
    return not ORDER_TRANSITIONS.get(status)
