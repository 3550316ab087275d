from __future__ import annotations

PENDING = "PENDING"
PROCESSING = "PROCESSING"
PROVISIONING = "PROVISIONING"
ACTIVE = "ACTIVE"
EXPIRING_SOON = "EXPIRING_SOON"
EXPIRED = "EXPIRED"
SUSPENDED = "SUSPENDED"
TERMINATED = "TERMINATED"
FAILED = "FAILED"
CANCELED = "CANCELED"
# legacy payment-gateway flow
PENDING_PAYMENT = "PENDING_PAYMENT"
PAID = "PAID"

ALL_STATUSES = (
    PENDING,
    PROCESSING,
    PROVISIONING,
    ACTIVE,
    EXPIRING_SOON,
    EXPIRED,
    SUSPENDED,
    TERMINATED,
    FAILED,
    CANCELED,
    PENDING_PAYMENT,
    PAID,
)

VALID_TRANSITIONS: dict[str, tuple[str, ...]] = {
    PENDING: (PROCESSING, FAILED, CANCELED),
    PROCESSING: (PROVISIONING, FAILED),
    PROVISIONING: (ACTIVE, FAILED),
    ACTIVE: (EXPIRING_SOON, SUSPENDED, TERMINATED),
    EXPIRING_SOON: (ACTIVE, EXPIRED),
    EXPIRED: (ACTIVE, SUSPENDED, TERMINATED),
    SUSPENDED: (ACTIVE, TERMINATED),
    TERMINATED: (),
    FAILED: (PROCESSING,),
    CANCELED: (),
    PENDING_PAYMENT: (PAID, CANCELED, PROCESSING),
    PAID: (PROVISIONING,),
}

_DESCRIPTIONS: dict[tuple[str, str], str] = {
    (PENDING, PROCESSING): "Balance deducted, processing started",
    (PENDING, FAILED): "Order failed before processing",
    (PENDING, CANCELED): "Order canceled by user",
    (PROCESSING, PROVISIONING): "VPS provisioning started",
    (PROCESSING, FAILED): "Processing failed",
    (PROVISIONING, ACTIVE): "VPS provisioned successfully",
    (PROVISIONING, FAILED): "Provisioning failed, balance refunded",
    (ACTIVE, EXPIRING_SOON): "VPS is about to expire",
    (ACTIVE, SUSPENDED): "VPS suspended",
    (ACTIVE, TERMINATED): "VPS terminated",
    (EXPIRING_SOON, ACTIVE): "VPS renewed",
    (EXPIRING_SOON, EXPIRED): "VPS expired",
    (EXPIRED, ACTIVE): "VPS renewed after expiry",
    (EXPIRED, SUSPENDED): "VPS suspended after expiry",
    (EXPIRED, TERMINATED): "VPS terminated after expiry",
    (SUSPENDED, ACTIVE): "VPS restored from suspension",
    (SUSPENDED, TERMINATED): "VPS terminated after grace period",
    (FAILED, PROCESSING): "Provisioning retried by admin",
    (PENDING_PAYMENT, PAID): "Payment received",
    (PENDING_PAYMENT, CANCELED): "Order canceled before payment",
    (PENDING_PAYMENT, PROCESSING): "Payment received, processing started",
    (PAID, PROVISIONING): "VPS provisioning started",
}


def is_valid_transition(current: str, new: str) -> bool:
    return new in VALID_TRANSITIONS.get(current, ())


def valid_next_states(current: str) -> list[str]:
    return list(VALID_TRANSITIONS.get(current, ()))


def is_terminal(status: str) -> bool:
    return status in VALID_TRANSITIONS and not VALID_TRANSITIONS[status]


def describe_transition(current: str, new: str) -> str:
    return _DESCRIPTIONS.get((current, new), f"Status changed from {current} to {new}")
