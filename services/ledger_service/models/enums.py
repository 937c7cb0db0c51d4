"""Enums for the Ledger Service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class Network(str, enum.Enum):
    BTC = "BTC"
    ETH = "ETH"
    TRON = "TRON"
    USDT = "USDT"
    BNB = "BNB"
    SOL = "SOL"


class RateMode(str, enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"


class TopupStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    DETECTED = "detected"
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"


class WithdrawStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class TierRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class EntryType(str, enum.Enum):
    TOPUP = "topup"
    COMMISSION = "commission"
    WITHDRAWAL = "withdrawal"
    WITHDRAWAL_SETTLEMENT = "withdrawal_settlement"
    REWARD_CREDIT = "reward_credit"


class EntryDirection(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


# Payment statuses that mean the gateway has seen the funds settle
SETTLED_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.CONFIRMED, PaymentStatus.COMPLETED}
)

# Payment statuses from which a topup may still be cancelled
CANCELLABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING})

# Forward order of a payment on chain; a later report never moves it back
PAYMENT_PROGRESS = (
    PaymentStatus.PENDING,
    PaymentStatus.DETECTED,
    PaymentStatus.CONFIRMING,
    PaymentStatus.CONFIRMED,
    PaymentStatus.COMPLETED,
)


def payment_status_predecessors(status: PaymentStatus) -> frozenset:
    """Payment statuses a topup may move to ``status`` from."""
    if status == PaymentStatus.EXPIRED:
        return frozenset({PaymentStatus.PENDING})
    if status == PaymentStatus.FAILED:
        return frozenset(PAYMENT_PROGRESS) - SETTLED_PAYMENT_STATUSES
    earlier = PAYMENT_PROGRESS[: PAYMENT_PROGRESS.index(status)]
    if not earlier:
        return frozenset()
    # funds seen after expiry or failure still count
    return frozenset(earlier) | {PaymentStatus.EXPIRED, PaymentStatus.FAILED}

MIN_LEVEL = 1
MAX_LEVEL = 5
LEVELS = tuple(range(MIN_LEVEL, MAX_LEVEL + 1))
