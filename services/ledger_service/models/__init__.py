"""Ledger Service models package.

Re-exports all models and enums so that:
  - ``from services.ledger_service.models import Account`` works
  - Alembic env.py sees every table through one import
  - SQLAlchemy's mapper registry sees every model class on import

Every model class AND enum must be listed here.
"""

from services.ledger_service.models.account import (  # noqa: F401
    Account,
    AccountLevel,
    AccountNetworkReward,
)

# Enums
from services.ledger_service.models.enums import (  # noqa: F401
    CANCELLABLE_PAYMENT_STATUSES,
    LEVELS,
    MAX_LEVEL,
    MIN_LEVEL,
    PAYMENT_PROGRESS,
    SETTLED_PAYMENT_STATUSES,
    EntryDirection,
    EntryType,
    Network,
    PaymentStatus,
    RateMode,
    TierRequestStatus,
    TopupStatus,
    WithdrawStatus,
    payment_status_predecessors,
)
from services.ledger_service.models.ledger import BalanceEntry  # noqa: F401
from services.ledger_service.models.rates import ConversionRate  # noqa: F401
from services.ledger_service.models.requests import (  # noqa: F401
    TierRequest,
    TopupRequest,
    WithdrawRequest,
)
from services.ledger_service.models.rewards import NetworkReward  # noqa: F401

__all__ = [
    # Enums and constants
    "CANCELLABLE_PAYMENT_STATUSES",
    "EntryDirection",
    "EntryType",
    "LEVELS",
    "MAX_LEVEL",
    "MIN_LEVEL",
    "Network",
    "PAYMENT_PROGRESS",
    "PaymentStatus",
    "RateMode",
    "SETTLED_PAYMENT_STATUSES",
    "TierRequestStatus",
    "TopupStatus",
    "WithdrawStatus",
    "payment_status_predecessors",
    # Accounts
    "Account",
    "AccountLevel",
    "AccountNetworkReward",
    # Rates and rewards
    "ConversionRate",
    "NetworkReward",
    # Requests
    "TopupRequest",
    "WithdrawRequest",
    "TierRequest",
    # Audit
    "BalanceEntry",
]
