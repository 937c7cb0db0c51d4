"""Ledger Service schemas package."""

from services.ledger_service.schemas.account import (  # noqa: F401
    AccountLevelResponse,
    AccountListResponse,
    AccountResponse,
    BalanceEntryResponse,
    CommissionUpdateRequest,
    LevelCompleteRequest,
)
from services.ledger_service.schemas.rates import (  # noqa: F401
    BulkRateUpdateRequest,
    ConversionRateResponse,
    RateModeRequest,
    RateTableResponse,
    SingleRateUpdateRequest,
)
from services.ledger_service.schemas.rewards import (  # noqa: F401
    AccountRewardsUpdateRequest,
    CommissionLine,
    CommissionQuoteRequest,
    CommissionQuoteResponse,
    GlobalRewardRequest,
    GlobalRewardResponse,
    LevelRewardsResponse,
    RewardLineResponse,
    WithdrawalSummaryResponse,
)
from services.ledger_service.schemas.tier import (  # noqa: F401
    TierEligibilityResponse,
    TierRequestCreate,
    TierRequestListResponse,
    TierRequestResponse,
    TierReviewRequest,
)
from services.ledger_service.schemas.topup import (  # noqa: F401
    TopupApproveRequest,
    TopupCreateRequest,
    TopupListResponse,
    TopupRejectRequest,
    TopupResponse,
)
from services.ledger_service.schemas.webhook import (  # noqa: F401
    PaymentWebhookPayload,
    WebhookResponse,
)
from services.ledger_service.schemas.withdraw import (  # noqa: F401
    DirectWithdrawRequest,
    RewardWithdrawRequest,
    WithdrawApproveRequest,
    WithdrawListResponse,
    WithdrawRejectRequest,
    WithdrawResponse,
)

__all__ = [
    # Account
    "AccountLevelResponse",
    "AccountListResponse",
    "AccountResponse",
    "BalanceEntryResponse",
    "CommissionUpdateRequest",
    "LevelCompleteRequest",
    # Rates
    "BulkRateUpdateRequest",
    "ConversionRateResponse",
    "RateModeRequest",
    "RateTableResponse",
    "SingleRateUpdateRequest",
    # Rewards
    "AccountRewardsUpdateRequest",
    "CommissionLine",
    "CommissionQuoteRequest",
    "CommissionQuoteResponse",
    "GlobalRewardRequest",
    "GlobalRewardResponse",
    "LevelRewardsResponse",
    "RewardLineResponse",
    "WithdrawalSummaryResponse",
    # Tier
    "TierEligibilityResponse",
    "TierRequestCreate",
    "TierRequestListResponse",
    "TierRequestResponse",
    "TierReviewRequest",
    # Topup
    "TopupApproveRequest",
    "TopupCreateRequest",
    "TopupListResponse",
    "TopupRejectRequest",
    "TopupResponse",
    # Webhook
    "PaymentWebhookPayload",
    "WebhookResponse",
    # Withdraw
    "DirectWithdrawRequest",
    "RewardWithdrawRequest",
    "WithdrawApproveRequest",
    "WithdrawListResponse",
    "WithdrawRejectRequest",
    "WithdrawResponse",
]
