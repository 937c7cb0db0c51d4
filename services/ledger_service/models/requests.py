"""Settlement request models: topups, withdrawals and tier upgrades."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.ledger_service.models.enums import (
    Network,
    PaymentStatus,
    TierRequestStatus,
    TopupStatus,
    WithdrawStatus,
    enum_values,
)
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class TopupRequest(Base):
    """A USD deposit, settled by crypto payment or by an admin."""

    __tablename__ = "ledger_topup_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledger_accounts.id"), index=True, nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    crypto_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(30, 10), nullable=True
    )
    cryptocurrency: Mapped[Network] = mapped_column(
        SAEnum(
            Network,
            name="ledger_network_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    status: Mapped[TopupStatus] = mapped_column(
        SAEnum(
            TopupStatus,
            name="ledger_topup_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=TopupStatus.PENDING,
        nullable=False,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="ledger_payment_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    confirmations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    required_confirmations: Mapped[int] = mapped_column(
        Integer, default=3, nullable=False
    )

    # Automated payment session (absent for manual topups)
    session_id: Mapped[Optional[str]] = mapped_column(
        String, unique=True, index=True, nullable=True
    )
    payment_address: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    tx_hash: Mapped[Optional[str]] = mapped_column(String, index=True, nullable=True)

    # Settlement (immutable once approved)
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_topup_amount_positive"),
        Index("ix_ledger_topups_status_created", "status", "created_at"),
    )

    @property
    def is_automated(self) -> bool:
        return self.session_id is not None

    def __repr__(self) -> str:
        return (
            f"<TopupRequest {self.id} {self.amount} {self.cryptocurrency.value} "
            f"{self.status.value}/{self.payment_status.value}>"
        )


class WithdrawRequest(Base):
    """Cash-out of balance or of a level's network rewards.

    Three shapes share this table:
      - direct balance withdrawal (``is_direct_balance_withdraw``)
      - network rewards sent to an external wallet
      - network rewards credited back to balance (``add_to_balance``)
    """

    __tablename__ = "ledger_withdraw_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledger_accounts.id"), index=True, nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    wallet_address: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    # ["BTC", "ETH"] and {"BTC": "0.1"}; amounts stored as strings to keep precision
    networks: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    network_rewards: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    commission_paid: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False
    )
    is_direct_balance_withdraw: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    add_to_balance: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rewards_added_to_balance: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2), nullable=True
    )
    withdraw_all: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[WithdrawStatus] = mapped_column(
        SAEnum(
            WithdrawStatus,
            name="ledger_withdraw_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=WithdrawStatus.PENDING,
        nullable=False,
    )

    # Set by the admin on approval: where the user must send and how much
    confirmed_wallet: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    confirmed_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_ledger_withdraw_amount_non_negative"),
        CheckConstraint(
            "commission_paid >= 0", name="ck_ledger_withdraw_commission_non_negative"
        ),
        Index("ix_ledger_withdraws_account_level", "account_id", "level"),
    )

    @property
    def is_network_reward(self) -> bool:
        return not self.is_direct_balance_withdraw

    def __repr__(self) -> str:
        return f"<WithdrawRequest {self.id} {self.amount} L{self.level} {self.status.value}>"


class TierRequest(Base):
    """A request to move an account up to a higher tier."""

    __tablename__ = "ledger_tier_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledger_accounts.id"), index=True, nullable=False
    )
    requested_tier: Mapped[int] = mapped_column(Integer, nullable=False)
    current_tier: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TierRequestStatus] = mapped_column(
        SAEnum(
            TierRequestStatus,
            name="ledger_tier_request_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=TierRequestStatus.PENDING,
        nullable=False,
    )
    reviewed_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    admin_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "requested_tier >= 1 AND requested_tier <= 5",
            name="ck_ledger_tier_request_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<TierRequest {self.id} {self.current_tier}->{self.requested_tier} {self.status.value}>"
