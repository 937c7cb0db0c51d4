"""Account models: spendable balance, tier and per-level reward state."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.ledger_service.models.enums import Network, enum_values
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class Account(Base):
    """A member's ledger account. One per authenticated user."""

    __tablename__ = "ledger_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    auth_id: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False
    )
    email: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    display_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    balance: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False
    )
    tier: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_ledger_account_balance_non_negative"),
        CheckConstraint("tier >= 1 AND tier <= 5", name="ck_ledger_account_tier_range"),
    )

    def __repr__(self) -> str:
        return f"<Account {self.id} auth_id={self.auth_id} balance={self.balance} tier={self.tier}>"


class AccountLevel(Base):
    """Per-level state: completion flag, commission percentage, cached USD total."""

    __tablename__ = "ledger_account_levels"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledger_accounts.id"), index=True, nullable=False
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    commission_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0.00"), nullable=False
    )
    # Derived from the per-network map; rewritten whenever an override changes
    reward_total_usd: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("account_id", "level", name="uq_ledger_account_level"),
        CheckConstraint("level >= 1 AND level <= 5", name="ck_ledger_level_range"),
        CheckConstraint(
            "commission_percent >= 0 AND commission_percent <= 100",
            name="ck_ledger_level_commission_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<AccountLevel account={self.account_id} level={self.level} completed={self.completed}>"


class AccountNetworkReward(Base):
    """Per-account override of a level's reward in one network."""

    __tablename__ = "ledger_account_network_rewards"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledger_accounts.id"), index=True, nullable=False
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    network: Mapped[Network] = mapped_column(
        SAEnum(
            Network,
            name="ledger_network_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(30, 10), default=Decimal("0"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id", "level", "network", name="uq_ledger_account_network_reward"
        ),
        CheckConstraint("amount >= 0", name="ck_ledger_network_reward_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<AccountNetworkReward account={self.account_id} L{self.level} {self.network.value}={self.amount}>"
