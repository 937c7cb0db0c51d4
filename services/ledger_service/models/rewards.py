"""Global default network rewards per level."""

import uuid
from datetime import datetime
from decimal import Decimal

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.ledger_service.models.enums import Network, enum_values
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Integer, Numeric, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class NetworkReward(Base):
    """Default reward for a (level, network), used when an account has no override."""

    __tablename__ = "ledger_network_rewards"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
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
    reward_amount: Mapped[Decimal] = mapped_column(
        Numeric(30, 10), default=Decimal("0"), nullable=False
    )
    commission_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("0.00"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("level", "network", name="uq_ledger_network_reward_level"),
        CheckConstraint("reward_amount >= 0", name="ck_ledger_default_reward_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<NetworkReward L{self.level} {self.network.value}={self.reward_amount} active={self.is_active}>"
