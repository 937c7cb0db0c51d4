"""Conversion rate model: USD value of one unit of each network."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.ledger_service.models.enums import Network, RateMode, enum_values
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class ConversionRate(Base):
    """One row per network. Created on first read, never deleted."""

    __tablename__ = "ledger_conversion_rates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    network: Mapped[Network] = mapped_column(
        SAEnum(
            Network,
            name="ledger_network_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        unique=True,
        nullable=False,
    )
    rate_to_usd: Mapped[Decimal] = mapped_column(Numeric(24, 10), nullable=False)
    mode: Mapped[RateMode] = mapped_column(
        SAEnum(
            RateMode,
            name="ledger_rate_mode_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=RateMode.AUTO,
        nullable=False,
    )
    updated_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint("rate_to_usd >= 0", name="ck_ledger_rate_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<ConversionRate {self.network.value}={self.rate_to_usd} mode={self.mode.value}>"
