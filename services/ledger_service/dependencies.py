"""FastAPI dependencies shared by the ledger routers."""

from fastapi import Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.ledger_service.models import Account
from services.ledger_service.services.accounts import get_or_create_account
from services.ledger_service.services.payment_gateway import (  # noqa: F401
    PaymentGatewayClient,
    get_payment_gateway,
)
from services.ledger_service.services.rate_oracle import (  # noqa: F401
    RateOracle,
    get_rate_oracle,
)
from sqlalchemy.ext.asyncio import AsyncSession


async def get_current_account(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
) -> Account:
    """The caller's ledger account, provisioned on first use."""
    return await get_or_create_account(db, current_user)
