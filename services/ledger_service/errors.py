"""Ledger error taxonomy.

Each error is an ``HTTPException`` so services can raise it directly and
FastAPI renders ``{"detail": ...}`` with the right status code.
"""

from typing import Optional

from fastapi import HTTPException, status


class LedgerError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str, status_code: Optional[int] = None):
        super().__init__(status_code=status_code or self.status_code, detail=detail)


class LedgerValidationError(LedgerError):
    """Bad input: non-positive amount, unknown network, tier out of range."""

    status_code = status.HTTP_400_BAD_REQUEST


class TierUpgradeBlockedError(LedgerValidationError):
    """Rewards of a completed level have not all been withdrawn yet."""

    def __init__(self, blocked_levels: dict[int, list[str]]):
        self.blocked_levels = blocked_levels
        parts = [
            f"level {level}: {', '.join(networks)}"
            for level, networks in sorted(blocked_levels.items())
        ]
        super().__init__(
            "Withdraw all network rewards before upgrading tier ("
            + "; ".join(parts)
            + ")"
        )


class UnauthorizedError(LedgerError):
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(UnauthorizedError):
    """Caller does not own the request it is acting on."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(LedgerError):
    """Request already terminal, or a duplicate pending request exists."""

    status_code = status.HTTP_409_CONFLICT


class InsufficientFundsError(LedgerError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, required, available):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance: {required} USD required, {available} USD available"
        )


class UpstreamUnavailableError(LedgerError):
    """Payment gateway or price source unreachable."""

    status_code = status.HTTP_502_BAD_GATEWAY
