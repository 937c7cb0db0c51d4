"""FastAPI application for the Ledger Service."""

from fastapi import FastAPI
from libs.common.middleware import add_observability_middleware
from services.ledger_service.routers.admin import router as admin_router
from services.ledger_service.routers.member import router as ledger_router
from services.ledger_service.routers.webhooks import router as webhooks_router


def create_app() -> FastAPI:
    """Create and configure the Ledger Service FastAPI app."""
    app = FastAPI(
        title="Reward & Settlement Ledger",
        version="0.1.0",
        description="Balances, crypto top-ups, reward withdrawals and tier upgrades.",
    )
    add_observability_middleware(app)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "ledger"}

    # Member-facing routes
    # Gateway: /api/v1/ledger/{path} → /ledger/{path}
    app.include_router(ledger_router)

    # Admin routes
    # Gateway: /api/v1/admin/ledger/{path} → /admin/ledger/{path}
    app.include_router(admin_router)

    # Payment gateway push (secret-verified, no bearer auth)
    app.include_router(webhooks_router)

    return app


app = create_app()
