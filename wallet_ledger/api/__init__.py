"""
Wallet Ledger API Application Factory
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import LedgerConfig, get_config
from .accounts import router as accounts_router
from .dependencies import LedgerSystem, get_ledger_system
from .transactions import router as transactions_router


def create_app(system: Optional[LedgerSystem] = None, config: Optional[LedgerConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.
    
    The ledger system is built here (or passed in) and attached to
    ``app.state``; routes receive it through ``get_ledger_system``.
    """
    config = config or (system.config if system else get_config())
    
    app = FastAPI(
        title="Wallet Ledger API",
        description="Ledger entry validation and storage for wallet transfers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.ledger_system = system or LedgerSystem(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    
    @app.get("/health")
    async def health_check():
        """Liveness check"""
        return {
            "status": "healthy",
            "service": "wallet_ledger",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Wallet Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "transactions": "/transactions",
            }
        }
    
    return app


__all__ = ["create_app", "LedgerSystem", "get_ledger_system"]
