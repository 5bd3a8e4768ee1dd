#!/usr/bin/env python3
"""
Wallet Ledger Entry Point

Starts the FastAPI server with the ledger store wired to the configured
storage backend.
"""

import sys

import uvicorn

from wallet_ledger.config import get_config
from wallet_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, config.log_format)
    logger.info(f"Starting Wallet Ledger API on {config.api_host}:{config.api_port}")
    logger.info(f"Storage backend: {config.database_url}")
    
    try:
        uvicorn.run(
            "wallet_ledger.api:create_app",
            factory=True,
            host=config.api_host,
            port=config.api_port,
            log_level=config.log_level.lower()
        )
    except KeyboardInterrupt:
        logger.info("Shutting down Wallet Ledger API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
