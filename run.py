#!/usr/bin/env python3
"""
Credit Engine Entry Point

Starts the FastAPI server with the settlement scheduler running in the
background. Host, port, storage and logging come from CREDIT_ENGINE_*
environment variables (or .env).
"""

import sys

from credit_engine.api import run_server
from credit_engine.config import get_config
from credit_engine.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file
    )
    logger.info(f"Starting credit engine on {config.api_host}:{config.api_port} "
                f"(storage {config.database_url}, settlement every {config.settlement_interval_hours}h)")

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down credit engine")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
