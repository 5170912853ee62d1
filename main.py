"""
Explorer gateway entry point.
Serves the resilient API layer over HTTP with uvicorn.
"""

import sys

import uvicorn
from loguru import logger

from gateway.app import create_app
from gateway.settings import global_settings


def main() -> None:
    """Configure logging and run the server."""
    logger.remove()
    logger.add(
        sys.stdout,
        level=global_settings.log_level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>",
        backtrace=not global_settings.is_production,
        diagnose=not global_settings.is_production,
    )

    logger.info(
        f"Starting explorer gateway on {global_settings.host}:{global_settings.port} "
        f"({global_settings.environment})"
    )

    try:
        uvicorn.run(
            create_app(),
            host=global_settings.host,
            port=global_settings.port,
            log_level=global_settings.log_level.lower(),
        )
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    finally:
        logger.info("Explorer gateway stopped")


if __name__ == "__main__":
    main()
