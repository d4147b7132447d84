#!/usr/bin/env python3
"""
Back Office Entry Point

Starts the FastAPI server with the configured storage backend.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from backoffice.api import run_server
from backoffice.config import get_config
from backoffice.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, fmt=config.log_format)

    logger.info(f"Starting back office on http://{config.api_host}:{config.api_port}")
    logger.info(f"Storage: {config.storage_backend} ({config.database_path})")
    if not config.webhook_url:
        logger.info("Webhook delivery disabled")

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=False,
            log_level=config.log_level
        )
    except KeyboardInterrupt:
        logger.info("Shutting down back office")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
