#!/usr/bin/env python3
"""
Lending Core Entry Point

Starts the FastAPI server with the lending engine. Host, port and logging
come from LENDING_* environment variables (see lending_core/config.py).
"""

import sys

from lending_core.config import get_config
from lending_core.logging_config import configure_from_settings
from lending_core.api import run_server


if __name__ == "__main__":
    settings = get_config()
    logger = configure_from_settings(settings)
    logger.info("Starting lending core API on %s:%d (storage: %s)",
                settings.api_host, settings.api_port, settings.storage_backend)

    try:
        run_server(
            host=settings.api_host,
            port=settings.api_port,
            debug=False
        )
    except KeyboardInterrupt:
        logger.info("Shutting down lending core API")
    except Exception as e:
        logger.exception("Error starting server: %s", e)
        sys.exit(1)
