# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Nostamp Contributors

"""Process entry point for the notary."""

from __future__ import annotations

import asyncio
import logging

from .core.config import load_settings
from .core.exceptions import ConfigException
from .core.logging import configure_logging
from .service import NotaryService

logger = logging.getLogger(__name__)


def main() -> int:
    """Read configuration from the environment and run until interrupted.

    Returns 1 if the configuration cannot be read, 0 otherwise.
    """
    try:
        settings = load_settings()
    except ConfigException as e:
        configure_logging()
        logger.critical(f"Failed to read configuration from environment: {e}")
        return 1

    configure_logging(settings)
    service = NotaryService(settings)

    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    return 0
