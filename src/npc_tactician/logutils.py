"""
Logging helpers shared by the npc-tactician modules.
"""

import logging

LOGGER_NAME = "npc-tactician"

logger = logging.getLogger(LOGGER_NAME)


def configure_logging(debug: bool = False) -> logging.Logger:
    """Set the project logger level from the debug toggle.

    Args:
        debug: When True, log at DEBUG (cache hits, prompts, payload sizes).

    Returns:
        The configured project logger.
    """
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    return logger
