"""
btlogging.helpers module provides helper functions for the chainstate logging system.
"""

import logging
from typing import Generator


def all_loggers() -> Generator["logging.Logger", None, None]:
    """Yields every logger registered with the logging root manager, skipping placeholders and adapters."""
    for logger in logging.root.manager.loggerDict.values():
        if isinstance(logger, logging.Logger):
            yield logger
