"""
Structured logging module.

Provides JSON logging with cycle IDs and context propagation.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import (
    generate_cycle_id,
    get_log_file_path,
    log_controller_startup,
    setup_logging,
)
from core.logging.utilities import log_exception

__all__ = [
    # Setup
    "setup_logging",
    "generate_cycle_id",
    "get_log_file_path",
    "log_controller_startup",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Utilities
    "log_exception",
]
