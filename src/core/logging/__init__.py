"""
Structured logging module.

Provides JSON logging with correlation IDs and context propagation.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    reset_log_context,
    set_log_context,
)
from core.logging.context_managers import LogContext, OperationContext
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import (
    generate_cycle_id,
    get_log_file_path,
    setup_logging,
)
from core.logging.utilities import error_fields, log_exception, log_with_context

__all__ = [
    # Setup
    "setup_logging",
    "generate_cycle_id",
    "get_log_file_path",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    "reset_log_context",
    # Context Managers
    "LogContext",
    "OperationContext",
    # Utilities
    "log_with_context",
    "log_exception",
    "error_fields",
]
