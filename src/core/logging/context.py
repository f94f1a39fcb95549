"""
Context variables stamped onto every log record.

Values are per asyncio task, so concurrent fetches never see each other's
fetch_id.
"""

from contextvars import ContextVar, Token
from typing import Dict, Optional

LOG_CONTEXT_FIELDS = ("cycle_id", "stage", "workspace_id", "fetch_id")

_context_vars: Dict[str, ContextVar[str]] = {
    name: ContextVar(f"log_{name}", default="") for name in LOG_CONTEXT_FIELDS
}


def set_log_context(**fields: Optional[str]) -> Dict[str, Token]:
    """
    Set context fields for the current task. None values are skipped.

    Returns the tokens that reset_log_context() needs to undo the change.

    Raises:
        TypeError: unknown field name
    """
    tokens: Dict[str, Token] = {}
    for name, value in fields.items():
        if name not in _context_vars:
            raise TypeError(f"Unknown log context field: {name}")
        if value is not None:
            tokens[name] = _context_vars[name].set(str(value))
    return tokens


def reset_log_context(tokens: Dict[str, Token]) -> None:
    for name, token in reversed(list(tokens.items())):
        _context_vars[name].reset(token)


def get_log_context() -> Dict[str, str]:
    return {name: var.get() for name, var in _context_vars.items()}


def clear_log_context() -> None:
    for var in _context_vars.values():
        var.set("")
