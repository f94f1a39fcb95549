"""Root logger configuration for log fetcher processes."""

import logging
import secrets
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG
PLAIN_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

# Azure SDK and HTTP client loggers are capped at WARNING
NOISY_LOGGERS = (
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.identity",
    "azure.identity.aio",
    "azure.monitor.query",
    "urllib3",
    "aiohttp",
)


def get_log_file_path(log_dir: Path, name: str, stage: str | None = None) -> Path:
    """
    ``{log_dir}/{YYYY-MM-DD}/{name}[_{stage}]_{MMDD}_{HHMM}.log``

    e.g. ``logs/2026-01-05/log_fetcher_fetch_0105_1430.log``
    """
    now = datetime.now()
    stem = "_".join(part for part in (name, stage, now.strftime("%m%d_%H%M")) if part)
    return Path(log_dir) / now.strftime("%Y-%m-%d") / f"{stem}.log"


def _file_handler(
    path: Path,
    json_format: bool,
    level: int,
    when: str,
    interval: int,
    backup_count: int,
) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        path,
        when=when,
        interval=interval,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT))
    return handler


def setup_logging(
    name: str = "log_fetcher",
    stage: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = "midnight",
    rotation_interval: int = 1,
    backup_count: int = 7,
    suppress_noisy: bool = True,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Replace the root logger's handlers with a console handler and, unless
    ``log_to_stdout`` is set, a rotating file handler.

    With ``log_to_stdout`` everything down to ``file_level`` goes to stdout,
    which suits containers that collect stdout.

    Returns:
        The logger called ``name``
    """
    if stage:
        set_log_context(stage=stage)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ConsoleFormatter())
    console.setLevel(file_level if log_to_stdout else console_level)

    log_file = None
    if not log_to_stdout:
        log_file = get_log_file_path(log_dir or DEFAULT_LOG_DIR, name, stage)
        root.addHandler(
            _file_handler(
                log_file, json_format, file_level, rotation_when, rotation_interval, backup_count
            )
        )
    root.addHandler(console)

    if suppress_noisy:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized",
        extra={"operation": "setup_logging", "log_file": str(log_file) if log_file else None},
    )
    return logger


def generate_cycle_id() -> str:
    """``c-YYYYMMDD-HHMMSS-xxxx`` with a random hex suffix."""
    return f"c-{datetime.now():%Y%m%d-%H%M%S}-{secrets.token_hex(2)}"
