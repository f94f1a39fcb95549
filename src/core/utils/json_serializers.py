# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""Shared JSON serialization for log records and fetch results."""

import dataclasses
from datetime import date, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any


def json_serializer(obj: Any) -> Any:
    """
    Type-safe ``default=`` hook for json.dumps.

    - datetime/date -> ISO 8601 string
    - timedelta -> total seconds (float)
    - Enum -> value
    - dataclass instance -> dict (LogEntry, TimeRange, CircuitStats, ...)
    - Path -> string
    - Everything else -> string (fallback)

    Numbers stay numbers instead of being stringified by ``default=str``.
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, Enum):
        return obj.value
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, Path):
        return str(obj)
    return str(obj)


__all__ = ["json_serializer"]
