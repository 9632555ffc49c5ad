"""
Run outcome vocabulary shared by the pipelines and the audit.
"""

from enum import Enum
from typing import Any


def plain(items: list[tuple[str, Any]]) -> dict:
    """asdict factory that flattens enums to their values."""
    return {k: v.value if isinstance(v, Enum) else v for k, v in items}


class RunStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(str, Enum):
    ALREADY_EXISTS = "already_exists"
    NOT_MATURED = "not_matured"
    NO_RESULTS = "no_results"
