"""
Output validator.

Remote agents sometimes answer a soft failure with syntactically valid
but empty JSON. Such answers must count as failed attempts, not be
persisted as success.
"""

from typing import Any


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, dict):
        return len(value) == 0 or all(_is_empty(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return len(value) == 0 or all(_is_empty(v) for v in value)
    return False


def is_valid_output(output: Any) -> bool:
    """
    Decide whether an agent response is usable content.

    Rejects None, blank strings and the literal "{}", empty maps/lists,
    and structures whose every value is itself empty.
    """
    if output is None:
        return False

    if isinstance(output, str):
        stripped = output.strip()
        return stripped not in ("", "{}")

    if isinstance(output, (dict, list, tuple)):
        return not _is_empty(output)

    # Numbers and booleans are content
    return True
