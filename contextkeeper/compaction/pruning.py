"""Message pruning and round-splitting utilities."""

import math
import sys
from dataclasses import replace
from typing import Any, Callable, Sequence

from contextkeeper.compaction.types import (
    CLEARED_PLACEHOLDER,
    TRUNCATED_MARKER,
    Message,
    ToolMessage,
)


def split_into_rounds(messages: Sequence[Message]) -> list[list[int]]:
    """
    Group transcript positions into rounds.

    A round is one user message plus every following non-user message up to
    the next user message. Messages before the first user message form a
    leading round of their own.

    Args:
        messages: Transcript to split.

    Returns:
        List of rounds, each a list of indices into ``messages``.
    """
    rounds: list[list[int]] = []
    current: list[int] = []

    for index, message in enumerate(messages):
        if message.role == "user":
            if current:
                rounds.append(current)
            current = [index]
        else:
            current.append(index)

    if current:
        rounds.append(current)

    return rounds


def truncate_text(text: str, keep_chars: int, marker: str) -> str:
    """Keep the first ``keep_chars`` characters of ``text`` and append ``marker``."""
    return text[:keep_chars] + marker


def truncate_tool_results(
    messages: list[Message],
    max_chars: int,
    keep_chars: int,
    marker: str = TRUNCATED_MARKER,
    skip: Callable[[int], bool] | None = None,
) -> int:
    """
    Truncate oversized tool results in place.

    Args:
        messages: Transcript to edit; entries are replaced, not mutated.
        max_chars: Tool content longer than this is truncated.
        keep_chars: Characters kept from the start of the content.
        marker: Suffix appended after the kept prefix.
        skip: Optional predicate on the index; matching messages are left alone.

    Returns:
        Number of messages truncated.
    """
    truncated = 0
    for index, message in enumerate(messages):
        if skip is not None and skip(index):
            continue
        if not isinstance(message, ToolMessage):
            continue
        if message.content and len(message.content) > max_chars:
            messages[index] = replace(
                message, content=truncate_text(message.content, keep_chars, marker)
            )
            truncated += 1
    return truncated


def scrub_tool_results(
    messages: list[Message],
    protect_last: int,
    is_satisfied: Callable[[], bool],
    placeholder: str = CLEARED_PLACEHOLDER,
) -> int:
    """
    Replace older tool results with a placeholder, newest first.

    The scan stops as soon as ``is_satisfied()`` returns True. Tool messages
    among the last ``protect_last`` positions are never touched.

    Args:
        messages: Transcript to edit in place.
        protect_last: Size of the untouched tail.
        is_satisfied: Called before each step; True ends the scan.
        placeholder: Replacement content.

    Returns:
        Number of messages scrubbed.
    """
    scrubbed = 0
    boundary = len(messages) - protect_last
    for index in range(len(messages) - 1, -1, -1):
        if is_satisfied():
            break
        message = messages[index]
        if isinstance(message, ToolMessage) and index < boundary:
            if message.content != placeholder:
                scrubbed += 1
            messages[index] = replace(message, content=placeholder)
    return scrubbed


def coerce_keep_last(value: Any, default: int) -> int:
    """
    Normalize a caller-supplied "keep the last N" count.

    Missing, zero, NaN, boolean and non-numeric values fall back to
    ``default``. Negative counts keep nothing, positive infinity and
    fractions below one keep everything, other fractions are truncated.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        if value == 0:
            return default
        return max(0, min(value, sys.maxsize))
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if math.isnan(number) or number == 0:
        return default
    if math.isinf(number) or 0 < number < 1:
        return sys.maxsize if number > 0 else 0
    return max(0, int(number))


def keep_tail(messages: Sequence[Message], count: int) -> list[Message]:
    """Return the last ``count`` messages (none when ``count`` <= 0)."""
    if count <= 0:
        return []
    return list(messages[-count:])
