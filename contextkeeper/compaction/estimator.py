"""Token estimation for messages."""

import json
import math
import re
from typing import Iterable

from contextkeeper.compaction.types import MESSAGE_OVERHEAD_TOKENS, Message

# CJK Unified Ideographs and Extension A
_CJK_PATTERN = re.compile(r"[\u4e00-\u9fff\u3400-\u4dbf]")

TOKENS_PER_CJK_CHAR = 1.5
TOKENS_PER_OTHER_CHAR = 0.4


def estimate_tokens(text: str | None) -> int:
    """
    Estimate the number of tokens in a text string.

    This is a character-weighted heuristic, not a tokenizer: CJK ideographs
    count 1.5 each, every other character 0.4.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count.
    """
    if not text:
        return 0

    cjk_count = len(_CJK_PATTERN.findall(text))
    other_count = len(text) - cjk_count
    return math.ceil(cjk_count * TOKENS_PER_CJK_CHAR + other_count * TOKENS_PER_OTHER_CHAR)


def estimate_message_tokens(message: Message) -> int:
    """
    Estimate tokens for a single message.

    Args:
        message: Any Message variant.

    Returns:
        Estimated token count.
    """
    # Role overhead (approximately 4 tokens per message for formatting)
    tokens = MESSAGE_OVERHEAD_TOKENS
    tokens += estimate_tokens(message.role)

    if isinstance(message.content, str):
        tokens += estimate_tokens(message.content)

    tool_calls = getattr(message, "tool_calls", None)
    if tool_calls:
        serialized = json.dumps(list(tool_calls), ensure_ascii=False, separators=(",", ":"), default=str)
        tokens += estimate_tokens(serialized)

    return tokens


def estimate_messages_tokens(messages: Iterable[Message]) -> int:
    """Estimate total tokens for a list of messages."""
    return sum(estimate_message_tokens(msg) for msg in messages)
