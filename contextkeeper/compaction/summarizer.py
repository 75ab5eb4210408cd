"""Local, extractive summaries of discarded transcript segments."""

from typing import Iterable, Sequence

from contextkeeper.compaction.types import (
    SUMMARY_CONTEXT_PREFIX,
    SUMMARY_HEADER,
    SUMMARY_SEPARATOR,
    AssistantMessage,
    Message,
    SystemMessage,
    UserMessage,
)


def summarize_messages(messages: Iterable[Message], snippet_chars: int = 100) -> str | None:
    """
    Build a summary block from messages in order.

    User messages contribute ``User: <snippet>``; assistant messages with
    non-empty content contribute ``Assistant: <snippet>``. Tool and system
    messages contribute nothing.

    Args:
        messages: Messages to summarize.
        snippet_chars: Characters kept from each message.

    Returns:
        The summary text, or None if no message contributed a line.
    """
    lines: list[str] = []
    for message in messages:
        if isinstance(message, UserMessage):
            lines.append(f"User: {(message.content or '')[:snippet_chars]}")
        elif isinstance(message, AssistantMessage) and message.content:
            lines.append(f"Assistant: {message.content[:snippet_chars]}")

    if not lines:
        return None
    return SUMMARY_HEADER + "".join(f"{line}\n" for line in lines)


def summarize_rounds(
    messages: Sequence[Message],
    rounds: Iterable[Iterable[int]],
    snippet_chars: int = 100,
) -> str | None:
    """Summarize the messages referenced by ``rounds`` (lists of indices)."""
    return summarize_messages(
        (messages[index] for round_ in rounds for index in round_ if 0 <= index < len(messages)),
        snippet_chars,
    )


def build_summary_message(summaries: Sequence[str], limit: int = 3) -> SystemMessage | None:
    """
    Build the synthetic system message that re-injects recent summaries.

    Only the last ``limit`` entries are surfaced; older ones stay in the log.
    """
    if not summaries or limit <= 0:
        return None
    recent = list(summaries[-limit:])
    return SystemMessage(SUMMARY_CONTEXT_PREFIX + SUMMARY_SEPARATOR.join(recent))
