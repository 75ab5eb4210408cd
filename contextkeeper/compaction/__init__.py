"""Compaction system for context management."""

from contextkeeper.compaction.estimator import (
    estimate_tokens,
    estimate_message_tokens,
    estimate_messages_tokens,
)
from contextkeeper.compaction.summarizer import (
    summarize_messages,
    summarize_rounds,
    build_summary_message,
)
from contextkeeper.compaction.pruning import (
    split_into_rounds,
    truncate_tool_results,
    scrub_tool_results,
    coerce_keep_last,
)
from contextkeeper.compaction.manager import ContextManager
from contextkeeper.compaction.types import (
    AssistantMessage,
    CompactionConfig,
    CompactionReport,
    ContextStats,
    ManageResult,
    Message,
    SystemMessage,
    ToolMessage,
    UserMessage,
    message_from_dict,
)

__all__ = [
    # Estimator
    "estimate_tokens",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    # Summarizer
    "summarize_messages",
    "summarize_rounds",
    "build_summary_message",
    # Pruning
    "split_into_rounds",
    "truncate_tool_results",
    "scrub_tool_results",
    "coerce_keep_last",
    # Manager
    "ContextManager",
    # Types
    "AssistantMessage",
    "CompactionConfig",
    "CompactionReport",
    "ContextStats",
    "ManageResult",
    "Message",
    "SystemMessage",
    "ToolMessage",
    "UserMessage",
    "message_from_dict",
]
