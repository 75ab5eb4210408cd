"""Types for the context-window manager."""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, Union

Role = Literal["system", "user", "assistant", "tool"]

ROLES: tuple[str, ...] = ("system", "user", "assistant", "tool")


@dataclass(frozen=True)
class SystemMessage:
    """System instruction or synthetic context block."""

    content: str
    role: ClassVar[str] = "system"

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class UserMessage:
    """A user turn."""

    content: str
    role: ClassVar[str] = "user"

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class AssistantMessage:
    """An assistant turn, optionally requesting tool calls."""

    content: str = ""
    tool_calls: tuple[dict[str, Any], ...] | None = None
    role: ClassVar[str] = "assistant"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = list(self.tool_calls)
        return data


@dataclass(frozen=True)
class ToolMessage:
    """Result of one tool invocation."""

    content: str
    tool_call_id: str
    tool_name: str
    role: ClassVar[str] = "tool"

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "tool_call_id": self.tool_call_id,
            "name": self.tool_name,
            "content": self.content,
        }


Message = Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage]


def message_from_dict(data: dict[str, Any]) -> Message:
    """
    Build a Message from an OpenAI-style chat payload.

    Args:
        data: Dict with at least a ``role`` key.

    Returns:
        The matching Message variant.

    Raises:
        ValueError: If the payload is not a dict, a field has the wrong type,
            or the role is unknown.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Message must be a dict, got {type(data).__name__}")

    role = data.get("role")
    content = data.get("content")
    if content is None:
        content = ""
    elif not isinstance(content, str):
        raise ValueError(f"Message content must be a string (role={role!r})")

    if role == "system":
        return SystemMessage(content)
    if role == "user":
        return UserMessage(content)
    if role == "assistant":
        tool_calls = data.get("tool_calls")
        if tool_calls is not None and not isinstance(tool_calls, list):
            raise ValueError(f"tool_calls must be a list, got {type(tool_calls).__name__}")
        return AssistantMessage(content, tuple(tool_calls) if tool_calls else None)
    if role == "tool":
        return ToolMessage(
            content,
            tool_call_id=str(data.get("tool_call_id", "")),
            tool_name=str(data.get("name", data.get("tool_name", ""))),
        )
    raise ValueError(f"Unknown message role: {role!r}")


@dataclass
class CompactionConfig:
    """Thresholds for automatic compaction and housekeeping."""

    # Compaction starts once usage crosses this share of max_tokens
    trigger_ratio: float = 0.85

    # Strategy 1: truncate long tool results
    tool_result_max_chars: int = 500
    tool_result_keep_chars: int = 300

    # Strategy 2: summarize rounds beyond the recent window
    summarize_after_rounds: int = 6
    keep_recent_rounds: int = 5
    summary_snippet_chars: int = 100

    # Strategy 3: scrub tool results outside the tail
    scrub_protect_last: int = 4

    # Summaries re-injected into the model payload
    summaries_in_context: int = 3

    # Pre-call housekeeping (usage percentages)
    housekeeping_clear_tools_percent: float = 70.0
    housekeeping_summarize_percent: float = 85.0
    housekeeping_keep_last: int = 6


@dataclass
class CompactionReport:
    """What one automatic compaction pass did."""

    tokens_before: int
    tokens_after: int
    strategies: list[str] = field(default_factory=list)
    truncated: int = 0
    summarized_rounds: int = 0
    messages_removed: int = 0
    scrubbed: int = 0

    @property
    def triggered(self) -> bool:
        return bool(self.strategies)


@dataclass
class ManageResult:
    """Outcome of a manual management action."""

    ok: bool
    message: str
    affected: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "message": self.message, "affected": self.affected}


@dataclass
class ContextStats:
    """Read-only snapshot of context usage."""

    tokens: int
    max_tokens: int
    usage_percent: float
    message_count: int
    summary_count: int


# Markers written into edited messages
TRUNCATED_MARKER = "\n[content truncated]"
CLEARED_PLACEHOLDER = "[result cleared]"
MANUAL_TRUNCATED_MARKER = "...[truncated]"

SUMMARY_HEADER = "[History summary]\n"
SUMMARY_CONTEXT_PREFIX = "Summary of earlier conversation:\n"
SUMMARY_SEPARATOR = "\n---\n"
INSTALLED_SUMMARY_PREFIX = "[Context summary]\n"

MESSAGE_OVERHEAD_TOKENS = 4
DEFAULT_MAX_TOKENS = 8192

MANAGE_ACTIONS: tuple[str, ...] = (
    "summarize",
    "clear_old",
    "clear_tool_results",
    "keep_essential",
)
