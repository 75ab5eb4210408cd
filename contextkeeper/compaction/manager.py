"""Context-window manager for a single conversation."""

import json
from typing import Any, Callable

from loguru import logger

from contextkeeper.compaction.estimator import estimate_message_tokens
from contextkeeper.compaction.pruning import (
    coerce_keep_last,
    keep_tail,
    scrub_tool_results,
    split_into_rounds,
    truncate_tool_results,
)
from contextkeeper.compaction.summarizer import (
    build_summary_message,
    summarize_messages,
    summarize_rounds,
)
from contextkeeper.compaction.types import (
    DEFAULT_MAX_TOKENS,
    INSTALLED_SUMMARY_PREFIX,
    MANUAL_TRUNCATED_MARKER,
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

# Messages shielded from manual summarization and from keep_essential
_MANUAL_TAIL = 3
_SUMMARIZE_KEEP_LAST = 4
_CLEAR_OLD_KEEP_LAST = 6
_CLEAR_TOOL_RESULTS_CHARS = 100


class ContextManager:
    """
    Keeps one conversation's transcript within a token budget.

    Every append runs a compaction check. Once the estimated total crosses
    the watermark (85% of ``max_tokens`` by default), three strategies run in
    order until usage drops back under it:

    1. Truncate long, unpinned tool results.
    2. Fold all but the most recent rounds into the summary log.
    3. Replace older tool results with a placeholder.

    The system prompt and the summary log are never evicted. All work is
    local and synchronous; nothing here calls a model.
    """

    def __init__(self, max_tokens: int = DEFAULT_MAX_TOKENS, config: CompactionConfig | None = None):
        """
        Initialize the manager.

        Args:
            max_tokens: Token ceiling for the assembled payload.
            config: Compaction thresholds.
        """
        self._max_tokens = max_tokens
        self.config = config or CompactionConfig()
        self._messages: list[Message] = []
        self._pinned: set[int] = set()
        self._system_prompt: SystemMessage | None = None
        self._summaries: list[str] = []
        self._manage_handlers: dict[str, Callable[[dict[str, Any]], ManageResult]] = {
            "summarize": self._manage_summarize,
            "clear_old": self._manage_clear_old,
            "clear_tool_results": self._manage_clear_tool_results,
            "keep_essential": self._manage_keep_essential,
        }

    # ------------------------------------------------------------------
    # Configuration and read-only views
    # ------------------------------------------------------------------

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    def set_max_tokens(self, max_tokens: int) -> None:
        """Replace the ceiling; takes effect on the next append."""
        self._max_tokens = max_tokens

    @property
    def system_prompt(self) -> SystemMessage | None:
        return self._system_prompt

    def set_system_prompt(self, prompt: str) -> None:
        """Replace the system prompt. Does not trigger compaction."""
        self._system_prompt = SystemMessage(prompt)

    @property
    def messages(self) -> list[Message]:
        """Copy of the live transcript."""
        return list(self._messages)

    @property
    def summaries(self) -> list[str]:
        """Copy of the summary log."""
        return list(self._summaries)

    @property
    def pinned(self) -> frozenset[int]:
        return frozenset(self._pinned)

    def __len__(self) -> int:
        return len(self._messages)

    # ------------------------------------------------------------------
    # Token accounting
    # ------------------------------------------------------------------

    def estimate_total_tokens(self) -> int:
        """Estimated tokens for the system prompt plus the transcript."""
        total = 0
        if self._system_prompt is not None:
            total += estimate_message_tokens(self._system_prompt)
        for message in self._messages:
            total += estimate_message_tokens(message)
        return total

    def _threshold(self) -> float:
        return (self._max_tokens or 0) * self.config.trigger_ratio

    def _under_watermark(self) -> bool:
        return self.estimate_total_tokens() <= self._threshold()

    def get_stats(self) -> ContextStats:
        """Snapshot of current usage."""
        tokens = self.estimate_total_tokens()
        denominator = self._max_tokens or 1
        return ContextStats(
            tokens=tokens,
            max_tokens=self._max_tokens,
            usage_percent=round(tokens / denominator * 100, 1),
            message_count=len(self._messages),
            summary_count=len(self._summaries),
        )

    # ------------------------------------------------------------------
    # Appending
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> CompactionReport:
        """Append a prebuilt message and run the compaction check."""
        self._messages.append(message)
        return self.check_and_compact()

    def add_user_message(self, content: str) -> CompactionReport:
        return self.add_message(UserMessage(content if content is not None else ""))

    def add_assistant_message(
        self,
        content: str | None,
        tool_calls: list[dict[str, Any]] | None = None,
    ) -> CompactionReport:
        return self.add_message(
            AssistantMessage(content or "", tuple(tool_calls) if tool_calls else None)
        )

    def add_tool_result(self, tool_call_id: str, tool_name: str, result: Any) -> CompactionReport:
        """Append a tool result; non-string results are JSON-serialized."""
        if isinstance(result, str):
            content = result
        else:
            content = json.dumps(result, ensure_ascii=False, default=str)
        return self.add_message(ToolMessage(content, tool_call_id=tool_call_id, tool_name=tool_name))

    def pin_message(self, index: int) -> None:
        """Protect a transcript position from eviction until the next structural edit."""
        if isinstance(index, bool) or not isinstance(index, int):
            return
        if 0 <= index < len(self._messages):
            self._pinned.add(index)

    # ------------------------------------------------------------------
    # Automatic compaction
    # ------------------------------------------------------------------

    def check_and_compact(self) -> CompactionReport:
        """
        Run the tiered compaction pass if usage is over the watermark.

        Returns:
            CompactionReport describing what was done (empty if nothing was).
        """
        tokens_before = self.estimate_total_tokens()
        report = CompactionReport(tokens_before=tokens_before, tokens_after=tokens_before)
        if tokens_before <= self._threshold():
            return report

        cfg = self.config

        # Strategy 1: truncate long tool results
        report.truncated = truncate_tool_results(
            self._messages,
            max_chars=cfg.tool_result_max_chars,
            keep_chars=cfg.tool_result_keep_chars,
            skip=self._pinned.__contains__,
        )
        report.strategies.append("truncate_tool_results")
        if report.truncated:
            logger.debug(f"Truncated {report.truncated} long tool result(s)")

        if not self._under_watermark():
            # Strategy 2: summarize old rounds (once per pass)
            report.strategies.append("summarize_rounds")
            self._summarize_old_rounds(report)

            if not self._under_watermark():
                # Strategy 3: scrub intermediate tool results
                report.strategies.append("scrub_tool_results")
                report.scrubbed = scrub_tool_results(
                    self._messages,
                    protect_last=cfg.scrub_protect_last,
                    is_satisfied=self._under_watermark,
                )

        report.tokens_after = self.estimate_total_tokens()
        logger.info(
            f"Context compaction: {report.tokens_before} -> {report.tokens_after} tokens "
            f"via {', '.join(report.strategies)} "
            f"(truncated={report.truncated}, removed={report.messages_removed}, "
            f"scrubbed={report.scrubbed})"
        )
        return report

    def _summarize_old_rounds(self, report: CompactionReport) -> None:
        cfg = self.config
        rounds = split_into_rounds(self._messages)
        if len(rounds) <= cfg.summarize_after_rounds:
            return

        old_rounds = rounds[: len(rounds) - cfg.keep_recent_rounds]
        old_indices = {index for round_ in old_rounds for index in round_}

        summary = summarize_rounds(self._messages, old_rounds, cfg.summary_snippet_chars)
        if summary:
            self._summaries.append(summary)

        kept = [
            message
            for index, message in enumerate(self._messages)
            if index not in old_indices or index in self._pinned
        ]
        report.summarized_rounds = len(old_rounds)
        report.messages_removed = len(self._messages) - len(kept)
        self._messages = kept
        # Positions shifted; pins no longer refer to the same messages
        self._pinned.clear()
        logger.debug(
            f"Summarized {len(old_rounds)} old round(s), removed {report.messages_removed} message(s)"
        )

    # ------------------------------------------------------------------
    # Payload assembly
    # ------------------------------------------------------------------

    def get_messages(self) -> list[Message]:
        """
        Assemble the exact message list for a model call.

        Order: system prompt (if set), one synthetic system message carrying
        the most recent summaries (if any), then the live transcript.
        """
        result: list[Message] = []
        if self._system_prompt is not None:
            result.append(self._system_prompt)

        summary_message = build_summary_message(self._summaries, self.config.summaries_in_context)
        if summary_message is not None:
            result.append(summary_message)

        result.extend(self._messages)
        return result

    def export_messages(self) -> list[dict[str, Any]]:
        """``get_messages()`` in chat-completion payload form."""
        return [message.to_dict() for message in self.get_messages()]

    # ------------------------------------------------------------------
    # Manual management
    # ------------------------------------------------------------------

    def manage(self, action: Any, options: dict[str, Any] | None = None) -> ManageResult:
        """
        Run an on-demand management action.

        Args:
            action: One of summarize, clear_old, clear_tool_results, keep_essential.
            options: Optional dict; ``keep_last`` (or ``keepLast``) sets the tail size.

        Returns:
            ManageResult. Unknown actions yield ``ok=False`` without mutation.
        """
        handler = self._manage_handlers.get(action) if isinstance(action, str) else None
        if handler is None:
            logger.debug(f"Ignoring unknown context action: {action!r}")
            return ManageResult(ok=False, message=f"Unknown operation: {action}")

        if not isinstance(options, dict):
            options = {}
        return handler(options)

    @staticmethod
    def _keep_last_option(options: dict[str, Any], default: int) -> int:
        value = options.get("keep_last", options.get("keepLast"))
        return coerce_keep_last(value, default)

    def _replace_transcript(self, messages: list[Message]) -> int:
        removed = len(self._messages) - len(messages)
        self._messages = messages
        if removed:
            self._pinned.clear()
        return removed

    def _manage_summarize(self, options: dict[str, Any]) -> ManageResult:
        head = self._messages[:-_MANUAL_TAIL] if len(self._messages) > _MANUAL_TAIL else []
        summary = summarize_messages(head, self.config.summary_snippet_chars)
        if not summary:
            return ManageResult(ok=True, message="Nothing to summarize")

        self._summaries.append(summary)
        keep_last = self._keep_last_option(options, _SUMMARIZE_KEEP_LAST)
        removed = self._replace_transcript(keep_tail(self._messages, keep_last))
        logger.info(f"Context summarized: {removed} message(s) folded into summary log")
        return ManageResult(
            ok=True,
            message=f"Context summarized; removed {removed} message(s)",
            affected=removed,
        )

    def _manage_clear_old(self, options: dict[str, Any]) -> ManageResult:
        keep_last = self._keep_last_option(options, _CLEAR_OLD_KEEP_LAST)
        if len(self._messages) <= keep_last:
            return ManageResult(ok=True, message="Nothing to clear")

        removed = self._replace_transcript(keep_tail(self._messages, keep_last))
        logger.info(f"Cleared {removed} old message(s)")
        return ManageResult(ok=True, message=f"Removed {removed} old message(s)", affected=removed)

    def _manage_clear_tool_results(self, options: dict[str, Any]) -> ManageResult:
        cleared = truncate_tool_results(
            self._messages,
            max_chars=_CLEAR_TOOL_RESULTS_CHARS,
            keep_chars=_CLEAR_TOOL_RESULTS_CHARS,
            marker=MANUAL_TRUNCATED_MARKER,
        )
        if cleared:
            logger.info(f"Truncated {cleared} tool result(s)")
        return ManageResult(ok=True, message=f"Truncated {cleared} tool result(s)", affected=cleared)

    def _manage_keep_essential(self, options: dict[str, Any]) -> ManageResult:
        tail_start = len(self._messages) - _MANUAL_TAIL
        kept = [
            message
            for index, message in enumerate(self._messages)
            if isinstance(message, (UserMessage, SystemMessage))
            or (isinstance(message, AssistantMessage) and message.content)
            or index >= tail_start
        ]
        removed = self._replace_transcript(kept)
        if removed:
            logger.info(f"Kept essential messages; removed {removed}")
        return ManageResult(
            ok=True,
            message=f"Kept essential messages; removed {removed}",
            affected=removed,
        )

    def auto_manage(self) -> list[ManageResult]:
        """
        Pre-call housekeeping for the agent loop.

        Usage above the clear-tools threshold truncates tool results; usage
        above the summarize threshold also folds history into a summary.
        Both checks use the usage measured before either action runs.
        """
        cfg = self.config
        usage = self.get_stats().usage_percent
        results: list[ManageResult] = []
        if usage > cfg.housekeeping_clear_tools_percent:
            results.append(self.manage("clear_tool_results"))
        if usage > cfg.housekeeping_summarize_percent:
            results.append(self.manage("summarize", {"keep_last": cfg.housekeeping_keep_last}))
        return results

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Drop transcript, pins and summaries. The system prompt stays."""
        self._messages = []
        self._pinned.clear()
        self._summaries = []

    def install_summary(self, summary: str) -> CompactionReport:
        """Replace the whole history with one externally produced summary."""
        self.clear()
        return self.add_message(SystemMessage(INSTALLED_SUMMARY_PREFIX + summary))

    def export_state(self) -> dict[str, Any]:
        """Transcript and summary log in a JSON-serializable form."""
        return {
            "messages": [message.to_dict() for message in self._messages],
            "summaries": list(self._summaries),
        }

    def load_state(self, state: dict[str, Any]) -> None:
        """
        Restore a conversation exported by ``export_state``.

        Messages are installed verbatim; no compaction runs.

        Raises:
            ValueError: If the state or one of its messages is malformed.
        """
        if not isinstance(state, dict):
            raise ValueError("Context state must be a dict")

        raw_messages = state.get("messages") or []
        if not isinstance(raw_messages, list):
            raise ValueError("Context messages must be a list")
        messages = [message_from_dict(item) for item in raw_messages]

        summaries = state.get("summaries") or []
        if not isinstance(summaries, list):
            raise ValueError("Context summaries must be a list")
        if not all(isinstance(item, str) for item in summaries):
            raise ValueError("Context summaries must be strings")

        self.clear()
        self._messages = messages
        self._summaries = list(summaries)
