"""Tests for ContextManager bookkeeping and automatic compaction."""

import json
import math

import pytest

from contextkeeper.compaction.estimator import estimate_message_tokens
from contextkeeper.compaction.manager import ContextManager
from contextkeeper.compaction.types import (
    CLEARED_PLACEHOLDER,
    TRUNCATED_MARKER,
    AssistantMessage,
    CompactionConfig,
    SystemMessage,
    ToolMessage,
    UserMessage,
)


def _build_rounds(manager: ContextManager, count: int) -> None:
    for i in range(count):
        manager.add_user_message(f"question {i}")
        manager.add_assistant_message(f"answer {i}")


# ── Appending ───────────────────────────────────────────────────────


class TestAppend:
    def test_preserves_order(self):
        manager = ContextManager(max_tokens=100_000)
        manager.add_user_message("one")
        manager.add_assistant_message("two")
        manager.add_user_message("three")
        manager.add_assistant_message("four")
        assert [m.content for m in manager.messages] == ["one", "two", "three", "four"]
        assert [m.role for m in manager.messages] == ["user", "assistant", "user", "assistant"]

    def test_assistant_with_tool_calls(self):
        manager = ContextManager()
        calls = [{"id": "c1", "type": "function", "function": {"name": "ls", "arguments": "{}"}}]
        manager.add_assistant_message(None, calls)
        message = manager.messages[0]
        assert isinstance(message, AssistantMessage)
        assert message.content == ""
        assert message.tool_calls == tuple(calls)

    def test_assistant_empty_tool_calls_dropped(self):
        manager = ContextManager()
        manager.add_assistant_message("hi", [])
        assert manager.messages[0].tool_calls is None
        assert "tool_calls" not in manager.messages[0].to_dict()

    def test_tool_result_string_passthrough(self):
        manager = ContextManager()
        manager.add_tool_result("c1", "read_file", "plain text")
        message = manager.messages[0]
        assert isinstance(message, ToolMessage)
        assert message.content == "plain text"
        assert message.tool_call_id == "c1"
        assert message.tool_name == "read_file"

    def test_tool_result_json_serialized(self):
        manager = ContextManager()
        manager.add_tool_result("c1", "ls", {"files": ["a", "b"], "count": 2})
        assert json.loads(manager.messages[0].content) == {"files": ["a", "b"], "count": 2}

    def test_add_message_accepts_system_entries(self):
        manager = ContextManager()
        manager.add_message(SystemMessage("note"))
        assert manager.messages == [SystemMessage("note")]

    def test_messages_view_is_a_copy(self):
        manager = ContextManager()
        manager.add_user_message("a")
        manager.messages.append(UserMessage("b"))
        assert len(manager) == 1


# ── Pins ────────────────────────────────────────────────────────────


class TestPins:
    def test_pin_valid_index(self):
        manager = ContextManager()
        manager.add_user_message("a")
        manager.pin_message(0)
        assert manager.pinned == frozenset({0})

    @pytest.mark.parametrize("index", [-1, 1, 99, "0", None, 0.0, True])
    def test_invalid_pins_ignored(self, index):
        manager = ContextManager()
        manager.add_user_message("a")
        manager.pin_message(index)
        assert manager.pinned == frozenset()

    def test_pinned_tool_result_not_truncated(self):
        manager = ContextManager(max_tokens=100_000)
        manager.add_user_message("fetch it")
        manager.add_tool_result("c1", "fetch", "x" * 600)
        manager.pin_message(1)
        manager.set_max_tokens(200)
        report = manager.add_user_message("next")

        assert report.triggered
        assert manager.messages[1].content == "x" * 600

    def test_pin_lost_after_round_summarization(self):
        manager = ContextManager(max_tokens=100_000)
        _build_rounds(manager, 6)
        manager.pin_message(0)
        manager.set_max_tokens(10)

        manager.add_user_message("question 6")

        # The pinned message survived the edit, but the pin itself is gone.
        assert manager.messages[0] == UserMessage("question 0")
        assert manager.pinned == frozenset()

        # Without its pin the message is evicted by the next summarization.
        manager.add_user_message("question 7")
        assert UserMessage("question 0") not in manager.messages

    def test_clear_resets_pins(self):
        manager = ContextManager()
        manager.add_user_message("a")
        manager.pin_message(0)
        manager.clear()
        assert manager.pinned == frozenset()


# ── Automatic compaction ────────────────────────────────────────────


class TestCompaction:
    def test_no_op_under_watermark(self):
        manager = ContextManager(max_tokens=100_000)
        report = manager.add_user_message("hello")
        assert not report.triggered
        assert report.tokens_before == report.tokens_after

    def test_watermark_truncates_long_tool_results(self):
        manager = ContextManager(max_tokens=1000)
        manager.add_user_message("hi")
        report = manager.add_tool_result("c1", "dump", "x" * 3000)

        assert "truncate_tool_results" in report.strategies
        assert report.truncated == 1
        content = manager.messages[1].content
        assert content == "x" * 300 + TRUNCATED_MARKER
        assert len(content) <= 330
        assert manager.estimate_total_tokens() <= 1000 * 0.85
        # Truncation alone was enough; later strategies never ran
        assert report.strategies == ["truncate_tool_results"]

    def test_seven_rounds_keeps_last_five(self):
        manager = ContextManager(max_tokens=100_000)
        _build_rounds(manager, 6)
        manager.set_max_tokens(10)

        report = manager.add_user_message("question 6")

        assert "summarize_rounds" in report.strategies
        assert report.summarized_rounds == 2
        assert report.messages_removed == 4
        assert [m.content for m in manager.messages] == [
            "question 2", "answer 2",
            "question 3", "answer 3",
            "question 4", "answer 4",
            "question 5", "answer 5",
            "question 6",
        ]
        assert len(manager.summaries) == 1
        summary = manager.summaries[0]
        assert "User: question 0" in summary
        assert "Assistant: answer 1" in summary
        assert "question 2" not in summary

    def test_six_rounds_are_not_summarized(self):
        manager = ContextManager(max_tokens=100_000)
        _build_rounds(manager, 5)
        manager.set_max_tokens(10)
        manager.add_user_message("question 5")
        assert manager.summaries == []
        assert len(manager) == 11

    def test_leading_tool_round_is_folded_without_summary_line(self):
        manager = ContextManager(max_tokens=100_000)
        # Leading tool-only round contributes nothing to a summary
        manager.add_tool_result("c0", "boot", "ok")
        for i in range(5):
            manager.add_user_message(f"q{i}")
        manager.set_max_tokens(10)
        manager.add_user_message("q5")
        # Rounds: [tool], q0..q5 -> 7 rounds, old = [tool], [q0]
        assert len(manager.summaries) == 1
        assert "User: q0" in manager.summaries[0]
        assert [m.content for m in manager.messages] == ["q1", "q2", "q3", "q4", "q5"]

    def test_summarization_runs_once_per_pass(self):
        manager = ContextManager(max_tokens=100_000)
        _build_rounds(manager, 12)
        manager.set_max_tokens(10)
        manager.add_user_message("question 12")
        # 13 rounds, one pass folds 8 of them; exactly one summary entry
        assert len(manager.summaries) == 1
        assert len(manager) == 9

    def test_scrub_stops_once_under_watermark(self):
        manager = ContextManager(max_tokens=1_000_000)
        manager.add_user_message("go")
        manager.add_assistant_message("")
        for i in range(6):
            manager.add_tool_result(f"c{i}", "search", "r" * 400)

        final = AssistantMessage("done")
        full = manager.estimate_total_tokens() + estimate_message_tokens(final)
        manager.set_max_tokens(math.ceil((full - 50) / 0.85))

        report = manager.add_message(final)

        assert report.strategies == ["truncate_tool_results", "summarize_rounds", "scrub_tool_results"]
        assert report.scrubbed == 1
        contents = [m.content for m in manager.messages]
        # Index 4 is the newest tool result outside the last four positions
        assert contents[4] == CLEARED_PLACEHOLDER
        assert contents[2] == "r" * 400
        assert contents[3] == "r" * 400
        assert contents[5:8] == ["r" * 400] * 3

    def test_scrub_ignores_pins(self):
        manager = ContextManager(max_tokens=1_000_000)
        manager.add_user_message("go")
        manager.add_tool_result("c0", "search", "r" * 400)
        for i in range(4):
            manager.add_assistant_message(f"step {i}")
        manager.pin_message(1)
        manager.set_max_tokens(10)
        manager.add_assistant_message("end")
        assert manager.messages[1].content == CLEARED_PLACEHOLDER

    def test_never_evicts_system_prompt_or_summaries(self):
        manager = ContextManager(max_tokens=100_000)
        manager.set_system_prompt("You are helpful.")
        _build_rounds(manager, 6)
        manager.set_max_tokens(1)
        manager.add_user_message("question 6")
        messages = manager.get_messages()
        assert messages[0] == SystemMessage("You are helpful.")
        assert messages[1].content.startswith("Summary of earlier conversation:")

    def test_set_max_tokens_applies_on_next_append(self):
        manager = ContextManager(max_tokens=100_000)
        manager.add_user_message("hi")
        manager.add_tool_result("c1", "dump", "x" * 1000)
        manager.set_max_tokens(10)
        assert manager.messages[1].content == "x" * 1000
        manager.add_user_message("again")
        assert manager.messages[1].content.endswith(TRUNCATED_MARKER)

    def test_custom_config(self):
        config = CompactionConfig(tool_result_max_chars=50, tool_result_keep_chars=10)
        manager = ContextManager(max_tokens=10, config=config)
        manager.add_tool_result("c1", "dump", "y" * 60)
        assert manager.messages[0].content == "y" * 10 + TRUNCATED_MARKER

    def test_zero_budget_does_not_raise(self):
        manager = ContextManager(max_tokens=0)
        manager.add_user_message("hello")
        manager.add_tool_result("c1", "t", "z" * 800)
        stats = manager.get_stats()
        assert stats.max_tokens == 0
        assert stats.tokens > 0


# ── Payload assembly ────────────────────────────────────────────────


class TestGetMessages:
    def test_empty(self):
        assert ContextManager().get_messages() == []

    def test_composition(self):
        manager = ContextManager()
        manager.set_system_prompt("system rules")
        manager.load_state({
            "messages": [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
            "summaries": ["first summary", "second summary"],
        })

        messages = manager.get_messages()

        assert len(messages) == 4
        assert messages[0] == SystemMessage("system rules")
        assert messages[1] == SystemMessage(
            "Summary of earlier conversation:\nfirst summary\n---\nsecond summary"
        )
        assert messages[2:] == [UserMessage("hi"), AssistantMessage("hello")]

    def test_only_last_three_summaries_surface(self):
        manager = ContextManager()
        manager.load_state({"messages": [], "summaries": ["s1", "s2", "s3", "s4"]})
        content = manager.get_messages()[0].content
        assert "s1" not in content
        assert "s2\n---\ns3\n---\ns4" in content
        assert len(manager.summaries) == 4

    def test_repeatable_without_side_effects(self):
        manager = ContextManager()
        manager.set_system_prompt("p")
        manager.add_user_message("hi")
        assert manager.get_messages() == manager.get_messages()
        assert len(manager) == 1

    def test_export_messages(self):
        manager = ContextManager()
        manager.set_system_prompt("p")
        manager.add_user_message("hi")
        manager.add_assistant_message("", [{"id": "c1", "type": "function"}])
        manager.add_tool_result("c1", "ls", "a.txt")
        assert manager.export_messages() == [
            {"role": "system", "content": "p"},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "", "tool_calls": [{"id": "c1", "type": "function"}]},
            {"role": "tool", "tool_call_id": "c1", "name": "ls", "content": "a.txt"},
        ]


# ── Stats & lifecycle ───────────────────────────────────────────────


class TestStatsAndLifecycle:
    def test_stats(self):
        manager = ContextManager(max_tokens=1000)
        manager.add_user_message("hello")
        stats = manager.get_stats()
        assert stats.tokens == manager.estimate_total_tokens()
        assert stats.max_tokens == 1000
        assert stats.usage_percent == round(stats.tokens / 1000 * 100, 1)
        assert stats.message_count == 1
        assert stats.summary_count == 0

    def test_stats_zero_ceiling(self):
        manager = ContextManager(max_tokens=0)
        manager.set_system_prompt("abcde")
        stats = manager.get_stats()
        assert stats.usage_percent == stats.tokens * 100

    def test_system_prompt_counts_toward_total(self):
        manager = ContextManager()
        before = manager.estimate_total_tokens()
        manager.set_system_prompt("rules")
        assert manager.estimate_total_tokens() > before

    def test_clear_keeps_system_prompt(self):
        manager = ContextManager()
        manager.set_system_prompt("rules")
        manager.load_state({"messages": [{"role": "user", "content": "a"}], "summaries": ["s"]})
        manager.clear()
        assert manager.messages == []
        assert manager.summaries == []
        assert manager.get_messages() == [SystemMessage("rules")]

    def test_install_summary(self):
        manager = ContextManager()
        manager.set_system_prompt("rules")
        _build_rounds(manager, 2)
        manager.install_summary("we discussed things")
        assert manager.messages == [SystemMessage("[Context summary]\nwe discussed things")]
        assert manager.get_messages()[0] == SystemMessage("rules")

    def test_install_summary_runs_compaction_check(self):
        manager = ContextManager(max_tokens=10)
        _build_rounds(manager, 2)
        report = manager.install_summary("x" * 400)
        assert report.triggered
        assert len(manager) == 1
        assert manager.messages[0].content.endswith("x" * 400)

    def test_export_and_load_state(self):
        manager = ContextManager()
        manager.add_user_message("hi")
        manager.add_assistant_message("", [{"id": "c1"}])
        manager.add_tool_result("c1", "ls", "files")
        state = manager.export_state()

        restored = ContextManager()
        restored.load_state(json.loads(json.dumps(state)))
        assert restored.messages == manager.messages

    def test_load_state_does_not_compact(self):
        manager = ContextManager(max_tokens=10)
        manager.load_state({"messages": [{"role": "tool", "tool_call_id": "c", "name": "t",
                                          "content": "x" * 900}]})
        assert manager.messages[0].content == "x" * 900

    @pytest.mark.parametrize(
        "state",
        [
            "not a dict",
            {"messages": [{"role": "robot", "content": "beep"}]},
            {"messages": [{"role": "user", "content": 42}]},
            {"messages": [], "summaries": [1, 2]},
            {"messages": 5},
            {"messages": {"role": "user", "content": "a"}},
            {"summaries": 3},
            {"summaries": "abc"},
            {"messages": [{"role": "assistant", "content": "", "tool_calls": 7}]},
            {"messages": [{"role": "assistant", "content": "", "tool_calls": "call"}]},
        ],
    )
    def test_load_state_rejects_malformed(self, state):
        manager = ContextManager()
        manager.add_user_message("keep me")
        with pytest.raises(ValueError):
            manager.load_state(state)
        assert manager.messages == [UserMessage("keep me")]
