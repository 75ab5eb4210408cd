"""Configuration schema using Pydantic."""

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from contextkeeper.compaction.types import CompactionConfig


class HousekeepingConfig(BaseModel):
    """Pre-call housekeeping thresholds (usage percentages)."""
    clear_tools_percent: float = 70.0
    summarize_percent: float = 85.0
    keep_last: int = 6


class ContextConfig(BaseModel):
    """Context window configuration."""
    max_tokens: int = 8192
    trigger_ratio: float = 0.85  # Compaction watermark, share of max_tokens
    tool_result_max_chars: int = 500
    tool_result_keep_chars: int = 300
    summarize_after_rounds: int = 6
    keep_recent_rounds: int = 5
    summary_snippet_chars: int = 100
    scrub_protect_last: int = 4
    summaries_in_context: int = 3
    housekeeping: HousekeepingConfig = Field(default_factory=HousekeepingConfig)

    def to_compaction_config(self) -> CompactionConfig:
        """Build the runtime thresholds used by ContextManager."""
        return CompactionConfig(
            trigger_ratio=self.trigger_ratio,
            tool_result_max_chars=self.tool_result_max_chars,
            tool_result_keep_chars=self.tool_result_keep_chars,
            summarize_after_rounds=self.summarize_after_rounds,
            keep_recent_rounds=self.keep_recent_rounds,
            summary_snippet_chars=self.summary_snippet_chars,
            scrub_protect_last=self.scrub_protect_last,
            summaries_in_context=self.summaries_in_context,
            housekeeping_clear_tools_percent=self.housekeeping.clear_tools_percent,
            housekeeping_summarize_percent=self.housekeeping.summarize_percent,
            housekeeping_keep_last=self.housekeeping.keep_last,
        )


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class Config(BaseSettings):
    """Root configuration for contextkeeper."""
    context: ContextConfig = Field(default_factory=ContextConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="CONTEXTKEEPER_",
        env_nested_delimiter="__",
    )
