"""Tool that lets the model compact its own context on demand."""

import json
from typing import Any

from contextkeeper.agent.tools.base import Tool
from contextkeeper.compaction.manager import ContextManager
from contextkeeper.compaction.types import MANAGE_ACTIONS


class ManageContextTool(Tool):
    """
    Expose ``ContextManager.manage`` to the language model.

    Actions:
    - summarize: fold older messages into the summary log
    - clear_old: drop everything but the most recent messages
    - clear_tool_results: shorten long tool outputs
    - keep_essential: keep user/system turns and substantive assistant replies
    """

    def __init__(self, manager: ContextManager):
        self._manager = manager

    @property
    def name(self) -> str:
        return "manage_context"

    @property
    def description(self) -> str:
        return (
            "Manage the conversation context when it grows too large. "
            "Use 'summarize' to fold older turns into a summary, 'clear_old' to drop old messages, "
            "'clear_tool_results' to shorten long tool outputs, or 'keep_essential' to keep only "
            "user turns and substantive replies."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": list(MANAGE_ACTIONS),
                    "description": "Management operation to run",
                },
                "keep_last": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Number of most recent messages to keep",
                },
            },
            "required": ["action"],
        }

    async def execute(self, action: str, keep_last: int | None = None, **kwargs: Any) -> str:
        """
        Run the management action.

        Args:
            action: One of the enumerated actions.
            keep_last: Optional tail size for summarize / clear_old.
                ``keepLast`` is accepted as an alias.

        Returns:
            JSON with ``ok``, ``message`` and ``affected``.
        """
        if keep_last is None:
            keep_last = kwargs.get("keepLast")
        options: dict[str, Any] = {}
        if keep_last is not None:
            options["keep_last"] = keep_last
        result = self._manager.manage(action, options)
        stats = self._manager.get_stats()
        payload = result.to_dict()
        payload["stats"] = {"tokens": stats.tokens, "usage_percent": stats.usage_percent}
        return json.dumps(payload, ensure_ascii=False)
