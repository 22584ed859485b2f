"""
Append-only conversation log.

Entries are never removed or mutated once appended; the log doubles as the
audit trail for report fallback and for the tool ledger.
"""

from collections.abc import Iterator
from typing import Any

from .models import ConversationEntry

VALID_ROLES = ("system", "user", "assistant")


class ConversationLog:
    """Ordered sequence of frozen ``ConversationEntry`` objects."""

    def __init__(self, entries: list[ConversationEntry] | None = None):
        self._entries: list[ConversationEntry] = list(entries or [])

    @classmethod
    def initialize(cls, system_prompt: str, first_message: str) -> "ConversationLog":
        """Start a log with the system prompt followed by the first user message."""
        log = cls()
        log.append("system", system_prompt)
        log.append("user", first_message)
        return log

    def append(self, role: str, content: str) -> ConversationEntry:
        if role not in VALID_ROLES:
            raise ValueError(
                f"Invalid role '{role}': expected one of {', '.join(VALID_ROLES)}"
            )
        entry = ConversationEntry(role=role, content=content)
        self._entries.append(entry)
        return entry

    def append_tool_result(self, tool_name: str, result: Any) -> ConversationEntry:
        """Append tool output, tagged so it is distinguishable from user text."""
        content = result if isinstance(result, str) else str(result)
        entry = ConversationEntry(
            role="user",
            content=f"Tool {tool_name} result: {content}",
            kind="tool_result",
            tool_name=tool_name,
        )
        self._entries.append(entry)
        return entry

    def last(self) -> ConversationEntry | None:
        return self._entries[-1] if self._entries else None

    def snapshot(self) -> tuple[ConversationEntry, ...]:
        return tuple(self._entries)

    def to_messages(self) -> list[dict[str, Any]]:
        """Provider-ready ``{"role", "content"}`` dicts."""
        messages = []
        for entry in self._entries:
            message: dict[str, Any] = {"role": entry.role, "content": entry.content}
            if entry.kind == "tool_result":
                message["tool_name"] = entry.tool_name
            messages.append(message)
        return messages

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ConversationEntry]:
        return iter(tuple(self._entries))
