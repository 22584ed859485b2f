"""
Shared registries for execution contexts and pending delegations, plus the
status history of every conversation.

All maps are keyed by ``conversation_id``. Every method is synchronous and
never awaits, so each operation is atomic with respect to the event loop:
a record inserted before a delegate's task starts is always visible to a
``report_out`` from that delegate, and ``pop_delegation`` hands a record to
at most one caller.
"""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .delegation import DelegationRecord
    from .registry import ConversationInfo
    from .registry import ExecutionContext

logger = logging.getLogger(__name__)


class RelayStore:
    """Injectable store shared by the context registry and the delegation engine."""

    def __init__(self):
        self._contexts: dict[str, "ExecutionContext"] = {}
        self._delegations: dict[str, "DelegationRecord"] = {}
        self._conversations: dict[str, "ConversationInfo"] = {}

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def put_context(self, context: "ExecutionContext") -> None:
        if context.conversation_id in self._contexts:
            raise KeyError(f"Context already stored: {context.conversation_id}")
        self._contexts[context.conversation_id] = context

    def get_context(self, conversation_id: str) -> "ExecutionContext | None":
        return self._contexts.get(conversation_id)

    def remove_context(self, conversation_id: str) -> "ExecutionContext | None":
        return self._contexts.pop(conversation_id, None)

    def remove_contexts(
        self, predicate: Callable[["ExecutionContext"], bool]
    ) -> list["ExecutionContext"]:
        """Remove and return every context matching ``predicate``."""
        removed = [c for c in self._contexts.values() if predicate(c)]
        for context in removed:
            del self._contexts[context.conversation_id]
        return removed

    def contexts(self) -> list["ExecutionContext"]:
        """Snapshot in insertion (creation) order."""
        return list(self._contexts.values())

    # ------------------------------------------------------------------
    # Pending delegations
    # ------------------------------------------------------------------

    def add_delegation(self, record: "DelegationRecord") -> None:
        if record.conversation_id in self._delegations:
            raise KeyError(f"Delegation already pending: {record.conversation_id}")
        self._delegations[record.conversation_id] = record
        logger.debug(
            f"Pending delegation {record.delegation_id} -> {record.conversation_id}"
        )

    def get_delegation(self, conversation_id: str) -> "DelegationRecord | None":
        return self._delegations.get(conversation_id)

    def pop_delegation(self, conversation_id: str) -> "DelegationRecord | None":
        return self._delegations.pop(conversation_id, None)

    def find_delegation(self, to_agent: str) -> "DelegationRecord | None":
        """Oldest pending delegation targeting ``to_agent``."""
        for record in self._delegations.values():
            if record.to_agent == to_agent:
                return record
        return None

    def find_delegation_by_id(self, delegation_id: str) -> "DelegationRecord | None":
        for record in self._delegations.values():
            if record.delegation_id == delegation_id:
                return record
        return None

    def delegations(self) -> list["DelegationRecord"]:
        return list(self._delegations.values())

    # ------------------------------------------------------------------
    # Conversation history
    # ------------------------------------------------------------------

    def put_conversation(self, info: "ConversationInfo") -> None:
        self._conversations[info.conversation_id] = info

    def get_conversation(self, conversation_id: str) -> "ConversationInfo | None":
        return self._conversations.get(conversation_id)

    def conversations(self) -> list["ConversationInfo"]:
        """Every known conversation, live or finished, in creation order."""
        return list(self._conversations.values())

    def forget_conversations(
        self, predicate: Callable[["ConversationInfo"], bool]
    ) -> int:
        forgotten = [c.conversation_id for c in self._conversations.values() if predicate(c)]
        for conversation_id in forgotten:
            del self._conversations[conversation_id]
        return len(forgotten)
