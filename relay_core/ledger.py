"""Append-only record of the tool calls an agent made."""

from collections.abc import Iterator

from .models import ToolInvocation


class ToolInvocationLedger:
    """
    Ordered, append-only list of ``ToolInvocation`` records.

    ``ToolInvocation`` is frozen but its ``parameters`` and ``result`` may be
    mutable containers, so the ledger stores a deep copy on ``record`` and
    hands out deep copies from every read. Nothing a caller does to a returned
    record reaches the ledger.
    """

    def __init__(self):
        self._records: list[ToolInvocation] = []

    def record(self, invocation: ToolInvocation) -> ToolInvocation:
        stored = invocation.model_copy(deep=True)
        self._records.append(stored)
        return stored.model_copy(deep=True)

    def snapshot(self) -> tuple[ToolInvocation, ...]:
        return tuple(r.model_copy(deep=True) for r in self._records)

    def for_tool(self, tool_name: str) -> list[ToolInvocation]:
        return [r.model_copy(deep=True) for r in self._records if r.tool_name == tool_name]

    @property
    def total_execution_ms(self) -> float:
        return sum(r.execution_time_ms for r in self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ToolInvocation]:
        return iter(self.snapshot())
