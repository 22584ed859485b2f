"""
Cancellation primitives for cooperative loop cancellation.

The core provides the MECHANISM (token with state).
Callers provide the POLICY (when to cancel).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Set


class CancellationState(Enum):
    """Cancellation state machine states."""

    NONE = "none"  # Running normally
    GRACEFUL = "graceful"  # Let the current tool call finish
    IMMEDIATE = "immediate"  # Stop at the next check


@dataclass(eq=False)
class CancellationToken:
    """
    Cancellation token for cooperative cancellation.

    Lives on each ExecutionContext. The loop driver checks it at the top of
    every iteration and right before invoking the model; model invokers
    receive it so they can abort long requests.

    State Machine:
        NONE -> GRACEFUL (caller asks the agent to wind down)
        GRACEFUL -> IMMEDIATE (deadline elapsed or delegation cancelled)

    A delegate's token is registered as a child of its delegator's token, so
    cancelling a delegator cancels the whole delegation subtree.

    Example:
        if context.cancellation.is_cancelled:
            return self._cancelled_result(context)
    """

    _state: CancellationState = field(default=CancellationState.NONE)
    _running_tools: Set[str] = field(default_factory=set)  # tool_call_ids
    _running_tool_names: dict[str, str] = field(
        default_factory=dict
    )  # tool_call_id -> tool_name
    _child_tokens: Set["CancellationToken"] = field(default_factory=set)

    @property
    def state(self) -> CancellationState:
        """Current cancellation state."""
        return self._state

    @property
    def is_cancelled(self) -> bool:
        """True if any cancellation requested (graceful or immediate)."""
        return self._state != CancellationState.NONE

    @property
    def is_graceful(self) -> bool:
        return self._state == CancellationState.GRACEFUL

    @property
    def is_immediate(self) -> bool:
        return self._state == CancellationState.IMMEDIATE

    @property
    def running_tool_names(self) -> list[str]:
        """Names of tools currently executing."""
        return list(self._running_tool_names.values())

    @property
    def child_count(self) -> int:
        return len(self._child_tokens)

    def request_graceful(self) -> bool:
        """
        Request graceful cancellation.

        Returns:
            True if state changed, False if already cancelled
        """
        if self._state == CancellationState.NONE:
            self._state = CancellationState.GRACEFUL
            self._propagate_to_children()
            return True
        return False

    def request_immediate(self) -> bool:
        """
        Request immediate cancellation.

        Returns:
            True if state changed
        """
        if self._state != CancellationState.IMMEDIATE:
            self._state = CancellationState.IMMEDIATE
            self._propagate_to_children()
            return True
        return False

    def register_tool_start(self, tool_call_id: str, tool_name: str) -> None:
        self._running_tools.add(tool_call_id)
        self._running_tool_names[tool_call_id] = tool_name

    def register_tool_complete(self, tool_call_id: str) -> None:
        self._running_tools.discard(tool_call_id)
        self._running_tool_names.pop(tool_call_id, None)

    def register_child(self, child_token: "CancellationToken") -> None:
        """Register a delegate's token for propagation."""
        self._child_tokens.add(child_token)
        # A child joining a cancelled parent starts cancelled
        if self._state == CancellationState.GRACEFUL:
            child_token.request_graceful()
        elif self._state == CancellationState.IMMEDIATE:
            child_token.request_immediate()

    def unregister_child(self, child_token: "CancellationToken") -> None:
        self._child_tokens.discard(child_token)

    def _propagate_to_children(self) -> None:
        for child in list(self._child_tokens):
            if self._state == CancellationState.GRACEFUL:
                child.request_graceful()
            elif self._state == CancellationState.IMMEDIATE:
                child.request_immediate()
