"""Error taxonomy for delegation and agentic-loop execution.

Every error raised by the orchestration core derives from ``RelayError`` so
callers can catch the whole family, or pick out one failure mode:

- ``ConfigurationError``: malformed or missing profile / entry agent.
- ``DelegationError``: unknown or disallowed target, missing source context.
- ``CircularDelegationError``: the delegation would repeat a name in the chain.
- ``DelegationTimeoutError``: the delegation deadline elapsed.
- ``ToolAccessError``: tool not permitted or not found.
- ``AgentExecutionError``: a loop or initialization failure; the original
  exception is available via ``__cause__``.

None of these are retried by the core. Callers decide on fallback policy.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base for all orchestration errors.

    Attributes:
        agent_name: Agent the error is attributed to, if known.
        details: Free-form diagnostic payload.
    """

    error_type = "relay_error"

    def __init__(
        self,
        message: str,
        *,
        agent_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.agent_name = agent_name
        self.details = details or {}

    def __repr__(self) -> str:
        parts = [repr(str(self))]
        if self.agent_name is not None:
            parts.append(f"agent_name={self.agent_name!r}")
        if self.details:
            parts.append(f"details={self.details!r}")
        return f"{type(self).__name__}({', '.join(parts)})"


class ConfigurationError(RelayError):
    """Profile or configuration is malformed or missing."""

    error_type = "configuration_error"


class DelegationError(RelayError):
    """Delegation rejected: unknown target, permission denied, or cleaned up."""

    error_type = "delegation_error"


class CircularDelegationError(DelegationError):
    """Delegation would close a cycle in the delegation chain.

    Attributes:
        delegation_chain: Ancestor names (root-first) including the delegator.
    """

    error_type = "circular_delegation"

    def __init__(
        self,
        message: str,
        *,
        delegation_chain: list[str] | tuple[str, ...] = (),
        agent_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, agent_name=agent_name, details=details)
        self.delegation_chain = tuple(delegation_chain)


class DelegationTimeoutError(DelegationError):
    """Delegation deadline elapsed before the delegate reported."""

    error_type = "delegation_timeout"

    def __init__(
        self,
        message: str,
        *,
        deadline: float | None = None,
        agent_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, agent_name=agent_name, details=details)
        self.deadline = deadline


class ToolAccessError(RelayError):
    """Tool is not permitted for the agent, or does not exist."""

    error_type = "tool_access_error"

    def __init__(
        self,
        message: str,
        *,
        tool_name: str | None = None,
        agent_name: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, agent_name=agent_name, details=details)
        self.tool_name = tool_name


class AgentExecutionError(RelayError):
    """An agent run failed.

    Attributes:
        iteration: Loop iteration in which the failure happened (0 when the
            failure happened before the loop started).
    """

    error_type = "agent_execution_error"

    def __init__(
        self,
        message: str,
        *,
        agent_name: str | None = None,
        iteration: int = 0,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, agent_name=agent_name, details=details)
        self.iteration = iteration

    def __repr__(self) -> str:
        base = super().__repr__()
        return f"{base[:-1]}, iteration={self.iteration!r})"
