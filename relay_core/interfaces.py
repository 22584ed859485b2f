"""
Contracts for the collaborators the orchestration core depends on.
Uses Protocol classes for structural subtyping (no inheritance required).

The core never talks to a language model, a tool, or a configuration source
directly; it goes through these interfaces. Reference implementations live in
``config``, ``tool_filter``, ``prompt_builder`` and ``tools``.
"""

from typing import TYPE_CHECKING
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from .models import DelegationTarget
from .models import ModelResponse
from .models import RelayConfiguration
from .models import ToolDescriptor

if TYPE_CHECKING:
    from .cancellation import CancellationToken
    from .conversation import ConversationLog
    from .registry import ExecutionContext


@runtime_checkable
class ConfigurationProvider(Protocol):
    """Supplies the entry agent and every agent profile."""

    async def load_configuration(self) -> RelayConfiguration:
        """
        Load the active configuration.

        Read once per agent initialization; the core never mutates it.

        Raises:
            ConfigurationError: The configuration is missing or malformed.
        """
        ...


@runtime_checkable
class ToolFilter(Protocol):
    """Resolves which tools an agent may use."""

    async def get_available_tools(self, agent_name: str) -> list[ToolDescriptor]:
        """
        Tool descriptors an agent is permitted to call.

        Raises:
            ToolAccessError: The agent or one of its tools cannot be resolved.
        """
        ...

    async def has_tool_access(self, agent_name: str, tool_name: str) -> bool:
        ...


@runtime_checkable
class PromptBuilder(Protocol):
    """Extends base system prompts with delegation information."""

    def build_system_prompt(
        self, base_prompt: str, agent_name: str, config: RelayConfiguration
    ) -> str:
        ...

    def get_delegation_targets(
        self, agent_name: str, config: RelayConfiguration
    ) -> list[DelegationTarget]:
        ...


@runtime_checkable
class ModelInvoker(Protocol):
    """The only collaborator allowed to think."""

    async def invoke(
        self,
        conversation: "ConversationLog",
        tool_schemas: list[ToolDescriptor],
        cancellation: "CancellationToken",
    ) -> ModelResponse:
        """
        Run one model turn over the full conversation.

        Args:
            conversation: Conversation so far (read-only for the invoker)
            tool_schemas: Tools the model may call
            cancellation: Token to observe for aborting long requests

        Returns:
            The model's text and requested tool calls, in order
        """
        ...


@runtime_checkable
class ToolExecutor(Protocol):
    """Executes named tools on behalf of an agent."""

    async def execute(
        self, tool_name: str, parameters: dict[str, Any], context: "ExecutionContext"
    ) -> Any:
        """
        Execute one tool call. May raise; the loop turns failures into
        conversation feedback.
        """
        ...
