"""
Core data models for relay-core.
Uses Pydantic for validation and serialization.
"""

from datetime import datetime
from typing import Any
from typing import Literal

from pydantic import AliasChoices
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic import model_validator

# Built-in tool names understood by the loop and the delegation layer
REPORT_OUT_TOOL = "reportOut"
DELEGATE_WORK_TOOL = "delegateWork"

DEFAULT_MAX_ITERATIONS = 50


class Permissions(BaseModel):
    """Permission variant shared by delegation and tool access.

    ``none`` denies everything, ``all`` allows everything, ``specific`` allows
    only the listed names. ``agents`` or ``tools`` are accepted in place of
    ``names`` (``{"type": "specific", "agents": [...]}``).
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["none", "all", "specific"] = "none"
    names: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_case_keys(cls, data: Any) -> Any:
        if isinstance(data, dict) and "names" not in data:
            for key in ("agents", "tools"):
                if key in data:
                    data = dict(data)
                    data["names"] = data.pop(key) or ()
                    break
        return data

    @field_validator("names")
    @classmethod
    def _names_not_blank(cls, names: tuple[str, ...]) -> tuple[str, ...]:
        for index, name in enumerate(names):
            if not name.strip():
                raise ValueError(f"Name at index {index} must be a non-empty string")
        return names

    @classmethod
    def allow_all(cls) -> "Permissions":
        return cls(type="all")

    @classmethod
    def deny_all(cls) -> "Permissions":
        return cls(type="none")

    @classmethod
    def only(cls, *names: str) -> "Permissions":
        return cls(type="specific", names=tuple(names))

    def allows(self, name: str) -> bool:
        """Whether ``name`` is permitted by this variant."""
        if self.type == "all":
            return True
        if self.type == "specific":
            return name in self.names
        return False


class AgentProfile(BaseModel):
    """Static configuration of one named agent. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique agent name")
    system_prompt: str = Field(
        default="",
        validation_alias=AliasChoices("system_prompt", "systemPrompt"),
        description="Base system prompt for the agent",
    )
    description: str = Field(default="", description="Human-readable description")
    use_for: str = Field(
        default="",
        validation_alias=AliasChoices("use_for", "useFor"),
        description="When other agents should delegate to this one",
    )
    delegation_permissions: Permissions = Field(
        default_factory=Permissions.deny_all,
        validation_alias=AliasChoices("delegation_permissions", "delegationPermissions"),
    )
    tool_permissions: Permissions = Field(
        default_factory=Permissions.deny_all,
        validation_alias=AliasChoices("tool_permissions", "toolPermissions"),
    )


class RelayConfiguration(BaseModel):
    """Complete agent configuration: the entry agent and every profile.

    Structural validation only; semantic checks (name format, duplicates,
    dangling references) live in ``relay_core.config.validate_configuration``.
    """

    entry_agent: str = Field(
        default="",
        validation_alias=AliasChoices("entry_agent", "entryAgent"),
    )
    agents: list[AgentProfile] = Field(default_factory=list)
    version: str | None = None

    @model_validator(mode="after")
    def _default_entry_agent(self) -> "RelayConfiguration":
        if not self.entry_agent.strip() and self.agents:
            self.entry_agent = self.agents[0].name
        return self

    def get_agent(self, name: str) -> AgentProfile | None:
        for agent in self.agents:
            if agent.name == name:
                return agent
        return None

    def agent_names(self) -> list[str]:
        return [agent.name for agent in self.agents]


class DelegationTarget(BaseModel):
    """An agent another agent may delegate to."""

    model_config = ConfigDict(frozen=True)

    name: str
    use_for: str = Field(default="", validation_alias=AliasChoices("use_for", "useFor"))


class ToolDescriptor(BaseModel):
    """Tool specification handed to the model, with JSON Schema parameters."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ToolCall(BaseModel):
    """A tool call requested by the model."""

    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


class ModelResponse(BaseModel):
    """Result of one model invocation."""

    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ConversationEntry(BaseModel):
    """One message in a conversation log.

    ``kind`` separates tool output from free-form user text so the model can
    tell delegated feedback apart from tool results.
    """

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str
    kind: Literal["message", "tool_result"] = "message"
    tool_name: str | None = None


class ToolInvocation(BaseModel):
    """Immutable record of one tool call made during a loop."""

    model_config = ConfigDict(frozen=True)

    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    timestamp: datetime = Field(default_factory=datetime.now)
    execution_time_ms: float = 0.0


class HookResult(BaseModel):
    """
    Result from hook execution.

    Actions:
        continue: Proceed normally with the operation
        deny: Block the operation (short-circuits handler chain). On
            ``tool:pre`` the tool call is reported back to the model as failed.
        modify: Replace the event data seen by later handlers. On
            ``tool:pre`` a ``parameters`` dict rewrites the tool call.
    """

    action: Literal["continue", "deny", "modify"] = Field(
        default="continue", description="Action to take after hook execution"
    )
    data: dict[str, Any] | None = Field(
        default=None, description="Modified event data (for action='modify')"
    )
    reason: str | None = Field(
        default=None, description="Explanation for deny"
    )


class LoopResult(BaseModel):
    """Outcome of one agentic loop run."""

    model_config = ConfigDict(frozen=True)

    final_response: str
    report_out_called: bool = False
    tool_invocations: tuple[ToolInvocation, ...] = ()
    conversation: tuple[ConversationEntry, ...] = ()
    completed: bool = True
    iteration_count: int = 0
    cancelled: bool = False
