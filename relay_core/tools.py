"""
Tool dispatch for the agentic loop.

``ToolDispatcher`` is a lookup table from tool name to async handler and
implements the ``ToolExecutor`` protocol. ``reportOut`` never reaches it: the
loop handles report submission itself. ``DelegateWorkTool`` is the handler
behind ``delegateWork``.
"""

import logging
import re
from collections.abc import Awaitable
from collections.abc import Callable
from typing import TYPE_CHECKING
from typing import Any

from .errors import RelayError
from .errors import ToolAccessError
from .models import DELEGATE_WORK_TOOL
from .models import REPORT_OUT_TOOL
from .models import ToolDescriptor

if TYPE_CHECKING:
    from .delegation import DelegationEngine
    from .registry import ExecutionContext

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any], "ExecutionContext"], Awaitable[Any]]

AGENT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

DELEGATE_WORK_DESCRIPTOR = ToolDescriptor(
    name=DELEGATE_WORK_TOOL,
    description=(
        "Delegate work to a specialized agent. Use this when a task requires "
        "expertise from a specific agent or when breaking down complex work "
        "into specialized components."
    ),
    parameters={
        "type": "object",
        "properties": {
            "agentName": {
                "type": "string",
                "description": "The name of the agent to delegate work to. Must be a configured agent name.",
                "minLength": 1,
                "maxLength": 50,
                "pattern": "^[a-zA-Z0-9-_]+$",
            },
            "workDescription": {
                "type": "string",
                "description": "Detailed description of the work to be delegated. Be specific about what needs to be done.",
                "minLength": 10,
                "maxLength": 2000,
            },
            "reportExpectations": {
                "type": "string",
                "description": "Description of what kind of report or output is expected from the delegated agent.",
                "minLength": 5,
                "maxLength": 500,
            },
        },
        "required": ["agentName", "workDescription", "reportExpectations"],
        "additionalProperties": False,
    },
)

REPORT_OUT_DESCRIPTOR = ToolDescriptor(
    name=REPORT_OUT_TOOL,
    description="Report completion of delegated work",
    parameters={
        "type": "object",
        "properties": {
            "report": {
                "type": "string",
                "description": "The report content describing completed work",
            }
        },
        "required": ["report"],
    },
)

BUILTIN_TOOLS = (DELEGATE_WORK_DESCRIPTOR, REPORT_OUT_DESCRIPTOR)


class ToolDispatcher:
    """Name -> handler table. Unknown names raise ``ToolAccessError``."""

    def __init__(self, handlers: dict[str, ToolHandler] | None = None):
        self._handlers: dict[str, ToolHandler] = dict(handlers or {})

    def register(self, name: str, handler: ToolHandler) -> None:
        if name == REPORT_OUT_TOOL:
            raise ValueError(f"'{REPORT_OUT_TOOL}' is handled by the loop itself")
        self._handlers[name] = handler
        logger.debug(f"Registered tool handler '{name}'")

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    async def execute(
        self, tool_name: str, parameters: dict[str, Any], context: "ExecutionContext"
    ) -> Any:
        handler = self._handlers.get(tool_name)
        if handler is None:
            raise ToolAccessError(
                f"Tool '{tool_name}' not found",
                tool_name=tool_name,
                agent_name=context.agent_name,
            )
        return await handler(parameters, context)


class DelegateWorkTool:
    """
    Handler for ``delegateWork``.

    Delegates on behalf of the calling context and always returns text the
    model can read: the delegate's report on success, ``"Delegation failed:
    ..."`` when parameters are invalid or the delegation was rejected.
    """

    name = DELEGATE_WORK_TOOL
    descriptor = DELEGATE_WORK_DESCRIPTOR

    def __init__(self, engine: "DelegationEngine", deadline: float | None = None):
        self.engine = engine
        self.deadline = deadline

    async def __call__(self, parameters: dict[str, Any], context: "ExecutionContext") -> str:
        try:
            self.validate_parameters(parameters, context.agent_name)
            agent_name = parameters["agentName"]
            report = await self.engine.delegate_work(
                context.agent_name,
                agent_name,
                parameters["workDescription"],
                parameters["reportExpectations"],
                deadline=self.deadline,
                from_conversation_id=context.conversation_id,
            )
        except (ValueError, RelayError) as e:
            logger.info(f"Delegation from '{context.agent_name}' failed: {e}")
            return f"Delegation failed: {e}"

        return (
            f"Work delegation completed successfully. Agent '{agent_name}' "
            f"has provided the following report:\n\n{report}"
        )

    @staticmethod
    def validate_parameters(parameters: dict[str, Any], current_agent: str) -> None:
        """Raise ValueError describing the first invalid parameter."""
        agent_name = parameters.get("agentName")
        if not agent_name or not isinstance(agent_name, str):
            raise ValueError("agentName is required and must be a non-empty string")
        if len(agent_name) > 50 or not AGENT_NAME_PATTERN.match(agent_name):
            raise ValueError(
                "agentName must be 1-50 characters and contain only letters, "
                "numbers, hyphens, and underscores"
            )

        work = parameters.get("workDescription")
        if not work or not isinstance(work, str):
            raise ValueError("workDescription is required and must be a non-empty string")
        if not 10 <= len(work) <= 2000:
            raise ValueError("workDescription must be between 10 and 2000 characters")

        expectations = parameters.get("reportExpectations")
        if not expectations or not isinstance(expectations, str):
            raise ValueError(
                "reportExpectations is required and must be a non-empty string"
            )
        if not 5 <= len(expectations) <= 500:
            raise ValueError("reportExpectations must be between 5 and 500 characters")

        if agent_name == current_agent:
            raise ValueError("An agent cannot delegate work to itself")
