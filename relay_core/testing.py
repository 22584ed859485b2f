"""
Testing utilities for relay-core.
Provides scripted doubles and a fully wired engine for tests.
"""

import asyncio
import inspect
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .cancellation import CancellationToken
from .config import StaticConfigurationProvider
from .conversation import ConversationLog
from .delegation import DelegationEngine
from .errors import ToolAccessError
from .loop import AgenticLoop
from .models import DELEGATE_WORK_TOOL
from .models import REPORT_OUT_TOOL
from .models import AgentProfile
from .models import HookResult
from .models import ModelResponse
from .models import Permissions
from .models import RelayConfiguration
from .models import ToolCall
from .models import ToolDescriptor
from .prompt_builder import SystemPromptBuilder
from .registry import ExecutionContext
from .registry import ExecutionContextRegistry
from .store import RelayStore
from .tool_filter import PermissionToolFilter
from .tools import DelegateWorkTool
from .tools import ToolDispatcher


def agent_prompt(name: str) -> str:
    """System prompt ``make_profile`` gives an agent; ``ScriptedModel`` keys on it."""
    return f"You are {name}."


def report(text: str) -> ModelResponse:
    """Model turn that submits ``text`` through reportOut."""
    return ModelResponse(tool_calls=[ToolCall(name=REPORT_OUT_TOOL, parameters={"report": text})])


def call_tool(name: str, text: str = "", **parameters: Any) -> ModelResponse:
    """Model turn that calls one tool."""
    return ModelResponse(text=text, tool_calls=[ToolCall(name=name, parameters=parameters)])


def delegate(
    agent_name: str,
    work: str = "Please handle this piece of work",
    expectations: str = "A short summary",
) -> ModelResponse:
    """Model turn that calls delegateWork."""
    return call_tool(
        DELEGATE_WORK_TOOL,
        agentName=agent_name,
        workDescription=work,
        reportExpectations=expectations,
    )


class ScriptedModel:
    """
    Model invoker that plays back per-agent scripts.

    Script items are ``ModelResponse`` objects, exceptions (raised), or
    callables taking the conversation and returning a response (sync or
    async). The calling agent is recognised by its system prompt, so agents
    should be built with ``make_profile``. An exhausted script answers with
    ``default`` (plain text, no tool calls).
    """

    def __init__(
        self,
        scripts: dict[str, list[Any]] | None = None,
        default: ModelResponse | None = None,
    ):
        self._scripts: dict[str, deque] = {
            name: deque(items) for name, items in (scripts or {}).items()
        }
        self.default = default or ModelResponse(text="Done.")
        self.calls: list[tuple[str | None, int]] = []
        self.tool_schemas: dict[str, list[str]] = {}

    def add(self, agent_name: str, *items: Any) -> None:
        self._scripts.setdefault(agent_name, deque()).extend(items)

    def agent_for(self, conversation: ConversationLog) -> str | None:
        first = next(iter(conversation), None)
        if first is None:
            return None
        for name in self._scripts:
            if first.content.startswith(agent_prompt(name)):
                return name
        return None

    def calls_for(self, agent_name: str) -> int:
        return sum(1 for name, _ in self.calls if name == agent_name)

    async def invoke(
        self,
        conversation: ConversationLog,
        tool_schemas: list[ToolDescriptor],
        cancellation: CancellationToken,
    ) -> ModelResponse:
        agent = self.agent_for(conversation)
        self.calls.append((agent, len(conversation)))
        if agent is not None:
            self.tool_schemas[agent] = [tool.name for tool in tool_schemas]
        # Let sibling loops interleave like a real network call would
        await asyncio.sleep(0)

        queue = self._scripts.get(agent) if agent is not None else None
        if not queue:
            return self.default

        item = queue.popleft()
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = item(conversation)
            if inspect.isawaitable(item):
                item = await item
        return item


class RecordingToolExecutor:
    """
    Tool executor that records calls and returns canned results.

    ``results`` maps tool names to a value, an exception to raise, or a
    callable ``(parameters, context)`` (sync or async). Names without a canned
    result go to ``fallback`` when given, otherwise raise ``ToolAccessError``.
    """

    def __init__(
        self,
        results: dict[str, Any] | None = None,
        fallback: Any | None = None,
    ):
        self.results = dict(results or {})
        self.fallback = fallback
        self.calls: list[tuple[str, dict[str, Any], str]] = []

    async def execute(
        self, tool_name: str, parameters: dict[str, Any], context: ExecutionContext
    ) -> Any:
        self.calls.append((tool_name, dict(parameters), context.agent_name))
        if tool_name in self.results:
            result = self.results[tool_name]
            if isinstance(result, BaseException):
                raise result
            if callable(result):
                result = result(parameters, context)
                if inspect.isawaitable(result):
                    result = await result
            return result
        if self.fallback is not None:
            return await self.fallback.execute(tool_name, parameters, context)
        raise ToolAccessError(
            f"Tool '{tool_name}' not found",
            tool_name=tool_name,
            agent_name=context.agent_name,
        )

    def calls_for(self, tool_name: str) -> list[tuple[str, dict[str, Any], str]]:
        return [call for call in self.calls if call[0] == tool_name]


class EventRecorder:
    """Records lifecycle events for testing.

    Implements the HookRegistry interface for emit() so it can stand in for
    the hooks object of the loop, the registry or the engine.
    """

    def __init__(self):
        self.events: list[tuple] = []

    async def emit(self, event: str, data: dict) -> HookResult:
        self.events.append((event, data.copy()))
        return HookResult(action="continue")

    def clear(self):
        self.events.clear()

    def get_events(self, event_type: str | None = None) -> list[tuple]:
        if event_type:
            return [e for e in self.events if e[0] == event_type]
        return self.events.copy()

    def names(self) -> list[str]:
        return [e[0] for e in self.events]


def _permissions(value: Any) -> Permissions:
    if isinstance(value, Permissions):
        return value
    if value in ("all", "none"):
        return Permissions(type=value)
    return Permissions.only(*value)


def make_profile(
    name: str,
    *,
    delegation: Any = "none",
    tools: Any = "all",
    use_for: str | None = None,
    system_prompt: str | None = None,
) -> AgentProfile:
    """
    Build a valid profile.

    ``delegation`` and ``tools`` accept ``"all"``, ``"none"``, a list of names
    or a ``Permissions`` instance.
    """
    return AgentProfile(
        name=name,
        system_prompt=system_prompt or agent_prompt(name),
        description=f"The {name} agent",
        use_for=use_for or f"Work suited to {name}",
        delegation_permissions=_permissions(delegation),
        tool_permissions=_permissions(tools),
    )


def make_config(*profiles: AgentProfile, entry_agent: str = "") -> RelayConfiguration:
    return RelayConfiguration(entry_agent=entry_agent, agents=list(profiles))


@dataclass
class RelayHarness:
    """Every component wired together over one store."""

    config: RelayConfiguration
    model: ScriptedModel
    store: RelayStore
    config_provider: StaticConfigurationProvider
    tool_filter: PermissionToolFilter
    prompt_builder: SystemPromptBuilder
    registry: ExecutionContextRegistry
    dispatcher: ToolDispatcher
    tools: RecordingToolExecutor
    loop: AgenticLoop
    engine: DelegationEngine

    async def start(self, agent_name: str | None = None) -> ExecutionContext:
        """Initialize a root context (the entry agent by default)."""
        profile = self.config.get_agent(agent_name or self.config.entry_agent)
        if profile is None:
            raise KeyError(agent_name)
        return await self.registry.initialize_agent(profile, self.config, self.model)


def build_engine(
    config: RelayConfiguration,
    model: ScriptedModel | None = None,
    *,
    tool_results: dict[str, Any] | None = None,
    extra_tools: list[ToolDescriptor] | None = None,
    max_iterations: int = 50,
    default_deadline: float | None = None,
    hooks: Any | None = None,
) -> RelayHarness:
    """
    Wire store, registry, loop and engine for ``config``.

    ``delegateWork`` is served by a real ``DelegateWorkTool``; every other
    tool comes from ``tool_results`` through a ``RecordingToolExecutor``.
    """
    model = model or ScriptedModel()
    store = RelayStore()
    provider = StaticConfigurationProvider(config)
    tool_filter = PermissionToolFilter(provider, list(extra_tools or []))
    for name in tool_results or {}:
        if name not in tool_filter.all_tool_names():
            tool_filter.add_tool(ToolDescriptor(name=name, description=f"Test tool {name}"))
    prompt_builder = SystemPromptBuilder()
    registry = ExecutionContextRegistry(
        store, tool_filter, prompt_builder, max_iterations=max_iterations, hooks=hooks
    )
    dispatcher = ToolDispatcher()
    executor = RecordingToolExecutor(tool_results, fallback=dispatcher)
    loop = AgenticLoop(executor, hooks=hooks)
    engine = DelegationEngine(
        registry,
        provider,
        loop,
        store=store,
        default_deadline=default_deadline,
        hooks=hooks,
    )
    dispatcher.register(DELEGATE_WORK_TOOL, DelegateWorkTool(engine))
    return RelayHarness(
        config=config,
        model=model,
        store=store,
        config_provider=provider,
        tool_filter=tool_filter,
        prompt_builder=prompt_builder,
        registry=registry,
        dispatcher=dispatcher,
        tools=executor,
        loop=loop,
        engine=engine,
    )


async def wait_for(condition: Callable[[], bool], timeout: float = 1.0) -> bool:
    """
    Wait for a condition to become true.

    Returns:
        True if condition was met, False if timeout
    """
    loop = asyncio.get_running_loop()
    start = loop.time()

    while loop.time() - start < timeout:
        if condition():
            return True
        await asyncio.sleep(0.01)

    return False
