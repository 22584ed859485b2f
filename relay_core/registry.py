"""
Execution context registry.

Creates, stores and destroys one ``ExecutionContext`` per running agent
instance. Contexts are keyed by ``conversation_id`` in the shared
``RelayStore``, so the same agent may run several instances at once.
"""

import logging
import uuid
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from typing import Any

from . import events
from .cancellation import CancellationToken
from .conversation import ConversationLog
from .errors import AgentExecutionError
from .errors import CircularDelegationError
from .errors import ConfigurationError
from .errors import ToolAccessError
from .ledger import ToolInvocationLedger
from .loop_state import LoopState
from .models import DEFAULT_MAX_ITERATIONS
from .models import AgentProfile
from .models import DelegationTarget
from .models import RelayConfiguration
from .models import ToolDescriptor
from .models import ToolInvocation

if TYPE_CHECKING:
    from .hooks import HookRegistry
    from .interfaces import ModelInvoker
    from .interfaces import PromptBuilder
    from .interfaces import ToolFilter
    from .store import RelayStore

logger = logging.getLogger(__name__)


class ContextStatus(Enum):
    """Lifecycle of one conversation. Only ACTIVE may change, and only once."""

    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class ConversationInfo:
    """Status record of a conversation, kept after its context is released."""

    conversation_id: str
    agent_name: str
    parent_conversation_id: str | None = None
    status: ContextStatus = ContextStatus.ACTIVE
    created_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None


@dataclass(eq=False)
class ExecutionContext:
    """
    State of one running agent instance.

    ``delegation_chain`` holds ancestor agent names, root first, and never
    contains ``agent_name`` itself.
    """

    agent_name: str
    conversation_id: str
    system_prompt: str
    parent_conversation_id: str | None = None
    available_tools: list[ToolDescriptor] = field(default_factory=list)
    delegation_chain: tuple[str, ...] = ()
    available_delegation_targets: list[DelegationTarget] = field(default_factory=list)
    model: "ModelInvoker | None" = None
    conversation: ConversationLog = field(default_factory=ConversationLog)
    is_agentic_loop: bool = False
    ledger: ToolInvocationLedger = field(default_factory=ToolInvocationLedger)
    loop_state: LoopState = field(default_factory=LoopState.create_initial)
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    created_at: datetime = field(default_factory=datetime.now)
    status: ContextStatus = ContextStatus.ACTIVE
    last_activity: datetime = field(default_factory=datetime.now)

    def touch(self) -> None:
        self.last_activity = datetime.now()

    @property
    def tool_invocations(self) -> tuple[ToolInvocation, ...]:
        return self.ledger.snapshot()

    @property
    def depth(self) -> int:
        return len(self.delegation_chain)

    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.available_tools]


class ExecutionContextRegistry:
    """
    Owns every ``ExecutionContext``.

    Other components read and mutate contexts only through this registry and
    the loop driver.
    """

    def __init__(
        self,
        store: "RelayStore",
        tool_filter: "ToolFilter",
        prompt_builder: "PromptBuilder",
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        hooks: "HookRegistry | None" = None,
    ):
        self.store = store
        self.tool_filter = tool_filter
        self.prompt_builder = prompt_builder
        self.max_iterations = max_iterations
        self.hooks = hooks

    async def initialize_agent(
        self,
        profile: AgentProfile,
        full_config: RelayConfiguration | None = None,
        model: "ModelInvoker | None" = None,
    ) -> ExecutionContext:
        """
        Create and store a root context (empty delegation chain).

        Raises:
            ConfigurationError: ``profile.name`` is empty.
            ToolAccessError: The tool filter rejected the agent.
            AgentExecutionError: Any other initialization failure.
        """
        return await self._initialize(
            profile,
            full_config=full_config,
            model=model,
            parent=None,
        )

    async def initialize_child_agent(
        self,
        profile: AgentProfile,
        parent: ExecutionContext,
        full_config: RelayConfiguration | None = None,
    ) -> ExecutionContext:
        """
        Create and store a delegate's context beneath ``parent``.

        The child inherits the parent's model and its cancellation token is
        registered as a child of the parent's token.

        Raises:
            CircularDelegationError: ``profile.name`` already appears in the
                chain; nothing is stored.
        """
        chain = parent.delegation_chain + (parent.agent_name,)
        if profile.name in chain:
            raise CircularDelegationError(
                f"Circular delegation detected: {' -> '.join(chain)} -> {profile.name}",
                delegation_chain=chain,
                agent_name=profile.name,
            )
        return await self._initialize(
            profile,
            full_config=full_config,
            model=parent.model,
            parent=parent,
        )

    async def _initialize(
        self,
        profile: AgentProfile,
        *,
        full_config: RelayConfiguration | None,
        model: "ModelInvoker | None",
        parent: ExecutionContext | None,
    ) -> ExecutionContext:
        if not profile.name or not profile.name.strip():
            raise ConfigurationError("Agent profile must have a name")

        try:
            tools = await self.tool_filter.get_available_tools(profile.name)
            system_prompt = profile.system_prompt
            targets: list[DelegationTarget] = []
            if full_config is not None:
                system_prompt = self.prompt_builder.build_system_prompt(
                    profile.system_prompt, profile.name, full_config
                )
                targets = self.prompt_builder.get_delegation_targets(
                    profile.name, full_config
                )
        except ToolAccessError:
            raise
        except Exception as e:
            raise AgentExecutionError(
                f"Failed to initialize agent '{profile.name}': {e}",
                agent_name=profile.name,
            ) from e

        context = ExecutionContext(
            agent_name=profile.name,
            conversation_id=str(uuid.uuid4()),
            system_prompt=system_prompt,
            parent_conversation_id=parent.conversation_id if parent else None,
            available_tools=list(tools),
            delegation_chain=(
                parent.delegation_chain + (parent.agent_name,) if parent else ()
            ),
            available_delegation_targets=targets,
            model=model,
            loop_state=LoopState.create_initial(self.max_iterations),
        )
        if parent is not None:
            parent.cancellation.register_child(context.cancellation)

        self.store.put_context(context)
        self.store.put_conversation(
            ConversationInfo(
                conversation_id=context.conversation_id,
                agent_name=context.agent_name,
                parent_conversation_id=context.parent_conversation_id,
                created_at=context.created_at,
            )
        )
        logger.info(
            f"Initialized agent '{context.agent_name}' "
            f"(conversation={context.conversation_id}, depth={context.depth})"
        )

        if self.hooks:
            await self.hooks.emit(
                events.AGENT_INITIALIZED,
                {
                    "agent_name": context.agent_name,
                    "conversation_id": context.conversation_id,
                    "parent_conversation_id": context.parent_conversation_id,
                    "delegation_chain": list(context.delegation_chain),
                    "tools": context.tool_names(),
                },
            )
        return context

    def terminate_agent(self, name: str) -> int:
        """
        Remove every context of ``name`` and every descendant whose chain
        contains ``name``. Removed contexts are cancelled.

        Returns:
            Number of contexts removed
        """
        removed = self.store.remove_contexts(
            lambda c: c.agent_name == name or name in c.delegation_chain
        )
        for context in removed:
            self.mark_context(context.conversation_id, ContextStatus.CANCELLED)
            self._release(context)
        if removed:
            logger.info(f"Terminated agent '{name}' ({len(removed)} contexts)")
        return len(removed)

    def terminate_conversation(self, conversation_id: str) -> ExecutionContext | None:
        """
        Remove one context and detach its token from the parent's.

        A conversation still ACTIVE at this point is marked COMPLETED.
        """
        context = self.store.remove_context(conversation_id)
        if context is not None:
            self.mark_context(conversation_id, ContextStatus.COMPLETED)
            self._release(context)
            logger.debug(
                f"Released context {conversation_id} of agent '{context.agent_name}'"
            )
        return context

    def terminate_conversation_tree(self, conversation_id: str) -> int:
        """
        Remove a context and every live context below it in the conversation
        tree. Conversations still ACTIVE are marked CANCELLED.

        Returns:
            Number of contexts removed
        """
        doomed = {conversation_id}
        for context in self.store.contexts():
            # Creation order puts every parent before its children
            if context.parent_conversation_id in doomed:
                doomed.add(context.conversation_id)
        removed = self.store.remove_contexts(lambda c: c.conversation_id in doomed)
        for context in reversed(removed):
            self.mark_context(context.conversation_id, ContextStatus.CANCELLED)
            self._release(context)
        if removed:
            logger.info(
                f"Terminated conversation tree {conversation_id} "
                f"({len(removed)} contexts)"
            )
        return len(removed)

    def mark_context(self, conversation_id: str, status: ContextStatus) -> bool:
        """
        Move an ACTIVE conversation to a terminal status.

        The first terminal status wins; later marks return False.
        """
        if status is ContextStatus.ACTIVE:
            raise ValueError("Conversations can only be marked with a terminal status")
        info = self.store.get_conversation(conversation_id)
        if info is None or info.status is not ContextStatus.ACTIVE:
            return False
        info.status = status
        info.ended_at = datetime.now()
        context = self.store.get_context(conversation_id)
        if context is not None:
            context.status = status
        logger.debug(
            f"Conversation {conversation_id} of '{info.agent_name}' is {status.value}"
        )
        return True

    def get_status(self, conversation_id: str) -> ContextStatus | None:
        info = self.store.get_conversation(conversation_id)
        return info.status if info else None

    def get_child_contexts(self, conversation_id: str) -> list[ExecutionContext]:
        """Live contexts directly delegated from ``conversation_id``."""
        return [
            c for c in self.store.contexts()
            if c.parent_conversation_id == conversation_id
        ]

    def get_conversation_tree(self, conversation_id: str) -> dict[str, Any] | None:
        """
        Nested view of a conversation and everything delegated from it.

        Finished conversations stay in the tree until
        ``forget_finished_conversations`` drops them.
        """
        infos = self.store.conversations()
        root = self.store.get_conversation(conversation_id)
        if root is None:
            return None

        def node(info: ConversationInfo) -> dict[str, Any]:
            return {
                "conversation_id": info.conversation_id,
                "agent_name": info.agent_name,
                "status": info.status.value,
                "children": [
                    node(child) for child in infos
                    if child.parent_conversation_id == info.conversation_id
                ],
            }

        return node(root)

    def get_conversation_stats(self) -> dict[str, int]:
        infos = self.store.conversations()
        stats = {"total": len(infos)}
        for status in ContextStatus:
            stats[status.value] = sum(1 for i in infos if i.status is status)
        return stats

    def forget_finished_conversations(self) -> int:
        """Drop the status records of finished, released conversations."""
        return self.store.forget_conversations(
            lambda i: i.status is not ContextStatus.ACTIVE
            and self.store.get_context(i.conversation_id) is None
        )

    def _release(self, context: ExecutionContext) -> None:
        if context.parent_conversation_id:
            parent = self.store.get_context(context.parent_conversation_id)
            if parent is not None:
                parent.cancellation.unregister_child(context.cancellation)
        context.cancellation.request_immediate()

    def get_active_agents(self) -> list[ExecutionContext]:
        return self.store.contexts()

    def get_context(self, conversation_id: str) -> ExecutionContext | None:
        return self.store.get_context(conversation_id)

    def find_context(self, agent_name: str) -> ExecutionContext | None:
        """Oldest live context for ``agent_name``."""
        for context in self.store.contexts():
            if context.agent_name == agent_name:
                return context
        return None

    def get_delegation_chain(self, agent_name: str) -> list[str]:
        """Ancestors of the agent's oldest instance plus the agent itself."""
        context = self.find_context(agent_name)
        if context is None:
            return []
        return [*context.delegation_chain, context.agent_name]

    def would_create_cycle(
        self,
        from_agent: str,
        to_agent: str,
        from_conversation_id: str | None = None,
    ) -> bool:
        """Whether ``to_agent`` already appears in the delegator's chain or is the delegator."""
        context = None
        if from_conversation_id:
            context = self.store.get_context(from_conversation_id)
        if context is None:
            context = self.find_context(from_agent)
        chain = context.delegation_chain if context else ()
        return to_agent == from_agent or to_agent in chain
