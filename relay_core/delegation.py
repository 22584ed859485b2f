"""
Delegation engine.

Hands work from one agent instance to another and resolves the delegator's
await with the delegate's report. Pending delegations are keyed by the
delegate's ``conversation_id`` in the shared ``RelayStore``; each record is
settled exactly once, through ``RelayStore.pop_delegation``.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from typing import TYPE_CHECKING
from typing import Any

from . import events
from .errors import AgentExecutionError
from .errors import CircularDelegationError
from .errors import DelegationError
from .errors import DelegationTimeoutError
from .models import AgentProfile
from .models import RelayConfiguration
from .registry import ContextStatus

if TYPE_CHECKING:
    from .hooks import HookRegistry
    from .interfaces import ConfigurationProvider
    from .loop import AgenticLoop
    from .registry import ExecutionContext
    from .registry import ExecutionContextRegistry
    from .store import RelayStore

logger = logging.getLogger(__name__)

DEFAULT_DELEGATION_TIMEOUT = 300.0
MAX_DELEGATION_DEPTH = 5


@dataclass(eq=False)
class DelegationRecord:
    """A delegation between start and resolution."""

    delegation_id: str
    from_agent: str
    to_agent: str
    work_description: str
    report_expectations: str
    from_conversation_id: str
    conversation_id: str
    future: "asyncio.Future[str]"
    created_at: datetime = field(default_factory=datetime.now)
    deadline: float | None = None
    task: "asyncio.Task[None] | None" = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "delegation_id": self.delegation_id,
            "from_agent": self.from_agent,
            "to_agent": self.to_agent,
            "work_description": self.work_description,
            "report_expectations": self.report_expectations,
            "from_conversation_id": self.from_conversation_id,
            "conversation_id": self.conversation_id,
            "created_at": self.created_at.isoformat(),
            "deadline": self.deadline,
        }


def build_delegation_message(work_description: str, report_expectations: str) -> str:
    """Initial user message handed to a delegate."""
    return "\n".join(
        [
            "DELEGATION REQUEST:",
            "",
            "Work Description:",
            work_description,
            "",
            "Report Expectations:",
            report_expectations,
            "",
            'Please complete the requested work and use the "reportOut" tool to provide your findings.',
            "Your report should address the expectations outlined above.",
        ]
    )


def delegation_allowed(profile: AgentProfile, to_agent: str) -> bool:
    """Permission check alone: ``all`` means any *other* agent."""
    if to_agent == profile.name:
        return False
    return profile.delegation_permissions.allows(to_agent)


class DelegationEngine:
    """
    Validates, starts and resolves delegations.

    Every delegated loop runs in its own ``asyncio.Task``; the delegator only
    awaits the record's future.
    """

    def __init__(
        self,
        registry: "ExecutionContextRegistry",
        config_provider: "ConfigurationProvider",
        loop: "AgenticLoop",
        store: "RelayStore | None" = None,
        default_deadline: float | None = DEFAULT_DELEGATION_TIMEOUT,
        hooks: "HookRegistry | None" = None,
        max_depth: int = MAX_DELEGATION_DEPTH,
    ):
        self.registry = registry
        self.config_provider = config_provider
        self.loop = loop
        self.store = store if store is not None else registry.store
        if self.store is not registry.store:
            raise ValueError("DelegationEngine and registry must share one RelayStore")
        self.default_deadline = default_deadline
        self.hooks = hooks
        self.max_depth = max_depth
        self._completed = 0
        self._failed = 0

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def is_valid_delegation(
        self,
        from_agent: str,
        to_agent: str,
        from_conversation_id: str | None = None,
    ) -> bool:
        config = await self.config_provider.load_configuration()
        try:
            self._validate(config, from_agent, to_agent, from_conversation_id)
        except DelegationError:
            return False
        return True

    def _validate(
        self,
        config: RelayConfiguration,
        from_agent: str,
        to_agent: str,
        from_conversation_id: str | None,
    ) -> AgentProfile:
        """Return the target profile, or raise the matching DelegationError."""
        target = config.get_agent(to_agent)
        if target is None:
            raise DelegationError(
                f"Target agent '{to_agent}' not found",
                agent_name=from_agent,
                details={"from_agent": from_agent, "to_agent": to_agent},
            )

        if self.registry.would_create_cycle(from_agent, to_agent, from_conversation_id):
            chain = self._chain_of(from_agent, from_conversation_id)
            raise CircularDelegationError(
                f"Circular delegation detected: delegation from '{from_agent}' "
                f"to '{to_agent}' would create a loop",
                delegation_chain=chain,
                agent_name=from_agent,
                details={"from_agent": from_agent, "to_agent": to_agent},
            )

        source = config.get_agent(from_agent)
        if source is None or not delegation_allowed(source, to_agent):
            raise DelegationError(
                f"Delegation from '{from_agent}' to '{to_agent}' is not allowed",
                agent_name=from_agent,
                details={
                    "from_agent": from_agent,
                    "to_agent": to_agent,
                    "reason": "delegation_not_allowed",
                },
            )
        return target

    def _chain_of(self, agent_name: str, conversation_id: str | None) -> list[str]:
        context = self._source_context(agent_name, conversation_id)
        if context is None:
            return [agent_name]
        return [*context.delegation_chain, context.agent_name]

    def _source_context(
        self, agent_name: str, conversation_id: str | None
    ) -> "ExecutionContext | None":
        if conversation_id:
            context = self.registry.get_context(conversation_id)
            if context is not None and context.agent_name == agent_name:
                return context
        return self.registry.find_context(agent_name)

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    async def delegate_work(
        self,
        from_agent: str,
        to_agent: str,
        work_description: str,
        report_expectations: str,
        deadline: float | None = None,
        from_conversation_id: str | None = None,
    ) -> str:
        """
        Delegate work and wait for the delegate's report.

        Args:
            from_agent: Delegating agent name
            to_agent: Delegate agent name
            work_description: What the delegate should do
            report_expectations: What the report should contain
            deadline: Seconds to wait (falls back to ``default_deadline``)
            from_conversation_id: Delegator instance, when several instances
                of ``from_agent`` are live

        Returns:
            The text passed to ``reportOut``, or the fallback report

        Raises:
            DelegationError: Unknown target, permission denied, no source
                context, depth limit, cancellation or cleanup.
            CircularDelegationError: The target is already in the chain.
            DelegationTimeoutError: The deadline elapsed.
            AgentExecutionError: The delegate's loop failed.
        """
        config = await self.config_provider.load_configuration()
        target = self._validate(config, from_agent, to_agent, from_conversation_id)

        parent = self._source_context(from_agent, from_conversation_id)
        if parent is None:
            raise DelegationError(
                f"No active context for agent '{from_agent}'",
                agent_name=from_agent,
                details={"from_agent": from_agent, "to_agent": to_agent},
            )
        if parent.depth + 1 > self.max_depth:
            raise DelegationError(
                f"Delegation depth limit ({self.max_depth}) exceeded: "
                f"{' -> '.join([*parent.delegation_chain, from_agent, to_agent])}",
                agent_name=from_agent,
                details={"max_depth": self.max_depth},
            )

        child = await self.registry.initialize_child_agent(
            target, parent, full_config=config
        )

        effective_deadline = deadline if deadline is not None else self.default_deadline
        record = DelegationRecord(
            delegation_id=f"{from_agent}->{to_agent}-{uuid.uuid4().hex[:12]}",
            from_agent=from_agent,
            to_agent=to_agent,
            work_description=work_description,
            report_expectations=report_expectations,
            from_conversation_id=parent.conversation_id,
            conversation_id=child.conversation_id,
            future=asyncio.get_running_loop().create_future(),
            deadline=effective_deadline,
        )
        # Registered before the task exists so no report can arrive first
        self.store.add_delegation(record)
        logger.info(
            f"Delegating from '{from_agent}' to '{to_agent}' "
            f"(delegation={record.delegation_id})"
        )
        await self._emit(events.DELEGATION_START, record)

        message = build_delegation_message(work_description, report_expectations)
        record.task = asyncio.create_task(
            self._run_delegate(record, child, message),
            name=f"delegate:{to_agent}:{child.conversation_id}",
        )

        try:
            if effective_deadline is None:
                report = await asyncio.shield(record.future)
            else:
                report = await asyncio.wait_for(
                    asyncio.shield(record.future), timeout=effective_deadline
                )
        except asyncio.TimeoutError:
            if record.future.done() and not record.future.cancelled():
                # Settled in the same tick the deadline fired
                return record.future.result()
            self._expire(record)
            await self._emit(events.DELEGATION_TIMEOUT, record)
            raise DelegationTimeoutError(
                f"Delegation to '{to_agent}' timed out after {effective_deadline}s",
                deadline=effective_deadline,
                agent_name=from_agent,
                details={"delegation_id": record.delegation_id},
            ) from None
        except asyncio.CancelledError:
            self._abandon(record)
            raise
        except Exception as e:
            await self._emit(
                events.DELEGATION_ERROR,
                record,
                {"error": str(e), "error_type": type(e).__name__},
            )
            raise

        await self._emit(events.DELEGATION_COMPLETE, record, {"report": report})
        return report

    async def _run_delegate(
        self, record: DelegationRecord, child: "ExecutionContext", message: str
    ) -> None:
        try:
            result = await self.loop.run_delegated(child, message)
        except asyncio.CancelledError:
            self._reject(
                record.conversation_id,
                DelegationError(
                    f"Delegation to '{record.to_agent}' was cancelled",
                    agent_name=record.from_agent,
                    details={"cancelled": True},
                ),
                ContextStatus.CANCELLED,
            )
            raise
        except AgentExecutionError as e:
            self._reject(record.conversation_id, e)
        except Exception as e:
            error = AgentExecutionError(
                f"Delegated agent '{record.to_agent}' failed: {e}",
                agent_name=record.to_agent,
                iteration=child.loop_state.iteration_count,
            )
            error.__cause__ = e
            self._reject(record.conversation_id, error)
        else:
            if result.cancelled:
                self._reject(
                    record.conversation_id,
                    DelegationError(
                        f"Delegation to '{record.to_agent}' was cancelled",
                        agent_name=record.from_agent,
                        details={"cancelled": True},
                    ),
                    ContextStatus.CANCELLED,
                )
            else:
                self.report_out(
                    record.to_agent,
                    result.final_response,
                    conversation_id=record.conversation_id,
                )
        finally:
            await self._release(record)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def report_out(
        self, agent_name: str, report: str, conversation_id: str | None = None
    ) -> bool:
        """
        Resolve the pending delegation for ``agent_name`` with ``report``.

        Looks up the exact delegate instance when ``conversation_id`` is
        given, otherwise the oldest pending delegation to ``agent_name``.
        Late or duplicate calls find nothing and return False.
        """
        if conversation_id is not None:
            record = self.store.get_delegation(conversation_id)
            if record is not None and record.to_agent != agent_name:
                record = None
        else:
            record = self.store.find_delegation(agent_name)

        if record is None or self.store.pop_delegation(record.conversation_id) is None:
            logger.debug(f"No pending delegation for '{agent_name}', ignoring report")
            return False
        if record.future.done():
            return False

        record.future.set_result(report)
        self._completed += 1
        self.registry.mark_context(record.conversation_id, ContextStatus.COMPLETED)
        logger.info(
            f"Delegation {record.delegation_id} resolved by '{agent_name}'"
        )

        context = self.registry.get_context(record.conversation_id)
        if context is not None and context.loop_state.is_active:
            context.cancellation.request_graceful()
        return True

    def _reject(
        self,
        conversation_id: str,
        error: Exception,
        status: ContextStatus = ContextStatus.FAILED,
    ) -> bool:
        record = self.store.pop_delegation(conversation_id)
        if record is None or record.future.done():
            return False
        record.future.set_exception(error)
        self._failed += 1
        self.registry.mark_context(conversation_id, status)
        logger.warning(f"Delegation {record.delegation_id} failed: {error}")
        return True

    def _expire(self, record: DelegationRecord) -> None:
        if self.store.pop_delegation(record.conversation_id) is None:
            return
        record.future.cancel()
        self._failed += 1
        self.registry.mark_context(record.conversation_id, ContextStatus.FAILED)
        logger.warning(
            f"Delegation {record.delegation_id} to '{record.to_agent}' "
            f"timed out after {record.deadline}s"
        )
        context = self.registry.get_context(record.conversation_id)
        if context is not None:
            context.cancellation.request_immediate()

    def _abandon(self, record: DelegationRecord) -> None:
        """The delegator stopped waiting; stop the delegate too."""
        if self.store.pop_delegation(record.conversation_id) is None:
            return
        record.future.cancel()
        self._failed += 1
        self.registry.mark_context(record.conversation_id, ContextStatus.CANCELLED)
        context = self.registry.get_context(record.conversation_id)
        if context is not None:
            context.cancellation.request_immediate()

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def get_active_delegations(self) -> list[DelegationRecord]:
        return self.store.delegations()

    def cancel_delegation(self, delegation_id: str) -> bool:
        """Reject one pending delegation and ask its delegate to stop."""
        record = self.store.find_delegation_by_id(delegation_id)
        if record is None:
            return False
        rejected = self._reject(
            record.conversation_id,
            DelegationError(
                f"Delegation to '{record.to_agent}' was cancelled",
                agent_name=record.from_agent,
                details={"cancelled": True},
            ),
            ContextStatus.CANCELLED,
        )
        context = self.registry.get_context(record.conversation_id)
        if context is not None:
            context.cancellation.request_immediate()
        return rejected

    async def cleanup(self) -> None:
        """Reject every pending delegation, cancel the loops, release contexts."""
        records = self.store.delegations()
        tasks = []
        for record in records:
            self._reject(
                record.conversation_id,
                DelegationError(
                    "Delegation was cleaned up",
                    agent_name=record.from_agent,
                    details={"delegation_id": record.delegation_id},
                ),
                ContextStatus.CANCELLED,
            )
            if record.task is not None and not record.task.done():
                record.task.cancel()
                tasks.append(record.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for record in records:
            await self._release(record)
        if records:
            logger.info(f"Cleaned up {len(records)} pending delegations")

    def get_delegation_stats(self) -> dict[str, int]:
        return {
            "active": len(self.store.delegations()),
            "completed": self._completed,
            "failed": self._failed,
        }

    def get_delegation_history(self, agent_name: str) -> dict[str, list[DelegationRecord]]:
        """Pending delegations sent by and handed to ``agent_name``."""
        records = self.store.delegations()
        return {
            "delegated_to": [r for r in records if r.from_agent == agent_name],
            "delegated_from": [r for r in records if r.to_agent == agent_name],
        }

    async def _release(self, record: DelegationRecord) -> None:
        context = self.registry.terminate_conversation(record.conversation_id)
        if context is not None and self.hooks:
            await self.hooks.emit(
                events.AGENT_TERMINATED,
                {
                    "agent_name": context.agent_name,
                    "conversation_id": context.conversation_id,
                    "delegation_id": record.delegation_id,
                },
            )

    async def _emit(
        self,
        event: str,
        record: DelegationRecord,
        extra: dict[str, Any] | None = None,
    ) -> None:
        if not self.hooks:
            return
        await self.hooks.emit(event, {**record.to_dict(), **(extra or {})})
