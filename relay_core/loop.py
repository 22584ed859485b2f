"""
Agentic loop driver.

One algorithm drives every agent run: invoke the model over the whole
conversation, execute the tool calls it asked for in order, feed the results
back, repeat until a termination condition holds. Two flavors differ only in
how they end:

- FREE_RUNNING (entry agent): ends when the model returns no tool calls.
- DELEGATED (delegate): ends when the agent calls ``reportOut``; a turn with
  no tool calls earns a nudge instead of ending the loop.

Both end on ``reportOut``, on cancellation, and at the iteration limit, where
a fallback report is synthesized.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from typing import Any

from . import events
from .conversation import ConversationLog
from .errors import AgentExecutionError
from .errors import ToolAccessError
from .ledger import ToolInvocationLedger
from .loop_state import LoopState
from .loop_state import LoopStatus
from .models import REPORT_OUT_TOOL
from .models import HookResult
from .models import LoopResult
from .models import ToolCall
from .models import ToolInvocation

if TYPE_CHECKING:
    from .hooks import HookRegistry
    from .interfaces import ToolExecutor
    from .registry import ExecutionContext

logger = logging.getLogger(__name__)

DEFAULT_NUDGE_MESSAGE = (
    "Please complete your task and call reportOut with your findings."
)


class LoopMode(Enum):
    FREE_RUNNING = "free_running"
    DELEGATED = "delegated"


def fallback_report(iterations: int) -> str:
    """Report used when an agent never called reportOut."""
    return f"Task completed after {iterations} iterations without explicit report."


class AgenticLoop:
    """Drives the iterate-model-then-tools loop for one context at a time."""

    def __init__(
        self,
        tool_executor: "ToolExecutor",
        hooks: "HookRegistry | None" = None,
        nudge_message: str = DEFAULT_NUDGE_MESSAGE,
    ):
        self.tool_executor = tool_executor
        self.hooks = hooks
        self.nudge_message = nudge_message

    async def run_free(
        self, context: "ExecutionContext", initial_message: str
    ) -> LoopResult:
        return await self.run(context, initial_message, LoopMode.FREE_RUNNING)

    async def run_delegated(self, context: "ExecutionContext", work: str) -> LoopResult:
        return await self.run(context, work, LoopMode.DELEGATED)

    async def run(
        self,
        context: "ExecutionContext",
        initial_message: str,
        mode: LoopMode,
    ) -> LoopResult:
        """
        Run one loop over ``context`` from a fresh conversation.

        Raises:
            AgentExecutionError: The model invocation failed (or no model is
                attached). The loop is completed before the error propagates.
        """
        if context.model is None:
            raise AgentExecutionError(
                f"Agent '{context.agent_name}' has no model attached",
                agent_name=context.agent_name,
            )

        context.conversation = ConversationLog.initialize(
            context.system_prompt, initial_message
        )
        context.is_agentic_loop = True
        context.ledger = ToolInvocationLedger()
        context.loop_state = LoopState.create_initial(context.loop_state.max_iterations)
        state = context.loop_state
        state.activate()

        logger.info(
            f"Starting {mode.value} loop for '{context.agent_name}' "
            f"(max_iterations={state.max_iterations})"
        )
        await self._emit(
            events.LOOP_START,
            context,
            {"mode": mode.value, "max_iterations": state.max_iterations},
        )

        cancelled = False
        while state.should_continue:
            if context.cancellation.is_cancelled:
                cancelled = True
                state.complete()
                break

            iteration = state.start_iteration()
            context.touch()
            await self._emit(events.LOOP_ITERATION, context, {"iteration": iteration})

            if context.cancellation.is_cancelled:
                cancelled = True
                state.complete()
                break

            await self._emit(
                events.MODEL_REQUEST,
                context,
                {"iteration": iteration, "message_count": len(context.conversation)},
            )
            try:
                response = await context.model.invoke(
                    context.conversation, context.available_tools, context.cancellation
                )
            except Exception as e:
                logger.error(
                    f"Model invocation failed for '{context.agent_name}' "
                    f"at iteration {iteration}: {e}"
                )
                state.complete()
                await self._emit(
                    events.MODEL_ERROR,
                    context,
                    {
                        "iteration": iteration,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                raise AgentExecutionError(
                    f"Model invocation failed for agent '{context.agent_name}': {e}",
                    agent_name=context.agent_name,
                    iteration=iteration,
                ) from e

            await self._emit(
                events.MODEL_RESPONSE,
                context,
                {
                    "iteration": iteration,
                    "text": response.text,
                    "tool_calls": [call.name for call in response.tool_calls],
                },
            )
            context.conversation.append("assistant", response.text)

            for call in response.tool_calls:
                if call.name == REPORT_OUT_TOOL:
                    await self._submit_report(context, call, response.text)
                    break
                if context.cancellation.is_cancelled:
                    logger.info(
                        f"Cancellation observed for '{context.agent_name}', "
                        f"skipping remaining tool calls"
                    )
                    cancelled = True
                    state.complete()
                    break
                await self._execute_tool(context, call)

            if not response.tool_calls:
                if mode is LoopMode.DELEGATED:
                    logger.debug(f"Nudging '{context.agent_name}' to report")
                    context.conversation.append("user", self.nudge_message)
                else:
                    state.complete()

            if state.has_reached_max and state.status is LoopStatus.ACTIVE:
                logger.warning(
                    f"Agent '{context.agent_name}' reached {state.max_iterations} "
                    f"iterations without reporting"
                )
                state.complete(
                    fallback_report(state.iteration_count), synthesized=True
                )

        if state.final_report is not None:
            final_response = state.final_report
        else:
            last = context.conversation.last()
            final_response = last.content if last else ""

        result = LoopResult(
            final_response=final_response,
            report_out_called=state.report_out_called,
            tool_invocations=context.ledger.snapshot(),
            conversation=context.conversation.snapshot(),
            completed=not state.is_active,
            iteration_count=state.iteration_count,
            cancelled=cancelled,
        )
        logger.info(
            f"Loop for '{context.agent_name}' finished after "
            f"{result.iteration_count} iterations "
            f"(report_out={result.report_out_called}, cancelled={cancelled})"
        )
        await self._emit(
            events.LOOP_END,
            context,
            {
                "iterations": result.iteration_count,
                "report_out_called": result.report_out_called,
                "cancelled": cancelled,
            },
        )
        return result

    async def _submit_report(
        self, context: "ExecutionContext", call: ToolCall, response_text: str
    ) -> None:
        report = call.parameters.get("report") or response_text
        if not isinstance(report, str):
            report = str(report)
        context.ledger.record(
            ToolInvocation(
                tool_name=call.name, parameters=dict(call.parameters), result=report
            )
        )
        context.loop_state.mark_tool_invocation()
        context.loop_state.complete(report)
        logger.info(f"Agent '{context.agent_name}' submitted its report")
        await self._emit(events.REPORT_SUBMITTED, context, {"report": report})

    async def _execute_tool(self, context: "ExecutionContext", call: ToolCall) -> None:
        """Execute one tool call. Failures become conversation feedback."""
        call_id = call.id or uuid.uuid4().hex
        timestamp = datetime.now()
        started = time.perf_counter()
        context.loop_state.mark_tool_invocation()
        parameters = dict(call.parameters)

        result: Any = None
        error: Exception | None = None
        if call.name not in context.tool_names():
            error = ToolAccessError(
                f"Tool '{call.name}' not found",
                tool_name=call.name,
                agent_name=context.agent_name,
            )
        else:
            pre = await self._emit(
                events.TOOL_PRE,
                context,
                {"tool_name": call.name, "tool_call_id": call_id, "parameters": parameters},
            )
            if pre.action == "deny":
                error = PermissionError(
                    f"denied by hook: {pre.reason or 'no reason given'}"
                )
            elif pre.data and isinstance(pre.data.get("parameters"), dict):
                # tool:pre handlers may rewrite the call through "modify"
                parameters = dict(pre.data["parameters"])

        if error is None:
            context.cancellation.register_tool_start(call_id, call.name)
            try:
                result = await self.tool_executor.execute(call.name, parameters, context)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e
            finally:
                context.cancellation.register_tool_complete(call_id)

        elapsed_ms = (time.perf_counter() - started) * 1000
        context.touch()
        context.ledger.record(
            ToolInvocation(
                tool_name=call.name,
                parameters=parameters,
                result=result if error is None else {"error": str(error)},
                timestamp=timestamp,
                execution_time_ms=elapsed_ms,
            )
        )

        if error is not None:
            logger.warning(f"Tool {call.name} failed for '{context.agent_name}': {error}")
            context.conversation.append("user", f"Tool {call.name} failed: {error}")
            await self._emit(
                events.TOOL_ERROR,
                context,
                {
                    "tool_name": call.name,
                    "tool_call_id": call_id,
                    "error": str(error),
                    "error_type": type(error).__name__,
                },
            )
            return

        context.conversation.append_tool_result(call.name, result)
        await self._emit(
            events.TOOL_POST,
            context,
            {
                "tool_name": call.name,
                "tool_call_id": call_id,
                "execution_time_ms": elapsed_ms,
            },
        )

    async def _emit(
        self, event: str, context: "ExecutionContext", data: dict[str, Any]
    ) -> HookResult:
        if not self.hooks:
            return HookResult()
        payload = {
            "agent_name": context.agent_name,
            "conversation_id": context.conversation_id,
            **data,
        }
        return await self.hooks.emit(event, payload)
