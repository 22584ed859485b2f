"""
Tests for the agentic loop driver.
"""

import pytest

from relay_core import events
from relay_core.errors import AgentExecutionError
from relay_core.loop import DEFAULT_NUDGE_MESSAGE
from relay_core.loop import LoopMode
from relay_core.loop import fallback_report
from relay_core.loop_state import LoopStatus
from relay_core.models import HookResult
from relay_core.models import ModelResponse
from relay_core.models import ToolCall
from relay_core.testing import EventRecorder
from relay_core.testing import ScriptedModel
from relay_core.testing import build_engine
from relay_core.testing import call_tool
from relay_core.testing import delegate
from relay_core.testing import make_config
from relay_core.testing import make_profile
from relay_core.testing import report


# ---------------------------------------------------------------------------
# Delegated flavor
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_delegated_loop_ends_on_report_out(harness, model):
    model.add("tester", call_tool("search", q="coverage"), report("Coverage 95%"))
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "write unit tests")

    assert result.final_response == "Coverage 95%"
    assert result.report_out_called is True
    assert result.completed is True
    assert result.iteration_count == 2
    assert [i.tool_name for i in result.tool_invocations] == ["search", "reportOut"]
    assert result.tool_invocations[0].result == "3 results"
    assert context.loop_state.status is LoopStatus.COMPLETED
    assert context.is_agentic_loop is True


@pytest.mark.asyncio
async def test_tool_calls_after_report_out_are_skipped(harness, model):
    model.add(
        "tester",
        ModelResponse(
            tool_calls=[
                ToolCall(name="reportOut", parameters={"report": "done early"}),
                ToolCall(name="search", parameters={}),
            ]
        ),
    )
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert result.final_response == "done early"
    assert harness.tools.calls == []


@pytest.mark.asyncio
async def test_report_text_falls_back_to_model_text(harness, model):
    model.add(
        "tester",
        ModelResponse(text="Summary in prose", tool_calls=[ToolCall(name="reportOut")]),
    )
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert result.final_response == "Summary in prose"
    assert result.report_out_called is True


@pytest.mark.asyncio
async def test_delegated_loop_nudges_silent_agent(harness, model):
    model.add("tester", ModelResponse(text="Let me think."), report("ok"))
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    contents = [entry.content for entry in result.conversation]
    nudge_index = contents.index(DEFAULT_NUDGE_MESSAGE)
    assert contents[nudge_index - 1] == "Let me think."
    assert result.conversation[nudge_index].role == "user"
    assert result.iteration_count == 2


@pytest.mark.asyncio
async def test_exhausted_iterations_produce_fallback_report(team_config):
    """An agent limited to 3 iterations that never reports still finishes."""
    model = ScriptedModel({"tester": [call_tool("search")] * 3})
    harness = build_engine(
        team_config, model, tool_results={"search": "hit"}, max_iterations=3
    )
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert result.iteration_count == 3
    assert result.report_out_called is False
    assert result.completed is True
    assert "3" in result.final_response
    assert result.final_response == fallback_report(3)
    assert len(harness.tools.calls) == 3


@pytest.mark.asyncio
async def test_silent_delegate_is_bounded(team_config):
    """A delegate that never calls tools is nudged until the limit."""
    harness = build_engine(team_config, ScriptedModel(), max_iterations=4)
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert result.iteration_count == 4
    assert result.final_response == fallback_report(4)
    nudges = [e for e in result.conversation if e.content == DEFAULT_NUDGE_MESSAGE]
    assert len(nudges) == 4


# ---------------------------------------------------------------------------
# Free-running flavor
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_free_loop_ends_without_tool_calls(harness, model):
    model.add("coordinator", call_tool("search"), ModelResponse(text="All done."))
    context = await harness.start()

    result = await harness.loop.run_free(context, "hello")

    assert result.final_response == "All done."
    assert result.report_out_called is False
    assert result.iteration_count == 2
    assert DEFAULT_NUDGE_MESSAGE not in [e.content for e in result.conversation]


@pytest.mark.asyncio
async def test_free_loop_also_ends_on_report_out(harness, model):
    model.add("coordinator", report("final answer"), call_tool("search"))
    context = await harness.start()

    result = await harness.loop.run(context, "hello", LoopMode.FREE_RUNNING)

    assert result.final_response == "final answer"
    assert result.iteration_count == 1


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_tool_failure_is_recoverable(team_config):
    model = ScriptedModel({"tester": [call_tool("flaky"), report("recovered")]})
    harness = build_engine(
        team_config, model, tool_results={"flaky": RuntimeError("connection reset")}
    )
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert result.final_response == "recovered"
    failure = [e for e in result.conversation if e.content.startswith("Tool flaky failed")]
    assert failure[0].content == "Tool flaky failed: connection reset"
    assert failure[0].role == "user"
    assert result.tool_invocations[0].result == {"error": "connection reset"}


@pytest.mark.asyncio
async def test_unknown_tool_is_recoverable(harness, model):
    model.add("tester", call_tool("teleport"), report("ok"))
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert result.final_response == "ok"
    assert any(
        e.content == "Tool teleport failed: Tool 'teleport' not found"
        for e in result.conversation
    )


@pytest.mark.asyncio
async def test_model_failure_is_fatal(harness, model):
    model.add("tester", call_tool("search"), RuntimeError("rate limited"))
    context = await harness.start("tester")

    with pytest.raises(AgentExecutionError) as exc_info:
        await harness.loop.run_delegated(context, "work")

    error = exc_info.value
    assert error.agent_name == "tester"
    assert error.iteration == 2
    assert isinstance(error.__cause__, RuntimeError)
    assert context.loop_state.status is LoopStatus.COMPLETED


@pytest.mark.asyncio
async def test_missing_model_raises(harness, team_config):
    context = await harness.registry.initialize_agent(team_config.get_agent("tester"))

    with pytest.raises(AgentExecutionError, match="no model"):
        await harness.loop.run_delegated(context, "work")


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancelled_before_start(harness, model):
    context = await harness.start("tester")
    context.cancellation.request_immediate()

    result = await harness.loop.run_delegated(context, "work")

    assert result.cancelled is True
    assert result.iteration_count == 0
    assert result.final_response == "work"
    assert model.calls == []


@pytest.mark.asyncio
async def test_cancellation_observed_at_next_iteration(team_config):
    def stop(parameters, context):
        context.cancellation.request_graceful()
        return "stopping"

    model = ScriptedModel({"tester": [call_tool("stop"), report("never sent")]})
    harness = build_engine(team_config, model, tool_results={"stop": stop})
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert result.cancelled is True
    assert result.iteration_count == 1
    assert result.report_out_called is False
    assert len(result.tool_invocations) == 1


@pytest.mark.asyncio
async def test_cancellation_skips_remaining_calls_in_turn(team_config):
    def stop(parameters, context):
        context.cancellation.request_graceful()
        return "stopping"

    turn = ModelResponse(
        tool_calls=[
            ToolCall(name="stop"),
            ToolCall(name="search", parameters={"q": "a"}),
            ToolCall(name="search", parameters={"q": "b"}),
        ]
    )
    model = ScriptedModel({"tester": [turn, report("never sent")]})
    harness = build_engine(
        team_config, model, tool_results={"stop": stop, "search": "hit"}
    )
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert [call[0] for call in harness.tools.calls] == ["stop"]
    assert result.cancelled is True
    assert result.iteration_count == 1
    assert [i.tool_name for i in result.tool_invocations] == ["stop"]


# ---------------------------------------------------------------------------
# Log, ledger and hooks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_conversation_is_append_only_during_run(harness, model):
    snapshots = []

    def observe(conversation):
        snapshots.append(conversation.snapshot())
        return call_tool("search")

    model.add("tester", observe, observe, observe, report("done"))
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    lengths = [len(s) for s in snapshots]
    assert lengths == sorted(lengths)
    for snapshot in snapshots:
        assert result.conversation[: len(snapshot)] == snapshot


@pytest.mark.asyncio
async def test_ledger_records_timing(harness, model):
    model.add("tester", call_tool("search", q="a"), report("done"))
    context = await harness.start("tester")

    await harness.loop.run_delegated(context, "work")

    [search, _] = context.tool_invocations
    assert search.parameters == {"q": "a"}
    assert search.execution_time_ms >= 0
    assert context.loop_state.has_tool_invocations is True


@pytest.mark.asyncio
async def test_lifecycle_events(team_config):
    recorder = EventRecorder()
    model = ScriptedModel({"tester": [call_tool("search"), report("done")]})
    harness = build_engine(
        team_config, model, tool_results={"search": "hit"}, hooks=recorder
    )
    context = await harness.start("tester")
    recorder.clear()

    await harness.loop.run_delegated(context, "work")

    assert recorder.names() == [
        events.LOOP_START,
        events.LOOP_ITERATION,
        events.MODEL_REQUEST,
        events.MODEL_RESPONSE,
        events.TOOL_PRE,
        events.TOOL_POST,
        events.LOOP_ITERATION,
        events.MODEL_REQUEST,
        events.MODEL_RESPONSE,
        events.REPORT_SUBMITTED,
        events.LOOP_END,
    ]
    assert all(data["agent_name"] == "tester" for _, data in recorder.events)


@pytest.mark.asyncio
async def test_denied_tool_is_reported_as_failure(team_config):
    from relay_core.hooks import HookRegistry

    hooks = HookRegistry()

    async def deny_search(event, data):
        if data["tool_name"] == "search":
            return HookResult(action="deny", reason="read-only mode")

    hooks.register(events.TOOL_PRE, deny_search)
    model = ScriptedModel({"tester": [call_tool("search"), report("done")]})
    harness = build_engine(team_config, model, tool_results={"search": "hit"}, hooks=hooks)
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert harness.tools.calls == []
    assert any("read-only mode" in e.content for e in result.conversation)
    assert result.final_response == "done"


@pytest.mark.asyncio
async def test_tool_pre_modify_rewrites_parameters(team_config):
    from relay_core.hooks import HookRegistry

    hooks = HookRegistry()

    async def rewrite_query(event, data):
        if data["tool_name"] == "search":
            return HookResult(
                action="modify", data={**data, "parameters": {"q": "rewritten"}}
            )

    hooks.register(events.TOOL_PRE, rewrite_query)
    model = ScriptedModel({"tester": [call_tool("search", q="original"), report("done")]})
    harness = build_engine(team_config, model, tool_results={"search": "hit"}, hooks=hooks)
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert harness.tools.calls[0][1] == {"q": "rewritten"}
    assert result.tool_invocations[0].parameters == {"q": "rewritten"}


@pytest.mark.asyncio
async def test_assistant_text_is_logged_every_iteration(harness, model):
    model.add("tester", call_tool("search"), call_tool("search", text="Found it."), report("ok"))
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assistant = [e.content for e in result.conversation if e.role == "assistant"]
    assert assistant == ["", "Found it.", ""]
    assert len(assistant) == result.iteration_count


# ---------------------------------------------------------------------------
# Tool permissions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_tool_outside_permissions_is_not_executed():
    config = make_config(
        make_profile("coordinator"),
        make_profile("tester", tools=["reportOut"]),
        entry_agent="coordinator",
    )
    model = ScriptedModel({"tester": [call_tool("search", q="x"), report("done")]})
    harness = build_engine(config, model, tool_results={"search": "hit"})
    context = await harness.start("tester")

    result = await harness.loop.run_delegated(context, "work")

    assert harness.tools.calls == []
    assert any(
        e.content == "Tool search failed: Tool 'search' not found"
        for e in result.conversation
    )
    assert result.tool_invocations[0].result == {"error": "Tool 'search' not found"}
    assert result.final_response == "done"


@pytest.mark.asyncio
async def test_delegate_work_requires_tool_permission():
    """Delegation rights alone do not grant the delegateWork tool."""
    config = make_config(
        make_profile("coordinator", delegation="all", tools=["reportOut"]),
        make_profile("tester"),
        entry_agent="coordinator",
    )
    model = ScriptedModel({"coordinator": [delegate("tester"), ModelResponse(text="gave up")]})
    harness = build_engine(config, model)
    context = await harness.start()

    result = await harness.loop.run_free(context, "work")

    assert result.final_response == "gave up"
    assert model.calls_for("tester") == 0
    assert harness.engine.get_active_delegations() == []
    assert harness.engine.get_delegation_stats() == {"active": 0, "completed": 0, "failed": 0}
    assert any(
        e.content.startswith("Tool delegateWork failed") for e in result.conversation
    )
