"""
Tests for the loop state machine.
"""

import pytest

from relay_core.loop_state import LoopState
from relay_core.loop_state import LoopStatus


def test_create_initial():
    state = LoopState.create_initial()

    assert state.status is LoopStatus.IDLE
    assert state.is_active is False
    assert state.iteration_count == 0
    assert state.max_iterations == 50
    assert state.has_tool_invocations is False
    assert state.report_out_called is False
    assert state.final_report is None


def test_create_initial_rejects_zero_iterations():
    with pytest.raises(ValueError):
        LoopState.create_initial(0)


def test_idle_state_does_not_continue():
    assert LoopState.create_initial().should_continue is False


def test_iterations_count_up_to_max():
    state = LoopState.create_initial(max_iterations=2)
    state.activate()

    assert state.should_continue
    assert state.start_iteration() == 1
    assert state.should_continue
    assert state.start_iteration() == 2
    assert state.has_reached_max
    assert not state.should_continue


def test_start_iteration_beyond_max_raises():
    state = LoopState.create_initial(max_iterations=1)
    state.activate()
    state.start_iteration()

    with pytest.raises(RuntimeError, match="limit"):
        state.start_iteration()
    assert state.iteration_count == 1


def test_start_iteration_requires_active():
    state = LoopState.create_initial()
    with pytest.raises(RuntimeError):
        state.start_iteration()


def test_complete_with_report_marks_report_out():
    state = LoopState.create_initial()
    state.activate()
    state.complete("Coverage 95%")

    assert state.status is LoopStatus.COMPLETED
    assert state.is_active is False
    assert state.report_out_called is True
    assert state.final_report == "Coverage 95%"


def test_complete_without_report():
    state = LoopState.create_initial()
    state.activate()
    state.complete()

    assert state.status is LoopStatus.COMPLETED
    assert state.report_out_called is False
    assert state.final_report is None


def test_synthesized_report_does_not_count_as_report_out():
    state = LoopState.create_initial()
    state.activate()
    state.complete("fallback", synthesized=True)

    assert state.final_report == "fallback"
    assert state.report_out_called is False


def test_completed_is_terminal():
    """No transition leaves COMPLETED."""
    state = LoopState.create_initial()
    state.activate()
    state.complete()

    state.complete("late report")
    assert state.final_report is None
    with pytest.raises(RuntimeError):
        state.activate()
    with pytest.raises(RuntimeError):
        state.start_iteration()
    assert state.status is LoopStatus.COMPLETED
