"""
Loop state machine for one agentic loop run.

Pure state transitions, no I/O:

    IDLE --activate()--> ACTIVE --complete()--> COMPLETED

COMPLETED is terminal. The iteration count never exceeds ``max_iterations``.
"""

from dataclasses import dataclass
from enum import Enum

from .models import DEFAULT_MAX_ITERATIONS


class LoopStatus(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass
class LoopState:
    is_active: bool = False
    iteration_count: int = 0
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    has_tool_invocations: bool = False
    report_out_called: bool = False
    final_report: str | None = None
    _completed: bool = False

    @classmethod
    def create_initial(cls, max_iterations: int = DEFAULT_MAX_ITERATIONS) -> "LoopState":
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")
        return cls(max_iterations=max_iterations)

    @property
    def status(self) -> LoopStatus:
        if self._completed:
            return LoopStatus.COMPLETED
        if self.is_active:
            return LoopStatus.ACTIVE
        return LoopStatus.IDLE

    @property
    def should_continue(self) -> bool:
        return (
            self.is_active
            and self.iteration_count < self.max_iterations
            and not self.report_out_called
        )

    @property
    def has_reached_max(self) -> bool:
        return self.iteration_count >= self.max_iterations

    def activate(self) -> None:
        if self.status is not LoopStatus.IDLE:
            raise RuntimeError(f"Cannot activate loop in state {self.status.value}")
        self.is_active = True

    def start_iteration(self) -> int:
        """Count one more iteration. Must be called before each model invocation."""
        if self.status is not LoopStatus.ACTIVE:
            raise RuntimeError(
                f"Cannot start iteration in state {self.status.value}"
            )
        if self.has_reached_max:
            raise RuntimeError(
                f"Iteration limit reached ({self.max_iterations})"
            )
        self.iteration_count += 1
        return self.iteration_count

    def mark_tool_invocation(self) -> None:
        self.has_tool_invocations = True

    def complete(self, report: str | None = None, *, synthesized: bool = False) -> None:
        """
        Move to COMPLETED. A second call is a no-op.

        Args:
            report: Final report text, if one was produced.
            synthesized: The report is a fallback produced by the loop rather
                than an explicit ``reportOut`` call; ``report_out_called``
                stays False.
        """
        if self._completed:
            return
        self.is_active = False
        self._completed = True
        if report is not None:
            self.final_report = report
            if not synthesized:
                self.report_out_called = True
