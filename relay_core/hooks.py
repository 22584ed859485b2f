"""
Hook system for lifecycle events.
Provides deterministic execution with priority ordering.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .models import HookResult

logger = logging.getLogger(__name__)


@dataclass
class HookHandler:
    """Registered hook handler with priority."""

    handler: Callable[[str, dict[str, Any]], Awaitable[HookResult | None]]
    priority: int = 0
    name: str | None = None

    def __lt__(self, other: "HookHandler") -> bool:
        """Sort by priority (lower number = higher priority)."""
        return self.priority < other.priority


class HookRegistry:
    """
    Manages lifecycle hooks with deterministic execution.
    Hooks execute sequentially by priority with short-circuit on deny.

    Handler failures are logged and never interrupt the loop or the
    delegation that emitted the event.
    """

    def __init__(self):
        self._handlers: dict[str, list[HookHandler]] = defaultdict(list)
        self._defaults: dict[str, Any] = {}

    def register(
        self,
        event: str,
        handler: Callable[[str, dict[str, Any]], Awaitable[HookResult | None]],
        priority: int = 0,
        name: str | None = None,
    ) -> Callable[[], None]:
        """
        Register a hook handler for an event.

        Args:
            event: Event name to hook into (see ``relay_core.events``)
            handler: Async function that handles the event
            priority: Execution priority (lower = earlier)
            name: Optional handler name for debugging

        Returns:
            Unregister function
        """
        hook_handler = HookHandler(
            handler=handler, priority=priority, name=name or handler.__name__
        )

        self._handlers[event].append(hook_handler)
        self._handlers[event].sort()

        logger.debug(
            f"Registered hook '{hook_handler.name}' for event '{event}' with priority {priority}"
        )

        def unregister():
            if hook_handler in self._handlers[event]:
                self._handlers[event].remove(hook_handler)
                logger.debug(
                    f"Unregistered hook '{hook_handler.name}' from event '{event}'"
                )

        return unregister

    on = register

    def set_default_fields(self, **defaults):
        """Set fields merged into every emitted event (explicit data wins)."""
        self._defaults = defaults
        logger.debug(f"Set default fields: {list(defaults.keys())}")

    async def emit(self, event: str, data: dict[str, Any]) -> HookResult:
        """
        Emit an event to all registered handlers.

        Handlers execute sequentially by priority with:
        - Short-circuit on 'deny' action
        - Data modification chaining on 'modify' action
        - Continue on 'continue' action (or a ``None`` return)

        Returns:
            Final hook result after all handlers
        """
        handlers = self._handlers.get(event, [])
        current_data = {**self._defaults, **(data or {})}

        if not handlers:
            return HookResult(action="continue", data=current_data)

        logger.debug(f"Emitting event '{event}' to {len(handlers)} handlers")

        for hook_handler in list(handlers):
            try:
                result = await hook_handler.handler(event, current_data)

                if result is None:
                    continue

                if not isinstance(result, HookResult):
                    logger.warning(
                        f"Handler '{hook_handler.name}' returned invalid result type"
                    )
                    continue

                if result.action == "deny":
                    logger.info(
                        f"Event '{event}' denied by handler '{hook_handler.name}': {result.reason}"
                    )
                    return result

                if result.action == "modify" and result.data is not None:
                    current_data = result.data
                    logger.debug(f"Handler '{hook_handler.name}' modified event data")

            except asyncio.CancelledError:
                logger.error(
                    f"CancelledError in hook handler '{hook_handler.name}' "
                    f"for event '{event}'"
                )
            except Exception as e:
                logger.error(
                    f"Error in hook handler '{hook_handler.name}' for event '{event}': {e}"
                )

        return HookResult(action="continue", data=current_data)

    def list_handlers(self, event: str | None = None) -> dict[str, list[str]]:
        """List registered handler names, optionally for one event."""
        if event:
            handlers = self._handlers.get(event, [])
            return {event: [h.name for h in handlers if h.name is not None]}
        return {
            evt: [h.name for h in handlers if h.name is not None]
            for evt, handlers in self._handlers.items()
        }
