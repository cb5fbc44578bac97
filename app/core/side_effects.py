"""Best-effort steps that run after a transaction has committed."""

from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class AdvisoryPhase:
    """
    Runs best-effort steps and records their failures as warnings.

    A failing step is logged and turned into a warning; it never raises and
    never affects work that was already committed.
    """

    def __init__(self, operation: str, resource_id: str | None = None):
        """Initialize the phase for one mutating operation."""
        self.operation = operation
        self.resource_id = resource_id
        self.warnings: list[str] = []

    async def run(self, step: str, action: Callable[[], Awaitable[T]]) -> T | None:
        """
        Await a best-effort step.

        Args:
            step: Short step name used in logs and warnings
            action: Zero-argument coroutine factory

        Returns:
            The step's result, or None if it failed
        """
        try:
            return await action()
        except Exception as e:
            logger.warning(
                "advisory_step_failed",
                operation=self.operation,
                step=step,
                resource_id=self.resource_id,
                error=str(e),
            )
            self.warnings.append(f"{step} could not be completed")
            return None
