from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    name: str
    action: Callable[[dict[str, Any]], Any]
    compensate: Callable[[dict[str, Any]], None] | None = None


@dataclass
class Saga:
    """Ordered list of steps, each with an optional undo action.

    Steps share a context dict; a step's return value is stored under its
    name. When a step raises, its name is stored under "failed_step", the
    compensations of the steps that already completed run in reverse order
    and the original exception is re-raised.
    A compensation that itself fails is logged and does not mask the
    original error.
    """

    name: str
    steps: list[SagaStep] = field(default_factory=list)

    def step(
        self,
        name: str,
        action: Callable[[dict[str, Any]], Any],
        compensate: Callable[[dict[str, Any]], None] | None = None,
    ) -> "Saga":
        self.steps.append(SagaStep(name=name, action=action, compensate=compensate))
        return self

    def run(self, context: dict[str, Any] | None = None) -> dict[str, Any]:
        ctx: dict[str, Any] = context if context is not None else {}
        completed: list[SagaStep] = []
        for step in self.steps:
            try:
                ctx[step.name] = step.action(ctx)
            except Exception:
                logger.warning("saga %s: step %s failed, compensating", self.name, step.name)
                ctx["failed_step"] = step.name
                self._compensate(completed, ctx)
                raise
            completed.append(step)
        return ctx

    def _compensate(self, completed: list[SagaStep], ctx: dict[str, Any]) -> None:
        failures: list[str] = []
        for step in reversed(completed):
            if step.compensate is None:
                continue
            try:
                step.compensate(ctx)
            except Exception:
                logger.exception(
                    "saga %s: compensation for %s failed, state may drift",
                    self.name,
                    step.name,
                )
                failures.append(step.name)
        ctx["compensation_failures"] = failures
