"""Result chaining for multi-step client operations.

A pipeline runs named steps in order. Each step receives the previous
step's envelope and returns its own; the first failing step stops the
pipeline, and every step after it is recorded as not attempted.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from miniolite.errors import CompositeOperationError
from miniolite.models import Result

logger = logging.getLogger(__name__)

StepFn = Callable[[Result | None], Result]


@dataclass
class PipelineOutcome:
    """What happened when a pipeline ran.

    Attributes:
        operation: Name of the composite operation.
        result: The last envelope produced; the failing step's envelope,
            unchanged, when a step failed.
        completed: Names of the steps that succeeded, in order.
        failed_step: Name of the step that failed, if any.
        not_attempted: Steps skipped because an earlier one failed.
    """

    operation: str
    result: Result | None = None
    completed: list[str] = field(default_factory=list)
    failed_step: str | None = None
    not_attempted: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_step is None and not self.not_attempted

    @property
    def error(self) -> CompositeOperationError | None:
        if self.failed_step is None or self.result is None:
            return None
        return CompositeOperationError(self.failed_step, self.result)

    def raise_for_failure(self) -> PipelineOutcome:
        """Raise CompositeOperationError for the failing step, if any."""
        error = self.error
        if error is not None:
            raise error
        return self


class OperationPipeline:
    """An ordered list of steps chained on their result envelopes."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self._steps: list[tuple[str, StepFn]] = []

    def then(self, name: str, step: StepFn) -> OperationPipeline:
        self._steps.append((name, step))
        return self

    def run(self) -> PipelineOutcome:
        outcome = PipelineOutcome(operation=self.operation)
        previous: Result | None = None
        for index, (name, step) in enumerate(self._steps):
            previous = step(previous)
            outcome.result = previous
            if not previous.ok:
                outcome.failed_step = name
                outcome.not_attempted = [n for n, _ in self._steps[index + 1 :]]
                logger.warning("%s", outcome.error, extra={"operation": self.operation})
                break
            outcome.completed.append(name)
        return outcome
