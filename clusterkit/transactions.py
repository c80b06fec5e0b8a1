"""Saga transactions with compensation on failure."""

from __future__ import annotations

from abc import ABC, abstractmethod

from clusterkit.errors import DistributedError


class SagaStep(ABC):
    """One step of a saga: an action and the action that undoes it."""

    @abstractmethod
    def execute(self) -> None:
        """Perform the step; raise DistributedError on failure."""

    @abstractmethod
    def compensate(self) -> None:
        """Undo the effects of a successful execute."""


class Saga:
    """An ordered list of steps run as a unit."""

    def __init__(self) -> None:
        self.steps: list[SagaStep] = []

    def then(self, step: SagaStep) -> Saga:
        """Append a step and return the saga for chaining."""
        self.steps.append(step)
        return self

    def run(self) -> None:
        """Run all steps; on failure compensate completed ones in reverse and re-raise."""
        done: list[SagaStep] = []
        for step in self.steps:
            try:
                step.execute()
            except DistributedError:
                for finished in reversed(done):
                    try:
                        finished.compensate()
                    except DistributedError:
                        pass
                raise
            done.append(step)