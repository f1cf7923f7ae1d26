"""Ordered steps with per-step compensation.

WHY NOT A TRANSACTION
----------------------
Provisioning writes to three owners: the local registry, the tenant
service and the scheduling platform.  No transaction spans them.  A saga
replaces the rollback with explicit undo actions:

  step 1 ok → step 2 ok → step 3 FAILS
                  ↓
  compensate 2 ← (1 has nothing to undo)

A failure at step k runs the compensations of steps k-1..1, newest first,
each at most once.  The original error is then re-raised unchanged.  If
any compensation itself raises, the runner keeps going through the
remaining ones (one stuck resource should not strand the others) and
finally raises CompensationFailed carrying every failure.

Steps run strictly in order; each may read what the previous one left on
the shared run object.  There is no parallel fan-out and no cancellation:
once a step has committed an external effect it can only be compensated.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from calsync.core.errors import CompensationFailed
from calsync.core.metrics import COMPENSATION_FAILURES

logger = logging.getLogger(__name__)

StepAction = Callable[[], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class SagaStep:
    name: str
    action: StepAction
    compensate: StepAction | None = None


class Saga:
    def __init__(self, name: str, steps: list[SagaStep]) -> None:
        self.name = name
        self._steps = steps
        self.completed: list[str] = []
        self.compensated: list[str] = []

    async def run(self) -> None:
        done: list[SagaStep] = []
        for step in self._steps:
            try:
                await step.action()
            except Exception as exc:
                logger.warning(
                    "Saga %s failed at step=%s: %r",
                    self.name,
                    step.name,
                    exc,
                    extra={"saga_step": step.name},
                )
                await self._compensate(done, exc)
                raise
            done.append(step)
            self.completed.append(step.name)

    async def _compensate(self, done: list[SagaStep], original: Exception) -> None:
        failures: list[tuple[str, BaseException]] = []
        for step in reversed(done):
            if step.compensate is None:
                continue
            try:
                await step.compensate()
            except Exception as exc:
                COMPENSATION_FAILURES.labels(step=step.name).inc()
                logger.exception(
                    "Saga %s could not compensate step=%s; manual cleanup required",
                    self.name,
                    step.name,
                    extra={"saga_step": step.name},
                )
                failures.append((step.name, exc))
            else:
                self.compensated.append(step.name)
                logger.info(
                    "Saga %s compensated step=%s",
                    self.name,
                    step.name,
                    extra={"saga_step": step.name},
                )
        if failures:
            raise CompensationFailed(original, failures) from original
