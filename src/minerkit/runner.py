"""Idempotent step runner.

CONTRACT
- Inputs: ordered list of ProvisioningStep (name, probe, action, failure)
- Outputs (required):
  - StepReport listing steps that ran and steps that were skipped
  - `step` events in the run's EventLog (if given)
- Invariants:
  - An action runs only when its probe reports "not yet satisfied"
  - Steps run strictly in order; step N finishes before step N+1 starts
  - No state is kept between invocations (state lives on the host)
- Failure:
  - The first failing probe or action aborts the run with FatalAbort; no retry, no rollback
"""

from __future__ import annotations

import platform
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from loguru import logger

from .errors import FatalAbort
from .util.events import EventLog

SUPPORTED_SYSTEM = "Linux"


@dataclass(frozen=True)
class ProvisioningStep:
    name: str
    probe: Callable[[], bool]
    action: Callable[[], None]
    failure: str


@dataclass
class StepReport:
    ran: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.ran)


def require_platform(system: str | None = None) -> None:
    system = system if system is not None else platform.system()
    if system != SUPPORTED_SYSTEM:
        raise FatalAbort(f"This installer only supports {SUPPORTED_SYSTEM} (found {system or 'unknown'}).")


def run_steps(steps: Sequence[ProvisioningStep], events: EventLog | None = None) -> StepReport:
    report = StepReport()
    for step in steps:
        try:
            satisfied = step.probe()
        except OSError as e:
            if events:
                events.emit(event="step", name=step.name, status="failed", message=str(e))
            raise FatalAbort(f"{step.failure} ({e})") from e
        if satisfied:
            logger.info(f"{step.name}: already satisfied; skipping.")
            report.skipped.append(step.name)
            if events:
                events.emit(event="step", name=step.name, status="skipped")
            continue

        logger.info(f"{step.name}...")
        try:
            step.action()
        except FatalAbort as e:
            if events:
                events.emit(event="step", name=step.name, status="failed", message=str(e))
            raise
        except OSError as e:
            if events:
                events.emit(event="step", name=step.name, status="failed", message=str(e))
            raise FatalAbort(f"{step.failure} ({e})") from e
        report.ran.append(step.name)
        if events:
            events.emit(event="step", name=step.name, status="ran")
    return report
