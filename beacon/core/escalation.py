"""Escalation run state machine.

A run is always in exactly one of three states:

    Active(level_index, cycles_remaining, level_started_at)
    Acknowledged(by, at)        terminal
    Exhausted(at)               terminal

All transition functions are pure: they take a state and a clock
reading and return the next state. Persistence and notification live in
``beacon.services.escalation``.
"""

import enum
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from beacon.models.oncall import RunStatus


@dataclass(frozen=True)
class Active:
    level_index: int
    cycles_remaining: int
    level_started_at: datetime


@dataclass(frozen=True)
class Acknowledged:
    by: str | None
    at: datetime


@dataclass(frozen=True)
class Exhausted:
    at: datetime


RunState = Active | Acknowledged | Exhausted


class Transition(enum.StrEnum):
    NONE = "none"
    ADVANCED = "advanced"
    WRAPPED = "wrapped"
    EXHAUSTED = "exhausted"


def start(level_count: int, repeat_count: int, now: datetime) -> RunState:
    """Initial state for a newly triggered run."""
    if level_count <= 0:
        return Exhausted(at=now)
    return Active(level_index=0, cycles_remaining=max(repeat_count, 0), level_started_at=now)


def acknowledge(state: RunState, by: str | None, now: datetime) -> RunState:
    """Stop escalation. Terminal states are returned unchanged."""
    if isinstance(state, Active):
        return Acknowledged(by=by, at=now)
    return state


def is_due(state: Active, timeout_minutes: int, now: datetime) -> bool:
    return now - state.level_started_at >= timedelta(minutes=timeout_minutes)


def evaluate(
    state: RunState,
    timeouts: Sequence[int],
    now: datetime,
) -> tuple[RunState, Transition]:
    """Apply at most one timeout transition.

    ``timeouts`` holds ``timeout_minutes`` for each level, in level order.
    A level index beyond the current chain (levels removed mid-run) is
    treated as already timed out.
    """
    if not isinstance(state, Active):
        return state, Transition.NONE

    level_count = len(timeouts)
    if state.level_index < level_count:
        if not is_due(state, timeouts[state.level_index], now):
            return state, Transition.NONE

    if state.level_index + 1 < level_count:
        return (
            Active(state.level_index + 1, state.cycles_remaining, now),
            Transition.ADVANCED,
        )
    if state.cycles_remaining > 0 and level_count > 0:
        return Active(0, state.cycles_remaining - 1, now), Transition.WRAPPED
    return Exhausted(at=now), Transition.EXHAUSTED


def state_of(run) -> RunState:
    """Rebuild the tagged state from a persisted EscalationRun row."""
    if run.status == RunStatus.ACKNOWLEDGED:
        return Acknowledged(by=run.acknowledged_by, at=run.acknowledged_at)
    if run.status == RunStatus.EXHAUSTED:
        return Exhausted(at=run.finished_at)
    return Active(run.level_index, run.cycles_remaining, run.level_started_at)


def status_of(state: RunState) -> RunStatus:
    if isinstance(state, Acknowledged):
        return RunStatus.ACKNOWLEDGED
    if isinstance(state, Exhausted):
        return RunStatus.EXHAUSTED
    return RunStatus.ACTIVE
