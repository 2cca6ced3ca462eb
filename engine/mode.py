from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Dict, FrozenSet


class EngineState(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"


@dataclass
class StateChangeEvent:
    from_state: EngineState
    to_state: EngineState
    reason: str


_TRANSITIONS: Dict[EngineState, FrozenSet[EngineState]] = {
    EngineState.STOPPED: frozenset({EngineState.RUNNING}),
    EngineState.RUNNING: frozenset({EngineState.PAUSED, EngineState.STOPPED}),
    EngineState.PAUSED: frozenset({EngineState.RUNNING, EngineState.STOPPED}),
}


class StateMachine:
    def __init__(self, initial_state: EngineState = EngineState.STOPPED):
        self._state = initial_state
        self.logger = logging.getLogger("state_machine")

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == EngineState.RUNNING

    def can_transition(self, target: EngineState) -> bool:
        return target in _TRANSITIONS[self._state]

    def transition(self, target: EngineState, reason: str) -> StateChangeEvent:
        if target == self._state:
            return StateChangeEvent(self._state, target, "No-op transition request")

        if not self.can_transition(target):
            raise ValueError(f"Invalid transition {self._state.value} -> {target.value}")

        event = StateChangeEvent(self._state, target, reason)
        self._state = target
        self.logger.info(
            "STATE_CHANGE from=%s to=%s reason=%s",
            event.from_state.value,
            event.to_state.value,
            event.reason,
        )
        return event
