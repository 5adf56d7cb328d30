"""
Flow state machine.

    started ──► extracting ──► enriching ──► completed
                    │              │
                    └──► failed ◄──┘

completed and failed are absorbing. There is no checkpoint between stages:
a retry is always a fresh execution starting from `started`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from docpipeline.core.errors import InvalidTransition, PipelineError
from docpipeline.schemas.pipeline import FlowExecution, FlowState, StageError

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[FlowState, frozenset[FlowState]] = {
    FlowState.STARTED:    frozenset({FlowState.EXTRACTING}),
    FlowState.EXTRACTING: frozenset({FlowState.ENRICHING, FlowState.FAILED}),
    FlowState.ENRICHING:  frozenset({FlowState.COMPLETED, FlowState.FAILED}),
    FlowState.COMPLETED:  frozenset(),
    FlowState.FAILED:     frozenset(),
}

TERMINAL_STATES = frozenset({FlowState.COMPLETED, FlowState.FAILED})


class FlowStateMachine:
    """Guards the state of a single FlowExecution record."""

    def __init__(self, execution: FlowExecution) -> None:
        self._execution = execution

    @property
    def execution(self) -> FlowExecution:
        return self._execution

    @property
    def state(self) -> FlowState:
        return self._execution.state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition(self, target: FlowState) -> bool:
        return target in _TRANSITIONS[self.state]

    def transition(self, target: FlowState) -> None:
        if not self.can_transition(target):
            raise InvalidTransition(self.state.value, target.value)

        logger.debug(
            "Flow transition | execution=%s %s -> %s",
            self._execution.execution_id, self.state.value, target.value,
        )
        self._execution.state = target
        if target in TERMINAL_STATES:
            self._execution.finished_at = datetime.now(timezone.utc)

    def fail(self, error: PipelineError) -> None:
        self.transition(FlowState.FAILED)
        self._execution.error = StageError(code=error.code, message=error.message)

    def complete(self, result_key: str) -> None:
        self.transition(FlowState.COMPLETED)
        self._execution.result_key = result_key
