"""
Execution State - the persisted record of one conversation's run.

The state is the only thing that survives between turns. An Interface node
pausing is not a suspended coroutine: the caller serializes the state, the
request ends, and a later request deserializes it and resumes from
``pause.last_pause_node_id``.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def _now() -> str:
    return datetime.now(UTC).isoformat()


class StepStatus(StrEnum):
    """Outcome of a handler invocation, and of a whole turn."""

    IN_PROGRESS = "in_progress"  # Continue to next node
    WAITING_FOR_INPUT = "waiting_for_input"  # Paused at an interface node
    COMPLETED = "completed"  # No next node; run is finished
    ERROR = "error"  # Run halted; state kept for inspection


class RecordStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class PauseState(BaseModel):
    """Bookkeeping for interface-node pauses."""

    has_paused_once: bool = False
    pause_count: int = 0
    first_pause_node_id: str | None = None
    last_pause_node_id: str | None = None

    model_config = {"extra": "allow"}


class StepRecord(BaseModel):
    """One entry in a run's history."""

    node_id: str
    node_type: str
    input: Any = None
    output: Any = None
    message: str | None = None
    status: RecordStatus = RecordStatus.SUCCESS
    timestamp: str = Field(default_factory=_now)  # ISO 8601

    model_config = {"extra": "allow"}


class ExecutionState(BaseModel):
    """
    Complete state of one conversation's run.

    ``history`` is append-only and is never pruned by the engine.
    ``completed`` is terminal: no handler runs against a completed state.
    """

    current_node_id: str
    variables: dict[str, Any] = Field(default_factory=dict)
    history: list[StepRecord] = Field(default_factory=list)
    completed: bool = False
    pause: PauseState = Field(default_factory=PauseState)

    model_config = {"extra": "allow"}

    def record_step(
        self,
        node_id: str,
        node_type: str,
        *,
        input: Any = None,
        output: Any = None,
        message: str | None = None,
        status: RecordStatus = RecordStatus.SUCCESS,
    ) -> StepRecord:
        record = StepRecord(
            node_id=node_id,
            node_type=str(node_type),
            input=input,
            output=output,
            message=message,
            status=status,
        )
        self.history.append(record)
        return record

    def last_output(self) -> Any:
        """Output of the most recent history record, or None."""
        return self.history[-1].output if self.history else None

    def mark_paused(self, node_id: str) -> None:
        """Record a pause at ``node_id``; the first pause also fills in the first-pause fields."""
        if not self.pause.has_paused_once:
            self.pause.has_paused_once = True
            self.pause.pause_count = 1
            self.pause.first_pause_node_id = node_id
        self.pause.last_pause_node_id = node_id

    @property
    def resume_node_id(self) -> str:
        return self.pause.last_pause_node_id or self.current_node_id

    def snapshot(self) -> "ExecutionState":
        """Deep copy, safe to hand to listeners while the run continues."""
        return self.model_copy(deep=True)

    def client_summary(self) -> dict[str, Any]:
        """State fields safe to expose to chat clients."""
        return {
            "current_node_id": self.current_node_id,
            "waiting_for_input": self.pause.has_paused_once and not self.completed,
            "completed": self.completed,
        }


@dataclass
class StepResult:
    """Result of a single node handler invocation."""

    status: StepStatus
    output: Any = None
    next_node_id: str | None = None
    message: str | None = None
    node_id: str | None = None
    node_type: str | None = None

    @classmethod
    def error(cls, message: str) -> "StepResult":
        return cls(status=StepStatus.ERROR, message=message)

    @classmethod
    def waiting(cls, output: Any) -> "StepResult":
        return cls(status=StepStatus.WAITING_FOR_INPUT, output=output)

    @classmethod
    def advance(cls, output: Any, next_node_id: str | None) -> "StepResult":
        """``in_progress`` toward ``next_node_id``, or ``completed`` when there is none."""
        if next_node_id is None:
            return cls(status=StepStatus.COMPLETED, output=output)
        return cls(status=StepStatus.IN_PROGRESS, output=output, next_node_id=next_node_id)

    @property
    def text(self) -> str:
        """Output as display text."""
        if self.output is None:
            return ""
        return self.output if isinstance(self.output, str) else str(self.output)
