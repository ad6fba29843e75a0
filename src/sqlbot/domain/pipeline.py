"""
Pipeline state models for SQLBot.

GenerationContext is immutable and rebuilt every attempt; PipelineRun is
the mutable record the retry loop fills in as it moves through states.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .base_enums import MessageRole, PipelineState
from .responses import ExecutionOutcome, SqlCandidate


@dataclass(frozen=True)
class HistoryTurn:
    """One entry of the working history given to the generator."""

    role: MessageRole
    content: str


@dataclass(frozen=True)
class GenerationContext:
    """Fully assembled prompt inputs for one generation attempt."""

    question: str
    schema_context: str
    glossary_context: str
    examples_context: str
    history: Sequence[HistoryTurn] = ()


@dataclass
class PipelineAttempt:
    """One generate -> execute iteration."""

    index: int
    candidate: Optional[SqlCandidate] = None
    executed_sql: Optional[str] = None
    outcome: Optional[ExecutionOutcome] = None
    carried_error: Optional[str] = None


@dataclass
class PipelineRun:
    """
    Mutable state of one chat turn's retry loop.

    Tracks every state transition and attempt so the caller can build an
    auditable answer record from the terminal state.
    """

    # Input
    question: str
    data_source_id: int
    max_retries: int

    state: PipelineState = PipelineState.GENERATING
    transitions: List[PipelineState] = field(default_factory=lambda: [PipelineState.GENERATING])
    attempts: List[PipelineAttempt] = field(default_factory=list)

    # Terminal data
    sql: Optional[str] = None
    explanation: Optional[str] = None
    outcome: Optional[ExecutionOutcome] = None
    error_message: Optional[str] = None

    def move_to(self, state: PipelineState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"Pipeline already finished in state {self.state.value}")
        self.state = state
        self.transitions.append(state)

    @property
    def attempt_index(self) -> int:
        """Index of the latest attempt (0-based); -1 before the first attempt."""
        return len(self.attempts) - 1

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.SUCCEEDED
