"""
Processing status transitions.

    PENDING ──► PROCESSING ──► COMPLETED      parsed, confidence >= 70
                          ├──► NEEDS_REVIEW   parsed, confidence <  70
                          └──► FAILED         fetch / parse / write failed

PROCESSING is implicit inside a job (never persisted by the pipeline), so
the persisted transition is PENDING → terminal. A retried job may start
from FAILED (the previous attempt's fallback write) and is allowed to
re-enter the same path.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from grantsignal.models.documents import ProcessingStatus

CONFIDENCE_THRESHOLD = 70


class ParseOutcome(str, Enum):
    PARSED = "parsed"
    FAILED = "failed"


class InvalidTransitionError(ValueError):
    def __init__(self, current: ProcessingStatus, outcome: ParseOutcome) -> None:
        super().__init__(f"No transition from {current.value} on {outcome.value}")
        self.current = current
        self.outcome = outcome


@dataclass(frozen=True)
class Transition:
    outcome:    ParseOutcome
    confidence: float | None = None

    @classmethod
    def parsed(cls, confidence: float) -> "Transition":
        return cls(ParseOutcome.PARSED, confidence)

    @classmethod
    def failed(cls) -> "Transition":
        return cls(ParseOutcome.FAILED)


def status_for_confidence(confidence: float) -> ProcessingStatus:
    if confidence >= CONFIDENCE_THRESHOLD:
        return ProcessingStatus.COMPLETED
    return ProcessingStatus.NEEDS_REVIEW


def next_status(current: ProcessingStatus, transition: Transition) -> ProcessingStatus:
    """
    Every status accepts both outcomes; a retried or reprocessed upload
    replays the same write. Raises InvalidTransitionError for a parsed
    outcome without a confidence score.
    """
    if transition.outcome is ParseOutcome.FAILED:
        return ProcessingStatus.FAILED

    if transition.confidence is None:
        raise InvalidTransitionError(current, transition.outcome)
    return status_for_confidence(transition.confidence)
