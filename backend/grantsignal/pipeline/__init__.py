"""
Document ingestion pipeline.

  orchestrator.py     DocumentPipeline: the six ordered stages of one upload event
  status.py           explicit status transition function (threshold 70)
  status_updater.py   stage 3, the atomic post-parse write + fallback
  vectorizer.py       stage 4, chunk / embed / upsert (best-effort)
  commitments.py      stage 5, gated commitment extraction (best-effort)
  notifier.py         stage 6, opted-in notification fan-out (best-effort)
  results.py          Completed | Skipped stage outcomes
  steps.py            step cache checkpoints + duplicate-job lock
"""

from grantsignal.pipeline.orchestrator import (
    DocumentPipeline,
    DocumentUploadedEvent,
    JobInFlightError,
    PipelineResult,
    PipelineStageError,
)
from grantsignal.pipeline.results import Completed, Skipped, StageOutcome
from grantsignal.pipeline.status import CONFIDENCE_THRESHOLD, next_status

__all__ = [
    "DocumentPipeline",
    "DocumentUploadedEvent",
    "JobInFlightError",
    "PipelineResult",
    "PipelineStageError",
    "Completed",
    "Skipped",
    "StageOutcome",
    "CONFIDENCE_THRESHOLD",
    "next_status",
]
