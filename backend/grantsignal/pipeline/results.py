"""
Stage outcomes for the best-effort half of the pipeline.

Stages 4–6 never raise; they return exactly one of:

    Completed(data)             the stage did its work; `data` is a small
                                JSON-safe summary (counts, ids)
    Skipped(reason, error)      the stage chose not to run (gate closed,
                                not configured) or failed and absorbed the
                                error; `error` is set only for failures

Both serialize to plain dicts so they can be checkpointed in the step
cache and returned from the Celery task.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Completed:
    data: dict[str, Any] = field(default_factory=dict)

    skipped = False

    def to_dict(self) -> dict[str, Any]:
        return {"skipped": False, **self.data}


@dataclass(frozen=True)
class Skipped:
    reason: str
    error:  str | None = None

    skipped = True

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"skipped": True, "reason": self.reason}
        if self.error is not None:
            out["error"] = self.error
        return out


StageOutcome = Union[Completed, Skipped]


def outcome_from_dict(data: dict[str, Any]) -> StageOutcome:
    if data.get("skipped"):
        return Skipped(reason=data["reason"], error=data.get("error"))
    return Completed({k: v for k, v in data.items() if k != "skipped"})
