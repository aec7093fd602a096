# familyos/models/domain/job_domain.py
"""Result values shared by the scheduled sweeps."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(slots=True)
class SweepResult:
    """Aggregate of one sweep run. Per-item failures are collected, not raised."""

    name: str
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def record_success(self) -> None:
        self.processed += 1
        self.succeeded += 1

    def record_failure(self, ref: str, error: str) -> None:
        self.processed += 1
        self.failed += 1
        self.errors.append({"ref": ref, "error": error})

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_run": self.name,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": self.errors,
            "duration_seconds": round((datetime.now(UTC) - self.started_at).total_seconds(), 2),
        }
