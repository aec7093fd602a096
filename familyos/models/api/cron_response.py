# familyos/models/api/cron_response.py
"""
Cron endpoint response models.
"""

from typing import Any

from pydantic import BaseModel, Field

from familyos.models.domain.job_domain import SweepResult


class SweepResponse(BaseModel):
    job: str
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @classmethod
    def from_sweep(cls, sweep: SweepResult) -> "SweepResponse":
        data = sweep.to_dict()
        return cls(
            job=data["job_run"],
            processed=data["processed"],
            succeeded=data["succeeded"],
            failed=data["failed"],
            errors=data["errors"],
            duration_seconds=data["duration_seconds"],
        )


class ChannelRenewalResponse(BaseModel):
    renewed: SweepResponse
    registered: SweepResponse


class CountResponse(BaseModel):
    """Sweeps that only report how many rows they touched."""

    job: str
    count: int
