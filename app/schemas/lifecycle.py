# app/schemas/lifecycle.py
from pydantic import BaseModel, Field
from typing import List


class SweepSummary(BaseModel):
    """Counters reported by one lifecycle sweep run."""
    orgs: int = 0
    promoted: int = 0
    expired: int = 0
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    suppressed: int = 0
    race_lost: int = 0
    failed: int = 0
    batch_limited: bool = False
    errors: List[str] = Field(default_factory=list)

    def merge(self, other: "SweepSummary") -> None:
        for name in ("orgs", "promoted", "expired", "processed", "sent", "skipped", "suppressed", "race_lost", "failed"):
            setattr(self, name, getattr(self, name) + getattr(other, name))
        self.batch_limited = self.batch_limited or other.batch_limited
        self.errors.extend(other.errors)
