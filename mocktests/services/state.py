from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class InProgress:
    ends_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.ends_at


@dataclass(frozen=True)
class Completed:
    submitted_at: datetime
    score: float
    correct_count: int
