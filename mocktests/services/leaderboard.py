from dataclasses import dataclass
from datetime import datetime

from django.utils import timezone

from mocktests.conf import app_setting
from mocktests.models import Attempt, MockTest
from mocktests.services.errors import AttemptNotFound


@dataclass(frozen=True)
class NotReady:
    """Leaderboard not published yet; a signal, not an error."""
    available_at: datetime = None


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    name: str
    score: float


def display_name(user):
    return user.get_full_name().strip() or user.get_username()


class LeaderboardProjector:
    """
    Ranking for a grand test, published once its window has closed.
    Ties go to the earlier submission, then the lower attempt id.
    """

    def __init__(self, clock=None):
        self.clock = clock or timezone.now

    def rank(self, mock_test_id, limit=None):
        if limit is None:
            limit = app_setting("LEADERBOARD_SIZE")

        mock_test = MockTest.objects.filter(pk=mock_test_id).first()
        if mock_test is None:
            raise AttemptNotFound("Mock test not found")

        window = mock_test.window()
        if window is None:
            return NotReady()

        _, end = window
        if self.clock() < end:
            return NotReady(available_at=end)

        attempts = (
            Attempt.objects
            .filter(mock_test=mock_test, status=Attempt.STATUS_COMPLETED)
            .select_related("user")
            .order_by("-score", "submitted_at", "id")[:limit]
        )

        return [
            LeaderboardEntry(rank=i, name=display_name(a.user), score=a.score)
            for i, a in enumerate(attempts, start=1)
        ]
