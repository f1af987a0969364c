import logging
import random
from dataclasses import dataclass, field
from typing import List

from django.db import transaction
from django.db.models import Q
from django.urls import reverse
from django.utils import timezone

from mocktests.conf import app_setting
from mocktests.models import Attempt, MockTest
from mocktests.services.access import can_access_mock_test, check_schedule
from mocktests.services.errors import (
    AccessForbidden,
    AttemptConflict,
    AttemptNotFound,
    InvalidState,
    MalformedAnswer,
)
from mocktests.services.scoring import UNANSWERED, is_blank, score_answer
from mocktests.services.selection import AttemptSelector
from mocktests.services.snapshots import load_snapshots, public_questions

logger = logging.getLogger(__name__)


# --------------------------------------------------
# Results handed back to the API layer
# --------------------------------------------------

@dataclass
class StartedAttempt:
    attempt: Attempt
    resumed: bool = False

    @property
    def questions(self):
        return public_questions(self.attempt.questions)


@dataclass
class AttemptView:
    attempt: Attempt
    questions: list
    existing_answers: dict
    time_remaining: int


@dataclass(frozen=True)
class SubmissionSummary:
    score: float
    correct_count: int
    total: int


@dataclass
class GradedAttempt:
    score: float = 0.0
    correct_count: int = 0
    total: int = 0
    answers: List[dict] = field(default_factory=list)


# --------------------------------------------------
# Helpers
# --------------------------------------------------

def result_url(attempt_id):
    return reverse("mocktests:attempt_result", args=[attempt_id])


def submit_url(attempt_id):
    return reverse("mocktests:attempt_submit", args=[attempt_id])


def collect_answers(payload):
    """
    Normalise a submitted payload into {str(question_id): value}.

    Accepts a list of {"question_id", "selected_answer"} entries
    (camelCase keys too) or a plain mapping. Entries that cannot be
    read are dropped so one bad entry never sinks the submission.
    """
    if not payload:
        return {}

    if isinstance(payload, dict):
        return {str(k): v for k, v in payload.items()}

    if not isinstance(payload, (list, tuple)):
        logger.warning("Ignoring answers payload of type %s", type(payload).__name__)
        return {}

    collected = {}
    for entry in payload:
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed answer entry: %r", entry)
            continue
        qid = entry.get("question_id", entry.get("questionId"))
        if qid is None or isinstance(qid, (dict, list, bool)):
            logger.warning("Skipping answer entry without question id: %r", entry)
            continue
        if "selected_answer" in entry:
            value = entry["selected_answer"]
        else:
            value = entry.get("selectedAnswer")
        collected[str(qid)] = value

    return collected


def grade_snapshots(raw_questions, answer_map):
    """
    Grade every stored snapshot in stored order.
    Passages are context only and produce no answer record.
    """
    graded = GradedAttempt()

    for snap in load_snapshots(raw_questions):
        if snap.is_passage:
            continue

        selected = answer_map.get(str(snap.id))
        try:
            result = score_answer(snap, selected)
        except MalformedAnswer as exc:
            logger.warning("Treating answer as unanswered: %s", exc)
            result = UNANSWERED

        graded.total += 1
        graded.score += result.marks_delta
        if result.is_correct:
            graded.correct_count += 1

        graded.answers.append({
            "question_id": snap.id,
            "selected_answer": None if is_blank(selected) else selected,
            "is_correct": result.is_correct,
            "marks_delta": result.marks_delta,
            "question_text": snap.text,
        })

    graded.score = round(graded.score, 4)
    return graded


# --------------------------------------------------
# Engine
# --------------------------------------------------

class AttemptLifecycleEngine:
    """
    Owns the attempt state machine: in-progress -> completed, once.

    Deadlines are lazy: nothing runs in the background, every read
    and write compares the stored ends_at with ``clock()``.
    """

    def __init__(self, clock=None, rng_factory=None):
        self.clock = clock or timezone.now
        self.rng_factory = rng_factory or random.Random

    # =====================================================
    # START
    # =====================================================
    def start(self, user, mock_test_id) -> StartedAttempt:
        now = self.clock()

        mock_test = MockTest.objects.filter(pk=mock_test_id, is_published=True).first()
        if mock_test is None:
            raise AttemptNotFound("Mock test not found")

        allowed, reason = can_access_mock_test(user, mock_test)
        if not allowed:
            raise AccessForbidden(reason, code="not_purchased")

        is_open, reason = check_schedule(mock_test, now)
        if not is_open:
            code = "not_yet_open" if now < mock_test.scheduled_for else "window_closed"
            raise AccessForbidden(reason, code=code)

        rival = None
        with transaction.atomic():
            # Row lock on the test serializes concurrent starts where supported
            mock_test = MockTest.objects.select_for_update().get(pk=mock_test.pk)

            existing = (
                Attempt.objects
                .select_for_update()
                .filter(
                    user=user,
                    mock_test=mock_test,
                    status=Attempt.STATUS_IN_PROGRESS,
                    ends_at__gt=now,
                )
                .order_by("-started_at")
                .first()
            )
            if existing:
                logger.info("Resuming attempt %s for user %s", existing.pk, user.pk)
                return StartedAttempt(attempt=existing, resumed=True)

            if mock_test.is_grand_test:
                done = (
                    Attempt.objects
                    .filter(user=user, mock_test=mock_test, status=Attempt.STATUS_COMPLETED)
                    .order_by("-submitted_at")
                    .first()
                )
                if done:
                    raise AttemptConflict(
                        "Grand test already attempted",
                        code="already_attempted",
                        redirect=result_url(done.pk),
                    )

            window = mock_test.window()
            ends_at = window[1] if window else now + mock_test.duration

            snapshots = AttemptSelector.select(mock_test, rng=self.rng_factory())
            if not snapshots:
                logger.error(
                    "Content configuration defect: mock test %s (%s) has no satisfiable questions",
                    mock_test.pk, mock_test.title,
                )
                raise InvalidState("No questions available")

            attempt = Attempt.objects.create(
                user=user,
                mock_test=mock_test,
                questions=[s.as_dict() for s in snapshots],
                started_at=now,
                ends_at=ends_at,
            )

            rival = self._earlier_rival(attempt, now)
            if rival is not None:
                attempt.delete()

        if rival is not None:
            logger.warning(
                "Concurrent start for user %s on mock test %s; keeping attempt %s",
                user.pk, mock_test.pk, rival.pk,
            )
            if rival.is_completed():
                raise AttemptConflict(
                    "Grand test already attempted",
                    code="already_attempted",
                    redirect=result_url(rival.pk),
                )
            return StartedAttempt(attempt=rival, resumed=True)

        logger.info(
            "Attempt %s started: user=%s mock_test=%s questions=%s ends_at=%s",
            attempt.pk, user.pk, mock_test.pk, len(snapshots), ends_at.isoformat(),
        )
        return StartedAttempt(attempt=attempt)

    def _earlier_rival(self, attempt, now):
        """
        Another live attempt for the same user and test that was created
        before ``attempt``. A completed attempt also counts on grand tests.
        The earliest one wins a start race.
        """
        live = Q(status=Attempt.STATUS_IN_PROGRESS, ends_at__gt=now)
        if attempt.mock_test.is_grand_test:
            live |= Q(status=Attempt.STATUS_COMPLETED)

        return (
            Attempt.objects
            .filter(live, user_id=attempt.user_id, mock_test_id=attempt.mock_test_id, pk__lt=attempt.pk)
            .order_by("pk")
            .first()
        )

    # =====================================================
    # READ (resume view)
    # =====================================================
    def _owned(self, attempt_id, user, queryset=None):
        queryset = queryset if queryset is not None else Attempt.objects.all()
        attempt = queryset.select_related("mock_test").filter(pk=attempt_id).first()
        if attempt is None:
            raise AttemptNotFound("Attempt not found")
        if attempt.user_id != user.pk:
            raise AccessForbidden("This attempt belongs to another user", code="wrong_owner")
        return attempt

    def _ensure_editable(self, attempt, now):
        if attempt.is_completed():
            raise AttemptConflict(
                "Attempt already completed",
                code="already_completed",
                redirect=result_url(attempt.pk),
            )
        if attempt.is_expired(now):
            raise AttemptConflict(
                "Time is over for this attempt; submit to finalize",
                code="attempt_expired",
                redirect=submit_url(attempt.pk),
            )

    def get_attempt(self, attempt_id, user) -> AttemptView:
        now = self.clock()
        attempt = self._owned(attempt_id, user)
        self._ensure_editable(attempt, now)

        return AttemptView(
            attempt=attempt,
            questions=public_questions(attempt.questions),
            existing_answers=dict(attempt.draft_answers or {}),
            time_remaining=attempt.time_remaining(now),
        )

    # =====================================================
    # AUTOSAVE
    # =====================================================
    def autosave(self, attempt_id, user, answers):
        """
        Merge partial answers into the draft. Blank values clear an
        entry. Never grades and never touches status.
        """
        now = self.clock()

        with transaction.atomic():
            attempt = self._owned(attempt_id, user, Attempt.objects.select_for_update())
            self._ensure_editable(attempt, now)

            known = {str(s.id) for s in load_snapshots(attempt.questions) if not s.is_passage}
            drafts = dict(attempt.draft_answers or {})
            for qid, value in collect_answers(answers).items():
                if qid not in known:
                    continue
                if is_blank(value):
                    drafts.pop(qid, None)
                else:
                    drafts[qid] = value

            updated = (
                Attempt.objects
                .filter(pk=attempt.pk, status=Attempt.STATUS_IN_PROGRESS)
                .update(draft_answers=drafts)
            )

        if not updated:
            raise AttemptConflict(
                "Attempt already completed",
                code="already_completed",
                redirect=result_url(attempt.pk),
            )
        return drafts

    # =====================================================
    # SUBMIT
    # =====================================================
    def _check_late(self, attempt, now):
        grace = app_setting("LATE_SUBMISSION_GRACE_SECONDS")
        if now <= attempt.ends_at:
            return
        late_by = (now - attempt.ends_at).total_seconds()
        if grace is not None and late_by > grace:
            raise AccessForbidden("Submission window closed", code="submission_closed")
        logger.info("Late submission for attempt %s (%.1fs past deadline)", attempt.pk, late_by)

    def submit(self, attempt_id, answers, user=None) -> SubmissionSummary:
        """
        Grade and complete an attempt exactly once.

        The status flip is a conditional UPDATE (in-progress -> completed);
        a concurrent submit that loses the race updates zero rows and
        gets a Conflict instead of overwriting the score.
        """
        now = self.clock()

        with transaction.atomic():
            lookup = {"pk": attempt_id}
            if user is not None:
                lookup["user"] = user

            attempt = Attempt.objects.select_for_update().filter(**lookup).first()
            if attempt is None:
                raise AttemptNotFound("Attempt not found")

            if attempt.is_completed():
                logger.warning("Duplicate submission rejected for attempt %s", attempt.pk)
                raise AttemptConflict(
                    "Attempt already submitted",
                    redirect=result_url(attempt.pk),
                )

            self._check_late(attempt, now)

            answer_map = dict(attempt.draft_answers or {})
            answer_map.update(collect_answers(answers))

            graded = grade_snapshots(attempt.questions, answer_map)

            updated = (
                Attempt.objects
                .filter(pk=attempt.pk, status=Attempt.STATUS_IN_PROGRESS)
                .update(
                    status=Attempt.STATUS_COMPLETED,
                    submitted_at=now,
                    score=graded.score,
                    correct_count=graded.correct_count,
                    answers=graded.answers,
                )
            )

        if not updated:
            logger.warning("Concurrent submission lost the race for attempt %s", attempt.pk)
            raise AttemptConflict(
                "Attempt already submitted",
                redirect=result_url(attempt.pk),
            )

        logger.info(
            "Attempt %s graded: score=%s correct=%s/%s",
            attempt.pk, graded.score, graded.correct_count, graded.total,
        )
        return SubmissionSummary(
            score=graded.score,
            correct_count=graded.correct_count,
            total=graded.total,
        )

    # =====================================================
    # RESULT / HISTORY
    # =====================================================
    def result(self, attempt_id, user):
        """
        Review of a completed attempt, including correct answers.
        """
        attempt = self._owned(attempt_id, user)
        if not attempt.is_completed():
            raise AttemptConflict(
                "Attempt is still in progress",
                code="in_progress",
            )

        by_question = {str(a["question_id"]): a for a in attempt.answers or []}
        items = []
        for snap in load_snapshots(attempt.questions):
            record = by_question.get(str(snap.id), {})
            item = snap.as_dict()
            item["selected_answer"] = record.get("selected_answer")
            item["is_correct"] = record.get("is_correct", False)
            item["marks_delta"] = record.get("marks_delta", 0.0)
            items.append(item)

        state = attempt.state
        return {
            "attempt_id": attempt.pk,
            "mock_test_id": attempt.mock_test_id,
            "title": attempt.mock_test.title,
            "started_at": attempt.started_at,
            "submitted_at": state.submitted_at,
            "score": state.score,
            "correct_count": state.correct_count,
            "total": len(attempt.answers or []),
            "questions": items,
        }

    def history(self, user):
        now = self.clock()
        attempts = (
            Attempt.objects
            .filter(user=user)
            .select_related("mock_test")
            .order_by("-started_at", "-id")
        )
        return [
            {
                "attempt_id": a.pk,
                "mock_test_id": a.mock_test_id,
                "title": a.mock_test.title,
                "status": a.effective_status(now),
                "started_at": a.started_at,
                "ends_at": a.ends_at,
                "submitted_at": a.submitted_at,
                "score": a.score,
                "correct_count": a.correct_count,
            }
            for a in attempts
        ]
