"""
Attempt lifecycle tests: start, read, autosave, submit, result, history.
"""
import random
from datetime import timedelta
from unittest import mock

from django.test import TestCase, override_settings

from mocktests.models import Attempt, MockTest, Order, Question
from mocktests.services import lifecycle
from mocktests.services.errors import (
    AccessForbidden,
    AttemptConflict,
    AttemptNotFound,
    InvalidState,
)
from mocktests.services.lifecycle import AttemptLifecycleEngine
from mocktests.services.selection import AttemptSelector
from mocktests.services.state import Completed, InProgress

from .helpers import (
    FixedClock,
    T0,
    make_manual,
    make_mcq,
    make_order,
    make_passage,
    make_test,
    make_user,
)


class LifecycleTestBase(TestCase):

    def setUp(self):
        self.clock = FixedClock()
        self.engine = AttemptLifecycleEngine(
            clock=self.clock,
            rng_factory=lambda: random.Random(7),
        )
        self.user = make_user()
        self.q1 = make_mcq(text="2 + 2?", options=("3", "4", "5"), correct=(1,), marks=4, negative=1)
        self.q2 = make_mcq(text="Largest planet?", options=("Mars", "Jupiter"), correct=(1,), marks=2, negative=0.5)
        self.q3 = make_manual(text="Capital of France?", answer="Paris", marks=3, negative=1)
        self.mock_test = make_test(questions=[self.q1, self.q2, self.q3])


class StartAttemptTestCase(LifecycleTestBase):

    def test_start_creates_in_progress_attempt(self):
        started = self.engine.start(self.user, self.mock_test.pk)
        attempt = started.attempt

        self.assertFalse(started.resumed)
        self.assertEqual(attempt.status, Attempt.STATUS_IN_PROGRESS)
        self.assertEqual(attempt.started_at, T0)
        self.assertEqual(attempt.ends_at, T0 + timedelta(minutes=60))
        self.assertEqual(len(attempt.questions), 3)
        self.assertEqual(attempt.answers, [])
        self.assertIsInstance(attempt.state, InProgress)

    def test_start_never_leaks_answers(self):
        started = self.engine.start(self.user, self.mock_test.pk)

        for q in started.questions:
            self.assertNotIn("correct", q)
            self.assertNotIn("correct_text", q)
            self.assertNotIn("explanation", q)

        stored = Attempt.objects.get(pk=started.attempt.pk)
        self.assertTrue(all("correct" in q for q in stored.questions))

    def test_missing_or_unpublished_test_is_not_found(self):
        with self.assertRaises(AttemptNotFound):
            self.engine.start(self.user, 999999)

        draft = make_test(questions=[self.q1], published=False)
        with self.assertRaises(AttemptNotFound):
            self.engine.start(self.user, draft.pk)

    def test_paid_test_requires_successful_order(self):
        paid = make_test(questions=[self.q1], price=199)

        with self.assertRaises(AccessForbidden) as ctx:
            self.engine.start(self.user, paid.pk)
        self.assertEqual(ctx.exception.get_codes(), "not_purchased")

        make_order(self.user, paid, status=Order.STATUS_FAILED)
        with self.assertRaises(AccessForbidden):
            self.engine.start(self.user, paid.pk)

        make_order(self.user, paid)
        self.assertEqual(self.engine.start(self.user, paid.pk).attempt.mock_test_id, paid.pk)

    def test_order_of_another_user_does_not_count(self):
        paid = make_test(questions=[self.q1], price=199)
        make_order(make_user("someone"), paid)
        with self.assertRaises(AccessForbidden):
            self.engine.start(self.user, paid.pk)

    def test_grand_test_window(self):
        grand = make_test(
            questions=[self.q1],
            duration=30,
            is_grand_test=True,
            scheduled_for=T0 + timedelta(minutes=10),
        )

        with self.assertRaises(AccessForbidden) as ctx:
            self.engine.start(self.user, grand.pk)
        self.assertEqual(ctx.exception.get_codes(), "not_yet_open")
        self.assertIn("starts at", str(ctx.exception.detail))

        self.clock.advance(minutes=15)
        attempt = self.engine.start(self.user, grand.pk).attempt
        # shared window end, not start-relative
        self.assertEqual(attempt.ends_at, T0 + timedelta(minutes=40))

        self.clock.advance(minutes=26)
        with self.assertRaises(AccessForbidden) as ctx:
            self.engine.start(make_user("late"), grand.pk)
        self.assertEqual(ctx.exception.get_codes(), "window_closed")

    def test_ends_at_ignores_later_duration_edits(self):
        attempt = self.engine.start(self.user, self.mock_test.pk).attempt
        MockTest.objects.filter(pk=self.mock_test.pk).update(duration_minutes=5)

        attempt.refresh_from_db()
        self.assertEqual(attempt.ends_at, T0 + timedelta(minutes=60))

    def test_empty_selection_is_invalid_state_and_not_persisted(self):
        empty = make_test(quotas=[("Nothing", 3, 0, 0)])

        with self.assertLogs("mocktests.services.lifecycle", level="ERROR"):
            with self.assertRaises(InvalidState):
                self.engine.start(self.user, empty.pk)

        self.assertFalse(Attempt.objects.filter(mock_test=empty).exists())

    def test_running_attempt_is_resumed(self):
        first = self.engine.start(self.user, self.mock_test.pk)
        self.clock.advance(minutes=5)
        second = self.engine.start(self.user, self.mock_test.pk)

        self.assertTrue(second.resumed)
        self.assertEqual(first.attempt.pk, second.attempt.pk)
        self.assertEqual(Attempt.objects.filter(user=self.user).count(), 1)

    def test_expired_attempt_is_not_resumed(self):
        first = self.engine.start(self.user, self.mock_test.pk)
        self.clock.advance(minutes=61)
        second = self.engine.start(self.user, self.mock_test.pk)
        self.assertNotEqual(first.attempt.pk, second.attempt.pk)

    def test_standard_test_can_be_retaken(self):
        first = self.engine.start(self.user, self.mock_test.pk)
        self.engine.submit(first.attempt.pk, [])
        second = self.engine.start(self.user, self.mock_test.pk)
        self.assertNotEqual(first.attempt.pk, second.attempt.pk)

    def _start_while_other_request_creates(self, mock_test, **rival_fields):
        real_select = AttemptSelector.select
        rivals = []

        def select_after_other_request_created(mt, rng=None):
            # the other request passed its checks and inserted first
            fields = dict(
                user=self.user,
                mock_test=mt,
                questions=[],
                started_at=T0,
                ends_at=T0 + timedelta(minutes=60),
            )
            fields.update(rival_fields)
            rivals.append(Attempt.objects.create(**fields))
            return real_select(mt, rng=rng)

        with mock.patch.object(AttemptSelector, "select", side_effect=select_after_other_request_created):
            with self.assertLogs("mocktests.services.lifecycle", level="WARNING"):
                result = self.engine.start(self.user, mock_test.pk)
        return result, rivals[0]

    def test_concurrent_start_resumes_the_earlier_attempt(self):
        started, rival = self._start_while_other_request_creates(self.mock_test)

        self.assertTrue(started.resumed)
        self.assertEqual(started.attempt.pk, rival.pk)
        self.assertEqual(Attempt.objects.filter(user=self.user, mock_test=self.mock_test).count(), 1)

    def test_concurrent_grand_test_start_keeps_one_attempt(self):
        grand = make_test(questions=[self.q1], is_grand_test=True, scheduled_for=T0)

        started, rival = self._start_while_other_request_creates(grand)

        self.assertEqual(started.attempt.pk, rival.pk)
        self.assertEqual(Attempt.objects.filter(user=self.user, mock_test=grand).count(), 1)

    def test_concurrent_grand_test_start_after_rival_submitted(self):
        grand = make_test(questions=[self.q1], is_grand_test=True, scheduled_for=T0)

        with self.assertRaises(AttemptConflict) as ctx:
            self._start_while_other_request_creates(
                grand,
                status=Attempt.STATUS_COMPLETED,
                submitted_at=T0,
                score=4,
                correct_count=1,
            )

        self.assertEqual(ctx.exception.get_codes(), "already_attempted")
        self.assertEqual(Attempt.objects.filter(user=self.user, mock_test=grand).count(), 1)

    def test_grand_test_allows_one_completed_attempt(self):
        grand = make_test(questions=[self.q1], is_grand_test=True, scheduled_for=T0)
        first = self.engine.start(self.user, grand.pk)
        self.engine.submit(first.attempt.pk, [])

        with self.assertRaises(AttemptConflict) as ctx:
            self.engine.start(self.user, grand.pk)
        self.assertEqual(ctx.exception.get_codes(), "already_attempted")


class SubmitAttemptTestCase(LifecycleTestBase):

    def setUp(self):
        super().setUp()
        self.attempt = self.engine.start(self.user, self.mock_test.pk).attempt

    def test_submit_grades_and_completes(self):
        summary = self.engine.submit(self.attempt.pk, [
            {"question_id": self.q1.pk, "selected_answer": 1},
            {"question_id": self.q2.pk, "selected_answer": 0},
            {"question_id": self.q3.pk, "selected_answer": " paris "},
        ])

        self.assertEqual(summary.score, 4 - 0.5 + 3)
        self.assertEqual(summary.correct_count, 2)
        self.assertEqual(summary.total, 3)

        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.status, Attempt.STATUS_COMPLETED)
        self.assertEqual(self.attempt.submitted_at, T0)
        self.assertEqual(self.attempt.score, 6.5)
        self.assertEqual(len(self.attempt.answers), 3)
        self.assertEqual(
            self.attempt.state,
            Completed(submitted_at=T0, score=6.5, correct_count=2),
        )

    def test_answer_records_follow_stored_order(self):
        self.engine.submit(self.attempt.pk, {str(self.q1.pk): "4"})
        self.attempt.refresh_from_db()

        stored_ids = [q["id"] for q in self.attempt.questions]
        self.assertEqual([a["question_id"] for a in self.attempt.answers], stored_ids)

        record = next(a for a in self.attempt.answers if a["question_id"] == self.q1.pk)
        self.assertEqual(record["selected_answer"], "4")
        self.assertTrue(record["is_correct"])
        self.assertEqual(record["marks_delta"], 4)
        self.assertEqual(record["question_text"], "2 + 2?")

    def test_unanswered_questions_score_zero(self):
        summary = self.engine.submit(self.attempt.pk, [])
        self.assertEqual(summary.score, 0)
        self.assertEqual(summary.correct_count, 0)
        self.assertEqual(summary.total, 3)

    def test_score_can_go_negative(self):
        summary = self.engine.submit(self.attempt.pk, [
            {"question_id": self.q1.pk, "selected_answer": 0},
            {"question_id": self.q3.pk, "selected_answer": "Rome"},
        ])
        self.assertEqual(summary.score, -2)

    def test_second_submit_is_conflict_and_keeps_first_score(self):
        first = self.engine.submit(self.attempt.pk, [{"question_id": self.q1.pk, "selected_answer": 1}])

        with self.assertLogs("mocktests.services.lifecycle", level="WARNING"):
            with self.assertRaises(AttemptConflict) as ctx:
                self.engine.submit(self.attempt.pk, [
                    {"question_id": self.q1.pk, "selected_answer": 1},
                    {"question_id": self.q2.pk, "selected_answer": 1},
                ])
        self.assertEqual(ctx.exception.get_codes(), "already_submitted")
        self.assertIn(f"/attempts/{self.attempt.pk}/result/", ctx.exception.redirect)

        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.score, first.score)
        self.assertEqual(self.attempt.score, 4)

    def test_losing_a_concurrent_race_is_conflict(self):
        real_grade = lifecycle.grade_snapshots

        def grade_while_other_request_wins(questions, answers):
            # another request completes the attempt between our read and write
            Attempt.objects.filter(pk=self.attempt.pk).update(
                status=Attempt.STATUS_COMPLETED,
                submitted_at=T0,
                score=11,
                correct_count=1,
            )
            return real_grade(questions, answers)

        with mock.patch.object(lifecycle, "grade_snapshots", side_effect=grade_while_other_request_wins):
            with self.assertRaises(AttemptConflict):
                self.engine.submit(self.attempt.pk, [{"question_id": self.q1.pk, "selected_answer": 1}])

        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.score, 11)

    def test_unknown_attempt_is_not_found(self):
        with self.assertRaises(AttemptNotFound):
            self.engine.submit(424242, [])

    def test_other_users_attempt_is_not_found(self):
        with self.assertRaises(AttemptNotFound):
            self.engine.submit(self.attempt.pk, [], user=make_user("intruder"))

    def test_malformed_entries_are_skipped(self):
        with self.assertLogs("mocktests.services.lifecycle", level="WARNING"):
            summary = self.engine.submit(self.attempt.pk, [
                "garbage",
                {"selected_answer": 1},
                {"question_id": self.q1.pk, "selected_answer": {"weird": True}},
                {"question_id": self.q2.pk, "selected_answer": 1},
            ])

        self.assertEqual(summary.score, 2)
        self.assertEqual(summary.correct_count, 1)
        self.assertEqual(summary.total, 3)

    def test_unparseable_digit_strings_do_not_sink_the_submission(self):
        summary = self.engine.submit(self.attempt.pk, [
            {"question_id": self.q1.pk, "selected_answer": "²"},
            {"question_id": self.q2.pk, "selected_answer": "9" * 5000},
            {"question_id": self.q3.pk, "selected_answer": "Paris"},
        ])

        self.assertEqual(summary.score, -1 - 0.5 + 3)
        self.assertEqual(summary.correct_count, 1)
        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.status, Attempt.STATUS_COMPLETED)

    def test_float_index_from_json_client(self):
        summary = self.engine.submit(self.attempt.pk, [{"question_id": self.q1.pk, "selected_answer": 1.0}])
        self.assertEqual(summary.score, 4)
        self.assertEqual(summary.correct_count, 1)

    def test_camel_case_payload_is_accepted(self):
        summary = self.engine.submit(self.attempt.pk, [
            {"questionId": str(self.q2.pk), "selectedAnswer": "Jupiter"},
        ])
        self.assertEqual(summary.score, 2)

    def test_late_submission_is_graded_by_default(self):
        self.clock.advance(minutes=90)
        summary = self.engine.submit(self.attempt.pk, [{"question_id": self.q1.pk, "selected_answer": 1}])
        self.assertEqual(summary.score, 4)

    @override_settings(MOCKTESTS={"LATE_SUBMISSION_GRACE_SECONDS": 30})
    def test_grace_period_setting_rejects_very_late_submissions(self):
        self.clock.advance(minutes=60, seconds=20)
        self.engine.submit(self.attempt.pk, [])

        other = self.engine.start(make_user("slow"), self.mock_test.pk).attempt
        self.clock.advance(minutes=61)
        with self.assertRaises(AccessForbidden) as ctx:
            self.engine.submit(other.pk, [])
        self.assertEqual(ctx.exception.get_codes(), "submission_closed")

    def test_question_edits_do_not_affect_attempt(self):
        Question.objects.filter(pk=self.q1.pk).update(correct=[0], marks=100, text="edited")

        summary = self.engine.submit(self.attempt.pk, [{"question_id": self.q1.pk, "selected_answer": 1}])

        self.assertEqual(summary.score, 4)
        self.attempt.refresh_from_db()
        self.assertIn("2 + 2?", [q["text"] for q in self.attempt.questions])

    def test_passage_is_skipped(self):
        passage = make_passage()
        child = make_mcq(text="Child", parent=passage, marks=1, negative=0)
        mt = make_test(title="Reading", questions=[passage, child])
        attempt = self.engine.start(self.user, mt.pk).attempt

        summary = self.engine.submit(attempt.pk, [
            {"question_id": passage.pk, "selected_answer": "0"},
            {"question_id": child.pk, "selected_answer": 1},
        ])

        self.assertEqual(summary.total, 1)
        self.assertEqual(summary.score, 1)
        attempt.refresh_from_db()
        self.assertEqual([a["question_id"] for a in attempt.answers], [child.pk])


class ReadAndAutosaveTestCase(LifecycleTestBase):

    def setUp(self):
        super().setUp()
        self.attempt = self.engine.start(self.user, self.mock_test.pk).attempt

    def test_get_attempt_hides_answers(self):
        view = self.engine.get_attempt(self.attempt.pk, self.user)

        self.assertEqual(view.time_remaining, 3600)
        self.assertEqual(view.existing_answers, {})
        for q in view.questions:
            self.assertNotIn("correct", q)

    def test_get_attempt_of_another_user_is_forbidden(self):
        with self.assertRaises(AccessForbidden) as ctx:
            self.engine.get_attempt(self.attempt.pk, make_user("other"))
        self.assertEqual(ctx.exception.get_codes(), "wrong_owner")

    def test_get_attempt_missing(self):
        with self.assertRaises(AttemptNotFound):
            self.engine.get_attempt(987654, self.user)

    def test_completed_attempt_redirects_to_result(self):
        self.engine.submit(self.attempt.pk, [])
        with self.assertRaises(AttemptConflict) as ctx:
            self.engine.get_attempt(self.attempt.pk, self.user)
        self.assertEqual(ctx.exception.get_codes(), "already_completed")
        self.assertTrue(ctx.exception.redirect.endswith(f"/attempts/{self.attempt.pk}/result/"))

    def test_expired_attempt_is_not_editable(self):
        self.clock.advance(minutes=60)
        with self.assertRaises(AttemptConflict) as ctx:
            self.engine.get_attempt(self.attempt.pk, self.user)
        self.assertEqual(ctx.exception.get_codes(), "attempt_expired")
        self.assertTrue(ctx.exception.redirect.endswith(f"/attempts/{self.attempt.pk}/submit/"))

        # status is not flipped by a read
        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.status, Attempt.STATUS_IN_PROGRESS)
        self.assertTrue(self.attempt.is_expired(self.clock()))

    def test_autosave_then_submit_uses_drafts(self):
        self.engine.autosave(self.attempt.pk, self.user, {str(self.q1.pk): 1, str(self.q3.pk): "paris"})
        self.engine.autosave(self.attempt.pk, self.user, [{"question_id": self.q3.pk, "selected_answer": ""}])

        view = self.engine.get_attempt(self.attempt.pk, self.user)
        self.assertEqual(view.existing_answers, {str(self.q1.pk): 1})

        summary = self.engine.submit(self.attempt.pk, [{"question_id": self.q2.pk, "selected_answer": 1}])
        self.assertEqual(summary.score, 6)

    def test_submitted_answer_overrides_draft(self):
        self.engine.autosave(self.attempt.pk, self.user, {str(self.q1.pk): 0})
        summary = self.engine.submit(self.attempt.pk, {str(self.q1.pk): 1})
        self.assertEqual(summary.score, 4)

    def test_autosave_ignores_unknown_questions(self):
        drafts = self.engine.autosave(self.attempt.pk, self.user, {"999999": 1})
        self.assertEqual(drafts, {})

    def test_autosave_refused_after_expiry_and_completion(self):
        self.clock.advance(minutes=61)
        with self.assertRaises(AttemptConflict):
            self.engine.autosave(self.attempt.pk, self.user, {str(self.q1.pk): 1})

        self.engine.submit(self.attempt.pk, [])
        with self.assertRaises(AttemptConflict):
            self.engine.autosave(self.attempt.pk, self.user, {str(self.q1.pk): 1})


class ResultAndHistoryTestCase(LifecycleTestBase):

    def test_result_requires_completion(self):
        attempt = self.engine.start(self.user, self.mock_test.pk).attempt
        with self.assertRaises(AttemptConflict) as ctx:
            self.engine.result(attempt.pk, self.user)
        self.assertEqual(ctx.exception.get_codes(), "in_progress")

    def test_result_reveals_answers_after_completion(self):
        attempt = self.engine.start(self.user, self.mock_test.pk).attempt
        self.engine.submit(attempt.pk, [{"question_id": self.q1.pk, "selected_answer": 2}])

        review = self.engine.result(attempt.pk, self.user)

        self.assertEqual(review["score"], -1)
        self.assertEqual(review["total"], 3)
        item = next(q for q in review["questions"] if q["id"] == self.q1.pk)
        self.assertEqual(item["correct"], [1])
        self.assertEqual(item["selected_answer"], 2)
        self.assertFalse(item["is_correct"])
        self.assertEqual(item["marks_delta"], -1)

    def test_history_reports_effective_status(self):
        done = self.engine.start(self.user, self.mock_test.pk).attempt
        self.engine.submit(done.pk, [{"question_id": self.q1.pk, "selected_answer": 1}])

        self.clock.advance(minutes=1)
        stale = self.engine.start(self.user, self.mock_test.pk).attempt
        self.clock.advance(minutes=120)

        history = self.engine.history(self.user)

        self.assertEqual([h["attempt_id"] for h in history], [stale.pk, done.pk])
        self.assertEqual(history[0]["status"], "expired")
        self.assertEqual(history[1]["status"], Attempt.STATUS_COMPLETED)
        self.assertEqual(history[1]["score"], 4)
