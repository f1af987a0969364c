from datetime import timedelta

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.core.exceptions import ValidationError

from mocktests.services.state import Completed, InProgress


# =====================================================
# QUESTION BANK
# =====================================================
class Question(models.Model):
    MCQ = "mcq"
    MANUAL = "manual"
    PASSAGE = "passage"
    QUESTION_TYPES = [
        (MCQ, "Multiple choice"),
        (MANUAL, "Manual / free text"),
        (PASSAGE, "Passage (context only)"),
    ]

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    DIFFICULTY_CHOICES = [(EASY, "Easy"), (MEDIUM, "Medium"), (HARD, "Hard")]
    DIFFICULTIES = (EASY, MEDIUM, HARD)

    question_type = models.CharField(
        max_length=10,
        choices=QUESTION_TYPES,
        default=MCQ,
    )
    text = models.TextField()
    image_url = models.CharField(max_length=500, blank=True, null=True)

    # List of {"text": "...", "image_url": null}
    options = models.JSONField(default=list, blank=True)
    # List of correct option indices (mcq)
    correct = models.JSONField(default=list, blank=True)
    correct_text = models.TextField(
        blank=True,
        default="",
        help_text="Canonical answer for manual questions"
    )

    marks = models.FloatField(default=1.0)
    negative_marks = models.FloatField(
        default=0.0,
        help_text="Magnitude deducted for an incorrect answer"
    )

    difficulty = models.CharField(
        max_length=10,
        choices=DIFFICULTY_CHOICES,
        default=EASY,
        db_index=True,
    )
    subject = models.CharField(max_length=200, db_index=True)

    parent = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="children",
        help_text="Passage this question belongs to"
    )

    explanation = models.TextField(
        blank=True,
        default="",
        help_text="Shown on the result page only."
    )

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["subject", "difficulty"], name="question_subj_diff_idx"),
        ]

    def clean(self):
        if self.question_type == self.MCQ:
            if len(self.options or []) < 2:
                raise ValidationError("MCQ must have at least 2 options.")
            if not self.correct:
                raise ValidationError("MCQ must have at least 1 correct answer.")
            for idx in self.correct:
                if not isinstance(idx, int) or not 0 <= idx < len(self.options):
                    raise ValidationError(f"Correct index {idx!r} is out of range.")
        elif self.question_type == self.MANUAL:
            if not (self.correct_text or "").strip():
                raise ValidationError("Manual questions must have a correct answer.")
        if self.negative_marks < 0:
            raise ValidationError("Negative marks are a magnitude and cannot be below zero.")

    def __str__(self):
        return (self.text[:75] + "...") if len(self.text) > 75 else self.text


# =====================================================
# TEST DEFINITION
# =====================================================
class MockTest(models.Model):
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")

    duration_minutes = models.PositiveIntegerField(default=60)

    # Curated mode
    questions = models.ManyToManyField(
        Question,
        through="MockTestQuestion",
        blank=True,
        related_name="mock_tests",
    )

    price = models.DecimalField(max_digits=8, decimal_places=2, default=0)

    is_grand_test = models.BooleanField(default=False)
    scheduled_for = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Global start instant for grand tests"
    )

    is_published = models.BooleanField(default=False, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def clean(self):
        if self.is_grand_test and not self.scheduled_for:
            raise ValidationError("Grand tests require a scheduled start.")

    @property
    def is_free(self):
        return not self.price or self.price <= 0

    @property
    def duration(self):
        return timedelta(minutes=self.duration_minutes)

    def window(self):
        """
        Global [start, end] window of a grand test, or None for standard tests.
        """
        if not self.is_grand_test or not self.scheduled_for:
            return None
        return self.scheduled_for, self.scheduled_for + self.duration

    def curated_question_ids(self):
        return list(
            self.curated_entries.order_by("position", "id")
            .values_list("question_id", flat=True)
        )

    def __str__(self):
        return self.title


class MockTestQuestion(models.Model):
    mock_test = models.ForeignKey(
        MockTest,
        on_delete=models.CASCADE,
        related_name="curated_entries"
    )
    question = models.ForeignKey(Question, on_delete=models.CASCADE)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self):
        return f"{self.mock_test} #{self.position} → Q{self.question_id}"


class SubjectQuota(models.Model):
    """
    One row of the quota table. Several rows may name the same
    subject; their counts add up.
    """
    mock_test = models.ForeignKey(
        MockTest,
        on_delete=models.CASCADE,
        related_name="quotas"
    )
    subject = models.CharField(max_length=200)
    easy = models.PositiveIntegerField(default=0)
    medium = models.PositiveIntegerField(default=0)
    hard = models.PositiveIntegerField(default=0)

    def counts(self):
        return {
            Question.EASY: self.easy,
            Question.MEDIUM: self.medium,
            Question.HARD: self.hard,
        }

    def __str__(self):
        return f"{self.mock_test} → {self.subject} ({self.easy}/{self.medium}/{self.hard})"


# =====================================================
# PURCHASES (read-only for the attempt engine)
# =====================================================
class Order(models.Model):
    STATUS_CREATED = "created"
    STATUS_SUCCESSFUL = "successful"
    STATUS_FAILED = "failed"
    STATUS_CHOICES = [
        (STATUS_CREATED, "Created"),
        (STATUS_SUCCESSFUL, "Successful"),
        (STATUS_FAILED, "Failed"),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="mocktest_orders"
    )
    items = models.ManyToManyField(MockTest, related_name="orders")
    amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    payment_reference = models.CharField(max_length=100, blank=True, default="")
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_CREATED,
        db_index=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Order #{self.pk} ({self.status}) for {self.user}"


# =====================================================
# ATTEMPT
# =====================================================
class Attempt(models.Model):
    STATUS_IN_PROGRESS = "in-progress"
    STATUS_COMPLETED = "completed"
    STATUS_CHOICES = [
        (STATUS_IN_PROGRESS, "In progress"),
        (STATUS_COMPLETED, "Completed"),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="mocktest_attempts"
    )
    mock_test = models.ForeignKey(
        MockTest,
        on_delete=models.PROTECT,
        related_name="attempts"
    )

    # Owned snapshots, never foreign keys
    questions = models.JSONField(default=list)
    draft_answers = models.JSONField(
        default=dict,
        blank=True,
        help_text="Autosaved answers keyed by question id; not graded"
    )
    answers = models.JSONField(
        default=list,
        blank=True,
        help_text="Finalized answer records written on submission"
    )

    started_at = models.DateTimeField()
    ends_at = models.DateTimeField()
    submitted_at = models.DateTimeField(null=True, blank=True)

    score = models.FloatField(null=True, blank=True)
    correct_count = models.PositiveIntegerField(null=True, blank=True)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_IN_PROGRESS,
        db_index=True,
    )

    class Meta:
        indexes = [
            models.Index(fields=["user", "mock_test"], name="attempt_user_test_idx"),
            models.Index(fields=["mock_test", "status"], name="attempt_test_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(
                        status="in-progress",
                        submitted_at__isnull=True,
                        score__isnull=True,
                        correct_count__isnull=True,
                    )
                    | Q(
                        status="completed",
                        submitted_at__isnull=False,
                        score__isnull=False,
                        correct_count__isnull=False,
                    )
                ),
                name="attempt_state_consistent",
            ),
        ]

    @property
    def state(self):
        if self.status == self.STATUS_COMPLETED:
            return Completed(
                submitted_at=self.submitted_at,
                score=self.score,
                correct_count=self.correct_count,
            )
        return InProgress(ends_at=self.ends_at)

    def is_completed(self):
        return self.status == self.STATUS_COMPLETED

    def is_expired(self, now):
        """
        In progress but past the deadline. The status field is not
        flipped by expiry; only a submission completes an attempt.
        """
        return not self.is_completed() and now >= self.ends_at

    def time_remaining(self, now):
        if self.is_completed():
            return 0
        return max(0, int((self.ends_at - now).total_seconds()))

    def effective_status(self, now):
        if self.is_expired(now):
            return "expired"
        return self.status

    def __str__(self):
        return f"{self.user} → {self.mock_test} ({self.status})"
