from datetime import datetime, timedelta, timezone as dt_timezone

from django.contrib.auth import get_user_model

from mocktests.models import MockTest, MockTestQuestion, Order, Question, SubjectQuota

User = get_user_model()

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=dt_timezone.utc)


class FixedClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_user(username="student", **extra):
    return User.objects.create_user(
        username=username, email=f"{username}@test.com", password="testpass", **extra
    )


def make_mcq(text="Q", options=("A", "B", "C", "D"), correct=(1,), marks=4, negative=1,
             subject="Math", difficulty=Question.EASY, **extra):
    return Question.objects.create(
        question_type=Question.MCQ,
        text=text,
        options=[{"text": o, "image_url": None} for o in options],
        correct=list(correct),
        marks=marks,
        negative_marks=negative,
        subject=subject,
        difficulty=difficulty,
        **extra,
    )


def make_manual(text="Capital of France?", answer="Paris", marks=2, negative=0.5,
                subject="GK", difficulty=Question.EASY, **extra):
    return Question.objects.create(
        question_type=Question.MANUAL,
        text=text,
        correct_text=answer,
        marks=marks,
        negative_marks=negative,
        subject=subject,
        difficulty=difficulty,
        **extra,
    )


def make_passage(text="Read the passage.", subject="English", **extra):
    return Question.objects.create(
        question_type=Question.PASSAGE,
        text=text,
        marks=0,
        negative_marks=0,
        subject=subject,
        **extra,
    )


def make_test(questions=(), quotas=(), title="Mock 1", duration=60, published=True, **extra):
    mt = MockTest.objects.create(
        title=title,
        duration_minutes=duration,
        is_published=published,
        **extra,
    )
    for pos, q in enumerate(questions):
        MockTestQuestion.objects.create(mock_test=mt, question=q, position=pos)
    for subject, easy, medium, hard in quotas:
        SubjectQuota.objects.create(
            mock_test=mt, subject=subject, easy=easy, medium=medium, hard=hard
        )
    return mt


def make_order(user, *tests, status=Order.STATUS_SUCCESSFUL):
    order = Order.objects.create(user=user, amount=100, status=status)
    order.items.set(tests)
    return order
