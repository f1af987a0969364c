from dataclasses import dataclass
from typing import Optional

from mocktests.services.errors import MalformedAnswer
from mocktests.services.snapshots import QuestionSnapshot

# --------------------------------------------------
# Helpers
# --------------------------------------------------

def normalize_text(s: str) -> str:
    return (s or "").strip().casefold()


def is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class ScoreResult:
    answered: bool
    is_correct: bool
    marks_delta: float


UNANSWERED = ScoreResult(answered=False, is_correct=False, marks_delta=0.0)

MAX_INDEX_DIGITS = 6


# --------------------------------------------------
# MCQ option resolution
# --------------------------------------------------

def resolve_option_index(snapshot: QuestionSnapshot, value) -> Optional[int]:
    """
    Map a submitted value to an option index.

    ints (and integral floats) are indices. Strings are matched against option text
    (exact, case-sensitive) and only then read as a digit index.
    Returns None when nothing matches.
    """
    count = len(snapshot.options)

    # bool is an int subclass
    if isinstance(value, bool):
        raise MalformedAnswer(f"boolean answer for question {snapshot.id}")

    # JSON clients often send 1.0 for 1
    if isinstance(value, float) and value.is_integer():
        value = int(value)

    if isinstance(value, int):
        return value if 0 <= value < count else None

    if isinstance(value, str):
        for idx, opt in enumerate(snapshot.options):
            if opt.text == value:
                return idx
        stripped = value.strip()
        # isdigit() alone also accepts "²" and strings int() refuses
        if stripped.isascii() and stripped.isdigit() and len(stripped) <= MAX_INDEX_DIGITS:
            idx = int(stripped)
            return idx if idx < count else None
        return None

    raise MalformedAnswer(
        f"unsupported answer type {type(value).__name__} for question {snapshot.id}"
    )


# --------------------------------------------------
# Grade ONE answer
# --------------------------------------------------

def score_answer(snapshot: QuestionSnapshot, selected) -> ScoreResult:
    """
    Pure grading of one (question, answer) pair.

    Any non-blank answer that is not verifiably correct costs the
    negative mark, including values that match no option.
    """
    if snapshot.is_passage or is_blank(selected):
        return UNANSWERED

    penalty = ScoreResult(
        answered=True,
        is_correct=False,
        marks_delta=-abs(snapshot.negative_marks),
    )
    reward = ScoreResult(
        answered=True,
        is_correct=True,
        marks_delta=snapshot.marks,
    )

    # -----------------------------
    # MCQ
    # -----------------------------
    if snapshot.question_type == "mcq":
        correct_set = set(snapshot.correct)

        if isinstance(selected, (list, tuple)):
            if len(selected) == 1:
                selected = selected[0]
            else:
                resolved = [resolve_option_index(snapshot, v) for v in selected]
                if None in resolved:
                    return penalty
                return reward if set(resolved) == correct_set else penalty

        idx = resolve_option_index(snapshot, selected)
        if idx is None:
            return penalty
        return reward if idx in correct_set else penalty

    # -----------------------------
    # MANUAL / FREE TEXT
    # -----------------------------
    if snapshot.question_type == "manual":
        if not isinstance(selected, (str, int)) or isinstance(selected, bool):
            raise MalformedAnswer(
                f"unsupported answer type {type(selected).__name__} for question {snapshot.id}"
            )
        expected = normalize_text(snapshot.correct_text)
        if expected and normalize_text(str(selected)) == expected:
            return reward
        return penalty

    raise MalformedAnswer(f"unknown question type {snapshot.question_type!r}")
