"""
Question snapshots owned by an attempt.

An attempt stores plain dicts in a JSON column; ``QuestionSnapshot``
is the typed view of one entry. Snapshots are copied out of the bank
when the attempt is created and never re-read from it.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

# Keys that reveal the answer. Stripped from anything sent to a
# client while the attempt is in progress.
ANSWER_KEYS = ("correct", "correct_text", "explanation")


@dataclass(frozen=True)
class Option:
    text: str
    image_url: Optional[str] = None


@dataclass(frozen=True)
class QuestionSnapshot:
    id: int
    question_type: str
    text: str
    marks: float = 1.0
    negative_marks: float = 0.0
    options: Tuple[Option, ...] = ()
    correct: Tuple[int, ...] = ()
    correct_text: str = ""
    explanation: str = ""
    subject: str = ""
    difficulty: str = ""
    image_url: Optional[str] = None
    parent_id: Optional[int] = None

    @property
    def is_passage(self):
        return self.question_type == "passage"

    @classmethod
    def from_question(cls, question):
        options = tuple(
            Option(
                text=str(opt.get("text") or "") if isinstance(opt, dict) else str(opt),
                image_url=opt.get("image_url") if isinstance(opt, dict) else None,
            )
            for opt in (question.options or [])
        )
        return cls(
            id=question.pk,
            question_type=question.question_type,
            text=question.text,
            marks=float(question.marks or 0),
            negative_marks=abs(float(question.negative_marks or 0)),
            options=options,
            correct=tuple(int(i) for i in (question.correct or [])),
            correct_text=question.correct_text or "",
            explanation=question.explanation or "",
            subject=question.subject or "",
            difficulty=question.difficulty or "",
            image_url=question.image_url,
            parent_id=question.parent_id,
        )

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data["id"],
            question_type=data.get("question_type", "mcq"),
            text=data.get("text", ""),
            marks=float(data.get("marks") or 0),
            negative_marks=float(data.get("negative_marks") or 0),
            options=tuple(
                Option(text=o.get("text", ""), image_url=o.get("image_url"))
                for o in data.get("options") or []
            ),
            correct=tuple(data.get("correct") or ()),
            correct_text=data.get("correct_text") or "",
            explanation=data.get("explanation") or "",
            subject=data.get("subject") or "",
            difficulty=data.get("difficulty") or "",
            image_url=data.get("image_url"),
            parent_id=data.get("parent_id"),
        )

    def as_dict(self):
        return {
            "id": self.id,
            "question_type": self.question_type,
            "text": self.text,
            "image_url": self.image_url,
            "options": [
                {"text": o.text, "image_url": o.image_url} for o in self.options
            ],
            "correct": list(self.correct),
            "correct_text": self.correct_text,
            "marks": self.marks,
            "negative_marks": self.negative_marks,
            "explanation": self.explanation,
            "subject": self.subject,
            "difficulty": self.difficulty,
            "parent_id": self.parent_id,
        }

    def public_dict(self):
        data = self.as_dict()
        for key in ANSWER_KEYS:
            data.pop(key, None)
        return data


def load_snapshots(raw_list):
    return [QuestionSnapshot.from_dict(d) for d in raw_list or []]


def public_questions(raw_list):
    return [s.public_dict() for s in load_snapshots(raw_list)]
