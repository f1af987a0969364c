import logging
import random
from collections import OrderedDict

from mocktests.models import Question
from mocktests.services.snapshots import QuestionSnapshot

logger = logging.getLogger(__name__)


def merge_quotas(quotas):
    """
    Collapse quota rows into {subject: {difficulty: count}}.
    Rows naming the same subject accumulate.
    """
    merged = OrderedDict()
    for quota in quotas:
        name = (quota.subject or "").strip()
        if not name:
            continue
        bucket = merged.setdefault(name, {d: 0 for d in Question.DIFFICULTIES})
        for level, count in quota.counts().items():
            bucket[level] += int(count or 0)
    return merged


def has_gradable(snapshots):
    return any(not s.is_passage for s in snapshots)


def shuffle_blocks(snapshots, rng):
    """
    Fisher–Yates shuffle where a passage and its children that are
    present in the list move together, passage first.
    """
    passage_ids = {s.id for s in snapshots if s.is_passage}
    blocks = OrderedDict()

    for snap in snapshots:
        if snap.is_passage:
            blocks.setdefault(snap.id, []).insert(0, snap)
        elif snap.parent_id in passage_ids:
            blocks.setdefault(snap.parent_id, []).append(snap)
        else:
            blocks[("q", snap.id)] = [snap]

    ordered = list(blocks.values())
    for i in range(len(ordered) - 1, 0, -1):
        j = rng.randint(0, i)
        ordered[i], ordered[j] = ordered[j], ordered[i]

    return [snap for block in ordered for snap in block]


class AttemptSelector:
    """
    Resolves questions ONCE per attempt.
    The result is copied into Attempt.questions and never re-read.
    """

    @staticmethod
    def curated(mock_test):
        ids = mock_test.curated_question_ids()
        if not ids:
            return []

        bank = Question.objects.filter(id__in=ids, is_active=True).in_bulk()

        seen = set()
        snapshots = []
        for qid in ids:
            if qid in seen:
                continue
            seen.add(qid)
            q = bank.get(qid)
            if q is None:
                # soft-deleted or removed; skip silently
                continue
            snapshots.append(QuestionSnapshot.from_question(q))

        return snapshots

    @staticmethod
    def generated(mock_test, rng):
        snapshots = []
        picked_ids = set()

        for subject, levels in merge_quotas(mock_test.quotas.all()).items():
            for level, count in levels.items():
                if count <= 0:
                    continue

                pool = list(
                    Question.objects
                    .filter(subject=subject, difficulty=level, is_active=True)
                    .exclude(question_type=Question.PASSAGE)
                    .exclude(id__in=picked_ids)
                    .order_by("id")
                    .values_list("id", flat=True)
                )

                take = min(count, len(pool))
                if take < count:
                    logger.warning(
                        "Quota under-supplied for mock test %s: %s/%s wanted %s, bank has %s",
                        mock_test.pk, subject, level, count, len(pool),
                    )

                chosen = rng.sample(pool, take)
                bank = Question.objects.in_bulk(chosen)
                for qid in chosen:
                    snapshots.append(QuestionSnapshot.from_question(bank[qid]))
                picked_ids.update(chosen)

        return snapshots

    @classmethod
    def select(cls, mock_test, rng=None):
        """
        Curated list first; quotas only when the curated list yields
        nothing gradable. Returns [] when neither produces a question.
        """
        rng = rng or random.Random()

        snapshots = cls.curated(mock_test)
        if not has_gradable(snapshots):
            snapshots = cls.generated(mock_test, rng)
        if not has_gradable(snapshots):
            return []

        return shuffle_blocks(snapshots, rng)
