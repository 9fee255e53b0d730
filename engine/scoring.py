# engine/scoring.py

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Sequence


def round_half_up(x: float) -> int:
    # round() in Python is banker's rounding; 12.5 must become 13
    return int(math.floor(x + 0.5))


def round2(x: float) -> float:
    return float(Decimal(repr(x)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class ScoreResult:
    score: int
    passed: bool
    correct: int
    total: int


def count_correct(
    question_order: Sequence[str],
    answers: Mapping[str, Any],
    correct_index: Mapping[str, int],
) -> int:
    """Unanswered questions, and questions the catalog no longer knows, count as wrong."""
    correct = 0
    for qid in question_order:
        ans = answers.get(qid)
        if ans is None:
            continue
        expected = correct_index.get(qid)
        if expected is not None and ans.selected_index == expected:
            correct += 1
    return correct


def score_session(
    question_order: Sequence[str],
    answers: Mapping[str, Any],
    correct_index: Mapping[str, int],
    pass_score: int,
    question_count: int | None = None,
) -> ScoreResult:
    total = question_count if question_count is not None else len(question_order)
    correct = count_correct(question_order, answers, correct_index)
    # a catalog edit can shrink question_count below an old order's length
    score = min(100, round_half_up(100 * correct / total)) if total > 0 else 0
    return ScoreResult(score=score, passed=score >= pass_score, correct=correct, total=total)


def is_correct(answer: Any, correct_index: Dict[str, int]) -> bool:
    if answer is None:
        return False
    expected = correct_index.get(answer.question_id)
    return expected is not None and answer.selected_index == expected
