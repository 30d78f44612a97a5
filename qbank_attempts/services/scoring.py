"""
Per-question-type scoring and total score calculation.

Every scorer takes the learner response, the canonical answer and (for image
maps) the question options, and returns a score in [0, 1] plus a correctness
flag. Anything missing or malformed scores 0.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from qbank_attempts.models.orm import QuestionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringResult:
    score: float
    is_correct: bool


@dataclass(frozen=True)
class TotalScore:
    score: float
    max_score: int
    percentage: float
    passed: bool


INCORRECT = ScoringResult(score=0.0, is_correct=False)
CORRECT = ScoringResult(score=1.0, is_correct=True)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite(value: Any) -> bool:
    if not _is_number(value):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _field(payload: Any, key: str) -> Any:
    return payload.get(key) if isinstance(payload, dict) else None


def _verdict(hit: bool) -> ScoringResult:
    return CORRECT if hit else INCORRECT


def score_mc_single(response: Any, correct_answer: Any, options: Any = None) -> ScoringResult:
    selected = _field(response, "option_id")
    expected = _field(correct_answer, "option_id")
    if not selected or not expected:
        return INCORRECT
    return _verdict(selected == expected)


def score_mc_multi(response: Any, correct_answer: Any, options: Any = None) -> ScoringResult:
    """Symmetric partial credit: +1/N per correct pick, -1/N per wrong pick, clamped to [0, 1]."""
    selected = _field(response, "option_ids")
    expected = _field(correct_answer, "option_ids")
    if not isinstance(selected, list) or not isinstance(expected, list) or not expected:
        return INCORRECT
    if not all(isinstance(i, str) for i in selected) or not all(isinstance(i, str) for i in expected):
        return INCORRECT

    correct_set = set(expected)
    picks = set(selected)
    hits = len(picks & correct_set)
    misses = len(picks - correct_set)
    score = max(0.0, min(1.0, (hits - misses) / len(correct_set)))
    return ScoringResult(score=score, is_correct=score == 1.0)


def score_true_false(response: Any, correct_answer: Any, options: Any = None) -> ScoringResult:
    value = _field(response, "value")
    expected = _field(correct_answer, "value")
    if not isinstance(value, bool) or not isinstance(expected, bool):
        return INCORRECT
    return _verdict(value == expected)


def score_drag_order(response: Any, correct_answer: Any, options: Any = None) -> ScoringResult:
    ordered = _field(response, "ordered_ids")
    expected = _field(correct_answer, "ordered_ids")
    if not isinstance(ordered, list) or not isinstance(expected, list):
        return INCORRECT
    return _verdict(ordered == expected)


def _region_hit(region: Dict[str, Any], x: float, y: float) -> bool:
    kind = region.get("type")
    if kind == "circle":
        cx, cy, r = region.get("cx"), region.get("cy"), region.get("r")
        if not all(_is_finite(v) for v in (cx, cy, r)):
            return False
        return math.hypot(x - cx, y - cy) <= r
    if kind == "rect":
        left, top = region.get("x"), region.get("y")
        width, height = region.get("width"), region.get("height")
        if not all(_is_finite(v) for v in (left, top, width, height)):
            return False
        return left <= x <= left + width and top <= y <= top + height
    return False


def score_image_map(response: Any, correct_answer: Any, options: Any = None) -> ScoringResult:
    x, y = _field(response, "x"), _field(response, "y")
    region_id = _field(correct_answer, "region_id")
    regions = _field(options, "regions")
    if not _is_finite(x) or not _is_finite(y) or not region_id or not isinstance(regions, list):
        return INCORRECT

    region = next((r for r in regions if isinstance(r, dict) and r.get("id") == region_id), None)
    if region is None:
        return INCORRECT
    return _verdict(_region_hit(region, x, y))


def score_slider(response: Any, correct_answer: Any, options: Any = None) -> ScoringResult:
    value = _field(response, "value")
    expected = _field(correct_answer, "value")
    if not _is_finite(value) or not _is_finite(expected):
        return INCORRECT
    tolerance = _field(correct_answer, "tolerance")
    tolerance = tolerance if _is_finite(tolerance) else 0
    return _verdict(abs(value - expected) <= tolerance)


SCORERS: Dict[QuestionType, Callable[[Any, Any, Any], ScoringResult]] = {
    QuestionType.MC_SINGLE: score_mc_single,
    QuestionType.MC_MULTI: score_mc_multi,
    QuestionType.TRUE_FALSE: score_true_false,
    QuestionType.DRAG_ORDER: score_drag_order,
    QuestionType.IMAGE_MAP: score_image_map,
    QuestionType.SLIDER: score_slider,
}


def score_question(
    question_type: QuestionType,
    response: Any,
    correct_answer: Any,
    options: Optional[Any] = None,
) -> ScoringResult:
    """Score one response against its canonical answer."""
    if response is None:
        return INCORRECT
    scorer = SCORERS.get(question_type)
    if scorer is None:
        return INCORRECT
    try:
        return scorer(response, correct_answer, options)
    except (TypeError, ValueError, OverflowError) as e:
        # stored responses are unvalidated learner input
        logger.warning(f"Unscoreable {question_type.value} response scored as 0: {e}")
        return INCORRECT


def calculate_total_score(results: Iterable[ScoringResult], passing_score: float) -> TotalScore:
    results = list(results)
    max_score = len(results)
    score = sum(r.score for r in results)
    # half-up to two places
    percentage = math.floor(score / max_score * 100 * 100 + 0.5) / 100 if max_score > 0 else 0.0
    return TotalScore(score=score, max_score=max_score, percentage=percentage, passed=percentage >= passing_score)
