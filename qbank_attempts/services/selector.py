"""
Question and answer-option selection for a new attempt.

Randomness is drawn exactly once, when the attempt is created. The resulting
question order and option permutations are persisted on the attempt and every
later read replays them through ``present_options``.
"""
import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, TypeVar

from qbank_attempts.core.errors import NoQuestions
from qbank_attempts.models.orm import Question, QuestionType
from qbank_attempts.models.schemas import QuizQuestion

logger = logging.getLogger(__name__)

T = TypeVar("T")

SHUFFLEABLE_TYPES = frozenset({QuestionType.MC_SINGLE, QuestionType.MC_MULTI, QuestionType.DRAG_ORDER})


@dataclass
class Selection:
    question_ids: List[str]
    option_order: Dict[str, List[int]] = field(default_factory=dict)


def secure_shuffle(items: Sequence[T]) -> List[T]:
    """Fisher-Yates shuffle driven by the OS CSPRNG."""
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        result[i], result[j] = result[j], result[i]
    return result


def select_questions(
    questions: Sequence[Question],
    random_questions: bool,
    question_count: int,
    random_answers: bool,
) -> Selection:
    if not questions:
        raise NoQuestions()

    pool = secure_shuffle(questions) if random_questions else list(questions)
    limit = question_count if question_count > 0 else len(pool)
    chosen = pool[:limit]

    option_order: Dict[str, List[int]] = {}
    if random_answers:
        for q in chosen:
            if q.type in SHUFFLEABLE_TYPES and isinstance(q.options, list) and len(q.options) > 1:
                option_order[q.id] = secure_shuffle(range(len(q.options)))

    return Selection(question_ids=[q.id for q in chosen], option_order=option_order)


def present_options(question: Question, permutation: Optional[List[int]]) -> Any:
    """Apply a persisted option permutation. Never reshuffles."""
    options = question.options
    if not permutation:
        return options
    if not isinstance(options, list) or sorted(permutation) != list(range(len(options))):
        logger.warning(f"Stored option order no longer matches question {question.id}; serving stored order")
        return options
    return [options[i] for i in permutation]


def to_quiz_question(question: Question, permutation: Optional[List[int]] = None) -> QuizQuestion:
    """Learner-facing view: answers and feedback stripped."""
    return QuizQuestion(
        id=question.id,
        type=question.type,
        prompt=question.prompt,
        prompt_image=question.prompt_image,
        options=present_options(question, permutation),
    )
