"""
Quiz attempt lifecycle: start, read, save progress, submit, results.

State machine::

    (none) -> IN_PROGRESS -> COMPLETED | TIMED_OUT

Terminal states never change again. The database is the only synchronization
point: starting runs in a SERIALIZABLE transaction, and every transition away
from IN_PROGRESS (and every progress save) is an ``UPDATE ... WHERE status =
'IN_PROGRESS'``. The caller whose update affects zero rows lost the race and
must not score again.

Timeouts are detected lazily. There is no sweeper: an attempt whose time limit
elapsed stays IN_PROGRESS in storage until it is next touched (read, save,
submit, or a new start for the same learner and bank), at which point it is
moved to TIMED_OUT and scored from whatever responses it holds.
"""
import logging
import math
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from qbank_attempts.core.config import settings
from qbank_attempts.core.database import utcnow
from qbank_attempts.core.errors import (
    AttemptAlreadyCompleted,
    AttemptInProgressConflict,
    AttemptNotCompleted,
    AttemptNotInProgress,
    AttemptTimedOut,
    BankNotAvailable,
    InvalidPagination,
    MaxAttemptsReached,
    NotFound,
)
from qbank_attempts.models.orm import (
    ATTEMPTABLE_BANK_STATUSES,
    TERMINAL_ATTEMPT_STATUSES,
    AttemptStatus,
    FeedbackTiming,
    Question,
    QuestionBank,
    QuizAttempt,
)
from qbank_attempts.models.schemas import (
    AttemptPage,
    AttemptState,
    AttemptSummary,
    ImmediateFeedback,
    PageMeta,
    QuestionResult,
    QuizResults,
    SaveProgressResult,
    StartAttemptResult,
)
from qbank_attempts.services.notifications import Auditor, CompletionNotice, Notifier
from qbank_attempts.services.scoring import INCORRECT, ScoringResult, TotalScore, calculate_total_score, score_question
from qbank_attempts.services.selector import present_options, select_questions, to_quiz_question
from qbank_attempts.services.timeout import elapsed_seconds, is_timed_out

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE = "40001"


def _is_serialization_failure(exc: OperationalError) -> bool:
    if getattr(exc.orig, "pgcode", None) == SERIALIZATION_FAILURE:
        return True
    return "database is locked" in str(exc.orig)


class AttemptLifecycleManager:
    def __init__(
        self,
        session_factory: sessionmaker,
        notifier: Optional[Notifier] = None,
        auditor: Optional[Auditor] = None,
        clock: Callable = utcnow,
        max_page_size: int = settings.MAX_PAGE_SIZE,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.auditor = auditor
        self.clock = clock
        self.max_page_size = max_page_size

    # ---------------------------------------------------------------- start

    def start_attempt(self, bank_id: str, user_id: str) -> StartAttemptResult:
        now = self.clock()
        try:
            with self.session_factory() as db, db.begin():
                db.connection(execution_options={"isolation_level": "SERIALIZABLE"})

                bank = db.get(QuestionBank, bank_id)
                if bank is None:
                    raise NotFound("Question bank")
                if bank.status not in ATTEMPTABLE_BANK_STATUSES:
                    raise BankNotAvailable()

                selection = select_questions(
                    bank.questions, bank.random_questions, bank.question_count, bank.random_answers
                )

                if bank.max_attempts > 0:
                    finished = db.scalar(
                        select(func.count()).select_from(QuizAttempt).where(
                            QuizAttempt.user_id == user_id,
                            QuizAttempt.bank_id == bank_id,
                            QuizAttempt.status.in_(TERMINAL_ATTEMPT_STATUSES),
                        )
                    )
                    if finished >= bank.max_attempts:
                        raise MaxAttemptsReached(bank.max_attempts)

                existing = db.scalar(
                    select(QuizAttempt).where(
                        QuizAttempt.user_id == user_id,
                        QuizAttempt.bank_id == bank_id,
                        QuizAttempt.status == AttemptStatus.IN_PROGRESS,
                    ).limit(1)
                )
                if existing is not None:
                    if not is_timed_out(existing.started_at, bank.time_limit_minutes, now):
                        raise AttemptInProgressConflict()
                    self._expire(db, existing, bank, now)

                attempt = QuizAttempt(
                    user_id=user_id,
                    bank_id=bank_id,
                    status=AttemptStatus.IN_PROGRESS,
                    question_order=selection.question_ids,
                    option_order=selection.option_order,
                    responses={},
                    started_at=now,
                )
                db.add(attempt)
                db.flush()

                by_id = {q.id: q for q in bank.questions}
                questions = [to_quiz_question(by_id[qid], selection.option_order.get(qid)) for qid in selection.question_ids]
                result = StartAttemptResult(
                    attempt_id=attempt.id,
                    bank_title=bank.title,
                    time_limit_minutes=bank.time_limit_minutes,
                    question_count=len(questions),
                    feedback_timing=bank.feedback_timing,
                    questions=questions,
                )
        except IntegrityError as exc:
            logger.info(f"Concurrent start for user {user_id} on bank {bank_id} rejected by unique index")
            raise AttemptInProgressConflict() from exc
        except OperationalError as exc:
            if not _is_serialization_failure(exc):
                raise
            logger.info(f"Concurrent start for user {user_id} on bank {bank_id} failed serialization")
            raise AttemptInProgressConflict() from exc

        logger.info(f"Quiz attempt {result.attempt_id} started: user={user_id} bank={bank_id} questions={result.question_count}")
        return result

    # ---------------------------------------------------------------- read

    def get_attempt_state(self, attempt_id: str, user_id: str) -> AttemptState:
        now = self.clock()
        with self.session_factory() as db, db.begin():
            attempt = self._owned_attempt(db, attempt_id, user_id)
            bank = attempt.bank
            if attempt.status == AttemptStatus.IN_PROGRESS and is_timed_out(attempt.started_at, bank.time_limit_minutes, now):
                self._expire(db, attempt, bank, now)
                db.refresh(attempt)

            by_id = self._load_questions(db, attempt.question_order)
            option_order = attempt.option_order or {}
            questions = [
                to_quiz_question(by_id[qid], option_order.get(qid)) for qid in attempt.question_order if qid in by_id
            ]
            return AttemptState(
                id=attempt.id,
                bank_id=attempt.bank_id,
                bank_title=bank.title,
                status=attempt.status,
                started_at=attempt.started_at,
                time_spent_seconds=attempt.time_spent_seconds,
                time_limit_minutes=bank.time_limit_minutes,
                feedback_timing=bank.feedback_timing,
                question_count=len(questions),
                questions=questions,
                responses=attempt.responses or {},
            )

    # ---------------------------------------------------------------- save

    def save_progress(
        self, attempt_id: str, user_id: str, responses: Dict[str, Any], elapsed: int
    ) -> SaveProgressResult:
        now = self.clock()
        feedback: Optional[List[ImmediateFeedback]] = None
        saved = False
        with self.session_factory() as db:
            with db.begin():
                attempt = self._owned_attempt(db, attempt_id, user_id)
                if attempt.status != AttemptStatus.IN_PROGRESS:
                    raise AttemptNotInProgress()
                bank = attempt.bank
                expired = is_timed_out(attempt.started_at, bank.time_limit_minutes, now)
                if expired:
                    self._expire(db, attempt, bank, now)
                else:
                    allowed = set(attempt.question_order)
                    accepted = {qid: answer for qid, answer in responses.items() if qid in allowed}
                    if len(accepted) < len(responses):
                        logger.debug(f"Dropped {len(responses) - len(accepted)} foreign answers for attempt {attempt_id}")

                    # the guarded write takes the row lock before the merge base is read
                    claimed = db.execute(
                        update(QuizAttempt)
                        .where(QuizAttempt.id == attempt.id, QuizAttempt.status == AttemptStatus.IN_PROGRESS)
                        .values(time_spent_seconds=max(0, int(elapsed)))
                        .execution_options(synchronize_session=False)
                    )
                    saved = claimed.rowcount == 1
                    if not saved:
                        logger.info(f"Progress save for attempt {attempt_id} lost to a terminal transition")
                    else:
                        existing = dict(db.scalar(select(QuizAttempt.responses).where(QuizAttempt.id == attempt.id)) or {})
                        db.execute(
                            update(QuizAttempt)
                            .where(QuizAttempt.id == attempt.id)
                            .values(responses={**existing, **accepted})
                            .execution_options(synchronize_session=False)
                        )
                        if bank.feedback_timing == FeedbackTiming.IMMEDIATE:
                            fresh = [qid for qid in attempt.question_order if qid in accepted and qid not in existing]
                            feedback = self._immediate_feedback(db, fresh, accepted)

        if expired:
            raise AttemptTimedOut()
        return SaveProgressResult(saved=saved, saved_at=now, immediate_feedback=feedback)

    def _immediate_feedback(self, db: Session, question_ids: List[str], answers: Dict[str, Any]) -> List[ImmediateFeedback]:
        by_id = self._load_questions(db, question_ids)
        feedback = []
        for qid in question_ids:
            q = by_id.get(qid)
            if q is None:
                continue
            verdict = score_question(q.type, answers[qid], q.correct_answer, q.options)
            feedback.append(ImmediateFeedback(
                question_id=q.id,
                correct_answer=q.correct_answer,
                feedback=q.feedback,
                feedback_image=q.feedback_image,
                score=verdict.score,
                is_correct=verdict.is_correct,
            ))
        return feedback

    # ---------------------------------------------------------------- submit

    def submit_attempt(self, attempt_id: str, user_id: str, learner_name: Optional[str] = None) -> QuizResults:
        now = self.clock()
        with self.session_factory() as db, db.begin():
            attempt = self._owned_attempt(db, attempt_id, user_id)
            if attempt.status != AttemptStatus.IN_PROGRESS:
                raise AttemptAlreadyCompleted()
            bank = attempt.bank
            timed_out = is_timed_out(attempt.started_at, bank.time_limit_minutes, now)
            final_status = AttemptStatus.TIMED_OUT if timed_out else AttemptStatus.COMPLETED
            time_spent = elapsed_seconds(attempt.started_at, now)

            outcome = self._finish(db, attempt, bank, final_status, now, time_spent)
            if outcome is None:
                logger.info(f"Submit of attempt {attempt_id} lost the race to another terminal transition")
                raise AttemptAlreadyCompleted()

            total, details = outcome
            results = QuizResults(
                id=attempt.id,
                bank_id=attempt.bank_id,
                bank_title=bank.title,
                status=final_status,
                score=total.score,
                max_score=total.max_score,
                percentage=total.percentage,
                passed=total.passed,
                time_spent_seconds=time_spent,
                started_at=attempt.started_at,
                completed_at=now,
                feedback_timing=bank.feedback_timing,
                questions=details if bank.feedback_timing != FeedbackTiming.NONE else [],
            )
            recipient = bank.notification_email

        logger.info(
            f"Quiz attempt {attempt_id} submitted: user={user_id} status={final_status.value} "
            f"score={total.score}/{total.max_score} ({total.percentage}%) passed={total.passed}"
        )
        self._after_submit(results, user_id, learner_name, recipient)
        return results

    def _after_submit(self, results: QuizResults, user_id: str, learner_name: Optional[str], recipient: Optional[str]) -> None:
        if self.auditor is not None:
            try:
                self.auditor.record_submission(
                    attempt_id=results.id, bank_id=results.bank_id, user_id=user_id,
                    score=results.score, passed=results.passed,
                )
            except Exception as e:
                logger.error(f"Post-submission audit log failed for attempt {results.id}: {e}", exc_info=True)

        if not results.passed or not recipient or self.notifier is None:
            return
        try:
            self.notifier.notify_completion(CompletionNotice(
                attempt_id=results.id,
                recipient=recipient,
                bank_title=results.bank_title,
                learner_name=learner_name or user_id,
                score=results.score,
                max_score=results.max_score,
                percentage=results.percentage,
                passed=results.passed,
            ))
        except Exception as e:
            logger.error(f"Post-submission notification failed for attempt {results.id}: {e}", exc_info=True)

    # ---------------------------------------------------------------- results

    def get_results(self, attempt_id: str, user_id: str) -> QuizResults:
        with self.session_factory() as db:
            attempt = self._owned_attempt(db, attempt_id, user_id)
            if attempt.status not in TERMINAL_ATTEMPT_STATUSES:
                raise AttemptNotCompleted()
            bank = attempt.bank

            details: List[QuestionResult] = []
            if bank.feedback_timing != FeedbackTiming.NONE:
                _, details = self._grade(attempt, self._load_questions(db, attempt.question_order))

            return QuizResults(
                id=attempt.id,
                bank_id=attempt.bank_id,
                bank_title=bank.title,
                status=attempt.status,
                score=attempt.score,
                max_score=attempt.max_score,
                percentage=attempt.percentage,
                passed=attempt.passed,
                time_spent_seconds=attempt.time_spent_seconds,
                started_at=attempt.started_at,
                completed_at=attempt.completed_at,
                feedback_timing=bank.feedback_timing,
                questions=details,
            )

    # ---------------------------------------------------------------- listing

    def list_user_attempts(
        self, user_id: str, bank_id: Optional[str] = None, page: int = 1, page_size: int = settings.DEFAULT_PAGE_SIZE
    ) -> AttemptPage:
        if page < 1 or page_size < 1 or page_size > self.max_page_size:
            raise InvalidPagination()

        conditions = [QuizAttempt.user_id == user_id]
        if bank_id:
            conditions.append(QuizAttempt.bank_id == bank_id)

        with self.session_factory() as db:
            total_count = db.scalar(select(func.count()).select_from(QuizAttempt).where(*conditions)) or 0
            rows = db.execute(
                select(QuizAttempt, QuestionBank.title)
                .join(QuestionBank, QuestionBank.id == QuizAttempt.bank_id)
                .where(*conditions)
                .order_by(QuizAttempt.started_at.desc(), QuizAttempt.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()

        data = [
            AttemptSummary(
                id=a.id,
                bank_id=a.bank_id,
                bank_title=title,
                status=a.status,
                score=a.score,
                max_score=a.max_score,
                percentage=a.percentage,
                passed=a.passed,
                started_at=a.started_at,
                completed_at=a.completed_at,
                time_spent_seconds=a.time_spent_seconds,
            )
            for a, title in rows
        ]
        meta = PageMeta(page=page, page_size=page_size, total_count=total_count, total_pages=math.ceil(total_count / page_size))
        return AttemptPage(data=data, meta=meta)

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _owned_attempt(db: Session, attempt_id: str, user_id: str) -> QuizAttempt:
        attempt = db.get(QuizAttempt, attempt_id)
        if attempt is None or attempt.user_id != user_id:
            raise NotFound("Quiz attempt")
        return attempt

    @staticmethod
    def _load_questions(db: Session, question_ids: List[str]) -> Dict[str, Question]:
        if not question_ids:
            return {}
        rows = db.scalars(select(Question).where(Question.id.in_(question_ids))).all()
        return {q.id: q for q in rows}

    @staticmethod
    def _grade(attempt: QuizAttempt, by_id: Dict[str, Question]) -> Tuple[List[ScoringResult], List[QuestionResult]]:
        """Score every question in the attempt's order. Questions deleted since creation score 0."""
        responses = attempt.responses or {}
        option_order = attempt.option_order or {}
        scores: List[ScoringResult] = []
        details: List[QuestionResult] = []
        for qid in attempt.question_order:
            q = by_id.get(qid)
            if q is None:
                logger.warning(f"Question {qid} of attempt {attempt.id} no longer exists; scoring it as 0")
                scores.append(INCORRECT)
                continue
            user_response = responses.get(qid)
            verdict = score_question(q.type, user_response, q.correct_answer, q.options)
            scores.append(verdict)
            details.append(QuestionResult(
                id=q.id,
                type=q.type,
                prompt=q.prompt,
                prompt_image=q.prompt_image,
                options=present_options(q, option_order.get(qid)),
                correct_answer=q.correct_answer,
                feedback=q.feedback,
                feedback_image=q.feedback_image,
                reference_link=q.reference_link,
                user_response=user_response,
                score=verdict.score,
                is_correct=verdict.is_correct,
            ))
        return scores, details

    def _finish(
        self, db: Session, attempt: QuizAttempt, bank: QuestionBank, status: AttemptStatus, completed_at, time_spent: int
    ) -> Optional[Tuple[TotalScore, List[QuestionResult]]]:
        """Score and move the attempt to ``status``. Returns None when another caller got there first."""
        scores, details = self._grade(attempt, self._load_questions(db, attempt.question_order))
        total = calculate_total_score(scores, bank.passing_score_percent)
        outcome = db.execute(
            update(QuizAttempt)
            .where(QuizAttempt.id == attempt.id, QuizAttempt.status == AttemptStatus.IN_PROGRESS)
            .values(
                status=status,
                score=total.score,
                max_score=total.max_score,
                percentage=total.percentage,
                passed=total.passed,
                completed_at=completed_at,
                time_spent_seconds=time_spent,
            )
            .execution_options(synchronize_session=False)
        )
        if outcome.rowcount != 1:
            return None
        return total, details

    def _expire(self, db: Session, attempt: QuizAttempt, bank: QuestionBank, now) -> bool:
        outcome = self._finish(db, attempt, bank, AttemptStatus.TIMED_OUT, now, bank.time_limit_minutes * 60)
        if outcome is None:
            logger.info(f"Attempt {attempt.id} already left IN_PROGRESS; skipping auto-timeout")
            return False
        total, _ = outcome
        logger.info(f"Quiz attempt {attempt.id} auto-timed-out: score={total.score}/{total.max_score}")
        return True
