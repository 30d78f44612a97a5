"""
Fire-and-forget collaborators invoked after a successful submit.

Neither may fail the submit: the lifecycle manager catches and logs whatever
they raise. Delivery itself (email rendering, SMTP) belongs to the worker that
consumes the notification queue.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol

from sqlalchemy.orm import sessionmaker

from qbank_attempts.core.config import settings
from qbank_attempts.models.orm import AuditLog

logger = logging.getLogger(__name__)


@dataclass
class CompletionNotice:
    attempt_id: str
    recipient: str
    bank_title: str
    learner_name: str
    score: float
    max_score: float
    percentage: float
    passed: bool

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


class Notifier(Protocol):
    def notify_completion(self, notice: CompletionNotice) -> None: ...


class Auditor(Protocol):
    def record_submission(self, *, attempt_id: str, bank_id: str, user_id: str, score: float, passed: bool) -> None: ...


class QueueNotifier:
    """Hands completion notices to the notification worker through RQ."""

    def __init__(self, queue=None, job: str = settings.NOTIFICATION_JOB, job_timeout: int = settings.NOTIFICATION_JOB_TIMEOUT):
        if queue is None:
            from qbank_attempts.jobs.queue import notification_queue as queue
        self.queue = queue
        self.job = job
        self.job_timeout = job_timeout

    def notify_completion(self, notice: CompletionNotice) -> None:
        job = self.queue.enqueue(self.job, notice.to_payload(), job_timeout=self.job_timeout)
        logger.info(f"Completion notice for attempt {notice.attempt_id} queued as job {job.get_id()}")


class AuditRecorder:
    ACTION_SUBMITTED = "ATTEMPT_SUBMITTED"

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record_submission(self, *, attempt_id: str, bank_id: str, user_id: str, score: float, passed: bool) -> None:
        with self.session_factory() as db, db.begin():
            db.add(AuditLog(
                user_id=user_id,
                action=self.ACTION_SUBMITTED,
                entity_type="quiz_attempt",
                entity_id=attempt_id,
                details={"bank_id": bank_id, "score": score, "passed": passed},
            ))


def build_notifier() -> Optional[Notifier]:
    return QueueNotifier() if settings.NOTIFICATIONS_ENABLED else None
