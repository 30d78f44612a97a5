from unittest.mock import MagicMock

from sqlalchemy import select

from qbank_attempts.models.orm import AuditLog
from qbank_attempts.services.notifications import AuditRecorder, CompletionNotice, QueueNotifier


def make_notice():
    return CompletionNotice(
        attempt_id="att-1", recipient="cardio-team@example.org", bank_title="Cardiology basics",
        learner_name="Sam Rivera", score=5.0, max_score=6, percentage=83.33, passed=True,
    )


def test_queue_notifier_enqueues_payload():
    queue = MagicMock()
    queue.enqueue.return_value.get_id.return_value = "job-42"
    notifier = QueueNotifier(queue=queue, job="mailer.jobs.send_completion_email", job_timeout=60)

    notifier.notify_completion(make_notice())

    queue.enqueue.assert_called_once()
    args, kwargs = queue.enqueue.call_args
    assert args[0] == "mailer.jobs.send_completion_email"
    assert args[1]["recipient"] == "cardio-team@example.org"
    assert args[1]["learner_name"] == "Sam Rivera"
    assert kwargs == {"job_timeout": 60}


def test_audit_recorder_writes_row(session_factory):
    AuditRecorder(session_factory).record_submission(
        attempt_id="att-1", bank_id="bank-1", user_id="user-1", score=4.0, passed=False,
    )
    with session_factory() as db:
        row = db.scalar(select(AuditLog))
    assert row.action == "ATTEMPT_SUBMITTED"
    assert row.entity_type == "quiz_attempt"
    assert row.entity_id == "att-1"
    assert row.user_id == "user-1"
    assert row.details == {"bank_id": "bank-1", "score": 4.0, "passed": False}
