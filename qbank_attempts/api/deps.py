from functools import lru_cache

from qbank_attempts.core.database import SessionLocal
from qbank_attempts.services.attempts import AttemptLifecycleManager
from qbank_attempts.services.notifications import AuditRecorder, build_notifier


@lru_cache()
def get_attempt_manager() -> AttemptLifecycleManager:
    return AttemptLifecycleManager(SessionLocal, notifier=build_notifier(), auditor=AuditRecorder(SessionLocal))
