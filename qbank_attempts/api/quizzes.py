from fastapi import APIRouter, Depends
from qbank_attempts.api.deps import get_attempt_manager
from qbank_attempts.core.auth import ROLE_ADMIN, ROLE_STUDENT, TokenData, require_roles
from qbank_attempts.models.schemas import StartAttemptResult
from qbank_attempts.services.attempts import AttemptLifecycleManager

router = APIRouter()

@router.post("/{bank_id}/attempts", response_model=StartAttemptResult, status_code=201)
def start_attempt(bank_id: str, user: TokenData = Depends(require_roles(ROLE_STUDENT, ROLE_ADMIN)), manager: AttemptLifecycleManager = Depends(get_attempt_manager)):
  return manager.start_attempt(bank_id, user.sub)
