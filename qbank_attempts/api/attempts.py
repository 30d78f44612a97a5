from fastapi import APIRouter, Depends, Query
from typing import Optional
from qbank_attempts.api.deps import get_attempt_manager
from qbank_attempts.core.auth import ROLE_ADMIN, ROLE_STUDENT, TokenData, require_roles
from qbank_attempts.core.config import settings
from qbank_attempts.models.schemas import AttemptPage, AttemptState, QuizResults, SaveProgressRequest, SaveProgressResult
from qbank_attempts.services.attempts import AttemptLifecycleManager

router = APIRouter()

learner = require_roles(ROLE_STUDENT, ROLE_ADMIN)

# declared before /{attempt_id} so "mine" is not taken for an id
@router.get("/mine", response_model=AttemptPage)
def list_my_attempts(
  bank_id: Optional[str] = None,
  page: int = Query(1),
  page_size: int = Query(settings.DEFAULT_PAGE_SIZE),
  user: TokenData = Depends(learner),
  manager: AttemptLifecycleManager = Depends(get_attempt_manager),
):
  return manager.list_user_attempts(user.sub, bank_id=bank_id, page=page, page_size=page_size)

@router.get("/{attempt_id}", response_model=AttemptState)
def get_attempt(attempt_id: str, user: TokenData = Depends(learner), manager: AttemptLifecycleManager = Depends(get_attempt_manager)):
  return manager.get_attempt_state(attempt_id, user.sub)

@router.patch("/{attempt_id}", response_model=SaveProgressResult)
def save_progress(attempt_id: str, payload: SaveProgressRequest, user: TokenData = Depends(learner), manager: AttemptLifecycleManager = Depends(get_attempt_manager)):
  return manager.save_progress(attempt_id, user.sub, payload.responses, payload.time_spent)

@router.post("/{attempt_id}/submit", response_model=QuizResults)
def submit_attempt(attempt_id: str, user: TokenData = Depends(learner), manager: AttemptLifecycleManager = Depends(get_attempt_manager)):
  return manager.submit_attempt(attempt_id, user.sub, learner_name=user.name)

@router.get("/{attempt_id}/results", response_model=QuizResults)
def get_results(attempt_id: str, user: TokenData = Depends(learner), manager: AttemptLifecycleManager = Depends(get_attempt_manager)):
  return manager.get_results(attempt_id, user.sub)
