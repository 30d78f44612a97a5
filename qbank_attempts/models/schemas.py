from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from qbank_attempts.models.orm import AttemptStatus, FeedbackTiming, QuestionType


class QuizQuestion(BaseModel):
    id: str
    type: QuestionType
    prompt: str
    prompt_image: Optional[str] = None
    options: Any = None


class StartAttemptResult(BaseModel):
    attempt_id: str
    bank_title: str
    time_limit_minutes: int
    question_count: int
    feedback_timing: FeedbackTiming
    questions: List[QuizQuestion]


class AttemptState(BaseModel):
    id: str
    bank_id: str
    bank_title: str
    status: AttemptStatus
    started_at: datetime
    time_spent_seconds: int
    time_limit_minutes: int
    feedback_timing: FeedbackTiming
    question_count: int
    questions: List[QuizQuestion]
    responses: Dict[str, Any]


class QuestionResult(BaseModel):
    id: str
    type: QuestionType
    prompt: str
    prompt_image: Optional[str] = None
    options: Any = None
    correct_answer: Any = None
    feedback: str = ""
    feedback_image: Optional[str] = None
    reference_link: Optional[str] = None
    user_response: Any = None
    score: float
    is_correct: bool


class QuizResults(BaseModel):
    id: str
    bank_id: str
    bank_title: str
    status: AttemptStatus
    score: float
    max_score: float
    percentage: float
    passed: bool
    time_spent_seconds: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    feedback_timing: FeedbackTiming
    questions: List[QuestionResult] = []


class ImmediateFeedback(BaseModel):
    question_id: str
    correct_answer: Any = None
    feedback: str = ""
    feedback_image: Optional[str] = None
    score: float
    is_correct: bool


class SaveProgressResult(BaseModel):
    saved: bool
    saved_at: datetime
    immediate_feedback: Optional[List[ImmediateFeedback]] = None


class SaveProgressRequest(BaseModel):
    responses: Dict[str, Any]
    time_spent: int = Field(ge=0)


class AttemptSummary(BaseModel):
    id: str
    bank_id: str
    bank_title: str
    status: AttemptStatus
    score: float
    max_score: float
    percentage: float
    passed: bool
    started_at: datetime
    completed_at: Optional[datetime] = None
    time_spent_seconds: int


class PageMeta(BaseModel):
    page: int
    page_size: int
    total_count: int
    total_pages: int


class AttemptPage(BaseModel):
    data: List[AttemptSummary]
    meta: PageMeta
