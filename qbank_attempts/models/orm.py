import enum
import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import JSON, Boolean, DateTime, Enum as SQLEnum, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qbank_attempts.core.database import Base, utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class BankStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    PUBLIC = "PUBLIC"
    ARCHIVED = "ARCHIVED"


class QuestionType(str, enum.Enum):
    MC_SINGLE = "MC_SINGLE"
    MC_MULTI = "MC_MULTI"
    TRUE_FALSE = "TRUE_FALSE"
    DRAG_ORDER = "DRAG_ORDER"
    IMAGE_MAP = "IMAGE_MAP"
    SLIDER = "SLIDER"


class FeedbackTiming(str, enum.Enum):
    NONE = "NONE"
    IMMEDIATE = "IMMEDIATE"
    END = "END"


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    TIMED_OUT = "TIMED_OUT"


ATTEMPTABLE_BANK_STATUSES = (BankStatus.OPEN, BankStatus.PUBLIC)
TERMINAL_ATTEMPT_STATUSES = (AttemptStatus.COMPLETED, AttemptStatus.TIMED_OUT)

# ========== Authoring Models (owned by the authoring subsystem, read-only here) ==========

class QuestionBank(Base):
    __tablename__ = "question_banks"
    __table_args__ = (
        Index("idx_qb_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[BankStatus] = mapped_column(SQLEnum(BankStatus), nullable=False, default=BankStatus.DRAFT)
    time_limit_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    random_questions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    random_answers: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    passing_score_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=80)
    feedback_timing: Mapped[FeedbackTiming] = mapped_column(
        SQLEnum(FeedbackTiming), nullable=False, default=FeedbackTiming.END
    )
    question_count: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notification_email: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    questions: Mapped[List["Question"]] = relationship(
        back_populates="bank", order_by="Question.position", cascade="all, delete-orphan"
    )


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        Index("idx_questions_bank_position", "bank_id", "position"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    bank_id: Mapped[str] = mapped_column(String(36), ForeignKey("question_banks.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[QuestionType] = mapped_column(SQLEnum(QuestionType), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    prompt_image: Mapped[str | None] = mapped_column(String(500))
    options: Mapped[Any] = mapped_column(JSON, nullable=False, default=list)
    correct_answer: Mapped[Any] = mapped_column(JSON, nullable=False, default=dict)
    feedback: Mapped[str] = mapped_column(Text, nullable=False, default="")
    feedback_image: Mapped[str | None] = mapped_column(String(500))
    reference_link: Mapped[str | None] = mapped_column(String(500))
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    bank: Mapped["QuestionBank"] = relationship(back_populates="questions")

# ========== Delivery Models ==========

class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"
    __table_args__ = (
        Index("idx_qa_user", "user_id"),
        Index("idx_qa_user_bank", "user_id", "bank_id"),
        Index("idx_qa_status", "status"),
        # backs the one-live-attempt rule when two starts race past the serializable checks
        Index(
            "uq_qa_user_bank_in_progress", "user_id", "bank_id", unique=True,
            postgresql_where=text("status = 'IN_PROGRESS'"),
            sqlite_where=text("status = 'IN_PROGRESS'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    bank_id: Mapped[str] = mapped_column(String(36), ForeignKey("question_banks.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[AttemptStatus] = mapped_column(
        SQLEnum(AttemptStatus), nullable=False, default=AttemptStatus.IN_PROGRESS
    )
    question_order: Mapped[List[str]] = mapped_column(JSON, nullable=False)
    option_order: Mapped[Dict[str, List[int]]] = mapped_column(JSON, nullable=False, default=dict)
    responses: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    max_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    bank: Mapped["QuestionBank"] = relationship()

# ========== Governance Models ==========

class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_al_user", "user_id"),
        Index("idx_al_entity", "entity_type", "entity_id"),
        Index("idx_al_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str | None] = mapped_column(String(255))
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(255))
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
