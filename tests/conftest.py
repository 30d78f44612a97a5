import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ["APP_SECRET"] = "test-secret"

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from qbank_attempts.core.config import Settings
from qbank_attempts.core.database import build_engine, build_session_factory, init_db
from qbank_attempts.models.orm import BankStatus, FeedbackTiming, Question, QuestionBank, QuestionType
from qbank_attempts.services.attempts import AttemptLifecycleManager


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


def sample_questions():
    return [
        dict(
            type=QuestionType.MC_SINGLE,
            prompt="Which vessel carries oxygenated blood from the left ventricle?",
            options=[{"id": "a", "text": "Aorta"}, {"id": "b", "text": "Vena cava"}, {"id": "c", "text": "Pulmonary artery"}],
            correct_answer={"option_id": "a"},
            feedback="The aorta leaves the left ventricle.",
        ),
        dict(
            type=QuestionType.MC_MULTI,
            prompt="Select the atrioventricular valves.",
            options=[{"id": "a", "text": "Mitral"}, {"id": "b", "text": "Aortic"}, {"id": "c", "text": "Tricuspid"}, {"id": "d", "text": "Pulmonary"}],
            correct_answer={"option_ids": ["a", "c"]},
        ),
        dict(
            type=QuestionType.TRUE_FALSE,
            prompt="The heart has four chambers.",
            options=[],
            correct_answer={"value": True},
        ),
        dict(
            type=QuestionType.DRAG_ORDER,
            prompt="Order the path of blood from the right atrium.",
            options=[{"id": "ra", "text": "Right atrium"}, {"id": "rv", "text": "Right ventricle"}, {"id": "pa", "text": "Pulmonary artery"}],
            correct_answer={"ordered_ids": ["ra", "rv", "pa"]},
        ),
        dict(
            type=QuestionType.IMAGE_MAP,
            prompt="Click the left ventricle.",
            options={"image": "heart.png", "regions": [{"id": "lv", "type": "circle", "cx": 100, "cy": 120, "r": 20}]},
            correct_answer={"region_id": "lv"},
        ),
        dict(
            type=QuestionType.SLIDER,
            prompt="Typical resting heart rate (bpm)?",
            options={"min": 0, "max": 200, "step": 1},
            correct_answer={"value": 70, "tolerance": 10},
        ),
    ]


CORRECT_RESPONSES = {
    QuestionType.MC_SINGLE: {"option_id": "a"},
    QuestionType.MC_MULTI: {"option_ids": ["a", "c"]},
    QuestionType.TRUE_FALSE: {"value": True},
    QuestionType.DRAG_ORDER: {"ordered_ids": ["ra", "rv", "pa"]},
    QuestionType.IMAGE_MAP: {"x": 105, "y": 118},
    QuestionType.SLIDER: {"value": 72},
}

WRONG_RESPONSES = {
    QuestionType.MC_SINGLE: {"option_id": "b"},
    QuestionType.MC_MULTI: {"option_ids": ["b", "d"]},
    QuestionType.TRUE_FALSE: {"value": False},
    QuestionType.DRAG_ORDER: {"ordered_ids": ["pa", "rv", "ra"]},
    QuestionType.IMAGE_MAP: {"x": 300, "y": 300},
    QuestionType.SLIDER: {"value": 150},
}


def responses_for(bank, table=CORRECT_RESPONSES):
    return {q.id: table[q.type] for q in bank.questions}


@pytest.fixture
def engine(tmp_path):
    # file-backed so that separate sessions get separate connections
    engine = build_engine(Settings(DATABASE_URL=f"sqlite:///{tmp_path / 'attempts.db'}"))
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def make_bank(session_factory):
    def _make(questions=None, **fields):
        values = dict(
            title="Cardiology basics",
            status=BankStatus.OPEN,
            time_limit_minutes=0,
            random_questions=False,
            random_answers=False,
            passing_score_percent=80,
            feedback_timing=FeedbackTiming.END,
            question_count=0,
            max_attempts=0,
        )
        values.update(fields)
        with session_factory() as db, db.begin():
            bank = QuestionBank(**values)
            for position, fields in enumerate(sample_questions() if questions is None else questions):
                bank.questions.append(Question(position=position, **fields))
            db.add(bank)
        return bank
    return _make


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 1, 9, 0, 0))


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def auditor():
    return MagicMock()


@pytest.fixture
def manager(session_factory, notifier, auditor, clock):
    return AttemptLifecycleManager(session_factory, notifier=notifier, auditor=auditor, clock=clock)
