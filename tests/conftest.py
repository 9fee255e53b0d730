import os
import random
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

# must be set before db is imported anywhere
_TMP_DIR = tempfile.mkdtemp(prefix="assessment-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/test.db"
os.environ["ASSESSMENT_DATA_DIR"] = str(Path(__file__).parent / "fixtures" / "assessments")

import pytest  # noqa: E402
from sqlalchemy import delete  # noqa: E402

import models  # noqa: E402
from bank import get_assessment_config, reload_bank  # noqa: E402
from db import Base, SessionLocal, engine  # noqa: E402
from deps.engine import get_orchestrator  # noqa: E402
from engine.orchestrator import SessionOrchestrator  # noqa: E402
from main import app  # noqa: E402

Base.metadata.create_all(engine)


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def _clean_state():
    reload_bank()
    yield
    with SessionLocal() as db:
        db.execute(delete(models.AssessmentAnswer))
        db.execute(delete(models.AssessmentSession))
        db.commit()
    app.dependency_overrides.clear()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 9, 0, 0, tzinfo=UTC))


@pytest.fixture
def orchestrator(clock):
    eng = SessionOrchestrator(SessionLocal, get_assessment_config, clock=clock, rng=random.Random(7))
    app.dependency_overrides[get_orchestrator] = lambda: eng
    return eng


@pytest.fixture
def db():
    with SessionLocal() as s:
        yield s
