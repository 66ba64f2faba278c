import os

# Must be set before lesson_agenda.core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_TO_FILE"] = "false"

from datetime import date, time

import httpx
import pytest

from lesson_agenda import models
from lesson_agenda.core.database import Base, SessionLocal, engine

# 2025-02-01 is a Saturday; Mondays in February 2025 are 3, 10, 17, 24
MONDAY = 1
TUESDAY = 2


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_agreement(db):
    """Persist a lesson type plus agreement; defaults to weekly Monday 14:00 from 2025-02-01."""

    def _make(
        *,
        teacher_id=1,
        student_id=10,
        day_of_week=MONDAY,
        start_time=time(14, 0),
        start_date=date(2025, 2, 1),
        end_date=None,
        frequency="weekly",
        name="Piano",
        duration_minutes=45,
        is_group_lesson=False,
        lesson_type=None,
        is_active=True,
    ):
        if lesson_type is None:
            lesson_type = models.LessonType(
                name=name,
                frequency=frequency,
                duration_minutes=duration_minutes,
                is_group_lesson=is_group_lesson,
            )
            db.add(lesson_type)
            db.flush()
        agreement = models.Agreement(
            teacher_id=teacher_id,
            student_id=student_id,
            lesson_type_id=lesson_type.id,
            day_of_week=day_of_week,
            start_time=start_time,
            start_date=start_date,
            end_date=end_date,
            is_active=is_active,
        )
        db.add(agreement)
        db.commit()
        return agreement

    return _make


@pytest.fixture
def make_deviation(db):
    """Persist a deviation row directly, bypassing reconciliation (the guard still applies)."""

    def _make(agreement, original_date, actual_date, actual_start_time, **fields):
        row = models.Deviation(
            agreement_id=agreement.id,
            original_date=original_date,
            original_start_time=fields.pop("original_start_time", agreement.start_time),
            actual_date=actual_date,
            actual_start_time=actual_start_time,
            **fields,
        )
        db.add(row)
        db.commit()
        return row

    return _make


@pytest.fixture
def deviation_count(db):
    def _count(agreement_id):
        return db.query(models.Deviation).filter(models.Deviation.agreement_id == agreement_id).count()

    return _count


@pytest.fixture
async def client(db):
    from lesson_agenda.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
