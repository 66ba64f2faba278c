"""Read-only access to agreements and deviation rows.

Agreements are owned by the agreement store (outside this service); rows may
disappear between two reads, so lookups raise NotFoundError rather than
assuming existence.
"""
from __future__ import annotations

import logging
from typing import Iterable, List

from sqlalchemy.orm import Session, joinedload

from lesson_agenda import models, schemas
from lesson_agenda.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def to_snapshot(agreement: models.Agreement) -> schemas.Agreement:
    lesson_type = agreement.lesson_type
    return schemas.Agreement(
        id=agreement.id,
        teacher_id=agreement.teacher_id,
        student_id=agreement.student_id,
        lesson_type_id=agreement.lesson_type_id,
        lesson_type_name=lesson_type.name if lesson_type else "",
        frequency=schemas.Frequency(lesson_type.frequency) if lesson_type and lesson_type.frequency else schemas.Frequency.weekly,
        duration_minutes=lesson_type.duration_minutes if lesson_type else None,
        is_group_lesson=bool(lesson_type.is_group_lesson) if lesson_type else False,
        day_of_week=agreement.day_of_week,
        start_time=agreement.start_time,
        start_date=agreement.start_date,
        end_date=agreement.end_date,
        is_active=agreement.is_active,
    )


def list_active_agreements(db: Session, teacher_id: int) -> List[schemas.Agreement]:
    rows = (
        db.query(models.Agreement)
        .options(joinedload(models.Agreement.lesson_type))
        .filter(models.Agreement.teacher_id == teacher_id, models.Agreement.is_active.is_(True))
        .order_by(models.Agreement.id.asc())
        .all()
    )
    logger.debug("Loaded %d active agreements for teacher_id=%s", len(rows), teacher_id)
    return [to_snapshot(r) for r in rows]


def get_agreement(db: Session, agreement_id: int) -> models.Agreement:
    agreement = db.get(models.Agreement, agreement_id)
    if agreement is None:
        raise NotFoundError(f"Agreement {agreement_id} not found")
    return agreement


def get_deviation(db: Session, deviation_id: int) -> models.Deviation:
    deviation = db.get(models.Deviation, deviation_id)
    if deviation is None:
        raise NotFoundError(f"Deviation {deviation_id} not found")
    return deviation


def list_deviations(db: Session, agreement_ids: Iterable[int]) -> List[schemas.Deviation]:
    ids = list(agreement_ids)
    if not ids:
        return []
    rows = (
        db.query(models.Deviation)
        .filter(models.Deviation.agreement_id.in_(ids))
        .order_by(models.Deviation.agreement_id.asc(), models.Deviation.original_date.asc())
        .all()
    )
    return [schemas.Deviation.model_validate(r) for r in rows]
