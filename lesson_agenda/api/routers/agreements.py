from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload

from lesson_agenda import models, schemas
from lesson_agenda.core.database import get_db
from lesson_agenda.services.agreement_store import to_snapshot

router = APIRouter(prefix="/agreements", tags=["agreements"])


@router.get("", response_model=List[schemas.AgreementResponse], summary="List lesson agreements of a teacher", tags=["agreements"])
def list_agreements(
    teacher_id: int = Query(..., description="Teacher id"),
    active_only: bool = Query(True, description="Skip deactivated agreements"),
    db: Session = Depends(get_db),
):
    query = (
        db.query(models.Agreement)
        .options(joinedload(models.Agreement.lesson_type))
        .filter(models.Agreement.teacher_id == teacher_id)
    )
    if active_only:
        query = query.filter(models.Agreement.is_active.is_(True))
    items = query.order_by(models.Agreement.id.asc()).all()
    return [schemas.AgreementResponse(**to_snapshot(a).model_dump(), notes=a.notes) for a in items]
