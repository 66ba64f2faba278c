import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lesson_agenda import schemas
from lesson_agenda.api.errors import to_http_error
from lesson_agenda.core.database import get_db
from lesson_agenda.services import agenda_service as agenda_svc

router = APIRouter(prefix="/agenda", tags=["agenda"])
logger = logging.getLogger(__name__)


@router.get(
    "/teacher/{teacher_id}",
    response_model=schemas.AgendaResponse,
    summary="Concrete lesson occurrences of a teacher in a date range",
    tags=["agenda"],
)
def teacher_agenda(
    teacher_id: int,
    start_date: Optional[date] = Query(None, description="Start date YYYY-MM-DD"),
    end_date: Optional[date] = Query(None, description="End date YYYY-MM-DD"),
    db: Session = Depends(get_db),
):
    """
    Agreements expanded into occurrences with moves, cancellations and
    recurring deviations applied.

    Without an explicit range the window runs from one month back to two
    months ahead of today.
    """
    try:
        default_start, default_end = agenda_svc.default_window()
        sd = start_date or default_start
        ed = end_date or default_end
        logger.info("Agenda query: teacher_id=%s, start=%s, end=%s", teacher_id, sd, ed)
        items = agenda_svc.load_agenda(db, teacher_id, sd, ed)
        return schemas.AgendaResponse(
            teacher_id=teacher_id,
            start_date=sd,
            end_date=ed,
            items=[schemas.OccurrenceResponse.model_validate(o) for o in items],
        )
    except ValueError as e:
        raise to_http_error(e, "Agenda query", logger)
