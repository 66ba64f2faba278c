import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from lesson_agenda import models, schemas
from lesson_agenda.api.errors import to_http_error
from lesson_agenda.core.database import get_db
from lesson_agenda.services import agreement_store
from lesson_agenda.services import reconciliation as recon_svc

router = APIRouter(prefix="/deviations", tags=["deviations"])
logger = logging.getLogger(__name__)


def _response(row: Optional[models.Deviation]) -> Optional[schemas.DeviationResponse]:
    return schemas.DeviationResponse.model_validate(row) if row is not None else None


@router.get("", response_model=List[schemas.DeviationResponse], summary="List stored deviations of an agreement", tags=["deviations"])
def list_deviations(agreement_id: int = Query(..., description="Agreement id"), db: Session = Depends(get_db)):
    rows = (
        db.query(models.Deviation)
        .filter(models.Deviation.agreement_id == agreement_id)
        .order_by(models.Deviation.original_date.asc())
        .all()
    )
    return [schemas.DeviationResponse.model_validate(r) for r in rows]


@router.post(
    "/move",
    response_model=Optional[schemas.DeviationResponse],
    summary="Move one occurrence, or the series from it, to another slot",
    tags=["deviations"],
)
def move_occurrence(request: schemas.MoveOccurrenceRequest, db: Session = Depends(get_db)):
    """Returns the stored deviation, or null when the move landed back on the original slot."""
    try:
        logger.info(
            "Move occurrence: agreement_id=%s, week=%s -> %s %s, scope=%s",
            request.agreement_id,
            request.week_date,
            request.actual_date,
            request.actual_start_time,
            request.scope.value,
        )
        row = recon_svc.move_occurrence(
            db,
            request.agreement_id,
            request.week_date,
            request.actual_date,
            request.actual_start_time,
            scope=request.scope,
            reason=request.reason,
            user_id=request.user_id,
            keep_in_week=request.keep_in_week,
        )
        return _response(row)
    except ValueError as e:
        raise to_http_error(e, "Move occurrence", logger)


@router.post(
    "/cancel",
    response_model=schemas.DeviationResponse,
    summary="Cancel one occurrence, or the series from it",
    tags=["deviations"],
)
def cancel_occurrence(request: schemas.CancelOccurrenceRequest, db: Session = Depends(get_db)):
    try:
        row = recon_svc.cancel_occurrence(
            db,
            request.agreement_id,
            request.week_date,
            scope=request.scope,
            reason=request.reason,
            user_id=request.user_id,
        )
        return _response(row)
    except ValueError as e:
        raise to_http_error(e, "Cancel occurrence", logger)


@router.post(
    "/restore",
    response_model=schemas.OutcomeResponse,
    summary="Make a week show the agreement's original slot again",
    tags=["deviations"],
)
def restore_occurrence(request: schemas.RestoreOccurrenceRequest, db: Session = Depends(get_db)):
    """
    Outcomes: single_deleted, recurring_deleted, recurring_shifted,
    recurring_ended, override_inserted, single_replaced_with_override.
    Answers 404 when the week already shows the original slot.
    """
    try:
        outcome, deviation_id = recon_svc.ensure_week_shows_original_slot(
            db,
            request.agreement_id,
            request.week_date,
            scope=request.scope,
            user_id=request.user_id,
        )
        return schemas.OutcomeResponse(outcome=outcome, agreement_id=request.agreement_id, deviation_id=deviation_id)
    except ValueError as e:
        raise to_http_error(e, "Restore occurrence", logger)


@router.post(
    "/{deviation_id}/shift",
    response_model=Optional[schemas.DeviationResponse],
    summary="Start a recurring deviation one interval later",
    tags=["deviations"],
)
def shift_recurring(deviation_id: int, request: schemas.ShiftRecurringRequest, db: Session = Depends(get_db)):
    try:
        row = recon_svc.shift_recurring_deviation(db, deviation_id, user_id=request.user_id)
        return _response(row)
    except ValueError as e:
        raise to_http_error(e, "Shift recurring deviation", logger)


@router.post(
    "/{deviation_id}/end",
    response_model=schemas.OutcomeResponse,
    summary="Stop a recurring deviation from a given week on",
    tags=["deviations"],
)
def end_recurring(deviation_id: int, request: schemas.EndRecurringRequest, db: Session = Depends(get_db)):
    try:
        agreement_id = agreement_store.get_deviation(db, deviation_id).agreement_id
        outcome = recon_svc.end_recurring_deviation_from_week(db, deviation_id, request.week_date, user_id=request.user_id)
        kept = deviation_id if outcome == schemas.Outcome.updated else None
        return schemas.OutcomeResponse(outcome=outcome, agreement_id=agreement_id, deviation_id=kept)
    except ValueError as e:
        raise to_http_error(e, "End recurring deviation", logger)
