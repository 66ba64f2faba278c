"""
Validity guard for deviation rows.

Registered as a ``before_flush`` listener on every SQLAlchemy Session, so
the rules hold no matter which code path writes the rows:

- original_date / original_start_time never change after creation
- actual_date stays within MAX_DEVIATION_DAYS of original_date
- recurring_end_date is not before original_date
- a new, non-cancelled row must actually deviate, unless it shadows an
  applicable recurring deviation for its week
- an updated, non-cancelled row that collapsed back onto its original slot
  with nothing left to shadow is deleted instead of stored
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from lesson_agenda.exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_DEVIATION_DAYS = 7


def _models():
    # models imports this module to install the listener
    from lesson_agenda import models

    return models


def is_noop(row) -> bool:
    """Row sits exactly on its own original slot (cancellations never count)."""
    return (
        not row.is_cancelled
        and row.actual_date == row.original_date
        and row.actual_start_time == row.original_start_time
    )


def find_shadowed_recurring(session: Session, row):
    """Recurring deviation of the same agreement that would apply to ``row``'s week, if any.

    Reads current in-session state: rows pending deletion are ignored and
    rows pending insertion are considered.
    """
    Deviation = _models().Deviation
    with session.no_autoflush:
        candidates = (
            session.query(Deviation)
            .filter(Deviation.agreement_id == row.agreement_id, Deviation.recurring.is_(True))
            .all()
        )
    candidates.extend(
        obj for obj in session.new if isinstance(obj, Deviation) and obj.agreement_id == row.agreement_id
    )
    best: Optional[object] = None
    for other in candidates:
        if other is row or other in session.deleted or not other.recurring:
            continue
        if other.original_date >= row.original_date:
            continue
        if other.recurring_end_date is not None and other.recurring_end_date < row.original_date:
            continue
        if best is None or other.original_date > best.original_date:
            best = other
    return best


def _check_immutable_anchor(row) -> None:
    state = inspect(row)
    for attr in ("original_date", "original_start_time"):
        history = state.attrs[attr].history
        if history.deleted and history.added and history.deleted[0] != history.added[0]:
            raise ValidationError("original_immutable", f"Cannot change {attr} after creation")


def _check_window(row) -> None:
    if row.actual_date is None or row.original_date is None:
        return  # NOT NULL constraints report these
    if abs((row.actual_date - row.original_date).days) > MAX_DEVIATION_DAYS:
        raise ValidationError(
            "outside_window",
            f"actual_date must be within {MAX_DEVIATION_DAYS} days of original_date "
            f"({row.original_date} -> {row.actual_date})",
        )
    if row.recurring_end_date is not None and row.recurring_end_date < row.original_date:
        raise ValidationError("end_before_start", "recurring_end_date cannot be before original_date")


def validate_new(session: Session, row) -> None:
    _check_window(row)
    if is_noop(row) and find_shadowed_recurring(session, row) is None:
        raise ValidationError(
            "must_deviate",
            "Deviation must actually deviate from the original slot unless it overrides a recurring deviation",
        )


def validate_update(session: Session, row) -> bool:
    """Check an updated row; returns False when it should be deleted as a no-op."""
    _check_immutable_anchor(row)
    _check_window(row)
    return not (is_noop(row) and find_shadowed_recurring(session, row) is None)


@event.listens_for(Session, "before_flush")
def enforce_deviation_validity(session: Session, flush_context, instances) -> None:
    Deviation = _models().Deviation
    for row in list(session.new):
        if isinstance(row, Deviation):
            validate_new(session, row)

    for row in list(session.dirty):
        if not isinstance(row, Deviation) or row in session.deleted:
            continue
        if not session.is_modified(row, include_collections=False):
            continue
        if not validate_update(session, row):
            logger.info(
                "Deviation id=%s collapsed onto its original slot %s %s; deleting",
                row.id,
                row.original_date,
                row.original_start_time,
            )
            session.delete(row)
