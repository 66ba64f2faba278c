"""
Deviation reconciliation.

Translates user intents on a single occurrence (move it, cancel it, put it
back on its original slot) into the minimal set of deviation row changes.
Every public function runs in one transaction: either all of its row
changes are committed or none are.

The operations address an occurrence by its agreement and any day of its
week; the day is normalized to the agreement's own occurrence date so that
one week always maps to one ``original_date`` key.
"""
from __future__ import annotations

import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, time
from types import SimpleNamespace
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lesson_agenda import models
from lesson_agenda.core.monitoring import record_outcome
from lesson_agenda.exceptions import ConflictError, NotFoundError, ValidationError
from lesson_agenda.schemas import Frequency, Outcome, Scope
from lesson_agenda.services.agreement_store import get_agreement, get_deviation
from lesson_agenda.services.helpers import (
    actual_date_in_original_week,
    add_interval,
    date_for_day_of_week,
    day_of_week,
    occurrence_date_in_week,
)
from lesson_agenda.services.validity_guard import find_shadowed_recurring, is_noop

logger = logging.getLogger(__name__)


def _is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate key" in message


@contextmanager
def _atomic(db: Session, operation: str):
    try:
        yield
        db.commit()
    except IntegrityError as e:
        db.rollback()
        if _is_unique_violation(e):
            logger.warning("%s: concurrent write on the same occurrence: %s", operation, e.orig)
            raise ConflictError("Another deviation for this occurrence was stored concurrently") from e
        raise
    except Exception:
        db.rollback()
        raise


def _frequency(agreement: models.Agreement) -> Frequency:
    lesson_type = agreement.lesson_type
    if lesson_type is None or not lesson_type.frequency:
        return Frequency.weekly
    return Frequency(lesson_type.frequency)


def _anchor_day(agreement: models.Agreement) -> int:
    return agreement.start_date.day


def _original_date(agreement: models.Agreement, week_date: date) -> date:
    return occurrence_date_in_week(_frequency(agreement), agreement.day_of_week, week_date)


def _find_exact(db: Session, agreement_id: int, original_date: date) -> Optional[models.Deviation]:
    return (
        db.query(models.Deviation)
        .filter(models.Deviation.agreement_id == agreement_id, models.Deviation.original_date == original_date)
        .first()
    )


def _stored_id(row: Optional[models.Deviation]) -> Optional[int]:
    """Id of ``row`` after commit, or None if the guard removed it."""
    if row is None:
        return None
    state = inspect(row)
    if state.was_deleted or state.deleted or state.detached:
        return None
    return row.id


def _drop_orphaned_overrides(db: Session, agreement_id: int, after: date) -> int:
    """Delete override rows after ``after`` that no longer have a recurring row to shadow."""
    db.flush()
    candidates = (
        db.query(models.Deviation)
        .filter(
            models.Deviation.agreement_id == agreement_id,
            models.Deviation.original_date > after,
            models.Deviation.recurring.is_(False),
            models.Deviation.is_cancelled.is_(False),
        )
        .all()
    )
    orphans = [r for r in candidates if is_noop(r) and find_shadowed_recurring(db, r) is None]
    for r in orphans:
        db.delete(r)
    if orphans:
        logger.info(
            "Dropped %d override rows of agreement_id=%s with nothing left to shadow: %s",
            len(orphans),
            agreement_id,
            ", ".join(str(r.original_date) for r in orphans),
        )
        db.flush()
    return len(orphans)


def _shift(db: Session, row: models.Deviation, agreement: models.Agreement, user_id: Optional[int]) -> Optional[models.Deviation]:
    """Move a recurring row's start to its next free interval, keeping its pattern.

    Weeks that already hold their own row are skipped. Returns the
    replacement row, or None when the row's end date leaves no week for it
    to cover.
    """
    frequency = _frequency(agreement)
    anchor_day = _anchor_day(agreement)
    agreement_id = row.agreement_id
    old_original = row.original_date
    end = row.recurring_end_date

    new_original = add_interval(old_original, frequency, anchor_day=anchor_day)
    while (end is None or new_original <= end) and _find_exact(db, agreement_id, new_original) is not None:
        new_original = add_interval(new_original, frequency, anchor_day=anchor_day)
    if frequency == Frequency.monthly:
        new_actual = date_for_day_of_week(day_of_week(row.actual_date), new_original)
    else:
        new_actual = new_original + (row.actual_date - old_original)

    values = dict(
        agreement_id=agreement_id,
        original_date=new_original,
        original_start_time=row.original_start_time,
        actual_date=new_actual,
        actual_start_time=row.actual_start_time,
        is_cancelled=row.is_cancelled,
        recurring=True,
        recurring_end_date=end,
        reason=row.reason,
        created_by_user_id=row.created_by_user_id,
        last_updated_by_user_id=user_id if user_id is not None else row.last_updated_by_user_id,
    )
    db.delete(row)
    # callers may re-insert at old_original within the same transaction
    db.flush()
    replacement = None
    if end is not None and end < new_original:
        logger.info("Recurring deviation for agreement_id=%s has no weeks left after shift; removed", agreement_id)
    else:
        replacement = models.Deviation(**values)
        db.add(replacement)
        db.flush()
    _drop_orphaned_overrides(db, agreement_id, old_original)
    return replacement


def _upsert(
    db: Session,
    agreement: models.Agreement,
    original_date: date,
    row: Optional[models.Deviation],
    *,
    actual_date: date,
    actual_start_time: time,
    is_cancelled: bool,
    recurring: bool,
    reason: Optional[str],
    user_id: Optional[int],
) -> models.Deviation:
    if row is None:
        row = models.Deviation(
            agreement_id=agreement.id,
            original_date=original_date,
            original_start_time=agreement.start_time,
            created_by_user_id=user_id,
        )
        db.add(row)
    row.actual_date = actual_date
    row.actual_start_time = actual_start_time
    row.is_cancelled = is_cancelled
    row.recurring = recurring
    row.recurring_end_date = None
    row.reason = reason
    row.last_updated_by_user_id = user_id
    db.flush()
    return row


def _write_occurrence(
    db: Session,
    agreement: models.Agreement,
    week_date: date,
    scope: Scope,
    user_id: Optional[int],
    **fields,
) -> Tuple[date, Optional[models.Deviation]]:
    original_date = _original_date(agreement, week_date)
    row = _find_exact(db, agreement.id, original_date)
    if scope == Scope.only_this and row is not None and row.recurring:
        # the pattern keeps running from next week, this week gets its own row
        _shift(db, row, agreement, user_id)
        row = None
    if fields.get("actual_date") is None:
        fields["actual_date"] = original_date
        fields["actual_start_time"] = row.original_start_time if row is not None else agreement.start_time
    row = _upsert(
        db,
        agreement,
        original_date,
        row,
        recurring=scope == Scope.this_and_future,
        user_id=user_id,
        **fields,
    )
    return original_date, row


def move_occurrence(
    db: Session,
    agreement_id: int,
    week_date: date,
    actual_date: date,
    actual_start_time: time,
    scope: Scope = Scope.only_this,
    reason: Optional[str] = None,
    user_id: Optional[int] = None,
    keep_in_week: bool = False,
) -> Optional[models.Deviation]:
    """Place the occurrence of ``week_date``'s week at ``actual_date`` ``actual_start_time``.

    With ``this_and_future`` the move becomes a recurring deviation starting
    that week. Returns the stored row, or None if the move landed back on
    the original slot and the row was dropped.

    With ``keep_in_week`` only the weekday of ``actual_date`` is used; the
    date is pulled back into the occurrence's own week.
    """
    with _atomic(db, "move"):
        agreement = get_agreement(db, agreement_id)
        if keep_in_week:
            actual_date = actual_date_in_original_week(_original_date(agreement, week_date), actual_date)
        original_date, row = _write_occurrence(
            db,
            agreement,
            week_date,
            scope,
            user_id,
            actual_date=actual_date,
            actual_start_time=actual_start_time,
            is_cancelled=False,
            reason=reason,
        )
    logger.info(
        "Moved agreement_id=%s occurrence %s -> %s %s (scope=%s)",
        agreement_id,
        original_date,
        actual_date,
        actual_start_time,
        scope.value,
    )
    record_outcome("move", scope.value)
    return row if _stored_id(row) is not None else None


def cancel_occurrence(
    db: Session,
    agreement_id: int,
    week_date: date,
    scope: Scope = Scope.only_this,
    reason: Optional[str] = None,
    user_id: Optional[int] = None,
) -> models.Deviation:
    """Mark the occurrence (or, with ``this_and_future``, the series from it) as cancelled."""
    with _atomic(db, "cancel"):
        agreement = get_agreement(db, agreement_id)
        original_date, row = _write_occurrence(
            db,
            agreement,
            week_date,
            scope,
            user_id,
            actual_date=None,
            actual_start_time=None,
            is_cancelled=True,
            reason=reason,
        )
    logger.info("Cancelled agreement_id=%s occurrence %s (scope=%s)", agreement_id, original_date, scope.value)
    record_outcome("cancel", scope.value)
    return row


class RowKind(str, enum.Enum):
    plain = "plain"  # non-recurring row with nothing recurring behind it
    shadow = "shadow"  # non-recurring row covering a week of a recurring row
    override = "override"  # shadow row that already shows the original slot
    recurring_first = "recurring_first"  # recurring row whose own first week this is
    recurring_later = "recurring_later"  # no row; an earlier recurring row applies
    none = "none"


@dataclass
class _RestoreContext:
    db: Session
    agreement: models.Agreement
    original_date: date
    exact: Optional[models.Deviation]
    recurring: Optional[models.Deviation]
    user_id: Optional[int]


def _classify(db: Session, agreement_id: int, original_date: date) -> Tuple[RowKind, Optional[models.Deviation], Optional[models.Deviation]]:
    exact = _find_exact(db, agreement_id, original_date)
    if exact is not None and exact.recurring:
        return RowKind.recurring_first, exact, None
    key = exact or SimpleNamespace(agreement_id=agreement_id, original_date=original_date)
    recurring = find_shadowed_recurring(db, key)
    if exact is not None:
        if recurring is None:
            return RowKind.plain, exact, None
        return (RowKind.override if is_noop(exact) else RowKind.shadow), exact, recurring
    if recurring is not None:
        return RowKind.recurring_later, None, recurring
    return RowKind.none, None, None


def _insert_override(ctx: _RestoreContext, original_start_time: time) -> models.Deviation:
    row = models.Deviation(
        agreement_id=ctx.agreement.id,
        original_date=ctx.original_date,
        original_start_time=original_start_time,
        actual_date=ctx.original_date,
        actual_start_time=original_start_time,
        is_cancelled=False,
        recurring=False,
        created_by_user_id=ctx.user_id,
        last_updated_by_user_id=ctx.user_id,
    )
    ctx.db.add(row)
    ctx.db.flush()
    return row


def _delete_exact(ctx: _RestoreContext) -> Optional[models.Deviation]:
    ctx.db.delete(ctx.exact)
    return None


def _delete_series(ctx: _RestoreContext) -> Optional[models.Deviation]:
    ctx.db.delete(ctx.exact)
    _drop_orphaned_overrides(ctx.db, ctx.agreement.id, ctx.original_date)
    return None


def _shift_exact(ctx: _RestoreContext) -> Optional[models.Deviation]:
    return _shift(ctx.db, ctx.exact, ctx.agreement, ctx.user_id)


def _end_recurring_before(ctx: _RestoreContext) -> Optional[models.Deviation]:
    if ctx.exact is not None:
        # this week falls outside the shortened series, so its own row goes too
        ctx.db.delete(ctx.exact)
    row = ctx.recurring
    row.recurring_end_date = add_interval(
        ctx.original_date, _frequency(ctx.agreement), steps=-1, anchor_day=_anchor_day(ctx.agreement)
    )
    row.last_updated_by_user_id = ctx.user_id
    _drop_orphaned_overrides(ctx.db, ctx.agreement.id, row.original_date)
    return row


def _override_recurring(ctx: _RestoreContext) -> Optional[models.Deviation]:
    return _insert_override(ctx, ctx.agreement.start_time)


def _replace_with_override(ctx: _RestoreContext) -> Optional[models.Deviation]:
    original_start_time = ctx.exact.original_start_time
    ctx.db.delete(ctx.exact)
    ctx.db.flush()
    return _insert_override(ctx, original_start_time)


# (row kind, scope) -> outcome; combinations not listed have nothing to restore
RESTORE_DECISIONS: Dict[Tuple[RowKind, Scope], Outcome] = {
    (RowKind.plain, Scope.only_this): Outcome.single_deleted,
    (RowKind.plain, Scope.this_and_future): Outcome.single_deleted,
    (RowKind.recurring_first, Scope.this_and_future): Outcome.recurring_deleted,
    (RowKind.recurring_first, Scope.only_this): Outcome.recurring_shifted,
    (RowKind.recurring_later, Scope.this_and_future): Outcome.recurring_ended,
    (RowKind.recurring_later, Scope.only_this): Outcome.override_inserted,
    (RowKind.shadow, Scope.only_this): Outcome.single_replaced_with_override,
    (RowKind.shadow, Scope.this_and_future): Outcome.recurring_ended,
    (RowKind.override, Scope.this_and_future): Outcome.recurring_ended,
}

_RESTORE_ACTIONS: Dict[Outcome, Callable[[_RestoreContext], Optional[models.Deviation]]] = {
    Outcome.single_deleted: _delete_exact,
    Outcome.recurring_deleted: _delete_series,
    Outcome.recurring_shifted: _shift_exact,
    Outcome.recurring_ended: _end_recurring_before,
    Outcome.override_inserted: _override_recurring,
    Outcome.single_replaced_with_override: _replace_with_override,
}


def ensure_week_shows_original_slot(
    db: Session,
    agreement_id: int,
    week_date: date,
    scope: Scope = Scope.only_this,
    user_id: Optional[int] = None,
) -> Tuple[Outcome, Optional[int]]:
    """Make the occurrence of ``week_date``'s week render at the agreement's own slot.

    Returns the outcome tag and the id of the row left behind, if any.
    Raises NotFoundError when the week already shows the original slot.
    """
    with _atomic(db, "restore"):
        agreement = get_agreement(db, agreement_id)
        original_date = _original_date(agreement, week_date)
        kind, exact, recurring = _classify(db, agreement_id, original_date)
        outcome = RESTORE_DECISIONS.get((kind, scope))
        if outcome is None:
            raise NotFoundError(
                f"Agreement {agreement_id} already shows its original slot in the week of {original_date}"
            )
        ctx = _RestoreContext(db, agreement, original_date, exact, recurring, user_id)
        row = _RESTORE_ACTIONS[outcome](ctx)
    logger.info(
        "Restored agreement_id=%s week %s: %s row -> %s (scope=%s)",
        agreement_id,
        original_date,
        kind.value,
        outcome.value,
        scope.value,
    )
    record_outcome("restore", outcome.value)
    return outcome, _stored_id(row)


def shift_recurring_deviation(db: Session, deviation_id: int, user_id: Optional[int] = None) -> Optional[models.Deviation]:
    """Start a recurring deviation one interval later; the old first week reverts to the base rule."""
    with _atomic(db, "shift"):
        row = get_deviation(db, deviation_id)
        if not row.recurring:
            raise ValidationError("not_recurring", f"Deviation {deviation_id} is not recurring")
        agreement = row.agreement
        old_original = row.original_date
        replacement = _shift(db, row, agreement, user_id)
    logger.info(
        "Shifted recurring deviation id=%s from %s -> %s",
        deviation_id,
        old_original,
        replacement.original_date if replacement is not None else None,
    )
    record_outcome("shift", Outcome.recurring_shifted.value)
    return replacement if _stored_id(replacement) is not None else None


def end_recurring_deviation_from_week(
    db: Session,
    deviation_id: int,
    week_date: date,
    user_id: Optional[int] = None,
) -> Outcome:
    """Stop a recurring deviation so it no longer applies from ``week_date``'s week on.

    If that week is not after the deviation's first week the row is removed
    entirely (``deleted``); otherwise its end date is set one interval before
    the week (``updated``).
    """
    with _atomic(db, "end"):
        row = get_deviation(db, deviation_id)
        if not row.recurring:
            raise ValidationError("not_recurring", f"Deviation {deviation_id} is not recurring")
        agreement = row.agreement
        week_original = _original_date(agreement, week_date)
        if week_original <= row.original_date:
            db.delete(row)
            outcome = Outcome.deleted
        else:
            row.recurring_end_date = add_interval(
                week_original, _frequency(agreement), steps=-1, anchor_day=_anchor_day(agreement)
            )
            row.last_updated_by_user_id = user_id
            outcome = Outcome.updated
        _drop_orphaned_overrides(db, agreement.id, row.original_date)
    logger.info("Ended recurring deviation id=%s from week %s: %s", deviation_id, week_original, outcome.value)
    record_outcome("end", outcome.value)
    return outcome
