from datetime import date, time

import pytest

from lesson_agenda import models
from lesson_agenda.exceptions import ValidationError
from lesson_agenda.services.agenda_service import load_agenda
from lesson_agenda.schemas import OccurrenceKind

FEB_17 = date(2025, 2, 17)


def test_actual_date_seven_days_away_is_accepted(db, make_agreement, make_deviation, deviation_count):
    agreement = make_agreement()
    make_deviation(agreement, FEB_17, date(2025, 2, 24), time(16, 0))
    make_deviation(agreement, date(2025, 3, 3), date(2025, 2, 24), time(9, 0))
    assert deviation_count(agreement.id) == 2


@pytest.mark.parametrize("actual", [date(2025, 2, 25), date(2025, 2, 9)])
def test_actual_date_eight_days_away_is_rejected(db, make_agreement, make_deviation, deviation_count, actual):
    agreement = make_agreement()
    agreement_id = agreement.id

    with pytest.raises(ValidationError) as exc:
        make_deviation(agreement, FEB_17, actual, time(16, 0))
    db.rollback()

    assert exc.value.reason == "outside_window"
    assert deviation_count(agreement_id) == 0


def test_updates_are_held_to_the_window_too(db, make_agreement, make_deviation):
    row = make_deviation(make_agreement(), FEB_17, date(2025, 2, 18), time(16, 0))

    row.actual_date = date(2025, 3, 1)
    with pytest.raises(ValidationError) as exc:
        db.commit()
    db.rollback()

    assert exc.value.reason == "outside_window"


@pytest.mark.parametrize(
    "attr, value",
    [("original_date", date(2025, 2, 10)), ("original_start_time", time(15, 0))],
)
def test_original_anchor_cannot_change(db, make_agreement, make_deviation, attr, value):
    row = make_deviation(make_agreement(), FEB_17, date(2025, 2, 18), time(16, 0))

    setattr(row, attr, value)
    with pytest.raises(ValidationError) as exc:
        db.commit()
    db.rollback()

    assert exc.value.reason == "original_immutable"


def test_recurring_end_before_start_is_rejected(db, make_agreement, make_deviation):
    with pytest.raises(ValidationError) as exc:
        make_deviation(
            make_agreement(),
            FEB_17,
            date(2025, 2, 18),
            time(16, 0),
            recurring=True,
            recurring_end_date=date(2025, 2, 10),
        )
    db.rollback()
    assert exc.value.reason == "end_before_start"


def test_new_row_on_its_original_slot_is_rejected(db, make_agreement, make_deviation):
    with pytest.raises(ValidationError) as exc:
        make_deviation(make_agreement(), FEB_17, FEB_17, time(14, 0))
    db.rollback()
    assert exc.value.reason == "must_deviate"


def test_cancellation_on_original_slot_is_accepted(db, make_agreement, make_deviation, deviation_count):
    agreement = make_agreement()
    make_deviation(agreement, FEB_17, FEB_17, time(14, 0), is_cancelled=True)
    assert deviation_count(agreement.id) == 1


def test_override_of_recurring_deviation_is_accepted(db, make_agreement, make_deviation, deviation_count):
    agreement = make_agreement()
    make_deviation(agreement, FEB_17, date(2025, 2, 18), time(15, 0), recurring=True)
    make_deviation(agreement, date(2025, 3, 3), date(2025, 3, 3), time(14, 0))
    assert deviation_count(agreement.id) == 2


def test_override_before_recurring_start_is_rejected(db, make_agreement, make_deviation):
    agreement = make_agreement()
    make_deviation(agreement, FEB_17, date(2025, 2, 18), time(15, 0), recurring=True)

    with pytest.raises(ValidationError) as exc:
        make_deviation(agreement, date(2025, 2, 10), date(2025, 2, 10), time(14, 0))
    db.rollback()
    assert exc.value.reason == "must_deviate"


def test_updated_row_collapsing_onto_original_slot_is_deleted(db, make_agreement, make_deviation, deviation_count):
    agreement = make_agreement()
    row = make_deviation(agreement, FEB_17, date(2025, 2, 20), time(16, 0))

    row.actual_date = FEB_17
    row.actual_start_time = time(14, 0)
    db.commit()

    assert deviation_count(agreement.id) == 0


def test_collapsing_row_that_shadows_recurring_is_kept(db, make_agreement, make_deviation, deviation_count):
    agreement = make_agreement()
    make_deviation(agreement, FEB_17, date(2025, 2, 18), time(15, 0), recurring=True)
    row = make_deviation(agreement, date(2025, 3, 3), date(2025, 3, 6), time(16, 0))

    row.actual_date = date(2025, 3, 3)
    row.actual_start_time = time(14, 0)
    db.commit()

    assert deviation_count(agreement.id) == 2


def test_row_displayed_as_plain_lesson_is_not_auto_deleted(db, make_agreement, make_deviation, deviation_count):
    agreement = make_agreement()
    teacher_id, agreement_id = agreement.teacher_id, agreement.id
    row = make_deviation(agreement, FEB_17, date(2025, 2, 18), time(16, 0))

    # same weekday and time as the agreement, one week later
    row.actual_date = date(2025, 2, 24)
    row.actual_start_time = time(14, 0)
    db.commit()

    assert deviation_count(agreement_id) == 1
    items = load_agenda(db, teacher_id, date(2025, 2, 16), date(2025, 2, 22))
    assert len(items) == 1
    assert items[0].kind == OccurrenceKind.agreement
    assert not items[0].is_deviation


def test_guard_applies_to_any_session(db, make_agreement):
    from lesson_agenda.core.database import SessionLocal

    agreement_id = make_agreement().id
    other = SessionLocal()
    try:
        other.add(
            models.Deviation(
                agreement_id=agreement_id,
                original_date=FEB_17,
                original_start_time=time(14, 0),
                actual_date=date(2025, 3, 17),
                actual_start_time=time(14, 0),
            )
        )
        with pytest.raises(ValidationError):
            other.flush()
        other.rollback()
    finally:
        other.close()
