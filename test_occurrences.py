from datetime import date, datetime, time, timedelta

from lesson_agenda.schemas import Agreement, Deviation, Frequency, OccurrenceKind
from lesson_agenda.services.deviation_index import build_deviation_index
from lesson_agenda.services.helpers import day_of_week
from lesson_agenda.services.occurrences import generate

MONDAY = 1
FEB_START = date(2025, 2, 1)
FEB_END = date(2025, 2, 28)


def make_agreement(**overrides) -> Agreement:
    fields = dict(
        id=1,
        teacher_id=1,
        student_id=10,
        lesson_type_id=1,
        lesson_type_name="Piano",
        frequency=Frequency.weekly,
        duration_minutes=30,
        day_of_week=MONDAY,
        start_time=time(14, 0),
        start_date=date(2025, 2, 1),
    )
    fields.update(overrides)
    return Agreement(**fields)


def make_deviation(**overrides) -> Deviation:
    fields = dict(
        id=100,
        agreement_id=1,
        original_date=date(2025, 2, 17),
        original_start_time=time(14, 0),
        actual_date=date(2025, 2, 20),
        actual_start_time=time(16, 0),
    )
    fields.update(overrides)
    return Deviation(**fields)


def run(agreements, start, end, deviations=()):
    index = build_deviation_index(deviations)
    return generate(agreements, start, end, index.exact, index.recurring)


def test_weekly_agreement_yields_its_mondays():
    items = run([make_agreement()], FEB_START, FEB_END)

    assert [o.start for o in items] == [
        datetime(2025, 2, 3, 14, 0),
        datetime(2025, 2, 10, 14, 0),
        datetime(2025, 2, 17, 14, 0),
        datetime(2025, 2, 24, 14, 0),
    ]
    assert all(o.kind == OccurrenceKind.agreement and not o.is_deviation for o in items)
    assert all(o.end - o.start == timedelta(minutes=30) for o in items)


def test_weekly_occurrences_match_weekday_and_window():
    agreement = make_agreement(day_of_week=4, start_date=date(2025, 1, 9), end_date=date(2025, 3, 20))
    start, end = date(2025, 1, 1), date(2025, 4, 30)

    items = run([agreement], start, end)

    expected = []
    d = date(2025, 1, 9)
    while d <= date(2025, 3, 20):
        expected.append(d)
        d += timedelta(days=7)
    assert [o.start.date() for o in items] == expected
    assert all(day_of_week(o.start.date()) == 4 for o in items)


def test_end_date_is_inclusive():
    items = run([make_agreement(end_date=date(2025, 2, 17))], FEB_START, FEB_END)
    assert [o.start.day for o in items] == [3, 10, 17]


def test_daily_agreement_emits_every_day_in_range():
    agreement = make_agreement(frequency=Frequency.daily)
    items = run([agreement], date(2025, 2, 1), date(2025, 2, 7))
    assert [o.start.date() for o in items] == [date(2025, 2, d) for d in range(1, 8)]


def test_biweekly_agreement_keeps_its_phase():
    agreement = make_agreement(frequency=Frequency.biweekly, start_date=date(2025, 2, 3))

    items = run([agreement], date(2025, 2, 10), date(2025, 3, 31))

    assert [o.start.date() for o in items] == [date(2025, 2, 17), date(2025, 3, 3), date(2025, 3, 17), date(2025, 3, 31)]


def test_monthly_agreement_clamps_to_month_end_and_recovers():
    agreement = make_agreement(frequency=Frequency.monthly, day_of_week=5, start_date=date(2025, 1, 31))

    items = run([agreement], date(2025, 1, 1), date(2025, 5, 31))

    assert [o.start.date() for o in items] == [
        date(2025, 1, 31),
        date(2025, 2, 28),
        date(2025, 3, 31),
        date(2025, 4, 30),
        date(2025, 5, 31),
    ]


def test_missing_duration_falls_back_to_default():
    items = run([make_agreement(duration_minutes=None)], FEB_START, date(2025, 2, 3))
    assert items[0].end - items[0].start == timedelta(minutes=30)


def test_exact_deviation_replaces_the_occurrence():
    items = run([make_agreement()], FEB_START, FEB_END, [make_deviation()])

    starts = [o.start for o in items]
    assert datetime(2025, 2, 20, 16, 0) in starts
    assert datetime(2025, 2, 17, 14, 0) not in starts
    assert len(items) == 4
    moved = next(o for o in items if o.start == datetime(2025, 2, 20, 16, 0))
    assert moved.kind == OccurrenceKind.deviation
    assert moved.is_deviation
    assert not moved.is_recurring_override
    assert moved.deviation_id == 100
    assert moved.original_date == date(2025, 2, 17)


def test_recurring_deviation_applies_to_later_weeks():
    recurring = make_deviation(actual_date=date(2025, 2, 18), actual_start_time=time(15, 0), recurring=True)

    items = run([make_agreement()], FEB_START, date(2025, 3, 31), [recurring])

    before = [o for o in items if o.start.date() < date(2025, 2, 17)]
    after = [o for o in items if o.start.date() >= date(2025, 2, 17)]
    assert [o.start for o in before] == [datetime(2025, 2, 3, 14, 0), datetime(2025, 2, 10, 14, 0)]
    assert [o.start.date() for o in after] == [
        date(2025, 2, 18),
        date(2025, 2, 25),
        date(2025, 3, 4),
        date(2025, 3, 11),
        date(2025, 3, 18),
        date(2025, 3, 25),
        date(2025, 4, 1),
    ]
    assert all(o.start.time() == time(15, 0) for o in after)
    assert all(o.is_recurring_override and o.kind == OccurrenceKind.deviation for o in after)


def test_recurring_deviation_stops_after_its_end_date():
    recurring = make_deviation(
        actual_date=date(2025, 2, 18),
        actual_start_time=time(15, 0),
        recurring=True,
        recurring_end_date=date(2025, 2, 24),
    )

    items = run([make_agreement()], FEB_START, date(2025, 3, 10), [recurring])

    assert [o.start for o in items][-2:] == [datetime(2025, 3, 3, 14, 0), datetime(2025, 3, 10, 14, 0)]
    assert datetime(2025, 2, 25, 15, 0) in [o.start for o in items]


def test_exact_row_wins_over_recurring_and_latest_recurring_wins():
    first = make_deviation(
        id=1, actual_date=date(2025, 2, 18), actual_start_time=time(15, 0), recurring=True
    )
    second = make_deviation(
        id=2,
        original_date=date(2025, 3, 3),
        actual_date=date(2025, 3, 5),
        actual_start_time=time(9, 0),
        recurring=True,
    )
    single = make_deviation(
        id=3, original_date=date(2025, 2, 24), actual_date=date(2025, 2, 28), actual_start_time=time(11, 0)
    )

    items = run([make_agreement()], date(2025, 2, 16), date(2025, 3, 15), [first, second, single])

    assert [(o.start, o.deviation_id) for o in items] == [
        (datetime(2025, 2, 18, 15, 0), 1),
        (datetime(2025, 2, 28, 11, 0), 3),
        (datetime(2025, 3, 5, 9, 0), 2),
        (datetime(2025, 3, 12, 9, 0), 2),
    ]
    assert not items[1].is_recurring_override


def test_cancelled_row_renders_at_original_slot():
    cancelled = make_deviation(actual_date=date(2025, 2, 17), actual_start_time=time(14, 0), is_cancelled=True)

    items = run([make_agreement()], FEB_START, FEB_END, [cancelled])

    hit = next(o for o in items if o.start.date() == date(2025, 2, 17))
    assert hit.start == datetime(2025, 2, 17, 14, 0)
    assert hit.is_cancelled
    assert not hit.is_deviation


def test_row_back_on_agreement_weekday_and_time_renders_as_plain_lesson():
    # a full week later, same weekday and time as the agreement
    row = make_deviation(actual_date=date(2025, 2, 24), actual_start_time=time(14, 0))

    items = run([make_agreement()], date(2025, 2, 16), date(2025, 2, 22), [row])

    assert len(items) == 1
    assert items[0].start == datetime(2025, 2, 24, 14, 0)
    assert items[0].kind == OccurrenceKind.agreement
    assert not items[0].is_deviation
    assert items[0].deviation_id == 100


def test_group_agreements_merge_into_one_block_and_ignore_deviations():
    group = dict(is_group_lesson=True, lesson_type_name="Choir")
    members = [
        make_agreement(id=1, student_id=10, **group),
        make_agreement(id=2, student_id=11, start_date=date(2025, 2, 10), **group),
    ]

    items = run(members, FEB_START, FEB_END, [make_deviation(agreement_id=1)])

    assert [o.start.day for o in items] == [3, 10, 17, 24]
    assert all(o.agreement_ids == (1, 2) for o in items)
    assert all(o.student_ids == (10, 11) for o in items)
    assert all(o.title == "Choir (2 participants)" and o.is_group_lesson for o in items)
    assert items[2].start == datetime(2025, 2, 17, 14, 0)


def test_group_agreements_with_different_times_stay_apart():
    members = [
        make_agreement(id=1, is_group_lesson=True),
        make_agreement(id=2, is_group_lesson=True, start_time=time(16, 0)),
    ]
    items = run(members, date(2025, 2, 3), date(2025, 2, 3))
    assert [o.agreement_ids for o in items] == [(1,), (2,)]


def test_single_agreements_sharing_a_slot_are_not_merged_and_sort_by_id():
    items = run([make_agreement(id=7), make_agreement(id=3)], date(2025, 2, 3), date(2025, 2, 3))
    assert [o.agreement_id for o in items] == [3, 7]
    assert all(o.title == "Piano" for o in items)


def test_no_agreement_emits_two_occurrences_for_one_date():
    deviations = [
        make_deviation(id=1),
        make_deviation(id=2, original_date=date(2025, 2, 10), actual_date=date(2025, 2, 11), actual_start_time=time(9, 0), recurring=True),
    ]
    items = run([make_agreement()], FEB_START, date(2025, 3, 31), deviations)

    # nine Mondays between 2025-02-01 and 2025-03-31
    assert len(items) == 9
    assert len({o.start.date() for o in items}) == len(items)


def test_generate_does_not_depend_on_previous_calls():
    agreement = make_agreement()
    first = run([agreement], FEB_START, FEB_END, [make_deviation()])
    second = run([agreement], FEB_START, FEB_END)
    assert len(first) == len(second) == 4
    assert all(o.kind == OccurrenceKind.agreement for o in second)
