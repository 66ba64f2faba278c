"""
Occurrence generation.

Turns recurring lesson agreements plus their stored deviations into the
concrete calendar entries of a date window. Per rule date the first match wins:

    1. exact deviation for (agreement, date)
    2. latest recurring deviation covering the date
    3. the base rule itself

Group lessons are merged into one entry per block and never consult
deviations. The generator is pure: it neither mutates its inputs nor keeps
state between calls.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from lesson_agenda.core.config import settings
from lesson_agenda.schemas import Agreement, Deviation, Frequency, OccurrenceKind
from lesson_agenda.services.deviation_index import DeviationIndex, ExactKey
from lesson_agenda.services.helpers import (
    add_interval,
    at,
    date_for_day_of_week,
    day_of_week,
    first_occurrence_on_or_after,
    same_minute,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Occurrence:
    kind: OccurrenceKind
    title: str
    start: datetime
    end: datetime
    agreement_id: int
    agreement_ids: Tuple[int, ...]
    student_ids: Tuple[int, ...]
    lesson_type_id: int
    is_deviation: bool = False
    is_cancelled: bool = False
    is_group_lesson: bool = False
    is_recurring_override: bool = False
    deviation_id: Optional[int] = None
    original_date: Optional[date] = None
    original_start_time: Optional[time] = None
    reason: Optional[str] = None
    is_pending: bool = False


@dataclass(frozen=True)
class _Block:
    """Agreements rendered together: one agreement, or all members of a group lesson."""
    members: Tuple[Agreement, ...]

    @property
    def lead(self) -> Agreement:
        return self.members[0]

    @property
    def is_single(self) -> bool:
        return len(self.members) == 1 and not self.lead.is_group_lesson

    @property
    def start_date(self) -> date:
        return min(a.start_date for a in self.members)

    @property
    def end_date(self) -> Optional[date]:
        if any(a.end_date is None for a in self.members):
            return None
        return max(a.end_date for a in self.members)

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.lead.duration_minutes or settings.default_lesson_minutes)

    def covers(self, d: date) -> bool:
        end = self.end_date
        return self.start_date <= d and (end is None or d <= end)


def _block_key(agreement: Agreement) -> tuple:
    if not agreement.is_group_lesson:
        return ("single", agreement.id)
    base = (agreement.start_time, agreement.lesson_type_id, agreement.frequency)
    if agreement.frequency == Frequency.weekly:
        return ("group", agreement.day_of_week) + base
    if agreement.frequency == Frequency.daily:
        return ("group",) + base
    # biweekly / monthly: different start dates run in different phases
    return ("group", agreement.start_date) + base


def group_into_blocks(agreements: Iterable[Agreement]) -> List[_Block]:
    grouped: dict[tuple, list[Agreement]] = {}
    for agreement in agreements:
        grouped.setdefault(_block_key(agreement), []).append(agreement)
    return [_Block(members=tuple(members)) for members in grouped.values()]


def _rule_dates(block: _Block, range_start: date, range_end: date) -> Iterable[date]:
    lead = block.lead
    current = first_occurrence_on_or_after(lead.frequency, lead.day_of_week, block.start_date, range_start)
    anchor_day = block.start_date.day
    while current <= range_end:
        if block.covers(current):
            yield current
        current = add_interval(current, lead.frequency, anchor_day=anchor_day)


def _title(block: _Block) -> str:
    name = block.lead.lesson_type_name or "Lesson"
    if block.lead.is_group_lesson:
        return f"{name} ({len(block.members)} participants)"
    return name


def _from_exact(block: _Block, deviation: Deviation) -> Occurrence:
    agreement = block.lead
    if deviation.is_cancelled:
        start = at(deviation.original_date, deviation.original_start_time)
    else:
        start = at(deviation.actual_date, deviation.actual_start_time)
    # A row that lands back on the agreement's own weekday and time is shown as the plain lesson
    effectively_original = (
        not deviation.is_cancelled
        and day_of_week(deviation.actual_date) == agreement.day_of_week
        and same_minute(deviation.actual_start_time, agreement.start_time)
    )
    return _occurrence(
        block,
        start,
        kind=OccurrenceKind.agreement if effectively_original else OccurrenceKind.deviation,
        is_deviation=not deviation.is_cancelled and not effectively_original,
        is_cancelled=deviation.is_cancelled,
        is_recurring_override=deviation.recurring,
        deviation=deviation,
    )


def _from_recurring(block: _Block, deviation: Deviation, on: date) -> Occurrence:
    start = at(date_for_day_of_week(day_of_week(deviation.actual_date), on), deviation.actual_start_time)
    return _occurrence(
        block,
        start,
        kind=OccurrenceKind.deviation,
        is_deviation=not deviation.is_cancelled,
        is_cancelled=deviation.is_cancelled,
        is_recurring_override=True,
        deviation=deviation,
    )


def _occurrence(block: _Block, start: datetime, *, kind: OccurrenceKind, deviation: Optional[Deviation] = None, **flags) -> Occurrence:
    lead = block.lead
    return Occurrence(
        kind=kind,
        title=_title(block),
        start=start,
        end=start + block.duration,
        agreement_id=lead.id,
        agreement_ids=tuple(a.id for a in block.members),
        student_ids=tuple(a.student_id for a in block.members if a.student_id is not None),
        lesson_type_id=lead.lesson_type_id,
        is_group_lesson=lead.is_group_lesson,
        deviation_id=deviation.id if deviation else None,
        original_date=deviation.original_date if deviation else None,
        original_start_time=deviation.original_start_time if deviation else None,
        reason=deviation.reason if deviation else None,
        **flags,
    )


def generate(
    agreements: Sequence[Agreement],
    range_start: date,
    range_end: date,
    exact: Optional[Mapping[ExactKey, Deviation]] = None,
    recurring: Optional[Mapping[int, Tuple[Deviation, ...]]] = None,
) -> List[Occurrence]:
    """Concrete occurrences of ``agreements`` with a rule date in [range_start, range_end].

    ``exact`` and ``recurring`` are the two halves of a
    :class:`~lesson_agenda.services.deviation_index.DeviationIndex`.
    """
    index = DeviationIndex(exact=exact or {}, recurring=recurring or {})
    occurrences: List[Occurrence] = []

    for block in group_into_blocks(agreements):
        for rule_date in _rule_dates(block, range_start, range_end):
            if block.is_single:
                agreement_id = block.lead.id
                deviation = index.find_exact(agreement_id, rule_date)
                if deviation is not None:
                    occurrences.append(_from_exact(block, deviation))
                    continue
                deviation = index.find_recurring(agreement_id, rule_date)
                if deviation is not None:
                    occurrences.append(_from_recurring(block, deviation, rule_date))
                    continue
            occurrences.append(
                _occurrence(block, at(rule_date, block.lead.start_time), kind=OccurrenceKind.agreement)
            )

    occurrences.sort(key=lambda o: (o.start, o.agreement_id))
    logger.debug(
        "Generated %d occurrences for %d agreements in %s..%s",
        len(occurrences),
        len(agreements),
        range_start,
        range_end,
    )
    return occurrences
