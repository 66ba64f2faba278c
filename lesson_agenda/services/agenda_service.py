"""Agenda read path: agreements + deviations -> index -> occurrences."""
from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import date
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from lesson_agenda.core.config import settings
from lesson_agenda.core.monitoring import OCCURRENCE_GENERATION_DURATION, OCCURRENCES_GENERATED
from lesson_agenda.schemas import OccurrenceKind
from lesson_agenda.services import agreement_store
from lesson_agenda.services.deviation_index import build_deviation_index
from lesson_agenda.services.helpers import add_months
from lesson_agenda.services.occurrences import Occurrence, generate

logger = logging.getLogger(__name__)


def default_window(today: Optional[date] = None) -> Tuple[date, date]:
    today = today or date.today()
    return (
        add_months(today, -settings.agenda_months_back),
        add_months(today, settings.agenda_months_forward),
    )


def load_agenda(
    db: Session,
    teacher_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[Occurrence]:
    if start_date is None or end_date is None:
        default_start, default_end = default_window()
        start_date = start_date or default_start
        end_date = end_date or default_end
    if start_date > end_date:
        raise ValueError(f"start_date {start_date} is after end_date {end_date}")

    agreements = agreement_store.list_active_agreements(db, teacher_id)
    deviations = agreement_store.list_deviations(db, [a.id for a in agreements])
    index = build_deviation_index(deviations)

    started = time.perf_counter()
    occurrences = generate(agreements, start_date, end_date, index.exact, index.recurring)
    OCCURRENCE_GENERATION_DURATION.observe(time.perf_counter() - started)
    for kind in OccurrenceKind:
        count = sum(1 for o in occurrences if o.kind == kind)
        if count:
            OCCURRENCES_GENERATED.labels(kind=kind.value).inc(count)

    logger.info(
        "Agenda for teacher_id=%s %s..%s: %d agreements, %d deviations, %d occurrences",
        teacher_id,
        start_date,
        end_date,
        len(agreements),
        len(deviations),
        len(occurrences),
    )
    return occurrences


def overlay_pending(occurrences: Iterable[Occurrence], pending: Iterable[Occurrence]) -> List[Occurrence]:
    """Show in-flight edits on top of generated occurrences.

    Each pending occurrence replaces the generated one of the same agreement
    and original date (falling back to the same start) and is flagged
    ``is_pending``. Pending entries that match nothing are appended. The
    inputs are not modified.
    """
    def key(o: Occurrence):
        return o.agreement_id, o.original_date or o.start.date()

    by_key = {key(p): replace(p, is_pending=True) for p in pending}
    merged: List[Occurrence] = []
    for occurrence in occurrences:
        k = key(occurrence)
        if k in by_key:
            merged.append(by_key.pop(k))
        else:
            merged.append(occurrence)
    merged.extend(by_key.values())
    merged.sort(key=lambda o: (o.start, o.agreement_id))
    return merged
