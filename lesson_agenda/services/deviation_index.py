"""Lookup structures over stored deviation rows.

The index is rebuilt for every read and passed to the generator explicitly;
it is read-only so one instance can be shared between concurrent readers.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple

from lesson_agenda.schemas import Deviation

ExactKey = Tuple[int, date]


def applies_on(deviation: Deviation, on: date) -> bool:
    """True if a recurring deviation covers ``on`` (start and end inclusive)."""
    return deviation.original_date <= on and (
        deviation.recurring_end_date is None or deviation.recurring_end_date >= on
    )


@dataclass(frozen=True)
class DeviationIndex:
    # (agreement_id, original_date) -> row; recurring rows are included
    exact: Mapping[ExactKey, Deviation] = field(default_factory=lambda: MappingProxyType({}))
    # agreement_id -> recurring rows, newest original_date first
    recurring: Mapping[int, Tuple[Deviation, ...]] = field(default_factory=lambda: MappingProxyType({}))

    def find_exact(self, agreement_id: int, on: date) -> Optional[Deviation]:
        return self.exact.get((agreement_id, on))

    def find_recurring(self, agreement_id: int, on: date) -> Optional[Deviation]:
        """Latest recurring deviation of the agreement that covers ``on``."""
        for deviation in self.recurring.get(agreement_id, ()):
            if applies_on(deviation, on):
                return deviation
        return None


def build_deviation_index(rows: Iterable[Deviation]) -> DeviationIndex:
    exact: dict[ExactKey, Deviation] = {}
    recurring: dict[int, list[Deviation]] = defaultdict(list)
    for row in rows:
        exact[(row.agreement_id, row.original_date)] = row
        if row.recurring:
            recurring[row.agreement_id].append(row)

    ordered = {
        agreement_id: tuple(sorted(items, key=lambda d: d.original_date, reverse=True))
        for agreement_id, items in recurring.items()
    }
    return DeviationIndex(exact=MappingProxyType(exact), recurring=MappingProxyType(ordered))
