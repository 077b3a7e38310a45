from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Sequence, Set

from jobledger.job_records import Job
from jobledger.revenue_engine import ALL_TIME, Period

ALL_TIME_PATTERN = re.compile(r"all(?:[ _-]*time)?")
YEAR_PATTERN = re.compile(r"[0-9]{1,4}")


def available_periods(jobs: Iterable[Job], today: Optional[date] = None) -> List[Period]:
    """Return ``ALL_TIME`` followed by every selectable year, newest first.

    The current year is always offered; undated transactions add nothing.
    """
    current_year = (today or date.today()).year
    years: Set[int] = {current_year}
    for job in jobs or ():
        for txn in job.transactions or ():
            if txn.date is not None:
                years.add(txn.date.year)
    return [ALL_TIME, *sorted(years, reverse=True)]


def parse_period(value: str | int | None) -> Period:
    if value is None:
        return ALL_TIME
    if isinstance(value, bool):
        raise ValueError("Period must be 'All Time' or a year.")
    if isinstance(value, int):
        return _validate_year(value)
    normalized = value.strip().lower()
    if not normalized or ALL_TIME_PATTERN.fullmatch(normalized):
        return ALL_TIME
    if not YEAR_PATTERN.fullmatch(normalized):
        raise ValueError("Period must be 'All Time' or a year.")
    return _validate_year(int(normalized))


def _validate_year(year: int) -> int:
    if year < 1 or year > 9999:
        raise ValueError("Year must be between 1 and 9999.")
    return year


@dataclass(frozen=True)
class PeriodSelection:
    """Selected reporting period; starts at ``ALL_TIME``.

    Transitions only go to a period offered by ``available_periods`` and
    always produce a new selection.
    """

    period: Period = ALL_TIME

    @property
    def is_all_time(self) -> bool:
        return self.period == ALL_TIME

    def select(self, period: Period, available: Sequence[Period]) -> "PeriodSelection":
        if period not in available or isinstance(period, bool):
            raise ValueError(f"Period not available: {period}")
        return PeriodSelection(period=period)
