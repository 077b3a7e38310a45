from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Hashable, Iterable, List, Optional

from jobledger.job_records import Job
from jobledger.period_catalog import available_periods
from jobledger.revenue_engine import (
    ALL_TIME,
    Aggregate,
    Client,
    Period,
    client_totals,
    ranked_clients,
)


@dataclass
class SummaryCache:
    """Optional memo for the pure derivations, keyed by input value and period.

    Hits return the same objects the uncached functions would have built.
    """

    max_entries: int = 128
    _cache: dict[Hashable, Any] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def ranked_clients(self, jobs: Iterable[Job]) -> List[Client]:
        snapshot = tuple(jobs)
        return list(self._get(("clients", snapshot), lambda: ranked_clients(snapshot)))

    def client_totals(self, client: Client, period: Period = ALL_TIME) -> Aggregate:
        return self._get(("totals", client, period), lambda: client_totals(client, period))

    def periods(self, jobs: Iterable[Job], today: Optional[date] = None) -> List[Period]:
        snapshot = tuple(jobs)
        resolved_today = today or date.today()
        return list(
            self._get(
                ("periods", snapshot, resolved_today.year),
                lambda: available_periods(snapshot, today=resolved_today),
            )
        )

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def _get(self, key: Hashable, compute):
        with self._lock:
            if key in self._cache:
                return self._cache[key]
        value = compute()
        if isinstance(value, list):
            value = tuple(value)
        if self.max_entries <= 0:
            return value
        with self._lock:
            while self._cache and len(self._cache) >= self.max_entries:
                self._cache.pop(next(iter(self._cache)), None)
            self._cache[key] = value
        return value
