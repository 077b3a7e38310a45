import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

from jobledger.job_records import parse_job_records
from jobledger.period_catalog import available_periods
from jobledger.revenue_engine import Aggregate, client_totals, ranked_clients
from jobledger.summary_cache import SummaryCache


class SummaryCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.jobs = parse_job_records(
            [
                {"client": "A", "transactions": [{"type": "income", "amount": 100, "date": "2023-01-01"}]},
                {"client": "A", "transactions": [{"type": "expense", "amount": 40, "date": "2024-06-01"}]},
                {"client": "B", "transactions": [{"type": "income", "amount": 50, "date": "2024-01-01"}]},
            ]
        )

    def test_matches_uncached_results(self) -> None:
        cache = SummaryCache()
        today = date(2025, 3, 1)

        self.assertEqual(cache.ranked_clients(self.jobs), ranked_clients(self.jobs))
        self.assertEqual(cache.periods(self.jobs, today=today), available_periods(self.jobs, today=today))
        client_a = cache.ranked_clients(self.jobs)[1]
        self.assertEqual(cache.client_totals(client_a, 2024), client_totals(client_a, 2024))
        self.assertEqual(
            cache.client_totals(client_a, 2024),
            Aggregate(income=Decimal("0"), expenses=Decimal("40")),
        )

    def test_repeated_calls_reuse_entries(self) -> None:
        cache = SummaryCache()

        first = cache.ranked_clients(self.jobs)
        second = cache.ranked_clients(list(self.jobs))

        self.assertEqual(first, second)
        self.assertEqual(len(cache), 1)

    def test_callers_cannot_mutate_cached_results(self) -> None:
        cache = SummaryCache()

        first = cache.ranked_clients(self.jobs)
        first.clear()

        self.assertEqual(len(cache.ranked_clients(self.jobs)), 2)

    def test_changed_input_is_recomputed(self) -> None:
        cache = SummaryCache()
        cache.ranked_clients(self.jobs)

        extended = self.jobs + parse_job_records(
            [{"client": "C", "transactions": [{"type": "expense", "amount": 5, "date": "2024-01-01"}]}]
        )

        self.assertEqual([client.name for client in cache.ranked_clients(extended)], ["C", "B", "A"])
        self.assertEqual(len(cache), 2)

    def test_evicts_oldest_entry_when_full(self) -> None:
        cache = SummaryCache(max_entries=1)
        today = date(2025, 3, 1)

        cache.ranked_clients(self.jobs)
        cache.periods(self.jobs, today=today)

        self.assertEqual(len(cache), 1)
        cache.clear()
        self.assertEqual(len(cache), 0)

    def test_concurrent_eviction_keeps_cache_bounded(self) -> None:
        cache = SummaryCache(max_entries=1)
        feeds = [
            parse_job_records(
                [{"client": f"C{index}", "transactions": [{"type": "income", "amount": index, "date": "2024-01-01"}]}]
            )
            for index in range(16)
        ]

        def hit(index: int) -> str:
            return cache.ranked_clients(feeds[index % len(feeds)])[0].name

        with ThreadPoolExecutor(max_workers=8) as pool:
            names = list(pool.map(hit, range(400)))

        self.assertEqual(names, [f"C{index % len(feeds)}" for index in range(400)])
        self.assertLessEqual(len(cache), 1)


if __name__ == "__main__":
    unittest.main()
