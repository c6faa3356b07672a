"""
Display filtering and stable sorting of enriched request records
"""

import unittest

from services.enrichment import enrich_event
from services.models import CacheStatus, RawTimingEvent, SortDirection, SortKey, StatusGroup
from services.request_filters import FilterCriteria, apply_filters, sort_records

PAGE_URL = "https://example.com/"


def make_record(name, initiator_type, start_time, duration, transfer_size, status_code=None, cache_hit=None):
    return enrich_event(RawTimingEvent.from_dict({
        "name": name,
        "initiatorType": initiator_type,
        "startTime": start_time,
        "responseEnd": start_time + duration,
        "transferSize": transfer_size,
        "statusCode": status_code,
        "cacheHit": cache_hit,
    }), PAGE_URL)


class TestFilters(unittest.TestCase):
    def setUp(self):
        self.app = make_record("https://example.com/app.js", "script", 0, 50, 1000, 200, False)
        self.lib = make_record("https://cdn.other.net/lib.js", "script", 5, 300, 60000, 200, True)
        self.api = make_record("https://example.com/api/data", "fetch", 10, 120, 500, 404)
        self.logo = make_record("https://example.com/logo.png", "img", 15, 300, 0)
        self.records = [self.app, self.lib, self.api, self.logo]

    def test_no_criteria_keeps_everything_in_order(self):
        self.assertEqual(apply_filters(self.records, None), self.records)
        self.assertEqual(apply_filters(self.records, FilterCriteria()), self.records)

    def test_criteria_are_combined_with_and(self):
        criteria = FilterCriteria(initiator_type="script", third_party=True)
        self.assertEqual(apply_filters(self.records, criteria), [self.lib])

        criteria = FilterCriteria(initiator_type="script", min_duration_ms=100)
        self.assertEqual(apply_filters(self.records, criteria), [self.lib])

    def test_combined_criteria_equal_successive_filtering(self):
        pairs = [
            ({"initiator_type": "script"}, {"third_party": True}),
            ({"min_duration_ms": 100}, {"domain": "example.com"}),
            ({"search": "EXAMPLE"}, {"status_group": StatusGroup.SUCCESS}),
            ({"max_size_bytes": 1000}, {"cache_status": CacheStatus.MISS}),
        ]
        for first, second in pairs:
            with self.subTest(first=first, second=second):
                combined = apply_filters(self.records, FilterCriteria(**first, **second))
                chained = apply_filters(apply_filters(self.records, FilterCriteria(**first)), FilterCriteria(**second))
                self.assertEqual(combined, chained)

    def test_status_groups(self):
        self.assertEqual(
            apply_filters(self.records, FilterCriteria(status_group=StatusGroup.CLIENT_ERROR)),
            [self.api],
        )
        # A request without a status code belongs to no group
        self.assertEqual(
            apply_filters(self.records, FilterCriteria(status_group=StatusGroup.SUCCESS)),
            [self.app, self.lib],
        )

    def test_search_is_case_insensitive(self):
        self.assertEqual(apply_filters(self.records, FilterCriteria(search="API")), [self.api])
        self.assertEqual(apply_filters(self.records, FilterCriteria(search="IMG")), [self.logo])

    def test_domain_matches_exact_hostname(self):
        self.assertEqual(apply_filters(self.records, FilterCriteria(domain="cdn.other.net")), [self.lib])
        self.assertEqual(apply_filters(self.records, FilterCriteria(domain="other.net")), [])

    def test_duration_and_size_bounds_are_inclusive(self):
        criteria = FilterCriteria(min_duration_ms=120, max_duration_ms=300)
        self.assertEqual(apply_filters(self.records, criteria), [self.lib, self.api, self.logo])

        criteria = FilterCriteria(min_size_bytes=500, max_size_bytes=1000)
        self.assertEqual(apply_filters(self.records, criteria), [self.app, self.api])

    def test_cache_status_requires_known_cache_state(self):
        self.assertEqual(apply_filters(self.records, FilterCriteria(cache_status=CacheStatus.HIT)), [self.lib])
        self.assertEqual(apply_filters(self.records, FilterCriteria(cache_status=CacheStatus.MISS)), [self.app])

    def test_from_dict_treats_all_and_empty_as_unset(self):
        criteria = FilterCriteria.from_dict({
            "type": "all",
            "search": "",
            "statusGroup": "clientError",
            "minDurationMs": "100",
            "isThirdParty": "false",
        })
        self.assertIsNone(criteria.initiator_type)
        self.assertIsNone(criteria.search)
        self.assertEqual(criteria.status_group, StatusGroup.CLIENT_ERROR)
        self.assertEqual(criteria.min_duration_ms, 100.0)
        self.assertFalse(criteria.third_party)
        self.assertEqual(FilterCriteria.from_dict(None), FilterCriteria())

    def test_from_dict_rejects_invalid_values(self):
        with self.assertRaises(ValueError):
            FilterCriteria.from_dict({"statusGroup": "teapot"})
        with self.assertRaises(ValueError):
            FilterCriteria.from_dict({"minDurationMs": "fast"})


class TestSorting(unittest.TestCase):
    def setUp(self):
        self.app = make_record("https://example.com/app.js", "script", 0, 50, 1000, 200)
        self.lib = make_record("https://cdn.other.net/lib.js", "script", 5, 300, 60000, 200)
        self.api = make_record("https://example.com/api/data", "fetch", 10, 120, 500, 404)
        self.logo = make_record("https://example.com/logo.png", "img", 15, 300, 0)
        self.records = [self.app, self.lib, self.api, self.logo]

    def test_ties_keep_input_order_in_both_directions(self):
        self.assertEqual(
            sort_records(self.records, SortKey.DURATION, SortDirection.DESC),
            [self.lib, self.logo, self.api, self.app],
        )
        self.assertEqual(
            sort_records(self.records, SortKey.DURATION, SortDirection.ASC),
            [self.app, self.api, self.lib, self.logo],
        )

    def test_sorting_is_idempotent(self):
        for key in SortKey:
            for direction in SortDirection:
                with self.subTest(key=key, direction=direction):
                    once = sort_records(self.records, key, direction)
                    self.assertEqual(sort_records(once, key, direction), once)

    def test_missing_values_sort_last(self):
        self.assertEqual(
            sort_records(self.records, SortKey.STATUS_CODE, SortDirection.ASC),
            [self.app, self.lib, self.api, self.logo],
        )
        self.assertEqual(
            sort_records(self.records, SortKey.STATUS_CODE, SortDirection.DESC),
            [self.api, self.app, self.lib, self.logo],
        )

    def test_string_keys(self):
        self.assertEqual(
            sort_records(self.records, SortKey.NAME, SortDirection.ASC),
            [self.lib, self.api, self.app, self.logo],
        )
        self.assertEqual(
            sort_records(self.records, SortKey.DOMAIN, SortDirection.ASC),
            [self.lib, self.app, self.api, self.logo],
        )

    def test_all_missing_keeps_input_order(self):
        self.assertEqual(sort_records(self.records, SortKey.PRIORITY), self.records)

    def test_input_is_not_modified(self):
        original = list(self.records)
        sort_records(self.records, SortKey.TRANSFER_SIZE)
        self.assertEqual(self.records, original)


if __name__ == "__main__":
    unittest.main()
