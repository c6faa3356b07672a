"""
Session summary statistics and metric-exporter series
"""

import unittest

from services.enrichment import enrich_event
from services.metric_export import METRIC_PREFIX, metric_series
from services.models import RawTimingEvent
from services.request_summary import summarize_requests

PAGE_URL = "https://example.com/"


def make_record(name, initiator_type, start_time, duration, transfer_size, status_code=None):
    return enrich_event(RawTimingEvent.from_dict({
        "name": name,
        "initiatorType": initiator_type,
        "startTime": start_time,
        "requestStart": start_time,
        "responseStart": start_time + duration / 2,
        "responseEnd": start_time + duration,
        "transferSize": transfer_size,
        "statusCode": status_code,
    }), PAGE_URL)


class TestSummarizeRequests(unittest.TestCase):
    def setUp(self):
        self.records = [
            make_record("https://example.com/app.js", "script", 0, 100, 1000, 200),
            make_record("https://cdn.other.net/lib.js", "script", 10, 300, 5000, 200),
            make_record("https://example.com/api", "fetch", 400, 50, 200, 200),
        ]

    def test_totals(self):
        summary = summarize_requests(self.records)

        self.assertEqual(summary["request_count"], 3)
        self.assertEqual(summary["total_transfer_size"], 6200)
        self.assertEqual(summary["total_duration"], 450)
        self.assertEqual(summary["max_duration"], 300)
        self.assertEqual(summary["third_party_count"], 1)
        self.assertEqual(summary["request_types"], ["script", "fetch"])
        self.assertEqual(summary["domains"], ["example.com", "cdn.other.net"])

    def test_breakdown_by_type(self):
        by_type = summarize_requests(self.records)["by_type"]

        self.assertEqual(set(by_type), {"script", "fetch"})
        self.assertEqual(by_type["script"]["count"], 2)
        self.assertEqual(by_type["script"]["transfer_size"], 6000)
        self.assertEqual(by_type["script"]["avg_duration"], 200)
        self.assertEqual(by_type["fetch"]["p95_duration"], 50)

    def test_empty_session(self):
        summary = summarize_requests([])
        self.assertEqual(summary["request_count"], 0)
        self.assertEqual(summary["by_type"], {})


class TestMetricSeries(unittest.TestCase):
    def test_points_and_tags(self):
        record = make_record("https://example.com/app.js", "script", 0, 100, 1000)

        series = metric_series([record])

        names = [name for name, _, _ in series]
        self.assertEqual(names[:2], [f"{METRIC_PREFIX}.duration", f"{METRIC_PREFIX}.transfer_size"])
        self.assertIn(f"{METRIC_PREFIX}.ttfb", names)
        self.assertEqual(len(series), 7)

        _, value, tags = series[0]
        self.assertEqual(value, 100)
        self.assertEqual(tags, {
            "resource_name": "https://example.com/app.js",
            "initiator_type": "script",
            "status_code": "unknown",
            "is_third_party": "false",
        })
        self.assertEqual({name: value for name, value, _ in series}[f"{METRIC_PREFIX}.ttfb"], 50)

    def test_without_phases(self):
        records = [
            make_record("https://example.com/a.js", "script", 0, 100, 1000, 200),
            make_record("https://example.com/b.js", "script", 5, 100, 1000, 304),
        ]
        series = metric_series(records, include_phases=False)

        self.assertEqual(len(series), 4)
        self.assertEqual(series[2][2]["status_code"], "304")


if __name__ == "__main__":
    unittest.main()
