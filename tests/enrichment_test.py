"""
Identity, duplicate suppression and metric enrichment of raw timing events
"""

import unittest

from services.enrichment import enrich_event, extract_hostname, is_third_party
from services.identity import request_key, select_new_events
from services.models import RawTimingEvent, RequestKey

PAGE_URL = "https://example.com/app"


def timing_event(name, start_time=0.0, duration=100.0, **extra):
    data = {
        "name": name,
        "initiatorType": extra.pop("initiator_type", "script"),
        "startTime": start_time,
        "responseEnd": start_time + duration,
    }
    data.update(extra)
    return RawTimingEvent.from_dict(data)


class TestRequestIdentity(unittest.TestCase):
    def test_key_is_name_and_start_time(self):
        event = timing_event("https://example.com/a.js", start_time=12.5)
        self.assertEqual(request_key(event), RequestKey("https://example.com/a.js", 12.5))

    def test_same_url_loaded_twice_is_two_requests(self):
        first = timing_event("https://example.com/a.js", start_time=10)
        second = timing_event("https://example.com/a.js", start_time=20)
        self.assertNotEqual(request_key(first).as_id(), request_key(second).as_id())
        self.assertEqual(select_new_events([first, second], set()), [first, second])

    def test_known_and_repeated_events_are_dropped(self):
        a = timing_event("https://example.com/a.js", start_time=1)
        b = timing_event("https://example.com/b.js", start_time=2)
        c = timing_event("https://example.com/c.js", start_time=3)
        known = {request_key(a).as_id()}

        fresh = select_new_events([c, a, b, c], known)

        self.assertEqual(fresh, [c, b])
        # Known ids are read, never updated
        self.assertEqual(known, {request_key(a).as_id()})

    def test_replaying_a_batch_yields_nothing(self):
        batch = [timing_event("https://example.com/a.js"), timing_event("https://example.com/b.js", 5)]
        known = {request_key(e).as_id() for e in select_new_events(batch, set())}
        self.assertEqual(select_new_events(batch, known), [])


class TestRawEventParsing(unittest.TestCase):
    def test_camel_and_snake_case_are_equivalent(self):
        camel = RawTimingEvent.from_dict({
            "name": "https://example.com/a.js", "initiatorType": "script",
            "startTime": 5, "responseEnd": 50, "transferSize": 300,
            "nextHopProtocol": "h2", "responseStatus": 200,
        })
        snake = RawTimingEvent.from_dict({
            "name": "https://example.com/a.js", "initiator_type": "script",
            "start_time": 5, "response_end": 50, "transfer_size": 300,
            "protocol": "h2", "status_code": 200,
        })
        self.assertEqual(camel, snake)

    def test_garbage_values_degrade_instead_of_raising(self):
        event = RawTimingEvent.from_dict({
            "name": "https://example.com/a.js",
            "startTime": "not-a-number",
            "responseEnd": float("nan"),
            "transferSize": None,
            "statusCode": "abc",
            "requestHeaders": {},
        })
        self.assertEqual(event.start_time, 0.0)
        self.assertEqual(event.response_end, 0.0)
        self.assertEqual(event.transfer_size, 0.0)
        self.assertIsNone(event.status_code)
        self.assertIsNone(event.request_headers)
        self.assertEqual(event.initiator_type, "other")

    def test_out_of_range_numbers_degrade(self):
        event = RawTimingEvent.from_dict({
            "name": "https://example.com/a.js",
            "startTime": 1,
            "transferSize": 10 ** 400,
            "statusCode": float("inf"),
        })
        self.assertEqual(event.transfer_size, 0.0)
        self.assertIsNone(event.status_code)

        self.assertIsNone(RawTimingEvent.from_dict({"statusCode": float("-inf")}).status_code)

    def test_unexposed_status_is_unknown(self):
        for status in (0, "0", -1):
            with self.subTest(status=status):
                self.assertIsNone(RawTimingEvent.from_dict({"responseStatus": status}).status_code)
        self.assertEqual(RawTimingEvent.from_dict({"responseStatus": 204}).status_code, 204)

    def test_non_mapping_input(self):
        event = RawTimingEvent.from_dict(None)
        self.assertEqual(event.name, "")


class TestEnrichment(unittest.TestCase):
    def setUp(self):
        self.event = RawTimingEvent.from_dict({
            "name": "https://cdn.example.com/bundle.js",
            "initiatorType": "script",
            "startTime": 10,
            "domainLookupStart": 12,
            "domainLookupEnd": 20,
            "connectStart": 20,
            "secureConnectionStart": 30,
            "connectEnd": 45,
            "requestStart": 46,
            "responseStart": 90,
            "responseEnd": 130,
            "transferSize": 2048,
            "encodedBodySize": 2000,
            "decodedBodySize": 6000,
            "renderBlockingStatus": "blocking",
        })

    def test_phase_durations(self):
        record = enrich_event(self.event, PAGE_URL)

        self.assertEqual(record.id, "https://cdn.example.com/bundle.js@10.0")
        self.assertEqual(record.duration, 120)
        self.assertEqual(record.queueing_duration, 2)
        self.assertEqual(record.dns_lookup_duration, 8)
        self.assertEqual(record.tcp_handshake_duration, 25)
        self.assertEqual(record.ssl_handshake_duration, 15)
        self.assertEqual(record.send_duration, 1)
        self.assertEqual(record.time_to_first_byte, 44)
        self.assertEqual(record.download_duration, 40)
        self.assertEqual(record.transfer_size, 2048)
        self.assertTrue(record.critical_path)
        self.assertFalse(record.is_third_party)
        self.assertEqual(record.insights, [])
        self.assertIsNone(record.baseline_comparison)

    def test_enrichment_is_deterministic(self):
        self.assertEqual(enrich_event(self.event, PAGE_URL), enrich_event(self.event, PAGE_URL))

    def test_negative_phases_clamp_to_zero(self):
        event = RawTimingEvent.from_dict({
            "name": "https://example.com/x",
            "startTime": 100,
            "requestStart": 60,
            "responseStart": 50,
            "responseEnd": 40,
        })
        record = enrich_event(event, PAGE_URL)
        self.assertEqual(record.duration, 0.0)
        self.assertEqual(record.time_to_first_byte, 0.0)
        self.assertEqual(record.download_duration, 0.0)
        self.assertEqual(record.ssl_handshake_duration, 0.0)

    def test_cross_origin_event_without_detail_timings(self):
        # Timing-Allow-Origin absent: only start/end are exposed
        record = enrich_event(timing_event("https://ads.other.net/px.gif", 5, 30), PAGE_URL)
        self.assertEqual(record.duration, 30)
        self.assertEqual(record.dns_lookup_duration, 0.0)
        self.assertEqual(record.queueing_duration, 0.0)
        self.assertEqual(record.send_duration, 0.0)
        self.assertIsNone(record.critical_path)
        self.assertIsNone(record.cache_hit)


class TestThirdPartyClassification(unittest.TestCase):
    def test_same_host_and_subdomains_are_first_party(self):
        self.assertFalse(is_third_party("https://example.com/a.js", PAGE_URL))
        self.assertFalse(is_third_party("https://static.cdn.example.com/a.js", PAGE_URL))
        self.assertFalse(is_third_party("https://EXAMPLE.com/a.js", PAGE_URL))

    def test_other_hosts_are_third_party(self):
        self.assertTrue(is_third_party("https://example.com.evil.net/a.js", PAGE_URL))
        self.assertTrue(is_third_party("https://notexample.com/a.js", PAGE_URL))

    def test_malformed_urls_are_third_party(self):
        self.assertTrue(is_third_party("not a url", PAGE_URL))
        self.assertTrue(is_third_party("https://[::1", PAGE_URL))
        self.assertTrue(is_third_party("", PAGE_URL))
        self.assertTrue(is_third_party("https://example.com/a.js", ""))

    def test_bare_page_host(self):
        self.assertFalse(is_third_party("https://example.com/a.js", "example.com"))

    def test_extract_hostname(self):
        self.assertEqual(extract_hostname("https://API.Example.com:8443/x?y=1"), "api.example.com")
        self.assertIsNone(extract_hostname("relative/path.js"))


if __name__ == "__main__":
    unittest.main()
