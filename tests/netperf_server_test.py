"""
End-to-end checks of the netperf MCP tools through an in-memory FastMCP client
"""

import json
import os
import tempfile
import unittest
from unittest.mock import patch

from fastmcp import Client

import netperf

PAGE_URL = "https://example.com/"


def timing(name, start_time, duration, initiator_type="script"):
    return {
        "name": name,
        "initiatorType": initiator_type,
        "startTime": start_time,
        "responseEnd": start_time + duration,
        "transferSize": 1000,
    }


class TestNetperfServer(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = Client(netperf.mcp)
        await self.client.__aenter__()

    async def asyncTearDown(self):
        for session_id in list(netperf._SESSIONS):
            await self.call("close_session", session_id=session_id)
        await self.client.__aexit__(None, None, None)

    async def call(self, tool, **arguments):
        result = await self.client.call_tool(tool, arguments)
        return json.loads(result.content[0].text)

    async def test_ingest_list_and_summary(self):
        result = await self.call(
            "ingest_timing_events",
            session_id="s1",
            page_url=PAGE_URL,
            events=[timing("https://example.com/a.js", 0, 100), timing("https://cdn.other.net/b.js", 5, 400)],
        )
        self.assertEqual(result["status"], "success")
        self.assertEqual(result["ingested"], 2)

        again = await self.call("ingest_timing_events", session_id="s1", events=[timing("https://example.com/a.js", 0, 100)])
        self.assertEqual(again["ingested"], 0)
        self.assertEqual(again["total_requests"], 2)

        listed = await self.call("list_requests", session_id="s1", filters={"isThirdParty": True})
        self.assertEqual([r["name"] for r in listed["requests"]], ["https://cdn.other.net/b.js"])

        summary = await self.call("get_request_summary", session_id="s1")
        self.assertEqual(summary["summary"]["request_count"], 2)

    async def test_baseline_regression_alerts(self):
        await self.call("ingest_timing_events", session_id="base", page_url=PAGE_URL,
                        events=[timing("https://example.com/a.js", 0, 100)])
        saved = await self.call("save_baseline", session_id="base", snapshot_id="release-1")
        self.assertEqual(saved["request_count"], 1)

        await self.call("set_baseline", session_id="live", snapshot_id="release-1")
        result = await self.call("ingest_timing_events", session_id="live",
                                 events=[timing("https://example.com/a.js", 3, 400)])

        self.assertEqual(len(result["alerts"]), 1)
        self.assertEqual(result["alerts"][0]["alert_level"], "critical")

        compared = await self.call("compare_to_baseline", session_id="live")
        self.assertEqual(compared["status_counts"], {"regressed": 1})

    async def test_page_url_given_after_session_was_created(self):
        await self.call("ingest_timing_events", session_id="base2", page_url=PAGE_URL,
                        events=[timing("https://example.com/a.js", 0, 100)])
        await self.call("save_baseline", session_id="base2", snapshot_id="release-2")
        await self.call("set_baseline", session_id="late", snapshot_id="release-2")

        await self.call("ingest_timing_events", session_id="late", page_url=PAGE_URL,
                        events=[timing("https://example.com/a.js", 3, 100), timing("https://cdn.other.net/b.js", 5, 40)])

        listed = await self.call("list_requests", session_id="late", filters={"isThirdParty": False})
        self.assertEqual([r["name"] for r in listed["requests"]], ["https://example.com/a.js"])

    async def test_failures_are_reported_as_error_dicts(self):
        result = await self.call("list_requests", session_id="nobody")
        self.assertEqual(result["status"], "failed")

        await self.call("ingest_timing_events", session_id="s2", events=[])
        result = await self.call("set_baseline", session_id="s2", snapshot_id="does-not-exist")
        self.assertEqual(result["status"], "failed")
        self.assertIn("does-not-exist", result["error"])

        result = await self.call("import_har", session_id="s2", har={"log": {}})
        self.assertEqual(result["status"], "failed")

        result = await self.call("list_requests", session_id="s2", sort_key="colour")
        self.assertEqual(result["status"], "failed")

    async def test_har_export_import_and_annotations(self):
        await self.call("ingest_timing_events", session_id="src", page_url=PAGE_URL,
                        events=[timing("https://example.com/a.js", 0, 100)])
        request_id = "https://example.com/a.js@0.0"
        attached = await self.call("attach_insight", session_id="src", request_id=request_id, insight={
            "provider_id": "reviewer", "model": "manual", "category": "Explanation", "message": "Main bundle",
        })
        self.assertTrue(attached["attached"])

        with tempfile.TemporaryDirectory() as tmp, patch.object(netperf, "ARTIFACTS_PATH", tmp):
            exported = await self.call("export_har", session_id="src")
            self.assertTrue(os.path.isfile(exported["har_path"]))
            imported = await self.call("import_har", session_id="dst", har_path=exported["har_path"])

        self.assertEqual(imported["imported"], 1)
        listed = await self.call("list_requests", session_id="dst")
        self.assertEqual(listed["requests"][0]["insights"][0]["message"], "Main bundle")

        with patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            annotated = await self.call("request_annotations", session_id="dst")
        self.assertEqual(annotated["pending"], 0)
        listed = await self.call("list_requests", session_id="dst")
        self.assertEqual(len(listed["requests"][0]["cost_estimates"]), 1)

        points = await self.call("get_metric_series", session_id="dst", include_phases=False)
        self.assertEqual(len(points["points"]), 2)


if __name__ == "__main__":
    unittest.main()
