"""
har_adapter.py

Converts enriched request records to and from HAR (HTTP Archive) documents.

High-level responsibilities:
- Export a capture session as a HAR 1.2 document, carrying the enrichment
  and annotation data in vendor ('_'-prefixed) fields
- Import a HAR document back into enriched request records without
  recomputing anything the document already carries
- Load HAR files from disk with size and structure guards
- Emit network_<timestamp>.har under:
    artifacts/<session_id>/netperf/
"""

import json
import logging
import math
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import parse_qsl, urlparse

from services import __version__
from services.enrichment import is_third_party
from services.models import (
    CostEstimate,
    EnrichedRequestRecord,
    Insight,
    NavigationMetrics,
    RegressionResult,
    RequestKey,
    SecurityFinding,
)

logger = logging.getLogger(__name__)

HAR_VERSION = "1.2"
CREATOR_NAME = "netperf-mcp"
PAGE_ID = "page_1"

# File size thresholds
_MAX_HAR_FILE_SIZE_BYTES = 200 * 1024 * 1024   # 200 MB: reject
_WARN_HAR_FILE_SIZE_BYTES = 50 * 1024 * 1024   # 50 MB: warn

# HAR timing name -> record field
_TIMING_FIELDS = {
    "blocked": "queueing_duration",
    "dns": "dns_lookup_duration",
    "connect": "tcp_handshake_duration",
    "ssl": "ssl_handshake_duration",
    "send": "send_duration",
    "wait": "time_to_first_byte",
    "receive": "download_duration",
}


class InterchangeFormatError(ValueError):
    """Raised when a HAR document lacks the structure needed for import."""


# ============================================================
# Public API: Export
# ============================================================

def export_interchange(
    records: Sequence[EnrichedRequestRecord],
    navigation_metrics: Optional[NavigationMetrics],
    page_url: str,
    started: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build a HAR 1.2 document for the given records.

    Args:
        records: Enriched request records, exported in the given order.
        navigation_metrics: Page-level timings, or None if not captured.
        page_url: URL of the monitored page (used as the page title).
        started: Wall-clock time of the page's time origin. Defaults to now (UTC).

    Returns:
        A JSON-serializable dict with a top-level 'log' object.
    """
    if started is None:
        started = datetime.now(timezone.utc)

    entries = [_record_to_entry(record, started) for record in records]

    return {
        "log": {
            "version": HAR_VERSION,
            "creator": {"name": CREATOR_NAME, "version": __version__},
            "pages": [_build_page(navigation_metrics, page_url, started)],
            "entries": entries,
        }
    }


def _build_page(
    metrics: Optional[NavigationMetrics],
    page_url: str,
    started: datetime,
) -> Dict[str, Any]:
    metrics = metrics or NavigationMetrics()
    has_metrics = metrics.dom_content_loaded > 0 or metrics.load > 0
    return {
        "id": PAGE_ID,
        "startedDateTime": started.isoformat(),
        "title": page_url,
        "pageTimings": {
            "onContentLoad": metrics.dom_content_loaded if has_metrics else -1,
            "onLoad": metrics.load if has_metrics else -1,
            "_firstPaint": metrics.first_paint,
            "_firstContentfulPaint": metrics.first_contentful_paint,
            "_largestContentfulPaint": metrics.largest_contentful_paint,
            "_timeToInteractive": metrics.time_to_interactive,
            "_totalBlockingTime": metrics.total_blocking_time,
            "_cumulativeLayoutShift": metrics.cumulative_layout_shift,
        },
    }


def _headers_dict_to_list(headers: Optional[Dict[str, str]]) -> List[Dict[str, str]]:
    return [{"name": name, "value": value} for name, value in (headers or {}).items()]


def _content_type(headers: Optional[Dict[str, str]]) -> str:
    for name, value in (headers or {}).items():
        if name.lower() == "content-type":
            return value
    return ""


def _record_to_entry(record: EnrichedRequestRecord, started: datetime) -> Dict[str, Any]:
    """Convert a single record to a HAR entry."""
    try:
        query = parse_qsl(urlparse(record.name).query, keep_blank_values=True)
    except ValueError:
        query = []

    request: Dict[str, Any] = {
        "method": record.method,
        "url": record.name,
        "httpVersion": record.protocol or "",
        "headers": _headers_dict_to_list(record.request_headers),
        "queryString": [{"name": k, "value": v} for k, v in query],
        "cookies": [],
        "headersSize": -1,
        "bodySize": len(record.request_payload) if record.request_payload else 0,
    }
    if record.request_payload is not None:
        request["postData"] = {
            "mimeType": _content_type(record.request_headers),
            "text": record.request_payload,
        }

    content: Dict[str, Any] = {
        "size": record.decoded_body_size,
        "mimeType": _content_type(record.response_headers),
    }
    if record.response_payload is not None:
        content["text"] = record.response_payload

    response = {
        "status": record.status_code or 0,
        "statusText": record.status_text or "",
        "httpVersion": record.protocol or "",
        "headers": _headers_dict_to_list(record.response_headers),
        "cookies": [],
        "content": content,
        "redirectURL": "",
        "headersSize": -1,
        "bodySize": record.encoded_body_size,
        "_transferSize": record.transfer_size,
    }

    return {
        "_id": record.id,
        "_startTime": record.start_time,
        "pageref": PAGE_ID,
        "startedDateTime": (started + timedelta(milliseconds=record.start_time)).isoformat(),
        "time": record.duration,
        "request": request,
        "response": response,
        "cache": {},
        "timings": {har: getattr(record, attr) for har, attr in _TIMING_FIELDS.items()},
        "serverIPAddress": record.server_ip_address or "",
        "_initiator": record.initiator_type,
        "_priority": record.priority,
        "_cacheHit": record.cache_hit,
        "_isThirdParty": record.is_third_party,
        "_criticalPath": record.critical_path,
        "_aiInsights": [i.to_dict() for i in record.insights],
        "_securityDetails": [f.to_dict() for f in record.security_findings],
        "_costEstimates": [c.to_dict() for c in record.cost_estimates],
        "_baselineComparison": (
            record.baseline_comparison.to_dict() if record.baseline_comparison else None
        ),
    }


# ============================================================
# Public API: Import
# ============================================================

def import_interchange(document: Any) -> List[EnrichedRequestRecord]:
    """
    Rebuild enriched request records from a HAR document.

    Values are trusted as given. Entries repeating an '_id' already seen
    are dropped so request identity stays unique.

    Raises:
        InterchangeFormatError: If 'log.entries' is missing or an entry is malformed.
    """
    log_obj = _require_log(document)
    entries = log_obj["entries"]
    pages = log_obj.get("pages") or []
    page = pages[0] if pages and isinstance(pages[0], dict) else {}
    page_url = str(page.get("title") or "")
    page_started = _parse_har_datetime(page.get("startedDateTime", ""))

    records: List[EnrichedRequestRecord] = []
    seen_ids = set()
    for idx, entry in enumerate(entries):
        record = _entry_to_record(entry, idx, page_url, page_started)
        if record.id in seen_ids:
            logger.warning("Skipping HAR entry %d: duplicate request id %s", idx, record.id)
            continue
        seen_ids.add(record.id)
        records.append(record)

    logger.info("HAR import: %d record(s) from %d entries", len(records), len(entries))
    return records


def import_navigation_metrics(document: Any) -> Optional[NavigationMetrics]:
    """Read page-level timings from the first HAR page, if any."""
    log_obj = _require_log(document)
    pages = log_obj.get("pages") or []
    if not pages or not isinstance(pages[0], dict):
        return None
    timings = pages[0].get("pageTimings") or {}
    if not isinstance(timings, dict):
        return None

    def page_timing(name: str) -> float:
        value = timings.get(name)
        return float(value) if isinstance(value, (int, float)) and value >= 0 else 0.0

    return NavigationMetrics(
        dom_content_loaded=page_timing("onContentLoad"),
        load=page_timing("onLoad"),
        first_paint=timings.get("_firstPaint"),
        first_contentful_paint=timings.get("_firstContentfulPaint"),
        largest_contentful_paint=timings.get("_largestContentfulPaint"),
        time_to_interactive=timings.get("_timeToInteractive"),
        total_blocking_time=timings.get("_totalBlockingTime"),
        cumulative_layout_shift=timings.get("_cumulativeLayoutShift"),
    )


def _require_log(document: Any) -> Dict[str, Any]:
    if not isinstance(document, dict) or not isinstance(document.get("log"), dict):
        raise InterchangeFormatError(
            "Invalid HAR structure: top-level object must contain a 'log' object"
        )
    log_obj = document["log"]
    if not isinstance(log_obj.get("entries"), list):
        raise InterchangeFormatError(
            "Invalid HAR structure: 'log' object must contain an 'entries' array"
        )
    return log_obj


def _headers_list_to_dict(headers_list: Any) -> Optional[Dict[str, str]]:
    """
    Convert HAR headers array [{name, value}] to a flat dict.

    Header names keep their case; last occurrence wins on duplicates.
    An empty list means headers were not captured and yields None.
    """
    result: Dict[str, str] = {}
    for h in headers_list or []:
        if not isinstance(h, dict):
            continue
        name = h.get("name")
        value = h.get("value")
        if name is None or value is None:
            continue
        result[str(name)] = str(value)
    return result or None


def _parse_har_datetime(dt_string: str) -> Optional[datetime]:
    """
    Parse ISO 8601 datetime string from HAR startedDateTime.

    HAR uses ISO 8601 format (e.g., "2026-01-12T23:47:41.253Z").
    Returns None if parsing fails.
    """
    if not dt_string or not isinstance(dt_string, str):
        return None
    try:
        cleaned = dt_string.replace("Z", "+00:00")
        return datetime.fromisoformat(cleaned)
    except (ValueError, TypeError):
        return None


def _number(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    try:
        number = float(value)
    except OverflowError:
        return default
    return number if math.isfinite(number) else default


def _phase(value: Any) -> float:
    """HAR uses -1 for phases that do not apply."""
    return max(_number(value), 0.0)


def _initiator(entry: Dict[str, Any]) -> str:
    initiator = entry.get("_initiator")
    if isinstance(initiator, str) and initiator:
        return initiator
    # Chromium exports _initiator as an object and the resource type separately
    if isinstance(initiator, dict) and entry.get("_resourceType"):
        return str(entry["_resourceType"])
    return str(entry.get("_resourceType") or "other")


def _start_time(
    entry: Dict[str, Any],
    page_started: Optional[datetime],
) -> float:
    if "_startTime" in entry:
        return _number(entry["_startTime"])
    entry_started = _parse_har_datetime(entry.get("startedDateTime", ""))
    if entry_started and page_started:
        try:
            return max((entry_started - page_started).total_seconds() * 1000, 0.0)
        except TypeError:
            # naive vs aware timestamps
            return 0.0
    return 0.0


def _annotations(entry: Dict[str, Any], field_name: str, factory) -> list:
    items = entry.get(field_name) or []
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list):
        raise InterchangeFormatError(f"'{field_name}' must be a list")
    return [factory(item) for item in items if isinstance(item, dict)]


def _entry_to_record(
    entry: Any,
    idx: int,
    page_url: str,
    page_started: Optional[datetime],
) -> EnrichedRequestRecord:
    if not isinstance(entry, dict):
        raise InterchangeFormatError(f"Entry {idx} must be an object, got {type(entry).__name__}")

    request = entry.get("request")
    response = entry.get("response")
    if not isinstance(request, dict) or not isinstance(response, dict):
        raise InterchangeFormatError(f"Entry {idx} must contain 'request' and 'response' objects")

    url = request.get("url")
    if not url or not isinstance(url, str):
        raise InterchangeFormatError(f"Entry {idx} request has no 'url'")

    timings = entry.get("timings")
    if not isinstance(timings, dict):
        raise InterchangeFormatError(f"Entry {idx} must contain a 'timings' object")
    content = response.get("content") if isinstance(response.get("content"), dict) else {}

    start_time = _start_time(entry, page_started)
    phases = {attr: _phase(timings.get(har)) for har, attr in _TIMING_FIELDS.items()}
    duration = _number(entry.get("time"), default=sum(phases.values()))

    status = response.get("status")
    status_code = None
    if isinstance(status, (int, float)) and not isinstance(status, bool) and math.isfinite(status) and status > 0:
        status_code = int(status)

    transfer_size = response.get("_transferSize", response.get("bodySize"))
    post_data = request.get("postData") if isinstance(request.get("postData"), dict) else None

    third_party = entry.get("_isThirdParty")
    if not isinstance(third_party, bool):
        third_party = is_third_party(url, page_url)

    comparison = entry.get("_baselineComparison")
    try:
        baseline_comparison = (
            RegressionResult.from_dict(comparison) if isinstance(comparison, dict) else None
        )
        insights = _annotations(entry, "_aiInsights", Insight.from_dict)
        findings = _annotations(entry, "_securityDetails", SecurityFinding.from_dict)
        costs = _annotations(entry, "_costEstimates", CostEstimate.from_dict)
    except (KeyError, TypeError, ValueError) as exc:
        raise InterchangeFormatError(f"Entry {idx} has malformed annotation data: {exc}") from exc

    return EnrichedRequestRecord(
        id=str(entry.get("_id") or RequestKey(url, start_time).as_id()),
        name=url,
        initiator_type=_initiator(entry),
        start_time=start_time,
        duration=duration,
        transfer_size=max(_number(transfer_size), 0.0),
        encoded_body_size=max(_number(response.get("bodySize")), 0.0),
        decoded_body_size=max(_number(content.get("size")), 0.0),
        is_third_party=third_party,
        cache_hit=entry.get("_cacheHit") if isinstance(entry.get("_cacheHit"), bool) else None,
        critical_path=(
            entry.get("_criticalPath") if isinstance(entry.get("_criticalPath"), bool) else None
        ),
        method=str(request.get("method") or "GET").upper(),
        status_code=status_code,
        status_text=response.get("statusText") or None,
        protocol=response.get("httpVersion") or request.get("httpVersion") or None,
        priority=entry.get("_priority") or None,
        server_ip_address=entry.get("serverIPAddress") or None,
        request_headers=_headers_list_to_dict(request.get("headers")),
        response_headers=_headers_list_to_dict(response.get("headers")),
        request_payload=post_data.get("text") if post_data else None,
        response_payload=content.get("text"),
        insights=insights,
        security_findings=findings,
        cost_estimates=costs,
        baseline_comparison=baseline_comparison,
        **phases,
    )


# ============================================================
# File I/O
# ============================================================

def load_har_file(har_path: str) -> Dict[str, Any]:
    """
    Load, parse, and validate basic HAR JSON structure.

    Includes a file size guard:
    - Warns if file > 50MB
    - Rejects if file > 200MB

    Raises:
        FileNotFoundError: If file does not exist.
        ValueError: If file exceeds size limit or is not valid JSON.
        InterchangeFormatError: If the JSON lacks 'log.entries'.
    """
    if not os.path.isfile(har_path):
        raise FileNotFoundError(f"HAR file not found: {har_path}")

    file_size = os.path.getsize(har_path)

    if file_size > _MAX_HAR_FILE_SIZE_BYTES:
        raise ValueError(
            f"HAR file too large ({file_size / (1024*1024):.1f} MB). "
            f"Maximum supported size is {_MAX_HAR_FILE_SIZE_BYTES / (1024*1024):.0f} MB."
        )

    if file_size > _WARN_HAR_FILE_SIZE_BYTES:
        logger.warning(
            "Large HAR file: %.1f MB, parsing may take a moment",
            file_size / (1024 * 1024),
        )

    try:
        with open(har_path, "r", encoding="utf-8", errors="replace") as f:
            har_data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in HAR file: {exc}") from exc

    _require_log(har_data)
    return har_data


def write_har_file(
    document: Dict[str, Any],
    session_id: str,
    artifacts_path: str,
    timestamp: Optional[str] = None,
) -> str:
    """
    Write a HAR document to disk.

    Layout:
        <artifacts_path>/<session_id>/netperf/network_<timestamp>.har

    Returns:
        The full path to the written file.
    """
    if timestamp is None:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    base_dir = os.path.join(artifacts_path, str(session_id), "netperf")
    os.makedirs(base_dir, exist_ok=True)
    output_path = os.path.join(base_dir, f"network_{timestamp}.har")

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, ensure_ascii=False)

    logger.info("HAR written: %s", output_path)
    return output_path
