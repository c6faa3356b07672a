# netperf.py
# Network request telemetry MCP server: ingests resource-timing events from a
# browser capture, compares them against saved baselines and exports HAR.
from fastmcp import FastMCP, Context    # ✅ FastMCP 2.x import
from typing import Optional, List, Dict, Any
from dataclasses import replace
from dotenv import load_dotenv
import logging
import os
import sys

from services import CaptureSession, __version__
from services.baseline_store import BaselineStore
from services.har_adapter import InterchangeFormatError, load_har_file, write_har_file
from services.models import Insight, SecurityFinding, SortDirection, SortKey
from services.regression_detector import regression_alerts
from services.request_filters import FilterCriteria
from utils.config import build_engine_settings, load_config

load_dotenv()   # Load environment variables from .env file such as API keys and secrets

CONFIG = load_config()
SETTINGS = build_engine_settings(CONFIG)
ARTIFACTS_PATH = CONFIG.get('artifacts', {}).get('artifacts_path', 'artifacts')
VERBOSE = bool(CONFIG.get('logging', {}).get('verbose', False))

# === Set up logging ===
def setup_logging(verbose: bool) -> None:
    log_level = logging.INFO if verbose else logging.WARNING

    # stdout carries the MCP stdio transport, so log records go to stderr
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    for name in ("services", __name__):
        pkg_logger = logging.getLogger(name)
        pkg_logger.setLevel(log_level)
        if not pkg_logger.handlers:
            pkg_logger.addHandler(handler)
        pkg_logger.propagate = False


setup_logging(VERBOSE)
logger = logging.getLogger(__name__)

mcp = FastMCP(name="netperf")

# Snapshots are shared by every session so runs can be compared with each other
BASELINES = BaselineStore()
_SESSIONS: Dict[str, CaptureSession] = {}


def _get_session(session_id: str, page_url: Optional[str] = None) -> CaptureSession:
    session = _SESSIONS.get(session_id)
    if session is None:
        settings = replace(SETTINGS, page_url=page_url) if page_url else SETTINGS
        session = CaptureSession(settings, baseline_store=BASELINES, session_id=session_id)
        _SESSIONS[session_id] = session
    elif page_url and not session.settings.page_url:
        # Created by set_baseline/import_har before the page was known
        session.settings = replace(session.settings, page_url=page_url)
    return session


def _alerts_payload(alerts) -> List[Dict[str, Any]]:
    return [{"request_id": request_id, **result.to_dict()} for request_id, result in alerts]


async def _report_alerts(alerts, ctx: Context) -> None:
    if alerts and ctx:
        await ctx.warning(f"{len(alerts)} request(s) regressed against the baseline")


async def _failed(message: str, ctx: Context) -> Dict[str, Any]:
    if ctx:
        await ctx.error(message)
    return {"error": message, "status": "failed"}

# ----------------------------------------------------------
# Capture Tools
# ----------------------------------------------------------

@mcp.tool()
async def ingest_timing_events(
    session_id: str,
    events: List[Dict[str, Any]],
    page_url: Optional[str] = None,
    ctx: Context = None,
) -> Dict[str, Any]:
    """
    Ingests a batch of raw resource-timing events into a capture session.

    Events already seen by the session (same name and start time) are ignored,
    so re-sending an overlapping batch is safe.

    Args:
        session_id (str): Capture session identifier (created on first use).
        events (list): Raw resource-timing events (camelCase or snake_case keys).
        page_url (str, optional): URL of the monitored page; applied when the session has none yet.
        ctx (Context, optional): FastMCP context for progress and error reporting.

    Returns:
        dict: The newly created request records and any regression alerts.
    """
    try:
        session = _get_session(session_id, page_url)
        new_records = session.ingest(events)
    except Exception as e:
        return await _failed(f"Failed to ingest timing events: {e}", ctx)

    alerts = regression_alerts(new_records)
    await _report_alerts(alerts, ctx)
    if ctx:
        await ctx.info(f"Ingested {len(new_records)} new request(s) into session '{session_id}'")

    return {
        "session_id": session_id,
        "ingested": len(new_records),
        "total_requests": len(session),
        "requests": [r.to_dict() for r in new_records],
        "alerts": _alerts_payload(alerts),
        "status": "success",
    }


@mcp.tool()
async def update_navigation_metrics(session_id: str, metrics: Dict[str, Any], ctx: Context = None) -> Dict[str, Any]:
    """
    Records page-level navigation metrics (DOMContentLoaded, load, paint timings).

    Args:
        session_id (str): Capture session identifier.
        metrics (dict): Navigation metrics (domContentLoaded, load, firstContentfulPaint, ...).
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: The stored navigation metrics.
    """
    try:
        stored = _get_session(session_id).update_navigation_metrics(metrics)
    except Exception as e:
        return await _failed(f"Failed to update navigation metrics: {e}", ctx)
    return {"session_id": session_id, "navigation_metrics": stored.to_dict(), "status": "success"}


@mcp.tool()
async def list_requests(
    session_id: str,
    filters: Optional[Dict[str, Any]] = None,
    sort_key: Optional[str] = None,
    sort_direction: Optional[str] = None,
    limit: Optional[int] = None,
    ctx: Context = None,
) -> Dict[str, Any]:
    """
    Lists the requests of a session, filtered and sorted for display.

    Args:
        session_id (str): Capture session identifier.
        filters (dict, optional): search, initiator_type, domain, status_group,
            min/max_duration_ms, min/max_size_bytes, third_party, cache_status.
        sort_key (str, optional): name, initiator_type, domain, priority, transfer_size,
            duration, status_code or start_time. Defaults to the configured key.
        sort_direction (str, optional): 'asc' or 'desc'.
        limit (int, optional): Maximum number of requests to return.
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: Matching requests in display order.
    """
    if session_id not in _SESSIONS:
        return await _failed(f"Unknown session: '{session_id}'", ctx)

    try:
        criteria = FilterCriteria.from_dict(filters)
        key = SortKey(sort_key) if sort_key else None
        direction = SortDirection(sort_direction.lower()) if sort_direction else None
    except ValueError as e:
        return await _failed(f"Invalid filter or sort option: {e}", ctx)

    session = _SESSIONS[session_id]
    records = session.view(criteria, key, direction)
    matched = len(records)
    if limit is not None and limit >= 0:
        records = records[:limit]

    return {
        "session_id": session_id,
        "total_requests": len(session),
        "matched": matched,
        "requests": [r.to_dict() for r in records],
        "status": "success",
    }


@mcp.tool()
async def get_request_summary(session_id: str, ctx: Context = None) -> Dict[str, Any]:
    """
    Summarizes a session: totals, slowest request, domains and a per-type breakdown.

    Args:
        session_id (str): Capture session identifier.
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: Summary statistics and navigation metrics.
    """
    session = _SESSIONS.get(session_id)
    if session is None:
        return await _failed(f"Unknown session: '{session_id}'", ctx)

    metrics = session.navigation_metrics
    return {
        "session_id": session_id,
        "summary": session.summary(),
        "navigation_metrics": metrics.to_dict() if metrics else None,
        "active_baseline": session.active_baseline_id,
        "status": "success",
    }

# ----------------------------------------------------------
# Baseline Tools
# ----------------------------------------------------------

@mcp.tool()
async def save_baseline(session_id: str, snapshot_id: str, ctx: Context = None) -> Dict[str, Any]:
    """
    Saves the current requests of a session as a named baseline snapshot.

    Args:
        session_id (str): Capture session identifier.
        snapshot_id (str): Name of the snapshot (overwrites an existing one).
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: Snapshot id and number of requests saved.
    """
    session = _SESSIONS.get(session_id)
    if session is None:
        return await _failed(f"Unknown session: '{session_id}'", ctx)
    try:
        count = session.save_snapshot(snapshot_id)
    except ValueError as e:
        return await _failed(str(e), ctx)

    if ctx:
        await ctx.info(f"Saved baseline '{snapshot_id}' with {count} request(s)")
    return {"snapshot_id": snapshot_id, "request_count": count, "snapshots": BASELINES.list_snapshots(), "status": "success"}


@mcp.tool()
async def set_baseline(session_id: str, snapshot_id: Optional[str] = None, ctx: Context = None) -> Dict[str, Any]:
    """
    Sets (or clears, when snapshot_id is omitted) the active baseline of a session.

    While a baseline is active, newly ingested requests are compared against it.

    Args:
        session_id (str): Capture session identifier.
        snapshot_id (str, optional): Saved snapshot to use.
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: The active baseline id.
    """
    try:
        session = _get_session(session_id)
        session.set_active_baseline(snapshot_id)
    except ValueError as e:
        return await _failed(str(e), ctx)
    return {"session_id": session_id, "active_baseline": session.active_baseline_id, "status": "success"}


@mcp.tool()
async def compare_to_baseline(session_id: str, snapshot_id: Optional[str] = None, ctx: Context = None) -> Dict[str, Any]:
    """
    Compares every request of a session against a baseline snapshot.

    Args:
        session_id (str): Capture session identifier.
        snapshot_id (str, optional): Snapshot to compare against; defaults to the active baseline.
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: Per-status counts, the comparison for every request and the regression alerts.
    """
    session = _SESSIONS.get(session_id)
    if session is None:
        return await _failed(f"Unknown session: '{session_id}'", ctx)
    try:
        alerts = session.compare_to_baseline(snapshot_id)
    except ValueError as e:
        return await _failed(str(e), ctx)

    await _report_alerts(alerts, ctx)

    comparisons = []
    status_counts: Dict[str, int] = {}
    for record in session.records:
        result = record.baseline_comparison
        status = result.status.value if result else "unmatched"
        status_counts[status] = status_counts.get(status, 0) + 1
        comparisons.append({"request_id": record.id, "comparison": result.to_dict() if result else None})

    return {
        "session_id": session_id,
        "baseline": snapshot_id or session.active_baseline_id,
        "status_counts": status_counts,
        "comparisons": comparisons,
        "alerts": _alerts_payload(alerts),
        "status": "success",
    }

# ----------------------------------------------------------
# HAR Tools
# ----------------------------------------------------------

@mcp.tool()
async def export_har(session_id: str, write_file: bool = True, ctx: Context = None) -> Dict[str, Any]:
    """
    Exports a session to a HAR 1.2 document, annotations included.

    Args:
        session_id (str): Capture session identifier.
        write_file (bool): Also write the HAR under artifacts/<session_id>/netperf/.
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: Entry count, the file path (if written) and the document itself.
    """
    session = _SESSIONS.get(session_id)
    if session is None:
        return await _failed(f"Unknown session: '{session_id}'", ctx)

    try:
        document = session.export_interchange()
        har_path = write_har_file(document, session_id, ARTIFACTS_PATH) if write_file else None
    except OSError as e:
        return await _failed(f"Failed to write HAR file: {e}", ctx)

    if ctx and har_path:
        await ctx.info(f"HAR exported: {har_path}")
    return {
        "session_id": session_id,
        "entry_count": len(document["log"]["entries"]),
        "har_path": har_path,
        "har": document,
        "status": "success",
    }


@mcp.tool()
async def import_har(
    session_id: str,
    har_path: Optional[str] = None,
    har: Optional[Dict[str, Any]] = None,
    ctx: Context = None,
) -> Dict[str, Any]:
    """
    Replaces the requests of a session with the entries of a HAR document.

    Pending annotation work for the replaced requests is abandoned.

    Args:
        session_id (str): Capture session identifier (created if needed).
        har_path (str, optional): Path to a .har file.
        har (dict, optional): An inline HAR document (used when har_path is not given).
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: Number of imported requests.
    """
    if not har_path and har is None:
        return await _failed("Either 'har_path' or 'har' must be provided.", ctx)

    try:
        document = load_har_file(har_path) if har_path else har
        records = _get_session(session_id).import_interchange(document)
    except (FileNotFoundError, InterchangeFormatError, ValueError) as e:
        return await _failed(f"Failed to import HAR: {e}", ctx)

    if ctx:
        await ctx.info(f"Imported {len(records)} request(s) into session '{session_id}'")
    return {"session_id": session_id, "imported": len(records), "status": "success"}

# ----------------------------------------------------------
# Annotation Tools
# ----------------------------------------------------------

@mcp.tool()
async def attach_insight(session_id: str, request_id: str, insight: Dict[str, Any], ctx: Context = None) -> Dict[str, Any]:
    """
    Attaches an externally produced insight to one request.

    Args:
        session_id (str): Capture session identifier.
        request_id (str): Request id as returned by list_requests.
        insight (dict): provider_id, model, category, message, score, suggested_action, ...
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: Whether the insight was attached (False for duplicates or unknown requests).
    """
    session = _SESSIONS.get(session_id)
    if session is None:
        return await _failed(f"Unknown session: '{session_id}'", ctx)
    try:
        attached = session.attach(request_id, Insight.from_dict(insight))
    except (KeyError, TypeError, ValueError) as e:
        return await _failed(f"Invalid insight: {e}", ctx)
    return {"request_id": request_id, "attached": attached, "status": "success"}


@mcp.tool()
async def attach_security_finding(
    session_id: str, request_id: str, finding: Dict[str, Any], ctx: Context = None,
) -> Dict[str, Any]:
    """
    Attaches an externally produced security finding to one request.

    Args:
        session_id (str): Capture session identifier.
        request_id (str): Request id as returned by list_requests.
        finding (dict): provider_id, finding_type, severity, description, ...
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: Whether the finding was attached (False for duplicates or unknown requests).
    """
    session = _SESSIONS.get(session_id)
    if session is None:
        return await _failed(f"Unknown session: '{session_id}'", ctx)
    try:
        attached = session.attach_security_finding(request_id, SecurityFinding.from_dict(finding))
    except (KeyError, TypeError, ValueError) as e:
        return await _failed(f"Invalid security finding: {e}", ctx)
    return {"request_id": request_id, "attached": attached, "status": "success"}


@mcp.tool()
async def request_annotations(
    session_id: str,
    request_ids: Optional[List[str]] = None,
    wait: bool = True,
    ctx: Context = None,
) -> Dict[str, Any]:
    """
    Runs the enabled annotation providers (AI explanation, mixed-content scan,
    cost estimate) for the requests of a session.

    Args:
        session_id (str): Capture session identifier.
        request_ids (list, optional): Requests to annotate; defaults to all.
        wait (bool): Wait for the providers to finish before returning.
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: Number of scheduled provider calls and the pending count.
    """
    session = _SESSIONS.get(session_id)
    if session is None:
        return await _failed(f"Unknown session: '{session_id}'", ctx)

    providers = session.default_providers(os.getenv("OPENAI_API_KEY"))
    if not providers:
        return await _failed("All annotation providers are disabled in config.", ctx)

    tasks = session.request_annotations(providers, request_ids)
    if ctx:
        await ctx.info(f"Scheduled {len(tasks)} annotation call(s) for session '{session_id}'")
    if wait:
        await session.drain_annotations()

    return {
        "session_id": session_id,
        "scheduled": len(tasks),
        "pending": session.pending_annotations,
        "status": "success",
    }

# ----------------------------------------------------------
# Export & Lifecycle Tools
# ----------------------------------------------------------

@mcp.tool()
async def get_metric_series(session_id: str, include_phases: bool = True, ctx: Context = None) -> Dict[str, Any]:
    """
    Flattens a session into (metric, value, tags) points for a metric exporter.

    Args:
        session_id (str): Capture session identifier.
        include_phases (bool): Include per-phase timings (dns, tcp, ssl, ttfb, download).
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: List of metric points.
    """
    session = _SESSIONS.get(session_id)
    if session is None:
        return await _failed(f"Unknown session: '{session_id}'", ctx)

    series = session.metric_series(include_phases)
    return {
        "session_id": session_id,
        "points": [{"metric": name, "value": value, "tags": tags} for name, value, tags in series],
        "status": "success",
    }


@mcp.tool()
async def close_session(session_id: str, ctx: Context = None) -> Dict[str, Any]:
    """
    Closes a capture session; pending annotation work is abandoned.

    Saved baseline snapshots are kept.

    Args:
        session_id (str): Capture session identifier.
        ctx (Context, optional): FastMCP context.

    Returns:
        dict: Closure status.
    """
    session = _SESSIONS.pop(session_id, None)
    if session is None:
        return await _failed(f"Unknown session: '{session_id}'", ctx)
    session.close()
    return {"session_id": session_id, "closed": True, "status": "success"}

# -----------------------------
# NetPerf MCP entry point
# -----------------------------
if __name__ == "__main__":
    logger.info("Starting netperf MCP v%s", __version__)
    try:
        mcp.run("stdio")
    except KeyboardInterrupt:
        print("Shutting down NetPerf MCP…")
