"""
Network request telemetry engine for the netperf MCP server.

Ingests browser resource-timing events, enriches them into request records,
filters and sorts them for display, diffs them against saved baselines and
converts them to and from HAR documents.

Version: 0.1.0
License: MIT
Repository: https://github.com/canyonlabz/mcp-perf-suite
"""

__version__ = "0.1.0"

from .capture_session import CaptureSession

__all__ = ["CaptureSession"]
