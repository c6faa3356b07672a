"""
metric_export.py

Flattens enriched request records into (name, value, tags) triples for an
external metric exporter (Datadog, New Relic, ...). Formatting for a
specific backend is the exporter's concern.
"""

from typing import Dict, List, Sequence, Tuple

from services.models import EnrichedRequestRecord

MetricTriple = Tuple[str, float, Dict[str, str]]

METRIC_PREFIX = "netperf.request"

_PHASE_METRICS = (
    ("dns_lookup", "dns_lookup_duration"),
    ("tcp_handshake", "tcp_handshake_duration"),
    ("ssl_handshake", "ssl_handshake_duration"),
    ("ttfb", "time_to_first_byte"),
    ("download", "download_duration"),
)


def record_tags(record: EnrichedRequestRecord) -> Dict[str, str]:
    return {
        "resource_name": record.name,
        "initiator_type": record.initiator_type,
        "status_code": str(record.status_code) if record.status_code is not None else "unknown",
        "is_third_party": "true" if record.is_third_party else "false",
    }


def metric_series(
    records: Sequence[EnrichedRequestRecord],
    include_phases: bool = True,
) -> List[MetricTriple]:
    """Return the metric triples for every record, in record order."""
    series: List[MetricTriple] = []
    for record in records:
        tags = record_tags(record)
        series.append((f"{METRIC_PREFIX}.duration", record.duration, tags))
        series.append((f"{METRIC_PREFIX}.transfer_size", record.transfer_size, dict(tags)))
        if include_phases:
            for metric, attr in _PHASE_METRICS:
                series.append((f"{METRIC_PREFIX}.{metric}", getattr(record, attr), dict(tags)))
    return series
