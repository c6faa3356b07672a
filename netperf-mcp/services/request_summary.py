# services/request_summary.py
from typing import Any, Dict, Sequence

import pandas as pd

from services.enrichment import extract_hostname
from services.models import EnrichedRequestRecord


def _to_native(value):
    """Convert numpy scalars to plain Python numbers for JSON output"""
    if hasattr(value, "item"):
        return value.item()
    return value


def summarize_requests(records: Sequence[EnrichedRequestRecord]) -> Dict[str, Any]:
    """
    Summary statistics for a request set: totals, slowest request,
    distinct types/domains and a per-type breakdown.
    """
    if not records:
        return {
            "request_count": 0,
            "total_transfer_size": 0.0,
            "total_duration": 0.0,
            "max_duration": 0.0,
            "third_party_count": 0,
            "request_types": [],
            "domains": [],
            "by_type": {},
        }

    df = pd.DataFrame({
        "initiator_type": [r.initiator_type for r in records],
        "domain": [extract_hostname(r.name) or "unknown" for r in records],
        "duration": [r.duration for r in records],
        "transfer_size": [r.transfer_size for r in records],
        "finish": [r.start_time + r.duration for r in records],
        "is_third_party": [r.is_third_party for r in records],
    })

    by_type = {}
    for initiator_type, type_df in df.groupby("initiator_type", sort=True):
        by_type[initiator_type] = {
            "count": int(len(type_df)),
            "transfer_size": _to_native(type_df["transfer_size"].sum()),
            "avg_duration": _to_native(type_df["duration"].mean()),
            "p95_duration": _to_native(type_df["duration"].quantile(0.95)),
        }

    return {
        "request_count": int(len(df)),
        "total_transfer_size": _to_native(df["transfer_size"].sum()),
        # Page-level span: the latest finishing request
        "total_duration": _to_native(max(df["finish"].max(), 0.0)),
        "max_duration": _to_native(df["duration"].max()),
        "third_party_count": int(df["is_third_party"].sum()),
        "request_types": list(pd.unique(df["initiator_type"])),
        "domains": list(pd.unique(df["domain"])),
        "by_type": by_type,
    }
