"""
request_filters.py

Composable filtering and stable sorting of enriched request records for display.

Both entry points are pure: they return new lists and never reorder or
mutate the records passed in.
"""

import locale
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from services.enrichment import extract_hostname
from services.models import (
    CacheStatus,
    EnrichedRequestRecord,
    SortDirection,
    SortKey,
    StatusGroup,
)

_STATUS_RANGES = {
    StatusGroup.SUCCESS: (200, 300),
    StatusGroup.REDIRECT: (300, 400),
    StatusGroup.CLIENT_ERROR: (400, 500),
    StatusGroup.SERVER_ERROR: (500, 600),
}

_STRING_SORT_KEYS = {SortKey.NAME, SortKey.INITIATOR_TYPE, SortKey.DOMAIN, SortKey.PRIORITY}

# Values the UI uses to mean "no constraint"
_UNSET_MARKERS = (None, "", "all")


@dataclass(frozen=True)
class FilterCriteria:
    """
    Optional display predicates. A field left as None places no constraint;
    all fields that are set must hold for a record to be kept.
    """
    search: Optional[str] = None
    initiator_type: Optional[str] = None
    domain: Optional[str] = None
    status_group: Optional[StatusGroup] = None
    min_duration_ms: Optional[float] = None
    max_duration_ms: Optional[float] = None
    min_size_bytes: Optional[float] = None
    max_size_bytes: Optional[float] = None
    third_party: Optional[bool] = None
    cache_status: Optional[CacheStatus] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FilterCriteria":
        """
        Build criteria from a loosely-typed filter mapping (MCP tool input).

        Missing keys, empty strings and "all" are treated as absent.

        Raises:
            ValueError: If a status group, cache status or numeric bound is invalid.
        """
        data = data or {}

        def value(*names: str) -> Any:
            for name in names:
                if data.get(name) not in _UNSET_MARKERS:
                    return data[name]
            return None

        def number(*names: str) -> Optional[float]:
            raw = value(*names)
            if raw is None:
                return None
            try:
                return float(raw)
            except (TypeError, ValueError):
                raise ValueError(f"Filter '{names[0]}' must be numeric, got: {raw!r}")

        third_party = value("third_party", "isThirdParty")
        if isinstance(third_party, str):
            third_party = third_party.strip().lower() == "true"

        status_group = value("status_group", "statusGroup")
        cache_status = value("cache_status", "cacheStatus")

        return cls(
            search=value("search"),
            initiator_type=value("initiator_type", "type"),
            domain=value("domain"),
            status_group=StatusGroup(_snake(status_group)) if status_group else None,
            min_duration_ms=number("min_duration_ms", "minDurationMs"),
            max_duration_ms=number("max_duration_ms", "maxDurationMs"),
            min_size_bytes=number("min_size_bytes", "minSizeB"),
            max_size_bytes=number("max_size_bytes", "maxSizeB"),
            third_party=third_party if third_party is None else bool(third_party),
            cache_status=CacheStatus(str(cache_status).lower()) if cache_status else None,
        )


def _snake(name: Any) -> str:
    """clientError -> client_error"""
    text = str(name)
    return "".join("_" + c.lower() if c.isupper() else c for c in text).lstrip("_")


# ============================================================
# Filtering
# ============================================================

def _matches_search(record: EnrichedRequestRecord, term: str) -> bool:
    needle = term.lower()
    haystacks = (record.name, record.initiator_type, record.server_ip_address or "")
    return any(needle in h.lower() for h in haystacks)


def _in_status_group(record: EnrichedRequestRecord, group: StatusGroup) -> bool:
    if record.status_code is None:
        return False
    low, high = _STATUS_RANGES[group]
    return low <= record.status_code < high


def _predicates(criteria: FilterCriteria) -> List[Callable[[EnrichedRequestRecord], bool]]:
    checks: List[Callable[[EnrichedRequestRecord], bool]] = []

    if criteria.search is not None:
        checks.append(lambda r: _matches_search(r, criteria.search))
    if criteria.initiator_type is not None:
        checks.append(lambda r: r.initiator_type == criteria.initiator_type)
    if criteria.domain is not None:
        domain = criteria.domain.lower()
        checks.append(lambda r: extract_hostname(r.name) == domain)
    if criteria.status_group is not None:
        checks.append(lambda r: _in_status_group(r, criteria.status_group))
    if criteria.min_duration_ms is not None:
        checks.append(lambda r: r.duration >= criteria.min_duration_ms)
    if criteria.max_duration_ms is not None:
        checks.append(lambda r: r.duration <= criteria.max_duration_ms)
    if criteria.min_size_bytes is not None:
        checks.append(lambda r: r.transfer_size >= criteria.min_size_bytes)
    if criteria.max_size_bytes is not None:
        checks.append(lambda r: r.transfer_size <= criteria.max_size_bytes)
    if criteria.third_party is not None:
        checks.append(lambda r: r.is_third_party == criteria.third_party)
    if criteria.cache_status is CacheStatus.HIT:
        checks.append(lambda r: r.cache_hit is True)
    elif criteria.cache_status is CacheStatus.MISS:
        checks.append(lambda r: r.cache_hit is False)

    return checks


def apply_filters(
    records: Sequence[EnrichedRequestRecord],
    criteria: Optional[FilterCriteria],
) -> List[EnrichedRequestRecord]:
    """Return the records satisfying every constraint set in `criteria`, in input order."""
    if criteria is None:
        return list(records)
    checks = _predicates(criteria)
    return [r for r in records if all(check(r) for check in checks)]


# ============================================================
# Sorting
# ============================================================

def _sort_value(record: EnrichedRequestRecord, key: SortKey) -> Any:
    if key is SortKey.DOMAIN:
        return extract_hostname(record.name)
    return getattr(record, key.value)


def sort_records(
    records: Sequence[EnrichedRequestRecord],
    key: SortKey,
    direction: SortDirection = SortDirection.DESC,
) -> List[EnrichedRequestRecord]:
    """
    Stable sort of `records` by `key`.

    Numeric keys compare numerically and string keys compare with the active
    locale's collation. Ties keep their input order in both directions.
    Records with no value for the key are placed last, in input order.
    """
    present = []
    missing = []
    for record in records:
        value = _sort_value(record, key)
        (missing if value is None else present).append((value, record))

    if key in _STRING_SORT_KEYS:
        sort_key = lambda item: locale.strxfrm(str(item[0]))
    else:
        sort_key = lambda item: item[0]

    # sorted() is stable, and reverse=True keeps equal items in input order
    ordered = sorted(present, key=sort_key, reverse=direction is SortDirection.DESC)
    return [record for _, record in ordered] + [record for _, record in missing]
