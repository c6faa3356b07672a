"""
annotation_providers.py

Built-in best-effort annotation providers.

A provider is an async callable that receives the subset of record fields
returned by provider_payload() and resolves to an annotation, a list of
annotations, or None. Providers never see or modify the record itself.
"""

from typing import Any, Dict, Optional
from urllib.parse import urlparse

from services.models import (
    CostEstimate,
    EnrichedRequestRecord,
    FindingSeverity,
    SecurityFinding,
)

_BYTES_PER_GB = 1024 ** 3

# Mixed content of these types is blocked by browsers; the rest is only flagged
_ACTIVE_CONTENT_TYPES = {"script", "link", "css", "iframe", "xmlhttprequest", "fetch"}


def provider_payload(record: EnrichedRequestRecord) -> Dict[str, Any]:
    """The fields an annotation provider is allowed to see."""
    return {
        "id": record.id,
        "name": record.name,
        "initiator_type": record.initiator_type,
        "duration": record.duration,
        "transfer_size": record.transfer_size,
        "status_code": record.status_code,
        "protocol": record.protocol,
        "is_third_party": record.is_third_party,
        "cache_hit": record.cache_hit,
        "time_to_first_byte": record.time_to_first_byte,
        "download_duration": record.download_duration,
    }


class CostEstimator:
    """Estimates delivery cost from transfer size and configured unit rates."""

    def __init__(
        self,
        cost_per_gb_usd: float,
        cost_per_request_usd: float,
        provider: str = "cdn",
        provider_id: str = "cost-estimator",
    ):
        self.cost_per_gb_usd = cost_per_gb_usd
        self.cost_per_request_usd = cost_per_request_usd
        self.provider = provider
        self.provider_id = provider_id

    async def __call__(self, payload: Dict[str, Any]) -> CostEstimate:
        transfer_size = float(payload.get("transfer_size") or 0.0)
        data_cost = round(transfer_size / _BYTES_PER_GB * self.cost_per_gb_usd, 10)
        # Cache hits and zero-byte transfers never reach the origin/CDN
        request_cost = self.cost_per_request_usd if transfer_size > 0 else 0.0
        return CostEstimate(
            provider_id=self.provider_id,
            provider=self.provider,
            data_transfer_cost_usd=data_cost,
            request_cost_usd=request_cost,
            total_cost_usd=round(data_cost + request_cost, 10),
        )


class MixedContentScanner:
    """Flags plain-http resources loaded by an https page."""

    provider_id = "mixed-content-scanner"

    def __init__(self, page_url: str):
        self.page_scheme = urlparse(page_url or "").scheme.lower()

    async def __call__(self, payload: Dict[str, Any]) -> Optional[SecurityFinding]:
        if self.page_scheme != "https":
            return None
        url = str(payload.get("name") or "")
        if urlparse(url).scheme.lower() != "http":
            return None

        initiator = str(payload.get("initiator_type") or "").lower()
        active = initiator in _ACTIVE_CONTENT_TYPES
        return SecurityFinding(
            provider_id=self.provider_id,
            finding_type="mixed-content",
            severity=FindingSeverity.CRITICAL if active else FindingSeverity.WARNING,
            description=(
                f"Insecure {'active' if active else 'passive'} content loaded over http "
                f"by an https page"
            ),
            blocked_uri=url if active else None,
            directive="block-all-mixed-content" if active else None,
        )
