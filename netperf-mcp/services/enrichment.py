"""
enrichment.py

Derives sub-phase timings and classification flags from raw resource-timing
events, producing EnrichedRequestRecord objects.

Every derived field is a pure function of the raw event (plus the page URL
used for third-party classification), so enriching the same event twice
always yields the same record. Enrichment never raises: negative or missing
phases are clamped to zero and absent metadata stays None.
"""

from typing import Optional
from urllib.parse import urlparse

from services.identity import request_key
from services.models import EnrichedRequestRecord, RawTimingEvent


def _span(end: float, start: float) -> float:
    """Difference clamped at zero; browsers report zeroed or coalesced phases."""
    return max(end - start, 0.0)


def extract_hostname(url: str) -> Optional[str]:
    """Return the lowercase hostname of `url`, or None if it has none."""
    if not url:
        return None
    try:
        hostname = urlparse(url.strip()).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def page_hostname(page_url: str) -> Optional[str]:
    """Like extract_hostname, but also accepts a bare host such as "example.com"."""
    hostname = extract_hostname(page_url)
    if hostname or not page_url or "://" in page_url:
        return hostname
    return extract_hostname("//" + page_url.strip())


def is_third_party(url: str, page_url: str) -> bool:
    """
    True unless the resource host equals the page host or is a subdomain of it.

    Malformed URLs (resource or page) are classified as third-party.
    """
    resource_host = extract_hostname(url)
    page_host = page_hostname(page_url)
    if not resource_host or not page_host:
        return True
    return resource_host != page_host and not resource_host.endswith("." + page_host)


def _critical_path(render_blocking_status: Optional[str]) -> Optional[bool]:
    if render_blocking_status is None:
        return None
    status = render_blocking_status.strip().lower()
    if status == "blocking":
        return True
    if status == "non-blocking":
        return False
    return None


def enrich_event(event: RawTimingEvent, page_url: str) -> EnrichedRequestRecord:
    """
    Build the enriched record for one raw timing event.

    Args:
        event: The raw resource-timing observation.
        page_url: URL of the monitored page, used for third-party detection.

    Returns:
        A new EnrichedRequestRecord with empty annotation slots.
    """
    if event.secure_connection_start > 0:
        ssl_handshake = _span(event.connect_end, event.secure_connection_start)
    else:
        ssl_handshake = 0.0

    if event.domain_lookup_start > 0:
        queueing = _span(event.domain_lookup_start, event.start_time)
    else:
        queueing = 0.0

    if event.connect_end > 0:
        send = _span(event.request_start, event.connect_end)
    else:
        send = 0.0

    return EnrichedRequestRecord(
        id=request_key(event).as_id(),
        name=event.name,
        initiator_type=event.initiator_type,
        start_time=event.start_time,
        duration=_span(event.response_end, event.start_time),
        transfer_size=max(event.transfer_size, 0.0),
        encoded_body_size=max(event.encoded_body_size, 0.0),
        decoded_body_size=max(event.decoded_body_size, 0.0),
        queueing_duration=queueing,
        dns_lookup_duration=_span(event.domain_lookup_end, event.domain_lookup_start),
        tcp_handshake_duration=_span(event.connect_end, event.connect_start),
        ssl_handshake_duration=ssl_handshake,
        send_duration=send,
        time_to_first_byte=_span(event.response_start, event.request_start),
        download_duration=_span(event.response_end, event.response_start),
        is_third_party=is_third_party(event.name, page_url),
        cache_hit=event.cache_hit,
        critical_path=_critical_path(event.render_blocking_status),
        method=event.method,
        status_code=event.status_code,
        status_text=event.status_text,
        protocol=event.protocol,
        priority=event.priority,
        server_ip_address=event.server_ip_address,
        request_headers=dict(event.request_headers) if event.request_headers else None,
        response_headers=dict(event.response_headers) if event.response_headers else None,
        request_payload=event.request_payload,
        response_payload=event.response_payload,
    )
