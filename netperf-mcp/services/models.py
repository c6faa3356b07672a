"""
models.py

Data model for the network request telemetry engine.

Contains:
- RawTimingEvent: one immutable resource-timing observation from the capture source
- RequestKey: identity used for deduplication and baseline matching
- EnrichedRequestRecord: the structured request record shown to users
- Annotation variants (Insight, SecurityFinding, CostEstimate)
- RegressionResult and NavigationMetrics
- Enums shared by the filter, sort and regression modules

This module is stateless and has no side effects.
"""

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, NamedTuple, Optional, Tuple


# ============================================================
# Enums
# ============================================================

class RegressionStatus(Enum):
    """Direction of a metric change relative to the baseline."""
    IMPROVED = "improved"
    REGRESSED = "regressed"
    NEUTRAL = "neutral"


class AlertLevel(Enum):
    """Alert severity attached to a baseline comparison."""
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


class InsightCategory(Enum):
    PERFORMANCE_BOTTLENECK = "PerformanceBottleneck"
    OPTIMIZATION_SUGGESTION = "OptimizationSuggestion"
    SECURITY_RISK = "SecurityRisk"
    ANOMALY_DETECTION = "AnomalyDetection"
    EXPLANATION = "Explanation"
    COST_IMPLICATION = "CostImplication"


class FindingSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class SortKey(Enum):
    NAME = "name"
    INITIATOR_TYPE = "initiator_type"
    DOMAIN = "domain"
    PRIORITY = "priority"
    TRANSFER_SIZE = "transfer_size"
    DURATION = "duration"
    STATUS_CODE = "status_code"
    START_TIME = "start_time"


class SortDirection(Enum):
    ASC = "asc"
    DESC = "desc"


class StatusGroup(Enum):
    """HTTP status-code buckets used by the filter engine."""
    SUCCESS = "success"
    REDIRECT = "redirect"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"


class CacheStatus(Enum):
    HIT = "hit"
    MISS = "miss"


# ============================================================
# Coercion helpers
# ============================================================

def _to_float(value: Any) -> float:
    """Coerce a timestamp/size to a finite float; anything unusable becomes 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def _to_optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _to_status_code(value: Any) -> Optional[int]:
    """HTTP status; 0 and below mean the browser did not expose one."""
    code = _to_optional_int(value)
    return code if code is not None and code > 0 else None


def _to_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def _to_optional_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "hit", "yes", "1"):
            return True
        if lowered in ("false", "miss", "no", "0"):
            return False
    return None


def _to_headers(value: Any) -> Optional[Dict[str, str]]:
    """Accept a {name: value} mapping or a HAR-style [{name, value}] list."""
    if isinstance(value, dict):
        headers = {str(k): str(v) for k, v in value.items() if v is not None}
    elif isinstance(value, list):
        headers = {}
        for item in value:
            if not isinstance(item, dict):
                continue
            name = item.get("name")
            if name is None or item.get("value") is None:
                continue
            headers[str(name)] = str(item["value"])
    else:
        return None
    return headers or None


def _pick(data: Dict[str, Any], *names: str) -> Any:
    """Return the first present value among camelCase/snake_case aliases."""
    for name in names:
        if name in data:
            return data[name]
    return None


# ============================================================
# Identity
# ============================================================

class RequestKey(NamedTuple):
    """Identity of one observed load: the same URL loaded twice gets two keys."""
    name: str
    start_time: float

    def as_id(self) -> str:
        return f"{self.name}@{self.start_time!r}"


# ============================================================
# Raw capture input
# ============================================================

@dataclass(frozen=True)
class RawTimingEvent:
    """
    One resource-timing observation as delivered by the capture source.

    Timestamps are milliseconds relative to the page's time origin. Transport
    metadata is optional; the browser's resource-timing API alone does not
    supply it.
    """
    name: str
    initiator_type: str = "other"
    start_time: float = 0.0
    domain_lookup_start: float = 0.0
    domain_lookup_end: float = 0.0
    connect_start: float = 0.0
    connect_end: float = 0.0
    secure_connection_start: float = 0.0
    request_start: float = 0.0
    response_start: float = 0.0
    response_end: float = 0.0
    transfer_size: float = 0.0
    encoded_body_size: float = 0.0
    decoded_body_size: float = 0.0
    method: str = "GET"
    status_code: Optional[int] = None
    status_text: Optional[str] = None
    protocol: Optional[str] = None
    priority: Optional[str] = None
    cache_hit: Optional[bool] = None
    render_blocking_status: Optional[str] = None
    server_ip_address: Optional[str] = None
    request_headers: Optional[Dict[str, str]] = None
    response_headers: Optional[Dict[str, str]] = None
    request_payload: Optional[str] = None
    response_payload: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawTimingEvent":
        """
        Build an event from a capture-source payload.

        Accepts the browser's PerformanceResourceTiming attribute names
        (startTime, domainLookupStart, nextHopProtocol, responseStatus, ...)
        as well as their snake_case equivalents. Never raises on bad values:
        unusable timestamps become 0.0 and unusable metadata becomes None.
        """
        if not isinstance(data, dict):
            data = {}

        method = _to_optional_str(_pick(data, "method")) or "GET"
        return cls(
            name=str(_pick(data, "name", "url") or ""),
            initiator_type=str(_pick(data, "initiatorType", "initiator_type") or "other"),
            start_time=_to_float(_pick(data, "startTime", "start_time")),
            domain_lookup_start=_to_float(_pick(data, "domainLookupStart", "domain_lookup_start")),
            domain_lookup_end=_to_float(_pick(data, "domainLookupEnd", "domain_lookup_end")),
            connect_start=_to_float(_pick(data, "connectStart", "connect_start")),
            connect_end=_to_float(_pick(data, "connectEnd", "connect_end")),
            secure_connection_start=_to_float(
                _pick(data, "secureConnectionStart", "secure_connection_start")
            ),
            request_start=_to_float(_pick(data, "requestStart", "request_start")),
            response_start=_to_float(_pick(data, "responseStart", "response_start")),
            response_end=_to_float(_pick(data, "responseEnd", "response_end")),
            transfer_size=_to_float(_pick(data, "transferSize", "transfer_size")),
            encoded_body_size=_to_float(_pick(data, "encodedBodySize", "encoded_body_size")),
            decoded_body_size=_to_float(_pick(data, "decodedBodySize", "decoded_body_size")),
            method=method.upper(),
            status_code=_to_status_code(
                _pick(data, "statusCode", "status_code", "responseStatus", "status")
            ),
            status_text=_to_optional_str(_pick(data, "statusText", "status_text")),
            protocol=_to_optional_str(_pick(data, "protocol", "nextHopProtocol", "next_hop_protocol")),
            priority=_to_optional_str(_pick(data, "priority")),
            cache_hit=_to_optional_bool(_pick(data, "cacheHit", "cache_hit")),
            render_blocking_status=_to_optional_str(
                _pick(data, "renderBlockingStatus", "render_blocking_status")
            ),
            server_ip_address=_to_optional_str(
                _pick(data, "serverIpAddress", "server_ip_address", "serverIPAddress")
            ),
            request_headers=_to_headers(_pick(data, "requestHeaders", "request_headers")),
            response_headers=_to_headers(_pick(data, "responseHeaders", "response_headers")),
            request_payload=_to_optional_str(_pick(data, "requestPayload", "request_payload")),
            response_payload=_to_optional_str(_pick(data, "responsePayload", "response_payload")),
        )


# ============================================================
# Annotations (tagged variants)
# ============================================================

@dataclass(frozen=True)
class Insight:
    """Asynchronously produced analysis of a single request."""
    kind: ClassVar[str] = "insight"

    provider_id: str
    model: str
    category: InsightCategory
    message: str
    score: Optional[float] = None
    details: Optional[str] = None
    suggested_action: Optional[str] = None
    related_requests: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["related_requests"] = list(self.related_requests)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Insight":
        return cls(
            provider_id=str(data.get("provider_id") or "unknown"),
            model=str(data.get("model") or "unknown"),
            category=InsightCategory(data.get("category", InsightCategory.EXPLANATION.value)),
            message=str(data.get("message", "")),
            score=data.get("score"),
            details=data.get("details"),
            suggested_action=data.get("suggested_action"),
            related_requests=tuple(data.get("related_requests") or ()),
        )


@dataclass(frozen=True)
class SecurityFinding:
    """A security scanner result (CSP violation, mixed content, ...)."""
    kind: ClassVar[str] = "security"

    provider_id: str
    finding_type: str
    severity: FindingSeverity
    description: str
    blocked_uri: Optional[str] = None
    directive: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecurityFinding":
        return cls(
            provider_id=str(data.get("provider_id") or "unknown"),
            finding_type=str(data.get("finding_type") or "unspecified"),
            severity=FindingSeverity(data.get("severity", FindingSeverity.WARNING.value)),
            description=str(data.get("description", "")),
            blocked_uri=data.get("blocked_uri"),
            directive=data.get("directive"),
        )


@dataclass(frozen=True)
class CostEstimate:
    """Estimated delivery cost of one resource."""
    kind: ClassVar[str] = "cost"

    provider_id: str
    provider: str
    data_transfer_cost_usd: float
    request_cost_usd: float
    total_cost_usd: float
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CostEstimate":
        return cls(
            provider_id=str(data.get("provider_id") or "unknown"),
            provider=str(data.get("provider") or "unknown"),
            data_transfer_cost_usd=float(data.get("data_transfer_cost_usd", 0.0)),
            request_cost_usd=float(data.get("request_cost_usd", 0.0)),
            total_cost_usd=float(data.get("total_cost_usd", 0.0)),
            currency=str(data.get("currency") or "USD"),
        )


# ============================================================
# Regression result
# ============================================================

@dataclass(frozen=True)
class RegressionResult:
    baseline_version: str
    metric: str
    current_value: float
    baseline_value: float
    difference: float
    percentage_change: Optional[float]
    status: RegressionStatus
    threshold_exceeded: bool
    alert_level: AlertLevel
    size_difference: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["alert_level"] = self.alert_level.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegressionResult":
        percentage = data.get("percentage_change")
        return cls(
            baseline_version=str(data["baseline_version"]),
            metric=str(data.get("metric", "duration")),
            current_value=float(data["current_value"]),
            baseline_value=float(data["baseline_value"]),
            difference=float(data["difference"]),
            percentage_change=float(percentage) if percentage is not None else None,
            status=RegressionStatus(data["status"]),
            threshold_exceeded=bool(data.get("threshold_exceeded", False)),
            alert_level=AlertLevel(data.get("alert_level", AlertLevel.NONE.value)),
            size_difference=float(data.get("size_difference", 0.0)),
        )


# ============================================================
# Enriched record
# ============================================================

@dataclass
class EnrichedRequestRecord:
    """
    A request as displayed and compared.

    Every field except the annotation slots (insights, security_findings,
    cost_estimates, baseline_comparison) is fixed once the record exists.
    """
    id: str
    name: str
    initiator_type: str
    start_time: float
    duration: float
    transfer_size: float
    encoded_body_size: float
    decoded_body_size: float
    queueing_duration: float = 0.0
    dns_lookup_duration: float = 0.0
    tcp_handshake_duration: float = 0.0
    ssl_handshake_duration: float = 0.0
    send_duration: float = 0.0
    time_to_first_byte: float = 0.0
    download_duration: float = 0.0
    is_third_party: bool = True
    cache_hit: Optional[bool] = None
    critical_path: Optional[bool] = None
    method: str = "GET"
    status_code: Optional[int] = None
    status_text: Optional[str] = None
    protocol: Optional[str] = None
    priority: Optional[str] = None
    server_ip_address: Optional[str] = None
    request_headers: Optional[Dict[str, str]] = None
    response_headers: Optional[Dict[str, str]] = None
    request_payload: Optional[str] = None
    response_payload: Optional[str] = None
    insights: List[Insight] = field(default_factory=list)
    security_findings: List[SecurityFinding] = field(default_factory=list)
    cost_estimates: List[CostEstimate] = field(default_factory=list)
    baseline_comparison: Optional[RegressionResult] = None

    def match_key(self) -> Tuple[str, str]:
        """Looser key used to pair records across capture runs."""
        return (self.name, self.initiator_type)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view used by the MCP tools."""
        data = {
            key: value for key, value in asdict(self).items()
            if key not in ("insights", "security_findings", "cost_estimates", "baseline_comparison")
        }
        data["insights"] = [i.to_dict() for i in self.insights]
        data["security_findings"] = [f.to_dict() for f in self.security_findings]
        data["cost_estimates"] = [c.to_dict() for c in self.cost_estimates]
        data["baseline_comparison"] = (
            self.baseline_comparison.to_dict() if self.baseline_comparison else None
        )
        return data


# ============================================================
# Page-level metrics
# ============================================================

@dataclass
class NavigationMetrics:
    dom_content_loaded: float = 0.0
    load: float = 0.0
    first_paint: Optional[float] = None
    first_contentful_paint: Optional[float] = None
    largest_contentful_paint: Optional[float] = None
    time_to_interactive: Optional[float] = None
    total_blocking_time: Optional[float] = None
    cumulative_layout_shift: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NavigationMetrics":
        def optional(*names: str) -> Optional[float]:
            value = _pick(data, *names)
            return None if value is None else _to_float(value)

        return cls(
            dom_content_loaded=_to_float(_pick(data, "domContentLoaded", "dom_content_loaded")),
            load=_to_float(_pick(data, "load")),
            first_paint=optional("firstPaint", "first_paint"),
            first_contentful_paint=optional("firstContentfulPaint", "first_contentful_paint"),
            largest_contentful_paint=optional("largestContentfulPaint", "largest_contentful_paint"),
            time_to_interactive=optional("timeToInteractive", "time_to_interactive"),
            total_blocking_time=optional("totalBlockingTime", "total_blocking_time"),
            cumulative_layout_shift=optional("cumulativeLayoutShift", "cumulative_layout_shift"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
