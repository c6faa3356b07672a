"""
capture_session.py

The capture session: the single owner of a live request record set.

All state changes (ingestion, snapshot save/load, baseline comparison,
import, annotation attachment) run on the caller's event loop thread and
never block it. Annotation providers run as asyncio tasks; their results
land through the session's AnnotationLedger when they complete, and are
dropped if the session was closed or its record set replaced meanwhile.
"""

import asyncio
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)

from services import har_adapter
from services.ai_analyst import RequestExplainer
from services.annotation_providers import CostEstimator, MixedContentScanner, provider_payload
from services.annotations import Annotation, AnnotationLedger
from services.baseline_store import BaselineStore
from services.enrichment import enrich_event
from services.identity import select_new_events
from services.metric_export import MetricTriple, metric_series
from services.models import (
    CostEstimate,
    EnrichedRequestRecord,
    Insight,
    NavigationMetrics,
    RawTimingEvent,
    RegressionResult,
    RequestKey,
    SecurityFinding,
    SortDirection,
    SortKey,
)
from services.regression_detector import compare_against_baseline, regression_alerts
from services.request_filters import FilterCriteria, apply_filters, sort_records
from services.request_summary import summarize_requests
from services.settings import EngineSettings

logger = logging.getLogger(__name__)

AnnotationProvider = Callable[
    [Dict[str, Any]],
    Awaitable[Union[None, Annotation, List[Annotation]]],
]


class SessionClosedError(RuntimeError):
    """Raised when a closed capture session is asked to ingest or import."""


class CaptureSession:
    """
    Live request record set for one monitored page.

    Args:
        settings: Engine configuration (page URL, thresholds, feature flags, ...).
        baseline_store: Snapshot store; a private one is created if omitted.
        session_id: Label used in logs and artifact paths.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        baseline_store: Optional[BaselineStore] = None,
        session_id: str = "default",
    ):
        self.settings = settings or EngineSettings()
        self.session_id = session_id
        self.baselines = baseline_store if baseline_store is not None else BaselineStore()
        self.navigation_metrics: Optional[NavigationMetrics] = None
        self.active_baseline_id: Optional[str] = None

        self._records: List[EnrichedRequestRecord] = []
        self._index: Dict[str, EnrichedRequestRecord] = {}
        self._ledger = AnnotationLedger(self._index)
        self._pending: Set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------
    # Record access
    # ------------------------------------------------------------

    @property
    def records(self) -> List[EnrichedRequestRecord]:
        """The live records in capture order (a new list; records are shared)."""
        return list(self._records)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_annotations(self) -> int:
        return len(self._pending)

    def get(self, record_key: Union[str, RequestKey]) -> Optional[EnrichedRequestRecord]:
        if isinstance(record_key, RequestKey):
            record_key = record_key.as_id()
        return self._index.get(record_key)

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------

    def ingest(
        self,
        batch: Iterable[Union[RawTimingEvent, Dict[str, Any]]],
    ) -> List[EnrichedRequestRecord]:
        """
        Normalize, deduplicate and enrich a batch of raw timing events.

        Returns:
            The records created for genuinely new events, in received order.
            Feeding the same batch again returns an empty list.

        Raises:
            SessionClosedError: If the session has been closed.
        """
        self._ensure_open()

        events = [
            e if isinstance(e, RawTimingEvent) else RawTimingEvent.from_dict(e)
            for e in batch
        ]
        fresh = select_new_events(events, self._index.keys())
        new_records = [enrich_event(e, self.settings.page_url) for e in fresh]

        for record in new_records:
            self._records.append(record)
            self._index[record.id] = record

        logger.info(
            "Session '%s': ingested %d new of %d event(s), %d total",
            self.session_id, len(new_records), len(events), len(self._records),
        )

        if (
            new_records
            and self.active_baseline_id is not None
            and self.settings.feature_flags.compare_on_ingest
        ):
            self.compare_to_baseline()

        return new_records

    def update_navigation_metrics(
        self, metrics: Union[NavigationMetrics, Dict[str, Any]],
    ) -> NavigationMetrics:
        if not isinstance(metrics, NavigationMetrics):
            metrics = NavigationMetrics.from_dict(metrics or {})
        self.navigation_metrics = metrics
        return metrics

    # ------------------------------------------------------------
    # Display
    # ------------------------------------------------------------

    def view(
        self,
        criteria: Optional[FilterCriteria] = None,
        sort_key: Optional[SortKey] = None,
        direction: Optional[SortDirection] = None,
    ) -> List[EnrichedRequestRecord]:
        """Filter, then stable-sort the live records (defaults from settings)."""
        filtered = apply_filters(self._records, criteria)
        return sort_records(
            filtered,
            sort_key or self.settings.default_sort_key,
            direction or self.settings.default_sort_direction,
        )

    def summary(self) -> Dict[str, Any]:
        return summarize_requests(self._records)

    def metric_series(self, include_phases: bool = True) -> List[MetricTriple]:
        return metric_series(self._records, include_phases)

    # ------------------------------------------------------------
    # Baselines
    # ------------------------------------------------------------

    def save_snapshot(
        self,
        snapshot_id: str,
        records: Optional[Iterable[EnrichedRequestRecord]] = None,
    ) -> int:
        """Snapshot `records` (default: the live records) under `snapshot_id`."""
        return self.baselines.save_snapshot(
            snapshot_id, self._records if records is None else records,
        )

    def load_snapshot(self, snapshot_id: str) -> Optional[List[EnrichedRequestRecord]]:
        return self.baselines.load_snapshot(snapshot_id)

    def set_active_baseline(self, snapshot_id: Optional[str]) -> None:
        """
        Designate the snapshot new records are compared against (None clears it).

        Raises:
            ValueError: If no snapshot with that id exists.
        """
        if snapshot_id is not None and snapshot_id not in self.baselines:
            raise ValueError(f"Baseline snapshot not found: '{snapshot_id}'")
        self.active_baseline_id = snapshot_id

    def compare_to_baseline(
        self, snapshot_id: Optional[str] = None,
    ) -> List[Tuple[str, RegressionResult]]:
        """
        Compare every live record against a snapshot (default: the active one).

        Returns:
            (record id, result) pairs whose alert level is warning or critical,
            for the host application to hand to its alert sink.

        Raises:
            ValueError: If no snapshot id is given or active, or it does not exist.
        """
        snapshot_id = snapshot_id or self.active_baseline_id
        if not snapshot_id:
            raise ValueError("No baseline snapshot given and none is active.")

        baseline = self.baselines.load_snapshot(snapshot_id)
        if baseline is None:
            raise ValueError(f"Baseline snapshot not found: '{snapshot_id}'")

        compare_against_baseline(
            self._records,
            baseline,
            snapshot_id,
            self.settings.thresholds,
            self.settings.match_policy,
        )
        alerts = regression_alerts(self._records)
        if alerts:
            logger.warning(
                "Session '%s': %d request(s) raised regression alerts against '%s'",
                self.session_id, len(alerts), snapshot_id,
            )
        return alerts

    # ------------------------------------------------------------
    # HAR export / import
    # ------------------------------------------------------------

    def export_interchange(self, started=None) -> Dict[str, Any]:
        return har_adapter.export_interchange(
            self._records, self.navigation_metrics, self.settings.page_url, started,
        )

    def import_interchange(self, document: Any) -> List[EnrichedRequestRecord]:
        """
        Replace the entire live record set with the records of a HAR document.

        The document is fully parsed before anything is replaced, so a
        malformed document leaves the session untouched.

        Raises:
            InterchangeFormatError: If the document lacks the HAR structure.
            SessionClosedError: If the session has been closed.
        """
        self._ensure_open()
        records = har_adapter.import_interchange(document)
        metrics = har_adapter.import_navigation_metrics(document)

        self._abandon_annotations()
        self._records = list(records)
        self._index = {r.id: r for r in self._records}
        self._ledger = AnnotationLedger(self._index)
        if metrics is not None:
            self.navigation_metrics = metrics

        logger.info("Session '%s': imported %d record(s)", self.session_id, len(self._records))
        return self.records

    # ------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------

    def attach(self, record_key: Union[str, RequestKey], insight: Insight) -> bool:
        return self._ledger.attach(record_key, insight)

    def attach_security_finding(
        self, record_key: Union[str, RequestKey], finding: SecurityFinding,
    ) -> bool:
        return self._ledger.attach_security_finding(record_key, finding)

    def attach_cost_estimate(
        self, record_key: Union[str, RequestKey], estimate: CostEstimate,
    ) -> bool:
        return self._ledger.attach_cost_estimate(record_key, estimate)

    def default_providers(self, openai_api_key: Optional[str] = None) -> List[AnnotationProvider]:
        """Built-in providers enabled by the session's feature flags."""
        flags = self.settings.feature_flags
        providers: List[AnnotationProvider] = []
        if flags.enable_ai_insights:
            providers.append(RequestExplainer(
                openai_api_key,
                model=self.settings.ai.model,
                endpoint=self.settings.ai.endpoint,
                timeout=self.settings.ai.timeout_seconds,
            ))
        if flags.enable_security_scanning:
            providers.append(MixedContentScanner(self.settings.page_url))
        if flags.enable_cost_analysis:
            rates = self.settings.cost_rates
            providers.append(CostEstimator(
                rates.cost_per_gb_usd, rates.cost_per_request_usd, provider=rates.provider,
            ))
        return providers

    def schedule_annotation(
        self,
        record_key: Union[str, RequestKey],
        provider: AnnotationProvider,
    ) -> Optional[asyncio.Task]:
        """
        Run `provider` for one record in the background.

        Must be called from a running event loop. Returns the task, or None
        when the record is unknown or the session is closed.
        """
        record = self.get(record_key)
        if record is None or self._closed:
            return None

        task = asyncio.get_running_loop().create_task(
            self._run_provider(self._ledger, record.id, provider, provider_payload(record))
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def request_annotations(
        self,
        providers: Iterable[AnnotationProvider],
        record_keys: Optional[Iterable[Union[str, RequestKey]]] = None,
    ) -> List[asyncio.Task]:
        """Schedule every provider for the given records (default: all live records)."""
        keys = list(record_keys) if record_keys is not None else [r.id for r in self._records]
        providers = list(providers)
        tasks = []
        for key in keys:
            for provider in providers:
                task = self.schedule_annotation(key, provider)
                if task is not None:
                    tasks.append(task)
        return tasks

    async def drain_annotations(self) -> None:
        """Wait until every currently pending annotation task has finished."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    async def _run_provider(
        ledger: AnnotationLedger,
        record_id: str,
        provider: AnnotationProvider,
        payload: Dict[str, Any],
    ) -> int:
        provider_name = getattr(provider, "provider_id", type(provider).__name__)
        try:
            result = await provider(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Provider failures are the provider's concern; the record stays unannotated
            logger.warning("Annotation provider %s failed for %s: %s", provider_name, record_id, e)
            return 0

        if result is None:
            return 0
        annotations = result if isinstance(result, list) else [result]
        return sum(1 for a in annotations if ledger.attach_annotation(record_id, a))

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def close(self) -> None:
        """Tear the session down; pending annotation work is abandoned silently."""
        if self._closed:
            return
        self._closed = True
        self._abandon_annotations()
        logger.info("Session '%s' closed", self.session_id)

    def _abandon_annotations(self) -> None:
        self._ledger.close()
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"Capture session '{self.session_id}' is closed")
