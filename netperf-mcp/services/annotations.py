"""
annotations.py

Landing point for asynchronously produced annotations (AI insights,
security findings, cost estimates).

An AnnotationLedger is bound to one generation of a session's record index.
Attaching is an idempotent append: redelivering an annotation that the
record already holds is a no-op. Once the ledger is closed (session torn
down, or record set replaced by an import) every late delivery is ignored.
"""

import logging
from typing import Mapping, Union

from services.models import (
    CostEstimate,
    EnrichedRequestRecord,
    Insight,
    RequestKey,
    SecurityFinding,
)

logger = logging.getLogger(__name__)

Annotation = Union[Insight, SecurityFinding, CostEstimate]

_SLOTS = {
    Insight.kind: "insights",
    SecurityFinding.kind: "security_findings",
    CostEstimate.kind: "cost_estimates",
}


def _as_id(record_key: Union[str, RequestKey]) -> str:
    if isinstance(record_key, RequestKey):
        return record_key.as_id()
    return str(record_key)


class AnnotationLedger:
    """Appends annotations onto the records of one record-set generation."""

    def __init__(self, index: Mapping[str, EnrichedRequestRecord]):
        self._index = index
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def close(self) -> None:
        self._open = False

    def attach(self, record_key: Union[str, RequestKey], insight: Insight) -> bool:
        return self.attach_annotation(record_key, insight)

    def attach_security_finding(
        self, record_key: Union[str, RequestKey], finding: SecurityFinding,
    ) -> bool:
        return self.attach_annotation(record_key, finding)

    def attach_cost_estimate(
        self, record_key: Union[str, RequestKey], estimate: CostEstimate,
    ) -> bool:
        return self.attach_annotation(record_key, estimate)

    def attach_annotation(self, record_key: Union[str, RequestKey], annotation: Annotation) -> bool:
        """
        Append `annotation` to the slot matching its kind.

        Returns:
            True if the annotation was appended; False if it was already
            present, the record is unknown, or the ledger is closed.
        """
        record_id = _as_id(record_key)
        if not self._open:
            logger.debug("Ignoring %s annotation for %s: record set closed", annotation.kind, record_id)
            return False

        record = self._index.get(record_id)
        if record is None:
            logger.debug("Ignoring %s annotation for unknown request %s", annotation.kind, record_id)
            return False

        slot = getattr(record, _SLOTS[annotation.kind])
        if annotation in slot:
            return False
        slot.append(annotation)
        return True
