"""
regression_detector.py

Compares live request records against a baseline snapshot and classifies
each matched request as improved, regressed or neutral, with an alert level
derived from absolute duration and size thresholds.

Matching is a keyed outer join on (name, initiator_type): every live record
ends up with either a RegressionResult or None, and unmatched baseline
records are ignored.

When several records share a match key (repeated calls to one endpoint) the
pairing is governed by MatchPolicy:
- POSITIONAL: the nth live occurrence pairs with the nth baseline occurrence,
  both in encounter order; surplus live occurrences stay unmatched.
- FIRST: every live occurrence pairs with the first baseline occurrence.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from services.models import (
    AlertLevel,
    EnrichedRequestRecord,
    RegressionResult,
    RegressionStatus,
)

logger = logging.getLogger(__name__)

# Fixed improvement bar: a drop of 10% or more counts as an improvement
IMPROVEMENT_THRESHOLD_PCT = -10.0


class MatchPolicy(Enum):
    POSITIONAL = "positional"
    FIRST = "first"


@dataclass(frozen=True)
class RegressionThresholds:
    duration_regression_ms: float = 100.0
    size_regression_bytes: float = 50 * 1024


def evaluate_regression(
    current: EnrichedRequestRecord,
    baseline: EnrichedRequestRecord,
    baseline_version: str,
    thresholds: RegressionThresholds,
) -> RegressionResult:
    """
    Compute the duration regression of one live record against its baseline.

    A zero baseline duration yields percentage_change=None and a neutral
    status; the threshold and alert checks still apply.
    """
    difference = current.duration - baseline.duration
    size_difference = current.transfer_size - baseline.transfer_size

    if baseline.duration == 0:
        percentage_change = None
        status = RegressionStatus.NEUTRAL
    else:
        percentage_change = difference / baseline.duration * 100
        if difference > 0 and difference > thresholds.duration_regression_ms:
            status = RegressionStatus.REGRESSED
        elif percentage_change <= IMPROVEMENT_THRESHOLD_PCT:
            status = RegressionStatus.IMPROVED
        else:
            status = RegressionStatus.NEUTRAL

    threshold_exceeded = (
        abs(difference) > thresholds.duration_regression_ms
        or abs(size_difference) > thresholds.size_regression_bytes
    )

    if threshold_exceeded and status is RegressionStatus.REGRESSED:
        alert_level = AlertLevel.CRITICAL
    elif threshold_exceeded:
        alert_level = AlertLevel.WARNING
    else:
        alert_level = AlertLevel.NONE

    return RegressionResult(
        baseline_version=baseline_version,
        metric="duration",
        current_value=current.duration,
        baseline_value=baseline.duration,
        difference=difference,
        percentage_change=percentage_change,
        status=status,
        threshold_exceeded=threshold_exceeded,
        alert_level=alert_level,
        size_difference=size_difference,
    )


def _index_baseline(
    baseline: Sequence[EnrichedRequestRecord],
) -> Dict[Tuple[str, str], List[EnrichedRequestRecord]]:
    index: Dict[Tuple[str, str], List[EnrichedRequestRecord]] = defaultdict(list)
    for record in baseline:
        index[record.match_key()].append(record)
    return index


def compare_against_baseline(
    live_records: Sequence[EnrichedRequestRecord],
    baseline_records: Sequence[EnrichedRequestRecord],
    baseline_version: str,
    thresholds: RegressionThresholds,
    match_policy: MatchPolicy = MatchPolicy.POSITIONAL,
) -> Sequence[EnrichedRequestRecord]:
    """
    Set `baseline_comparison` on every live record and return the live records.

    Records without a counterpart in the baseline get None; that is the
    normal outcome for new resources, not an error.
    """
    index = _index_baseline(baseline_records)
    occurrences: Dict[Tuple[str, str], int] = defaultdict(int)
    matched = 0

    for record in live_records:
        key = record.match_key()
        candidates = index.get(key, [])
        position = occurrences[key]
        occurrences[key] += 1

        counterpart: Optional[EnrichedRequestRecord] = None
        if candidates:
            if match_policy is MatchPolicy.FIRST:
                counterpart = candidates[0]
            elif position < len(candidates):
                counterpart = candidates[position]

        if counterpart is None:
            record.baseline_comparison = None
            continue

        record.baseline_comparison = evaluate_regression(
            record, counterpart, baseline_version, thresholds,
        )
        matched += 1

    logger.info(
        "Baseline '%s' comparison: %d of %d live record(s) matched",
        baseline_version, matched, len(live_records),
    )
    return live_records


def regression_alerts(
    records: Sequence[EnrichedRequestRecord],
) -> List[Tuple[str, RegressionResult]]:
    """(record id, result) pairs whose alert level is warning or critical."""
    return [
        (record.id, record.baseline_comparison)
        for record in records
        if record.baseline_comparison is not None
        and record.baseline_comparison.alert_level is not AlertLevel.NONE
    ]
