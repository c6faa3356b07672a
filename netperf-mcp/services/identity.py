"""
identity.py

Request identity and duplicate suppression for incoming capture batches.

The capture source promises no duplicates within one browser session, but
batches can overlap when an observer is re-registered, so every batch is
checked against the ids already held by the session.
"""

import logging
from typing import Iterable, List, Set

from services.models import RawTimingEvent, RequestKey

logger = logging.getLogger(__name__)


def request_key(event: RawTimingEvent) -> RequestKey:
    """Derive the identity of a raw timing event."""
    return RequestKey(event.name, event.start_time)


def select_new_events(
    batch: Iterable[RawTimingEvent],
    known_ids: Set[str],
) -> List[RawTimingEvent]:
    """
    Return the events of `batch` whose identity is not yet known.

    Events already present in `known_ids`, and repeats of an event seen
    earlier in the same batch, are dropped. Survivors keep the order in which
    they were received. `known_ids` is only read, never modified.
    """
    seen_in_batch: Set[str] = set()
    fresh: List[RawTimingEvent] = []
    dropped = 0

    for event in batch:
        event_id = request_key(event).as_id()
        if event_id in known_ids or event_id in seen_in_batch:
            dropped += 1
            logger.debug("Dropping duplicate timing event %s", event_id)
            continue
        seen_in_batch.add(event_id)
        fresh.append(event)

    if dropped:
        logger.debug("Duplicate suppression dropped %d event(s)", dropped)
    return fresh
