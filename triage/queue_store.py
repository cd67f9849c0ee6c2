"""
The single owned, ordered queue of waiting patients.

Every mutation runs under one lock and ends with a full recalculation pass
(sort, positions, wait times, invariant check), so no caller can observe a
partially ordered queue.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from .errors import EmptyQueueError
from .scoring import clamp_priority
from .types import (
    AuthorityEntry,
    QueueEntry,
    QueueStats,
    RiskLevel,
    ScoreSource,
)

logger = logging.getLogger(__name__)


# Minutes a clinician typically spends with a patient of each risk level.
SERVICE_MINUTES: Dict[RiskLevel, int] = {
    RiskLevel.HIGH: 15,
    RiskLevel.MEDIUM: 20,
    RiskLevel.LOW: 25,
}


def placeholder_name(entry_id: str) -> str:
    return f"Patient {entry_id[:8]}"


def ordering_key(entry: QueueEntry):
    """Descending priority, then first-come-first-served, then id."""
    return (-entry.priority_score, entry.check_in_time, entry.id)


class NameSideTable:
    """
    id -> display name map for entries whose scores come from an authority
    that does not keep names.

    Only QueueStore writes to it, inside the same critical section as the
    insertion or deletion it mirrors.
    """

    def __init__(self):
        self._names: Dict[str, str] = {}

    def record(self, entry_id: str, name: str) -> None:
        self._names[entry_id] = name

    def evict(self, entry_ids: Iterable[str]) -> None:
        for entry_id in entry_ids:
            self._names.pop(entry_id, None)

    def resolve(self, entry_id: str) -> str:
        return self._names.get(entry_id) or placeholder_name(entry_id)

    def clear(self) -> None:
        self._names.clear()

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._names

    def __len__(self) -> int:
        return len(self._names)


def recalculate(entries: List[QueueEntry]) -> List[QueueEntry]:
    """Sort entries and reassign queue positions and wait times in place."""
    entries.sort(key=ordering_key)
    waited = 0
    for index, entry in enumerate(entries):
        entry.queue_position = index + 1
        entry.estimated_wait_time = waited
        waited += SERVICE_MINUTES[entry.risk_level]
    verify_invariants(entries)
    return entries


def verify_invariants(entries: List[QueueEntry]) -> None:
    """
    Raise AssertionError if the ordered queue is inconsistent.

    A failure here is a programming defect and must never be patched over.
    """
    positions = [entry.queue_position for entry in entries]
    if positions != list(range(1, len(entries) + 1)):
        raise AssertionError(f"Queue positions are not 1..N: {positions}")

    ids = [entry.id for entry in entries]
    if len(set(ids)) != len(ids):
        raise AssertionError("Duplicate entry ids in queue")

    previous: Optional[QueueEntry] = None
    for entry in entries:
        if not 0.0 <= entry.priority_score <= 100.0:
            raise AssertionError(f"Priority score out of range for {entry.id}: {entry.priority_score}")
        if entry.risk_level not in SERVICE_MINUTES:
            raise AssertionError(f"Unknown risk level for {entry.id}: {entry.risk_level}")
        if previous is None:
            if entry.estimated_wait_time != 0:
                raise AssertionError("Position 1 must have a zero wait time")
        else:
            if ordering_key(previous) > ordering_key(entry):
                raise AssertionError(f"Queue is out of order at position {entry.queue_position}")
            if entry.estimated_wait_time < previous.estimated_wait_time:
                raise AssertionError(f"Wait time decreases at position {entry.queue_position}")
        previous = entry


class QueueStore:
    """Owns the ordered collection of active queue entries."""

    def __init__(self):
        self._lock = threading.RLock()
        self._entries: List[QueueEntry] = []
        self._names = NameSideTable()
        # Authoritative ids removed locally; hidden from refreshes until the
        # authority stops listing them.
        self._tombstones: Set[str] = set()
        # Authoritative ids the authority dropped in place of another call-next;
        # kept by refreshes until they are called or removed locally.
        self._detached: Set[str] = set()

    def enqueue(self, entry: QueueEntry) -> QueueEntry:
        """
        Insert an entry and recalculate the queue.

        An entry whose id is already queued replaces it, keeping the original
        check-in time. A locally-derived entry never downgrades an
        authoritative one: the authoritative scoring is kept.

        Returns:
            A copy of the stored entry with its position and wait time
        """
        entry = entry.model_copy(deep=True)
        with self._lock:
            existing = self._find(entry.id)
            if existing is not None:
                entry.check_in_time = existing.check_in_time
                if existing.is_authoritative and not entry.is_authoritative:
                    logger.info(f"Keeping authoritative score for {entry.id}; ignoring local recomputation")
                    entry.risk_level = existing.risk_level
                    entry.risk_score = existing.risk_score
                    entry.priority_score = existing.priority_score
                    entry.confidence_score = existing.confidence_score
                    entry.score_source = existing.score_source
                    entry.authority_wait_time = existing.authority_wait_time
                    entry.synced_at = existing.synced_at
                self._entries.remove(existing)

            entry.priority_score = clamp_priority(entry.priority_score)
            self._entries.append(entry)
            self._names.record(entry.id, entry.name)
            self._tombstones.discard(entry.id)
            recalculate(self._entries)
            return entry.model_copy(deep=True)

    def dequeue_highest(self) -> QueueEntry:
        """
        Remove and return the entry at position 1.

        Raises:
            EmptyQueueError: if the queue is empty
        """
        with self._lock:
            if not self._entries:
                raise EmptyQueueError()
            recalculate(self._entries)
            entry = self._entries.pop(0)
            self._forget([entry])
            recalculate(self._entries)
            return entry

    def remove(self, entry_id: str) -> bool:
        """
        Remove an entry by id.

        Unknown ids are a silent no-op.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            entry = self._find(entry_id)
            if entry is not None:
                self._entries.remove(entry)
                self._forget([entry])
            recalculate(self._entries)
            return entry is not None

    def clear(self) -> int:
        """Empty the queue and return how many entries were cleared."""
        with self._lock:
            cleared = list(self._entries)
            self._entries = []
            self._forget(cleared)
            return len(cleared)

    def snapshot(self) -> List[QueueEntry]:
        """Return copies of all entries in queue order, freshly recalculated."""
        with self._lock:
            recalculate(self._entries)
            return [entry.model_copy(deep=True) for entry in self._entries]

    def peek(self) -> Optional[QueueEntry]:
        with self._lock:
            if not self._entries:
                return None
            recalculate(self._entries)
            return self._entries[0].model_copy(deep=True)

    def get(self, entry_id: str) -> Optional[QueueEntry]:
        with self._lock:
            entry = self._find(entry_id)
            return entry.model_copy(deep=True) if entry is not None else None

    def resolve_name(self, entry_id: str) -> str:
        with self._lock:
            return self._names.resolve(entry_id)

    def has_name(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._names

    def name_count(self) -> int:
        with self._lock:
            return len(self._names)

    def is_tombstoned(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._tombstones

    def detach_from_authority(self, entry_id: str) -> bool:
        """
        Keep an authoritative entry through later refreshes even though the
        authority no longer lists it.

        Returns:
            True if the entry is queued
        """
        with self._lock:
            if self._find(entry_id) is None:
                return False
            self._detached.add(entry_id)
            return True

    def is_detached(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._detached

    def stats(self) -> QueueStats:
        with self._lock:
            recalculate(self._entries)
            total = len(self._entries)
            waits = [entry.estimated_wait_time for entry in self._entries]
            return QueueStats(
                total_patients=total,
                high_priority=sum(1 for e in self._entries if e.risk_level == RiskLevel.HIGH),
                medium_priority=sum(1 for e in self._entries if e.risk_level == RiskLevel.MEDIUM),
                low_priority=sum(1 for e in self._entries if e.risk_level == RiskLevel.LOW),
                authoritative_entries=sum(1 for e in self._entries if e.is_authoritative),
                local_entries=sum(1 for e in self._entries if not e.is_authoritative),
                average_wait_time=round(sum(waits) / total, 2) if total else 0.0,
                current_wait_time=waits[-1] if waits else 0,
            )

    def merge_authoritative(
        self,
        records: List[AuthorityEntry],
        fetch_started_at: datetime,
    ) -> Dict[str, int]:
        """
        Replace the authoritative part of the queue with the authority's view.

        Names are re-attached from the side-table. Locally-derived entries
        are kept. Authoritative entries the authority no longer lists are
        dropped, unless they were synced after the fetch started or were
        detached by a mismatched call-next. Entries synced after the fetch
        started are not overwritten either.

        Returns:
            Counts of updated, added, dropped and skipped entries
        """
        counts = {"updated": 0, "added": 0, "dropped": 0, "skipped": 0}
        with self._lock:
            current = {entry.id: entry for entry in self._entries}
            listed: Set[str] = set()
            merged: List[QueueEntry] = []

            for record in records:
                if record.id in listed:
                    continue
                listed.add(record.id)
                if record.id in self._tombstones:
                    counts["skipped"] += 1
                    continue

                self._detached.discard(record.id)
                existing = current.get(record.id)
                if existing is not None and existing.synced_at is not None and existing.synced_at > fetch_started_at:
                    # Re-synced by a submission after this fetch started
                    merged.append(existing)
                    counts["skipped"] += 1
                    continue
                if existing is not None:
                    entry = existing.model_copy(deep=True)
                    entry.risk_level = record.risk_level
                    entry.risk_score = None
                    entry.priority_score = clamp_priority(record.priority_score)
                    if record.confidence_score is not None:
                        entry.confidence_score = record.confidence_score
                    entry.score_source = ScoreSource.AUTHORITATIVE
                    entry.authority_wait_time = record.estimated_wait_time
                    entry.synced_at = fetch_started_at
                    counts["updated"] += 1
                elif record.vital_signs is not None and record.demographics is not None:
                    entry = QueueEntry(
                        id=record.id,
                        name=self._names.resolve(record.id),
                        vital_signs=record.vital_signs,
                        demographics=record.demographics,
                        risk_level=record.risk_level,
                        priority_score=clamp_priority(record.priority_score),
                        score_source=ScoreSource.AUTHORITATIVE,
                        check_in_time=record.check_in_time or fetch_started_at,
                        authority_wait_time=record.estimated_wait_time,
                        synced_at=fetch_started_at,
                    )
                    if record.confidence_score is not None:
                        entry.confidence_score = record.confidence_score
                    self._names.record(entry.id, entry.name)
                    counts["added"] += 1
                else:
                    logger.warning(f"Authority entry {record.id} has no vitals and is not queued locally; skipping")
                    counts["skipped"] += 1
                    continue
                merged.append(entry)

            dropped: List[QueueEntry] = []
            for entry in self._entries:
                if entry.id in listed:
                    continue
                stale = entry.synced_at is None or entry.synced_at < fetch_started_at
                if entry.is_authoritative and stale and entry.id not in self._detached:
                    dropped.append(entry)
                else:
                    merged.append(entry)

            self._names.evict(entry.id for entry in dropped)
            self._tombstones &= listed
            counts["dropped"] = len(dropped)
            self._entries = merged
            recalculate(self._entries)
            return counts

    def _find(self, entry_id: str) -> Optional[QueueEntry]:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def _forget(self, entries: List[QueueEntry]) -> None:
        self._names.evict(entry.id for entry in entries)
        self._tombstones.update(entry.id for entry in entries if entry.is_authoritative)
        self._detached.difference_update(entry.id for entry in entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
