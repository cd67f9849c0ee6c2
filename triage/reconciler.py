"""
Reconciles the local queue with an optional external prioritization authority.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .authority import PriorityAuthorityClient
from .errors import EmptyQueueError, ExternalServiceError
from .queue_store import QueueStore
from .scoring import assess_risk, check_plausible, clamp_priority, compute_priority_score
from .types import (
    CallNextResult,
    Demographics,
    QueueEntry,
    QueueStats,
    ScoreSource,
    SubmissionResult,
    VitalSigns,
    new_entry_id,
    utc_now,
)

logger = logging.getLogger(__name__)

LOCAL_CONFIDENCE = 0.85
FALLBACK_WARNING = "Prioritization service unavailable; priority was computed locally"


class ExternalReconciler:
    """
    Wraps the QueueStore and treats the authority as best-effort.

    Flow for a submission:
    1. Validate vitals and demographics (rejects before any scoring)
    2. Ask the authority for a score, outside the store lock
    3. On failure, score locally with the canonical table
    4. Enqueue; the store recalculates positions and wait times
    """

    def __init__(self, store: QueueStore, authority: PriorityAuthorityClient):
        self.store = store
        self.authority = authority
        self.last_refresh_at = None
        self.last_refresh_error: Optional[str] = None

    async def submit(
        self,
        name: str,
        vitals: VitalSigns,
        demographics: Demographics,
        entry_id: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Score and enqueue one patient.

        Raises:
            ValidationError: if vitals or demographics are implausible
        """
        check_plausible(vitals, demographics)
        entry_id = entry_id or new_entry_id()

        warning = None
        entry = None
        if self.authority.enabled:
            try:
                assessment = await self.authority.submit_vitals(entry_id, vitals, demographics)
                entry = QueueEntry(
                    id=entry_id,
                    name=name,
                    vital_signs=vitals,
                    demographics=demographics,
                    risk_level=assessment.risk_level,
                    priority_score=clamp_priority(assessment.priority_score),
                    confidence_score=(
                        assessment.confidence_score
                        if assessment.confidence_score is not None
                        else LOCAL_CONFIDENCE
                    ),
                    score_source=ScoreSource.AUTHORITATIVE,
                    authority_wait_time=assessment.estimated_wait_time,
                    synced_at=utc_now(),
                )
            except ExternalServiceError as e:
                logger.warning(f"Falling back to local scoring for {entry_id}: {e.message}")
                warning = FALLBACK_WARNING

        if entry is None:
            assessment = assess_risk(vitals, demographics)
            entry = QueueEntry(
                id=entry_id,
                name=name,
                vital_signs=vitals,
                demographics=demographics,
                risk_level=assessment.risk_level,
                risk_score=assessment.risk_score,
                priority_score=compute_priority_score(assessment, demographics.age),
                confidence_score=LOCAL_CONFIDENCE,
                score_source=ScoreSource.LOCAL,
            )

        queued = self.store.enqueue(entry)
        logger.info(
            f"Queued {queued.id}: risk={queued.risk_level.value}, priority={queued.priority_score}, "
            f"source={queued.score_source.value}, position={queued.queue_position}"
        )
        return SubmissionResult(
            entry=queued,
            authoritative=queued.is_authoritative,
            warning=warning,
        )

    async def refresh(self) -> Dict[str, int]:
        """
        Pull the authority's queue and merge it into the store.

        The store is only touched when the fetch succeeds.

        Raises:
            ExternalServiceError: if the authority is disabled or unreachable
        """
        fetch_started_at = utc_now()
        try:
            records = await self.authority.fetch_queue()
        except ExternalServiceError as e:
            self.last_refresh_error = e.message
            raise

        counts = self.store.merge_authoritative(records, fetch_started_at)
        self.last_refresh_at = utc_now()
        self.last_refresh_error = None
        logger.info(f"Reconciled with authority: {counts}")
        return counts

    async def call_next(self) -> CallNextResult:
        """Pop the highest-priority patient; an empty queue is not an error."""
        try:
            entry = self.store.dequeue_highest()
        except EmptyQueueError as e:
            return CallNextResult(next_patient=None, message=e.message, updated_queue=[])

        if entry.is_authoritative and self.authority.enabled:
            try:
                popped = await self.authority.remove_next()
                if popped and popped != entry.id:
                    logger.warning(f"Authority popped {popped} while {entry.id} was called locally")
                    self.store.detach_from_authority(popped)
            except ExternalServiceError as e:
                logger.warning(f"Could not forward call-next to authority: {e.message}")

        return CallNextResult(
            next_patient=entry,
            message=f"Calling {entry.name}",
            updated_queue=self.store.snapshot(),
        )

    def remove(self, entry_id: str) -> List[QueueEntry]:
        """Remove an entry (unknown ids are a no-op) and return the updated queue."""
        if not self.store.remove(entry_id):
            logger.info(f"Remove requested for unknown id {entry_id}; nothing to do")
        return self.store.snapshot()

    async def clear(self) -> int:
        cleared = self.store.clear()
        if self.authority.enabled:
            try:
                await self.authority.clear()
            except ExternalServiceError as e:
                logger.warning(f"Could not forward clear to authority: {e.message}")
        return cleared

    def snapshot(self) -> List[QueueEntry]:
        return self.store.snapshot()

    def stats(self) -> QueueStats:
        return self.store.stats()

    def status(self) -> Dict[str, Any]:
        """Authority reachability as last observed."""
        last = self.authority.last_result
        return {
            "configured": self.authority.enabled,
            "reachable": self.authority.reachable,
            "last_operation": last.operation if last else None,
            "last_error": last.error if last else None,
            "last_success_at": self.authority.last_success_at,
            "last_refresh_at": self.last_refresh_at,
            "last_refresh_error": self.last_refresh_error,
        }
