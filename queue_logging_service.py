"""
Dedicated logging service for queue events.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import logging

from sqlalchemy import select, func

from queue_event_models import QueueEventLog
from db import get_session
from encryption import encrypt_patient_data, decrypt_patient_data, decrypt_patient_data_json
from triage.types import QueueEntry

logger = logging.getLogger(__name__)


class QueueEventLogger:
    """Service for logging queue mutations and reconciliation attempts."""

    async def log_queue_event(
        self,
        event_type: str,
        entry: Optional[QueueEntry] = None,
        entry_id: Optional[str] = None,
        request_id: Optional[str] = None,
        client_ip: Optional[str] = None,
        queue_length: Optional[int] = None,
        authority_call_time_ms: Optional[float] = None,
        total_time_ms: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_type: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[int]:
        """
        Log one queue event to the database.

        The patient's name and vitals are encrypted; scoring fields stay in
        clear text for analytics.

        Returns:
            The ID of the created log entry, or None if logging failed
        """
        try:
            async for session in get_session():
                event = QueueEventLog(
                    request_id=request_id,
                    event_type=event_type,
                    entry_id=entry.id if entry is not None else entry_id,
                    client_ip=client_ip,
                    queue_length=queue_length,
                    authority_call_time_ms=authority_call_time_ms,
                    total_time_ms=total_time_ms,
                    details=details,
                    success=success,
                    error_type=error_type,
                    error_message=error_message[:1000] if error_message else None,
                )
                if entry is not None:
                    event.patient_name_encrypted = encrypt_patient_data(entry.name)
                    event.vitals_encrypted = encrypt_patient_data({
                        "vital_signs": entry.vital_signs.model_dump(),
                        "demographics": entry.demographics.model_dump(),
                    })
                    event.risk_level = entry.risk_level.value
                    event.priority_score = entry.priority_score
                    event.score_source = entry.score_source.value
                    event.queue_position = entry.queue_position
                    event.estimated_wait_time = entry.estimated_wait_time

                session.add(event)
                await session.commit()
                await session.refresh(event)

                logger.info(f"Logged queue event: ID={event.id}, type={event_type}, entry={event.entry_id}")
                return event.id

        except Exception as e:
            logger.error(f"Failed to log queue event: {e}")
            return None

    async def get_decrypted_queue_event(self, event_id: int) -> Optional[dict]:
        """
        Get one queue event with the patient data decrypted.

        Returns:
            Dictionary with decrypted data, or None if not found
        """
        try:
            async for session in get_session():
                result = await session.execute(
                    select(QueueEventLog).where(QueueEventLog.id == event_id)
                )
                event = result.scalar_one_or_none()

                if not event:
                    return None

                return {
                    'id': event.id,
                    'request_id': event.request_id,
                    'event_type': event.event_type,
                    'entry_id': event.entry_id,
                    'created_at': event.created_at.isoformat(),

                    'patient_name': decrypt_patient_data(event.patient_name_encrypted) if event.patient_name_encrypted else None,
                    'vitals': decrypt_patient_data_json(event.vitals_encrypted) if event.vitals_encrypted else None,

                    'risk_level': event.risk_level,
                    'priority_score': event.priority_score,
                    'score_source': event.score_source,
                    'queue_position': event.queue_position,
                    'estimated_wait_time': event.estimated_wait_time,
                    'queue_length': event.queue_length,
                    'details': event.details,
                    'success': event.success,
                    'error_message': event.error_message,
                }

        except Exception as e:
            logger.error(f"Failed to get decrypted queue event: {e}")
            return None

    async def get_queue_event_stats(self, hours: int = 24) -> Dict[str, Any]:
        """
        Get queue event statistics for the last N hours.

        Returns:
            Dictionary with counts per event type, risk level and score source
        """
        try:
            async for session in get_session():
                since = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=hours)

                event_counts = await session.execute(
                    select(QueueEventLog.event_type, func.count(QueueEventLog.id))
                    .where(QueueEventLog.created_at >= since)
                    .group_by(QueueEventLog.event_type)
                )
                event_distribution = dict(event_counts.fetchall())

                submit_filter = (QueueEventLog.created_at >= since, QueueEventLog.event_type == "submit")

                risk_counts = await session.execute(
                    select(QueueEventLog.risk_level, func.count(QueueEventLog.id))
                    .where(*submit_filter)
                    .group_by(QueueEventLog.risk_level)
                )
                risk_distribution = dict(risk_counts.fetchall())

                source_counts = await session.execute(
                    select(QueueEventLog.score_source, func.count(QueueEventLog.id))
                    .where(*submit_filter)
                    .group_by(QueueEventLog.score_source)
                )
                source_distribution = dict(source_counts.fetchall())

                refresh_failures = await session.execute(
                    select(func.count(QueueEventLog.id)).where(
                        QueueEventLog.created_at >= since,
                        QueueEventLog.event_type == "refresh",
                        QueueEventLog.success == False
                    )
                )

                avg_priority = await session.execute(
                    select(func.avg(QueueEventLog.priority_score)).where(*submit_filter)
                )
                avg_priority_score = avg_priority.scalar()

                return {
                    'time_period_hours': hours,
                    'event_distribution': event_distribution,
                    'submissions': event_distribution.get("submit", 0),
                    'risk_distribution': risk_distribution,
                    'score_source_distribution': source_distribution,
                    'failed_refreshes': refresh_failures.scalar() or 0,
                    'average_priority_score': round(avg_priority_score, 2) if avg_priority_score else 0,
                }

        except Exception as e:
            logger.error(f"Failed to get queue event stats: {e}")
            return {
                'error': 'Failed to retrieve queue event statistics',
                'time_period_hours': hours,
            }


# Global instance
queue_event_logger = QueueEventLogger()
