"""
Dedicated models for queue event logging and analytics.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, String, Text, DateTime, Float, Boolean, JSON, func
from db import Base


class QueueEventLog(Base):
    """One row per queue mutation or reconciliation attempt."""
    __tablename__ = "queue_events"

    id = Column(Integer, primary_key=True, index=True)

    # Request metadata
    request_id = Column(String(100), nullable=True, index=True)  # For correlating with RequestLog
    event_type = Column(String(30), nullable=False, index=True)  # submit, remove, call_next, clear, refresh
    entry_id = Column(String(100), nullable=True, index=True)
    client_ip = Column(String(45), nullable=True)

    # Patient data (ENCRYPTED)
    patient_name_encrypted = Column(Text, nullable=True)
    vitals_encrypted = Column(Text, nullable=True)  # Encrypted JSON of vitals + demographics

    # Scoring results (not encrypted, for queries)
    risk_level = Column(String(10), nullable=True, index=True)
    priority_score = Column(Float, nullable=True)
    score_source = Column(String(20), nullable=True, index=True)  # authoritative or local
    queue_position = Column(Integer, nullable=True)
    estimated_wait_time = Column(Integer, nullable=True)
    queue_length = Column(Integer, nullable=True)

    # Timing
    authority_call_time_ms = Column(Float, nullable=True)
    total_time_ms = Column(Float, nullable=True)

    # Reconciliation outcome (counts of updated/added/dropped/skipped)
    details = Column(JSON, nullable=True)

    # Status and error tracking
    success = Column(Boolean, nullable=False, default=True, index=True)
    error_type = Column(String(50), nullable=True, index=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
