from __future__ import annotations

from sqlalchemy import Column, Integer, String, Text, DateTime, Float, Boolean, func

from db import Base


class RequestLog(Base):
    """Model for logging API requests and responses."""
    __tablename__ = "request_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Request metadata
    request_id = Column(String(100), nullable=True, index=True)
    method = Column(String(10), nullable=False)  # GET, POST, DELETE
    path = Column(String(255), nullable=False, index=True)  # /api/queue, /api/patients/vitals, ...
    client_ip = Column(String(45), nullable=True)  # IPv4/IPv6 support
    user_agent = Column(Text, nullable=True)
    request_size = Column(Integer, nullable=True)

    # Response data
    status_code = Column(Integer, nullable=False, index=True)
    response_size = Column(Integer, nullable=True)

    # Timing data
    request_time = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    response_time_ms = Column(Float, nullable=True)

    # Error tracking
    error_type = Column(String(50), nullable=True, index=True)  # validation_error, internal_error, ...
    error_message = Column(Text, nullable=True)

    # Set when the submission fell back to local scoring
    authority_fallback = Column(Boolean, nullable=False, default=False, index=True)

    success = Column(Boolean, nullable=False, default=True, index=True)
