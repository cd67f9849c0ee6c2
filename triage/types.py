"""
Pydantic types for the triage queue engine.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class RiskLevel(str, Enum):
    """Discrete triage category."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class ScoreSource(str, Enum):
    """Where an entry's risk level and priority score came from."""
    AUTHORITATIVE = "authoritative"
    LOCAL = "local"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_entry_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so queue ordering can compare them."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class VitalSigns(BaseModel):
    """Vital signs captured at the kiosk."""
    heart_rate: float = Field(..., description="Beats per minute")
    respiratory_rate: float = Field(..., description="Breaths per minute")
    body_temperature: float = Field(..., description="Degrees Celsius")
    oxygen_saturation: float = Field(..., description="SpO2 percentage")
    systolic_bp: float = Field(..., description="Systolic blood pressure, mmHg")
    diastolic_bp: float = Field(..., description="Diastolic blood pressure, mmHg")


class Demographics(BaseModel):
    """Patient demographics relevant to scoring."""
    age: float = Field(..., description="Age in years")
    gender: int = Field(..., description="Gender code: 0, 1 or 2")
    weight_kg: float = Field(..., description="Weight in kilograms")
    height_m: float = Field(..., description="Height in metres")


class RiskAssessment(BaseModel):
    """Output of the vital sign risk assessor."""
    risk_level: RiskLevel
    risk_score: int = Field(..., ge=0, description="Accumulated clinical points")
    contributing_factors: List[str] = Field(default_factory=list, description="Factors that scored points")


class QueueEntry(BaseModel):
    """One patient waiting in the queue."""
    id: str = Field(default_factory=new_entry_id, description="Stable unique identifier")
    name: str = Field(..., description="Display name")
    vital_signs: VitalSigns
    demographics: Demographics
    risk_level: RiskLevel
    risk_score: Optional[int] = Field(None, ge=0, description="Local risk points; null when scored by the authority")
    priority_score: float = Field(..., ge=0.0, le=100.0, description="Ranking number, higher is seen sooner")
    confidence_score: float = Field(0.85, ge=0.0, le=1.0, description="Confidence in the assigned priority")
    score_source: ScoreSource = Field(ScoreSource.LOCAL, description="authoritative or local")
    check_in_time: datetime = Field(default_factory=utc_now)
    queue_position: int = Field(0, ge=0, description="1-based rank, recomputed on every mutation")
    estimated_wait_time: int = Field(0, ge=0, description="Minutes until position 1, recomputed on every mutation")
    authority_wait_time: Optional[float] = Field(None, description="The authority's own wait estimate, informational")
    synced_at: Optional[datetime] = Field(None, description="When authority data was last adopted")

    @field_validator("check_in_time", "synced_at")
    @classmethod
    def timestamps_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    @property
    def is_authoritative(self) -> bool:
        return self.score_source == ScoreSource.AUTHORITATIVE


class AuthorityAssessment(BaseModel):
    """Scoring returned by the external prioritization authority."""
    risk_level: RiskLevel
    priority_score: Optional[float] = Field(None, description="0-100, higher is seen sooner")
    priority: Optional[int] = Field(None, ge=1, le=5, description="Legacy rank, 1 is most urgent")
    estimated_wait_time: Optional[float] = Field(None, ge=0)
    confidence_score: Optional[float] = Field(None, ge=0.0, le=1.0)

    @field_validator("risk_level", mode="before")
    @classmethod
    def normalize_risk_level(cls, value):
        if isinstance(value, str):
            return value.strip().capitalize()
        return value

    @model_validator(mode="after")
    def derive_priority_score(self) -> "AuthorityAssessment":
        if self.priority_score is None:
            if self.priority is None:
                raise ValueError("Authority response carries neither priority_score nor priority")
            self.priority_score = float((6 - self.priority) * 20)
        return self


class AuthorityEntry(AuthorityAssessment):
    """One entry of the authority's queue. The authority keeps no names."""
    id: str
    check_in_time: Optional[datetime] = None
    vital_signs: Optional[VitalSigns] = None
    demographics: Optional[Demographics] = None

    @field_validator("check_in_time")
    @classmethod
    def check_in_in_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class SubmissionResult(BaseModel):
    """Result of submitting vitals through the reconciler."""
    entry: QueueEntry
    authoritative: bool
    warning: Optional[str] = None


class CallNextResult(BaseModel):
    """Result of calling the next patient."""
    next_patient: Optional[QueueEntry] = None
    message: str
    updated_queue: List[QueueEntry] = Field(default_factory=list)


class QueueStats(BaseModel):
    """Aggregate view of the current queue."""
    total_patients: int = 0
    high_priority: int = 0
    medium_priority: int = 0
    low_priority: int = 0
    authoritative_entries: int = 0
    local_entries: int = 0
    average_wait_time: float = 0.0
    current_wait_time: int = 0
