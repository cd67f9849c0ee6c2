"""
Priority queue engine for walk-in triage.

Scores vital signs into a risk level and priority, keeps one ordered queue
with consistent positions and wait times, and reconciles it with an optional
external prioritization authority. Usable from any Python runtime.
"""

from .authority import PriorityAuthorityClient
from .errors import EmptyQueueError, ExternalServiceError, TriageError, ValidationError
from .queue_store import QueueStore
from .reconciler import ExternalReconciler
from .scheduler import ReconciliationScheduler
from .scoring import assess_risk, compute_priority_score, parse_intake
from .types import (
    CallNextResult,
    Demographics,
    QueueEntry,
    QueueStats,
    RiskAssessment,
    RiskLevel,
    ScoreSource,
    SubmissionResult,
    VitalSigns,
)

__all__ = [
    "PriorityAuthorityClient",
    "EmptyQueueError",
    "ExternalServiceError",
    "TriageError",
    "ValidationError",
    "QueueStore",
    "ExternalReconciler",
    "ReconciliationScheduler",
    "assess_risk",
    "compute_priority_score",
    "parse_intake",
    "CallNextResult",
    "Demographics",
    "QueueEntry",
    "QueueStats",
    "RiskAssessment",
    "RiskLevel",
    "ScoreSource",
    "SubmissionResult",
    "VitalSigns",
]

__version__ = "0.1.0"
