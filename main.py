from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import logging
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import uvicorn

from db import init_db, dispose_engine
from queue_config import resolve_config, QueueConfig
from middleware import RequestLoggingMiddleware, setup_logging_config
from logging_service import TriageTimer, format_timing_log, request_logger
from queue_logging_service import queue_event_logger
from triage import (
    ExternalReconciler,
    PriorityAuthorityClient,
    QueueEntry,
    QueueStore,
    ReconciliationScheduler,
    TriageError,
    ValidationError,
    parse_intake,
)

# Load environment variables from .env if present
load_dotenv()

logger = logging.getLogger(__name__)

CONFIG: QueueConfig = resolve_config()

app = FastAPI(
    title="Walk-in Triage Queue",
    description="""
    Priority queue service for walk-in patients.

    ## Features

    * **Risk Assessment**: Scores submitted vital signs and demographics into Low, Medium or High risk
    * **Priority Queue**: Keeps one ordered queue with consistent positions and estimated wait times
    * **External Authority**: Optionally defers scoring to an external prioritization service, falling back to local scoring when it is unreachable
    * **Reconciliation**: Periodically pulls the authority's queue and re-attaches patient names locally

    ## Usage

    1. Submit a patient's vitals to `/api/patients/vitals`
    2. Watch the queue at `/api/queue`
    3. Call the next patient with `DELETE /api/queue/next`

    The risk thresholds are business rules for queue ordering, not a validated clinical triage algorithm.
    """,
    version="1.0.0",
    contact={
        "name": "Triage System",
        "email": "support@example.com"
    },
    license_info={
        "name": "MIT License"
    }
)

# Add logging middleware
app.add_middleware(RequestLoggingMiddleware)


class SubmitVitalsRequest(BaseModel):
    """Request payload for submitting a walk-in patient's vitals."""

    name: str = Field(
        ...,
        description="Patient display name. It is never sent to the prioritization authority.",
        examples=["Jane Doe"]
    )
    demographics: Dict[str, Any] = Field(
        ...,
        description="age (years), gender (0, 1 or 2), weight_kg, height_m"
    )
    vitals: Dict[str, Any] = Field(
        ...,
        description="heart_rate, respiratory_rate, body_temperature, oxygen_saturation, systolic_bp, diastolic_bp"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Jane Doe",
                "demographics": {"age": 30, "gender": 1, "weight_kg": 65, "height_m": 1.7},
                "vitals": {
                    "heart_rate": 75,
                    "respiratory_rate": 16,
                    "body_temperature": 36.6,
                    "oxygen_saturation": 98,
                    "systolic_bp": 120,
                    "diastolic_bp": 80
                }
            }
        }
    }


class SubmitVitalsResponse(BaseModel):
    """Response after a patient has been queued."""

    success: bool = True
    data: QueueEntry
    authoritative: bool = Field(..., description="True if the authority scored this patient")
    warning: Optional[str] = Field(None, description="Set when the authority was unreachable and scoring fell back to local")
    message: str


def _entries(entries: List[QueueEntry]) -> List[Dict[str, Any]]:
    return [entry.model_dump(mode="json") for entry in entries]


async def _log_refresh(success: bool, counts: Optional[Dict[str, int]], error: Optional[str]) -> None:
    await queue_event_logger.log_queue_event(
        event_type="refresh",
        queue_length=len(app.state.store),
        details=counts,
        success=success,
        error_type="ExternalServiceError" if not success else None,
        error_message=error,
    )


@app.on_event("startup")
async def on_startup():
    config = resolve_config()
    app.state.config = config

    setup_logging_config(config.log_level)

    await init_db()

    app.state.store = QueueStore()
    app.state.authority = PriorityAuthorityClient(
        config.authority_url,
        timeout=config.authority_timeout_seconds,
        submit_path=config.authority_submit_path,
        queue_path=config.authority_queue_path,
    )
    app.state.reconciler = ExternalReconciler(app.state.store, app.state.authority)
    app.state.scheduler = ReconciliationScheduler(
        app.state.reconciler,
        config.reconcile_interval_seconds,
        on_refresh=_log_refresh,
    )

    if config.authority_enabled:
        app.state.scheduler.start()
        logger.info(f"Prioritization authority at {config.authority_url}")
    else:
        logger.info("No prioritization authority configured; all scoring is local")


@app.on_event("shutdown")
async def on_shutdown():
    await app.state.scheduler.stop()
    await app.state.authority.aclose()
    await dispose_engine()


@app.exception_handler(TriageError)
async def triage_error_handler(request: Request, exc: TriageError):
    request.state.error_type = exc.code
    request.state.error_message = exc.message
    status_code = 400 if isinstance(exc, ValidationError) else 500
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    request.state.error_type = "VALIDATION_ERROR"
    request.state.error_message = str(exc.errors())[:1000]
    return JSONResponse(
        status_code=400,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request payload",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    request.state.error_type = type(exc).__name__
    request.state.error_message = str(exc)
    logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again or contact support.",
            "details": {"type": type(exc).__name__},
        },
    )


# API Routes
@app.get(
    "/",
    tags=["System"],
    summary="System Status",
    description="Get system status and basic information about the queue API.",
)
async def read_root():
    """Get system status and basic information."""
    config: QueueConfig = app.state.config
    return {
        "status": "ok",
        "app": config.app_name,
        "env": config.app_env,
        "version": "1.0.0",
        "description": "Walk-in Triage Queue",
        "available_endpoints": [
            "POST /api/patients/vitals - Submit vitals and queue a patient",
            "GET /api/queue - Current queue",
            "GET /api/queue/stats - Queue statistics",
            "GET /api/queue/next - Peek at the next patient",
            "DELETE /api/queue/next - Call the next patient",
            "DELETE /api/queue/{patient_id} - Remove a patient",
            "DELETE /api/queue - Clear the queue",
            "GET /api/health - Health and authority status",
            "GET /docs - API documentation (Swagger UI)",
        ]
    }


@app.post(
    "/api/patients/vitals",
    response_model=SubmitVitalsResponse,
    tags=["Queue"],
    summary="Submit Patient Vitals",
    description="""
    Score a patient's vital signs and add them to the queue.

    When a prioritization authority is configured it scores the patient; if it
    times out or fails, the patient is scored locally and the response carries
    a warning. Implausible vitals are rejected with 400 before any scoring.
    """,
    responses={
        400: {
            "description": "Missing, non-numeric or implausible vitals",
            "content": {
                "application/json": {
                    "example": {
                        "error": "VALIDATION_ERROR",
                        "message": "Field heart_rate=-5.0 is outside the plausible range",
                        "details": {"field": "heart_rate", "value": -5.0, "min": 0, "max": 300}
                    }
                }
            }
        }
    }
)
async def submit_vitals(submit_request: SubmitVitalsRequest, request: Request) -> SubmitVitalsResponse:
    """
    Validate, score and enqueue one patient.

    Raises:
        ValidationError: 400 for a blank name or invalid vitals
    """
    name = submit_request.name.strip()
    if not name:
        raise ValidationError("Patient name is required", field="name")

    vitals, demographics = parse_intake(submit_request.vitals, submit_request.demographics)

    reconciler: ExternalReconciler = app.state.reconciler
    with TriageTimer("submit_vitals") as timer:
        result = await reconciler.submit(name, vitals, demographics)

    request.state.authority_fallback = result.warning is not None
    authority_call_time_ms = None
    if app.state.authority.enabled and app.state.authority.last_result is not None:
        authority_call_time_ms = app.state.authority.last_result.execution_time_ms
    logger.info(format_timing_log("submit_vitals", timer.elapsed_ms, {
        "risk": result.entry.risk_level.value,
        "source": result.entry.score_source.value,
        "position": result.entry.queue_position,
    }))

    await queue_event_logger.log_queue_event(
        event_type="submit",
        entry=result.entry,
        request_id=getattr(request.state, "request_id", None),
        client_ip=getattr(request.state, "client_ip", None),
        queue_length=len(app.state.store),
        authority_call_time_ms=authority_call_time_ms,
        total_time_ms=timer.elapsed_ms,
        details={"warning": result.warning} if result.warning else None,
    )

    return SubmitVitalsResponse(
        data=result.entry,
        authoritative=result.authoritative,
        warning=result.warning,
        message="Patient added successfully to queue",
    )


@app.get(
    "/api/queue",
    tags=["Queue"],
    summary="List Queue",
    description="All waiting patients in queue order, with positions and estimated wait times.",
)
async def get_queue():
    entries = app.state.reconciler.snapshot()
    return {
        "success": True,
        "count": len(entries),
        "data": _entries(entries),
    }


@app.get(
    "/api/queue/stats",
    tags=["Queue"],
    summary="Queue Statistics",
)
async def get_queue_stats():
    """Counts per risk level and score source, plus wait times."""
    store: QueueStore = app.state.store
    next_patient = store.peek()
    return {
        "success": True,
        "stats": app.state.reconciler.stats().model_dump(),
        "next_patient": next_patient.model_dump(mode="json") if next_patient else None,
    }


@app.get(
    "/api/queue/next",
    tags=["Queue"],
    summary="Peek Next Patient",
    description="The patient at position 1, without removing them.",
)
async def peek_next_patient():
    next_patient = app.state.store.peek()
    if next_patient is None:
        return {"success": True, "next_patient": None, "message": "No patients in queue"}
    return {"success": True, "next_patient": next_patient.model_dump(mode="json")}


@app.delete(
    "/api/queue/next",
    tags=["Queue"],
    summary="Call Next Patient",
    description="Remove and return the patient at position 1. An empty queue returns `next_patient: null`.",
)
async def call_next_patient(request: Request):
    result = await app.state.reconciler.call_next()

    if result.next_patient is not None:
        await queue_event_logger.log_queue_event(
            event_type="call_next",
            entry=result.next_patient,
            request_id=getattr(request.state, "request_id", None),
            client_ip=getattr(request.state, "client_ip", None),
            queue_length=len(result.updated_queue),
        )

    return {
        "success": True,
        "next_patient": result.next_patient.model_dump(mode="json") if result.next_patient else None,
        "message": result.message,
        "updated_queue": _entries(result.updated_queue),
    }


@app.delete(
    "/api/queue/{patient_id}",
    tags=["Queue"],
    summary="Remove Patient",
    description="Remove one patient. Removing an unknown id succeeds and changes nothing.",
)
async def remove_patient(patient_id: str, request: Request):
    removed = app.state.store.get(patient_id)
    updated_queue = app.state.reconciler.remove(patient_id)

    if removed is not None:
        await queue_event_logger.log_queue_event(
            event_type="remove",
            entry=removed,
            request_id=getattr(request.state, "request_id", None),
            client_ip=getattr(request.state, "client_ip", None),
            queue_length=len(updated_queue),
        )

    return {
        "success": True,
        "removed": removed is not None,
        "message": "Patient removed from queue" if removed is not None else "Patient was not in queue",
        "updated_queue": _entries(updated_queue),
    }


@app.delete(
    "/api/queue",
    tags=["Queue"],
    summary="Clear Queue",
)
async def clear_queue(request: Request):
    """Remove every waiting patient."""
    cleared = await app.state.reconciler.clear()

    await queue_event_logger.log_queue_event(
        event_type="clear",
        request_id=getattr(request.state, "request_id", None),
        client_ip=getattr(request.state, "client_ip", None),
        queue_length=0,
        details={"cleared": cleared},
    )

    return {
        "success": True,
        "cleared": cleared,
        "message": f"Cleared {cleared} patients from queue",
    }


@app.get(
    "/api/health",
    tags=["System"],
    summary="Health Check",
    description="Queue length and the last observed reachability of the prioritization authority.",
)
async def health():
    reconciler: ExternalReconciler = app.state.reconciler
    status = reconciler.status()
    return {
        "status": "healthy",
        "queue_length": len(app.state.store),
        "authority": {
            **status,
            "last_success_at": status["last_success_at"].isoformat() if status["last_success_at"] else None,
            "last_refresh_at": status["last_refresh_at"].isoformat() if status["last_refresh_at"] else None,
        },
        "reconciliation": {
            "running": app.state.scheduler.running,
            "interval_seconds": app.state.scheduler.interval_seconds,
            "skipped_runs": app.state.scheduler.skipped_runs,
        },
    }


@app.get(
    "/api/logs/stats",
    tags=["Logs"],
    summary="Request and Queue Event Statistics",
)
async def log_stats(hours: int = 24):
    return {
        "requests": await request_logger.get_request_stats(hours),
        "queue_events": await queue_event_logger.get_queue_event_stats(hours),
    }


@app.get(
    "/api/logs/queue-events/{event_id}",
    tags=["Logs"],
    summary="Get Decrypted Queue Event",
    description="One queue event with the patient's name and vitals decrypted.",
)
async def get_decrypted_queue_event(event_id: int):
    try:
        event = await queue_event_logger.get_decrypted_queue_event(event_id)
        if not event:
            raise HTTPException(status_code=404, detail=f"Queue event {event_id} not found")
        return event
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to decrypt queue event {event_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to decrypt queue event: {str(e)}")


if __name__ == "__main__":
    uvicorn.run("main:app", host=CONFIG.host, port=CONFIG.port, reload=CONFIG.reload)
