"""
HTTP client for the external prioritization authority.

The authority is optional. Every call carries a bounded timeout and every
failure surfaces as ExternalServiceError so callers can fall back to local
scoring.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ExternalServiceError
from .types import AuthorityAssessment, AuthorityEntry, Demographics, VitalSigns, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 12.0


class AuthorityCallResult(BaseModel):
    """Outcome of the most recent call to the authority."""
    operation: str
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    execution_time_ms: Optional[float] = None
    finished_at: datetime = Field(default_factory=utc_now)


class PriorityAuthorityClient:
    """Async client for the authority's submit/queue/remove-next/clear contract."""

    def __init__(
        self,
        base_url: Optional[str],
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        submit_path: str = "/predict/",
        queue_path: str = "/queue",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self.submit_path = submit_path
        self.queue_path = queue_path
        self.last_result: Optional[AuthorityCallResult] = None
        self.last_success_at: Optional[datetime] = None
        self._client: Optional[httpx.AsyncClient] = None
        if self.base_url:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(timeout),
                headers={"Content-Type": "application/json"},
                transport=transport,
            )
        logger.info(f"Initialized PriorityAuthorityClient ({self.base_url or 'disabled'}, timeout={timeout}s)")

    @property
    def enabled(self) -> bool:
        return self._client is not None

    @property
    def reachable(self) -> Optional[bool]:
        """Whether the last call succeeded; None before any call."""
        if self.last_result is None:
            return None
        return self.last_result.success

    async def submit_vitals(
        self,
        entry_id: str,
        vitals: VitalSigns,
        demographics: Demographics,
    ) -> AuthorityAssessment:
        """Ask the authority to score one patient. Names are never sent."""
        payload = {
            "id": entry_id,
            **demographics.model_dump(),
            **vitals.model_dump(),
        }
        body = await self._request("POST", self.submit_path, "submit_vitals", payload)
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        try:
            return AuthorityAssessment.model_validate(body)
        except PydanticValidationError as e:
            raise self._fail("submit_vitals", f"Malformed authority assessment: {e}")

    async def fetch_queue(self) -> List[AuthorityEntry]:
        """Fetch the authority's current queue, keyed by id."""
        body = await self._request("GET", self.queue_path, "fetch_queue")
        if isinstance(body, dict):
            body = body.get("data")
        if not isinstance(body, list):
            raise self._fail("fetch_queue", "Authority queue response is not a list")
        try:
            return [AuthorityEntry.model_validate(item) for item in body]
        except PydanticValidationError as e:
            raise self._fail("fetch_queue", f"Malformed authority queue entry: {e}")

    async def remove_next(self) -> Optional[str]:
        """Pop the authority's highest entry; returns its id when reported."""
        body = await self._request("DELETE", f"{self.queue_path}/next", "remove_next")
        if isinstance(body, dict):
            popped = body.get("next_patient") or body.get("nextPatient") or body
            if isinstance(popped, dict) and popped.get("id"):
                return str(popped["id"])
        return None

    async def clear(self) -> None:
        await self._request("DELETE", self.queue_path, "clear")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if self._client is None:
            raise ExternalServiceError("Prioritization authority is not configured", operation=operation)

        start_time = time.perf_counter()
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            raise self._fail(operation, f"Timed out after {self.timeout}s: {e!r}", start_time)
        except httpx.HTTPError as e:
            raise self._fail(operation, f"Network failure: {e!r}", start_time)

        if response.status_code >= 400:
            raise self._fail(
                operation,
                f"Authority returned status {response.status_code}",
                start_time,
                status_code=response.status_code,
            )

        try:
            body = response.json() if response.content else None
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError both land here
            raise self._fail(operation, f"Authority returned invalid JSON: {e}", start_time, response.status_code)

        self.last_result = AuthorityCallResult(
            operation=operation,
            success=True,
            status_code=response.status_code,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
        )
        self.last_success_at = self.last_result.finished_at
        return body

    def _fail(
        self,
        operation: str,
        message: str,
        start_time: Optional[float] = None,
        status_code: Optional[int] = None,
    ) -> ExternalServiceError:
        elapsed = (time.perf_counter() - start_time) * 1000 if start_time else None
        self.last_result = AuthorityCallResult(
            operation=operation,
            success=False,
            status_code=status_code,
            error=message,
            execution_time_ms=elapsed,
        )
        logger.warning(f"Authority {operation} failed: {message}")
        return ExternalServiceError(message, operation=operation, status_code=status_code)
