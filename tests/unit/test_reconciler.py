"""
Unit Tests for the External Reconciler

The prioritization authority is replaced by httpx.MockTransport handlers.
"""
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from triage.authority import PriorityAuthorityClient
from triage.errors import ExternalServiceError, ValidationError
from triage.queue_store import QueueStore
from triage.reconciler import FALLBACK_WARNING, LOCAL_CONFIDENCE, ExternalReconciler
from triage.types import Demographics, RiskLevel, ScoreSource, VitalSigns


class FakeAuthority:
    """Records requests and answers them with a configurable handler."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def paths(self) -> List[str]:
        return [f"{r.method} {r.url.path}" for r in self.requests]


def make_reconciler(handler=None, base_url="http://authority.test"):
    fake = FakeAuthority(handler) if handler else None
    transport = httpx.MockTransport(fake) if fake else None
    client = PriorityAuthorityClient(base_url, timeout=1.0, transport=transport)
    return ExternalReconciler(QueueStore(), client), fake


def assessment(risk="High", score=92.0, wait=5) -> Dict[str, Any]:
    return {"risk_level": risk, "priority_score": score, "estimated_wait_time": wait, "confidence_score": 0.9}


def refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("Connection refused", request=request)


def time_out(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


@pytest.mark.asyncio
class TestSubmit:
    """Tests for submission scoring and fallback."""

    async def test_adopts_authority_assessment(self, stable_patient):
        reconciler, fake = make_reconciler(lambda r: httpx.Response(200, json=assessment()))

        result = await reconciler.submit("Ada", *stable_patient)

        assert result.authoritative is True
        assert result.warning is None
        assert result.entry.score_source == ScoreSource.AUTHORITATIVE
        assert result.entry.risk_level == RiskLevel.HIGH
        assert result.entry.priority_score == 92.0
        assert result.entry.confidence_score == 0.9
        assert result.entry.authority_wait_time == 5
        assert result.entry.risk_score is None
        assert result.entry.synced_at is not None
        assert fake.paths() == ["POST /predict/"]

    async def test_name_is_not_sent(self, stable_patient):
        reconciler, fake = make_reconciler(lambda r: httpx.Response(200, json=assessment()))
        result = await reconciler.submit("Ada Lovelace", *stable_patient)

        payload = json.loads(fake.requests[0].content)
        assert payload["id"] == result.entry.id
        assert payload["heart_rate"] == 75
        assert payload["age"] == 30
        assert "Ada Lovelace" not in fake.requests[0].content.decode()

    async def test_unwraps_data_envelope(self, stable_patient):
        reconciler, _ = make_reconciler(lambda r: httpx.Response(200, json={"success": True, "data": assessment("medium", 55)}))
        result = await reconciler.submit("Ada", *stable_patient)
        assert result.entry.risk_level == RiskLevel.MEDIUM
        assert result.entry.priority_score == 55

    async def test_legacy_priority_rank(self, stable_patient):
        reconciler, _ = make_reconciler(lambda r: httpx.Response(200, json={"risk_level": "Low", "priority": 4}))
        result = await reconciler.submit("Ada", *stable_patient)
        assert result.entry.priority_score == 40
        assert result.entry.confidence_score == LOCAL_CONFIDENCE

    async def test_out_of_range_authority_score_is_clamped(self, stable_patient):
        reconciler, _ = make_reconciler(lambda r: httpx.Response(200, json=assessment(score=140)))
        result = await reconciler.submit("Ada", *stable_patient)
        assert result.entry.priority_score == 100

    @pytest.mark.parametrize("handler", [
        refuse,
        time_out,
        lambda r: httpx.Response(500, json={"error": "boom"}),
        lambda r: httpx.Response(200, content=b"not json"),
        lambda r: httpx.Response(200, content=b"\xff\xfe\xfa garbage"),
        lambda r: httpx.Response(200, json={"risk_level": "Severe", "priority_score": 50}),
        lambda r: httpx.Response(200, json={"risk_level": "High"}),
    ])
    async def test_falls_back_to_local_scoring(self, critical_patient, handler):
        """Scenario E: an unreachable or misbehaving authority never fails the submission."""
        reconciler, _ = make_reconciler(handler)

        result = await reconciler.submit("Bob", *critical_patient)

        assert result.authoritative is False
        assert result.warning == FALLBACK_WARNING
        assert result.entry.score_source == ScoreSource.LOCAL
        assert result.entry.risk_level == RiskLevel.HIGH
        assert result.entry.risk_score == 150
        assert result.entry.priority_score == 100
        assert result.entry.confidence_score == LOCAL_CONFIDENCE
        assert result.entry.queue_position == 1
        assert len(reconciler.store) == 1
        assert reconciler.status()["reachable"] is False

    async def test_disabled_authority_scores_locally_without_warning(self, stable_patient):
        reconciler, _ = make_reconciler(base_url="")
        result = await reconciler.submit("Ada", *stable_patient)
        assert result.warning is None
        assert result.entry.score_source == ScoreSource.LOCAL
        assert reconciler.status()["configured"] is False

    async def test_invalid_vitals_never_reach_the_authority(self, stable_vitals, adult_demographics):
        reconciler, fake = make_reconciler(lambda r: httpx.Response(200, json=assessment()))
        vitals = VitalSigns(**{**stable_vitals, "oxygen_saturation": 140})

        with pytest.raises(ValidationError):
            await reconciler.submit("Ada", vitals, Demographics(**adult_demographics))

        assert fake.requests == []
        assert len(reconciler.store) == 0


@pytest.mark.asyncio
class TestRefresh:
    """Tests for pulling the authority's queue."""

    async def test_refresh_reattaches_names(self, stable_patient):
        queue: List[Dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                body = json.loads(request.content)
                queue.append({"id": body["id"], **assessment("Medium", 50)})
                return httpx.Response(200, json=assessment("Medium", 50))
            return httpx.Response(200, json=queue)

        reconciler, _ = make_reconciler(handler)
        submitted = await reconciler.submit("Ada", *stable_patient)
        queue[0]["priority_score"] = 70

        counts = await reconciler.refresh()

        assert counts["updated"] == 1
        entry = reconciler.snapshot()[0]
        assert entry.id == submitted.entry.id
        assert entry.name == "Ada"
        assert entry.priority_score == 70
        assert reconciler.last_refresh_error is None
        assert reconciler.last_refresh_at is not None

    async def test_refresh_adds_remote_entries_with_placeholder(self, stable_patient):
        vitals, demographics = stable_patient
        remote = [{
            "id": "0f1e2d3c-remote",
            **assessment("Low", 20),
            "vital_signs": vitals.model_dump(),
            "demographics": demographics.model_dump(),
        }]
        reconciler, _ = make_reconciler(lambda r: httpx.Response(200, json={"data": remote}))

        await reconciler.refresh()

        entry = reconciler.snapshot()[0]
        assert entry.name == "Patient 0f1e2d3c"

    async def test_failed_refresh_keeps_queue(self, stable_patient):
        reconciler, _ = make_reconciler(refuse)
        await reconciler.submit("Ada", *stable_patient)
        before = reconciler.snapshot()

        with pytest.raises(ExternalServiceError):
            await reconciler.refresh()

        assert reconciler.snapshot() == before
        assert reconciler.last_refresh_error is not None

    async def test_non_list_queue_is_rejected(self):
        reconciler, _ = make_reconciler(lambda r: httpx.Response(200, json={"queue": "nope"}))
        with pytest.raises(ExternalServiceError):
            await reconciler.refresh()


@pytest.mark.asyncio
class TestQueueOperations:
    """Tests for call-next, remove and clear through the reconciler."""

    async def test_call_next_on_empty_queue(self):
        reconciler, _ = make_reconciler(base_url="")
        result = await reconciler.call_next()
        assert result.next_patient is None
        assert result.message == "No patients in queue"
        assert result.updated_queue == []

    async def test_call_next_forwards_authoritative_pop(self, stable_patient):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json=assessment())
            return httpx.Response(200, json={"success": True})

        reconciler, fake = make_reconciler(handler)
        submitted = await reconciler.submit("Ada", *stable_patient)

        result = await reconciler.call_next()

        assert result.next_patient.id == submitted.entry.id
        assert result.message == "Calling Ada"
        assert "DELETE /queue/next" in fake.paths()

    async def test_patient_popped_by_authority_instead_stays_queued(self, stable_patient):
        """The authority calls B while A is called here; B must not vanish on refresh."""
        ids: List[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                ids.append(json.loads(request.content)["id"])
                return httpx.Response(200, json=assessment("High", 90) if len(ids) == 1 else assessment("Medium", 80))
            if request.url.path.endswith("/next"):
                return httpx.Response(200, json={"success": True, "next_patient": {"id": ids[1]}})
            return httpx.Response(200, json=[{"id": ids[0], **assessment("High", 90)}])

        reconciler, _ = make_reconciler(handler)
        a = await reconciler.submit("A", *stable_patient)
        b = await reconciler.submit("B", *stable_patient)

        called = await reconciler.call_next()
        assert called.next_patient.id == a.entry.id
        assert reconciler.store.is_detached(b.entry.id)

        await reconciler.refresh()

        remaining = reconciler.snapshot()
        assert [e.id for e in remaining] == [b.entry.id]
        assert remaining[0].name == "B"
        assert remaining[0].queue_position == 1

    async def test_call_next_succeeds_when_forward_fails(self, stable_patient):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if request.method == "POST":
                return httpx.Response(200, json=assessment())
            return httpx.Response(503)

        reconciler, _ = make_reconciler(handler)
        await reconciler.submit("Ada", *stable_patient)
        result = await reconciler.call_next()

        assert result.next_patient is not None
        assert len(reconciler.store) == 0
        assert calls["n"] == 2

    async def test_local_entries_are_not_forwarded(self, stable_patient):
        reconciler, fake = make_reconciler(refuse)
        await reconciler.submit("Ada", *stable_patient)
        await reconciler.call_next()
        assert fake.paths() == ["POST /predict/"]

    async def test_remove_returns_updated_queue(self, stable_patient, critical_patient):
        reconciler, _ = make_reconciler(base_url="")
        a = await reconciler.submit("A", *stable_patient)
        b = await reconciler.submit("B", *critical_patient)

        assert [e.id for e in reconciler.remove("unknown")] == [b.entry.id, a.entry.id]
        remaining = reconciler.remove(b.entry.id)
        assert [e.id for e in remaining] == [a.entry.id]
        assert remaining[0].estimated_wait_time == 0

    async def test_clear_forwards_and_counts(self, stable_patient):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                raise httpx.ConnectError("down", request=request)
            return httpx.Response(200, json={"success": True})

        reconciler, fake = make_reconciler(handler)
        await reconciler.submit("A", *stable_patient)
        await reconciler.submit("B", *stable_patient)

        assert await reconciler.clear() == 2
        assert len(reconciler.store) == 0
        assert fake.paths()[-1] == "DELETE /queue"
        assert reconciler.store.name_count() == 0
