import json

import httpx
from httpx import ASGITransport, AsyncClient

from src.backend.domain.models.case import CaseStatus
from src.backend.intake.guard import InMemoryRateLimitStore, SubmissionGuard
from src.backend.intake.local_store import (
    InMemoryLocalLeadStore,
    JsonFileLocalLeadStore,
    LocalLead,
    SavedTo,
    new_local_lead_id,
    utcnow,
)
from src.backend.intake.submitter import LeadForm, LeadSubmitter
from src.backend.intake.transport import StagedFile, SubmissionTransport
from src.backend.intake.webhook import LeadWebhook
from src.backend.main import app
from src.backend.services.cases.service import case_service
from src.backend.services.timeline.service import timeline_service


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


async def _no_sleep(seconds: float) -> None:
    return None


def _guard(clock: FakeClock) -> SubmissionGuard:
    return SubmissionGuard(InMemoryRateLimitStore(), honeypot_field="company_website", clock=clock)


def _app_transport() -> SubmissionTransport:
    client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    return SubmissionTransport(client, base_url="http://test", retries=1, sleep=_no_sleep)


def _disabled_webhook() -> LeadWebhook:
    return LeadWebhook(url="")


async def test_too_fast_then_case_created_with_initial_timeline_event():
    clock = FakeClock()
    store = InMemoryLocalLeadStore()
    submitter = LeadSubmitter(
        guard=_guard(clock),
        transport=_app_transport(),
        store=store,
        webhook=_disabled_webhook(),
    )
    form = LeadForm(source="contact", name="Ana Submitter", email="ana.submitter@example.com")
    opened = clock.now - 1.0

    rejected = await submitter.submit(form, form_open_time=opened)
    assert rejected.allowed is False
    assert rejected.reason == "too_fast"
    assert store.list_leads() == []

    clock.now += 2.0
    outcome = await submitter.submit(form, form_open_time=opened)

    assert outcome.allowed is True
    assert outcome.delivered is True
    assert outcome.saved_to == SavedTo.REMOTE
    assert outcome.case_id

    case = case_service.get_case(outcome.case_id)
    assert case is not None
    assert case.status == CaseStatus.NEW

    events = timeline_service.list_events(outcome.case_id)
    assert len(events) == 1
    assert events[0].stage == CaseStatus.NEW

    [local] = store.list_leads()
    assert local.meta.saved_to == SavedTo.REMOTE
    assert local.meta.case_id == outcome.case_id


async def test_honeypot_never_reaches_network():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"ok": True})

    clock = FakeClock()
    transport = SubmissionTransport(
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        base_url="http://intake.test",
        sleep=_no_sleep,
    )
    submitter = LeadSubmitter(
        guard=_guard(clock),
        transport=transport,
        store=InMemoryLocalLeadStore(),
        webhook=_disabled_webhook(),
    )

    outcome = await submitter.submit(
        {"name": "Bot", "company_website": "http://spam.example"},
        form_open_time=clock.now - 60,
    )

    assert outcome.allowed is False
    assert outcome.reason == "honeypot"
    assert calls == []


async def test_transport_failure_keeps_local_record():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    clock = FakeClock()
    store = InMemoryLocalLeadStore()
    transport = SubmissionTransport(
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        base_url="http://intake.test",
        sleep=_no_sleep,
    )
    submitter = LeadSubmitter(guard=_guard(clock), transport=transport, store=store, webhook=_disabled_webhook())

    outcome = await submitter.submit({"name": "Ana", "phone": "+90 555 000 0000"}, form_open_time=clock.now - 60)

    assert outcome.allowed is True
    assert outcome.delivered is False
    assert outcome.saved_to == SavedTo.LOCAL
    assert outcome.message
    [local] = store.list_leads()
    assert local.meta.saved_to == SavedTo.LOCAL
    assert local.phone == "+90 555 000 0000"


async def test_webhook_is_fire_and_forget_and_sends_secret():
    received = []

    def webhook_handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(500)

    def intake_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True, "case_id": "c-9", "portal_token": "tok"})

    clock = FakeClock()
    submitter = LeadSubmitter(
        guard=_guard(clock),
        transport=SubmissionTransport(
            httpx.AsyncClient(transport=httpx.MockTransport(intake_handler)),
            base_url="http://intake.test",
            sleep=_no_sleep,
        ),
        store=InMemoryLocalLeadStore(),
        webhook=LeadWebhook(
            url="http://hooks.test/lead",
            secret="s3cret",
            transport=httpx.MockTransport(webhook_handler),
        ),
    )

    outcome = await submitter.submit({"name": "Ana"}, form_open_time=clock.now - 60)
    # A failing webhook does not change the outcome.
    assert outcome.delivered is True

    await submitter.drain()
    assert len(received) == 1
    assert received[0].headers["x-lead-secret"] == "s3cret"


async def test_staged_files_uploaded_after_case_exists(tmp_path, monkeypatch):
    from src.backend.infra.storage.files import LocalCaseFileStorageBackend
    import src.backend.api.v1.routes_intake as routes_intake

    monkeypatch.setattr(routes_intake, "case_file_storage", LocalCaseFileStorageBackend(tmp_path))

    clock = FakeClock()
    submitter = LeadSubmitter(
        guard=_guard(clock),
        transport=_app_transport(),
        store=InMemoryLocalLeadStore(),
        webhook=_disabled_webhook(),
    )
    files = [StagedFile(name="smile.jpg", content=b"\xff\xd8jpeg", content_type="image/jpeg")]

    outcome = await submitter.submit(
        {"name": "Staged Files", "email": "staged@example.com"},
        form_open_time=clock.now - 60,
        files=files,
    )

    assert outcome.files_uploaded == 1
    case = case_service.get_case(outcome.case_id)
    assert [f.name for f in case.files] == ["smile.jpg"]
    assert case.files[0].size == len(b"\xff\xd8jpeg")


async def test_corrupt_local_store_does_not_block_delivery(tmp_path):
    path = tmp_path / "leads.json"
    path.write_text(json.dumps([{"id": 1, "created_at": "not a date"}]), encoding="utf-8")
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"ok": True, "case_id": "c-11", "portal_token": "tok"})

    clock = FakeClock()
    store = JsonFileLocalLeadStore(path)
    submitter = LeadSubmitter(
        guard=_guard(clock),
        transport=SubmissionTransport(
            httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            base_url="http://intake.test",
            sleep=_no_sleep,
        ),
        store=store,
        webhook=_disabled_webhook(),
    )

    outcome = await submitter.submit({"name": "Ana"}, form_open_time=clock.now - 60)

    assert len(calls) == 1
    assert outcome.delivered is True
    assert outcome.saved_to == SavedTo.REMOTE
    [local] = store.list_leads()
    assert local.meta.case_id == "c-11"


async def test_webhook_with_malformed_url_reports_failure():
    lead = LocalLead(id=new_local_lead_id(), created_at=utcnow(), name="Ana")

    assert await LeadWebhook(url="http://hooks.test:notaport/lead").send(lead) is False
