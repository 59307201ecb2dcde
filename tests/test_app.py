import pytest
from fastapi.testclient import TestClient

from app import create_app
from models.communication_log import CommunicationLogEntry, CommunicationStatus
from models.execution_log import LogStatus
from senders.mock_senders import MockSmsSender
from service_factory import Services

from conftest import ORG_ID, FakeExecutor


@pytest.fixture
def services(settings, store, email_sender, sms_sender):
    return Services(settings, store=store, email_sender=email_sender, sms_sender=sms_sender)


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["executor_mode"] == "local"


def test_event_schedules_and_admin_tick_delivers(client, services, make_workflow, job_status_context, sms_sender):
    make_workflow()

    response = client.post("/api/v1/events", json={"event_type": "job_status_changed", "context": job_status_context})
    assert response.status_code == 200
    scheduled = response.json()["scheduled"]
    assert len(scheduled) == 1

    tick = client.post("/api/v1/admin/process")
    assert tick.status_code == 200
    assert tick.json()["completed"] == scheduled

    assert services.logs.get(scheduled[0]).status == LogStatus.COMPLETED
    assert sms_sender.sent[0]["to"] == "+15551234567"
    entries = services.communications.list_for({"execution_log_id": scheduled[0]})
    assert [e.status for e in entries] == [CommunicationStatus.SENT]


def test_event_with_bad_context_is_422(client):
    response = client.post("/api/v1/events", json={"event_type": "job_status_changed", "context": {"job": {}}})
    assert response.status_code == 422


def test_direct_email_with_bad_recipient_is_400(client, services):
    response = client.post("/api/v1/send/email", json={
        "to": "nobody", "subject": "Hi", "body_html": "<p>Hi</p>", "organization_id": ORG_ID,
    })
    assert response.status_code == 400
    assert services.communications.list_for({"organization_id": ORG_ID})[0].status == CommunicationStatus.FAILED


def test_direct_sms_success(client):
    response = client.post("/api/v1/send/sms", json={
        "to": "555-123-4567", "message": "Invoice {{invoice_number}} is ready", "variables": {"invoice_number": "INV-100"},
    })
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["provider_id"].startswith("mock-sms-")


def test_gateway_failure_is_502(settings, store, email_sender):
    services = Services(settings, store=store, email_sender=email_sender,
                        sms_sender=MockSmsSender(fail_with="carrier rejected"))
    client = TestClient(create_app(services))

    response = client.post("/api/v1/send/sms", json={"to": "+15551234567", "message": "Hi"})
    assert response.status_code == 502
    assert "carrier rejected" in response.json()["detail"]


def test_portal_lookup(client, store):
    store.insert("estimates", {"id": "est-1", "estimate_number": "EST-7", "total": 120,
                               "portal_access_token": "tok-1"})

    assert client.get("/api/v1/portal/tok-1").json()["document_number"] == "EST-7"
    assert client.get("/api/v1/portal/unknown").status_code == 404


def test_db_change_hook_publishes_to_feed(client, services):
    seen = []
    services.feed.subscribe("automation_execution_logs", seen.append)

    response = client.post("/api/v1/hooks/db-change", json={
        "type": "INSERT", "table": "automation_execution_logs", "record": {"id": "x", "status": "pending"},
    })
    assert response.json() == {"delivered": 1}
    assert seen[0].row["id"] == "x"
    assert client.post("/api/v1/hooks/db-change", json={"type": "TRUNCATE", "table": "t"}).status_code == 400


def test_provider_callbacks_patch_status(client, services):
    services.communications.record(CommunicationLogEntry(type="sms", recipient="+15551234567", content="Hi",
                                                         status="sent", provider_message_id="tel-1"))
    services.communications.record(CommunicationLogEntry(type="email", recipient="jane@example.com", content="Hi",
                                                         status="sent", provider_message_id="mg-1@acme"))

    telnyx = client.post("/api/v1/hooks/telnyx", json={"data": {"event_type": "message.finalized", "payload": {
        "id": "tel-1", "to": [{"phone_number": "+15551234567", "status": "delivered"}],
    }}})
    mailgun = client.post("/api/v1/hooks/mailgun", json={"event-data": {
        "event": "failed", "message": {"headers": {"message-id": "mg-1@acme"}},
        "delivery-status": {"message": "Mailbox full"},
    }})

    assert telnyx.json() == {"updated": 1}
    assert mailgun.json() == {"updated": 1}
    sms = services.communications.list_for({"provider_message_id": "tel-1"})[0]
    email = services.communications.list_for({"provider_message_id": "mg-1@acme"})[0]
    assert sms.status == CommunicationStatus.DELIVERED
    assert email.status == CommunicationStatus.FAILED
    assert email.error_message == "Mailbox full"


def test_admin_cancel_and_requeue(client, services):
    pending = services.logs.create_pending("wf-1", {"event_type": "job_created"})

    assert client.post(f"/api/v1/admin/logs/{pending.id}/requeue").status_code == 409
    cancelled = client.post(f"/api/v1/admin/logs/{pending.id}/cancel")
    assert cancelled.json()["status"] == "cancelled"
    assert client.post(f"/api/v1/admin/logs/{pending.id}/cancel").status_code == 409
    assert client.post("/api/v1/admin/logs/missing/cancel").status_code == 404

    requeued = client.post(f"/api/v1/admin/logs/{pending.id}/requeue")
    assert requeued.status_code == 200
    assert requeued.json()["requeued_from"] == pending.id
    assert client.post("/api/v1/admin/logs/missing/requeue").status_code == 404


def test_admin_stop_and_clear_and_listing(client, services):
    services.logs.create_pending("wf-1", {"event_type": "job_created"})
    services.logs.create_pending("wf-1", {"event_type": "job_created"})

    assert client.post("/api/v1/admin/stop-and-clear", json={}).json() == {"expired": 2}
    listed = client.get("/api/v1/admin/logs", params={"status": "expired"}).json()
    assert len(listed) == 2


def test_lifespan_starts_and_stops_processor(settings, store):
    settings = settings.model_copy(update={"run_processor": True})
    services = Services(settings, store=store, executor=FakeExecutor())

    with TestClient(create_app(services)) as client:
        assert client.get("/health").json()["processor_running"] is True
    assert services.processor.running is False
