import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import MagicMock

import requests

from api_clients.base_client import RestTableStore, build_query
from api_clients.change_feed import ChangeEvent, ChangeFeed, ChangeType
from api_clients.log_client import LOGS_TABLE
from api_clients.memory_store import InMemoryTableStore
from models.execution_log import LogStatus
from utils.errors import InvalidTransitionError, PersistenceError
from utils.time_utils import utcnow


def test_memory_store_select_order_and_limit(store):
    store.insert("jobs", {"id": "b", "n": 2})
    store.insert("jobs", {"id": "a", "n": 1})
    store.insert("jobs", {"id": "c", "n": None})

    rows = store.select("jobs", order_by="n")
    assert [r["id"] for r in rows] == ["a", "b", "c"]
    rows = store.select("jobs", order_by="n", descending=True, limit=2)
    assert [r["id"] for r in rows] == ["c", "b"]
    assert store.select("jobs", [("n", "gte", 2)]) == [{"id": "b", "n": 2}]


def test_memory_store_returns_copies(store):
    row = store.insert("jobs", {"status": "open"})
    row["status"] = "mutated"
    assert store.select("jobs")[0]["status"] == "open"


def test_memory_store_conditional_update_and_guard(store):
    row = store.insert("logs", {"status": "pending"})
    assert store.update("logs", {"status": "running"}, [("id", "eq", row["id"]), ("status", "eq", "pending")])
    assert store.update("logs", {"status": "running"}, [("id", "eq", row["id"]), ("status", "eq", "pending")]) == []
    with pytest.raises(PersistenceError):
        store.update("logs", {"status": "x"}, [])


def test_change_feed_filters_and_unsubscribe():
    feed = ChangeFeed()
    seen = []
    unsubscribe = feed.subscribe("logs", seen.append, [("status", "eq", "pending")])

    feed.publish(ChangeEvent(event_type=ChangeType.INSERT, table="logs", row={"status": "pending"}))
    feed.publish(ChangeEvent(event_type=ChangeType.INSERT, table="logs", row={"status": "running"}))
    feed.publish(ChangeEvent(event_type=ChangeType.INSERT, table="jobs", row={"status": "pending"}))
    assert len(seen) == 1

    unsubscribe()
    assert feed.listener_count("logs") == 0


def test_change_feed_listener_errors_do_not_reach_writer():
    feed = ChangeFeed()
    store = InMemoryTableStore(feed)

    def broken(event):
        raise RuntimeError("listener blew up")

    store.subscribe("jobs", broken)
    assert store.insert("jobs", {"status": "open"})["status"] == "open"


def test_build_query_maps_postgrest_syntax():
    params = build_query(
        [("status", "in", ["pending", "running"]), ("lease_expires_at", "is", None), ("n", "gte", 3)],
        order_by="created_at",
        limit=5,
    )
    assert params == {
        "status": "in.(pending,running)",
        "lease_expires_at": "is.null",
        "n": "gte.3",
        "order": "created_at.asc",
        "limit": "5",
    }


def test_build_query_combines_repeated_columns():
    params = build_query([("created_at", "gte", "a"), ("created_at", "lt", "b")])
    assert params == {"and": "(created_at.gte.a,created_at.lt.b)"}


def test_rest_store_update_sends_conditional_patch():
    session = MagicMock()
    session.headers = {}
    response = MagicMock(content=b'[{"id": "1"}]')
    response.json.return_value = [{"id": "1", "status": "running"}]
    session.request.return_value = response

    store = RestTableStore("https://db.example.com/", "secret", session=session)
    rows = store.update(LOGS_TABLE, {"status": "running"}, [("id", "eq", "1"), ("status", "in", ["pending"])])

    assert rows == [{"id": "1", "status": "running"}]
    args, kwargs = session.request.call_args
    assert args == ("PATCH", "https://db.example.com/rest/v1/automation_execution_logs")
    assert kwargs["params"] == {"id": "eq.1", "status": "in.(pending)"}
    assert kwargs["headers"] == {"Prefer": "return=representation"}
    assert session.headers["Authorization"] == "Bearer secret"


def test_rest_store_wraps_http_errors():
    session = MagicMock()
    session.headers = {}
    error_response = MagicMock(status_code=500, text="boom")
    response = MagicMock()
    response.raise_for_status.side_effect = requests.HTTPError("500", response=error_response)
    session.request.return_value = response

    store = RestTableStore("https://db.example.com", "secret", session=session)
    with pytest.raises(PersistenceError) as exc:
        store.select("jobs")
    assert exc.value.status_code == 500


def test_list_pending_is_oldest_first_and_respects_schedule(log_client):
    first = log_client.create_pending("wf-1", {"event_type": "job_created"})
    second = log_client.create_pending("wf-1", {"event_type": "job_created"})
    log_client.create_pending("wf-1", {"event_type": "job_created"},
                              scheduled_for=utcnow() + timedelta(hours=1))

    pending = log_client.list_pending(limit=5)
    assert [p.id for p in pending] == [first.id, second.id]
    assert len(log_client.list_pending(limit=1)) == 1


def test_claim_is_exclusive(log_client):
    log = log_client.create_pending("wf-1", {"event_type": "job_created"})
    assert log_client.claim(log.id, lease_seconds=90) is not None
    assert log_client.claim(log.id, lease_seconds=90) is None


def test_claim_race_across_threads_has_one_winner(log_client):
    log = log_client.create_pending("wf-1", {"event_type": "job_created"})
    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(lambda _: log_client.claim(log.id, 90), range(16)))
    assert sum(1 for o in outcomes if o is not None) == 1


def test_terminal_logs_never_move(log_client):
    log = log_client.create_pending("wf-1", {"event_type": "job_created"})
    log_client.claim(log.id, 90)
    assert log_client.complete(log.id, []).status == LogStatus.COMPLETED

    assert log_client.fail(log.id, "late failure") is None
    assert log_client.claim(log.id, 90) is None
    assert log_client.cancel(log.id) is None
    assert log_client.get(log.id).status == LogStatus.COMPLETED


def test_cancel_only_applies_to_pending(log_client):
    pending = log_client.create_pending("wf-1", {"event_type": "job_created"})
    running = log_client.create_pending("wf-1", {"event_type": "job_created"})
    log_client.claim(running.id, 90)

    assert log_client.cancel(pending.id).status == LogStatus.CANCELLED
    assert log_client.cancel(running.id) is None


def test_stop_and_clear_expires_pending_and_running_only(log_client):
    pending = log_client.create_pending("wf-1", {"event_type": "job_created"})
    running = log_client.create_pending("wf-1", {"event_type": "job_created"})
    done = log_client.create_pending("wf-1", {"event_type": "job_created"})
    log_client.claim(running.id, 90)
    log_client.claim(done.id, 90)
    log_client.complete(done.id, [])

    assert log_client.stop_and_clear() == 2
    assert log_client.get(pending.id).status == LogStatus.EXPIRED
    assert log_client.get(running.id).status == LogStatus.EXPIRED
    assert log_client.get(done.id).status == LogStatus.COMPLETED


def test_requeue_creates_fresh_pending_log(log_client):
    log = log_client.create_pending("wf-1", {"event_type": "job_created"}, organization_id="org-1")
    log_client.claim(log.id, 90)
    log_client.fail(log.id, "executor down")

    requeued = log_client.requeue(log.id)
    assert requeued.status == LogStatus.PENDING
    assert requeued.requeued_from == log.id
    assert requeued.organization_id == "org-1"
    assert log_client.get(log.id).status == LogStatus.FAILED


def test_requeue_refuses_live_logs(log_client):
    log = log_client.create_pending("wf-1", {"event_type": "job_created"})
    with pytest.raises(InvalidTransitionError):
        log_client.requeue(log.id)
    assert log_client.requeue("missing") is None


def test_workflow_lookup_filters_status_and_org(make_workflow, workflow_client):
    make_workflow()
    make_workflow(status="paused")
    make_workflow(organization_id="org-2")
    make_workflow(trigger_type="invoice_sent", action_type="send_email")

    found = workflow_client.list_enabled_for_trigger("job_status_changed", "org-1")
    assert [w.id for w in found] == ["wf-1"]


def test_workflow_accepts_legacy_rule_wrapper(make_workflow):
    workflow = make_workflow(trigger_conditions={"operator": "AND", "rules": [
        {"field": "new_status", "operator": "equals", "value": "Completed"},
    ]})
    assert workflow.trigger_conditions[0].field == "new_status"


def test_provider_status_patch_by_message_id(comm_client):
    from models.communication_log import CommunicationLogEntry, CommunicationStatus
    comm_client.record(CommunicationLogEntry(type="sms", recipient="+15551234567", content="hi",
                                             status="sent", provider_message_id="msg-1"))

    assert comm_client.update_status_by_provider_id("msg-1", CommunicationStatus.DELIVERED) == 1
    assert comm_client.update_status_by_provider_id("unknown", CommunicationStatus.DELIVERED) == 0
    assert comm_client.list_for({"provider_message_id": "msg-1"})[0].status == CommunicationStatus.DELIVERED


def test_portal_resolves_estimate_with_client_and_company(store, portal_client):
    store.insert("clients", {"id": "client-1", "name": "Jane Doe", "email": "jane@example.com",
                             "internal_notes": "not for the portal"})
    store.insert("company_settings", {"id": "cs-1", "user_id": "user-1", "company_name": "Acme Plumbing"})
    store.insert("estimates", {"id": "est-1", "estimate_number": "EST-7", "total": 420.0,
                               "client_id": "client-1", "user_id": "user-1",
                               "portal_access_token": "tok-123"})

    document = portal_client.resolve("tok-123")
    assert document.document_type.value == "estimate"
    assert document.document_number == "EST-7"
    assert document.client_info == {"id": "client-1", "name": "Jane Doe", "email": "jane@example.com"}
    assert document.company_info == {"company_name": "Acme Plumbing"}


def test_portal_resolves_invoice_through_job(store, portal_client):
    store.insert("clients", {"id": "client-9", "name": "Sam Lee"})
    store.insert("jobs", {"id": "job-9", "client_id": "client-9"})
    store.insert("invoices", {"id": "inv-1", "invoice_number": "INV-100", "total": 99.5,
                              "job_id": "job-9", "portal_access_token": "tok-inv"})

    document = portal_client.resolve("tok-inv")
    assert document.document_type.value == "invoice"
    assert document.client_info["name"] == "Sam Lee"


@pytest.mark.parametrize("token", ["", None, "nope"])
def test_portal_unknown_token_is_none(portal_client, token):
    assert portal_client.resolve(token) is None


def test_portal_ensure_token_is_stable(store, portal_client):
    store.insert("invoices", {"id": "inv-1", "invoice_number": "INV-100"})

    token = portal_client.ensure_token("invoice", "inv-1")
    assert len(token) == 64
    assert portal_client.ensure_token("invoice", "inv-1") == token
    assert portal_client.portal_url(token) == f"https://app.example.com/portal/{token}"
    with pytest.raises(PersistenceError):
        portal_client.ensure_token("estimate", "missing")
