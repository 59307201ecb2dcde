import pytest
from datetime import datetime, timezone

from models.execution_log import ALLOWED_TRANSITIONS, TERMINAL_STATUSES, LogStatus, can_transition, sources_for
from models.trigger_context import JobStatusChangedContext, load_trigger_context, parse_trigger_context
from models.workflow import AutomationWorkflow, Channel, DeliveryWindow
from utils.errors import InvalidContextError
from utils.formatting import format_currency, format_date
from utils.recipient_validator import is_valid_email, normalize_phone
from utils.settings import Settings
from utils.time_utils import parse_datetime, to_iso


@pytest.mark.parametrize("value,expected", [
    (1234.5, "$1,234.50"),
    ("19.999", "$20.00"),
    (0, "$0.00"),
    (None, "$0.00"),
    (-5, "-$5.00"),
    ("not money", "$0.00"),
])
def test_format_currency(value, expected):
    assert format_currency(value) == expected


def test_format_date_uses_timezone():
    # 02:00 UTC on the 6th is still the 5th in New York
    assert format_date("2026-03-06T02:00:00Z", "America/New_York") == "Mar 05, 2026"
    assert format_date("2026-03-06T02:00:00Z", "Not/AZone") == "Mar 05, 2026"
    assert format_date(None) == ""


@pytest.mark.parametrize("raw,expected", [
    ("(555) 123-4567", "+15551234567"),
    ("1-555-123-4567", "+15551234567"),
    ("+44 20 7946 0958", "+442079460958"),
    ("555-CALL-NOW", None),
    ("123", None),
    ("", None),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("email,valid", [
    ("jane@example.com", True),
    (" Jane@Example.COM ", True),
    ("jane.example.com", False),
    ("jane@", False),
    (None, False),
])
def test_email_validation(email, valid):
    assert is_valid_email(email) is valid


def test_to_iso_is_fixed_width():
    a = to_iso(datetime(2026, 1, 1, tzinfo=timezone.utc))
    b = to_iso(datetime(2026, 1, 1, 0, 0, 0, 123456, tzinfo=timezone.utc))
    assert len(a) == len(b)
    assert a < b
    assert parse_datetime(a) == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_transitions_are_one_directional():
    for terminal in TERMINAL_STATUSES:
        assert ALLOWED_TRANSITIONS[terminal] == set()
        assert not can_transition(terminal, LogStatus.PENDING)
        assert not can_transition(terminal, LogStatus.RUNNING)
    assert can_transition(LogStatus.PENDING, LogStatus.RUNNING)
    assert not can_transition(LogStatus.RUNNING, LogStatus.PENDING)
    assert not can_transition(LogStatus.RUNNING, LogStatus.CANCELLED)
    assert sources_for(LogStatus.EXPIRED) == ["pending", "running"]
    assert sources_for(LogStatus.COMPLETED) == ["running"]


def test_trigger_context_round_trips_through_storage(job_status_context):
    context = parse_trigger_context("job_status_changed", job_status_context)
    assert isinstance(context, JobStatusChangedContext)

    restored = load_trigger_context(context.model_dump(mode="json"))
    assert restored == context


def test_trigger_context_rejects_mismatch_and_extras(job_status_context):
    with pytest.raises(InvalidContextError):
        parse_trigger_context("estimate_sent", {**job_status_context, "event_type": "job_status_changed"})
    with pytest.raises(InvalidContextError):
        parse_trigger_context("job_status_changed", {**job_status_context, "callback": "not allowed"})
    with pytest.raises(InvalidContextError):
        load_trigger_context({"job": {"id": "j"}})


def test_workflow_primary_channel_defaults_from_action():
    workflow = AutomationWorkflow(id="wf", name="n", trigger_type="invoice_sent", action_type="send_email")
    assert workflow.primary_channel == Channel.EMAIL
    assert not workflow.is_enabled


def test_delivery_window_validation():
    window = DeliveryWindow(allowed_days=["Monday", "fri"], start_time="8:5")
    assert window.allowed_days == ["mon", "fri"]
    assert window.start_time == "08:05"
    with pytest.raises(ValueError):
        DeliveryWindow(allowed_days=["funday"])
    with pytest.raises(ValueError):
        DeliveryWindow(end_time="25:00")


def test_settings_require_lease_longer_than_timeout():
    with pytest.raises(ValueError):
        Settings(executor_timeout_seconds=60, lease_seconds=30)
    with pytest.raises(ValueError):
        Settings(executor_mode="carrier-pigeon")


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("EXECUTOR_MODE", "Remote")
    monkeypatch.setenv("EXECUTOR_URL", "https://fn.example.com/automation-executor")
    monkeypatch.setenv("DRY_RUN", "yes")
    monkeypatch.setenv("BATCH_SIZE", "10")
    settings = Settings.from_env()
    assert settings.executor_mode == "remote"
    assert settings.dry_run is True
    assert settings.batch_size == 10
