import base64
import json
import pytest
from unittest.mock import MagicMock, patch

import requests

from executor.engine_builder import EngineBuilder
from models.sender_identity import EmailIdentity
from senders.mailgun_sender import MailgunSender
from senders.mock_senders import MockEmailSender, MockSmsSender
from senders.telnyx_sender import TelnyxSender
from utils.errors import DeliveryError
from utils.settings import Settings

IDENTITY = EmailIdentity(from_email="office@acme.test", from_name="Acme Plumbing")


def _response(status_code, body=None, text=""):
    response = MagicMock(status_code=status_code, text=text or json.dumps(body))
    response.json.return_value = body
    return response


@pytest.mark.asyncio
@patch("senders.mailgun_sender.requests.post")
async def test_mailgun_posts_form_and_returns_id(mock_post):
    mock_post.return_value = _response(200, {"id": "<20260101.abc@mg.acme.test>", "message": "Queued"})
    sender = MailgunSender({"api_key": "key-1", "domain": "mg.acme.test"})

    message_id = await sender.send(IDENTITY, "jane@example.com", "Invoice INV-100", "<p>Hi</p>",
                                   text_body="Hi", reply_to="billing@acme.test")

    assert message_id == "20260101.abc@mg.acme.test"
    args, kwargs = mock_post.call_args
    assert args[0] == "https://api.mailgun.net/v3/mg.acme.test/messages"
    assert kwargs["auth"] == ("api", "key-1")
    assert kwargs["data"]["from"] == "Acme Plumbing <office@acme.test>"
    assert kwargs["data"]["text"] == "Hi"
    assert kwargs["data"]["h:Reply-To"] == "billing@acme.test"


@pytest.mark.asyncio
@patch("senders.mailgun_sender.requests.post")
async def test_mailgun_identity_domain_wins(mock_post):
    mock_post.return_value = _response(200, {"id": "<x@y>"})
    sender = MailgunSender({"api_key": "key-1", "domain": "mg.default.test"})

    await sender.send(EmailIdentity(from_email="a@org.test", domain="mg.org.test"), "jane@example.com", "s", "b")
    assert mock_post.call_args[0][0].endswith("/mg.org.test/messages")


@pytest.mark.asyncio
@patch("senders.mailgun_sender.requests.post")
async def test_mailgun_rejection_raises(mock_post):
    mock_post.return_value = _response(401, text="Forbidden")
    sender = MailgunSender({"api_key": "bad", "domain": "mg.acme.test"})

    with pytest.raises(DeliveryError) as exc:
        await sender.send(IDENTITY, "jane@example.com", "s", "b")
    assert "401" in str(exc.value)
    assert exc.value.channel == "email"


@pytest.mark.asyncio
@patch("senders.mailgun_sender.requests.post")
async def test_mailgun_missing_credentials_never_calls_out(mock_post):
    with pytest.raises(DeliveryError):
        await MailgunSender({"domain": "mg.acme.test"}).send(IDENTITY, "jane@example.com", "s", "b")
    mock_post.assert_not_called()


@pytest.mark.asyncio
@patch("senders.mailgun_sender.requests.post")
async def test_mailgun_network_error_raises(mock_post):
    mock_post.side_effect = requests.ConnectionError("dns failure")
    with pytest.raises(DeliveryError):
        await MailgunSender({"api_key": "k", "domain": "d"}).send(IDENTITY, "jane@example.com", "s", "b")


@pytest.mark.asyncio
@patch("senders.telnyx_sender.requests.post")
async def test_telnyx_sends_json_and_returns_id(mock_post):
    mock_post.return_value = _response(200, {"data": {"id": "msg-1", "to": [{"status": "queued"}]}})
    sender = TelnyxSender({"api_key": "KEY", "messaging_profile_id": "profile-1"})

    message_id = await sender.send("+15550001111", "+15551234567", "Hi Jane", metadata={"execution_log_id": "log-1"})

    assert message_id == "msg-1"
    args, kwargs = mock_post.call_args
    assert args[0] == "https://api.telnyx.com/v2/messages"
    assert kwargs["headers"]["Authorization"] == "Bearer KEY"
    payload = kwargs["json"]
    assert payload["from"] == "+15550001111"
    assert payload["to"] == "+15551234567"
    assert payload["text"] == "Hi Jane"
    assert payload["messaging_profile_id"] == "profile-1"
    assert json.loads(base64.b64decode(payload["client_state"])) == {"execution_log_id": "log-1"}


@pytest.mark.asyncio
@patch("senders.telnyx_sender.requests.post")
async def test_telnyx_error_details_are_surfaced(mock_post):
    mock_post.return_value = _response(422, {"errors": [{"title": "Invalid", "detail": "The 'to' number is not SMS capable"}]})
    sender = TelnyxSender({"api_key": "KEY"})

    with pytest.raises(DeliveryError) as exc:
        await sender.send("+15550001111", "+15551234567", "Hi")
    assert "not SMS capable" in str(exc.value)
    assert exc.value.channel == "sms"


@pytest.mark.asyncio
@patch("senders.telnyx_sender.requests.post")
async def test_telnyx_without_api_key_fails(mock_post):
    with pytest.raises(DeliveryError):
        await TelnyxSender({}).send("+15550001111", "+15551234567", "Hi")
    mock_post.assert_not_called()


def test_engine_builder_uses_mocks_on_dry_run():
    email, sms = EngineBuilder.build(Settings(dry_run=True))
    assert isinstance(email, MockEmailSender)
    assert isinstance(sms, MockSmsSender)


def test_engine_builder_reports_missing_credentials():
    settings = Settings(dry_run=False)
    problems = EngineBuilder.validate_config(settings)
    assert len(problems) == 3
    email, sms = EngineBuilder.build(settings)
    assert isinstance(email, MailgunSender)
    assert isinstance(sms, TelnyxSender)
