"""Tests for channel senders."""

import asyncio
import json
from unittest.mock import Mock
from urllib.parse import parse_qs

import httpx
import pytest

from exceptions import ConfigurationError
from models import Channel, DeliveryDecision
from services.notifications.senders import (
    CallSender,
    EmailSender,
    PushSender,
    SmsSender,
    build_senders,
)
from settings import Settings


TWILIO = {
    "account_sid": "AC123",
    "auth_token": "secret",
    "from_number": "+15550000000",
    "api_base": "https://twilio.test/2010-04-01",
}


def decision(channel, recipient, body="Body", subject="Subject"):
    return DeliveryDecision(channel=channel, recipient=recipient, subject=subject, body=body)


def mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestEmailSender:
    """Tests for the Resend email sender."""

    def test_missing_api_key_raises(self):
        with pytest.raises(ConfigurationError) as exc_info:
            EmailSender(api_key=None)

        assert exc_info.value.channel == "email"

    @pytest.mark.asyncio
    async def test_successful_send(self):
        """Test request shape and provider reference."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": "email-42"})

        async with mock_client(handler) as client:
            sender = EmailSender(
                api_key="re_test",
                from_address="Portal <noreply@portal.test>",
                api_url="https://resend.test",
                client=client,
            )
            result = await sender.send(
                decision(Channel.EMAIL, "asha@example.com", body="<p>Hi</p>")
            )

        assert result.success is True
        assert result.provider_reference == "email-42"
        request = requests[0]
        assert str(request.url) == "https://resend.test/emails"
        assert request.headers["Authorization"] == "Bearer re_test"
        payload = json.loads(request.content)
        assert payload["to"] == ["asha@example.com"]
        assert payload["html"] == "<p>Hi</p>"
        assert payload["from"] == "Portal <noreply@portal.test>"

    @pytest.mark.asyncio
    async def test_provider_error_is_normalized(self):
        def handler(request):
            return httpx.Response(422, json={"message": "Invalid from address"})

        async with mock_client(handler) as client:
            sender = EmailSender(api_key="re_test", client=client)
            result = await sender.send(decision(Channel.EMAIL, "asha@example.com"))

        assert result.success is False
        assert "422" in result.error_message
        assert "Invalid from address" in result.error_message

    @pytest.mark.asyncio
    async def test_invalid_recipient_makes_no_request(self):
        handler = Mock(return_value=httpx.Response(200, json={"id": "x"}))

        async with mock_client(handler) as client:
            sender = EmailSender(api_key="re_test", client=client)
            result = await sender.send(decision(Channel.EMAIL, "not-an-email"))

        assert result.success is False
        assert "Invalid email recipient" in result.error_message
        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_slow_provider_times_out(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={"id": "late"})

        async with mock_client(handler) as client:
            sender = EmailSender(api_key="re_test", timeout=0.05, client=client)
            result = await sender.send(decision(Channel.EMAIL, "asha@example.com"))

        assert result.success is False
        assert "timed out" in result.error_message

    @pytest.mark.asyncio
    async def test_transport_timeout_is_normalized(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        async with mock_client(handler) as client:
            sender = EmailSender(api_key="re_test", client=client)
            result = await sender.send(decision(Channel.EMAIL, "asha@example.com"))

        assert result.success is False
        assert "timed out" in result.error_message

    @pytest.mark.asyncio
    async def test_mock_mode(self):
        sender = EmailSender(api_key="re_test")
        sender.enable_mock_mode()

        result = await sender.send(decision(Channel.EMAIL, "asha@example.com"))

        assert result.success is True
        assert result.provider_reference == "mock-email-1"
        assert sender.get_sent_messages()[0]["recipient"] == "asha@example.com"

        sender.clear_sent_messages()
        assert sender.get_sent_messages() == []

    @pytest.mark.asyncio
    async def test_unavailable_sender_fails(self):
        sender = EmailSender(api_key="re_test")
        sender.enable_mock_mode()
        sender.is_available = False

        result = await sender.send(decision(Channel.EMAIL, "asha@example.com"))

        assert result.success is False
        assert sender.get_sent_messages() == []


class TestTwilioSenders:
    """Tests for SMS and voice call senders."""

    def test_missing_credentials_raise(self):
        with pytest.raises(ConfigurationError):
            SmsSender(account_sid="AC123", auth_token=None, from_number="+15550000000")

    @pytest.mark.asyncio
    async def test_sms_request(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"sid": "SM123"})

        async with mock_client(handler) as client:
            sender = SmsSender(client=client, **TWILIO)
            result = await sender.send(decision(Channel.SMS, "+15551234567", body="Resolved"))

        assert result.success is True
        assert result.provider_reference == "SM123"
        request = requests[0]
        assert request.url.path == "/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["Authorization"].startswith("Basic ")
        form = parse_qs(request.content.decode())
        assert form == {"To": ["+15551234567"], "From": ["+15550000000"], "Body": ["Resolved"]}

    @pytest.mark.asyncio
    async def test_sms_rejects_non_e164_number(self):
        sender = SmsSender(**TWILIO)
        sender.enable_mock_mode()

        result = await sender.send(decision(Channel.SMS, "555-1234"))

        assert result.success is False
        assert sender.get_sent_messages() == []

    @pytest.mark.asyncio
    async def test_call_uses_escaped_twiml(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"sid": "CA123"})

        async with mock_client(handler) as client:
            sender = CallSender(client=client, **TWILIO)
            result = await sender.send(
                decision(Channel.CALL, "+15551234567", body="Lab <B> flooding & fire")
            )

        assert result.provider_reference == "CA123"
        assert requests[0].url.path.endswith("/Calls.json")
        twiml = parse_qs(requests[0].content.decode())["Twiml"][0]
        assert twiml == (
            '<Response><Say voice="alice">Lab &lt;B&gt; flooding &amp; fire</Say></Response>'
        )

    @pytest.mark.asyncio
    async def test_twilio_error(self):
        def handler(request):
            return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})

        async with mock_client(handler) as client:
            sender = SmsSender(client=client, **TWILIO)
            result = await sender.send(decision(Channel.SMS, "+15551234567"))

        assert result.success is False
        assert "Invalid 'To' Phone Number" in result.error_message


class TestPushSender:
    """Tests for in-process push delivery."""

    @pytest.mark.asyncio
    async def test_no_connected_recipient_fails(self):
        registry = Mock()
        registry.push.return_value = 0
        sender = PushSender(registry)

        result = await sender.send(decision(Channel.PUSH, "student-1"))

        assert result.success is False
        assert "not connected" in result.error_message

    @pytest.mark.asyncio
    async def test_push_builds_client_notification(self):
        registry = Mock()
        registry.push.return_value = 2
        sender = PushSender(registry)
        push = DeliveryDecision(
            channel=Channel.PUSH,
            recipient="student-1",
            subject="Status updated",
            body="Resolved",
            related_entity_id="c-1",
            metadata={"kind": "status_changed", "event_key": "complaint:c-1:t"},
        )

        result = await sender.send(push)

        assert result.success is True
        assert result.provider_reference == "push:2"
        recipient, notification = registry.push.call_args.args
        assert recipient == "student-1"
        assert notification.kind == "status_changed"
        assert notification.level == "success"
        assert notification.dedupe_key == ("complaint:c-1:t", "status_changed")


class TestBuildSenders:
    """Tests for sender construction from settings."""

    def test_missing_credentials_disable_only_that_channel(self):
        app_settings = Settings(
            _env_file=None,
            resend_api_key="re_test",
            twilio_account_sid=None,
            twilio_auth_token=None,
            twilio_phone_number=None,
        )

        senders = build_senders(Mock(), app_settings)

        assert set(senders) == {Channel.PUSH, Channel.EMAIL}

    def test_all_channels_configured(self):
        app_settings = Settings(
            _env_file=None,
            resend_api_key="re_test",
            twilio_account_sid="AC123",
            twilio_auth_token="secret",
            twilio_phone_number="+15550000000",
        )

        senders = build_senders(Mock(), app_settings)

        assert set(senders) == set(Channel)
