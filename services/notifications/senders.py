"""Channel senders wrapping each notification transport."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape as xml_escape

import httpx

from exceptions import ConfigurationError, DeliveryError, TransportTimeout
from models import Channel, ClientNotification, DeliveryDecision, SendResult
from settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ChannelSender(ABC):
    """Uniform send contract over one provider.

    ``send`` never raises for provider trouble: validation failures, provider
    errors and timeouts all come back as ``SendResult(success=False)``.
    """

    def __init__(self, channel: Channel, timeout: float):
        """Initialize sender with channel and per-call time budget."""
        self.channel = channel
        self.channel_name = channel.value
        self.timeout = timeout
        self.is_available = True
        self.mock_mode = False
        self._sent_messages: List[Dict[str, Any]] = []

    async def send(self, decision: DeliveryDecision) -> SendResult:
        """Deliver one decision.

        Args:
            decision: Decision for this sender's channel

        Returns:
            Normalized result; ``success=False`` means nothing was delivered
        """
        if not self.is_available:
            return SendResult(
                success=False,
                error_message=f"{self.channel_name} sender is unavailable",
            )

        if not self.validate_recipient(decision.recipient):
            logger.warning(
                "Invalid %s recipient: %s",
                self.channel_name,
                decision.recipient,
                extra={"channel": self.channel_name, "recipient": decision.recipient},
            )
            return SendResult(
                success=False,
                error_message=f"Invalid {self.channel_name} recipient: {decision.recipient}",
            )

        if self.mock_mode:
            self._sent_messages.append({
                "recipient": decision.recipient,
                "subject": decision.subject,
                "body": decision.body,
                "timestamp": datetime.now(timezone.utc),
            })
            logger.debug("Mock %s send to %s", self.channel_name, decision.recipient)
            return SendResult(
                success=True,
                provider_reference=f"mock-{self.channel_name}-{len(self._sent_messages)}",
            )

        try:
            reference = await asyncio.wait_for(self._deliver(decision), timeout=self.timeout)
        except asyncio.TimeoutError:
            message = f"{self.channel_name} provider timed out after {self.timeout:g}s"
            logger.warning(message, extra={"channel": self.channel_name})
            return SendResult(success=False, error_message=message)
        except DeliveryError as e:
            logger.warning(
                "%s delivery to %s failed: %s",
                self.channel_name,
                decision.recipient,
                e,
                extra={"channel": self.channel_name, "recipient": decision.recipient},
            )
            return SendResult(success=False, error_message=str(e))

        return SendResult(success=True, provider_reference=reference)

    @abstractmethod
    async def _deliver(self, decision: DeliveryDecision) -> Optional[str]:
        """Perform the provider call and return its reference id.

        Raises:
            DeliveryError: provider rejected or failed the request
        """

    @abstractmethod
    def validate_recipient(self, recipient: str) -> bool:
        """Validate that recipient is addressable on this channel."""

    def enable_mock_mode(self) -> None:
        """Enable mock mode for testing."""
        self.mock_mode = True

    def get_sent_messages(self) -> list:
        """Get list of sent messages in mock mode."""
        return self._sent_messages.copy()

    def clear_sent_messages(self) -> None:
        """Clear sent messages log."""
        self._sent_messages.clear()


class HttpChannelSender(ChannelSender):
    """Sender whose provider is reached over HTTP."""

    service_name = "provider"

    def __init__(
        self,
        channel: Channel,
        timeout: float,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(channel, timeout)
        self.client = client

    async def _post(self, url: str, **kwargs) -> Dict[str, Any]:
        """POST to the provider and return the decoded JSON body."""
        try:
            if self.client is not None:
                response = await self.client.post(url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise TransportTimeout(
                f"request timed out: {e}", service_name=self.service_name, original_error=e
            ) from e
        except httpx.HTTPStatusError as e:
            raise DeliveryError(
                f"API error {e.response.status_code}: {self._error_detail(e.response)}",
                service_name=self.service_name,
                status_code=e.response.status_code,
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(
                f"transport error: {e}", service_name=self.service_name, original_error=e
            ) from e

        try:
            return response.json()
        except ValueError:
            return {}

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(payload, dict):
            return str(payload.get("message") or payload.get("error") or payload)
        return str(payload)


class PushSender(ChannelSender):
    """Live push through the subscription registry."""

    def __init__(self, registry, timeout: Optional[float] = None):
        """Initialize push sender.

        Args:
            registry: Subscription registry exposing ``push(recipient, notification)``
            timeout: Per-call time budget in seconds
        """
        super().__init__(Channel.PUSH, timeout or default_settings.push_timeout_seconds)
        self.registry = registry

    async def _deliver(self, decision: DeliveryDecision) -> Optional[str]:
        notification = ClientNotification(
            kind=decision.metadata.get("kind", "push"),
            level="success" if decision.metadata.get("kind") == "status_changed" else "info",
            title=decision.subject,
            description=decision.body,
            entity_type=decision.related_entity_type,
            entity_id=decision.related_entity_id,
            event_key=decision.metadata.get("event_key"),
        )
        delivered = self.registry.push(decision.recipient, notification)
        if delivered == 0:
            raise DeliveryError(
                f"recipient {decision.recipient} is not connected", service_name="push"
            )
        return f"push:{delivered}"

    def validate_recipient(self, recipient: str) -> bool:
        return bool(recipient and recipient.strip())


class EmailSender(HttpChannelSender):
    """Email through the Resend HTTP API."""

    service_name = "Resend"

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_address: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize email sender.

        Raises:
            ConfigurationError: API key is missing
        """
        super().__init__(
            Channel.EMAIL, timeout or default_settings.sender_timeout_seconds, client
        )
        if not api_key:
            raise ConfigurationError("RESEND_API_KEY is not configured", channel="email")
        self.api_key = api_key
        self.from_address = from_address or default_settings.email_from
        self.api_url = (api_url or default_settings.resend_api_url).rstrip("/")

    async def _deliver(self, decision: DeliveryDecision) -> Optional[str]:
        payload = await self._post(
            f"{self.api_url}/emails",
            json={
                "from": self.from_address,
                "to": [decision.recipient],
                "subject": decision.subject,
                "html": decision.body,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        logger.debug("Sent email to %s", decision.recipient)
        return payload.get("id")

    def validate_recipient(self, recipient: str) -> bool:
        return bool(recipient and EMAIL_PATTERN.match(recipient))


class TwilioSender(HttpChannelSender):
    """Shared Twilio account handling for SMS and voice."""

    service_name = "Twilio"
    resource = ""

    def __init__(
        self,
        channel: Channel,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(channel, timeout or default_settings.sender_timeout_seconds, client)
        if not all([account_sid, auth_token, from_number]):
            raise ConfigurationError(
                "TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER must be set",
                channel=channel.value,
            )
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        base = (api_base or default_settings.twilio_api_base).rstrip("/")
        self.api_base = f"{base}/Accounts/{account_sid}"

    async def _create(self, data: Dict[str, str]) -> Optional[str]:
        payload = await self._post(
            f"{self.api_base}/{self.resource}",
            data=data,
            auth=(self.account_sid, self.auth_token),
        )
        return payload.get("sid")

    def validate_recipient(self, recipient: str) -> bool:
        return bool(recipient and PHONE_PATTERN.match(recipient))


class SmsSender(TwilioSender):
    """SMS through the Twilio Messages API."""

    resource = "Messages.json"

    def __init__(self, **kwargs):
        super().__init__(Channel.SMS, **kwargs)

    async def _deliver(self, decision: DeliveryDecision) -> Optional[str]:
        sid = await self._create({
            "To": decision.recipient,
            "From": self.from_number,
            "Body": decision.body,
        })
        logger.info("SMS sent to %s: %s", decision.recipient, sid)
        return sid


class CallSender(TwilioSender):
    """Voice call through the Twilio Calls API with inline TwiML."""

    resource = "Calls.json"

    def __init__(self, **kwargs):
        super().__init__(Channel.CALL, **kwargs)

    @staticmethod
    def twiml(message: str) -> str:
        return f'<Response><Say voice="alice">{xml_escape(message)}</Say></Response>'

    async def _deliver(self, decision: DeliveryDecision) -> Optional[str]:
        sid = await self._create({
            "To": decision.recipient,
            "From": self.from_number,
            "Twiml": self.twiml(decision.body),
        })
        logger.info("Emergency call initiated to %s: %s", decision.recipient, sid)
        return sid


def build_senders(
    registry,
    app_settings: Optional[Settings] = None,
) -> Dict[Channel, ChannelSender]:
    """Construct every sender whose provider is configured.

    A missing credential disables only the affected channel.

    Args:
        registry: Subscription registry used by push
        app_settings: Settings to read credentials from

    Returns:
        Mapping of channel to sender
    """
    app_settings = app_settings or default_settings
    senders: Dict[Channel, ChannelSender] = {
        Channel.PUSH: PushSender(registry, timeout=app_settings.push_timeout_seconds),
    }

    twilio = {
        "account_sid": app_settings.twilio_account_sid,
        "auth_token": app_settings.twilio_auth_token,
        "from_number": app_settings.twilio_phone_number,
        "api_base": app_settings.twilio_api_base,
        "timeout": app_settings.sender_timeout_seconds,
    }
    factories = {
        Channel.EMAIL: lambda: EmailSender(
            api_key=app_settings.resend_api_key,
            from_address=app_settings.email_from,
            api_url=app_settings.resend_api_url,
            timeout=app_settings.sender_timeout_seconds,
        ),
        Channel.SMS: lambda: SmsSender(**twilio),
        Channel.CALL: lambda: CallSender(**twilio),
    }

    for channel, factory in factories.items():
        try:
            senders[channel] = factory()
        except ConfigurationError as e:
            logger.error("%s sender disabled: %s", channel.value, e)

    logger.info("Configured senders: %s", ", ".join(c.value for c in senders))
    return senders
