"""Dispatcher fanning delivery decisions out to channel senders."""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set

from exceptions import (
    AttemptNotFound,
    InvalidStatusTransition,
    LogStoreError,
    ResendNotAllowed,
)
from models import (
    AttemptStatus,
    Channel,
    DeliveryDecision,
    DeliveryOutcome,
    SendResult,
)
from services.notifications.log_store import NotificationLogStore
from services.notifications.senders import ChannelSender

logger = logging.getLogger(__name__)

# Keys owned by the log store rather than the decision
_STORE_METADATA_KEYS = ("provider_reference", "resend_of")


class Dispatcher:
    """Runs each decision as its own unit of work and records the outcome.

    Every decision gets one pending attempt, one send and one status update.
    A failing or hung sender only affects its own attempt. There is no retry
    loop: a failed attempt is retried by an explicit ``resend``.
    """

    def __init__(
        self,
        senders: Dict[Channel, ChannelSender],
        log_store: NotificationLogStore,
    ):
        """Initialize dispatcher.

        Args:
            senders: Configured sender per channel; missing channels fail their attempts
            log_store: Store receiving one row per attempt
        """
        self.senders = senders
        self.log_store = log_store
        self._in_flight: Set[asyncio.Task] = set()

    def submit(self, decisions: Iterable[DeliveryDecision]) -> None:
        """Schedule decisions and return immediately.

        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        for decision in decisions:
            task = loop.create_task(self._deliver(decision))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def dispatch(self, decisions: Iterable[DeliveryDecision]) -> List[DeliveryOutcome]:
        """Deliver decisions concurrently and wait for every outcome."""
        return list(await asyncio.gather(*(self._deliver(d) for d in decisions)))

    async def resend(self, attempt_id: int) -> DeliveryOutcome:
        """Re-deliver a failed attempt as a new attempt.

        The original row is left untouched; the new one records it in
        ``metadata.resend_of``.

        Raises:
            AttemptNotFound: unknown attempt id
            ResendNotAllowed: attempt is not failed
            LogStoreError: the original attempt could not be read
        """
        attempt = await asyncio.to_thread(self.log_store.get, attempt_id)
        if attempt is None:
            raise AttemptNotFound(attempt_id)
        if attempt.status != AttemptStatus.FAILED:
            raise ResendNotAllowed(attempt_id, attempt.status.value)

        metadata = {
            key: value
            for key, value in attempt.metadata.items()
            if key not in _STORE_METADATA_KEYS
        }
        decision = DeliveryDecision(
            channel=attempt.channel,
            recipient=attempt.recipient,
            subject=attempt.subject or "",
            body=attempt.body,
            related_entity_id=attempt.related_entity_id,
            related_entity_type=attempt.related_entity_type,
            priority=attempt.priority,
            metadata=metadata,
        )
        logger.info(
            "Resending %s attempt %s to %s",
            attempt.channel.value,
            attempt_id,
            attempt.recipient,
            extra={"attempt_id": attempt_id, "channel": attempt.channel.value},
        )
        return await self._deliver(decision, resend_of=attempt_id)

    async def drain(self) -> None:
        """Wait until every submitted decision has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def set_sender_availability(self, channel: Channel, available: bool) -> None:
        """Set sender availability status.

        Args:
            channel: Channel to toggle
            available: Availability status
        """
        if channel in self.senders:
            self.senders[channel].is_available = available
            logger.info("Sender %s availability set to %s", channel.value, available)

    async def _deliver(
        self,
        decision: DeliveryDecision,
        resend_of: Optional[int] = None,
    ) -> DeliveryOutcome:
        context = {"channel": decision.channel.value, "recipient": decision.recipient}
        log_errors = []

        attempt_id = None
        try:
            attempt_id = await asyncio.to_thread(self.log_store.append, decision, resend_of)
            context["attempt_id"] = attempt_id
        except LogStoreError as e:
            log_errors.append(f"append failed: {e}")
            logger.error("Could not log pending attempt: %s", e, extra=context)

        result = await self._send(decision, context)
        status = AttemptStatus.SENT if result.success else AttemptStatus.FAILED

        if attempt_id is not None:
            try:
                await asyncio.to_thread(
                    self.log_store.update_status,
                    attempt_id,
                    status,
                    result.error_message,
                    result.provider_reference,
                )
            except (LogStoreError, InvalidStatusTransition) as e:
                log_errors.append(f"status update failed: {e}")
                logger.error(
                    "Delivery %s but outcome was not logged: %s", status.value, e, extra=context
                )

        if result.success:
            logger.info("Delivered %s to %s", decision.channel.value, decision.recipient, extra=context)
        else:
            logger.warning(
                "Delivery of %s to %s failed: %s",
                decision.channel.value,
                decision.recipient,
                result.error_message,
                extra=context,
            )

        return DeliveryOutcome(
            attempt_id=attempt_id,
            channel=decision.channel,
            recipient=decision.recipient,
            status=status,
            provider_reference=result.provider_reference,
            error_message=result.error_message,
            log_error="; ".join(log_errors) or None,
        )

    async def _send(self, decision: DeliveryDecision, context: dict) -> SendResult:
        sender = self.senders.get(decision.channel)
        if sender is None:
            return SendResult(
                success=False,
                error_message=f"{decision.channel.value} channel is not configured",
            )

        try:
            return await sender.send(decision)
        except Exception as e:
            # A sender bug must not escape into sibling deliveries
            logger.exception("Sender %s raised", decision.channel.value, extra=context)
            return SendResult(success=False, error_message=f"{type(e).__name__}: {e}")
