from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Callable, Iterator

from .booking import format_hour_label
from .intent import (
    DEFAULT_SHOP_NAME,
    Confirmed,
    Decision,
    SlotTaken,
    compose_reply,
    resolve_booking_intent,
    resolve_conflict,
)
from .messaging import Notifier
from .yaml_store import BookingStorageError, BookingYamlRepository, SlotTakenError

logger = logging.getLogger(__name__)


def iter_message_events(body: dict[str, Any]) -> Iterator[tuple[str, str]]:
    """Yield ``(sender_id, text)`` for each inbound text message in a webhook body.

    Echoes of the page's own replies and events without text are skipped.
    """
    for entry in body.get("entry") or []:
        if not isinstance(entry, dict):
            continue
        for event in entry.get("messaging") or []:
            if not isinstance(event, dict):
                continue
            message = event.get("message")
            if not isinstance(message, dict) or message.get("is_echo"):
                continue
            text = message.get("text")
            sender = event.get("sender")
            sender_id = sender.get("id") if isinstance(sender, dict) else None
            if not text or not sender_id:
                continue
            yield str(sender_id), str(text)


class InstagramBookingBot:
    def __init__(
        self,
        repository: BookingYamlRepository,
        notifier: Notifier,
        now_provider: Callable[[], datetime] | None = None,
        shop_name: str = DEFAULT_SHOP_NAME,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.clock: Callable[[], datetime] = now_provider or datetime.now
        self.shop_name = shop_name
        self.id_factory = id_factory

    def handle_message(self, sender_id: str, text: str) -> Decision:
        now = self.clock()
        self.repository.log_bot(f'Received DM: "{text}"', "incoming", now=now)

        decision = resolve_booking_intent(
            text,
            self.repository.list_bookings(),
            sender_id=sender_id,
            reference_datetime=now,
            id_factory=self.id_factory,
        )

        if isinstance(decision, Confirmed):
            decision = self._commit(decision, now)

        self.notifier.notify(sender_id, compose_reply(decision, shop_name=self.shop_name))
        return decision

    def _commit(self, decision: Confirmed, now: datetime) -> Decision:
        booking = decision.booking
        try:
            self.repository.insert_if_absent(booking, now=now)
        except SlotTakenError:
            # Someone else took the slot after the snapshot was read.
            resolution = resolve_conflict(self.repository.list_bookings(), booking.date, booking.hour)
            self.repository.log_bot(
                f"Slot {booking.date} @ {format_hour_label(booking.hour)} was taken before it could be booked",
                "info",
                now=now,
            )
            return SlotTaken(requested_hour=booking.hour, suggestions=resolution.suggestions)

        self.repository.log_bot(f"Created booking for {booking.date} @ {booking.hour}", "success", now=now)
        return decision

    def handle_webhook(self, body: dict[str, Any]) -> list[Decision]:
        """Handle every message in a webhook delivery.

        A storage failure on one message is logged and skipped so the rest of
        the batch is still answered and the delivery is acknowledged.
        """
        decisions: list[Decision] = []
        for sender_id, text in iter_message_events(body):
            try:
                decisions.append(self.handle_message(sender_id, text))
            except BookingStorageError:
                logger.exception("Booking storage failed for message from %s", sender_id)
        return decisions
