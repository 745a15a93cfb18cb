from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Union
from uuid import uuid4

from .booking import (
    CLOSING_HOUR,
    OPENING_HOUR,
    Booking,
    BookingSource,
    format_hour_label,
    is_slot_taken,
    is_within_hours,
)
from .natural_language import parse_time_expression

DEFAULT_SERVICE = "Haircut (Insta)"
DEFAULT_SHOP_NAME = "3BD Barber Shop"
EXAMPLE_REQUEST = "Haircut tomorrow at 4pm"

BookingSnapshot = Iterable[Union[Booking, Mapping[str, Any]]]


@dataclass(frozen=True)
class SlotResolution:
    available: bool
    suggestions: tuple[str, ...] = ()

    @property
    def fully_booked(self) -> bool:
        return not self.available and not self.suggestions


@dataclass(frozen=True)
class Clarification:
    outcome: str = field(default="clarification", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": self.outcome}


@dataclass(frozen=True)
class OutOfHours:
    requested_hour: int
    outcome: str = field(default="out_of_hours", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": self.outcome, "requested_hour": self.requested_hour}


@dataclass(frozen=True)
class SlotTaken:
    requested_hour: int
    suggestions: tuple[str, ...] = ()
    outcome: str = field(default="slot_taken", init=False)

    @property
    def fully_booked(self) -> bool:
        return not self.suggestions

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "requested_hour": self.requested_hour,
            "suggestions": list(self.suggestions),
        }


@dataclass(frozen=True)
class Confirmed:
    booking: Booking
    outcome: str = field(default="confirmed", init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"outcome": self.outcome, "booking": self.booking.to_dict()}


Decision = Union[Clarification, OutOfHours, SlotTaken, Confirmed]


def resolve_conflict(bookings: BookingSnapshot, date: str, hour: int) -> SlotResolution:
    """Check a slot and, when it is taken, suggest the free neighbors.

    The later hour is offered before the earlier one and neither may fall
    outside opening hours.
    """
    snapshot = list(bookings)
    if not is_slot_taken(snapshot, date, hour):
        return SlotResolution(available=True)

    suggestions: list[str] = []
    later, earlier = hour + 1, hour - 1
    if later <= CLOSING_HOUR and not is_slot_taken(snapshot, date, later):
        suggestions.append(format_hour_label(later))
    if earlier >= OPENING_HOUR and not is_slot_taken(snapshot, date, earlier):
        suggestions.append(format_hour_label(earlier))
    return SlotResolution(available=False, suggestions=tuple(suggestions))


def placeholder_customer(sender_id: str | None) -> str:
    if not sender_id:
        return "Instagram User"
    return f"Instagram User ({sender_id[:4]})"


def new_booking_id() -> str:
    return uuid4().hex[:9]


def resolve_booking_intent(
    message_text: str,
    existing_bookings: BookingSnapshot,
    sender_id: str | None = None,
    reference_datetime: datetime | None = None,
    id_factory: Callable[[], str] | None = None,
) -> Decision:
    """Decide what to do with a booking request sent as a direct message.

    ``existing_bookings`` is a snapshot read by the caller; nothing is
    persisted here. On ``Confirmed`` the caller stores the returned booking
    (through ``insert_if_absent``) and sends the reply.
    """
    intent = parse_time_expression(message_text, reference_datetime=reference_datetime)
    if intent is None:
        return Clarification()

    if not is_within_hours(intent.hour):
        return OutOfHours(requested_hour=intent.hour)

    resolution = resolve_conflict(existing_bookings, intent.date_text, intent.hour)
    if not resolution.available:
        return SlotTaken(requested_hour=intent.hour, suggestions=resolution.suggestions)

    make_id = id_factory or new_booking_id
    booking = Booking(
        booking_id=make_id(),
        customer=placeholder_customer(sender_id),
        service=DEFAULT_SERVICE,
        date=intent.date_text,
        hour=intent.hour,
        source=BookingSource.INSTAGRAM,
        instagram_id=sender_id,
    )
    return Confirmed(booking=booking)


def compose_reply(decision: Decision, shop_name: str = DEFAULT_SHOP_NAME) -> str:
    if isinstance(decision, Clarification):
        return f"👋 Hello! To book, please say something like: '{EXAMPLE_REQUEST}'"

    if isinstance(decision, OutOfHours):
        return (
            f"❌ We are only open from {format_hour_label(OPENING_HOUR)} to "
            f"{format_hour_label(CLOSING_HOUR)}. Please choose another time."
        )

    if isinstance(decision, SlotTaken):
        if decision.suggestions:
            suggestion_text = f"Available times near that: {' or '.join(decision.suggestions)}"
        else:
            suggestion_text = "Fully booked around that time."
        return f"❌ Sorry, {format_hour_label(decision.requested_hour)} is taken. {suggestion_text}"

    if isinstance(decision, Confirmed):
        booking = decision.booking
        return (
            f"✅ Confirmed! Booked for {booking.date} at {format_hour_label(booking.hour)}. "
            f"See you soon at {shop_name}! ✂️"
        )

    raise TypeError(f"Unsupported decision: {decision!r}")
