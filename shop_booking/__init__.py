from .booking import (
	Booking,
	BookingSource,
	bookable_hours,
	coerce_hour,
	format_hour_label,
	is_slot_taken,
	is_within_hours,
)
from .natural_language import TimeExpression, parse_time_expression
from .intent import (
	Clarification,
	Confirmed,
	Decision,
	OutOfHours,
	SlotResolution,
	SlotTaken,
	compose_reply,
	resolve_booking_intent,
	resolve_conflict,
)
from .yaml_store import (
	BookingRepository,
	BookingStorageError,
	BookingYamlRepository,
	SlotTakenError,
)
from .messaging import InstagramNotifier, Notifier
from .instagram_bot import InstagramBookingBot

__all__ = [
	"Booking",
	"BookingSource",
	"bookable_hours",
	"coerce_hour",
	"format_hour_label",
	"is_slot_taken",
	"is_within_hours",
	"TimeExpression",
	"parse_time_expression",
	"Clarification",
	"Confirmed",
	"Decision",
	"OutOfHours",
	"SlotResolution",
	"SlotTaken",
	"compose_reply",
	"resolve_booking_intent",
	"resolve_conflict",
	"BookingRepository",
	"BookingStorageError",
	"BookingYamlRepository",
	"SlotTakenError",
	"InstagramNotifier",
	"Notifier",
	"InstagramBookingBot",
]
