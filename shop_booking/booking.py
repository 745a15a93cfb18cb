import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

OPENING_HOUR = 12
CLOSING_HOUR = 22

_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")


class BookingSource(str, Enum):
    MANUAL = "manual"
    INSTAGRAM = "instagram"


@dataclass(frozen=True)
class Booking:
    booking_id: str
    customer: str
    service: str
    date: str
    hour: int
    source: BookingSource = BookingSource.MANUAL
    instagram_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.hour, int) or isinstance(self.hour, bool):
            raise ValueError("Booking hour must be an integer.")
        if not self.date:
            raise ValueError("Booking date must not be empty.")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "booking_id": self.booking_id,
            "customer": self.customer,
            "service": self.service,
            "date": self.date,
            "hour": self.hour,
            "source": self.source.value,
        }
        if self.instagram_id is not None:
            payload["instagram_id"] = self.instagram_id
        return payload

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Booking":
        """Build a booking from a stored row.

        Rows written by the old admin panel use ``id`` and a string ``time``
        instead of ``booking_id`` and ``hour``; both spellings are accepted.
        Raises ValueError when the hour is not a whole number.
        """
        raw_id = data.get("booking_id", data.get("id"))
        if raw_id is None:
            raise ValueError("booking row has no identifier")

        hour = coerce_hour(data.get("hour", data.get("time")))
        if hour is None:
            raise ValueError(f"booking {raw_id} has a non-numeric hour")

        if data.get("date") is None:
            raise ValueError(f"booking {raw_id} has no date")

        instagram_id = data.get("instagram_id", data.get("instagramId"))
        return Booking(
            booking_id=str(raw_id),
            customer=str(data.get("customer", "")),
            service=str(data.get("service", "")),
            date=str(data["date"]),
            hour=hour,
            source=BookingSource(str(data.get("source", BookingSource.MANUAL.value))),
            instagram_id=(str(instagram_id) if instagram_id is not None else None),
        )


def is_within_hours(hour: int) -> bool:
    """Return True when ``hour`` is a bookable start time (12:00 through 22:00)."""
    return OPENING_HOUR <= hour <= CLOSING_HOUR


def bookable_hours() -> range:
    return range(OPENING_HOUR, CLOSING_HOUR + 1)


def format_hour_label(hour: int) -> str:
    # Bookable hours are all afternoon/evening, so the suffix is always PM.
    display = hour - 12 if hour > 12 else hour
    return f"{display} PM"


def coerce_hour(value: Any) -> int | None:
    """Return ``value`` as an integer hour, or None when it is not one.

    Stored hours arrive as ints, whole floats or strings such as "15",
    " 9 " or "15:00" depending on who wrote the record. Strings are read by
    their leading integer, so "15:00" and "3pm" give 15 and 3.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    match = _LEADING_INT_RE.match(str(value))
    if match is None:
        return None
    return int(match.group(1))


def _slot_of(record: Booking | Mapping[str, Any]) -> tuple[str, int] | None:
    if isinstance(record, Booking):
        return record.date, record.hour

    if not isinstance(record, Mapping):
        return None
    date_value = record.get("date")
    if date_value is None:
        return None
    hour = coerce_hour(record.get("hour", record.get("time")))
    if hour is None:
        return None
    return str(date_value), hour


def is_slot_taken(bookings: Iterable[Booking | Mapping[str, Any]], date: str, hour: int) -> bool:
    """Return True if any booking occupies the (date, hour) slot.

    Records whose date or hour cannot be read are ignored so one corrupt row
    does not block the whole calendar.
    """
    for record in bookings:
        slot = _slot_of(record)
        if slot is None:
            continue
        if slot == (date, hour):
            return True
    return False
