from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from shop_booking import BookingYamlRepository, bookable_hours, format_hour_label, resolve_booking_intent

mcp = FastMCP(
    "Shop Booking MCP Server",
    instructions="Expose barber shop bookings and a dry run of the Instagram booking resolver.",
    json_response=True,
)

DATA_DIR = Path(os.environ.get("SHOP_BOOKING_DATA_DIR", Path(__file__).parent / "data"))
REPOSITORY = BookingYamlRepository(DATA_DIR)


@mcp.resource("booking://operating-hours")
async def operating_hours() -> list[str]:
    """List the bookable start times."""
    return [format_hour_label(hour) for hour in bookable_hours()]


@mcp.tool()
def list_bookings(date: str | None = None) -> list[dict[str, Any]]:
    """Return bookings, optionally filtered by YYYY-MM-DD date."""
    bookings = [booking for booking in REPOSITORY.list_bookings() if date is None or booking.date == date]
    bookings.sort(key=lambda booking: (booking.date, booking.hour))
    return [booking.to_dict() for booking in bookings]


@mcp.tool()
def preview_booking_intent(text: str, sender_id: str | None = None) -> dict[str, Any]:
    """Show what the Instagram bot would decide for a message, without booking anything."""
    decision = resolve_booking_intent(text, REPOSITORY.list_bookings(), sender_id=sender_id)
    return decision.to_dict()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
