from __future__ import annotations

from datetime import date, datetime, timedelta
import logging
import os
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from . import BookingYamlRepository
from .booking import Booking, bookable_hours, coerce_hour, format_hour_label
from .instagram_bot import InstagramBookingBot
from .intent import DEFAULT_SHOP_NAME
from .messaging import InstagramNotifier, Notifier, env_access_token
from .yaml_store import SlotTakenError

DEFAULT_VERIFY_TOKEN = "3bd_barber_verify_token"
MAX_CALENDAR_DAYS = 31

logger = logging.getLogger(__name__)


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
    notifier: Notifier | None = None,
    verify_token: str | None = None,
    shop_name: str = DEFAULT_SHOP_NAME,
) -> Flask:
    app = Flask(__name__)
    repository = BookingYamlRepository(data_dir)
    clock: Callable[[], datetime] = now_provider or datetime.now
    expected_token = verify_token or os.environ.get("INSTAGRAM_VERIFY_TOKEN", DEFAULT_VERIFY_TOKEN)

    def _access_token() -> str | None:
        return repository.get_bot_settings().get("accessToken") or env_access_token()

    def _bot_log(message: str, kind: str) -> None:
        repository.log_bot(message, kind, now=clock())

    bot = InstagramBookingBot(
        repository,
        notifier or InstagramNotifier(_access_token, activity_log=_bot_log),
        now_provider=clock,
        shop_name=shop_name,
    )

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.get("/api/bookings")
    def list_bookings() -> Any:
        bookings = sorted(repository.list_bookings(), key=lambda booking: (booking.date, booking.hour))
        return jsonify([_serialize_booking(booking) for booking in bookings])

    @app.post("/api/bookings")
    def create_booking() -> Any:
        payload = request.get_json(silent=True) or {}
        hour = coerce_hour(payload.get("hour", payload.get("time")))
        if hour is None:
            return jsonify({"ok": False, "message": "hour must be a whole number."}), 400

        try:
            created = repository.add_booking(
                customer=str(payload.get("customer", "")),
                service=str(payload.get("service", "")),
                date_text=str(payload.get("date", "")),
                hour=hour,
                now=clock(),
            )
        except SlotTakenError as error:
            return jsonify({"ok": False, "message": str(error)}), 409
        except ValueError as error:
            return jsonify({"ok": False, "message": str(error)}), 400

        return jsonify({"ok": True, "booking": _serialize_booking(created)}), 201

    @app.post("/api/bookings/update")
    def update_booking() -> Any:
        payload = request.get_json(silent=True) or {}
        booking_id = str(payload.get("booking_id", "")).strip()
        if not booking_id:
            return jsonify({"ok": False, "message": "booking_id is required."}), 400
        if repository.get_booking(booking_id) is None:
            return jsonify({"ok": False, "message": "Booking not found."}), 404

        hour: int | None = None
        if payload.get("hour") is not None:
            hour = coerce_hour(payload.get("hour"))
            if hour is None:
                return jsonify({"ok": False, "message": "hour must be a whole number."}), 400

        try:
            updated = repository.update_booking(
                booking_id,
                customer=_optional_text(payload.get("customer")),
                service=_optional_text(payload.get("service")),
                date_text=_optional_text(payload.get("date")),
                hour=hour,
                now=clock(),
            )
        except SlotTakenError as error:
            return jsonify({"ok": False, "message": str(error)}), 409
        except ValueError as error:
            return jsonify({"ok": False, "message": str(error)}), 400

        return jsonify({"ok": True, "booking": _serialize_booking(updated)})

    @app.post("/api/bookings/delete")
    def delete_booking() -> Any:
        payload = request.get_json(silent=True) or {}
        booking_id = str(payload.get("booking_id", "")).strip()
        if not booking_id:
            return jsonify({"ok": False, "message": "booking_id is required."}), 400
        if repository.get_booking(booking_id) is None:
            return jsonify({"ok": False, "message": "Booking not found."}), 404

        deleted = repository.delete_booking(booking_id, now=clock())
        return jsonify({"ok": True, "booking": _serialize_booking(deleted)})

    @app.get("/api/calendar")
    def get_calendar() -> Any:
        start_text = request.args.get("start")
        try:
            start = date.fromisoformat(start_text) if start_text else _week_start(clock().date())
            days = int(request.args.get("days", 7))
        except ValueError:
            return jsonify({"ok": False, "message": "start must be YYYY-MM-DD and days a number."}), 400
        if not 1 <= days <= MAX_CALENDAR_DAYS:
            return jsonify({"ok": False, "message": f"days must be between 1 and {MAX_CALENDAR_DAYS}."}), 400

        dates = [(start + timedelta(days=offset)).isoformat() for offset in range(days)]
        return jsonify(
            {
                "start": dates[0],
                "dates": dates,
                "rows": _build_calendar_rows(repository.list_bookings(), dates),
            }
        )

    @app.get("/api/bot/logs")
    def get_bot_logs() -> Any:
        return jsonify(repository.get_bot_logs())

    @app.get("/api/bot/settings")
    def get_bot_settings() -> Any:
        return jsonify(repository.get_bot_settings())

    @app.post("/api/bot/settings")
    def save_bot_settings() -> Any:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify({"ok": False, "message": "settings must be a JSON object."}), 400

        repository.save_bot_settings(payload)
        return jsonify({"ok": True})

    @app.get("/webhook/instagram")
    def verify_instagram_webhook() -> Any:
        mode = request.args.get("hub.mode")
        token = request.args.get("hub.verify_token")
        challenge = request.args.get("hub.challenge", "")

        if not mode or not token:
            return "", 400
        if mode == "subscribe" and token == expected_token:
            logger.info("Instagram webhook verified")
            return challenge, 200
        return "", 403

    @app.post("/webhook/instagram")
    def receive_instagram_webhook() -> Any:
        body = request.get_json(silent=True) or {}
        if body.get("object") != "instagram":
            return "", 404

        bot.handle_webhook(body)
        return "EVENT_RECEIVED", 200

    return app


def _serialize_booking(booking: Booking) -> dict[str, Any]:
    return {**booking.to_dict(), "label": format_hour_label(booking.hour)}


def _optional_text(value: Any) -> str | None:
    return None if value is None else str(value)


def _week_start(target: date) -> date:
    # Calendar weeks start on Sunday.
    return target - timedelta(days=(target.weekday() + 1) % 7)


def _build_calendar_rows(bookings: list[Booking], dates: list[str]) -> list[dict[str, Any]]:
    by_slot = {(booking.date, booking.hour): booking for booking in bookings}

    rows: list[dict[str, Any]] = []
    for hour in bookable_hours():
        cells = []
        for date_text in dates:
            booking = by_slot.get((date_text, hour))
            cells.append(
                {
                    "date": date_text,
                    "booking": _serialize_booking(booking) if booking is not None else None,
                }
            )
        rows.append({"hour": hour, "label": format_hour_label(hour), "cells": cells})
    return rows


if __name__ == "__main__":
    app = create_app(os.environ.get("SHOP_BOOKING_DATA_DIR", "data"))
    app.run(host="127.0.0.1", port=3000, debug=False)
