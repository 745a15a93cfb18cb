from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any, Protocol
import shutil
import threading

import yaml

from .booking import Booking, BookingSource, is_slot_taken, is_within_hours
from .intent import new_booking_id

BOT_LOG_LIMIT = 50
BOT_LOG_KINDS = {"info", "error", "success", "incoming", "outgoing"}


class BookingStorageError(RuntimeError):
    pass


class SlotTakenError(ValueError):
    def __init__(self, date: str, hour: int) -> None:
        super().__init__(f"Slot {date} {hour}:00 is already booked.")
        self.date = date
        self.hour = hour


class BookingRepository(Protocol):
    def list_bookings(self) -> list[Booking]: ...

    def insert_if_absent(self, booking: Booking) -> Booking: ...


class BookingYamlRepository:
    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.bookings_file = self.base_dir / "bookings.yaml"
        self.log_file = self.base_dir / "booking_events.yaml"
        self.bot_log_file = self.base_dir / "bot_logs.yaml"
        self.settings_file = self.base_dir / "bot_settings.yaml"
        self._write_lock = threading.RLock()
        self._ensure_files()

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.bookings_file, self.log_file, self.bot_log_file):
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")
        if not self.settings_file.exists():
            self.settings_file.write_text("{}\n", encoding="utf-8")

    def _read_yaml(self, path: Path) -> Any:
        try:
            return yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return None

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        payload = self._read_yaml(path)
        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif path != self.log_file:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml(self, path: Path, payload: Any) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(payload, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise BookingStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            pass

        empty = "{}\n" if path == self.settings_file else "[]\n"
        path.write_text(empty, encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        with self._write_lock:
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml(self.log_file, events)

    def _load_bookings(self) -> list[Booking]:
        bookings: list[Booking] = []
        for index, row in enumerate(self._read_yaml_list(self.bookings_file)):
            try:
                bookings.append(Booking.from_dict(row))
            except ValueError as error:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(self.bookings_file.name),
                        "index": index,
                        "reason": str(error),
                    },
                )
        return bookings

    def list_bookings(self) -> list[Booking]:
        return self._load_bookings()

    def get_booking(self, booking_id: str) -> Booking | None:
        for booking in self._load_bookings():
            if booking.booking_id == booking_id:
                return booking
        return None

    def insert_if_absent(self, booking: Booking, now: datetime | None = None) -> Booking:
        """Append ``booking`` unless its (date, hour) slot is already occupied.

        The slot check runs against a fresh read of the file while holding the
        write lock. Raises SlotTakenError when the slot is occupied.
        """
        with self._write_lock:
            rows = self._read_yaml_list(self.bookings_file)
            if is_slot_taken(rows, booking.date, booking.hour):
                self._log_event(
                    "BOOKING_REJECTED",
                    {
                        "booking_id": booking.booking_id,
                        "date": booking.date,
                        "hour": booking.hour,
                        "source": booking.source.value,
                        "reason": "slot taken",
                    },
                    now,
                )
                raise SlotTakenError(booking.date, booking.hour)

            rows.append(booking.to_dict())
            self._write_yaml(self.bookings_file, rows)

        self._log_event("BOOKING_CREATED", booking.to_dict(), now)
        return booking

    def add_booking(
        self,
        customer: str,
        service: str,
        date_text: str,
        hour: int,
        now: datetime | None = None,
    ) -> Booking:
        booking = Booking(
            booking_id=new_booking_id(),
            customer=_normalize_text(customer, "customer"),
            service=_normalize_text(service, "service"),
            date=_validate_date_text(date_text),
            hour=_validate_hour(hour),
            source=BookingSource.MANUAL,
        )
        return self.insert_if_absent(booking, now=now)

    def update_booking(
        self,
        booking_id: str,
        *,
        customer: str | None = None,
        service: str | None = None,
        date_text: str | None = None,
        hour: int | None = None,
        now: datetime | None = None,
    ) -> Booking:
        with self._write_lock:
            rows = self._read_yaml_list(self.bookings_file)
            found_index = _find_row_index(rows, booking_id)
            if found_index < 0:
                raise ValueError("booking_id not found")

            current = Booking.from_dict(rows[found_index])
            updated = Booking(
                booking_id=current.booking_id,
                customer=_normalize_text(customer, "customer") if customer is not None else current.customer,
                service=_normalize_text(service, "service") if service is not None else current.service,
                date=_validate_date_text(date_text) if date_text is not None else current.date,
                hour=_validate_hour(hour) if hour is not None else current.hour,
                source=current.source,
                instagram_id=current.instagram_id,
            )

            other_rows = [row for index, row in enumerate(rows) if index != found_index]
            if is_slot_taken(other_rows, updated.date, updated.hour):
                raise SlotTakenError(updated.date, updated.hour)

            rows[found_index] = updated.to_dict()
            self._write_yaml(self.bookings_file, rows)

        self._log_event("BOOKING_UPDATED", updated.to_dict(), now)
        return updated

    def delete_booking(self, booking_id: str, now: datetime | None = None) -> Booking:
        with self._write_lock:
            rows = self._read_yaml_list(self.bookings_file)
            found_index = _find_row_index(rows, booking_id)
            if found_index < 0:
                raise ValueError("booking_id not found")

            removed = rows.pop(found_index)
            self._write_yaml(self.bookings_file, rows)

        self._log_event("BOOKING_DELETED", {"booking_id": booking_id}, now)
        return Booking.from_dict(removed)

    def log_bot(self, message: str, kind: str = "info", now: datetime | None = None) -> dict[str, str]:
        """Prepend an entry to the bot activity log, keeping the newest entries only."""
        if kind not in BOT_LOG_KINDS:
            raise ValueError(f"unknown bot log kind: {kind}")

        entry = {
            "id": new_booking_id(),
            "timestamp": (now or datetime.now()).isoformat(timespec="seconds"),
            "message": message,
            "type": kind,
        }
        with self._write_lock:
            logs = self._read_yaml_list(self.bot_log_file)
            logs.insert(0, entry)
            self._write_yaml(self.bot_log_file, logs[:BOT_LOG_LIMIT])
        return entry

    def get_bot_logs(self) -> list[dict[str, Any]]:
        return self._read_yaml_list(self.bot_log_file)

    def get_bot_settings(self) -> dict[str, Any]:
        payload = self._read_yaml(self.settings_file)
        if not isinstance(payload, dict):
            return {}
        return payload

    def save_bot_settings(self, settings: dict[str, Any]) -> dict[str, Any]:
        with self._write_lock:
            self._write_yaml(self.settings_file, dict(settings))
        self._log_event("BOT_SETTINGS_UPDATED", {"keys": sorted(settings)})
        return dict(settings)


def _find_row_index(rows: list[dict[str, Any]], booking_id: str) -> int:
    for index, row in enumerate(rows):
        if str(row.get("booking_id", row.get("id"))) == booking_id:
            return index
    return -1


def _normalize_text(value: str | None, field_name: str) -> str:
    if value is None:
        raise ValueError(f"{field_name} must not be None")

    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{field_name} must not be empty")
    return normalized


def _validate_date_text(value: str) -> str:
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError as error:
        raise ValueError("date must be in YYYY-MM-DD format") from error


def _validate_hour(hour: int) -> int:
    if not is_within_hours(hour):
        raise ValueError("Booking must start between 12 PM and 10 PM.")
    return hour
