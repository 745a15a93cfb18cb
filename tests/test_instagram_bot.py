import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from shop_booking import (
    BookingStorageError,
    BookingYamlRepository,
    Clarification,
    Confirmed,
    InstagramBookingBot,
    OutOfHours,
    SlotTaken,
)
from shop_booking.instagram_bot import iter_message_events

NOW = datetime(2024, 1, 9, 10, 0)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def notify(self, recipient: str, text: str) -> bool:
        self.sent.append((recipient, text))
        return True


class RacingRepository(BookingYamlRepository):
    """Repository whose first snapshot misses a booking another writer already stored."""

    def __init__(self, base_dir: Path) -> None:
        super().__init__(base_dir)
        self.stale_reads = 1

    def list_bookings(self):
        if self.stale_reads:
            self.stale_reads -= 1
            return []
        return super().list_bookings()


def _webhook_body(*events: dict) -> dict:
    return {"object": "instagram", "entry": [{"id": "page", "messaging": list(events)}]}


def _text_event(sender_id: str, text: str, is_echo: bool = False) -> dict:
    return {"sender": {"id": sender_id}, "message": {"mid": "m1", "text": text, "is_echo": is_echo}}


class FailingStorageRepository(BookingYamlRepository):
    """Repository that cannot write bookings for one sender."""

    def __init__(self, base_dir: Path, failing_sender: str) -> None:
        super().__init__(base_dir)
        self.failing_sender = failing_sender

    def insert_if_absent(self, booking, now=None):
        if booking.instagram_id == self.failing_sender:
            raise BookingStorageError("disk full")
        return super().insert_if_absent(booking, now=now)


class TestInstagramBookingBot(unittest.TestCase):
    def test_confirmed_request_is_persisted_and_replied(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = BookingYamlRepository(Path(temp_dir) / "data")
            notifier = RecordingNotifier()
            bot = InstagramBookingBot(repo, notifier, now_provider=lambda: NOW)

            decision = bot.handle_message("17841400000", "Haircut tomorrow at 5pm")

            self.assertIsInstance(decision, Confirmed)
            stored = repo.list_bookings()
            self.assertEqual(len(stored), 1)
            self.assertEqual((stored[0].date, stored[0].hour), ("2024-01-10", 17))
            self.assertEqual(notifier.sent[0][0], "17841400000")
            self.assertIn("Confirmed! Booked for 2024-01-10 at 5 PM", notifier.sent[0][1])

            kinds = [entry["type"] for entry in repo.get_bot_logs()]
            self.assertEqual(kinds, ["success", "incoming"])

    def test_non_booking_outcomes_do_not_persist(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = BookingYamlRepository(Path(temp_dir) / "data")
            notifier = RecordingNotifier()
            bot = InstagramBookingBot(repo, notifier, now_provider=lambda: NOW)

            self.assertIsInstance(bot.handle_message("u1", "hello"), Clarification)
            self.assertIsInstance(bot.handle_message("u1", "tomorrow at 9am"), OutOfHours)

            self.assertEqual(repo.list_bookings(), [])
            self.assertEqual(len(notifier.sent), 2)
            self.assertIn("say something like", notifier.sent[0][1])
            self.assertIn("only open from 12 PM to 10 PM", notifier.sent[1][1])

    def test_second_request_for_same_slot_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = BookingYamlRepository(Path(temp_dir) / "data")
            notifier = RecordingNotifier()
            bot = InstagramBookingBot(repo, notifier, now_provider=lambda: NOW)

            bot.handle_message("u1", "tomorrow at 3pm")
            decision = bot.handle_message("u2", "tomorrow at 3")

            self.assertEqual(decision, SlotTaken(requested_hour=15, suggestions=("4 PM", "2 PM")))
            self.assertEqual(len(repo.list_bookings()), 1)
            self.assertIn("Available times near that: 4 PM or 2 PM", notifier.sent[-1][1])

    def test_slot_taken_between_snapshot_and_write_is_reported(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = RacingRepository(Path(temp_dir) / "data")
            repo.add_booking("Walk-in", "Haircut", "2024-01-10", 15, now=NOW)
            notifier = RecordingNotifier()
            bot = InstagramBookingBot(repo, notifier, now_provider=lambda: NOW)

            decision = bot.handle_message("u1", "tomorrow at 3pm")

            self.assertEqual(decision, SlotTaken(requested_hour=15, suggestions=("4 PM", "2 PM")))
            self.assertEqual(len(repo.list_bookings()), 1)
            self.assertIn("3 PM is taken", notifier.sent[0][1])

    def test_handle_webhook_skips_echoes(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = BookingYamlRepository(Path(temp_dir) / "data")
            notifier = RecordingNotifier()
            bot = InstagramBookingBot(repo, notifier, now_provider=lambda: NOW)

            decisions = bot.handle_webhook(
                _webhook_body(
                    _text_event("page", "✅ Confirmed! Booked for today", is_echo=True),
                    _text_event("u1", "today at 6"),
                )
            )

            self.assertEqual(len(decisions), 1)
            self.assertEqual(notifier.sent[0][0], "u1")

    def test_storage_failure_skips_only_that_message(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = FailingStorageRepository(Path(temp_dir) / "data", failing_sender="u1")
            notifier = RecordingNotifier()
            bot = InstagramBookingBot(repo, notifier, now_provider=lambda: NOW)

            decisions = bot.handle_webhook(
                _webhook_body(
                    _text_event("u1", "tomorrow at 3pm"),
                    _text_event("u2", "tomorrow at 5pm"),
                )
            )

            self.assertEqual(len(decisions), 1)
            self.assertEqual([recipient for recipient, _ in notifier.sent], ["u2"])
            self.assertEqual([booking.instagram_id for booking in repo.list_bookings()], ["u2"])


class TestIterMessageEvents(unittest.TestCase):
    def test_ignores_entries_without_text_or_sender(self) -> None:
        body = _webhook_body(
            {"sender": {"id": "u1"}, "message": {"attachments": []}},
            {"message": {"text": "tomorrow at 5"}},
            {"sender": {"id": "u2"}, "read": {"mid": "m1"}},
            {"sender": "u4", "message": {"text": "today at 5"}},
            {"sender": None, "message": {"text": "today at 5"}},
            _text_event("u3", "today at 4"),
        )
        body["entry"].append({"id": "page", "changes": []})

        self.assertEqual(list(iter_message_events(body)), [("u3", "today at 4")])


if __name__ == "__main__":
    unittest.main()
