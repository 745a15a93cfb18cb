from __future__ import annotations

from datetime import datetime
import os
from pathlib import Path
import traceback

from shop_booking import BookingYamlRepository, InstagramBookingBot


class _PrintNotifier:
    def notify(self, recipient: str, text: str) -> bool:
        print(f"[REPLY] -> {recipient}: {text}")
        return True


def main() -> int:
    print("[INFO] Shop Booking Quick Check")

    data_dir = Path(os.environ.get("SHOP_BOOKING_DATA_DIR", "data"))
    repo = BookingYamlRepository(data_dir)
    now = datetime(2026, 2, 24, 10, 0)
    bot = InstagramBookingBot(repo, _PrintNotifier(), now_provider=lambda: now)

    for text in ("hi there", "tomorrow at 9am", "tomorrow at 5pm", "tomorrow at 5pm"):
        decision = bot.handle_message("quickcheck-sender", text)
        print(f"[OK] {text!r} -> {decision.outcome}")

    print(f"[OK] Bookings stored: {len(repo.list_bookings())}")
    print(f"[OK] Bookings YAML: {repo.bookings_file.resolve()}")
    print(f"[OK] Bot log YAML: {repo.bot_log_file.resolve()}")
    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
