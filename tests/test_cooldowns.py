import unittest
from datetime import datetime, timedelta, timezone

from ruibot.cooldowns import DEFAULT_COOLDOWNS, check_cooldown, ensure_ready, round_up
from ruibot.errors import CooldownActiveError

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class CooldownTests(unittest.TestCase):
    def test_never_claimed_is_ready(self) -> None:
        self.assertTrue(check_cooldown(None, timedelta(hours=24), NOW).ready)

    def test_ready_exactly_at_window_boundary(self) -> None:
        window = timedelta(hours=24)
        self.assertFalse(check_cooldown(NOW, window, NOW + window - timedelta(seconds=1)).ready)
        self.assertTrue(check_cooldown(NOW, window, NOW + window).ready)

    def test_check_is_idempotent(self) -> None:
        window = timedelta(minutes=15)
        later = NOW + timedelta(minutes=4)
        self.assertEqual(check_cooldown(NOW, window, later), check_cooldown(NOW, window, later))

    def test_remaining_decreases_monotonically(self) -> None:
        window = timedelta(days=7)
        remaining = [check_cooldown(NOW, window, NOW + timedelta(hours=hours)).remaining for hours in range(0, 168, 12)]
        self.assertEqual(remaining, sorted(remaining, reverse=True))
        self.assertEqual(len(set(remaining)), len(remaining))

    def test_round_up_uses_ceiling_with_minimum_one(self) -> None:
        self.assertEqual(round_up(timedelta(hours=5, minutes=1), "hours"), 6)
        self.assertEqual(round_up(timedelta(hours=5), "hours"), 5)
        self.assertEqual(round_up(timedelta(seconds=1), "days"), 1)
        self.assertEqual(round_up(timedelta(0), "minutes"), 0)

    def test_ensure_ready_reports_remaining_time(self) -> None:
        rule = DEFAULT_COOLDOWNS["daily"]
        with self.assertRaises(CooldownActiveError) as ctx:
            ensure_ready(rule, NOW, NOW + timedelta(hours=18, minutes=30))
        self.assertEqual(ctx.exception.amount, 6)
        self.assertEqual(ctx.exception.unit, "hours")
        self.assertIn("about **6** hours", ctx.exception.message)
        ensure_ready(rule, NOW, NOW + timedelta(hours=24))


if __name__ == "__main__":
    unittest.main()
