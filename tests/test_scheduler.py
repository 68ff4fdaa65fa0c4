"""
Tests for the muse_clock update scheduler.

tick() must change the background at most once per time-of-day transition,
re-resolve the quote at most once per minute, and honour forced refreshes.
"""

import threading
import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

import requests
from PIL import Image

from muse_clock import MuseSession, render_and_store, tick
from muse_sources import format_time_12h

ENTRIES = [
    {"quote_first": "It was", "quote_time_case": "the hour", "quote_last": "exactly.",
     "author": "A. Writer", "title": "A Book"},
]


class SchedulerTestCase(unittest.TestCase):

    def setUp(self):
        self.climate_calls = []

        def estimator(tz_name):
            self.climate_calls.append(tz_name)
            return "north"

        self.session = MuseSession(manifest={}, climate_estimator=estimator)

        patchers = [
            patch("muse_clock.local_timezone_name", return_value="Europe/London"),
            patch("muse_sources.fetch_quote_index", return_value=ENTRIES),
            patch("muse_sources.resolve_background", return_value={"record": None, "image": None}),
        ]
        mocks = [p.start() for p in patchers]
        for p in patchers:
            self.addCleanup(p.stop)
        _, self.fetch_quotes, self.resolve_background = mocks

    def run_ticks(self, start: datetime, seconds: int) -> list:
        return [tick(self.session, start + timedelta(seconds=i)) for i in range(seconds)]


class TestCadence(SchedulerTestCase):

    def test_first_tick_resolves_everything(self):
        self.assertTrue(tick(self.session, datetime(2024, 6, 1, 10, 15, 42)))
        self.assertEqual(self.session.period, "morning")
        self.assertEqual(self.resolve_background.call_count, 1)
        self.assertEqual(self.fetch_quotes.call_count, 1)
        self.assertEqual(self.session.quote["author"], "A. Writer")
        self.assertTrue(self.session.quote_ok)

    def test_quote_once_per_minute(self):
        start = datetime(2024, 6, 1, 10, 15, 30)
        changes = self.run_ticks(start, 180)  # 10:15:30 .. 10:18:29
        self.assertEqual(self.fetch_quotes.call_count, 4)
        self.assertEqual(sum(changes), 4)

    def test_quiet_tick_changes_nothing(self):
        tick(self.session, datetime(2024, 6, 1, 10, 15, 1))
        self.assertFalse(tick(self.session, datetime(2024, 6, 1, 10, 15, 2)))

    def test_late_tick_still_rolls_minute(self):
        tick(self.session, datetime(2024, 6, 1, 10, 15, 58))
        # Second 0 skipped entirely
        tick(self.session, datetime(2024, 6, 1, 10, 16, 1))
        self.assertEqual(self.fetch_quotes.call_count, 2)

    def test_background_once_per_bucket(self):
        start = datetime(2024, 6, 1, 9, 0, 0)
        self.run_ticks(start, 3 * 3600)  # 09:00 .. 11:59:59, all morning
        self.assertEqual(self.resolve_background.call_count, 1)
        self.assertEqual(len(self.climate_calls), 1)

    def test_dawn_to_morning_boundary(self):
        start = datetime(2024, 6, 1, 7, 59, 0)
        tick(self.session, start)
        self.assertEqual(self.session.period, "dawn")
        self.resolve_background.reset_mock()

        for i in range(1, 120):  # 07:59:01 .. 08:00:59
            tick(self.session, start + timedelta(seconds=i))

        self.assertEqual(self.session.period, "morning")
        self.assertEqual(self.resolve_background.call_count, 1)
        self.resolve_background.assert_called_with({}, "north", "morning")


class TestForcedRefresh(SchedulerTestCase):

    def test_force_argument(self):
        now = datetime(2024, 6, 1, 14, 30, 10)
        tick(self.session, now)
        self.assertTrue(tick(self.session, now + timedelta(seconds=1), force=True))
        self.assertEqual(self.resolve_background.call_count, 2)
        self.assertEqual(len(self.climate_calls), 2)

    def test_forced_refresh_reuses_minute_cache(self):
        now = datetime(2024, 6, 1, 14, 30, 10)
        tick(self.session, now)
        tick(self.session, now + timedelta(seconds=5), force=True)
        self.assertEqual(self.fetch_quotes.call_count, 1)

    def test_web_request_is_consumed_once(self):
        now = datetime(2024, 6, 1, 14, 30, 10)
        tick(self.session, now)
        self.session.request_refresh()
        self.assertTrue(tick(self.session, now + timedelta(seconds=1)))
        self.assertFalse(tick(self.session, now + timedelta(seconds=2)))
        self.assertEqual(self.resolve_background.call_count, 2)


class TestQuoteFallback(SchedulerTestCase):

    def test_unreachable_index_uses_template(self):
        self.fetch_quotes.side_effect = requests.ConnectionError("offline")
        now = datetime(2024, 6, 1, 21, 7, 0)
        tick(self.session, now)
        self.assertFalse(self.session.quote_ok)
        self.assertIn(format_time_12h(now), self.session.quote["text"])
        self.assertIn("9:07 PM", self.session.quote["text"])
        self.assertTrue(self.session.quote["author"])

    def test_failure_not_retried_within_minute(self):
        self.fetch_quotes.side_effect = requests.ConnectionError("offline")
        self.run_ticks(datetime(2024, 6, 1, 21, 7, 0), 59)
        self.assertEqual(self.fetch_quotes.call_count, 1)

    def test_recovers_next_minute(self):
        self.fetch_quotes.side_effect = [requests.ConnectionError("offline"), ENTRIES]
        tick(self.session, datetime(2024, 6, 1, 21, 7, 30))
        tick(self.session, datetime(2024, 6, 1, 21, 8, 0))
        self.assertTrue(self.session.quote_ok)
        self.assertEqual(self.session.quote["author"], "A. Writer")


class TestSessionState(SchedulerTestCase):

    def test_toggles_mark_dirty(self):
        self.session.dirty = False
        self.assertFalse(self.session.toggle_mute())
        self.assertTrue(self.session.dirty)
        self.assertTrue(self.session.toggle_zen())

    def test_state_snapshot(self):
        now = datetime(2024, 6, 1, 7, 59, 45)
        tick(self.session, now)
        state = self.session.state(now)
        self.assertEqual(state["period"], "Dawn")
        self.assertEqual(state["time"], "07:59")
        self.assertEqual(state["next_change"], 15)
        self.assertEqual(state["badge"], "Northern Hemisphere • London")
        self.assertIsNone(state["credit"])
        self.assertTrue(state["muted"])

    def test_store_frame_bumps_version(self):
        self.session.store_frame(b"png", datetime(2024, 6, 1))
        self.session.store_frame(b"png2", datetime(2024, 6, 1))
        self.assertEqual(self.session.frame_version, 2)
        self.assertEqual(self.session.frame_png, b"png2")
        # Only begin_render() clears the flag
        self.assertTrue(self.session.dirty)

    def test_begin_render_clears_dirty(self):
        self.session.begin_render()
        self.assertFalse(self.session.dirty)


class TestRenderRace(SchedulerTestCase):

    def test_toggle_during_render_keeps_frame_dirty(self):
        now = datetime(2024, 6, 1, 10, 15, 0)
        tick(self.session, now)

        def slow_render(session, when):
            # The web thread flips mute while the frame is being drawn
            session.toggle_mute()
            return Image.new("RGB", (8, 6))

        with patch("muse_clock.render_frame", side_effect=slow_render):
            render_and_store(self.session, now)

        self.assertEqual(self.session.frame_version, 1)
        self.assertFalse(self.session.muted)
        self.assertTrue(self.session.dirty)

    def test_quiet_render_leaves_clean(self):
        now = datetime(2024, 6, 1, 10, 15, 0)
        tick(self.session, now)
        with patch("muse_clock.render_frame", return_value=Image.new("RGB", (8, 6))):
            render_and_store(self.session, now)
        self.assertFalse(self.session.dirty)


class TestPublish(SchedulerTestCase):

    def test_publish_sets_fields_and_dirty(self):
        self.session.dirty = False
        self.session.publish(period="night", climate="south")
        self.assertEqual((self.session.period, self.session.climate), ("night", "south"))
        self.assertTrue(self.session.dirty)

    def test_tick_writes_nothing_until_resolved(self):
        seen = []

        def resolve(manifest, climate, period):
            seen.append((self.session.period, self.session.climate, self.session.quote))
            return {"record": {"url": "u", "name": "Ann", "link": "https://x"}, "image": None}

        self.resolve_background.side_effect = resolve
        self.session.climate_estimator = lambda tz: "south"
        tick(self.session, datetime(2024, 6, 1, 21, 0, 0))

        self.assertEqual(seen, [(None, "north", None)])
        self.assertEqual(self.session.period, "night")
        self.assertEqual(self.session.climate, "south")
        self.assertEqual(self.session.background["record"]["name"], "Ann")
        self.assertIsNotNone(self.session.quote)

    def test_state_waits_for_lock(self):
        results = []
        with self.session.lock:
            reader = threading.Thread(target=lambda: results.append(self.session.state()))
            reader.start()
            reader.join(0.2)
            self.assertTrue(reader.is_alive())
            self.assertEqual(results, [])
        reader.join(2)
        self.assertEqual(len(results), 1)


if __name__ == "__main__":
    unittest.main()
