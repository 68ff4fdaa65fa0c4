"""
Tests for frame rendering in muse_clock.
"""

import unittest
from datetime import datetime
from unittest.mock import patch

from PIL import Image

import muse_clock
from muse_clock import MuseSession, cover, draw_gradient, frame_to_png, render_frame
from muse_sources import GRADIENT_BOTTOM, GRADIENT_TOP

NOW = datetime(2024, 6, 1, 8, 30, 0)
SIZE = (800, 600)


def make_session(**overrides):
    session = MuseSession(manifest=None, climate_estimator=lambda tz: "north")
    session.period = "morning"
    session.tz_name = "Europe/London"
    session.quote = {"text": "It was half past eight and nothing had happened yet.",
                     "author": "A. Writer", "title": "A Book"}
    for key, value in overrides.items():
        setattr(session, key, value)
    return session


class TestHelpers(unittest.TestCase):

    def test_gradient_endpoints(self):
        img = draw_gradient((20, 50))
        self.assertEqual(img.getpixel((5, 0)), GRADIENT_TOP)
        self.assertEqual(img.getpixel((5, 49)), GRADIENT_BOTTOM)

    def test_cover_fills_target(self):
        tall = Image.new("RGB", (300, 900), (10, 20, 30))
        self.assertEqual(cover(tall, SIZE).size, SIZE)
        wide = Image.new("RGB", (3000, 500), (10, 20, 30))
        self.assertEqual(cover(wide, SIZE).size, SIZE)

    def test_wrap_lines_respects_width(self):
        font = muse_clock.get_font(30)
        lines = muse_clock.wrap_lines("one two three four five six seven eight nine ten", font, 200)
        self.assertGreater(len(lines), 1)
        for line in lines:
            self.assertLessEqual(font.getlength(line), 200 + font.getlength("seven"))

    def test_png_signature(self):
        png = frame_to_png(Image.new("RGB", (4, 4)))
        self.assertTrue(png.startswith(b"\x89PNG"))


class TestRenderFrame(unittest.TestCase):

    def test_gradient_fallback_frame(self):
        img = render_frame(make_session(), NOW, SIZE)
        self.assertEqual(img.size, SIZE)
        self.assertEqual(img.mode, "RGB")
        # Left edge is outside the quote panel and chrome
        expected = draw_gradient(SIZE).getpixel((2, SIZE[1] // 2))
        self.assertEqual(img.getpixel((2, SIZE[1] // 2)), expected)

    def test_photo_background(self):
        photo = Image.new("RGB", (1000, 1000), (200, 10, 10))
        session = make_session(background={"record": {"url": "u", "name": "Ann", "link": "l"}, "image": photo})
        img = render_frame(session, NOW, SIZE)
        self.assertEqual(img.size, SIZE)
        # Corner is outside the quote panel and text, so the photo shows through
        self.assertEqual(img.getpixel((SIZE[0] - 2, SIZE[1] // 2)), (200, 10, 10))

    def test_zen_hides_chrome(self):
        normal = render_frame(make_session(), NOW, SIZE)
        zen = render_frame(make_session(zen=True), NOW, SIZE)
        header = (0, 0, SIZE[0], 60)
        self.assertNotEqual(list(normal.crop(header).getdata()), list(zen.crop(header).getdata()))

    def test_rain_only_when_unmuted_and_tropical(self):
        base = render_frame(make_session(climate="tropical"), NOW, SIZE)
        rainy = render_frame(make_session(climate="tropical", muted=False), NOW, SIZE)
        self.assertNotEqual(base.tobytes(), rainy.tobytes())

    def test_missing_quote_renders_placeholder(self):
        img = render_frame(make_session(quote=None), NOW, SIZE)
        self.assertEqual(img.size, SIZE)

    def test_render_and_store(self):
        session = make_session()
        with patch("muse_clock.WIDTH", 400), patch("muse_clock.HEIGHT", 300):
            img = muse_clock.render_and_store(session, NOW)
        self.assertEqual(img.size, (400, 300))
        self.assertEqual(session.frame_version, 1)
        self.assertTrue(session.frame_png.startswith(b"\x89PNG"))


if __name__ == "__main__":
    unittest.main()
