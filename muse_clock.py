#!/usr/bin/env python3
"""Minute Muse — a literature clock for the browser and Joan e-paper displays.

Shows a quote naming the current minute over a background photo matched to
the time of day, season and hemisphere.

Usage:
    python muse_clock.py --serve 8080     # run the clock and serve the web page
    python muse_clock.py --once --preview # render one frame to muse_preview.png
    python muse_clock.py --at 07:59 --preview
    python muse_clock.py --push           # also push each new frame to Joan devices

Backgrounds come from images.json, written by muse_curator.py.
"""

import argparse
import io
import os
import random
import threading
import time
from datetime import datetime, timedelta

import requests
from PIL import Image, ImageDraw, ImageFilter, ImageFont

import muse_sources
from muse_sources import (
    GRADIENT_BOTTOM, GRADIENT_TOP, PERIOD_LABELS,
    ambience_for, climate_badge, estimate_climate, greeting,
    local_timezone_name, time_of_day,
)

# --- Configuration (override via environment variables or .env file, loaded by muse_sources) ---
WIDTH = int(os.environ.get("MUSE_WIDTH", "1600"))
HEIGHT = int(os.environ.get("MUSE_HEIGHT", "1200"))

VSS_HOST = os.environ.get("VSS_HOST", "192.168.6.6")
VSS_PORT = int(os.environ.get("VSS_PORT", "8081"))
_DEVICE_UUIDS_RAW = os.environ.get("DEVICE_UUIDS", os.environ.get("DEVICE_UUID", ""))
VSS_USER = os.environ.get("VSS_USER", "admin")
VSS_PASS = os.environ.get("VSS_PASS", "visionect1")

PREVIEW_FILE = "muse_preview.png"

# --- Font helpers ---
FONT_CACHE = {}


def get_font(size: int, bold: bool = False, serif: bool = False) -> ImageFont.FreeTypeFont:
    key = (size, bold, serif)
    if key not in FONT_CACHE:
        if serif:
            candidates = [
                "/System/Library/Fonts/Supplemental/Georgia.ttf",
                "/usr/share/fonts/truetype/dejavu/DejaVuSerif.ttf",
                "/usr/share/fonts/truetype/liberation/LiberationSerif-Regular.ttf",
            ]
            if bold:
                candidates = [
                    "/System/Library/Fonts/Supplemental/Georgia Bold.ttf",
                    "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Bold.ttf",
                    "/usr/share/fonts/truetype/liberation/LiberationSerif-Bold.ttf",
                ] + candidates
        else:
            candidates = [
                "/System/Library/Fonts/Helvetica.ttc",
                "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
                "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
            ]
            if bold:
                candidates = [
                    "/System/Library/Fonts/Helvetica.ttc",
                    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
                    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
                ] + candidates
        font = None
        for path in candidates:
            try:
                idx = 1 if bold and "Helvetica" in path else 0
                font = ImageFont.truetype(path, size, index=idx)
                break
            except (OSError, IndexError):
                try:
                    font = ImageFont.truetype(path, size)
                    break
                except OSError:
                    continue
        if font is None:
            font = ImageFont.load_default(size=size)
        FONT_CACHE[key] = font
    return FONT_CACHE[key]


# --- Session ---
class MuseSession:
    """Everything the display knows between ticks.

    The scheduler thread is the only writer of quote/background state and
    publishes it under the lock; the web UI only flips flags (refresh
    request, mute, zen) under the same lock, and state() reads under it.
    """

    def __init__(self, manifest=None, climate_estimator=None):
        self.manifest = manifest
        self.climate_estimator = climate_estimator or estimate_climate
        self.lock = threading.Lock()

        self.period = None
        self.climate = "north"
        self.tz_name = "UTC"
        self.background = {"record": None, "image": None}

        self.quote = None
        self.quote_ok = False
        self.quote_entries = None
        self.quote_minute = None

        self.muted = True
        self.zen = False
        self._refresh_requested = False
        self.dirty = True

        self.frame_png = None
        self.frame_version = 0
        self.rendered_at = None

    def request_refresh(self):
        with self.lock:
            self._refresh_requested = True

    def take_refresh_request(self) -> bool:
        with self.lock:
            requested = self._refresh_requested
            self._refresh_requested = False
            return requested

    def toggle_mute(self) -> bool:
        with self.lock:
            self.muted = not self.muted
            self.dirty = True
            return self.muted

    def toggle_zen(self) -> bool:
        with self.lock:
            self.zen = not self.zen
            self.dirty = True
            return self.zen

    def begin_render(self):
        """Clear the dirty flag before drawing; a toggle that lands mid-render sets it again."""
        with self.lock:
            self.dirty = False

    def store_frame(self, png: bytes, now: datetime):
        with self.lock:
            self.frame_png = png
            self.frame_version += 1
            self.rendered_at = now

    def publish(self, **fields):
        """Apply scheduler results atomically and mark the frame dirty."""
        with self.lock:
            for name, value in fields.items():
                setattr(self, name, value)
            self.dirty = True

    def state(self, now: datetime = None) -> dict:
        """JSON-friendly snapshot for the web page."""
        now = now or datetime.now()
        with self.lock:
            record = self.background.get("record")
            return {
                "time": now.strftime("%H:%M"),
                "period": PERIOD_LABELS.get(self.period, ""),
                "greeting": greeting(now.hour),
                "badge": climate_badge(self.climate, self.tz_name),
                "climate": self.climate,
                "quote": self.quote,
                "quote_ok": self.quote_ok,
                "credit": {"name": record["name"], "link": record["link"]} if record else None,
                "ambience": ambience_for(self.climate),
                "muted": self.muted,
                "zen": self.zen,
                "frame_version": self.frame_version,
                "next_change": 60 - now.second,
            }


# --- Scheduler ---
def resolve_quote(session: MuseSession, period: str, now: datetime) -> dict:
    """This minute's quote, fetching the remote list at most once per minute.

    Returns the session fields to publish.
    """
    minute_key = now.strftime("%H:%M")
    entries, ok = session.quote_entries, session.quote_ok
    if session.quote_minute != minute_key:
        outcome = muse_sources.with_fallback(
            lambda: muse_sources.fetch_quote_index(now), lambda: None, "quote",
        )
        entries, ok = outcome.value, outcome.ok
    return {
        "quote_entries": entries,
        "quote_ok": ok,
        "quote_minute": minute_key,
        "quote": muse_sources.pick_quote(entries, period, now),
    }


def tick(session: MuseSession, now: datetime = None, force: bool = False) -> bool:
    """One scheduler step. Returns True if the quote or background changed.

    Background: re-resolved only when the time-of-day bucket changes.
    Quote: re-resolved only when the minute changes.
    A forced refresh (argument or pending web request) does both now.
    Network work happens outside the lock; results are published together.
    """
    now = now or datetime.now()
    force = session.take_refresh_request() or force
    updates = {}

    period = time_of_day(now.hour)
    if force or period != session.period:
        tz_name = local_timezone_name()
        climate = session.climate_estimator(tz_name)
        updates.update(
            period=period,
            tz_name=tz_name,
            climate=climate,
            background=muse_sources.resolve_background(session.manifest, climate, period),
        )

    if force or session.quote_minute != now.strftime("%H:%M"):
        updates.update(resolve_quote(session, period, now))

    if updates:
        session.publish(**updates)
    return bool(updates)


# --- Rendering ---
def draw_gradient(size: tuple) -> Image.Image:
    w, h = size
    img = Image.new("RGB", size)
    draw = ImageDraw.Draw(img)
    for y in range(h):
        t = y / max(h - 1, 1)
        color = tuple(int(a + (b - a) * t) for a, b in zip(GRADIENT_TOP, GRADIENT_BOTTOM))
        draw.line([(0, y), (w, y)], fill=color)
    return img


def cover(img: Image.Image, size: tuple) -> Image.Image:
    """Scale and centre-crop to fill size (CSS background-size: cover)."""
    w, h = size
    scale = max(w / img.width, h / img.height)
    resized = img.resize((max(w, int(img.width * scale)), max(h, int(img.height * scale))), Image.LANCZOS)
    left = (resized.width - w) // 2
    top = (resized.height - h) // 2
    return resized.crop((left, top, left + w, top + h))


def draw_rain(img: Image.Image, seed: int):
    """Diagonal rain streaks over the background."""
    overlay = Image.new("RGBA", img.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    rng = random.Random(seed)
    for _ in range(260):
        x = rng.randint(-100, img.width)
        y = rng.randint(-60, img.height)
        length = rng.randint(20, 60)
        draw.line([(x, y), (x + length // 4, y + length)], fill=(200, 220, 255, rng.randint(40, 110)), width=1)
    img.paste(Image.alpha_composite(img.convert("RGBA"), overlay).convert("RGB"))


def wrap_lines(text: str, font, max_width: int) -> list:
    lines = []
    for paragraph in text.split("\n"):
        line = ""
        for word in paragraph.split():
            test = f"{line} {word}".strip()
            if font.getlength(test) > max_width:
                if line:
                    lines.append(line)
                line = word
            else:
                line = test
        if line:
            lines.append(line)
    return lines


def fit_quote(text: str, max_width: int, max_height: int) -> tuple:
    """Largest serif size whose wrapped quote fits the box. Returns (font, lines, line_h)."""
    for size in (72, 64, 56, 50, 44, 38, 34, 30):
        font = get_font(size, serif=True)
        lines = wrap_lines(text, font, max_width)
        line_h = int(size * 1.4)
        if len(lines) * line_h <= max_height:
            return font, lines, line_h
    return font, lines, line_h


def render_frame(session: MuseSession, now: datetime = None, size: tuple = None) -> Image.Image:
    """Render the clock as an RGB image: background, quote panel, chrome."""
    now = now or datetime.now()
    w, h = size or (WIDTH, HEIGHT)
    pad = int(w * 0.06)

    bg = session.background.get("image")
    img = cover(bg, (w, h)) if bg is not None else draw_gradient((w, h))
    if not session.muted and ambience_for(session.climate)["rain"]:
        draw_rain(img, seed=now.hour * 60 + now.minute)

    quote = session.quote or {"text": "Thinking...", "author": "Unknown", "title": None}
    text = f"“{quote['text']}”"

    # Quote panel: blur the photo behind it, then darken for contrast
    box_w = w - pad * 2
    font, lines, line_h = fit_quote(text, box_w - 80, int(h * 0.5))
    panel_h = len(lines) * line_h + 180
    panel_top = (h - panel_h) // 2
    box = (pad, panel_top, w - pad, panel_top + panel_h)
    region = img.crop(box).filter(ImageFilter.GaussianBlur(radius=14))
    shade = Image.new("RGB", region.size, (0, 0, 0))
    img.paste(Image.blend(region, shade, 0.45), box)

    draw = ImageDraw.Draw(img)
    y = panel_top + 40
    for line in lines:
        draw.text((w // 2, y), line, fill=(245, 245, 240), font=font, anchor="mt")
        y += line_h
    y += 20
    draw.text((w // 2, y), f"— {quote['author']}", fill=(220, 220, 210), font=get_font(34, bold=True), anchor="mt")
    if quote.get("title"):
        draw.text((w // 2, y + 46), quote["title"], fill=(190, 190, 180),
                  font=get_font(28, serif=True), anchor="mt")

    if session.zen:
        return img

    # Header: greeting + period on the left, big time on the right
    draw.text((pad, pad), greeting(now.hour), fill=(255, 255, 255), font=get_font(44, bold=True), anchor="lt")
    draw.text((pad, pad + 60), PERIOD_LABELS.get(session.period, ""), fill=(220, 220, 220),
              font=get_font(30), anchor="lt")
    draw.text((w - pad, pad), now.strftime("%H:%M"), fill=(255, 255, 255),
              font=get_font(96, bold=True), anchor="rt")

    # Footer: climate badge left, photo credit right
    draw.text((pad, h - pad // 2), climate_badge(session.climate, session.tz_name), fill=(210, 210, 210),
              font=get_font(24), anchor="lm")
    record = session.background.get("record")
    if record:
        draw.text((w - pad, h - pad // 2), f"Photo by {record['name']} on Unsplash", fill=(210, 210, 210),
                  font=get_font(24), anchor="rm")
    return img


def frame_to_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


# --- VSS communication ---
def get_session(base_url: str) -> requests.Session:
    """Create an authenticated session with VSS."""
    s = requests.Session()
    r = s.post(f"{base_url}/login", data={"username": VSS_USER, "password": VSS_PASS},
               allow_redirects=False, timeout=10)
    if r.status_code not in (200, 302):
        raise RuntimeError(f"VSS login failed: {r.status_code}")
    return s


def discover_devices() -> list:
    """Allowed VSS devices with their native resolutions.

    Only UUIDs listed in DEVICE_UUIDS are kept when it is set. Falls back to
    the configured UUIDs at canvas resolution if VSS can't be queried.
    """
    configured = [u.strip() for u in _DEVICE_UUIDS_RAW.split(",") if u.strip()]
    devices = []
    try:
        base_url = f"http://{VSS_HOST}:{VSS_PORT}"
        s = get_session(base_url)
        r = s.get(f"{base_url}/api/device/", timeout=5)
        r.raise_for_status()
        for d in r.json():
            if d.get("Options", {}).get("Allowed") != "true":
                continue
            uuid = d["Uuid"]
            if configured and uuid not in configured:
                continue
            displays = d.get("Displays", [])
            w = displays[0]["Width"] if displays else WIDTH
            h = displays[0]["Height"] if displays else HEIGHT
            devices.append({"uuid": uuid, "name": d.get("Options", {}).get("Revision", uuid[:12]),
                            "width": w, "height": h})
    except Exception as e:
        print(f"[discover] VSS query failed: {e}")
        devices = [{"uuid": u, "name": u[:12], "width": WIDTH, "height": HEIGHT} for u in configured]
    return devices


def push_image(img: Image.Image, device: dict):
    """Push a frame to one Joan device, resized to its native resolution."""
    out = img
    target = (device["width"], device["height"])
    if (img.width, img.height) != target:
        out = cover(img, target)

    base_url = f"http://{VSS_HOST}:{VSS_PORT}"
    session = get_session(base_url)
    buf = io.BytesIO()
    out.convert("RGB").save(buf, format="PNG")
    size = buf.tell()
    buf.seek(0)

    r = session.put(
        f"{base_url}/backend/{device['uuid']}",
        files=[("image", ("muse.png", buf, "image/png"))],
        timeout=30,
    )
    if r.status_code == 200:
        print(f"[push] -> {device['uuid'][:12]}... {out.width}x{out.height} ({size} bytes)")
    else:
        print(f"[push] x {device['uuid'][:12]}...: {r.status_code} {r.text}")


def push_to_all(img: Image.Image, devices: list):
    if not devices:
        print("[push] No devices configured")
        return
    for dev in devices:
        try:
            push_image(img, dev)
        except Exception as e:
            print(f"[push] {dev['name']} failed: {e}")


# --- Main loop ---
def render_and_store(session: MuseSession, now: datetime) -> Image.Image:
    session.begin_render()
    img = render_frame(session, now)
    session.store_frame(frame_to_png(img), now)
    return img


def run_loop(session: MuseSession, preview: bool = False, devices: list = None,
             reload_minutes: int = 60, stop: threading.Event = None):
    """The one-second tick loop. Re-renders when tick() or a UI toggle changes something."""
    stop = stop or threading.Event()
    manifest_loaded = time.time()
    while not stop.is_set():
        now = datetime.now()
        if reload_minutes > 0 and time.time() - manifest_loaded > reload_minutes * 60:
            session.manifest = muse_sources.load_manifest()
            manifest_loaded = time.time()

        try:
            changed = tick(session, now)
            if changed or session.dirty:
                quote = session.quote or {}
                print(f"[{now.strftime('%H:%M:%S')}] {PERIOD_LABELS.get(session.period, '?')} / {session.climate}: "
                      f"{quote.get('author', '?')}{'' if session.quote_ok else ' (fallback)'}")
                img = render_and_store(session, now)
                if preview:
                    img.save(PREVIEW_FILE)
                if changed and devices:
                    push_to_all(img, devices)
        except Exception as e:
            print(f"[loop] Error: {e}")

        # Sleep to the next whole second
        nxt = (now + timedelta(seconds=1)).replace(microsecond=0)
        stop.wait(max(0.05, (nxt - datetime.now()).total_seconds()))


def main():
    parser = argparse.ArgumentParser(description="Minute Muse literature clock")
    parser.add_argument("--once", action="store_true", help="Render a single frame and exit")
    parser.add_argument("--preview", action="store_true", help=f"Save frames to {PREVIEW_FILE}")
    parser.add_argument("--at", type=str, default="", help="Render a fixed time HH:MM (implies --once)")
    parser.add_argument("--serve", type=int, default=0, help="Serve the web page on this port (0 = off)")
    parser.add_argument("--push", action="store_true", help="Push new frames to Joan devices via VSS")
    parser.add_argument("--reload-manifest", type=int, default=60,
                        help="Re-read images.json every N minutes (0 = never)")
    args = parser.parse_args()

    session = MuseSession(manifest=muse_sources.load_manifest())
    devices = discover_devices() if args.push else []
    if args.push:
        dev_info = ", ".join(f"{d['name']} {d['width']}x{d['height']}" for d in devices) or "none found"
        print(f"[devices] Pushing to {len(devices)} device(s): {dev_info}")

    if args.once or args.at:
        now = datetime.now()
        if args.at:
            try:
                hh, mm = args.at.split(":")
                now = now.replace(hour=int(hh), minute=int(mm), second=0, microsecond=0)
            except ValueError:
                print(f"[error] --at expects HH:MM, got '{args.at}'")
                return
        tick(session, now, force=True)
        img = render_and_store(session, now)
        if args.preview or not devices:
            img.save(PREVIEW_FILE)
            print(f"[preview] Saved to {PREVIEW_FILE}")
        if devices:
            push_to_all(img, devices)
        return

    if args.serve:
        from muse_control import start_server
        start_server(session, args.serve)

    try:
        run_loop(session, preview=args.preview, devices=devices, reload_minutes=args.reload_manifest)
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    main()
