#!/usr/bin/env python3
"""Data sources for the Minute Muse display.

Time-of-day buckets, the climate estimator, per-minute literary quotes and
manifest-driven backgrounds. Every network call goes through with_fallback()
so the display always has something to show.
"""

import html
import json
import os
import random
import re
import time
from datetime import datetime
from io import BytesIO

import requests
from PIL import Image

# --- Load .env file if present ---
_env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
if os.path.exists(_env_path):
    with open(_env_path) as _f:
        for _line in _f:
            _line = _line.strip()
            if _line and not _line.startswith("#") and "=" in _line:
                _k, _v = _line.split("=", 1)
                os.environ.setdefault(_k.strip(), _v.strip())

QUOTE_INDEX_URL = os.environ.get(
    "QUOTE_INDEX_URL",
    "https://raw.githubusercontent.com/JohannesNE/literature-clock/master/docs/times/{hh}_{mm}.json",
)
MANIFEST_FILE = os.environ.get(
    "MANIFEST_FILE", os.path.join(os.path.dirname(os.path.abspath(__file__)), "images.json")
)

CLIMATES = ["north", "south", "tropical"]
PERIODS = ["dawn", "morning", "afternoon", "evening", "night"]

PERIOD_LABELS = {
    "dawn": "Dawn",
    "morning": "Morning",
    "afternoon": "Afternoon",
    "evening": "Evening",
    "night": "Night",
}

GRADIENT_TOP = (15, 32, 39)      # #0f2027
GRADIENT_BOTTOM = (44, 83, 100)  # #2c5364


# ── Fetch with fallback ──────────────────────────────────────────────

class Outcome:
    """Result of with_fallback(): the value plus whether the primary source produced it."""

    def __init__(self, value, ok, error=None):
        self.value = value
        self.ok = ok
        self.error = error

    def __repr__(self):
        return f"Outcome(ok={self.ok}, error={self.error!r})"


def with_fallback(primary, fallback, label):
    """Run primary(); on any exception log it and use fallback() instead.

    Success is reported through Outcome.ok, never inferred from the value.
    """
    try:
        return Outcome(primary(), True)
    except Exception as e:
        print(f"[{label}] Failed: {e} — using fallback")
        return Outcome(fallback(), False, str(e))


# ── Cache layer ──────────────────────────────────────────────────────
# Fresh-first: within TTL return cached; after TTL try fresh;
# on failure serve stale (up to max_stale), otherwise re-raise.

_cache = {}  # key -> {"data": ..., "ts": float}


def _cache_fetch(key, ttl, max_stale, fetch_fn):
    now = time.time()
    entry = _cache.get(key)
    if entry and (now - entry["ts"]) < ttl:
        return entry["data"]
    try:
        data = fetch_fn()
    except Exception as e:
        if entry and max_stale > 0 and (now - entry["ts"]) < max_stale:
            print(f"[cache] '{key}' fetch failed ({e}), serving stale (age {int(now - entry['ts'])}s)")
            return entry["data"]
        raise
    _cache[key] = {"data": data, "ts": now}
    return data


# ── 1. Time of day ───────────────────────────────────────────────────

def time_of_day(hour: int) -> str:
    """Bucket an hour (0-23): dawn 5-8, morning 8-12, afternoon 12-17, evening 17-20, night otherwise."""
    if 5 <= hour < 8:
        return "dawn"
    if 8 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 20:
        return "evening"
    return "night"


def greeting(hour: int) -> str:
    if hour < 5:
        return "Good Night"
    if hour < 12:
        return "Good Morning"
    if hour < 17:
        return "Good Afternoon"
    if hour < 22:
        return "Good Evening"
    return "Sleep Well"


def format_time_12h(now: datetime) -> str:
    """'4:30 PM' style time, no leading zero on the hour."""
    hour = now.hour % 12 or 12
    ampm = "PM" if now.hour >= 12 else "AM"
    return f"{hour}:{now.minute:02d} {ampm}"


# ── 2. Climate estimator ─────────────────────────────────────────────
# Keyword heuristic on the IANA zone name. Approximate by nature; the
# scheduler only sees it through MuseSession.climate_estimator.

TROPICAL_KEYWORDS = [
    "Singapore", "Jakarta", "Bangkok", "Ho_Chi_Minh", "Kuala_Lumpur", "Manila",
    "Phnom_Penh", "Yangon", "Colombo", "Maldives", "Honolulu", "Fiji",
    "Jamaica", "Bogota", "Lagos", "Nairobi",
]
SOUTHERN_KEYWORDS = [
    "Australia", "New_Zealand", "Auckland", "Sydney", "Johannesburg",
    "Cape_Town", "Buenos_Aires", "Santiago", "Sao_Paulo",
]


def local_timezone_name() -> str:
    """Best-effort IANA name of the local zone."""
    tz = os.environ.get("MUSE_TIMEZONE") or os.environ.get("TZ", "")
    if tz:
        return tz.lstrip(":")
    if os.path.exists("/etc/timezone"):
        with open("/etc/timezone") as f:
            name = f.read().strip()
        if name:
            return name
    if os.path.islink("/etc/localtime"):
        target = os.path.realpath("/etc/localtime")
        if "zoneinfo/" in target:
            return target.split("zoneinfo/", 1)[1]
    return "UTC"


def estimate_climate(tz_name: str | None = None) -> str:
    """Return 'tropical', 'south' or 'north' for a timezone name (local zone if omitted)."""
    try:
        tz = tz_name or local_timezone_name()
        if any(k in tz for k in TROPICAL_KEYWORDS):
            return "tropical"
        if any(k in tz for k in SOUTHERN_KEYWORDS):
            return "south"
    except Exception as e:
        print(f"[climate] Detection failed: {e}")
    return "north"


def climate_badge(climate: str, tz_name: str) -> str:
    """e.g. 'Northern Hemisphere • London'."""
    city = tz_name.split("/")[-1] if tz_name else "UTC"
    location = city.replace("_", " ")
    if climate == "tropical":
        return f"Tropical Climate • {location}"
    hemisphere = "Southern" if climate == "south" else "Northern"
    return f"{hemisphere} Hemisphere • {location}"


AMBIENCE_TRACKS = {
    "tropical": "rain.mp3",
    "north": "fire.mp3",
    "south": "nature.mp3",
}

AMBIENCE_VOLUME = {
    "tropical": 0.3,
    "north": 0.4,
    "south": 0.2,
}


def ambience_for(climate: str) -> dict:
    return {
        "track": AMBIENCE_TRACKS.get(climate, AMBIENCE_TRACKS["south"]),
        "volume": AMBIENCE_VOLUME.get(climate, AMBIENCE_VOLUME["south"]),
        "rain": climate == "tropical",
    }


# ── 3. Quotes ────────────────────────────────────────────────────────

FALLBACK_TEMPLATES = {
    "dawn": [
        "The clock showed {time}, and the first light began to bleed through the curtains.",
        "It was {time}. The world was holding its breath before the sunrise.",
        "At exactly {time}, the birds began their morning council.",
        "He looked at his watch: {time}. Too early to rise, too late to sleep.",
    ],
    "morning": [
        "The coffee poured into the cup at {time}, steaming with promise.",
        "It was {time}, and the city was already awake and demanding attention.",
        "She checked the time, {time}, and realized the day had truly begun.",
    ],
    "afternoon": [
        "The shadows grew longer as the clock struck {time}.",
        "It was {time}, the hour when the day decides if it will be good or bad.",
        "He glanced up. {time}. The work was nowhere near finished.",
    ],
    "evening": [
        "The sky turned purple at {time}, signaling the end of the shift.",
        "It was {time}. The streetlights flickered to life one by one.",
        "At {time}, the noise of the day finally began to settle.",
    ],
    "night": [
        "It was {time}. The world belonged to the dreamers now.",
        "The clock read {time}. The darkness was absolute and comforting.",
        "At {time}, the only sound was the hum of the refrigerator.",
    ],
}

FICTIONAL_AUTHORS = [
    "The Narrator", "Chapter 4", "The Lost Diary", "Chronicles of Now",
    "A Forgotten Novel", "Page 394", "The Timekeeper", "Midnight Tales",
]


def fetch_quote_index(now: datetime) -> list:
    """GET the literature-clock entries for this exact minute. Raises on any failure."""
    url = QUOTE_INDEX_URL.format(hh=f"{now.hour:02d}", mm=f"{now.minute:02d}")
    r = requests.get(url, timeout=5)
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, list) or not data:
        raise ValueError(f"No quotes for {now.strftime('%H:%M')}")
    return data


def _clean(text) -> str:
    text = re.sub(r"<br\s*/?>", " ", text or "", flags=re.IGNORECASE)
    return " ".join(html.unescape(text).split())


def quote_from_entry(entry: dict) -> dict:
    """Join a literature-clock entry into a display record."""
    parts = [entry.get("quote_first", ""), entry.get("quote_time_case", ""), entry.get("quote_last", "")]
    text = _clean(" ".join(p for p in parts if p))
    return {
        "text": text,
        "author": _clean(entry.get("author")) or "Unknown",
        "title": _clean(entry.get("title")) or None,
    }


def fallback_quote(period: str, now: datetime) -> dict:
    templates = FALLBACK_TEMPLATES.get(period) or FALLBACK_TEMPLATES["morning"]
    return {
        "text": random.choice(templates).replace("{time}", format_time_12h(now)),
        "author": random.choice(FICTIONAL_AUTHORS),
        "title": None,
    }


def pick_quote(entries, period: str, now: datetime) -> dict:
    """Random quote from a fetched list, or a filled-in template when there is none."""
    if entries:
        return quote_from_entry(random.choice(entries))
    return fallback_quote(period, now)


# ── 4. Manifest & backgrounds ────────────────────────────────────────

PLACEHOLDER_ATTRIBUTION = {"name": "Unsplash", "link": "https://unsplash.com"}


def normalize_record(record) -> dict | None:
    """Accept {url,name,link} dicts or legacy bare URL strings."""
    if isinstance(record, str) and record:
        return {"url": record, **PLACEHOLDER_ATTRIBUTION}
    if isinstance(record, dict) and record.get("url"):
        return {
            "url": record["url"],
            "name": record.get("name") or PLACEHOLDER_ATTRIBUTION["name"],
            "link": record.get("link") or PLACEHOLDER_ATTRIBUTION["link"],
        }
    return None


def load_manifest(path: str = None) -> dict | None:
    """Read images.json. Returns None if missing or unreadable."""
    path = path or MANIFEST_FILE
    if not os.path.exists(path):
        print(f"[manifest] {path} not found — gradient backgrounds only")
        return None
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        print(f"[manifest] Failed to read {path}: {e}")
        return None
    if not isinstance(data, dict):
        print(f"[manifest] {path} is not a JSON object")
        return None
    return data


def pick_background(manifest, climate: str, period: str) -> dict | None:
    """Random record from manifest[climate][period]; None if absent or malformed."""
    if not isinstance(manifest, dict):
        return None
    category = manifest.get(climate)
    if not isinstance(category, dict):
        return None
    images = category.get(period)
    if not isinstance(images, list) or not images:
        return None
    return normalize_record(random.choice(images))


def download_image(url: str) -> Image.Image:
    """Download and fully decode an image (cached 6h, stale up to 24h)."""
    def _fetch():
        r = requests.get(url, timeout=15)
        r.raise_for_status()
        return r.content

    data = _cache_fetch(f"image:{url}", 21600, 86400, _fetch)
    img = Image.open(BytesIO(data))
    img.load()
    return img.convert("RGB")


def resolve_background(manifest, climate: str, period: str) -> dict:
    """Choose and preload a background.

    Returns {"record": ..., "image": PIL.Image} for a photo, or
    {"record": None, "image": None} meaning the static gradient.
    """
    record = pick_background(manifest, climate, period)
    if record is None:
        print(f"[background] No images for {climate}/{period} — gradient")
        return {"record": None, "image": None}

    outcome = with_fallback(lambda: download_image(record["url"]), lambda: None, "background")
    if not outcome.ok:
        return {"record": None, "image": None}
    print(f"[background] {climate}/{period}: photo by {record['name']}")
    return {"record": record, "image": outcome.value}
