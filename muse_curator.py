#!/usr/bin/env python3
"""Minute Muse image curator — builds images.json from Unsplash.

Usage:
    UNSPLASH_ACCESS_KEY=... python muse_curator.py
    python muse_curator.py --output site/images.json --count 3 --delay 1.5

Fetches `count` landscape photos for every (climate, time of day) pair,
with keywords for the season each hemisphere is in this month. Run it on a
schedule (e.g. nightly cron); the clock re-reads the file hourly.
"""

import argparse
import json
import os
import sys
import time
from datetime import datetime

import requests

from muse_sources import CLIMATES, MANIFEST_FILE, PERIODS

UNSPLASH_URL = "https://api.unsplash.com/photos/random"
UNSPLASH_ACCESS_KEY = os.environ.get("UNSPLASH_ACCESS_KEY", "")

VIBES = {
    "winter": "winter,snow,cold,cozy,fireplace,frost",
    "spring": "spring,flowers,green,nature,bloom,pastel",
    "summer": "summer,beach,sun,bright,vacation,clear sky",
    "autumn": "autumn,leaves,orange,moody,rain,fog",
    "tropical": "tropical,jungle,palm trees,lush,monsoon,greenery,singapore,bali",
}

PLACEHOLDER = {
    "url": "https://images.unsplash.com/photo-1472214103451-9374bd1c798e?w=1600",
    "name": "Unsplash",
    "link": "https://unsplash.com",
}


class NoResults(Exception):
    pass


def current_seasons(month: int = None) -> dict:
    """Meteorological seasons for each climate; south is opposite to north."""
    month = month or datetime.now().month
    if month in (12, 1, 2):
        north, south = "winter", "summer"
    elif month in (3, 4, 5):
        north, south = "spring", "autumn"
    elif month in (6, 7, 8):
        north, south = "summer", "winter"
    else:
        north, south = "autumn", "spring"
    return {"north": north, "south": south, "tropical": "tropical"}


def photo_record(photo: dict) -> dict:
    """Flatten an Unsplash photo into {url, name, link}."""
    user = photo.get("user") or {}
    return {
        "url": photo["urls"]["regular"],
        "name": user.get("name") or PLACEHOLDER["name"],
        "link": (user.get("links") or {}).get("html") or PLACEHOLDER["link"],
    }


def search_photos(query: str, count: int) -> list:
    """One Unsplash /photos/random call. Raises NoResults on an empty answer."""
    r = requests.get(
        UNSPLASH_URL,
        params={
            "query": query,
            "orientation": "landscape",
            "content_filter": "high",
            "count": count,
            "client_id": UNSPLASH_ACCESS_KEY,
        },
        timeout=15,
    )
    if r.status_code == 404:
        raise NoResults(query)
    r.raise_for_status()
    data = r.json()
    records = [photo_record(p) for p in data if isinstance(p, dict) and p.get("urls")]
    if not records:
        raise NoResults(query)
    return records


def fetch_images(vibe: str, period: str, count: int = 3, delay: float = 1.0) -> list:
    """Photos for one vibe and period; broadens to the vibe alone if nothing matches.

    Never raises: a failure yields `count` placeholder records.
    """
    query = f"{VIBES[vibe]},{period}"
    try:
        return search_photos(query, count)
    except NoResults:
        print(f"no results for '{query}', broadening... ", end="", flush=True)
    except Exception as e:
        print(f"\n[curator] Failed {vibe} - {period}: {e}")
        return [dict(PLACEHOLDER) for _ in range(count)]

    time.sleep(delay)
    try:
        return search_photos(VIBES[vibe], count)
    except Exception as e:
        print(f"\n[curator] Broadened search failed {vibe} - {period}: {e}")
        return [dict(PLACEHOLDER) for _ in range(count)]


def build_manifest(count: int = 3, delay: float = 1.0, month: int = None) -> dict:
    """Full manifest: every climate has every period, placeholders where needed."""
    seasons = current_seasons(month)
    print(f"[curator] North is {seasons['north']}. South is {seasons['south']}.")
    manifest = {climate: {} for climate in CLIMATES}

    for climate in CLIMATES:
        vibe = seasons[climate]
        print(f"\n[curator] {climate.upper()} ({vibe})")
        for period in PERIODS:
            print(f"   Fetching {period}... ", end="", flush=True)
            if UNSPLASH_ACCESS_KEY:
                time.sleep(delay)
                images = fetch_images(vibe, period, count, delay)
            else:
                images = [dict(PLACEHOLDER) for _ in range(count)]
            manifest[climate][period] = images
            print(f"Done ({len(images)} imgs)")
    return manifest


def write_manifest(manifest: dict, path: str):
    tmp = f"{path}.tmp"
    with open(tmp, "w") as f:
        json.dump(manifest, f, indent=2)
    os.replace(tmp, path)


def main() -> int:
    parser = argparse.ArgumentParser(description="Build images.json for Minute Muse")
    parser.add_argument("--output", type=str, default=MANIFEST_FILE, help="Manifest path (default: images.json)")
    parser.add_argument("--count", type=int, default=3, help="Photos per climate/period (Unsplash max 30)")
    parser.add_argument("--delay", type=float, default=1.0, help="Seconds between API calls")
    args = parser.parse_args()

    if not UNSPLASH_ACCESS_KEY:
        print("[curator] UNSPLASH_ACCESS_KEY not set — writing placeholders only")

    count = max(1, min(30, args.count))
    manifest = build_manifest(count=count, delay=args.delay)
    write_manifest(manifest, args.output)
    total = sum(len(images) for periods in manifest.values() for images in periods.values())
    print(f"\n[curator] Wrote {args.output} ({total} images)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
