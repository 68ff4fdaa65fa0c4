#!/usr/bin/env python3
"""Minute Muse web UI — the clock page plus its controls.

Started by `muse_clock.py --serve PORT`. The page shows the rendered frame
with a fade between versions and offers:

    New quote (button or Space)   POST /refresh
    Ambience sound on/off         POST /sound
    Zen mode on/off               POST /zen
    Journal                       GET|POST /journal  (saved to journal.json)
"""

import json
import os
import threading
from datetime import datetime
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse

JOURNAL_FILE = os.environ.get(
    "JOURNAL_FILE", os.path.join(os.path.dirname(os.path.abspath(__file__)), "journal.json")
)
SOUNDS_DIR = os.environ.get("SOUNDS_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "sounds"))

_journal_lock = threading.Lock()


def load_journal() -> dict:
    """Load the journal from JSON file."""
    if os.path.exists(JOURNAL_FILE):
        try:
            with open(JOURNAL_FILE, "r") as f:
                data = json.load(f)
            if isinstance(data, dict):
                return {"text": str(data.get("text", "")), "updated": data.get("updated")}
        except (OSError, ValueError) as e:
            print(f"[journal] Failed to read {JOURNAL_FILE}: {e}")
    return {"text": "", "updated": None}


def save_journal(text: str) -> dict:
    """Save journal text. Last writer wins."""
    entry = {"text": text, "updated": datetime.now().isoformat(timespec="seconds")}
    with _journal_lock:
        with open(JOURNAL_FILE, "w") as f:
            json.dump(entry, f, indent=2)
    return entry


def render_html() -> str:
    """Render the clock page. Everything dynamic is pulled from /state by the script."""
    return """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Minute Muse</title>
    <style>
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            background: linear-gradient(to bottom, #0f2027, #2c5364);
            color: #e0e0e0;
            height: 100vh;
            overflow: hidden;
        }
        .frame {
            position: fixed;
            inset: 0;
            width: 100%;
            height: 100%;
            object-fit: cover;
            transition: opacity 0.8s ease;
        }
        .frame.hidden { opacity: 0; }
        .toolbar {
            position: fixed;
            bottom: 16px;
            left: 50%;
            transform: translateX(-50%);
            display: flex;
            gap: 8px;
            align-items: center;
            padding: 8px 12px;
            background: rgba(15, 15, 15, 0.6);
            border-radius: 10px;
            transition: opacity 0.3s;
        }
        body.zen-active .toolbar { opacity: 0; }
        body.zen-active .toolbar:hover { opacity: 1; }
        .btn-sm {
            padding: 6px 14px;
            font-size: 13px;
            border: 1px solid #333;
            background: #1a1a1a;
            color: #ccc;
            border-radius: 6px;
            cursor: pointer;
            transition: all 0.15s;
        }
        .btn-sm:hover { background: #252525; color: #fff; }
        .next-change { font-size: 12px; color: #888; min-width: 110px; text-align: center; }
        .credit { position: fixed; top: 12px; right: 16px; font-size: 12px; }
        .credit a { color: #ccc; }
        body.zen-active .credit { display: none; }
        .overlay {
            position: fixed;
            inset: 0;
            background: rgba(0, 0, 0, 0.7);
            display: flex;
            align-items: center;
            justify-content: center;
        }
        .overlay.hidden { display: none; }
        .journal {
            width: min(720px, 90vw);
            background: #141414;
            border: 1px solid #2a2a2a;
            border-radius: 10px;
            padding: 20px;
        }
        .journal h2 { font-size: 18px; color: #fff; margin-bottom: 12px; }
        .journal textarea {
            width: 100%;
            height: 320px;
            background: #1a1a1a;
            color: #eee;
            border: 1px solid #333;
            border-radius: 6px;
            padding: 12px;
            font-size: 15px;
            resize: vertical;
        }
        .journal .row { display: flex; justify-content: space-between; margin-top: 12px; font-size: 12px; color: #777; }
    </style>
</head>
<body>
    <img id="frame-a" class="frame" alt="">
    <img id="frame-b" class="frame hidden" alt="">
    <div class="credit" id="photo-credit"></div>

    <div class="toolbar">
        <button type="button" class="btn-sm" id="btn-sound" title="Ambience">&#128263;</button>
        <button type="button" class="btn-sm" id="btn-zen" title="Zen mode">Zen</button>
        <button type="button" class="btn-sm" id="btn-journal" title="Journal">Journal</button>
        <button type="button" class="btn-sm" id="new-quote" title="New quote (Space)">New quote</button>
        <span class="next-change" id="next-change"></span>
    </div>

    <div class="overlay hidden" id="journal-overlay">
        <div class="journal">
            <h2>Journal</h2>
            <textarea id="journal-text" placeholder="What does this minute make you think of?"></textarea>
            <div class="row">
                <span id="journal-updated"></span>
                <button type="button" class="btn-sm" id="btn-close-journal">Save &amp; close</button>
            </div>
        </div>
    </div>

    <audio id="audio" loop></audio>

    <script>
        let frameVersion = -1;
        let front = document.getElementById('frame-a');
        let back = document.getElementById('frame-b');
        const audio = document.getElementById('audio');
        const btnSound = document.getElementById('btn-sound');

        // Preload the new frame, then cross-fade so a half-loaded image never shows
        function swapFrame(version) {
            back.onload = () => {
                back.classList.remove('hidden');
                front.classList.add('hidden');
                [front, back] = [back, front];
            };
            back.src = '/frame.png?v=' + version + '&t=' + Date.now();
        }

        function updateAmbience(s) {
            btnSound.innerHTML = s.muted ? '&#128263;' : '&#128266;';
            if (s.muted) { audio.pause(); return; }
            const src = '/sounds/' + s.ambience.track;
            if (!audio.src.endsWith(src)) audio.src = src;
            audio.volume = s.ambience.volume;
            audio.play().catch(() => {});
        }

        // Manifest text only ever goes through textContent; non-http links are dropped
        function link(href, label) {
            const a = document.createElement('a');
            a.target = '_blank';
            a.rel = 'noopener';
            if (/^https?:\\/\\//.test(href)) a.href = href + '?utm_source=MinuteMuse&utm_medium=referral';
            a.textContent = label;
            return a;
        }

        function applyState(s) {
            document.body.classList.toggle('zen-active', s.zen);
            document.getElementById('next-change').textContent = 'Next page in ' + s.next_change + 's';
            const credit = document.getElementById('photo-credit');
            credit.textContent = '';
            if (s.credit) {
                credit.append('Photo by ', link(s.credit.link, s.credit.name), ' on ',
                    link('https://unsplash.com/', 'Unsplash'));
            }
            updateAmbience(s);
            if (s.frame_version !== frameVersion && s.frame_version > 0) {
                frameVersion = s.frame_version;
                swapFrame(frameVersion);
            }
        }

        function poll() {
            fetch('/state').then(r => r.json()).then(applyState).catch(() => {});
        }

        function post(path) {
            return fetch(path, {method: 'POST'}).then(r => r.json()).then(poll);
        }

        document.getElementById('new-quote').addEventListener('click', () => post('/refresh'));
        btnSound.addEventListener('click', () => post('/sound'));
        document.getElementById('btn-zen').addEventListener('click', () => post('/zen'));
        window.addEventListener('keydown', (e) => {
            if (e.code === 'Space' && e.target.tagName !== 'TEXTAREA') { e.preventDefault(); post('/refresh'); }
        });

        // Journal
        const overlay = document.getElementById('journal-overlay');
        const text = document.getElementById('journal-text');
        document.getElementById('btn-journal').addEventListener('click', () => {
            fetch('/journal').then(r => r.json()).then(j => {
                text.value = j.text || '';
                document.getElementById('journal-updated').textContent = j.updated ? 'Saved ' + j.updated : '';
                overlay.classList.remove('hidden');
            });
        });
        document.getElementById('btn-close-journal').addEventListener('click', () => {
            fetch('/journal', {
                method: 'POST',
                headers: {'Content-Type': 'application/json'},
                body: JSON.stringify({text: text.value})
            }).then(() => overlay.classList.add('hidden')).catch(() => alert('Save failed'));
        });

        poll();
        setInterval(poll, 1000);
    </script>
</body>
</html>"""


class MuseHandler(BaseHTTPRequestHandler):
    session = None  # set by make_handler()

    def _send(self, status: int, body: bytes, content_type: str):
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Cache-Control", "no-store")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_json(self, data: dict, status: int = 200):
        self._send(status, json.dumps(data).encode(), "application/json")

    def do_GET(self):
        path = urlparse(self.path).path
        if path == "/":
            self._send(200, render_html().encode(), "text/html; charset=utf-8")
        elif path == "/state":
            self._send_json(self.session.state())
        elif path == "/frame.png":
            png = self.session.frame_png
            if png is None:
                self._send_json({"ok": False, "message": "No frame rendered yet"}, 503)
            else:
                self._send(200, png, "image/png")
        elif path == "/journal":
            self._send_json(load_journal())
        elif path.startswith("/sounds/"):
            name = os.path.basename(path)
            file_path = os.path.join(SOUNDS_DIR, name)
            if name and os.path.isfile(file_path):
                with open(file_path, "rb") as f:
                    self._send(200, f.read(), "audio/mpeg")
            else:
                self._send_json({"ok": False, "message": f"No sound '{name}'"}, 404)
        else:
            self._send_json({"ok": False, "message": "Not found"}, 404)

    def do_POST(self):
        path = urlparse(self.path).path
        if path == "/refresh":
            self.session.request_refresh()
            print("[web] Forced refresh requested")
            self._send_json({"ok": True})
        elif path == "/sound":
            muted = self.session.toggle_mute()
            print(f"[web] Ambience {'off' if muted else 'on'}")
            self._send_json({"ok": True, "muted": muted})
        elif path == "/zen":
            zen = self.session.toggle_zen()
            print(f"[web] Zen mode {'on' if zen else 'off'}")
            self._send_json({"ok": True, "zen": zen})
        elif path == "/journal":
            length = int(self.headers.get("Content-Length", 0))
            body = self.rfile.read(length).decode()
            try:
                data = json.loads(body) if body else {}
            except ValueError:
                self._send_json({"ok": False, "message": "Invalid JSON"}, 400)
                return
            if not isinstance(data, dict):
                self._send_json({"ok": False, "message": "Expected a JSON object"}, 400)
                return
            entry = save_journal(str(data.get("text", "")))
            print(f"[journal] Saved {len(entry['text'])} chars")
            self._send_json({"ok": True, **entry})
        else:
            self._send_json({"ok": False, "message": "Not found"}, 404)

    def log_message(self, format, *args):
        pass


def make_handler(session):
    return type("BoundMuseHandler", (MuseHandler,), {"session": session})


def start_server(session, port: int, host: str = "0.0.0.0") -> ThreadingHTTPServer:
    """Serve the page in a daemon thread; the caller keeps running the clock loop."""
    server = ThreadingHTTPServer((host, port), make_handler(session))
    thread = threading.Thread(target=server.serve_forever, name="muse-web", daemon=True)
    thread.start()
    print(f"[web] Listening on http://{host}:{server.server_address[1]}")
    print(f"[web] Journal file: {JOURNAL_FILE}")
    return server
