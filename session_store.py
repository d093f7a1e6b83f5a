"""On-disk session metadata for the MCP server.

Structural changes (set / delete) are written immediately. Access-time
touches are frequent, so they are batched: the file is rewritten at most once
per SAVE_DEBOUNCE_SECONDS. flush() / close() write anything still pending.
"""

import json
import os
import sys
import tempfile
import threading
import time
from dataclasses import asdict, dataclass

SAVE_DEBOUNCE_SECONDS = 1.0


def default_store_path() -> str:
    return os.environ.get("PERIPHERY_SESSION_STORE") or os.path.join(
        tempfile.gettempdir(), "periphery-sessions.json")


@dataclass
class SessionData:
    session_id: str
    created_at: float
    last_accessed_at: float


class SessionStore:
    def __init__(self, path: str | None = None, debounce: float = SAVE_DEBOUNCE_SECONDS):
        self.path = path or default_store_path()
        self.debounce = debounce
        self._sessions: dict[str, SessionData] = {}
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._dirty = False
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._sessions = {key: SessionData(**value) for key, value in data.items()}
            print(f"[periphery] Loaded {len(self._sessions)} session(s) from {self.path}",
                  file=sys.stderr, flush=True)
        except (OSError, ValueError, TypeError) as e:
            print(f"[periphery] Could not load session store {self.path}: {e}",
                  file=sys.stderr, flush=True)
            self._sessions = {}

    def _write(self) -> None:
        # caller holds the lock
        data = {key: asdict(value) for key, value in self._sessions.items()}
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise
        self._dirty = False

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _save_now(self) -> None:
        self._cancel_timer()
        self._write()

    def _save_later(self) -> None:
        self._dirty = True
        if self._timer is not None:
            return
        self._timer = threading.Timer(self.debounce, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
            if self._dirty:
                self._write()

    def get(self, session_id: str) -> SessionData | None:
        with self._lock:
            return self._sessions.get(session_id)

    def set(self, session_id: str, data: SessionData | None = None) -> SessionData:
        now = time.time()
        with self._lock:
            data = data or SessionData(session_id, created_at=now, last_accessed_at=now)
            self._sessions[session_id] = data
            self._save_now()
            return data

    def delete(self, session_id: str) -> bool:
        with self._lock:
            existed = self._sessions.pop(session_id, None) is not None
            if existed:
                self._save_now()
            return existed

    def touch(self, session_id: str) -> SessionData:
        """Record an access; creates the session if it is new."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_accessed_at = time.time()
                self._save_later()
                return session
        return self.set(session_id)

    def list(self) -> list[SessionData]:
        with self._lock:
            return list(self._sessions.values())

    def flush(self) -> None:
        with self._lock:
            if self._dirty or self._timer is not None:
                self._save_now()

    def close(self) -> None:
        self.flush()
        with self._lock:
            self._cancel_timer()
