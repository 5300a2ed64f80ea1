"""Incremental duplicate detection by normalised address text and proximity."""

from __future__ import annotations

import re
import threading

_WHITESPACE_RE = re.compile(r"\s+")

DEFAULT_PROXIMITY_EPSILON = 0.0002


def normalise_address(text: str | None) -> str:
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip().casefold()


class Deduplicator:
    """First-seen-wins set of (address, location) keys for one run.

    Two entries match when their normalised address text is equal and both
    coordinates differ by at most `epsilon` degrees.
    """

    def __init__(self, epsilon: float = DEFAULT_PROXIMITY_EPSILON) -> None:
        self.epsilon = epsilon
        self._seen: dict[str, list[tuple[float, float]]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(points) for points in self._seen.values())

    def _matches(self, key: str, lat: float, lng: float) -> bool:
        for seen_lat, seen_lng in self._seen.get(key, ()):
            if abs(seen_lat - lat) <= self.epsilon and abs(seen_lng - lng) <= self.epsilon:
                return True
        return False

    def is_duplicate(self, address_line: str, lat: float, lng: float) -> bool:
        key = normalise_address(address_line)
        with self._lock:
            return self._matches(key, lat, lng)

    def try_accept(self, address_line: str, lat: float, lng: float) -> bool:
        """Record the entry and return True, or return False for a duplicate."""
        key = normalise_address(address_line)
        with self._lock:
            if self._matches(key, lat, lng):
                return False
            self._seen.setdefault(key, []).append((lat, lng))
            return True
