from __future__ import annotations

import threading
from collections import Counter
from typing import Any, Dict, List


class RequestStats:
    """In-process collector: hits and bytes per served file and per referrer."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.file_hits: Counter = Counter()
        self.file_bytes: Counter = Counter()
        self.referrer_hits: Counter = Counter()
        self.total_requests = 0
        self.total_bytes = 0
        self.last_ts = 0

    def log_request(self, path: str, referrer: str, size: int, timestamp: int) -> None:
        with self._lock:
            self.total_requests += 1
            self.total_bytes += size
            self.file_hits[path] += 1
            self.file_bytes[path] += size
            if referrer:
                self.referrer_hits[referrer] += 1
            if timestamp > self.last_ts:
                self.last_ts = timestamp

    def _top_files(self, limit: int) -> List[Dict[str, Any]]:
        return [
            {"path": p, "hits": n, "bytes": self.file_bytes[p]}
            for p, n in self.file_hits.most_common(limit)
        ]

    def _top_referrers(self, limit: int) -> List[Dict[str, Any]]:
        return [{"referrer": r, "hits": n} for r, n in self.referrer_hits.most_common(limit)]

    def top_files(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            return self._top_files(limit)

    def top_referrers(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            return self._top_referrers(limit)

    def snapshot(self, limit: int = 10) -> Dict[str, Any]:
        with self._lock:
            return {
                "requests": self.total_requests,
                "bytes": self.total_bytes,
                "last_ts": self.last_ts,
                "files": self._top_files(limit),
                "referrers": self._top_referrers(limit),
            }
