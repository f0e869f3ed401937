from __future__ import annotations

import logging
import queue
import threading

import requests

from tailstats.events import AcceptedEvent

logger = logging.getLogger(__name__)


class HttpStatsCollector:
    """
    Ships accepted requests to a remote tailstats /ingest endpoint.

    log_request() never blocks the tail loop: events go onto a bounded queue
    drained by a daemon thread, and are dropped when the queue is full.
    """

    def __init__(self, url: str, token: str, max_q: int = 8000, timeout: float = 1.2):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.q: "queue.Queue[dict]" = queue.Queue(maxsize=max_q)
        threading.Thread(target=self._worker, daemon=True).start()

    def log_request(self, path: str, referrer: str, size: int, timestamp: int) -> None:
        payload = AcceptedEvent(path=path, referrer=referrer, size=size, timestamp=timestamp).model_dump()
        try:
            self.q.put_nowait(payload)
        except queue.Full:
            # drop under pressure
            logger.debug("Collector queue full, dropping %s", path)

    def _worker(self):
        headers = {"Authorization": f"Bearer {self.token}"}
        while True:
            item = self.q.get()
            try:
                resp = requests.post(self.url, json=item, headers=headers, timeout=self.timeout)
                resp.raise_for_status()
            except requests.RequestException as exc:
                logger.warning("Failed to deliver %s to %s: %s", item.get("path"), self.url, exc)
            finally:
                self.q.task_done()
