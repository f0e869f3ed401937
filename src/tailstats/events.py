from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, Field


class AcceptedEvent(BaseModel):
    """A request that passed every filter rule."""
    path: str
    referrer: str = ""
    size: int = Field(default=0, ge=0)
    timestamp: int = 0            # epoch ms, 0 if the datestamp was unparsable


class StatsCollector(Protocol):
    def log_request(self, path: str, referrer: str, size: int, timestamp: int) -> None:
        ...


def deliver(collector: StatsCollector, event: AcceptedEvent) -> None:
    collector.log_request(event.path, event.referrer, event.size, event.timestamp)
