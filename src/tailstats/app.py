from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI, Header, HTTPException

from tailstats.config import LogParserConfig, load_config
from tailstats.events import AcceptedEvent, StatsCollector, deliver
from tailstats.forwarder import HttpStatsCollector
from tailstats.stats import RequestStats
from tailstats.tailer import TailProcess, is_enabled, start_tailing

logger = logging.getLogger(__name__)

# ----------------------------
# Config
# ----------------------------
TOKEN = os.getenv("TAILSTATS_TOKEN", "dev-secret")
COLLECTOR_URL = os.getenv("TAILSTATS_COLLECTOR_URL", "").strip()


# ----------------------------
# App
# ----------------------------
def create_app(
    config: Optional[LogParserConfig] = None,
    stats: Optional[RequestStats] = None,
    collector: Optional[StatsCollector] = None,
    token: str = TOKEN,
) -> FastAPI:
    """
    Local stats always back /stats and /ingest. Tailed requests go to
    `collector` when given (e.g. a remote HttpStatsCollector), otherwise into
    the local stats.
    """
    config = config or load_config()
    stats = stats or RequestStats()
    sink = collector or stats

    app = FastAPI(title="tailstats")
    app.state.config = config
    app.state.stats = stats
    app.state.tailer = None

    @app.on_event("startup")
    async def _startup():
        app.state.tailer = start_tailing(config, sink)

    @app.on_event("shutdown")
    async def _shutdown():
        tailer: Optional[TailProcess] = app.state.tailer
        if tailer is not None and tailer.task is not None:
            tailer.task.cancel()

    @app.get("/status")
    def status():
        tailer: Optional[TailProcess] = app.state.tailer
        return {
            "enabled": is_enabled(tailer),
            "log_file": config.log_path,
            "respawns": tailer.respawns if tailer is not None else 0,
        }

    @app.get("/stats")
    def stats_summary(limit: int = 10):
        return stats.snapshot(limit=limit)

    @app.post("/ingest")
    def ingest(ev: AcceptedEvent, authorization: str | None = Header(default=None)):
        if authorization != f"Bearer {token}":
            raise HTTPException(401, "unauthorized")
        deliver(stats, ev)
        return {"ok": True}

    return app


def _default_collector() -> Optional[StatsCollector]:
    if not COLLECTOR_URL:
        return None
    logger.info("Forwarding accepted requests to %s", COLLECTOR_URL)
    return HttpStatsCollector(url=COLLECTOR_URL, token=TOKEN)


app = create_app(collector=_default_collector())

# ----------------------------
# Entry hint (optional)
# ----------------------------
# Run with:
#   uvicorn tailstats.app:app --host 127.0.0.1 --port 7000
