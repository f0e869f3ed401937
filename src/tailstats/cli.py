import logging
import os
import uvicorn

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def main():
    host = os.getenv("TAILSTATS_HOST", "127.0.0.1")
    port = int(os.getenv("TAILSTATS_PORT", "7000"))
    reload_ = os.getenv("TAILSTATS_RELOAD", "0") == "1"
    log_level = os.getenv("TAILSTATS_LOG_LEVEL", "info")

    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)

    uvicorn.run(
        "tailstats.app:app",
        host=host,
        port=port,
        reload=reload_,
        log_level=log_level,
    )
