from __future__ import annotations

import asyncio
import codecs
import logging
import os
from typing import Callable, Collection, List, Optional

from tailstats.clf import parse_line
from tailstats.config import LogParserConfig
from tailstats.events import StatsCollector, deliver
from tailstats.filters import DEFAULT_MIRROR_HOSTS, accept
from tailstats.lines import LineSplitter

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

CommandFactory = Callable[[str, int], List[str]]


def tail_command(path: str, scrollback: int) -> List[str]:
    return ["tail", "-F", "-n", str(scrollback), path]


def handle_line(
    line: str,
    collector: StatsCollector,
    ignore_paths: Collection[str] = frozenset(),
    mirror_hosts: Collection[str] = DEFAULT_MIRROR_HOSTS,
) -> bool:
    """
    Parses, filters and reports one log line. Returns True if it was reported.

    Never raises: a line that blows up anywhere along the way is logged and
    dropped so the tail loop keeps going.
    """
    try:
        req = parse_line(line)
        if req is None:
            return False

        event = accept(req, ignore_paths, mirror_hosts)
        if event is None:
            return False

        deliver(collector, event)
    except Exception:
        logger.exception("Dropping log line %.200r", line)
        return False
    return True


class TailProcess:
    """
    Owns the `tail -F` child and keeps it alive.

    The first spawn replays `scrollback` lines of history; every respawn after
    the child exits starts at the end of the file. A spawn error disables
    the tailer for good.
    """

    def __init__(
        self,
        config: LogParserConfig,
        collector: StatsCollector,
        *,
        command: CommandFactory = tail_command,
    ):
        self.config = config
        self.collector = collector
        self.command = command
        self.task: Optional[asyncio.Task] = None
        self._enabled = True
        self._respawn = False
        self._respawns = 0
        self._proc: Optional[asyncio.subprocess.Process] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def respawns(self) -> int:
        return self._respawns

    def restart(self) -> None:
        """
        Kills the running tail child. The run loop respawns it at the end of
        the file, exactly as after an unexpected exit.
        """
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass

    def _mark_respawn(self) -> None:
        self._respawn = True
        self._respawns += 1

    async def run(self) -> None:
        path = self.config.log_path
        while self._enabled:
            scrollback = 0 if self._respawn else self.config.scrollback
            try:
                self._proc = await asyncio.create_subprocess_exec(
                    *self.command(path, scrollback),
                    stdout=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                logger.error("Error tailing %s: %s", path, exc)
                self._enabled = False
                return

            logger.info("Tailing %s (scrollback=%d)", path, scrollback)
            try:
                await self._consume(self._proc.stdout)
                code = await self._proc.wait()
            except asyncio.CancelledError:
                await self._terminate()
                raise

            logger.warning("Tail process exited (status %s). Respawning.", code)
            self._mark_respawn()

    async def _consume(self, stream: asyncio.StreamReader) -> None:
        # Fresh state per child: overflow from a dead tail is never replayed.
        splitter = LineSplitter()
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            if not chunk:
                return
            for line in splitter.feed(decoder.decode(chunk)):
                handle_line(line, self.collector, self.config.ignore_paths, self.config.mirror_hosts)

    async def _terminate(self) -> None:
        proc = self._proc
        self.restart()
        if proc is not None:
            await proc.wait()


def start_tailing(
    config: LogParserConfig,
    collector: StatsCollector,
    *,
    command: CommandFactory = tail_command,
) -> Optional[TailProcess]:
    """
    Starts tailing the configured access log on the running event loop.

    Returns None (log parsing disabled) when no log file is configured or it
    doesn't exist. Must be called from within a running loop.
    """
    path = config.log_path
    if not path or not os.path.exists(path):
        logger.info("Access log %r not found, log parsing disabled", path)
        return None

    tailer = TailProcess(config, collector, command=command)
    tailer.task = asyncio.create_task(tailer.run())
    return tailer


def is_enabled(tailer: Optional[TailProcess]) -> bool:
    return tailer is not None and tailer.enabled
