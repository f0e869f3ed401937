from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from tailstats.filters import DEFAULT_MIRROR_HOSTS


@dataclass(frozen=True)
class LogParserConfig:
    log_path: Optional[str] = None
    scrollback: int = 0
    ignore_paths: FrozenSet[str] = frozenset()
    mirror_hosts: FrozenSet[str] = field(default_factory=lambda: DEFAULT_MIRROR_HOSTS)


def parse_list(spec: str) -> FrozenSet[str]:
    """
    Supports:
      "" -> frozenset()
      "/a, /b" -> {"/a", "/b"}
    """
    return frozenset(p.strip() for p in spec.split(",") if p.strip())


def _int_or_zero(raw: str) -> int:
    try:
        return max(int(raw), 0)
    except ValueError:
        return 0


def load_config(env: Optional[Mapping[str, str]] = None) -> LogParserConfig:
    env = os.environ if env is None else env

    mirrors = parse_list(env.get("TAILSTATS_MIRROR_HOSTS", ""))
    return LogParserConfig(
        log_path=env.get("TAILSTATS_LOG_FILE", "").strip() or None,
        scrollback=_int_or_zero(env.get("TAILSTATS_SCROLLBACK", "0")),
        ignore_paths=parse_list(env.get("TAILSTATS_IGNORE_PATHS", "")),
        mirror_hosts=frozenset(h.lower() for h in mirrors) or DEFAULT_MIRROR_HOSTS,
    )
