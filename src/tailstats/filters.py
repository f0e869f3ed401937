from __future__ import annotations

import ipaddress
import re
from typing import Callable, Collection, List, Optional, Tuple

from tailstats.clf import ParsedRequest, parse_size, parse_timestamp
from tailstats.events import AcceptedEvent

DEFAULT_MIRROR_HOSTS = frozenset({"rawgit.com", "rawgithub.com"})

_LOOPBACK_HOSTS = frozenset({"localhost"})
_LOOPBACK_IPS = (ipaddress.ip_address("127.0.0.1"), ipaddress.ip_address("::1"))

_HTTP_URL_RE = re.compile(
    r"""
    (?P<scheme>https?)://
    (?:[^@/?#]*@)?                  # userinfo
    (?P<host>\[[^\]]*\]|[^/?#:]*)
    (?::\d*)?                       # port
    (?P<path>[^?#]*)
    """,
    re.VERBOSE | re.IGNORECASE,
)


# ----------------------------
# Helpers
# ----------------------------
def strip_query(url: Optional[str]) -> str:
    if not url:
        return ""
    return url.split("?", 1)[0]


def is_external_path(path: str) -> bool:
    """
    True for paths addressing a hosted file (/user/repo/ref/file...), i.e. at
    least four non-empty segments. Shallower paths are pages and assets served
    by this host.
    """
    if not path.startswith("/"):
        return False
    return len([seg for seg in path[1:].split("/") if seg]) >= 4


def _split_http_url(url: str) -> Optional[Tuple[str, str]]:
    """(host, path) of an http(s) URL, or None for anything else."""
    m = _HTTP_URL_RE.match(url)
    if not m:
        return None
    host = m.group("host").lower()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, m.group("path")


def is_loopback_url(url: str) -> bool:
    parts = _split_http_url(url)
    if not parts:
        return False
    host = parts[0]
    if host in _LOOPBACK_HOSTS:
        return True

    # [::1/128] shows up in the wild
    if host.endswith("/128"):
        host = host[: -len("/128")]
    try:
        return ipaddress.ip_address(host) in _LOOPBACK_IPS
    except ValueError:
        return False


def is_unproxied_mirror_url(url: str, mirror_hosts: Collection[str]) -> bool:
    parts = _split_http_url(url)
    if not parts or parts[0] not in mirror_hosts:
        return False
    return not is_external_path(parts[1])


# ----------------------------
# Rules
# ----------------------------
# Each rule returns True when the request should be dropped. Order matters,
# the first rule that fires wins.
Rule = Callable[[ParsedRequest, Collection[str], Collection[str]], bool]


def _blocked_status(req: ParsedRequest, ignore_paths, mirror_hosts) -> bool:
    # 403s are abusers already blocked upstream.
    return req.status == "403"


def _local_or_ignored_path(req: ParsedRequest, ignore_paths, mirror_hosts) -> bool:
    path = strip_query(req.path)
    return path in ignore_paths or not is_external_path(path)


def _loopback_referrer(req: ParsedRequest, ignore_paths, mirror_hosts) -> bool:
    return is_loopback_url(strip_query(req.referrer))


def _unproxied_mirror_referrer(req: ParsedRequest, ignore_paths, mirror_hosts) -> bool:
    return is_unproxied_mirror_url(strip_query(req.referrer), mirror_hosts)


RULES: List[Tuple[str, Rule]] = [
    ("blocked_status", _blocked_status),
    ("path", _local_or_ignored_path),
    ("loopback_referrer", _loopback_referrer),
    ("unproxied_mirror_referrer", _unproxied_mirror_referrer),
]


def rejected_by(
    req: ParsedRequest,
    ignore_paths: Collection[str] = frozenset(),
    mirror_hosts: Collection[str] = DEFAULT_MIRROR_HOSTS,
) -> Optional[str]:
    """Name of the first rule dropping the request, or None if it passes."""
    for name, rule in RULES:
        if rule(req, ignore_paths, mirror_hosts):
            return name
    return None


def accept(
    req: ParsedRequest,
    ignore_paths: Collection[str] = frozenset(),
    mirror_hosts: Collection[str] = DEFAULT_MIRROR_HOSTS,
) -> Optional[AcceptedEvent]:
    if rejected_by(req, ignore_paths, mirror_hosts) is not None:
        return None

    return AcceptedEvent(
        path=strip_query(req.path),
        referrer=strip_query(req.referrer),
        size=parse_size(req.bytes),
        timestamp=parse_timestamp(req.timestamp_raw),
    )
