from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

# ----------------------------
# Common / Combined Log Format
# ----------------------------
_CLF_RE = re.compile(
    r"""
    (?P<ip>\S+)[ ]
    \S+[ ]                                   # identd
    \S+[ ]                                   # user
    \[(?P<date>.+?)\][ ]
    "(?P<method>\S+)[ ]
    (?P<path>\S+)[ ]
    \S+"[ ]                                  # protocol
    (?P<status>\S+)[ ]
    (?P<bytes>\S+)
    (?:[ ]"(?P<referrer>[^"]*)"[ ]"(?P<user_agent>[^"]*)")?
    """,
    re.VERBOSE,
)

# Colon between the date and the time in a CLF datestamp.
_DATE_COLON_RE = re.compile(r"(/\d+):(\d+)")

_MONTH_RE = re.compile(r"/([A-Za-z]{3})/")
_MONTHS = {
    name: i + 1
    for i, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")
    )
}

_DATE_FORMATS = ("%d/%m/%Y %H:%M:%S %z", "%d/%m/%Y %H:%M:%S")

_SIZE_RE = re.compile(r"\s*(\d+)")


@dataclass(frozen=True)
class ParsedRequest:
    ip: str
    timestamp_raw: str
    method: str
    path: str
    status: str
    bytes: str
    referrer: Optional[str] = None
    user_agent: Optional[str] = None


def parse_line(line: str) -> Optional[ParsedRequest]:
    """
    Parses one access log line.

    Supports:
    1) Common Log Format:
       1.2.3.4 - - [10/Oct/2020:13:55:36 -0700] "GET /a HTTP/1.1" 200 512
    2) Combined Log Format (Common plus quoted referrer and user agent):
       1.2.3.4 - - [10/Oct/2020:13:55:36 -0700] "GET /a HTTP/1.1" 200 512 "https://x/" "UA"

    Anything else returns None.
    """
    m = _CLF_RE.fullmatch(line)
    if not m:
        return None

    return ParsedRequest(
        ip=m.group("ip"),
        timestamp_raw=m.group("date"),
        method=m.group("method"),
        path=m.group("path"),
        status=m.group("status"),
        bytes=m.group("bytes"),
        referrer=m.group("referrer"),
        user_agent=m.group("user_agent"),
    )


def parse_timestamp(raw: str) -> int:
    """Epoch milliseconds for a CLF datestamp, or 0 when it can't be parsed."""
    value = _DATE_COLON_RE.sub(r"\1 \2", raw, count=1)
    # Month names are always English in access logs, whatever the locale.
    value = _MONTH_RE.sub(lambda m: "/%02d/" % _MONTHS.get(m.group(1).lower(), 0), value, count=1)
    for fmt in _DATE_FORMATS:
        try:
            dt = datetime.strptime(value, fmt)
        except ValueError:
            continue
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return 0


def parse_size(raw: Optional[str]) -> int:
    if not raw:
        return 0
    m = _SIZE_RE.match(raw)
    if not m:
        return 0
    try:
        return int(m.group(1))
    except ValueError:
        # more digits than int() will convert
        return 0
