"""
Parser for Apache Combined Log Format files.
Converts log lines into LogRecord models and collects the lines it rejects.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, NamedTuple, Optional, Tuple, Union

from pydantic import ValidationError

from traffic_log_analyzer.errors import IngestError, InvalidQueryError
from traffic_log_analyzer.model import MAX_BYTES, DateRange, LogRecord, Rejection, RejectReason

logger = logging.getLogger(__name__)


def _token(name: str) -> str:
    return rf"(?P<{name}>\S+)"


def _bracketed(name: str) -> str:
    return rf"\[(?P<{name}>[^\]]+)\]"


def _quoted(name: str) -> str:
    return rf'"(?P<{name}>[^"]*)"'


# Combined Log Format, fields separated by single spaces:
# client ident authuser [timestamp] "request" status bytes "referer" "user_agent"
# Request, timestamp, status and bytes are captured loosely here and checked by
# their own patterns below, so each kind of failure has its own RejectReason.
LINE_GRAMMAR = (
    _token("client_address"),
    _token("ident"),
    _token("auth_user"),
    _bracketed("timestamp"),
    _quoted("request"),
    _token("status_code"),
    _token("bytes_sent"),
    _quoted("referer"),
    _quoted("user_agent"),
)

LINE_PATTERN = re.compile("^" + " ".join(LINE_GRAMMAR) + "$")

# "METHOD PATH PROTOCOL": split on the first and the last space, so the path may
# contain spaces and a request without protocol keeps an empty one.
REQUEST_PATTERN = re.compile(r"^(?P<method>\S+) (?P<target>.*)$")

STATUS_PATTERN = re.compile(r"^[1-9][0-9]{2}$")

# 19 digits covers every value up to MAX_BYTES.
BYTES_PATTERN = re.compile(r"^(?:-|[0-9]{1,19})$")

# Example: "10/Oct/2023:13:55:36 -0700"
TIMESTAMP_PATTERN = re.compile(
    r"^(?P<day>\d{2})/(?P<month>[A-Za-z]{3})/(?P<year>\d{4})"
    r":(?P<hour>\d{2}):(?P<minute>\d{2}):(?P<second>\d{2})"
    r" (?P<sign>[+-])(?P<offset_hours>\d{2})(?P<offset_minutes>\d{2})$"
)

# Month abbreviations are matched against this table, never the host locale.
MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
MONTH_NUMBERS = {name: number for number, name in enumerate(MONTHS, start=1)}


class IngestResult(NamedTuple):
    """Records and rejected lines of one log file, both in file order."""

    records: List[LogRecord]
    rejections: List[Rejection]


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse Apache log timestamp format.

    Example: "10/Oct/2023:13:55:36 -0700"

    Raises ValueError for anything that is not exactly this shape or names an
    impossible date, time or offset.
    """
    match = TIMESTAMP_PATTERN.match(timestamp_str)
    if not match:
        raise ValueError(f"Malformed timestamp: {timestamp_str!r}")

    groups = match.groupdict()
    month = MONTH_NUMBERS.get(groups["month"])
    if month is None:
        raise ValueError(f"Unknown month abbreviation: {groups['month']!r}")

    offset_minutes = int(groups["offset_minutes"])
    if offset_minutes >= 60:
        raise ValueError(f"Malformed UTC offset in {timestamp_str!r}")
    offset = timedelta(hours=int(groups["offset_hours"]), minutes=offset_minutes)
    if groups["sign"] == "-":
        offset = -offset

    return datetime(
        int(groups["year"]),
        month,
        int(groups["day"]),
        int(groups["hour"]),
        int(groups["minute"]),
        int(groups["second"]),
        tzinfo=timezone(offset),
    )


def format_timestamp(moment: datetime) -> str:
    """Render an aware datetime back into the log's timestamp format."""
    offset = moment.utcoffset()
    if offset is None:
        raise ValueError("Cannot format a naive datetime as a log timestamp")

    total_minutes = int(offset.total_seconds()) // 60
    sign = "-" if total_minutes < 0 else "+"
    hours, minutes = divmod(abs(total_minutes), 60)
    return (
        f"{moment.day:02d}/{MONTHS[moment.month - 1]}/{moment.year:04d}"
        f":{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
        f" {sign}{hours:02d}{minutes:02d}"
    )


def split_request(request_line: str) -> Optional[Tuple[str, str, str]]:
    """
    Split a request line into (method, path, protocol).

    Returns None when the line has no space after the method.
    """
    match = REQUEST_PATTERN.match(request_line)
    if not match:
        return None

    path, separator, protocol = match.group("target").rpartition(" ")
    if not separator:
        path, protocol = protocol, ""
    return match.group("method"), path, protocol


def parse_log_line(line: str) -> Union[LogRecord, RejectReason, None]:
    """
    Parse a single Apache log line into a LogRecord.

    Returns None for a blank line and a RejectReason if the line does not
    follow the Combined Log Format. Never raises for bad input.
    """
    line = line.strip()
    if not line:
        return None

    match = LINE_PATTERN.match(line)
    if not match:
        return RejectReason.STRUCTURE

    groups = match.groupdict()

    request = split_request(groups["request"])
    if request is None:
        return RejectReason.REQUEST
    method, path, protocol = request

    try:
        timestamp = parse_timestamp(groups["timestamp"])
    except ValueError:
        return RejectReason.TIMESTAMP

    if not STATUS_PATTERN.match(groups["status_code"]):
        return RejectReason.STATUS

    if not BYTES_PATTERN.match(groups["bytes_sent"]):
        return RejectReason.BYTES
    bytes_sent = 0 if groups["bytes_sent"] == "-" else int(groups["bytes_sent"])
    if bytes_sent > MAX_BYTES:
        return RejectReason.BYTES

    try:
        return LogRecord(
            client_address=groups["client_address"],
            ident=groups["ident"],
            auth_user=groups["auth_user"],
            timestamp=timestamp,
            method=method,
            path=path,
            protocol=protocol,
            status_code=int(groups["status_code"]),
            bytes_sent=bytes_sent,
            referer=groups["referer"],
            user_agent=groups["user_agent"],
            raw_line=line,
        )
    except ValidationError:
        return RejectReason.STRUCTURE


def ingest_log_file(filepath: Union[str, Path]) -> IngestResult:
    """
    Parse an Apache Combined Log Format file.

    Args:
        filepath: Path to the Apache log file

    Returns:
        IngestResult with the accepted records and the rejected lines

    Raises:
        IngestError: if the file cannot be opened or read
    """
    filepath = Path(filepath)

    records: List[LogRecord] = []
    rejections: List[Rejection] = []

    try:
        with open(filepath, "r", encoding="utf-8", errors="replace") as f:
            for line_num, line in enumerate(f, start=1):
                outcome = parse_log_line(line)
                if outcome is None:
                    continue
                if isinstance(outcome, LogRecord):
                    records.append(outcome)
                    continue

                text = line.rstrip("\r\n")
                logger.debug("Could not parse line %d (%s): %s", line_num, outcome.value, text[:100])
                rejections.append(Rejection(line_number=line_num, text=text, reason=outcome))
    except OSError as exc:
        raise IngestError(filepath, exc) from exc

    logger.info("Parsed %d entries from %s, skipped %d lines", len(records), filepath, len(rejections))
    return IngestResult(records, rejections)


def parse_bound(text: Optional[str]) -> Optional[datetime]:
    """
    Parse one date-range bound given in the log timestamp format.

    Blank input means the bound is open and gives None.
    """
    if text is None or not text.strip():
        return None
    try:
        return parse_timestamp(text.strip())
    except ValueError as exc:
        raise InvalidQueryError(
            f"Invalid date {text!r}, expected dd/MMM/yyyy:HH:mm:ss +hhmm"
        ) from exc


def parse_date_range(start: Optional[str], end: Optional[str]) -> Optional[DateRange]:
    """Build a DateRange from two bounds, or None when both are open."""
    start_moment = parse_bound(start)
    end_moment = parse_bound(end)
    if start_moment is None and end_moment is None:
        return None
    try:
        return DateRange(start=start_moment, end=end_moment)
    except ValidationError as exc:
        raise InvalidQueryError("Invalid date range: start is after end") from exc
