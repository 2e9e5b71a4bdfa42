"""
Aggregations over parsed log records.

Every function takes a sequence of LogRecord models and returns a new value;
none of them keep state or modify their input. Grouping and counting run on a
Polars DataFrame built from the records.
"""

import logging
from datetime import tzinfo
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import polars as pl

from traffic_log_analyzer.errors import ExportError
from traffic_log_analyzer.model import FilterSpec, LogRecord, TrafficSummary

logger = logging.getLogger(__name__)


# Case-folded user agent substrings that mark a crawler.
# google+snippet is checked separately in is_bot().
BOT_SIGNATURES = (
    "bot",
    "crawler",
    "spider",
    "slurp",
    "bingpreview",
    "facebookexternalhit",
    "ahrefs",
    "semrush",
    "yandex",
    "duckduckbot",
)

CSV_COLUMNS = {
    "ip": "client_address",
    "ident": "ident",
    "user": "auth_user",
    "time": "time",
    "method": "method",
    "path": "path",
    "protocol": "protocol",
    "status": "status_code",
    "bytes": "bytes_sent",
    "referer": "referer",
    "userAgent": "user_agent",
}

# Characters that force a CSV field into double quotes.
CSV_SPECIAL_CHARS = r'[,"\n]'

FRAME_SCHEMA = {
    "client_address": pl.Utf8,
    "ident": pl.Utf8,
    "auth_user": pl.Utf8,
    "time": pl.Utf8,
    "method": pl.Utf8,
    "path": pl.Utf8,
    "protocol": pl.Utf8,
    "status_code": pl.Int64,
    "bytes_sent": pl.Int64,
    "referer": pl.Utf8,
    "user_agent": pl.Utf8,
    "local_date": pl.Utf8,
    "local_hour": pl.Int64,
}


def is_bot(user_agent: Optional[str]) -> bool:
    """Heuristic crawler check on a user agent string."""
    if not user_agent:
        return False
    agent = user_agent.casefold()
    if any(signature in agent for signature in BOT_SIGNATURES):
        return True
    return "google" in agent and "snippet" in agent


def matches(record: LogRecord, spec: FilterSpec) -> bool:
    """True if the record satisfies every criterion set on the spec."""
    if spec.date_range is not None and not spec.date_range.contains(record.timestamp):
        return False
    if spec.method is not None and spec.method.casefold() != record.method.casefold():
        return False
    if spec.status_family is not None and record.status_code // 100 != spec.status_family:
        return False
    if spec.path_contains is not None and spec.path_contains.casefold() not in record.path.casefold():
        return False
    if spec.exclude_bots and is_bot(record.user_agent):
        return False
    return True


def filter_records(records: Sequence[LogRecord], spec: FilterSpec) -> List[LogRecord]:
    """Records matching the spec, in their original order."""
    return [record for record in records if matches(record, spec)]


def records_to_frame(records: Sequence[LogRecord], tz: Optional[tzinfo] = None) -> pl.DataFrame:
    """
    Build a DataFrame with one row per record.

    Besides the record fields it carries ``time`` (ISO 8601 with offset) and
    the calendar date and hour of each record in ``tz``, the host local zone
    when tz is None.
    """
    columns: Dict[str, list] = {name: [] for name in FRAME_SCHEMA}
    for record in records:
        local = record.timestamp.astimezone(tz)
        columns["client_address"].append(record.client_address)
        columns["ident"].append(record.ident)
        columns["auth_user"].append(record.auth_user)
        columns["time"].append(record.timestamp.isoformat())
        columns["method"].append(record.method)
        columns["path"].append(record.path)
        columns["protocol"].append(record.protocol)
        columns["status_code"].append(record.status_code)
        columns["bytes_sent"].append(record.bytes_sent)
        columns["referer"].append(record.referer)
        columns["user_agent"].append(record.user_agent)
        columns["local_date"].append(local.date().isoformat())
        columns["local_hour"].append(local.hour)
    return pl.DataFrame(columns, schema=FRAME_SCHEMA)


def total_hits(records: Sequence[LogRecord]) -> int:
    return len(records)


def _unique_visitors(frame: pl.DataFrame) -> int:
    if frame.is_empty():
        return 0
    return frame["client_address"].n_unique()


def _total_bytes(frame: pl.DataFrame) -> int:
    # Int64 column, Python int result.
    return int(frame["bytes_sent"].sum() or 0)


def unique_visitors(records: Sequence[LogRecord]) -> int:
    return _unique_visitors(records_to_frame(records))


def total_bytes(records: Sequence[LogRecord]) -> int:
    return _total_bytes(records_to_frame(records))


def _count_by(frame: pl.DataFrame, column: str) -> pl.DataFrame:
    return frame.group_by(column, maintain_order=True).agg(pl.len().alias("count"))


def _top(frame: pl.DataFrame, column: str, k: int) -> Dict[str, int]:
    """
    Most frequent values of a column, highest count first.

    Equal counts keep the order in which the values first appear.
    """
    if k <= 0:
        return {}
    ranked = (
        _count_by(frame, column)
        .sort("count", descending=True, maintain_order=True)
        .head(k)
    )
    return dict(ranked.iter_rows())


def top_paths(records: Sequence[LogRecord], k: int) -> Dict[str, int]:
    return _top(records_to_frame(records), "path", k)


def top_referers(records: Sequence[LogRecord], k: int) -> Dict[str, int]:
    """Most frequent referers; empty and '-' referers are not counted."""
    frame = records_to_frame(records).filter(
        (pl.col("referer").str.strip_chars() != "") & (pl.col("referer") != "-")
    )
    return _top(frame, "referer", k)


def top_user_agents(records: Sequence[LogRecord], k: int) -> Dict[str, int]:
    return _top(records_to_frame(records), "user_agent", k)


def _histogram(frame: pl.DataFrame, column: str) -> Dict:
    return dict(_count_by(frame, column).sort(column).iter_rows())


def _status_families(frame: pl.DataFrame) -> Dict[int, int]:
    frame = frame.with_columns(
        ((pl.col("status_code") // 100) * 100).alias("status_family")
    )
    return _histogram(frame, "status_family")


def _hits_per_hour(frame: pl.DataFrame) -> Dict[int, int]:
    hours = {hour: 0 for hour in range(24)}
    hours.update(_histogram(frame, "local_hour"))
    return hours


def status_buckets(records: Sequence[LogRecord]) -> Dict[int, int]:
    """Hits per exact status code, ascending by code."""
    return _histogram(records_to_frame(records), "status_code")


def status_families(records: Sequence[LogRecord]) -> Dict[int, int]:
    """Hits per status family (404 counts towards 400), ascending."""
    return _status_families(records_to_frame(records))


def hits_per_day(records: Sequence[LogRecord], tz: Optional[tzinfo] = None) -> Dict[str, int]:
    """Hits per calendar date (YYYY-MM-DD) in tz, the host local zone by default."""
    return _histogram(records_to_frame(records, tz), "local_date")


def hits_per_hour(records: Sequence[LogRecord], tz: Optional[tzinfo] = None) -> Dict[int, int]:
    """Hits per hour of day in tz. All 24 hours are present, idle ones with 0."""
    return _hits_per_hour(records_to_frame(records, tz))


def summarize(records: Sequence[LogRecord], tz: Optional[tzinfo] = None) -> TrafficSummary:
    """Headline figures for the records, peak hour taken in tz."""
    frame = records_to_frame(records, tz)
    hourly = _hits_per_hour(frame)
    peak_hour = None
    peak_hits = 0
    if records:
        # max() keeps the earliest hour among equal counts
        peak_hour = max(hourly, key=lambda hour: hourly[hour])
        peak_hits = hourly[peak_hour]

    return TrafficSummary(
        total_hits=total_hits(records),
        unique_visitors=_unique_visitors(frame),
        total_bytes=_total_bytes(frame),
        status_families=_status_families(frame),
        peak_hour=peak_hour,
        peak_hour_hits=peak_hits,
    )


def _csv_field(column: str) -> pl.Expr:
    """Quote a text column where it holds a comma, a double quote or a newline."""
    value = pl.col(column)
    return (
        pl.when(value.str.contains(CSV_SPECIAL_CHARS))
        .then(pl.concat_str([pl.lit('"'), value.str.replace_all('"', '""', literal=True), pl.lit('"')]))
        .otherwise(value)
    )


def render_csv(records: Sequence[LogRecord]) -> str:
    """
    Render records as CSV text with the export header.

    Fields containing a comma, a double quote or a newline are quoted, with
    inner quotes doubled. Every other field, empty ones included, is written
    as is.
    """
    frame = records_to_frame(records)
    fields = []
    for header, source in CSV_COLUMNS.items():
        if FRAME_SCHEMA[source] == pl.Utf8:
            fields.append(_csv_field(source).alias(header))
        else:
            fields.append(pl.col(source).alias(header))
    return frame.select(fields).write_csv(quote_style="never")


def export_csv(records: Sequence[LogRecord], destination: Union[str, Path]) -> int:
    """
    Write records to a CSV file, replacing any existing file.

    Returns:
        Number of data rows written

    Raises:
        ExportError: if the destination cannot be written
    """
    destination = Path(destination)
    content = render_csv(records)
    try:
        with open(destination, "w", encoding="utf-8", newline="") as f:
            f.write(content)
    except OSError as exc:
        raise ExportError(destination, exc) from exc

    logger.info("Exported %d rows to %s", len(records), destination)
    return len(records)
