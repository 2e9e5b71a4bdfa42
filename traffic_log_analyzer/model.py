"""
Pydantic models for Combined Log Format records and traffic queries.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, ValidationError, model_validator

from traffic_log_analyzer.errors import InvalidQueryError

# Largest response size that still fits the signed 64-bit accumulators.
MAX_BYTES = 2**63 - 1


class LogRecord(BaseModel):
    """
    Represents a single accepted line of an access log.

    Format:
    client_address ident auth_user [timestamp] "method path protocol" status_code bytes_sent "referer" "user_agent"
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "client_address": "127.0.0.1",
                "ident": "-",
                "auth_user": "-",
                "timestamp": "2023-10-10T13:55:36-07:00",
                "method": "GET",
                "path": "/index.html",
                "protocol": "HTTP/1.1",
                "status_code": 200,
                "bytes_sent": 1024,
                "referer": "-",
                "user_agent": "Mozilla/5.0",
                "raw_line": '127.0.0.1 - - [10/Oct/2023:13:55:36 -0700] "GET /index.html HTTP/1.1" 200 1024 "-" "Mozilla/5.0"',
            }
        },
    )

    client_address: str = Field(
        description="IP address or hostname of the client making the request"
    )

    ident: str = Field(
        default="-",
        description="RFC 1413 identity of the client ('-' if not available)"
    )

    auth_user: str = Field(
        default="-",
        description="Authenticated username ('-' if not authenticated)"
    )

    timestamp: AwareDatetime = Field(
        description="Time the request was served, with the UTC offset found in the log"
    )

    method: str = Field(
        description="HTTP method token of the request line"
    )

    path: str = Field(
        description="Request target, possibly containing spaces"
    )

    protocol: str = Field(
        default="",
        description="Protocol token of the request line (e.g. 'HTTP/1.1'), empty if missing"
    )

    status_code: int = Field(
        ge=100,
        le=999,
        description="Three digit status code returned by the server"
    )

    bytes_sent: int = Field(
        ge=0,
        le=MAX_BYTES,
        description="Size of the response body in bytes ('-' in the log is 0)"
    )

    referer: str = Field(
        default="-",
        description="HTTP Referer header, may be empty or '-'"
    )

    user_agent: str = Field(
        default="-",
        description="User agent string identifying the client software"
    )

    raw_line: str = Field(
        default="",
        description="The trimmed source line this record was parsed from"
    )


class RejectReason(str, Enum):
    """Why a log line could not be turned into a record."""

    STRUCTURE = "structure"
    REQUEST = "request"
    TIMESTAMP = "timestamp"
    STATUS = "status"
    BYTES = "bytes"


class Rejection(BaseModel):
    """A line of the log file that was skipped because it could not be parsed."""

    model_config = ConfigDict(frozen=True)

    line_number: int = Field(ge=1, description="1-based line number in the source file")
    text: str = Field(description="The line as it appeared in the file")
    reason: RejectReason = Field(
        default=RejectReason.STRUCTURE,
        description="Which part of the line failed to parse"
    )

    def __str__(self) -> str:
        return f"Unparsed line {self.line_number}: {self.text}"


class DateRange(BaseModel):
    """Inclusive time window. A missing bound leaves that side open."""

    model_config = ConfigDict(frozen=True)

    start: Optional[AwareDatetime] = None
    end: Optional[AwareDatetime] = None

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("start of the date range is after its end")
        return self

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


class FilterSpec(BaseModel):
    """
    Criteria selecting a subset of records.

    Every criterion left as None (or False for ``exclude_bots``) imposes no
    constraint. Instances are frozen; derive a new one with ``model_copy``.
    """

    model_config = ConfigDict(frozen=True)

    date_range: Optional[DateRange] = Field(
        default=None,
        description="Only keep records whose timestamp falls inside this window"
    )

    method: Optional[str] = Field(
        default=None,
        description="Exact HTTP method, compared case-insensitively"
    )

    status_family: Optional[int] = Field(
        default=None,
        ge=1,
        le=9,
        description="First digit of the status code (4 selects 4xx)"
    )

    path_contains: Optional[str] = Field(
        default=None,
        description="Substring the path must contain, compared case-insensitively"
    )

    exclude_bots: bool = Field(
        default=False,
        description="Drop records whose user agent looks like a crawler"
    )


class AnalysisSession(BaseModel):
    """
    Query state that an interactive front end keeps between requests.

    The session never changes in place: each setter returns a new session.
    """

    model_config = ConfigDict(frozen=True)

    date_range: Optional[DateRange] = None
    exclude_bots: bool = False

    def with_date_range(self, date_range: Optional[DateRange]) -> "AnalysisSession":
        return self.model_copy(update={"date_range": date_range})

    def without_date_range(self) -> "AnalysisSession":
        return self.with_date_range(None)

    def toggle_bots(self) -> "AnalysisSession":
        return self.model_copy(update={"exclude_bots": not self.exclude_bots})

    def filter_spec(
        self,
        method: Optional[str] = None,
        status_family: Optional[int] = None,
        path_contains: Optional[str] = None,
    ) -> FilterSpec:
        """Combine the session state with per-query criteria into a FilterSpec."""
        try:
            return FilterSpec(
                date_range=self.date_range,
                method=method,
                status_family=status_family,
                path_contains=path_contains,
                exclude_bots=self.exclude_bots,
            )
        except ValidationError as exc:
            raise InvalidQueryError(f"Invalid filter: {exc}") from exc


class TrafficSummary(BaseModel):
    """Headline numbers for a set of records."""

    model_config = ConfigDict(frozen=True)

    total_hits: int = Field(description="Number of records")
    unique_visitors: int = Field(description="Number of distinct client addresses")
    total_bytes: int = Field(description="Sum of response sizes in bytes")
    status_families: Dict[int, int] = Field(
        default_factory=dict,
        description="Hits per status family (200, 300, ...), ascending"
    )
    peak_hour: Optional[int] = Field(
        default=None,
        description="Local hour of day with the most hits, None without records"
    )
    peak_hour_hits: int = Field(default=0, description="Hits during the peak hour")
