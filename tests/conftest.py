from datetime import datetime, timedelta, timezone

import pytest

from traffic_log_analyzer.model import LogRecord


PDT = timezone(timedelta(hours=-7))


@pytest.fixture
def make_line():
    """Build a Combined Log Format line, overriding any field by keyword."""

    def _make_line(
        client="127.0.0.1",
        ident="-",
        user="-",
        time="10/Oct/2023:13:55:36 -0700",
        request="GET /index.html HTTP/1.1",
        status="200",
        size="1024",
        referer="-",
        agent="Mozilla/5.0",
    ):
        return f'{client} {ident} {user} [{time}] "{request}" {status} {size} "{referer}" "{agent}"'

    return _make_line


@pytest.fixture
def make_record():
    """Build a LogRecord directly, overriding any field by keyword."""

    def _make_record(**overrides):
        fields = {
            "client_address": "127.0.0.1",
            "timestamp": datetime(2023, 10, 10, 13, 55, 36, tzinfo=PDT),
            "method": "GET",
            "path": "/index.html",
            "protocol": "HTTP/1.1",
            "status_code": 200,
            "bytes_sent": 1024,
            "referer": "-",
            "user_agent": "Mozilla/5.0",
        }
        fields.update(overrides)
        return LogRecord(**fields)

    return _make_record
