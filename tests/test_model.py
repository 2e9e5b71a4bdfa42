from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from traffic_log_analyzer.errors import InvalidQueryError
from traffic_log_analyzer.model import AnalysisSession, DateRange, FilterSpec, LogRecord, Rejection


UTC = timezone.utc


def test_record_requires_aware_timestamp(make_record):
    with pytest.raises(ValidationError):
        make_record(timestamp=datetime(2023, 10, 10, 13, 55, 36))


@pytest.mark.parametrize("status_code", [99, 1000])
def test_record_status_must_have_three_digits(make_record, status_code):
    with pytest.raises(ValidationError):
        make_record(status_code=status_code)


def test_record_bytes_must_not_be_negative(make_record):
    with pytest.raises(ValidationError):
        make_record(bytes_sent=-1)


def test_record_copy_leaves_original_alone(make_record):
    record = make_record()
    changed = record.model_copy(update={"path": "/other"})

    assert record.path == "/index.html"
    assert changed.path == "/other"
    assert isinstance(changed, LogRecord)


def test_rejection_line_number_is_one_based():
    with pytest.raises(ValidationError):
        Rejection(line_number=0, text="x")


def test_date_range_contains_bounds():
    start = datetime(2023, 10, 10, tzinfo=UTC)
    end = datetime(2023, 10, 11, tzinfo=UTC)
    date_range = DateRange(start=start, end=end)

    assert date_range.contains(start)
    assert date_range.contains(end)
    assert date_range.contains(start.astimezone(timezone(timedelta(hours=-7))))
    assert not date_range.contains(start - timedelta(seconds=1))
    assert not date_range.contains(end + timedelta(seconds=1))


def test_open_date_range_contains_everything():
    assert DateRange().contains(datetime(1970, 1, 1, tzinfo=UTC))
    assert DateRange(end=datetime(2000, 1, 1, tzinfo=UTC)).contains(datetime(1999, 1, 1, tzinfo=UTC))


def test_date_range_rejects_reversed_bounds():
    with pytest.raises(ValidationError):
        DateRange(start=datetime(2023, 10, 11, tzinfo=UTC), end=datetime(2023, 10, 10, tzinfo=UTC))


def test_filter_spec_is_frozen():
    spec = FilterSpec(method="GET")

    with pytest.raises(ValidationError):
        spec.method = "POST"


def test_filter_spec_rejects_bad_status_family():
    with pytest.raises(ValidationError):
        FilterSpec(status_family=0)


def test_session_changes_return_new_sessions():
    session = AnalysisSession()
    date_range = DateRange(start=datetime(2023, 10, 10, tzinfo=UTC))

    toggled = session.toggle_bots()
    ranged = toggled.with_date_range(date_range)
    cleared = ranged.without_date_range()

    assert session.exclude_bots is False
    assert session.date_range is None
    assert toggled.exclude_bots is True
    assert ranged.date_range == date_range
    assert ranged.exclude_bots is True
    assert cleared.date_range is None
    assert toggled.toggle_bots().exclude_bots is False


def test_session_builds_filter_spec():
    date_range = DateRange(end=datetime(2023, 10, 10, tzinfo=UTC))
    session = AnalysisSession(date_range=date_range, exclude_bots=True)

    spec = session.filter_spec(method="GET", status_family=4, path_contains="/api")

    assert spec == FilterSpec(
        date_range=date_range,
        method="GET",
        status_family=4,
        path_contains="/api",
        exclude_bots=True,
    )


def test_session_rejects_invalid_query():
    with pytest.raises(InvalidQueryError):
        AnalysisSession().filter_spec(status_family=12)
