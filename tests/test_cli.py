import csv

import pytest
from click.testing import CliRunner

from analyze_traffic import cli


LINES = [
    '10.0.0.1 - - [10/Oct/2023:13:55:36 +0000] "GET /index.html HTTP/1.1" 200 1024 "-" "Mozilla/5.0"',
    '10.0.0.2 - - [10/Oct/2023:14:01:00 +0000] "GET /index.html HTTP/1.1" 200 2048 "https://example.com/" "Mozilla/5.0"',
    '10.0.0.1 - - [10/Oct/2023:14:05:00 +0000] "POST /login HTTP/1.1" 302 - "https://example.com/" "Googlebot/2.1"',
    '10.0.0.3 - - [11/Oct/2023:09:00:00 +0000] "GET /missing HTTP/1.1" 404 10 "-" "curl/8.0"',
    "this is not a log line",
    "",
]


@pytest.fixture
def log_file(tmp_path):
    path = tmp_path / "access.log"
    path.write_text("\n".join(LINES) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def runner():
    return CliRunner()


def test_summary(runner, log_file):
    result = runner.invoke(cli, ["summary", str(log_file)])

    assert result.exit_code == 0, result.output
    assert "Parsed 4 entries. Skipped 1 lines." in result.output
    assert "Total hits         : 4" in result.output
    assert "Unique IPs         : 3" in result.output
    assert "Bandwidth (bytes)  : 3,082" in result.output
    assert "4xx : 1" in result.output


def test_summary_excluding_bots(runner, log_file):
    result = runner.invoke(cli, ["summary", str(log_file), "--exclude-bots"])

    assert result.exit_code == 0, result.output
    assert "Total hits         : 3" in result.output


def test_exclude_bots_from_environment(runner, log_file):
    result = runner.invoke(
        cli,
        ["summary", str(log_file)],
        env={"TRAFFIC_LOG_SUMMARY_EXCLUDE_BOTS": "1"},
        auto_envvar_prefix="TRAFFIC_LOG",
    )

    assert result.exit_code == 0, result.output
    assert "Total hits         : 3" in result.output


def test_top_paths(runner, log_file):
    result = runner.invoke(cli, ["top-paths", str(log_file), "-n", "2"])

    assert result.exit_code == 0, result.output
    assert " 1)       2  /index.html" in result.output
    assert " 2)       1  /login" in result.output
    assert "/missing" not in result.output


def test_top_referers_with_method_filter(runner, log_file):
    result = runner.invoke(cli, ["top-referers", str(log_file), "--method", "post"])

    assert result.exit_code == 0, result.output
    assert "https://example.com/" in result.output


def test_top_agents_empty_selection(runner, log_file):
    result = runner.invoke(cli, ["top-agents", str(log_file), "--status-family", "5"])

    assert result.exit_code == 0, result.output
    assert "(none)" in result.output


def test_status(runner, log_file):
    result = runner.invoke(cli, ["status", str(log_file)])

    assert result.exit_code == 0, result.output
    assert "2xx : 2" in result.output
    assert "302 : 1" in result.output


def test_daily_with_date_range(runner, log_file):
    result = runner.invoke(
        cli,
        ["daily", str(log_file), "--start", "11/Oct/2023:00:00:00 +0000"],
    )

    assert result.exit_code == 0, result.output
    assert result.output.count(" : 1") == 1


def test_hourly_lists_every_hour(runner, log_file):
    result = runner.invoke(cli, ["hourly", str(log_file)])

    assert result.exit_code == 0, result.output
    for hour in range(24):
        assert f"  {hour:02d} : " in result.output


def test_invalid_date_is_reported(runner, log_file):
    result = runner.invoke(cli, ["summary", str(log_file), "--start", "yesterday"])

    assert result.exit_code == 1
    assert "Invalid date" in result.output


def test_status_family_out_of_range(runner, log_file):
    result = runner.invoke(cli, ["summary", str(log_file), "--status-family", "12"])

    assert result.exit_code == 2


def test_missing_log_file(runner, tmp_path):
    result = runner.invoke(cli, ["summary", str(tmp_path / "missing.log")])

    assert result.exit_code == 2


def test_search(runner, log_file):
    result = runner.invoke(cli, ["search", str(log_file), "INDEX", "--limit", "1"])

    assert result.exit_code == 0, result.output
    assert "Found 2 entries" in result.output
    assert result.output.count("/index.html") == 1


def test_export(runner, log_file, tmp_path):
    output = tmp_path / "out.csv"

    result = runner.invoke(cli, ["export", str(log_file), str(output), "--status-family", "2"])

    assert result.exit_code == 0, result.output
    assert "Exported 2 rows" in result.output
    with open(output, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0][0] == "ip"
    assert [row[0] for row in rows[1:]] == ["10.0.0.1", "10.0.0.2"]


def test_export_failure(runner, log_file, tmp_path):
    output = tmp_path / "missing-dir" / "out.csv"

    result = runner.invoke(cli, ["export", str(log_file), str(output)])

    assert result.exit_code == 1
    assert "Could not write CSV file" in result.output


def test_rejects(runner, log_file):
    result = runner.invoke(cli, ["rejects", str(log_file)])

    assert result.exit_code == 0, result.output
    assert "Unparsed/skipped lines: 1" in result.output
    assert "Unparsed line 5: this is not a log line" in result.output


def test_search_respects_other_filters(runner, log_file):
    result = runner.invoke(cli, ["search", str(log_file), "/", "--method", "POST"])

    assert result.exit_code == 0, result.output
    assert "Found 1 entries" in result.output
    assert "/login" in result.output
    assert "/index.html" not in result.output
