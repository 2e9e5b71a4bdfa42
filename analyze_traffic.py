#!/usr/bin/env python3

"""
CLI tool to analyse Apache access logs: summaries, rankings, histograms and CSV export.
"""

import functools
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click

from traffic_log_analyzer import analysis
from traffic_log_analyzer.errors import TrafficLogError
from traffic_log_analyzer.model import AnalysisSession, FilterSpec, LogRecord, Rejection
from traffic_log_analyzer.parser import ingest_log_file, parse_date_range


def filter_options(command):
    """Attach the log file argument and the filter options shared by every command."""
    decorators = [
        click.argument(
            "log_file",
            type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
        ),
        click.option(
            "--start",
            type=str,
            default=None,
            help="Only count hits at or after this time, e.g. '10/Oct/2023:00:00:00 +0000'",
        ),
        click.option(
            "--end",
            type=str,
            default=None,
            help="Only count hits at or before this time, same format as --start",
        ),
        click.option(
            "--method",
            "-m",
            type=str,
            default=None,
            help="Only count this HTTP method (case-insensitive)",
        ),
        click.option(
            "--status-family",
            "-s",
            type=click.IntRange(1, 9),
            default=None,
            help="Only count status codes of this family, e.g. 4 for 4xx",
        ),
        click.option(
            "--path-contains",
            type=str,
            default=None,
            help="Only count paths containing this text (case-insensitive)",
        ),
        click.option(
            "--exclude-bots",
            is_flag=True,
            help="Ignore requests from known crawlers",
        ),
    ]

    @functools.wraps(command)
    def wrapper(log_file, start, end, method, status_family, path_contains, exclude_bots, **kwargs):
        try:
            session = AnalysisSession(
                date_range=parse_date_range(start, end),
                exclude_bots=exclude_bots,
            )
            spec = session.filter_spec(
                method=method,
                status_family=status_family,
                path_contains=path_contains,
            )
            records, rejections = load(log_file)
            selected = analysis.filter_records(records, spec)
            return command(selected, rejections, **kwargs)
        except TrafficLogError as e:
            click.echo(click.style(f"✗ Error: {e}", fg="red"), err=True)
            sys.exit(1)

    for decorator in reversed(decorators):
        wrapper = decorator(wrapper)
    return wrapper


def load(log_file: Path) -> Tuple[List[LogRecord], List[Rejection]]:
    click.echo(f"Parsing log file: {log_file}")
    records, rejections = ingest_log_file(log_file)
    click.echo(f"Parsed {len(records):,} entries. Skipped {len(rejections):,} lines.")
    return records, rejections


def print_ranking(title: str, ranking: Dict[str, int]) -> None:
    click.echo(f"--- {title} ---")
    if not ranking:
        click.echo("(none)")
        return
    for position, (value, count) in enumerate(ranking.items(), start=1):
        click.echo(f"{position:2d}) {count:7,d}  {value}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show parser diagnostics")
def cli(verbose: bool):
    """CLI tool for analysing Apache access logs in Combined Log Format."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@filter_options
def summary(records: List[LogRecord], rejections: List[Rejection]):
    """
    Show hits, unique visitors, bandwidth, status families and the busiest hour.

    Example:
        python analyze_traffic.py summary logs/access.log --exclude-bots
    """
    result = analysis.summarize(records)
    click.echo("--- SUMMARY ---")
    click.echo(f"Total hits         : {result.total_hits:,}")
    click.echo(f"Unique IPs         : {result.unique_visitors:,}")
    click.echo(f"Bandwidth (bytes)  : {result.total_bytes:,}")
    click.echo("Status families    :")
    for family, count in result.status_families.items():
        click.echo(f"  {family // 100}xx : {count:,}")
    if result.peak_hour is None:
        click.echo("Peak hour (by hits): n/a")
    else:
        click.echo(f"Peak hour (by hits): {result.peak_hour:02d}:00 with {result.peak_hour_hits:,} hits")


@cli.command("top-paths")
@filter_options
@click.option("--top", "-n", type=int, default=20, help="Number of paths to show. Default: 20")
def top_paths(records: List[LogRecord], rejections: List[Rejection], top: int):
    """Show the most requested paths."""
    print_ranking("Top URLs", analysis.top_paths(records, top))


@cli.command("top-referers")
@filter_options
@click.option("--top", "-n", type=int, default=15, help="Number of referers to show. Default: 15")
def top_referers(records: List[LogRecord], rejections: List[Rejection], top: int):
    """Show the most frequent referers."""
    print_ranking("Top Referrers", analysis.top_referers(records, top))


@cli.command("top-agents")
@filter_options
@click.option("--top", "-n", type=int, default=15, help="Number of user agents to show. Default: 15")
def top_agents(records: List[LogRecord], rejections: List[Rejection], top: int):
    """Show the most frequent user agents."""
    print_ranking("Top User-Agents", analysis.top_user_agents(records, top))


@cli.command()
@filter_options
def status(records: List[LogRecord], rejections: List[Rejection]):
    """Show hits per status family and per status code."""
    click.echo("Status families (xx0):")
    for family, count in analysis.status_families(records).items():
        click.echo(f"  {family // 100}xx : {count:,}")
    click.echo("Status codes:")
    for code, count in analysis.status_buckets(records).items():
        click.echo(f"  {code} : {count:,}")


@cli.command()
@filter_options
def daily(records: List[LogRecord], rejections: List[Rejection]):
    """Show hits per day in the local time zone."""
    click.echo("Hits per day:")
    for day, count in analysis.hits_per_day(records).items():
        click.echo(f"  {day} : {count:,}")


@cli.command()
@filter_options
def hourly(records: List[LogRecord], rejections: List[Rejection]):
    """Show hits per hour of day in the local time zone."""
    click.echo("Hits per hour (0-23):")
    for hour, count in analysis.hits_per_hour(records).items():
        click.echo(f"  {hour:02d} : {count:,}")


@cli.command()
@filter_options
@click.argument("query", type=str)
@click.option("--limit", type=int, default=20, help="Number of matching entries to list. Default: 20")
def search(records: List[LogRecord], rejections: List[Rejection], query: str, limit: int):
    """
    List requests whose path contains QUERY (case-insensitive).

    Example:
        python analyze_traffic.py search logs/access.log /admin --limit 50
    """
    query = query.strip()
    if not query:
        click.echo(click.style("✗ Error: No query provided", fg="red"), err=True)
        sys.exit(1)

    found = analysis.filter_records(records, FilterSpec(path_contains=query))
    click.echo(f"Found {len(found):,} entries. Showing first {min(limit, len(found))}:")
    for record in found[:limit]:
        click.echo(f"{record.timestamp.isoformat()} {record.method:<4} {record.status_code:<3d} {record.path}")


@cli.command()
@filter_options
@click.argument(
    "output",
    type=click.Path(file_okay=True, dir_okay=False, path_type=Path),
)
def export(records: List[LogRecord], rejections: List[Rejection], output: Path):
    """
    Export the selected requests to a CSV file.

    Example:
        python analyze_traffic.py export logs/access.log filtered.csv --status-family 5
    """
    count = analysis.export_csv(records, output)
    click.echo(
        click.style(
            f"✓ Exported {count:,} rows to {output.absolute()}",
            fg="green",
        )
    )


@cli.command()
@filter_options
@click.option("--limit", type=int, default=5, help="Number of unparsed lines to show. Default: 5")
def rejects(records: List[LogRecord], rejections: List[Rejection], limit: int):
    """Show how many lines could not be parsed, and the first of them."""
    click.echo(f"Unparsed/skipped lines: {len(rejections):,}")
    for rejection in rejections[:limit]:
        click.echo(str(rejection))


def main(argv: Optional[List[str]] = None):
    cli(args=argv, auto_envvar_prefix="TRAFFIC_LOG")


if __name__ == "__main__":
    main()
