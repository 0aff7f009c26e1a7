"""CLI interface for the proposal minutes tracker.

Usage:
    proposal-minutes run                        # Fetch new minutes, write changes.json
    proposal-minutes run --comments-file c.json # Replay saved comments instead of GitHub
    proposal-minutes parse minutes.md           # Parse one comment body
    proposal-minutes parse minutes.md --json    # ...and print the changes as JSON
    proposal-minutes status                     # Show the watermark
"""

import json
import logging
import sys
from datetime import datetime, timezone

import click

from proposal_minutes.adapters import SourceError, get_source
from proposal_minutes.config import ConfigError, load_config
from proposal_minutes.export import ChangesExporter
from proposal_minutes.minutes import MinutesParseError, MinutesParser, format_report
from proposal_minutes.pipeline import Pipeline, RunError, format_summary
from proposal_minutes.state import StateCorruptError, StateTracker
from proposal_minutes.utils.normalization import format_timestamp, parse_timestamp

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


@click.group()
@click.option("--config", "config_path", default=None, type=click.Path(),
              help="YAML configuration file")
@click.option("--verbose", "-v", is_flag=True, help="Log debug messages")
@click.pass_context
def cli(ctx, config_path, verbose):
    """Proposal Review Minutes Tracker"""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.option("--state", "state_path", default=None, help="Path to the state file")
@click.option("--output", "output_path", default=None, help="Path to output changes.json")
@click.option("--csv", "csv_path", default=None, help="Also write changes to this CSV file")
@click.option("--token", default=None,
              help="GitHub API token (defaults to the token_env environment variable)")
@click.option("--comments-file", default=None, type=click.Path(),
              help="Read comments from a saved JSON file instead of GitHub")
@click.option("--workers", default=None, type=int, help="Comments parsed concurrently")
@click.pass_context
def run(ctx, state_path, output_path, csv_path, token, comments_file, workers):
    """Fetch new minutes comments and extract status changes."""
    config = ctx.obj["config"]

    if comments_file:
        source = get_source("file", path=comments_file, repo=config.repo, issue=config.issue)
    else:
        source = get_source(
            "github",
            repo=config.repo,
            issue=config.issue,
            token=token or config.token,
            api_url=config.api_url,
        )

    tracker = StateTracker(
        state_path or config.state_path,
        reporting_period=config.reporting_period,
    )
    exporter = ChangesExporter(
        output_path or config.changes_json,
        csv_path=csv_path or config.changes_csv,
    )
    pipeline = Pipeline(
        source,
        tracker,
        parser=MinutesParser(repo=config.repo),
        sink=exporter,
        workers=workers or config.workers,
    )

    try:
        summary = pipeline.run()
    except StateCorruptError as e:
        click.echo(f"Error: corrupt state: {e}", err=True)
        sys.exit(1)
    except SourceError as e:
        click.echo(f"Error: failed to fetch comments: {e}", err=True)
        sys.exit(1)
    except RunError as e:
        click.echo(format_summary(e.summary), err=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(format_summary(summary), err=True)

    # GitHub Actions step outputs
    click.echo(f"has_changes={'true' if summary.has_changes else 'false'}")
    click.echo(f"changes_count={summary.changes_count}")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--at", "commented_at", default=None,
              help="Comment timestamp (ISO 8601). Defaults to now.")
@click.option("--url", "comment_url", default="", help="Comment permalink to stamp on changes")
@click.option("--json", "as_json", is_flag=True, help="Print changes as JSON")
@click.pass_context
def parse(ctx, file, commented_at, comment_url, as_json):
    """Parse a single minutes comment body from FILE."""
    config = ctx.obj["config"]

    try:
        at = parse_timestamp(commented_at) if commented_at else None
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if at is None:
        at = datetime.now(timezone.utc)

    with open(file, "rb") as f:
        body = f.read()

    try:
        result = MinutesParser(repo=config.repo).parse(body, at, comment_url=comment_url)
    except MinutesParseError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps({
            "meeting_date": result.meeting_date.isoformat() if result.meeting_date else None,
            "changes": [c.to_dict() for c in result.changes],
            "skipped": [d.to_dict() for d in result.diagnostics],
        }, indent=2, ensure_ascii=False))
    else:
        click.echo(format_report(result, source=file))


@cli.command()
@click.option("--state", "state_path", default=None, help="Path to the state file")
@click.pass_context
def status(ctx, state_path):
    """Show the current watermark."""
    config = ctx.obj["config"]
    tracker = StateTracker(
        state_path or config.state_path,
        reporting_period=config.reporting_period,
    )

    try:
        state = tracker.load()
    except StateCorruptError as e:
        click.echo(f"Error: corrupt state: {e}", err=True)
        sys.exit(1)

    click.echo("--- Tracker State ---\n")
    click.echo(f"  State file:        {tracker.path}")
    if state.is_fresh:
        click.echo("  No runs yet")
        click.echo(f"  First run covers:  since {format_timestamp(state.last_processed_at)}")
        return

    click.echo(f"  Last processed:    {format_timestamp(state.last_processed_at)}")
    click.echo(f"  Last comment:      {state.last_comment_id or '-'}")
    click.echo(f"  Tracked proposals: {len(state.proposal_statuses)}")
    if state.proposal_statuses:
        counts: dict[str, int] = {}
        for s in state.proposal_statuses.values():
            counts[s.value] = counts.get(s.value, 0) + 1
        for name, count in sorted(counts.items()):
            click.echo(f"    {name:<16} {count}")


if __name__ == "__main__":
    cli()
