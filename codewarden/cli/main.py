"""
Codewarden admin CLI.

Usage:
    # Show a user's usage and remaining quota
    codewarden usage USER_ID

    # Record / release one use of a feature
    codewarden consume USER_ID pushAnalyses
    codewarden release USER_ID codePoliceProjects

    # Flip tier (trusted operators only, no payment check)
    codewarden upgrade USER_ID
    codewarden downgrade USER_ID
"""

import asyncio
import sys

import click
from rich.console import Console
from rich.table import Table

from codewarden.core.config import get_settings
from codewarden.core.errors import StoreUnavailableError
from codewarden.core.logging import get_logger, setup_logging
from codewarden.core.timeutil import format_timestamp, to_local
from codewarden.domain.usage import Feature, UsageSummary
from codewarden.metering.ledger import create_usage_ledger

console = Console()
logger = get_logger("cli")

FEATURE_NAMES = [f.value for f in Feature]


def _run(call):
    """
    Build a ledger and run call(ledger) on it.

    Store faults, including a store that cannot be reached at startup,
    become a retry message.
    """
    try:
        ledger = create_usage_ledger()
        return asyncio.run(call(ledger))
    except StoreUnavailableError as e:
        logger.error(f"Store unavailable: {e.to_dict()}")
        console.print(f"[red]{StoreUnavailableError.user_message}[/red]")
        sys.exit(1)


def display_usage(user_id: str, summary: UsageSummary) -> None:
    """Display usage in terminal."""
    plan = "[bold green]Pro[/bold green]" if summary.is_pro else "Free"
    window = format_timestamp(to_local(summary.window_start), "date")

    table = Table(title=f"Usage for {user_id}")
    table.add_column("Feature", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Free limit", justify="right")
    table.add_column("Remaining", justify="right")

    for feature in Feature:
        remaining = summary.remaining[feature]
        table.add_row(
            feature.label,
            str(summary.usage[feature]),
            str(summary.limits[feature]),
            "unlimited" if remaining is None else str(remaining),
        )

    console.print(f"\nPlan: {plan}    Window start: {window}\n")
    console.print(table)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def main(verbose: bool) -> None:
    """Codewarden - usage metering for Code Police"""
    setup_logging(log_level="DEBUG" if verbose else get_settings().log_level)


@main.command()
@click.argument("user_id")
def usage(user_id: str) -> None:
    """Show usage, limits and remaining quota."""
    summary = _run(lambda ledger: ledger.remaining_for(user_id))
    display_usage(user_id, summary)


@main.command()
@click.argument("user_id")
@click.argument("feature", type=click.Choice(FEATURE_NAMES))
def consume(user_id: str, feature: str) -> None:
    """Record one use of FEATURE if within the limit."""
    result = _run(lambda ledger: ledger.try_increment(user_id, feature))
    if result.success:
        limit = "unlimited" if result.limit is None else result.limit
        console.print(f"[green]{result.message}[/green] ({result.current}/{limit})")
    else:
        console.print(f"[yellow]{result.message}[/yellow]")
        sys.exit(2)


@main.command()
@click.argument("user_id")
@click.argument("feature", type=click.Choice(FEATURE_NAMES))
def release(user_id: str, feature: str) -> None:
    """Release one unit of FEATURE (e.g. a deleted project)."""
    _run(lambda ledger: ledger.decrement(user_id, feature))
    console.print(f"Released one unit of {Feature(feature).label} for {user_id}")


@main.command()
@click.argument("user_id")
def upgrade(user_id: str) -> None:
    """Upgrade USER_ID to the Pro plan."""
    _run(lambda ledger: ledger.set_tier(user_id, True))
    console.print(f"[green]Upgraded {user_id} to Pro plan[/green]")


@main.command()
@click.argument("user_id")
def downgrade(user_id: str) -> None:
    """Downgrade USER_ID to the Free plan."""
    _run(lambda ledger: ledger.set_tier(user_id, False))
    console.print(f"Downgraded {user_id} to Free plan")


if __name__ == "__main__":
    main()
