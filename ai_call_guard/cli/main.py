"""
CLI interface for AI Call Guard.

Operator commands over an exported usage ledger and a guard config.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from ai_call_guard.config.loader import default_guard_config, load_guard_config
from ai_call_guard.core.budget import BudgetVerdict, check_budget
from ai_call_guard.core.cost_tracker import CostTracker, UsageStats
from ai_call_guard.core.pricing import PRICING_TABLE, calculate_model_cost
from ai_call_guard.core.token_counter import TokenUsage, estimate_tokens

app = typer.Typer()
console = Console()

# Exit codes - WARN is non-failing (0)
EXIT_CODE_PASS = 0
EXIT_CODE_WARN = 0  # Non-failing warning
EXIT_CODE_FAIL = 1  # Failing error

RANGES = ("today", "month", "all")


def _verdict_to_exit_code(verdict: BudgetVerdict) -> int:
    """Convert budget verdict to CLI exit code."""
    return {
        BudgetVerdict.PASS: EXIT_CODE_PASS,
        BudgetVerdict.WARN: EXIT_CODE_WARN,
        BudgetVerdict.FAIL: EXIT_CODE_FAIL,
    }[verdict]


def _load_ledger(path: Path) -> CostTracker:
    """Read an exported ledger into a fresh tracker.

    Raises:
        FileNotFoundError: If the ledger file doesn't exist
        ValueError: If the file is not a valid exported ledger
    """
    if not path.exists():
        raise FileNotFoundError(f"Ledger file not found: {path}")
    tracker = CostTracker()
    tracker.import_from_json(path.read_text(encoding="utf-8"), strict=True)
    return tracker


def _format_currency(amount: float) -> str:
    return f"${amount:,.6f}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """AI Call Guard CLI."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if ctx.invoked_subcommand is None:
        console.print("AI Call Guard - Use --help to see available commands")


@app.command()
def estimate(
    text: str = typer.Argument(..., help="Prompt text to estimate"),
    completion_tokens: int = typer.Option(
        0,
        "--completion-tokens",
        "-c",
        help="Expected completion tokens"
    ),
    model: str = typer.Option("deepseek-chat", "--model", "-m", help="Model to price against")
):
    """Estimate tokens and cost for a prompt."""
    try:
        prompt_tokens = estimate_tokens(text)
        usage = TokenUsage.from_counts(prompt_tokens, completion_tokens)
        cost = calculate_model_cost(model, usage, PRICING_TABLE)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"Prompt tokens: {usage.prompt_tokens}")
    console.print(f"Completion tokens: {usage.completion_tokens}")
    console.print(f"Total tokens: {usage.total_tokens}")
    console.print(f"Estimated cost: {_format_currency(cost.total_cost)} {cost.currency}")


@app.command()
def stats(
    ledger: Path = typer.Option(..., "--ledger", "-l", help="Exported usage ledger (JSON)"),
    service: Optional[str] = typer.Option(None, "--service", "-s", help="Filter to one service"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Filter to one user"),
    time_range: str = typer.Option("all", "--range", "-r", help="today, month or all")
):
    """Show usage statistics from an exported ledger."""
    if time_range not in RANGES:
        console.print(f"[red]Error:[/] --range must be one of {', '.join(RANGES)}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        tracker = _load_ledger(ledger)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    start_time = end_time = None
    if time_range == "today":
        start_time, end_time = tracker.day_bounds()
    elif time_range == "month":
        start_time, end_time = tracker.month_bounds()

    result = tracker.get_stats(start_time=start_time, end_time=end_time, user_id=user, service=service)
    if result.total_calls == 0:
        console.print("\n[bold yellow]No AI usage records found[/]\n")
        sys.exit(EXIT_CODE_PASS)

    _display_stats(result)


def _display_stats(result: UsageStats):
    """Display usage statistics as summary lines and a per-service table."""
    console.print("\n[bold]AI Usage Statistics[/bold]")
    console.print("-" * 40)
    console.print(f"Total calls: {result.total_calls}")
    console.print(f"Successful: {result.successful_calls}  Failed: {result.failed_calls}")
    console.print(f"Cache hit rate: {result.cache_hit_rate:.2%}")
    console.print(f"Total tokens: {result.total_tokens}")
    console.print(f"Average tokens/call: {result.average_tokens_per_call}")
    console.print(f"Total cost: {_format_currency(result.total_cost)}")

    table = Table(title="By service")
    table.add_column("Service")
    table.add_column("Calls", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for name, service_stats in sorted(result.by_service.items()):
        table.add_row(name, str(service_stats.calls), str(service_stats.tokens), _format_currency(service_stats.cost))
    console.print(table)


@app.command()
def budget(
    ledger: Path = typer.Option(..., "--ledger", "-l", help="Exported usage ledger (JSON)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Guard config (YAML)"),
    enforced: bool = typer.Option(
        False,
        "--enforced",
        "-e",
        help="Exit with error code if a budget limit is reached"
    )
):
    """
    Check today's and this month's spend against the budget.

    This is a read-only operation. Warnings never fail; a reached limit
    fails only with --enforced.
    """
    try:
        guard_config = load_guard_config(str(config)) if config else default_guard_config()
        tracker = _load_ledger(ledger)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    status = check_budget(tracker, guard_config.budget)
    limits = guard_config.budget

    console.print("\n[bold]AI Budget Check[/bold]")
    console.print("-" * 40)
    console.print(f"Daily: {_format_currency(status.daily_usage)} of {_format_currency(limits.daily)}")
    console.print(f"Monthly: {_format_currency(status.monthly_usage)} of {_format_currency(limits.monthly)}")

    verdict = status.verdict
    if verdict == BudgetVerdict.FAIL:
        console.print("\n[bold red]Verdict: FAIL[/] (budget limit reached)")
    elif verdict == BudgetVerdict.WARN:
        console.print(f"\n[bold yellow]Verdict: WARN[/] (above {limits.warning_threshold:.0%} of a limit)")
    else:
        console.print("\n[bold green]Verdict: PASS[/]")

    if enforced:
        sys.exit(_verdict_to_exit_code(verdict))
    sys.exit(EXIT_CODE_PASS)


@app.command("check-config")
def check_config(path: Path = typer.Argument(..., help="Guard config (YAML)")):
    """Validate a guard configuration file."""
    try:
        guard_config = load_guard_config(str(path))
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Configuration is valid: {path}")
    console.print(f"Budget: {guard_config.budget.daily}/day, {guard_config.budget.monthly}/month")
    for service_name, cache_config in sorted(guard_config.caches.items()):
        console.print(
            f"Cache {service_name}: ttl={cache_config.ttl_seconds}s "
            f"max={cache_config.max_entries} {cache_config.strategy.value}"
        )
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
