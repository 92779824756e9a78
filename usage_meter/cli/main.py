"""
CLI interface for the usage meter.

Provides command-line access to recording usage, configuring budgets
and rendering usage reports.
"""

import logging
import sys
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from usage_meter.api.budget import update_platform_budget
from usage_meter.api.platform_usage import HTTP_BAD_REQUEST, HTTP_OK, parse_tenant_id
from usage_meter.config.loader import MeterConfig, load_meter_config
from usage_meter.core.errors import MeteringError
from usage_meter.core.period import PeriodSelector, parse_period
from usage_meter.core.pricing import TokenUsage, estimate_cost
from usage_meter.core.report import UsageReport, build_report, round_currency, round_percent
from usage_meter.core.statistics import UsageStatistics, usage_statistics
from usage_meter.storage.models import UsageEvent
from usage_meter.storage.repository import UsageRepository, get_repository

app = typer.Typer(help="Usage Meter - per-tenant usage and budget reporting")
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1
EXIT_CODE_INVALID = 2  # Bad arguments or configuration


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _settings(ctx: typer.Context) -> MeterConfig:
    return ctx.obj["config"]


def _repository(ctx: typer.Context) -> UsageRepository:
    return get_repository(ctx.obj["db_path"])


def _parse_tenant(value: str) -> int:
    try:
        return parse_tenant_id(value)
    except ValueError:
        console.print(f"[red]Invalid tenant id:[/] {value}")
        sys.exit(EXIT_CODE_INVALID)


def _parse_day(value: str, option: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid {option} date:[/] {value} (expected YYYY-MM-DD)")
        sys.exit(EXIT_CODE_INVALID)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite database path (overrides config and USAGE_METER_DB)"
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        help="YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug output"
    )
):
    """Usage Meter CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        settings = load_meter_config(config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_INVALID)

    ctx.obj = {"config": settings, "db_path": db or settings.db_path}

    if ctx.invoked_subcommand is None:
        console.print("Usage Meter - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the usage database."""
    try:
        _repository(ctx).initialize_schema()
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_OK)
    except MeteringError as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def record(
    ctx: typer.Context,
    tenant: str = typer.Argument(..., help="Tenant (business) id"),
    provider: str = typer.Argument(..., help="Provider id, e.g. openai"),
    prompt_tokens: int = typer.Option(0, "--prompt-tokens", "-p", min=0),
    completion_tokens: int = typer.Option(0, "--completion-tokens", "-c", min=0),
    requests: int = typer.Option(1, "--requests", "-r", min=0, help="Requests to count"),
    cost: Optional[str] = typer.Option(
        None,
        "--cost",
        help="Cost of this usage; estimated from configured pricing when omitted"
    ),
    day: Optional[str] = typer.Option(None, "--date", help="UTC day (default: today)")
):
    """Add usage to a tenant's daily counter for a provider."""
    tenant_id = _parse_tenant(tenant)
    usage_day = _parse_day(day, "--date") if day else _utc_now().date()
    usage = TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)

    try:
        if cost is None:
            estimated = estimate_cost(_settings(ctx).pricing, provider, usage)
        else:
            estimated = Decimal(cost)
        event = UsageEvent(
            tenant_id=tenant_id,
            provider_id=provider,
            date=usage_day,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            request_count=requests,
            estimated_cost=estimated
        )
    except (ValueError, InvalidOperation) as e:
        console.print(f"[red]Invalid usage:[/] {str(e) or cost}")
        sys.exit(EXIT_CODE_INVALID)

    try:
        _repository(ctx).record_usage(event)
    except MeteringError as e:
        console.print(f"[red]Error recording usage:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] Recorded {usage.total_tokens:,} tokens, {requests} request(s), "
        f"{_format_currency(event.estimated_cost)} for {provider} on {usage_day.isoformat()}"
    )
    sys.exit(EXIT_CODE_OK)


@app.command()
def budget(
    ctx: typer.Context,
    tenant: str = typer.Argument(..., help="Tenant (business) id"),
    provider: str = typer.Argument(..., help="Provider id"),
    limit: Optional[str] = typer.Option(None, "--limit", "-l", help="Monthly budget"),
    clear: bool = typer.Option(False, "--clear", help="Remove the budget limit"),
    threshold: Optional[int] = typer.Option(
        None,
        "--threshold",
        "-t",
        help="Warning threshold percent (default from config)"
    ),
    name: Optional[str] = typer.Option(None, "--name", help="Display name")
):
    """Set or clear a tenant's monthly budget for a provider."""
    if clear == (limit is not None):
        console.print("[red]Pass exactly one of --limit or --clear[/]")
        sys.exit(EXIT_CODE_INVALID)

    status, body = update_platform_budget(
        {
            "businessId": tenant,
            "platformId": provider,
            "budgetLimit": None if clear else limit,
            "warningThreshold": threshold,
            "platformName": name,
        },
        _repository(ctx),
        default_threshold=_settings(ctx).budgets.default_warning_threshold_percent
    )

    if status == HTTP_OK:
        console.print(f"[green]✓[/] {body['message']}")
        sys.exit(EXIT_CODE_OK)
    console.print(f"[red]Error:[/] {body['error']}")
    sys.exit(EXIT_CODE_INVALID if status == HTTP_BAD_REQUEST else EXIT_CODE_FAIL)


@app.command()
def report(
    ctx: typer.Context,
    tenant: str = typer.Argument(..., help="Tenant (business) id"),
    period: str = typer.Option("30days", "--period", "-p", help="30days or all"),
    start: Optional[str] = typer.Option(None, "--start", help="Explicit range start (YYYY-MM-DD)"),
    end: Optional[str] = typer.Option(None, "--end", help="Explicit range end (YYYY-MM-DD)"),
    as_json: bool = typer.Option(False, "--json", help="Print the JSON report"),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Fail for tenants that have never recorded usage"
    )
):
    """Show a tenant's usage report and budget warnings."""
    tenant_id = _parse_tenant(tenant)

    if start or end:
        if not (start and end):
            console.print("[red]--start and --end must be given together[/]")
            sys.exit(EXIT_CODE_INVALID)
        selector = PeriodSelector.explicit(_parse_day(start, "--start"), _parse_day(end, "--end"))
    else:
        try:
            selector = parse_period(period)
        except ValueError as e:
            console.print(f"[red]Error:[/] {str(e)}")
            sys.exit(EXIT_CODE_INVALID)

    try:
        result = build_report(_repository(ctx), tenant_id, selector, _utc_now(), strict_tenant=strict)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_INVALID)
    except MeteringError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if as_json:
        typer.echo(result.to_json())
    else:
        _display_report(result)
    sys.exit(EXIT_CODE_OK)


@app.command()
def stats(
    ctx: typer.Context,
    tenant: str = typer.Argument(..., help="Tenant (business) id"),
    as_json: bool = typer.Option(False, "--json", help="Print the JSON statistics"),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Fail for tenants that have never recorded usage"
    )
):
    """Show this month, last month and all-time usage statistics."""
    tenant_id = _parse_tenant(tenant)

    try:
        result = usage_statistics(_repository(ctx), tenant_id, _utc_now(), strict_tenant=strict)
    except MeteringError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if as_json:
        typer.echo(result.to_json())
    else:
        _display_statistics(result)
    sys.exit(EXIT_CODE_OK)


def _format_currency(amount: Decimal) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${round_currency(amount):,.2f}"


def _display_report(result: UsageReport):
    """Display a usage report as tables."""
    bounds = result.bounds
    window = "all time" if bounds.is_unbounded else f"{bounds.start} to {bounds.end}"
    console.print(f"\n[bold]Usage for tenant {result.tenant_id}[/bold] ({window})")
    console.print("-" * 40)
    console.print(f"Total tokens: {result.aggregate.total_tokens:,}")
    console.print(f"Total requests: {result.aggregate.request_count:,}")
    console.print(f"Estimated cost: {_format_currency(result.aggregate.estimated_cost)}")

    if not result.by_provider:
        console.print("\n[dim]No usage recorded for this period.[/]")
    else:
        table = Table(title="By provider")
        table.add_column("Provider")
        table.add_column("Prompt", justify="right")
        table.add_column("Completion", justify="right")
        table.add_column("Tokens", justify="right")
        table.add_column("Requests", justify="right")
        table.add_column("Cost", justify="right")
        for p in result.by_provider:
            table.add_row(
                p.provider_name,
                f"{p.totals.prompt_tokens:,}",
                f"{p.totals.completion_tokens:,}",
                f"{p.totals.total_tokens:,}",
                f"{p.totals.request_count:,}",
                _format_currency(p.totals.estimated_cost)
            )
        console.print(table)

        daily = Table(title="Daily")
        daily.add_column("Date")
        daily.add_column("Provider")
        daily.add_column("Tokens", justify="right")
        daily.add_column("Requests", justify="right")
        daily.add_column("Cost", justify="right")
        for d in result.daily:
            daily.add_row(
                d.date.isoformat(),
                d.provider_name,
                f"{d.totals.total_tokens:,}",
                f"{d.totals.request_count:,}",
                _format_currency(d.totals.estimated_cost)
            )
        console.print(daily)

    for w in result.budget_warnings:
        label = "[red]EXCEEDED[/]" if w.is_exceeded else "[yellow]WARNING[/]"
        console.print(
            f"{label} {w.provider_name}: {_format_currency(w.current_month_cost)} of "
            f"{_format_currency(w.budget_limit)} this month "
            f"({round_percent(w.usage_percent):.1f}%, warn at {w.warning_threshold_percent}%)"
        )


def _display_statistics(result: UsageStatistics):
    """Display usage statistics as a window table."""
    console.print(f"\n[bold]Usage statistics for tenant {result.tenant_id}[/bold]")

    table = Table()
    table.add_column("Window")
    table.add_column("Days", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Requests", justify="right")
    table.add_column("Cost", justify="right")
    for label, window in (
        ("This month", result.current_month),
        ("Last month", result.last_month),
        ("All time", result.all_time),
    ):
        table.add_row(
            label,
            str(window.days_active) if window is not result.last_month else "-",
            f"{window.totals.total_tokens:,}",
            f"{window.totals.request_count:,}",
            _format_currency(window.totals.estimated_cost)
        )
    console.print(table)

    if result.first_date is None:
        console.print("\n[dim]No usage recorded.[/]")
        return

    console.print(f"First usage: {result.first_date}  Last usage: {result.last_date}")
    console.print(f"Average daily cost this month: {_format_currency(result.average_daily_cost)}")
    console.print(f"Cost per request this month: ${float(result.cost_per_request):.4f}")

    for p in result.by_provider:
        console.print(
            f"  {p.provider_name}: {_format_currency(p.totals.estimated_cost)} "
            f"({result.cost_percent(p.totals)}%)"
        )


if __name__ == "__main__":
    app()
