"""
Command-Line Interface for fincalc.

Purpose
-------
Runs calculations, request batches and stress-scenario listings from the
shell, without writing Python code.

Commands
--------
- calculate: Run one calculation from KIND and name=value parameters
- batch: Run a JSON file of requests and write the outcomes
- scenarios: List the registered market stress scenarios
- config: Display settings and validate request files

Example Usage
-------------
    # FIRE number for $50k of annual expenses
    $ fincalc calculate fire_number -p annual_expenses=50000 -p withdrawal_rate=0.04

    # Monte Carlo with a fixed seed, raw JSON output
    $ fincalc calculate monte_carlo -p initial_value=100000 -p years=20 \\
          -p expected_return=0.07 -p volatility=0.15 --seed 42 --json

    # Batch file
    $ fincalc batch requests.json --output results.json

    # Show version
    $ fincalc --version
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import AppSettings, ServiceConfig, configure_logging
from .exceptions import FinCalcError
from .requests import CALCULATION_KINDS


def _parse_params(pairs: Tuple[str, ...]) -> Dict[str, Any]:
    """Turn ``name=value`` pairs into a mapping; values are JSON when they parse."""
    params: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected name=value, got {pair!r}", param_hint="-p")
        name, raw = pair.split("=", 1)
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            value = raw
        params[name.strip()] = value
    return params


def _scalar_rows(payload: Dict[str, Any], prefix: str = ""):
    """Flatten scalar fields of a serialized payload for display."""
    for key, value in payload.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            yield from _scalar_rows(value, prefix=f"{name}.")
        elif not isinstance(value, list):
            yield name, value


def _format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:,.4f}"
    return str(value)


@click.group()
@click.version_option(version=__version__, prog_name="fincalc")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.pass_context
def main(ctx: click.Context, quiet: bool) -> None:
    """
    fincalc - Personal finance calculation engine.

    FIRE targets, savings plans, debt payoff strategies, Monte Carlo
    projections and market stress tests behind one guarded, cached service.

    Use 'fincalc COMMAND --help' for command-specific help.
    """
    settings = AppSettings()
    configure_logging(settings)
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["console"] = Console()
    ctx.obj["settings"] = settings


@main.command()
@click.argument("kind", type=click.Choice(CALCULATION_KINDS))
@click.option(
    "--param", "-p", "params",
    multiple=True,
    help="Parameter as name=value; values are parsed as JSON (e.g. -p goals='[...]')"
)
@click.option("--seed", "-s", type=int, default=None, help="Random seed for reproducibility")
@click.option("--timeout", "-t", type=float, default=None, help="Deadline in seconds")
@click.option("--caller", default="cli", show_default=True, help="Caller identity for rate limiting")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.pass_context
def calculate(
    ctx: click.Context,
    kind: str,
    params: Tuple[str, ...],
    seed: Optional[int],
    timeout: Optional[float],
    caller: str,
    as_json: bool,
) -> None:
    """
    Run one calculation.

    Example:
        fincalc calculate future_value -p principal=10000 -p annual_rate=0.07 -p years=10
    """
    console: Console = ctx.obj["console"]
    quiet = ctx.obj.get("quiet", False)

    from .serialization import result_to_dict
    from .service import CalculationService

    request = {
        "kind": kind,
        "params": _parse_params(params),
        "caller_id": caller,
        "seed": seed,
        "timeout_s": timeout,
    }

    with CalculationService(ServiceConfig.from_settings(ctx.obj["settings"])) as service:
        try:
            result = service.calculate(request)
        except FinCalcError as e:
            field = getattr(e, "field", None)
            where = f" [{field}]" if field else ""
            click.echo(f"{e.error_kind}{where}: {e}", err=True)
            sys.exit(1)

    data = result_to_dict(result)
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    table = Table(title=f"{kind} result", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    for name, value in _scalar_rows(data["payload"]):
        table.add_row(name, _format_value(value))
    console.print(table)

    for warning in data["warnings"]:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    if not quiet:
        console.print(
            f"[dim]{data['compute_time_ms']:.2f} ms, cache {data['cache_status']}[/dim]"
        )


@main.command()
@click.argument("requests_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Write outcomes to this JSON file (default: print to stdout)"
)
@click.option(
    "--concurrency", "-c",
    type=click.IntRange(min=1),
    default=None,
    help="Requests in flight at once (default from settings)"
)
@click.pass_context
def batch(
    ctx: click.Context,
    requests_file: Path,
    output: Optional[Path],
    concurrency: Optional[int],
) -> None:
    """
    Run a batch of requests from a JSON file.

    The file holds {"schema_version": ..., "requests": [...]} or a bare
    list of requests. Invalid items are reported per item.

    Example:
        fincalc batch requests.json -o results.json
    """
    # stdout may carry the JSON outcomes
    err_console = Console(stderr=True)
    quiet = ctx.obj.get("quiet", False)

    from .serialization import batch_item_to_dict, load_requests, save_batch_results
    from .service import CalculationService

    try:
        raw = load_requests(requests_file)
    except FinCalcError as e:
        click.echo(f"Error loading requests: {e}", err=True)
        sys.exit(1)

    if not quiet:
        err_console.print(f"[bold blue]Running {len(raw)} requests...[/bold blue]")

    with CalculationService(ServiceConfig.from_settings(ctx.obj["settings"])) as service:
        items = service.calculate_batch(raw, max_concurrency=concurrency)

    if output:
        save_batch_results(items, output)
    else:
        click.echo(json.dumps({"results": [batch_item_to_dict(i) for i in items]}, indent=2))

    if not quiet:
        table = Table(title="Batch Summary", show_header=True)
        table.add_column("#", justify="right")
        table.add_column("Kind", style="cyan")
        table.add_column("Outcome")
        for item in items:
            if item.ok:
                table.add_row(str(item.index), item.result.kind, f"[green]{item.result.cache_status}[/green]")
            else:
                table.add_row(str(item.index), "-", f"[red]{item.error.error_kind}: {item.error}[/red]")
        err_console.print(table)
        if output:
            err_console.print(f"Results saved to {output}")

    if any(not item.ok for item in items):
        sys.exit(2)


@main.command()
@click.pass_context
def scenarios(ctx: click.Context) -> None:
    """
    List registered market stress scenarios.

    Example:
        fincalc scenarios
    """
    console: Console = ctx.obj["console"]

    from .stress import SCENARIOS

    table = Table(title="Stress Scenarios", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Shock", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Recovery")
    table.add_column("Contribution cut", justify="right")
    table.add_column("Description")
    for s in SCENARIOS.values():
        table.add_row(
            s.name,
            f"{s.magnitude * 100:.0f}%",
            f"{s.duration_months} mo",
            f"{s.recovery.kind}, {s.recovery.recovery_months} mo x{s.recovery.strength:g}",
            f"{s.contribution_reduction * 100:.0f}%",
            s.description,
        )
    console.print(table)


@main.group()
def config() -> None:
    """
    Configuration commands.

    Display the effective settings and validate request files.
    """
    pass


@config.command("show")
@click.option("--format", "-f", type=click.Choice(["json", "table"]), default="table")
@click.pass_context
def config_show(ctx: click.Context, format: str) -> None:
    """
    Display the effective service configuration.

    Settings come from FINCALC_* environment variables and .env.

    Example:
        fincalc config show --format json
    """
    console: Console = ctx.obj["console"]
    service_config = ServiceConfig.from_settings(ctx.obj["settings"])
    data = service_config.model_dump(mode="json")

    if format == "json":
        click.echo(json.dumps(data, indent=2))
        return

    for section, values in data.items():
        if not isinstance(values, dict):
            continue
        table = Table(title=section, show_header=False)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", justify="right")
        for name, value in _scalar_rows(values):
            table.add_row(name, _format_value(value))
        console.print(table)
    top = ", ".join(f"{k}={v}" for k, v in data.items() if not isinstance(v, dict))
    console.print(Panel(top, title="service", border_style="green"))


@config.command("validate")
@click.argument("requests_file", type=click.Path(exists=True, path_type=Path))
@click.pass_context
def config_validate(ctx: click.Context, requests_file: Path) -> None:
    """
    Validate a request file without running it.

    Checks that every request parses (kind, field names and types).
    Range checks and rate limits are applied only when running.

    Example:
        fincalc config validate requests.json
    """
    console: Console = ctx.obj["console"]
    quiet = ctx.obj.get("quiet", False)

    from .serialization import load_requests, request_from_dict

    try:
        raw = load_requests(requests_file)
    except FinCalcError as e:
        click.echo(f"Validation failed: {e}", err=True)
        sys.exit(1)

    errors = []
    for index, item in enumerate(raw):
        try:
            request_from_dict(item)
        except FinCalcError as e:
            errors.append((index, e))

    for index, e in errors:
        click.echo(f"request {index}: {e}", err=True)
    if errors:
        sys.exit(1)
    if not quiet:
        console.print(f"[green]{len(raw)} requests are valid[/green]")
