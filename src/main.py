"""
Vintage Vision Identification Pipeline - CLI Entry Point.
Production-grade CLI using Click and Rich.
"""

import asyncio
import logging
import sys
from functools import wraps
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from src.analyzers.deal_calculator import DealCalculator
from src.config.settings import Settings, get_settings
from src.models.schemas import FinalAnalysis, ItemCategory, ProgressEvent, ProgressEventType
from src.pipeline.orchestrator import IdentificationPipeline
from src.services.llm_service import ClaudeService
from src.services.validation_service import ValidationService
from src.utils.errors import PipelineError
from src.utils.formatters import SUPPORTED_FORMATS, ReportFormatter, format_money
from src.utils.logger import setup_logging
from src.utils.marketplace import build_marketplace_links

# Initialize Rich Console
console = Console()

# =============================================================================
# Helper Functions
# =============================================================================

def async_command(f):
    """Decorator to run async click commands."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def setup_logger(verbose: bool, settings: Optional[Settings] = None):
    """Configure logging based on verbosity."""
    level = "DEBUG" if verbose else "WARNING"
    json_format = bool(settings and settings.log_json)
    setup_logging(level=level, json_format=json_format)
    if not json_format:
        root = logging.getLogger()
        root.handlers = [RichHandler(console=console, rich_tracebacks=True, show_path=False)]
    # Silence third-party libs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)


def _title(value: Optional[str]) -> str:
    return value.replace("_", " ").title() if value else "-"


def render_summary(analysis: FinalAnalysis, duration: float) -> Table:
    table = Table(title="Identification Summary", show_header=False)
    table.add_row("Item", f"[bold]{analysis.name}[/bold]")
    table.add_row("Maker", analysis.maker or "-")
    table.add_row("Era", analysis.era or "-")
    table.add_row("Category", f"{_title(analysis.category)} / {_title(analysis.domain_expert)}")

    confidence = f"{analysis.confidence:.0%} ({_title(analysis.confidence_band)})"
    if analysis.low_confidence:
        confidence = f"[yellow]{confidence} - low-confidence best guess[/yellow]"
    table.add_row("Confidence", confidence)
    table.add_row(
        "Estimated Value",
        f"{format_money(analysis.estimated_value_min)} - {format_money(analysis.estimated_value_max)}",
    )

    risk_colors = {"low": "green", "medium": "yellow", "high": "red", "very_high": "bold red"}
    risk = analysis.risk_level
    table.add_row("Counterfeit Risk", f"[{risk_colors.get(risk, 'white')}]{_title(risk)}[/]")
    table.add_row("Authentication", f"{analysis.authentication_confidence:.0%}")

    if analysis.deal is not None:
        table.add_row(
            "Deal",
            f"{_title(analysis.deal.rating)} ({analysis.deal.percent_of_market:.0f}% of market)",
        )
    referral = analysis.expert_referral
    if referral.recommended:
        table.add_row("Expert Review", f"{_title(referral.urgency)} urgency, {_title(referral.service)}")
    table.add_row("Duration", f"{duration:.2f}s")
    return table


# =============================================================================
# CLI Group
# =============================================================================

@click.group()
@click.version_option(version="1.0.0")
def cli():
    """Vintage Vision Identification Pipeline"""
    pass

# =============================================================================
# Commands
# =============================================================================

@cli.command()
@click.argument('image', type=click.Path(exists=True, dir_okay=False))
@click.option('--asking-price', type=click.IntRange(min=0), default=None, help='Asking price in cents')
@click.option('--format', 'format_type', type=click.Choice(list(SUPPORTED_FORMATS)), default=None, help='Report format')
@click.option('--output', type=click.Path(dir_okay=False), default=None, help='Report file path')
@click.option('--output-dir', default=None, help='Custom output directory')
@click.option('--stream', is_flag=True, help='Print progress as server-sent events')
@click.option('--verbose', is_flag=True, help='Detailed logging')
@async_command
async def analyze(
    image: str,
    asking_price: Optional[int],
    format_type: Optional[str],
    output: Optional[str],
    output_dir: Optional[str],
    stream: bool,
    verbose: bool,
):
    """
    Identify, authenticate and value an item from a photo.

    IMAGE: Path to a JPEG, PNG, GIF or WebP image
    """
    settings = get_settings()
    setup_logger(verbose, settings)
    format_type = format_type or settings.report_format
    terminal_sent = False

    try:
        request = ValidationService(settings.max_image_bytes).request_from_file(image, asking_price)

        if not stream:
            console.print(Panel.fit(
                f"[bold blue]Vintage Vision Analysis[/bold blue]\nImage: [cyan]{Path(image).name}[/cyan]"
            ))

        start_time = asyncio.get_event_loop().time()

        async with ClaudeService(settings) as llm_service:
            if stream:
                pipeline = IdentificationPipeline(settings=settings, llm_service=llm_service)
                analysis = None
                async for event in pipeline.stream(request):
                    click.echo(event.to_sse(), nl=False)
                    terminal_sent = terminal_sent or event.is_terminal
                    if event.type == "complete":
                        analysis = FinalAnalysis.model_validate(event.payload)
                if analysis is None:
                    sys.exit(1)
            else:
                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TextColumn("{task.percentage:>3.0f}%"),
                    console=console,
                ) as progress:
                    task = progress.add_task("[cyan]Starting...", total=100)

                    def update_progress(event: ProgressEvent):
                        progress.update(task, completed=event.percent, description=f"[cyan]{event.message}")

                    pipeline = IdentificationPipeline(
                        settings=settings,
                        llm_service=llm_service,
                        progress_callback=update_progress,
                    )
                    analysis = await pipeline.run(request)
                    progress.update(task, completed=100, description="[green]Analysis complete!")

            usage = llm_service.get_usage_stats()

        duration = asyncio.get_event_loop().time() - start_time

        formatter = ReportFormatter(Path(output_dir) if output_dir else settings.output_dir)
        report_path = formatter.save(analysis, format_type, Path(output) if output else None)

        if not stream:
            console.print(render_summary(analysis, duration))
            console.print(
                f"[dim]Tokens: {usage['total_tokens']:,} | Est. cost: ${usage['total_cost']:.4f}[/dim]"
            )
            console.print(f"[green]✓[/green] Report saved to {report_path}")

    except PipelineError as e:
        if stream:
            if not terminal_sent:
                failure = ProgressEvent(
                    type=ProgressEventType.ERROR,
                    message=e.message,
                    percent=0,
                    payload=e.to_response().to_dict_safe(),
                )
                click.echo(failure.to_sse(), nl=False)
            sys.exit(1)
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        if verbose:
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument('asking', type=click.IntRange(min=0))
@click.argument('value_min', type=click.IntRange(min=0))
@click.argument('value_max', type=click.IntRange(min=0))
def deal(asking: int, value_min: int, value_max: int):
    """
    Rate an asking price against a value range (all in cents).

    ASKING VALUE_MIN VALUE_MAX
    """
    if value_max < value_min:
        raise click.BadParameter("VALUE_MAX must be >= VALUE_MIN")

    assessment = DealCalculator().rate(asking, value_min, value_max)
    if assessment is None:
        console.print("[yellow]No deal rating: the value range has no positive midpoint.[/yellow]")
        return

    table = Table(title="Deal Assessment", show_header=False)
    table.add_row("Rating", f"[bold]{_title(assessment.rating)}[/bold]")
    table.add_row("Asking", format_money(assessment.asking_price))
    table.add_row("Market Midpoint", format_money(int(round(assessment.market_midpoint))))
    table.add_row("% of Market", f"{assessment.percent_of_market:.1f}%")
    table.add_row(
        "Profit Potential",
        f"{format_money(assessment.profit_potential_low)} to {format_money(assessment.profit_potential_high)}",
    )
    console.print(table)
    console.print(assessment.explanation)


@cli.command()
@click.argument('name')
@click.option(
    '--category',
    type=click.Choice([c.value for c in ItemCategory]),
    required=True,
    help='Item age/market category',
)
@click.option('--brand', default=None, help='Brand to include in the search')
def links(name: str, category: str, brand: Optional[str]):
    """
    Print marketplace search links for an item.

    NAME: Identified item name
    """
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Marketplace")
    table.add_column("URL", overflow="fold")
    for link in build_marketplace_links(name, category, brand):
        table.add_row(link.marketplace_name, link.url)
    console.print(table)


@cli.command()
@click.option('--offline', is_flag=True, help='Skip the reasoning-service round trip')
@async_command
async def validate_setup(offline: bool):
    """Check API keys and environment configuration."""
    console.print("[bold]Validating Setup...[/bold]")

    try:
        settings = get_settings()
    except ValueError as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        sys.exit(1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")

    # Check Anthropic
    key = settings.anthropic_api_key.get_secret_value()
    key_ok = key.startswith("sk-")
    status = "[green]Pass[/green]" if key_ok else "[red]Fail[/red]"
    table.add_row("Anthropic API Key", status, f"configured ({len(key)} chars)")
    table.add_row("Model", "[blue]Info[/blue]", settings.claude_model)
    table.add_row(
        "Timeouts",
        "[blue]Info[/blue]",
        f"stage {settings.stage_timeout_seconds}s / pipeline {settings.pipeline_timeout_seconds}s",
    )

    healthy = True
    if offline:
        table.add_row("Reasoning Service", "[yellow]Skipped[/yellow]", "offline mode")
    else:
        async with ClaudeService(settings) as llm_service:
            healthy = await llm_service.check_health()
        status = "[green]Pass[/green]" if healthy else "[red]Fail[/red]"
        table.add_row("Reasoning Service", status, "reachable" if healthy else "no response")

    # Configuration
    table.add_row("Output Dir", "[green]Pass[/green]", str(settings.output_dir))
    table.add_row("Environment", "[blue]Info[/blue]", settings.app_env)

    console.print(table)

    if not key_ok or not healthy:
        sys.exit(1)


if __name__ == "__main__":
    cli()
