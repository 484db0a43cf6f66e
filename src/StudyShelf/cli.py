"""Typer-based CLI for StudyShelf with Pydantic v2 configuration.

Usage:
    studyshelf resolve https://res.cloudinary.com/demo/raw/upload/v1/books/intro.pdf
    studyshelf chat "Summarise chapter 2" --user-id user_ab12
    studyshelf plan --profile fast
    studyshelf viewer-url https://example.org/book.pdf --viewer pdfjs
    studyshelf serve --port 5000
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from StudyShelf.config import StudyShelfConfig, export_config_schema, load_config
from StudyShelf.ResourceAcquisition.documents import DocumentResolver
from StudyShelf.ResourceAcquisition.errors import AcquisitionError, get_actionable_error_message
from StudyShelf.ResourceAcquisition.fallback import Exhausted, Resolved
from StudyShelf.ResourceAcquisition.fallback.adapters.external_viewer import (
    google_viewer_url,
    pdfjs_viewer_url,
)
from StudyShelf.ResourceAcquisition.fallback.loader import build_sequence_plan
from StudyShelf.ResourceAcquisition.fallback.telemetry import JsonlTelemetrySink
from StudyShelf.ResourceAcquisition.http import build_async_client
from StudyShelf.StudyChat.backend import GeminiBackend
from StudyShelf.StudyChat.history import build_conversation_store
from StudyShelf.StudyChat.service import ChatService

console = Console()
app = typer.Typer(help="StudyShelf document access and study tools")

CONFIG_OPTION = typer.Option(
    None, "--config", "-c", help="Path to config file", envvar="STUDYSHELF_CONFIG"
)

# ============================================================================
# Setup
# ============================================================================


def _setup_logging(verbose: bool) -> None:
    """Setup logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _telemetry(cfg: StudyShelfConfig, path: Optional[Path]) -> Optional[JsonlTelemetrySink]:
    target = path or cfg.fallback.telemetry_path
    if not target:
        return None
    return JsonlTelemetrySink(target, run_id=uuid.uuid4().hex[:12])


def _attempt_table(title: str, attempts: Any) -> Table:
    table = Table(title=title)
    table.add_column("#", style="cyan")
    table.add_column("Strategy", style="green")
    table.add_column("Outcome", style="yellow")
    table.add_column("Reason", style="magenta")
    table.add_column("Elapsed (ms)", justify="right")
    for record in attempts:
        colour = "green" if record.is_success else ("dim" if record.outcome == "skipped" else "red")
        table.add_row(
            str(record.index),
            record.strategy,
            f"[{colour}]{record.outcome}[/{colour}]",
            record.reason,
            str(record.elapsed_ms),
        )
    return table


# ============================================================================
# Commands
# ============================================================================


@app.command()
def resolve(
    url: str = typer.Argument(..., help="Document URL (http(s), blob: or data:)"),
    config: Optional[str] = CONFIG_OPTION,
    doc_format: Optional[str] = typer.Option(None, "--format", help="pdf or epub"),
    profile: Optional[str] = typer.Option(None, "--profile", help="Tuning profile (fast/reliable)"),
    proxy_url: Optional[str] = typer.Option(None, "--proxy-url", help="Backend base URL"),
    telemetry: Optional[Path] = typer.Option(None, "--telemetry", help="JSONL telemetry output"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Open a document through the fallback chain and show every attempt."""
    _setup_logging(verbose)

    try:
        overrides: Dict[str, Any] = {}
        if proxy_url:
            overrides["proxy"] = {"base_url": proxy_url}
        cfg = load_config(path=config, cli_overrides=overrides)

        async def _run() -> Any:
            async with DocumentResolver(cfg, telemetry=_telemetry(cfg, telemetry), profile=profile) as resolver:
                return await resolver.resolve(url, format=doc_format)

        outcome = asyncio.run(_run())
    except Exception as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        if verbose:
            raise
        raise typer.Exit(code=1)

    console.print(_attempt_table("Document strategies", outcome.attempts))

    if isinstance(outcome, Resolved):
        handle = outcome.resource
        note = "" if handle.verified else "\n[yellow]Unverified: hosted viewer[/yellow]"
        console.print(
            Panel(
                f"[bold green]✓ Resolved via {outcome.strategy}[/bold green]\n"
                f"Format: {handle.format.value}\n"
                f"Size: {handle.size if handle.size is not None else 'unknown'}\n"
                f"Elapsed: {outcome.elapsed_ms}ms{note}",
                title="Document",
            )
        )
        if not handle.is_local:
            typer.echo(handle.url)
        return

    if isinstance(outcome, Exhausted):
        console.print(f"[red]✗ {get_actionable_error_message(outcome.last_error)}[/red]")
        if outcome.last_error is not None:
            console.print(f"[dim]{outcome.reason}: {outcome.last_error.kind.value}: {outcome.last_error}[/dim]")
    else:
        console.print("[yellow]Cancelled[/yellow]")
    raise typer.Exit(code=1)


@app.command()
def chat(
    message: str = typer.Argument(..., help="Message to send"),
    config: Optional[str] = CONFIG_OPTION,
    user_id: Optional[str] = typer.Option(None, "--user-id", help="Conversation id"),
    image: Optional[Path] = typer.Option(None, "--image", help="Attach an image (jpg/png/webp)"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Ask the study assistant a question."""
    _setup_logging(verbose)

    try:
        cfg = load_config(path=config)
        attachment = None
        if image is not None:
            suffix = image.suffix.lower().lstrip(".")
            mime_type = {"jpg": "image/jpeg", "jpeg": "image/jpeg", "png": "image/png", "webp": "image/webp"}.get(
                suffix, f"application/{suffix or 'octet-stream'}"
            )
            attachment = (mime_type, image.read_bytes())

        async def _run() -> Any:
            async with build_async_client(cfg.http) as client:
                service = ChatService(
                    cfg,
                    GeminiBackend(cfg.chat, client),
                    build_conversation_store(cfg.storage),
                    telemetry=_telemetry(cfg, None),
                )
                return await service.reply(message, user_id, attachment)

        reply = asyncio.run(_run())
    except AcquisitionError as e:
        console.print(f"[red]✗ {get_actionable_error_message(e)}[/red]")
        raise typer.Exit(code=1)
    except Exception as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        if verbose:
            raise
        raise typer.Exit(code=1)

    if verbose:
        console.print(_attempt_table("Chat strategies", reply.attempts))
    console.print(Panel(reply.response, title=f"Assistant ({reply.strategy})", expand=False))
    console.print(f"[dim]userId: {reply.user_id}[/dim]")


@app.command()
def plan(
    config: Optional[str] = CONFIG_OPTION,
    profile: Optional[str] = typer.Option(None, "--profile", help="Tuning profile (fast/reliable)"),
    raw: bool = typer.Option(False, "--raw", help="Raw JSON"),
) -> None:
    """Show the effective fallback plans."""
    try:
        cfg = load_config(path=config)
        plans = {
            "documents": build_sequence_plan(cfg.fallback.documents, profile=profile),
            "chat": build_sequence_plan(cfg.fallback.chat, profile=profile),
        }
    except Exception as e:
        console.print(f"[red]✗ Error: {e}[/red]")
        raise typer.Exit(code=1)

    if raw:
        data = {
            name: {
                "strategy_order": list(p.strategy_order),
                "policies": {
                    n: {"timeout_ms": pol.timeout_ms, "retries_max": pol.retries_max}
                    for n, pol in p.policies.items()
                },
                "total_timeout_ms": p.total_timeout_ms,
                "halt_on": sorted(k.value for k in p.halt_on),
            }
            for name, p in plans.items()
        }
        typer.echo(json.dumps(data, indent=2))
        return

    for name, p in plans.items():
        table = Table(title=f"{name} plan (budget {p.total_timeout_ms or 'unlimited'}ms)")
        table.add_column("Order", style="cyan")
        table.add_column("Strategy", style="green")
        table.add_column("Timeout (ms)", justify="right")
        table.add_column("Retries", justify="right")
        for idx, strategy_name in enumerate(p.strategy_order, 1):
            policy = p.get_policy(strategy_name)
            table.add_row(str(idx), strategy_name, str(policy.timeout_ms), str(policy.retries_max))
        console.print(table)
        if p.halt_on:
            console.print(f"[cyan]Halts on: {', '.join(sorted(k.value for k in p.halt_on))}[/cyan]")


@app.command()
def viewer_url(
    url: str = typer.Argument(..., help="Document URL"),
    viewer: str = typer.Option("google", "--viewer", help="google or pdfjs"),
    config: Optional[str] = CONFIG_OPTION,
) -> None:
    """Print the hosted-viewer URL for a document."""
    cfg = load_config(path=config)
    if viewer == "google":
        typer.echo(google_viewer_url(url, cfg.viewers.google_docs_url))
    elif viewer == "pdfjs":
        typer.echo(pdfjs_viewer_url(url, cfg.viewers.pdfjs_url))
    else:
        console.print(f"[red]✗ Unknown viewer: {viewer}[/red]")
        raise typer.Exit(code=1)


@app.command()
def serve(
    config: Optional[str] = CONFIG_OPTION,
    host: Optional[str] = typer.Option(None, "--host", help="Bind host"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Verbose"),
) -> None:
    """Run the HTTP service (document proxy, chat, flashcards)."""
    import uvicorn

    from StudyShelf.service import create_app

    _setup_logging(verbose)
    overrides: Dict[str, Any] = {"service": {}}
    if host:
        overrides["service"]["host"] = host
    if port:
        overrides["service"]["port"] = port
    cfg = load_config(path=config, cli_overrides=overrides)
    console.print(
        Panel(
            f"[bold green]✓ Config loaded[/bold green]\n"
            f"Hash: {cfg.config_hash()[:8]}...\n"
            f"Listening on http://{cfg.service.host}:{cfg.service.port}",
            title="StudyShelf",
        )
    )
    uvicorn.run(create_app(cfg), host=cfg.service.host, port=cfg.service.port)


@app.command()
def schema(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Save schema to file"),
) -> None:
    """Export JSON Schema for StudyShelfConfig."""
    schema_data = export_config_schema()
    if output:
        output.write_text(json.dumps(schema_data, indent=2))
        console.print(f"[green]✓ Schema written to {output}[/green]")
    else:
        console.print(Panel(json.dumps(schema_data, indent=2), title="JSON Schema", expand=False))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
