"""CLI entry point for termwise."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import signal
import sys
import uuid
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from termwise import __version__
from termwise.config import TermwiseConfig
from termwise.doctor import AnalysisResult, ErrorDoctorService
from termwise.errors import SpawnError
from termwise.memory import ErrorPatternMemory
from termwise.pty import SessionManager
from termwise.session.wire import EventType, Wire

app = typer.Typer(
    name="termwise",
    help="Terminal sessions that learn which fixes solve which errors.",
    no_args_is_help=True,
)

console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    for noisy in ("litellm", "LiteLLM", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def setup_file_logging(path: Path, verbose: bool = False) -> None:
    """Route logs to ``path`` instead of stderr, which would corrupt the raw terminal."""
    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S")
    )
    root.addHandler(handler)
    for noisy in ("litellm", "LiteLLM", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# probe
# ---------------------------------------------------------------------------


@app.command()
def probe(
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Show terminal capabilities and error doctor status as JSON."""
    config = TermwiseConfig.load(config_file)
    manager = SessionManager(config.terminal)
    doctor = ErrorDoctorService(config.doctor)
    report = {
        "version": __version__,
        "terminal": manager.probe_capabilities(),
        "doctor": doctor.status(),
        "memory_path": os.path.expanduser(config.memory.data_path),
    }
    typer.echo(json.dumps(report, indent=2))


# ---------------------------------------------------------------------------
# shell
# ---------------------------------------------------------------------------


@app.command()
def shell(
    cwd: str | None = typer.Option(None, "--cwd", "-d", help="Working directory."),
    demo: bool = typer.Option(False, "--demo", help="Use the simulated terminal."),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging (written to termwise.log)."
    ),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Open an interactive terminal session that learns from your errors."""
    config = TermwiseConfig.load(config_file)
    # The relayed terminal runs in raw mode: keep log records off stderr
    setup_file_logging(_log_path(config), verbose)
    if demo:
        config.terminal.force_demo = True
    if not sys.stdin.isatty():
        typer.echo("Error: termwise shell needs an interactive terminal.", err=True)
        raise typer.Exit(1)

    try:
        exit_code = asyncio.run(_run_shell(config, cwd))
    except SpawnError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    raise typer.Exit(exit_code)


def _log_path(config: TermwiseConfig) -> Path:
    return Path(os.path.expanduser(config.memory.data_path)).parent / "termwise.log"


async def _run_shell(config: TermwiseConfig, cwd: str | None) -> int:
    """Relay the local terminal to one managed session until it exits."""
    import termios
    import tty

    memory = ErrorPatternMemory(config.memory)
    await memory.load()
    manager = SessionManager(config.terminal, memory=memory)
    wire = Wire()
    queue = wire.subscribe()
    session_id = f"cli-{uuid.uuid4().hex[:8]}"
    cols, rows = shutil.get_terminal_size()

    loop = asyncio.get_running_loop()
    stdin_fd = sys.stdin.fileno()
    saved_attrs = termios.tcgetattr(stdin_fd)

    await manager.create(session_id, cols=cols, rows=rows, cwd=cwd, wire=wire)

    def _on_stdin() -> None:
        data = os.read(stdin_fd, 1024)
        if data:
            manager.write(session_id, data.decode("utf-8", errors="replace"))

    def _on_winch() -> None:
        size = shutil.get_terminal_size()
        manager.resize(session_id, size.columns, size.lines)

    exit_code = 0
    tty.setraw(stdin_fd)
    loop.add_reader(stdin_fd, _on_stdin)
    loop.add_signal_handler(signal.SIGWINCH, _on_winch)
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            if event.type == EventType.DATA:
                sys.stdout.write(event.data["chunk"])
                sys.stdout.flush()
            elif event.type == EventType.SUGGESTION:
                d = event.data
                console.print(
                    f"\r\n[bold cyan]termwise[/] learned fix "
                    f"([green]{d['confidence']:.0%}[/] confidence, {escape(d['category'])}):\r\n"
                    f"  {escape(d['fix'])}\r"
                )
            elif event.type == EventType.ERROR:
                console.print(f"\r\n[red]{escape(event.data.get('message', ''))}[/]\r")
            elif event.type == EventType.EXIT:
                exit_code = event.data.get("exit_code") or 0
                break
    finally:
        loop.remove_reader(stdin_fd)
        loop.remove_signal_handler(signal.SIGWINCH)
        termios.tcsetattr(stdin_fd, termios.TCSADRAIN, saved_attrs)
        await manager.cleanup()

    return exit_code


# ---------------------------------------------------------------------------
# doctor
# ---------------------------------------------------------------------------


@app.command()
def doctor(
    error_text: str = typer.Argument(help="The error message to analyze ('-' reads stdin)."),
    cwd: str = typer.Option(".", "--cwd", "-d", help="Project directory for context."),
    error_type: str = typer.Option("unknown", "--type", "-t", help="Error type label."),
    file_path: str | None = typer.Option(None, "--file", help="File the error points at."),
    line_number: int | None = typer.Option(None, "--line", help="Line number of the error."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Suggest fixes for an error message."""
    setup_logging(verbose)
    config = TermwiseConfig.load(config_file)
    if error_text == "-":
        error_text = sys.stdin.read()

    service = ErrorDoctorService(config.doctor)
    result = asyncio.run(
        _run_doctor(service, error_text, error_type, os.path.abspath(cwd), file_path, line_number)
    )

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_analysis(result)
    if not result.success:
        raise typer.Exit(1)


async def _run_doctor(
    service: ErrorDoctorService,
    error_text: str,
    error_type: str,
    cwd: str,
    file_path: str | None,
    line_number: int | None,
) -> AnalysisResult:
    context = await service.get_error_context(cwd)
    return await service.analyze(
        error_text,
        error_type=error_type,
        context=context,
        file_path=file_path,
        line_number=line_number,
    )


def _print_analysis(result: AnalysisResult) -> None:
    out = Console()
    if not result.success and not result.fixes:
        out.print(f"[red]{escape(result.error or 'No fix found')}[/]")
        return
    header = f"source: {result.source}"
    if result.confidence:
        header += f"  confidence: {result.confidence}"
    if result.explanation:
        out.print(Panel(escape(result.explanation), title=header))
    else:
        out.print(f"[dim]{header}[/]")
    for i, fix in enumerate(result.fixes, 1):
        out.print(f"[bold]{i}. {escape(fix.title)}[/] [dim]({fix.confidence})[/]")
        if fix.description:
            out.print(f"   {escape(fix.description)}")
        if fix.command:
            out.print(f"   [green]$ {escape(fix.command)}[/]")


# ---------------------------------------------------------------------------
# patterns
# ---------------------------------------------------------------------------


@app.command()
def patterns(
    metrics: bool = typer.Option(False, "--metrics", help="Also show memory metrics."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """List the error patterns learned so far."""
    config = TermwiseConfig.load(config_file)
    memory = ErrorPatternMemory(config.memory)
    asyncio.run(memory.load())

    table = Table(title=f"Learned error patterns ({config.memory.data_path})")
    table.add_column("Category", style="cyan")
    table.add_column("Signature")
    table.add_column("Matches", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Best fix", style="green")
    ranked = sorted(memory.patterns(), key=lambda p: (p.confidence, p.match_count), reverse=True)
    for pattern in ranked:
        best = pattern.best_solution
        table.add_row(
            pattern.category,
            escape(pattern.signature[:80]),
            str(pattern.match_count),
            f"{pattern.confidence:.2f}",
            escape(best.fix_text.split("\n")[0][:60]) if best else "",
        )
    out = Console()
    out.print(table)
    if metrics:
        out.print_json(data=memory.get_metrics())


if __name__ == "__main__":
    app()
