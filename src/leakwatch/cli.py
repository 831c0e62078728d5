"""Command-line interface for leakwatch."""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Optional

import typer
from pydantic import ValidationError
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)

from leakwatch.binary.platforms import get_descriptor
from leakwatch.binary.provisioner import BinaryProvisioner, format_progress
from leakwatch.binary.resolver import BinaryResolver, LocalCacheStrategy
from leakwatch.config import ConfigNotFoundError, ScannerSettings, load_config
from leakwatch.errors import LeakwatchError, PlatformUnsupportedError
from leakwatch.output.rich import (
    console,
    err_console,
    print_error,
    print_success,
    print_warning,
)
from leakwatch.scanner.output import format_json, format_rich
from leakwatch.scanner.pipeline import ScanPipeline

app = typer.Typer(
    name="leakwatch",
    help="Locate, verify and run the secret_scanner binary and report its findings.",
    no_args_is_help=True,
)

EXIT_FINDINGS = 1
EXIT_ERROR = 2

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to leakwatch.toml or pyproject.toml (auto-detected if not specified)",
    ),
]
VerboseOption = Annotated[
    bool, typer.Option("--verbose", "-v", help="Show debug logging")
]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load_settings(config_file: Path | None, **overrides: object) -> ScannerSettings:
    try:
        return load_config(config_file, **overrides)
    except ConfigNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(code=EXIT_ERROR) from None
    except tomllib.TOMLDecodeError as e:
        print_error(f"TOML syntax error in config: {e}")
        raise typer.Exit(code=EXIT_ERROR) from None
    except ValidationError as e:
        print_error(f"Invalid configuration: {e}")
        raise typer.Exit(code=EXIT_ERROR) from None


def _console_log(line: str) -> None:
    console.print(escape(line), highlight=False)


@contextmanager
def _download_progress() -> Iterator[Callable[[int, int], None]]:
    """Yield a progress callback backed by a rich progress bar on stderr.

    An unknown total (no Content-Length) shows an indeterminate bar.
    """
    progress = Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=err_console,
        transient=True,
        redirect_stdout=False,
    )
    task_id = None

    def update(downloaded: int, total: int) -> None:
        nonlocal task_id
        if task_id is None:
            task_id = progress.add_task("Downloading scanner", total=total or None)
        progress.update(
            task_id,
            completed=downloaded,
            total=total or None,
            description=format_progress(downloaded, total),
        )

    with progress:
        yield update


def _report_platform_unsupported(error: PlatformUnsupportedError) -> None:
    print_error(str(error))
    console.print(f"Releases: [link={error.releases_url}]{error.releases_url}[/link]")


@app.command()
def scan(
    workspace: Annotated[
        Path, typer.Argument(help="Workspace folder to scan (default: current directory)")
    ] = Path("."),
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output findings and diagnostics as JSON")
    ] = False,
    auto_install: Annotated[
        Optional[bool],
        typer.Option(
            "--auto-install/--no-auto-install",
            help="Download the scanner if it is not installed",
        ),
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", "-t", help="Kill the scanner after this many seconds"),
    ] = None,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Scan a workspace for secrets.

    \b
    Exit codes:
      0 - No secrets found
      1 - Secrets found
      2 - The scan could not be completed

    \b
    Examples:
      leakwatch scan                    # Scan the current directory
      leakwatch scan ./project --json   # JSON output for editors and CI
      leakwatch scan --no-auto-install  # Never download the scanner
    """
    _configure_logging(verbose)

    if not workspace.is_dir():
        print_error(f"Workspace folder not found: {workspace}")
        raise typer.Exit(code=EXIT_ERROR)

    settings = _load_settings(config_file, auto_install=auto_install, scan_timeout=timeout)
    log = (lambda line: None) if json_output else _console_log
    pipeline = ScanPipeline(settings)

    try:
        with _download_progress() as on_progress:
            outcome = pipeline.scan(workspace, log=log, progress_callback=on_progress)
    except PlatformUnsupportedError as e:
        _report_platform_unsupported(e)
        raise typer.Exit(code=EXIT_ERROR) from None
    except LeakwatchError as e:
        print_error(f"Secret Scanner failed: {e}")
        raise typer.Exit(code=EXIT_ERROR) from None

    if json_output:
        print(format_json(outcome))
    else:
        format_rich(outcome, console)
        if outcome.unparseable_lines:
            print_warning(
                f"{len(outcome.unparseable_lines)} finding record(s) could not be parsed"
            )

    if outcome.findings:
        raise typer.Exit(code=EXIT_FINDINGS)


@app.command()
def install(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Download even if a verified copy exists")
    ] = False,
    retries: Annotated[
        Optional[int],
        typer.Option("--retries", min=0, help="Extra download attempts after a failure"),
    ] = None,
    global_install: Annotated[
        Optional[bool],
        typer.Option(
            "--global/--no-global",
            help="Also copy the binary into the user-global bin directory",
        ),
    ] = None,
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Download and verify the scanner binary."""
    _configure_logging(verbose)
    settings = _load_settings(
        config_file, download_retries=retries, install_globally=global_install
    )

    if not force:
        cached = LocalCacheStrategy(settings.cache_path, get_descriptor()).locate()
        if cached is not None:
            print_success(f"Scanner already installed and verified: {cached.executable_path}")
            return

    try:
        with _download_progress() as on_progress:
            binary = BinaryProvisioner(
                settings, log=_console_log, progress_callback=on_progress
            ).provision()
    except PlatformUnsupportedError as e:
        _report_platform_unsupported(e)
        raise typer.Exit(code=EXIT_ERROR) from None
    except LeakwatchError as e:
        print_error(f"Failed to download scanner: {e}")
        raise typer.Exit(code=EXIT_ERROR) from None

    print_success(f"Secret Scanner binary downloaded and ready to use: {binary.executable_path}")


@app.command()
def locate(
    config_file: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Show which scanner binary would be used, without downloading."""
    _configure_logging(verbose)
    settings = _load_settings(config_file)

    try:
        binary = BinaryResolver.from_settings(settings, allow_download=False).resolve()
    except PlatformUnsupportedError as e:
        _report_platform_unsupported(e)
        raise typer.Exit(code=EXIT_ERROR) from None
    except LeakwatchError as e:
        print_error(str(e))
        raise typer.Exit(code=EXIT_FINDINGS) from None

    console.print(f"{escape(str(binary.executable_path))} [dim]({binary.origin.value})[/dim]")


@app.command()
def version() -> None:
    """Show leakwatch version."""
    from leakwatch import __version__

    console.print(f"leakwatch [bold green]{__version__}[/bold green]")


if __name__ == "__main__":
    app()
