"""Render scan outcomes for people and for editors.

- to_diagnostics: zero-based, per-file diagnostics for inline display
- format_json: machine-readable outcome
- format_rich: terminal report
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from rich.markup import escape
from rich.table import Table

from leakwatch.scanner.base import Finding, ScanOutcome

if TYPE_CHECKING:
    from rich.console import Console

DIAGNOSTIC_CODE = "secret-detected"
DIAGNOSTIC_SOURCE = "Secret Scanner"


@dataclass(frozen=True)
class Diagnostic:
    """An editor diagnostic covering one whole line.

    ``start_line`` is zero-based and never negative.
    """

    file: str
    start_line: int
    end_line: int
    message: str
    severity: str = "error"
    code: str = DIAGNOSTIC_CODE
    source: str = DIAGNOSTIC_SOURCE


def finding_message(finding: Finding) -> str:
    """Diagnostic text for a finding."""
    return f'Potential secret detected: {finding.kind} - "{finding.matched_text}"'


def to_diagnostic(finding: Finding) -> Diagnostic:
    """Convert a 1-based finding into a zero-based whole-line diagnostic."""
    line = max(0, finding.line - 1)
    return Diagnostic(
        file=finding.file,
        start_line=line,
        end_line=line,
        message=finding_message(finding),
    )


def to_diagnostics(findings: list[Finding] | tuple[Finding, ...]) -> dict[str, list[Diagnostic]]:
    """Group diagnostics by workspace-relative file, preserving stream order."""
    grouped: dict[str, list[Diagnostic]] = {}
    for finding in findings:
        path = finding.file[2:] if finding.file.startswith("./") else finding.file
        grouped.setdefault(path, []).append(to_diagnostic(finding))
    return grouped


def format_json(outcome: ScanOutcome) -> str:
    """Serialize an outcome (findings, diagnostics and exit code) as JSON."""
    payload = {
        "exit_code": outcome.exit_code,
        "total_findings": len(outcome.findings),
        "binary": (
            {
                "path": str(outcome.binary.executable_path),
                "origin": outcome.binary.origin.value,
            }
            if outcome.binary
            else None
        ),
        "duration_ms": outcome.duration_ms,
        "findings": [finding.model_dump() for finding in outcome.findings],
        "diagnostics": {
            path: [asdict(d) for d in diagnostics]
            for path, diagnostics in to_diagnostics(outcome.findings).items()
        },
        "unparseable_lines": list(outcome.unparseable_lines),
    }
    return json.dumps(payload, indent=2)


def format_rich(outcome: ScanOutcome, console: Console) -> None:
    """Print a human-readable report of an outcome."""
    if not outcome.findings:
        console.print("[green]No secrets detected in your workspace[/green]")
        return

    count = len(outcome.findings)
    console.print()
    console.print("[bold red]SECURITY ISSUES DETECTED:[/bold red]")

    table = Table(show_header=True, header_style="bold", expand=False)
    table.add_column("File")
    table.add_column("Line", justify="right")
    table.add_column("Type", style="yellow")
    table.add_column("Match", overflow="fold")

    for finding in outcome.findings:
        table.add_row(
            escape(finding.file),
            str(finding.line),
            escape(finding.kind),
            escape(finding.matched_text),
        )
    console.print(table)

    console.print(
        f"[bold]Found {count} potential secret{'' if count == 1 else 's'}"
        f" in {len(outcome.files_affected)} file(s)[/bold]"
    )
    console.print()
    console.print(
        "[bold yellow]ACTION REQUIRED:[/bold yellow] Please review and secure the detected secrets"
    )
