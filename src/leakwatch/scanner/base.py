"""Result types shared by the runner, the parser and the pipeline."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from leakwatch.binary.base import ResolvedBinary


class Finding(BaseModel):
    """One secret-like match reported by the scanner.

    Attributes:
        file: Workspace-relative path with ``/`` separators, no leading ``./``.
        line: 1-based line number exactly as reported by the scanner.
        kind: Detector or category name (the wire ``type`` field).
        matched_text: Raw matched substring; may contain quotes.
    """

    model_config = ConfigDict(frozen=True)

    file: str
    line: int = Field(ge=1)
    kind: str
    matched_text: str

    def __str__(self) -> str:
        return f"{self.file}:{self.line} {self.kind}"


@dataclass(frozen=True)
class RawScanResult:
    """What the scanner process produced, before interpretation."""

    exit_code: int
    stdout_text: str
    stderr_text: str
    duration_ms: int = 0

    @property
    def secrets_reported(self) -> bool:
        """Exit code 1 is the scanner's way of saying "secrets found"."""
        return self.exit_code == 1


@dataclass(frozen=True)
class ScanOutcome:
    """Everything one scan produced; owned by the caller.

    Attributes:
        findings: Findings in stream order, duplicates kept.
        raw_output: Concatenated, unmodified stdout.
        exit_code: Scanner exit code (0 or 1).
        diagnostic_text: Operator-relevant log lines that survived filtering.
        stderr_text: Sanitized stderr.
        binary: The binary that ran.
        duration_ms: Wall time of the scanner process.
        unparseable_lines: Candidate lines neither parser could decode.
    """

    findings: tuple[Finding, ...]
    raw_output: str
    exit_code: int
    diagnostic_text: tuple[str, ...] = ()
    stderr_text: str = ""
    binary: ResolvedBinary | None = None
    duration_ms: int = 0
    unparseable_lines: tuple[str, ...] = ()

    @property
    def has_findings(self) -> bool:
        return bool(self.findings)

    @property
    def files_affected(self) -> list[str]:
        """Distinct files with findings, in first-seen order."""
        return list(dict.fromkeys(f.file for f in self.findings))
