"""Decode the scanner's stdout into findings.

The scanner writes interactive terminal decoration (colors, box drawing,
spinners) and machine-readable finding records to the same stream, one
record per line:

    {"file":"./src/a.py","line":10,"type":"api_key","match":"sk-123"}

The ``match`` value is not quote-escaped by the scanner, so each candidate
line goes through:

1. A repair pass that escapes embedded quotes in ``match``
2. Strict JSON decoding of the repaired (then the original) line
3. Per-field regex extraction when decoding fails

A finding is only emitted when all four fields are recovered; anything less
is logged as unparseable and dropped without affecting other lines.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from leakwatch.errors import ParseRecoveryFailure
from leakwatch.scanner.base import Finding

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")
BOX_DRAWING_PATTERN = re.compile(r"[\u2500-\u257f]")
SPINNER_PATTERN = re.compile(r"[⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏]")

# "match":"<content holding at least two unescaped quotes>"
MATCH_REPAIR_PATTERN = re.compile(r'"match":"([^"]*"[^"]*"[^"]*)"')

FILE_FIELD_PATTERN = re.compile(r'"file":"([^"]+)"')
LINE_FIELD_PATTERN = re.compile(r'"line":(\d+)')
TYPE_FIELD_PATTERN = re.compile(r'"type":"([^"]+)"')
MATCH_FIELD_PATTERN = re.compile(r'"match":"(.+)"}')

# Banner, section headers and summary boilerplate printed by the scanner
NOISE_MARKERS: tuple[str, ...] = (
    "SECRET SCANNER",
    "Advanced Security Code Analysis Tool",
    "Input:",
    "Resolved to:",
    "Scanning directory:",
    "Analyzing project structure...",
    "SCAN RESULTS",
    "Scanning files...",
    "Secrets found:",
    "progress:",
    "Files scanned:",
    "SECURITY ISSUES DETECTED:",
    "ACTION REQUIRED:",
    "Scan completed successfully!",
)
NOISE_MARKERS_CASELESS: tuple[str, ...] = ("summary:", "clean scan:")
MIN_LOG_LINE_LENGTH = 3


class _WireRecord(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    file: str
    line: int = Field(ge=1)
    type: str
    match: str


def sanitize_line(line: str) -> str:
    """Strip ANSI colors, box drawing, spinner glyphs and carriage returns."""
    line = ANSI_PATTERN.sub("", line)
    line = BOX_DRAWING_PATTERN.sub("", line)
    line = SPINNER_PATTERN.sub("", line)
    return line.replace("\r", "").strip()


def is_candidate(line: str) -> bool:
    """Cheap structural test for a finding record (on a sanitized line)."""
    return line.startswith("{") and '"file"' in line


def is_noise(line: str) -> bool:
    """Return True for sanitized non-record lines that should not be shown."""
    if len(line) < MIN_LOG_LINE_LENGTH:
        return True
    if any(marker in line for marker in NOISE_MARKERS):
        return True
    lowered = line.lower()
    return any(marker in lowered for marker in NOISE_MARKERS_CASELESS)


def repair_match_quotes(line: str) -> str:
    """Escape the unescaped double quotes inside a ``match`` value."""
    return MATCH_REPAIR_PATTERN.sub(
        lambda m: '"match":"' + m.group(1).replace('"', '\\"') + '"',
        line,
    )


def normalize_file_path(file_path: str, workspace_root: Path | str) -> str:
    """
    Express a reported path relative to the workspace root.

    Relative inputs are resolved against the root first. The result uses
    ``/`` separators and never starts with ``./``.
    """
    root = os.path.abspath(workspace_root)
    absolute = file_path if os.path.isabs(file_path) else os.path.join(root, file_path)

    try:
        relative = os.path.relpath(os.path.normpath(absolute), root)
    except ValueError:
        # Different drive on Windows; no relative form exists.
        relative = os.path.normpath(absolute)

    relative = relative.replace("\\", "/")
    if relative.startswith("./"):
        relative = relative[2:]
    return relative


def _decode_record(line: str) -> _WireRecord | None:
    for text in dict.fromkeys((repair_match_quotes(line), line)):
        try:
            return _WireRecord.model_validate_json(text)
        except ValidationError:
            continue
    return None


def _match_fields(line: str) -> _WireRecord | None:
    file_match = FILE_FIELD_PATTERN.search(line)
    line_match = LINE_FIELD_PATTERN.search(line)
    type_match = TYPE_FIELD_PATTERN.search(line)
    match_match = MATCH_FIELD_PATTERN.search(line)

    if not (file_match and line_match and type_match and match_match):
        return None

    try:
        return _WireRecord(
            file=file_match.group(1),
            line=int(line_match.group(1)),
            type=type_match.group(1),
            match=match_match.group(1),
        )
    except ValidationError:
        return None


class OutputParser:
    """Incremental parser for one scan's stdout.

    Chunks may split lines anywhere; ``feed`` only processes complete lines
    and ``close`` flushes the remainder.

    Example:
        parser = OutputParser(workspace_root, log=print)
        for chunk in chunks:
            parser.feed(chunk)
        parser.close()
        print(parser.findings)
    """

    def __init__(
        self,
        workspace_root: Path | str,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self.workspace_root = Path(workspace_root)
        self.log = log or (lambda x: None)
        self.findings: list[Finding] = []
        self.log_lines: list[str] = []
        self.failures: list[ParseRecoveryFailure] = []
        self._chunks: list[str] = []
        self._pending: list[str] = []

    @property
    def raw_output(self) -> str:
        """Everything fed so far, unmodified."""
        return "".join(self._chunks)

    def feed(self, chunk: str) -> list[Finding]:
        """
        Consume a chunk of stdout.

        Returns:
            Findings completed by this chunk.
        """
        self._chunks.append(chunk)
        *lines, tail = chunk.split("\n")
        if not lines:
            self._pending.append(tail)
            return []

        # Pending pieces complete the first line of this chunk.
        lines[0] = "".join(self._pending) + lines[0]
        self._pending = [tail] if tail else []

        new_findings: list[Finding] = []
        for line in lines:
            finding = self.parse_line(line)
            if finding is not None:
                new_findings.append(finding)
        return new_findings

    def close(self) -> list[Finding]:
        """Process a trailing line that had no newline."""
        line = "".join(self._pending)
        self._pending = []
        if not line:
            return []
        finding = self.parse_line(line)
        return [finding] if finding is not None else []

    def parse_line(self, line: str) -> Finding | None:
        """
        Handle one raw line: record it as a finding, a log line, or nothing.

        Returns:
            The Finding if the line was a decodable record, else None.
        """
        clean = sanitize_line(line)
        if not clean:
            return None

        if not is_candidate(clean):
            if not is_noise(clean):
                self.log_lines.append(clean)
                self.log(clean)
            return None

        finding = self.extract_finding(clean)
        if finding is None:
            failure = ParseRecoveryFailure(clean)
            self.failures.append(failure)
            logger.debug("Unparseable finding record: %r", clean)
            self.log(str(failure))
            return None

        self.findings.append(finding)
        self.log(f"Found {finding.kind} in {finding.file}:{finding.line}")
        return finding

    def extract_finding(self, line: str) -> Finding | None:
        """Decode a sanitized candidate line, falling back to field patterns."""
        record = _decode_record(line)
        if record is None:
            logger.debug("Strict decode failed, trying field patterns: %r", line)
            record = _match_fields(line)
        if record is None:
            return None

        return Finding(
            file=normalize_file_path(record.file, self.workspace_root),
            line=record.line,
            kind=record.type,
            matched_text=record.match,
        )


def parse_output(
    text: str,
    workspace_root: Path | str,
    log: Callable[[str], None] | None = None,
) -> OutputParser:
    """Parse a complete stdout capture and return the finished parser."""
    parser = OutputParser(workspace_root, log=log)
    parser.feed(text)
    parser.close()
    return parser
