"""Tests for diagnostics and report rendering."""

from __future__ import annotations

import json
from pathlib import Path

from rich.console import Console

from leakwatch.binary.base import BinaryOrigin, ResolvedBinary
from leakwatch.scanner.base import Finding, ScanOutcome
from leakwatch.scanner.output import (
    Diagnostic,
    finding_message,
    format_json,
    format_rich,
    to_diagnostic,
    to_diagnostics,
)


def _finding(file: str = "src/a.py", line: int = 10, kind: str = "api_key", match: str = "sk-123"):
    return Finding(file=file, line=line, kind=kind, matched_text=match)


class TestDiagnostics:
    """Tests for finding to diagnostic conversion."""

    def test_line_becomes_zero_based(self):
        """Test that reported line 10 maps to diagnostic line 9."""
        diagnostic = to_diagnostic(_finding(line=10))
        assert diagnostic.start_line == 9
        assert diagnostic.end_line == 9

    def test_first_line(self):
        """Test that line 1 maps to line 0, never negative."""
        assert to_diagnostic(_finding(line=1)).start_line == 0

    def test_message_and_metadata(self):
        """Test the diagnostic message, severity, code and source."""
        diagnostic = to_diagnostic(_finding(kind="password", match='key="abc"'))
        assert diagnostic.message == 'Potential secret detected: password - "key="abc""'
        assert diagnostic.severity == "error"
        assert diagnostic.code == "secret-detected"
        assert diagnostic.source == "Secret Scanner"

    def test_grouped_by_file_in_order(self):
        """Test that diagnostics are grouped per file, stream order kept."""
        findings = [
            _finding(file="a.py", line=3),
            _finding(file="b.py", line=1),
            _finding(file="a.py", line=1),
        ]
        grouped = to_diagnostics(findings)
        assert list(grouped) == ["a.py", "b.py"]
        assert [d.start_line for d in grouped["a.py"]] == [2, 0]

    def test_leading_dot_slash_removed(self):
        """Test that a stray ./ prefix is stripped when grouping."""
        grouped = to_diagnostics([_finding(file="./a.py")])
        assert list(grouped) == ["a.py"]

    def test_finding_message(self):
        """Test the human-readable finding text."""
        assert finding_message(_finding()) == 'Potential secret detected: api_key - "sk-123"'

    def test_diagnostic_is_immutable(self):
        """Test that diagnostics cannot be mutated after creation."""
        diagnostic = Diagnostic("a.py", 0, 0, "msg")
        try:
            diagnostic.start_line = 5  # type: ignore[misc]
        except AttributeError:
            pass
        assert diagnostic.start_line == 0


class TestFormatJson:
    """Tests for JSON output."""

    def test_payload(self):
        """Test the structure of the JSON document."""
        outcome = ScanOutcome(
            findings=(_finding(),),
            raw_output="",
            exit_code=1,
            binary=ResolvedBinary(Path("/usr/bin/secret_scanner"), BinaryOrigin.GLOBAL_INSTALL),
            duration_ms=42,
            unparseable_lines=('{"file":"x"',),
        )

        payload = json.loads(format_json(outcome))

        assert payload["exit_code"] == 1
        assert payload["total_findings"] == 1
        assert payload["binary"] == {"path": "/usr/bin/secret_scanner", "origin": "GlobalInstall"}
        assert payload["duration_ms"] == 42
        assert payload["findings"] == [
            {"file": "src/a.py", "line": 10, "kind": "api_key", "matched_text": "sk-123"}
        ]
        assert payload["diagnostics"]["src/a.py"][0]["start_line"] == 9
        assert payload["unparseable_lines"] == ['{"file":"x"']

    def test_clean_outcome(self):
        """Test JSON for a scan without findings or binary info."""
        payload = json.loads(format_json(ScanOutcome(findings=(), raw_output="", exit_code=0)))
        assert payload["total_findings"] == 0
        assert payload["binary"] is None
        assert payload["diagnostics"] == {}


class TestFormatRich:
    """Tests for the terminal report."""

    def _render(self, outcome: ScanOutcome) -> str:
        console = Console(record=True, width=200, force_terminal=False)
        format_rich(outcome, console)
        return console.export_text()

    def test_clean_report(self):
        """Test the message for a clean workspace."""
        text = self._render(ScanOutcome(findings=(), raw_output="", exit_code=0))
        assert "No secrets detected in your workspace" in text

    def test_findings_report(self):
        """Test that each finding and the totals are shown."""
        outcome = ScanOutcome(
            findings=(
                _finding(file="src/a.py", line=10),
                _finding(file="src/b.py", line=2, kind="password", match="[secret]"),
            ),
            raw_output="",
            exit_code=1,
        )

        text = self._render(outcome)

        assert "SECURITY ISSUES DETECTED" in text
        assert "src/a.py" in text
        assert "src/b.py" in text
        assert "[secret]" in text
        assert "Found 2 potential secrets in 2 file(s)" in text
        assert "ACTION REQUIRED" in text
