"""Scanner execution and output parsing.

- ProcessRunner: Spawns the scanner binary and streams its output
- OutputParser: Turns the noisy stdout stream into findings
- ScanPipeline: Resolve -> run -> parse for one workspace
"""

from leakwatch.scanner.base import Finding, RawScanResult, ScanOutcome
from leakwatch.scanner.parser import OutputParser, normalize_file_path, sanitize_line
from leakwatch.scanner.pipeline import ScanPipeline, scan_workspace
from leakwatch.scanner.runner import ProcessRunner

__all__ = [
    "Finding",
    "OutputParser",
    "ProcessRunner",
    "RawScanResult",
    "ScanOutcome",
    "ScanPipeline",
    "normalize_file_path",
    "sanitize_line",
    "scan_workspace",
]
