"""Supervise the secret_scanner binary and decode its findings.

leakwatch helps you:
- Locate the scanner on PATH, in global install locations or in a verified cache
- Download it with SHA-256 verification when it is missing
- Run it against a workspace and parse its noisy output into typed findings
- Render findings as editor diagnostics, JSON or a terminal report
"""

__version__ = "0.1.0"

from leakwatch.binary import BinaryOrigin, BinaryProvisioner, BinaryResolver, ResolvedBinary
from leakwatch.config import ScannerSettings, load_config
from leakwatch.scanner import Finding, OutputParser, ScanOutcome, ScanPipeline, scan_workspace

__all__ = [
    "BinaryOrigin",
    "BinaryProvisioner",
    "BinaryResolver",
    "Finding",
    "OutputParser",
    "ResolvedBinary",
    "ScanOutcome",
    "ScanPipeline",
    "ScannerSettings",
    "__version__",
    "load_config",
    "scan_workspace",
]
