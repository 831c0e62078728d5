"""Scan pipeline - resolve the binary, run it, parse what it prints.

The ScanPipeline is responsible for:
- Resolving (and if needed provisioning) the scanner binary
- Running it against one workspace with streaming output parsing
- Serializing scans of the same workspace
- Producing one immutable ScanOutcome per request

Nothing is kept between scans except the per-workspace locks; the log and
progress sinks are passed to every call.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from leakwatch.binary.resolver import BinaryResolver
from leakwatch.config import ScannerSettings
from leakwatch.errors import LeakwatchError, ScanInProgressError
from leakwatch.scanner.base import ScanOutcome
from leakwatch.scanner.parser import OutputParser
from leakwatch.scanner.runner import ProcessRunner

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 60


class ScanPipeline:
    """Run secret scans against workspaces.

    Example:
        pipeline = ScanPipeline(load_config())
        outcome = pipeline.scan(Path("."), log=print)
        for finding in outcome.findings:
            print(finding)
    """

    def __init__(
        self,
        settings: ScannerSettings | None = None,
        resolver: BinaryResolver | None = None,
    ) -> None:
        """
        Create a pipeline.

        Parameters:
            settings: Scanner settings; defaults are used when None.
            resolver: Fixed resolver to use instead of building one from
                ``settings`` on every scan.
        """
        self.settings = settings or ScannerSettings()
        self._resolver = resolver
        self._locks: dict[Path, threading.Lock] = {}
        self._runners: dict[Path, ProcessRunner] = {}
        self._guard = threading.Lock()

    def _lock_for(self, root: Path) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(root, threading.Lock())

    def is_scanning(self, workspace_root: Path | str) -> bool:
        """Return True while a scan of ``workspace_root`` is running."""
        return self._lock_for(Path(workspace_root).resolve()).locked()

    def cancel(self, workspace_root: Path | str) -> bool:
        """
        Cancel the scan of ``workspace_root``.

        A running scanner is killed. A scan still resolving or downloading its
        binary finishes that step and then stops before the scanner starts.
        Either way the scan raises ScanCancelledError.

        Returns:
            True if a scan of ``workspace_root`` was in progress.
        """
        with self._guard:
            runner = self._runners.get(Path(workspace_root).resolve())
        if runner is None:
            return False
        runner.terminate()
        return True

    def scan(
        self,
        workspace_root: Path | str,
        log: Callable[[str], None] | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
        block: bool = True,
    ) -> ScanOutcome:
        """
        Scan one workspace.

        Parameters:
            workspace_root: Directory handed to the scanner.
            log: Operator-facing log sink.
            progress_callback: Download progress sink, used only if the
                binary has to be provisioned.
            block: Wait for a running scan of the same workspace to finish;
                when False, raise ScanInProgressError instead.

        Returns:
            ScanOutcome for this run.

        Raises:
            ScanInProgressError: ``block`` is False and a scan is running.
            LeakwatchError: Resolution, provisioning or execution failed.
        """
        root = Path(workspace_root).resolve()
        if not root.is_dir():
            raise LeakwatchError(f"Workspace folder not found: {root}")

        lock = self._lock_for(root)
        if not lock.acquire(blocking=block):
            raise ScanInProgressError(f"A scan of {root} is already in progress")

        try:
            return self._scan(root, log or (lambda x: None), progress_callback)
        finally:
            lock.release()

    def _scan(
        self,
        root: Path,
        log: Callable[[str], None],
        progress_callback: Callable[[int, int], None] | None,
    ) -> ScanOutcome:
        log("Starting Secret Scanner...")
        log(f"Workspace: {root}")
        log(SEPARATOR)

        runner = ProcessRunner(timeout=self.settings.scan_timeout, log=log)
        with self._guard:
            self._runners[root] = runner

        try:
            resolver = self._resolver or BinaryResolver.from_settings(
                self.settings, log=log, progress_callback=progress_callback
            )
            binary = resolver.resolve(root)
            log(f"Using scanner: {binary.executable_path}")

            parser = OutputParser(root, log=log)
            raw = runner.run(binary.executable_path, root, on_stdout=parser.feed)
        finally:
            with self._guard:
                self._runners.pop(root, None)
        parser.close()

        count = len(parser.findings)
        log(SEPARATOR)
        log(f"Scan completed with exit code: {raw.exit_code}")
        log(f"Found {count} potential secret{'' if count == 1 else 's'}")

        if parser.failures:
            logger.warning("%d finding record(s) could not be parsed", len(parser.failures))

        return ScanOutcome(
            findings=tuple(parser.findings),
            raw_output=parser.raw_output,
            exit_code=raw.exit_code,
            diagnostic_text=tuple(parser.log_lines),
            stderr_text=raw.stderr_text,
            binary=binary,
            duration_ms=raw.duration_ms,
            unparseable_lines=tuple(f.line for f in parser.failures),
        )


def scan_workspace(
    workspace_root: Path | str,
    settings: ScannerSettings | None = None,
    log: Callable[[str], None] | None = None,
    progress_callback: Callable[[int, int], None] | None = None,
) -> ScanOutcome:
    """One-shot convenience wrapper around ScanPipeline.scan."""
    return ScanPipeline(settings).scan(
        workspace_root, log=log, progress_callback=progress_callback
    )
