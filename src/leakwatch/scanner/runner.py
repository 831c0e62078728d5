"""Run the scanner binary and stream its output.

The scanner is started as ``<binary> <workspace-root>`` with the workspace
root as its working directory. stdout is handed to a callback chunk by
chunk while the process runs; stderr is drained on a separate thread so
neither pipe can fill up and stall the child.

Exit codes 0 (clean) and 1 (secrets found) are both successful runs.
"""

from __future__ import annotations

import codecs
import logging
import subprocess  # nosec B404
import threading
import time
from pathlib import Path
from typing import IO, TYPE_CHECKING

from leakwatch.errors import (
    NonRecoverableExitError,
    ScanCancelledError,
    ScanTimeoutError,
    SpawnError,
)
from leakwatch.scanner.base import RawScanResult
from leakwatch.scanner.parser import sanitize_line

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

SUCCESS_EXIT_CODES = frozenset({0, 1})
CHUNK_SIZE = 4096


def _read_chunks(stream: IO[bytes]):
    """Yield decoded text as soon as the pipe delivers bytes."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = stream.read1(CHUNK_SIZE)  # type: ignore[attr-defined]
        if not data:
            break
        text = decoder.decode(data)
        if text:
            yield text
    tail = decoder.decode(b"", final=True)
    if tail:
        yield tail


class ProcessRunner:
    """Spawn the scanner and collect its output.

    One runner handles one process at a time; ``terminate`` may be called
    from another thread to cancel the running scan. A terminate that arrives
    before ``run`` is remembered, and the scanner is then never started.

    Example:
        runner = ProcessRunner(timeout=300)
        result = runner.run(binary_path, workspace, on_stdout=parser.feed)
        print(result.exit_code)
    """

    def __init__(
        self,
        timeout: float | None = None,
        log: Callable[[str], None] | None = None,
    ) -> None:
        """
        Create a runner.

        Parameters:
            timeout: Kill the scanner after this many seconds; None waits forever.
            log: Receives sanitized stderr lines prefixed with ``Error:``.
        """
        self.timeout = timeout
        self.log = log or (lambda x: None)
        self._process: subprocess.Popen[bytes] | None = None
        self._timed_out = False
        self._cancelled = False
        self._cancel_requested = threading.Event()
        # Guards _process and the kill flags against the timer and terminate().
        self._state_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        process = self._process
        return process is not None and process.poll() is None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def terminate(self) -> None:
        """Cancel the scan, killing the in-flight scanner if there is one."""
        self._cancel_requested.set()
        with self._state_lock:
            if self._kill():
                self._cancelled = True

    def _on_timeout(self) -> None:
        with self._state_lock:
            if self._kill():
                self._timed_out = True

    def _kill(self) -> bool:
        """Kill the scanner; return False if it had already exited."""
        process = self._process
        if process is None or process.poll() is not None:
            return False
        logger.debug("Killing scanner process %s", process.pid)
        process.kill()
        return True

    def run(
        self,
        executable_path: Path | str,
        workspace_root: Path | str,
        on_stdout: Callable[[str], object] | None = None,
    ) -> RawScanResult:
        """
        Run the scanner against ``workspace_root``.

        Parameters:
            executable_path: Scanner binary.
            workspace_root: Directory to scan; also the working directory.
            on_stdout: Called with each decoded stdout chunk as it arrives.

        Returns:
            RawScanResult with exit code 0 or 1 and the captured text.

        Raises:
            SpawnError: The process could not be started.
            ScanTimeoutError: The configured timeout elapsed.
            ScanCancelledError: ``terminate`` was called.
            NonRecoverableExitError: The scanner exited with any other code.
        """
        self._timed_out = False
        self._cancelled = False
        if self.cancel_requested:
            raise ScanCancelledError("Scan was cancelled")

        start_time = time.time()
        args = [str(executable_path), str(workspace_root)]

        try:
            process = subprocess.Popen(  # nosec B603
                args,
                cwd=str(workspace_root),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise SpawnError(f"Failed to execute scanner: {e}") from e

        with self._state_lock:
            self._process = process
            if self.cancel_requested:
                process.kill()
                self._cancelled = True
        logger.debug("Started scanner pid=%s: %s", process.pid, args)

        stderr_parts: list[str] = []
        stderr_thread = threading.Thread(
            target=self._drain_stderr,
            args=(process.stderr, stderr_parts),
            name="leakwatch-stderr",
            daemon=True,
        )
        stderr_thread.start()

        timer: threading.Timer | None = None
        if self.timeout is not None:
            timer = threading.Timer(self.timeout, self._on_timeout)
            timer.daemon = True
            timer.start()

        stdout_parts: list[str] = []
        try:
            for chunk in _read_chunks(process.stdout):  # type: ignore[arg-type]
                stdout_parts.append(chunk)
                if on_stdout is not None:
                    on_stdout(chunk)
            exit_code = process.wait()
        except BaseException:
            self._kill()
            process.wait()
            raise
        finally:
            if timer is not None:
                timer.cancel()
            stderr_thread.join()
            if process.stdout is not None:
                process.stdout.close()
            with self._state_lock:
                self._process = None
                timed_out, cancelled = self._timed_out, self._cancelled

        stderr_text = "\n".join(stderr_parts)
        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug("Scanner exited with code %s after %d ms", exit_code, duration_ms)

        if timed_out:
            raise ScanTimeoutError(f"Scanner timed out after {self.timeout} seconds")
        if cancelled:
            raise ScanCancelledError("Scan was cancelled")
        if exit_code not in SUCCESS_EXIT_CODES:
            raise NonRecoverableExitError(exit_code, stderr_text)

        return RawScanResult(
            exit_code=exit_code,
            stdout_text="".join(stdout_parts),
            stderr_text=stderr_text,
            duration_ms=duration_ms,
        )

    def _drain_stderr(self, stream: IO[bytes] | None, parts: list[str]) -> None:
        if stream is None:
            return
        try:
            for chunk in _read_chunks(stream):
                clean = sanitize_line(chunk)
                if clean:
                    parts.append(clean)
                    self.log(f"Error: {clean}")
        finally:
            stream.close()
