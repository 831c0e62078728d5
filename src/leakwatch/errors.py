"""Exception hierarchy for leakwatch.

Every error carries a message that can be shown to an operator as-is.
Resolution and provisioning errors abort a scan before the scanner is
spawned; parse failures are recorded per line and never raised out of a scan.
"""

from __future__ import annotations


class LeakwatchError(Exception):
    """Base exception for leakwatch operations."""

    pass


class PlatformUnsupportedError(LeakwatchError):
    """No scanner binary is published for the current platform."""

    def __init__(self, platform_key: str, supported: list[str], releases_url: str) -> None:
        self.platform_key = platform_key
        self.supported = supported
        self.releases_url = releases_url
        super().__init__(
            f"Secret Scanner is not available for your platform ({platform_key}) yet. "
            f"Currently supported: {', '.join(supported)}. "
            f"Download it manually from {releases_url}"
        )


class BinaryNotFoundError(LeakwatchError):
    """Every acquisition strategy was tried and none produced a binary."""

    pass


class DownloadError(LeakwatchError):
    """Network or HTTP failure while downloading the scanner."""

    pass


class VerificationError(LeakwatchError):
    """Downloaded or cached binary failed its checksum."""

    def __init__(self, path: str, expected: str, actual: str) -> None:
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Downloaded binary failed integrity check: {path} "
            f"(expected sha256 {expected}, got {actual})"
        )


class SpawnError(LeakwatchError):
    """The operating system could not start the scanner process."""

    pass


class NonRecoverableExitError(LeakwatchError):
    """The scanner exited with a code other than 0 or 1."""

    def __init__(self, exit_code: int, stderr: str) -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Scanner exited with code {exit_code}. Error: {stderr}")


class ScanTimeoutError(LeakwatchError):
    """The scanner ran longer than the configured timeout and was killed."""

    pass


class ScanInProgressError(LeakwatchError):
    """A scan of the same workspace is already running."""

    pass


class ParseRecoveryFailure(LeakwatchError):
    """A candidate line could not be decoded by either parser.

    Recorded on the parser and logged; never propagated out of a scan.
    """

    def __init__(self, line: str) -> None:
        self.line = line
        super().__init__(f"Failed to parse JSON: {line}")


class ScanCancelledError(LeakwatchError):
    """The running scan was terminated by the caller."""

    pass
