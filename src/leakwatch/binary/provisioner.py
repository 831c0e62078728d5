"""Download, verify and install the scanner binary.

The provisioner turns "binary absent" into "binary present and trusted":

- Streams the platform asset over HTTPS, following a bounded number of
  301/302 redirects
- Verifies the SHA-256 of the complete file against the pinned checksum
- Moves the verified file into the local cache and marks it executable
- Optionally copies it into a user-global bin directory

Nothing that fails verification is ever marked executable or left in the
cache.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import platform
import shutil
import stat
import tempfile
import threading
import urllib.error
import urllib.parse
import urllib.request
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from leakwatch.binary.base import BinaryOrigin, ResolvedBinary
from leakwatch.binary.platforms import (
    BinaryDescriptor,
    get_descriptor,
    get_platform_key,
    get_releases_url,
    supported_platforms,
)
from leakwatch.config import ScannerSettings
from leakwatch.errors import DownloadError, PlatformUnsupportedError, VerificationError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
REDIRECT_CODES = (301, 302)
INSTALL_MODE = 0o755


class _NoRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Surface redirects as HTTPError so the hop count stays under our control."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


def _build_opener() -> urllib.request.OpenerDirector:
    return urllib.request.build_opener(_NoRedirectHandler)


def compute_sha256(path: Path) -> str:
    """Return the lower-case hex SHA-256 digest of a file."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_checksum(path: Path, expected: str) -> bool:
    """Check a file against a hex SHA-256 checksum.

    Unreadable files count as a mismatch.
    """
    try:
        actual = compute_sha256(path)
    except OSError as e:
        logger.debug("Failed to verify binary integrity of %s: %s", path, e)
        return False
    return hmac.compare_digest(actual, expected.lower())


def make_executable(path: Path) -> None:
    """Add execute permission bits (no-op on Windows).

    Raises:
        OSError: If the permissions cannot be changed.
    """
    if platform.system() == "Windows":
        return
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def set_install_mode(path: Path) -> None:
    """Give a provisioned binary rwxr-xr-x (no-op on Windows).

    Raises:
        OSError: If the permissions cannot be changed.
    """
    if platform.system() == "Windows":
        return
    path.chmod(INSTALL_MODE)


def format_progress(downloaded: int, total: int) -> str:
    """Render download progress; an unknown total renders as "unknown"."""
    if total <= 0:
        return f"Downloading... {downloaded} bytes (total unknown)"
    percentage = round(downloaded / total * 100)
    return f"Downloading... {percentage}%"


def is_on_path(directory: Path) -> bool:
    """Return True if ``directory`` is listed on the PATH environment variable."""
    entries = os.environ.get("PATH", "").split(os.pathsep)
    target = os.path.normcase(os.path.abspath(directory))
    return any(
        entry and os.path.normcase(os.path.abspath(os.path.expanduser(entry))) == target
        for entry in entries
    )


def download_file(
    url: str,
    destination: Path,
    on_progress: Callable[[int, int], None] | None = None,
    timeout: float = 60.0,
    max_redirects: int = 1,
) -> None:
    """Stream ``url`` into ``destination``.

    A 301/302 response re-invokes the download at its ``Location`` target,
    at most ``max_redirects`` times. The partial file is deleted on any
    failure.

    Args:
        url: Source URL.
        destination: File to write; overwritten if present.
        on_progress: Called with ``(bytes_downloaded, total_bytes)`` after
            every chunk; ``total_bytes`` is 0 when Content-Length is absent.
        timeout: Socket idle timeout in seconds.
        max_redirects: Redirect hops still allowed.

    Raises:
        DownloadError: On HTTP errors, network errors, timeouts or too many
            redirects.
    """
    opener = _build_opener()

    try:
        response = opener.open(url, timeout=timeout)  # nosec B310
    except urllib.error.HTTPError as e:
        location = e.headers.get("Location") if e.headers else None
        e.close()
        if e.code in REDIRECT_CODES and location:
            if max_redirects <= 0:
                raise DownloadError(f"Download failed: too many redirects ({url})") from e
            target = urllib.parse.urljoin(url, location)
            logger.debug("Following %s redirect %s -> %s", e.code, url, target)
            return download_file(
                target,
                destination,
                on_progress=on_progress,
                timeout=timeout,
                max_redirects=max_redirects - 1,
            )
        raise DownloadError(f"Download failed with status: {e.code}") from e
    except urllib.error.URLError as e:
        raise DownloadError(f"Download failed: {e.reason}") from e
    except TimeoutError as e:
        raise DownloadError("Download timeout") from e
    except OSError as e:
        raise DownloadError(f"Download failed: {e}") from e

    with response:
        status = getattr(response, "status", None) or response.getcode()
        if status != 200:
            raise DownloadError(f"Download failed with status: {status}")

        try:
            total = int(response.headers.get("Content-Length") or 0)
        except ValueError:
            total = 0

        downloaded = 0
        try:
            with open(destination, "wb") as f:
                while True:
                    chunk = response.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    f.write(chunk)
                    downloaded += len(chunk)
                    if on_progress:
                        on_progress(downloaded, total)
        except TimeoutError as e:
            destination.unlink(missing_ok=True)
            raise DownloadError("Download timeout") from e
        except OSError as e:
            destination.unlink(missing_ok=True)
            raise DownloadError(f"Download failed: {e}") from e

    logger.debug("Downloaded %d bytes from %s", downloaded, url)


class BinaryProvisioner:
    """Download-verify-install sequence for the scanner binary.

    Provisioning is serialized per platform key, and the download lands in a
    unique temporary file that is only renamed into the cache after it
    verifies, so concurrent runs never leave a half-written cache entry.

    Example:
        provisioner = BinaryProvisioner(settings, log=print)
        binary = provisioner.provision()
        print(binary.executable_path)
    """

    _locks: ClassVar[dict[str, threading.Lock]] = {}
    _locks_guard: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        settings: ScannerSettings | None = None,
        log: Callable[[str], None] | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> None:
        """
        Create a provisioner.

        Parameters:
            settings: Scanner settings; defaults are used when None.
            log: Receives operator-facing status lines.
            progress_callback: Receives ``(bytes_downloaded, total_bytes)``.
        """
        self.settings = settings or ScannerSettings()
        self.log = log or (lambda x: None)
        self.progress = progress_callback

    @classmethod
    def _lock_for(cls, platform_key: str) -> threading.Lock:
        with cls._locks_guard:
            return cls._locks.setdefault(platform_key, threading.Lock())

    def provision(self, platform_key: str | None = None, retries: int | None = None) -> ResolvedBinary:
        """
        Download and verify the scanner for ``platform_key``.

        Parameters:
            platform_key: Target platform; defaults to the current one.
            retries: Extra attempts after a DownloadError or VerificationError;
                defaults to ``settings.download_retries``.

        Returns:
            ResolvedBinary pointing at the verified cache file.

        Raises:
            PlatformUnsupportedError: No descriptor exists; nothing is downloaded.
            DownloadError: The transfer failed on the last attempt.
            VerificationError: The checksum did not match on the last attempt.
        """
        key = platform_key or get_platform_key()
        descriptor = get_descriptor(key)
        if descriptor is None:
            raise PlatformUnsupportedError(key, supported_platforms(), get_releases_url())

        attempts = 1 + (self.settings.download_retries if retries is None else retries)

        with self._lock_for(key):
            attempt = 1
            while True:
                try:
                    return self._provision_once(descriptor)
                except (DownloadError, VerificationError) as e:
                    self.log(f"Failed to download scanner: {e}")
                    if attempt >= attempts:
                        raise
                    attempt += 1
                    self.log(f"Retrying download (attempt {attempt} of {attempts})...")

    def _provision_once(self, descriptor: BinaryDescriptor) -> ResolvedBinary:
        target = self.settings.cache_path
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.name}-", suffix=".part", dir=target.parent
        )
        os.close(fd)
        tmp_path = Path(tmp_name)

        try:
            self.log(f"Downloading {descriptor.asset_name}...")
            download_file(
                descriptor.download_url,
                tmp_path,
                on_progress=self.progress,
                timeout=self.settings.download_timeout,
                max_redirects=self.settings.max_redirects,
            )

            self.log("Verifying download...")
            actual = compute_sha256(tmp_path)
            logger.debug("sha256 of %s: %s", descriptor.asset_name, actual)
            if not hmac.compare_digest(actual, descriptor.expected_checksum):
                raise VerificationError(str(target), descriptor.expected_checksum, actual)

            set_install_mode(tmp_path)
            os.replace(tmp_path, target)
        finally:
            tmp_path.unlink(missing_ok=True)

        self.log(f"Successfully downloaded and installed scanner to: {target}")

        if self.settings.install_globally:
            self.install_globally(target)

        return ResolvedBinary(executable_path=target, origin=BinaryOrigin.FRESH_DOWNLOAD)

    def install_globally(self, binary_path: Path) -> Path | None:
        """
        Best-effort copy of a verified binary into the user-global bin directory.

        Failures are logged and swallowed; the cached binary stays usable.

        Returns:
            Path of the global copy, or None if it could not be created.
        """
        bin_dir = self.settings.global_bin_dir
        global_path = bin_dir / self.settings.binary_name

        try:
            bin_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(binary_path, global_path)
            set_install_mode(global_path)
        except OSError as e:
            logger.debug("Global install to %s failed", global_path, exc_info=True)
            self.log(f"Could not install globally (this is optional): {e}")
            return None

        self.log(f"Installed globally to: {global_path}")
        if not is_on_path(bin_dir):
            self.log(
                f'Note: Add {bin_dir} to your PATH to use "{self.settings.binary_name}" '
                "command globally"
            )
        return global_path
