"""Locate a runnable scanner binary.

The resolver walks an ordered list of acquisition strategies and stops at
the first one that produces a binary:

1. PathLookupStrategy - ``secret_scanner`` on the operator's PATH (trusted as-is)
2. GlobalInstallStrategy - well-known install locations
3. LocalCacheStrategy - the checksum-verified copy in private storage
4. DownloadStrategy - provision a fresh, verified copy

A PATH-only resolver is simply a resolver built with the first strategy.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from leakwatch.binary.base import AcquisitionStrategy, BinaryOrigin, ResolvedBinary
from leakwatch.binary.platforms import (
    BinaryDescriptor,
    get_descriptor,
    get_platform_key,
    get_releases_url,
    supported_platforms,
)
from leakwatch.binary.provisioner import BinaryProvisioner, make_executable, verify_checksum
from leakwatch.config import ScannerSettings
from leakwatch.errors import BinaryNotFoundError, PlatformUnsupportedError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)


def _ensure_executable(path: Path) -> None:
    """Best-effort chmod; a failure is logged, never raised."""
    if os.access(path, os.X_OK):
        return
    try:
        make_executable(path)
    except OSError as e:
        logger.warning("Failed to make binary executable %s: %s", path, e)


class PathLookupStrategy(AcquisitionStrategy):
    """Find the scanner on the executable search path."""

    def __init__(self, binary_name: str = "secret_scanner") -> None:
        self.binary_name = binary_name

    @property
    def name(self) -> str:
        return "path"

    def locate(self) -> ResolvedBinary | None:
        found = shutil.which(self.binary_name)
        if not found:
            return None
        return ResolvedBinary(executable_path=Path(found), origin=BinaryOrigin.PATH)


class GlobalInstallStrategy(AcquisitionStrategy):
    """Probe a fixed list of global install locations."""

    def __init__(self, paths: Sequence[Path]) -> None:
        self.paths = list(paths)

    @property
    def name(self) -> str:
        return "global"

    def locate(self) -> ResolvedBinary | None:
        for candidate in self.paths:
            candidate = candidate.expanduser()
            if candidate.is_file():
                _ensure_executable(candidate)
                return ResolvedBinary(
                    executable_path=candidate, origin=BinaryOrigin.GLOBAL_INSTALL
                )
        return None


class LocalCacheStrategy(AcquisitionStrategy):
    """Use the previously provisioned copy, if it still verifies.

    A cached file that fails its checksum is deleted so it can never be
    executed or picked up again.
    """

    def __init__(self, cache_path: Path, descriptor: BinaryDescriptor | None) -> None:
        self.cache_path = cache_path
        self.descriptor = descriptor

    @property
    def name(self) -> str:
        return "cache"

    def locate(self) -> ResolvedBinary | None:
        if self.descriptor is None or not self.cache_path.is_file():
            return None

        if not verify_checksum(self.cache_path, self.descriptor.expected_checksum):
            logger.warning("Removing cached scanner that failed verification: %s", self.cache_path)
            try:
                self.cache_path.unlink()
            except OSError as e:
                logger.error("Failed to remove corrupted binary %s: %s", self.cache_path, e)
            return None

        _ensure_executable(self.cache_path)
        return ResolvedBinary(executable_path=self.cache_path, origin=BinaryOrigin.LOCAL_CACHE)


class DownloadStrategy(AcquisitionStrategy):
    """Provision a fresh binary over the network."""

    def __init__(
        self,
        provisioner: BinaryProvisioner,
        platform_key: str | None = None,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self.provisioner = provisioner
        self.platform_key = platform_key
        self.log = log or (lambda x: None)

    @property
    def name(self) -> str:
        return "download"

    def locate(self) -> ResolvedBinary | None:
        if get_descriptor(self.platform_key) is None:
            logger.debug("No downloadable scanner for platform %s", self.platform_key)
            return None
        self.log("Scanner not found. Downloading...")
        return self.provisioner.provision(self.platform_key)


class BinaryResolver:
    """Resolve the scanner binary through an ordered list of strategies.

    Example:
        resolver = BinaryResolver.from_settings(settings, log=print)
        binary = resolver.resolve(Path("."))
        print(binary.executable_path, binary.origin)
    """

    def __init__(
        self,
        strategies: Sequence[AcquisitionStrategy],
        platform_key: str | None = None,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self.strategies = list(strategies)
        self.platform_key = platform_key or get_platform_key()
        self.log = log or (lambda x: None)

    @classmethod
    def from_settings(
        cls,
        settings: ScannerSettings,
        log: Callable[[str], None] | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
        platform_key: str | None = None,
        allow_download: bool | None = None,
    ) -> BinaryResolver:
        """
        Build the standard PATH -> global -> cache -> download chain.

        Parameters:
            settings: Scanner settings.
            log: Operator-facing log sink.
            progress_callback: Download progress sink.
            platform_key: Override the detected platform.
            allow_download: Include the download strategy; defaults to
                ``settings.auto_install``.
        """
        key = platform_key or get_platform_key()
        strategies: list[AcquisitionStrategy] = [
            PathLookupStrategy(settings.binary_name),
            GlobalInstallStrategy(settings.global_paths),
            LocalCacheStrategy(settings.cache_path, get_descriptor(key)),
        ]

        download = settings.auto_install if allow_download is None else allow_download
        if download:
            provisioner = BinaryProvisioner(settings, log=log, progress_callback=progress_callback)
            strategies.append(DownloadStrategy(provisioner, key, log=log))

        return cls(strategies, platform_key=key, log=log)

    def resolve(self, workspace_root: Path | None = None) -> ResolvedBinary:
        """
        Return the first binary any strategy produces.

        Parameters:
            workspace_root: Workspace the binary is resolved for (logged only).

        Returns:
            ResolvedBinary for the first successful strategy.

        Raises:
            PlatformUnsupportedError: Nothing was found locally and this
                platform has no downloadable binary.
            BinaryNotFoundError: Nothing was found and downloads are disabled.
            DownloadError, VerificationError: Provisioning failed.
        """
        logger.debug("Resolving scanner binary for workspace %s", workspace_root)

        for strategy in self.strategies:
            binary = strategy.locate()
            if binary is not None:
                logger.debug("Strategy %s resolved %s", strategy.name, binary)
                self.log(_FOUND_MESSAGES[binary.origin].format(path=binary.executable_path))
                return binary
            logger.debug("Strategy %s found nothing", strategy.name)

        if get_descriptor(self.platform_key) is None:
            raise PlatformUnsupportedError(
                self.platform_key, supported_platforms(), get_releases_url()
            )

        tried = ", ".join(s.name for s in self.strategies)
        raise BinaryNotFoundError(
            f"secret_scanner not found (tried: {tried}). "
            "Run 'leakwatch install' or enable auto_install"
        )


_FOUND_MESSAGES: dict[BinaryOrigin, str] = {
    BinaryOrigin.PATH: "Found global scanner: {path}",
    BinaryOrigin.GLOBAL_INSTALL: "Found global scanner: {path}",
    BinaryOrigin.LOCAL_CACHE: "Found local scanner: {path}",
    BinaryOrigin.FRESH_DOWNLOAD: "Using freshly downloaded scanner: {path}",
}
