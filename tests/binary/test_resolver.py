"""Tests for scanner binary resolution."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from leakwatch.binary.base import AcquisitionStrategy, BinaryOrigin, ResolvedBinary
from leakwatch.binary.resolver import (
    BinaryResolver,
    DownloadStrategy,
    GlobalInstallStrategy,
    LocalCacheStrategy,
    PathLookupStrategy,
)
from leakwatch.errors import BinaryNotFoundError, DownloadError, PlatformUnsupportedError

WHICH = "leakwatch.binary.resolver.shutil.which"


class _Fixed(AcquisitionStrategy):
    """Strategy returning a preset result and counting calls."""

    def __init__(self, name: str, result: ResolvedBinary | None = None) -> None:
        self._name = name
        self.result = result
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    def locate(self) -> ResolvedBinary | None:
        self.calls += 1
        return self.result


class TestPathLookupStrategy:
    """Tests for the PATH lookup."""

    def test_found_on_path(self):
        """Test that the which() result is used as-is."""
        with patch(WHICH, return_value="/opt/tools/secret_scanner") as mock_which:
            binary = PathLookupStrategy().locate()

        mock_which.assert_called_once_with("secret_scanner")
        assert binary == ResolvedBinary(Path("/opt/tools/secret_scanner"), BinaryOrigin.PATH)

    def test_not_on_path(self):
        """Test that a miss returns None."""
        with patch(WHICH, return_value=None):
            assert PathLookupStrategy().locate() is None


class TestGlobalInstallStrategy:
    """Tests for the global location search."""

    def test_first_existing_candidate_wins(self, tmp_path: Path):
        """Test search order."""
        second = tmp_path / "b" / "secret_scanner"
        third = tmp_path / "c" / "secret_scanner"
        for path in (second, third):
            path.parent.mkdir()
            path.write_bytes(b"x")

        binary = GlobalInstallStrategy([tmp_path / "a" / "secret_scanner", second, third]).locate()

        assert binary == ResolvedBinary(second, BinaryOrigin.GLOBAL_INSTALL)

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_marks_found_binary_executable(self, tmp_path: Path):
        """Test that a non-executable global copy is chmodded."""
        path = tmp_path / "secret_scanner"
        path.write_bytes(b"x")
        path.chmod(0o644)

        GlobalInstallStrategy([path]).locate()

        assert os.access(path, os.X_OK)

    def test_chmod_failure_is_not_fatal(self, tmp_path: Path):
        """Test that a chmod error still returns the binary."""
        path = tmp_path / "secret_scanner"
        path.write_bytes(b"x")

        with patch("leakwatch.binary.resolver.os.access", return_value=False), patch(
            "leakwatch.binary.resolver.make_executable", side_effect=PermissionError("denied")
        ):
            binary = GlobalInstallStrategy([path]).locate()

        assert binary is not None

    def test_directory_is_not_a_binary(self, tmp_path: Path):
        """Test that a directory at a candidate path is skipped."""
        (tmp_path / "secret_scanner").mkdir()
        assert GlobalInstallStrategy([tmp_path / "secret_scanner"]).locate() is None


class TestLocalCacheStrategy:
    """Tests for the verified cache."""

    def test_verified_copy_used(self, tmp_path: Path, descriptor, binary_payload):
        """Test that a cached binary with the right checksum is used."""
        cache = tmp_path / "secret_scanner"
        cache.write_bytes(binary_payload)

        binary = LocalCacheStrategy(cache, descriptor).locate()

        assert binary == ResolvedBinary(cache, BinaryOrigin.LOCAL_CACHE)

    def test_corrupt_copy_deleted(self, tmp_path: Path, descriptor):
        """Test that a cached binary failing verification is removed."""
        cache = tmp_path / "secret_scanner"
        cache.write_bytes(b"corrupted")

        assert LocalCacheStrategy(cache, descriptor).locate() is None
        assert not cache.exists()

    def test_missing_cache(self, tmp_path: Path, descriptor):
        """Test that an empty cache returns None."""
        assert LocalCacheStrategy(tmp_path / "secret_scanner", descriptor).locate() is None

    def test_no_descriptor_means_no_cache(self, tmp_path: Path, binary_payload):
        """Test that an unverifiable cache is never used."""
        cache = tmp_path / "secret_scanner"
        cache.write_bytes(binary_payload)

        assert LocalCacheStrategy(cache, None).locate() is None
        assert cache.exists()


class TestDownloadStrategy:
    """Tests for the download strategy."""

    def test_delegates_to_provisioner(self, tmp_path: Path):
        """Test that the provisioner result is returned and announced."""
        expected = ResolvedBinary(tmp_path / "secret_scanner", BinaryOrigin.FRESH_DOWNLOAD)
        provisioner = MagicMock()
        provisioner.provision.return_value = expected
        messages: list[str] = []

        binary = DownloadStrategy(provisioner, "linux", log=messages.append).locate()

        assert binary == expected
        provisioner.provision.assert_called_once_with("linux")
        assert messages == ["Scanner not found. Downloading..."]

    def test_unsupported_platform_is_silent(self):
        """Test that nothing is announced or provisioned without a descriptor."""
        provisioner = MagicMock()
        messages: list[str] = []

        binary = DownloadStrategy(provisioner, "win32", log=messages.append).locate()

        assert binary is None
        assert messages == []
        provisioner.provision.assert_not_called()

    def test_unsupported_platform_through_resolver(self):
        """Test that the chain reports the platform, not a failed download."""
        provisioner = MagicMock()
        messages: list[str] = []
        strategies = [_Fixed("path"), DownloadStrategy(provisioner, "win32", log=messages.append)]

        with pytest.raises(PlatformUnsupportedError):
            BinaryResolver(strategies, platform_key="win32").resolve()

        assert "Scanner not found. Downloading..." not in messages
        provisioner.provision.assert_not_called()


class TestBinaryResolver:
    """Tests for the strategy chain."""

    def test_first_hit_wins(self, tmp_path: Path):
        """Test that later strategies are not consulted after a hit."""
        hit = ResolvedBinary(tmp_path / "x", BinaryOrigin.GLOBAL_INSTALL)
        first = _Fixed("path")
        second = _Fixed("global", hit)
        third = _Fixed("cache")

        binary = BinaryResolver([first, second, third], platform_key="linux").resolve()

        assert binary == hit
        assert (first.calls, second.calls, third.calls) == (1, 1, 0)

    def test_found_messages(self, tmp_path: Path):
        """Test the log line per origin."""
        path = tmp_path / "secret_scanner"
        cases = {
            BinaryOrigin.PATH: f"Found global scanner: {path}",
            BinaryOrigin.GLOBAL_INSTALL: f"Found global scanner: {path}",
            BinaryOrigin.LOCAL_CACHE: f"Found local scanner: {path}",
            BinaryOrigin.FRESH_DOWNLOAD: f"Using freshly downloaded scanner: {path}",
        }
        for origin, expected in cases.items():
            messages: list[str] = []
            resolver = BinaryResolver(
                [_Fixed("s", ResolvedBinary(path, origin))], platform_key="linux", log=messages.append
            )
            resolver.resolve()
            assert messages == [expected]

    def test_nothing_found(self):
        """Test that an exhausted chain raises BinaryNotFoundError."""
        resolver = BinaryResolver([_Fixed("path"), _Fixed("global")], platform_key="linux")
        with pytest.raises(BinaryNotFoundError, match="tried: path, global"):
            resolver.resolve()

    def test_nothing_found_on_unsupported_platform(self):
        """Test that an unsupported platform is reported as such."""
        resolver = BinaryResolver([_Fixed("path")], platform_key="win32")
        with pytest.raises(PlatformUnsupportedError) as exc_info:
            resolver.resolve()
        assert exc_info.value.releases_url.startswith("https://")

    def test_path_binary_used_on_unsupported_platform(self):
        """Test that an operator-installed binary works without a descriptor."""
        hit = ResolvedBinary(Path("/usr/local/bin/secret_scanner"), BinaryOrigin.PATH)
        resolver = BinaryResolver([_Fixed("path", hit)], platform_key="win32")
        assert resolver.resolve() == hit

    def test_download_error_propagates(self):
        """Test that a failing strategy aborts resolution."""
        failing = MagicMock(spec=AcquisitionStrategy)
        failing.name = "download"
        failing.locate.side_effect = DownloadError("Download failed with status: 500")

        with pytest.raises(DownloadError):
            BinaryResolver([_Fixed("path"), failing], platform_key="linux").resolve()


class TestFromSettings:
    """Tests for the standard chain built from settings."""

    def test_chain_order(self, settings):
        """Test the PATH, global, cache, download order."""
        settings = settings.model_copy(update={"auto_install": True})
        resolver = BinaryResolver.from_settings(settings, platform_key="linux")
        assert [s.name for s in resolver.strategies] == ["path", "global", "cache", "download"]

    def test_auto_install_disabled(self, settings):
        """Test that no download strategy is added when auto_install is off."""
        resolver = BinaryResolver.from_settings(settings, platform_key="linux")
        assert [s.name for s in resolver.strategies] == ["path", "global", "cache"]

    def test_allow_download_override(self, settings):
        """Test that allow_download beats the setting."""
        settings = settings.model_copy(update={"auto_install": True})
        resolver = BinaryResolver.from_settings(settings, platform_key="linux", allow_download=False)
        assert "download" not in [s.name for s in resolver.strategies]

    def test_path_beats_cache(self, settings, descriptor, binary_payload):
        """Test that a PATH binary wins over a verified cache copy."""
        settings.cache_path.parent.mkdir(parents=True)
        settings.cache_path.write_bytes(binary_payload)

        with patch(WHICH, return_value="/usr/bin/secret_scanner"), patch(
            "leakwatch.binary.resolver.get_descriptor", return_value=descriptor
        ):
            binary = BinaryResolver.from_settings(settings, platform_key="linux").resolve()

        assert binary.origin == BinaryOrigin.PATH

    def test_cache_used_when_path_empty(self, settings, descriptor, binary_payload):
        """Test fall-through to the verified cache."""
        settings.cache_path.parent.mkdir(parents=True)
        settings.cache_path.write_bytes(binary_payload)

        with patch(WHICH, return_value=None), patch(
            "leakwatch.binary.resolver.get_descriptor", return_value=descriptor
        ):
            binary = BinaryResolver.from_settings(settings, platform_key="linux").resolve()

        assert binary == ResolvedBinary(settings.cache_path, BinaryOrigin.LOCAL_CACHE)
