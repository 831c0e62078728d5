"""Per-platform scanner binary descriptors.

Pinned download URLs and SHA-256 checksums live in the package's
constants.json. A platform without a descriptor cannot be provisioned or
verified; that is the boundary between "download it" and "install it by
hand".
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _load_constants() -> dict:
    """Load constants from the package's constants.json."""
    constants_path = Path(__file__).parent.parent / "constants.json"
    with open(constants_path) as f:
        return json.load(f)


@dataclass(frozen=True)
class BinaryDescriptor:
    """Where to download the scanner for one platform and what it must hash to.

    Attributes:
        platform_key: Short platform name ("linux", "darwin").
        expected_checksum: Lower-case hex SHA-256 of the release asset.
        download_url: HTTPS URL of the release asset.
        asset_name: File name of the release asset, for progress messages.
    """

    platform_key: str
    expected_checksum: str
    download_url: str
    asset_name: str


@lru_cache(maxsize=1)
def get_descriptors() -> dict[str, BinaryDescriptor]:
    """Return every known descriptor keyed by platform."""
    binaries = _load_constants().get("binaries", {})
    return {
        key: BinaryDescriptor(
            platform_key=key,
            expected_checksum=info["sha256"].lower(),
            download_url=info["download_url"],
            asset_name=info.get("asset_name", key),
        )
        for key, info in binaries.items()
    }


def get_releases_url() -> str:
    """Release page shown to operators who must install manually."""
    return _load_constants().get(
        "releases_url", "https://github.com/drona-gyawali/secret-scanner/releases"
    )


def get_platform_key() -> str:
    """Return the current platform key ("linux", "darwin", "win32", ...)."""
    platform_key = sys.platform
    if platform_key.startswith("linux"):
        return "linux"
    return platform_key


def get_descriptor(platform_key: str | None = None) -> BinaryDescriptor | None:
    """Look up the descriptor for ``platform_key`` (default: this machine).

    Returns:
        The descriptor, or None when the platform is unsupported.
    """
    return get_descriptors().get(platform_key or get_platform_key())


def supported_platforms() -> list[str]:
    """Platform keys that have a published binary."""
    return sorted(get_descriptors())
