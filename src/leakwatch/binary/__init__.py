"""Scanner binary acquisition: resolve, download and verify."""

from leakwatch.binary.base import AcquisitionStrategy, BinaryOrigin, ResolvedBinary
from leakwatch.binary.platforms import BinaryDescriptor, get_descriptor, get_platform_key
from leakwatch.binary.provisioner import BinaryProvisioner
from leakwatch.binary.resolver import (
    BinaryResolver,
    DownloadStrategy,
    GlobalInstallStrategy,
    LocalCacheStrategy,
    PathLookupStrategy,
)

__all__ = [
    "AcquisitionStrategy",
    "BinaryDescriptor",
    "BinaryOrigin",
    "BinaryProvisioner",
    "BinaryResolver",
    "DownloadStrategy",
    "GlobalInstallStrategy",
    "LocalCacheStrategy",
    "PathLookupStrategy",
    "ResolvedBinary",
    "get_descriptor",
    "get_platform_key",
]
