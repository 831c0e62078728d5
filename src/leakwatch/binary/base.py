"""Shared types for locating the scanner binary."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class BinaryOrigin(str, Enum):
    """How a scanner binary was obtained."""

    PATH = "PATH"
    GLOBAL_INSTALL = "GlobalInstall"
    LOCAL_CACHE = "LocalCache"
    FRESH_DOWNLOAD = "FreshDownload"


@dataclass(frozen=True)
class ResolvedBinary:
    """A ready-to-execute scanner path and how it was found."""

    executable_path: Path
    origin: BinaryOrigin

    def __str__(self) -> str:
        return f"{self.executable_path} ({self.origin.value})"


class AcquisitionStrategy(ABC):
    """One way of producing a runnable scanner binary.

    Implementations must provide:
    - name: Identifier used in log messages
    - locate: Return a ResolvedBinary, or None to let the next strategy try
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return strategy identifier."""
        ...

    @abstractmethod
    def locate(self) -> ResolvedBinary | None:
        """Try to produce a binary.

        Returns:
            ResolvedBinary on success, None if this strategy found nothing.

        Raises:
            LeakwatchError: When the strategy fails in a way that must abort
                the search (for example a failed download).
        """
        ...
