"""Configuration loading for leakwatch.

Settings are layered, lowest precedence first:

1. Built-in defaults.
2. The ``[scanner]`` table of ``leakwatch.toml`` or the
   ``[tool.leakwatch.scanner]`` table of ``pyproject.toml``.
3. ``LEAKWATCH_*`` environment variables.
4. Explicit overrides (CLI options).

Example ``leakwatch.toml``:
    [scanner]
    auto_install = true
    install_globally = false
    download_timeout = 60
    scan_timeout = 300
"""

from __future__ import annotations

import os
import platform
import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_FILENAME = "leakwatch.toml"


class ConfigNotFoundError(Exception):
    """Configuration file not found."""

    pass


def default_storage_dir() -> Path:
    """Return the per-user directory that holds the provisioned binary."""
    system = platform.system()
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "leakwatch"
    if system == "Windows":
        appdata = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "leakwatch"
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "leakwatch"
    return Path.home() / ".local" / "share" / "leakwatch"


def default_global_paths() -> list[Path]:
    """Well-known install locations probed after the PATH lookup."""
    home = Path.home()
    return [
        Path("/usr/local/bin/secret_scanner"),
        Path("/usr/bin/secret_scanner"),
        home / ".local" / "bin" / "secret_scanner",
        home / "bin" / "secret_scanner",
    ]


class ScannerSettings(BaseSettings):
    """Settings for locating, provisioning and running the scanner binary.

    Attributes:
        binary_name: Executable name looked up on PATH.
        storage_dir: Private directory; the verified cache lives in ``binaries/``.
        global_paths: Global install locations probed in order.
        auto_install: Download the binary when no local copy is found.
        install_globally: Copy a fresh download into ``global_bin_dir``.
        global_bin_dir: User-global bin directory for the optional copy.
        download_timeout: Socket idle timeout for the download, in seconds.
        download_retries: Extra attempts after a failed or unverified download.
        max_redirects: Redirect hops followed before giving up.
        scan_timeout: Kill the scanner after this many seconds (None = no limit).
    """

    model_config = SettingsConfigDict(env_prefix="LEAKWATCH_", extra="ignore")

    binary_name: str = "secret_scanner"
    storage_dir: Path = Field(default_factory=default_storage_dir)
    global_paths: list[Path] = Field(default_factory=default_global_paths)
    auto_install: bool = True
    install_globally: bool = True
    global_bin_dir: Path = Field(default_factory=lambda: Path.home() / ".local" / "bin")
    download_timeout: float = Field(default=60.0, gt=0)
    download_retries: int = Field(default=0, ge=0)
    max_redirects: int = Field(default=1, ge=0)
    scan_timeout: float | None = Field(default=None, gt=0)

    @property
    def cache_path(self) -> Path:
        """Location of the locally provisioned binary."""
        return self.storage_dir / "binaries" / self.binary_name


def find_config(start_dir: Path | None = None) -> Path | None:
    """Find a config file by walking up from ``start_dir`` (default: cwd).

    ``leakwatch.toml`` wins over ``pyproject.toml`` in the same directory; a
    ``pyproject.toml`` only counts when it has a ``[tool.leakwatch]`` table.

    Returns:
        Path to the config file, or None if nothing was found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate

        pyproject = directory / "pyproject.toml"
        if pyproject.is_file():
            try:
                with open(pyproject, "rb") as f:
                    data = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError):
                continue
            if "leakwatch" in data.get("tool", {}):
                return pyproject

    return None


def _read_scanner_table(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        data = tomllib.load(f)

    if path.name == "pyproject.toml":
        data = data.get("tool", {}).get("leakwatch", {})

    table = data.get("scanner", {})
    if not isinstance(table, dict):
        return {}
    return table


def load_config(path: Path | None = None, **overrides: Any) -> ScannerSettings:
    """Build settings from a config file, the environment and overrides.

    Args:
        path: Explicit config file. Auto-discovered when None.
        **overrides: Highest-precedence values; ``None`` values are ignored.

    Returns:
        Fully resolved ScannerSettings.

    Raises:
        ConfigNotFoundError: If an explicit ``path`` does not exist.
        tomllib.TOMLDecodeError: If the config file is not valid TOML.
    """
    if path is not None:
        if not path.is_file():
            raise ConfigNotFoundError(f"Config file not found: {path}")
        config_path: Path | None = path
    else:
        config_path = find_config()

    file_values = _read_scanner_table(config_path) if config_path else {}

    # Environment variables beat the file; explicit overrides beat both.
    from_env = ScannerSettings()
    env_values = from_env.model_dump(include=from_env.model_fields_set)

    merged = {**file_values, **env_values}
    merged.update({key: value for key, value in overrides.items() if value is not None})
    return ScannerSettings(**merged)
