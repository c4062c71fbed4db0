"""
Configuration for the replay curation pipeline.

Defaults live in module constants; the CLI overrides them with flags and a
few environment variables.
"""

import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path

from curation import MIN_DURATION_SECONDS
from finalize import MAX_NAME_COLLISIONS
from resolver import PROFILE_REPLAY_CAP

DEFAULT_GATEWAY = 30  # Korea
DEFAULT_MAX_CONCURRENCY = 3
DEFAULT_DOWNLOAD_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 0.5  # seconds, doubled per consecutive failure
DEFAULT_BACKOFF_MAX = 30.0
DEFAULT_REQUEST_TIMEOUT = (5, 30)  # (connect, read)
DEFAULT_ANALYSIS_TIMEOUT = 30


def windows_replay_dir() -> Path:
    profile = os.environ.get("USERPROFILE", ".")
    return Path(profile) / "Documents" / "StarCraft" / "Maps" / "Replays"


def wine_replay_dir(home: Path | None = None, user: str | None = None) -> Path:
    home = home or Path(os.environ.get("HOME", "."))
    user = user or os.environ.get("USER", "default")
    return (home / ".wine-battlenet" / "drive_c" / "users" / user
            / "Documents" / "StarCraft" / "Maps" / "Replays")


def default_replay_root() -> Path:
    override = os.environ.get("BWTOOLS_REPLAY_ROOT")
    if override:
        return Path(override).expanduser()
    if sys.platform.startswith("win"):
        return windows_replay_dir()
    return wine_replay_dir()


def default_screp_cmd() -> str:
    """SCREP_PATH, then a `go install`ed screp, then whatever is on PATH."""
    env = os.environ.get("SCREP_PATH")
    if env:
        return env
    go_bin = Path.home() / "go/bin/screp"
    if go_bin.exists():
        return str(go_bin)
    return shutil.which("screp") or "screp"


def default_api_base_url() -> str | None:
    """The game picks its web API port at launch; without a hint there is no default."""
    port = os.environ.get("BWTOOLS_API_PORT")
    if not port:
        return None
    return f"http://127.0.0.1:{port}"


@dataclass
class CurationConfig:
    replay_root: Path
    screp_cmd: str
    api_base_url: str | None
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    download_attempts: int = DEFAULT_DOWNLOAD_ATTEMPTS
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_max: float = DEFAULT_BACKOFF_MAX
    request_timeout: tuple = DEFAULT_REQUEST_TIMEOUT
    analysis_timeout: float = DEFAULT_ANALYSIS_TIMEOUT
    min_duration_seconds: int = MIN_DURATION_SECONDS
    verify_hash: bool = True
    max_profile_replays: int = PROFILE_REPLAY_CAP
    max_name_collisions: int = MAX_NAME_COLLISIONS

    @classmethod
    def from_defaults(cls, **overrides) -> "CurationConfig":
        values = {
            "replay_root": default_replay_root(),
            "screp_cmd": default_screp_cmd(),
            "api_base_url": default_api_base_url(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def bwtools_root(self) -> Path:
        return Path(self.replay_root) / "bwtools"

    @property
    def manifest_path(self) -> Path:
        return self.bwtools_root / ".meta" / "manifest.json"

    @property
    def staging_dir(self) -> Path:
        # Same filesystem as the destination tree, so finalize is a rename.
        return self.bwtools_root / ".staging"
