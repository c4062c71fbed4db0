"""
Moving accepted replays into the library and committing them to the manifest.

Layout: <replay root>/bwtools/<profile>/<matchup>/<p1>(<Race1>)_vs_<p2>(<Race2>).rep
"""

import errno
import logging
import os
import re
import shutil
from pathlib import Path

import races
from errors import FinalizeIOError, ManifestNotRecorded, NameCollisionExhausted, StoreError
from manifest import ManifestStore, current_timestamp
from models import AnalysisResult, FinalizedReplay, ManifestEntry, StagedFile

log = logging.getLogger(__name__)

INVALID_CHARS = re.compile(r'[/\\:*?"<>|\x00-\x1f\x7f]')
RESERVED_NAMES = {"CON", "PRN", "AUX", "NUL",
                  *(f"COM{i}" for i in range(1, 10)),
                  *(f"LPT{i}" for i in range(1, 10))}
MAX_NAME_COLLISIONS = 1000


def sanitize_component(raw: str) -> str:
    """Make one path component safe on both POSIX and Windows."""
    cleaned = INVALID_CHARS.sub("_", (raw or "").strip())
    cleaned = cleaned.rstrip(". ").lstrip(" ")
    if not cleaned or set(cleaned) <= {"."}:
        return "Unknown"
    if cleaned.split(".")[0].upper() in RESERVED_NAMES:
        cleaned = f"_{cleaned}"
    return cleaned


def order_players(result: AnalysisResult, main_player: str | None) -> list[tuple[str, str]]:
    """(name, race) pairs with `main_player` first; always exactly two."""
    seen = set()
    pairs = []
    for name, race in zip(result.player_names, result.player_races):
        if name.lower() in seen:
            continue
        seen.add(name.lower())
        pairs.append((name, race or "Unknown"))

    if main_player:
        for i, (name, _) in enumerate(pairs):
            if name.lower() == main_player.lower():
                pairs.insert(0, pairs.pop(i))
                break
    while len(pairs) < 2:
        pairs.append(("Opponent", "Unknown"))
    return pairs[:2]


def build_filename(result: AnalysisResult, main_player: str | None = None) -> str:
    (p1, r1), (p2, r2) = order_players(result, main_player)
    return (f"{sanitize_component(p1)}({sanitize_component(races.normalize_label(r1))})"
            f"_vs_{sanitize_component(p2)}({sanitize_component(races.normalize_label(r2))}).rep")


def free_destination(directory: Path, filename: str, max_tries: int = MAX_NAME_COLLISIONS) -> Path:
    """First of name.rep, name-1.rep, name-2.rep, ... that does not exist yet."""
    target = directory / filename
    if not target.exists():
        return target
    stem, suffix = os.path.splitext(filename)
    for n in range(1, max_tries + 1):
        target = directory / f"{stem}-{n}{suffix}"
        if not target.exists():
            return target
    raise NameCollisionExhausted(f"{max_tries} files named like {filename} in {directory}")


def move_into_place(src: Path, dest: Path):
    """Rename; across filesystems, copy beside the destination and rename that.

    The staged file is removed only once the destination is complete, so a
    crash leaves the staged copy (retryable) rather than losing the replay.
    """
    try:
        os.replace(src, dest)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
    tmp = dest.with_name(f".{dest.name}.incoming")
    try:
        shutil.copyfile(src, tmp)
        with open(tmp, "rb+") as f:
            os.fsync(f.fileno())
        os.replace(tmp, dest)
    finally:
        tmp.unlink(missing_ok=True)
    src.unlink(missing_ok=True)


class Finalizer:

    def __init__(self, store: ManifestStore, bwtools_root: Path,
                 max_collisions: int = MAX_NAME_COLLISIONS):
        self.store = store
        self.bwtools_root = Path(bwtools_root)
        self.max_collisions = max_collisions

    def matchup_dir(self, profile: str, matchup: str) -> Path:
        return self.bwtools_root / sanitize_component(profile) / sanitize_component(matchup)

    def finalize(self, staged: StagedFile, result: AnalysisResult, profile: str,
                 matchup: str, main_player: str | None = None) -> FinalizedReplay | None:
        """Place the staged replay and record it.

        Returns None when another worker already committed the same identity
        key; the staged file is discarded in that case.
        """
        key = staged.identity_key
        directory = self.matchup_dir(profile, matchup)
        filename = build_filename(result, main_player)

        with self.store.lock:
            if self.store.contains(key):
                log.info("%s already in manifest, discarding duplicate download", key)
                staged.path.unlink(missing_ok=True)
                return None
            try:
                directory.mkdir(parents=True, exist_ok=True)
                dest = free_destination(directory, filename, self.max_collisions)
                move_into_place(staged.path, dest)
            except OSError as e:
                raise FinalizeIOError(f"cannot place {staged.path.name} in {directory}: {e}") from e

            replay = FinalizedReplay(matchup=matchup, destination_path=dest,
                                     source_candidate=staged.resolved.candidate)
            try:
                self.store.record(ManifestEntry(identity_key=key, finalized_path=str(dest),
                                                recorded_at=current_timestamp()))
            except StoreError as e:
                # The file is in place; next run may re-download it as a -N copy.
                log.error("saved %s but could not record it: %s", dest, e)
                raise ManifestNotRecorded(replay, e) from e
        return replay

