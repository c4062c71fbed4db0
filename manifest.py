"""
Manifest of already-curated replays: the only authority for dedup.

The whole file is read once at the start of a run and rewritten atomically
(temp file + os.replace) on every successful record. The rename is the only
commit point, so a crash mid-write leaves the previous manifest intact.

File shape (compatible with earlier bwtools releases):

    {"entries": {"<identity key>": {"path": "...", "saved_at": 1700000000}}}
"""

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path

from errors import StoreError
from models import ManifestEntry

log = logging.getLogger(__name__)


def current_timestamp() -> int:
    return int(time.time())


class ManifestStore:
    """In-memory view of the manifest file with a single serialized writer.

    `lock` is re-entrant and is held by the finalizer across its
    re-check / move / record sequence, so two workers holding the same
    identity key cannot both commit a file.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock = threading.RLock()
        self._entries: dict[str, ManifestEntry] = {}
        self._loaded = False

    def load_all(self) -> set[ManifestEntry]:
        """Read the manifest from disk. A missing file is an empty manifest."""
        with self.lock:
            try:
                raw = self.path.read_bytes()
            except FileNotFoundError:
                raw = None
            except OSError as e:
                raise StoreError(f"cannot read manifest {self.path}: {e}") from e

            entries = {}
            if raw is not None and raw.strip():
                try:
                    data = json.loads(raw)
                    for key, rec in (data.get("entries") or {}).items():
                        entries[key] = ManifestEntry(
                            identity_key=key,
                            finalized_path=str(rec.get("path", "")),
                            recorded_at=int(rec.get("saved_at", 0)),
                        )
                except (ValueError, AttributeError, TypeError) as e:
                    raise StoreError(f"manifest {self.path} is not valid: {e}") from e

            self._entries = entries
            self._loaded = True
            log.info("manifest: %d entries loaded from %s", len(entries), self.path)
            return set(entries.values())

    def contains(self, identity_key: str) -> bool:
        with self.lock:
            return identity_key in self._entries

    def get(self, identity_key: str) -> ManifestEntry | None:
        with self.lock:
            return self._entries.get(identity_key)

    def __len__(self):
        with self.lock:
            return len(self._entries)

    def record(self, entry: ManifestEntry):
        """Persist one entry. Recording an existing key is a no-op."""
        with self.lock:
            if not self._loaded:
                self.load_all()
            if entry.identity_key in self._entries:
                return
            entries = dict(self._entries)
            entries[entry.identity_key] = entry
            self._write(entries)
            self._entries = entries

    def _write(self, entries: dict[str, ManifestEntry]):
        payload = {
            "entries": {
                key: {"path": e.finalized_path, "saved_at": e.recorded_at}
                for key, e in sorted(entries.items())
            }
        }
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".manifest-", suffix=".tmp",
                                            dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise StoreError(f"cannot write manifest {self.path}: {e}") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
