"""
Replay binary download into the staging directory.

Transient failures (connection errors, timeouts, 5xx, 429) are retried with
exponential backoff; anything else fails at once. Whatever the outcome, a
failed fetch never leaves its partial file behind.
"""

import hashlib
import logging
import re
import threading
from pathlib import Path

import requests

from errors import Cancelled, FatalDownloadError, IntegrityError, TransientDownloadError
from models import ResolvedDownload, StagedFile
from throttle import SharedBackoff, pause, retry_after_seconds

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
STAGING_PREFIX = ".part-"
MD5_RE = re.compile(r"^[0-9a-fA-F]{32}$")


def staging_path(staging_dir: Path, identity_key: str) -> Path:
    """One staging name per identity key: the md5 of the full key."""
    digest = hashlib.md5(identity_key.encode("utf-8")).hexdigest()
    return Path(staging_dir) / f"{STAGING_PREFIX}{digest}.rep"


def file_md5(path: Path) -> str:
    """MD5 of a file, the digest the matchmaker reports."""
    h = hashlib.md5()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(8192), b''):
            h.update(chunk)
    return h.hexdigest()


def sweep_staging(staging_dir: Path) -> int:
    """Remove partial downloads left behind by an interrupted earlier run."""
    removed = 0
    staging_dir = Path(staging_dir)
    if not staging_dir.is_dir():
        return 0
    for stale in staging_dir.glob(f"{STAGING_PREFIX}*"):
        stale.unlink(missing_ok=True)
        removed += 1
    if removed:
        log.info("removed %d stale staging files from %s", removed, staging_dir)
    return removed


class _Transient(Exception):
    def __init__(self, message, retry_after=None):
        super().__init__(message)
        self.retry_after = retry_after


class DownloadExecutor:

    def __init__(self, session: requests.Session | None = None,
                 backoff: SharedBackoff | None = None, attempts: int = 3,
                 timeout=(5, 30), verify_hash: bool = True, retry_delay: float = 0.5):
        self.session = session or requests.Session()
        self.backoff = backoff or SharedBackoff()
        self.attempts = max(1, attempts)
        self.timeout = timeout
        self.verify_hash = verify_hash
        self.retry_delay = retry_delay

    def fetch(self, resolved: ResolvedDownload, staging_dir: Path,
              cancel: threading.Event | None = None) -> StagedFile:
        """Stream `resolved.url` into the staging directory and verify it."""
        staging_dir = Path(staging_dir)
        staging_dir.mkdir(parents=True, exist_ok=True)
        path = staging_path(staging_dir, resolved.identity_key)
        try:
            self._fetch_with_retry(resolved.url, path, cancel)
            self._verify(resolved, path)
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        return StagedFile(path=path, resolved=resolved)

    def attempt_delay(self, attempt: int) -> float:
        """Pause after this fetch's own n-th failure; independent of other workers."""
        return min(self.retry_delay * 2 ** (attempt - 1), self.backoff.maximum)

    def _fetch_with_retry(self, url: str, path: Path, cancel):
        last_error = None
        for attempt in range(1, self.attempts + 1):
            if not self.backoff.wait(cancel):
                raise Cancelled(f"cancelled before downloading {url}")
            try:
                self._stream(url, path, cancel)
                self.backoff.reset()
                return
            except _Transient as e:
                last_error = e
                path.unlink(missing_ok=True)
                shared = self.backoff.penalize(e.retry_after)
                if attempt < self.attempts:
                    delay = self.attempt_delay(attempt)
                    log.warning("download %s failed (%s), attempt %d/%d, retrying in %.1fs",
                                url, e, attempt, self.attempts, max(delay, shared))
                    if not pause(delay, cancel):
                        raise Cancelled(f"cancelled while retrying {url}")
        raise TransientDownloadError(
            f"{url}: giving up after {self.attempts} attempts: {last_error}") from last_error

    def _stream(self, url: str, path: Path, cancel):
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                status = resp.status_code
                if status == 429 or status >= 500:
                    raise _Transient(f"HTTP {status}", retry_after_seconds(resp.headers))
                if status >= 400:
                    raise FatalDownloadError(f"{url}: HTTP {status}")
                with open(path, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if cancel is not None and cancel.is_set():
                            raise Cancelled(f"cancelled while downloading {url}")
                        if chunk:
                            f.write(chunk)
        except (requests.ConnectionError, requests.Timeout,
                requests.exceptions.ChunkedEncodingError) as e:
            raise _Transient(str(e)) from e
        except requests.RequestException as e:
            raise FatalDownloadError(f"{url}: {e}") from e
        except OSError as e:
            raise FatalDownloadError(f"cannot write {path}: {e}") from e

    def _verify(self, resolved: ResolvedDownload, path: Path):
        if path.stat().st_size == 0:
            raise FatalDownloadError(f"{resolved.url}: empty response body")
        expected = resolved.content_hash.strip().lower()
        if not self.verify_hash or not MD5_RE.match(expected):
            return
        actual = file_md5(path)
        if actual != expected:
            raise IntegrityError(f"{resolved.url}: md5 {actual} != expected {expected}")
