"""
Replay analysis via screp (https://github.com/icza/screp).

screp prints the replay header as JSON; we only need the players and the
game length.
"""

import json
import logging
import shutil
import subprocess
import threading
from pathlib import Path

import races
from errors import Cancelled, CorruptReplay, ToolMissing
from models import AnalysisResult

log = logging.getLogger(__name__)

FRAME_MS = 42  # 1 frame = 42 milliseconds
POLL_INTERVAL = 0.2


def parse_report(data: dict) -> AnalysisResult:
    """Turn screp's JSON report into an AnalysisResult (human players only)."""
    try:
        return _parse_header(data["Header"])
    except (KeyError, AttributeError, TypeError) as e:
        raise CorruptReplay(f"malformed screp report: {e!r}") from e


def _parse_header(header: dict) -> AnalysisResult:
    frames = header.get("Frames")
    if not isinstance(frames, int) or frames < 0:
        raise CorruptReplay(f"bad frame count: {frames!r}")

    names, race_labels = [], []
    for p in header.get("Players") or []:
        if (p.get("Type") or {}).get("Name") != "Human":
            continue
        name = (p.get("Name") or "").strip()
        if not name:
            continue
        names.append(name)
        race_labels.append(races.normalize_label((p.get("Race") or {}).get("Name", "")) or "Unknown")

    if not names:
        raise CorruptReplay("no human players in replay header")

    return AnalysisResult(
        player_names=tuple(names),
        player_races=tuple(race_labels),
        duration_seconds=int(frames * FRAME_MS / 1000),
    )


class ScrepAnalyzer:
    """Runs screp once per staged file. No retries: corruption is not transient."""

    def __init__(self, screp_cmd: str = "screp", timeout: float = 30):
        self.screp_cmd = str(screp_cmd)
        self.timeout = timeout

    def check_available(self):
        """Fail fast before any download if screp cannot be found."""
        if shutil.which(self.screp_cmd) is None:
            raise ToolMissing(f"screp not found: {self.screp_cmd}")

    def analyze(self, replay_path: Path, cancel: threading.Event | None = None) -> AnalysisResult:
        stdout, stderr, returncode = self._run([self.screp_cmd, str(replay_path)], cancel)
        if returncode != 0:
            raise CorruptReplay(f"screp exited with status {returncode}: {stderr.strip()[:200]}")
        try:
            data = json.loads(stdout)
        except ValueError as e:
            raise CorruptReplay(f"unparsable screp output for {Path(replay_path).name}") from e
        if not isinstance(data, dict):
            raise CorruptReplay("unexpected screp output")
        return parse_report(data)

    def _run(self, cmd, cancel):
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                    text=True)
        except FileNotFoundError as e:
            raise ToolMissing(f"screp not found: {self.screp_cmd}") from e
        except PermissionError as e:
            raise ToolMissing(f"screp is not executable: {self.screp_cmd}") from e

        waited = 0.0
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
                return stdout, stderr, proc.returncode
            except subprocess.TimeoutExpired:
                waited += POLL_INTERVAL
                if cancel is not None and cancel.is_set():
                    proc.kill()
                    proc.communicate()
                    raise Cancelled("cancelled during analysis")
                if waited >= self.timeout:
                    proc.kill()
                    proc.communicate()
                    raise CorruptReplay(f"screp timed out after {self.timeout}s")
