"""
Data types passed between the replay curation stages.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


@dataclass(frozen=True)
class ReplayCandidate:
    """One replay entry from a profile query, not yet resolved."""
    link: str
    create_time: int
    player_names: tuple[str, ...]
    player_races: tuple[str, ...]
    game_id: str = ""
    map_title: str = ""
    races_raw: str = ""


@dataclass(frozen=True)
class ResolvedDownload:
    candidate: ReplayCandidate
    url: str
    content_hash: str
    create_time: int

    @property
    def identity_key(self) -> str:
        """Dedup key: content hash, else game id, else the remote link."""
        if self.content_hash.strip():
            return self.content_hash.strip().lower()
        if self.candidate.game_id.strip():
            return self.candidate.game_id.strip()
        return self.candidate.link


@dataclass(frozen=True)
class StagedFile:
    path: Path
    resolved: ResolvedDownload

    @property
    def identity_key(self) -> str:
        return self.resolved.identity_key


@dataclass(frozen=True)
class ManifestEntry:
    identity_key: str
    finalized_path: str
    recorded_at: int


@dataclass(frozen=True)
class AnalysisResult:
    player_names: tuple[str, ...]
    player_races: tuple[str, ...]
    duration_seconds: int


@dataclass(frozen=True)
class FinalizedReplay:
    matchup: str
    destination_path: Path
    source_candidate: ReplayCandidate


@dataclass(frozen=True)
class ReplayRequest:
    """What the caller wants: whose replays, which matchup, how many."""
    player: str
    gateway: int
    matchup: str | None = None
    max_count: int = 20
    alias: str | None = None

    @property
    def profile_name(self) -> str:
        if self.alias and self.alias.strip():
            return self.alias.strip()
        return self.player


class CandidateState(Enum):
    DISCOVERED = "discovered"
    RESOLVED = "resolved"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    ANALYZED = "analyzed"
    ACCEPTING = "accepting"
    # terminal
    FINALIZED = "finalized"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    CandidateState.FINALIZED, CandidateState.SKIPPED, CandidateState.REJECTED,
    CandidateState.FAILED, CandidateState.CANCELLED,
})


@dataclass
class CandidateOutcome:
    candidate: ReplayCandidate
    state: CandidateState = CandidateState.DISCOVERED
    error: Exception | None = None
    replay: FinalizedReplay | None = None
    identity_key: str | None = None


@dataclass
class RunSummary:
    downloaded: int = 0
    skipped: int = 0
    rejected: int = 0
    failed: int = 0
    cancelled: int = 0

    def count(self, state: CandidateState):
        if state == CandidateState.FINALIZED:
            self.downloaded += 1
        elif state == CandidateState.SKIPPED:
            self.skipped += 1
        elif state == CandidateState.REJECTED:
            self.rejected += 1
        elif state == CandidateState.FAILED:
            self.failed += 1
        elif state == CandidateState.CANCELLED:
            self.cancelled += 1


@dataclass
class RunResult:
    summary: RunSummary = field(default_factory=RunSummary)
    finalized: list[FinalizedReplay] = field(default_factory=list)
    outcomes: list[CandidateOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
