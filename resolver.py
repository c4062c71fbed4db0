"""
Candidate discovery and URL resolution against the web API.

Profile payload (per replay):
    {"link": "...", "create_time": 1700000000,
     "attributes": {"replay_player_names": "Foo,Bar",
                    "replay_player_races": "protoss,terran",
                    "replay_player_types": "1,1",
                    "game_id": "...", "map_title": "..."}}

Matchmaker detail:
    {"replays": [{"url": "...", "md5": "...", "create_time": 1700000000,
                  "attributes": {...}}, ...]}
"""

import logging
import threading
from typing import Iterator

import requests

import races
from errors import Cancelled, NoReplayUrl, UpstreamError
from models import ReplayCandidate, ResolvedDownload
from throttle import SharedBackoff, retry_after_seconds

log = logging.getLogger(__name__)

PROFILE_REPLAY_CAP = 20


def split_non_empty(s: str) -> list[str]:
    return [p.strip() for p in (s or "").split(",") if p.strip()]


def _int(value, default=0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_candidate(entry: dict) -> ReplayCandidate | None:
    """Build a candidate from one profile replay entry; None if unusable."""
    link = entry.get("link")
    if not link:
        return None
    attrs = entry.get("attributes") or {}
    races_raw = attrs.get("replay_player_races") or ""
    return ReplayCandidate(
        link=str(link),
        create_time=_int(entry.get("create_time")),
        player_names=tuple(split_non_empty(attrs.get("replay_player_names"))),
        player_races=tuple(split_non_empty(races_raw)),
        game_id=str(attrs.get("game_id") or ""),
        map_title=str(attrs.get("map_title") or ""),
        races_raw=races_raw,
    )


def is_one_v_one(entry: dict) -> bool:
    """Two named players, two races, both human (type "1")."""
    attrs = entry.get("attributes") or {}
    if len(split_non_empty(attrs.get("replay_player_names"))) != 2:
        return False
    if len(split_non_empty(attrs.get("replay_player_races"))) != 2:
        return False
    types = split_non_empty(attrs.get("replay_player_types"))
    return sum(1 for t in types if t == "1") == 2


def matches_matchup(candidate: ReplayCandidate, orderings: frozenset[str] | None) -> bool:
    """Exact, case-sensitive comparison of the raw race list against both orderings."""
    if orderings is None:
        return True
    return candidate.races_raw in orderings


def select_freshest(options: list[dict]) -> dict | None:
    """Entry with the greatest create_time; ties go to the first one seen."""
    best = None
    for opt in options:
        if best is None or _int(opt.get("create_time")) > _int(best.get("create_time")):
            best = opt
    return best


class CandidateResolver:

    def __init__(self, api, backoff: SharedBackoff | None = None,
                 profile_cap: int = PROFILE_REPLAY_CAP):
        self.api = api
        self.backoff = backoff or SharedBackoff()
        self.profile_cap = profile_cap

    def _call(self, what: str, fn, *args, cancel: threading.Event | None = None):
        if not self.backoff.wait(cancel):
            raise Cancelled(f"cancelled before {what}")
        try:
            result = fn(*args)
        except requests.HTTPError as e:
            resp = e.response
            status = resp.status_code if resp is not None else None
            if status == 429 or (status is not None and status >= 500):
                self.backoff.penalize(retry_after_seconds(resp.headers if resp is not None else None))
            raise UpstreamError(f"{what}: HTTP {status}") from e
        except (requests.RequestException, ValueError) as e:
            self.backoff.penalize()
            raise UpstreamError(f"{what}: {e}") from e
        self.backoff.reset()
        return result

    def list_candidates(self, player: str, gateway: int, matchup: str | None,
                        requested_count: int,
                        cancel: threading.Event | None = None) -> Iterator[ReplayCandidate]:
        """Newest-first 1v1 candidates for the requested matchup.

        The profile query runs eagerly so an unavailable API fails the whole
        run up front; candidates are then yielded lazily.
        """
        orderings = None
        if matchup:
            pair = races.parse_matchup(matchup)
            if pair is None:
                raise ValueError(f"unrecognized matchup: {matchup!r}")
            orderings = races.matchup_orderings(pair)

        profile = self._call(f"profile {player}@{gateway}", self.api.scr_profile,
                             player, gateway, cancel=cancel)
        entries = [e for e in (profile or {}).get("replays") or [] if isinstance(e, dict)]
        entries.sort(key=lambda e: _int(e.get("create_time")), reverse=True)
        entries = entries[:self.profile_cap]
        limit = min(max(requested_count, 0), self.profile_cap, len(entries))
        log.info("profile %s: %d replay entries, want up to %d", player, len(entries), limit)
        return self._iter_candidates(entries, orderings, limit)

    def _iter_candidates(self, entries, orderings, limit) -> Iterator[ReplayCandidate]:
        produced = 0
        for entry in entries:
            if produced >= limit:
                return
            if not is_one_v_one(entry):
                continue
            candidate = parse_candidate(entry)
            if candidate is None or not matches_matchup(candidate, orderings):
                continue
            produced += 1
            yield candidate

    def resolve(self, candidate: ReplayCandidate,
                cancel: threading.Event | None = None) -> ResolvedDownload:
        """One matchmaker lookup; picks the freshest URL."""
        detail = self._call(f"matchmaker detail {candidate.link}",
                            self.api.matchmaker_player_info, candidate.link, cancel=cancel)
        options = [r for r in (detail or {}).get("replays") or []
                   if isinstance(r, dict) and str(r.get("url") or "").strip()]
        best = select_freshest(options)
        if best is None:
            raise NoReplayUrl(f"no replay URLs for {candidate.link}")
        return ResolvedDownload(
            candidate=candidate,
            url=str(best["url"]).strip(),
            content_hash=str(best.get("md5") or "").strip(),
            create_time=_int(best.get("create_time"), candidate.create_time),
        )
