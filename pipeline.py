"""
Replay curation pipeline: discover -> resolve -> dedup -> download ->
analyze -> filter -> finalize, one worker per candidate.

Each candidate moves forward through CandidateState and ends in exactly one
terminal state. Per-candidate failures are recorded and the run goes on;
a missing analysis tool or an unreadable manifest stops the whole run.
"""

import logging
import threading
from concurrent.futures import CancelledError, ThreadPoolExecutor, as_completed
from pathlib import Path

import requests

import races
from bw_api import BwWebApi
from config import CurationConfig
from curation import MinimumDurationFilter
from download import DownloadExecutor, sweep_staging
from errors import (Cancelled, CurationError, ManifestNotRecorded, ResolveError,
                    ToolMissing, UpstreamError)
from finalize import Finalizer
from manifest import ManifestStore
from models import (CandidateOutcome, CandidateState, ReplayCandidate, ReplayRequest,
                    RunResult)
from resolver import CandidateResolver
from screp import ScrepAnalyzer
from throttle import SharedBackoff

log = logging.getLogger(__name__)

# Forward order of the non-terminal states; terminal states are absorbing.
_STATE_ORDER = {
    CandidateState.DISCOVERED: 0,
    CandidateState.RESOLVED: 1,
    CandidateState.DOWNLOADING: 2,
    CandidateState.DOWNLOADED: 3,
    CandidateState.ANALYZED: 4,
    CandidateState.ACCEPTING: 5,
}


def advance(outcome: CandidateOutcome, state: CandidateState):
    """Move a candidate forward. Backward moves and leaving a terminal state are bugs."""
    current = outcome.state
    if current.terminal:
        raise RuntimeError(f"{outcome.candidate.link}: already {current.value}, cannot become {state.value}")
    if not state.terminal and _STATE_ORDER[state] <= _STATE_ORDER[current]:
        raise RuntimeError(f"{outcome.candidate.link}: {current.value} -> {state.value} goes backwards")
    log.debug("%s: %s -> %s", outcome.candidate.link, current.value, state.value)
    outcome.state = state


class CurationPipeline:

    def __init__(self, resolver: CandidateResolver, store: ManifestStore,
                 downloader: DownloadExecutor, analyzer, finalizer: Finalizer,
                 staging_dir: Path, curation_filter=None, max_concurrency: int = 3):
        self.resolver = resolver
        self.store = store
        self.downloader = downloader
        self.analyzer = analyzer
        self.finalizer = finalizer
        self.staging_dir = Path(staging_dir)
        self.curation_filter = curation_filter or MinimumDurationFilter()
        self.max_concurrency = max(1, max_concurrency)
        self._inflight: set[str] = set()
        self._inflight_lock = threading.Lock()
        self._run_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: CurationConfig, api=None,
                    session: requests.Session | None = None) -> "CurationPipeline":
        session = session or requests.Session()
        backoff = SharedBackoff(config.backoff_base, config.backoff_max)
        if api is None:
            if not config.api_base_url:
                raise ValueError("no web API address configured")
            api = BwWebApi(config.api_base_url, session=session, timeout=config.request_timeout)
        store = ManifestStore(config.manifest_path)
        return cls(
            resolver=CandidateResolver(api, backoff=backoff,
                                       profile_cap=config.max_profile_replays),
            store=store,
            downloader=DownloadExecutor(session=session, backoff=backoff,
                                        attempts=config.download_attempts,
                                        timeout=config.request_timeout,
                                        verify_hash=config.verify_hash,
                                        retry_delay=config.backoff_base),
            analyzer=ScrepAnalyzer(config.screp_cmd, timeout=config.analysis_timeout),
            finalizer=Finalizer(store, config.bwtools_root,
                                max_collisions=config.max_name_collisions),
            staging_dir=config.staging_dir,
            curation_filter=MinimumDurationFilter(config.min_duration_seconds),
            max_concurrency=config.max_concurrency,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, request: ReplayRequest, cancel: threading.Event | None = None) -> RunResult:
        """Curate replays for one player/matchup request.

        Raises ToolMissing or StoreError when the run cannot make progress at
        all. Everything else ends up in the returned RunResult.
        """
        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError("this pipeline is already running; one run per manifest at a time")
        try:
            return self._run(request, cancel or threading.Event())
        finally:
            self._run_lock.release()

    def _run(self, request: ReplayRequest, cancel: threading.Event) -> RunResult:
        result = RunResult()
        check = getattr(self.analyzer, "check_available", None)
        if check is not None:
            check()
        self.store.load_all()
        sweep_staging(self.staging_dir)

        pair = races.parse_matchup(request.matchup) if request.matchup else None
        if request.matchup and pair is None:
            raise ValueError(f"unrecognized matchup: {request.matchup!r}")
        matchup = races.matchup_key(pair)
        log.info("curating %s (%s) for profile %s, up to %d replays",
                 request.player, matchup, request.profile_name, request.max_count)

        try:
            candidates = self.resolver.list_candidates(
                request.player, request.gateway, request.matchup, request.max_count, cancel=cancel)
        except Cancelled:
            return result
        except ResolveError as e:
            log.error("profile lookup failed: %s", e)
            result.errors.append(str(e))
            return result

        futures = {}
        collected = set()
        pool = ThreadPoolExecutor(max_workers=self.max_concurrency,
                                  thread_name_prefix="curate")
        try:
            for candidate in candidates:
                futures[pool.submit(self._process, candidate, request, matchup, cancel)] = candidate
            self._drain(futures, collected, result, cancel)
        except KeyboardInterrupt:
            log.warning("interrupted; cancelling %d in-flight replays",
                        len(futures) - len(collected))
            self._cancel_all(futures, cancel)
            self._drain(futures, collected, result, cancel)
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        s = result.summary
        log.info("done: %d downloaded, %d skipped, %d rejected, %d failed, %d cancelled",
                 s.downloaded, s.skipped, s.rejected, s.failed, s.cancelled)
        return result

    def _drain(self, futures, collected, result: RunResult, cancel):
        fatal = None
        pending = [f for f in futures if f not in collected]
        for future in as_completed(pending):
            collected.add(future)
            candidate = futures[future]
            try:
                outcome = future.result()
            except CancelledError:
                outcome = CandidateOutcome(candidate, CandidateState.CANCELLED)
            except ToolMissing as e:
                fatal = fatal or e
                self._cancel_all(futures, cancel)
                outcome = CandidateOutcome(candidate, CandidateState.FAILED, error=e)
            self._record(outcome, result)
        if fatal is not None:
            raise fatal

    @staticmethod
    def _cancel_all(futures, cancel: threading.Event):
        cancel.set()
        for f in futures:
            f.cancel()

    @staticmethod
    def _record(outcome: CandidateOutcome, result: RunResult):
        result.outcomes.append(outcome)
        result.summary.count(outcome.state)
        if outcome.replay is not None:
            result.finalized.append(outcome.replay)
        if outcome.error is not None and not isinstance(outcome.error, Cancelled):
            result.errors.append(f"{outcome.candidate.link}: {outcome.error}")

    # ------------------------------------------------------------------
    # One candidate
    # ------------------------------------------------------------------

    def _claim(self, key: str) -> bool:
        with self._inflight_lock:
            if key in self._inflight:
                return False
            self._inflight.add(key)
            return True

    def _release(self, key: str):
        with self._inflight_lock:
            self._inflight.discard(key)

    def _resolve(self, candidate: ReplayCandidate, cancel):
        try:
            return self.resolver.resolve(candidate, cancel=cancel)
        except UpstreamError as e:
            log.warning("resolve %s failed (%s), retrying once", candidate.link, e)
            return self.resolver.resolve(candidate, cancel=cancel)

    def _process(self, candidate: ReplayCandidate, request: ReplayRequest, matchup: str,
                 cancel: threading.Event) -> CandidateOutcome:
        outcome = CandidateOutcome(candidate)
        staged = None
        try:
            if cancel.is_set():
                raise Cancelled("cancelled before start")
            resolved = self._resolve(candidate, cancel)
            advance(outcome, CandidateState.RESOLVED)
            key = outcome.identity_key = resolved.identity_key

            if self.store.contains(key) or not self._claim(key):
                log.debug("%s: %s already curated or in flight", candidate.link, key)
                advance(outcome, CandidateState.SKIPPED)
                return outcome
            try:
                advance(outcome, CandidateState.DOWNLOADING)
                staged = self.downloader.fetch(resolved, self.staging_dir, cancel=cancel)
                advance(outcome, CandidateState.DOWNLOADED)

                if cancel.is_set():
                    raise Cancelled("cancelled before analysis")
                analysis = self.analyzer.analyze(staged.path, cancel=cancel)
                advance(outcome, CandidateState.ANALYZED)

                if not self.curation_filter.accept(analysis):
                    log.debug("%s: rejected (%ds)", candidate.link, analysis.duration_seconds)
                    advance(outcome, CandidateState.REJECTED)
                    return outcome
                advance(outcome, CandidateState.ACCEPTING)

                if cancel.is_set():
                    raise Cancelled("cancelled before finalize")
                replay = self.finalizer.finalize(staged, analysis, request.profile_name,
                                                 matchup, main_player=request.player)
                staged = None
                if replay is None:
                    advance(outcome, CandidateState.SKIPPED)
                else:
                    outcome.replay = replay
                    advance(outcome, CandidateState.FINALIZED)
            finally:
                self._release(key)

        except Cancelled as e:
            outcome.error = e
            advance(outcome, CandidateState.CANCELLED)
        except ManifestNotRecorded as e:
            staged = None
            outcome.replay = e.replay
            outcome.error = e
            advance(outcome, CandidateState.FINALIZED)
        except ToolMissing:
            raise
        except (CurationError, OSError) as e:
            log.warning("%s failed: %s", candidate.link, e)
            outcome.error = e
            advance(outcome, CandidateState.FAILED)
        except Exception as e:
            log.exception("%s failed unexpectedly", candidate.link)
            outcome.error = e
            if not outcome.state.terminal:
                advance(outcome, CandidateState.FAILED)
        finally:
            if staged is not None:
                staged.path.unlink(missing_ok=True)
        return outcome
