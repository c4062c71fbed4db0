import hashlib
import threading
from pathlib import Path

import pytest
import requests

from config import CurationConfig
from models import AnalysisResult
from pipeline import CurationPipeline


def md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def profile_entry(link, create_time=1_700_000_000, names="Foo,Bar",
                  races="protoss,terran", types="1,1", game_id="", map_title="Polypoid"):
    return {
        "link": link,
        "create_time": create_time,
        "attributes": {
            "replay_player_names": names,
            "replay_player_races": races,
            "replay_player_types": types,
            "game_id": game_id or f"game-{link}",
            "map_title": map_title,
        },
    }


def detail(*replays):
    return {"replays": list(replays)}


def replay_url(url, body: bytes | None = None, create_time=1_700_000_000, digest=None):
    return {"url": url, "md5": digest if digest is not None else (md5(body) if body else ""),
            "create_time": create_time, "attributes": {}}


class FakeResponse:
    def __init__(self, status_code=200, body=b"", headers=None, json_data=None,
                 on_chunk=None, chunk_size=4):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self._json = json_data
        self.on_chunk = on_chunk
        self.chunk_size = chunk_size

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def close(self):
        pass

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), self.chunk_size):
            if self.on_chunk is not None:
                self.on_chunk(i)
            yield self.body[i:i + self.chunk_size]

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)

    def json(self):
        return self._json


class FakeSession:
    """Serves queued responses per URL; the last one repeats once the queue drains."""

    def __init__(self, routes=None):
        self.routes = {url: list(v) if isinstance(v, list) else [v]
                       for url, v in (routes or {}).items()}
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, **kwargs):
        with self._lock:
            self.calls.append(url)
            queue = self.routes.get(url)
            if not queue:
                return FakeResponse(404)
            item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeApi:
    def __init__(self, profile=None, details=None):
        self.profile = profile if profile is not None else {"replays": []}
        self.details = details or {}
        self.calls = []
        self._lock = threading.Lock()

    def scr_profile(self, toon, gateway):
        with self._lock:
            self.calls.append(("profile", toon, gateway))
        if isinstance(self.profile, Exception):
            raise self.profile
        return self.profile

    def matchmaker_player_info(self, link):
        with self._lock:
            self.calls.append(("detail", link))
        item = self.details.get(link, {"replays": []})
        if isinstance(item, list):
            item = item.pop(0) if len(item) > 1 else item[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeAnalyzer:
    """Looks up the staged file's bytes in a table instead of running screp."""

    def __init__(self, results):
        self.results = results
        self.calls = []

    def check_available(self):
        pass

    def analyze(self, path, cancel=None):
        data = Path(path).read_bytes()
        self.calls.append(data)
        outcome = self.results[data]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def analysis(duration, names=("Foo", "Bar"), races=("Protoss", "Terran")):
    return AnalysisResult(player_names=tuple(names), player_races=tuple(races),
                          duration_seconds=duration)


@pytest.fixture
def config(tmp_path):
    return CurationConfig(
        replay_root=tmp_path / "Replays",
        screp_cmd="screp",
        api_base_url="http://127.0.0.1:1",
        backoff_base=0,
        backoff_max=0,
        max_concurrency=2,
    )


@pytest.fixture
def make_pipeline(config):
    def build(api, session, analyzer):
        pipeline = CurationPipeline.from_config(config, api=api, session=session)
        pipeline.analyzer = analyzer
        return pipeline
    return build
