import pytest
import requests

from conftest import FakeApi, FakeResponse, detail, profile_entry, replay_url
from errors import NoReplayUrl, UpstreamError
from resolver import CandidateResolver, select_freshest
from throttle import SharedBackoff


def resolver_for(api):
    return CandidateResolver(api, backoff=SharedBackoff(base=0, maximum=0))


def test_matchup_filter_is_exactly_both_orderings():
    api = FakeApi(profile={"replays": [
        profile_entry("pt", 10, races="protoss,terran"),
        profile_entry("tp", 9, races="terran,protoss"),
        profile_entry("pz", 8, races="protoss,zerg"),
        profile_entry("caps", 7, races="Protoss,Terran"),
        profile_entry("tt", 6, races="terran,terran"),
        profile_entry("spaced", 5, races="protoss, terran"),
    ]})
    links = [c.link for c in resolver_for(api).list_candidates("Foo", 30, "PvT", 20)]
    assert links == ["pt", "tp"]


@pytest.mark.parametrize("matchup", ["PvT", "TvP", "pvt", "protoss,terran", "Terran vs Protoss"])
def test_matchup_spellings_are_equivalent(matchup):
    api = FakeApi(profile={"replays": [profile_entry("pt", races="protoss,terran")]})
    assert [c.link for c in resolver_for(api).list_candidates("Foo", 30, matchup, 5)] == ["pt"]


def test_mirror_matchup():
    api = FakeApi(profile={"replays": [
        profile_entry("zz", races="zerg,zerg"),
        profile_entry("zp", races="zerg,protoss"),
    ]})
    assert [c.link for c in resolver_for(api).list_candidates("Foo", 30, "ZvZ", 5)] == ["zz"]


def test_no_matchup_keeps_all_one_v_one_games():
    api = FakeApi(profile={"replays": [
        profile_entry("a", 3),
        profile_entry("comp", 2, types="1,0"),
        profile_entry("ffa", 1, names="A,B,C", races="zerg,zerg,zerg", types="1,1,1"),
    ]})
    assert [c.link for c in resolver_for(api).list_candidates("Foo", 30, None, 20)] == ["a"]


def test_candidates_are_newest_first_and_capped():
    entries = [profile_entry(f"r{i}", create_time=i) for i in range(30)]
    api = FakeApi(profile={"replays": entries})
    resolver = resolver_for(api)

    assert [c.link for c in resolver.list_candidates("Foo", 30, None, 3)] == ["r29", "r28", "r27"]
    assert len(list(resolver.list_candidates("Foo", 30, None, 100))) == 20
    assert list(resolver.list_candidates("Foo", 30, None, 0)) == []


def test_candidate_fields():
    api = FakeApi(profile={"replays": [profile_entry("abc", 42, game_id="g1", map_title="Eclipse")]})
    (c,) = resolver_for(api).list_candidates("Foo", 30, "PvT", 1)
    assert c.player_names == ("Foo", "Bar")
    assert c.player_races == ("protoss", "terran")
    assert c.game_id == "g1"
    assert c.map_title == "Eclipse"
    assert c.create_time == 42


def test_unknown_matchup_is_rejected_before_any_lookup():
    api = FakeApi()
    with pytest.raises(ValueError):
        resolver_for(api).list_candidates("Foo", 30, "PvX", 5)
    assert api.calls == []


def test_profile_http_error_is_upstream():
    api = FakeApi(profile=requests.HTTPError("boom", response=FakeResponse(503)))
    with pytest.raises(UpstreamError):
        resolver_for(api).list_candidates("Foo", 30, None, 5)


def test_select_freshest_prefers_latest_then_first_seen():
    a = {"url": "a", "create_time": 5}
    b = {"url": "b", "create_time": 9}
    c = {"url": "c", "create_time": 9}
    assert select_freshest([a, b, c]) is b
    assert select_freshest([c, b, a]) is c
    assert select_freshest([]) is None


def test_resolve_picks_freshest_url():
    api = FakeApi(profile={"replays": [profile_entry("l1")]},
                  details={"l1": detail(
                      replay_url("http/old", b"old", create_time=100),
                      replay_url("http/new", b"new", create_time=200),
                      replay_url("http/same", b"same", create_time=200),
                  )})
    resolver = resolver_for(api)
    (candidate,) = resolver.list_candidates("Foo", 30, None, 1)
    resolved = resolver.resolve(candidate)
    assert resolved.url == "http/new"
    assert resolved.create_time == 200
    assert resolved.candidate is candidate
    assert [c for c in api.calls if c[0] == "detail"] == [("detail", "l1")]


def test_resolve_without_urls():
    api = FakeApi(profile={"replays": [profile_entry("l1")]},
                  details={"l1": detail({"url": "  ", "md5": "", "create_time": 1})})
    resolver = resolver_for(api)
    (candidate,) = resolver.list_candidates("Foo", 30, None, 1)
    with pytest.raises(NoReplayUrl):
        resolver.resolve(candidate)


def test_resolve_transport_error_is_upstream():
    api = FakeApi(profile={"replays": [profile_entry("l1")]},
                  details={"l1": requests.ConnectionError("reset")})
    resolver = resolver_for(api)
    (candidate,) = resolver.list_candidates("Foo", 30, None, 1)
    with pytest.raises(UpstreamError):
        resolver.resolve(candidate)
    assert resolver.backoff.failures == 1


def test_identity_key_fallbacks():
    api = FakeApi(profile={"replays": [profile_entry("l1", game_id="g-1")]},
                  details={"l1": [
                      detail(replay_url("u", digest="ABCDEF0123456789ABCDEF0123456789")),
                      detail(replay_url("u", digest="")),
                  ]})
    resolver = resolver_for(api)
    (candidate,) = resolver.list_candidates("Foo", 30, None, 1)
    assert resolver.resolve(candidate).identity_key == "abcdef0123456789abcdef0123456789"
    assert resolver.resolve(candidate).identity_key == "g-1"
