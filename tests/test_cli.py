import curate_replays
from models import RunResult


def test_missing_api_address_exits_2(monkeypatch, capsys):
    monkeypatch.delenv("BWTOOLS_API_PORT", raising=False)
    assert curate_replays.main(["Foo"]) == 2
    assert "BWTOOLS_API_PORT" in capsys.readouterr().out


def test_run_summary_is_printed(monkeypatch, tmp_path, capsys):
    seen = {}

    class StubPipeline:
        def run(self, request, cancel=None):
            seen["request"] = request
            return RunResult()

    def from_config(config):
        seen["config"] = config
        return StubPipeline()

    monkeypatch.setattr(curate_replays.CurationPipeline, "from_config", staticmethod(from_config))
    code = curate_replays.main(["Foo", "--port", "57421", "--matchup", "pvt", "--count", "5",
                                "--alias", "FooMain", "--replay-root", str(tmp_path),
                                "--screp", "/opt/screp", "--no-verify"])

    assert code == 0
    assert seen["config"].api_base_url == "http://127.0.0.1:57421"
    assert seen["config"].replay_root == tmp_path
    assert seen["config"].screp_cmd == "/opt/screp"
    assert seen["config"].verify_hash is False
    assert seen["request"].matchup == "pvt"
    assert seen["request"].max_count == 5
    assert seen["request"].profile_name == "FooMain"
    assert "Done: 0 downloaded, 0 skipped, 0 rejected, 0 failed" in capsys.readouterr().out
