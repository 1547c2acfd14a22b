import copy
import json

from aether import cli
from aether.bootstrap import build_orchestrator, build_session, build_synthesizer
from aether.config import Config, _DEFAULT_CONFIG, set_config
from aether.llm_gateway import OllamaGateway
from aether.policy import RUNTIME_CONTEXT_CACHE_KEY
from aether.speech import CommandSynthesizer, SilentSynthesizer
from aether.tools.shell import ShellCommandTool


def _config(**agent):
    data = copy.deepcopy(_DEFAULT_CONFIG)
    data["agent"].update(agent)
    return Config(data)

def test_build_orchestrator_from_config():
    orchestrator = build_orchestrator(_config(max_steps=7, shell="/bin/sh"))
    assert orchestrator.max_steps == 7
    assert isinstance(orchestrator.gateway, OllamaGateway)
    tool = orchestrator.registry.resolve("execute_bash")
    assert isinstance(tool, ShellCommandTool)
    assert tool.shell == "/bin/sh"

def test_session_shares_orchestrator_gateway():
    config = _config()
    orchestrator = build_orchestrator(config)
    session = build_session(config, orchestrator=orchestrator)
    assert session.gateway is orchestrator.gateway
    assert isinstance(session.synthesizer, SilentSynthesizer)

def test_build_synthesizer():
    config = _config()
    assert isinstance(build_synthesizer(config, enabled=False), SilentSynthesizer)
    assert isinstance(build_synthesizer(config), CommandSynthesizer)

class TestCli:
    def test_parser(self):
        args = cli.build_parser().parse_args(["run", "list", "files"])
        assert args.command == "run"
        assert args.objective == ["list", "files"]

    def test_clear_cache(self, tmp_path, monkeypatch, capsys):
        store_path = tmp_path / "store.json"
        store_path.write_text(json.dumps({RUNTIME_CONTEXT_CACHE_KEY: "{}", "other": "kept"}))
        monkeypatch.setenv("AETHER_CONTEXT_CACHE", str(store_path))
        monkeypatch.chdir(tmp_path)

        try:
            assert cli.main(["--config", str(tmp_path / "none.json"), "clear-cache"]) == 0
        finally:
            set_config(None)

        assert json.loads(store_path.read_text()) == {"other": "kept"}
        assert "cleared" in capsys.readouterr().out

    def test_voice_requires_sidecar_path(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        try:
            assert cli.main(["--config", str(tmp_path / "none.json"), "voice"]) == 2
        finally:
            set_config(None)
        assert "sidecar_path" in capsys.readouterr().err
