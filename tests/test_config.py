import json

import pytest

from aether.config import Config, get_model, get_model_for_tool, load_config, set_config


@pytest.fixture(autouse=True)
def reset_config(monkeypatch):
    for name in ("AETHER_CONFIG", "AETHER_OLLAMA_URL", "AETHER_LOG_LEVEL", "AETHER_SHELL", "AETHER_MAX_STEPS", "AETHER_CONTEXT_CACHE"):
        monkeypatch.delenv(name, raising=False)
    yield
    set_config(None)


def test_defaults_when_file_missing(tmp_path):
    config = load_config(str(tmp_path / "missing.json"))
    assert config.get("llm.base_url") == "http://localhost:11434"
    assert config.get("agent.max_steps") == 5
    assert config.get("session.wake_phrases") == ["hey sam"]
    assert config.get("nonexistent.key", "fallback") == "fallback"


def test_json_is_deep_merged(tmp_path):
    path = tmp_path / "aether.json"
    path.write_text(json.dumps({"llm": {"models": {"router": "llama3.2:3b"}}, "session": {"silence_timeout_seconds": 2}}))

    config = load_config(str(path))

    assert config.get("llm.models.router") == "llama3.2:3b"
    assert config.get("llm.models.intent") == "gemma3:1b"
    assert config.get("session.silence_timeout_seconds") == 2
    assert config.get("session.inactivity_timeout_seconds") == 10.0


def test_malformed_json_falls_back(tmp_path):
    path = tmp_path / "aether.json"
    path.write_text("{oops")
    assert load_config(str(path)).get("agent.max_steps") == 5


def test_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("AETHER_OLLAMA_URL", "http://gpu-box:11434")
    monkeypatch.setenv("AETHER_MAX_STEPS", "8")
    monkeypatch.setenv("AETHER_SHELL", "/bin/sh")
    config = load_config(str(tmp_path / "missing.json"))
    assert config.get("llm.base_url") == "http://gpu-box:11434"
    assert config.get("agent.max_steps") == 8
    assert config.get("agent.shell") == "/bin/sh"


def test_bad_env_value_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv("AETHER_MAX_STEPS", "lots")
    assert load_config(str(tmp_path / "missing.json")).get("agent.max_steps") == 5


def test_config_path_from_env(tmp_path, monkeypatch):
    path = tmp_path / "custom.json"
    path.write_text(json.dumps({"agent": {"max_steps": 3}}))
    monkeypatch.setenv("AETHER_CONFIG", str(path))
    assert load_config().get("agent.max_steps") == 3


def test_hash_tracks_content():
    assert Config({"a": 1}).hash == Config({"a": 1}).hash
    assert Config({"a": 1}).hash != Config({"a": 2}).hash


class TestModelPolicy:
    def test_roles(self, config):
        assert get_model("router", config) == "gemma3:4b"
        assert get_model("unknown-role", config) == "gemma2:2b"

    def test_tool_map_names_role(self, config):
        assert get_model_for_tool("execute_bash", config) == "qwen2.5-coder:3b"
        assert get_model_for_tool("read_file", config) == "gemma2:2b"

    def test_unmapped_tool_uses_default(self, config):
        assert get_model_for_tool("launch_rocket", config) == "gemma2:2b"

    def test_tool_map_literal_model_id(self):
        config = Config({"llm": {"models": {"default": "gemma2:2b"}, "tool_models": {"execute_bash": "llama3.2:latest"}}})
        assert get_model_for_tool("execute_bash", config) == "llama3.2:latest"
