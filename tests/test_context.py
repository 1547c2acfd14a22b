import json

import pytest

from aether.context import ContextService, LocalStore, ProbeError, RuntimeContext
from aether.policy import RUNTIME_CONTEXT_CACHE_KEY

CACHED = {"os": "Linux", "user": "cached", "home": "/home/cached", "cwd": "/srv", "shell": "/bin/sh"}


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "store.json")


class TestLocalStore:
    def test_roundtrip_and_remove(self, store):
        store.set_item("k", "v")
        assert store.get_item("k") == "v"
        store.remove_item("k")
        assert store.get_item("k") is None

    def test_corrupt_file_reads_as_empty(self, store):
        store.path.write_text("{not json")
        assert store.get_item("k") is None
        store.set_item("k", "v")
        assert json.loads(store.path.read_text()) == {"k": "v"}


def test_runtime_context_validation():
    with pytest.raises(ValueError):
        RuntimeContext.from_dict({"os": "Linux"})
    assert RuntimeContext.from_dict(CACHED).user == "cached"


@pytest.mark.asyncio
async def test_probes_and_persists(store):
    service = ContextService(store, shell="/bin/sh")
    await service.initialize()

    ctx = service.get_context()
    assert ctx.user
    assert ctx.home.startswith("/")
    assert ctx.shell == "/bin/sh"
    assert json.loads(store.get_item(RUNTIME_CONTEXT_CACHE_KEY))["user"] == ctx.user


@pytest.mark.asyncio
async def test_cached_context_skips_probes(store, monkeypatch):
    store.set_item(RUNTIME_CONTEXT_CACHE_KEY, json.dumps(CACHED))
    service = ContextService(store, shell="/bin/sh")

    async def no_probe(command):
        raise AssertionError("probe should not run")

    monkeypatch.setattr(service, "_probe", no_probe)
    await service.initialize()
    await service.initialize()

    assert service.get_context().user == "cached"


@pytest.mark.asyncio
async def test_invalid_cache_is_replaced(store):
    store.set_item(RUNTIME_CONTEXT_CACHE_KEY, "{broken")
    service = ContextService(store, shell="/bin/sh")
    await service.initialize()

    assert RuntimeContext.from_dict(json.loads(store.get_item(RUNTIME_CONTEXT_CACHE_KEY)))


@pytest.mark.asyncio
async def test_probe_failure_uses_unpersisted_fallback(store, monkeypatch):
    service = ContextService(store, shell="/bin/sh")

    async def failing_probe(command):
        raise ProbeError(f"Command '{command}' failed")

    monkeypatch.setattr(service, "_probe", failing_probe)
    await service.initialize()

    assert service.get_context().user == "unknown"
    assert store.get_item(RUNTIME_CONTEXT_CACHE_KEY) is None


@pytest.mark.asyncio
async def test_missing_shell_uses_fallback(store):
    service = ContextService(store, shell="/nonexistent/shell")
    await service.initialize()
    assert service.get_context().user == "unknown"


def test_context_string_before_initialize(store):
    text = ContextService(store, shell="/bin/sh").get_context_string()
    assert text.startswith("## Runtime Context")
    assert "- User: unknown" in text
    assert "- Shell: /bin/sh" in text


@pytest.mark.asyncio
async def test_clear_cache(store):
    store.set_item(RUNTIME_CONTEXT_CACHE_KEY, json.dumps(CACHED))
    service = ContextService(store, shell="/bin/sh")
    await service.initialize()

    service.clear_cache()

    assert not service.initialized
    assert store.get_item(RUNTIME_CONTEXT_CACHE_KEY) is None
