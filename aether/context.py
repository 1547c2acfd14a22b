"""
Runtime Context Cache

Environment facts (OS, user, home, cwd, shell) injected into prompts so the
model grounds generated commands in the real machine.

Lifecycle:
- initialize() is idempotent. In-memory context wins, then the durable store,
  then live probes (whoami / $HOME / pwd, run concurrently).
- Probe results are persisted under a fixed cache key and reused verbatim
  until clear_cache().
- Any probe failure substitutes a hardcoded fallback context. The fallback is
  held in memory only; it is never persisted.
"""

import asyncio
import json
import logging
import os
import platform
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional

from aether.config import default_shell
from aether.policy import RUNTIME_CONTEXT_CACHE_KEY

logger = logging.getLogger(__name__)

_PROBE_TIMEOUT_SECONDS = 5.0


class ProbeError(RuntimeError):
    """An environment probe exited non-zero or timed out."""


@dataclass(frozen=True)
class RuntimeContext:
    os: str
    user: str
    home: str
    cwd: str
    shell: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RuntimeContext":
        fields = ("os", "user", "home", "cwd", "shell")
        if not isinstance(data, dict):
            raise ValueError("runtime context must be a JSON object")
        missing = [name for name in fields if not isinstance(data.get(name), str)]
        if missing:
            raise ValueError(f"runtime context missing fields: {', '.join(missing)}")
        return cls(**{name: data[name] for name in fields})


class LocalStore:
    """
    Durable string key/value store backed by a single JSON file.

    Values are opaque strings; callers serialize. Read errors are treated as
    an empty store so a corrupt file never blocks startup.
    """

    def __init__(self, path):
        self.path = Path(os.path.expanduser(str(path)))

    def get_item(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[LocalStore] Unreadable store at {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


def detect_os_name() -> str:
    system = platform.system()
    return {"Darwin": "macOS", "Linux": "Linux", "Windows": "Windows"}.get(system, system or "unknown")


class ContextService:
    """Lazily initialized, durably cached runtime context."""

    def __init__(
        self,
        store: LocalStore,
        shell: Optional[str] = None,
        probe_timeout: float = _PROBE_TIMEOUT_SECONDS,
    ):
        self.store = store
        self.shell = shell or default_shell()
        self.probe_timeout = probe_timeout
        self._context: Optional[RuntimeContext] = None
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._context is not None

    async def initialize(self) -> None:
        if self._context is not None:
            return

        async with self._lock:
            if self._context is not None:
                return

            logger.info("[ContextService] Initializing runtime context...")
            cached = self._load_cached()
            if cached is not None:
                self._context = cached
                logger.info(f"[ContextService] Context loaded from cache: {cached}")
                return

            try:
                user, home, cwd = await asyncio.gather(
                    self._probe("whoami"),
                    self._probe("echo $HOME"),
                    self._probe("pwd"),
                )
            except (OSError, ProbeError) as e:
                logger.error(f"[ContextService] Failed to gather context: {e}")
                self._context = self._fallback_context()
                return

            self._context = RuntimeContext(
                os=detect_os_name(),
                user=user,
                home=home,
                cwd=cwd,
                shell=self.shell,
            )
            try:
                self.store.set_item(RUNTIME_CONTEXT_CACHE_KEY, json.dumps(self._context.to_dict()))
            except OSError as e:
                logger.warning(f"[ContextService] Could not persist context: {e}")
            logger.info(f"[ContextService] Context acquired & cached: {self._context}")

    def get_context(self) -> RuntimeContext:
        if self._context is None:
            logger.warning("[ContextService] Context accessed before initialization. Returning fallback.")
            return self._fallback_context()
        return self._context

    def get_context_string(self) -> str:
        ctx = self.get_context()
        return (
            "## Runtime Context\n"
            f"- OS: {ctx.os}\n"
            f"- User: {ctx.user}\n"
            f"- Home: {ctx.home}\n"
            f"- CWD (Current Working Directory): {ctx.cwd}\n"
            f"- Shell: {ctx.shell}"
        )

    def clear_cache(self) -> None:
        """Forget the in-memory context and drop the durable entry."""
        self._context = None
        self.store.remove_item(RUNTIME_CONTEXT_CACHE_KEY)
        logger.info("[ContextService] Runtime context cache cleared")

    def _load_cached(self) -> Optional[RuntimeContext]:
        raw = self.store.get_item(RUNTIME_CONTEXT_CACHE_KEY)
        if raw is None:
            return None
        try:
            return RuntimeContext.from_dict(json.loads(raw))
        except (json.JSONDecodeError, ValueError):
            logger.warning("[ContextService] Invalid cache, refreshing...")
            self.store.remove_item(RUNTIME_CONTEXT_CACHE_KEY)
            return None

    def _fallback_context(self) -> RuntimeContext:
        os_name = detect_os_name()
        home = "/Users/unknown" if os_name == "macOS" else "/home/unknown"
        return RuntimeContext(os=os_name, user="unknown", home=home, cwd="/", shell=self.shell)

    async def _probe(self, command: str) -> str:
        process = await asyncio.create_subprocess_exec(
            self.shell,
            "-c",
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), self.probe_timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ProbeError(f"Command '{command}' timed out")
        if process.returncode != 0:
            raise ProbeError(
                f"Command '{command}' failed: {stderr.decode('utf-8', errors='replace').strip()}"
            )
        return stdout.decode("utf-8", errors="replace").strip()
