"""
Configuration Loader for Aether

Reads from aether.json and provides a simple interface for accessing settings.
Defaults to sensible values if aether.json is missing.

Environment overrides (typically supplied through a .env file loaded with
python-dotenv by the launcher):
    AETHER_CONFIG         - path to the JSON config file
    AETHER_OLLAMA_URL     - completion service base URL
    AETHER_LOG_LEVEL      - root log level
    AETHER_SHELL          - shell used by the agent tools
    AETHER_MAX_STEPS      - orchestration step budget
    AETHER_CONTEXT_CACHE  - durable runtime context store path

Usage:
    from aether.config import get_config
    config = get_config()
    silence = config.get("session.silence_timeout_seconds")
"""

# ============================================================================
# 1) IMPORTS
# ============================================================================
import copy
import hashlib
import json
import logging
import os
import sys
from typing import Any, Optional

from aether import policy

# ============================================================================
# 2) MODULE LOGGER
# ============================================================================
logger = logging.getLogger(__name__)


# ============================================================================
# 3) PLATFORM DEFAULTS
# ============================================================================
def default_shell() -> str:
    """Shell assumed by the agent when nothing is configured."""
    return "/bin/zsh" if sys.platform == "darwin" else "/bin/bash"


def default_tts_command() -> list:
    return ["say"] if sys.platform == "darwin" else ["espeak"]


# ============================================================================
# 4) CONFIG WRAPPER (DOT-NOTATION ACCESS)
# ============================================================================
class Config:
    """Simple config wrapper with dot-notation access."""

    def __init__(self, data: dict):
        self._data = data
        self._hash = config_hash(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get config value using dot notation.

        Examples:
            config.get("llm.base_url")
            config.get("session.wake_phrases")
            config.get("nonexistent.key", "default_value")
        """
        value = self._data
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    @property
    def hash(self) -> str:
        return self._hash


# ============================================================================
# 5) DEFAULT CONFIGURATION (FALLBACK)
# ============================================================================
_DEFAULT_CONFIG = {
    "system": {
        "log_level": "INFO",
    },
    "llm": {
        "base_url": "http://localhost:11434",
        "timeout_seconds": policy.LLM_TIMEOUT_SECONDS,
        "temperature": 0.2,
        "max_tokens": 1024,
        "chat_history_turns": 12,
        "models": {
            "intent": "gemma3:1b",      # ultra-fast rewrite of the objective
            "router": "gemma3:4b",      # JSON routing decisions
            "coder": "qwen2.5-coder:3b",
            "chat": "gemma2:2b",
            "classifier": "gemma3:1b",
            "default": "gemma2:2b",
        },
        # Tool name -> model role (or a literal model id)
        "tool_models": {
            "execute_bash": "coder",
            "read_file": "default",
            "write_file": "coder",
        },
    },
    "agent": {
        "max_steps": policy.MAX_STEPS,
        "history_entry_limit": policy.HISTORY_ENTRY_LIMIT,
        "shell": default_shell(),
        "tool_timeout_seconds": policy.TOOL_TIMEOUT_SECONDS,
        "tool_output_limit": policy.TOOL_OUTPUT_LIMIT,
    },
    "context": {
        "cache_path": os.path.join("~", ".aether", "local_store.json"),
    },
    "session": {
        "wake_phrases": ["hey sam"],
        "inactivity_timeout_seconds": policy.INACTIVITY_TIMEOUT_SECONDS,
        "silence_timeout_seconds": policy.SILENCE_TIMEOUT_SECONDS,
        "echo_cooloff_seconds": policy.ECHO_COOLOFF_SECONDS,
        "min_command_length": policy.MIN_COMMAND_LENGTH,
        "synthesis_watchdog_seconds": policy.SYNTHESIS_WATCHDOG_SECONDS,
        "acknowledgment": "Yes?",
        "greeting": "",
        "route_mode": "auto",
        "continue_listening": False,
        "message_window": 50,
    },
    "speech": {
        "sidecar_path": None,
        "model_path": "models/ggml-base.en.bin",
        "wake_word": "hey sam",
        "tts_command": default_tts_command(),
    },
}

# Env var -> (dot key, caster)
_ENV_OVERRIDES = {
    "AETHER_OLLAMA_URL": ("llm.base_url", str),
    "AETHER_LOG_LEVEL": ("system.log_level", str),
    "AETHER_SHELL": ("agent.shell", str),
    "AETHER_MAX_STEPS": ("agent.max_steps", int),
    "AETHER_CONTEXT_CACHE": ("context.cache_path", str),
}

# ============================================================================
# 6) CONFIG SINGLETON
# ============================================================================
_config_instance: Optional[Config] = None


# ============================================================================
# 7) LOAD / GET CONFIG
# ============================================================================
def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from JSON file, then apply environment overrides.

    Falls back to defaults if the file is missing or unreadable.

    Args:
        config_path: Path to the JSON file (default: $AETHER_CONFIG or aether.json)

    Returns:
        Config instance
    """
    global _config_instance

    config_path = config_path or os.getenv("AETHER_CONFIG", "aether.json")
    config_data = copy.deepcopy(_DEFAULT_CONFIG)

    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                user_config = json.load(f)
            if isinstance(user_config, dict):
                _merge_dicts(config_data, user_config)
                logger.info(f"[Config] Loaded from {config_path}")
            else:
                logger.warning(f"[Config] {config_path} is not a JSON object, using defaults")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[Config] Failed to load {config_path}: {e}, using defaults")
    else:
        logger.debug(f"[Config] No config file at {config_path}, using defaults")

    _apply_env_overrides(config_data)

    _config_instance = Config(config_data)
    return _config_instance


def get_config() -> Config:
    """Get current config instance (lazy load if needed)."""
    global _config_instance
    if _config_instance is None:
        load_config()
    return _config_instance


def set_config(config: Optional[Config]) -> None:
    """Replace the process config (used in testing)."""
    global _config_instance
    _config_instance = config


# ============================================================================
# 8) MODEL POLICY
# ============================================================================
def get_model(role: str, config: Optional[Config] = None) -> str:
    """Resolve a model role (intent, router, coder, ...) to a model id."""
    cfg = config or get_config()
    models = cfg.get("llm.models", {}) or {}
    return models.get(role) or models.get("default") or _DEFAULT_CONFIG["llm"]["models"]["default"]


def get_model_for_tool(tool_name: str, config: Optional[Config] = None) -> str:
    """
    Model used to generate input for a tool.

    The tool map may name a role ("coder") or a literal model id ("llama3.2:latest").
    Unmapped tools use the default model.
    """
    cfg = config or get_config()
    models = cfg.get("llm.models", {}) or {}
    mapped = (cfg.get("llm.tool_models", {}) or {}).get(tool_name)
    if not mapped:
        return get_model("default", cfg)
    return models.get(mapped, mapped)


# ============================================================================
# 9) HELPERS
# ============================================================================
def config_hash(cfg: dict) -> str:
    return hashlib.sha256(json.dumps(cfg, sort_keys=True, default=str).encode()).hexdigest()


def _apply_env_overrides(data: dict) -> None:
    for env_name, (key, caster) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or not raw.strip():
            continue
        try:
            value = caster(raw.strip())
        except ValueError:
            logger.warning(f"[Config] Ignoring {env_name}={raw!r}: not a valid {caster.__name__}")
            continue
        _set_dotted(data, key, value)


def _set_dotted(data: dict, key: str, value: Any) -> None:
    parts = key.split(".")
    node = data
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def _merge_dicts(base: dict, override: dict) -> None:
    """Deep merge override dict into base dict (modifies base in place)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dicts(base[key], value)
        else:
            base[key] = value
