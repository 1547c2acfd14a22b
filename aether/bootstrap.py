"""
Composition root.

Builds the gateway, tools, context service, orchestrator and session from a
Config. Nothing here keeps state; callers own the returned objects.
"""

import logging
from typing import Optional

from aether.config import Config, get_config, get_model
from aether.context import ContextService, LocalStore
from aether.llm_gateway import OllamaGateway
from aether.orchestrator import AgentOrchestrator
from aether.session import ConversationSession, SessionSettings
from aether.speech import CommandSynthesizer, SilentSynthesizer, SpeechInput, SpeechSynthesizer
from aether.tools.registry import ToolRegistry, build_default_registry

logger = logging.getLogger(__name__)


def build_gateway(config: Config) -> OllamaGateway:
    return OllamaGateway(
        base_url=config.get("llm.base_url"),
        default_model=get_model("default", config),
        chat_model=get_model("chat", config),
        timeout_seconds=float(config.get("llm.timeout_seconds")),
        temperature=float(config.get("llm.temperature")),
        max_tokens=int(config.get("llm.max_tokens")),
        chat_history_turns=int(config.get("llm.chat_history_turns")),
    )


def build_registry(config: Config) -> ToolRegistry:
    registry = build_default_registry(
        shell=config.get("agent.shell"),
        timeout_seconds=float(config.get("agent.tool_timeout_seconds")),
        output_limit=int(config.get("agent.tool_output_limit")),
    )
    logger.info(f"[Bootstrap] Tools: {', '.join(registry.names())}")
    return registry


def build_context_service(config: Config) -> ContextService:
    return ContextService(LocalStore(config.get("context.cache_path")), shell=config.get("agent.shell"))


def build_orchestrator(
    config: Optional[Config] = None,
    gateway: Optional[OllamaGateway] = None,
    registry: Optional[ToolRegistry] = None,
    context_service: Optional[ContextService] = None,
) -> AgentOrchestrator:
    config = config or get_config()
    return AgentOrchestrator(
        gateway=gateway or build_gateway(config),
        registry=registry or build_registry(config),
        context_service=context_service or build_context_service(config),
        config=config,
        max_steps=int(config.get("agent.max_steps")),
        history_entry_limit=int(config.get("agent.history_entry_limit")),
    )


def build_synthesizer(config: Config, enabled: bool = True) -> SpeechSynthesizer:
    command = config.get("speech.tts_command")
    if not enabled or not command:
        return SilentSynthesizer()
    return CommandSynthesizer(command)


def build_session(
    config: Optional[Config] = None,
    orchestrator: Optional[AgentOrchestrator] = None,
    synthesizer: Optional[SpeechSynthesizer] = None,
    speech_input: Optional[SpeechInput] = None,
    **session_options,
) -> ConversationSession:
    """Session wired to an orchestrator that shares its gateway."""
    config = config or get_config()
    if orchestrator is None:
        orchestrator = build_orchestrator(config)
    logger.info(f"[Bootstrap] Config {config.hash[:12]}")
    return ConversationSession(
        orchestrator=orchestrator,
        gateway=orchestrator.gateway,
        synthesizer=synthesizer or SilentSynthesizer(),
        speech_input=speech_input,
        settings=SessionSettings.from_config(config),
        config=config,
        **session_options,
    )
