"""Shared fakes: scripted gateway, recording tools and synthesizers, fixed runtime context."""

import copy
import json
from typing import Any, Dict, List, Optional

import pytest

from aether.config import Config, _DEFAULT_CONFIG
from aether.context import RuntimeContext
from aether.orchestrator import AgentOrchestrator
from aether.speech import SpeechInput, SpeechSynthesizer
from aether.tools.base import FieldSpec, Tool, ToolOutcome
from aether.tools.registry import ToolRegistry


class FakeGateway:
    """
    Scripted stand-in for OllamaGateway.

    generate() pops the next scripted reply; a reply that is an Exception is
    raised instead. Every call is recorded.
    """

    def __init__(self, replies=None, chat_reply="Hello there.", chat_tokens=None):
        self.replies: List[Any] = list(replies or [])
        self.calls: List[Dict[str, Any]] = []
        self.chat_reply = chat_reply
        self.chat_tokens = chat_tokens
        self.chat_calls: List[str] = []
        self.history_cleared = 0

    async def generate(self, prompt, *, model=None, system=None, json_mode=False, **options):
        self.calls.append({"prompt": prompt, "model": model, "system": system, "json_mode": json_mode})
        if not self.replies:
            raise AssertionError(f"Unexpected generate() call: {prompt[:80]!r}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def chat(self, text, on_token=None):
        self.chat_calls.append(text)
        if isinstance(self.chat_reply, Exception):
            raise self.chat_reply
        for token in self.chat_tokens or [self.chat_reply]:
            if on_token is not None:
                on_token(token)
        return self.chat_reply

    def clear_history(self):
        self.history_cleared += 1

    def routing_calls(self):
        return [call for call in self.calls if call["json_mode"]]


def route(tool=None, is_complete=False, final_answer=None, thought="next step"):
    return json.dumps(
        {"thought": thought, "tool": tool, "is_complete": is_complete, "final_answer": final_answer}
    )


class RecordingTool(Tool):
    """Returns scripted outcomes and records every input."""

    def __init__(self, name="execute_bash", outcomes=None, preferred_model=None):
        self.name = name
        self.description = f"Fake {name}"
        self.input_shape = (FieldSpec("command", "string", "Command to run."),)
        self.preferred_model = preferred_model
        self.outcomes: List[Any] = list(outcomes or [])
        self.inputs: List[Dict[str, Any]] = []

    async def execute(self, tool_input):
        self.inputs.append(dict(tool_input))
        outcome = self.outcomes.pop(0) if self.outcomes else ToolOutcome.ok("ok")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FixedContextService:
    """ContextService stand-in that never probes."""

    def __init__(self):
        self.context = RuntimeContext(os="Linux", user="tester", home="/home/tester", cwd="/tmp", shell="/bin/sh")
        self.initialize_calls = 0

    async def initialize(self):
        self.initialize_calls += 1

    def get_context(self):
        return self.context

    def get_context_string(self):
        return f"## Runtime Context\n- User: {self.context.user}\n- Home: {self.context.home}"


class RecordingSynthesizer(SpeechSynthesizer):
    def __init__(self, fail=False):
        self.spoken: List[str] = []
        self.cancelled = 0
        self.fail = fail

    async def speak(self, text):
        self.spoken.append(text)
        if self.fail:
            raise RuntimeError("audio device gone")

    async def cancel(self):
        self.cancelled += 1


class RecordingSpeechInput(SpeechInput):
    def __init__(self):
        self.mute_calls: List[bool] = []
        self.listeners = []

    def on_event(self, listener):
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)

    async def set_muted(self, muted):
        self.mute_calls.append(muted)

    @property
    def muted(self) -> Optional[bool]:
        return self.mute_calls[-1] if self.mute_calls else None


@pytest.fixture
def config():
    return Config(copy.deepcopy(_DEFAULT_CONFIG))


@pytest.fixture
def context_service():
    return FixedContextService()


@pytest.fixture
def make_orchestrator(config, context_service):
    def factory(replies, tools=None, max_steps=5, history_entry_limit=15000):
        gateway = replies if isinstance(replies, FakeGateway) else FakeGateway(replies)
        registry = ToolRegistry(tools if tools is not None else [RecordingTool()])
        return AgentOrchestrator(
            gateway=gateway,
            registry=registry,
            context_service=context_service,
            config=config,
            max_steps=max_steps,
            history_entry_limit=history_entry_limit,
        )

    return factory
