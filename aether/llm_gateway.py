"""
Language-Model Gateway

Thin client for a locally hosted Ollama completion service.

- generate(): one-shot completion via /api/generate, optional JSON mode
  ("format": "json") for structured routing decisions
- chat(): multi-turn chat via /api/chat, streamed as NDJSON tokens, with a
  bounded RAM-only history window and a persona system prompt

requests is blocking, so every HTTP call runs on the default executor and is
awaited as a single step; the event loop stays responsive meanwhile.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from aether.conversation_buffer import ConversationBuffer
from aether.instrumentation import log_event
from aether.policy import LLM_TIMEOUT_SECONDS, LLM_WATCHDOG_SECONDS
from aether.prompts import CHAT_PERSONA
from aether.watchdog import Watchdog

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]


class LLMGatewayError(RuntimeError):
    """Completion service unreachable, or answered with an error / malformed body."""


class OllamaGateway:
    """Request/response and token-streaming client for Ollama."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        default_model: str = "gemma2:2b",
        chat_model: Optional[str] = None,
        timeout_seconds: float = LLM_TIMEOUT_SECONDS,
        temperature: float = 0.2,
        max_tokens: int = 1024,
        chat_history_turns: int = 12,
        chat_system_prompt: str = CHAT_PERSONA,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.chat_model = chat_model or default_model
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.chat_system_prompt = chat_system_prompt
        self._chat_history = ConversationBuffer(max_turns=chat_history_turns)

    # ------------------------------------------------------------------
    # One-shot completion
    # ------------------------------------------------------------------

    async def generate(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        system: Optional[str] = None,
        json_mode: bool = False,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Single completion.

        Returns:
            Completion text, stripped (may be empty)

        Raises:
            LLMGatewayError: Connection failure, timeout, non-200 or malformed body
        """
        payload: Dict[str, Any] = {
            "model": model or self.default_model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.temperature if temperature is None else temperature,
                "num_predict": self.max_tokens if max_tokens is None else max_tokens,
            },
        }
        if system:
            payload["system"] = system
        if json_mode:
            payload["format"] = "json"

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._generate_sync, payload)

    def _generate_sync(self, payload: Dict[str, Any]) -> str:
        url = f"{self.base_url}/api/generate"
        model = payload["model"]
        log_event(f"LLM_REQUEST_START model={model}", stage="llm")

        with Watchdog(f"LLM {model}", LLM_WATCHDOG_SECONDS, stage="llm"):
            response = self._post(url, payload, stream=False)

        if response.status_code != 200:
            raise LLMGatewayError(f"LLM returned status {response.status_code}: {response.text}")

        try:
            result = response.json()
        except ValueError as e:
            raise LLMGatewayError(f"LLM returned a non-JSON body: {response.text[:200]}") from e

        text = result.get("response", "") if isinstance(result, dict) else ""
        logger.debug(f"[LLM] {model} raw output: {text[:500]!r}")
        log_event(f"LLM_DONE model={model}", stage="llm")
        return (text or "").strip()

    # ------------------------------------------------------------------
    # Streaming chat
    # ------------------------------------------------------------------

    async def chat(self, text: str, on_token: Optional[TokenCallback] = None) -> str:
        """
        Streamed chat turn with bounded history.

        Tokens are delivered to on_token on the event loop as they arrive.
        Connection problems never raise: the reply becomes a plain-language
        message instead. History only records turns that got a reply.
        """
        messages: List[Dict[str, str]] = [{"role": "system", "content": self.chat_system_prompt}]
        messages.extend(self._chat_history.as_messages())
        messages.append({"role": "user", "content": text})
        payload = {"model": self.chat_model, "messages": messages, "stream": True}

        loop = asyncio.get_running_loop()

        def deliver(token: str) -> None:
            if on_token is not None:
                loop.call_soon_threadsafe(on_token, token)

        try:
            reply = await loop.run_in_executor(None, self._chat_sync, payload, deliver)
        except LLMGatewayError as e:
            logger.error(f"[LLM] Chat failed: {e}")
            return f"I cannot connect to my language model ({self.chat_model}). Is Ollama running?"

        if reply:
            self._chat_history.add("user", text)
            self._chat_history.add("assistant", reply)
        return reply

    def _chat_sync(self, payload: Dict[str, Any], deliver: TokenCallback) -> str:
        url = f"{self.base_url}/api/chat"
        log_event(f"LLM_STREAM_START model={payload['model']}", stage="llm")

        with Watchdog(f"LLM chat {payload['model']}", LLM_WATCHDOG_SECONDS, stage="llm"):
            response = self._post(url, payload, stream=True)
            if response.status_code != 200:
                raise LLMGatewayError(f"LLM returned status {response.status_code}: {response.text}")

            parts: List[str] = []
            try:
                for raw_line in response.iter_lines(decode_unicode=True):
                    if not raw_line:
                        continue
                    try:
                        data = json.loads(raw_line)
                    except json.JSONDecodeError:
                        logger.warning(f"[LLM] Failed to parse chunk: {raw_line!r}")
                        continue
                    if data.get("done"):
                        break
                    token = (data.get("message") or {}).get("content", "")
                    if token:
                        parts.append(token)
                        deliver(token)
            except requests.exceptions.RequestException as e:
                raise LLMGatewayError(f"LLM stream interrupted: {e}") from e

        log_event("LLM_STREAM_END", stage="llm")
        return "".join(parts)

    def clear_history(self) -> None:
        self._chat_history.clear(reason="session reset")

    # ------------------------------------------------------------------

    def _post(self, url: str, payload: Dict[str, Any], stream: bool):
        try:
            return requests.post(url, json=payload, timeout=self.timeout_seconds, stream=stream)
        except requests.exceptions.ConnectionError as e:
            raise LLMGatewayError(
                f"Failed to connect to Ollama at {self.base_url}. Make sure Ollama is running: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            raise LLMGatewayError(f"Ollama request timed out after {self.timeout_seconds}s") from e
        except requests.exceptions.RequestException as e:
            raise LLMGatewayError(f"LLM call failed: {e}") from e
