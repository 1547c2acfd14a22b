"""
Agent Orchestrator

Objective-driven control loop. One run at a time.

Pipeline per run:
1. Initialize   - acquire the runtime context; reject re-entrant runs
2. Refine       - one LLM call rewrites the objective against the context
3. Iterate (bounded by max_steps):
   a. Route      - JSON-constrained decision {thought, tool, is_complete, final_answer}
   b. Complete?  - return final_answer, or the last successful output if the
                   model's answer is missing/too short/generic
   c. Resolve    - no tool -> next iteration; unknown tool -> error step + history
   d. Generate   - tool-specific prompt produces the tool input
   e. Loop check - an identical (tool, input) already ran -> reuse its observation, stop
   f. Execute    - action step, tool call, observation/error step, one history entry
4. Exhaustion   - fixed "stopped to prevent an infinite loop" message
5. Teardown     - running flag cleared on every exit path

Steps are pushed to the caller's sink one at a time and never retained here.
Routing uses a fast model; input generation uses the tool's preferred model
(or the per-tool model map).
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from aether import prompts
from aether.config import Config, get_model, get_model_for_tool
from aether.context import ContextService
from aether.history import (
    HistoryEntry,
    action_signature,
    find_previous_action,
    last_successful_output,
    render_history,
)
from aether.instrumentation import log_event
from aether.parsing import Invalid, Parsed, Raw, parse_json_object, parse_model_output
from aether.policy import (
    DEFAULT_COMPLETION_MESSAGE,
    HISTORY_ENTRY_LIMIT,
    LOOP_FALLBACK_MESSAGE,
    MAX_STEPS,
    MAX_STEPS_MESSAGE,
    MIN_FINAL_ANSWER_LENGTH,
)
from aether.tools.base import Tool
from aether.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

SHELL_TOOL_NAME = "execute_bash"
_GENERIC_ANSWER_MARKERS = ("task completed",)


class AgentAlreadyRunningError(RuntimeError):
    """execute() was called while another run is in progress."""


class StepKind(Enum):
    THOUGHT = "thought"
    ACTION = "action"
    OBSERVATION = "observation"
    ERROR = "error"


@dataclass(frozen=True)
class Step:
    id: str
    kind: StepKind
    content: str
    timestamp: float


StepSink = Callable[[Step], None]


@dataclass
class RouteDecision:
    thought: str = ""
    tool: Optional[str] = None
    is_complete: bool = False
    final_answer: Optional[str] = None

    @classmethod
    def from_model_output(cls, text: str) -> "RouteDecision":
        """Anything that is not a JSON object becomes a no-op decision."""
        result = parse_json_object(text)
        if not isinstance(result, Parsed):
            logger.warning(f"[Agent] Router output unparseable ({result.reason}): {text[:200]!r}")
            return cls()

        data = result.value
        tool = data.get("tool")
        final_answer = data.get("final_answer")
        return cls(
            thought=str(data.get("thought") or ""),
            tool=tool.strip() if isinstance(tool, str) and tool.strip() else None,
            is_complete=data.get("is_complete") is True,
            final_answer=final_answer if isinstance(final_answer, str) else None,
        )


class AgentOrchestrator:
    """Runs the route/generate/execute cycle until completion or step budget."""

    def __init__(
        self,
        gateway,
        registry: ToolRegistry,
        context_service: ContextService,
        config: Optional[Config] = None,
        max_steps: int = MAX_STEPS,
        history_entry_limit: int = HISTORY_ENTRY_LIMIT,
    ):
        self.gateway = gateway
        self.registry = registry
        self.context_service = context_service
        self.config = config
        self.max_steps = max(1, int(max_steps))
        self.history_entry_limit = history_entry_limit
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def execute(self, objective: str, on_step: StepSink) -> str:
        """
        Run one objective to completion.

        Args:
            objective: Free-text user goal (never mutated)
            on_step: Sink receiving each Step as it happens

        Returns:
            Non-empty answer text

        Raises:
            AgentAlreadyRunningError: Another run is active (it is not disturbed)
        """
        if self._running:
            raise AgentAlreadyRunningError("Agent is already running")
        self._running = True
        run_id = uuid.uuid4().hex[:8]
        log_event(f"RUN_START objective={objective!r}", stage="agent", run_id=run_id)

        try:
            return await self._run(objective, on_step, run_id)
        except Exception as e:
            logger.exception(f"[Agent] Run {run_id} crashed")
            self._emit(on_step, StepKind.ERROR, f"Agent crash: {e}")
            return f"Agent system error: {e}"
        finally:
            self._running = False
            log_event("RUN_END", stage="agent", run_id=run_id)

    async def _run(self, objective: str, on_step: StepSink, run_id: str) -> str:
        # 1. Context
        await self.context_service.initialize()
        runtime_context = self.context_service.get_context_string()

        # 2. Intent refinement
        self._emit(on_step, StepKind.THOUGHT, f'Refining intent: "{objective}"')
        refined = await self.gateway.generate(
            objective,
            model=get_model("intent", self.config),
            system=prompts.render_prompt(prompts.INTENT_REFINER, runtime_context),
        )
        refined_objective = refined.strip() or objective
        self._emit(on_step, StepKind.THOUGHT, f'Optimized Objective: "{refined_objective}"')

        # 3. Recursive loop
        history: List[HistoryEntry] = []
        for step_number in range(1, self.max_steps + 1):
            history_lines = render_history(history, self.history_entry_limit)

            # a. Routing
            routing_response = await self.gateway.generate(
                prompts.routing_prompt(refined_objective, history_lines, self.registry.describe_all()),
                model=get_model("router", self.config),
                system=prompts.RECURSIVE_ORCHESTRATOR,
                json_mode=True,
            )
            decision = RouteDecision.from_model_output(routing_response)
            log_event(
                f"ROUTE step={step_number} tool={decision.tool} complete={decision.is_complete}",
                stage="agent",
                run_id=run_id,
            )

            # b. Completion
            if decision.is_complete:
                self._emit(on_step, StepKind.THOUGHT, "Objective met. Generating final output...")
                answer = self._final_answer(decision.final_answer, history)
                self._emit(on_step, StepKind.OBSERVATION, f"Done: {answer}")
                return answer

            # c. Tool resolution
            if not decision.tool:
                continue

            tool = self.registry.resolve(decision.tool)
            if tool is None:
                message = f"Error: Tool '{decision.tool}' not found."
                logger.warning(f"[Agent] Unknown tool {decision.tool!r}; registered: {', '.join(self.registry.names())}")
                self._emit(on_step, StepKind.ERROR, message)
                history.append(HistoryEntry.system(message))
                continue

            # d. Action generation
            self._emit(on_step, StepKind.THOUGHT, f"Planning {tool.name}...")
            raw_input = await self.gateway.generate(
                prompts.generation_prompt(tool.name, refined_objective),
                model=tool.preferred_model or get_model_for_tool(tool.name, self.config),
                system=prompts.generation_system_prompt(tool.name, runtime_context, history_lines),
            )
            tool_input = self._parse_tool_input(tool, raw_input)
            if tool_input is None:
                message = f"Failed to parse input: {raw_input}"
                self._emit(on_step, StepKind.ERROR, message)
                history.append(HistoryEntry.system(message))
                continue

            # e. Loop detection
            signature = action_signature(tool.name, tool_input)
            previous = find_previous_action(history, signature)
            if previous is not None:
                logger.info(f"[Agent] Loop detected at step {step_number}; reusing previous result")
                self._emit(
                    on_step,
                    StepKind.THOUGHT,
                    "Action already performed. Generating final output from history...",
                )
                answer = previous.observation or LOOP_FALLBACK_MESSAGE
                self._emit(on_step, StepKind.OBSERVATION, f"Done: {answer}")
                return answer

            # f. Execution
            history.append(await self._execute_tool(tool, tool_input, on_step, run_id))

        # 4. Exhaustion
        log_event("STEP_BUDGET_EXHAUSTED", stage="agent", run_id=run_id)
        return MAX_STEPS_MESSAGE

    async def _execute_tool(
        self, tool: Tool, tool_input: Dict[str, Any], on_step: StepSink, run_id: str
    ) -> HistoryEntry:
        self._emit(on_step, StepKind.ACTION, f"Executing {tool.name}: {json.dumps(tool_input, ensure_ascii=False)}")
        log_event(f"TOOL {tool.name}", stage="agent", run_id=run_id)
        try:
            outcome = await tool.execute(tool_input)
        except Exception as e:
            logger.exception(f"[Agent] Tool {tool.name} raised")
            self._emit(on_step, StepKind.ERROR, f"Execution failed: {e}")
            return HistoryEntry.from_exception(tool.name, tool_input, f"Execution failed: {e}")

        if outcome.success:
            self._emit(on_step, StepKind.OBSERVATION, f"Success: {outcome.data}")
        else:
            self._emit(on_step, StepKind.ERROR, f"Failure: {outcome.error}")
        return HistoryEntry.from_outcome(tool.name, tool_input, outcome)

    @staticmethod
    def _parse_tool_input(tool: Tool, raw: str) -> Optional[Dict[str, Any]]:
        """
        Shell tool: a JSON object with "command", or the raw text as the command.
        Other tools: a JSON object is required.
        """
        if tool.name == SHELL_TOOL_NAME:
            result = parse_model_output(raw, embedded=False)
            if isinstance(result, Parsed) and isinstance(result.value, dict):
                command = result.value.get("command")
                if isinstance(command, str) and command.strip():
                    tool_input = {"command": command}
                    cwd = result.value.get("cwd")
                    if isinstance(cwd, str) and cwd.strip():
                        tool_input["cwd"] = cwd
                    return tool_input
            if isinstance(result, Invalid):
                return None
            text = result.text if isinstance(result, Raw) else raw
            return {"command": text.strip()} if text.strip() else None

        result = parse_json_object(raw)
        if isinstance(result, Parsed):
            return result.value
        return None

    @staticmethod
    def _final_answer(final_answer: Optional[str], history: List[HistoryEntry]) -> str:
        answer = (final_answer or "").strip()
        unhelpful = (
            not answer
            or len(answer) < MIN_FINAL_ANSWER_LENGTH
            or any(marker in answer.lower() for marker in _GENERIC_ANSWER_MARKERS)
        )
        if unhelpful:
            last_output = last_successful_output(history)
            if last_output:
                answer = last_output
        return answer or DEFAULT_COMPLETION_MESSAGE

    @staticmethod
    def _emit(on_step: StepSink, kind: StepKind, content: str) -> None:
        step = Step(id=uuid.uuid4().hex, kind=kind, content=content, timestamp=time.time())
        logger.debug(f"[Agent] {kind.value}: {content[:300]}")
        on_step(step)
