"""
Policy Module (Centralized Timeouts, Limits & Fixed Messages)

Constants only. No side effects. No imports from other aether modules.
Config values (aether.json / env) override the defaults where a key exists.
"""

# LLM timeouts
LLM_TIMEOUT_SECONDS = 30
LLM_WATCHDOG_SECONDS = 35

# Orchestration budget
MAX_STEPS = 5
HISTORY_ENTRY_LIMIT = 15000
HISTORY_TRUNCATION_MARKER = "... [Output Truncated]"
MIN_FINAL_ANSWER_LENGTH = 50

# Shell tool
TOOL_TIMEOUT_SECONDS = 120
TOOL_WATCHDOG_SECONDS = 60
TOOL_OUTPUT_LIMIT = 50000

# Conversation timing windows (seconds)
INACTIVITY_TIMEOUT_SECONDS = 10.0
SILENCE_TIMEOUT_SECONDS = 5.0
ECHO_COOLOFF_SECONDS = 0.5
SYNTHESIS_WATCHDOG_SECONDS = 30.0
MIN_COMMAND_LENGTH = 3

# Durable cache key for the runtime context snapshot
RUNTIME_CONTEXT_CACHE_KEY = "AGENT_RUNTIME_CONTEXT"

# Fixed user-facing messages
MAX_STEPS_MESSAGE = "Max steps reached. I stopped to prevent an infinite loop."
DEFAULT_COMPLETION_MESSAGE = "Task completed."
LOOP_FALLBACK_MESSAGE = "Task completed successfully."
ERROR_REPLY = "I'm sorry, I encountered an internal error."
BUSY_REPLY = "I'm still working on the previous request."
BINARY_OUTPUT_ERROR = (
    "Execution failed: Binary data detected. Do NOT use 'cat' on this target. "
    "Use 'ls' or 'file' instead."
)
