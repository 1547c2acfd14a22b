"""Aether version registry.

Single source of truth for runtime versioning.
"""

CURRENT_VERSION = "0.4.0"
CURRENT_MILESTONE = "agent-loop+voice-session"

VERSION_HISTORY = [
    {
        "version": "0.1.0",
        "notes": "Shell tool, tool registry and single-pass agent",
    },
    {
        "version": "0.2.0",
        "notes": "Recursive orchestration loop with JSON routing and loop detection",
    },
    {
        "version": "0.3.0",
        "notes": "Runtime context cache; per-tool model policy",
    },
    {
        "version": "0.4.0",
        "notes": "Voice conversation session with timer table and echo cool-off",
    },
]


def get_version():
    return {
        "version": CURRENT_VERSION,
        "milestone": CURRENT_MILESTONE,
        "history": VERSION_HISTORY,
    }
