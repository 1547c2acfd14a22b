"""
Instrumentation module for Aether.

Provides millisecond-precision event logging so a single orchestration run
or conversation turn can be followed through the log:
- Run start / end and routing decisions
- Tool execution
- Conversation state transitions and timer firings
"""

import logging
import time

logger = logging.getLogger(__name__)


def log_event(event: str, stage: str = "", run_id: str = "") -> None:
    """
    Log event with monotonic timeline metadata.

    Format: [EVT] t=<ms> id=<run_id> stage=<stage> event=<event>

    Args:
        event: Event label/message
        stage: Optional stage name (e.g., "agent", "tool", "session")
        run_id: Optional run id for correlation
    """
    ts = int(time.monotonic() * 1000)
    logger.info(f"[EVT] t={ts} id={run_id} stage={stage} event={event}")
