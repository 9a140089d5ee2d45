"""Policy for audit-log and notification calls made alongside status updates"""

from enum import Enum
from typing import Any, Awaitable, Optional
from loguru import logger


class SideEffectPolicy(str, Enum):
    # Failures are logged and the submission flow carries on
    BEST_EFFORT = 'best_effort'
    # Failures propagate to the caller
    STRICT = 'strict'


async def run_side_effect(
    policy: SideEffectPolicy,
    call: Awaitable[Any],
    description: str,
    correlation_id: str = "N/A",
) -> Optional[Any]:
    """
    Await an audit or notification call under the given policy

    Args:
        policy: What to do when the call fails
        call: Awaitable performing the side effect
        description: What the call does, for the log line
        correlation_id: Submission id for log context

    Returns:
        Result of the call, or None when it failed under BEST_EFFORT
    """
    try:
        return await call
    except Exception as e:
        if SideEffectPolicy(policy) is SideEffectPolicy.STRICT:
            raise
        logger.error(f"[{correlation_id}] {description} failed, continuing: {e}")
        return None
