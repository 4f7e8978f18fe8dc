"""
Retry policy for failed queue items.

Exponential backoff: delay = min(base * 2^(attempts-1), cap).
With the defaults (base=30s, cap=240s) successive retries wait
30s, 60s, 120s, 240s, 240s, ...
"""
from typing import Optional

DEFAULT_BASE_SECONDS = 30
DEFAULT_MAX_SECONDS = 240

# Lower-cased substrings that mark an error as permanent.
NON_RETRYABLE_MARKERS = (
    "not found",
    "not authenticated",
    "invalid credentials",
    "authentication failed",
    "unauthorized",
    "permission denied",
    "forbidden",
)


def backoff_delay(
    attempts: int,
    base: int = DEFAULT_BASE_SECONDS,
    cap: int = DEFAULT_MAX_SECONDS,
) -> int:
    """Seconds to wait before the next try, given attempts made so far (>= 1)."""
    return min(base * 2 ** (max(attempts, 1) - 1), cap)


def is_terminal_message(message: Optional[str]) -> bool:
    """True if the error text matches a known permanent failure category."""
    text = (message or "").lower()
    return any(marker in text for marker in NON_RETRYABLE_MARKERS)


def should_retry(attempts: int, max_attempts: int, message: Optional[str], terminal: bool = False) -> bool:
    """
    Decide whether a failed attempt goes back to the queue.

    Args:
        attempts: attempts made, including the one that just failed.
        max_attempts: the item's retry budget.
        message: the failure text.
        terminal: classification hint from the executor.
    """
    if attempts >= max_attempts:
        return False
    if terminal:
        return False
    return not is_terminal_message(message)
