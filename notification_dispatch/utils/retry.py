import random
from datetime import timedelta
from typing import Optional

# The 5th failed attempt is terminal
MAX_ATTEMPTS = 5

# Base delay per attempt (1-based); attempts past the end reuse the last entry
RETRY_DELAYS_SECONDS = (10, 30, 2 * 60, 10 * 60, 30 * 60)

JITTER_RATIO = 0.2


def base_delay(attempt: int) -> float:
    index = min(max(attempt, 1), len(RETRY_DELAYS_SECONDS)) - 1
    return float(RETRY_DELAYS_SECONDS[index])


def backoff(attempt: int, rng: Optional[random.Random] = None) -> timedelta:
    """Delay before the next attempt after ``attempt`` failures, with +/-20% uniform jitter.

    ``attempt`` is the 1-based attempt counter as stored on the record (already
    incremented when the notification was claimed).
    """
    rng = rng or random
    base = base_delay(attempt)
    jitter = rng.uniform(-JITTER_RATIO * base, JITTER_RATIO * base)
    return timedelta(seconds=max(0.0, base + jitter))


def is_terminal(attempts: int) -> bool:
    return attempts >= MAX_ATTEMPTS
