"""Retry delay calculation."""

import random
from typing import Optional


def compute_backoff(
    attempt: int,
    base_delay: float,
    jitter: float = 0.0,
    rng: Optional[random.Random] = None,
) -> float:
    """Delay in seconds before retrying after the given failed attempt.

    The delay doubles with every attempt: attempt 1 waits ``base_delay``,
    attempt 2 twice that, attempt 3 four times, and so on. A positive
    ``jitter`` adds a random extra of up to ``jitter * delay`` so messages
    that failed together do not retry together.

    Args:
        attempt: Number of attempts made so far (>= 1)
        base_delay: Delay after the first failure, in seconds
        jitter: Extra random fraction in [0, 1]
        rng: Random source (module-level random if None)

    Raises:
        ValueError: If attempt < 1, base_delay <= 0 or jitter outside [0, 1]
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    if base_delay <= 0:
        raise ValueError(f"base_delay must be positive, got {base_delay}")
    if not 0.0 <= jitter <= 1.0:
        raise ValueError(f"jitter must be between 0 and 1, got {jitter}")

    delay = base_delay * (2 ** (attempt - 1))

    if jitter > 0:
        source = rng or random
        delay += source.uniform(0, jitter * delay)

    return delay
