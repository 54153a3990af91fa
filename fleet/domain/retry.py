import random

def calculate_backoff(
    attempts: int,
    base_delay_seconds: float = 3.0,
    max_delay_seconds: float = 60.0,
    jitter: bool = True
) -> float:
    """
    Calculates how long to wait before the next processing attempt, using
    exponential backoff with optional jitter.

    Formula:
        delay = min(base * (2 ^ (attempts - 1)), max_delay)
        if jitter:
            delay = delay + random_uniform(0, 0.1 * delay)

    Args:
        attempts: Number of failed attempts so far. attempts=1 means
                  "we failed once, how long until the second try?"
                  Values <= 1 yield the base delay.

    Returns:
        float: Delay in seconds.
    """
    # Cap the exponent, 2^20 * base is far past any sane max_delay
    safe_attempts = min(max(attempts - 1, 0), 20)

    delay = base_delay_seconds * (2 ** safe_attempts)

    if delay > max_delay_seconds:
        delay = max_delay_seconds

    if jitter:
        # Up to 10% jitter so a fleet failing together does not retry together
        delay += random.uniform(0, delay * 0.1)

    return delay
