from __future__ import annotations


def compute_backoff(attempt: int, base: float = 2.0) -> float:
    """Compute exponential backoff in seconds, without jitter."""
    return float(base**attempt)
