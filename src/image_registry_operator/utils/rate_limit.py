"""Rate limiting and retry utilities for Kubernetes API calls."""

from __future__ import annotations

import logging
import os
import random
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from kubernetes.client.exceptions import ApiException

logger = logging.getLogger(__name__)

_F = TypeVar("_F", bound=Callable[..., Any])
_T = TypeVar("_T")

_K8S_RATE_LIMIT_PER_SECOND = float(os.getenv("K8S_RATE_LIMIT_PER_SECOND", "20.0"))

_k8s_last_call_time: float = 0.0


def rate_limit_k8s(func: _F) -> _F:
    """Decorator to rate limit Kubernetes API calls.

    Spaces calls at least ``1 / K8S_RATE_LIMIT_PER_SECOND`` seconds apart to
    avoid overwhelming the API server.
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        global _k8s_last_call_time
        min_interval = 1.0 / _K8S_RATE_LIMIT_PER_SECOND

        time_since_last_call = time.time() - _k8s_last_call_time
        if time_since_last_call < min_interval:
            time.sleep(min_interval - time_since_last_call)

        _k8s_last_call_time = time.time()
        return func(*args, **kwargs)

    return wrapper  # type: ignore


def is_conflict(e: BaseException) -> bool:
    """Check if an exception is an optimistic concurrency conflict."""
    return isinstance(e, ApiException) and e.status == 409


def is_not_found(e: BaseException) -> bool:
    """Check if an exception is a 404 from the API server."""
    return isinstance(e, ApiException) and e.status == 404


def retry_on_conflict(
    fn: Callable[[], _T],
    steps: int = 5,
    base_delay: float = 0.01,
    factor: float = 1.0,
    jitter: float = 0.1,
) -> _T:
    """Run ``fn`` again while it fails with a 409 Conflict.

    Args:
        fn: Callable that re-reads the object and writes it back
        steps: Maximum number of attempts
        base_delay: Sleep before the second attempt, in seconds
        factor: Multiplier applied to the delay after each attempt
        jitter: Random fraction added to each delay

    Returns:
        Whatever ``fn`` returns

    Raises:
        ApiException: The last conflict once attempts are exhausted, or any
            other API error immediately
    """
    delay = base_delay
    for attempt in range(steps):
        try:
            return fn()
        except ApiException as e:
            if not is_conflict(e) or attempt == steps - 1:
                raise
            logger.debug(f"Conflict on attempt {attempt + 1}, retrying")
            time.sleep(delay * (1 + random.random() * jitter))
            delay *= factor
    raise RuntimeError("retry_on_conflict called with steps < 1")
