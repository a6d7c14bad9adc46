"""
Bounded-time calls into the remote tag layer.

The tag tree's bulk read and bulk write are the only operations allowed to
block.  :func:`call_with_timeout` runs one of them on a worker thread and
turns both a timeout and a transport error into :class:`RemoteCallFailure`.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable

from .errors import RemoteCallFailure

logger = logging.getLogger(__name__)


def call_with_timeout(
    func: Callable[..., Any],
    timeout_ms: int,
    *args: Any,
    description: str = 'remote call',
) -> Any:
    """Run ``func(*args)`` and wait at most *timeout_ms* milliseconds.

    The worker thread is not interrupted when the timeout expires; its result
    is discarded.

    Raises:
        RemoteCallFailure: On timeout or when *func* raises.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='tag-remote')
    try:
        future = executor.submit(func, *args)
        try:
            return future.result(timeout=timeout_ms / 1000.0)
        except FutureTimeoutError:
            future.cancel()
            raise RemoteCallFailure(
                f"{description} did not complete within {timeout_ms} ms"
            ) from None
        except RemoteCallFailure:
            raise
        except Exception as exc:
            raise RemoteCallFailure(f"{description} failed: {exc}") from exc
    finally:
        executor.shutdown(wait=False)
