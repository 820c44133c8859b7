"""
Retry helper for collaborator calls made by executors.

The runner never retries a node; an executor that talks to a flaky
platform API wraps the call in ``retry_call`` itself.
"""

from __future__ import annotations

import logging
import socket
import ssl
import time
from typing import Any, Callable

from .errors import NodeApiError


logger = logging.getLogger(__name__)

TRANSIENT_SNIPPETS = [
    "SSLEOFError",
    "UNEXPECTED_EOF_WHILE_READING",
    "ConnectionResetError",
    "RemoteDisconnected",
    "ReadTimeout",
    "TimeoutError",
    "ConnectionError",
]


def is_transient_exc(e: Exception) -> bool:
    if isinstance(e, NodeApiError):
        return e.is_transient
    msg = repr(e)
    return any(s in msg for s in TRANSIENT_SNIPPETS) or isinstance(
        e, (ssl.SSLError, TimeoutError, ConnectionError, socket.timeout, socket.gaierror)
    )


def retry_call(
    fn: Callable[[], Any],
    attempts: int = 3,
    base_delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """
    Call ``fn`` until it succeeds, retrying transient failures with
    exponential backoff. Non-transient errors and the last failure are
    re-raised for the caller to convert into a node failure.
    """
    last_err: Exception | None = None
    for i in range(1, max(1, attempts) + 1):
        try:
            return fn()
        except Exception as e:
            last_err = e
            if not is_transient_exc(e) or i == attempts:
                break
            delay = base_delay * (2 ** (i - 1))
            logger.warning(
                "[retry] Transient error (%s). Retrying in %.1fs (%d/%d)...",
                e.__class__.__name__, delay, i, attempts,
            )
            sleep(delay)
    raise last_err
