from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import requests

logger = logging.getLogger(__name__)

_thread_local = threading.local()

RETRY_DELAY_SECONDS = 0.5


def get_session() -> requests.Session:
    """Return a thread-local requests.Session for connection reuse.

    A matcher pass may capture or mint codes for many orders in a row;
    reusing the session avoids a TCP/TLS handshake per order.
    """
    sess: Optional[requests.Session] = getattr(_thread_local, "session", None)
    if sess is None:
        sess = requests.Session()
        _thread_local.session = sess
    return sess


def request_with_retry(
    method: str,
    url: str,
    *,
    timeout: float,
    max_attempts: int = 2,
    **kwargs,
) -> requests.Response:
    """
    Send a request, retrying only on timeout/connection errors.

    Raises the last requests exception once attempts are exhausted.
    HTTP error statuses are returned, not raised.
    """
    attempts = max(1, int(max_attempts))
    attempt = 1
    while True:
        try:
            return get_session().request(method, url, timeout=timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as exc:
            if attempt >= attempts:
                logger.error(f"{method} {url} failed after {attempts} attempts: {exc}")
                raise
            logger.warning(f"{method} {url} attempt {attempt} failed: {exc}; retrying")
            attempt += 1
            time.sleep(RETRY_DELAY_SECONDS)
