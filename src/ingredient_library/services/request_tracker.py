"""
Request tracker - tags asynchronous requests so stale responses can be dropped.

Each resource key ("records", "views", "preferences") has a counter. issue()
hands out the next token; complete() accepts a response only if its token is
the latest one issued for that key.

Example:
    token = tracker.issue("records")
    result = store.list()
    if tracker.complete("records", token):
        apply(result)
"""

import logging
import threading
from typing import Dict

from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


class RequestTracker:
    def __init__(self):
        self._lock = threading.Lock()
        self._issued: Dict[str, int] = {}
        self._completed: Dict[str, int] = {}

    def issue(self, key: str) -> int:
        with self._lock:
            token = self._issued.get(key, 0) + 1
            self._issued[key] = token
            return token

    def latest(self, key: str) -> int:
        with self._lock:
            return self._issued.get(key, 0)

    def complete(self, key: str, token: int) -> bool:
        """
        Mark a response as arrived.

        Returns:
            True if token is the latest issued for key and the response
            should be applied; False if a newer request exists
        """
        with self._lock:
            current = self._issued.get(key, 0)
            if token != current:
                stale = True
            else:
                stale = False
                self._completed[key] = token
        if stale:
            log_operation(
                logger,
                "request",
                "stale_discarded",
                level=logging.DEBUG,
                request_key=key,
                token=token,
                latest_token=current,
            )
        return not stale

    def is_pending(self, key: str) -> bool:
        """True while the latest request for key has not completed."""
        with self._lock:
            return self._issued.get(key, 0) > self._completed.get(key, 0)
