import logging
import os
import threading
import time
import uuid
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

ID_BYTES = 16


def new_id() -> str:
    """
    Returns 16 random bytes formatted as 8-4-4-4-12 lowercase hex.

    If the operating system cannot supply random bytes, the current time in nanoseconds
    is used instead so that a submission never fails on id generation. Such ids can
    collide under rapid calls; ReceiptStore.put refuses to overwrite when they do.
    """
    try:
        raw = os.urandom(ID_BYTES)
    except (NotImplementedError, OSError) as e:
        logger.warning("Secure random source unavailable, using timestamp id: %s", e)
        return str(time.time_ns())
    return str(uuid.UUID(bytes=raw))


class ReceiptStore:
    """ Process-local mapping of receipt id to points, guarded by a single lock """

    def __init__(self):
        self._points: Dict[str, int] = {}
        self._lock = threading.Lock()

    def put(self, receipt_id: str, points: int) -> bool:
        """ Records points for a new id; returns False and keeps the old record if the id exists """
        with self._lock:
            if receipt_id in self._points:
                return False
            self._points[receipt_id] = points
            return True

    def get(self, receipt_id: str) -> Tuple[int, bool]:
        with self._lock:
            if receipt_id not in self._points:
                return 0, False
            return self._points[receipt_id], True

    def __len__(self) -> int:
        with self._lock:
            return len(self._points)
