"""
Sale number generation and deduplication.

Sale numbers are the last 8 digits of the epoch milliseconds at checkout.
The guard remembers a bounded history of numbers that were already posted
or printed and rejects a second submission of the same number.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Optional, Set

logger = logging.getLogger(__name__)

SALE_NO_DIGITS = 8
DEFAULT_MAX_RECENT = 100


def generate_sale_no(now_ms: Optional[int] = None) -> str:
    """Sale number derived from the current time, truncated to a fixed width."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return str(now_ms)[-SALE_NO_DIGITS:]


class SaleGuard:
    """
    Bounded recent-history set of sale numbers (oldest evicted first),
    plus the numbers currently being posted or printed.
    """

    def __init__(self, max_recent: int = DEFAULT_MAX_RECENT, enabled: bool = True):
        self.max_recent = max(1, int(max_recent))
        self.enabled = enabled
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._inflight: Set[str] = set()
        self._lock = threading.Lock()

    @staticmethod
    def normalize(sale_no: Any) -> Optional[str]:
        if sale_no is None:
            return None
        value = str(sale_no).strip()
        return value or None

    def seen(self, sale_no: Any) -> bool:
        key = self.normalize(sale_no)
        if not self.enabled or key is None:
            return False
        with self._lock:
            return key in self._seen

    def begin(self, sale_no: Any) -> bool:
        """
        Reserve a sale number for a post/print in progress.

        Returns:
            bool: False if the number is already recorded or in progress
        """
        key = self.normalize(sale_no)
        if not self.enabled or key is None:
            return True
        with self._lock:
            if key in self._seen or key in self._inflight:
                return False
            self._inflight.add(key)
            return True

    def in_progress(self, sale_no: Any) -> bool:
        key = self.normalize(sale_no)
        with self._lock:
            return key in self._inflight

    def finish(self, sale_no: Any, ok: bool) -> None:
        """Release a reservation; a successful sale is recorded."""
        key = self.normalize(sale_no)
        if key is None:
            return
        with self._lock:
            self._inflight.discard(key)
        if ok:
            self.mark(key)

    def mark(self, sale_no: Any) -> None:
        key = self.normalize(sale_no)
        if not self.enabled or key is None:
            return
        with self._lock:
            self._seen[key] = None
            self._seen.move_to_end(key)
            while len(self._seen) > self.max_recent:
                evicted, _ = self._seen.popitem(last=False)
                logger.debug(f"Sale {evicted} evicted from recent history")

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
