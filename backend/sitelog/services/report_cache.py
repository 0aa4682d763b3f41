"""
report_cache.py — Memoisation of derived reports, keyed by input version.

Entries are keyed by (report name, parameters, input token). The token is the
repository version when one is available, otherwise a content fingerprint of
the snapshot. Nothing expires on a timer; ``invalidate`` is called on upstream
create/update/delete. Only entries for the newest token are kept, and at most
``max_entries`` of those (least recently used evicted first).
"""

import hashlib
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Hashable, Iterable, Optional, Tuple

from sitelog.config import REPORT_CACHE_MAX_ENTRIES
from sitelog.models.visit_models import Project, Team, VisitRecord
from sitelog.services.perf_monitor import tracker

logger = logging.getLogger("sitelog-analytics")


def snapshot_fingerprint(
    visits: Iterable[VisitRecord],
    projects: Iterable[Project] = (),
    teams: Iterable[Team] = (),
) -> str:
    """
    sha256 over the repr of every input record, in order.

    Records are frozen dataclasses so their repr is a faithful, stable
    rendering of content. tasks_performed is excluded (not read by the engine).
    """
    digest = hashlib.sha256()
    for group, items in (("v", visits), ("p", projects), ("t", teams)):
        digest.update(group.encode())
        for item in items:
            if isinstance(item, VisitRecord):
                payload = (
                    item.id, item.project, item.date.isoformat(), item.personnel,
                    item.time_tracking, item.hourly_rate, item.invoiced, item.signed_quote_amount,
                )
            else:
                payload = item
            digest.update(repr(payload).encode())
            digest.update(b"\x1f")
    return digest.hexdigest()


class ReportCache:
    """
    Thread-safe report memo.

    Computation happens outside the lock: two concurrent misses for the same
    key may both compute, and both results are equal because report
    functions are pure over their inputs.
    """

    def __init__(self, enabled: bool = True, max_entries: int = REPORT_CACHE_MAX_ENTRIES) -> None:
        self.enabled = enabled
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._token: Optional[Hashable] = None
        self._entries: "OrderedDict[Tuple[str, Hashable], Any]" = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_or_compute(
        self,
        report: str,
        params: Hashable,
        token: Hashable,
        compute: Callable[[], Any],
    ) -> Any:
        if not self.enabled:
            return compute()

        key = (report, params)
        with self._lock:
            if token != self._token:
                if self._entries:
                    logger.debug(
                        f"Input token changed; dropping {len(self._entries)} cached reports",
                        extra={"cache": "roll"},
                    )
                self._entries.clear()
                self._token = token
            elif key in self._entries:
                self._entries.move_to_end(key)
                tracker.record_cache_hit()
                return self._entries[key]

        tracker.record_cache_miss()
        value = compute()
        with self._lock:
            if token != self._token:
                # inputs moved on while computing; serve without storing
                return value
            self._entries.setdefault(key, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            return self._entries[key]

    def invalidate(self, *_args) -> None:
        """Drop every entry. Signature fits repository ``subscribe`` callbacks."""
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
        tracker.record_invalidation()
        logger.debug(f"Report cache invalidated ({dropped} entries dropped)", extra={"cache": "invalidate"})
