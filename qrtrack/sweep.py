"""Periodic staleness sweep.

Every record that is not flagged yet is checked against the engine's
staleness rule; stale ones are flagged and written back one at a time.  A
store failure on one record is logged and reported in the result, and the
sweep carries on with the next record.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional

from .errors import StoreError
from .lifecycle import LifecycleEngine

log = logging.getLogger(__name__)


@dataclass
class SweepResult:
    checked: int = 0
    flagged_newly: int = 0
    errors: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": not self.errors,
            "checked": self.checked,
            "flagged": self.flagged_newly,
            "errors": list(self.errors),
        }


class Sweep:
    def __init__(self, store, engine: Optional[LifecycleEngine] = None):
        self.store = store
        self.engine = engine or LifecycleEngine()

    def run(self, now=None) -> SweepResult:
        now = now or self.engine.clock()
        candidates = self.store.get_unflagged()
        result = SweepResult(checked=len(candidates))
        for record in candidates:
            try:
                stale = self.engine.is_stale(record, now)
            except (OverflowError, TypeError, ValueError) as e:
                log.error("sweep: could not evaluate %s: %s", record.id, e)
                result.errors.append({"qr_id": record.id, "error": str(e)})
                continue
            if not stale:
                continue
            try:
                self.store.put(replace(record, flagged=True))
            except StoreError as e:
                log.error("sweep: could not flag %s: %s", record.id, e)
                result.errors.append({"qr_id": record.id, "error": str(e)})
                continue
            result.flagged_newly += 1
        log.info(
            "sweep at %s: checked=%d flagged=%d errors=%d",
            now.isoformat(), result.checked, result.flagged_newly, len(result.errors),
        )
        return result
