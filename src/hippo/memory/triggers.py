"""
Extraction trigger - decides when recent chat is worth a record() call.

Counts messages per community and fires on a full batch, shortly after the
persona joined in, or when something has been waiting too long. Also holds
the per-community in-flight flag callers use to keep extraction runs from
overlapping.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class TriggerReason(Enum):
    BATCH = "batch"
    ACTIVE = "active"
    TIMEOUT = "timeout"


@dataclass
class TriggerDecision:
    should_extract: bool
    pending: int
    reason: TriggerReason | None = None


class ExtractionTrigger:
    def __init__(
        self,
        batch_size: int = 30,
        active_threshold: int = 8,
        max_wait_minutes: float = 15.0,
    ):
        self.batch_size = batch_size
        self.active_threshold = active_threshold
        self.max_wait = timedelta(minutes=max_wait_minutes)

        self._pending: dict[str, int] = {}
        self._last_extracted: dict[str, datetime] = {}
        self._active_mark: dict[str, int] = {}
        self._in_flight: set[str] = set()

    def on_message(
        self, community_id: str, from_persona: bool = False, now: datetime | None = None
    ) -> TriggerDecision:
        """Count one message and report whether to extract now."""
        now = now or datetime.now()
        # The wait clock starts with the first message ever seen
        self._last_extracted.setdefault(community_id, now)
        count = self._pending.get(community_id, 0) + 1
        self._pending[community_id] = count
        if from_persona:
            self._active_mark[community_id] = count
        return self.check(community_id, now)

    def check(self, community_id: str, now: datetime | None = None) -> TriggerDecision:
        now = now or datetime.now()
        count = self._pending.get(community_id, 0)

        if count >= self.batch_size:
            return TriggerDecision(True, count, TriggerReason.BATCH)

        mark = self._active_mark.get(community_id)
        if mark is not None and count - mark >= self.active_threshold:
            return TriggerDecision(True, count, TriggerReason.ACTIVE)

        last = self._last_extracted.get(community_id)
        if count > 0 and last is not None and now - last > self.max_wait:
            return TriggerDecision(True, count, TriggerReason.TIMEOUT)

        return TriggerDecision(False, count)

    def mark_extracted(self, community_id: str, now: datetime | None = None) -> None:
        self._pending[community_id] = 0
        self._last_extracted[community_id] = now or datetime.now()
        self._active_mark.pop(community_id, None)

    def pending(self, community_id: str) -> int:
        return self._pending.get(community_id, 0)

    def begin(self, community_id: str) -> bool:
        """Claim the community for an extraction run; False if one is running."""
        if community_id in self._in_flight:
            return False
        self._in_flight.add(community_id)
        return True

    def finish(self, community_id: str) -> None:
        self._in_flight.discard(community_id)

    def in_flight(self, community_id: str) -> bool:
        return community_id in self._in_flight
