"""Throttled, monotonic progress reporting for scans."""

import inspect
import logging
import time
from collections.abc import Callable

from artshelf.domain.entities import ScanPhase, ScanProgress
from artshelf.domain.ports import ProgressCallback

logger = logging.getLogger(__name__)


# Hey future me, the progress callback usually feeds an SSE stream to a browser. Two things bit us:
#   1. Percentages going BACKWARDS (e.g. a batch reports 43% after discovery said 45%). The UI bar
#      jumps around and users think the scan restarted. So percentage is clamped to never drop.
#   2. Flooding. 100k items = 100k "scanning" events. We only forward a scanning event if
#      min_interval seconds passed since the last delivered one. Phase changes, the final item
#      (current == total) and "complete" always go through, so the UI never misses a milestone.
# A broken callback must NEVER kill a scan - exceptions are logged and swallowed here.
class ProgressEmitter:
    """Wraps a progress callback with clamping and throttling."""

    def __init__(
        self,
        callback: ProgressCallback | None,
        min_interval_seconds: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize emitter.

        Args:
            callback: Sync or async callable receiving ScanProgress (None = no-op)
            min_interval_seconds: Minimum gap between delivered "scanning" events
            clock: Monotonic clock (injectable for tests)
        """
        self.callback = callback
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._last_percentage = 0
        self._last_phase: ScanPhase | None = None
        self._last_delivered_at: float | None = None
        self.latest: ScanProgress | None = None
        self.delivered = 0

    async def emit(
        self,
        phase: ScanPhase,
        message: str,
        percentage: float,
        current: int | None = None,
        total: int | None = None,
    ) -> bool:
        """Report progress.

        Returns:
            True if the event was handed to the callback
        """
        clamped = max(self._last_percentage, min(100, max(0, round(percentage))))
        self._last_percentage = clamped

        progress = ScanProgress(
            phase=phase,
            message=message,
            percentage=clamped,
            current=current,
            total=total,
        )
        self.latest = progress

        if not self._should_deliver(progress):
            return False

        self._last_phase = phase
        self._last_delivered_at = self._clock()
        await self._deliver(progress)
        return True

    def _should_deliver(self, progress: ScanProgress) -> bool:
        if progress.phase != ScanPhase.SCANNING:
            return True
        if progress.phase != self._last_phase or self._last_delivered_at is None:
            return True
        if progress.total is not None and progress.current == progress.total:
            return True
        return self._clock() - self._last_delivered_at >= self.min_interval_seconds

    async def _deliver(self, progress: ScanProgress) -> None:
        if self.callback is None:
            return
        try:
            outcome = self.callback(progress)
            if inspect.isawaitable(outcome):
                await outcome
            self.delivered += 1
        except Exception as e:
            # Progress is best-effort - never abort a scan because a listener broke
            logger.warning("Progress callback failed (%s): %s", progress.phase.value, e)
