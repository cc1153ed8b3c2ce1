"""Tests for ProgressEmitter."""

from artshelf.application.services.scan_progress import ProgressEmitter
from artshelf.domain.entities import ScanPhase, ScanProgress


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestProgressEmitter:
    """Tests for clamping, throttling and error isolation."""

    async def test_percentage_never_decreases(self) -> None:
        events: list[ScanProgress] = []
        emitter = ProgressEmitter(events.append, min_interval_seconds=0)

        await emitter.emit(ScanPhase.COUNTING, "a", 20)
        await emitter.emit(ScanPhase.COUNTING, "b", 10)
        await emitter.emit(ScanPhase.COUNTING, "c", 150)

        assert [e.percentage for e in events] == [20, 20, 100]

    async def test_scanning_events_are_throttled(self) -> None:
        clock = FakeClock()
        events: list[ScanProgress] = []
        emitter = ProgressEmitter(events.append, min_interval_seconds=1.0, clock=clock)

        assert await emitter.emit(ScanPhase.SCANNING, "1", 10, current=1, total=10)
        clock.now = 0.5
        assert not await emitter.emit(ScanPhase.SCANNING, "2", 20, current=2, total=10)
        clock.now = 1.2
        assert await emitter.emit(ScanPhase.SCANNING, "3", 30, current=3, total=10)

        assert [e.message for e in events] == ["1", "3"]
        # Throttled events still update the latest snapshot
        assert emitter.latest is not None and emitter.latest.message == "3"

    async def test_final_item_and_phase_changes_always_delivered(self) -> None:
        clock = FakeClock()
        events: list[ScanProgress] = []
        emitter = ProgressEmitter(events.append, min_interval_seconds=60, clock=clock)

        await emitter.emit(ScanPhase.COUNTING, "counting", 0)
        await emitter.emit(ScanPhase.SCANNING, "first", 10, current=1, total=3)
        await emitter.emit(ScanPhase.SCANNING, "middle", 50, current=2, total=3)
        await emitter.emit(ScanPhase.SCANNING, "last", 90, current=3, total=3)
        await emitter.emit(ScanPhase.COMPLETE, "done", 100)

        assert [e.message for e in events] == ["counting", "first", "last", "done"]

    async def test_async_callback(self) -> None:
        received: list[int] = []

        async def callback(progress: ScanProgress) -> None:
            received.append(progress.percentage)

        emitter = ProgressEmitter(callback, min_interval_seconds=0)
        await emitter.emit(ScanPhase.COMPLETE, "done", 100)
        assert received == [100]

    async def test_callback_errors_are_swallowed(self) -> None:
        def broken(progress: ScanProgress) -> None:
            raise RuntimeError("listener went away")

        emitter = ProgressEmitter(broken, min_interval_seconds=0)
        assert await emitter.emit(ScanPhase.COUNTING, "x", 5)
        assert emitter.delivered == 0

    async def test_no_callback(self) -> None:
        emitter = ProgressEmitter(None)
        assert await emitter.emit(ScanPhase.COMPLETE, "done", 100)
        assert emitter.latest is not None
