"""Single-writer reconciliation loop: a mailbox that serializes timer ticks and change signals."""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from fleet_core.notifications import ChangeNotifier, EntityType

LOG = logging.getLogger(__name__)


class Trigger(str, Enum):
    """Why a reconciliation pass was requested."""
    TICK = "tick"
    CHANGE = "change"
    MANUAL = "manual"


ReconcilePass = Callable[[], Any]


class ReconciliationLoop:
    """
    One worker task drains the mailbox and runs one pass at a time (in a thread, the
    pass does blocking DB I/O). Triggers that arrive while a pass is running wait in
    the mailbox and are coalesced into a single follow-up pass, so a change signal can
    never read ahead of a write in progress.
    """

    def __init__(
        self,
        run_pass: ReconcilePass,
        *,
        interval_s: float = 60.0,
        initial_delay_s: float = 1.0,
    ) -> None:
        self._run_pass = run_pass
        self.interval_s = interval_s
        self.initial_delay_s = initial_delay_s
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue[Trigger]] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._tasks: list[asyncio.Task] = []
        self._unsubscribe: list[Callable[[], bool]] = []
        self.passes = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not all(t.done() for t in self._tasks)

    def start(self) -> None:
        """Start timer and worker tasks on the running event loop."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = queue = asyncio.Queue()
        self._stop_event = stop_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._worker(queue)),
            asyncio.create_task(self._timer(stop_event)),
        ]

    async def stop(self) -> None:
        """Stop tasks and drop notification subscriptions. Idempotent."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        if self._stop_event is not None:
            self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    def attach(self, notifier: ChangeNotifier) -> None:
        """Turn every unit/alert change signal into a CHANGE trigger."""
        for entity in EntityType:
            self._unsubscribe.append(notifier.subscribe(entity, self._on_change))

    def _on_change(self, entity: EntityType) -> None:
        LOG.debug("Change signal for %s", entity.value)
        self.post(Trigger.CHANGE)

    def post(self, trigger: Trigger) -> bool:
        """Request a pass. Safe from any thread. Returns False if the loop is not running."""
        if self._loop is None or self._queue is None or not self.running:
            return False
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is self._loop:
            self._queue.put_nowait(trigger)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, trigger)
        return True

    async def _timer(self, stop_event: asyncio.Event) -> None:
        """Post a TICK after the initial delay, then every interval_s until stopped."""
        delay = self.initial_delay_s
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
                return
            except asyncio.TimeoutError:
                pass
            self.post(Trigger.TICK)
            delay = self.interval_s

    @staticmethod
    def _drain(queue: asyncio.Queue) -> list[Trigger]:
        drained: list[Trigger] = []
        while True:
            try:
                drained.append(queue.get_nowait())
            except asyncio.QueueEmpty:
                return drained

    async def _worker(self, queue: asyncio.Queue) -> None:
        while True:
            trigger = await queue.get()
            coalesced = self._drain(queue)
            LOG.debug("Reconciliation pass (%s, %d coalesced)", trigger.value, len(coalesced))
            try:
                await asyncio.to_thread(self._run_pass)
            except Exception:
                # Next trigger retries from scratch.
                self.failures += 1
                LOG.exception("Reconciliation pass failed")
            self.passes += 1
