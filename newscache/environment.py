"""Runtime environment abstractions: clock, connectivity and timers.

The managers never call ``datetime.now()``, ``asyncio.sleep()`` or a
platform online/offline API directly. They receive these collaborators at
construction time so that TTL expiry, breaker cooldowns, reconnection and
daily scheduling can be driven deterministically.
"""

import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)

ConnectivityListener = Callable[[bool], None]
TimerCallback = Callable[[], Any]


class Clock(Protocol):
    """Source of wall-clock time and of cooperative delays."""

    def now(self) -> datetime:
        """Return the current timezone-aware local time."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""
        ...


class SystemClock:
    """Clock backed by the system time and ``asyncio.sleep``."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).astimezone()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock:
    """
    Clock that only moves when told to.

    ``sleep()`` advances the clock by the requested amount and yields to
    the event loop once, so backoff and inter-batch delays complete
    instantly while still letting other tasks interleave.

    Attributes:
        sleeps: Every duration passed to ``sleep()``, in call order
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        if start is None:
            start = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)
        if start.tzinfo is None:
            raise ValueError("ManualClock requires a timezone-aware start time")
        self._now = start
        self.sleeps: List[float] = []

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0.0, **delta: float) -> datetime:
        """Move the clock forward and return the new time."""
        self._now = self._now + timedelta(seconds=seconds, **delta)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(max(0.0, seconds))
        await asyncio.sleep(0)


class ConnectivitySignal:
    """
    Observable online/offline state.

    The platform layer calls ``set_online()`` when it receives a
    connectivity transition; listeners are notified only on actual
    transitions, never on repeated values.

    Example:
        >>> signal = ConnectivitySignal(online=True)
        >>> unsubscribe = signal.subscribe(lambda online: print(online))
        >>> signal.set_online(False)
        False
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: List[ConnectivityListener] = []

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """
        Register a transition listener.

        Args:
            listener: Called with the new state on each transition

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return

        self._online = online
        logger.info("connectivity_changed", online=online, listeners=len(self._listeners))

        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                logger.error(
                    "connectivity_listener_error",
                    error=str(e),
                    error_type=type(e).__name__,
                )


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class TimerScheduler(Protocol):
    """Schedule-at-time primitive."""

    def call_at(self, when: datetime, callback: TimerCallback) -> TimerHandle:
        """Invoke ``callback`` once at ``when``; coroutine results become tasks."""
        ...


class AsyncioTimerScheduler:
    """
    TimerScheduler on top of the running event loop.

    Delays are computed against the injected clock and handed to
    ``loop.call_later``. Coroutines returned by callbacks are wrapped in
    tasks that are kept referenced until they finish.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._tasks: set = set()

    def call_at(self, when: datetime, callback: TimerCallback) -> asyncio.TimerHandle:
        delay = max(0.0, (when - self._clock.now()).total_seconds())
        loop = asyncio.get_running_loop()
        return loop.call_later(delay, self._fire, callback)

    def _fire(self, callback: TimerCallback) -> None:
        result = callback()
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)


class ManualTimer:
    """Pending timer registered with a ManualTimerScheduler."""

    def __init__(self, when: datetime, callback: TimerCallback) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimerScheduler:
    """
    TimerScheduler that fires only when ``run_due()`` is awaited.

    Pairs with ManualClock: advance the clock, then ``await
    timers.run_due()`` to run every timer whose time has come.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self.timers: List[ManualTimer] = []

    def call_at(self, when: datetime, callback: TimerCallback) -> ManualTimer:
        timer = ManualTimer(when, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    async def run_due(self) -> int:
        """Fire due timers in time order; returns how many fired."""
        now = self._clock.now()
        due = sorted(
            (t for t in self.pending if t.when <= now),
            key=lambda t: t.when,
        )
        for timer in due:
            timer.cancelled = True
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
        return len(due)
