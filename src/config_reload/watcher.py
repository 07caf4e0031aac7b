"""
Change watcher.

One watcher per monitored resource class (ConfigMaps, Secrets). In event
mode it subscribes to the cluster watch stream and coalesces bursts of
events into a single resolution pass; in polling mode it resolves every
``period`` seconds. A failing watch stream degrades the class to polling.

State machine:
    event:   IDLE -> WATCHING -> DEBOUNCING -> RESOLVING -> WATCHING
    polling: IDLE -> SLEEPING -> RESOLVING -> SLEEPING
    DISABLED once polling is denied access.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum

from core.errors import AuthorizationError, TransportError
from core.logging import log_exception, set_log_context
from core.resilience import RetryConfig
from config_reload import metrics
from config_reload.client import ClusterClient
from config_reload.snapshot import ReloadMode
from config_reload.sources import SourceList, watched_namespaces
from config_reload.types import ResourceEvent, ResourceKind

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0
DEFAULT_RESUBSCRIBE_DELAY_SECONDS = 1.0


class WatcherState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    DEBOUNCING = "debouncing"
    RESOLVING = "resolving"
    SLEEPING = "sleeping"
    DISABLED = "disabled"


class _Degrade(Exception):
    """Internal signal: leave event mode for polling."""


class ChangeWatcher:
    """Detects changes for one resource class and triggers resolution cycles.

    ``run_cycle`` is awaited for every resolution pass. It is expected to
    raise TransportError or AuthorizationError when fetching failed and to
    handle everything else itself; any other exception ends the watcher.
    """

    def __init__(
        self,
        kind: ResourceKind,
        client: ClusterClient,
        sources: Callable[[], SourceList],
        run_cycle: Callable[[str], Awaitable[object]],
        mode: ReloadMode = ReloadMode.EVENT,
        period: float = 15.0,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        backoff: RetryConfig | None = None,
        resubscribe_delay: float = DEFAULT_RESUBSCRIBE_DELAY_SECONDS,
    ):
        self.kind = kind
        self.client = client
        self._sources = sources
        self._run_cycle = run_cycle
        self.mode = mode
        self.period = period
        self.debounce = debounce
        self.backoff = backoff or RetryConfig(max_attempts=1, base_delay=1.0, max_delay=60.0)
        self.resubscribe_delay = resubscribe_delay

        self.state = WatcherState.IDLE
        self.consecutive_failures = 0
        self.events_received = 0
        self.resolutions = 0
        self._events_at_last_resolve = 0

        self._stop = asyncio.Event()
        self._pending = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._stream: AsyncIterator[ResourceEvent] | None = None

    @property
    def resource_class(self) -> str:
        return self.kind.resource_class

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(
                self.run(), name=f"config-watcher-{self.resource_class}"
            )
        return self._task

    async def stop(self) -> None:
        """Stop watching and release the subscription."""
        self._stop.set()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._close_stream()
        if self.state is not WatcherState.DISABLED:
            self.state = WatcherState.IDLE

    async def run(self) -> None:
        set_log_context(resource_class=self.resource_class)
        logger.info(
            "Starting change watcher",
            extra={
                "mode": self.mode.value,
                "period_seconds": self.period,
                "debounce_seconds": self.debounce,
            },
        )
        try:
            if self.mode is ReloadMode.EVENT:
                try:
                    await self._watch_loop()
                except _Degrade:
                    self.mode = ReloadMode.POLLING
            if self.mode is ReloadMode.POLLING and not self._stop.is_set():
                await self._poll_loop()
        finally:
            await self._close_stream()
            if self.state is not WatcherState.DISABLED:
                self.state = WatcherState.IDLE

    # =========================================================================
    # Event mode
    # =========================================================================

    def _accepts(self, event: ResourceEvent) -> bool:
        if event.kind is not self.kind:
            return False
        return any(source.matches(event.name, event.namespace) for source in self._sources())

    async def _read_events(self) -> int:
        namespaces = watched_namespaces(self._sources())
        stream = self.client.watch(self.kind, namespaces)
        self._stream = stream
        received = 0
        try:
            async for event in stream:
                received += 1
                if self._accepts(event):
                    self.events_received += 1
                    logger.debug(
                        "Change event",
                        extra={
                            "source_name": event.name,
                            "change_type": event.change_type.value,
                        },
                    )
                    self._pending.set()
        finally:
            await self._close_stream()
        return received

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    async def _watch_loop(self) -> None:
        while not self._stop.is_set():
            reader = asyncio.create_task(self._read_events())
            try:
                await self._consume(reader)
            finally:
                if not reader.done():
                    reader.cancel()
                    await asyncio.gather(reader, return_exceptions=True)

            if self._stop.is_set():
                return
            if reader.cancelled():
                continue
            error = reader.exception()
            if error is not None:
                self._degrade(error)
            if reader.result() == 0:
                # Server closed an idle stream; avoid a tight resubscribe loop
                await self._sleep(self.resubscribe_delay)
            logger.debug("Watch stream ended, resubscribing")

    async def _consume(self, reader: asyncio.Task) -> None:
        while not self._stop.is_set():
            self.state = WatcherState.WATCHING
            pending = asyncio.create_task(self._pending.wait())
            stopping = asyncio.create_task(self._stop.wait())
            try:
                await asyncio.wait(
                    {pending, stopping, reader}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                pending.cancel()
                stopping.cancel()

            if self._stop.is_set():
                return
            if self._pending.is_set():
                coalesced = await self._debounce()
                await self._resolve_event_driven(coalesced)
                continue
            if reader.done():
                return

    async def _debounce(self) -> int:
        """Wait until no new event arrives for a full window."""
        self.state = WatcherState.DEBOUNCING
        while True:
            self._pending.clear()
            try:
                await asyncio.wait_for(self._pending.wait(), self.debounce)
            except asyncio.TimeoutError:
                coalesced = self.events_received - self._events_at_last_resolve
                self._events_at_last_resolve = self.events_received
                return max(coalesced, 1)

    async def _resolve_event_driven(self, coalesced: int) -> None:
        self.state = WatcherState.RESOLVING
        logger.debug("Resolving after change events", extra={"events_coalesced": coalesced})
        try:
            await self._run_cycle(self.resource_class)
        except TransportError as e:
            delay = self._record_failure(e)
            await self._sleep(delay)
            # Retry on the next pass even if no further event arrives
            self._pending.set()
            return
        except AuthorizationError as e:
            self._degrade(e)
        self._record_success()

    def _degrade(self, error: Exception) -> None:
        log_exception(
            logger,
            error,
            "Watch failed, degrading to polling",
            level=logging.WARNING,
            include_traceback=False,
            mode=ReloadMode.POLLING.value,
        )
        metrics.record_watch_degraded(self.resource_class)
        raise _Degrade() from error

    # =========================================================================
    # Polling mode
    # =========================================================================

    async def _poll_loop(self) -> None:
        delay = self.period
        while not self._stop.is_set():
            self.state = WatcherState.SLEEPING
            if await self._sleep(delay):
                return

            self.state = WatcherState.RESOLVING
            try:
                await self._run_cycle(self.resource_class)
            except TransportError as e:
                delay = max(self.period, self._record_failure(e))
                continue
            except AuthorizationError as e:
                self.state = WatcherState.DISABLED
                log_exception(
                    logger,
                    e,
                    "Polling denied, monitoring disabled for this resource class",
                    level=logging.WARNING,
                    include_traceback=False,
                )
                return
            self._record_success()
            delay = self.period

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless stopped first. Returns True when stopped."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def _record_failure(self, error: Exception) -> float:
        delay = self.backoff.get_delay(self.consecutive_failures, error)
        self.consecutive_failures += 1
        log_exception(
            logger,
            error,
            "Resolution cycle failed, backing off",
            level=logging.WARNING,
            include_traceback=False,
            consecutive_failures=self.consecutive_failures,
            delay_seconds=round(delay, 2),
        )
        return delay

    def _record_success(self) -> None:
        self.resolutions += 1
        self.consecutive_failures = 0


__all__ = [
    "WatcherState",
    "ChangeWatcher",
    "DEFAULT_DEBOUNCE_SECONDS",
]
