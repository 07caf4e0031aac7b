"""
Reload dispatcher.

Applies a detected change through the consuming application using the
configured strategy:

    refresh          rebind only the affected key prefixes
    restart_context  rebuild the whole application context
    shutdown         ask the process supervisor to restart the process

Target methods may be plain functions or coroutines.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, Protocol

from core.errors import DispatchError
from core.logging import log_exception
from config_reload import metrics
from config_reload.merger import EffectiveSnapshot, SnapshotDiff, key_matches_prefix
from config_reload.snapshot import ReloadStrategy

logger = logging.getLogger(__name__)


class ReloadTarget(Protocol):
    """What the consuming application exposes to the dispatcher."""

    def refresh(self, prefixes: Sequence[str], snapshot: EffectiveSnapshot) -> Any:
        ...

    def restart_context(self, snapshot: EffectiveSnapshot) -> Any:
        ...

    def shutdown(self) -> Any:
        ...


ReloadListener = Callable[[ReloadStrategy, SnapshotDiff], Awaitable[None] | None]


async def _call(func: Callable, *args: Any) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def top_level_prefixes(keys: Iterable[str]) -> list[str]:
    """First dotted segment of each key, in first-seen order."""
    prefixes: list[str] = []
    for key in keys:
        head = key.split(".", 1)[0].split("[", 1)[0]
        if head and head not in prefixes:
            prefixes.append(head)
    return prefixes


class ReloadDispatcher:
    """Invokes the reload target for one detected change at a time.

    The caller serializes dispatches; this class holds no lock of its own.
    """

    def __init__(self, target: ReloadTarget, bound_prefixes: Iterable[str] = ()):
        self.target = target
        self._prefixes: list[str] = []
        self._listeners: list[ReloadListener] = []
        for prefix in bound_prefixes:
            self.bind_prefix(prefix)

    @property
    def bound_prefixes(self) -> tuple[str, ...]:
        return tuple(self._prefixes)

    def bind_prefix(self, prefix: str) -> None:
        """Register a key prefix the application binds configuration under."""
        if prefix and prefix not in self._prefixes:
            self._prefixes.append(prefix)

    def add_listener(self, listener: ReloadListener) -> None:
        self._listeners.append(listener)

    def affected_prefixes(self, diff: SnapshotDiff) -> list[str]:
        changed = diff.changed_keys
        if not self._prefixes:
            return top_level_prefixes(changed)
        return [
            prefix
            for prefix in self._prefixes
            if any(
                key_matches_prefix(key, prefix) or key_matches_prefix(prefix, key)
                for key in changed
            )
        ]

    async def dispatch(
        self,
        strategy: ReloadStrategy,
        diff: SnapshotDiff,
        snapshot: EffectiveSnapshot,
    ) -> bool:
        """Run the strategy action, then notify listeners.

        Returns False when the refresh strategy found no bound prefix
        affected by the change, True otherwise.

        Raises:
            DispatchError: the refresh or restart_context action failed.
            Exception: whatever ``target.shutdown()`` raised, unchanged.
        """
        logger.info(
            "Dispatching reload",
            extra={"strategy": strategy.value, **diff.summary()},
        )

        try:
            acted = await self._run_strategy(strategy, diff, snapshot)
        except Exception as e:
            metrics.record_dispatch(strategy.value, metrics.OUTCOME_FAILED)
            if strategy is ReloadStrategy.SHUTDOWN:
                log_exception(logger, e, "Shutdown request failed", strategy=strategy.value)
                raise
            raise DispatchError(strategy.value, cause=e) from e

        metrics.record_dispatch(strategy.value, "applied" if acted else "skipped")
        if acted:
            await self._notify(strategy, diff)
        return acted

    async def _run_strategy(
        self,
        strategy: ReloadStrategy,
        diff: SnapshotDiff,
        snapshot: EffectiveSnapshot,
    ) -> bool:
        if strategy is ReloadStrategy.REFRESH:
            prefixes = self.affected_prefixes(diff)
            if not prefixes:
                logger.info(
                    "No bound prefix affected by change, skipping refresh",
                    extra={"changed_keys": list(diff.changed_keys)},
                )
                return False
            logger.debug("Refreshing prefixes", extra={"prefixes": prefixes})
            await _call(self.target.refresh, prefixes, snapshot)
        elif strategy is ReloadStrategy.RESTART_CONTEXT:
            await _call(self.target.restart_context, snapshot)
        elif strategy is ReloadStrategy.SHUTDOWN:
            logger.warning("Requesting process shutdown to apply configuration change")
            await _call(self.target.shutdown)
        else:
            raise ValueError(f"Unknown reload strategy: {strategy!r}")
        return True

    async def _notify(self, strategy: ReloadStrategy, diff: SnapshotDiff) -> None:
        for listener in list(self._listeners):
            try:
                await _call(listener, strategy, diff)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Reload listener raised",
                    level=logging.WARNING,
                    callback_error=str(e),
                )


__all__ = [
    "ReloadTarget",
    "ReloadListener",
    "ReloadDispatcher",
    "top_level_prefixes",
]
