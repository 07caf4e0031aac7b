"""
Configuration reload engine.

Wires the locator, normalizer, merger, store, dispatcher and watchers:

    engine = ConfigReloadEngine(settings, client, target)
    engine.bind_prefix("datasource")
    engine.on_reload(lambda strategy, diff: ...)
    await engine.start()           # first resolution, then watchers
    snapshot = engine.current_snapshot()
    ...
    await engine.stop()

Resolution passes may run concurrently (one per resource class); the
compare -> dispatch -> replace step is serialized by an asyncio.Lock and a
pass that started before an already committed pass is discarded.
"""

import asyncio
import logging
import time

from core.errors import (
    AuthorizationError,
    ConfigurationError,
    DispatchError,
    NotFoundError,
    ParseError,
    TransportError,
)
from core.logging import generate_cycle_id, log_exception, set_log_context
from config_reload import metrics
from config_reload.client import ClusterClient, FileReader, LocalFileReader
from config_reload.config import ConfigReloadSettings
from config_reload.dispatcher import ReloadDispatcher, ReloadListener, ReloadTarget
from config_reload.merger import EffectiveSnapshot, merge
from config_reload.normalizer import NormalizedEntries, normalize_file, normalize_resource
from config_reload.snapshot import ReloadState, SnapshotStore
from config_reload.sources import ConfigurationSource, SourceList
from config_reload.types import RawResource, ResourceKind
from config_reload.watcher import ChangeWatcher

logger = logging.getLogger(__name__)

# resource_class label for cycles not triggered by a watcher
STARTUP_CYCLE = "startup"


class ConfigReloadEngine:
    def __init__(
        self,
        settings: ConfigReloadSettings,
        client: ClusterClient,
        target: ReloadTarget,
        file_reader: FileReader | None = None,
        store: SnapshotStore | None = None,
    ):
        self.settings = settings
        self.client = client
        self.file_reader = file_reader or LocalFileReader()
        self.store = store or SnapshotStore()
        self.dispatcher = ReloadDispatcher(target)
        self.watchers: dict[ResourceKind, ChangeWatcher] = {}

        self._sources: dict[ResourceKind, SourceList] = {
            kind: settings.sources_for(kind) for kind in settings.enabled_kinds()
        }
        self._commit_lock = asyncio.Lock()
        self._pass_counter = 0
        self._committed_pass = 0
        self._last_resolved: dict[ResourceKind, list[NormalizedEntries]] = {}
        self._started = False

    # =========================================================================
    # Consumer API
    # =========================================================================

    def current_snapshot(self) -> EffectiveSnapshot:
        """Last applied snapshot; empty before the first successful pass."""
        snapshot = self.store.snapshot
        return snapshot if snapshot is not None else EffectiveSnapshot()

    def on_reload(self, listener: ReloadListener) -> None:
        self.dispatcher.add_listener(listener)

    def bind_prefix(self, prefix: str) -> None:
        self.dispatcher.bind_prefix(prefix)

    def sources_for(self, kind: ResourceKind) -> SourceList:
        return self._sources.get(kind, ())

    # =========================================================================
    # Resolution
    # =========================================================================

    async def _fetch(self, source: ConfigurationSource) -> list[RawResource]:
        try:
            if source.is_selector:
                resources = await self.client.list(
                    source.kind, source.namespace, dict(source.labels)
                )
                return sorted(resources, key=lambda r: r.name)
            return [await self.client.get(source.kind, source.name, source.namespace)]
        except NotFoundError:
            logger.debug(
                "Source not found, contributes nothing",
                extra={"source": source.identity},
            )
            return []

    def _normalize(self, raw: RawResource) -> NormalizedEntries | None:
        try:
            return normalize_resource(raw, self.settings.profile_markers)
        except ParseError as e:
            log_exception(
                logger,
                e,
                "Dropping malformed source",
                level=logging.WARNING,
                include_traceback=False,
                source=e.source,
                key=e.key,
            )
            return None

    async def _resolve_mounted(self) -> list[NormalizedEntries]:
        paths = self.settings.mounted_paths()
        if not paths:
            return []
        contents = await asyncio.to_thread(self.file_reader.read_all, paths)
        results: list[NormalizedEntries] = []
        for path in paths:
            if path not in contents:
                continue
            try:
                results.append(
                    normalize_file(path, contents[path], self.settings.profile_markers)
                )
            except ParseError as e:
                log_exception(
                    logger,
                    e,
                    "Dropping malformed mounted file",
                    level=logging.WARNING,
                    include_traceback=False,
                    path=path,
                )
        return results

    async def _resolve_kind(self, kind: ResourceKind) -> list[NormalizedEntries]:
        fetched = await asyncio.gather(*(self._fetch(s) for s in self.sources_for(kind)))
        results: list[NormalizedEntries] = []
        for resources in fetched:
            for raw in resources:
                entries = self._normalize(raw)
                if entries is not None:
                    results.append(entries)
        return results

    async def resolve_snapshot(
        self,
        resource_class: str | None = None,
        strict: bool = False,
    ) -> EffectiveSnapshot:
        """Fetch, normalize and merge every enabled source.

        A resource class that is denied access contributes its last resolved
        entries (nothing before its first success). The denial is raised only
        to the pass running for that class, or to any pass when ``strict``.

        Raises:
            TransportError: a fetch failed transiently.
            AuthorizationError: a fetch of ``resource_class`` was denied.
        """
        kinds = self.settings.enabled_kinds()
        outcomes = await asyncio.gather(
            *(self._resolve_kind(kind) for kind in kinds), return_exceptions=True
        )

        results: list[NormalizedEntries] = []
        denied: AuthorizationError | None = None
        for kind, outcome in zip(kinds, outcomes):
            if isinstance(outcome, AuthorizationError):
                if strict or kind.resource_class == resource_class:
                    denied = denied or outcome
                else:
                    log_exception(
                        logger,
                        outcome,
                        "Access denied, keeping last resolved entries for resource class",
                        level=logging.WARNING,
                        include_traceback=False,
                        source_kind=kind.value,
                    )
                results.extend(self._last_resolved.get(kind, []))
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            self._last_resolved[kind] = outcome
            results.extend(outcome)
        if denied is not None:
            raise denied

        mounted = await self._resolve_mounted()
        return merge(
            results,
            self.settings.profiles,
            mounted=mounted,
            mounted_first=self.settings.mounted_paths_first,
        )

    # =========================================================================
    # Reload cycle
    # =========================================================================

    def _initial_state(self, snapshot: EffectiveSnapshot) -> ReloadState:
        reload = self.settings.reload
        return ReloadState(
            snapshot=snapshot,
            strategy=reload.strategy,
            mode=reload.mode,
            period=reload.period_seconds,
        )

    async def reload_cycle(self, resource_class: str = STARTUP_CYCLE, strict: bool = False) -> bool:
        """Run one resolution pass; dispatch and store on change.

        Returns True when the stored snapshot was replaced.

        Raises:
            TransportError: fetching failed; the stored snapshot is kept.
            AuthorizationError: ``resource_class`` (any class when ``strict``)
                was denied; the stored snapshot is kept.
            Exception: the shutdown strategy failed.
        """
        set_log_context(cycle_id=generate_cycle_id(), resource_class=resource_class)
        self._pass_counter += 1
        pass_number = self._pass_counter

        start = time.perf_counter()
        try:
            with metrics.resolve_seconds.time():
                candidate = await self.resolve_snapshot(resource_class, strict=strict)
        except (TransportError, AuthorizationError):
            metrics.record_cycle(resource_class, metrics.OUTCOME_FAILED)
            raise
        except Exception as e:
            metrics.record_cycle(resource_class, metrics.OUTCOME_FAILED)
            log_exception(logger, e, "Resolution cycle failed, keeping last snapshot")
            return False
        duration_ms = round((time.perf_counter() - start) * 1000, 2)

        async with self._commit_lock:
            if pass_number < self._committed_pass:
                logger.debug("Discarding candidate from a superseded pass")
                return False
            return await self._commit(candidate, resource_class, duration_ms, pass_number)

    async def _commit(
        self,
        candidate: EffectiveSnapshot,
        resource_class: str,
        duration_ms: float,
        pass_number: int,
    ) -> bool:
        state = self.store.state
        if state is None and resource_class != STARTUP_CYCLE:
            # Startup pass failed; the application runs on an empty configuration
            # and gets the recovered snapshot through the reload strategy
            logger.info("Resolved configuration after failed startup pass")
            state = self._initial_state(EffectiveSnapshot())
            self.store.initialize(state)
        if state is None:
            self.store.initialize(self._initial_state(candidate))
            self._committed_pass = pass_number
            metrics.record_cycle(resource_class, metrics.OUTCOME_INITIALIZED)
            logger.info(
                "Initialized configuration snapshot",
                extra={"property_count": len(candidate), "duration_ms": duration_ms},
            )
            return True

        if candidate == state.snapshot:
            metrics.record_cycle(resource_class, metrics.OUTCOME_UNCHANGED)
            logger.debug(
                "Configuration unchanged",
                extra={"property_count": len(candidate), "duration_ms": duration_ms},
            )
            return False

        diff = candidate.diff(state.snapshot)
        logger.info(
            "Configuration change detected",
            extra={
                "changed_keys": list(diff.changed_keys),
                "duration_ms": duration_ms,
                **diff.summary(),
            },
        )
        try:
            await self.dispatcher.dispatch(state.strategy, diff, candidate)
        except DispatchError as e:
            metrics.record_cycle(resource_class, metrics.OUTCOME_FAILED)
            log_exception(
                logger,
                e,
                "Reload dispatch failed, snapshot left unchanged",
                strategy=e.strategy,
            )
            return False

        self.store.replace_snapshot(candidate)
        self._committed_pass = pass_number
        metrics.record_cycle(resource_class, metrics.OUTCOME_RELOADED)
        return True

    async def initialize(self) -> bool:
        """Run the startup pass.

        Raises:
            ConfigurationError: the pass failed and ``fail_fast`` is set.
        """
        try:
            return await self.reload_cycle(STARTUP_CYCLE, strict=self.settings.fail_fast)
        except (TransportError, AuthorizationError) as e:
            if self.settings.fail_fast:
                raise ConfigurationError(
                    "Initial configuration could not be resolved", cause=e
                ) from e
            log_exception(
                logger,
                e,
                "Initial configuration could not be resolved, continuing without it",
                level=logging.WARNING,
                include_traceback=False,
            )
            return False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _create_watcher(self, kind: ResourceKind) -> ChangeWatcher:
        reload = self.settings.reload
        return ChangeWatcher(
            kind=kind,
            client=self.client,
            sources=lambda: self.sources_for(kind),
            run_cycle=self.reload_cycle,
            mode=reload.mode,
            period=reload.period_seconds,
            debounce=reload.debounce_seconds,
            backoff=reload.backoff,
        )

    async def start(self) -> None:
        """Resolve the initial snapshot and start the configured watchers."""
        self._started = True
        await self.initialize()
        if self.store.state is None and self.settings.fail_fast:
            raise ConfigurationError("Initial configuration could not be resolved")

        reload = self.settings.reload
        if not reload.enabled:
            logger.info("Reload disabled, serving the startup snapshot only")
            return

        for kind in self.settings.enabled_kinds():
            if not reload.monitors(kind):
                continue
            watcher = self._create_watcher(kind)
            self.watchers[kind] = watcher
            watcher.start()

    async def stop(self) -> None:
        for watcher in self.watchers.values():
            await watcher.stop()
        self.watchers.clear()
        self._started = False

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Run until ``shutdown_event`` is set or a watcher dies.

        A watcher dies only when the shutdown strategy fails; that error is
        re-raised after the remaining watchers are stopped.
        """
        if not self._started:
            await self.start()
        stop_wait = asyncio.create_task(shutdown_event.wait())
        pending = {stop_wait, *(w.task for w in self.watchers.values() if w.task is not None)}
        try:
            while True:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                if stop_wait in done:
                    return
                for task in done:
                    if not task.cancelled() and task.exception() is not None:
                        raise task.exception()
                # A watcher disabled by an authorization failure ends quietly
        finally:
            stop_wait.cancel()
            await self.stop()


__all__ = [
    "ConfigReloadEngine",
    "STARTUP_CYCLE",
]
