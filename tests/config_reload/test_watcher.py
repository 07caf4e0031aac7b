"""Tests for the change watcher."""

import asyncio

import pytest
from prometheus_client import REGISTRY

from core.errors import AuthorizationError, TransportError
from core.resilience import RetryConfig
from config_reload.snapshot import ReloadMode
from config_reload.sources import resolve
from config_reload.types import ResourceKind
from config_reload.watcher import ChangeWatcher, WatcherState
from fakes import FakeClusterClient, wait_until

FAST_BACKOFF = RetryConfig(max_attempts=1, base_delay=0.01, max_delay=0.02)


class CycleRecorder:
    """run_cycle stand-in; raises the queued errors in order, then succeeds."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = []

    async def __call__(self, resource_class):
        self.calls.append(resource_class)
        if self.errors:
            raise self.errors.pop(0)


def _watcher(client, run_cycle, mode=ReloadMode.EVENT, **kwargs):
    sources = resolve("demo", "apps", active_profiles=["dev"])
    kwargs.setdefault("period", 0.02)
    kwargs.setdefault("debounce", 0.05)
    kwargs.setdefault("backoff", FAST_BACKOFF)
    kwargs.setdefault("resubscribe_delay", 0.01)
    return ChangeWatcher(
        kind=ResourceKind.CONFIG_MAP,
        client=client,
        sources=lambda: sources,
        run_cycle=run_cycle,
        mode=mode,
        **kwargs,
    )


def _degraded_count():
    value = REGISTRY.get_sample_value(
        "config_reload_watch_degraded_total", {"resource_class": "config_maps"}
    )
    return value or 0.0


class TestEventMode:
    @pytest.mark.asyncio
    async def test_subscribes_to_source_namespaces(self):
        client = FakeClusterClient()
        watcher = _watcher(client, CycleRecorder())
        watcher.start()
        try:
            await wait_until(lambda: client.streams)
            assert client.streams[0].namespaces == ["apps"]
            assert client.streams[0].kind is ResourceKind.CONFIG_MAP
            await wait_until(lambda: watcher.state is WatcherState.WATCHING)
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_burst_of_events_coalesced_into_one_pass(self):
        client = FakeClusterClient()
        run_cycle = CycleRecorder()
        watcher = _watcher(client, run_cycle)
        watcher.start()
        try:
            await wait_until(lambda: client.streams)
            stream = client.streams[0]
            for _ in range(5):
                stream.push("demo")
            stream.push("demo-dev")

            await wait_until(lambda: run_cycle.calls)
            await asyncio.sleep(0.15)

            assert run_cycle.calls == ["config_maps"]
            assert watcher.events_received == 6
            assert watcher.resolutions == 1
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_unrelated_events_ignored(self):
        client = FakeClusterClient()
        run_cycle = CycleRecorder()
        watcher = _watcher(client, run_cycle)
        watcher.start()
        try:
            await wait_until(lambda: client.streams)
            client.streams[0].push("someone-else")
            client.streams[0].push("demo", namespace="other")
            await asyncio.sleep(0.15)

            assert run_cycle.calls == []
            assert watcher.events_received == 0
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_separate_bursts_resolve_separately(self):
        client = FakeClusterClient()
        run_cycle = CycleRecorder()
        watcher = _watcher(client, run_cycle)
        watcher.start()
        try:
            await wait_until(lambda: client.streams)
            client.streams[0].push("demo")
            await wait_until(lambda: len(run_cycle.calls) == 1)
            client.streams[0].push("demo")
            await wait_until(lambda: len(run_cycle.calls) == 2)
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_stop_closes_subscription(self):
        client = FakeClusterClient()
        watcher = _watcher(client, CycleRecorder())
        watcher.start()
        await wait_until(lambda: client.streams)

        await watcher.stop()

        assert client.streams[0].closed
        assert watcher.task.done()
        assert watcher.state is WatcherState.IDLE

    @pytest.mark.asyncio
    async def test_resubscribes_after_stream_ends(self):
        client = FakeClusterClient()
        watcher = _watcher(client, CycleRecorder())
        watcher.start()
        try:
            await wait_until(lambda: client.streams)
            client.streams[0].end()

            await wait_until(lambda: len(client.streams) == 2)
            assert client.streams[0].closed
            assert watcher.mode is ReloadMode.EVENT
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_stream_error_degrades_to_polling(self):
        client = FakeClusterClient()
        client.watch_error = TransportError("watch connection reset")
        run_cycle = CycleRecorder()
        watcher = _watcher(client, run_cycle)
        before = _degraded_count()
        watcher.start()
        try:
            await wait_until(lambda: len(run_cycle.calls) >= 2)

            assert watcher.mode is ReloadMode.POLLING
            assert len(client.streams) == 1
            assert _degraded_count() == before + 1
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_authorization_failure_on_resolve_degrades(self):
        client = FakeClusterClient()
        run_cycle = CycleRecorder(AuthorizationError("forbidden"))
        watcher = _watcher(client, run_cycle)
        watcher.start()
        try:
            await wait_until(lambda: client.streams)
            client.streams[0].push("demo")

            await wait_until(lambda: watcher.mode is ReloadMode.POLLING)
            assert client.streams[0].closed
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_transient_failure_retried_without_new_event(self):
        client = FakeClusterClient()
        run_cycle = CycleRecorder(TransportError("timeout"))
        watcher = _watcher(client, run_cycle)
        watcher.start()
        try:
            await wait_until(lambda: client.streams)
            client.streams[0].push("demo")

            await wait_until(lambda: len(run_cycle.calls) == 2)
            await wait_until(lambda: watcher.consecutive_failures == 0)
            assert watcher.mode is ReloadMode.EVENT
        finally:
            await watcher.stop()


class TestPollingMode:
    @pytest.mark.asyncio
    async def test_resolves_every_period(self):
        client = FakeClusterClient()
        run_cycle = CycleRecorder()
        watcher = _watcher(client, run_cycle, mode=ReloadMode.POLLING)
        watcher.start()
        try:
            await wait_until(lambda: len(run_cycle.calls) >= 3)
            assert client.streams == []
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_transient_failure_does_not_stop_polling(self):
        client = FakeClusterClient()
        run_cycle = CycleRecorder(TransportError("api server unavailable"))
        watcher = _watcher(client, run_cycle, mode=ReloadMode.POLLING)
        watcher.start()
        try:
            await wait_until(lambda: len(run_cycle.calls) >= 2)
            await wait_until(lambda: watcher.consecutive_failures == 0)

            assert not watcher.task.done()
            assert watcher.resolutions >= 1
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_authorization_failure_disables(self):
        client = FakeClusterClient()
        run_cycle = CycleRecorder(AuthorizationError("forbidden"))
        watcher = _watcher(client, run_cycle, mode=ReloadMode.POLLING)
        task = watcher.start()

        await asyncio.wait_for(task, timeout=2.0)

        assert watcher.state is WatcherState.DISABLED
        assert run_cycle.calls == ["config_maps"]
        await watcher.stop()
        assert watcher.state is WatcherState.DISABLED

    @pytest.mark.asyncio
    async def test_unexpected_error_ends_watcher(self):
        client = FakeClusterClient()
        run_cycle = CycleRecorder(RuntimeError("shutdown failed"))
        watcher = _watcher(client, run_cycle, mode=ReloadMode.POLLING)
        task = watcher.start()

        with pytest.raises(RuntimeError):
            await asyncio.wait_for(task, timeout=2.0)

    @pytest.mark.asyncio
    async def test_stop_interrupts_sleep(self):
        client = FakeClusterClient()
        watcher = _watcher(client, CycleRecorder(), mode=ReloadMode.POLLING, period=60.0)
        watcher.start()
        await asyncio.sleep(0.01)

        await asyncio.wait_for(watcher.stop(), timeout=1.0)

        assert watcher.task.done()
