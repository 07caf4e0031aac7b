"""
ClusterClient backed by the official kubernetes client.

The kubernetes client is synchronous; reads run in worker threads via
asyncio.to_thread and watch streams are pumped from daemon threads into an
asyncio.Queue. ApiException is mapped onto the reload error taxonomy:

    404       NotFoundError
    401/403   AuthorizationError
    410       (watch only) stream ends, caller re-subscribes
    other     classify_http_status via wrap_exception
"""

import asyncio
import base64
import logging
import threading
from collections.abc import Iterable, Mapping
from functools import wraps
from typing import Any

from kubernetes import config as kube_config
from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api

from core.errors import AuthorizationError, NotFoundError, ReloadError, wrap_exception
from core.resilience import FETCH_RETRY, with_retry_async
from config_reload.types import ChangeType, RawResource, ResourceEvent, ResourceKind

logger = logging.getLogger(__name__)

DEFAULT_WATCH_TIMEOUT_SECONDS = 300

_END = object()

_CHANGE_TYPES = {
    "ADDED": ChangeType.ADDED,
    "MODIFIED": ChangeType.MODIFIED,
    "DELETED": ChangeType.DELETED,
}


def configure_client() -> None:
    """Load in-cluster credentials, falling back to the local kubeconfig."""
    try:
        kube_config.load_incluster_config()
        logger.debug("Using in-cluster Kubernetes configuration")
    except kube_config.ConfigException:
        kube_config.load_kube_config()
        logger.debug("Using kubeconfig Kubernetes configuration")


def translate_api_exception(
    exc: ApiException,
    kind: ResourceKind,
    name: str,
    namespace: str,
) -> ReloadError:
    status = exc.status if isinstance(exc.status, int) else None
    if status == 404:
        return NotFoundError(kind.value, name, namespace, cause=exc)
    if status in (401, 403):
        return AuthorizationError(
            f"Access to {kind.value} '{name}' in '{namespace}' denied (status={status})",
            cause=exc,
            context={"http_status": status, "source_kind": kind.value, "namespace": namespace},
        )
    return wrap_exception(
        exc, context={"source_kind": kind.value, "source_name": name, "namespace": namespace}
    )


def _decode_base64_values(values: Mapping[str, str] | None) -> dict[str, bytes]:
    return {key: base64.b64decode(value) for key, value in (values or {}).items()}


def to_raw_resource(kind: ResourceKind, obj: Any) -> RawResource:
    """Convert a V1ConfigMap / V1Secret into a RawResource."""
    metadata = obj.metadata
    if kind is ResourceKind.SECRET:
        data: dict[str, str | bytes] = dict(_decode_base64_values(obj.data))
    else:
        data = dict(obj.data or {})
        data.update(_decode_base64_values(getattr(obj, "binary_data", None)))
    return RawResource(
        kind=kind,
        name=metadata.name,
        namespace=metadata.namespace,
        data=data,
    )


def _release_response(response: Any) -> None:
    """Close a streaming watch response, interrupting a blocked read."""
    try:
        # urllib3 >= 2.3 can unblock a read in progress on another thread
        shutdown = getattr(response, "shutdown", None)
        if shutdown is not None:
            shutdown()
        response.close()
        response.release_conn()
    except Exception as e:
        logger.debug("Failed to release watch response", extra={"error": str(e)})


class _WatchStream:
    """Async iterator over watch events of one kind across namespaces."""

    def __init__(
        self,
        core_api: CoreV1Api,
        kind: ResourceKind,
        namespaces: list[str],
        timeout_seconds: int,
    ):
        self.core_api = core_api
        self.kind = kind
        self.namespaces = namespaces
        self.timeout_seconds = timeout_seconds
        self._queue: asyncio.Queue | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._watches: list[watch.Watch] = []
        self._responses: list[Any] = []
        self._remaining = len(namespaces)
        self._closed = False
        self._lock = threading.Lock()

    def _list_fn(self):
        if self.kind is ResourceKind.SECRET:
            list_fn = self.core_api.list_namespaced_secret
        else:
            list_fn = self.core_api.list_namespaced_config_map

        # watch.Watch reads the return type from the docstring, hence wraps
        @wraps(list_fn)
        def tracked(*args, **kwargs):
            response = list_fn(*args, **kwargs)
            with self._lock:
                self._responses.append(response)
                closed = self._closed
            if closed:
                _release_response(response)
            return response

        return tracked

    def _start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        for namespace in self.namespaces:
            thread = threading.Thread(
                target=self._pump,
                args=(namespace,),
                name=f"kube-watch-{self.kind.resource_class}-{namespace}",
                daemon=True,
            )
            thread.start()

    def _put(self, item: object) -> None:
        with self._lock:
            if self._closed or self._loop is None or self._loop.is_closed():
                return
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def _pump(self, namespace: str) -> None:
        w = watch.Watch()
        with self._lock:
            self._watches.append(w)
        try:
            for event in w.stream(
                self._list_fn(), namespace=namespace, timeout_seconds=self.timeout_seconds
            ):
                if self._closed:
                    break
                change = _CHANGE_TYPES.get(str(event.get("type", "")))
                obj = event.get("object")
                if change is None or obj is None or obj.metadata is None:
                    continue
                self._put(
                    ResourceEvent(
                        kind=self.kind,
                        name=obj.metadata.name,
                        namespace=obj.metadata.namespace or namespace,
                        change_type=change,
                    )
                )
        except ApiException as e:
            if e.status == 410:
                logger.info("Watch resource version expired, ending stream")
            else:
                self._put(translate_api_exception(e, self.kind, "*", namespace))
                return
        except Exception as e:
            if self._closed:
                # Read interrupted by aclose()
                return
            # Thread boundary: hand the failure to the consuming task
            self._put(wrap_exception(e, context={"namespace": namespace}))
            return
        self._put(_END)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ResourceEvent:
        if self._queue is None:
            if not self.namespaces:
                raise StopAsyncIteration
            self._start()
        while True:
            if self._closed:
                raise StopAsyncIteration
            item = await self._queue.get()
            if item is _END:
                self._remaining -= 1
                if self._remaining <= 0:
                    raise StopAsyncIteration
                continue
            if isinstance(item, BaseException):
                raise item
            return item

    async def aclose(self) -> None:
        with self._lock:
            self._closed = True
            watches = list(self._watches)
            responses = list(self._responses)
        for w in watches:
            w.stop()
        # Watch.stop() is only checked between lines; release the connection now
        for response in responses:
            _release_response(response)
        if self._queue is not None:
            # Wake a consumer blocked on the queue
            self._queue.put_nowait(_END)


class KubernetesClusterClient:
    """ClusterClient over CoreV1Api."""

    def __init__(
        self,
        core_api: CoreV1Api | None = None,
        watch_timeout_seconds: int = DEFAULT_WATCH_TIMEOUT_SECONDS,
    ):
        self.core_api = core_api or CoreV1Api()
        self.watch_timeout_seconds = watch_timeout_seconds

    @classmethod
    def from_environment(cls) -> "KubernetesClusterClient":
        configure_client()
        return cls()

    def _read(self, kind: ResourceKind, name: str, namespace: str) -> Any:
        if kind is ResourceKind.SECRET:
            return self.core_api.read_namespaced_secret(name=name, namespace=namespace)
        return self.core_api.read_namespaced_config_map(name=name, namespace=namespace)

    def _list(self, kind: ResourceKind, namespace: str, selector: str) -> Any:
        if kind is ResourceKind.SECRET:
            return self.core_api.list_namespaced_secret(
                namespace=namespace, label_selector=selector
            )
        return self.core_api.list_namespaced_config_map(
            namespace=namespace, label_selector=selector
        )

    @with_retry_async(config=FETCH_RETRY)
    async def get(self, kind: ResourceKind, name: str, namespace: str) -> RawResource:
        try:
            obj = await asyncio.to_thread(self._read, kind, name, namespace)
        except ApiException as e:
            raise translate_api_exception(e, kind, name, namespace) from e
        return to_raw_resource(kind, obj)

    @with_retry_async(config=FETCH_RETRY)
    async def list(
        self,
        kind: ResourceKind,
        namespace: str,
        labels: Mapping[str, str],
    ) -> list[RawResource]:
        selector = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        try:
            result = await asyncio.to_thread(self._list, kind, namespace, selector)
        except ApiException as e:
            raise translate_api_exception(e, kind, selector, namespace) from e
        return [to_raw_resource(kind, item) for item in result.items or []]

    def watch(self, kind: ResourceKind, namespaces: Iterable[str]) -> _WatchStream:
        return _WatchStream(self.core_api, kind, list(namespaces), self.watch_timeout_seconds)


__all__ = [
    "KubernetesClusterClient",
    "configure_client",
    "translate_api_exception",
    "to_raw_resource",
]
