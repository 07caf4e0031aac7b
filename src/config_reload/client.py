"""
Collaborator interfaces consumed by the reload engine.

The engine never talks to the cluster or the filesystem directly; it goes
through these protocols so that tests and alternative backends can plug in.

Contract of ClusterClient:
    get    raises NotFoundError when the resource is absent,
           AuthorizationError when access is denied,
           TransportError on transient failures.
    list   returns resources matching a label selector (may be empty).
    watch  async iterator of ResourceEvent; raising from the iterator means
           the subscription is lost. Ending normally means the server closed
           the stream and the caller may re-subscribe.
"""

import logging
from collections.abc import AsyncIterator, Iterable, Mapping
from pathlib import Path
from typing import Protocol

from config_reload.types import RawResource, ResourceEvent, ResourceKind

logger = logging.getLogger(__name__)


class ClusterClient(Protocol):
    async def get(self, kind: ResourceKind, name: str, namespace: str) -> RawResource:
        ...

    async def list(
        self,
        kind: ResourceKind,
        namespace: str,
        labels: Mapping[str, str],
    ) -> list[RawResource]:
        ...

    def watch(
        self,
        kind: ResourceKind,
        namespaces: Iterable[str],
    ) -> AsyncIterator[ResourceEvent]:
        ...


class FileReader(Protocol):
    def read_all(self, paths: Iterable[str]) -> dict[str, str]:
        ...


class LocalFileReader:
    """Reads mounted configuration files from the local filesystem.

    Only exact file paths are read; directories are not expanded. Paths that
    do not exist are skipped with a warning, matching how a missing resource
    contributes nothing.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def read_all(self, paths: Iterable[str]) -> dict[str, str]:
        contents: dict[str, str] = {}
        for raw_path in paths:
            path = Path(raw_path)
            if not path.exists():
                logger.warning(
                    "Mounted configuration path does not exist, skipping",
                    extra={"path": str(path)},
                )
                continue
            if not path.is_file():
                logger.warning(
                    "Mounted configuration path is not a file, skipping",
                    extra={"path": str(path)},
                )
                continue
            contents[str(raw_path)] = path.read_text(encoding=self.encoding)
        return contents


__all__ = [
    "ClusterClient",
    "FileReader",
    "LocalFileReader",
]
