"""
Shared types for the reload engine.

Resource kinds, change events and the raw payload of one fetched resource.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum


class ResourceKind(str, Enum):
    """Cluster resource kinds that can hold configuration."""

    CONFIG_MAP = "ConfigMap"
    SECRET = "Secret"

    @property
    def resource_class(self) -> str:
        """Name used for the watcher, metrics labels and log context."""
        return "config_maps" if self is ResourceKind.CONFIG_MAP else "secrets"


class ChangeType(str, Enum):
    """Change reported by the cluster watch stream."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class RawResource:
    """Payload of one fetched resource: key -> blob.

    Secret values are expected to be decoded already; bytes are accepted and
    decoded as UTF-8 during normalization.
    """

    kind: ResourceKind
    name: str
    namespace: str
    data: Mapping[str, str | bytes] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        return f"{self.kind.value}/{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ResourceEvent:
    """One change notification from the watch stream."""

    kind: ResourceKind
    name: str
    namespace: str
    change_type: ChangeType


__all__ = [
    "ResourceKind",
    "ChangeType",
    "RawResource",
    "ResourceEvent",
]
