"""
Hot-reloadable configuration from ConfigMaps and Secrets.

Locates the cluster resources that make up an application's configuration,
merges them (profile-aware, later sources win) into one immutable snapshot,
watches them for changes and applies changes through a reload strategy.

Modules:
    sources     - Source locator (SourceList resolution)
    normalizer  - Resource / mounted file -> ordered property entries
    properties  - Flat key=value format parser
    merger      - EffectiveSnapshot and the source merger
    snapshot    - ReloadState and the atomic SnapshotStore
    watcher     - Event/polling change watcher per resource class
    dispatcher  - Refresh / restart_context / shutdown strategies
    engine      - Wires everything for the consuming application
    config      - Startup settings from YAML
    kube_client - ClusterClient over the kubernetes client
"""

from config_reload.engine import ConfigReloadEngine
from config_reload.merger import EffectiveSnapshot, SnapshotDiff, merge
from config_reload.normalizer import (
    NormalizedEntries,
    PropertyEntry,
    normalize_file,
    normalize_resource,
)
from config_reload.snapshot import ReloadMode, ReloadState, ReloadStrategy, SnapshotStore
from config_reload.sources import ConfigurationSource, SourceSpec, resolve
from config_reload.types import ChangeType, RawResource, ResourceEvent, ResourceKind

__version__ = "0.1.0"

__all__ = [
    "ConfigReloadEngine",
    "EffectiveSnapshot",
    "SnapshotDiff",
    "merge",
    "NormalizedEntries",
    "PropertyEntry",
    "normalize_file",
    "normalize_resource",
    "ReloadMode",
    "ReloadState",
    "ReloadStrategy",
    "SnapshotStore",
    "ConfigurationSource",
    "SourceSpec",
    "resolve",
    "ChangeType",
    "RawResource",
    "ResourceEvent",
    "ResourceKind",
]
