"""
Source locator.

Turns a logical configuration identity (application name, namespace,
explicit extra sources, active profiles) into the ordered list of cluster
resources to fetch. Pure computation, no I/O.

Ordering of the returned SourceList:
    1. the default source (named after the application), if there is a name
    2. explicit sources, in declaration order
    3. ``<name>-<profile>`` variants, per base source, in profile order

Later entries win on key conflicts when merged.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from core.errors import ConfigurationError
from config_reload.types import ResourceKind

DEFAULT_NAMESPACE = "default"


@dataclass(frozen=True)
class ConfigurationSource:
    """Identity of one cluster resource to consult.

    A source with ``labels`` is resolved by label selector (list) instead of
    by name; its ``name`` is informational only.
    """

    kind: ResourceKind
    name: str
    namespace: str
    labels: tuple[tuple[str, str], ...] = ()
    include_profile_specific: bool = True

    @property
    def is_selector(self) -> bool:
        return bool(self.labels)

    @property
    def label_selector(self) -> str:
        return ",".join(f"{k}={v}" for k, v in self.labels)

    @property
    def identity(self) -> str:
        if self.is_selector:
            return f"{self.kind.value}/{self.namespace}?{self.label_selector}"
        return f"{self.kind.value}/{self.namespace}/{self.name}"

    def matches(self, name: str, namespace: str) -> bool:
        """Whether a change to ``namespace/name`` can affect this source."""
        if namespace != self.namespace:
            return False
        return self.is_selector or name == self.name


@dataclass(frozen=True)
class SourceSpec:
    """Explicit source as declared in settings; blanks inherit defaults."""

    name: str | None = None
    namespace: str | None = None
    labels: Mapping[str, str] = field(default_factory=dict)
    include_profile_specific: bool = True


SourceList = tuple[ConfigurationSource, ...]


def _dedupe_keep_last(sources: list[ConfigurationSource]) -> list[ConfigurationSource]:
    seen: set[tuple] = set()
    result: list[ConfigurationSource] = []
    for source in reversed(sources):
        key = (source.kind, source.name, source.namespace, source.labels)
        if key in seen:
            continue
        seen.add(key)
        result.append(source)
    result.reverse()
    return result


def resolve(
    app_name: str | None,
    default_namespace: str | None,
    explicit_sources: Iterable[SourceSpec] = (),
    active_profiles: Iterable[str] = (),
    kind: ResourceKind = ResourceKind.CONFIG_MAP,
    include_profile_specific: bool = True,
) -> SourceList:
    """Resolve the ordered SourceList for one resource kind.

    Raises:
        ConfigurationError: ``app_name`` is empty and no explicit source
            supplies a name (or a label selector).
    """
    namespace = default_namespace or DEFAULT_NAMESPACE
    explicit = list(explicit_sources)
    profiles = [p for p in active_profiles if p]

    base: list[ConfigurationSource] = []
    if app_name:
        base.append(
            ConfigurationSource(
                kind=kind,
                name=app_name,
                namespace=namespace,
                include_profile_specific=include_profile_specific,
            )
        )

    for spec in explicit:
        labels = tuple(sorted((spec.labels or {}).items()))
        name = spec.name or app_name or ""
        if not name and not labels:
            raise ConfigurationError(
                f"{kind.value} source has no name and no application name is configured",
                context={"source_kind": kind.value, "namespace": spec.namespace or namespace},
            )
        base.append(
            ConfigurationSource(
                kind=kind,
                name=name,
                namespace=spec.namespace or namespace,
                labels=labels,
                include_profile_specific=spec.include_profile_specific and not labels,
            )
        )

    if not base:
        raise ConfigurationError(
            f"Cannot locate {kind.value} sources: application name is empty "
            "and no explicit source supplies a name",
            context={"source_kind": kind.value},
        )

    variants = [
        ConfigurationSource(kind=kind, name=f"{source.name}-{profile}", namespace=source.namespace)
        for source in base
        if source.include_profile_specific and not source.is_selector
        for profile in profiles
    ]

    return tuple(_dedupe_keep_last(base + variants))


def watched_namespaces(sources: Iterable[ConfigurationSource]) -> list[str]:
    """Namespaces a watcher must subscribe to, in first-seen order."""
    namespaces: list[str] = []
    for source in sources:
        if source.namespace not in namespaces:
            namespaces.append(source.namespace)
    return namespaces


__all__ = [
    "DEFAULT_NAMESPACE",
    "ConfigurationSource",
    "SourceSpec",
    "SourceList",
    "resolve",
    "watched_namespaces",
]
