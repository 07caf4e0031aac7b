"""
Source merger and the effective snapshot.

The merger overlays NormalizedEntries in source order, keeping entries whose
profile constraint is empty or intersects the active profiles. Later writes
win; a key keeps the position of its first insertion.
"""

import json
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from config_reload.normalizer import NormalizedEntries


@dataclass(frozen=True)
class SnapshotDiff:
    """Key-level difference between two snapshots."""

    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    changed: tuple[str, ...] = ()

    @property
    def changed_keys(self) -> tuple[str, ...]:
        """Every key whose presence or value differs, sorted."""
        return tuple(sorted(set(self.added) | set(self.removed) | set(self.changed)))

    def __bool__(self) -> bool:
        return bool(self.added or self.removed or self.changed)

    def summary(self) -> dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "changed": len(self.changed),
        }


class EffectiveSnapshot(Mapping[str, str]):
    """Immutable ordered mapping of property key to value.

    Equality is plain mapping equality; insertion order is kept for
    iteration but does not affect ``==``.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, str] | Iterable[tuple[str, str]] = ()):
        self._data = MappingProxyType(dict(data))

    def __getitem__(self, key: str) -> str:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, EffectiveSnapshot):
            return dict(self._data) == dict(other._data)
        if isinstance(other, Mapping):
            return dict(self._data) == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._data.items()))

    def __repr__(self) -> str:
        return f"EffectiveSnapshot({dict(self._data)!r})"

    def diff(self, other: "EffectiveSnapshot | None") -> SnapshotDiff:
        """Diff ``self`` (the candidate) against ``other`` (the previous)."""
        previous = dict(other) if other is not None else {}
        return SnapshotDiff(
            added=tuple(k for k in self._data if k not in previous),
            removed=tuple(k for k in previous if k not in self._data),
            changed=tuple(
                k for k, v in self._data.items() if k in previous and previous[k] != v
            ),
        )

    def with_prefix(self, prefix: str) -> dict[str, str]:
        """Entries at or below ``prefix`` (dotted or indexed)."""
        return {k: v for k, v in self._data.items() if key_matches_prefix(k, prefix)}

    def to_json(self) -> bytes:
        """Canonical JSON encoding (sorted keys, compact)."""
        return json.dumps(
            dict(self._data), sort_keys=True, separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")


def key_matches_prefix(key: str, prefix: str) -> bool:
    """Whether ``key`` is ``prefix`` itself or a child of it."""
    if not prefix:
        return True
    return key == prefix or key.startswith(prefix + ".") or key.startswith(prefix + "[")


@dataclass
class _Accumulator:
    values: dict[str, str] = field(default_factory=dict)

    def overlay(self, results: Iterable[NormalizedEntries], profiles: frozenset[str]) -> None:
        for result in results:
            for entry in result:
                if entry.applies_to(profiles):
                    self.values[entry.key] = entry.value


def merge(
    results: Iterable[NormalizedEntries],
    active_profiles: Iterable[str] = (),
    mounted: Iterable[NormalizedEntries] = (),
    mounted_first: bool = False,
) -> EffectiveSnapshot:
    """Merge API-resolved and mounted sources into one snapshot.

    Mounted sources are applied after API sources, so they take precedence,
    unless ``mounted_first`` is set.
    """
    profiles = frozenset(active_profiles)
    ordered = [list(mounted), list(results)] if mounted_first else [list(results), list(mounted)]
    acc = _Accumulator()
    for group in ordered:
        acc.overlay(group, profiles)
    return EffectiveSnapshot(acc.values)


__all__ = [
    "EffectiveSnapshot",
    "SnapshotDiff",
    "key_matches_prefix",
    "merge",
]
