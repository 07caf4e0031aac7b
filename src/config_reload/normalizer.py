"""
Resource normalizer.

Converts one fetched resource (a mapping of key -> blob) or one mounted file
into an ordered list of property entries. Detection policy, in order:

1. A resource with exactly one key whose value is a YAML mapping or a flat
   properties document is an embedded document, whatever the key is called.
2. Otherwise keys named ``application.{yaml,yml,properties}`` are embedded
   documents, and ``application-<profile>.{yaml,yml,properties}`` are embedded
   documents that only apply under ``<profile>``.
3. Every other key is a literal property, value taken verbatim.

Embedded YAML is split on ``---`` lines. Each segment may carry a profile
marker (``spring.profiles`` / ``spring.config.activate.on-profile`` by
default); segments without one apply unconditionally.
"""

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any

import yaml

from core.errors import ParseError
from config_reload.properties import looks_like_properties, parse_properties
from config_reload.types import RawResource

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_MARKERS = ("spring.profiles", "spring.config.activate.on-profile")

YAML_SUFFIXES = (".yaml", ".yml")
PROPERTIES_SUFFIX = ".properties"

_DOCUMENT_KEY = re.compile(r"^application(?:-(?P<profile>[^.]+))?\.(?P<ext>yaml|yml|properties)$")
# Document separator, optionally followed by a comment or inline content
_SEPARATOR = re.compile(r"^---(?:[ \t]+(?P<rest>.*?))?[ \t]*$")


@dataclass(frozen=True)
class PropertyEntry:
    """One flat property. Empty ``profiles`` means always active."""

    key: str
    value: str
    profiles: frozenset[str] = frozenset()

    def applies_to(self, active_profiles: Iterable[str]) -> bool:
        return not self.profiles or not self.profiles.isdisjoint(active_profiles)


@dataclass(frozen=True)
class NormalizedEntries:
    """Entries produced from one resource or file, in production order."""

    source: str
    entries: tuple[PropertyEntry, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[PropertyEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


# =============================================================================
# Flattening
# =============================================================================


def _render_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _flatten(value: Any, prefix: str, out: list[tuple[str, str]]) -> None:
    if isinstance(value, Mapping):
        for k, v in value.items():
            key = str(k) if not prefix else f"{prefix}.{k}"
            _flatten(v, key, out)
    elif isinstance(value, list):
        for i, item in enumerate(value):
            _flatten(item, f"{prefix}[{i}]", out)
    else:
        out.append((prefix, _render_scalar(value)))


def flatten(document: Mapping[str, Any]) -> list[tuple[str, str]]:
    """Flatten nested mappings to dotted keys and sequences to ``key[i]``."""
    out: list[tuple[str, str]] = []
    _flatten(document, "", out)
    return out


# =============================================================================
# Document parsing
# =============================================================================


def _split_segments(text: str) -> list[str]:
    segments: list[list[str]] = [[]]
    for line in text.splitlines():
        match = _SEPARATOR.match(line)
        if match:
            rest = match.group("rest")
            segments.append([rest] if rest and not rest.startswith("#") else [])
        else:
            segments[-1].append(line)
    return ["\n".join(lines) for lines in segments]


def _load_segments(text: str) -> list[Any]:
    """Parse every ``---`` segment; raises yaml.YAMLError on bad syntax."""
    loaded = []
    for segment in _split_segments(text):
        if not segment.strip():
            continue
        data = yaml.safe_load(segment)
        if data is not None:
            loaded.append(data)
    return loaded


def _extract_profiles(
    pairs: list[tuple[str, str]],
    markers: Iterable[str],
) -> tuple[frozenset[str], list[tuple[str, str]]]:
    markers = tuple(markers)
    profiles: set[str] = set()
    kept: list[tuple[str, str]] = []
    for key, value in pairs:
        if any(key == m or key.startswith(m + "[") for m in markers):
            profiles.update(p.strip() for p in value.split(",") if p.strip())
        else:
            kept.append((key, value))
    return frozenset(profiles), kept


def _entries_from_segments(
    segments: list[Mapping[str, Any]],
    markers: Iterable[str],
    key_profile: str | None,
) -> list[PropertyEntry]:
    entries: list[PropertyEntry] = []
    for segment in segments:
        profiles, pairs = _extract_profiles(flatten(segment), markers)
        if key_profile:
            # A profile-specific key scopes every segment to that profile
            profiles = frozenset({key_profile})
        entries.extend(PropertyEntry(k, v, profiles) for k, v in pairs)
    return entries


def _parse_properties_document(
    text: str,
    markers: Iterable[str],
    key_profile: str | None,
) -> list[PropertyEntry]:
    profiles, pairs = _extract_profiles(parse_properties(text), markers)
    if key_profile:
        profiles = frozenset({key_profile})
    return [PropertyEntry(k, v, profiles) for k, v in pairs]


def _parse_yaml_document(
    source: str,
    key: str,
    text: str,
    markers: Iterable[str],
    key_profile: str | None,
) -> list[PropertyEntry]:
    try:
        segments = _load_segments(text)
    except yaml.YAMLError as e:
        raise ParseError(source, key, "invalid YAML", cause=e) from e
    for segment in segments:
        if not isinstance(segment, Mapping):
            raise ParseError(
                source, key, f"YAML document is a {type(segment).__name__}, expected a mapping"
            )
    return _entries_from_segments(segments, markers, key_profile)


def _parse_declared_document(
    source: str,
    key: str,
    text: str,
    markers: Iterable[str],
    key_profile: str | None = None,
) -> list[PropertyEntry]:
    if key.endswith(PROPERTIES_SUFFIX):
        return _parse_properties_document(text, markers, key_profile)
    return _parse_yaml_document(source, key, text, markers, key_profile)


def _sniff_single(
    source: str,
    key: str,
    text: str,
    markers: Iterable[str],
) -> list[PropertyEntry] | None:
    """Embedded-document detection for a lone key. None means literal."""
    if key.endswith(YAML_SUFFIXES) or key.endswith(PROPERTIES_SUFFIX):
        return _parse_declared_document(source, key, text, markers)

    try:
        segments = _load_segments(text)
    except yaml.YAMLError as e:
        if looks_like_properties(text):
            return _parse_properties_document(text, markers, None)
        if "\n" in text.strip():
            raise ParseError(source, key, "invalid YAML", cause=e) from e
        return None

    if segments and all(isinstance(s, Mapping) for s in segments):
        return _entries_from_segments(segments, markers, None)
    if looks_like_properties(text):
        return _parse_properties_document(text, markers, None)
    return None


def _normalize_single(
    source: str,
    key: str,
    text: str,
    markers: Iterable[str],
) -> list[PropertyEntry]:
    match = _DOCUMENT_KEY.match(key)
    if match:
        return _parse_declared_document(source, key, text, markers, match.group("profile"))
    parsed = _sniff_single(source, key, text, markers)
    if parsed is None:
        return [PropertyEntry(key, text)]
    return parsed


def _decode(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


# =============================================================================
# Public API
# =============================================================================


def normalize_resource(
    raw: RawResource,
    profile_markers: Iterable[str] = DEFAULT_PROFILE_MARKERS,
) -> NormalizedEntries:
    """Normalize one fetched resource.

    Raises:
        ParseError: a value declared or detected as a document is malformed.
    """
    markers = tuple(profile_markers)
    source = raw.identity
    data = {k: _decode(v) for k, v in raw.data.items()}

    if len(data) == 1:
        key, text = next(iter(data.items()))
        return NormalizedEntries(source, tuple(_normalize_single(source, key, text, markers)))

    entries: list[PropertyEntry] = []
    for key, text in data.items():
        match = _DOCUMENT_KEY.match(key)
        if match:
            entries.extend(
                _parse_declared_document(source, key, text, markers, match.group("profile"))
            )
        else:
            entries.append(PropertyEntry(key, text))

    logger.debug(
        "Normalized resource",
        extra={"source": source, "property_count": len(entries)},
    )
    return NormalizedEntries(source, tuple(entries))


def normalize_file(
    path: str,
    content: str | bytes,
    profile_markers: Iterable[str] = DEFAULT_PROFILE_MARKERS,
) -> NormalizedEntries:
    """Normalize a mounted file; the file name stands in for the key."""
    markers = tuple(profile_markers)
    source = f"file:{path}"
    key = PurePath(path).name
    text = _decode(content)
    return NormalizedEntries(source, tuple(_normalize_single(source, key, text, markers)))


__all__ = [
    "DEFAULT_PROFILE_MARKERS",
    "PropertyEntry",
    "NormalizedEntries",
    "flatten",
    "normalize_resource",
    "normalize_file",
]
