"""Tests for the source merger and EffectiveSnapshot."""

import json

import pytest

from config_reload.merger import EffectiveSnapshot, SnapshotDiff, key_matches_prefix, merge
from config_reload.normalizer import NormalizedEntries, PropertyEntry


def _entries(source, *items):
    entries = []
    for item in items:
        key, value, *profiles = item
        entries.append(PropertyEntry(key, value, frozenset(profiles)))
    return NormalizedEntries(source, tuple(entries))


class TestMerge:
    def test_later_source_wins(self):
        default = _entries("ConfigMap/apps/demo", ("db.url", "jdbc:a"), ("db.pool", "4"))
        explicit = _entries("ConfigMap/apps/shared", ("db.url", "jdbc:b"))

        snapshot = merge([default, explicit])

        assert dict(snapshot) == {"db.url": "jdbc:b", "db.pool": "4"}

    def test_first_insertion_position_kept(self):
        snapshot = merge(
            [_entries("a", ("x", "1"), ("y", "1")), _entries("b", ("z", "2"), ("x", "2"))]
        )
        assert list(snapshot) == ["x", "y", "z"]

    def test_profile_filtering(self):
        source = _entries("a", ("mode", "base"), ("mode", "dev", "dev"), ("extra", "qa", "qa"))

        assert dict(merge([source])) == {"mode": "base"}
        assert dict(merge([source], ["dev"])) == {"mode": "dev"}
        assert dict(merge([source], ["qa"])) == {"mode": "base", "extra": "qa"}

    def test_mounted_paths_win_by_default(self):
        api = _entries("ConfigMap/apps/demo", ("a", "api"))
        mounted = _entries("file:/etc/config/app.yaml", ("a", "file"))

        assert merge([api], mounted=[mounted])["a"] == "file"
        assert merge([api], mounted=[mounted], mounted_first=True)["a"] == "api"

    def test_empty(self):
        snapshot = merge([])
        assert len(snapshot) == 0
        assert snapshot == EffectiveSnapshot()


class TestEffectiveSnapshot:
    def test_is_read_only(self):
        snapshot = EffectiveSnapshot({"a": "1"})
        with pytest.raises(TypeError):
            snapshot["a"] = "2"

    def test_source_mapping_not_shared(self):
        data = {"a": "1"}
        snapshot = EffectiveSnapshot(data)
        data["a"] = "2"
        assert snapshot["a"] == "1"

    def test_equality_ignores_order(self):
        first = EffectiveSnapshot([("a", "1"), ("b", "2")])
        second = EffectiveSnapshot([("b", "2"), ("a", "1")])

        assert first == second
        assert hash(first) == hash(second)
        assert first == {"a": "1", "b": "2"}
        assert first != EffectiveSnapshot({"a": "1"})

    def test_to_json_is_canonical(self):
        snapshot = EffectiveSnapshot([("b", "2"), ("a", "é")])

        assert snapshot.to_json() == '{"a":"é","b":"2"}'.encode("utf-8")
        assert json.loads(snapshot.to_json()) == {"a": "é", "b": "2"}

    def test_with_prefix(self):
        snapshot = EffectiveSnapshot(
            {"db.url": "u", "db.hosts[0]": "h", "dbx": "no", "db": "root", "other": "x"}
        )
        assert snapshot.with_prefix("db") == {"db.url": "u", "db.hosts[0]": "h", "db": "root"}


class TestDiff:
    def test_added_removed_changed(self):
        previous = EffectiveSnapshot({"keep": "1", "change": "a", "drop": "x"})
        candidate = EffectiveSnapshot({"keep": "1", "change": "b", "new": "y"})

        diff = candidate.diff(previous)

        assert diff == SnapshotDiff(added=("new",), removed=("drop",), changed=("change",))
        assert diff.changed_keys == ("change", "drop", "new")
        assert diff.summary() == {"added": 1, "removed": 1, "changed": 1}
        assert diff

    def test_no_difference(self):
        snapshot = EffectiveSnapshot({"a": "1"})
        assert not snapshot.diff(EffectiveSnapshot({"a": "1"}))

    def test_diff_against_nothing(self):
        assert EffectiveSnapshot({"a": "1"}).diff(None).added == ("a",)


class TestKeyMatchesPrefix:
    @pytest.mark.parametrize(
        "key, prefix, expected",
        [
            ("db", "db", True),
            ("db.url", "db", True),
            ("db[0]", "db", True),
            ("dbx", "db", False),
            ("other.db", "db", False),
            ("anything", "", True),
        ],
    )
    def test_matching(self, key, prefix, expected):
        assert key_matches_prefix(key, prefix) is expected
