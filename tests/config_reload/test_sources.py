"""Tests for the source locator."""

import pytest

from core.errors import ConfigurationError
from config_reload.sources import (
    ConfigurationSource,
    SourceSpec,
    resolve,
    watched_namespaces,
)
from config_reload.types import ResourceKind


def _names(sources):
    return [s.name for s in sources]


class TestResolve:
    def test_default_source_only(self):
        sources = resolve("demo", "apps")

        assert len(sources) == 1
        assert sources[0] == ConfigurationSource(ResourceKind.CONFIG_MAP, "demo", "apps")

    def test_profile_variants_follow_base_sources(self):
        sources = resolve("demo", "apps", active_profiles=["dev", "eu"])

        assert _names(sources) == ["demo", "demo-dev", "demo-eu"]

    def test_explicit_sources_between_default_and_variants(self):
        sources = resolve(
            "demo",
            "apps",
            explicit_sources=[SourceSpec(name="shared", namespace="platform")],
            active_profiles=["dev"],
        )

        assert [(s.name, s.namespace) for s in sources] == [
            ("demo", "apps"),
            ("shared", "platform"),
            ("demo-dev", "apps"),
            ("shared-dev", "platform"),
        ]

    def test_explicit_source_inherits_defaults(self):
        sources = resolve("demo", "apps", explicit_sources=[SourceSpec(namespace="other")])

        assert sources[-1].name == "demo"
        assert sources[-1].namespace == "other"

    def test_profile_specific_can_be_disabled(self):
        sources = resolve(
            "demo",
            "apps",
            explicit_sources=[SourceSpec(name="shared", include_profile_specific=False)],
            active_profiles=["dev"],
        )
        assert _names(sources) == ["demo", "shared", "demo-dev"]

        sources = resolve("demo", "apps", active_profiles=["dev"], include_profile_specific=False)
        assert _names(sources) == ["demo"]

    def test_duplicates_keep_last_occurrence(self):
        sources = resolve(
            "demo",
            "apps",
            explicit_sources=[
                SourceSpec(name="shared"),
                SourceSpec(name="other"),
                SourceSpec(name="shared"),
            ],
        )

        assert _names(sources) == ["demo", "other", "shared"]

    def test_label_selector_source(self):
        sources = resolve(
            "demo",
            "apps",
            explicit_sources=[SourceSpec(labels={"tier": "web", "app": "demo"})],
            active_profiles=["dev"],
            kind=ResourceKind.SECRET,
        )

        selector = sources[1]
        assert selector.is_selector
        assert selector.label_selector == "app=demo,tier=web"
        assert selector.identity == "Secret/apps?app=demo,tier=web"
        # Selectors get no profile variants
        assert _names(sources) == ["demo", "demo", "demo-dev"]

    def test_default_namespace(self):
        sources = resolve("demo", None)
        assert sources[0].namespace == "default"

    def test_empty_profiles_ignored(self):
        assert _names(resolve("demo", "apps", active_profiles=["", "dev"])) == [
            "demo",
            "demo-dev",
        ]

    def test_empty_app_name_without_sources_raises(self):
        with pytest.raises(ConfigurationError):
            resolve("", "apps")

    def test_explicit_name_without_app_name(self):
        sources = resolve(None, "apps", explicit_sources=[SourceSpec(name="shared")])
        assert _names(sources) == ["shared"]

    def test_explicit_source_needs_a_name(self):
        with pytest.raises(ConfigurationError):
            resolve("", "apps", explicit_sources=[SourceSpec(namespace="apps")])

    def test_deterministic(self):
        args = ("demo", "apps", [SourceSpec(name="shared")], ["dev", "prod"])
        assert resolve(*args) == resolve(*args)


class TestConfigurationSource:
    def test_named_source_matches_exact_name(self):
        source = ConfigurationSource(ResourceKind.CONFIG_MAP, "demo", "apps")

        assert source.matches("demo", "apps")
        assert not source.matches("demo-dev", "apps")
        assert not source.matches("demo", "other")

    def test_selector_matches_any_name_in_namespace(self):
        source = ConfigurationSource(
            ResourceKind.CONFIG_MAP, "demo", "apps", labels=(("app", "demo"),)
        )

        assert source.matches("anything", "apps")
        assert not source.matches("anything", "other")

    def test_identity(self):
        source = ConfigurationSource(ResourceKind.SECRET, "creds", "apps")
        assert source.identity == "Secret/apps/creds"


class TestWatchedNamespaces:
    def test_first_seen_order_without_duplicates(self):
        sources = resolve(
            "demo",
            "apps",
            explicit_sources=[SourceSpec(name="a", namespace="platform"), SourceSpec(name="b")],
        )

        assert watched_namespaces(sources) == ["apps", "platform"]
