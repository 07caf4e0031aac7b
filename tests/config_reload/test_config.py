import os
from pathlib import Path
from unittest.mock import patch

import pytest

from core.errors import ConfigurationError
from config_reload.config import (
    ConfigReloadSettings,
    ReloadSettings,
    ResourceSettings,
    _deep_merge,
    _expand_env_vars,
    _settings_to_dict,
    current_namespace,
    get_config,
    load_config,
    load_yaml,
    reset_config,
    set_config,
)
from config_reload.snapshot import ReloadMode, ReloadStrategy
from config_reload.types import ResourceKind

FULL_CONFIG = """\
config_reload:
  app_name: orders
  namespace: shop
  profiles: [dev, eu]
  fail_fast: true
  config_maps:
    sources:
      - name: shared
        namespace: platform
      - labels:
          team: payments
    paths:
      - /etc/config/application.yaml
  secrets:
    enabled: true
    name: orders-credentials
  reload:
    enabled: true
    monitor_secrets: true
    strategy: restart_context
    mode: polling
    period_seconds: 30
    debounce_seconds: 0.5
    backoff:
      base_delay: 2
      max_delay: 120

logging:
  json: false
  level: debug

metrics:
  enabled: true
  port: 9100
"""


def _write(tmp_path, text):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(text)
    return config_file


# =========================================================================
# Helpers
# =========================================================================


class TestLoadYaml:
    def test_returns_empty_dict_for_nonexistent_file(self):
        assert load_yaml(Path("/nonexistent/path/config.yaml")) == {}

    def test_returns_empty_dict_for_empty_file(self, tmp_path):
        assert load_yaml(_write(tmp_path, "")) == {}


class TestExpandEnvVars:
    def test_expands_nested_values(self):
        with patch.dict(os.environ, {"APP": "orders"}):
            result = _expand_env_vars({"a": ["${APP}", {"b": "x-${APP}"}], "n": 1})
        assert result == {"a": ["orders", {"b": "x-orders"}], "n": 1}

    def test_default_value(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${MISSING:-fallback}") == "fallback"

    def test_unset_without_default_kept(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${MISSING}") == "${MISSING}"


class TestDeepMerge:
    def test_nested_overlay(self):
        base = {"reload": {"mode": "event", "period_seconds": 15}, "app_name": "a"}
        result = _deep_merge(base, {"reload": {"mode": "polling"}})

        assert result == {"reload": {"mode": "polling", "period_seconds": 15}, "app_name": "a"}
        assert base["reload"]["mode"] == "event"


class TestCurrentNamespace:
    def test_pod_namespace_env(self):
        with patch.dict(os.environ, {"POD_NAMESPACE": "shop"}):
            assert current_namespace() == "shop"

    def test_service_account_file(self, tmp_path):
        ns_file = tmp_path / "namespace"
        ns_file.write_text("payments\n")
        with patch.dict(os.environ, {}, clear=True), patch(
            "config_reload.config.SERVICE_ACCOUNT_NAMESPACE_FILE", ns_file
        ):
            assert current_namespace() == "payments"

    def test_default(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True), patch(
            "config_reload.config.SERVICE_ACCOUNT_NAMESPACE_FILE", tmp_path / "missing"
        ):
            assert current_namespace() == "default"


# =========================================================================
# load_config
# =========================================================================


class TestLoadConfig:
    def test_full_config(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_config(_write(tmp_path, FULL_CONFIG))

        assert settings.app_name == "orders"
        assert settings.namespace == "shop"
        assert settings.profiles == ["dev", "eu"]
        assert settings.fail_fast is True
        assert settings.config_maps.paths == ["/etc/config/application.yaml"]
        assert settings.secrets.enabled is True
        assert settings.secrets.name == "orders-credentials"

        reload = settings.reload
        assert reload.enabled is True
        assert reload.strategy is ReloadStrategy.RESTART_CONTEXT
        assert reload.mode is ReloadMode.POLLING
        assert reload.period_seconds == 30.0
        assert reload.debounce_seconds == 0.5
        assert reload.backoff.base_delay == 2.0
        assert reload.backoff.max_delay == 120.0
        assert reload.monitors(ResourceKind.SECRET)

        assert settings.logging.json is False
        assert settings.logging.level == "DEBUG"
        assert settings.metrics.enabled is True
        assert settings.metrics.port == 9100

    def test_resolved_sources(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_config(_write(tmp_path, FULL_CONFIG))

        identities = [s.identity for s in settings.sources_for(ResourceKind.CONFIG_MAP)]
        assert identities == [
            "ConfigMap/shop/orders",
            "ConfigMap/platform/shared",
            "ConfigMap/shop?team=payments",
            "ConfigMap/shop/orders-dev",
            "ConfigMap/shop/orders-eu",
            "ConfigMap/platform/shared-dev",
            "ConfigMap/platform/shared-eu",
        ]
        secrets = [s.identity for s in settings.sources_for(ResourceKind.SECRET)]
        assert secrets == [
            "Secret/shop/orders-credentials",
            "Secret/shop/orders-credentials-dev",
            "Secret/shop/orders-credentials-eu",
        ]

    def test_defaults(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_config(
                _write(tmp_path, "config_reload:\n  app_name: demo\n  namespace: apps\n")
            )

        assert settings.profiles == []
        assert settings.enabled_kinds() == [ResourceKind.CONFIG_MAP]
        assert settings.reload.enabled is False
        assert settings.reload.strategy is ReloadStrategy.REFRESH
        assert settings.reload.mode is ReloadMode.EVENT
        assert settings.reload.period_seconds == 15.0
        assert settings.profile_markers == [
            "spring.profiles",
            "spring.config.activate.on-profile",
        ]

    def test_env_overrides(self, tmp_path):
        env = {
            "APP_NAME": "billing",
            "KUBERNETES_NAMESPACE": "finance",
            "ACTIVE_PROFILES": "prod, eu",
            "RELOAD_STRATEGY": "SHUTDOWN",
            "RELOAD_MODE": "polling",
            "RELOAD_PERIOD_SECONDS": "5",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = load_config(_write(tmp_path, FULL_CONFIG))

        assert settings.app_name == "billing"
        assert settings.namespace == "finance"
        assert settings.profiles == ["prod", "eu"]
        assert settings.reload.strategy is ReloadStrategy.SHUTDOWN
        assert settings.reload.period_seconds == 5.0

    def test_env_var_expansion(self, tmp_path):
        text = "config_reload:\n  app_name: ${SERVICE_NAME}\n  namespace: ${NS:-apps}\n"
        with patch.dict(os.environ, {"SERVICE_NAME": "orders"}, clear=True):
            settings = load_config(_write(tmp_path, text))

        assert settings.app_name == "orders"
        assert settings.namespace == "apps"

    def test_overrides_argument(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_config(
                _write(tmp_path, FULL_CONFIG), overrides={"reload": {"mode": "event"}}
            )

        assert settings.reload.mode is ReloadMode.EVENT
        assert settings.reload.strategy is ReloadStrategy.RESTART_CONTEXT

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_missing_section(self, tmp_path):
        with pytest.raises(ConfigurationError, match="config_reload"):
            load_config(_write(tmp_path, "logging:\n  level: INFO\n"))

    @pytest.mark.parametrize(
        "reload_yaml, message",
        [
            ("strategy: reboot", "reload.strategy"),
            ("mode: push", "reload.mode"),
            ("period_seconds: 0", "period_seconds"),
            ("debounce_seconds: -1", "debounce_seconds"),
        ],
    )
    def test_invalid_reload_settings(self, tmp_path, reload_yaml, message):
        text = f"config_reload:\n  app_name: demo\n  namespace: apps\n  reload:\n    {reload_yaml}\n"
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError, match=message):
                load_config(_write(tmp_path, text))

    def test_non_numeric_period(self, tmp_path):
        text = "config_reload:\n  app_name: demo\n  reload:\n    period_seconds: soon\n"
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError):
                load_config(_write(tmp_path, text))

    def test_empty_app_name_rejected(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError, match="application name"):
                load_config(_write(tmp_path, "config_reload:\n  namespace: apps\n"))

    def test_namespace_from_environment(self, tmp_path):
        with patch.dict(os.environ, {"POD_NAMESPACE": "detected"}, clear=True):
            settings = load_config(_write(tmp_path, "config_reload:\n  app_name: demo\n"))

        assert settings.namespace == "detected"


# =========================================================================
# Settings objects
# =========================================================================


class TestSettings:
    def test_reload_settings_coerce_strings(self):
        reload = ReloadSettings(strategy="Refresh", mode="POLLING", period_seconds="7")

        assert reload.strategy is ReloadStrategy.REFRESH
        assert reload.mode is ReloadMode.POLLING
        assert reload.period_seconds == 7.0

    def test_resource_name_overrides_app_name(self):
        settings = ConfigReloadSettings(
            app_name="demo",
            namespace="apps",
            config_maps=ResourceSettings(name="demo-config", namespace="other"),
        )

        sources = settings.sources_for(ResourceKind.CONFIG_MAP)
        assert [s.identity for s in sources] == ["ConfigMap/other/demo-config"]

    def test_mounted_paths_only_for_enabled_classes(self):
        settings = ConfigReloadSettings(
            app_name="demo",
            config_maps=ResourceSettings(paths=["/a"]),
            secrets=ResourceSettings(enabled=False, paths=["/b"]),
        )
        assert settings.mounted_paths() == ["/a"]

    def test_settings_to_dict(self):
        settings = ConfigReloadSettings(app_name="demo", namespace="apps")
        data = _settings_to_dict(settings)

        assert data["app_name"] == "demo"
        assert data["reload"]["strategy"] == "refresh"
        assert data["reload"]["mode"] == "event"


class TestSingleton:
    def setup_method(self):
        reset_config()

    def teardown_method(self):
        reset_config()

    def test_set_and_get(self):
        settings = ConfigReloadSettings(app_name="demo", namespace="apps")
        set_config(settings)
        assert get_config() is settings

    def test_get_loads_default_file(self, tmp_path):
        config_file = _write(tmp_path, "config_reload:\n  app_name: demo\n  namespace: apps\n")
        with patch("config_reload.config.DEFAULT_CONFIG_FILE", config_file):
            with patch.dict(os.environ, {}, clear=True):
                assert get_config().app_name == "demo"
