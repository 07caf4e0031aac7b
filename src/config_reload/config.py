"""Reload controller settings from YAML file.

Loads from config.yaml with all settings in one place:
- Application identity (name, namespace, active profiles)
- ConfigMap and Secret source declarations and mounted paths
- Reload strategy, watch mode, polling period and debounce window
- Logging and metrics settings

Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
A handful of environment variables also override the file directly:
APP_NAME, KUBERNETES_NAMESPACE, ACTIVE_PROFILES, RELOAD_STRATEGY,
RELOAD_MODE, RELOAD_PERIOD_SECONDS.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from core.errors import ConfigurationError
from core.resilience import RetryConfig
from config_reload.normalizer import DEFAULT_PROFILE_MARKERS
from config_reload.snapshot import ReloadMode, ReloadStrategy
from config_reload.sources import DEFAULT_NAMESPACE, SourceList, SourceSpec, resolve
from config_reload.types import ResourceKind

logger = logging.getLogger(__name__)

# Service account mount written by the kubelet into every pod
SERVICE_ACCOUNT_NAMESPACE_FILE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_list(value: Any) -> List[str]:
    """Accept a YAML list or a comma separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


def current_namespace() -> str:
    """Namespace this process runs in.

    POD_NAMESPACE (downward API), then the service account mount, then
    ``default``.
    """
    namespace = os.getenv("POD_NAMESPACE", "").strip()
    if namespace:
        return namespace
    try:
        namespace = SERVICE_ACCOUNT_NAMESPACE_FILE.read_text().strip()
    except OSError:
        namespace = ""
    return namespace or DEFAULT_NAMESPACE


# Default config file: config.yaml at the project root
DEFAULT_CONFIG_FILE = Path(__file__).parent.parent.parent / "config.yaml"


@dataclass
class SourceSettings:
    """One explicit ConfigMap/Secret source."""

    name: Optional[str] = None
    namespace: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    include_profile_specific: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceSettings":
        return cls(
            name=data.get("name") or None,
            namespace=data.get("namespace") or None,
            labels={str(k): str(v) for k, v in (data.get("labels") or {}).items()},
            include_profile_specific=_as_bool(data.get("include_profile_specific", True)),
        )

    def to_spec(self) -> SourceSpec:
        return SourceSpec(
            name=self.name,
            namespace=self.namespace,
            labels=dict(self.labels),
            include_profile_specific=self.include_profile_specific,
        )


@dataclass
class ResourceSettings:
    """Settings for one resource class (ConfigMaps or Secrets)."""

    enabled: bool = True
    name: Optional[str] = None
    namespace: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    include_profile_specific: bool = True
    sources: List[SourceSettings] = field(default_factory=list)
    paths: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], enabled_default: bool) -> "ResourceSettings":
        return cls(
            enabled=_as_bool(data.get("enabled", enabled_default)),
            name=data.get("name") or None,
            namespace=data.get("namespace") or None,
            labels={str(k): str(v) for k, v in (data.get("labels") or {}).items()},
            include_profile_specific=_as_bool(data.get("include_profile_specific", True)),
            sources=[SourceSettings.from_dict(s or {}) for s in data.get("sources") or []],
            paths=_as_list(data.get("paths")),
        )

    def explicit_specs(self) -> List[SourceSpec]:
        specs = [source.to_spec() for source in self.sources]
        if self.labels:
            specs.append(SourceSpec(labels=dict(self.labels)))
        return specs


@dataclass
class ReloadSettings:
    """Change detection and dispatch settings."""

    enabled: bool = False
    monitor_config_maps: bool = True
    monitor_secrets: bool = False
    strategy: ReloadStrategy = ReloadStrategy.REFRESH
    mode: ReloadMode = ReloadMode.EVENT
    period_seconds: float = 15.0
    debounce_seconds: float = 1.0
    backoff: RetryConfig = field(
        default_factory=lambda: RetryConfig(max_attempts=1, base_delay=1.0, max_delay=60.0)
    )

    def __post_init__(self):
        """Coerce YAML/env strings; invalid values are left for validate()."""
        if not isinstance(self.strategy, ReloadStrategy):
            try:
                self.strategy = ReloadStrategy(str(self.strategy).strip().lower())
            except ValueError:
                pass
        if not isinstance(self.mode, ReloadMode):
            try:
                self.mode = ReloadMode(str(self.mode).strip().lower())
            except ValueError:
                pass
        self.period_seconds = float(self.period_seconds)
        self.debounce_seconds = float(self.debounce_seconds)

    def monitors(self, kind: ResourceKind) -> bool:
        if kind is ResourceKind.CONFIG_MAP:
            return self.monitor_config_maps
        return self.monitor_secrets


@dataclass
class LoggingSettings:
    json: bool = True
    log_dir: Optional[str] = "logs"
    log_to_stdout: bool = True
    level: str = "INFO"


@dataclass
class MetricsSettings:
    enabled: bool = False
    port: int = 8000


@dataclass
class ConfigReloadSettings:
    """Startup configuration of the reload controller.

    Configuration structure:
        config_reload:
          app_name, namespace, profiles, fail_fast, profile_markers,
          mounted_paths_first
          config_maps: {enabled, name, namespace, include_profile_specific,
                        sources, paths}
          secrets:     {enabled, name, namespace, labels, sources, paths}
          reload:      {enabled, monitor_config_maps, monitor_secrets,
                        strategy, mode, period_seconds, debounce_seconds,
                        backoff}
        logging: {json, log_dir, log_to_stdout, level}
        metrics: {enabled, port}
    """

    app_name: str = ""
    namespace: str = ""
    profiles: List[str] = field(default_factory=list)
    fail_fast: bool = False
    profile_markers: List[str] = field(default_factory=lambda: list(DEFAULT_PROFILE_MARKERS))
    mounted_paths_first: bool = False
    config_maps: ResourceSettings = field(default_factory=ResourceSettings)
    secrets: ResourceSettings = field(default_factory=lambda: ResourceSettings(enabled=False))
    reload: ReloadSettings = field(default_factory=ReloadSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    metrics: MetricsSettings = field(default_factory=MetricsSettings)

    def resource(self, kind: ResourceKind) -> ResourceSettings:
        return self.config_maps if kind is ResourceKind.CONFIG_MAP else self.secrets

    def enabled_kinds(self) -> List[ResourceKind]:
        return [kind for kind in ResourceKind if self.resource(kind).enabled]

    def sources_for(self, kind: ResourceKind) -> SourceList:
        """Resolve the SourceList for one resource class."""
        resource = self.resource(kind)
        return resolve(
            app_name=resource.name or self.app_name,
            default_namespace=resource.namespace or self.namespace,
            explicit_sources=resource.explicit_specs(),
            active_profiles=self.profiles,
            kind=kind,
            include_profile_specific=resource.include_profile_specific,
        )

    def mounted_paths(self) -> List[str]:
        return [path for kind in self.enabled_kinds() for path in self.resource(kind).paths]

    def validate(self) -> None:
        """Validate settings for correctness and constraints.

        Raises:
            ConfigurationError: on the first invalid setting.
        """
        reload = self.reload
        if not isinstance(reload.strategy, ReloadStrategy):
            raise ConfigurationError(
                f"reload.strategy must be one of {[s.value for s in ReloadStrategy]}, "
                f"got '{reload.strategy}'"
            )
        if not isinstance(reload.mode, ReloadMode):
            raise ConfigurationError(
                f"reload.mode must be one of {[m.value for m in ReloadMode]}, "
                f"got '{reload.mode}'"
            )
        if reload.period_seconds <= 0:
            raise ConfigurationError(
                f"reload.period_seconds must be > 0, got {reload.period_seconds}"
            )
        if reload.debounce_seconds < 0:
            raise ConfigurationError(
                f"reload.debounce_seconds must be >= 0, got {reload.debounce_seconds}"
            )
        if not self.profile_markers:
            raise ConfigurationError("profile_markers must name at least one key")

        for kind in self.enabled_kinds():
            # Raises ConfigurationError when a source has no usable name
            self.sources_for(kind)


def _apply_env_overrides(section: Dict[str, Any]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if os.getenv("APP_NAME"):
        overrides["app_name"] = os.environ["APP_NAME"]
    if os.getenv("KUBERNETES_NAMESPACE"):
        overrides["namespace"] = os.environ["KUBERNETES_NAMESPACE"]
    if os.getenv("ACTIVE_PROFILES") is not None:
        overrides["profiles"] = _as_list(os.environ["ACTIVE_PROFILES"])

    reload_overrides: Dict[str, Any] = {}
    if os.getenv("RELOAD_STRATEGY"):
        reload_overrides["strategy"] = os.environ["RELOAD_STRATEGY"]
    if os.getenv("RELOAD_MODE"):
        reload_overrides["mode"] = os.environ["RELOAD_MODE"]
    if os.getenv("RELOAD_PERIOD_SECONDS"):
        reload_overrides["period_seconds"] = os.environ["RELOAD_PERIOD_SECONDS"]
    if reload_overrides:
        overrides["reload"] = reload_overrides

    if overrides:
        logger.debug(f"Applying environment overrides: {list(overrides.keys())}")
    return _deep_merge(section, overrides)


def _build_settings(section: Dict[str, Any], yaml_data: Dict[str, Any]) -> ConfigReloadSettings:
    reload_data = section.get("reload") or {}
    logging_data = yaml_data.get("logging") or {}
    metrics_data = yaml_data.get("metrics") or {}

    try:
        settings = ConfigReloadSettings(
            app_name=str(section.get("app_name") or ""),
            namespace=str(section.get("namespace") or ""),
            profiles=_as_list(section.get("profiles")),
            fail_fast=_as_bool(section.get("fail_fast", False)),
            profile_markers=_as_list(section.get("profile_markers"))
            or list(DEFAULT_PROFILE_MARKERS),
            mounted_paths_first=_as_bool(section.get("mounted_paths_first", False)),
            config_maps=ResourceSettings.from_dict(section.get("config_maps") or {}, True),
            secrets=ResourceSettings.from_dict(section.get("secrets") or {}, False),
            reload=ReloadSettings(
                enabled=_as_bool(reload_data.get("enabled", False)),
                monitor_config_maps=_as_bool(reload_data.get("monitor_config_maps", True)),
                monitor_secrets=_as_bool(reload_data.get("monitor_secrets", False)),
                strategy=reload_data.get("strategy", ReloadStrategy.REFRESH),
                mode=reload_data.get("mode", ReloadMode.EVENT),
                period_seconds=reload_data.get("period_seconds", 15.0),
                debounce_seconds=reload_data.get("debounce_seconds", 1.0),
                backoff=RetryConfig(
                    **{"max_attempts": 1, "base_delay": 1.0, "max_delay": 60.0,
                       **(reload_data.get("backoff") or {})}
                ),
            ),
            logging=LoggingSettings(
                json=_as_bool(logging_data.get("json", True)),
                log_dir=logging_data.get("log_dir", "logs") or None,
                log_to_stdout=_as_bool(logging_data.get("log_to_stdout", True)),
                level=str(logging_data.get("level", "INFO")).upper(),
            ),
            metrics=MetricsSettings(
                enabled=_as_bool(metrics_data.get("enabled", False)),
                port=int(metrics_data.get("port", 8000)),
            ),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid config_reload settings: {e}", cause=e) from e

    if not settings.namespace:
        settings.namespace = current_namespace()
    return settings


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ConfigReloadSettings:
    """Load reload controller settings from config.yaml.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = load_yaml(config_path)
    yaml_data = _expand_env_vars(yaml_data)

    if "config_reload" not in yaml_data:
        raise ConfigurationError(
            "Invalid config file: missing 'config_reload:' section\n"
            "See config.yaml for correct structure"
        )

    section = yaml_data["config_reload"] or {}
    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        section = _deep_merge(section, overrides)
    section = _apply_env_overrides(section)

    settings = _build_settings(section, yaml_data)

    logger.debug("Configuration loaded successfully:")
    logger.debug(f"  - Application: {settings.app_name} in {settings.namespace}")
    logger.debug(f"  - Profiles: {settings.profiles}")
    logger.debug(f"  - Reload: {settings.reload.enabled} ({settings.reload.mode})")

    logger.debug("Validating configuration...")
    settings.validate()
    logger.debug("Configuration validation passed")

    return settings


_settings: Optional[ConfigReloadSettings] = None


def get_config() -> ConfigReloadSettings:
    """Get or load the singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = load_config()
    return _settings


def set_config(config: ConfigReloadSettings) -> None:
    """Set the singleton settings instance (useful for testing)."""
    global _settings
    _settings = config


def reset_config() -> None:
    """Reset the singleton settings instance (forces reload on next get_config() call)."""
    global _settings
    _settings = None


def _settings_to_dict(settings: ConfigReloadSettings) -> Dict[str, Any]:
    def convert(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [convert(v) for v in value]
        if isinstance(value, set):
            return sorted(str(v) for v in value)
        if hasattr(value, "value"):
            return value.value
        return value

    return convert(asdict(settings))


def _cli_main() -> int:
    """CLI entry point for settings validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Config Reload Settings Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate settings
  python -m config_reload.config --validate

  # Show effective settings and resolved sources
  python -m config_reload.config --show-merged

  # Use custom config file
  python -m config_reload.config --config /path/to/config.yaml --validate

  # JSON output for automation
  python -m config_reload.config --validate --json
        """,
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate settings structure and source resolution",
    )
    parser.add_argument(
        "--show-merged",
        action="store_true",
        help="Display effective settings and resolved sources",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.yaml file (default: ./config.yaml at project root)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format instead of human-readable",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(levelname)s: %(message)s",
    )

    if not args.validate and not args.show_merged:
        parser.print_help()
        return 0

    try:
        settings = load_config(config_path=args.config)
        output: Dict[str, Any] = {}

        if args.validate:
            # Validation happens during load_config(), if we got here it passed
            if args.json:
                output["validation"] = {"passed": True, "errors": []}
            else:
                print("✓ Configuration validation passed")
                for kind in settings.enabled_kinds():
                    print(f"  - {kind.value} sources: {len(settings.sources_for(kind))}")

        if args.show_merged:
            merged = _settings_to_dict(settings)
            merged["resolved_sources"] = {
                kind.resource_class: [s.identity for s in settings.sources_for(kind)]
                for kind in settings.enabled_kinds()
            }
            if args.json:
                output["merged_config"] = merged
            else:
                print("\nConfiguration:")
                print("=" * 80)
                print(yaml.dump(merged, default_flow_style=False, sort_keys=False))
                print("=" * 80)

        if args.json:
            print(json.dumps(output, indent=2))

        return 0

    except FileNotFoundError as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    except ConfigurationError as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Validation error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(_cli_main())
