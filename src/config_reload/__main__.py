"""Configuration reload controller. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from core.errors import ConfigurationError, ReloadError
from core.logging import log_controller_startup, log_exception, setup_logging
from config_reload.config import DEFAULT_CONFIG_FILE, ConfigReloadSettings, load_config
from config_reload.engine import ConfigReloadEngine
from config_reload.kube_client import KubernetesClusterClient
from config_reload.merger import EffectiveSnapshot
from config_reload.metrics import start_metrics_server

# Project root directory (where .env file is located)
# __main__.py is at src/config_reload/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)

_shutdown_event: asyncio.Event | None = None


def get_shutdown_event() -> asyncio.Event:
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


class SnapshotFileTarget:
    """Reload target for running the controller as a sidecar.

    Writes the effective snapshot as JSON to ``output`` (when given) on every
    refresh or context restart, and turns a shutdown request into a process
    exit so the supervisor restarts the pod.
    """

    def __init__(self, output: Path | None, shutdown_event: asyncio.Event):
        self.output = output
        self.shutdown_event = shutdown_event
        self.shutdown_requested = False

    def write(self, snapshot: EffectiveSnapshot) -> None:
        if self.output is None:
            return
        self.output.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.output.with_suffix(self.output.suffix + ".tmp")
        tmp.write_bytes(snapshot.to_json())
        os.replace(tmp, self.output)
        logger.info(
            "Wrote configuration snapshot",
            extra={"path": str(self.output), "property_count": len(snapshot)},
        )

    def refresh(self, prefixes, snapshot: EffectiveSnapshot) -> None:
        logger.info("Refreshing configuration", extra={"prefixes": list(prefixes)})
        self.write(snapshot)

    def restart_context(self, snapshot: EffectiveSnapshot) -> None:
        logger.info("Restarting application context")
        self.write(snapshot)

    def shutdown(self) -> None:
        logger.warning("Shutdown requested to apply configuration change")
        self.shutdown_requested = True
        self.shutdown_event.set()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the configuration reload controller",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with ./config.yaml
    python -m config_reload

    # Resolve once and print the effective snapshot as JSON
    python -m config_reload --once

    # Keep a JSON snapshot file up to date for the application
    python -m config_reload --output /shared/config.json

    # Expose Prometheus metrics
    python -m config_reload --metrics-port 9090
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Path to config.yaml (default: {DEFAULT_CONFIG_FILE.name} at project root)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Resolve the snapshot once, print it as JSON and exit",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the effective snapshot as JSON to this file on every reload",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for Prometheus metrics server (default: from settings)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: from settings, else INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from settings or ./logs)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )

    return parser.parse_args(argv)


def setup_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    """First signal: graceful stop. Second signal: cancel everything."""

    def handle_signal(sig):
        logger.info("Received signal, initiating graceful shutdown", extra={"signal": sig.name})
        shutdown_event = get_shutdown_event()
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


def _setup_logging(args: argparse.Namespace, settings: ConfigReloadSettings) -> None:
    log_settings = settings.logging
    level_name = args.log_level or log_settings.level or "INFO"
    log_to_stdout = (
        args.log_to_stdout
        or os.getenv("LOG_TO_STDOUT", "").lower() in ("1", "true", "yes")
        or log_settings.log_to_stdout
    )
    log_dir = args.log_dir or log_settings.log_dir
    setup_logging(
        name="config-reload",
        app_name=settings.app_name or None,
        namespace=settings.namespace or None,
        log_dir=Path(log_dir) if log_dir else None,
        json_format=log_settings.json,
        console_level=getattr(logging, level_name.upper(), logging.INFO),
        log_to_stdout=log_to_stdout,
    )


async def run_once(engine: ConfigReloadEngine) -> int:
    snapshot = await engine.resolve_snapshot(strict=True)
    sys.stdout.write(snapshot.to_json().decode("utf-8") + "\n")
    return 0


async def run_controller(engine: ConfigReloadEngine, target: SnapshotFileTarget) -> int:
    await engine.start()
    # Bring the snapshot file up to date before watching
    if engine.store.initialized:
        target.write(engine.current_snapshot())
    await engine.run(target.shutdown_event)
    return 3 if target.shutdown_requested else 0


async def _main_async(args: argparse.Namespace, settings: ConfigReloadSettings) -> int:
    loop = asyncio.get_running_loop()
    setup_signal_handlers(loop)

    client = KubernetesClusterClient.from_environment()
    target = SnapshotFileTarget(args.output, get_shutdown_event())
    engine = ConfigReloadEngine(settings, client, target)

    if args.once:
        return await run_once(engine)

    metrics_port = args.metrics_port or (settings.metrics.port if settings.metrics.enabled else None)
    if metrics_port:
        actual_port = start_metrics_server(metrics_port)
        logger.info("Metrics server started", extra={"port": actual_port})

    return await run_controller(engine, target)


def main(argv: list[str] | None = None) -> int:
    global logger

    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    try:
        settings = load_config(config_path=args.config)
    except (FileNotFoundError, ConfigurationError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    _setup_logging(args, settings)
    logger = logging.getLogger(__name__)

    log_controller_startup(
        logger,
        app_name=settings.app_name,
        namespace=settings.namespace,
        profiles=settings.profiles,
        extra_config={
            "Reload": (
                f"{settings.reload.strategy.value}/{settings.reload.mode.value}"
                if settings.reload.enabled
                else "disabled"
            ),
            "Resource classes": ", ".join(k.resource_class for k in settings.enabled_kinds()),
        },
    )

    try:
        return asyncio.run(_main_async(args, settings))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
        return 0
    except ConfigurationError as e:
        log_exception(logger, e, "Startup failed")
        return 2
    except ReloadError as e:
        log_exception(logger, e, "Configuration could not be resolved", include_traceback=False)
        return 1


if __name__ == "__main__":
    sys.exit(main())
