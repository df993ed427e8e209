"""CLI entry point for the vtsgate gateway.

Loads configuration, starts the tunnel and pool through the
[StartupOrchestrator][vtsgate.core.orchestrator.StartupOrchestrator], and
only then starts the HTTP service. If the first tunnel establishment fails
the process exits with code 1 before any HTTP listener is opened.

Examples:
    ```bash
    python -m vtsgate
    python -m vtsgate --config config/vtsgate.yaml --log-level DEBUG
    python -m vtsgate --log-format json
    ```
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from vtsgate.core import (
    ConfigurationError,
    FatalStartupError,
    JsonFormatter,
    Logger,
    StartupOrchestrator,
    StructuredFormatter,
    load_config,
    parse_settings,
    start_metrics_server,
)
from vtsgate.services.api import Api, ApiConfig


logger = Logger("cli")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="vtsgate",
        description="Vehicle telemetry gateway over an SSH tunnel",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="YAML config path (optional; environment variables override it)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    parser.add_argument(
        "--log-format",
        choices=["kv", "json"],
        default="kv",
        help="Log line format (default: kv)",
    )

    return parser.parse_args(argv)


def setup_logging(level: str, log_format: str = "kv") -> None:
    """Configure the root logger.

    ``kv`` installs ``StructuredFormatter`` (``level name message key=value``),
    ``json`` installs ``JsonFormatter`` (one JSON object per line).
    """
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if log_format == "json" else StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


async def run_gateway(
    orchestrator: StartupOrchestrator,
    api_config: ApiConfig,
) -> int:
    """Start the gateway, then serve HTTP until a shutdown signal.

    Returns:
        Exit code: 0 on clean shutdown, 1 on fatal startup or service failure.
    """
    try:
        await orchestrator.start()
    except FatalStartupError as e:
        logger.critical("gateway_start_failed", error=str(e))
        await orchestrator.close()
        return 1

    try:
        api = Api(orchestrator=orchestrator, config=api_config)

        metrics_config = api.config.metrics
        metrics_server = await start_metrics_server(metrics_config)
        if metrics_config.enabled:
            logger.info(
                "metrics_server_started",
                host=metrics_config.host,
                port=metrics_config.port,
                path=metrics_config.path,
            )

        def handle_signal(sig: signal.Signals) -> None:
            logger.info("shutdown_signal", signal=sig.name)
            api.request_shutdown()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, handle_signal, sig)

        try:
            async with api:
                await api.run_forever()
            return 0
        except Exception as e:  # Intentionally broad: CLI error boundary for continuous mode
            logger.error("api_failed", error=str(e))
            return 1
        finally:
            await metrics_server.stop()
            if metrics_config.enabled:
                logger.info("metrics_server_stopped")
    finally:
        await orchestrator.close()


async def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse args, load config, and run the gateway."""
    args = parse_args(argv)
    setup_logging(args.log_level, args.log_format)

    try:
        raw = load_config(args.config)
        api_config = ApiConfig.model_validate(raw.pop("api", None) or {})
        settings = parse_settings(raw)
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        logger.error("config_invalid", error=str(e))
        return 1

    orchestrator = StartupOrchestrator.from_settings(settings)

    try:
        return await run_gateway(orchestrator, api_config)
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
