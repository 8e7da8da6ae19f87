"""Application entry point for the Nostr order service."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from prometheus_client import start_http_server
from pydantic import ValidationError

from order_service.config.settings import AppConfig
from order_service.errors.service_errors import ConfigError, OrderServiceError
from order_service.metrics.collector import ServiceMetrics
from order_service.nostr.keys import Keys
from order_service.service import OrderService

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once for the whole process."""
    logging.basicConfig(level=level.upper(), format=_LOG_FORMAT, force=True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


async def run(
    config: AppConfig,
    keys: Keys,
    *,
    stop_event: asyncio.Event | None = None,
) -> int:
    """Run the service until SIGINT/SIGTERM (or *stop_event*) and return an exit code."""
    stop = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()

    metrics: ServiceMetrics | None = None
    if config.metrics.enabled:
        metrics = ServiceMetrics()
        start_http_server(config.metrics.port, registry=metrics.registry)
        logger.info("Metrics exposed on :%d", config.metrics.port)

    service = OrderService(config, keys, metrics=metrics)
    for sig in _SIGNALS:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)
    try:
        try:
            await service.start()
        except ConfigError as exc:
            logger.error("Startup failed: %s", exc)
            return 1
        try:
            await stop.wait()
            logger.info("Shutdown requested")
        finally:
            await service.stop()
    finally:
        for sig in _SIGNALS:
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Load configuration, decode the merchant key and run the service."""
    parser = argparse.ArgumentParser(prog="order-service", description=__doc__)
    parser.add_argument("--config", default="", help="optional YAML config file")
    args = parser.parse_args(argv)

    try:
        config = AppConfig.from_yaml(args.config) if args.config else AppConfig()
    except ValidationError as exc:
        setup_logging()
        logger.error("Invalid configuration: %s", exc)
        return 1

    setup_logging("DEBUG" if config.debug else config.log_level)
    try:
        config.require_runtime_settings()
        keys = Keys.from_nsec(config.merchant_nsec.strip())
    except OrderServiceError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    logger.info("Merchant pubkey %s", keys.public_key)
    return asyncio.run(run(config, keys))


if __name__ == "__main__":
    sys.exit(main())
