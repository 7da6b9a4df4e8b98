#!/usr/bin/env python3
"""
Start the Agent Status monitor without the HTTP control plane.

Runs the monitoring loop in the foreground, publishing metrics on the
configured port, until interrupted with SIGINT or SIGTERM.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agent_status import __version__
from agent_status.config import ConfigurationStore
from agent_status.gateway.zendesk_client import ZendeskDirectoryClient
from agent_status.observability import configure_logging, configure_metrics, configure_tracing, get_logger
from agent_status.observability.tracer import shutdown_tracing
from workers.monitor.worker import MonitorWorker


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Zendesk agent status monitor")
    parser.add_argument("--config", help="Path to the YAML configuration file")
    parser.add_argument("--once", action="store_true", help="Run a single polling cycle and exit")
    return parser.parse_args()


async def main() -> int:
    """Main entry point."""
    args = parse_args()

    store = ConfigurationStore(args.config)
    config = store.config

    configure_logging(config.observability)
    metrics = configure_metrics(config.observability)
    configure_tracing(config.observability, version=__version__)
    logger = get_logger("scripts.start_monitor")

    if store.last_error:
        logger.error("Failed to load configuration", path=str(store.config_path), error=store.last_error)
    logger.info("Starting agent status monitor", config=str(store.config_path), version=__version__)

    async with ZendeskDirectoryClient(
        store.get_credentials,
        timeout=config.zendesk.request_timeout,
        metrics=metrics,
    ) as directory:
        worker = MonitorWorker(store, directory, metrics)

        if args.once:
            if not worker.gate.is_valid():
                logger.error("Zendesk configuration is invalid, nothing to poll")
                return 1
            await worker.name_cache.refresh_if_due()
            summary = await worker.run_cycle_once()
            logger.info("Single cycle finished", **summary.to_dict())
            return 1 if summary.is_total_failure else 0

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, worker.stop)

        await worker.run()

    shutdown_tracing()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
