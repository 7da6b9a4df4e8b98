#!/usr/bin/env python3
"""
Sync the Zendesk agent roster into the monitor configuration.

Fetches all agents and admins from Zendesk and merges them into the
`zendesk.agents` section of the configuration file. Existing monitoring
selections are preserved; new agents are added unselected. With --check
only the connection is tested and nothing is written.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from agent_status.config import ConfigurationStore
from agent_status.exceptions import ConfigurationError, DirectoryError
from agent_status.gateway.zendesk_client import ZendeskDirectoryClient
from agent_status.observability import configure_logging, get_logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync Zendesk agents into the monitor configuration")
    parser.add_argument("--config", help="Path to the YAML configuration file")
    parser.add_argument("--check", action="store_true", help="Only test the Zendesk connection")
    return parser.parse_args()


async def main() -> int:
    """Main entry point."""
    args = parse_args()

    store = ConfigurationStore(args.config)
    configure_logging(store.config.observability)
    logger = get_logger("scripts.sync_agents")

    credentials = store.get_credentials()
    if credentials is None or not credentials.is_complete:
        logger.error(
            "Zendesk credentials are missing or still placeholders",
            path=str(store.config_path),
            **(credentials.field_validity() if credentials else {}),
        )
        return 1

    async with ZendeskDirectoryClient(store.get_credentials, timeout=store.config.zendesk.request_timeout) as client:
        try:
            agents = await client.list_agents()
        except DirectoryError as e:
            logger.error("Failed to fetch agents from Zendesk", error=str(e), status_code=e.status_code)
            return 1

    if args.check:
        logger.info("Connection successful", agents=len(agents))
        print(f"Connection successful! Found {len(agents)} agents.")
        return 0

    try:
        total = store.save_agent_roster(agents)
    except ConfigurationError as e:
        logger.error("Failed to save agents", error=str(e))
        return 1

    selected = len(store.get_selected_agents())
    logger.info("Saved agents to configuration", fetched=len(agents), total=total, selected=selected)
    print(f"Saved {total} agents to {store.config_path} ({selected} selected for monitoring).")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
