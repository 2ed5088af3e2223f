"""Entry point for the synthetic customer generator."""

import asyncio
import sys

from pymongo import AsyncMongoClient

from common.logging_config import setup_logging
from generator.customer_generator import CustomerGenerator
from replicator.config import load_settings
from replicator.exceptions import ConfigurationError

logger = setup_logging('generator')


async def generate(db_uri: str, database_name: str, collection_name: str) -> None:
    """Connect and insert customers until interrupted."""
    client = AsyncMongoClient(db_uri)
    try:
        database = client.get_default_database(default=database_name)
        await CustomerGenerator(database[collection_name]).run()
    finally:
        await client.close()


def main() -> int:
    """Bootstrap the generator."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    try:
        asyncio.run(generate(settings.db_uri, settings.database_name, settings.source_collection))
    except KeyboardInterrupt:
        logger.info("Generator stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
