"""
Synthetic customer generator.

Periodically inserts batches of fake customers into the source
collection so the replicator has a live change feed to follow.
"""

import asyncio
import logging
import random
from typing import List, Optional

from faker import Faker

from common.types import Address, Customer

logger = logging.getLogger(__name__)

GENERATE_INTERVAL_SECONDS = 0.2
MAX_BATCH_SIZE = 10


def generate_customer(faker: Faker) -> Customer:
    """Build one fake customer."""
    return Customer(
        firstName=faker.first_name(),
        lastName=faker.last_name(),
        email=faker.email(),
        address=Address(
            line1=faker.street_address(),
            line2=faker.secondary_address(),
            postcode=faker.postcode(),
            city=faker.city(),
            state=faker.state_abbr(),
            country=faker.country(),
        ),
    )


class CustomerGenerator:
    """
    Inserts a random batch of 1..max_batch customers every interval.
    """

    def __init__(
        self,
        collection,
        interval: float = GENERATE_INTERVAL_SECONDS,
        max_batch: int = MAX_BATCH_SIZE,
        faker: Optional[Faker] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Args:
            collection: pymongo AsyncCollection receiving the customers
            interval: Seconds between batches
            max_batch: Largest batch size
            faker: Faker instance (locale ``en_US`` by default)
            rng: Random source for batch sizes
        """
        self.collection = collection
        self.interval = interval
        self.max_batch = max_batch
        self.faker = faker or Faker("en_US")
        self.rng = rng or random.Random()
        self.inserted = 0

    async def tick(self) -> List[Customer]:
        """Insert one batch and return the customers inserted."""
        batch = [generate_customer(self.faker) for _ in range(self.rng.randint(1, self.max_batch))]

        await self.collection.insert_many([customer.to_document() for customer in batch])
        self.inserted += len(batch)
        logger.info(f"Inserted {len(batch)} customers")

        return batch

    async def run(self) -> None:
        """Insert batches until cancelled."""
        logger.info("Generating and inserting customers...")
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)
