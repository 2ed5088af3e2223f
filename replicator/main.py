"""Entry point for the replicator.

Streams source changes into the anonymized replica by default; with
``--full-reindex`` backfills missing records once and exits.
"""

import asyncio
import signal
import sys
from typing import List, Optional, Set

from common.logging_config import setup_logging
from replicator.config import ReplicationSettings, load_settings
from replicator.exceptions import ConfigurationError, ReplicationError
from replicator.replication_controller import (
    BACKFILL,
    EXIT_FAILURE,
    STREAMING,
    ReplicationController,
)
from replicator.store import MongoStore

EXIT_CONFIGURATION = 2

logger = setup_logging('replicator')

_shutdown_tasks: Set[asyncio.Task] = set()


async def replicate(settings: ReplicationSettings, mode: str) -> int:
    """
    Connect to the store and run one replication mode.

    Args:
        settings: Validated replicator settings
        mode: BACKFILL or STREAMING

    Returns:
        Process exit status
    """
    store = MongoStore(settings.db_uri, settings.database_name)
    try:
        try:
            await store.connect()
        except ReplicationError as e:
            logger.error(f"Startup failed: {e}")
            return EXIT_FAILURE

        controller = ReplicationController(settings, store)

        if mode == STREAMING and sys.platform != 'win32':
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: _schedule_shutdown(controller, s))

        return await controller.run(mode)
    finally:
        await store.close()


def _schedule_shutdown(controller: ReplicationController, sig) -> None:
    task = asyncio.create_task(_shutdown(controller, sig))
    _shutdown_tasks.add(task)
    task.add_done_callback(_shutdown_tasks.discard)


async def _shutdown(controller: ReplicationController, sig) -> None:
    logger.info(f"Received signal {sig.name}, shutting down...")
    await controller.stop()


def main(argv: Optional[List[str]] = None) -> int:
    """Bootstrap the replicator and return its exit status."""
    argv = list(sys.argv[1:] if argv is None else argv)

    if '--debug' in argv:
        setup_logging('replicator', log_level='DEBUG')
        logger.info("Debug logging enabled")

    mode = BACKFILL if '--full-reindex' in argv else STREAMING

    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIGURATION

    logger.info(f"Replicator starting in {mode} mode...")
    try:
        return asyncio.run(replicate(settings, mode))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        return 0


if __name__ == "__main__":
    sys.exit(main())
