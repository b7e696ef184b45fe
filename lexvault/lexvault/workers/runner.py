import asyncio
import logging
import signal

from lexvault.config import settings
from lexvault.dependencies import build_services
from lexvault.workers.purge import PurgeWorker

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run_workers():
    """Run all workers until a shutdown signal arrives."""
    services = build_services()
    purge_worker = PurgeWorker(services.documents)

    # Handle shutdown signals
    def handle_shutdown(sig, frame):  # noqa: ARG001
        logger.info(f"Received shutdown signal: {sig}")
        purge_worker.stop()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    try:
        await purge_worker.run()
    finally:
        await services.close()


def main():
    """Entry point for the worker process."""
    logger.info("Starting LexVault workers")
    asyncio.run(run_workers())


if __name__ == "__main__":
    main()
