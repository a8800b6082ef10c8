"""Entry point for the graduation radar."""

import asyncio
import signal

from loguru import logger

from config.settings import settings
from src.parsers.worker import run_parser
from src.utils.logger import setup_logger


async def main() -> None:
    setup_logger(json_logs=settings.json_logs, level="INFO")
    logger.info("Starting graduation radar...")

    # Graceful shutdown on SIGINT/SIGTERM
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    radar_task = asyncio.create_task(run_parser(), name="radar")

    # Wait for either the radar to finish or shutdown signal
    done, pending = await asyncio.wait(
        [radar_task, asyncio.create_task(shutdown_event.wait())],
        return_when=asyncio.FIRST_COMPLETED,
    )

    for task in done:
        if task is radar_task and task.exception() is not None:
            logger.opt(exception=task.exception()).error("Radar stopped with an error")

    # Cancel remaining tasks
    for task in pending:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
