import asyncio
import logging
import signal

from service_factory import build_services
from utils.settings import Settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('worker.log'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger("automation_service")


async def main():
    """Runs the automation processor on its own, without the HTTP API."""
    settings = Settings.from_env()
    logging.getLogger().setLevel(settings.log_level)
    services = build_services(settings)
    if not settings.supabase_url:
        logger.warning("Standalone worker on the in-memory store only sees work it creates itself")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C raises KeyboardInterrupt instead.
            pass

    await services.processor.start()
    logger.info(f"Worker running (executor: {settings.executor_mode}, dry run: {settings.dry_run})")
    try:
        await stop.wait()
    finally:
        logger.info("Stopping...")
        await services.processor.stop()
        logger.info("Stopped.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
