import sys, os
import asyncio
import logging
import pathlib

# Ensure we are in the correct directory regardless of how this is called
SCRIPT_DIR = str(pathlib.Path(__file__).parent.absolute())
sys.path.insert(0, SCRIPT_DIR)
os.chdir(SCRIPT_DIR)

from service_factory import build_services

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
    print("Starting One-Off Processor Tick...")
    # One tick: sweep stale and orphaned logs, then run one batch of due pending logs.
    # Suited to cron deployments that cannot keep a worker alive.
    services = build_services()
    summary = await services.processor.tick()
    logger.info(f"Tick summary: {summary.model_dump()}")
    print("Finished One-Off Tick. Closing now.")
    return summary


if __name__ == "__main__":
    asyncio.run(main())
