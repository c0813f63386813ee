"""Load a flow file and keep the scheduler running for a few minutes."""

import asyncio
import logging
import sys
from pathlib import Path

from nexflow import FlowScheduler, get_repository
from nexflow.cli_utils.flow_files import load_flow_file
from nexflow.errors import FlowAlreadyExistsError


async def main():
    flow_path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(__file__).with_name("price_alert.yaml")

    repo = get_repository()
    try:
        await repo.create_flow(load_flow_file(flow_path))
    except FlowAlreadyExistsError as exc:
        print(f"Reusing stored flow: {exc.flow_id}")

    scheduler = FlowScheduler(repository=repo)
    await scheduler.start(lifespan=300)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
