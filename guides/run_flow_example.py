"""Run a flow once without touching the scheduler."""

import asyncio

from nexflow import FlowConfig, FlowRunner, get_repository


async def main():
    repo = get_repository()
    flow = await repo.create_flow(
        FlowConfig.model_validate(
            {
                "name": "Hello Flow",
                "schedule": "0 * * * *",
                "steps": [
                    {"type": "fetch", "id": "ip", "url": "https://httpbin.org/json"},
                    {"type": "log", "message": "Slideshow: ${ip.body.slideshow.title}"},
                ],
            }
        )
    )

    record = await FlowRunner(repository=repo).run_flow(flow.id)
    print(f"Run {record.id} finished with status {record.status}")
    for line in record.log_lines:
        print(f"  {line}")


if __name__ == "__main__":
    asyncio.run(main())
