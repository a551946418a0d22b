import asyncio
import logging
import os

import restate
from dotenv import load_dotenv
from hypercorn.asyncio import serve
from hypercorn.config import Config

from .config import JOB_BACKOFF_FACTOR, JOB_INITIAL_BACKOFF, JOB_MAX_ATTEMPTS, load_settings
from .models import ProcessResult, PullRequestJob
from .pipeline import build_processor
from .queue import PROCESS_HANDLER, PROCESSOR_NAME

logger = logging.getLogger(__name__)

PROCESS_RETRY_POLICY = restate.InvocationRetryPolicy(
    initial_interval=JOB_INITIAL_BACKOFF,
    exponentiation_factor=JOB_BACKOFF_FACTOR,
    max_attempts=JOB_MAX_ATTEMPTS,
    on_max_attempts="pause",
)

# Keyed by repository slug: restate runs at most one job per repository at a time,
# so two commits of the same repository never race on its sync state.
processor_object = restate.VirtualObject(PROCESSOR_NAME, invocation_retry_policy=PROCESS_RETRY_POLICY)


async def run_job(key: str, job: PullRequestJob) -> ProcessResult:
    logger.info(f"Processing job for {key} (delivery {job.delivery_id})")
    async with build_processor(load_settings()) as processor:
        return await processor.process(job.payload)


@processor_object.handler(PROCESS_HANDLER)
async def process_pull_request(ctx: restate.ObjectContext, job: PullRequestJob) -> ProcessResult:
    return await run_job(ctx.key(), job)


app = restate.app([processor_object])


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    host = os.environ.get("INDEXER_HOST", "0.0.0.0")
    port = os.environ.get("INDEXER_PORT", "9091")

    config = Config()
    config.bind = [f"{host}:{port}"]

    asyncio.run(serve(app, config))


if __name__ == "__main__":
    main()
