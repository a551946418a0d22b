import asyncio
import logging
import os

from dotenv import load_dotenv
from hypercorn.asyncio import serve
from hypercorn.config import Config

from indexer.config import load_settings
from indexer.queue import PullRequestQueue
from indexer.state import RepoRegistry

from .app import create_app

logger = logging.getLogger(__name__)


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    settings = load_settings()
    if not settings.github_webhook_secret:
        raise RuntimeError("GITHUB_WEBHOOK_SECRET environment variable is not set")

    app = create_app(
        secret=settings.github_webhook_secret,
        registry=RepoRegistry(settings.state_dir),
        queue=PullRequestQueue(settings.restate_ingress_url),
    )

    host = os.environ.get("WEBHOOK_HOST", "0.0.0.0")
    port = os.environ.get("WEBHOOK_PORT", "8000")

    config = Config()
    config.bind = [f"{host}:{port}"]

    asyncio.run(serve(app, config))


if __name__ == "__main__":
    main()
