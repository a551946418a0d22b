import asyncio
import json
import logging

import click
from dotenv import load_dotenv

from .config import load_settings
from .errors import IndexerError
from .pipeline import build_index, build_processor
from .state import RepoRegistry, SyncStateStore


@click.group()
@click.option("--state-dir", default=None, help="Directory holding the JSON state files.")
@click.option("-v", "--verbose", is_flag=True, default=False)
@click.pass_context
def cli(ctx: click.Context, state_dir: str | None, verbose: bool) -> None:
    """Inspect and repair the pull request index sync state."""
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        settings = load_settings()
    except IndexerError as e:
        raise click.ClickException(str(e))
    if state_dir:
        settings = settings.model_copy(update={"state_dir": state_dir})
    ctx.obj = settings


@cli.command()
@click.argument("repo_slug", required=False)
@click.pass_obj
def state(settings, repo_slug: str | None) -> None:
    """Show the last indexed commit for one or all repositories."""
    store = SyncStateStore(settings.state_dir)
    if repo_slug:
        click.echo(f"{repo_slug}: {store.get(repo_slug) or '(not indexed)'}")
        return
    entries = store.all()
    if not entries:
        click.echo("No repositories indexed yet.")
    for slug, sha in sorted(entries.items()):
        click.echo(f"{slug}: {sha}")


@cli.command()
@click.pass_obj
def repos(settings) -> None:
    """List repositories that have sent pull request events."""
    registrations = RepoRegistry(settings.state_dir).list_repos()
    if not registrations:
        click.echo("No repositories registered.")
    for reg in sorted(registrations, key=lambda r: r.repo_slug):
        click.echo(
            f"{reg.repo_slug}  installation={reg.installation_id}  "
            f"last_action={reg.last_action or '-'}  last_event_at={reg.last_event_at}"
        )


@cli.command()
@click.argument("repo_slug")
@click.option("--purge", is_flag=True, default=False,
              help="Also delete every indexed chunk of the repository.")
@click.pass_obj
def invalidate(settings, repo_slug: str, purge: bool) -> None:
    """Forget the indexed commit of REPO_SLUG so the next merge re-indexes from scratch."""
    if purge:
        async def purge_repo() -> None:
            index = build_index(settings)
            try:
                await index.delete_by_filter(repo_slug)
            finally:
                await index.close()

        try:
            asyncio.run(purge_repo())
        except IndexerError as e:
            raise click.ClickException(str(e))
        click.echo(f"Deleted all chunks for {repo_slug}.")

    SyncStateStore(settings.state_dir).clear(repo_slug)
    click.echo(f"Cleared sync state for {repo_slug}.")


@cli.command()
@click.argument("payload_file", type=click.File("r"))
@click.pass_obj
def process(settings, payload_file) -> None:
    """Run a saved pull_request webhook payload through the pipeline in-process."""
    try:
        payload = json.load(payload_file)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON payload: {e}")

    async def run():
        async with build_processor(settings) as processor:
            return await processor.process(payload)

    try:
        result = asyncio.run(run())
    except IndexerError as e:
        raise click.ClickException(str(e))
    click.echo(result.model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
