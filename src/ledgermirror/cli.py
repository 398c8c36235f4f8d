"""
ledgermirror/cli.py

Read-only inspection of a local ledgermirror data directory.

Usage:
    ledgermirror --storage-dir ~/.ledgermirror/storage proposals
    ledgermirror show IIP-LZ3K9Q1A
    ledgermirror stats
    ledgermirror cache --owner 0xabc...
"""

import asyncio
import json
import logging
from datetime import datetime, timezone

import click

from .config import DEFAULT_OWNER, GovernanceConfig, resolve_storage_dir
from .protocol.cache import ReadModelCache
from .protocol.governance import GovernanceEngine
from .protocol.proposals import ProposalStatus, ProposalStore
from .protocol.storage import FileBackend

logger = logging.getLogger("ledgermirror.cli")


async def _no_weight(identity: str) -> int:
    # Inspection never admits votes
    return 0


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _engine(ctx: click.Context) -> GovernanceEngine:
    backend = FileBackend(ctx.obj["storage_dir"])
    config = GovernanceConfig(quorum=ctx.obj["quorum"])
    store = ProposalStore(backend, ledger=ctx.obj["ledger"], config=config)
    return GovernanceEngine(store, _no_weight, config)


@click.group()
@click.option(
    "--storage-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Data directory (default: ~/.ledgermirror/storage)",
)
@click.option("--ledger", default="default", show_default=True, help="Proposal ledger name")
@click.option("--quorum", type=int, default=GovernanceConfig().quorum, show_default=True,
              help="Minimum unique voters for a binding outcome")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    show_default=True,
)
@click.pass_context
def main(ctx, storage_dir, ledger, quorum, log_level):
    """Inspect mirrored ledger data and governance state."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["storage_dir"] = resolve_storage_dir(storage_dir)
    ctx.obj["ledger"] = ledger
    ctx.obj["quorum"] = quorum


@main.command()
@click.option(
    "--status",
    "status_filter",
    type=click.Choice([s.value for s in ProposalStatus]),
    default=None,
    help="Only show proposals with this status",
)
@click.pass_context
def proposals(ctx, status_filter):
    """List proposals, newest first."""
    engine = _engine(ctx)
    listed = asyncio.run(engine.list_with_status())

    shown = 0
    for proposal, status in listed:
        if status_filter and status.value != status_filter:
            continue
        click.echo(
            f"{proposal.proposal_id}  {status.value:<8}  "
            f"{len(proposal.votes):>4} votes  {proposal.title}"
        )
        shown += 1
    if shown == 0:
        click.echo("No proposals.")


@main.command()
@click.argument("proposal_id")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
@click.pass_context
def show(ctx, proposal_id, as_json):
    """Show one proposal and its tally."""
    engine = _engine(ctx)

    async def load():
        proposal = await engine.get_proposal(proposal_id)
        if proposal is None:
            return None, None
        return proposal, await engine.tally(proposal_id)

    proposal, tally = asyncio.run(load())
    if proposal is None:
        raise click.ClickException(f"Proposal not found: {proposal_id}")

    if as_json:
        click.echo(json.dumps({"proposal": proposal.to_dict(), "tally": tally.to_dict()}, indent=2))
        return

    click.echo(f"{proposal.proposal_id}: {proposal.title}")
    click.echo(f"Type:      {proposal.proposal_type.value}")
    click.echo(f"Creator:   {proposal.creator}")
    click.echo(f"Created:   {_format_time(proposal.created_at)}")
    click.echo(f"Ends:      {_format_time(proposal.end_at)}")
    click.echo(f"Status:    {tally.status.value}")
    click.echo(
        f"Votes:     for={tally.for_weight} against={tally.against_weight} "
        f"abstain={tally.abstain_weight}"
    )
    click.echo(f"Voters:    {tally.unique_voters}/{tally.quorum} quorum")
    if proposal.description:
        click.echo("")
        click.echo(proposal.description)


@main.command()
@click.pass_context
def stats(ctx):
    """Show governance statistics."""
    engine = _engine(ctx)
    for key, value in asyncio.run(engine.get_stats()).items():
        click.echo(f"{key}: {value}")


@main.command()
@click.option("--owner", default=DEFAULT_OWNER, show_default=True, help="Owner context of the cache")
@click.pass_context
def cache(ctx, owner):
    """List persisted cache entries and their freshness."""
    read_model = ReadModelCache(FileBackend(ctx.obj["storage_dir"]), owner=owner)
    loaded = asyncio.run(read_model.warm())
    if loaded == 0:
        click.echo("No cached entries.")
        return

    for key in sorted(read_model.keys()):
        entry = read_model.peek(key)
        click.echo(
            f"{key}  {read_model.freshness(key).value:<5}  "
            f"fetched {_format_time(entry.fetched_at)}  ttl={entry.ttl:g}s"
        )


if __name__ == "__main__":
    main()
