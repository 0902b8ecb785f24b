"""storecheck CLI with Rich output.

Provides commands for:
- Leader discovery for a (space, partition)
- Per-replica raft state
- Directional edge scans
- Forward/reverse edge index consistency audit

Usage:
    storecheck leader                          # Show current raft leader
    storecheck peers                           # Raft state of every replica
    storecheck scan known2 --direction both    # Dump edges
    storecheck check-edges known2              # Audit forward/reverse indexes
    storecheck --peer s1=store1:9780 --peer s2=store2 leader
"""

import asyncio
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Coroutine, Optional

import orjson
import typer
from rich import box
from rich.console import Console
from rich.table import Table

from storecheck.checker import CheckReport, ConsistencyChecker, MissingInverse
from storecheck.cluster.leader import LeaderTracker
from storecheck.cluster.peer import parse_host
from storecheck.cluster.view import ClusterView
from storecheck.config import Config, parse_peer_specs
from storecheck.errors import StoreCheckError
from storecheck.log_config import get_logger, set_log_level
from storecheck.rpc.services import MetaClient
from storecheck.scan.edges import Direction
from storecheck.scan.scanner import EdgeScanner

log = get_logger("cli")

app = typer.Typer(
    name="storecheck",
    help="storecheck - raft leader and edge index diagnostics for a partitioned graph store",
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()

# Exit codes
EXIT_DISCREPANCIES = 1
EXIT_SETUP_FAILURE = 2
EXIT_INTERRUPTED = 130


@dataclass
class Session:
    """Everything one command needs, torn down together."""

    config: Config
    view: ClusterView
    tracker: LeaderTracker
    meta: MetaClient
    scanner: EdgeScanner


@asynccontextmanager
async def open_session(config: Config) -> AsyncIterator[Session]:
    """Build the cluster view, tracker and scanner for one run.

    All peer and meta connections are closed on exit, including when the run
    is cancelled.
    """
    meta_host, meta_port = config.meta_host_port()
    async with ClusterView(config.cluster()) as view:
        for peer_id, host_spec in config.peers.items():
            view.register_host(peer_id, host_spec)
        log.debug(f"raft cluster: {view}")

        tracker = LeaderTracker(view)
        meta = MetaClient(
            meta_host,
            meta_port,
            timeout=config.meta_timeout,
            connect_timeout=config.connect_timeout,
            max_frame_size=config.max_frame_size,
            buffer_size=config.buffer_size,
        )
        scanner = EdgeScanner(
            view,
            tracker,
            meta,
            page_size=config.page_size,
            idx_prop=config.idx_prop,
            ts_prop=config.ts_prop,
        )
        try:
            yield Session(config, view, tracker, meta, scanner)
        finally:
            await tracker.close()
            await meta.close()


def _run(coro: Coroutine):
    """Run a command coroutine, mapping failures to exit codes."""
    try:
        return asyncio.run(coro)
    except StoreCheckError as e:
        log.error(f"{type(e).__name__}: {e}")
        console.print(f"[red]{type(e).__name__}:[/red] {e}")
        raise typer.Exit(EXIT_SETUP_FAILURE)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        raise typer.Exit(EXIT_INTERRUPTED)


def _config(ctx: typer.Context) -> Config:
    return ctx.obj


@app.callback()
def main_options(
    ctx: typer.Context,
    space: Optional[int] = typer.Option(None, "--space", "-s", help="Space id (default: STORECHECK_SPACE_ID or 1)"),
    part: Optional[int] = typer.Option(None, "--part", "-P", help="Partition id (default: STORECHECK_PART_ID or 1)"),
    peer: Optional[list[str]] = typer.Option(
        None,
        "--peer", "-p",
        help="Replica as ID=HOST[:RAFT_PORT], repeatable (default: STORECHECK_PEERS)",
    ),
    meta: Optional[str] = typer.Option(None, "--meta", "-m", help="Meta service HOST:PORT"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on the console"),
):
    """Global options shared by every command."""
    if verbose:
        set_log_level("DEBUG")
    if ctx.invoked_subcommand == "version":
        return

    try:
        config = Config()
        if space is not None:
            config.space_id = space
        if part is not None:
            config.part_id = part
        if peer:
            config.peers = parse_peer_specs(",".join(peer))
        if meta is not None:
            config.meta_addr = meta
        config.meta_host_port()
        for host_spec in config.peers.values():
            parse_host(host_spec, config.raft_port)
    except ValueError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(EXIT_SETUP_FAILURE)

    if not config.peers:
        console.print("[red]No replicas configured[/red] (use --peer or STORECHECK_PEERS)")
        raise typer.Exit(EXIT_SETUP_FAILURE)
    ctx.obj = config


@app.command()
def leader(
    ctx: typer.Context,
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Seconds to wait for a leader"),
):
    """Show the current raft leader of the partition."""
    config = _config(ctx)

    async def _leader() -> None:
        async with open_session(config) as session:
            leader_id = await session.tracker.get_leader(timeout)
            peer = session.view.peer(leader_id)
            console.print(
                f"[bold]Leader[/bold] of space {config.space_id} part {config.part_id}: "
                f"[green]{leader_id}[/green] ({peer.host}:{peer.raft_port}), term {session.tracker.term}"
            )

    _run(_leader())


@app.command()
def peers(ctx: typer.Context):
    """Show the raft state every replica reports for the partition."""
    config = _config(ctx)

    async def _peers() -> None:
        async with open_session(config) as session:
            reports = await session.tracker.refresh()
            leader_id = session.tracker.leader

            table = Table(
                title=f"Raft state: space {config.space_id} part {config.part_id}",
                box=box.ROUNDED,
            )
            table.add_column("Peer", style="cyan")
            table.add_column("Address")
            table.add_column("Status", justify="center")
            table.add_column("Role")
            table.add_column("Term", justify="right")
            table.add_column("Committed", justify="right")
            table.add_column("Error", style="dim")

            for report in sorted(reports, key=lambda r: r.peer_id):
                peer = session.view.peer(report.peer_id)
                if not report.reachable:
                    status = "[red]unreachable[/red]"
                elif report.can_vote:
                    status = "[green]ok[/green]"
                else:
                    status = f"[yellow]{report.error_code}[/yellow]"
                role = report.role
                if report.peer_id == leader_id:
                    role = f"[bold green]{role}[/bold green]"
                table.add_row(
                    report.peer_id,
                    f"{peer.host}:{peer.raft_port}",
                    status,
                    role,
                    str(report.term) if report.reachable else "-",
                    str(report.committed_log_id) if report.reachable else "-",
                    (report.error or "-")[:60],
                )

            console.print(table)
            if leader_id is None:
                console.print("\n[bold yellow]No replica claims leadership[/bold yellow]")
            else:
                console.print(f"\n[bold]Leader:[/bold] [green]{leader_id}[/green] (term {session.tracker.term})")

    _run(_peers())


@app.command()
def scan(
    ctx: typer.Context,
    edge_name: Optional[str] = typer.Argument(None, help="Edge type name (default: configured edge)"),
    direction: Direction = typer.Option(Direction.FORWARD, "--direction", "-d", help="forward, reverse or both"),
    limit: int = typer.Option(0, "--limit", "-n", help="Stop after N edges (0 = all)"),
    as_json: bool = typer.Option(False, "--json", help="Print edges as JSON lines"),
):
    """Scan the edges of an edge type from the partition leader."""
    config = _config(ctx)
    name = edge_name or config.edge_name

    async def _scan() -> None:
        async with open_session(config) as session:
            table = Table(title=f"{name} ({direction.value})", box=box.SIMPLE)
            for column in ("src", "dst", "rank", "idx", "ts"):
                table.add_column(column)

            count = 0
            async with aclosing(session.scanner.scan(name, direction)) as edges:
                async for edge in edges:
                    count += 1
                    if as_json:
                        typer.echo(orjson.dumps(edge.to_dict()).decode())
                    else:
                        ts = edge.ts.isoformat() if edge.ts else "-"
                        table.add_row(str(edge.src), str(edge.dst), str(edge.rank), edge.idx, ts)
                    if limit and count >= limit:
                        break

            if not as_json:
                console.print(table)
                console.print(f"[bold]{count}[/bold] edges")

    _run(_scan())


def _print_report(report: CheckReport) -> None:
    table = Table(title=f"Edge index check: {report.edge_name}", box=box.ROUNDED)
    table.add_column("Key", style="cyan")
    table.add_column("Problem")
    table.add_column("Forward")
    table.add_column("Reverse")

    for d in report.discrepancies:
        if isinstance(d, MissingInverse):
            problem = "[yellow]missing in-edge[/yellow]" if d.present_in is Direction.FORWARD else "[yellow]missing out-edge[/yellow]"
            fwd = str(d.edge) if d.present_in is Direction.FORWARD else "-"
            rev = str(d.edge) if d.present_in is Direction.REVERSE else "-"
        else:
            problem = "[red]mismatch[/red]"
            fwd, rev = str(d.forward), str(d.reverse)
        table.add_row(str(d.key), problem, fwd, rev)

    console.print(f"[bold]Forward edges:[/bold] {report.forward_count}")
    console.print(f"[bold]Reverse edges:[/bold] {report.reverse_count}")
    if report.ok:
        console.print("\n[green bold]✓ Forward and reverse indexes agree[/green bold]")
        return
    console.print(table)
    console.print(
        f"\n[red bold]✗ {len(report.missing)} missing, {len(report.mismatched)} mismatched[/red bold]"
    )


@app.command("check-edges")
def check_edges(
    ctx: typer.Context,
    edge_name: Optional[str] = typer.Argument(None, help="Edge type name (default: configured edge)"),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    strict: bool = typer.Option(False, "--strict", help="Exit 1 when discrepancies are found"),
):
    """Check that forward and reverse edge indexes agree.

    Examples:
        storecheck check-edges
        storecheck check-edges known2 --json
        storecheck --space 3 --part 7 check-edges follows --strict
    """
    config = _config(ctx)
    name = edge_name or config.edge_name

    async def _check() -> CheckReport:
        async with open_session(config) as session:
            return await ConsistencyChecker(session.scanner).check(name)

    report = _run(_check())
    if as_json:
        typer.echo(orjson.dumps(report.to_dict(), option=orjson.OPT_INDENT_2).decode())
    else:
        _print_report(report)

    if strict and not report.ok:
        raise typer.Exit(EXIT_DISCREPANCIES)


@app.command()
def version():
    """Show storecheck version."""
    from storecheck import __version__

    console.print(f"storecheck [cyan]{__version__}[/cyan]")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
