#!/usr/bin/env python3
"""
🕸️ provgraph CLI - Where did this file come from?

Usage:
    prov init-db <db>                          Create the event tables
    prov load <db> <table> <file>              Load CSV / Parquet events
    prov trace-file <db> <path> <inode>        Rebuild a file's lineage
    prov trace-process <db> <node> <pid> <birth> [death]
    prov workflows <db>                        List scheduler workflows
    prov compare <db> --a ... --b ...          Diff the inputs of two workflows
    prov expand <db> file|process ...          Show one node's neighbors
    prov reproduce <db> <path> <inode>         How to rebuild a file
    prov --help                                Show help

<db> is a DuckDB file, or the base URI of a remote provenance endpoint.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console

from . import __version__
from .config import TraversalConfig, load_config
from .core.identity import FileNode, Node, ProcessNode
from .core.timeutil import parse_timestamp
from .lineage import (
    NodeFilter,
    build_workflow,
    compare_workflows,
    expand_node,
    fill_workflow_outputs,
    list_workflows,
    reproduction_plan,
    workflow_output_files,
)
from .query.contract import CancellationToken, EventStore, RetryPolicy
from .query.duckdb_store import DuckDBEventStore
from .query.rest_store import RestEventStore
from .reporters import ConsoleReporter, JSONReporter

console = Console()


def open_store(
    target: str, config: TraversalConfig, quiet: Console | None = None
) -> EventStore:
    """DuckDB file, or REST endpoint when `target` is an http(s) URI."""
    kwargs = dict(
        epsilon_ms=config.epsilon_ms,
        retry=RetryPolicy.from_config(config.retry),
        console=quiet or console,
    )
    if target.startswith(("http://", "https://")):
        return RestEventStore(target, **kwargs)
    return DuckDBEventStore(target, **kwargs)


def parse_seed(tokens: list[str]) -> Node:
    """`file PATH INODE` or `process NODE PID BIRTH [DEATH]`."""
    if not tokens:
        raise ValueError("Expected 'file PATH [INODE]' or 'process NODE PID BIRTH [DEATH]'")

    kind, *rest = tokens
    if kind == "file":
        if len(rest) == 1:
            # Path only: inode resolved by the store
            return FileNode(path=rest[0], inode=-1)
        if len(rest) == 2:
            return FileNode(path=rest[0], inode=int(rest[1]))
        raise ValueError("Expected 'file PATH [INODE]'")
    if kind == "process":
        if len(rest) not in (3, 4):
            raise ValueError("Expected 'process NODE PID BIRTH [DEATH]'")
        return ProcessNode(
            cluster_node=rest[0],
            pid=int(rest[1]),
            birth_time=parse_timestamp(rest[2]),
            death_time=parse_timestamp(rest[3]) if len(rest) == 4 else None,
        )
    raise ValueError(f"Unknown node kind: {kind} (use 'file' or 'process')")


def _config(args: argparse.Namespace) -> TraversalConfig:
    """YAML (or environment) config, overridden by command-line flags."""
    config = load_config(args.config)
    updates = {}
    if getattr(args, "deadline", None):
        updates["deadline_seconds"] = args.deadline

    flags = {
        "include_ipc": getattr(args, "ipc", False),
        "include_true_ipc": getattr(args, "true_ipc", False),
        "include_net": getattr(args, "net", False),
    }
    enabled = {name: True for name, on in flags.items() if on}
    if enabled:
        updates["options"] = config.options.model_copy(update=enabled)
    return config.model_copy(update=updates) if updates else config


def _reporter(args: argparse.Namespace) -> ConsoleReporter | JSONReporter:
    if args.json:
        return JSONReporter(pretty=True)
    return ConsoleReporter(console=console, verbose=args.verbose)


def _progress(args: argparse.Namespace) -> Console:
    """Progress lines go to stderr when stdout carries JSON."""
    return Console(stderr=True) if args.json else console


def init_db(db: str) -> None:
    """Create the event tables."""
    with DuckDBEventStore(db) as store:
        store.init_schema()
    console.print(f"[green]✓[/green] Event schema ready in [cyan]{db}[/cyan]")


def load_events(db: str, table: str, file: Path) -> None:
    """Append a CSV or Parquet file to an event table."""
    with DuckDBEventStore(db) as store:
        store.init_schema()
        rows = store.load_file(table, file)
        total = store.count(table)
    console.print(
        f"[green]✓[/green] Loaded {rows} row(s) into [cyan]{table}[/cyan] ({total} total)"
    )


async def _trace(
    args: argparse.Namespace, seed: Node, with_outputs: bool = False
) -> None:
    config = _config(args)
    progress = _progress(args)
    token = CancellationToken.with_deadline(config.deadline_seconds)
    async with open_store(args.db, config, progress) as store:
        workflow = await build_workflow(
            store, seed, config=config, console=progress, token=token
        )
        if with_outputs and isinstance(seed, ProcessNode):
            await fill_workflow_outputs(store, workflow, token)
    _reporter(args).report_workflow(workflow)


def trace_file(args: argparse.Namespace) -> None:
    asyncio.run(_trace(args, FileNode(path=args.path, inode=args.inode)))


def trace_process(args: argparse.Namespace) -> None:
    seed = ProcessNode(
        cluster_node=args.node,
        pid=args.pid,
        birth_time=parse_timestamp(args.birth),
        death_time=parse_timestamp(args.death),
    )
    asyncio.run(_trace(args, seed, with_outputs=args.outputs))


async def _workflows(args: argparse.Namespace) -> None:
    config = _config(args)
    async with open_store(args.db, config, _progress(args)) as store:
        workflows = await list_workflows(store)
        if args.id is None:
            _reporter(args).report_scheduler_workflows(workflows)
            return

        selected = [w for w in workflows if w.id == args.id]
        if not selected:
            raise ValueError(f"No workflow with id {args.id}")
        files = await workflow_output_files(store, selected[0])

    _reporter(args).report_files(files, f"📤 Outputs of workflow {args.id}")


async def _compare(args: argparse.Namespace) -> None:
    config = _config(args)
    progress = _progress(args)
    seeds = [parse_seed(args.a), parse_seed(args.b)]
    async with open_store(args.db, config, progress) as store:
        workflows = []
        for seed in seeds:
            token = CancellationToken.with_deadline(config.deadline_seconds)
            workflow = await build_workflow(
                store, seed, config=config, console=progress, token=token
            )
            if isinstance(seed, ProcessNode):
                await fill_workflow_outputs(store, workflow, token)
            workflows.append(workflow)
    _reporter(args).report_comparison(compare_workflows(*workflows))


async def _expand(args: argparse.Namespace) -> None:
    config = _config(args)
    progress = _progress(args)
    anchor = parse_seed(args.node)
    filters = [NodeFilter.parse(f) for f in args.filter or []]
    token = CancellationToken.with_deadline(config.deadline_seconds)
    async with open_store(args.db, config, progress) as store:
        expansion = await expand_node(
            store, anchor, config.options, filters, token=token, console=progress
        )
    _reporter(args).report_expansion(expansion)


async def _reproduce(args: argparse.Namespace) -> None:
    config = _config(args)
    progress = _progress(args)
    token = CancellationToken.with_deadline(config.deadline_seconds)
    async with open_store(args.db, config, progress) as store:
        plan = await reproduction_plan(
            store, args.path, args.inode, config=config, console=progress, token=token
        )
    _reporter(args).report_reproduction(plan)


def _add_traversal_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--ipc", action="store_true", help="Follow process-group IPC")
    parser.add_argument("--true-ipc", action="store_true", help="Follow pipes between processes")
    parser.add_argument("--net", action="store_true", help="Follow network connections")
    parser.add_argument(
        "--deadline", type=float, help="Cancel the traversal after this many seconds"
    )


def main(argv: list[str] | None = None) -> None:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="prov",
        description="🕸️ provgraph - Causal lineage of files and processes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  prov init-db events.duckdb
  prov load events.duckdb fs_events fs.parquet
  prov trace-file events.duckdb /data/out.csv 42
  prov trace-process events.duckdb node-1 1234 2024-05-01T10:00:00Z --outputs
  prov compare events.duckdb --a file /data/out.csv 42 --b file /data/out.csv 43
  prov expand events.duckdb file /data/out.csv 42 --filter path:/tmp
  prov reproduce http://localhost:3000 /data/out.csv 42 --json
        """,
    )
    parser.add_argument("--config", "-c", type=Path, help="Traversal config (YAML)")
    parser.add_argument("--json", action="store_true", help="Output JSON instead of tables")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show more columns")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init-db command
    init_parser = subparsers.add_parser("init-db", help="Create the event tables")
    init_parser.add_argument("db", help="DuckDB database file")

    # load command
    load_parser = subparsers.add_parser("load", help="Load events from CSV or Parquet")
    load_parser.add_argument("db", help="DuckDB database file")
    load_parser.add_argument("table", help="Event table (e.g., fs_events)")
    load_parser.add_argument("file", type=Path, help="CSV or Parquet file")

    # trace-file command
    trace_file_parser = subparsers.add_parser("trace-file", help="Rebuild a file's lineage")
    trace_file_parser.add_argument("db", help="DuckDB file or provenance URI")
    trace_file_parser.add_argument("path", help="File path")
    trace_file_parser.add_argument("inode", type=int, help="File inode")
    _add_traversal_flags(trace_file_parser)

    # trace-process command
    trace_proc_parser = subparsers.add_parser(
        "trace-process", help="Rebuild everything a process read"
    )
    trace_proc_parser.add_argument("db", help="DuckDB file or provenance URI")
    trace_proc_parser.add_argument("node", help="Cluster node name")
    trace_proc_parser.add_argument("pid", type=int, help="Process id")
    trace_proc_parser.add_argument("birth", help="Birth time (ISO or epoch ms)")
    trace_proc_parser.add_argument("death", nargs="?", help="Death time (omit if running)")
    trace_proc_parser.add_argument(
        "--outputs", "-o", action="store_true", help="Also list the files it wrote"
    )
    _add_traversal_flags(trace_proc_parser)

    # workflows command
    workflows_parser = subparsers.add_parser("workflows", help="List scheduler workflows")
    workflows_parser.add_argument("db", help="DuckDB file or provenance URI")
    workflows_parser.add_argument("--id", type=int, help="Show output files of this workflow")

    # compare command
    compare_parser = subparsers.add_parser("compare", help="Diff the inputs of two workflows")
    compare_parser.add_argument("db", help="DuckDB file or provenance URI")
    compare_parser.add_argument(
        "--a", nargs="+", required=True, help="file PATH [INODE] | process NODE PID BIRTH [DEATH]"
    )
    compare_parser.add_argument(
        "--b", nargs="+", required=True, help="file PATH [INODE] | process NODE PID BIRTH [DEATH]"
    )
    _add_traversal_flags(compare_parser)

    # expand command
    expand_parser = subparsers.add_parser("expand", help="Show one node's neighbors")
    expand_parser.add_argument("db", help="DuckDB file or provenance URI")
    expand_parser.add_argument(
        "node", nargs="+", help="file PATH [INODE] | process NODE PID BIRTH [DEATH]"
    )
    expand_parser.add_argument(
        "--filter",
        "-f",
        action="append",
        help="Hide neighbors matching attribute:value (can specify multiple)",
    )
    _add_traversal_flags(expand_parser)

    # reproduce command
    reproduce_parser = subparsers.add_parser("reproduce", help="How to rebuild a file")
    reproduce_parser.add_argument("db", help="DuckDB file or provenance URI")
    reproduce_parser.add_argument("path", help="File path")
    reproduce_parser.add_argument("inode", type=int, help="File inode")
    _add_traversal_flags(reproduce_parser)

    args = parser.parse_args(argv)

    try:
        if args.command == "init-db":
            init_db(args.db)
        elif args.command == "load":
            load_events(args.db, args.table, args.file)
        elif args.command == "trace-file":
            trace_file(args)
        elif args.command == "trace-process":
            trace_process(args)
        elif args.command == "workflows":
            asyncio.run(_workflows(args))
        elif args.command == "compare":
            asyncio.run(_compare(args))
        elif args.command == "expand":
            asyncio.run(_expand(args))
        elif args.command == "reproduce":
            asyncio.run(_reproduce(args))
        else:
            parser.print_help()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
