"""Typer-based CLI for flowmap."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional, Sequence

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .cli_watch import watch_app
from .config_manager import ConfigError, ScanSettings, load_settings, resolve_db_path, save_settings
from .exporter import export_flows
from .flow_status import compute_flow_summaries
from .git import GitClient, GitError, WorkspaceContentLoader
from .models import (
    Annotation,
    AutoResolution,
    CandidatesResolution,
    FlowRecord,
    FlowSummary,
    HydratedFlow,
    MatchCandidate,
    ScanResult,
)
from .remapper import RemapEngine
from .scanner import scan_workspace
from .search import SnippetContext
from .storage import FlowStore, FlowStoreError

console = Console()

app = typer.Typer(
    help="🧭 flowmap: trace code flows through tagged comments and keep them anchored.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
config_app = typer.Typer(help="⚙️  Show or change flowmap settings.", no_args_is_help=True)

app.add_typer(config_app, name="config")
app.add_typer(watch_app, name="watch")

_STATUS_STYLES = {
    "loaded": "green",
    "partial": "yellow",
    "notLoaded": "dim",
    "duplicates": "red",
    "moved": "magenta",
    "missing": "red",
}


def _path_argument():
    return typer.Argument(Path("."), exists=True, file_okay=False, help="Repository root.")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"flowmap v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
):
    """flowmap: map [bold]#@#@#@ FLOW : A => B[/bold] comments to durable annotations."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _fail(message: str) -> NoReturn:
    console.print(f"[red]✗[/red] {message}")
    raise typer.Exit(code=1)


def _settings(root: Path) -> ScanSettings:
    try:
        return load_settings(root)
    except ConfigError as exc:
        _fail(str(exc))


def _scan(root: Path, settings: ScanSettings) -> ScanResult:
    return scan_workspace(root, settings.tag, settings.context_lines, settings.exclude_dirs)


def _load_existing_store(root: Path, settings: ScanSettings) -> Optional[FlowStore]:
    """Open the database if it exists, without creating it."""
    db_path = resolve_db_path(root, settings)
    if not db_path.exists():
        return None
    store = FlowStore(db_path)
    try:
        store.load()
    except FlowStoreError as exc:
        _fail(str(exc))
    return store


def _require_flow(root: Path, settings: ScanSettings, flow_name: str) -> FlowRecord:
    store = _load_existing_store(root, settings)
    if store is None:
        _fail("No flow database yet. Run 'fm export' first.")
    flow = store.get_flow_by_name(flow_name)
    if flow is None:
        _fail(f"Unknown flow '{flow_name}'.")
    return flow


def collect_summaries(root: Path, settings: ScanSettings) -> List[FlowSummary]:
    """Scan *root* and reconcile the result against the stored flows."""
    store = _load_existing_store(root, settings)
    flows = store.get_all_flows() if store is not None else []
    return compute_flow_summaries(flows, _scan(root, settings).parsed)


def summary_to_dict(summary: FlowSummary) -> Dict[str, Any]:
    report = asdict(summary.report)
    return {
        "id": summary.id,
        "name": summary.name,
        "status": summary.status,
        "declaredCross": summary.declared_cross,
        "isCross": summary.is_cross,
        "nodes": list(summary.nodes),
        "edges": [asdict(edge) for edge in summary.edges],
        "present": report["present"],
        "total": report["total"],
        "extras": report["extras"],
        "dirty": report["dirty"],
        "duplicates": report["duplicates"],
        "moved": report["moved"],
        "missing": report["missing"],
    }


def render_status(summaries: Sequence[FlowSummary]) -> None:
    if not summaries:
        console.print("[yellow]No flows found.[/yellow]")
        return

    table = Table(title="Flows", show_lines=False)
    table.add_column("Flow", style="cyan")
    table.add_column("Status")
    table.add_column("Present", justify="right")
    table.add_column("Extras", justify="right")
    table.add_column("Dirty", justify="center")
    for summary in summaries:
        report = summary.report
        style = _STATUS_STYLES.get(summary.status, "white")
        name = escape(summary.name)
        if summary.is_cross:
            name += " [dim](cross)[/dim]"
        table.add_row(
            name,
            f"[{style}]{summary.status}[/{style}]",
            f"{report.present}/{report.total}",
            str(report.extras),
            "●" if report.dirty else "",
        )
    console.print(table)

    for summary in summaries:
        report = summary.report
        for dup in report.duplicates:
            where = ", ".join(f"{loc.file_path}:{loc.line_number}" for loc in dup.locations)
            console.print(f"  [red]duplicate[/red] {summary.name}: {dup.current_node} => {dup.next_node} at {where}")
        for moved in report.moved:
            console.print(
                f"  [magenta]moved[/magenta] {summary.name}: {moved.current_node} => {moved.next_node} "
                f"{moved.db_location.file_path}:{moved.db_location.line_number} -> "
                f"{moved.source_location.file_path}:{moved.source_location.line_number}"
            )
        for missing in report.missing:
            console.print(
                f"  [red]missing[/red] {summary.name}: {missing.current_node} => {missing.next_node} "
                f"(was {missing.db_location.file_path}:{missing.db_location.line_number})"
            )


def _candidate_to_dict(candidate: MatchCandidate) -> Dict[str, Any]:
    return asdict(candidate)


def _hydrated_to_dict(hydrated: HydratedFlow) -> Dict[str, Any]:
    return {
        "flow": hydrated.flow.name,
        "id": hydrated.flow.id,
        "annotations": [
            {
                "id": item.annotation.id,
                "filePath": item.annotation.file_path,
                "line": item.annotation.line,
                "currentNode": item.annotation.current_node,
                "nextNode": item.annotation.next_node,
                "resolution": asdict(item.resolution),
            }
            for item in hydrated.annotations
        ],
    }


def _describe_resolution(resolution) -> str:
    if isinstance(resolution, AutoResolution):
        return f"[green]auto[/green] line {resolution.line} ({resolution.source}, {resolution.confidence:.2f})"
    if isinstance(resolution, CandidatesResolution):
        lines = ", ".join(f"{c.line} ({c.score:.2f})" for c in resolution.candidates)
        return f"[yellow]candidates[/yellow] {lines}"
    note = f": {escape(resolution.note)}" if resolution.note else ""
    return f"[red]unmapped[/red] {resolution.reason}{note}"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command("scan")
def scan(path: Path = _path_argument()):
    """List every flow comment in the working tree."""
    root = path.resolve()
    result = _scan(root, _settings(root))

    if not result.parsed and not result.malformed:
        console.print("[yellow]No flow comments found.[/yellow]")
        return

    if result.parsed:
        table = Table(title="Flow comments")
        table.add_column("Flow", style="cyan")
        table.add_column("Edge")
        table.add_column("Location", style="dim")
        table.add_column("Symbol", style="magenta")
        for comment in sorted(result.parsed, key=lambda c: (c.flow_name, c.relative_path, c.line)):
            table.add_row(
                escape(comment.flow_name),
                escape(f"{comment.current_node} => {comment.next_node}"),
                f"{comment.relative_path}:{comment.line}",
                comment.symbol_path or "",
            )
        console.print(table)

    for bad in result.malformed:
        console.print(f"[red]malformed[/red] {bad.file_path}:{bad.line_number}: {escape(bad.raw_text)}")
    console.print(f"\n[dim]{len(result.parsed)} comment(s), {len(result.malformed)} malformed[/dim]")


@app.command("export")
def export(
    path: Path = _path_argument(),
    flows: Optional[List[str]] = typer.Option(
        None, "--flow", "-f", help="Only export these flows (repeatable); others are kept as stored.",
    ),
):
    """Persist the current flow comments, pinned to HEAD."""
    root = path.resolve()
    settings = _settings(root)
    result = _scan(root, settings)
    git = GitClient(root)

    async def _export() -> List[FlowRecord]:
        repo_id = await git.get_repo_id()
        store = FlowStore(resolve_db_path(root, settings), repo_id)
        return await export_flows(store, git, result, flows or None)

    try:
        stored = asyncio.run(_export())
    except (GitError, FlowStoreError) as exc:
        _fail(str(exc))

    total = sum(len(flow.annotations) for flow in stored)
    console.print(f"[green]✓[/green] Exported {len(stored)} flow(s), {total} annotation(s).")
    if result.malformed:
        console.print(f"[yellow]{len(result.malformed)} malformed comment(s) skipped.[/yellow]")


@app.command("status")
def status(
    path: Path = _path_argument(),
    as_json: bool = typer.Option(False, "--json", help="Emit machine-readable JSON."),
):
    """Compare the stored flows with the comments in the working tree."""
    root = path.resolve()
    summaries = collect_summaries(root, _settings(root))
    if as_json:
        typer.echo(json.dumps([summary_to_dict(s) for s in summaries], indent=2))
        return
    render_status(summaries)


@app.command("hydrate")
def hydrate(
    flow_name: str = typer.Argument(..., help="Name of the stored flow."),
    path: Path = _path_argument(),
    as_json: bool = typer.Option(False, "--json", help="Emit machine-readable JSON."),
):
    """Locate every stored annotation of a flow in the current code."""
    root = path.resolve()
    flow = _require_flow(root, _settings(root), flow_name)
    engine = RemapEngine(WorkspaceContentLoader(root))
    hydrated = asyncio.run(engine.remap_flow(flow))

    if as_json:
        typer.echo(json.dumps(_hydrated_to_dict(hydrated), indent=2))
        return

    table = Table(title=f"Hydrated flow: {flow.name}")
    table.add_column("Edge", style="cyan")
    table.add_column("Stored at", style="dim")
    table.add_column("Resolution")
    for item in hydrated.annotations:
        table.add_row(
            escape(f"{item.annotation.current_node} => {item.annotation.next_node}"),
            f"{item.annotation.file_path}:{item.annotation.line}",
            _describe_resolution(item.resolution),
        )
    console.print(table)


def _find_annotation(flow: FlowRecord, current_node: str, next_node: str) -> Optional[Annotation]:
    for annotation in flow.annotations:
        if annotation.current_node == current_node and annotation.next_node == next_node:
            return annotation
    return None


@app.command("candidates")
def candidates(
    flow_name: str = typer.Argument(..., help="Name of the stored flow."),
    current_node: str = typer.Argument(..., help="Source node of the edge."),
    next_node: str = typer.Argument(..., help="Target node of the edge."),
    path: Path = _path_argument(),
    as_json: bool = typer.Option(False, "--json", help="Emit machine-readable JSON."),
):
    """Suggest current locations for a moved or missing edge."""
    root = path.resolve()
    flow = _require_flow(root, _settings(root), flow_name)
    annotation = _find_annotation(flow, current_node, next_node)
    if annotation is None:
        _fail(f"Flow '{flow_name}' has no edge {current_node} => {next_node}.")

    engine = RemapEngine(WorkspaceContentLoader(root))
    found = asyncio.run(engine.find_candidates_for_edge(
        annotation.file_path, SnippetContext.of(annotation), annotation.symbol_path,
    ))

    if as_json:
        typer.echo(json.dumps([_candidate_to_dict(c) for c in found], indent=2))
        return
    if not found:
        console.print(f"[yellow]No candidates for {current_node} => {next_node} in {annotation.file_path}.[/yellow]")
        return

    table = Table(title=f"Candidates in {annotation.file_path}")
    table.add_column("Line", justify="right", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Source", style="magenta")
    table.add_column("Symbol", style="dim")
    for candidate in found:
        table.add_row(str(candidate.line), f"{candidate.score:.2f}", candidate.source, candidate.symbol or "")
    console.print(table)


@config_app.command("show")
def config_show(
    path: Path = _path_argument(),
    as_json: bool = typer.Option(False, "--json", help="Emit machine-readable JSON."),
):
    """Show the effective settings for a repository."""
    root = path.resolve()
    settings = _settings(root)
    if as_json:
        typer.echo(json.dumps(settings.to_dict(), indent=2))
        return

    table = Table(title="flowmap settings", show_header=False, box=None, padding=(0, 2))
    table.add_column(style="yellow")
    table.add_column()
    for key, value in settings.to_dict().items():
        table.add_row(key, ", ".join(value) if isinstance(value, list) else str(value))
    table.add_row("db (resolved)", str(resolve_db_path(root, settings)))
    console.print(table)


@config_app.command("set")
def config_set(
    path: Path = _path_argument(),
    tag: Optional[str] = typer.Option(None, "--tag", help="Comment tag that marks flow comments."),
    context_lines: Optional[int] = typer.Option(None, "--context-lines", min=0, help="Lines stored around each comment."),
    db_path: Optional[str] = typer.Option(None, "--db-path", help="Flow database location."),
    debounce_ms: Optional[int] = typer.Option(None, "--debounce-ms", min=0, help="Watch mode debounce."),
    exclude_dirs: Optional[List[str]] = typer.Option(None, "--exclude-dir", help="Directory name to skip (repeatable)."),
):
    """Write settings to the repository's .flowmap.toml."""
    root = path.resolve()
    values = {
        "tag": tag,
        "context_lines": context_lines,
        "db_path": db_path,
        "debounce_ms": debounce_ms,
        "exclude_dirs": list(exclude_dirs) if exclude_dirs else None,
    }
    if all(value is None for value in values.values()):
        console.print("[yellow]Nothing to update.[/yellow]")
        return

    try:
        written = save_settings(root, **values)
    except ConfigError as exc:
        _fail(str(exc))
    console.print(f"[green]✓[/green] Saved settings to {written}")


if __name__ == "__main__":
    app()
