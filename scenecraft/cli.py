"""Command-line interface for SceneCraft.

Usage:
    scenecraft info scene.json
    scenecraft normalize scene.json -o out.json [options]
    scenecraft add scene.json model.glb [options]
    scenecraft init-config
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .assets.resolver import AssetResolver
from .core.config import SceneCraftConfig
from .core.errors import SceneCraftError
from .scene.bounds import world_bounds
from .scene.editor import SceneEditor
from .scene.graph import GroupNode

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False)],
    )


def _load_config(config: str | None, assets: str | None) -> SceneCraftConfig:
    cfg = SceneCraftConfig.from_file(config) if config else SceneCraftConfig.default()
    if assets:
        cfg.imports.asset_root = Path(assets)
    return cfg


def _open_scene(scene_path: str, cfg: SceneCraftConfig) -> SceneEditor:
    """Import a scene file into a fresh editor."""
    path = Path(scene_path)
    if cfg.imports.asset_root is None:
        cfg.imports.asset_root = path.parent
    editor = SceneEditor(cfg, resolver=AssetResolver(cfg.imports.asset_root))
    report = editor.load(path)
    if report.failed_references:
        console.print(
            f"[yellow]{len(report.failed_references)} asset(s) replaced by placeholders: "
            f"{', '.join(report.failed_references)}[/yellow]"
        )
    return editor


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """SceneCraft - Arrange 3D assets in a bounded scene."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)


@main.command()
@click.argument("scene_path", type=click.Path(exists=True))
@click.option("--config", "-c", type=click.Path(exists=True), help="Path to configuration file")
@click.option("--assets", "-a", type=click.Path(file_okay=False), help="Asset directory")
def info(scene_path: str, config: str | None, assets: str | None) -> None:
    """Show the node tree of a scene file.

    SCENE_PATH: Path to a scene JSON document
    """
    try:
        editor = _open_scene(scene_path, _load_config(config, assets))
    except SceneCraftError as e:
        console.print(f"[red]Error loading: {e}[/red]")
        raise click.Abort()

    graph = editor.graph
    console.print(f"\n[bold]Scene Info: {Path(scene_path).name}[/bold]\n")
    console.print(f"[cyan]Volume size:[/cyan] {graph.size}")

    table = Table(title="Nodes")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Reference", style="white")
    table.add_column("World position", style="green")
    table.add_column("Inside", style="yellow")

    for node in graph.iter_depth_first():
        depth = len(graph.ancestors(node.id)) - 1
        pos = graph.world_matrix(node.id)[:3, 3]
        kind = "group" if isinstance(node, GroupNode) else "basis" if graph.is_basis(node.id) else "mesh"
        inside = editor.clamp.contains(node.id)
        table.add_row(
            "  " * depth + node.name,
            kind,
            graph.resource_reference(node.id) or "",
            f"({pos[0]:.2f}, {pos[1]:.2f}, {pos[2]:.2f})",
            "yes" if inside else "[red]no[/red]",
        )
    console.print(table)


@main.command()
@click.argument("scene_path", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Output path (defaults to overwriting)")
@click.option("--config", "-c", type=click.Path(exists=True), help="Path to configuration file")
@click.option("--assets", "-a", type=click.Path(file_okay=False), help="Asset directory")
@click.option("--size", type=float, help="Override the placement volume size")
def normalize(
    scene_path: str,
    output: str | None,
    config: str | None,
    assets: str | None,
    size: float | None,
) -> None:
    """Rewrite a scene in canonical form with every node inside the volume.

    SCENE_PATH: Path to a scene JSON document
    """
    try:
        editor = _open_scene(scene_path, _load_config(config, assets))
    except SceneCraftError as e:
        console.print(f"[red]Error loading: {e}[/red]")
        raise click.Abort()

    if size is not None:
        editor.graph.size = size
    moved = editor.clamp.clamp_top_level()
    for node_id, delta in moved.items():
        node = editor.graph.get(node_id)
        console.print(f"[dim]Moved '{node.name}' by ({delta[0]:.2f}, {delta[1]:.2f}, {delta[2]:.2f})[/dim]")

    out_path = Path(output or scene_path)
    editor.save(out_path)
    console.print(f"[green]Wrote {out_path}[/green] ({len(editor.graph) - 1} nodes, {len(moved)} clamped)")


@main.command()
@click.argument("scene_path", type=click.Path())
@click.argument("model_path", type=click.Path(exists=True))
@click.option("--name", "-n", help="Display name (defaults to the file name)")
@click.option(
    "--position", "-p",
    type=float,
    nargs=3,
    default=None,
    help="Position X Y Z before clamping",
)
@click.option("--config", "-c", type=click.Path(exists=True), help="Path to configuration file")
def add(
    scene_path: str,
    model_path: str,
    name: str | None,
    position: tuple[float, float, float] | None,
    config: str | None,
) -> None:
    """Add an asset to a scene file, creating the scene if needed.

    SCENE_PATH: Scene JSON document to update
    MODEL_PATH: Asset file (GLB/GLTF/OBJ/STL)
    """
    cfg = _load_config(config, None)
    try:
        if Path(scene_path).exists():
            editor = _open_scene(scene_path, cfg)
        else:
            editor = SceneEditor(cfg)
        node = editor.add_asset(str(Path(model_path).resolve()), name=name)
        if position:
            editor.graph.set_transform(node.id, node.transform.with_position(position))
            editor.clamp.clamp(node.id)
    except (SceneCraftError, ValueError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort()

    extent = world_bounds(editor.graph, node.id)
    editor.save(scene_path)
    console.print(f"[green]Added '{node.name}'[/green] to {scene_path}")
    if extent is not None:
        lo, hi = extent
        console.print(
            f"[dim]Bounds: ({lo[0]:.2f}, {lo[1]:.2f}, {lo[2]:.2f}) to "
            f"({hi[0]:.2f}, {hi[1]:.2f}, {hi[2]:.2f})[/dim]"
        )


@main.command()
@click.option(
    "--output", "-o",
    type=click.Path(),
    default="scenecraft_config.json",
    help="Output path for config file",
)
@click.option("--size", type=float, default=20.0, help="Placement volume size")
def init_config(output: str, size: float) -> None:
    """Generate a default configuration file."""
    cfg = SceneCraftConfig.default()
    cfg.volume.size = size
    cfg.to_file(output)
    console.print(f"[green]Config saved to {output}[/green]")


if __name__ == "__main__":
    main()
