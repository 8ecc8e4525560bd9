"""CLI entry point for the Classified Knowledge Base."""

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .config import load_config
from .models import MAX_LEVEL, Identity

console = Console()


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.pass_context
def cli(ctx, config_path):
    """Classified Knowledge Base - classification-gated articles and link analytics."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _get_config(ctx) -> dict:
    return load_config(ctx.obj.get("config_path"))


def _get_services(ctx):
    from .api.app import configure_logging
    from .services.container import build_services

    config = _get_config(ctx)
    configure_logging(config.get("log_level", "INFO"))
    return build_services(config)


def _viewer(level: int) -> Identity:
    return Identity(requester_id="ckb-cli", clearance_level=level)


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", default=None, type=int, help="Port (default from config)")
@click.pass_context
def serve(ctx, host, port):
    """Run the HTTP API server."""
    import uvicorn

    from .api.app import create_app

    config = _get_config(ctx)
    server_cfg = config.get("server", {})
    app = create_app(config)
    uvicorn.run(
        app,
        host=host or server_cfg.get("host", "127.0.0.1"),
        port=port or server_cfg.get("port", 8080),
        log_level=config.get("log_level", "INFO").lower(),
    )


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def load(ctx, path):
    """Load markdown articles (YAML frontmatter) from a directory."""
    from .errors import CKBError
    from .ingest.markdown import load_directory

    services = _get_services(ctx)
    try:
        articles = load_directory(path, services)
    except CKBError as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1)
    finally:
        services.close()

    console.print(f"[green]✓ Loaded {len(articles)} article(s) from {path}[/]")
    links = services.store.list_links()
    console.print(f"  Links indexed: {len(links)}")


@cli.command()
@click.option("--level", "-l", default=MAX_LEVEL, type=click.IntRange(1, MAX_LEVEL), help="Viewer clearance level")
@click.pass_context
def graph(ctx, level):
    """Show link graph statistics and structural roles."""
    services = _get_services(ctx)
    data = services.links.graph(_viewer(level))
    s = data.stats

    console.print(f"\n[bold]Link Graph (clearance {level})[/]")
    console.print(f"  Articles: {s.total_nodes}")
    console.print(f"  Links: {s.total_edges}")
    console.print(f"  Orphans: {s.orphans_count}")
    console.print(f"  Average degree: {s.average_degree:.2f} (max {s.max_degree})")
    if s.nodes_by_classification:
        console.print("\n  [bold]By classification:[/]")
        for lvl, count in sorted(s.nodes_by_classification.items()):
            console.print(f"    L{lvl}: {count}")

    table = Table(title="Hubs and Authorities")
    table.add_column("Article", style="cyan")
    table.add_column("Title")
    table.add_column("Out", justify="right")
    table.add_column("In", justify="right")
    table.add_column("Role", style="green")
    for node in data.nodes:
        roles = [r for r, flag in (("hub", node.is_hub), ("authority", node.is_authority)) if flag]
        if roles:
            table.add_row(str(node.article), node.title, str(node.outbound_count),
                          str(node.inbound_count), ", ".join(roles))
    if table.row_count:
        console.print(table)


@cli.command()
@click.option("--top", "-n", default=10, help="Number of strongest links to show")
@click.pass_context
def strengths(ctx, top):
    """Recompute link strengths for the whole graph."""
    services = _get_services(ctx)
    console.print("[blue]Scoring links...[/]")
    result = services.analytics.recompute_strengths()
    console.print(f"[green]✓ Scored {len(result)} link(s)[/]")
    if not result:
        return

    table = Table(title="Strongest Links")
    table.add_column("Source", style="cyan")
    table.add_column("Target", style="cyan")
    table.add_column("Total", justify="right")
    table.add_column("Normalized", justify="right", style="green")
    for s in sorted(result, key=lambda s: s.normalized_strength, reverse=True)[:top]:
        table.add_row(str(s.source), str(s.target), f"{s.total_strength:.3f}", f"{s.normalized_strength:.3f}")
    console.print(table)


@cli.command()
@click.option("--algorithm", "-a", default=None, help="label_propagation or spectral")
@click.pass_context
def cluster(ctx, algorithm):
    """Run community detection and store the clusters."""
    from .errors import CKBError

    services = _get_services(ctx)
    console.print("[blue]Running community detection...[/]")
    try:
        clusters = services.analytics.run_clustering(algorithm=algorithm)
    except CKBError as e:
        console.print(f"[red]{e}[/]")
        raise SystemExit(1)

    if not clusters:
        console.print("[yellow]No clusters found. Load some articles first.[/]")
        return
    console.print(f"[green]✓ Found {len(clusters)} cluster(s)[/]")
    for c in clusters:
        console.print(f"  {c.cluster_id}: {c.label} ({c.size} articles, density {c.density:.2f})")


@cli.command()
@click.option("--algorithm", "-a", default=None, help="label_propagation or spectral")
@click.option("--level", "-l", default=MAX_LEVEL, type=click.IntRange(1, MAX_LEVEL), help="Viewer clearance level")
@click.pass_context
def clusters(ctx, algorithm, level):
    """Show stored clusters as seen at a clearance level."""
    services = _get_services(ctx)
    result = services.analytics.clusters(_viewer(level), algorithm)
    if not result:
        console.print("[yellow]No clusters stored. Run 'ckb cluster' first.[/]")
        return

    table = Table(title=f"Clusters (clearance {level})")
    table.add_column("#", style="dim", width=3)
    table.add_column("Label", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Density", justify="right")
    table.add_column("Avg centrality", justify="right", style="green")
    for c in result:
        table.add_row(str(c.cluster_id), c.label, str(c.size), f"{c.density:.2f}", f"{c.avg_centrality:.3f}")
    console.print(table)


if __name__ == "__main__":
    cli()
