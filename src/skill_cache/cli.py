"""CLI application entry point."""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from skill_cache.cache.eviction import CleanScope, EvictionPolicy
from skill_cache.cache.paths import CacheContext, build_context
from skill_cache.cache.pipeline import CacheLookupPipeline
from skill_cache.cache.status import CacheStats, format_age
from skill_cache.cache.store import UpdatePolicy
from skill_cache.config.schema import parse_size
from skill_cache.core.source import parse_source
from skill_cache.errors import SkillCacheError
from skill_cache.utils.output import (
    console,
    print_error,
    print_info,
    print_success,
    print_warning,
    setup_logging,
)
from skill_cache.utils.paths import expand_path, format_size

app = typer.Typer(
    name="skill-cache",
    help="Install agent skills from git repositories through a shared local cache",
    no_args_is_help=True,
)

# Cache subcommand group
cache_app = typer.Typer(
    name="cache",
    help="Inspect and clean the repository cache",
    no_args_is_help=True,
)
app.add_typer(cache_app, name="cache")


DEFAULT_TARGET_DIR = ".claude/skills"


def load_context(offline: bool = False) -> CacheContext:
    """Build the cache context, exiting with an error message if that fails."""
    try:
        return build_context(offline=True if offline else None)
    except SkillCacheError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log cache operations to stderr",
    ),
):
    """Install agent skills from git repositories."""
    setup_logging(verbose)


@app.command()
def add(
    source: str = typer.Argument(
        ...,
        help="Skill source: owner/repo[/path][@rev] or a git URL",
    ),
    target: Optional[Path] = typer.Option(
        None,
        "--target",
        "-t",
        help=f"Directory to install skills into (default: {DEFAULT_TARGET_DIR})",
    ),
    name: Optional[str] = typer.Option(
        None,
        "--name",
        "-n",
        help="Install under this name instead of the skill's directory name",
    ),
    offline: bool = typer.Option(
        False,
        "--offline",
        help="Use only the local cache, never touch the network",
    ),
    update: bool = typer.Option(
        False,
        "--update",
        "-u",
        help="Fetch the latest changes before installing",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite an already installed skill",
    ),
):
    """Install a skill from a git repository.

    The repository is cloned into the cache on first use and reused by every
    later install.
    """
    try:
        skill_source = parse_source(source)
        context = load_context(offline)

        target_root = expand_path(str(target or DEFAULT_TARGET_DIR))
        target_dir = target_root / (name or skill_source.skill_name)

        pipeline = CacheLookupPipeline(context)
        result = pipeline.install(
            skill_source,
            target_dir,
            update_policy=UpdatePolicy.REFRESH if update else UpdatePolicy.REUSE,
            overwrite=force,
        )

        print_success(f"Installed {skill_source} at {result.commit[:7]}")
        print_info(f"Location: {result.path}")
        if result.skill and result.skill.description:
            console.print(f"  {result.skill.description}")

    except typer.Exit:
        raise
    except SkillCacheError as e:
        print_error(str(e))
        raise typer.Exit(1)


@cache_app.command("path")
def cache_path():
    """Print the cache directory."""
    context = load_context()
    console.print(str(context.paths.root), soft_wrap=True, highlight=False)


@cache_app.command("status")
def cache_status(
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the status as JSON",
    ),
):
    """Show cached repositories and checkouts."""
    context = load_context()
    stats = CacheStats.collect(context)

    if as_json:
        console.print_json(json.dumps(stats.to_dict()))
        return

    if not stats.exists:
        print_info(f"Cache directory: {stats.root} (not created yet)")
        return

    console.print(f"[bold]Cache directory:[/bold] [cyan]{stats.root}[/cyan]")
    console.print()

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Entry", style="green")
    table.add_column("Kind")
    table.add_column("Size", justify="right")
    table.add_column("Last used")

    for repo in stats.repos:
        table.add_row(repo.name, "repository", format_size(repo.size), format_age(repo.last_fetch))
    for checkout in stats.checkouts:
        table.add_row(
            checkout.name, "checkout", format_size(checkout.size), format_age(checkout.last_used)
        )

    if stats.repos or stats.checkouts:
        console.print(table)
        console.print()

    console.print(
        f"[bold]db/:[/bold] {len(stats.repos)} repositories, {format_size(stats.db_size)}"
    )
    console.print(
        f"[bold]checkouts/:[/bold] {len(stats.checkouts)} checkouts, "
        f"{format_size(stats.checkouts_size)}"
    )
    console.print(f"[bold]Total:[/bold] [cyan]{format_size(stats.total_size)}[/cyan]")


@cache_app.command("clean")
def cache_clean(
    all_: bool = typer.Option(
        False,
        "--all",
        help="Also remove cached repositories that are not in use",
    ),
    max_age: Optional[int] = typer.Option(
        None,
        "--max-age",
        min=0,
        help="Remove checkouts unused for this many days (0 = no age limit)",
    ),
    max_size: Optional[str] = typer.Option(
        None,
        "--max-size",
        help="Evict least recently used checkouts above this size (e.g. 500MB)",
    ),
):
    """Remove old checkouts from the cache."""
    try:
        size_limit = parse_size(max_size) if max_size is not None else None
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    context = load_context()
    scope = CleanScope.ALL if all_ else CleanScope.CHECKOUTS
    age = context.config.max_age if max_age is None else max_age

    try:
        summary = EvictionPolicy(context).clean(scope, max_age_days=age, max_size=size_limit)
    except SkillCacheError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if summary.checkouts_removed or summary.repos_removed:
        print_success(
            f"Removed {summary.repos_removed} repositories, "
            f"{summary.checkouts_removed} checkouts "
            f"({format_size(summary.total_freed)} freed)"
        )
    elif age:
        print_info(f"No checkouts older than {age} days found")
    else:
        print_info("Nothing to remove")

    for name in summary.skipped:
        print_warning(f"Skipped {name}: in use by another process")


@cache_app.command("purge")
def cache_purge(
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation prompt",
    ),
):
    """Remove all cached repositories and checkouts."""
    context = load_context()

    if not yes:
        confirm = typer.confirm(
            f"Remove everything under {context.paths.root}?",
            default=False,
        )
        if not confirm:
            print_info("Cancelled")
            return

    try:
        summary = EvictionPolicy(context).purge()
    except SkillCacheError as e:
        print_error(str(e))
        raise typer.Exit(1)

    print_success(
        f"Removed {summary.repos_removed} repositories, "
        f"{summary.checkouts_removed} checkouts "
        f"({format_size(summary.total_freed)} freed)"
    )
    for name in summary.skipped:
        print_warning(f"Skipped {name}: in use by another process")


if __name__ == "__main__":
    app()
