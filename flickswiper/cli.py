"""Command-line interface for FlickSwiper."""

import asyncio
import logging
import sys
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from flickswiper.app import FlickSwiper
from flickswiper.config import Config, DEFAULT_CONFIG_PATH
from flickswiper.deeplink import parse_deep_link
from flickswiper.display_name import DisplayNameValidator
from flickswiper.errors import FlickSwiperError
from flickswiper.filters import ContentTypeFilter, DiscoveryMethod, FilterSet, Genre, SortOption
from flickswiper.models import ClassifiedItem, Direction, MediaItem, UserList
from flickswiper.smart_collections import build_collections
from flickswiper.store import StoreType, create_store, migrate_store


console = Console()


def format_age(dt: datetime) -> str:
    """Format a datetime as a human-readable age."""
    delta = datetime.utcnow() - dt
    seconds = delta.total_seconds()

    if seconds < 60:
        return "now"
    elif seconds < 3600:
        mins = int(seconds / 60)
        return f"{mins}m"
    elif seconds < 86400:
        hours = int(seconds / 3600)
        return f"{hours}h"
    elif seconds < 604800:
        days = int(seconds / 86400)
        return f"{days}d"
    else:
        weeks = int(seconds / 604800)
        return f"{weeks}w"


def _truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 3] + "..."


def _run(
    ctx: click.Context,
    action: Callable[[FlickSwiper], Awaitable[Any]],
    discover: bool = False,
    prepare: Callable[[FlickSwiper], None] | None = None,
) -> Any:
    """Build the core inside an event loop, run one action, and shut down."""
    config: Config = ctx.obj["config"]

    async def runner() -> Any:
        core = FlickSwiper.from_config(config)
        try:
            if prepare is not None:
                prepare(core)
            await core.start(discover=discover)
            return await action(core)
        finally:
            await core.close()

    try:
        return asyncio.run(runner())
    except FlickSwiperError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@click.group()
@click.version_option()
@click.option("--config", "config_path", default=DEFAULT_CONFIG_PATH, help="Config file path")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool) -> None:
    """FlickSwiper - swipe to build your movie and TV library."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )

    config = Config.load(config_path)
    if config.user_id is None:
        config.user_id = uuid.uuid4().hex
        config.save(config_path)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["config_path"] = config_path


# =============================================================================
# Discovery
# =============================================================================


def _print_card(item: MediaItem, remaining: int) -> None:
    year = item.release_year or "----"
    rating = f"{item.rating:.1f}" if item.rating is not None else "-"
    console.print()
    console.print(f"[bold]{item.title}[/bold] ({year}) [dim]{item.media_kind.display_name} | TMDB {rating}[/dim]")
    if item.overview:
        console.print(_truncate(item.overview, 300))
    console.print(f"[dim]{remaining} in queue | {item.unique_id}[/dim]")


@main.command("discover")
@click.option("--method", "method_name", default=None, help="Discovery method, e.g. 'Popular' or 'Netflix'")
@click.option(
    "--type", "content_type",
    type=click.Choice([c.name.lower() for c in ContentTypeFilter]),
    default="all",
)
@click.option("--genre", "genre_name", default=None, help="Genre name, e.g. 'comedy'")
@click.option("--sort", "sort_name", type=click.Choice([s.name.lower() for s in SortOption]), default="popular")
@click.option("--year-min", type=int, default=None)
@click.option("--year-max", type=int, default=None)
@click.pass_context
def discover(
    ctx: click.Context,
    method_name: str | None,
    content_type: str,
    genre_name: str | None,
    sort_name: str,
    year_min: int | None,
    year_max: int | None,
) -> None:
    """Swipe through candidates interactively."""
    config: Config = ctx.obj["config"]
    try:
        method = DiscoveryMethod.parse(method_name) if method_name else config.discovery.method
        genre = Genre[genre_name.upper().replace("-", "_")] if genre_name else None
    except (KeyError, ValueError) as e:
        console.print(f"[red]Invalid filter: {e}[/red]")
        sys.exit(1)

    filters = FilterSet(
        method=method,
        content_type=ContentTypeFilter[content_type.upper()],
        genre=genre,
        sort=SortOption[sort_name.upper()] if method.is_streaming_service else SortOption.POPULAR,
        year_min=year_min,
        year_max=year_max,
    )

    def prepare(core: FlickSwiper) -> None:
        core.require_session()
        core.queue.filters = filters

    async def loop(core: FlickSwiper) -> None:
        session = core.require_session()
        counts = {"seen": 0, "watchlist": 0, "skipped": 0}

        while True:
            item = session.queue.current
            if item is None:
                if session.queue.last_error:
                    console.print(f"[red]{session.queue.last_error}[/red]")
                else:
                    console.print("[dim]No more candidates for these filters.[/dim]")
                break

            _print_card(item, len(session.queue))
            choice = click.prompt(
                "[s]een, [w]atchlist, [k] skip, [u]ndo, [q]uit",
                type=click.Choice(["s", "w", "k", "u", "q"]),
                show_choices=False,
            )

            if choice == "q":
                break
            if choice == "u":
                undone = session.undo()
                if undone is None:
                    console.print("[yellow]Nothing to undo.[/yellow]")
                else:
                    console.print(f"[dim]Undid {undone.title}[/dim]")
                continue

            if choice == "s":
                result = await session.swipe_right(item)
                if result.changed:
                    counts["seen"] += 1
                    await session.wait_for_rating_prompt()
                    rating = click.prompt("Rate it 1-5 (0 to skip)", type=click.IntRange(0, 5), default=0)
                    if rating:
                        session.rate_pending(rating)
                    else:
                        session.cancel_rating_prompt()
            elif choice == "w":
                result = await session.swipe_up(item)
                if result.changed:
                    counts["watchlist"] += 1
            else:
                result = await session.swipe_left(item)
                if result.changed:
                    counts["skipped"] += 1

            if not result.changed:
                console.print(f"[dim]Kept as {result.item.direction.value}.[/dim]")

        console.print()
        console.print(
            f"[bold]Session:[/bold] {counts['seen']} seen, "
            f"{counts['watchlist']} watchlisted, {counts['skipped']} skipped"
        )

    _run(ctx, loop, discover=True, prepare=prepare)


@main.command("search")
@click.argument("query")
@click.option("--page", default=1)
@click.pass_context
def search(ctx: click.Context, query: str, page: int) -> None:
    """Search movies and TV shows."""

    async def action(core: FlickSwiper) -> None:
        core.require_session()
        results = await core.provider.search_multi(query, page)
        if not results:
            console.print("[dim]No results.[/dim]")
            return

        classified = core.library.all_classified_unique_ids()
        table = Table(show_header=True)
        table.add_column("ID", style="dim")
        table.add_column("Title")
        table.add_column("Year", width=4)
        table.add_column("In library")
        for item in results:
            table.add_row(
                item.unique_id,
                _truncate(item.title, 50),
                str(item.release_year or ""),
                "yes" if item.unique_id in classified else "",
            )
        console.print(table)

    _run(ctx, action)


# =============================================================================
# Library
# =============================================================================


def _library_table(items: list[ClassifiedItem]) -> Table:
    table = Table(show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Year", width=4)
    table.add_column("Status")
    table.add_column("Rating", justify="right")
    table.add_column("Platform")
    table.add_column("Age", width=4)

    colors = {Direction.SEEN: "green", Direction.WATCHLIST: "cyan", Direction.SKIPPED: "dim"}
    for item in items:
        color = colors[item.direction]
        table.add_row(
            item.unique_id,
            _truncate(item.title, 50),
            str(item.release_year or ""),
            f"[{color}]{item.direction.value}[/{color}]",
            "*" * (item.personal_rating or 0),
            item.source_platform or "",
            format_age(item.classified_at),
        )
    return table


@main.command("library")
@click.option("--direction", type=click.Choice([d.value for d in Direction]), default=None)
@click.option("--limit", default=50, help="Number of items to show")
@click.pass_context
def library(ctx: click.Context, direction: str | None, limit: int) -> None:
    """Show classified items, newest first."""

    async def action(core: FlickSwiper) -> None:
        items = core.library.items(Direction(direction) if direction else None, limit=limit)
        if not items:
            console.print("[dim]Library is empty. Use 'flickswiper discover' to start swiping.[/dim]")
            return
        console.print(_library_table(items))
        console.print(
            f"[dim]{core.library.count(Direction.SEEN)} seen, "
            f"{core.library.count(Direction.WATCHLIST)} watchlist, "
            f"{core.library.count(Direction.SKIPPED)} skipped[/dim]"
        )

    _run(ctx, action)


@main.command("collections")
@click.pass_context
def collections(ctx: click.Context) -> None:
    """Show smart collections built from seen items."""

    async def action(core: FlickSwiper) -> None:
        built = build_collections(core.library.items(Direction.SEEN))
        if not built:
            console.print("[dim]No collections yet. Mark a few items as seen first.[/dim]")
            return
        table = Table(show_header=True)
        table.add_column("Collection")
        table.add_column("Items", justify="right")
        for collection in built:
            table.add_row(collection.title, str(collection.count))
        console.print(table)

    _run(ctx, action)


@main.command("rate")
@click.argument("unique_id")
@click.argument("rating", type=click.IntRange(0, 5))
@click.pass_context
def rate(ctx: click.Context, unique_id: str, rating: int) -> None:
    """Set a personal rating (0 clears it)."""

    async def action(core: FlickSwiper) -> None:
        if rating == 0:
            item = core.library.clear_personal_rating(unique_id)
            console.print(f"[green]Cleared rating for {item.title}[/green]")
        else:
            item = core.library.set_personal_rating(unique_id, rating)
            console.print(f"[green]Rated {item.title} {rating}/5[/green]")

    _run(ctx, action)


@main.command("remove")
@click.argument("unique_id")
@click.pass_context
def remove(ctx: click.Context, unique_id: str) -> None:
    """Remove an item from the library and from every list."""

    async def action(core: FlickSwiper) -> None:
        if not core.library.remove(unique_id):
            console.print(f"[red]Not in library: {unique_id}[/red]")
            sys.exit(1)
        console.print(f"[green]Removed {unique_id}[/green]")

    _run(ctx, action)


@main.command("reset")
@click.option("--direction", type=click.Choice([d.value for d in Direction]), default=None)
@click.confirmation_option(prompt="This deletes library records. Continue?")
@click.pass_context
def reset(ctx: click.Context, direction: str | None) -> None:
    """Delete all records of a status (or everything)."""

    async def action(core: FlickSwiper) -> None:
        removed = core.library.reset(Direction(direction) if direction else None)
        console.print(f"[green]Removed {removed} records[/green]")

    _run(ctx, action)


# =============================================================================
# Lists
# =============================================================================


def _resolve_list(core: FlickSwiper, ref: str) -> UserList:
    """Find a list by ID or exact name."""
    user_list = core.lists.get_list(ref)
    if user_list:
        return user_list
    matches = [l for l in core.lists.lists() if l.name == ref]
    if len(matches) == 1:
        return matches[0]
    console.print(f"[red]List not found: {ref}[/red]")
    sys.exit(1)


@main.group("lists", invoke_without_command=True)
@click.pass_context
def lists_group(ctx: click.Context) -> None:
    """Manage your lists."""
    if ctx.invoked_subcommand is not None:
        return

    async def action(core: FlickSwiper) -> None:
        all_lists = core.lists.lists()
        if not all_lists:
            console.print("[dim]No lists yet. Use 'flickswiper lists create <name>'.[/dim]")
            return
        table = Table(show_header=True)
        table.add_column("ID", style="dim")
        table.add_column("Name")
        table.add_column("Items", justify="right")
        table.add_column("Published")
        for user_list in all_lists:
            published = "[green]yes[/green]" if user_list.is_published else ""
            table.add_row(user_list.id, user_list.name, str(core.lists.count(user_list.id)), published)
        console.print(table)

    _run(ctx, action)


@lists_group.command("create")
@click.argument("name")
@click.pass_context
def lists_create(ctx: click.Context, name: str) -> None:
    """Create a list."""

    async def action(core: FlickSwiper) -> None:
        user_list = core.lists.create_list(name)
        console.print(f"[green]Created list: {user_list.name} ({user_list.id})[/green]")

    _run(ctx, action)


@lists_group.command("rename")
@click.argument("list_ref")
@click.argument("name")
@click.pass_context
def lists_rename(ctx: click.Context, list_ref: str, name: str) -> None:
    """Rename a list."""

    async def action(core: FlickSwiper) -> None:
        user_list = core.lists.rename_list(_resolve_list(core, list_ref).id, name)
        console.print(f"[green]Renamed to {user_list.name}[/green]")

    _run(ctx, action)


@lists_group.command("delete")
@click.argument("list_ref")
@click.confirmation_option(prompt="Delete this list?")
@click.pass_context
def lists_delete(ctx: click.Context, list_ref: str) -> None:
    """Delete a list and its entries."""

    async def action(core: FlickSwiper) -> None:
        user_list = _resolve_list(core, list_ref)
        core.lists.delete_list(user_list.id)
        console.print(f"[green]Deleted list: {user_list.name}[/green]")

    _run(ctx, action)


@lists_group.command("show")
@click.argument("list_ref")
@click.pass_context
def lists_show(ctx: click.Context, list_ref: str) -> None:
    """Show the items of a list."""

    async def action(core: FlickSwiper) -> None:
        user_list = _resolve_list(core, list_ref)
        items = core.lists.list_items(user_list.id)
        console.print(f"[bold]{user_list.name}[/bold]")
        if user_list.is_published and user_list.remote_doc_id:
            console.print(f"[dim]Published, last synced {format_age(user_list.last_synced_at)} ago[/dim]")
        if not items:
            console.print("[dim]Empty list.[/dim]")
            return
        console.print(_library_table(items))

    _run(ctx, action)


@lists_group.command("add")
@click.argument("list_ref")
@click.argument("unique_ids", nargs=-1, required=True)
@click.pass_context
def lists_add(ctx: click.Context, list_ref: str, unique_ids: tuple[str, ...]) -> None:
    """Add library items to a list."""

    async def action(core: FlickSwiper) -> None:
        user_list = _resolve_list(core, list_ref)
        if len(unique_ids) == 1:
            added = int(core.lists.add_membership(user_list.id, unique_ids[0]))
        else:
            added = core.lists.add_many(user_list.id, list(unique_ids))
        console.print(f"[green]Added {added} items to {user_list.name}[/green]")

    _run(ctx, action)


@lists_group.command("remove")
@click.argument("list_ref")
@click.argument("unique_id")
@click.pass_context
def lists_remove(ctx: click.Context, list_ref: str, unique_id: str) -> None:
    """Remove an item from a list."""

    async def action(core: FlickSwiper) -> None:
        user_list = _resolve_list(core, list_ref)
        if core.lists.remove_membership(user_list.id, unique_id):
            console.print(f"[green]Removed {unique_id} from {user_list.name}[/green]")
        else:
            console.print(f"[yellow]{unique_id} is not in {user_list.name}[/yellow]")

    _run(ctx, action)


@lists_group.command("publish")
@click.argument("list_ref")
@click.option("--name", "display_name", default=None, help="Display name shown to followers")
@click.pass_context
def lists_publish(ctx: click.Context, list_ref: str, display_name: str | None) -> None:
    """Publish a list and print its share link."""
    config: Config = ctx.obj["config"]
    if display_name:
        config.display_name = display_name
        config.save(ctx.obj["config_path"])

    async def action(core: FlickSwiper) -> None:
        user_list = _resolve_list(core, list_ref)
        name = DisplayNameValidator.default_for(config.display_name)
        url = await core.publisher.publish(user_list.id, core.user_id, name)
        console.print(f"[green]Published {user_list.name}[/green]")
        console.print(url)

    _run(ctx, action)


@lists_group.command("unpublish")
@click.argument("list_ref")
@click.pass_context
def lists_unpublish(ctx: click.Context, list_ref: str) -> None:
    """Stop sharing a list."""

    async def action(core: FlickSwiper) -> None:
        user_list = _resolve_list(core, list_ref)
        if await core.publisher.unpublish(user_list.id):
            console.print(f"[green]Unpublished {user_list.name}[/green]")
        else:
            console.print(f"[yellow]{user_list.name} is not published[/yellow]")

    _run(ctx, action)


# =============================================================================
# Following
# =============================================================================


@main.command("follow")
@click.argument("link")
@click.pass_context
def follow(ctx: click.Context, link: str) -> None:
    """Follow a shared list by link or document ID."""
    doc_id = parse_deep_link(link) if link.startswith("http") else link
    if not doc_id:
        console.print(f"[red]Not a FlickSwiper list link: {link}[/red]")
        sys.exit(1)

    async def action(core: FlickSwiper) -> None:
        followed = await core.followed.follow(doc_id, core.user_id)
        console.print(
            f"[green]Following {followed.name} by {followed.owner_display_name} "
            f"({followed.item_count} items)[/green]"
        )

    _run(ctx, action)


@main.command("unfollow")
@click.argument("doc_id")
@click.pass_context
def unfollow(ctx: click.Context, doc_id: str) -> None:
    """Stop following a list."""

    async def action(core: FlickSwiper) -> None:
        if await core.followed.unfollow(doc_id, core.user_id):
            console.print(f"[green]Unfollowed {doc_id}[/green]")
        else:
            console.print(f"[yellow]Not following {doc_id}[/yellow]")

    _run(ctx, action)


@main.command("following")
@click.argument("doc_id", required=False)
@click.pass_context
def following(ctx: click.Context, doc_id: str | None) -> None:
    """Show followed lists, or the items of one."""

    async def action(core: FlickSwiper) -> None:
        await core.followed.wait_idle()

        if doc_id:
            items = core.followed.items(doc_id)
            if not items:
                console.print("[dim]No items.[/dim]")
                return
            table = Table(show_header=True)
            table.add_column("#", style="dim", width=3)
            table.add_column("Title")
            table.add_column("Type")
            for i, item in enumerate(items, 1):
                table.add_row(str(i), item.title, item.media_kind.display_name)
            console.print(table)
            return

        followed_lists = core.followed.followed_lists()
        if not followed_lists:
            console.print("[dim]Not following any lists. Use 'flickswiper follow <link>'.[/dim]")
            return
        table = Table(show_header=True)
        table.add_column("ID", style="dim")
        table.add_column("Name")
        table.add_column("Owner")
        table.add_column("Items", justify="right")
        table.add_column("Status")
        for f in followed_lists:
            status = "[green]active[/green]" if f.is_active else "[yellow]unavailable[/yellow]"
            table.add_row(f.remote_doc_id, f.name, f.owner_display_name, str(f.item_count), status)
        console.print(table)

    _run(ctx, action)


# =============================================================================
# Maintenance
# =============================================================================


@main.group("db")
def db() -> None:
    """Database maintenance."""
    pass


@db.command("migrate")
@click.option("--to-type", type=click.Choice([t.value for t in StoreType]), required=True)
@click.option("--to-path", required=True, help="Target database file or data directory")
@click.option("--switch", is_flag=True, help="Point the config at the new store afterwards")
@click.pass_context
def db_migrate(ctx: click.Context, to_type: str, to_path: str, switch: bool) -> None:
    """Copy all data into another store backend."""
    config: Config = ctx.obj["config"]
    try:
        with config.create_store() as source, create_store(StoreType(to_type), to_path) as target:
            counts = migrate_store(source, target)
    except FlickSwiperError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(
        f"[green]Migrated {counts.classified} items, {counts.lists} lists, "
        f"{counts.entries} entries, {counts.followed} followed lists[/green]"
    )
    if switch:
        config.store_type = StoreType(to_type)
        config.store_path = to_path
        config.save(ctx.obj["config_path"])
        console.print(f"[dim]Config now uses {to_type} store at {to_path}[/dim]")


@main.command("serve")
@click.option("--host", default="127.0.0.1")
@click.option("--port", default=8000)
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the HTTP API."""
    import uvicorn

    console.print(f"[dim]Serving on http://{host}:{port}[/dim]")
    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    main()
