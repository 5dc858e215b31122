"""atomic-review CLI: queues, review sessions, backups and orphans."""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer

from atomic_review.application.config import AppConfig, resolve_config
from atomic_review.application.factory import Services, build_services
from atomic_review.domain.constants import DEFAULT_QUEUE_ID
from atomic_review.domain.errors import NotFoundError, QueueExistsError, SaveError
from atomic_review.domain.models import QueueOrder, Rating, SelectionCriteria
from atomic_review.domain.ports import Notifier

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="atomic-review: spaced-repetition review for a Markdown vault.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

queue_app = typer.Typer(help="Manage review queues.", no_args_is_help=True)
app.add_typer(queue_app, name="queue")

backup_app = typer.Typer(help="Inspect and restore data backups.", no_args_is_help=True)
app.add_typer(backup_app, name="backup")

orphans_app = typer.Typer(help="Cards whose notes went missing.", no_args_is_help=True)
app.add_typer(orphans_app, name="orphans")

config_app = typer.Typer(help="Show resolved configuration.", no_args_is_help=True)
app.add_typer(config_app, name="config")

settings_app = typer.Typer(help="Review settings stored with the data.", no_args_is_help=True)
app.add_typer(settings_app, name="settings")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

LOG_LEVELS = {0: logging.ERROR, 1: logging.WARNING, 2: logging.INFO}


class EchoNotifier(Notifier):
    """Prints notices to the terminal."""

    def notify(self, message: str, *, error: bool = False) -> None:
        if error:
            typer.secho(message, fg="red", err=True)
        else:
            typer.secho(message, fg="cyan")


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    vault: Annotated[
        Path | None,
        typer.Option("--vault", help="Vault root. Defaults to 'vault_root' in config, or CWD."),
    ] = None,
    data_dir: Annotated[
        Path | None, typer.Option("--data-dir", help="Where review data is stored.")
    ] = None,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
):
    """Global settings for atomic-review."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {"vault_root": vault, "data_dir": data_dir, "verbose": verbose}
    logging.getLogger().setLevel(LOG_LEVELS.get(verbose, logging.DEBUG))


def _config(ctx: typer.Context) -> AppConfig:
    overrides = (ctx.obj or {}).get("overrides", {})
    return resolve_config(overrides)


def _run(ctx: typer.Context, fn: Callable[[Services], Awaitable[T]]) -> T:
    """Build the services, run `fn`, and always force-save on the way out."""
    config = _config(ctx)

    async def run() -> T:
        services = await build_services(config, notifier=EchoNotifier())
        try:
            return await fn(services)
        finally:
            await services.store.force_save()

    try:
        return asyncio.run(run())
    except SaveError as e:
        typer.secho(f"Could not save review data: {e}", fg="red", err=True)
        raise typer.Exit(1) from e
    except (NotFoundError, QueueExistsError) as e:
        typer.secho(str(e), fg="red", err=True)
        raise typer.Exit(1) from e


# ---------------------------------------------------------------------------
# Queues
# ---------------------------------------------------------------------------


def _describe_criteria(criteria: SelectionCriteria) -> str:
    if criteria.type == "folder":
        return "folders: " + (", ".join(criteria.folders) or "(none)")
    if criteria.type == "tag":
        return "tags: " + (", ".join(f"#{t.lstrip('#')}" for t in criteria.tags) or "(none)")
    return "custom"


@queue_app.command("list")
def queue_list(ctx: typer.Context):
    """List queues with their cached stats."""

    async def run(s: Services):
        s.queues.get_default_queue()
        for q in s.queues.list_queues():
            stats = s.queues.get_stats(q.id)
            order = (q.order or s.store.settings.queue_order).value
            typer.echo(
                f"{q.id}  {q.name}  [{_describe_criteria(q.criteria)}]  order={order}  "
                f"total={stats.total_notes} new={stats.new_notes} due={stats.due_notes}"
            )

    _run(ctx, run)


@queue_app.command("create")
def queue_create(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Display name of the queue.")],
    folder: Annotated[
        list[str] | None, typer.Option("--folder", "-f", help="Folder to include (repeatable).")
    ] = None,
    tag: Annotated[
        list[str] | None, typer.Option("--tag", "-t", help="Tag to include (repeatable).")
    ] = None,
    order: Annotated[
        QueueOrder | None, typer.Option("--order", help="Ordering strategy for this queue.")
    ] = None,
):
    """Create a queue from folders or tags and sync it."""
    if folder and tag:
        typer.secho("Use either --folder or --tag, not both.", fg="yellow")
        raise typer.Exit(2)

    criteria = (
        SelectionCriteria(type="tag", tags=list(tag))
        if tag
        else SelectionCriteria(type="folder", folders=list(folder or []))
    )

    async def run(s: Services):
        queue = s.queues.create_queue(name, criteria, order=order)
        result = s.queues.sync(queue.id)
        typer.secho(f"Created queue {queue.id} with {len(result.added)} notes.", fg="green")

    _run(ctx, run)


@queue_app.command("sync")
def queue_sync(
    ctx: typer.Context,
    queue_id: Annotated[str, typer.Argument(help="Queue to sync.")] = DEFAULT_QUEUE_ID,
):
    """Add newly matching notes to a queue."""

    async def run(s: Services):
        if queue_id == DEFAULT_QUEUE_ID:
            result = s.queues.sync_default_queue()
        else:
            result = s.queues.sync(queue_id)
        typer.echo(
            f"Added {len(result.added)}, unchanged {result.unchanged}, "
            f"no longer matching {len(result.removed)}"
        )
        for path in result.removed:
            typer.echo(f"  - {path}")

    _run(ctx, run)


@queue_app.command("delete")
def queue_delete(
    ctx: typer.Context,
    queue_id: Annotated[str, typer.Argument(help="Queue to delete.")],
    remove_cards: Annotated[
        bool, typer.Option("--remove-cards", help="Also drop the queue's schedules.")
    ] = False,
):
    """Delete a queue."""

    async def run(s: Services):
        s.queues.delete_queue(queue_id, remove_cards=remove_cards)
        typer.secho(f"Deleted queue {queue_id}.", fg="green")

    _run(ctx, run)


@app.command()
def stats(
    ctx: typer.Context,
    queue_id: Annotated[str, typer.Argument(help="Queue to report on.")] = DEFAULT_QUEUE_ID,
):
    """Show counts for a queue."""

    async def run(s: Services):
        if queue_id == DEFAULT_QUEUE_ID:
            s.queues.get_default_queue()
        if s.queues.get_queue(queue_id) is None:
            typer.secho(f"Queue not found: {queue_id}", fg="red", err=True)
            raise typer.Exit(1)
        st = s.queues.get_stats(queue_id)
        typer.echo(f"Total:          {st.total_notes}")
        typer.echo(f"New:            {st.new_notes}")
        typer.echo(f"Due:            {s.queues.get_due_count(queue_id)}")
        typer.echo(f"Overdue:        {s.queues.get_overdue_count(queue_id)}")
        typer.echo(f"Reviewed today: {st.reviewed_today}")

    _run(ctx, run)


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------

REVIEW_PROMPT = "[1-4] rate, [s]kip, [b]ack, [u]ndo, [q]uit"


def _show_status(s: Services) -> None:
    sessions = s.sessions
    progress = sessions.progress()
    schedule = sessions.current_schedule()
    if progress is not None:
        typer.echo(f"[{progress.current}/{progress.total}]", nl=False)
    if schedule is not None:
        r = sessions.current_retrievability()
        typer.echo(
            f" state={schedule.state.label} reps={schedule.reps} lapses={schedule.lapses}"
            + (f" recall={r:.0%}" if r else "")
        )
    else:
        typer.echo("")

    if s.store.settings.show_predicted_intervals:
        preview = sessions.current_preview() or {}
        typer.echo(
            "  ".join(
                f"{int(rating)} {rating.label}: {p.interval_label}"
                for rating, p in preview.items()
            )
        )


@app.command()
def review(
    ctx: typer.Context,
    queue_id: Annotated[str, typer.Argument(help="Queue to review.")] = DEFAULT_QUEUE_ID,
):
    """Run an interactive review session. Resumes an interrupted one first."""

    async def run(s: Services):
        sessions = s.sessions
        if await sessions.resume():
            await sessions.bring_back()
        else:
            if queue_id == DEFAULT_QUEUE_ID:
                s.queues.sync_default_queue()
            if not await sessions.start(queue_id):
                return

        while sessions.is_active:
            _show_status(s)
            key = typer.prompt(REVIEW_PROMPT).strip().lower()
            if key in {str(int(r)) for r in Rating}:
                await sessions.rate(int(key))
            elif key == "s":
                await sessions.skip()
            elif key == "b":
                if not await sessions.go_back():
                    typer.echo("Already at the first note.")
            elif key == "u":
                await sessions.undo()
            elif key == "q":
                await sessions.end()
            else:
                typer.echo(f"Unknown key: {key!r}")

    _run(ctx, run)


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


@backup_app.command("list")
def backup_list(ctx: typer.Context):
    """List backups, newest first."""

    async def run(s: Services):
        backups = s.store.list_backups()
        if not backups:
            typer.echo("No backups.")
        for b in backups:
            cards = b.data.get("cards")
            count = len(cards) if isinstance(cards, dict) else "?"
            typer.echo(f"{b.id}  {b.timestamp.isoformat()}  cards={count}")

    _run(ctx, run)


@backup_app.command("create")
def backup_create(ctx: typer.Context):
    """Snapshot the current data now."""

    async def run(s: Services):
        entry = await s.store.create_backup()
        typer.secho(f"Created {entry.id}", fg="green")

    _run(ctx, run)


@backup_app.command("restore")
def backup_restore(
    ctx: typer.Context,
    backup_id: Annotated[str, typer.Argument(help="Backup to restore.")],
):
    """Replace the current data with a backup."""

    async def run(s: Services) -> bool:
        return await s.store.restore_from_backup(backup_id)

    if not _run(ctx, run):
        typer.secho(f"Could not restore {backup_id}.", fg="red", err=True)
        raise typer.Exit(1)
    typer.secho(f"Restored {backup_id}.", fg="green")


# ---------------------------------------------------------------------------
# Orphans
# ---------------------------------------------------------------------------


@orphans_app.command("list")
def orphans_list(
    ctx: typer.Context,
    matches: Annotated[
        bool, typer.Option("--matches/--no-matches", help="Suggest notes to relink to.")
    ] = True,
):
    """List pending orphans."""

    async def run(s: Services):
        pending = s.orphans.pending()
        if not pending:
            typer.echo("No orphans.")
            return
        notes = s.resolver.list_notes() if matches else []
        for o in pending:
            typer.echo(f"{o.id}  {o.original_path}  (detected {o.detected_at.date()})")
            for m in s.orphans.find_potential_matches(o, notes) if matches else []:
                typer.echo(f"    {m.confidence:.2f}  {m.path}  ({m.reason})")

    _run(ctx, run)


@orphans_app.command("scan")
def orphans_scan(ctx: typer.Context):
    """Find cards whose notes no longer exist."""

    async def run(s: Services):
        found = s.orphans.detect_orphans(s.resolver.exists)
        typer.echo(f"Found {len(found)} new orphan(s).")

    _run(ctx, run)


@orphans_app.command("relink")
def orphans_relink(
    ctx: typer.Context,
    orphan_id: Annotated[str, typer.Argument(help="Orphan to relink.")],
    path: Annotated[str, typer.Argument(help="Vault-relative path of the note.")],
):
    """Attach an orphan's scheduling data to another note."""

    async def run(s: Services) -> bool:
        return s.orphans.relink(orphan_id, path, exists=s.resolver.exists)

    if not _run(ctx, run):
        typer.secho(f"Could not relink {orphan_id} to {path}.", fg="red", err=True)
        raise typer.Exit(1)
    typer.secho(f"Relinked to {path}.", fg="green")


@orphans_app.command("remove")
def orphans_remove(
    ctx: typer.Context,
    orphan_id: Annotated[str, typer.Argument(help="Orphan to discard.")],
):
    """Discard an orphan's scheduling data."""

    async def run(s: Services) -> bool:
        removed = s.orphans.remove(orphan_id)
        s.orphans.cleanup()
        return removed

    if not _run(ctx, run):
        typer.secho(f"Orphan {orphan_id} is not pending.", fg="yellow")
        raise typer.Exit(1)
    typer.secho(f"Removed {orphan_id}.", fg="green")


# ---------------------------------------------------------------------------
# Config / settings
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))


@settings_app.command("show")
def settings_show(ctx: typer.Context):
    """Display the stored review settings."""

    async def run(s: Services) -> dict[str, Any]:
        return s.store.settings.model_dump(mode="json")

    typer.echo(json.dumps(_run(ctx, run), indent=2))


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@settings_app.command("set")
def settings_set(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="Setting name, e.g. new_cards_per_day.")],
    value: Annotated[str, typer.Argument(help="JSON value (bare words are strings).")],
):
    """Change one stored setting. Out-of-range numbers are clamped."""
    from pydantic import ValidationError

    async def run(s: Services) -> Any:
        if key not in type(s.store.settings).model_fields:
            typer.secho(f"Unknown setting: {key}", fg="red", err=True)
            raise typer.Exit(2)
        try:
            settings = s.update_settings(**{key: _parse_value(value)})
        except ValidationError as e:
            typer.secho(f"Invalid value for {key}: {e.errors()[0]['msg']}", fg="red", err=True)
            raise typer.Exit(2) from e
        return getattr(settings, key)

    result = _run(ctx, run)
    shown = result.model_dump(mode="json") if hasattr(result, "model_dump") else result
    typer.echo(f"{key} = {json.dumps(shown, default=str)}")


if __name__ == "__main__":
    app()
