"""``wani`` command line entry point."""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Optional

import click
from sqlalchemy import Engine

from . import cache_info, reviews
from .answers import format_text
from .cache_info import ResourceClass
from .client import WaniClient
from .codec import KANJI, RADICALS, read_all
from .config import WaniConfig, load_config
from .db import DEBUG_MODE, get_engine, init_db, is_db_initialized, reset_cache
from .errors import WaniError
from .report import due_lessons, due_reviews
from .reviews import new_review, submit_pending
from .sync import SyncReport, sync_all

logger = logging.getLogger(__name__)


@dataclass
class State:
    config: WaniConfig
    _engine: Optional[Engine] = None

    def engine(self) -> Engine:
        """The cache engine, creating the tables on first use."""
        if self._engine is None:
            self._engine = get_engine(self.config.db_path)
            if not is_db_initialized(self._engine):
                init_db(self._engine)
        return self._engine

    def client(self) -> WaniClient:
        return WaniClient(self.config.require_auth(), self.config.api_base, self.config.timeout)


class WaniGroup(click.Group):
    """Turns cache errors into a one-line message and exit status 1."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except WaniError as e:
            logger.debug("Command failed", exc_info=True)
            raise click.ClickException(str(e)) from e


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _echo_sync(report: SyncReport) -> None:
    for resource_class, result in report.results.items():
        line = f"{resource_class.name.lower():<12} {result.outcome.value}"
        if result.written:
            line += f", {result.written} record(s) over {result.pages} page(s)"
        if result.error:
            line += f" ({result.error})"
        click.echo(line)


def _run_sync(state: State, ignore_cache: bool) -> None:
    client = state.client()
    with state.engine().connect() as conn:
        report = sync_all(conn, client, ignore_cache=ignore_cache)
        _echo_sync(report)
        submitted = submit_pending(conn, client)
    if submitted.submitted:
        click.echo(f"Submitted {len(submitted.submitted)} review(s).")
    if submitted.remaining:
        click.echo(f"{submitted.remaining} review(s) still pending.")
    if submitted.error:
        click.echo(f"Last submission error: {submitted.error}")


@click.group(cls=WaniGroup, invoke_without_command=True)
@click.option("--auth", default=None, help="WaniKani personal access token")
@click.option("--datapath", default=None, type=click.Path(file_okay=False), help="Directory holding the cache")
@click.option("--configfile", default=None, type=click.Path(dir_okay=False), help="Config file with 'key: value' lines")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, auth: Optional[str], datapath: Optional[str],
        configfile: Optional[str], verbose: bool) -> None:
    """Local WaniKani cache: sync, summarize and queue reviews offline."""
    logging.basicConfig(
        level=logging.DEBUG if verbose or DEBUG_MODE else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )
    ctx.obj = State(load_config(auth=auth, data_dir=datapath, config_file=configfile))
    if ctx.invoked_subcommand is None:
        ctx.invoke(summary)


@cli.command()
@click.option("--live", is_flag=True, help="Ask the API's /summary instead of the cache")
@click.pass_obj
def summary(state: State, live: bool) -> None:
    """Lessons and reviews available now."""
    now = _now()
    if live:
        report = state.client().summary()
        click.echo(f"Lessons: {report.lessons_available(now)}")
        click.echo(f"Reviews: {report.reviews_available(now)}")
        if report.next_reviews_at:
            click.echo(f"Next reviews at: {report.next_reviews_at.isoformat()}")
        return
    with state.engine().connect() as conn:
        lessons = due_lessons(conn, now)
        due = due_reviews(conn, now)
        pending = len(reviews.pending_reviews(conn))
    click.echo(f"Lessons: {lessons}")
    click.echo(f"Reviews: {due}")
    if pending:
        click.echo(f"Pending submission: {pending}")


cli.add_command(summary, name="s")


@cli.command()
@click.pass_obj
def init(state: State) -> None:
    """Create the cache file and its tables."""
    engine = get_engine(state.config.db_path)
    init_db(engine)
    click.echo(f"Cache initialized at {state.config.db_path}")


@cli.command()
@click.pass_obj
def sync(state: State) -> None:
    """Fetch what changed since the last sync, then submit pending reviews."""
    _run_sync(state, ignore_cache=False)


@cli.command("force-sync")
@click.pass_obj
def force_sync(state: State) -> None:
    """Full sync, ignoring stored watermarks."""
    _run_sync(state, ignore_cache=True)


@cli.command("cache-info")
@click.pass_obj
def show_cache_info(state: State) -> None:
    """Print the stored watermark of every resource class."""
    with state.engine().connect() as conn:
        infos = cache_info.get_all(conn)
    for resource_class in ResourceClass:
        info = infos.get(resource_class, cache_info.EMPTY)
        updated_after = info.updated_after.isoformat() if info.updated_after else "-"
        click.echo(f"{resource_class.name.lower():<12} etag={info.etag or '-'} "
                   f"last_modified={info.last_modified or '-'} updated_after={updated_after}")


@cli.command()
@click.option("--purge", is_flag=True, help="Also delete cached subjects, assignments and user")
@click.pass_obj
def reset(state: State, purge: bool) -> None:
    """Forget every watermark; the next sync fetches everything."""
    reset_cache(state.engine(), purge=purge)
    click.echo("Cache reset." + (" Cached resources purged." if purge else ""))


@cli.command("query-radicals")
@click.pass_obj
def query_radicals(state: State) -> None:
    """List cached radicals."""
    with state.engine().connect() as conn:
        radicals = read_all(conn, RADICALS)
    for radical in sorted(radicals, key=lambda r: (r.level, r.lesson_position)):
        meaning = next((m.meaning for m in radical.meanings if m.primary), "")
        click.echo(f"{radical.id:>6} L{radical.level:<3} {radical.characters or radical.slug} {meaning}")
    click.echo(f"{len(radicals)} radical(s)")


@cli.command("query-kanji")
@click.option("--mnemonics", is_flag=True, help="Also print the meaning mnemonic")
@click.pass_obj
def query_kanji(state: State, mnemonics: bool) -> None:
    """List cached kanji."""
    with state.engine().connect() as conn:
        kanji = read_all(conn, KANJI)
    for item in sorted(kanji, key=lambda k: (k.level, k.lesson_position)):
        meaning = next((m.meaning for m in item.meanings if m.primary), "")
        reading = next((r.reading for r in item.readings if r.primary), "")
        click.echo(f"{item.id:>6} L{item.level:<3} {item.characters} {reading} {meaning}")
        if mnemonics:
            click.echo(f"       {format_text(item.meaning_mnemonic)}")
    click.echo(f"{len(kanji)} kanji")


@cli.command()
@click.argument("assignment_id", type=int)
@click.option("--meaning", "incorrect_meaning", default=0, type=click.IntRange(min=0),
              help="Incorrect meaning answers")
@click.option("--reading", "incorrect_reading", default=0, type=click.IntRange(min=0),
              help="Incorrect reading answers")
@click.pass_obj
def review(state: State, assignment_id: int, incorrect_meaning: int, incorrect_reading: int) -> None:
    """Queue a finished review for submission on the next sync."""
    with state.engine().begin() as conn:
        pk = reviews.enqueue(conn, new_review(assignment_id, incorrect_meaning, incorrect_reading))
    click.echo(f"Review for assignment {assignment_id} queued (#{pk}).")


@cli.command()
@click.pass_obj
def pending(state: State) -> None:
    """List reviews waiting to be submitted."""
    with state.engine().connect() as conn:
        queue = reviews.pending_reviews(conn)
    if not queue:
        click.echo("No pending reviews.")
        return
    for item in queue:
        click.echo(f"assignment {item.assignment_id}: {item.incorrect_meaning_answers} meaning / "
                   f"{item.incorrect_reading_answers} reading incorrect, {item.status.wire_name}, "
                   f"queued {item.created_at.isoformat()}")


@cli.command()
@click.argument("assignment_id", type=int)
@click.pass_obj
def discard(state: State, assignment_id: int) -> None:
    """Drop the queued review(s) for an assignment; submitted ones are kept."""
    with state.engine().begin() as conn:
        removed = reviews.remove(conn, assignment_id)
    if removed:
        click.echo(f"Removed {removed} pending review(s) for assignment {assignment_id}.")
    else:
        click.echo(f"No pending reviews for assignment {assignment_id}.")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
