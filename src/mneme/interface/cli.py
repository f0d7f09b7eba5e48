"""mneme CLI: scheduling preview, reviews, interactive study, decks and config."""

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Annotated, Any

import typer

from mneme.application.config import AppConfig, resolve_config
from mneme.application.factory import (
    build_review_service,
    build_session_manager,
    get_study_repository,
)
from mneme.application.scheduling.scheduler import compute_next_state, normalize_state
from mneme.application.study.deck_tree import build_deck_tree
from mneme.application.study.session_manager import SessionState
from mneme.domain.errors import MnemeError, ValidationError
from mneme.domain.scheduling.models import CardScheduleState, RatingScale
from mneme.domain.study.models import Flashcard
from mneme.infrastructure.importers.yaml_import import import_decks, load_deck_document

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="mneme: SM-2 spaced-repetition scheduler and study sessions.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

session_app = typer.Typer(help="Inspect or close study sessions.", no_args_is_help=True)
app.add_typer(session_app, name="session")

deck_app = typer.Typer(help="Import and browse decks.", no_args_is_help=True)
app.add_typer(deck_app, name="deck")

config_app = typer.Typer(help="Manage mneme configuration.")
app.add_typer(config_app, name="config")


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 0,
    backend: Annotated[
        str | None, typer.Option(help="Storage backend: sqlite or memory.")
    ] = None,
    database: Annotated[
        Path | None, typer.Option("--database", "--db", help="SQLite database file.")
    ] = None,
):
    """Global settings for mneme."""
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {"backend": backend, "database_path": database}
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG if verbose > 1 else logging.INFO)


def _config(ctx: typer.Context) -> AppConfig:
    overrides = (ctx.obj or {}).get("overrides", {})
    try:
        return resolve_config(overrides)
    except ValueError as e:
        typer.secho(f"Invalid configuration: {e}", fg="red", err=True)
        raise typer.Exit(2) from e


def _fail(e: MnemeError) -> typer.Exit:
    typer.secho(f"{type(e).__name__}: {e}", fg="red", err=True)
    return typer.Exit(1)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, RatingScale):
        return value.value
    return value


def _card_dict(card: Flashcard) -> dict[str, Any]:
    return _jsonable(asdict(card))


def _state_dict(state: CardScheduleState) -> dict[str, Any]:
    return _jsonable(asdict(state))


# ---------------------------------------------------------------------------
# Root commands
# ---------------------------------------------------------------------------


@app.command()
def schedule(
    rating: Annotated[int, typer.Argument(help="Rating on the chosen scale.")],
    scale: Annotated[
        RatingScale, typer.Option(help="quality (0-5) or button (1-4).")
    ] = RatingScale.QUALITY,
    interval: Annotated[int, typer.Option(help="Current interval in days.")] = 0,
    ease: Annotated[int, typer.Option(help="Current ease factor x100.")] = 250,
    reps: Annotated[int, typer.Option(help="Current repetition count.")] = 0,
):
    """[bold]Preview[/bold] the next state for a rating without touching storage."""
    try:
        state = compute_next_state(
            rating, normalize_state(interval, ease, reps), scale=scale
        )
    except MnemeError as e:
        raise _fail(e) from e
    typer.echo(json.dumps(_state_dict(state), indent=2))


@app.command()
def review(
    ctx: typer.Context,
    card_id: Annotated[int, typer.Argument(help="Card to review.")],
    quality: Annotated[int, typer.Argument(help="SM-2 quality, 0-5.")],
    user: Annotated[int | None, typer.Option(help="Reviewing user.")] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Show the new schedule without saving it.")
    ] = False,
):
    """Review a single card outside any study session."""
    config = _config(ctx)
    service = build_review_service(config)

    try:
        if dry_run:
            state = asyncio.run(service.preview(card_id, quality, user_id=user))
            typer.echo(json.dumps(_state_dict(state), indent=2))
            return
        card = asyncio.run(service.review_card(card_id, quality, user_id=user))
    except MnemeError as e:
        raise _fail(e) from e
    typer.echo(json.dumps(_card_dict(card), indent=2))


@app.command()
def study(
    ctx: typer.Context,
    deck_id: Annotated[int, typer.Argument(help="Deck to study (subdecks included).")],
    user: Annotated[int | None, typer.Option(help="Studying user.")] = None,
):
    """[bold green]Study[/bold green] a deck interactively, one card at a time."""
    config = _config(ctx)
    user_id = user if user is not None else config.default_user_id
    manager = build_session_manager(config)

    async def run():
        snap = await manager.get_or_start(user_id, deck_id)
        if snap.state is SessionState.NOTHING_TO_STUDY:
            typer.secho("All done! No cards due for review right now.", fg="green")
            return

        session = snap.session
        typer.echo(
            f"Session {session.id}: {len(snap.new_cards)} new, "
            f"{len(snap.due_cards)} due ({snap.remaining} in queue)"
        )
        card = snap.current_card
        position = snap.position
        while card is not None:
            typer.echo("")
            typer.secho(f"Q: {card.front}", bold=True)
            typer.prompt("Press Enter to show the answer", default="", show_default=False)
            typer.echo(f"A: {card.back}")

            while True:
                rating = typer.prompt("Rate 1=Again 2=Hard 3=Good 4=Easy", type=int)
                try:
                    outcome = await manager.submit_rating(
                        user_id, deck_id, card.id, rating, expected_position=position
                    )
                    break
                except ValidationError as e:
                    typer.secho(str(e), fg="yellow")

            progress = f"{outcome.session.cards_reviewed}/{outcome.session.cards_total}"
            if outcome.requeued:
                typer.secho(f"Card will come back shortly. [{progress}]", fg="yellow")
            else:
                typer.secho(
                    f"Next review in {outcome.card.schedule.interval} day(s). [{progress}]",
                    fg="green",
                )
            if outcome.completed:
                typer.secho("Session complete!", fg="green", bold=True)
            card = outcome.next_card
            position = outcome.position

    try:
        asyncio.run(run())
    except MnemeError as e:
        raise _fail(e) from e


@app.command()
def serve(
    ctx: typer.Context,
    host: Annotated[str | None, typer.Option(help="Host to bind the server to.")] = None,
    port: Annotated[int | None, typer.Option(help="Port to bind the server to.")] = None,
    reload: Annotated[bool, typer.Option(help="Enable auto-reload.")] = False,
):
    """Run the HTTP API."""
    import uvicorn

    config = _config(ctx)
    host = host or config.host
    port = port or config.port
    logger.info(f"Starting mneme server on {host}:{port} ({config.backend} backend)")
    uvicorn.run("mneme.server:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Session subgroup
# ---------------------------------------------------------------------------


@session_app.command("show")
def session_show(
    ctx: typer.Context,
    deck_id: Annotated[int, typer.Argument(help="Deck whose session to show.")],
    user: Annotated[int | None, typer.Option(help="Session owner.")] = None,
):
    """Show the active session for a deck, if any."""
    config = _config(ctx)
    repo = get_study_repository(config)
    user_id = user if user is not None else config.default_user_id

    try:
        session = asyncio.run(repo.get_active_session(user_id, deck_id))
    except MnemeError as e:
        raise _fail(e) from e

    if session is None:
        typer.secho(f"No active session for deck {deck_id}.", fg="yellow")
        raise typer.Exit(1)
    typer.echo(json.dumps(_jsonable(asdict(session)), indent=2))


@session_app.command("abandon")
def session_abandon(
    ctx: typer.Context,
    deck_id: Annotated[int, typer.Argument(help="Deck whose session to close.")],
    user: Annotated[int | None, typer.Option(help="Session owner.")] = None,
):
    """Close a deck's active session without completing it."""
    config = _config(ctx)
    manager = build_session_manager(config)
    user_id = user if user is not None else config.default_user_id

    try:
        closed = asyncio.run(manager.abandon(user_id, deck_id))
    except MnemeError as e:
        raise _fail(e) from e

    if closed is None:
        typer.secho(f"No active session for deck {deck_id}.", fg="yellow")
        return
    typer.secho(f"Abandoned session {closed.id}.", fg="green")


# ---------------------------------------------------------------------------
# Deck subgroup
# ---------------------------------------------------------------------------


@deck_app.command("import")
def deck_import(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="YAML deck document.")],
    category: Annotated[
        int | None, typer.Option(help="Category id (overrides the document).")
    ] = None,
    parent: Annotated[int | None, typer.Option(help="Attach under this deck.")] = None,
    user: Annotated[int | None, typer.Option(help="Owner of the new decks.")] = None,
):
    """Create decks and cards from a YAML document."""
    config = _config(ctx)
    repo = get_study_repository(config)
    user_id = user if user is not None else config.default_user_id

    try:
        doc = load_deck_document(path)
        summary = asyncio.run(
            import_decks(repo, doc, user_id, category_id=category, parent_deck_id=parent)
        )
    except MnemeError as e:
        raise _fail(e) from e

    typer.secho(
        f"Imported {summary.decks_created} decks and {summary.cards_created} cards.",
        fg="green",
    )
    for deck in summary.decks:
        typer.echo(f"  [{deck.id}] {deck.name}")


@deck_app.command("tree")
def deck_tree(
    ctx: typer.Context,
    category: Annotated[int, typer.Argument(help="Category id.")],
    user: Annotated[int | None, typer.Option(help="Deck owner.")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
):
    """Show a category's decks as a tree."""
    config = _config(ctx)
    repo = get_study_repository(config)
    user_id = user if user is not None else config.default_user_id

    try:
        decks = asyncio.run(repo.list_decks(user_id, category))
    except MnemeError as e:
        raise _fail(e) from e

    roots = build_deck_tree(decks)
    if json_output:
        typer.echo(json.dumps([r.to_dict() for r in roots], indent=2))
        return
    if not roots:
        typer.secho(f"No decks in category {category}.", fg="yellow")
        return

    def show(node, depth: int) -> None:
        typer.echo(f"{'  ' * depth}[{node.deck.id}] {node.deck.name}")
        for child in node.subdecks:
            show(child, depth + 1)

    for root in roots:
        show(root, 0)


# ---------------------------------------------------------------------------
# Config subgroup
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display final resolved configuration."""
    config = _config(ctx)
    d = {k: str(v) if isinstance(v, Path) else v for k, v in config.model_dump().items()}
    typer.echo(json.dumps(d, indent=2))

