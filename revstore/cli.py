"""revstore CLI application with Typer."""

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer

from revstore import __version__
from revstore.bootstrap import ApplicationContainer, bootstrap_application
from revstore.config import get_settings, set_settings
from revstore.errors import CorruptRecordError, RevstoreError, ValidationError
from revstore.utils.cli_output import json_response

app = typer.Typer(
    name="revstore",
    help="Embedding-indexed append-only review store",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"revstore version {__version__}")
        raise typer.Exit()


def _fail(exc: Exception) -> typer.Exit:
    """Report ``exc`` on stderr and return the matching exit."""
    typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=2 if isinstance(exc, ValidationError) else 1)


def _open_container() -> ApplicationContainer:
    try:
        return bootstrap_application()
    except RevstoreError as exc:
        raise _fail(exc) from exc


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", help="Override data directory"),
    ] = None,
    backend: Annotated[
        str | None,
        typer.Option("--backend", help="Vector index backend: bruteforce or native"),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)"),
    ] = None,
) -> None:
    """revstore - store reviews and search them by embedding similarity."""
    # Update settings with CLI flags
    settings = get_settings()
    if data_dir:
        settings.data_dir = data_dir
    if backend:
        if backend not in {"bruteforce", "native"}:
            typer.secho(
                "Invalid backend. Choose from 'bruteforce' or 'native'.",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=2)
        settings.backend = backend  # type: ignore[assignment]
    if log_level:
        settings.log_level = log_level
    set_settings(settings)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("add")
def add_review(
    text: Annotated[str, typer.Argument(help="Review text")],
    rating: Annotated[int, typer.Option("--rating", "-r", help="Rating from 0 to 5")],
    category: Annotated[
        str | None,
        typer.Option("--category", "-c", help="Optional category"),
    ] = None,
    title: Annotated[
        str | None,
        typer.Option("--title", "-t", help="Optional title"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the stored record as JSON"),
    ] = False,
) -> None:
    """Store a single review."""
    container = _open_container()
    try:
        stored = container.store.insert(
            {"text": text, "rating": rating, "category": category, "title": title}
        )
    except RevstoreError as exc:
        raise _fail(exc) from exc
    finally:
        container.close()

    if json_output:
        typer.echo(json_response("stored_review", 1, review=stored.model_dump(mode="json")))
        return

    typer.secho(f"Stored review {stored.id} as vector {stored.vector_id}", fg=typer.colors.GREEN)


@app.command("bulk")
def bulk_add(
    source: Annotated[
        Path,
        typer.Argument(help="JSONL file (one review object per line) or JSON array"),
    ],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output stored records as JSON"),
    ] = False,
) -> None:
    """Store every review in a file as one batch; any invalid review rejects all."""
    try:
        reviews = _read_review_file(source)
    except (OSError, CorruptRecordError, ValueError) as exc:
        typer.secho(f"Error: cannot read {source}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    container = _open_container()
    try:
        stored = container.store.bulk_insert(reviews)
    except RevstoreError as exc:
        raise _fail(exc) from exc
    finally:
        container.close()

    if json_output:
        typer.echo(
            json_response(
                "stored_reviews",
                1,
                total=len(stored),
                reviews=[record.model_dump(mode="json") for record in stored],
            )
        )
        return

    typer.secho(
        f"Stored {len(stored)} reviews as vectors "
        f"{stored[0].vector_id}..{stored[-1].vector_id}",
        fg=typer.colors.GREEN,
    )


@app.command("search")
def search_reviews(
    query: Annotated[str, typer.Argument(help="Search query")],
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", help="Maximum results to return", min=0),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output results as JSON"),
    ] = False,
) -> None:
    """Search stored reviews by similarity to QUERY."""
    container = _open_container()
    try:
        hits = container.store.search(query, top_k=top_k)
    except RevstoreError as exc:
        raise _fail(exc) from exc
    finally:
        container.close()

    if json_output:
        typer.echo(
            json_response(
                "search_results",
                1,
                query=query,
                total_hits=len(hits),
                hits=[hit.model_dump(mode="json") for hit in hits],
            )
        )
        return

    if not hits:
        typer.secho("No results found", fg=typer.colors.YELLOW)
        return

    typer.secho(f"Found {len(hits)} results for '{query}':", fg=typer.colors.BLUE)
    for i, hit in enumerate(hits, 1):
        review = hit.review
        label = f" [{review.category}]" if review.category else ""
        heading = f"{review.title}: " if review.title else ""
        typer.echo(f"\n{i}. {heading}{review.text}{label} (rating {review.rating}, score {hit.score:.3f})")


@app.command("paths")
def show_paths(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the active index, metadata log and map log paths."""
    container = _open_container()
    try:
        paths = container.store.paths
    finally:
        container.close()

    if json_output:
        typer.echo(json_response("store_paths", 1, **paths.model_dump(mode="json")))
        return

    typer.echo(f"index:    {paths.index_path}")
    typer.echo(f"metadata: {paths.metadata_path}")
    typer.echo(f"map:      {paths.map_path}")


@app.command("stats")
def show_stats(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show vector and log counts for the active store."""
    container = _open_container()
    try:
        stats = container.store.stats()
    finally:
        container.close()

    if json_output:
        typer.echo(json_response("store_stats", 1, backend=container.settings.backend, **stats))
        return

    typer.echo(f"backend:          {container.settings.backend}")
    for key in ("vectors", "metadata_records", "map_entries", "next_vector_id", "dim"):
        typer.echo(f"{key + ':':<18}{stats[key]}")


@app.command("verify")
def verify_store() -> None:
    """Check that the vector count matches both log line counts."""
    container = _open_container()
    try:
        report = container.store.verify_alignment()
    finally:
        container.close()

    if report.ok:
        typer.secho(f"Store is aligned ({report.describe()})", fg=typer.colors.GREEN)
        return

    typer.secho(f"Store is misaligned: {report.describe()}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _read_review_file(source: Path) -> list[dict[str, Any]]:
    raw = source.read_text(encoding="utf-8")
    stripped = raw.strip()
    if stripped.startswith("["):
        payload = json.loads(stripped)
        if not isinstance(payload, list):
            raise ValueError("expected a JSON array of review objects")
        return payload

    reviews: list[dict[str, Any]] = []
    for line_num, line in enumerate(raw.splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        try:
            reviews.append(json.loads(line))
        except json.JSONDecodeError as exc:
            raise CorruptRecordError(str(source), line_num, line, str(exc)) from exc
    return reviews


if __name__ == "__main__":
    app()
