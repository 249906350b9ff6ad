import json
import sys
from contextlib import contextmanager
from typing import Annotated, Any, Iterator, Optional

from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from typer import Argument, Exit, Option, Typer

from .config import PipelineSettings, SearchSettings, resolve_db_path
from .embeddings import EmbeddingProvider
from .errors import FeeCatalogError, validation_message
from .models import SearchRequest, SmartSearchRequest
from .search import parse_search_filters, supported_filter_syntax
from .server import CatalogContext
from .storage import DuckDBStorage

app = Typer(help="Search and maintain a medical fee-schedule catalog.")
console = Console()

DbPathOption = Annotated[
    Optional[str],
    Option("--db-path", help="DuckDB file (defaults to FEE_CATALOG_DB_PATH or ~/.fee_catalog)."),
]


@app.callback()
def configure(
    verbose: Annotated[bool, Option("--verbose", "-v", help="Log debug output.")] = False,
) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


def _embedding_provider() -> EmbeddingProvider | None:
    return EmbeddingProvider.from_env()


@contextmanager
def _open_context(db_path: str | None) -> Iterator[CatalogContext]:
    storage = DuckDBStorage(resolve_db_path(db_path))
    context = CatalogContext.build(
        storage,
        embedding_provider=_embedding_provider(),
        search_settings=SearchSettings.from_env(),
        pipeline_settings=PipelineSettings.from_env(),
        autostart=False,
    )
    try:
        yield context
    except FeeCatalogError as exc:
        console.print(f"[bold red]Error:[/] {exc.message}")
        raise Exit(code=1) from exc
    except ValidationError as exc:
        console.print(f"[bold red]Error:[/] {validation_message(exc)}")
        raise Exit(code=1) from exc
    finally:
        context.close()


def _print_json(data: Any, title: str, style: str = "bold green") -> None:
    console.print(
        Panel(
            json.dumps(data, indent=2, default=str),
            title=title,
            title_align="left",
            border_style=style,
        )
    )


def _results_table(title: str, results: list[Any]) -> Table:
    table = Table(title=title, title_justify="left")
    table.add_column("Item", justify="right", style="bold")
    table.add_column("Description")
    table.add_column("Fee", justify="right")
    table.add_column("Type")
    table.add_column("Score", justify="right")
    table.add_column("Match")
    for result in results:
        item = result.item
        fee = f"${item.schedule_fee:,.2f}" if item.schedule_fee is not None else "-"
        description = item.description
        if len(description) > 90:
            description = description[:87] + "..."
        table.add_row(
            str(item.item_number),
            description,
            fee,
            item.provider_type or "-",
            f"{result.relevance_score:.3f}",
            result.match_type,
        )
    return table


@app.command()
def search(
    query: Annotated[str, Argument(help="Free text or an item number.")],
    mode: Annotated[str, Option("--mode", "-m", help="text, semantic or hybrid.")] = "hybrid",
    limit: Annotated[int, Option("--limit", "-n")] = 20,
    offset: Annotated[int, Option("--offset")] = 0,
    sort_by: Annotated[
        str, Option("--sort-by", help="relevance, fee_asc, fee_desc or item_number.")
    ] = "relevance",
    filters: Annotated[
        Optional[str], Option("--filter", "-f", help=supported_filter_syntax())
    ] = None,
    smart: Annotated[
        bool, Option("--smart", help="Split results into exact and related matches.")
    ] = False,
    as_json: Annotated[bool, Option("--json", help="Print the raw response.")] = False,
    db_path: DbPathOption = None,
) -> None:
    """Search the catalog."""
    with _open_context(db_path) as context:
        parsed_filters = parse_search_filters(filters)
        payload = {
            "query": query,
            "mode": mode,
            "limit": limit,
            "offset": offset,
            "sort_by": sort_by,
            "filters": parsed_filters,
        }
        if smart:
            response = context.search.smart_search(SmartSearchRequest(**payload))
            if as_json:
                _print_json(response.to_dict(), "Smart search")
                return
            console.print(
                f"Intent: [bold]{response.intent}[/]  mode: [bold]{response.effective_mode}[/]  "
                f"total: {response.total}  ({response.processing_time_ms}ms)"
            )
            if response.exact_matches:
                console.print(_results_table("Exact match", response.exact_matches))
            console.print(_results_table("Related items", response.related_matches))
        else:
            response = context.search.search(SearchRequest(**payload))
            if as_json:
                _print_json(response.to_dict(), "Search")
                return
            console.print(
                f"Mode: [bold]{response.effective_mode}[/]  total: {response.total}  "
                f"({response.processing_time_ms}ms)"
            )
            console.print(_results_table("Results", response.results))
        if response.has_more:
            console.print(f"[dim]More results: use --offset {offset + limit}[/]")


@app.command()
def item(
    item_number: Annotated[int, Argument(help="Item number to show.")],
    db_path: DbPathOption = None,
) -> None:
    """Show a single catalog item."""
    with _open_context(db_path) as context:
        _print_json(context.search.get_item(item_number), f"Item {item_number}")


@app.command()
def health(db_path: DbPathOption = None) -> None:
    """Show catalog health statistics."""
    with _open_context(db_path) as context:
        _print_json(context.search.health(), "Health")


@app.command()
def ingest(
    source: Annotated[str, Argument(help="Schedule XML file.")],
    full: Annotated[bool, Option("--full", help="Also generate embeddings.")] = False,
    force: Annotated[
        bool, Option("--force", help="Reprocess items even when unchanged.")
    ] = False,
    force_embeddings: Annotated[
        bool, Option("--force-embeddings", help="Re-embed every item (with --full).")
    ] = False,
    batch_size: Annotated[int, Option("--batch-size")] = 50,
    wait: Annotated[
        bool, Option("--wait/--no-wait", help="Run now instead of leaving the job queued.")
    ] = True,
    db_path: DbPathOption = None,
) -> None:
    """Queue (and by default run) a schedule ingestion job."""
    with _open_context(db_path) as context:
        if full:
            job_id = context.jobs.queue_full_pipeline(
                source,
                force,
                force_embeddings=force_embeddings,
                batch_size=batch_size,
            )
        else:
            job_id = context.jobs.queue_xml_ingestion(source, force)
        _finish_job(context, job_id, wait)


@app.command()
def embed(
    item_ids: Annotated[
        Optional[list[int]], Option("--item", "-i", help="Only these item numbers.")
    ] = None,
    batch_size: Annotated[int, Option("--batch-size")] = 50,
    force: Annotated[bool, Option("--force", help="Re-embed items that have a vector.")] = False,
    wait: Annotated[
        bool, Option("--wait/--no-wait", help="Run now instead of leaving the job queued.")
    ] = True,
    db_path: DbPathOption = None,
) -> None:
    """Queue (and by default run) an embedding generation job."""
    with _open_context(db_path) as context:
        job_id = context.jobs.queue_embedding_generation(item_ids or None, batch_size, force)
        _finish_job(context, job_id, wait)


def _finish_job(context: CatalogContext, job_id: str, wait: bool) -> None:
    if not wait:
        console.print(f"Queued job [bold]{job_id}[/]")
        return
    with console.status(status="Running job..."):
        context.jobs.run_job(job_id)
    job = context.jobs.get_job_status(job_id)
    style = "bold green" if job["status"] == "completed" else "bold red"
    _print_json(job, f"Job {job_id}", style)
    if job["status"] != "completed":
        raise Exit(code=1)


@app.command()
def job(
    job_id: Annotated[str, Argument(help="Job id.")],
    db_path: DbPathOption = None,
) -> None:
    """Show the status of a job."""
    with _open_context(db_path) as context:
        _print_json(context.jobs.get_job_status(job_id), f"Job {job_id}")


@app.command("queue-stats")
def queue_stats(db_path: DbPathOption = None) -> None:
    """Show job counts by status."""
    with _open_context(db_path) as context:
        stats = context.jobs.get_queue_stats()
        table = Table(title="Queue")
        table.add_column("Status")
        table.add_column("Jobs", justify="right")
        for name, count in stats.items():
            table.add_row(name, str(count))
        console.print(table)


@app.command()
def logs(
    limit: Annotated[int, Option("--limit", "-n")] = 20,
    offset: Annotated[int, Option("--offset")] = 0,
    db_path: DbPathOption = None,
) -> None:
    """Show recent ingestion runs."""
    with _open_context(db_path) as context:
        page = context.jobs.get_ingestion_logs(limit, offset)
        table = Table(title=f"Ingestion logs ({page['total']} total)")
        for column in ("Id", "Kind", "Status", "Started", "Parsed", "Created", "Updated", "Failed", "Embedded"):
            table.add_column(column)
        for entry in page["logs"]:
            table.add_row(
                str(entry["id"]),
                entry["kind"],
                entry["status"],
                str(entry["started_at"]),
                str(entry["items_parsed"]),
                str(entry["items_created"]),
                str(entry["items_updated"]),
                str(entry["items_failed"]),
                str(entry["items_embedded"]),
            )
        console.print(table)


@app.command("clean-jobs")
def clean_jobs(db_path: DbPathOption = None) -> None:
    """Delete finished jobs past their retention period."""
    with _open_context(db_path) as context:
        removed = context.jobs.clean_jobs()
        console.print(f"Removed {removed} job(s)")


@app.command()
def serve(
    host: Annotated[str, Option("--host")] = "127.0.0.1",
    port: Annotated[int, Option("--port")] = 8000,
) -> None:
    """Run the HTTP API."""
    from .server import run_server

    run_server(host=host, port=port)
