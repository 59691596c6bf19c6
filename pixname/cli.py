"""CLI entrypoints."""

import signal
import threading
from contextlib import contextmanager
from pathlib import Path

import click
from langsmith import traceable
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from tqdm import tqdm

from pixname.config import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    FilenameStyle,
    ProcessingOptions,
    VisionServiceConfig,
)
from pixname.exceptions import MetadataError, ServiceUnavailableError
from pixname.models.analysis import AnalysisRecord, AnalysisStatus, ApprovalOverlay
from pixname.models.rename import RenameSession
from pixname.processors.analyzer import ImageAnalyzer
from pixname.processors.metadata_codec import MetadataCodec
from pixname.processors.rename_executor import AutoApplier, RenameExecutor
from pixname.processors.rename_planner import RenamePlanner
from pixname.processors.undo_ledger import UndoLedger
from pixname.processors.vision_client import VisionClient


console = Console()

# Tags column width in the results table
MAX_TAGS_DISPLAY_LENGTH = 50

SKIP_ANSWER = "-"


@click.group(context_settings=dict(show_default=True))
def cli() -> None:
    """pixname - Rename and tag images with the magic of local vision LLMs."""
    pass


def _service_options(func):
    """Options shared by every command that talks to the vision service."""
    options = [
        click.option("--base-url", type=str, default=DEFAULT_BASE_URL, help="Base URL of the OpenAI-compatible API."),
        click.option("--model-identifier", type=str, default=DEFAULT_MODEL, help="Vision model to use."),
        click.option("--timeout", type=float, default=120.0, help="Request timeout in seconds."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


_log_dir_option = click.option(
    "--log-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding session logs (defaults to the per-user app directory).",
)


@contextmanager
def _cancel_on_interrupt():
    """Turn the first Ctrl+C into a cooperative cancellation; a second one aborts."""
    cancel = threading.Event()

    def handler(signum, frame):
        if cancel.is_set():
            raise KeyboardInterrupt
        cancel.set()
        console.print("\n[yellow]Stopping after the current image... (press Ctrl+C again to abort)[/yellow]")

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


@contextmanager
def _progress_bar(description: str, unit: str):
    """tqdm bar driven by (current, total, name) progress callbacks."""
    bar = tqdm(desc=description, unit=unit)

    def update(current: int, total: int, name: str) -> None:
        bar.total = total
        bar.set_postfix_str(name, refresh=False)
        bar.update(current - bar.n)

    try:
        yield update
    finally:
        bar.close()


def _status_cell(record: AnalysisRecord) -> str:
    if record.status is AnalysisStatus.SUCCESS:
        return "[green]success[/green]"
    if record.status is AnalysisStatus.SKIPPED:
        return "[dim]skipped[/dim]"
    return f"[red]{escape(record.short_error())}[/red]"


def _print_results(records: list[AnalysisRecord]) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Original", style="cyan")
    table.add_column("Suggested Name", style="green")
    table.add_column("Tags", style="dim")
    table.add_column("Status")

    for record in records:
        suggested = f"{record.final_filename}{record.source_path.suffix}" if record.final_filename else ""
        tags = ", ".join(record.final_tags)
        if len(tags) > MAX_TAGS_DISPLAY_LENGTH:
            tags = tags[: MAX_TAGS_DISPLAY_LENGTH - 3] + "..."
        table.add_row(escape(record.original_name), escape(suggested), escape(tags), _status_cell(record))

    console.print(table)


def _print_session_summary(session: RenameSession) -> None:
    console.print(f"[bold green]Renamed {session.success_count} file(s).[/bold green]")
    if session.failure_count:
        console.print(f"[bold red]{session.failure_count} rename(s) failed.[/bold red]")

    metadata_issues = [op for op in session.operations if op.was_successful and op.error_message]
    for operation in metadata_issues:
        console.print(f"  [yellow]{escape(operation.new_path.name)}: {escape(operation.error_message)}[/yellow]")


def _review(records: list[AnalysisRecord], approvals: ApprovalOverlay) -> list[AnalysisRecord]:
    """Let the user accept, edit or skip each suggestion. Returns the (possibly edited) records."""
    console.print(f"[dim]Press Enter to accept a name, type a new one, or '{SKIP_ANSWER}' to skip the file.[/dim]")
    reviewed: list[AnalysisRecord] = []
    for record in records:
        if record.status is not AnalysisStatus.SUCCESS:
            reviewed.append(record)
            continue

        answer = click.prompt(record.original_name, default=record.final_filename).strip()
        if answer == SKIP_ANSWER:
            approvals.reject(record.source_path)
        else:
            if answer and answer != record.final_filename:
                record = record.with_edits(filename=answer)
            approvals.approve(record.source_path)
        reviewed.append(record)
    return reviewed


@cli.command("analyze")
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@_service_options
@click.option("-r", "--recursive", is_flag=True, default=False, help="Include images in subdirectories.")
@click.option("--max-retries", type=click.IntRange(min=1), default=3, help="Attempts per image, including the first.")
@click.option("--temperature", type=float, default=0.2, help="Sampling temperature.")
@click.option("--max-tokens", type=int, default=1024, help="Maximum tokens in the model's reply.")
@click.option(
    "--max-image-dimension",
    type=int,
    default=1024,
    help="Images larger than this (in pixels) are downscaled before sending.",
)
@click.option("--max-tags", type=click.IntRange(min=1), default=10, help="Maximum number of tags per image.")
@click.option(
    "--filename-style",
    type=click.Choice([style.value for style in FilenameStyle]),
    default=FilenameStyle.LOWERCASE.value,
    help="Case style of suggested filenames.",
)
@click.option("--metadata/--no-metadata", default=True, help="Embed title, description and tags into the files.")
@click.option("--skip-tagged", is_flag=True, default=False, help="Skip images that already carry tags.")
@click.option(
    "--auto-apply",
    is_flag=True,
    default=False,
    help="Rename and tag each image as soon as it is analyzed.",
)
@click.option("--review", is_flag=True, default=False, help="Review and edit each suggested name before applying.")
@click.option(
    "-y",
    "--yes",
    is_flag=True,
    default=False,
    help="Automatically apply renames without asking for confirmation.",
)
@_log_dir_option
@click.option("--show-token-usage", is_flag=True, default=True, help="Display token usage statistics.")
@traceable
def analyze(
    directory: Path,
    base_url: str,
    model_identifier: str,
    timeout: float,
    recursive: bool,
    max_retries: int,
    temperature: float,
    max_tokens: int,
    max_image_dimension: int,
    max_tags: int,
    filename_style: str,
    metadata: bool,
    skip_tagged: bool,
    auto_apply: bool,
    review: bool,
    yes: bool,
    log_dir: Path | None,
    show_token_usage: bool,
) -> None:
    """Analyze the images in DIRECTORY and rename them after review.

    Each image is sent to a local vision model, which suggests a descriptive
    filename, a title, a description and tags. Renames are applied as one
    session that can be reverted with `pixname undo`.

    Examples:

        pixname analyze ~/Pictures/inbox

        pixname analyze ~/Pictures --recursive --filename-style title_case --auto-apply
    """
    config = VisionServiceConfig(
        base_url=base_url,
        model=model_identifier,
        timeout_seconds=timeout,
        max_retries=max_retries,
        temperature=temperature,
        max_tokens=max_tokens,
        max_image_dimension=max_image_dimension,
    )
    options = ProcessingOptions(
        recursive=recursive,
        skip_existing_metadata=skip_tagged,
        filename_style=FilenameStyle(filename_style),
        max_tags=max_tags,
        write_metadata=metadata,
    )

    console.print(
        f"Analyzing [bold cyan]{escape(str(directory))}[/bold cyan] "
        f"using model [bold magenta]{escape(model_identifier)}[/bold magenta]..."
    )

    ledger = UndoLedger(log_dir)
    planner = RenamePlanner()
    executor = RenameExecutor(metadata_delay=options.metadata_delay)
    applier = AutoApplier(planner, executor, ledger, write_metadata=metadata) if auto_apply else None

    client = VisionClient(config, options)
    with ImageAnalyzer(client, options) as analyzer:
        try:
            with _cancel_on_interrupt() as cancel, _progress_bar("Analyzing images...", "image") as progress:
                records = analyzer.analyze_directory(
                    directory,
                    progress=progress,
                    cancel=cancel,
                    on_result=applier,
                )
        except (FileNotFoundError, NotADirectoryError, ServiceUnavailableError) as e:
            console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            raise SystemExit(1) from e

    if not records:
        return

    console.print()
    _print_results(records)
    console.print()

    if applier is not None:
        if applier.session.operations:
            _print_session_summary(applier.session)
            console.print("[dim]Run 'pixname undo' to revert this session.[/dim]")
        else:
            console.print("[yellow]No files were renamed.[/yellow]")
    else:
        _apply_reviewed(records, planner, executor, ledger, metadata, review, yes)

    if show_token_usage:
        usage = client.usage
        console.print()
        console.print("[bold]Token Usage:[/bold]")
        console.print(f"  LLM calls: [cyan]{usage.llm_calls}[/cyan]")
        console.print(f"  Input tokens: [cyan]{usage.input_tokens:,}[/cyan]")
        console.print(f"  Output tokens: [cyan]{usage.output_tokens:,}[/cyan]")
        console.print(f"  Total tokens: [cyan]{usage.total_tokens:,}[/cyan]")


def _apply_reviewed(
    records: list[AnalysisRecord],
    planner: RenamePlanner,
    executor: RenameExecutor,
    ledger: UndoLedger,
    write_metadata: bool,
    review: bool,
    yes: bool,
) -> None:
    approvals = ApprovalOverlay()
    if review:
        records = _review(records, approvals)
    else:
        approvals.approve_all(records)

    operations = planner.plan(records, approvals)
    if not operations:
        console.print("[yellow]No rename operations to apply.[/yellow]")
        return

    console.print("[bold]Proposed renames:[/bold]")
    table = Table(show_header=True, header_style="bold")
    table.add_column("Original", style="cyan")
    table.add_column("New Name", style="green")
    for operation in operations:
        table.add_row(escape(operation.original_path.name), escape(operation.new_path.name))
    console.print(table)
    console.print()

    # Ask for confirmation unless --yes is provided
    if not yes and not click.confirm(f"Apply {len(operations)} rename(s)?", default=False):
        console.print("[yellow]Aborted. No files were renamed.[/yellow]")
        return

    records_by_path = {record.source_path: record for record in records}
    session = RenameSession()
    try:
        with _progress_bar("Applying renames...", "file") as progress:
            executor.execute(
                operations, records_by_path, write_metadata=write_metadata, progress=progress, session=session
            )
    finally:
        # Renames already done stay undoable even if the run is interrupted
        if session.operations:
            ledger.save_session(session)

    _print_session_summary(session)
    console.print("[dim]Run 'pixname undo' to revert this session.[/dim]")


@cli.command("undo")
@_log_dir_option
@click.option("-y", "--yes", is_flag=True, default=False, help="Revert without asking for confirmation.")
@traceable
def undo(log_dir: Path | None, yes: bool) -> None:
    """Revert the most recent rename session.

    Files are moved back to their original names. Embedded metadata is kept.
    """
    ledger = UndoLedger(log_dir)
    session = ledger.get_last_undoable_session()
    if session is None:
        console.print("[yellow]No session to undo.[/yellow]")
        return

    renamed = [op for op in session.operations if op.was_successful]
    console.print(
        f"Session [bold cyan]{session.session_id}[/bold cyan] from {session.created_at:%Y-%m-%d %H:%M:%S} "
        f"renamed [cyan]{len(renamed)}[/cyan] file(s):"
    )
    table = Table(show_header=True, header_style="bold")
    table.add_column("Current Name", style="green")
    table.add_column("Original Name", style="cyan")
    for operation in reversed(renamed):
        table.add_row(escape(operation.new_path.name), escape(operation.original_path.name))
    console.print(table)

    if not yes and not click.confirm("Revert these renames?", default=False):
        console.print("[yellow]Aborted. No files were changed.[/yellow]")
        return

    reverted = ledger.revert_session(session)
    if reverted < len(renamed):
        console.print(f"[yellow]{len(renamed) - reverted} file(s) could not be restored.[/yellow]")
    console.print(f"[bold green]Restored {reverted} file(s).[/bold green]")


@cli.command("sessions")
@_log_dir_option
@click.option("--clear", is_flag=True, default=False, help="Delete all session logs.")
@traceable
def sessions(log_dir: Path | None, clear: bool) -> None:
    """List persisted rename sessions, newest first."""
    ledger = UndoLedger(log_dir)

    if clear:
        if not click.confirm("Delete all session logs? Undo will no longer be possible.", default=False):
            console.print("[yellow]Aborted.[/yellow]")
            return
        removed = ledger.clear_all_logs()
        console.print(f"[green]Deleted {removed} session log(s).[/green]")
        return

    all_sessions = ledger.get_all_sessions()
    if not all_sessions:
        console.print("[yellow]No sessions found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Session", style="cyan")
    table.add_column("Created")
    table.add_column("Renamed", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Undone", justify="center")
    for session in all_sessions:
        table.add_row(
            session.session_id,
            f"{session.created_at:%Y-%m-%d %H:%M:%S}",
            str(session.success_count),
            str(session.failure_count),
            "yes" if session.undone else "",
        )
    console.print(table)


@cli.command("models")
@_service_options
@traceable
def models(base_url: str, model_identifier: str, timeout: float) -> None:
    """Check the vision service and list its loaded models."""
    config = VisionServiceConfig(base_url=base_url, model=model_identifier, timeout_seconds=timeout)
    with VisionClient(config) as client:
        if not client.is_available():
            console.print(f"[bold red]Vision service at {escape(base_url)} is not reachable.[/bold red]")
            raise SystemExit(1)

        loaded = client.list_models()

    console.print(f"[green]Vision service at {escape(base_url)} is reachable.[/green]")
    if not loaded:
        console.print("[yellow]No models loaded.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Model", style="cyan")
    table.add_column("Selected", justify="center")
    for model_id in loaded:
        table.add_row(escape(model_id), "*" if model_id == model_identifier else "")
    console.print(table)


@cli.command("show-metadata")
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@traceable
def show_metadata(input_file: Path) -> None:
    """Show the title, comment, tags, author and copyright embedded in an image."""
    try:
        fields = MetadataCodec().read(input_file)
    except MetadataError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise SystemExit(1) from e

    if fields.is_empty:
        console.print(f"[yellow]No metadata found in {escape(input_file.name)}.[/yellow]")
        return

    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Title", escape(fields.title))
    table.add_row("Comment", escape(fields.comment))
    table.add_row("Tags", escape(", ".join(fields.tags)))
    table.add_row("Author", escape(fields.author))
    table.add_row("Copyright", escape(fields.copyright))
    console.print(table)

