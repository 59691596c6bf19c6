"""Execution of planned renames, followed by metadata writes on the renamed files."""

import os
import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

from pixname.models.analysis import AnalysisRecord
from pixname.models.rename import AppliedChangeRecord, RenameOperation, RenameSession
from pixname.processors.metadata_codec import MetadataCodec
from pixname.processors.rename_planner import RenamePlanner


if TYPE_CHECKING:
    from pixname.processors.undo_ledger import UndoLedger


console = Console()

METADATA_FAILED_MESSAGE = "File renamed but metadata write failed"


def move_file(source: Path, target: Path) -> None:
    """Rename `source` to `target`, refusing to overwrite another file.

    Raises:
        FileNotFoundError: If `source` no longer exists.
        FileExistsError: If `target` exists and is a different file.
    """
    if not source.exists():
        raise FileNotFoundError(f"Source file not found: {source}")
    if target.exists():
        try:
            same = os.path.samefile(source, target)
        except OSError:
            same = False
        if not same:
            raise FileExistsError(f"Target file already exists: {target}")
    os.rename(source, target)


class RenameExecutor:
    """Applies rename operations in order, recording each outcome independently."""

    def __init__(
        self,
        codec: MetadataCodec | None = None,
        metadata_delay: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.codec = codec or MetadataCodec()
        self.metadata_delay = metadata_delay
        self._sleep = sleep

    def execute(
        self,
        operations: list[RenameOperation],
        records_by_path: Mapping[Path, AnalysisRecord] | None = None,
        write_metadata: bool = True,
        progress: Callable[[int, int, str], None] | None = None,
        session: RenameSession | None = None,
    ) -> RenameSession:
        """Execute operations strictly in order.

        Args:
            operations: Planned operations.
            records_by_path: Analyses keyed by original path; needed for metadata writes.
            write_metadata: Whether to embed metadata into renamed files.
            progress: Called with (current, total, filename) after each operation.
            session: Existing session to append to. A new one is created when omitted.

        Returns:
            The session holding every executed operation.
        """
        if session is None:
            session = RenameSession()
        records_by_path = records_by_path or {}
        total = len(operations)

        for index, operation in enumerate(operations, start=1):
            record = records_by_path.get(operation.original_path)
            self.execute_operation(operation, record if write_metadata else None)
            session.operations.append(operation)
            if progress is not None:
                progress(index, total, operation.new_path.name)

        return session

    def execute_operation(self, operation: RenameOperation, record: AnalysisRecord | None = None) -> RenameOperation:
        """Rename one file, then write metadata to it when `record` is given."""
        operation.executed_at = datetime.now()
        try:
            move_file(operation.original_path, operation.new_path)
        except OSError as e:
            operation.was_successful = False
            operation.error_message = str(e)
            console.print(f"  [red]Failed to rename {escape(operation.original_path.name)}: {escape(str(e))}[/red]")
            return operation

        operation.was_successful = True
        if record is not None:
            self._write_metadata(operation, record)
        return operation

    def _write_metadata(self, operation: RenameOperation, record: AnalysisRecord) -> None:
        if self.metadata_delay > 0:
            # Let the OS release the handle on the freshly renamed file
            self._sleep(self.metadata_delay)

        try:
            written = self.codec.write(operation.new_path, record)
        except Exception as e:
            operation.error_message = f"{METADATA_FAILED_MESSAGE}: {e}"
            console.print(f"  [yellow]{escape(operation.new_path.name)}: {escape(operation.error_message)}[/yellow]")
            return

        if not written:
            return

        operation.metadata_updated = True
        operation.written_tags = record.final_tags


class AutoApplier:
    """Applies each successful analysis as soon as it arrives.

    Used as the `on_result` callback of `ImageAnalyzer.analyze_batch`. All
    renames of one run share one planner claim set and one session, and the
    session is re-persisted after every append.
    """

    def __init__(
        self,
        planner: RenamePlanner,
        executor: RenameExecutor,
        ledger: "UndoLedger | None" = None,
        write_metadata: bool = True,
    ) -> None:
        self.planner = planner
        self.executor = executor
        self.ledger = ledger
        self.write_metadata = write_metadata
        self.session = RenameSession()
        self._lock = threading.Lock()
        self.planner.reset()

    def __call__(self, record: AnalysisRecord) -> RenameOperation | None:
        with self._lock:
            operations = self.planner.plan([record], reset=False)
            if not operations:
                return None

            try:
                self.executor.execute(
                    operations,
                    {record.source_path: record},
                    write_metadata=self.write_metadata,
                    session=self.session,
                )
            finally:
                if self.ledger is not None and self.session.operations:
                    self.ledger.save_session(self.session)
            return operations[0]

    @property
    def changes(self) -> list[AppliedChangeRecord]:
        """Successful changes of this run, for selective undo."""
        with self._lock:
            return [
                AppliedChangeRecord.from_operation(operation, self.session.session_id)
                for operation in self.session.operations
                if operation.was_successful
            ]
