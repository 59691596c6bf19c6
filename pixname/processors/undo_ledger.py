"""Persistence of rename sessions and their reversal."""

from collections.abc import Iterable
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from pixname.models.rename import AppliedChangeRecord, RenameSession
from pixname.processors.rename_executor import move_file


console = Console()

SESSION_FILE_PATTERN = "session_*.json"


def default_log_dir() -> Path:
    """Per-user directory holding the session logs."""
    return Path(click.get_app_dir("pixname")) / "sessions"


class UndoLedger:
    """Stores one JSON file per rename session and reverts sessions on request."""

    def __init__(self, log_dir: Path | None = None) -> None:
        self.log_dir = Path(log_dir) if log_dir is not None else default_log_dir()
        self._last_session: RenameSession | None = None

    def session_path(self, session: RenameSession) -> Path:
        return self.log_dir / session.log_filename

    def save_session(self, session: RenameSession) -> Path:
        """Persist a session and remember it as the most recent one."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        path = self.session_path(session)
        path.write_text(session.model_dump_json(indent=2), encoding="utf-8")
        self._last_session = session
        return path

    def load_session(self, path: Path) -> RenameSession:
        """Load one session log.

        Raises:
            OSError: If the file cannot be read.
            ValidationError: If the file is not a valid session log.
        """
        return RenameSession.model_validate_json(Path(path).read_text(encoding="utf-8"))

    def _log_files(self) -> list[Path]:
        if not self.log_dir.is_dir():
            return []
        # Names start with the creation timestamp, so name order is age order
        return sorted(self.log_dir.glob(SESSION_FILE_PATTERN), key=lambda path: path.name, reverse=True)

    def _iter_sessions(self) -> Iterable[RenameSession]:
        for path in self._log_files():
            try:
                yield self.load_session(path)
            except (OSError, ValidationError, ValueError):
                console.print(f"  [dim]Skipping unreadable session log {escape(path.name)}[/dim]")

    def get_all_sessions(self) -> list[RenameSession]:
        """All readable sessions, newest first."""
        return list(self._iter_sessions())

    def get_last_undoable_session(self) -> RenameSession | None:
        """The most recent session that has not been undone yet."""
        if self._last_session is not None and not self._last_session.undone:
            return self._last_session
        for session in self._iter_sessions():
            if not session.undone:
                return session
        return None

    def revert_session(self, session: RenameSession) -> int:
        """Move every successfully renamed file of a session back, newest rename first.

        Per-file failures are reported and skipped; the session is marked undone
        either way.

        Returns:
            Number of files moved back. 0 for a session that was already undone.
        """
        if session.undone:
            return 0

        reverted = 0
        for operation in reversed(session.operations):
            if not operation.was_successful or operation.original_path == operation.new_path:
                continue
            try:
                move_file(operation.new_path, operation.original_path)
            except OSError as e:
                console.print(
                    f"  [yellow]Could not restore {escape(operation.original_path.name)}: {escape(str(e))}[/yellow]"
                )
                continue
            reverted += 1

        session.undone = True
        self.save_session(session)
        console.print(f"[green]Reverted {reverted} files[/green]")
        return reverted

    def undo_last_session(self) -> int:
        """Revert the most recent undoable session. Returns 0 when there is none."""
        session = self.get_last_undoable_session()
        if session is None:
            console.print("[yellow]No session to undo.[/yellow]")
            return 0
        return self.revert_session(session)

    def revert_changes(self, changes: Iterable[AppliedChangeRecord]) -> list[AppliedChangeRecord]:
        """Revert the renames of the changes selected for undo.

        Embedded metadata is not restored. Changes that were reverted are
        dropped from the result; everything else is returned unchanged.
        """
        remaining: list[AppliedChangeRecord] = []
        for change in changes:
            if not change.selected_for_undo or not change.was_renamed:
                remaining.append(change)
                continue
            try:
                move_file(change.new_path, change.original_path)
            except OSError as e:
                reason = escape(str(e))
                console.print(f"  [yellow]Could not restore {escape(change.original_filename)}: {reason}[/yellow]")
                remaining.append(change)
        return remaining

    def clear_all_logs(self) -> int:
        """Delete every session log. Returns the number of files removed."""
        removed = 0
        for path in self._log_files():
            path.unlink(missing_ok=True)
            removed += 1
        self._last_session = None
        return removed
