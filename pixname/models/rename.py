"""Rename operation and session data models."""

import uuid
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field


class RenameOperation(BaseModel):
    """A single planned (and later executed) file rename."""

    original_path: Path = Field(description="Path before the rename")
    new_path: Path = Field(description="Collision-free target path")
    executed_at: datetime | None = None
    was_successful: bool = False
    error_message: str | None = None
    written_tags: list[str] = Field(default_factory=list, description="Tags intended for the metadata write")
    metadata_updated: bool = False

    def __str__(self) -> str:
        return f"RenameOperation('{self.original_path.name}' -> '{self.new_path.name}')"


class RenameSession(BaseModel):
    """An ordered batch of rename operations; the unit of undo."""

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=datetime.now)
    operations: list[RenameOperation] = Field(default_factory=list)
    undone: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for op in self.operations if op.was_successful)

    @property
    def failure_count(self) -> int:
        return sum(1 for op in self.operations if not op.was_successful)

    @property
    def log_filename(self) -> str:
        """Deterministic file name used by the session log store."""
        return f"session_{self.created_at:%Y%m%d_%H%M%S_%f}_{self.session_id}.json"

    def __len__(self) -> int:
        return len(self.operations)


class AppliedChangeRecord(BaseModel):
    """Display-oriented projection of one applied change, used for selective undo."""

    original_filename: str
    new_filename: str
    original_path: Path
    new_path: Path
    was_renamed: bool = True
    metadata_written: bool = False
    applied_at: datetime = Field(default_factory=datetime.now)
    session_id: str = ""
    selected_for_undo: bool = False

    @property
    def change_type_display(self) -> str:
        if not self.was_renamed:
            return "Metadata Only"
        return "Renamed + Metadata" if self.metadata_written else "Renamed"

    @classmethod
    def from_operation(cls, operation: RenameOperation, session_id: str) -> "AppliedChangeRecord":
        return cls(
            original_filename=operation.original_path.name,
            new_filename=operation.new_path.name,
            original_path=operation.original_path,
            new_path=operation.new_path,
            was_renamed=operation.was_successful and operation.original_path != operation.new_path,
            metadata_written=operation.metadata_updated,
            applied_at=operation.executed_at or datetime.now(),
            session_id=session_id,
        )
