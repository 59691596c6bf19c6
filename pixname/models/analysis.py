"""Image analysis data models."""

from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pixname.config import MAX_ERROR_PREVIEW_LENGTH
from pixname.exceptions import truncate_message
from pixname.filenames import clean_tag, is_legal_filename, sanitize_filename


class AnalysisStatus(str, Enum):
    """Lifecycle of a single image: PENDING -> ANALYZING -> SUCCESS | FAILED | SKIPPED."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class AnalysisRecord(BaseModel):
    """Result of analyzing one image.

    Records are immutable once produced. User edits create a new record through
    `with_edits()`, and approval is tracked separately in `ApprovalOverlay`.
    """

    model_config = ConfigDict(frozen=True)

    source_path: Path = Field(description="Absolute path of the image when it was analyzed")
    original_name: str = Field(default="", description="Filename including extension")
    extension: str = Field(default="", description="Lower-case extension including the dot")
    size_bytes: int = Field(default=0, ge=0)
    fingerprint: str = Field(default="", description="SHA-256 of the file content")

    suggested_filename: str = Field(default="", description="Sanitized stem suggested by the model")
    title: str = ""
    subject: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    comments: str = ""
    authors: str = Field(default="", description="Only set when a creator is visible in the image")
    copyright: str = Field(default="", description="Only set when a copyright notice is visible in the image")
    visible_date: str = Field(default="", description="Only set when a date is visible in the image")

    status: AnalysisStatus = AnalysisStatus.PENDING
    error_message: str | None = None
    analyzed_at: datetime | None = None

    edited_filename: str | None = None
    edited_tags: list[str] | None = None

    @model_validator(mode="after")
    def _check_status_invariants(self) -> "AnalysisRecord":
        if self.status is AnalysisStatus.SUCCESS and not is_legal_filename(self.suggested_filename):
            raise ValueError(f"Successful analysis needs a legal suggested filename, got {self.suggested_filename!r}")
        if self.status is AnalysisStatus.FAILED and not self.error_message:
            raise ValueError("Failed analysis needs an error message")
        return self

    def __str__(self) -> str:
        return f"AnalysisRecord('{self.original_name}' -> '{self.final_filename}', status={self.status.value})"

    @property
    def final_filename(self) -> str:
        """Filename stem to use: the user's edit when present, else the suggestion."""
        return self.edited_filename if self.edited_filename is not None else self.suggested_filename

    @property
    def final_tags(self) -> list[str]:
        """Tags to write: the user's edit when present, else the suggestion."""
        return list(self.edited_tags) if self.edited_tags is not None else list(self.tags)

    @property
    def directory(self) -> Path:
        return self.source_path.parent

    def with_edits(self, filename: str | None = None, tags: list[str] | None = None) -> "AnalysisRecord":
        """Return a copy carrying user overrides.

        The edited filename is sanitized (keeping the user's casing) so it stays usable as a stem.
        """
        update: dict = {}
        if filename is not None:
            update["edited_filename"] = sanitize_filename(filename, style=None)
        if tags is not None:
            update["edited_tags"] = [tag for tag in map(clean_tag, tags) if tag]
        return self.model_copy(update=update)

    def rebind(self, path: Path, size_bytes: int) -> "AnalysisRecord":
        """Return a copy pointing at another file with the same content."""
        return self.model_copy(
            update={
                "source_path": path,
                "original_name": path.name,
                "extension": path.suffix.lower(),
                "size_bytes": size_bytes,
            }
        )

    def short_error(self, limit: int = MAX_ERROR_PREVIEW_LENGTH) -> str:
        """Error message shortened for inline display."""
        if not self.error_message:
            return ""
        return truncate_message(self.error_message, limit)


class ApprovalOverlay:
    """User approval decisions, keyed by the record's source path."""

    def __init__(self, approved: Iterable[Path] = ()) -> None:
        self._decisions: dict[Path, bool] = {Path(path): True for path in approved}

    def approve(self, path: Path) -> None:
        self._decisions[Path(path)] = True

    def reject(self, path: Path) -> None:
        self._decisions[Path(path)] = False

    def toggle(self, path: Path) -> bool:
        path = Path(path)
        self._decisions[path] = not self._decisions.get(path, False)
        return self._decisions[path]

    def approve_all(self, records: Iterable[AnalysisRecord]) -> None:
        for record in records:
            if record.status is AnalysisStatus.SUCCESS:
                self.approve(record.source_path)

    def is_approved(self, path: Path) -> bool:
        return self._decisions.get(Path(path), False)

    def approved_records(self, records: Iterable[AnalysisRecord]) -> list[AnalysisRecord]:
        """Filter records down to approved, successful ones, preserving order."""
        return [r for r in records if r.status is AnalysisStatus.SUCCESS and self.is_approved(r.source_path)]

    def __len__(self) -> int:
        return sum(1 for approved in self._decisions.values() if approved)
