"""Collision-safe planning of file renames."""

import os
from collections.abc import Iterable
from pathlib import Path

from pixname.models.analysis import AnalysisRecord, AnalysisStatus, ApprovalOverlay
from pixname.models.rename import RenameOperation


def _same_file(first: Path, second: Path) -> bool:
    if first == second:
        return True
    try:
        return os.path.samefile(first, second)
    except OSError:
        return False


class RenamePlanner:
    """Turns approved analyses into rename operations without name collisions.

    Claimed target names are compared case-insensitively, so plans stay valid
    on case-insensitive file systems. The claimed set persists across `plan`
    calls made with `reset=False`, which lets auto-apply plan one record at a time.
    """

    def __init__(self) -> None:
        self._claimed: set[str] = set()

    def reset(self) -> None:
        self._claimed.clear()

    def plan(
        self,
        records: Iterable[AnalysisRecord],
        approvals: ApprovalOverlay | None = None,
        reset: bool = True,
    ) -> list[RenameOperation]:
        """Plan renames for approved, successful records.

        Args:
            records: Analysis results, in display order.
            approvals: Approval decisions. When None, every SUCCESS record is included.
            reset: Forget names claimed by previous calls.

        Returns:
            Operations in the order of `records`. Records whose target equals
            their current path are left out.
        """
        if reset:
            self.reset()

        records = list(records)
        if approvals is not None:
            selected = approvals.approved_records(records)
        else:
            selected = [record for record in records if record.status is AnalysisStatus.SUCCESS]

        operations: list[RenameOperation] = []
        for record in selected:
            target = self.resolve_target(record)
            if target == record.source_path:
                continue
            operations.append(
                RenameOperation(
                    original_path=record.source_path,
                    new_path=target,
                    written_tags=record.final_tags,
                )
            )
        return operations

    def resolve_target(self, record: AnalysisRecord) -> Path:
        """Pick the first free target path for a record and claim it."""
        directory = record.directory
        stem = record.final_filename
        extension = record.source_path.suffix

        candidate = directory / f"{stem}{extension}"
        counter = 0
        while self._is_taken(candidate, record.source_path):
            counter += 1
            candidate = directory / f"{stem}_{counter}{extension}"

        self._claimed.add(self._key(candidate))
        return candidate

    def _is_taken(self, candidate: Path, source: Path) -> bool:
        if self._key(candidate) in self._claimed:
            return True
        if not candidate.exists():
            return False
        return not _same_file(candidate, source)

    @staticmethod
    def _key(path: Path) -> str:
        return str(path).casefold()
