"""Unit tests for UndoLedger."""

from datetime import datetime, timedelta

import pytest

from pixname.models.rename import AppliedChangeRecord, RenameOperation, RenameSession
from pixname.processors.rename_executor import RenameExecutor
from pixname.processors.rename_planner import RenamePlanner
from pixname.processors.undo_ledger import UndoLedger


@pytest.fixture
def ledger(tmp_path) -> UndoLedger:
    return UndoLedger(tmp_path / "logs")


@pytest.fixture
def photos(make_image, tmp_path):
    """Three images in their own directory."""
    return [make_image(name, directory=tmp_path / "photos") for name in ["a.jpg", "b.jpg", "c.jpg"]]


def apply_renames(records) -> RenameSession:
    return RenameExecutor(metadata_delay=0).execute(RenamePlanner().plan(records), write_metadata=False)


class TestRevertSession:
    """Tests for reverting a whole session."""

    def test_restores_every_name(self, ledger, photos, make_record):
        """Undoing an applied session restores the folder exactly."""
        folder = photos[0].parent
        before = sorted(p.name for p in folder.iterdir())
        session = apply_renames([make_record(path, suggested_filename="beach") for path in photos])
        ledger.save_session(session)

        assert ledger.revert_session(session) == 3

        assert sorted(p.name for p in folder.iterdir()) == before
        assert session.undone

    def test_swap_chain_is_reverted_in_reverse(self, ledger, tmp_path):
        """a -> b then c -> a must be undone newest first."""
        (tmp_path / "a.png").write_text("A")
        (tmp_path / "c.png").write_text("C")
        session = RenameSession()
        for source, target in [("a.png", "b.png"), ("c.png", "a.png")]:
            (tmp_path / source).rename(tmp_path / target)
            session.operations.append(
                RenameOperation(original_path=tmp_path / source, new_path=tmp_path / target, was_successful=True)
            )

        assert ledger.revert_session(session) == 2

        assert (tmp_path / "a.png").read_text() == "A"
        assert (tmp_path / "c.png").read_text() == "C"
        assert not (tmp_path / "b.png").exists()

    def test_failed_operations_are_skipped(self, ledger, tmp_path):
        session = RenameSession(
            operations=[
                RenameOperation(original_path=tmp_path / "x.png", new_path=tmp_path / "y.png", was_successful=False)
            ]
        )

        assert ledger.revert_session(session) == 0
        assert session.undone

    def test_missing_file_is_reported_and_skipped(self, ledger, photos, make_record):
        session = apply_renames([make_record(path, suggested_filename=f"new_{path.stem}") for path in photos])
        session.operations[1].new_path.unlink()

        assert ledger.revert_session(session) == 2
        assert session.undone

    def test_already_undone_session(self, ledger, photos, make_record):
        session = apply_renames([make_record(photos[0], suggested_filename="beach")])
        ledger.revert_session(session)

        assert ledger.revert_session(session) == 0


class TestPersistence:
    """Tests for session logs on disk."""

    def test_round_trip(self, ledger):
        session = RenameSession(
            operations=[RenameOperation(original_path="/p/a.jpg", new_path="/p/b.jpg", written_tags=["x"])]
        )

        path = ledger.save_session(session)

        assert path.parent == ledger.log_dir
        assert ledger.load_session(path) == session

    def test_sessions_are_newest_first(self, ledger):
        now = datetime(2024, 5, 1, 12, 0, 0)
        older = RenameSession(created_at=now - timedelta(hours=1))
        newer = RenameSession(created_at=now)
        ledger.save_session(newer)
        ledger.save_session(older)

        assert [s.session_id for s in ledger.get_all_sessions()] == [newer.session_id, older.session_id]

    def test_unreadable_logs_are_skipped(self, ledger):
        session = RenameSession()
        ledger.save_session(session)
        (ledger.log_dir / "session_99999999_broken.json").write_text("{not json")

        assert [s.session_id for s in ledger.get_all_sessions()] == [session.session_id]

    def test_missing_directory_has_no_sessions(self, tmp_path):
        ledger = UndoLedger(tmp_path / "never-created")

        assert ledger.get_all_sessions() == []
        assert ledger.get_last_undoable_session() is None

    def test_last_undoable_survives_a_new_ledger(self, ledger, photos, make_record):
        session = apply_renames([make_record(photos[0], suggested_filename="beach")])
        ledger.save_session(session)

        reloaded = UndoLedger(ledger.log_dir)

        assert reloaded.get_last_undoable_session().session_id == session.session_id
        assert reloaded.undo_last_session() == 1
        assert photos[0].exists()
        assert UndoLedger(ledger.log_dir).get_last_undoable_session() is None

    def test_undo_without_sessions(self, ledger):
        assert ledger.undo_last_session() == 0

    def test_clear_all_logs(self, ledger):
        ledger.save_session(RenameSession())
        ledger.save_session(RenameSession(created_at=datetime(2020, 1, 1)))

        assert ledger.clear_all_logs() == 2
        assert ledger.get_all_sessions() == []
        assert ledger.get_last_undoable_session() is None


class TestRevertChanges:
    """Tests for selective undo."""

    def test_only_selected_changes_are_reverted(self, ledger, photos, make_record):
        session = apply_renames([make_record(path, suggested_filename=f"new_{path.stem}") for path in photos])
        changes = [AppliedChangeRecord.from_operation(op, session.session_id) for op in session.operations]
        changes[0] = changes[0].model_copy(update={"selected_for_undo": True})

        remaining = ledger.revert_changes(changes)

        assert photos[0].exists()
        assert not photos[1].exists()
        assert [change.new_filename for change in remaining] == ["new_b.jpg", "new_c.jpg"]

    def test_failed_revert_stays_in_list(self, ledger, tmp_path):
        change = AppliedChangeRecord(
            original_filename="a.jpg",
            new_filename="b.jpg",
            original_path=tmp_path / "a.jpg",
            new_path=tmp_path / "b.jpg",
            selected_for_undo=True,
        )

        assert ledger.revert_changes([change]) == [change]

    def test_metadata_only_changes_are_kept(self, ledger, tmp_path):
        change = AppliedChangeRecord(
            original_filename="a.jpg",
            new_filename="a.jpg",
            original_path=tmp_path / "a.jpg",
            new_path=tmp_path / "a.jpg",
            was_renamed=False,
            metadata_written=True,
            selected_for_undo=True,
        )

        assert ledger.revert_changes([change]) == [change]
        assert change.change_type_display == "Metadata Only"
