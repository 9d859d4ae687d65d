"""
Tests for roster_batch.services.change_store.

Validates one-transaction-per-call persistence, compare-and-set status
transitions, all-or-nothing log appends and StorageError wrapping.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from roster_batch.domain.types import ChangeBatchStatus, ChangeLogDraft
from roster_batch.models.change import (
    ChangeBatchModel,
    ChangeLogModel,
    ChangeLogRevertClaimModel,
)
from roster_batch.services.change_store import ChangeBatchStore, ChangeLogStore
from roster_kernel.exceptions import (
    BatchNotFoundError,
    IllegalTransitionError,
    RevertInProgressError,
    StorageError,
)

S = ChangeBatchStatus
NOW = datetime(2026, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


def _draft(entity_id: str, attr: str = "dept", old=None, new="Eng", reverted_log_id=None):
    return ChangeLogDraft(
        entity_id=entity_id,
        attribute_name=attr,
        old_value=old,
        new_value=new,
        reverted_log_id=reverted_log_id,
    )


class TestChangeBatchStore:
    def test_create_returns_dto_with_monotonic_ids(self, batch_store):
        first = batch_store.create(S.COMPLETED, "first", created_at=NOW, completed_at=NOW)
        second = batch_store.create(S.COMPLETED, "second", created_at=NOW, completed_at=NOW)

        assert second.batch_id > first.batch_id
        assert first.status is S.COMPLETED
        assert first.description == "first"

    def test_create_persists_links(self, batch_store):
        original = batch_store.create(S.COMPLETED, "orig", created_at=NOW)
        revert = batch_store.create(
            S.PENDING_REVERT, "revert", created_at=NOW,
            reverted_batch_id=original.batch_id, submitter_id="admin",
        )

        loaded = batch_store.get(revert.batch_id)
        assert loaded.reverted_batch_id == original.batch_id
        assert loaded.submitter_id == "admin"

    def test_get_unknown_returns_none(self, batch_store):
        assert batch_store.get(999) is None

    def test_transition_sets_status_and_completed_at(self, batch_store):
        batch = batch_store.create(
            S.SCHEDULED, "s", created_at=NOW, scheduled_for=NOW,
        )

        updated = batch_store.transition(batch.batch_id, S.CANCELLED, completed_at=NOW)

        assert updated.status is S.CANCELLED
        assert updated.completed_at.replace(tzinfo=None) == NOW.replace(tzinfo=None)
        assert batch_store.get(batch.batch_id).status is S.CANCELLED

    def test_transition_rejects_illegal_source(self, batch_store):
        batch = batch_store.create(S.COMPLETED, "c", created_at=NOW)

        with pytest.raises(IllegalTransitionError) as exc_info:
            batch_store.transition(batch.batch_id, S.CANCELLED)

        assert exc_info.value.from_status == "Completed"
        assert exc_info.value.to_status == "Cancelled"
        assert batch_store.get(batch.batch_id).status is S.COMPLETED

    def test_transition_expected_narrows_sources(self, batch_store):
        batch = batch_store.create(S.SCHEDULED, "s", created_at=NOW, scheduled_for=NOW)

        with pytest.raises(IllegalTransitionError):
            batch_store.transition(
                batch.batch_id, S.COMPLETED, expected=(S.PENDING_REVERT,),
            )

    def test_transition_unknown_batch(self, batch_store):
        with pytest.raises(BatchNotFoundError):
            batch_store.transition(404, S.FAILED)

    def test_compare_and_set_only_one_winner(self, batch_store):
        batch = batch_store.create(S.SCHEDULED, "s", created_at=NOW, scheduled_for=NOW)

        batch_store.transition(batch.batch_id, S.CANCELLED)
        with pytest.raises(IllegalTransitionError):
            batch_store.transition(batch.batch_id, S.CANCELLED)

    def test_update_status_follows_table(self, batch_store):
        batch = batch_store.create(S.COMPLETED, "c", created_at=NOW)
        assert batch_store.update_status(batch.batch_id, S.REVERTED).status is S.REVERTED


class TestChangeLogStore:
    def test_append_many_tags_batch_id(self, batch_store, log_store):
        batch = batch_store.create(S.COMPLETED, "c", created_at=NOW)

        entries = log_store.append_many(
            batch.batch_id,
            [_draft("e1", old="Sales"), _draft("e2", old="Marketing")],
            created_at=NOW,
        )

        assert len(entries) == 2
        assert {e.batch_id for e in entries} == {batch.batch_id}
        assert entries[0].log_id < entries[1].log_id
        assert (entries[0].old_value, entries[0].new_value) == ("Sales", "Eng")

    def test_append_nothing_is_noop(self, batch_store, log_store):
        batch = batch_store.create(S.COMPLETED, "c", created_at=NOW)
        assert log_store.append_many(batch.batch_id, [], created_at=NOW) == ()

    def test_list_by_batch_oldest_first(self, batch_store, log_store):
        batch = batch_store.create(S.COMPLETED, "c", created_at=NOW)
        log_store.append_many(batch.batch_id, [_draft("e1"), _draft("e2")], created_at=NOW)
        other = batch_store.create(S.COMPLETED, "other", created_at=NOW)
        log_store.append_many(other.batch_id, [_draft("e3")], created_at=NOW)

        logs = log_store.list_by_batch(batch.batch_id)

        assert [log.entity_id for log in logs] == ["e1", "e2"]

    def test_get(self, batch_store, log_store):
        batch = batch_store.create(S.COMPLETED, "c", created_at=NOW)
        (entry,) = log_store.append_many(batch.batch_id, [_draft("e1")], created_at=NOW)

        loaded = log_store.get(entry.log_id)
        assert (loaded.log_id, loaded.batch_id, loaded.entity_id) == (
            entry.log_id, entry.batch_id, "e1",
        )
        assert log_store.get(entry.log_id + 100) is None

    def test_append_to_unknown_batch_is_storage_error(self, log_store):
        """Foreign keys are enforced; the failure surfaces as StorageError."""
        with pytest.raises(StorageError) as exc_info:
            log_store.append_many(12345, [_draft("e1")], created_at=NOW)

        assert exc_info.value.operation == "log.append_many"
        assert exc_info.value.__cause__ is not None

    def test_failed_append_is_all_or_nothing(self, batch_store, log_store, db_session):
        batch = batch_store.create(S.COMPLETED, "c", created_at=NOW)
        drafts = [
            _draft("e1"),
            _draft("e2", reverted_log_id=99999),  # dangling FK
        ]

        with pytest.raises(StorageError):
            log_store.append_many(batch.batch_id, drafts, created_at=NOW)

        rows = db_session.execute(select(ChangeLogModel)).scalars().all()
        assert rows == []

    def test_batch_survives_failed_log_append(self, batch_store, log_store):
        batch = batch_store.create(S.COMPLETED, "c", created_at=NOW)

        with pytest.raises(StorageError):
            log_store.append_many(
                batch.batch_id, [_draft("e1", reverted_log_id=99999)], created_at=NOW,
            )

        assert batch_store.get(batch.batch_id) is not None

    def test_active_reverts_ignore_failed_revert_batches(self, batch_store, log_store):
        batch = batch_store.create(S.COMPLETED, "c", created_at=NOW)
        (original,) = log_store.append_many(batch.batch_id, [_draft("e1")], created_at=NOW)

        failed = batch_store.create(S.FAILED, "failed revert", created_at=NOW)
        log_store.append_many(
            failed.batch_id,
            [_draft("e1", old="Eng", new=None, reverted_log_id=original.log_id)],
            created_at=NOW,
        )
        assert log_store.active_reverts([original.log_id]) == {}

        ok = batch_store.create(S.COMPLETED, "revert", created_at=NOW)
        (revert,) = log_store.append_many(
            ok.batch_id,
            [_draft("e1", old="Eng", new=None, reverted_log_id=original.log_id)],
            created_at=NOW,
        )
        assert log_store.active_reverts([original.log_id]) == {original.log_id: revert.log_id}


class TestRevertClaims:
    @pytest.fixture
    def originals(self, batch_store, log_store):
        batch = batch_store.create(S.COMPLETED, "c", created_at=NOW)
        return log_store.append_many(
            batch.batch_id, [_draft("e1"), _draft("e2")], created_at=NOW,
        )

    def test_claim_is_exclusive(self, originals, log_store):
        first, second = originals
        log_store.claim_reverts([first.log_id], claimed_at=NOW, submitter_id="hr-admin")

        with pytest.raises(RevertInProgressError) as exc_info:
            log_store.claim_reverts([second.log_id, first.log_id], claimed_at=NOW)

        assert exc_info.value.log_ids == [first.log_id]
        # all or nothing: the free log was not claimed either
        log_store.claim_reverts([second.log_id], claimed_at=NOW)

    def test_release_makes_log_claimable_again(self, originals, log_store):
        first, _ = originals
        log_store.claim_reverts([first.log_id], claimed_at=NOW)

        assert log_store.release_reverts([first.log_id]) == 1
        log_store.claim_reverts([first.log_id], claimed_at=NOW)

    def test_release_of_unclaimed_logs(self, log_store):
        assert log_store.release_reverts([]) == 0
        assert log_store.release_reverts([404]) == 0

    def test_claim_rows(self, originals, log_store, db_session):
        first, second = originals
        log_store.claim_reverts([first.log_id, second.log_id, first.log_id], claimed_at=NOW)

        rows = db_session.execute(select(ChangeLogRevertClaimModel)).scalars().all()
        assert sorted(r.log_id for r in rows) == [first.log_id, second.log_id]

    def test_unique_index_rejects_second_claim(self, originals, session_factory):
        first, _ = originals
        session = session_factory()
        try:
            session.add_all([
                ChangeLogRevertClaimModel(log_id=first.log_id, created_at=NOW),
                ChangeLogRevertClaimModel(log_id=first.log_id, created_at=NOW),
            ])
            with pytest.raises(IntegrityError):
                session.flush()
        finally:
            session.rollback()
            session.close()


class TestStorageErrorWrapping:
    def test_dead_database_raises_storage_error(self, engine):
        stores_factory = sessionmaker(bind=engine)
        store = ChangeBatchStore(stores_factory)
        with engine.begin() as conn:
            ChangeLogModel.__table__.drop(conn)
            ChangeBatchModel.__table__.drop(conn)

        with pytest.raises(StorageError) as exc_info:
            store.create(S.COMPLETED, "c", created_at=NOW)

        assert exc_info.value.code == "STORAGE_ERROR"
        assert exc_info.value.operation == "batch.create"

    def test_log_store_get_wraps_errors(self, engine):
        store = ChangeLogStore(sessionmaker(bind=engine))
        with engine.begin() as conn:
            ChangeLogModel.__table__.drop(conn)

        with pytest.raises(StorageError):
            store.get(1)
