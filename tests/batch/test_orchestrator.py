"""
End-to-end tests through BulkEditOrchestrator.

Walks the documented scenarios: immediate submit, partial failure, whole
batch revert, single log revert, cancel of a scheduled batch, and the
forced-Failed correction when the audit trail cannot be written.
"""

from datetime import timedelta

import pytest

from roster_batch.domain.codec import decode
from roster_batch.domain.types import ChangeBatchStatus, SubmitMode
from roster_batch.entities.base import InMemoryEntityStore
from roster_batch.orchestrator import BulkEditOrchestrator
from roster_batch.selectors.change_selector import ChangeSelector
from roster_kernel.exceptions import (
    BatchNotCancellableError,
    BatchNotFoundError,
    InvalidStateError,
    LogAlreadyRevertedError,
    NotFoundError,
    StorageError,
    ValidationError,
)

S = ChangeBatchStatus

DEPT_CHANGES = {"e1": {"dept": "Eng"}, "e2": {"dept": "Eng"}}


def _counts(orchestrator) -> tuple[int, int]:
    with orchestrator.selector() as selector:
        batches = selector.list_batches()
        logs = sum(len(selector.list_logs(b.batch_id)) for b in batches)
    return len(batches), logs


class TestSubmitScenarios:
    def test_both_writes_succeed(self, orchestrator):
        outcome = orchestrator.submit_batch(["e1", "e2"], DEPT_CHANGES)

        assert outcome.status is S.COMPLETED
        with orchestrator.selector() as selector:
            logs = selector.list_logs(outcome.batch_id)
            assert selector.get_batch(outcome.batch_id).status is S.COMPLETED
        assert [(l.entity_id, l.attribute_name, l.old_value, l.new_value) for l in logs] == [
            ("e1", "dept", "Sales", "Eng"),
            ("e2", "dept", "Marketing", "Eng"),
        ]

    def test_second_write_fails(self, orchestrator, entity_store):
        entity_store.fail_writes_for("e2")

        outcome = orchestrator.submit_batch(["e1", "e2"], DEPT_CHANGES)

        assert outcome.status is S.COMPLETED_WITH_ERRORS
        with orchestrator.selector() as selector:
            logs = selector.list_logs(outcome.batch_id)
        assert [(l.entity_id, l.old_value, l.new_value) for l in logs] == [
            ("e1", "Sales", "Eng"),
            ("e2", "Marketing", "Eng"),
        ]

    def test_validation_error_creates_nothing(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.submit_batch(["e1", "e2"], {"e1": {"dept": "Eng"}})

        assert _counts(orchestrator) == (0, 0)

    def test_scheduled_submit(self, orchestrator, clock, entity_store):
        when = clock.now() + timedelta(days=2)

        outcome = orchestrator.submit_batch(["e1"], {"e1": {"dept": "Eng"}}, scheduled_for=when)

        assert outcome.mode is SubmitMode.SCHEDULED
        assert entity_store.snapshot("e1")["dept"] == "Sales"
        with orchestrator.selector() as selector:
            assert [b.batch_id for b in selector.list_scheduled()] == [outcome.batch_id]

    def test_log_storage_failure_marks_batch_failed(self, make_orchestrator, entity_store):
        orchestrator = make_orchestrator(failing_logs=True)

        with pytest.raises(StorageError):
            orchestrator.submit_batch(["e1", "e2"], DEPT_CHANGES)

        with orchestrator.selector() as selector:
            (batch,) = selector.list_batches()
            assert batch.status is S.FAILED
            assert selector.list_logs(batch.batch_id) == ()
        # entity writes already applied stay applied
        assert entity_store.snapshot("e1")["dept"] == "Eng"


class TestRevertScenarios:
    def test_revert_batch(self, orchestrator, entity_store):
        entity_store.fail_writes_for("e2")
        original = orchestrator.submit_batch(["e1", "e2"], DEPT_CHANGES)
        entity_store.heal()

        outcome = orchestrator.revert_batch(original.batch_id)

        with orchestrator.selector() as selector:
            revert = selector.get_batch(outcome.revert_batch_id)
            originals = selector.list_logs(original.batch_id)
            inverses = selector.list_logs(outcome.revert_batch_id)
            assert selector.get_batch(original.batch_id).status is S.REVERTED

        assert revert.reverted_batch_id == original.batch_id
        assert [(l.entity_id, l.attribute_name, l.old_value, l.new_value) for l in inverses] == [
            ("e1", "dept", "Eng", "Sales"),
            ("e2", "dept", "Eng", "Marketing"),
        ]
        assert [l.reverted_log_id for l in inverses] == [l.log_id for l in originals]

    def test_reverted_iff_revert_not_failed(self, orchestrator, make_orchestrator, entity_store):
        first = orchestrator.submit_batch(["e1"], {"e1": {"dept": "Eng"}})
        second = orchestrator.submit_batch(["e2"], {"e2": {"dept": "Eng"}})

        entity_store.fail_writes_for("e1")
        degraded = orchestrator.revert_batch(first.batch_id)
        with pytest.raises(StorageError):
            make_orchestrator(failing_logs=True).revert_batch(second.batch_id)

        with orchestrator.selector() as selector:
            assert degraded.status is S.COMPLETED_WITH_ERRORS
            assert selector.get_batch(first.batch_id).status is S.REVERTED
            (failed,) = selector.list_reverts_of_batch(second.batch_id)
            assert failed.status is S.FAILED
            assert selector.get_batch(second.batch_id).status is S.COMPLETED

    def test_round_trip_restores_decoded_old_value(self, orchestrator, entity_store):
        submitted = orchestrator.submit_batch(["e3"], {"e3": {"job_level": "L6", "dept": 42}})
        with orchestrator.selector() as selector:
            logs = selector.list_logs(submitted.batch_id)

        for log in logs:
            outcome = orchestrator.revert_log(log.log_id)
            with orchestrator.selector() as selector:
                (inverse,) = selector.list_logs(outcome.revert_batch_id)
            assert (inverse.old_value, inverse.new_value) == (log.new_value, log.old_value)
            assert entity_store.snapshot("e3")[log.attribute_name] == decode(log.old_value)

    def test_revert_log_of_revert_creates_nothing(self, orchestrator):
        submitted = orchestrator.submit_batch(["e1"], {"e1": {"dept": "Eng"}})
        reverted = orchestrator.revert_batch(submitted.batch_id)
        with orchestrator.selector() as selector:
            (inverse,) = selector.list_logs(reverted.revert_batch_id)
        before = _counts(orchestrator)

        with pytest.raises(InvalidStateError):
            orchestrator.revert_log(inverse.log_id)

        assert _counts(orchestrator) == before

    def test_double_single_revert_rejected(self, orchestrator):
        submitted = orchestrator.submit_batch(["e1"], {"e1": {"dept": "Eng"}})
        with orchestrator.selector() as selector:
            (log,) = selector.list_logs(submitted.batch_id)
        orchestrator.revert_log(log.log_id)
        before = _counts(orchestrator)

        with pytest.raises(LogAlreadyRevertedError):
            orchestrator.revert_log(log.log_id)

        assert _counts(orchestrator) == before
        with orchestrator.selector() as selector:
            assert len(selector.find_reverts_of(log.log_id)) == 1

    def test_unknown_ids(self, orchestrator):
        with pytest.raises(BatchNotFoundError):
            orchestrator.revert_batch(999)
        with pytest.raises(NotFoundError):
            orchestrator.revert_log(999)

    def test_revert_log_storage_failure(self, make_orchestrator, orchestrator):
        submitted = orchestrator.submit_batch(["e1"], {"e1": {"dept": "Eng"}})
        with orchestrator.selector() as selector:
            (log,) = selector.list_logs(submitted.batch_id)

        failing = make_orchestrator(failing_logs=True)
        with pytest.raises(StorageError):
            failing.revert_log(log.log_id)

        with orchestrator.selector() as selector:
            revert = selector.list_batches()[0]
            assert revert.batch_id != submitted.batch_id
            assert revert.status is S.FAILED
            assert selector.get_batch(submitted.batch_id).status is S.COMPLETED


class TestCancel:
    def test_cancel_scheduled(self, orchestrator, clock):
        outcome = orchestrator.submit_batch(
            ["e1"], {"e1": {"dept": "Eng"}}, scheduled_for=clock.now() + timedelta(hours=1),
        )

        cancelled = orchestrator.cancel_batch(outcome.batch_id)

        assert cancelled.status is S.CANCELLED
        assert cancelled.completed_at is not None

    def test_cancel_twice(self, orchestrator, clock):
        outcome = orchestrator.submit_batch(
            ["e1"], {"e1": {"dept": "Eng"}}, scheduled_for=clock.now() + timedelta(hours=1),
        )
        orchestrator.cancel_batch(outcome.batch_id)

        with pytest.raises(InvalidStateError) as exc_info:
            orchestrator.cancel_batch(outcome.batch_id)

        assert isinstance(exc_info.value, BatchNotCancellableError)
        assert exc_info.value.status == "Cancelled"

    def test_cancel_completed(self, orchestrator):
        outcome = orchestrator.submit_batch(["e1"], {"e1": {"dept": "Eng"}})

        with pytest.raises(BatchNotCancellableError):
            orchestrator.cancel_batch(outcome.batch_id)

    def test_cancel_unknown(self, orchestrator):
        with pytest.raises(BatchNotFoundError):
            orchestrator.cancel_batch(999)

    def test_cancelled_logs_not_revertible(self, orchestrator, clock):
        outcome = orchestrator.submit_batch(
            ["e1"], {"e1": {"dept": "Eng"}}, scheduled_for=clock.now() + timedelta(hours=1),
        )
        orchestrator.cancel_batch(outcome.batch_id)
        with orchestrator.selector() as selector:
            (log,) = selector.list_logs(outcome.batch_id)

        with pytest.raises(InvalidStateError):
            orchestrator.revert_log(log.log_id)


class TestObservability:
    def test_operation_records_share_correlation_id(self, orchestrator, captured_logs):
        orchestrator.submit_batch(["e1", "e2"], DEPT_CHANGES, submitter_id="hr-admin")

        records = [r for r in captured_logs() if r["logger"].startswith("roster.batch")]
        correlation_ids = {r.get("correlation_id") for r in records}
        assert len(correlation_ids) == 1
        assert None not in correlation_ids
        (submitted,) = [r for r in records if r["message"] == "batch_submitted"]
        assert submitted["actor_id"] == "hr-admin"

    def test_operations_get_distinct_correlation_ids(self, orchestrator, captured_logs):
        orchestrator.submit_batch(["e1"], {"e1": {"dept": "Eng"}})
        orchestrator.submit_batch(["e2"], {"e2": {"dept": "Eng"}})

        submitted = [r for r in captured_logs() if r["message"] == "batch_submitted"]
        assert len({r["correlation_id"] for r in submitted}) == 2

    def test_failed_operation_logged(self, orchestrator, captured_logs):
        with pytest.raises(BatchNotFoundError):
            orchestrator.cancel_batch(31337)

        (failed,) = [r for r in captured_logs() if r["message"] == "operation_failed"]
        assert failed["operation"] == "cancel_batch"
        assert failed["error_code"] == "BATCH_NOT_FOUND"
        assert failed["batch_id"] == "31337"

    def test_context_cleared_after_operation(self, orchestrator):
        from roster_kernel.logging_config import LogContext

        orchestrator.submit_batch(["e1"], {"e1": {"dept": "Eng"}})
        assert LogContext.get_all() == {}


class TestWiring:
    def test_from_session_factory_defaults(self, session_factory):
        orchestrator = BulkEditOrchestrator.from_session_factory(session_factory)

        assert orchestrator.config.name == "default"
        assert "base_salary" in orchestrator.config.attributes

    def test_from_session_factory_sql_entity_store(self, session_factory, clock):
        orchestrator = BulkEditOrchestrator.from_session_factory(session_factory, clock=clock)
        orchestrator.entity_store.add("e1", department="Sales", base_salary=90000)

        outcome = orchestrator.submit_batch(
            ["e1"], {"e1": {"department": "Eng", "base_salary": 95000}},
        )
        assert outcome.status is S.COMPLETED

        orchestrator.revert_batch(outcome.batch_id)
        values = orchestrator.entity_store.read("e1", ["department", "base_salary"])
        assert values["department"] == "Sales"
        assert values["base_salary"] == 90000

    def test_shared_clock(self, make_orchestrator, clock):
        orchestrator = make_orchestrator(entity_store=InMemoryEntityStore({"x": {}}))
        assert orchestrator.clock is clock

        outcome = orchestrator.submit_batch(["x"], {"x": {"team": "Core"}})
        with orchestrator.selector() as selector:
            batch = selector.get_batch(outcome.batch_id)
        assert batch.created_at.replace(tzinfo=None) == clock.now().replace(tzinfo=None)

    def test_selector_is_read_only_view(self, orchestrator):
        with orchestrator.selector() as selector:
            assert isinstance(selector, ChangeSelector)
            assert selector.list_history() == ()
