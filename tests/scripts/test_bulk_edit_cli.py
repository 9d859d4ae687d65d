"""
Tests for scripts/bulk_edit.py -- the command-line front end.

Every invocation goes through ``main(argv)`` against a file-backed SQLite
database and parses the JSON document printed on stdout.
"""

import json

import pytest

from scripts.bulk_edit import build_parser, main


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def run(db_url, capsys):
    """Run the CLI and return (exit_code, parsed stdout)."""

    def _run(*argv: str):
        code = main(["--database-url", db_url, *argv])
        out = capsys.readouterr().out
        return code, json.loads(out)

    return _run


@pytest.fixture
def seeded(run):
    run("init-db")
    run("seed", "--employees", json.dumps({
        "e1": {"full_name": "Ada Lovelace", "department": "Sales"},
        "e2": {"full_name": "Grace Hopper", "department": "Marketing"},
    }))
    return run


class TestCommands:
    def test_init_db(self, run):
        assert run("init-db") == (0, {"initialized": True})

    def test_seed(self, run):
        run("init-db")
        code, out = run("seed", "--employees", '{"e1": {"department": "Sales"}}')
        assert code == 0
        assert out == {"seeded": ["e1"]}

    def test_submit_and_logs(self, seeded):
        code, outcome = seeded(
            "--submitter", "hr-admin",
            "submit", "--changes",
            '{"e1": {"department": "Eng"}, "e2": {"department": "Eng"}}',
        )

        assert code == 0
        assert outcome["status"] == "Completed"
        assert outcome["log_count"] == 2

        code, logs = seeded("logs", str(outcome["batch_id"]))
        assert code == 0
        assert [(l["entity_id"], l["old_value"], l["new_value"]) for l in logs] == [
            ("e1", "Sales", "Eng"),
            ("e2", "Marketing", "Eng"),
        ]

    def test_submit_subset_of_changes(self, seeded):
        code, outcome = seeded(
            "submit", "--entity-ids", "e2",
            "--changes", '{"e1": {"department": "Eng"}, "e2": {"department": "Ops"}}',
        )

        assert code == 0
        assert outcome["log_count"] == 1

    def test_revert_batch(self, seeded):
        _, outcome = seeded("submit", "--changes", '{"e1": {"department": "Eng"}}')

        code, reverted = seeded("revert-batch", str(outcome["batch_id"]))

        assert code == 0
        assert reverted["status"] == "Completed"
        assert reverted["original_batch_id"] == outcome["batch_id"]
        _, history = seeded("batches", "--view", "history")
        assert [b["status"] for b in history] == ["Completed", "Reverted"]

    def test_revert_log(self, seeded):
        _, outcome = seeded("submit", "--changes", '{"e1": {"department": "Eng"}}')
        _, (log,) = seeded("logs", str(outcome["batch_id"]))

        code, reverted = seeded("revert-log", str(log["log_id"]))

        assert code == 0
        assert reverted["original_log_id"] == log["log_id"]

    def test_schedule_and_cancel(self, seeded):
        _, outcome = seeded(
            "submit", "--changes", '{"e1": {"department": "Eng"}}',
            "--schedule", "2030-01-01T09:00:00+00:00",
        )
        assert outcome["status"] == "Scheduled"

        _, scheduled = seeded("batches", "--view", "scheduled")
        assert [b["batch_id"] for b in scheduled] == [outcome["batch_id"]]

        code, cancelled = seeded("cancel", str(outcome["batch_id"]))
        assert code == 0
        assert cancelled["status"] == "Cancelled"

    def test_batches_by_status(self, seeded):
        seeded("submit", "--changes", '{"e1": {"department": "Eng"}}')

        code, batches = seeded("batches", "--status", "Completed")
        assert code == 0
        assert len(batches) == 1
        _, none = seeded("batches", "--status", "Failed")
        assert none == []


class TestErrors:
    def test_typed_error_exit_code(self, seeded):
        code, out = seeded("revert-batch", "99")

        assert code == 1
        assert out["code"] == "BATCH_NOT_FOUND"
        assert "99" in out["error"]

    def test_cancel_completed_batch(self, seeded):
        _, outcome = seeded("submit", "--changes", '{"e1": {"department": "Eng"}}')

        code, out = seeded("cancel", str(outcome["batch_id"]))

        assert code == 1
        assert out["code"] == "BATCH_NOT_CANCELLABLE"

    def test_invalid_json(self, seeded):
        code, out = seeded("submit", "--changes", "{not json")

        assert code == 1
        assert out["code"] == "INVALID_ARGUMENT"

    def test_validation_error(self, seeded):
        code, out = seeded("submit", "--entity-ids", "e1,e2", "--changes", '{"e1": {"department": "Eng"}}')

        assert code == 1
        assert out["code"] == "CHANGE_SET_MISMATCH"

    def test_change_map_not_an_object(self, seeded):
        code, out = seeded("submit", "--changes", '{"e1": "Eng"}')

        assert code == 1
        assert out["code"] == "MALFORMED_CHANGE_SET"
        assert "e1" in out["error"]

    def test_bad_schedule_rejected_by_parser(self, db_url):
        with pytest.raises(SystemExit):
            main(["--database-url", db_url, "submit", "--changes", "{}", "--schedule", "soon"])


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_status_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["batches", "--status", "Done"])

    def test_db_url_alias(self):
        args = build_parser().parse_args(["--db-url", "sqlite://", "init-db"])
        assert args.database_url == "sqlite://"
