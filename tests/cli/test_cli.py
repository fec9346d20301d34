"""
CLI tests: argument parsing, dispatch and error reporting.

Each command runs through ``main()`` with the suite's committing session
factory, so no engine is bootstrapped from configuration.
"""

import re
from uuid import UUID

import pytest

from scripts.cli import config as cli_config
from scripts.cli.main import build_parser, main

UUID_RE = re.compile(r"Request:\s+([0-9a-f-]{36})")


@pytest.fixture(autouse=True)
def _no_config_override(monkeypatch):
    monkeypatch.delenv(cli_config.CONFIG_ENV, raising=False)


@pytest.fixture
def run(db_session_factory, capsys):
    def _run(*argv):
        code = main(list(argv), session_factory=db_session_factory)
        out, err = capsys.readouterr()
        return code, out, err

    return _run


def _submit(run, entity_id="dash-1"):
    code, out, _ = run(
        "submit", "DASHBOARD", entity_id, "UPDATE",
        "--by", "alice",
        "--proposed", '{"title": "Latency", "panels": ["p99"]}',
        "--current", '{"title": "Latency"}',
        "--summary", "add p99 panel",
    )
    assert code == 0
    return UUID(UUID_RE.search(out).group(1))


class TestParser:
    def test_unknown_entity_type_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["submit", "ROLE", "r-1", "UPDATE", "--by", "a", "--proposed", "{}"])

    def test_request_id_must_be_uuid(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["approve", "not-a-uuid", "--by", "b", "--role", "ADMIN"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


@pytest.mark.slow_locks
class TestCommands:
    def test_submit_prints_request(self, run):
        code, out, _ = run(
            "submit", "CHART", "chart-9", "CREATE",
            "--by", "alice", "--proposed", '{"type": "line"}',
            "--source", "API", "--label", "terraform",
        )

        assert code == 0
        assert "SUBMITTED" in out
        assert "CHART / chart-9" in out
        assert "PENDING_APPROVAL" in out

    def test_approve_flow_and_history(self, run):
        request_id = _submit(run)

        code, out, _ = run("approve", str(request_id), "--by", "bob", "--role", "ADMIN")
        assert code == 0
        assert "APPROVED" in out

        code, out, _ = run("history", "DASHBOARD", "dash-1")
        assert code == 0
        assert "SUBMIT" in out and "APPROVE" in out
        assert "PENDING_APPROVAL -> APPROVED" in out

    def test_reject_resubmit_revoke(self, run):
        request_id = _submit(run)

        code, out, _ = run(
            "reject", str(request_id), "--by", "bob", "--role", "ADMIN", "--reason", "too noisy",
        )
        assert code == 0 and "too noisy" in out

        code, out, _ = run(
            "resubmit", str(request_id), "--by", "alice", "--proposed", '{"title": "Quiet"}',
        )
        assert code == 0 and "RESUBMITTED" in out

        code, out, _ = run("revoke", str(request_id), "--by", "alice", "--reason", "dropped")
        assert code == 0 and "REVOKED" in out

    def test_pending_listing(self, run):
        code, out, _ = run("pending")
        assert code == 0
        assert "No pending approval requests." in out

        _submit(run, "dash-1")
        _submit(run, "dash-2")

        code, out, _ = run("pending", "--entity-type", "DASHBOARD")
        assert code == 0
        assert "Total: 2 pending" in out

    def test_verify_and_purge(self, run):
        request_id = _submit(run)
        run("approve", str(request_id), "--by", "bob", "--role", "ADMIN")

        code, out, _ = run("verify", str(request_id))
        assert code == 0
        assert "Chain OK" in out

        code, out, _ = run(
            "purge", str(request_id), "--by", "bob", "--role", "ADMIN", "--reason", "retention",
        )
        assert code == 0
        assert "2 actions removed" in out


@pytest.mark.slow_locks
class TestErrors:
    def test_kernel_error_reported_with_code(self, run):
        request_id = _submit(run)

        code, _, err = run("approve", str(request_id), "--by", "carol", "--role", "VIEWER")

        assert code == 1
        assert "ERROR [UNAUTHORIZED]" in err

    def test_duplicate_pending(self, run):
        _submit(run)
        code, _, err = run(
            "submit", "DASHBOARD", "dash-1", "UPDATE", "--by", "dave", "--proposed", "{}",
        )
        assert code == 1
        assert "ERROR [DUPLICATE_PENDING_REQUEST]" in err

    def test_invalid_json_argument(self, run):
        code, _, err = run(
            "submit", "DASHBOARD", "dash-1", "UPDATE", "--by", "alice", "--proposed", "{oops",
        )
        assert code == 1
        assert "ERROR [INVALID_APPROVAL_PAYLOAD]" in err

    def test_missing_history(self, run):
        code, _, err = run("history", "INCIDENT", "inc-404")
        assert code == 1
        assert "ERROR [APPROVAL_NOT_FOUND]" in err

    def test_missing_config_file(self, run, tmp_path):
        code, _, err = run("--config", str(tmp_path / "absent.yaml"), "pending")
        assert code == 1
        assert "ERROR [CONFIG]" in err
