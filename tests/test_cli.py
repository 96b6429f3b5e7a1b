"""Tests for command-line interface"""

import io
import json
import signal
import sys
from pathlib import Path

import pytest
from conftest import write_marker

from certvault.cli.main import main, parse_arguments
from certvault.core.locks import marker_filename


@pytest.fixture
def root(tmp_path, monkeypatch):
    for name in ("CERTVAULT_HOME", "CERTVAULT_STALE_LOCK_SECONDS", "CERTVAULT_LOCK_POLL_SECONDS", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path / "vault"


def run_cli(root: Path, *argv: str) -> int:
    """Invoke main() and return its exit code."""
    with pytest.raises(SystemExit) as exc_info:
        main(["--root", str(root), "--poll-interval", "0.02", *argv])
    return exc_info.value.code


class TestCLIArguments:
    """Test command-line argument parsing"""

    def test_parse_store(self):
        args = parse_arguments(["store", "certs/a.crt", "--file", "a.crt", "--lock", "--timeout", "5"])
        assert args.command == "store"
        assert args.key == "certs/a.crt"
        assert args.file == Path("a.crt")
        assert args.lock is True
        assert args.timeout == 5.0

    def test_parse_global_options(self):
        args = parse_arguments(["--root", "/srv/vault", "--log-level", "debug", "-q", "list", "certs", "-r"])
        assert args.root == "/srv/vault"
        assert args.log_level == "DEBUG"
        assert args.quiet is True
        assert args.recursive is True
        assert args.format == "table"

    def test_parse_run_keeps_command(self):
        args = parse_arguments(["run", "--timeout", "2", "renew/example.com", "--", "echo", "-n", "hi"])
        assert args.key == "renew/example.com"
        assert [part for part in args.cmd if part != "--"] == ["echo", "-n", "hi"]

    def test_command_required(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            parse_arguments([])
        assert exc_info.value.code == 2

    @pytest.mark.parametrize("value", ["0", "-3", "abc"])
    def test_rejects_non_positive_poll_interval(self, value):
        with pytest.raises(SystemExit):
            parse_arguments(["--poll-interval", value, "locks"])


class TestKeyValueCommands:
    """Test store/load/delete/exists/stat/list"""

    def test_store_from_file_then_load(self, root, tmp_path, capsysbinary):
        source = tmp_path / "example.com.crt"
        source.write_bytes(b"CERT DATA\n")

        assert run_cli(root, "store", "certs/example.com.crt", "--file", str(source), "--lock") == 0
        capsysbinary.readouterr()

        assert run_cli(root, "load", "certs/example.com.crt") == 0
        assert capsysbinary.readouterr().out == b"CERT DATA\n"
        assert list((root / "locks").iterdir()) == []

    def test_store_from_stdin(self, root, monkeypatch):
        monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(io.BytesIO(b"from stdin")))
        assert run_cli(root, "store", "piped") == 0
        assert (root / "piped").read_bytes() == b"from stdin"

    def test_store_missing_file_reports_error(self, root, tmp_path, capsys):
        assert run_cli(root, "store", "k", "--file", str(tmp_path / "absent")) == 1
        assert "Cannot read" in capsys.readouterr().err

    def test_exists_exit_codes(self, root):
        (root / "present").parent.mkdir(parents=True)
        (root / "present").write_bytes(b"x")

        assert run_cli(root, "exists", "present") == 0
        assert run_cli(root, "exists", "absent") == 1

    def test_load_missing_key_is_an_error(self, root, capsys):
        assert run_cli(root, "load", "missing") == 1
        assert "Key 'missing' does not exist" in capsys.readouterr().err

    def test_invalid_key_is_an_error(self, root, capsys):
        assert run_cli(root, "load", "../escape") == 1
        assert "Error:" in capsys.readouterr().err

    def test_delete(self, root):
        (root / "a" / "b").mkdir(parents=True)
        (root / "a" / "b" / "c").write_bytes(b"x")

        assert run_cli(root, "delete", "a/b/c") == 0
        assert not (root / "a").exists()

    def test_list_json(self, root, capsys):
        (root / "certs" / "sub").mkdir(parents=True)
        (root / "certs" / "a.crt").write_bytes(b"a")
        (root / "certs" / "sub" / "b.crt").write_bytes(b"b")

        assert run_cli(root, "list", "certs", "--recursive", "--format", "json") == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["count"] == 3
        assert [row["key"] for row in payload["keys"]] == ["certs/a.crt", "certs/sub", "certs/sub/b.crt"]

    def test_list_table(self, root, capsys):
        (root / "certs").mkdir(parents=True)
        (root / "certs" / "a.crt").write_bytes(b"a")

        assert run_cli(root, "list", "certs") == 0
        out = capsys.readouterr().out
        assert "Found 1 key(s) under 'certs':" in out
        assert "certs/a.crt" in out

    def test_stat_json(self, root, capsys):
        root.mkdir(parents=True)
        (root / "value").write_bytes(b"12345")

        assert run_cli(root, "stat", "value", "--format", "json") == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["size"] == 5
        assert payload["is_terminal"] is True


class TestLockCommands:
    """Test locks/prune-locks/run"""

    def test_locks_lists_markers(self, root, capsys):
        write_marker(root / "locks" / marker_filename("cert/example.com"))

        assert run_cli(root, "locks", "--format", "csv") == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert lines[0] == "key,marker,age_seconds,stale,pid,host,acquired_at"
        assert marker_filename("cert/example.com") in lines[1]
        assert ",False," in lines[1]

    def test_prune_locks_removes_only_stale(self, root, capsys):
        old = write_marker(root / "locks" / "old.lock", age_seconds=3 * 60 * 60)
        fresh = write_marker(root / "locks" / "fresh.lock")

        assert run_cli(root, "prune-locks") == 0
        out = capsys.readouterr().out
        assert "Removed 1 stale lock marker(s) of 2" in out
        assert not old.exists()
        assert fresh.exists()

    def test_prune_locks_dry_run(self, root, capsys):
        old = write_marker(root / "locks" / "old.lock", age_seconds=3 * 60 * 60)

        assert run_cli(root, "prune-locks", "--dry-run") == 0
        assert "Would remove 1 stale lock marker(s) of 1" in capsys.readouterr().out
        assert old.exists()

    def test_run_holds_lock_for_command(self, root):
        marker = root / "locks" / marker_filename("jobs/renew")
        code = "import os, sys; sys.exit(0 if os.path.exists(sys.argv[1]) else 3)"

        assert run_cli(root, "run", "jobs/renew", "--", sys.executable, "-c", code, str(marker)) == 0
        assert not marker.exists()

    def test_run_propagates_exit_code(self, root):
        assert run_cli(root, "run", "jobs/fail", "--", sys.executable, "-c", "raise SystemExit(7)") == 7

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    def test_run_reports_signal_like_a_shell(self, root):
        code = "import os, signal; os.kill(os.getpid(), signal.SIGTERM)"
        assert run_cli(root, "run", "jobs/killed", "--", sys.executable, "-c", code) == 128 + signal.SIGTERM

    def test_run_times_out_on_held_lock(self, root, capsys):
        write_marker(root / "locks" / marker_filename("busy"))

        assert run_cli(root, "run", "--timeout", "0.1", "busy", "--", sys.executable, "-c", "pass") == 1
        assert "Timed out" in capsys.readouterr().err

    def test_run_requires_command(self, root, capsys):
        assert run_cli(root, "run", "jobs/empty") == 1
        assert "requires a command" in capsys.readouterr().err
