"""Summary: Tests for the command-line interface.

Importance: Ensures the demo ingest path and error exits work end to end.
Alternatives: Exercise the CLI only by hand.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

from mailassist.cli import build_parser, run_cli

REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    (tmp_path / "config").mkdir()
    shutil.copy(REPO_ROOT / "config" / "defaults.json", tmp_path / "config" / "defaults.json")
    (tmp_path / "data").mkdir()
    shutil.copy(REPO_ROOT / "data" / "mock_mailbox.json", tmp_path / "data" / "mock_mailbox.json")
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith(("MAILASSIST_", "MICROSOFT_", "OPENAI_", "OLLAMA_")):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MAILASSIST_DB_PATH", str(tmp_path / "cli.db"))
    return tmp_path


def test_ingest_mock_syncs_demo_user_once(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Summary: Verify the fixture ingest creates the demo user and is idempotent.

    Importance: This is the offline quick-start path.
    Alternatives: Require a Microsoft login for any demo.
    """

    run_cli(["ingest-mock"])
    first = capsys.readouterr().out
    assert "synced 4 inbox messages (4 enriched) and 2 sent messages." in first
    user_id = first.split()[2].rstrip(":")

    run_cli(["ingest-mock"])
    second = capsys.readouterr().out
    assert f"Demo user {user_id}: synced 0 inbox messages" in second

    run_cli(["list-messages", user_id, "--search", "failover"])
    listed = capsys.readouterr().out
    assert "[urgent/5] URGENT: production database failover tonight" in listed


def test_chat_and_history_commands(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Summary: Verify the chat and history commands over the demo mailbox.

    Importance: Both turns are printed in order.
    Alternatives: Test chat only through the API.
    """

    run_cli(["ingest-mock"])
    user_id = capsys.readouterr().out.split()[2].rstrip(":")
    run_cli(["chat", user_id, "What needs attention?"])
    assert "[mock:chat] What needs attention?" in capsys.readouterr().out
    run_cli(["history", user_id])
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 2
    assert "user: What needs attention?" in lines[0]


def test_sync_unknown_user_exits_with_error(workspace: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """Summary: Verify unknown users exit with status 1 and a message.

    Importance: Scripts can detect failed runs.
    Alternatives: Print a traceback.
    """

    with pytest.raises(SystemExit) as excinfo:
        run_cli(["sync", "missing-user"])
    assert excinfo.value.code == 1
    assert "error: Unknown user missing-user" in capsys.readouterr().err


def test_parser_rejects_unknown_folder() -> None:
    """Summary: Verify the parser rejects folders other than inbox and sent.

    Importance: Invalid input fails before any work starts.
    Alternatives: Validate inside the service.
    """

    with pytest.raises(SystemExit):
        build_parser().parse_args(["sync", "u1", "--folder", "drafts"])
