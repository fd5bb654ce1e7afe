from __future__ import annotations

import json
from pathlib import Path

import pytest

from proposal_gate.__main__ import main
from proposal_gate.message_store import SqliteMessageStore
from proposal_gate.models import MessageRole
from proposal_gate.settings import GateSettings

_ENV_NAMES = (
    "PROPOSAL_GATE_DB_PATH",
    "PROPOSAL_GATE_APPS_ROOT",
    "PROPOSAL_GATE_AUDIT_DIR",
    "PROPOSAL_GATE_MAX_FILE_BYTES",
    "PROPOSAL_GATE_BUSY_TIMEOUT_MS",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep developer environment and any cwd .env file out of these tests."""
    for name in _ENV_NAMES:
        # set-then-delete so values loaded from a .env file are undone too
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


def test_settings_defaults() -> None:
    settings = GateSettings.from_env()
    assert settings.db_path == "proposal_gate.sqlite"
    assert settings.audit_dir_path is None
    assert settings.max_file_bytes == 5_000_000
    assert settings.apps_root_path == Path.cwd()


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PROPOSAL_GATE_DB_PATH", " data/gate.sqlite ")
    monkeypatch.setenv("PROPOSAL_GATE_AUDIT_DIR", str(tmp_path / "audit"))
    monkeypatch.setenv("PROPOSAL_GATE_MAX_FILE_BYTES", "1024")

    settings = GateSettings.from_env()

    assert settings.db_path == "data/gate.sqlite"
    assert settings.db_file(tmp_path) == tmp_path / "data" / "gate.sqlite"
    assert settings.audit_dir_path == tmp_path / "audit"
    assert settings.max_file_bytes == 1024


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("PROPOSAL_GATE_MAX_FILE_BYTES", "abc"),
        ("PROPOSAL_GATE_MAX_FILE_BYTES", "0"),
        ("PROPOSAL_GATE_BUSY_TIMEOUT_MS", "-1"),
        ("PROPOSAL_GATE_DB_PATH", "   "),
    ],
)
def test_invalid_settings_raise(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        GateSettings.from_env()


def test_dotenv_file_is_loaded_without_overriding_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("PROPOSAL_GATE_AUDIT_DIR=from-dotenv\nPROPOSAL_GATE_MAX_FILE_BYTES=999\n", encoding="utf-8")
    monkeypatch.setenv("PROPOSAL_GATE_MAX_FILE_BYTES", "123")

    settings = GateSettings.from_env()

    assert settings.audit_dir == "from-dotenv"
    assert settings.max_file_bytes == 123


def _seed(tmp_path: Path) -> tuple[Path, int, int, Path]:
    db_path = tmp_path / "gate.sqlite"
    project = tmp_path / "project"
    project.mkdir()
    store = SqliteMessageStore(db_path)
    chat_id = store.create_chat(store.create_app("demo", str(project)))
    message_id = store.add_message(
        chat_id,
        MessageRole.ASSISTANT,
        '<chat-summary>Add readme</chat-summary><file-write path="README.md"># Demo\n</file-write>',
    )
    return db_path, chat_id, message_id, project


def test_cli_show_approve_cycle(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db_path, chat_id, message_id, project = _seed(tmp_path)

    assert main(["--db-path", str(db_path), "show", "--chat-id", str(chat_id)]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["message_id"] == message_id
    assert shown["proposal"]["title"] == "Add readme"
    assert len(shown["fingerprint"]) == 64

    assert main(["--db-path", str(db_path), "approve", "--chat-id", str(chat_id), "--message-id", str(message_id)]) == 0
    approved = json.loads(capsys.readouterr().out)
    assert approved["success"] is True
    assert approved["actions"]["success"] is True
    assert (project / "README.md").read_text(encoding="utf-8") == "# Demo\n"

    assert main(["--db-path", str(db_path), "show", "--chat-id", str(chat_id)]) == 1
    assert capsys.readouterr().out.strip() == "no proposal"


def test_cli_reject_unknown_message_fails(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db_path, chat_id, _, _ = _seed(tmp_path)

    code = main(["--db-path", str(db_path), "reject", "--chat-id", str(chat_id), "--message-id", "999"])

    assert code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["error_kind"] == "not_found"


def test_cli_rejects_invalid_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROPOSAL_GATE_MAX_FILE_BYTES", "many")
    assert main(["show", "--chat-id", "1"]) == 2
