from __future__ import annotations

from pathlib import Path

from proposal_gate.actions import ActionProcessor
from proposal_gate.approval import ApprovalStateMachine
from proposal_gate.handlers import ProposalHandlers
from proposal_gate.message_store import SqliteMessageStore
from proposal_gate.models import ApprovalState, MessageRole, ReviewErrorKind
from proposal_gate.settings import GateSettings

BODY = (
    "Here is the refactor.\n"
    "<chat-summary>Rename util</chat-summary>\n"
    '<file-write path="src/a.ts" description="Export constant">export const a=1;</file-write>'
)


def _handlers(tmp_path: Path) -> tuple[ProposalHandlers, SqliteMessageStore, int, Path]:
    settings = GateSettings(
        db_path=str(tmp_path / "gate.sqlite"),
        apps_root=str(tmp_path / "apps"),
        audit_dir=str(tmp_path / "audit"),
    )
    handlers = ProposalHandlers.from_settings(settings)
    store = handlers.store
    assert isinstance(store, SqliteMessageStore)
    project = tmp_path / "apps" / "demo"
    project.mkdir(parents=True)
    chat_id = store.create_chat(store.create_app("demo", "demo"), title="Untitled")
    return handlers, store, chat_id, project


def test_get_proposal_returns_message_identity(tmp_path: Path) -> None:
    handlers, store, chat_id, _ = _handlers(tmp_path)
    message_id = store.add_message(chat_id, MessageRole.ASSISTANT, BODY)

    found = handlers.get_proposal(chat_id)

    assert found is not None
    assert found.conversation_id == chat_id
    assert found.message_id == message_id
    assert found.proposal.title == "Rename util"
    assert found.proposal.files_changed[0].summary == "Export constant"


def test_get_proposal_exposes_stable_fingerprint(tmp_path: Path) -> None:
    handlers, store, chat_id, _ = _handlers(tmp_path)
    store.add_message(chat_id, MessageRole.ASSISTANT, BODY)

    first = handlers.get_proposal(chat_id)
    second = handlers.get_proposal(chat_id)

    assert first is not None and second is not None
    assert first.fingerprint == first.proposal.fingerprint
    assert len(first.fingerprint) == 64
    assert second.fingerprint == first.fingerprint

    newer_id = store.add_message(chat_id, MessageRole.ASSISTANT, BODY.replace("src/a.ts", "src/b.ts"))
    newer = handlers.get_proposal(chat_id)

    assert newer is not None and newer.message_id == newer_id
    assert newer.fingerprint != first.fingerprint


def test_approve_applies_files_renames_chat_and_hides_proposal(tmp_path: Path) -> None:
    handlers, store, chat_id, project = _handlers(tmp_path)
    message_id = store.add_message(chat_id, MessageRole.ASSISTANT, BODY)

    result = handlers.approve_proposal(chat_id, message_id)

    assert result.success is True
    assert (project / "src" / "a.ts").read_text(encoding="utf-8") == "export const a=1;"
    assert store.get_conversation_title(chat_id) == "Rename util"
    assert store.find_message(chat_id, message_id).approval_state is ApprovalState.APPROVED
    assert handlers.get_proposal(chat_id) is None
    assert (tmp_path / "audit" / f"{chat_id}.jsonl").is_file()


def test_approve_without_project_directory_is_structural_and_retryable(tmp_path: Path) -> None:
    handlers, store, chat_id, project = _handlers(tmp_path)
    project.rmdir()
    message_id = store.add_message(chat_id, MessageRole.ASSISTANT, BODY)

    result = handlers.approve_proposal(chat_id, message_id)

    assert result.success is False
    assert result.error_kind is ReviewErrorKind.STRUCTURAL_FAILURE
    assert store.get_conversation_title(chat_id) == "Untitled"
    assert handlers.get_proposal(chat_id) is not None


def test_reject_then_approve_is_already_reviewed(tmp_path: Path) -> None:
    handlers, store, chat_id, project = _handlers(tmp_path)
    message_id = store.add_message(chat_id, MessageRole.ASSISTANT, BODY)

    assert handlers.reject_proposal(chat_id, message_id).success is True
    again = handlers.approve_proposal(chat_id, message_id)

    assert again.success is False
    assert again.error_kind is ReviewErrorKind.ALREADY_REVIEWED
    assert list(project.iterdir()) == []


def test_store_errors_become_structured_results(tmp_path: Path) -> None:
    class _BrokenStore:
        def find_latest_assistant_message(self, conversation_id: int):  # noqa: ANN201
            raise RuntimeError("database is locked")

        def find_message(self, conversation_id: int, message_id: int, role: MessageRole = MessageRole.ASSISTANT):  # noqa: ANN201
            raise RuntimeError("database is locked")

        def set_approval_state(self, message_id: int, state: ApprovalState, *, expected: ApprovalState = ApprovalState.PENDING) -> bool:
            raise RuntimeError("database is locked")

        def set_conversation_title(self, conversation_id: int, title: str) -> None:
            raise RuntimeError("database is locked")

        def resolve_project_root(self, conversation_id: int) -> Path | None:
            return tmp_path

    store = _BrokenStore()
    handlers = ProposalHandlers(store, ApprovalStateMachine(store, ActionProcessor(store)))

    assert handlers.get_proposal(1) is None
    for result in (handlers.approve_proposal(1, 2), handlers.reject_proposal(1, 2)):
        assert result.success is False
        assert result.error_kind is ReviewErrorKind.STORE_ERROR
        assert result.error == "database is locked"
