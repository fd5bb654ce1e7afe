"""Message store contract and adapters.

The approval workflow only needs a narrow view of the conversation database:
look up assistant messages, conditionally update their approval state, and
find the project directory a conversation writes into.  ``MessageStore`` and
``ProjectRootResolver`` describe that view; ``SqliteMessageStore`` and
``InMemoryMessageStore`` implement it.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import closing, contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterator, Protocol

from .models import APPROVAL_STATE_TRANSITIONS, ApprovalState, MessageRole, StoredMessage

logger = logging.getLogger(__name__)


class MessageStore(Protocol):
    """Lookup/update contract consumed by the approval workflow."""

    def find_latest_assistant_message(self, conversation_id: int) -> StoredMessage | None:
        ...

    def find_message(
        self,
        conversation_id: int,
        message_id: int,
        role: MessageRole = MessageRole.ASSISTANT,
    ) -> StoredMessage | None:
        ...

    def set_approval_state(
        self,
        message_id: int,
        state: ApprovalState,
        *,
        expected: ApprovalState = ApprovalState.PENDING,
    ) -> bool:
        """Set ``state`` only if the message is currently in ``expected``.

        Returns False when the current state differs (or the message is gone).
        """
        ...

    def set_conversation_title(self, conversation_id: int, title: str) -> None:
        ...


class ProjectRootResolver(Protocol):
    def resolve_project_root(self, conversation_id: int) -> Path | None:
        ...


def _assert_transition(expected: ApprovalState, state: ApprovalState) -> None:
    if state not in APPROVAL_STATE_TRANSITIONS[expected]:
        raise ValueError(f"Illegal approval state transition: {expected.value} -> {state.value}")


@dataclass(frozen=True)
class FixedRootResolver:
    """Resolve every conversation to the same project directory."""

    root: Path

    def resolve_project_root(self, conversation_id: int) -> Path | None:
        return self.root


# ---------------------------------------------------------------------------
# SQLite adapter
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS apps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    path TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS chats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    app_id INTEGER NOT NULL REFERENCES apps(id) ON DELETE CASCADE,
    title TEXT
);
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id INTEGER NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    approval_state TEXT CHECK (approval_state IN ('pending', 'approved', 'rejected')),
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_chat_role ON messages (chat_id, role, created_at);
"""

_MESSAGE_COLUMNS = "id, chat_id, role, content, approval_state, created_at"


class SqliteMessageStore:
    """SQLite-backed conversation store.

    A NULL ``approval_state`` is read as ``pending``.  Approval updates are
    conditional on the current state so two reviewers cannot both win.
    Relative app paths are resolved against ``apps_root``.
    """

    def __init__(self, db_path: Path, *, apps_root: Path | None = None, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.apps_root = apps_root if apps_root is not None else Path.cwd()
        self.busy_timeout_ms = busy_timeout_ms
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(str(self.db_path), timeout=self.busy_timeout_ms / 1000)) as conn:
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)};")
            conn.execute("PRAGMA foreign_keys=ON;")
            with conn:
                yield conn

    def ensure_schema(self) -> None:
        with closing(sqlite3.connect(str(self.db_path))) as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.executescript(_SCHEMA)
        logger.debug("Message store schema ready at %s", self.db_path)

    # ------------------------------------------------------------------
    # Seeding (owned upstream in production)
    # ------------------------------------------------------------------

    def create_app(self, name: str, path: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute("INSERT INTO apps (name, path) VALUES (?, ?)", (name, path))
            return int(cursor.lastrowid)

    def create_chat(self, app_id: int, title: str | None = None) -> int:
        with self._connect() as conn:
            cursor = conn.execute("INSERT INTO chats (app_id, title) VALUES (?, ?)", (app_id, title))
            return int(cursor.lastrowid)

    def add_message(
        self,
        chat_id: int,
        role: MessageRole,
        content: str,
        *,
        approval_state: ApprovalState | None = None,
        created_at: datetime | None = None,
    ) -> int:
        timestamp = (created_at or datetime.now(UTC)).isoformat()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO messages (chat_id, role, content, approval_state, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    chat_id,
                    MessageRole(role).value,
                    content,
                    approval_state.value if approval_state is not None else None,
                    timestamp,
                ),
            )
            return int(cursor.lastrowid)

    # ------------------------------------------------------------------
    # MessageStore
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> StoredMessage:
        return StoredMessage(
            id=row["id"],
            conversation_id=row["chat_id"],
            role=MessageRole(row["role"]),
            body=row["content"],
            approval_state=ApprovalState(row["approval_state"] or ApprovalState.PENDING.value),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def find_latest_assistant_message(self, conversation_id: int) -> StoredMessage | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE chat_id = ? AND role = ? "
                "ORDER BY created_at DESC, id DESC LIMIT 1",
                (conversation_id, MessageRole.ASSISTANT.value),
            ).fetchone()
        return self._row_to_message(row) if row is not None else None

    def find_message(
        self,
        conversation_id: int,
        message_id: int,
        role: MessageRole = MessageRole.ASSISTANT,
    ) -> StoredMessage | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ? AND chat_id = ? AND role = ?",
                (message_id, conversation_id, MessageRole(role).value),
            ).fetchone()
        return self._row_to_message(row) if row is not None else None

    def set_approval_state(
        self,
        message_id: int,
        state: ApprovalState,
        *,
        expected: ApprovalState = ApprovalState.PENDING,
    ) -> bool:
        _assert_transition(expected, state)
        if expected is ApprovalState.PENDING:
            condition = "(approval_state IS NULL OR approval_state = ?)"
        else:
            condition = "approval_state = ?"
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE messages SET approval_state = ? WHERE id = ? AND {condition}",
                (state.value, message_id, expected.value),
            )
            updated = cursor.rowcount == 1
        if not updated:
            logger.warning(
                "Approval state of message %s not updated to %s: no longer %s",
                message_id,
                state.value,
                expected.value,
            )
        return updated

    def set_conversation_title(self, conversation_id: int, title: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE chats SET title = ? WHERE id = ?", (title, conversation_id))

    def get_conversation_title(self, conversation_id: int) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT title FROM chats WHERE id = ?", (conversation_id,)).fetchone()
        return row["title"] if row is not None else None

    # ------------------------------------------------------------------
    # ProjectRootResolver
    # ------------------------------------------------------------------

    def resolve_project_root(self, conversation_id: int) -> Path | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT apps.path AS path FROM chats JOIN apps ON apps.id = chats.app_id WHERE chats.id = ?",
                (conversation_id,),
            ).fetchone()
        if row is None or not str(row["path"]).strip():
            return None
        path = Path(row["path"])
        return path if path.is_absolute() else self.apps_root / path


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------

class InMemoryMessageStore:
    """Dict-backed store for embedding callers and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: dict[int, StoredMessage] = {}
        self._titles: dict[int, str] = {}
        self._next_id = 1

    def add_message(
        self,
        conversation_id: int,
        role: MessageRole,
        body: str,
        *,
        approval_state: ApprovalState = ApprovalState.PENDING,
        created_at: datetime | None = None,
    ) -> int:
        with self._lock:
            message_id = self._next_id
            self._next_id += 1
            self._messages[message_id] = StoredMessage(
                id=message_id,
                conversation_id=conversation_id,
                role=MessageRole(role),
                body=body,
                approval_state=approval_state,
                created_at=created_at or datetime.now(UTC),
            )
        return message_id

    def get(self, message_id: int) -> StoredMessage | None:
        with self._lock:
            return self._messages.get(message_id)

    def find_latest_assistant_message(self, conversation_id: int) -> StoredMessage | None:
        with self._lock:
            candidates = [
                message
                for message in self._messages.values()
                if message.conversation_id == conversation_id and message.role is MessageRole.ASSISTANT
            ]
        if not candidates:
            return None
        return max(candidates, key=lambda message: (message.created_at, message.id))

    def find_message(
        self,
        conversation_id: int,
        message_id: int,
        role: MessageRole = MessageRole.ASSISTANT,
    ) -> StoredMessage | None:
        with self._lock:
            message = self._messages.get(message_id)
        if message is None or message.conversation_id != conversation_id or message.role is not MessageRole(role):
            return None
        return message

    def set_approval_state(
        self,
        message_id: int,
        state: ApprovalState,
        *,
        expected: ApprovalState = ApprovalState.PENDING,
    ) -> bool:
        _assert_transition(expected, state)
        with self._lock:
            message = self._messages.get(message_id)
            if message is None or message.approval_state is not expected:
                return False
            self._messages[message_id] = message.model_copy(update={"approval_state": state})
        return True

    def set_conversation_title(self, conversation_id: int, title: str) -> None:
        with self._lock:
            self._titles[conversation_id] = title

    def get_conversation_title(self, conversation_id: int) -> str | None:
        with self._lock:
            return self._titles.get(conversation_id)
