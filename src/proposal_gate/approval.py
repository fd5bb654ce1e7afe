"""Review lifecycle of assistant messages.

``pending`` is the only state with outgoing transitions; ``approved`` and
``rejected`` are terminal.  Approval runs the message's file actions before
the state is committed, so a batch that cannot run at all leaves the message
pending and retryable.  Repeating approve/reject on a reviewed message is
reported as ``already_reviewed`` and never re-runs actions.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from .actions import ActionProcessor, StructuralFailure
from .message_store import MessageStore
from .models import (
    ApprovalState,
    Proposal,
    ReviewErrorKind,
    ReviewResult,
    StoredMessage,
)
from .proposals import build_proposal

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Assistant message not found."


@dataclass
class _MessageLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Callers holding or waiting on the lock; the entry is dropped at zero.
    holders: int = 0


class ApprovalStateMachine:
    def __init__(self, store: MessageStore, processor: ActionProcessor) -> None:
        self.store = store
        self.processor = processor
        self._locks: dict[int, _MessageLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _message_lock(self, message_id: int) -> Iterator[None]:
        # Serializes check -> apply -> commit for one message inside this
        # process; the store's conditional update covers other processes.
        with self._locks_guard:
            entry = self._locks.get(message_id)
            if entry is None:
                entry = self._locks[message_id] = _MessageLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[message_id]

    def get_actionable_message(self, conversation_id: int) -> tuple[StoredMessage, Proposal] | None:
        """Return the latest assistant message and its proposal if it awaits review."""
        message = self.store.find_latest_assistant_message(conversation_id)
        if message is None:
            logger.info("No assistant message found for conversation %s", conversation_id)
            return None
        if message.approval_state is not ApprovalState.PENDING:
            logger.debug(
                "Latest assistant message %s of conversation %s is already %s",
                message.id,
                conversation_id,
                message.approval_state.value,
            )
            return None
        proposal = build_proposal(message.id, message.body)
        if proposal is None:
            return None
        return message, proposal

    def _pending_message(self, conversation_id: int, message_id: int) -> StoredMessage | ReviewResult:
        message = self.store.find_message(conversation_id, message_id)
        if message is None:
            logger.error(
                "Assistant message not found for conversation %s, message %s",
                conversation_id,
                message_id,
            )
            return ReviewResult.failed(ReviewErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE)
        if message.approval_state is not ApprovalState.PENDING:
            logger.warning("Message %s was already %s", message_id, message.approval_state.value)
            return ReviewResult.failed(
                ReviewErrorKind.ALREADY_REVIEWED,
                f"Message {message_id} has already been {message.approval_state.value}.",
            )
        return message

    def approve(self, conversation_id: int, message_id: int) -> ReviewResult:
        with self._message_lock(message_id):
            found = self._pending_message(conversation_id, message_id)
            if isinstance(found, ReviewResult):
                return found

            try:
                aggregate = self.processor.apply_message(found.body, conversation_id)
            except StructuralFailure as exc:
                logger.error("Error processing actions for message %s: %s", message_id, exc)
                return ReviewResult.failed(
                    ReviewErrorKind.STRUCTURAL_FAILURE,
                    f"Action processing failed: {exc}",
                )

            if not self.store.set_approval_state(message_id, ApprovalState.APPROVED):
                return ReviewResult.failed(
                    ReviewErrorKind.ALREADY_REVIEWED,
                    f"Message {message_id} was reviewed concurrently.",
                    actions=aggregate,
                )

        logger.info("Message %s marked as approved.", message_id)
        warning = aggregate.failure_report() or None
        return ReviewResult.ok(warning=warning, actions=aggregate)

    def reject(self, conversation_id: int, message_id: int) -> ReviewResult:
        with self._message_lock(message_id):
            found = self._pending_message(conversation_id, message_id)
            if isinstance(found, ReviewResult):
                return found
            if not self.store.set_approval_state(message_id, ApprovalState.REJECTED):
                return ReviewResult.failed(
                    ReviewErrorKind.ALREADY_REVIEWED,
                    f"Message {message_id} was reviewed concurrently.",
                )

        logger.info("Message %s marked as rejected.", message_id)
        return ReviewResult.ok()
