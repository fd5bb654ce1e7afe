from __future__ import annotations

import logging
from pathlib import Path

from .actions import ActionProcessor
from .approval import ApprovalStateMachine
from .message_store import MessageStore, SqliteMessageStore
from .models import ProposalResult, ReviewErrorKind, ReviewResult
from .settings import GateSettings

logger = logging.getLogger(__name__)


class ProposalHandlers:
    """Caller-facing get/approve/reject operations.

    None of these raise: lookups degrade to ``None`` and review failures come
    back as ``ReviewResult`` values with a human-readable ``error``.
    """

    def __init__(self, store: MessageStore, machine: ApprovalStateMachine) -> None:
        self.store = store
        self.machine = machine

    @classmethod
    def from_settings(cls, settings: GateSettings, *, base_dir: Path | None = None) -> "ProposalHandlers":
        base = base_dir if base_dir is not None else Path.cwd()
        store = SqliteMessageStore(
            settings.db_file(base),
            apps_root=settings.apps_root_path,
            busy_timeout_ms=settings.busy_timeout_ms,
        )
        processor = ActionProcessor(
            store,
            audit_dir=settings.audit_dir_path,
            max_file_bytes=settings.max_file_bytes,
        )
        return cls(store, ApprovalStateMachine(store, processor))

    def get_proposal(self, conversation_id: int) -> ProposalResult | None:
        logger.info("get-proposal called for conversation %s", conversation_id)
        try:
            actionable = self.machine.get_actionable_message(conversation_id)
        except Exception as exc:  # noqa: BLE001 - retrieval degrades to "no proposal".
            logger.error("Error processing proposal for conversation %s: %s", conversation_id, exc)
            return None
        if actionable is None:
            return None
        message, proposal = actionable
        return ProposalResult(
            proposal=proposal,
            conversation_id=conversation_id,
            message_id=message.id,
            fingerprint=proposal.fingerprint,
        )

    def approve_proposal(self, conversation_id: int, message_id: int) -> ReviewResult:
        logger.info("approve-proposal called for conversation %s, message %s", conversation_id, message_id)
        try:
            result = self.machine.approve(conversation_id, message_id)
        except Exception as exc:  # noqa: BLE001 - callers always get a structured result.
            logger.exception("Error approving proposal for message %s", message_id)
            return ReviewResult.failed(ReviewErrorKind.STORE_ERROR, str(exc) or "Unknown error")

        summary = result.actions.chat_summary if result.actions is not None else None
        if result.success and summary:
            try:
                self.store.set_conversation_title(conversation_id, summary)
            except Exception as exc:  # noqa: BLE001 - title is cosmetic once approved.
                logger.warning("Could not update title of conversation %s: %s", conversation_id, exc)
        return result

    def reject_proposal(self, conversation_id: int, message_id: int) -> ReviewResult:
        logger.info("reject-proposal called for conversation %s, message %s", conversation_id, message_id)
        try:
            return self.machine.reject(conversation_id, message_id)
        except Exception as exc:  # noqa: BLE001 - callers always get a structured result.
            logger.exception("Error rejecting proposal for message %s", message_id)
            return ReviewResult.failed(ReviewErrorKind.STORE_ERROR, str(exc) or "Unknown error")
