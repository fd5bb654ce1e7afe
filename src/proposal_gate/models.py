from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .canonical import to_canonical_json

FALLBACK_PROPOSAL_TITLE = "Proposed File Changes"
NO_SUMMARY_SENTINEL = "(no change summary found)"


class ApprovalState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


APPROVAL_STATE_TRANSITIONS: dict[ApprovalState, frozenset[ApprovalState]] = {
    ApprovalState.PENDING: frozenset({ApprovalState.APPROVED, ApprovalState.REJECTED}),
    ApprovalState.APPROVED: frozenset(),
    ApprovalState.REJECTED: frozenset(),
}


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ActionOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class ReviewErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_REVIEWED = "already_reviewed"
    STRUCTURAL_FAILURE = "structural_failure"
    STORE_ERROR = "store_error"


# ---------------------------------------------------------------------------
# Directives
# ---------------------------------------------------------------------------

class SummaryDirective(BaseModel):
    """One-line title/summary of the change set."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["summary"] = "summary"
    text: str = Field(min_length=1)


class FileWriteDirective(BaseModel):
    """Write ``content`` verbatim to ``path`` (relative to the project root)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["file_write"] = "file_write"
    path: str = Field(min_length=1)
    content: str
    description: str | None = None


Directive = Annotated[Union[SummaryDirective, FileWriteDirective], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Proposal
# ---------------------------------------------------------------------------

class FileChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    display_name: str
    summary: str


class Proposal(BaseModel):
    """Reviewable view over the directives of one assistant message.

    Computed on every request from the message body; never persisted.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["code-proposal"] = "code-proposal"
    title: str
    files_changed: list[FileChange] = Field(default_factory=list)
    security_risks: list[str] = Field(default_factory=list)

    @property
    def fingerprint(self) -> str:
        canonical = to_canonical_json(self)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class ProposalResult(BaseModel):
    """A proposal awaiting review, tied to its source message.

    ``fingerprint`` is the SHA-256 of the proposal's canonical JSON, so a
    caller can tell whether two fetches describe the same change set.
    """

    proposal: Proposal
    conversation_id: int
    message_id: int
    fingerprint: str


# ---------------------------------------------------------------------------
# Messages (owned by the external store)
# ---------------------------------------------------------------------------

class StoredMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    conversation_id: int
    role: MessageRole
    body: str
    approval_state: ApprovalState = ApprovalState.PENDING
    created_at: datetime


# ---------------------------------------------------------------------------
# Action results
# ---------------------------------------------------------------------------

class FileActionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    outcome: ActionOutcome
    summary: str = NO_SUMMARY_SENTINEL
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is ActionOutcome.SUCCESS


class AggregateResult(BaseModel):
    """Outcome of one action batch; ``success`` only if every action succeeded."""

    results: list[FileActionResult] = Field(default_factory=list)
    chat_summary: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return all(result.succeeded for result in self.results)

    @property
    def failures(self) -> list[FileActionResult]:
        return [result for result in self.results if not result.succeeded]

    def failure_report(self) -> str:
        failed = self.failures
        if not failed:
            return ""
        details = "; ".join(f"{result.path}: {result.error}" for result in failed)
        return f"{len(failed)} of {len(self.results)} file action(s) failed: {details}"


class ReviewResult(BaseModel):
    """Structured outcome of an approve/reject request."""

    success: bool
    error: str | None = None
    error_kind: ReviewErrorKind | None = None
    warning: str | None = None
    actions: AggregateResult | None = None

    @classmethod
    def ok(cls, *, warning: str | None = None, actions: AggregateResult | None = None) -> "ReviewResult":
        return cls(success=True, warning=warning, actions=actions)

    @classmethod
    def failed(cls, kind: ReviewErrorKind, error: str, *, actions: AggregateResult | None = None) -> "ReviewResult":
        return cls(success=False, error=error, error_kind=kind, actions=actions)
