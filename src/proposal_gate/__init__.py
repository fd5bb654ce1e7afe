from importlib.metadata import version

from .actions import ActionProcessor, StructuralFailure, UnsafePathError
from .approval import ApprovalStateMachine
from .canonical import to_canonical_json
from .handlers import ProposalHandlers
from .message_store import (
    FixedRootResolver,
    InMemoryMessageStore,
    MessageStore,
    ProjectRootResolver,
    SqliteMessageStore,
)
from .models import (
    APPROVAL_STATE_TRANSITIONS,
    FALLBACK_PROPOSAL_TITLE,
    NO_SUMMARY_SENTINEL,
    ActionOutcome,
    AggregateResult,
    ApprovalState,
    Directive,
    FileActionResult,
    FileChange,
    FileWriteDirective,
    MessageRole,
    Proposal,
    ProposalResult,
    ReviewErrorKind,
    ReviewResult,
    StoredMessage,
    SummaryDirective,
)
from .proposals import build_proposal
from .settings import GateSettings
from .tags import extract_directives, extract_file_writes, extract_summary


def get_version() -> str:
    try:
        return version("proposal-gate")
    except Exception:
        return "0.0.0"


__all__ = [
    "APPROVAL_STATE_TRANSITIONS",
    "ActionOutcome",
    "ActionProcessor",
    "AggregateResult",
    "ApprovalState",
    "ApprovalStateMachine",
    "Directive",
    "FALLBACK_PROPOSAL_TITLE",
    "FileActionResult",
    "FileChange",
    "FileWriteDirective",
    "FixedRootResolver",
    "GateSettings",
    "InMemoryMessageStore",
    "MessageRole",
    "MessageStore",
    "NO_SUMMARY_SENTINEL",
    "ProjectRootResolver",
    "Proposal",
    "ProposalHandlers",
    "ProposalResult",
    "ReviewErrorKind",
    "ReviewResult",
    "SqliteMessageStore",
    "StoredMessage",
    "StructuralFailure",
    "SummaryDirective",
    "UnsafePathError",
    "build_proposal",
    "extract_directives",
    "extract_file_writes",
    "extract_summary",
    "get_version",
    "to_canonical_json",
]
