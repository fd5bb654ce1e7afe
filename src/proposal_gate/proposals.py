from __future__ import annotations

import logging

from .models import (
    FALLBACK_PROPOSAL_TITLE,
    NO_SUMMARY_SENTINEL,
    FileChange,
    FileWriteDirective,
    Proposal,
)
from .tags import extract_file_writes, extract_summary

logger = logging.getLogger(__name__)


def display_name_for(path: str) -> str:
    """Return the last segment of a slash- or backslash-separated path."""
    trimmed = path.replace("\\", "/").rstrip("/")
    return trimmed.rsplit("/", 1)[-1] or path


def file_change_for(directive: FileWriteDirective) -> FileChange:
    return FileChange(
        path=directive.path,
        display_name=display_name_for(directive.path),
        summary=directive.description or NO_SUMMARY_SENTINEL,
    )


def build_proposal(message_id: int, text: str | None) -> Proposal | None:
    """Derive the reviewable proposal for one message body.

    Returns None when the text carries neither a summary nor a file write,
    i.e. there is nothing to review.
    """
    title = extract_summary(text)
    writes = extract_file_writes(text)
    if title is None and not writes:
        logger.debug("Message %s carries no directives", message_id)
        return None

    proposal = Proposal(
        title=title if title is not None else FALLBACK_PROPOSAL_TITLE,
        files_changed=[file_change_for(directive) for directive in writes],
    )
    logger.debug(
        "Built proposal for message %s: title=%r files=%d",
        message_id,
        proposal.title,
        len(proposal.files_changed),
    )
    return proposal
