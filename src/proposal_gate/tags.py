"""Directive extraction from free-form assistant text.

Assistant messages embed directives inline using two tags::

    <chat-summary>Rename util</chat-summary>
    <file-write path="src/a.ts" description="Add constant">
    export const a=1;
    </file-write>

Extraction never raises.  Malformed, unterminated or incomplete tags are
dropped (and logged at DEBUG) while every well-formed tag around them is
still returned.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from .models import Directive, FileWriteDirective, SummaryDirective

logger = logging.getLogger(__name__)

SUMMARY_TAG = "chat-summary"
FILE_WRITE_TAG = "file-write"

# One attribute per repetition, each starting after whitespace; names never
# contain whitespace or ``=``.  Quoted values may contain ``>``.
_ATTRS = r"""(?P<attrs>(?:\s+[^\s<>"'=]+(?:\s*=\s*(?:"[^"]*"|'[^']*'|[^\s"'<>]+))?)*)"""
_ATTR_RE = re.compile(
    r"""(?P<name>[A-Za-z_][\w-]*)\s*=\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<bare>[^\s"'>]+))"""
)


def _block_pattern(tag: str) -> re.Pattern[str]:
    # The body never contains another opening tag of the same name: an
    # unterminated block cannot swallow the block that follows it.
    return re.compile(
        rf"<{tag}(?=[\s>]){_ATTRS}\s*>(?P<body>(?:(?!<{tag}[\s>]).)*?)</{tag}\s*>",
        re.DOTALL | re.IGNORECASE,
    )


def _open_pattern(tag: str) -> re.Pattern[str]:
    return re.compile(rf"<{tag}[\s>]", re.IGNORECASE)


_SUMMARY_RE = _block_pattern(SUMMARY_TAG)
_FILE_WRITE_RE = _block_pattern(FILE_WRITE_TAG)
_SUMMARY_OPEN_RE = _open_pattern(SUMMARY_TAG)
_FILE_WRITE_OPEN_RE = _open_pattern(FILE_WRITE_TAG)


@dataclass(frozen=True)
class _Located:
    start: int
    end: int
    directive: Directive


def parse_attributes(raw: str) -> dict[str, str]:
    """Parse ``name="value"`` pairs from an opening tag.

    Single quotes and bare values are accepted.  Names are lower-cased; the
    first occurrence of a name wins.
    """
    attributes: dict[str, str] = {}
    for match in _ATTR_RE.finditer(raw or ""):
        name = match.group("name").lower()
        if name in attributes:
            continue
        for group in ("dq", "sq", "bare"):
            value = match.group(group)
            if value is not None:
                attributes[name] = value
                break
    return attributes


def _strip_delimiter_newline(body: str) -> str:
    if body.startswith("\r\n"):
        return body[2:]
    if body.startswith("\n"):
        return body[1:]
    return body


def _scan_file_writes(text: str) -> list[_Located]:
    located: list[_Located] = []
    for match in _FILE_WRITE_RE.finditer(text):
        attributes = parse_attributes(match.group("attrs"))
        path = attributes.get("path", "").strip()
        if not path:
            logger.debug("Dropping %s tag at offset %d: missing path attribute", FILE_WRITE_TAG, match.start())
            continue
        description = attributes.get("description", "").strip() or None
        directive = FileWriteDirective(
            path=path,
            content=_strip_delimiter_newline(match.group("body")),
            description=description,
        )
        located.append(_Located(match.start(), match.end(), directive))

    opened = len(_FILE_WRITE_OPEN_RE.findall(text))
    if opened > len(located):
        logger.debug("Ignored %d malformed or unterminated %s tag(s)", opened - len(located), FILE_WRITE_TAG)
    return located


def _scan_summaries(text: str, write_spans: list[tuple[int, int]]) -> list[_Located]:
    located: list[_Located] = []
    for match in _SUMMARY_RE.finditer(text):
        if any(start <= match.start() < end for start, end in write_spans):
            # Part of a file body, not a directive.
            continue
        summary = match.group("body").strip()
        if not summary:
            logger.debug("Dropping empty %s tag at offset %d", SUMMARY_TAG, match.start())
            continue
        located.append(_Located(match.start(), match.end(), SummaryDirective(text=summary)))

    if len(_SUMMARY_OPEN_RE.findall(text)) > len(located):
        logger.debug("Ignored malformed, empty or embedded %s tag(s)", SUMMARY_TAG)
    return located


def _scan(text: object) -> tuple[list[_Located], list[_Located]]:
    if not isinstance(text, str) or not text:
        return [], []
    writes = _scan_file_writes(text)
    summaries = _scan_summaries(text, [(item.start, item.end) for item in writes])
    return summaries, writes


def extract_summary(text: object) -> str | None:
    """Return the first non-empty summary directive, or None."""
    summaries, _ = _scan(text)
    if not summaries:
        return None
    first = summaries[0].directive
    return first.text if isinstance(first, SummaryDirective) else None


def extract_file_writes(text: object) -> list[FileWriteDirective]:
    """Return every well-formed file-write directive in encounter order.

    Repeated paths are all kept; deciding between them is up to the caller.
    """
    _, writes = _scan(text)
    return [item.directive for item in writes if isinstance(item.directive, FileWriteDirective)]


def extract_directives(text: object) -> list[Directive]:
    """Return summary and file-write directives in document order."""
    summaries, writes = _scan(text)
    ordered = sorted([*summaries, *writes], key=lambda item: item.start)
    return [item.directive for item in ordered]
