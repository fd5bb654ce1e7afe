from __future__ import annotations

import fcntl
import logging
import os
import stat
import tempfile
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator

from .canonical import to_canonical_json
from .message_store import ProjectRootResolver
from .models import (
    NO_SUMMARY_SENTINEL,
    ActionOutcome,
    AggregateResult,
    FileActionResult,
    FileWriteDirective,
    SummaryDirective,
)
from .tags import extract_directives

logger = logging.getLogger(__name__)

_LOCK_SUFFIX = ".lock"
_UMASK_GUARD = threading.Lock()


class StructuralFailure(RuntimeError):
    """Raised when an action batch cannot be processed at all.

    Nothing has been written when this is raised, so the caller may leave
    the source message pending and retry later.
    """


class UnsafePathError(ValueError):
    """Raised when a directive path is absolute or escapes the project root."""


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

@contextmanager
def _locked_file(path: Path) -> Iterator[None]:
    """Hold an exclusive ``fcntl`` lock on a ``.lock`` sidecar of *path*."""
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _current_umask() -> int:
    with _UMASK_GUARD:
        mask = os.umask(0)
        os.umask(mask)
    return mask


def _mode_for(path: Path) -> int:
    """Mode a rewritten *path* should carry: its current one, else the umask default."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        return 0o666 & ~_current_umask()


def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* via a temp file and ``os.replace``.

    Readers never observe a half-written file.  Parent directories are
    created as needed.  An existing file keeps its permission bits; a new
    one gets ``0o666`` minus the process umask.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = _mode_for(path)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
            os.fchmod(tmp_handle.fileno(), mode)
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def resolve_target(root: Path, relative: str) -> Path:
    """Resolve a directive path inside *root*.

    Raises:
        UnsafePathError: If the path is empty, absolute, drive-qualified, or
            resolves outside of *root* (including through symlinks).
    """
    normalized = relative.strip().replace("\\", "/")
    candidate = PurePosixPath(normalized)
    if not normalized or candidate.is_absolute() or (len(normalized) > 1 and normalized[1] == ":"):
        raise UnsafePathError(f"Refusing absolute or empty path: {relative!r}")
    if ".." in candidate.parts:
        raise UnsafePathError(f"Refusing path that escapes the project root: {relative!r}")
    parts = [part for part in candidate.parts if part not in ("", ".")]
    if not parts:
        raise UnsafePathError(f"Path does not name a file: {relative!r}")

    target = root.joinpath(*parts)
    resolved_root = root.resolve()
    if not target.resolve().is_relative_to(resolved_root):
        raise UnsafePathError(f"Path resolves outside the project root: {relative!r}")
    return target


# ---------------------------------------------------------------------------
# ActionProcessor
# ---------------------------------------------------------------------------

class ActionProcessor:
    """Execute approved file-write directives against a conversation's project.

    Each directive is attempted independently; failures are collected into the
    returned ``AggregateResult`` instead of being raised.  Only conditions that
    prevent the batch from running at all raise ``StructuralFailure``.
    """

    def __init__(
        self,
        resolver: ProjectRootResolver,
        *,
        audit_dir: Path | None = None,
        max_file_bytes: int = 5_000_000,
    ) -> None:
        self.resolver = resolver
        self.audit_dir = audit_dir
        self.max_file_bytes = max_file_bytes

    def project_root(self, conversation_id: int) -> Path:
        try:
            root = self.resolver.resolve_project_root(conversation_id)
        except Exception as exc:  # noqa: BLE001 - resolver is an external collaborator.
            raise StructuralFailure(f"Could not resolve project root for conversation {conversation_id}: {exc}") from exc
        if root is None:
            raise StructuralFailure(f"No project is associated with conversation {conversation_id}")
        if not root.is_dir():
            raise StructuralFailure(f"Project root for conversation {conversation_id} is not a directory: {root}")
        return root

    def apply_message(self, body: str, conversation_id: int) -> AggregateResult:
        """Parse *body* and apply every directive it carries."""
        if not isinstance(body, str):
            raise StructuralFailure(f"Message content is not text: {type(body).__name__}")
        directives = extract_directives(body)
        summary = next((item.text for item in directives if isinstance(item, SummaryDirective)), None)
        return self.apply(directives, conversation_id, chat_summary=summary)

    def apply(
        self,
        directives: Iterable[object],
        conversation_id: int,
        *,
        chat_summary: str | None = None,
    ) -> AggregateResult:
        """Write each file directive in order and return the per-action outcome.

        Summary directives carry no file action and are skipped.  Repeated
        paths are written in order, so the last one wins on disk.

        Raises:
            StructuralFailure: If the batch is not a sequence of directives or
                it holds file writes and the project root cannot be resolved.
        """
        try:
            batch = list(directives)
        except TypeError as exc:
            raise StructuralFailure(f"Action batch is not a sequence of directives: {exc}") from exc
        for item in batch:
            if not isinstance(item, (FileWriteDirective, SummaryDirective)):
                raise StructuralFailure(f"Unsupported directive in action batch: {type(item).__name__}")
        writes = [item for item in batch if isinstance(item, FileWriteDirective)]
        results: list[FileActionResult] = []
        if writes:
            root = self.project_root(conversation_id)
            results = [self._write_one(root, directive) for directive in writes]
        aggregate = AggregateResult(results=results, chat_summary=chat_summary)
        self._record_audit(conversation_id, aggregate)

        if aggregate.success:
            logger.info("Applied %d file action(s) for conversation %s", len(results), conversation_id)
        else:
            logger.warning(
                "Conversation %s: %s",
                conversation_id,
                aggregate.failure_report(),
            )
        return aggregate

    def _write_one(self, root: Path, directive: FileWriteDirective) -> FileActionResult:
        summary = directive.description or NO_SUMMARY_SENTINEL
        try:
            size = len(directive.content.encode("utf-8"))
            if size > self.max_file_bytes:
                raise ValueError(f"content is {size} bytes, limit is {self.max_file_bytes}")
            target = resolve_target(root, directive.path)
            _atomic_write_text(target, directive.content)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to write %s: %s", directive.path, exc)
            return FileActionResult(
                path=directive.path,
                outcome=ActionOutcome.FAILURE,
                summary=summary,
                error=str(exc) or type(exc).__name__,
            )
        logger.debug("Wrote %s (%s)", target, summary)
        return FileActionResult(path=directive.path, outcome=ActionOutcome.SUCCESS, summary=summary)

    def _record_audit(self, conversation_id: int, aggregate: AggregateResult) -> None:
        if self.audit_dir is None:
            return
        log_path = self.audit_dir / f"{conversation_id}.jsonl"
        recorded_at = datetime.now(UTC)
        lines = [
            to_canonical_json(
                {
                    "conversation_id": conversation_id,
                    "recorded_at": recorded_at,
                    "chat_summary": aggregate.chat_summary,
                    **result.model_dump(mode="json"),
                }
            )
            for result in aggregate.results
        ]
        if not lines:
            return
        try:
            with _locked_file(log_path):
                with log_path.open("a", encoding="utf-8") as handle:
                    handle.write("\n".join(lines) + "\n")
        except OSError as exc:
            logger.error("Could not append audit records to %s: %s", log_path, exc)
