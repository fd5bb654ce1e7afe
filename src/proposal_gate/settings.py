from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class GateSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    db_path: str = "proposal_gate.sqlite"
    apps_root: str = ""
    audit_dir: str = ""
    max_file_bytes: int = 5_000_000
    busy_timeout_ms: int = 5_000

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> "GateSettings":
        """Build settings from ``PROPOSAL_GATE_*`` variables.

        A ``.env`` file (``env_file`` or ``./.env``) is loaded first; values
        already present in the environment take precedence.
        """
        dotenv_path = env_file if env_file is not None else Path.cwd() / ".env"
        if dotenv_path.is_file():
            load_dotenv(dotenv_path)
        return cls(
            db_path=os.getenv("PROPOSAL_GATE_DB_PATH", "proposal_gate.sqlite"),
            apps_root=os.getenv("PROPOSAL_GATE_APPS_ROOT", ""),
            audit_dir=os.getenv("PROPOSAL_GATE_AUDIT_DIR", ""),
            max_file_bytes=_get_env_int("PROPOSAL_GATE_MAX_FILE_BYTES", default=5_000_000, minimum=1),
            busy_timeout_ms=_get_env_int("PROPOSAL_GATE_BUSY_TIMEOUT_MS", default=5_000, minimum=0, maximum=600_000),
        ).normalized()

    @property
    def apps_root_path(self) -> Path:
        """Return the apps root as a Path, defaulting to cwd if unset."""
        return Path(self.apps_root) if self.apps_root else Path.cwd()

    @property
    def audit_dir_path(self) -> Path | None:
        return Path(self.audit_dir) if self.audit_dir else None

    def normalized(self) -> "GateSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        db_path = self.db_path.strip()
        if not db_path:
            raise ValueError("PROPOSAL_GATE_DB_PATH must be non-empty")
        if self.max_file_bytes < 1:
            raise ValueError(f"PROPOSAL_GATE_MAX_FILE_BYTES must be >= 1, got: {self.max_file_bytes}")
        if self.busy_timeout_ms < 0:
            raise ValueError(f"PROPOSAL_GATE_BUSY_TIMEOUT_MS must be >= 0, got: {self.busy_timeout_ms}")
        return GateSettings(
            db_path=db_path,
            apps_root=self.apps_root.strip(),
            audit_dir=self.audit_dir.strip(),
            max_file_bytes=self.max_file_bytes,
            busy_timeout_ms=self.busy_timeout_ms,
        )

    def db_file(self, base: Path) -> Path:
        path = Path(self.db_path)
        return path if path.is_absolute() else base / path


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound.

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
