"""
Audit ledger — one NDJSON line per terrastack command.

The lock table only answers "who holds this state right now". The
ledger, kept at ``<working-dir>/.terrastack/audit.ndjson``, answers
"what did this checkout run, as whom, and how did it end".

Appending is best effort: a ledger that cannot be written is logged
and the command carries on. Reading skips lines that no longer parse.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

LEDGER_DIR = ".terrastack"
LEDGER_FILE = "audit.ndjson"


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


class AuditEntry(BaseModel):
    """What one command did."""

    timestamp: str = Field(default_factory=_utc_now)
    operation_id: str = ""
    operation_type: str = ""       # module | stack | lock
    command: str = ""              # apply, destroy, acquire-lock, ...
    holder: str = ""

    modules_affected: list[str] = Field(default_factory=list)
    status: str = ""               # ok | failed
    modules_succeeded: int = 0
    modules_failed: int = 0
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)

    # state_id, failed_module, ...
    context: dict[str, Any] = Field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status == "failed"


def default_audit_path(working_dir: Path) -> Path:
    return working_dir / LEDGER_DIR / LEDGER_FILE


class AuditWriter:
    """Append entries to, and read them back from, one ledger file."""

    def __init__(self, path: Path):
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        record = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as ledger:
                ledger.write(record + "\n")
        except OSError as e:
            logger.error("Could not append to audit ledger %s: %s", self._path, e)
            return
        logger.debug(
            "Ledger: %s %s %s (%s)",
            entry.operation_type,
            entry.command,
            entry.status,
            entry.operation_id,
        )

    def read_all(self) -> list[AuditEntry]:
        """Every readable entry, oldest first."""
        return list(self._iter_entries())

    def recent(self, limit: int = 20, operation_type: str | None = None) -> list[AuditEntry]:
        """The last ``limit`` entries, optionally of one operation type."""
        matching = [
            entry
            for entry in self._iter_entries()
            if operation_type is None or entry.operation_type == operation_type
        ]
        return matching[-limit:] if limit > 0 else []

    def _iter_entries(self) -> Iterator[AuditEntry]:
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error("Could not read audit ledger %s: %s", self._path, e)
            return

        for number, raw in enumerate(lines, start=1):
            if not raw.strip():
                continue
            try:
                yield AuditEntry.model_validate(json.loads(raw))
            except (ValueError, ValidationError) as e:
                logger.warning("%s:%d: skipping unreadable entry (%s)", self._path, number, e)
