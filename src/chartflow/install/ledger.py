"""
Temporary-file ledger.

Tracks files produced as installation side effects so a failed or cancelled
run can roll them back. Each ledger is resolved exactly once: ``commit()``
keeps the files, ``restore()`` removes them (or writes back their snapshot).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import structlog

from chartflow.core.errors import LedgerError, LedgerRestoreError

logger = structlog.get_logger()

COMMITTED = "committed"
RESTORED = "restored"


@dataclass
class LedgerEntry:
    """A tracked path and, when preserved, its content at registration."""

    path: Path
    original: Optional[bytes] = None

    @property
    def preserved(self) -> bool:
        return self.original is not None


class TempFileLedger:
    """Bookkeeping for temporary files created during one workflow run."""

    def __init__(self) -> None:
        self._entries: List[LedgerEntry] = []
        self._resolution: Optional[str] = None

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def paths(self) -> List[Path]:
        return [entry.path for entry in self._entries]

    @property
    def resolution(self) -> Optional[str]:
        """'committed', 'restored', or None while still open."""
        return self._resolution

    def register(self, path: str | Path, preserve_existing: bool = False) -> LedgerEntry:
        """Track a path for rollback.

        By default a rollback removes the file. With ``preserve_existing`` the
        current content is snapshotted now and written back on rollback.
        """
        self._ensure_open()
        path = Path(path)
        for entry in self._entries:
            if entry.path == path:
                return entry

        if not path.parent.is_dir():
            raise LedgerError(
                f"cannot track {path}: directory {path.parent} does not exist",
                details={"path": str(path)},
            )

        if not os.access(path.parent, os.R_OK | os.W_OK):
            raise LedgerError(
                f"cannot track {path}: directory {path.parent} is not accessible",
                details={"path": str(path)},
            )

        original: Optional[bytes] = None
        if preserve_existing and path.exists():
            try:
                original = path.read_bytes()
            except OSError as exc:
                raise LedgerError(
                    f"cannot track {path}: {exc}", details={"path": str(path)}
                ) from exc

        entry = LedgerEntry(path=path, original=original)
        self._entries.append(entry)
        logger.debug("ledger_registered", path=str(path), preserved=entry.preserved)
        return entry

    def restore(self, verbose: bool = False) -> None:
        """Roll back every tracked file.

        All entries are attempted; failures are collected and raised together
        as a LedgerRestoreError whose message is the first failure.
        """
        self._ensure_open()
        self._resolution = RESTORED
        errors: List[LedgerError] = []

        for entry in reversed(self._entries):
            try:
                if entry.original is not None:
                    entry.path.write_bytes(entry.original)
                    action = "reverted"
                else:
                    entry.path.unlink(missing_ok=True)
                    action = "removed"
            except OSError as exc:
                logger.warning("ledger_restore_failed", path=str(entry.path), error=str(exc))
                failure = LedgerError(
                    f"failed to restore {entry.path}: {exc}", details={"path": str(entry.path)}
                )
                failure.__cause__ = exc
                errors.append(failure)
                continue
            if verbose:
                logger.info("ledger_restored", path=str(entry.path), action=action)

        self._entries.clear()
        if errors:
            raise LedgerRestoreError(errors)

    def commit(self, verbose: bool = False) -> None:
        """Stop tracking without touching the filesystem."""
        self._ensure_open()
        self._resolution = COMMITTED
        if verbose:
            for entry in self._entries:
                logger.info("ledger_committed", path=str(entry.path))
        self._entries.clear()

    def _ensure_open(self) -> None:
        if self._resolution is not None:
            raise LedgerError(f"ledger already {self._resolution}")
