"""
JSON File Storage Implementation

DESIGN DECISION: A single JSON document is the durable backend because:
1. Small trusted groups produce very little data
2. No database setup required
3. The file is human-readable and easy to back up or migrate

Every commit rewrites the whole document to a temporary file and atomically
renames it over the previous one, so a crash mid-write leaves the last
committed state intact. Multi-record atomicity comes for free: a commit is
exactly one rename.

TRADEOFFS:
- Single process only (the commit lock is in-process)
- Write cost grows with total data size (fine for household use)
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Optional

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from grocery_ledger.config import StorageSettings
from grocery_ledger.services.realtime import RealtimeNotifier
from grocery_ledger.services.storage.interface import StorageUnavailableError
from grocery_ledger.services.storage.memory import GROUPS, USERS, InMemoryLedgerStorage


logger = structlog.get_logger(__name__)

FORMAT_VERSION = 1


class JsonFileLedgerStorage(InMemoryLedgerStorage):
    """
    Durable ledger storage backed by one JSON file.

    The file is loaded once at construction; afterwards memory is the
    read path and the file is rewritten on every commit.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        notifier: Optional[RealtimeNotifier] = None,
        settings: Optional[StorageSettings] = None,
    ):
        super().__init__(notifier=notifier, settings=settings)
        self._path = Path(path or self._settings.data_path).expanduser()
        self._records = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, dict[str, dict]]:
        """Read the document, starting empty if the file doesn't exist yet."""
        if not self._path.exists():
            logger.info("ledger_file_missing", path=str(self._path))
            return {GROUPS: {}, USERS: {}}

        try:
            with self._path.open("r", encoding="utf-8") as fh:
                document = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageUnavailableError(f"Failed to read ledger file {self._path}: {e}")

        return {
            GROUPS: dict(document.get(GROUPS, {})),
            USERS: dict(document.get(USERS, {})),
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception_type(OSError),
        reraise=True,
    )
    def _write_document(self, records: dict[str, dict[str, dict]]) -> None:
        """Write to a sibling temp file, then rename over the original."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        document = {"format_version": FORMAT_VERSION, **records}
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.",
            dir=str(self._path.parent),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2, sort_keys=True)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def _persist(self, records: dict[str, dict[str, dict]]) -> None:
        try:
            await asyncio.to_thread(self._write_document, records)
        except OSError as e:
            logger.error("ledger_file_write_failed", path=str(self._path), error=str(e))
            raise StorageUnavailableError(f"Failed to write ledger file: {e}")
