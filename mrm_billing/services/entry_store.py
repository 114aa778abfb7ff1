import os
import logging
import tempfile
import threading
import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from mrm_billing.modules.errors import ConflictOnWrite, NotFound, ValidationFailure
from mrm_billing.modules.lifecycle import check_transition, parse_entry_status
from mrm_billing.modules.models import BillingEntry, EntryRegistry, entry_key
from mrm_billing.modules.periods import Month

logger = logging.getLogger(__name__)

# One lock per registry file, shared by every store opened on it
_FILE_LOCKS: Dict[str, threading.RLock] = {}
_FILE_LOCKS_GUARD = threading.Lock()


def lock_for(path: Optional[Path]) -> threading.RLock:
    if path is None:
        return threading.RLock()
    key = str(path.resolve())
    with _FILE_LOCKS_GUARD:
        return _FILE_LOCKS.setdefault(key, threading.RLock())


class EntryStore:
    """Billing entries keyed by (client, month, financial-year start).

    Backed by a JSON registry file when a path is given, otherwise in memory.
    Every write runs under the file's lock as reload -> apply to a copy ->
    atomic replace -> swap in, so two saves for the same key leave one record
    and the later one wins, and a failed write leaves nothing behind.
    """

    def __init__(self, path: Optional[Union[str, os.PathLike]] = None):
        self.path = Path(path) if path else None
        self._lock = lock_for(self.path)
        self._registry = EntryRegistry.load(self.path) if self.path else EntryRegistry()

    # --- internals ---

    def _reload(self):
        if self.path and self.path.exists():
            on_disk = EntryRegistry.load(self.path)
            if on_disk.revision >= self._registry.revision:
                self._registry = on_disk

    def _working_copy(self) -> EntryRegistry:
        self._reload()
        return self._registry.model_copy(deep=True)

    def _commit(self, registry: EntryRegistry):
        """Writes registry to disk, then makes it the visible state."""
        if self.path:
            tmp_path = None
            try:
                os.makedirs(self.path.parent, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(
                    prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
                )
                os.close(fd)
                registry.save(tmp_path)
                os.replace(tmp_path, self.path)
            except OSError as e:
                logger.error(f"Failed to write {self.path}: {e}", exc_info=True)
                if tmp_path and os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise ConflictOnWrite(f"Could not write billing entries to {self.path}: {e}") from e
        self._registry = registry

    # --- boundary operations ---

    def save(self, entry: BillingEntry) -> BillingEntry:
        """Create or fully replace the record stored under the entry's key."""
        if not isinstance(entry, BillingEntry):
            raise ValidationFailure("EntryStore accepts fully derived BillingEntry objects only")
        with self._lock:
            registry = self._working_copy()
            existed = entry.key in registry.entries
            stored = registry.upsert(entry)
            self._commit(registry)
        logger.info(f"{'Replaced' if existed else 'Created'} billing entry {stored.key}")
        return stored

    def get(self, client_id: str, month: Union[Month, str], fy_start: int) -> BillingEntry:
        entry = self.find_one(client_id, month, fy_start)
        if entry is None:
            raise NotFound(f"Entry not found: {entry_key(client_id, month, fy_start)}")
        return entry

    def find_one(self, client_id: str, month: Union[Month, str], fy_start: int) -> Optional[BillingEntry]:
        with self._lock:
            self._reload()
            return self._registry.get_entry(entry_key(client_id, month, fy_start))

    def exists(self, client_id: str, month: Union[Month, str], fy_start: int) -> bool:
        return self.find_one(client_id, month, fy_start) is not None

    def delete(self, client_id: str, month: Union[Month, str], fy_start: int) -> BillingEntry:
        key = entry_key(client_id, month, fy_start)
        with self._lock:
            registry = self._working_copy()
            removed = registry.remove(key)
            if removed is None:
                raise NotFound(f"Entry not found: {key}")
            self._commit(registry)
        logger.info(f"Deleted billing entry {key}")
        return removed

    def update_status(
        self,
        client_id: str,
        month: Union[Month, str],
        fy_start: int,
        status=None,
        invoice_status=None,
        strict: bool = False,
    ) -> BillingEntry:
        """Change only the status fields; derived amounts are left alone."""
        key = entry_key(client_id, month, fy_start)
        with self._lock:
            registry = self._working_copy()
            entry = registry.get_entry(key)
            if entry is None:
                raise NotFound(f"Entry not found: {key}")
            changes = {"updated_at": datetime.datetime.now()}
            if status is not None:
                changes["status"] = parse_entry_status(status)
            if invoice_status is not None:
                changes["invoice_status"] = check_transition(entry.invoice_status, invoice_status, strict=strict)
            entry = entry.model_copy(update=changes)
            registry.entries[key] = entry
            registry.revision += 1
            self._commit(registry)
        logger.info(f"Updated status of {key}: {entry.status.value}/{entry.invoice_status.value}")
        return entry

    # --- projections ---

    def all_entries(self) -> List[BillingEntry]:
        with self._lock:
            self._reload()
            return list(self._registry.entries.values())

    def list_by_month(self, month: Union[Month, str], fy_start: int) -> List[BillingEntry]:
        month = Month.parse(month)
        rows = [e for e in self.all_entries() if e.month is month and e.fy_start == int(fy_start)]
        return sorted(rows, key=lambda e: (e.client_name.lower(), e.client_id))

    def list_by_client(self, client_id: str, fy_start: Optional[int] = None) -> List[BillingEntry]:
        rows = [e for e in self.all_entries() if e.client_id == client_id]
        if fy_start is not None:
            rows = [e for e in rows if e.fy_start == int(fy_start)]
        return sorted(rows, key=lambda e: (e.fy_start, e.month.fy_index))

    def find(
        self,
        month=None,
        client_id: Optional[str] = None,
        status=None,
        invoice_status=None,
        fy_start: Optional[int] = None,
    ) -> List[BillingEntry]:
        rows = self.all_entries()
        if month is not None:
            month = Month.parse(month)
            rows = [e for e in rows if e.month is month]
        if client_id:
            rows = [e for e in rows if e.client_id == client_id]
        if status is not None:
            status = parse_entry_status(status)
            rows = [e for e in rows if e.status is status]
        if invoice_status is not None:
            rows = [e for e in rows if e.invoice_status.value == str(getattr(invoice_status, "value", invoice_status))]
        if fy_start is not None:
            rows = [e for e in rows if e.fy_start == int(fy_start)]
        return sorted(rows, key=lambda e: (e.client_name.lower(), e.fy_start, e.month.fy_index))

    def __len__(self):
        with self._lock:
            return len(self._registry.entries)
