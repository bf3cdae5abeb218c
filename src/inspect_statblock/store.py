"""
Record storage and override persistence.

The host owns creature records (base entities and placed instances). Override
maps live inside the owning record under ``flags.inspect-statblock.hidden_elements``
and are always written as a whole. Every change to a record, overrides or
otherwise, is broadcast to subscribers as ``(record_id, diff)``.

Two implementations are provided:

- MemoryEntityStore: in-process dict of records
- JsonEntityStore: the same, persisted as one JSON file per record
"""

import asyncio
import copy
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol

logger = logging.getLogger("inspect-statblock")

FLAG_SCOPE = "inspect-statblock"
FLAG_KEY = "hidden_elements"
STATS_KEY = "_stats"

ChangeCallback = Callable[[str, dict[str, Any]], None]


class OverrideStoreError(Exception):
    """Base error for the persistence collaborator."""
    pass


class OverrideWriteError(OverrideStoreError):
    """Raised when an override map (or record) could not be written."""
    pass


class OverrideStore(Protocol):
    """Persistence collaborator used by orchestrators and sessions."""

    def get_overrides(self, owner_id: str) -> Optional[dict[str, bool]]:
        ...

    async def set_overrides(self, owner_id: str, overrides: Mapping[str, bool]) -> None:
        ...

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        ...


def overrides_diff(overrides: Mapping[str, bool]) -> dict[str, Any]:
    """The diff shape announcing a replaced override map."""
    return {"flags": {FLAG_SCOPE: {FLAG_KEY: dict(overrides)}}}


def diff_touches_overrides(diff: Mapping[str, Any]) -> bool:
    """Whether a change diff carries a new override map."""
    flags = diff.get("flags")
    if not isinstance(flags, Mapping):
        return False
    scope = flags.get(FLAG_SCOPE)
    return isinstance(scope, Mapping) and FLAG_KEY in scope


def read_overrides(record: Optional[Mapping[str, Any]]) -> Optional[dict[str, bool]]:
    """Extract the override map from a record, or None if it has none."""
    if not record:
        return None
    scope = (record.get("flags") or {}).get(FLAG_SCOPE) or {}
    value = scope.get(FLAG_KEY)
    if value is None:
        return None
    return {str(k): bool(v) for k, v in value.items()}


def _deep_merge(target: dict[str, Any], changes: Mapping[str, Any]) -> None:
    """Merge changes into target in place, recursing into nested dicts."""
    for key, value in changes.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class MemoryEntityStore:
    """
    In-memory record store with change notifications.

    Attributes:
        _records: Maps record id -> record dict
        _subscribers: Registered change callbacks
    """

    def __init__(self, records: Optional[list[dict[str, Any]]] = None) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._subscribers: list[ChangeCallback] = []
        for record in records or []:
            self._records[str(record["id"])] = copy.deepcopy(record)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def get_entity(self, record_id: str) -> Optional[dict[str, Any]]:
        """Snapshot of a record, or None if it does not exist."""
        record = self._records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    def list_records(self) -> list[str]:
        """Ids of every stored record."""
        return list(self._records)

    async def add_entity(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """
        Store a new record (or replace one with the same id).

        Raises:
            OverrideWriteError: If the record has no id or cannot be persisted
        """
        record_id = str(record.get("id") or "")
        if not record_id:
            raise OverrideWriteError("Records must carry an 'id'")
        stored = copy.deepcopy(dict(record))
        stored["id"] = record_id
        await self._persist(stored)
        self._records[record_id] = stored
        logger.debug(f"Stored record {record_id}")
        return copy.deepcopy(stored)

    async def update_entity(self, record_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        """
        Deep-merge changes into a record and broadcast them.

        Raises:
            OverrideWriteError: If the record does not exist or cannot be persisted
        """
        current = self._records.get(record_id)
        if current is None:
            raise OverrideWriteError(f"Unknown record '{record_id}'")

        updated = copy.deepcopy(current)
        _deep_merge(updated, changes)
        diff = copy.deepcopy(dict(changes))
        diff[STATS_KEY] = self._stamp(updated)

        await self._persist(updated)
        self._records[record_id] = updated
        self._notify(record_id, diff)
        return copy.deepcopy(updated)

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    def get_overrides(self, owner_id: str) -> Optional[dict[str, bool]]:
        """The owner's override map, or None if never written."""
        return read_overrides(self._records.get(owner_id))

    async def set_overrides(self, owner_id: str, overrides: Mapping[str, bool]) -> None:
        """
        Replace the owner's whole override map.

        In-memory state changes only after the write succeeded.

        Raises:
            OverrideWriteError: If the owner is unknown or the write fails
        """
        current = self._records.get(owner_id)
        if current is None:
            raise OverrideWriteError(f"Unknown owner record '{owner_id}'")

        updated = copy.deepcopy(current)
        flags = updated.setdefault("flags", {}).setdefault(FLAG_SCOPE, {})
        flags[FLAG_KEY] = {str(k): bool(v) for k, v in overrides.items()}
        diff = overrides_diff(flags[FLAG_KEY])
        diff[STATS_KEY] = self._stamp(updated)

        await self._persist(updated)
        self._records[owner_id] = updated
        logger.debug(f"Override map written for {owner_id} ({len(flags[FLAG_KEY])} keys)")
        self._notify(owner_id, diff)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """
        Register a change callback.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _notify(self, record_id: str, diff: dict[str, Any]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(record_id, diff)
            except Exception:
                logger.exception(f"Change subscriber failed for record {record_id}")

    # ------------------------------------------------------------------
    # Persistence hooks
    # ------------------------------------------------------------------

    @staticmethod
    def _stamp(record: dict[str, Any]) -> dict[str, Any]:
        stats = record.setdefault(STATS_KEY, {})
        stats["modified_time"] = datetime.now().isoformat()
        return dict(stats)

    async def _persist(self, record: dict[str, Any]) -> None:
        """Write a record to durable storage. Nothing to do in memory."""
        return None


class JsonEntityStore(MemoryEntityStore):
    """
    Record store persisted as JSON files.

    Layout: ``{data_dir}/records/{record_id}.json``. Files are written to a
    temporary sibling and renamed so a failed write never leaves a
    half-written record behind.
    """

    def __init__(self, data_dir: Path) -> None:
        super().__init__()
        self.data_dir = Path(data_dir)
        self._records_dir = self.data_dir / "records"
        self._records_dir.mkdir(parents=True, exist_ok=True)
        self._load_all()

    def _record_path(self, record_id: str) -> Path:
        safe_id = "".join(c if c.isalnum() or c in "-_." else "_" for c in record_id)
        return self._records_dir / f"{safe_id}.json"

    def _load_all(self) -> None:
        loaded = 0
        for path in sorted(self._records_dir.glob("*.json")):
            try:
                with open(path, encoding="utf-8") as fh:
                    record = json.load(fh)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable record file {path.name}: {e}")
                continue
            if not isinstance(record, dict) or not record.get("id"):
                logger.warning(f"Skipping record file without id: {path.name}")
                continue
            self._records[str(record["id"])] = record
            loaded += 1
        logger.debug(f"Loaded {loaded} records from {self._records_dir}")

    def _write(self, record: dict[str, Any]) -> None:
        path = self._record_path(str(record["id"]))
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(record, fh, indent=2, ensure_ascii=False, default=str)
        tmp_path.replace(path)

    async def _persist(self, record: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._write, record)
        except OSError as e:
            raise OverrideWriteError(f"Failed to write record {record.get('id')}: {e}") from e


__all__ = [
    "FLAG_SCOPE",
    "FLAG_KEY",
    "STATS_KEY",
    "OverrideStoreError",
    "OverrideWriteError",
    "OverrideStore",
    "overrides_diff",
    "diff_touches_overrides",
    "read_overrides",
    "MemoryEntityStore",
    "JsonEntityStore",
]
