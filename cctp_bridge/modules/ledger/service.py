"""Persisted bridge ledger — a single JSON document keyed by bridge id.

Reads load the whole document, writes replace the whole file. Writers are
serialised per path within one process; running two writer processes against
the same file is not supported.

Reads fail open: a missing, unreadable or invalid document (or record) is
treated as absent and logged as a warning.
"""

from __future__ import annotations

import json
import os
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from cctp_bridge.core.errors import LedgerError, WriteOnceViolationError
from cctp_bridge.modules.bridge.schemas import WRITE_ONCE_FIELDS, BridgeRecord

logger = structlog.get_logger()

SCHEMA_VERSION = 1

_locks: dict[Path, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = path.resolve()
    with _locks_guard:
        return _locks.setdefault(key, threading.Lock())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BridgeLedger:
    def __init__(self, path: Path | str, clock: Callable[[], datetime] | None = None) -> None:
        self.path = Path(path)
        self._clock = clock or _utcnow
        self._lock = _lock_for(self.path)

    def now(self) -> datetime:
        return self._clock()

    # ── Reads ────────────────────────────────────────────────────────────────

    def get(self, bridge_id: str) -> BridgeRecord | None:
        raw = self._load()[0].get(bridge_id)
        if raw is None:
            return None
        return self._validate(bridge_id, raw)

    def list_records(self) -> list[BridgeRecord]:
        """All valid records, oldest first."""
        records = []
        for bridge_id, raw in self._load()[0].items():
            record = self._validate(bridge_id, raw)
            if record is not None:
                records.append(record)
        return sorted(records, key=lambda r: r.created_at)

    # ── Writes ───────────────────────────────────────────────────────────────

    def merge(self, bridge_id: str, fields: dict[str, Any]) -> BridgeRecord:
        """Shallow-merge fields into the record (creating it if absent) and persist.

        Raises WriteOnceViolationError if a write-once field would be changed or
        cleared, and LedgerError if the merged record is invalid or cannot be written.
        """
        with self._lock:
            bridges, corrupt = self._load()
            existing: dict[str, Any] = dict(bridges.get(bridge_id) or {})

            for name in WRITE_ONCE_FIELDS:
                if name in fields and existing.get(name) is not None and fields[name] != existing[name]:
                    raise WriteOnceViolationError(bridge_id, name)

            now = self.now()
            merged = {**existing, **fields, "bridge_id": bridge_id, "updated_at": now}
            merged.setdefault("created_at", now)
            try:
                record = BridgeRecord.model_validate(merged)
            except ValidationError as exc:
                raise LedgerError(f"Bridge {bridge_id}: invalid record: {exc}") from exc

            bridges[bridge_id] = record.model_dump(mode="json")
            if corrupt:
                self._move_aside()
            self._write(bridges)

        logger.debug("ledger.merged", bridge_id=bridge_id, fields=sorted(fields))
        return record

    # ── Internals ────────────────────────────────────────────────────────────

    def _load(self) -> tuple[dict[str, Any], bool]:
        """Return (bridges, corrupt). Never raises."""
        if not self.path.exists():
            return {}, False
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("ledger.load_failed", path=str(self.path), error=str(exc))
            return {}, True

        if not isinstance(document, dict) or not isinstance(document.get("bridges"), dict):
            logger.warning("ledger.load_failed", path=str(self.path), error="unexpected document shape")
            return {}, True
        version = document.get("schema_version")
        if version != SCHEMA_VERSION:
            logger.warning("ledger.unsupported_schema", path=str(self.path), schema_version=version)
            return {}, True
        return document["bridges"], False

    def _validate(self, bridge_id: str, raw: Any) -> BridgeRecord | None:
        try:
            return BridgeRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning("ledger.record_invalid", bridge_id=bridge_id, error=str(exc))
            return None

    def _move_aside(self) -> None:
        stamp = self.now().strftime("%Y%m%dT%H%M%S")
        target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            os.replace(self.path, target)
        except OSError as exc:
            raise LedgerError(f"Could not move corrupt ledger aside: {exc}") from exc
        logger.warning("ledger.corrupt_moved_aside", path=str(self.path), backup=str(target))

    def _write(self, bridges: dict[str, Any]) -> None:
        document = {"schema_version": SCHEMA_VERSION, "bridges": bridges}
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(document, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            raise LedgerError(f"Could not write ledger {self.path}: {exc}") from exc
