"""Transmission record storage.

The orchestrator and the retry queue only see :class:`TransmissionRepository`.
:class:`JsonRecordStore` is the shipped implementation: one JSON file keyed by
codigo_generacion, guarded by a file lock so the CLI, the retry worker and
any other process on the host can share it.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from filelock import FileLock

from facturador.models.transmission import TransmissionRecord, TransmissionStatus

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


class TransmissionRepository(Protocol):
    def create(self, record: TransmissionRecord) -> TransmissionRecord: ...

    def update(self, record: TransmissionRecord) -> TransmissionRecord: ...

    def get(self, codigo_generacion: str) -> TransmissionRecord | None: ...

    def get_by_numero_control(self, numero_control: str) -> TransmissionRecord | None: ...

    def list_retry_candidates(self, max_attempts: int, limit: int) -> list[TransmissionRecord]: ...

    def list_exhausted(self, max_attempts: int) -> list[TransmissionRecord]: ...

    def increment_attempts(self, codigo_generacion: str) -> int: ...


def backup_corrupt(path: Path) -> Path:
    """Rename a corrupt file to a timestamped backup before it gets overwritten."""
    ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    backup = path.with_name(f"{path.name}.corrupt.{ts}")
    path.rename(backup)
    logger.warning("Archivo corrupto respaldado: %s → %s", path, backup)
    return backup


def read_json(path: Path, default: dict) -> dict:
    """Load a JSON object from *path*; missing or corrupt files yield *default*."""
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text())
    except (json.JSONDecodeError, ValueError):
        backup_corrupt(path)
        return default


def write_json_atomic(path: Path, data: dict, *, sort_keys: bool = False) -> None:
    """Write through a temp file and os.replace so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False, sort_keys=sort_keys) + "\n")
    os.replace(tmp, path)


class JsonRecordStore:
    """File-backed :class:`TransmissionRepository`."""

    def __init__(self, path: Path, *, now_func: Callable[[], str] = _utc_now) -> None:
        self.path = Path(path)
        self._now = now_func

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold an exclusive file lock during read-modify-write."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(self.path.with_suffix(".lock")):
            yield

    def _load(self) -> dict[str, dict[str, Any]]:
        return read_json(self.path, {})

    def _save(self, entries: dict[str, dict[str, Any]]) -> None:
        write_json_atomic(self.path, entries)

    def _records(self) -> list[TransmissionRecord]:
        with self._locked():
            entries = self._load()
        return [TransmissionRecord.from_dict(e) for e in entries.values()]

    # --- writes ---

    def create(self, record: TransmissionRecord) -> TransmissionRecord:
        now = self._now()
        record.created_at = record.created_at or now
        record.updated_at = now
        with self._locked():
            entries = self._load()
            if record.codigo_generacion in entries:
                raise ValueError(f"Registro duplicado: {record.codigo_generacion}")
            entries[record.codigo_generacion] = record.to_dict()
            self._save(entries)
        return record

    def update(self, record: TransmissionRecord) -> TransmissionRecord:
        record.updated_at = self._now()
        with self._locked():
            entries = self._load()
            if record.codigo_generacion not in entries:
                raise KeyError(record.codigo_generacion)
            entries[record.codigo_generacion] = record.to_dict()
            self._save(entries)
        return record

    def increment_attempts(self, codigo_generacion: str) -> int:
        """Atomically bump the attempt counter and return the new value."""
        with self._locked():
            entries = self._load()
            entry = entries[codigo_generacion]
            entry["attempts"] = int(entry.get("attempts", 0)) + 1
            entry["updated_at"] = self._now()
            self._save(entries)
            return entry["attempts"]

    # --- reads ---

    def get(self, codigo_generacion: str) -> TransmissionRecord | None:
        with self._locked():
            entry = self._load().get(codigo_generacion)
        return TransmissionRecord.from_dict(entry) if entry else None

    def get_by_numero_control(self, numero_control: str) -> TransmissionRecord | None:
        return next(
            (r for r in self._records() if r.numero_control == numero_control),
            None,
        )

    def list_retry_candidates(self, max_attempts: int, limit: int) -> list[TransmissionRecord]:
        """ERROR records still under *max_attempts*, oldest first."""
        candidates = [
            r
            for r in self._records()
            if r.status is TransmissionStatus.ERROR and r.attempts < max_attempts
        ]
        candidates.sort(key=lambda r: r.created_at)
        return candidates[:limit]

    def list_exhausted(self, max_attempts: int) -> list[TransmissionRecord]:
        return [
            r
            for r in self._records()
            if r.status is TransmissionStatus.ERROR and r.attempts >= max_attempts
        ]

    def list_all(self, status: TransmissionStatus | None = None) -> list[TransmissionRecord]:
        records = self._records()
        if status is not None:
            records = [r for r in records if r.status is status]
        return sorted(records, key=lambda r: r.created_at)
