"""Record store for IPO and registrar metadata plus the anonymized check log.

Design (store.py)
- Purpose: The allotment engine only needs read-by-key access to IPOs and
  registrar profiles and an append-only log of check outcomes. Durable
  storage lives outside this service; InMemoryRecordStore is the in-process
  implementation, seeded from the default registrar catalogue and optional
  JSON files.
- Side effects: log_check appends to a bounded in-memory log.
- Thread-safety: All methods take the internal lock; reads return immutable models.
"""

from __future__ import annotations

from collections import deque
import json
import logging
from pathlib import Path
import threading
from typing import Iterable, Protocol

from ipo_allotment.registrars import DEFAULT_REGISTRARS
from ipo_allotment.schemas import CheckLogEntry, IpoRecord, RegistrarProfile

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    def get_ipo(self, slug: str) -> IpoRecord | None: ...

    def get_registrar(self, slug: str) -> RegistrarProfile | None: ...

    def list_registrars(self) -> list[RegistrarProfile]: ...

    def log_check(self, entry: CheckLogEntry) -> None: ...


class InMemoryRecordStore:
    def __init__(
        self,
        registrars: Iterable[RegistrarProfile] = DEFAULT_REGISTRARS,
        ipos: Iterable[IpoRecord] = (),
        max_log_entries: int = 10000,
    ):
        self._lock = threading.Lock()
        self._registrars = {registrar.slug: registrar for registrar in registrars}
        self._ipos = {ipo.slug: ipo for ipo in ipos}
        self._checks: deque[CheckLogEntry] = deque(maxlen=max(1, max_log_entries))

    def get_ipo(self, slug: str) -> IpoRecord | None:
        with self._lock:
            return self._ipos.get(slug)

    def get_registrar(self, slug: str) -> RegistrarProfile | None:
        with self._lock:
            return self._registrars.get(slug)

    def list_registrars(self) -> list[RegistrarProfile]:
        with self._lock:
            return sorted(self._registrars.values(), key=lambda item: item.slug)

    def put_ipo(self, ipo: IpoRecord) -> None:
        with self._lock:
            self._ipos[ipo.slug] = ipo

    def put_registrar(self, registrar: RegistrarProfile) -> None:
        with self._lock:
            self._registrars[registrar.slug] = registrar

    def log_check(self, entry: CheckLogEntry) -> None:
        with self._lock:
            self._checks.append(entry)

    def checks(self) -> list[CheckLogEntry]:
        with self._lock:
            return list(self._checks)


def _load_json_list(path: str) -> list[dict]:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("items", [])
    if not isinstance(payload, list):
        raise ValueError(f"Expected a list of records in {path}")
    return payload


def load_record_store(
    registrars_file: str = "",
    ipos_file: str = "",
    max_log_entries: int = 10000,
) -> InMemoryRecordStore:
    registrars = list(DEFAULT_REGISTRARS)
    if registrars_file:
        registrars.extend(RegistrarProfile.model_validate(item) for item in _load_json_list(registrars_file))
    ipos: list[IpoRecord] = []
    if ipos_file:
        ipos = [IpoRecord.model_validate(item) for item in _load_json_list(ipos_file)]
    logger.info("Loaded %d registrars and %d IPOs", len({r.slug for r in registrars}), len(ipos))
    return InMemoryRecordStore(registrars=registrars, ipos=ipos, max_log_entries=max_log_entries)
