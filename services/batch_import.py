# services/batch_import.py
"""
Batch Import Processor

Pushes a list of parsed rows to the database in fixed-size chunks, one upsert per
chunk, keeping a per-row result list and progress counts. An import can be paused
between chunks and resumed from the next unprocessed chunk.

States: idle -> preparing -> processing -> {paused <-> processing} -> completed,
and error from any active state when something outside the chunk loop fails.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from services.exceptions import ImportStateError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_SKU_WORKERS = 8


class ImportStatus(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


class RowStatus(str, Enum):
    SUCCESS = "success"     # new record
    UPDATED = "updated"     # record with that key already existed
    ERROR = "error"


ACTIVE_STATES = (ImportStatus.PREPARING, ImportStatus.PROCESSING)


@dataclass(frozen=True)
class RowOutcome:
    """What a chunk processor reports for one row of its chunk."""
    status: RowStatus
    message: Optional[str] = None


@dataclass(frozen=True)
class ImportResultRow:
    row: int                            # 1-based position in the source
    status: RowStatus
    message: Optional[str] = None
    sku: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class ImportProgress:
    current: int
    total: int
    percentage: int
    success_count: int
    updated_count: int
    error_count: int

    @classmethod
    def from_results(cls, results: List[ImportResultRow], total: int) -> "ImportProgress":
        success = sum(1 for r in results if r.status == RowStatus.SUCCESS)
        updated = sum(1 for r in results if r.status == RowStatus.UPDATED)
        errors = sum(1 for r in results if r.status == RowStatus.ERROR)
        current = len(results)
        percentage = current * 100 // total if total else 0
        return cls(
            current=current,
            total=total,
            percentage=percentage,
            success_count=success,
            updated_count=updated,
            error_count=errors,
        )

    def summary(self) -> str:
        """Aggregate line such as '80 created, 5 updated, 3 errors'."""
        parts = [f"{self.success_count} created"]
        if self.updated_count:
            parts.append(f"{self.updated_count} updated")
        if self.error_count:
            parts.append(f"{self.error_count} error{'s' if self.error_count != 1 else ''}")
        return ", ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PauseToken:
    """Shared flag checked by the batch loop between chunks."""

    def __init__(self):
        self._event = threading.Event()

    def pause(self):
        self._event.set()

    def resume(self):
        self._event.clear()

    @property
    def is_paused(self) -> bool:
        return self._event.is_set()


ChunkProcessor = Callable[[List[Dict[str, Any]]], List[RowOutcome]]
SkuGenerator = Callable[[Dict[str, Any]], str]
ProgressCallback = Callable[[ImportProgress, ImportStatus], None]


class BatchImportProcessor:
    def __init__(
            self,
            process_chunk: ChunkProcessor,
            generate_sku: Optional[SkuGenerator] = None,
            batch_size: int = DEFAULT_BATCH_SIZE,
            on_progress: Optional[ProgressCallback] = None,
            sku_workers: int = DEFAULT_SKU_WORKERS,
            pause_token: Optional[PauseToken] = None,
    ):
        """
        :param process_chunk: Writes one chunk with a single upsert and returns one
            RowOutcome per row. Raising marks every row of the chunk as an error.
        :param generate_sku: Called for each item without a SKU before any chunk runs.
        :param batch_size: Rows per chunk.
        :param on_progress: Called after every chunk and on every state change.
        :param sku_workers: Upper bound on concurrent SKU generation calls.
        :param pause_token: Token shared with whoever pauses the import.
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._process_chunk = process_chunk
        self._generate_sku = generate_sku
        self._batch_size = batch_size
        self._on_progress = on_progress
        self._sku_workers = max(1, sku_workers)
        self.pause_token = pause_token or PauseToken()

        self._lock = threading.RLock()
        self._status = ImportStatus.IDLE
        self._items: List[Dict[str, Any]] = []
        self._results: List[ImportResultRow] = []
        self._total = 0
        self._next_chunk = 0
        self._can_resume = False
        self._error: Optional[str] = None

    # ---------- read-only views ----------

    @property
    def status(self) -> ImportStatus:
        return self._status

    @property
    def can_resume(self) -> bool:
        return self._can_resume

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def results(self) -> List[ImportResultRow]:
        with self._lock:
            return list(self._results)

    @property
    def progress(self) -> ImportProgress:
        with self._lock:
            return ImportProgress.from_results(self._results, self._total)

    # ---------- controls ----------

    def start_import(self, items: List[Dict[str, Any]]) -> ImportProgress:
        with self._lock:
            if self._status in ACTIVE_STATES:
                raise ImportStateError(f"An import is already {self._status.value}")
            self._clear()
            self._total = len(items)
            self._status = ImportStatus.PREPARING
        self.pause_token.resume()
        self._notify()

        try:
            prepared = self._prepare(items)
            with self._lock:
                self._items = prepared
                self._status = ImportStatus.PROCESSING
            logger.info(f"Importing {len(prepared)} rows in batches of {self._batch_size}")
            self._run_batches()
        except Exception as e:
            self._fail(e)
        return self.progress

    def pause(self):
        """Ask the loop to stop before its next chunk; the chunk in flight finishes."""
        self.pause_token.pause()
        logger.info("Import pause requested")

    def resume(self) -> ImportProgress:
        with self._lock:
            if self._status != ImportStatus.PAUSED:
                raise ImportStateError(f"Cannot resume an import that is {self._status.value}")
            self._status = ImportStatus.PROCESSING
            self._can_resume = False
        self.pause_token.resume()
        logger.info(f"Resuming import at chunk {self._next_chunk + 1}")
        self._notify()

        try:
            self._run_batches()
        except Exception as e:
            self._fail(e)
        return self.progress

    def reset(self):
        with self._lock:
            if self._status in ACTIVE_STATES:
                raise ImportStateError(f"Cannot reset while the import is {self._status.value}")
            self._clear()
        self.pause_token.resume()

    # ---------- internals ----------

    def _clear(self):
        self._status = ImportStatus.IDLE
        self._items = []
        self._results = []
        self._total = 0
        self._next_chunk = 0
        self._can_resume = False
        self._error = None

    def _prepare(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        prepared = [dict(item) for item in items]
        if self._generate_sku is None:
            return prepared

        missing = [i for i, item in enumerate(prepared) if not item.get("sku")]
        if not missing:
            return prepared

        logger.info(f"Generating {len(missing)} missing SKUs")
        workers = min(self._sku_workers, len(missing))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sku") as executor:
            skus = list(executor.map(lambda i: self._generate_sku(prepared[i]), missing))

        for i, sku in zip(missing, skus):
            prepared[i]["sku"] = sku
        return prepared

    def _chunk_count(self) -> int:
        return (len(self._items) + self._batch_size - 1) // self._batch_size

    def _run_batches(self):
        while self._next_chunk < self._chunk_count():
            if self.pause_token.is_paused:
                with self._lock:
                    self._status = ImportStatus.PAUSED
                    self._can_resume = True
                logger.info(f"Import paused after {self.progress.current} of {self._total} rows")
                self._notify()
                return

            start = self._next_chunk * self._batch_size
            chunk = self._items[start:start + self._batch_size]

            try:
                outcomes = list(self._process_chunk(chunk))
                if len(outcomes) != len(chunk):
                    raise ValueError(f"processor returned {len(outcomes)} outcomes for {len(chunk)} rows")
            except Exception as e:
                logger.error(f"Batch {self._next_chunk + 1} failed: {e}")
                outcomes = [RowOutcome(RowStatus.ERROR, str(e))] * len(chunk)

            rows = [
                ImportResultRow(
                    row=start + offset + 1,
                    status=outcome.status,
                    message=outcome.message,
                    sku=item.get("sku"),
                    name=item.get("name"),
                )
                for offset, (item, outcome) in enumerate(zip(chunk, outcomes))
            ]
            with self._lock:
                self._results.extend(rows)
                self._next_chunk += 1
            self._notify()

        with self._lock:
            self._status = ImportStatus.COMPLETED
            self._can_resume = False
        logger.info(f"Import finished: {self.progress.summary()}")
        self._notify()

    def _fail(self, exc: Exception):
        logger.exception("Import aborted")
        with self._lock:
            self._status = ImportStatus.ERROR
            self._can_resume = False
            self._error = str(exc)
        self._notify()

    def _notify(self):
        if self._on_progress is None:
            return
        try:
            self._on_progress(self.progress, self._status)
        except Exception:
            logger.exception("Progress callback failed")
