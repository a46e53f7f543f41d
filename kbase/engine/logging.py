"""
KBase Logging System — Structured JSONL files behind a background writer.

Stdlib loggers (``logging.getLogger("kbase.<module>")``) carry operator
diagnostics. Everything else is a LogEntry routed to

    {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl

    documents/execution   create, update, delete, restore (and failures)
    documents/security    ownership denials
    versions/execution    ledger evictions
    ai/execution          collaborator calls, degraded ones at WARNING
    system/execution      startup, shutdown, activity replay
    activity/pending      activity spool, never pruned

Entries are pushed to an AsyncLogQueue and written by its flush thread, so
callers on the mutation path never touch the filesystem.
"""

from __future__ import annotations

import gzip
import json
import logging
import shutil
import threading
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, Iterable, List, NamedTuple, Optional

logger = logging.getLogger("kbase.engine.logging")

LOG_CATEGORIES = {
    "documents": ("execution", "security"),
    "versions": ("execution",),
    "ai": ("execution",),
    "system": ("execution",),
    "activity": ("pending",),
}

# Days kept per category; categories not listed (the spool) are kept forever.
DEFAULT_RETENTION = {"execution": 90, "security": 365}


class LogEntry(NamedTuple):
    object_type: str
    category: str
    data: Dict[str, Any]

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Appends LogEntries to the daily JSONL file of their object type and
    category. One lock per file, so the flush thread and the activity spool
    can share a directory.
    """

    def __init__(self, log_dir: str = "logs"):
        self._root = Path(log_dir)
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        for object_type, categories in LOG_CATEGORIES.items():
            for category in categories:
                (self._root / object_type / category).mkdir(parents=True, exist_ok=True)

    def path_for(self, object_type: str, category: str) -> Path:
        return self._root / object_type / category / f"{date.today().isoformat()}.jsonl"

    def write(self, *entries: LogEntry) -> None:
        by_path: Dict[Path, List[str]] = defaultdict(list)
        for entry in entries:
            by_path[self.path_for(entry.object_type, entry.category)].append(entry.to_json())

        for path, lines in by_path.items():
            with self.lock_for(path), open(path, "a", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")

    def files(self, object_type: str, category: str) -> List[Path]:
        """Uncompressed files for one object type / category, oldest first."""
        folder = self._root / object_type / category
        if not folder.is_dir():
            return []
        return sorted(p for p in folder.glob("*.jsonl") if p.is_file())

    def lock_for(self, path: Path) -> threading.Lock:
        return self._locks[str(path)]


def read_jsonl(path: Path) -> List[Dict[str, Any]]:
    """Entries of a .jsonl or .jsonl.gz file in order; bad lines are skipped."""
    opener = gzip.open if path.suffix == ".gz" else open
    entries: List[Dict[str, Any]] = []
    with opener(path, "rt", encoding="utf-8") as f:
        for number, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed line {number} in {path}")
    return entries


class AsyncLogQueue:
    """
    Bounded queue drained by a daemon thread.

    The thread blocks for the first entry up to ``flush_interval_ms``, then
    takes whatever else is already queued (up to ``flush_batch_size``) and
    writes the batch in one go. ``push`` never blocks: when the queue is full
    the entry is counted in ``dropped`` and discarded.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._writer = file_logger
        self._interval = flush_interval_ms / 1000.0
        self._batch_size = flush_batch_size
        self._queue: "Queue[LogEntry]" = Queue(maxsize=max_queue_size)
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.dropped = 0

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="kbase-log-flush", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the thread, then write everything still queued."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._flush(self._take(block=False, limit=None))
        if self.dropped:
            logger.warning(f"{self.dropped} log entries dropped (queue full)")

    def push(self, entry: LogEntry) -> bool:
        try:
            self._queue.put_nowait(entry)
        except Full:
            self.dropped += 1
            return False
        return True

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._flush(self._take(block=True, limit=self._batch_size))

    def _take(self, block: bool, limit: Optional[int]) -> List[LogEntry]:
        batch: List[LogEntry] = []
        if block:
            try:
                batch.append(self._queue.get(timeout=self._interval))
            except Empty:
                return batch
        while limit is None or len(batch) < limit:
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        return batch

    def _flush(self, batch: List[LogEntry]) -> None:
        if not batch:
            return
        try:
            self._writer.write(*batch)
        except OSError as e:
            logger.error(f"Could not write {len(batch)} log entries: {e}")


# ---------------------------------------------------------------------------
# Entry builders
# ---------------------------------------------------------------------------

def _entry(object_type: str, category: str, event: str, level: str, **fields: Any) -> LogEntry:
    data: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    data.update({k: v for k, v in fields.items() if v is not None})
    return LogEntry(object_type, category, data)


def log_document_mutation(
    operation: str,
    document_id: Any,
    user_id: Any,
    execution_id: Optional[str] = None,
    version_number: Optional[int] = None,
    fields_changed: Optional[List[str]] = None,
    duration_ms: Optional[float] = None,
    success: bool = True,
    error: Optional[str] = None,
) -> LogEntry:
    return _entry(
        "documents", "execution", f"document_{operation}",
        "INFO" if success else "ERROR",
        object_ref=f"documents.{document_id}",
        operation=operation,
        user_id=user_id,
        execution_id=execution_id,
        version_number=version_number,
        fields_changed=fields_changed or None,
        duration_ms=duration_ms,
        success=success,
        error=error or None,
    )


def log_version_evicted(document_id: Any, version_number: int) -> LogEntry:
    return _entry(
        "versions", "execution", "version_evicted", "INFO",
        object_ref=f"documents.{document_id}",
        version_number=version_number,
    )


def log_ai_call(
    collaborator: str,
    operation: str,
    duration_ms: float,
    degraded: bool,
    error: Optional[str] = None,
) -> LogEntry:
    """Degraded calls are logged at WARNING with the reason."""
    return _entry(
        "ai", "execution", "ai_called",
        "WARNING" if degraded else "INFO",
        object_ref=f"ai.{collaborator}.{operation}",
        collaborator=collaborator,
        operation=operation,
        duration_ms=duration_ms,
        degraded=degraded,
        error=error or None,
    )


def log_security_event(
    event: str,
    document_id: Any,
    user_id: Any,
    permission_needed: str,
    execution_id: Optional[str] = None,
) -> LogEntry:
    return _entry(
        "documents", "security", event, "WARNING",
        object_ref=f"documents.{document_id}",
        user_id=user_id,
        permission_needed=permission_needed,
        execution_id=execution_id,
    )


def log_system_event(event: str, details: Optional[Dict[str, Any]] = None) -> LogEntry:
    return _entry("system", "execution", event, "INFO", object_ref="system", details=details or None)


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

def apply_retention(
    log_dir: str,
    retention_days: Optional[Dict[str, int]] = None,
    compress_after_days: int = 7,
    today: Optional[date] = None,
) -> Dict[str, int]:
    """
    Delete files older than their category's retention and gzip the ones
    older than ``compress_after_days``. Returns ``{"deleted", "compressed"}``.
    """
    retention = retention_days or DEFAULT_RETENTION
    today = today or date.today()
    result = {"deleted": 0, "compressed": 0}

    for object_type, categories in LOG_CATEGORIES.items():
        for category in categories:
            keep_days = retention.get(category)
            if keep_days is None:
                continue
            for path in sorted((Path(log_dir) / object_type / category).glob("*.jsonl*")):
                try:
                    age = (today - date.fromisoformat(path.name.split(".")[0])).days
                except ValueError:
                    continue
                if age > keep_days:
                    path.unlink()
                    result["deleted"] += 1
                elif age > compress_after_days and path.suffix == ".jsonl":
                    _gzip(path)
                    result["compressed"] += 1

    logger.info(f"Log retention applied in {log_dir}: {result}")
    return result


def _gzip(path: Path) -> None:
    target = path.with_name(path.name + ".gz")
    with open(path, "rb") as src, gzip.open(target, "wb") as dst:
        shutil.copyfileobj(src, dst)
    path.unlink()


# ---------------------------------------------------------------------------
# Process-wide queue
# ---------------------------------------------------------------------------

_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    global _queue
    _queue = AsyncLogQueue(
        FileLogger(log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _queue.start()
    return _queue


def log(entry: LogEntry) -> bool:
    """Queue an entry. False when logging is not initialized or the queue is full."""
    if _queue is None:
        return False
    return _queue.push(entry)


def shutdown_logging() -> None:
    global _queue
    if _queue is not None:
        _queue.stop()
        _queue = None
