"""Progress and completion bookkeeping for in-flight uploads and downloads.

:class:`TransferTracker` is a registry of callbacks keyed by a per-call
operation id. The pipeline registers a transfer before dispatch; the
transport's byte-progress events then look the handle up and invoke it
from worker threads, and the completion event invokes and removes it.

Handles are keyed by operation id rather than by URL, so two concurrent
transfers to the same URL each keep their own callbacks. Every access is
serialised by a lock, and callbacks run outside it so a slow callback
never blocks other transfers.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from netpipe.output import get_output

ProgressCallback = Callable[["Progress"], None]
CompletionCallback = Callable[[Any], None]

_SIZE_UNITS = ("KB", "MB", "GB", "TB")


@dataclass(frozen=True)
class Progress:
    """A snapshot of one transfer's progress.

    Attributes:
        total_bytes: Expected size, ``0`` when unknown.
        completed_bytes: Bytes sent or received so far.
        bytes_in_chunk: Bytes moved by the event that produced this snapshot.
        fraction: ``completed / total`` clamped to ``[0, 1]``; ``0.0`` when
            the total is unknown.
        indeterminate: ``True`` when the total is unknown.
    """

    total_bytes: int
    completed_bytes: int
    bytes_in_chunk: int
    fraction: float
    indeterminate: bool

    @classmethod
    def of(cls, completed: int, total: int, chunk: int = 0) -> Progress:
        """Build a snapshot, guarding against a zero or negative total."""
        if total <= 0:
            return cls(max(total, 0), completed, chunk, 0.0, True)
        fraction = min(max(completed / total, 0.0), 1.0)
        return cls(total, completed, chunk, fraction, False)

    @property
    def percent(self) -> float:
        return self.fraction * 100.0

    @property
    def size(self) -> str:
        """Human-readable total size, e.g. ``"1.5 MB"``."""
        return format_size(self.total_bytes)


def format_size(num_bytes: int) -> str:
    """Format a byte count with decimal (1000-based) units, file-size style."""
    if num_bytes < 1000:
        return f"{num_bytes} bytes"
    value = float(num_bytes)
    unit = _SIZE_UNITS[0]
    for unit in _SIZE_UNITS:
        value /= 1000.0
        if value < 1000:
            break
    return f"{value:.1f} {unit}"


@dataclass
class TransferHandle:
    """Callbacks registered for one transfer."""

    operation_id: str
    url: str
    on_progress: Optional[ProgressCallback]
    on_completion: Optional[CompletionCallback]
    active: bool = True
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)


class TransferTracker:
    """Thread-safe registry of in-flight transfer callbacks.

    Example::

        tracker = TransferTracker()
        op_id = tracker.register(url, on_progress, on_done)
        tracker.progress(op_id, 512, 1024)
        tracker.complete(op_id, result)
        tracker.progress(op_id, 1024, 1024)  # no-op: already completed
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[str, TransferHandle] = {}

    def register(
        self,
        url: str,
        on_progress: Optional[ProgressCallback] = None,
        on_completion: Optional[CompletionCallback] = None,
        operation_id: Optional[str] = None,
    ) -> str:
        """Register callbacks for a new transfer and return its operation id."""
        op_id = operation_id or uuid.uuid4().hex
        handle = TransferHandle(op_id, url, on_progress, on_completion)
        with self._lock:
            if op_id in self._handles:
                raise ValueError(f"Transfer {op_id} is already registered")
            self._handles[op_id] = handle
        return op_id

    def progress(self, operation_id: str, completed: int, total: int, chunk: int = 0) -> None:
        """Report progress. Unknown (completed or cancelled) ids are ignored."""
        with self._lock:
            handle = self._handles.get(operation_id)
        if handle is None or handle.on_progress is None:
            return
        with handle.lock:
            # Cancelled or completed since the lookup.
            if not handle.active:
                return
            try:
                handle.on_progress(Progress.of(completed, total, chunk))
            except Exception as exc:
                get_output().warning(f"Progress callback for {handle.url} failed: {exc}")

    def complete(self, operation_id: str, result: Any) -> bool:
        """Deregister the transfer and invoke its completion callback.

        Returns:
            ``True`` if a callback was registered; ``False`` when the
            transfer was already completed or cancelled.
        """
        with self._lock:
            handle = self._handles.pop(operation_id, None)
        if handle is None:
            return False
        with handle.lock:
            handle.active = False
        if handle.on_completion is not None:
            try:
                handle.on_completion(result)
            except Exception as exc:
                get_output().warning(f"Completion callback for {handle.url} failed: {exc}")
        return True

    def cancel(self, operation_id: str) -> bool:
        """Drop the transfer so no further callback fires. Returns whether it was active.

        A progress callback already running for the transfer is waited for,
        so none runs once this returns. Calling it from inside that callback
        is allowed.
        """
        with self._lock:
            handle = self._handles.pop(operation_id, None)
        if handle is None:
            return False
        with handle.lock:
            handle.active = False
        return True

    def is_active(self, operation_id: str) -> bool:
        with self._lock:
            return operation_id in self._handles

    def active_for(self, url: str) -> list[str]:
        """Operation ids of the active transfers targeting *url*."""
        with self._lock:
            return [h.operation_id for h in self._handles.values() if h.url == url]

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
