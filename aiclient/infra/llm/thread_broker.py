# aiclient/infra/llm/thread_broker.py
from __future__ import annotations
import logging
import threading
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from itertools import count
from typing import Callable, Deque, List, Optional

log = logging.getLogger("llm.broker")


# ---------- Cancellation ----------
class CancelToken:
    """Cooperative cancel flag shared by the broker, transports and the retry loop."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception:
                log.exception("Cancel callback %r raised", cb)

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Run `callback` once on cancel (right away if already cancelled), on the
        cancelling thread. Returns a function that unregisters it.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._discard(callback)
        callback()
        return lambda: None

    def _discard(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._callbacks = [cb for cb in self._callbacks if cb is not callback]

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; True if cancelled meanwhile."""
        return self._event.wait(seconds)

    def __call__(self) -> bool:  # usable wherever a stop_fn is expected
        return self._event.is_set()


# ---------- Signals ----------
class Signal:
    """Minimal callback list. Slots run on the emitting (worker) thread."""

    def __init__(self):
        self._slots: List[Callable] = []
        self._lock = threading.Lock()

    def connect(self, slot: Callable) -> None:
        with self._lock:
            self._slots.append(slot)

    def disconnect(self, slot: Callable) -> None:
        with self._lock:
            self._slots = [s for s in self._slots if s is not slot]

    def emit(self, *args) -> None:
        with self._lock:
            slots = list(self._slots)
        for slot in slots:
            try:
                slot(*args)
            except Exception:
                log.exception("Signal slot %r raised", slot)


# ---------- Public types ----------
JobFunc = Callable[..., object]

@dataclass(slots=True)
class Job:
    ticket: int
    func:   JobFunc
    args:   tuple = field(default_factory=tuple)
    kwargs: dict  = field(default_factory=dict)
    cancel: CancelToken = field(default_factory=CancelToken)


# ---------- Broker ----------
class RequestBroker:
    """
    Single-concurrency ticket queue for LLM work: one job runs at a time, in
    submission order, on a daemon worker thread. The job callable receives
    `cancel=<CancelToken>`. If it returns an iterator, every item is emitted
    on job_token; otherwise the return value goes out on job_result.
    """

    def __init__(self, name: str = "llm-broker"):
        self.name = name
        self.job_started   = Signal()   # (ticket)
        self.job_token     = Signal()   # (ticket, item)
        self.job_result    = Signal()   # (ticket, value)
        self.job_finished  = Signal()   # (ticket, status) status: "ok"|"cancelled"|"error"
        self.job_error     = Signal()   # (ticket, message)
        self.queue_changed = Signal()   # (active_ticket or -1, queued_count)

        self._tickets = count(1)
        self._queue: Deque[Job] = deque()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._active: Optional[Job] = None
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    # -------- API --------
    def submit(self, func: JobFunc, *args, **kwargs) -> int:
        with self._lock:
            if self._closed:
                raise RuntimeError("RequestBroker is shut down")
            ticket = next(self._tickets)
            self._queue.append(Job(ticket, func, args, kwargs))
            active, queued = self._active_ticket_locked(), len(self._queue)
            self._ensure_worker_locked()
        self.queue_changed.emit(active, queued)
        return ticket

    def stop_active(self) -> None:
        # gentle, cooperative cancel
        with self._lock:
            job = self._active
        if job:
            job.cancel.cancel()

    def cancel_ticket(self, ticket: int) -> None:
        # remove pending job if queued; if it's active, treat as stop
        with self._lock:
            if self._active and self._active.ticket == ticket:
                self._active.cancel.cancel()
                return
            self._queue = deque(j for j in self._queue if j.ticket != ticket)
            active, queued = self._active_ticket_locked(), len(self._queue)
        self.queue_changed.emit(active, queued)

    def clear_queue(self, include_active: bool = False) -> None:
        with self._lock:
            self._queue.clear()
            active = self._active_ticket_locked()
        if include_active:
            self.stop_active()
        self.queue_changed.emit(active, 0)

    def active_ticket(self) -> int:
        with self._lock:
            return self._active_ticket_locked()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no job is running or queued."""
        with self._idle:
            return self._idle.wait_for(lambda: self._active is None and not self._queue, timeout)

    def shutdown(self, wait: bool = True, timeout: float | None = None) -> None:
        self.clear_queue(include_active=True)
        with self._lock:
            self._closed = True
            thread = self._thread
        if wait and thread and thread is not threading.current_thread():
            thread.join(timeout)

    # -------- internals --------
    def _active_ticket_locked(self) -> int:
        return self._active.ticket if self._active else -1

    def _ensure_worker_locked(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while True:
            with self._lock:
                if not self._queue:
                    self._thread = None
                    self._idle.notify_all()
                    return
                job = self._queue.popleft()
                self._active = job
                queued = len(self._queue)
            self.queue_changed.emit(job.ticket, queued)
            self.job_started.emit(job.ticket)
            status = self._run(job)
            self.job_finished.emit(job.ticket, status)
            with self._lock:
                self._active = None
                self._idle.notify_all()

    def _run(self, job: Job) -> str:
        ticket = job.ticket
        status = "ok"
        it: Optional[Iterator] = None
        try:
            kw = dict(job.kwargs)
            kw.setdefault("cancel", job.cancel)
            result = job.func(*job.args, **kw)

            if isinstance(result, Iterator):
                it = result
                for item in it:
                    if job.cancel.cancelled:
                        status = "cancelled"
                        break
                    self.job_token.emit(ticket, item)
            else:
                self.job_result.emit(ticket, result)
            if job.cancel.cancelled:
                status = "cancelled"
        except Exception as exc:
            status = "error"
            log.exception("Job %s failed", ticket)
            self.job_error.emit(ticket, f"{type(exc).__name__}: {exc}")
        finally:
            close = getattr(it, "close", None)
            if close:
                close()
        return status
