"""
Debounced Autosave
==================

Rapid answer edits collapse into one write.  Each assessment has at most
one *pending* write (the latest snapshot, waiting for the quiet period)
and at most one *in-flight* write.  Scheduling again before the timer
fires replaces the pending snapshot; a snapshot that becomes due while a
save is still running waits for it and then goes out.  Last scheduled
write wins; nothing is merged.  ``flush`` waits for a running save before
writing, so when it returns the latest snapshot is stored.

Timers come from a :class:`Scheduler` so tests can drive time by hand.
Failed saves are logged and dropped; the next edit schedules a new one.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set

from complio.config import get_settings

logger = logging.getLogger(__name__)

SaveFunc = Callable[[str, Dict[str, Any]], Any]


class TimerHandle:
    def cancel(self) -> None:
        raise NotImplementedError


class Scheduler:
    """Runs ``callback`` once after ``delay`` seconds unless cancelled."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError


class ThreadingScheduler(Scheduler):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer  # threading.Timer already provides cancel()


@dataclass
class PendingWrite:
    assessment_id: str
    responses: Dict[str, Any]
    handle: Optional[TimerHandle] = None
    due: bool = False  # timer fired while another save was in flight


@dataclass
class SaveStats:
    saved: int = 0
    failed: int = 0
    superseded: int = 0
    errors: Dict[str, str] = field(default_factory=dict)


class DebouncedSaver:
    """Per-assessment debounce in front of a save function."""

    def __init__(
        self,
        save_func: SaveFunc,
        scheduler: Optional[Scheduler] = None,
        delay: Optional[float] = None,
    ) -> None:
        self.save_func = save_func
        self.scheduler = scheduler or ThreadingScheduler()
        self.delay = get_settings().autosave_delay_seconds if delay is None else delay
        self.stats = SaveStats()
        self._pending: Dict[str, PendingWrite] = {}
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)

    def schedule(self, assessment_id: str, responses: Dict[str, Any]) -> PendingWrite:
        """Queue a snapshot, replacing any snapshot not yet written."""
        write = PendingWrite(assessment_id=assessment_id, responses=dict(responses))
        with self._lock:
            previous = self._pending.get(assessment_id)
            if previous is not None:
                if previous.handle is not None:
                    previous.handle.cancel()
                self.stats.superseded += 1
            self._pending[assessment_id] = write
            write.handle = self.scheduler.call_later(self.delay, lambda: self._fire(write))
        return write

    def cancel(self, assessment_id: str) -> bool:
        """Drop the pending snapshot.  A save already running is not stopped."""
        with self._lock:
            write = self._pending.pop(assessment_id, None)
        if write is None:
            return False
        if write.handle is not None:
            write.handle.cancel()
        return True

    def pending(self, assessment_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            write = self._pending.get(assessment_id)
            return dict(write.responses) if write else None

    def in_flight(self, assessment_id: str) -> bool:
        with self._lock:
            return assessment_id in self._in_flight

    def flush(self, assessment_id: str) -> bool:
        """Write the pending snapshot now.

        Blocks until any save already running for the assessment has
        returned, then writes the latest snapshot on the calling thread.
        Returns True when a write was performed by this call.  Must not be
        called from inside ``save_func``.
        """
        with self._idle:
            write = self._pending.get(assessment_id)
            if write is not None and write.handle is not None:
                write.handle.cancel()
                write.handle = None
            while assessment_id in self._in_flight:
                self._idle.wait()
            # the running save may have picked up a due snapshot itself
            write = self._pending.pop(assessment_id, None)
            if write is None:
                return False
            if write.handle is not None:
                write.handle.cancel()
                write.handle = None
            self._in_flight.add(assessment_id)
        self._run(write)
        return True

    def wait_idle(self, assessment_id: str) -> None:
        """Block until no save is running for the assessment."""
        with self._idle:
            while assessment_id in self._in_flight:
                self._idle.wait()

    def discard(self, assessment_id: str) -> bool:
        """Drop the pending snapshot and wait out a running save.

        Used before an explicit write so an older autosave cannot land on
        top of it.
        """
        cancelled = self.cancel(assessment_id)
        self.wait_idle(assessment_id)
        return cancelled

    def close(self, assessment_id: str) -> bool:
        """The editor is going away: write whatever is pending."""
        return self.flush(assessment_id)

    def _fire(self, write: PendingWrite) -> None:
        with self._lock:
            if self._pending.get(write.assessment_id) is not write:
                return
            write.handle = None
            if write.assessment_id in self._in_flight:
                write.due = True
                return
            del self._pending[write.assessment_id]
            self._in_flight.add(write.assessment_id)
        self._run(write)

    def _run(self, write: PendingWrite) -> None:
        assessment_id = write.assessment_id
        while write is not None:
            try:
                self.save_func(assessment_id, write.responses)
                self.stats.saved += 1
                self.stats.errors.pop(assessment_id, None)
            except Exception as e:
                self.stats.failed += 1
                self.stats.errors[assessment_id] = str(e)
                logger.exception("Autosave failed for assessment %s", assessment_id)
            with self._lock:
                queued = self._pending.get(assessment_id)
                if queued is not None and queued.due:
                    del self._pending[assessment_id]
                    write = queued
                else:
                    self._in_flight.discard(assessment_id)
                    self._idle.notify_all()
                    write = None
