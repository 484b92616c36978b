"""
writer.py - Single-writer serialization and atomic commit/abort

Every mutating ledger operation runs inside SingleWriter.transaction():

    with self.writer.transaction(self, self.debt_ledger):
        ...mutate...

On entry the writer takes its reentrant lock and checkpoints every
participating component. If the block raises, every checkpoint is restored
before the exception propagates, so an operation either commits fully or
leaves no trace. Nested transactions on the same thread simply checkpoint
again; the outermost one is the commit point.

LedgerComponent is the shared base of DebtLedger, ShareLedger and
DistributionLedger: it provides checkpoint/restore over the component's
declared state fields, the audit event trail, and verbose output.
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple
import copy
import threading

from .clock import LogicalClock
from .core import AccessControl, LedgerEvent
from .settings import SystemSettings


class SingleWriter:
    """
    One logical writer per deployed instance.

    Thread Safety:
        Operations on components sharing a writer are serialized through a
        single RLock. Independently deployed instances use separate writers.
    """

    def __init__(self):
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self, *participants: 'LedgerComponent') -> Iterator[None]:
        with self._lock:
            checkpoints: List[Tuple[LedgerComponent, Dict[str, Any]]] = [
                (p, p._checkpoint()) for p in participants
            ]
            try:
                yield
            except BaseException:
                for participant, state in reversed(checkpoints):
                    participant._restore(state)
                raise

    @contextmanager
    def read(self) -> Iterator[None]:
        """Hold the writer lock for a consistent multi-field read."""
        with self._lock:
            yield


class LedgerComponent:
    """
    Base class for components that own mutable ledger state.

    Subclasses list the attribute names making up their state in
    ``_STATE_FIELDS``; those (and the event trail) are what a transaction
    checkpoints and restores. Subclasses whose state is cheaper to rewind
    than to copy extend _checkpoint() and _restore().
    """

    _STATE_FIELDS: Tuple[str, ...] = ()

    def __init__(
        self,
        name: str,
        clock: LogicalClock,
        settings: SystemSettings,
        writer: SingleWriter,
        access: AccessControl,
        verbose: bool = False,
    ):
        self.name = name
        self.clock = clock
        self.settings = settings
        self.writer = writer
        self.access = access
        self.verbose = verbose
        self.events: List[LedgerEvent] = []

    def _checkpoint(self) -> Dict[str, Any]:
        state = {f: copy.deepcopy(getattr(self, f)) for f in self._STATE_FIELDS}
        state['events'] = len(self.events)
        return state

    def _restore(self, state: Dict[str, Any]) -> None:
        for f in self._STATE_FIELDS:
            setattr(self, f, state[f])
        del self.events[state['events']:]

    def _emit(self, name: str, **data: Any) -> LedgerEvent:
        event = LedgerEvent.create(name, self.clock.current_time, **data)
        self.events.append(event)
        if self.verbose:
            print(f"✓ [{self.name}] {event!r}")
        return event

    def _reject(self, error: Exception) -> Exception:
        """Print a rejection in verbose mode and hand the error back for raising."""
        if self.verbose:
            print(f"✗ [{self.name}] REJECTED: {error}")
        return error

    def events_named(self, name: str) -> List[LedgerEvent]:
        return [e for e in self.events if e.name == name]
