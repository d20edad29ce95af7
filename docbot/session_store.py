from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, Iterator, List

from .extraction.engine import ExtractedRecord


class Mode(str, Enum):
    IDLE = "idle"
    UPLOAD = "upload"
    SEARCH = "search"


class Step(str, Enum):
    NONE = "none"
    WAITING_CODE = "waiting_code"
    WAITING_IMAGE = "waiting_image"
    CHOOSE_TYPE = "choose_type"
    WAITING_VALUE = "waiting_value"


class SearchType(str, Enum):
    NONE = "none"
    BY_IDENTIFIER = "by_identifier"
    BY_SECONDARY_IDENTIFIER = "by_secondary_identifier"
    BY_NAME = "by_name"
    BY_DATE = "by_date"


VALID_STEPS: Dict[Mode, frozenset] = {
    Mode.IDLE: frozenset({Step.NONE}),
    Mode.UPLOAD: frozenset({Step.WAITING_CODE, Step.WAITING_IMAGE}),
    Mode.SEARCH: frozenset({Step.WAITING_CODE, Step.CHOOSE_TYPE, Step.WAITING_VALUE}),
}


@dataclass
class Session:
    """Conversation state for one user identity."""
    last_activity: float
    max_records: int = 2
    mode: Mode = Mode.IDLE
    step: Step = Step.NONE
    employee_code: str = ""
    collected_records: List[ExtractedRecord] = field(default_factory=list)
    search_type: SearchType = SearchType.NONE
    search_waiting_since: float = 0.0

    @property
    def image_count(self) -> int:
        return len(self.collected_records)

    @property
    def is_full(self) -> bool:
        return len(self.collected_records) >= self.max_records

    def move_to(self, mode: Mode, step: Step) -> None:
        """Purpose: Change mode and step together, enforcing the per-mode step set.
        Failure Modes: Raises ValueError for a step that does not belong to the mode.
        """
        if step not in VALID_STEPS[mode]:
            raise ValueError(f"step {step.value} is not valid in mode {mode.value}")
        self.mode = mode
        self.step = step

    def set_employee_code(self, canonical_code: str) -> None:
        self.employee_code = canonical_code
        self.collected_records = []

    def add_record(self, record: ExtractedRecord) -> None:
        """Append a record; raises ValueError when the session already holds the maximum."""
        if self.is_full:
            raise ValueError(f"session already holds {self.max_records} records")
        self.collected_records.append(record)

    def copy(self) -> "Session":
        """Working copy for one event; records are shared, the list is not."""
        return replace(self, collected_records=list(self.collected_records))


@dataclass
class _LockEntry:
    """Per-identity lock plus the number of threads holding or waiting for it."""
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class SessionRepository:
    """In-memory session storage with lazy expiry and per-identity locking."""

    def __init__(self, max_records: int = 2, clock: Callable[[], float] = time.time) -> None:
        """Purpose: Initialize an empty repository.
        Inputs/Outputs: Inputs are the per-session record cap and a clock returning
            epoch seconds (injectable for tests); no return value.
        Side Effects / State: Creates the session map and lock registry.
        Dependencies: Uses threading.Lock for the registry and per-identity locks.
        Failure Modes: None.
        If Removed: Conversation state cannot be kept between events.
        Testing Notes: Pass a fake clock to control expiry deterministically.
        """
        # Sessions and lock entries are both keyed by platform user id.
        self._max_records = max_records
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, _LockEntry] = {}
        self._registry_lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def new_session(self) -> Session:
        """Fresh Idle session stamped with the current time."""
        return Session(last_activity=self._clock(), max_records=self._max_records)

    def get_or_create(self, user_id: str) -> Session:
        """Purpose: Return the stored session for user_id, creating an Idle one lazily.
        Inputs/Outputs: Input is the platform user id; output is the stored Session.
        Side Effects / State: Inserts a new session on first contact.
        Testing Notes: Two calls for the same id return the same object.
        """
        # The registry lock keeps inserts from racing a concurrent prune().
        with self._registry_lock:
            session = self._sessions.get(user_id)
            if session is None:
                session = self.new_session()
                self._sessions[user_id] = session
            return session

    def reset(self, user_id: str) -> Session:
        """Replace the stored session wholesale with a fresh Idle one and return it."""
        session = self.new_session()
        with self._registry_lock:
            self._sessions[user_id] = session
        return session

    def save(self, user_id: str, session: Session) -> None:
        """Commit a working copy produced while handling one event."""
        with self._registry_lock:
            self._sessions[user_id] = session

    def touch(self, session: Session) -> None:
        session.last_activity = self._clock()

    def is_expired(self, session: Session, timeout_seconds: float) -> bool:
        """Purpose: Lazy inactivity check run at the start of every event.
        Inputs/Outputs: Inputs are the session and timeout; output is False for Idle
            sessions, otherwise whether more than timeout_seconds passed since activity.
        Testing Notes: Exactly timeout_seconds of inactivity is not yet expired.
        """
        # Idle has nothing to time out.
        if session.mode is Mode.IDLE:
            return False
        return self._clock() - session.last_activity > timeout_seconds

    def is_search_expired(self, session: Session, timeout_seconds: float) -> bool:
        """Search-flow timer check; only meaningful while in Search mode."""
        if session.mode is not Mode.SEARCH:
            return False
        return self._clock() - session.search_waiting_since > timeout_seconds

    @contextmanager
    def lock(self, user_id: str) -> Iterator[None]:
        """Purpose: Serialize event handling for one identity.
        Inputs/Outputs: Input is the platform user id; yields nothing.
        Side Effects / State: Holds the identity's lock for the body of the with-block
            and releases it on every exit path, including exceptions. The entry counts
            its holders and waiters so prune() never drops a lock in use.
        Dependencies: threading.Lock.
        Failure Modes: Exceptions from the body propagate after release.
        If Removed: Two events from one user could interleave and lose updates.
        Testing Notes: A second thread blocks on the same id but not on another id.
        """
        # Register interest before blocking so the entry survives until release.
        with self._registry_lock:
            entry = self._locks.get(user_id)
            if entry is None:
                entry = self._locks[user_id] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._registry_lock:
                entry.users -= 1

    def prune(self, retention_seconds: float) -> int:
        """Purpose: Forget identities that have been inactive for a long time.
        Inputs/Outputs: Input is the inactivity age after which a session is dropped;
            output is the number of sessions removed.
        Side Effects / State: Deletes old sessions and their lock entries. Identities
            whose lock is held or awaited are kept whatever their age.
        Failure Modes: None.
        If Removed: Memory grows with every identity that ever wrote to the bot.
        Testing Notes: Advance a fake clock past retention_seconds and check len().
        """
        # Sessions younger than the cutoff, or locked, stay.
        cutoff = self._clock() - retention_seconds
        removed = 0
        with self._registry_lock:
            for user_id, session in list(self._sessions.items()):
                entry = self._locks.get(user_id)
                if (entry is not None and entry.users) or session.last_activity >= cutoff:
                    continue
                del self._sessions[user_id]
                self._locks.pop(user_id, None)
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._sessions)
