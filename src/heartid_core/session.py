"""
Authentication sessions and lockout bookkeeping for the HeartID core.

An ``AuthenticationSession`` is created on the first authentication attempt
for an identity and holds the policy loaded for it, so thresholds and limits
never change mid-session. Attempts are appended in submission order and
never reordered; once the session reaches a terminal state it rejects
further attempts.

``LockoutTracker`` imposes a progressive cooldown on an identity after each
session lockout, escalating with consecutive lockouts until an approval
resets it. Given a state file it survives process restarts.
"""

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from .data_models import AttemptRecord
from .exceptions import SessionClosedError, SessionExpiredError, StorageError
from .policy import SecurityPolicy
from .utils import atomic_write_bytes, generate_session_id, hash_data

# Initialize structured logger
logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    ACTIVE = "active"
    APPROVED = "approved"
    LOCKED_OUT = "locked_out"
    EXPIRED = "expired"


@dataclass
class AuthenticationSession:
    """
    Attempt history of one identity between session start and termination.

    Parameters
    ----------
    identity_id : str
        Identity being authenticated.
    started_at : datetime
        Time of the first attempt.
    policy : SecurityPolicy
        Policy loaded when the session started.
    session_id : str, optional
        Unique identifier; generated when omitted.
    """

    identity_id: str
    started_at: datetime
    policy: SecurityPolicy
    session_id: str = field(default_factory=generate_session_id)
    state: SessionState = SessionState.ACTIVE
    attempts: List[AttemptRecord] = field(default_factory=list)

    @property
    def max_attempts(self) -> int:
        return self.policy.max_attempts

    @property
    def timeout(self) -> timedelta:
        return self.policy.session_timeout

    @property
    def denied_count(self) -> int:
        return sum(1 for attempt in self.attempts if attempt.counts_toward_lockout)

    @property
    def is_terminal(self) -> bool:
        return self.state is not SessionState.ACTIVE

    def is_expired(self, now: datetime) -> bool:
        """True once more than ``timeout`` has elapsed since the session started."""
        return now - self.started_at > self.timeout

    def ensure_open(self, now: datetime) -> None:
        """
        Check that the session can take another attempt at ``now``.

        An expired session is closed before the error is raised.

        Raises
        ------
        SessionClosedError
            If the session is already terminal.
        SessionExpiredError
            If the session timed out.
        """
        if self.is_terminal:
            raise SessionClosedError(self.session_id)
        if self.is_expired(now):
            self.close(SessionState.EXPIRED)
            raise SessionExpiredError(self.session_id)

    def record(self, attempt: AttemptRecord) -> None:
        """
        Append an attempt to the session history.

        Raises
        ------
        SessionClosedError
            If the session is already terminal.
        """
        if self.is_terminal:
            raise SessionClosedError(self.session_id)
        self.attempts.append(attempt)

    def close(self, state: SessionState) -> None:
        if state is SessionState.ACTIVE:
            raise ValueError("close() requires a terminal state")
        self.state = state

        logger.info(
            "Authentication session closed",
            identity_id=self.identity_id,
            session_id=self.session_id,
            state=state.value,
            attempts=len(self.attempts),
            denied=self.denied_count,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "identity_id": self.identity_id,
            "started_at": self.started_at.isoformat(),
            "state": self.state.value,
            "max_attempts": self.max_attempts,
            "timeout_seconds": self.timeout.total_seconds(),
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }


class LockoutTracker:
    """
    Progressive cooldown applied to identities after session lockouts.

    The n-th consecutive lockout of an identity blocks new sessions for
    ``periods[n - 1]``; lockouts beyond the table reuse its last period.

    Parameters
    ----------
    periods : Sequence[timedelta]
        Cooldown escalation table.
    state_path : str or Path, optional
        JSON file the counters are loaded from and saved to after every
        change. Identities are stored as SHA-256 digests. In-memory only
        when omitted.

    Examples
    --------
    >>> tracker = LockoutTracker([timedelta(minutes=10), timedelta(minutes=20)])
    >>> tracker.record_lockout("alice", now) - now
    datetime.timedelta(seconds=600)
    """

    def __init__(
        self, periods: Sequence[timedelta], state_path: Optional[Union[str, Path]] = None
    ) -> None:
        if not periods:
            raise ValueError("LockoutTracker requires at least one cooldown period")
        self.periods = tuple(periods)
        self._lockouts: Dict[str, int] = {}
        self._locked_until: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self.state_path = Path(state_path) if state_path is not None else None
        if self.state_path is not None:
            self._load()

    def record_lockout(self, identity_id: str, at: datetime) -> datetime:
        """Register a session lockout and return the end of the cooldown."""
        key = self._key(identity_id)
        with self._lock:
            count = self._lockouts.get(key, 0) + 1
            self._lockouts[key] = count
            until = at + self.periods[min(count, len(self.periods)) - 1]
            self._locked_until[key] = until
            self._save()

        logger.warning(
            "Identity locked out",
            identity_id=identity_id,
            consecutive_lockouts=count,
            locked_until=until.isoformat(),
        )
        return until

    def record_success(self, identity_id: str) -> None:
        key = self._key(identity_id)
        with self._lock:
            if self._lockouts.pop(key, None) is not None:
                self._locked_until.pop(key, None)
                self._save()

    def locked_until(self, identity_id: str, now: datetime) -> Optional[datetime]:
        """End of the active cooldown, or None when the identity is not locked."""
        with self._lock:
            until = self._locked_until.get(self._key(identity_id))
        if until is not None and until > now:
            return until
        return None

    def is_locked(self, identity_id: str, now: datetime) -> bool:
        return self.locked_until(identity_id, now) is not None

    def consecutive_lockouts(self, identity_id: str) -> int:
        with self._lock:
            return self._lockouts.get(self._key(identity_id), 0)

    def _key(self, identity_id: str) -> str:
        return hash_data(identity_id) if self.state_path is not None else identity_id

    def _load(self) -> None:
        if not self.state_path.is_file():
            return
        try:
            entries = json.loads(self.state_path.read_text(encoding="utf-8"))
            for key, entry in entries.items():
                self._lockouts[key] = int(entry["lockouts"])
                self._locked_until[key] = datetime.fromisoformat(entry["locked_until"])
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise StorageError(
                f"Cannot read lockout state {self.state_path}: {e}", operation="load_lockouts"
            )

        logger.debug("Lockout state loaded", path=str(self.state_path), identities=len(entries))

    def _save(self) -> None:
        if self.state_path is None:
            return
        entries = {
            key: {"lockouts": count, "locked_until": self._locked_until[key].isoformat()}
            for key, count in self._lockouts.items()
        }
        payload = json.dumps(entries, sort_keys=True, indent=2).encode("utf-8")
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_bytes(self.state_path, payload)
        except OSError as e:
            raise StorageError(
                f"Cannot write lockout state {self.state_path}: {e}", operation="save_lockouts"
            )
