"""
Tests for authentication sessions and the lockout tracker.
"""

from datetime import timedelta

import pytest

from heartid_core.data_models import Approved, AttemptRecord, Denied, RetryRequested
from heartid_core.exceptions import SessionClosedError, SessionExpiredError, StorageError
from heartid_core.policy import SecurityPolicy
from heartid_core.session import AuthenticationSession, LockoutTracker, SessionState

from conftest import START


@pytest.fixture
def session():
    return AuthenticationSession(identity_id="alice", started_at=START, policy=SecurityPolicy())


class TestAuthenticationSession:
    """Test cases for AuthenticationSession."""

    def test_defaults_follow_policy(self, session):
        assert session.max_attempts == 3
        assert session.timeout == timedelta(minutes=5)
        assert session.state is SessionState.ACTIVE
        assert len(session.session_id) == 32

    def test_only_denials_count(self, session):
        session.record(AttemptRecord(START, None, RetryRequested("quality")))
        session.record(AttemptRecord(START, 0.6, RetryRequested("inconclusive", 0.6)))
        session.record(AttemptRecord(START, 0.2, Denied("mismatch", 0.2)))

        assert session.denied_count == 1
        assert [a.similarity_score for a in session.attempts] == [None, 0.6, 0.2]

    def test_expiry_is_strict(self, session):
        assert not session.is_expired(START + timedelta(minutes=5))
        assert session.is_expired(START + timedelta(minutes=5, seconds=1))

    def test_terminal_session_rejects_attempts(self, session):
        session.record(AttemptRecord(START, 0.9, Approved(0.9)))
        session.close(SessionState.APPROVED)

        assert session.is_terminal
        with pytest.raises(SessionClosedError):
            session.record(AttemptRecord(START, 0.9, Approved(0.9)))

    def test_ensure_open(self, session):
        session.ensure_open(START + timedelta(minutes=5))

        with pytest.raises(SessionExpiredError):
            session.ensure_open(START + timedelta(minutes=6))
        assert session.state is SessionState.EXPIRED
        with pytest.raises(SessionClosedError):
            session.ensure_open(START)

    def test_close_requires_terminal_state(self, session):
        with pytest.raises(ValueError):
            session.close(SessionState.ACTIVE)

    def test_to_dict(self, session):
        session.record(AttemptRecord(START, 0.2, Denied("mismatch", 0.2)))
        data = session.to_dict()

        assert data["state"] == "active"
        assert data["attempts"][0]["outcome"]["outcome"] == "denied"


class TestLockoutTracker:
    """Test cases for LockoutTracker."""

    @pytest.fixture
    def tracker(self):
        return LockoutTracker([timedelta(minutes=10), timedelta(minutes=20), timedelta(minutes=40)])

    def test_cooldown_escalates(self, tracker):
        assert tracker.record_lockout("alice", START) == START + timedelta(minutes=10)
        assert tracker.record_lockout("alice", START) == START + timedelta(minutes=20)
        assert tracker.record_lockout("alice", START) == START + timedelta(minutes=40)
        # Beyond the table the last period repeats
        assert tracker.record_lockout("alice", START) == START + timedelta(minutes=40)
        assert tracker.consecutive_lockouts("alice") == 4

    def test_cooldown_expires(self, tracker):
        tracker.record_lockout("alice", START)

        assert tracker.is_locked("alice", START + timedelta(minutes=9))
        assert not tracker.is_locked("alice", START + timedelta(minutes=10))
        assert tracker.locked_until("alice", START + timedelta(minutes=11)) is None

    def test_success_resets(self, tracker):
        tracker.record_lockout("alice", START)
        tracker.record_success("alice")

        assert not tracker.is_locked("alice", START)
        assert tracker.record_lockout("alice", START) == START + timedelta(minutes=10)

    def test_identities_are_independent(self, tracker):
        tracker.record_lockout("alice", START)
        assert not tracker.is_locked("bob", START)

    def test_requires_periods(self):
        with pytest.raises(ValueError):
            LockoutTracker([])

    def test_state_file_survives_restart(self, tmp_path):
        state_path = tmp_path / "lockouts.json"
        periods = [timedelta(minutes=10), timedelta(minutes=20)]
        LockoutTracker(periods, state_path=state_path).record_lockout("alice", START)

        restarted = LockoutTracker(periods, state_path=state_path)
        assert restarted.locked_until("alice", START) == START + timedelta(minutes=10)
        assert restarted.record_lockout("alice", START) == START + timedelta(minutes=20)
        assert "alice" not in state_path.read_text()

        restarted.record_success("alice")
        assert not LockoutTracker(periods, state_path=state_path).is_locked("alice", START)

    def test_unreadable_state_file(self, tmp_path):
        state_path = tmp_path / "lockouts.json"
        state_path.write_text("not json")

        with pytest.raises(StorageError):
            LockoutTracker([timedelta(minutes=10)], state_path=state_path)
