"""Login sessions."""

import pytest

from logisync.core.auth.session_control import (
    SessionExpiredError,
    SessionInvalidError,
    SessionManager,
)
from logisync.core.config import SessionConfig


@pytest.fixture
def sessions(tmp_path, clock):
    return SessionManager(tmp_path / "sessions.db", SessionConfig(), clock=clock)


def test_created_session_validates(sessions):
    token = sessions.create_session("7", "10.0.0.1", "pytest")
    session = sessions.validate_session(token)

    assert session.owner_id == "7"
    assert session.ip_address == "10.0.0.1"
    assert token not in repr(session)


def test_unknown_token_is_invalid(sessions):
    with pytest.raises(SessionInvalidError):
        sessions.validate_session("nope")


def test_session_expires_after_inactivity(sessions, clock):
    token = sessions.create_session("7")
    clock.advance(minutes=15)
    with pytest.raises(SessionExpiredError):
        sessions.validate_session(token)
    with pytest.raises(SessionInvalidError):
        sessions.validate_session(token)


def test_activity_near_expiry_extends_session(sessions, clock):
    token = sessions.create_session("7")
    clock.advance(minutes=11)
    sessions.validate_session(token)

    clock.advance(minutes=10)
    assert sessions.validate_session(token).owner_id == "7"


def test_logout_invalidates(sessions):
    token = sessions.create_session("7")
    sessions.invalidate_session(token)
    with pytest.raises(SessionInvalidError):
        sessions.validate_session(token)


def test_invalidate_all_can_keep_one(sessions):
    keep = sessions.create_session("7")
    other = sessions.create_session("7")
    foreign = sessions.create_session("8")

    assert sessions.invalidate_all_sessions("7", except_token=keep) == 1
    sessions.validate_session(keep)
    sessions.validate_session(foreign)
    with pytest.raises(SessionInvalidError):
        sessions.validate_session(other)

    assert sessions.invalidate_all_sessions("7") == 1


def test_oldest_session_is_revoked_at_limit(tmp_path, clock):
    sessions = SessionManager(
        tmp_path / "sessions.db", SessionConfig(max_sessions_per_user=2), clock=clock
    )
    first = sessions.create_session("7")
    clock.advance(seconds=1)
    sessions.create_session("7")
    clock.advance(seconds=1)
    sessions.create_session("7")

    assert len(sessions.get_owner_sessions("7")) == 2
    with pytest.raises(SessionInvalidError):
        sessions.validate_session(first)


def test_cleanup_deletes_old_sessions(sessions, clock):
    sessions.create_session("7")
    clock.advance(days=31)
    assert sessions.cleanup_expired_sessions(retention_days=30) == 1
    assert sessions.get_owner_sessions("7") == []
