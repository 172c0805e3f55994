"""End-to-end authentication flows."""

import pytest

from logisync.core.auth.argon2_auth import Argon2Hasher
from logisync.core.auth.flows import RESET_REQUESTED_MESSAGE, VERIFICATION_REQUESTED_MESSAGE
from logisync.core.auth.guard import hash_token
from logisync.core.auth.results import ErrorCode, GuardStoreError
from logisync.core.auth.services import build_services
from logisync.core.auth.session_control import SessionInvalidError
from logisync.core.auth.user_manager import UserManager
from logisync.core.config import GuardConfig, ResetTokenConfig
from logisync.security.audit import AuditEventType


EMAIL = "dispatch@logisync.com"
PASSWORD = "Abcdef1@"


@pytest.fixture
def user_id(flows):
    result = flows.register(EMAIL, PASSWORD)
    assert result.success
    return result.data["user_id"]


def _event_types(services):
    return [e["event_type"] for e in services.audit.get_events()]


# ------------------------------------------------------------------
# Registration
# ------------------------------------------------------------------

def test_register_stores_hash_and_history(services, user_id):
    user = services.users.get_user(user_id)
    assert user.email == EMAIL
    assert user.password_hash.startswith("$argon2id$")
    assert len(services.guard.store.get_history(user_id)) == 1
    assert AuditEventType.USER_REGISTERED.value in _event_types(services)


def test_register_rejects_weak_password(flows):
    result = flows.register(EMAIL, "password")
    assert not result.success
    assert result.code is ErrorCode.POLICY_VIOLATION
    assert len(result.errors) == 4


def test_register_rejects_duplicate_email(flows, user_id):
    result = flows.register(EMAIL.upper(), PASSWORD)
    assert result.code is ErrorCode.ACCOUNT_EXISTS


def test_register_rejects_bad_email(flows):
    assert flows.register("not-an-email", PASSWORD).code is ErrorCode.VALIDATION_ERROR


# ------------------------------------------------------------------
# Login
# ------------------------------------------------------------------

def test_login_success_issues_session(services, flows, user_id):
    result = flows.login(EMAIL, PASSWORD, ip_address="10.0.0.1")

    assert result.success
    assert result.data["user_id"] == user_id
    assert result.data["password_expired"] is False
    assert services.sessions.validate_session(result.data["token"]).owner_id == user_id


def test_login_unknown_email_looks_like_wrong_password(flows, user_id):
    unknown = flows.login("nobody@logisync.com", PASSWORD)
    wrong = flows.login(EMAIL, "Wrong1@pass")

    assert unknown.code is wrong.code is ErrorCode.INVALID_CREDENTIALS
    assert unknown.message == wrong.message


def test_login_reports_attempts_remaining(flows, user_id):
    result = flows.login(EMAIL, "Wrong1@pass")
    assert result.data["attempts_remaining"] == 4


def test_five_failures_lock_even_correct_password(services, flows, user_id):
    for _ in range(4):
        flows.login(EMAIL, "Wrong1@pass")
    fifth = flows.login(EMAIL, "Wrong1@pass")
    assert fifth.code is ErrorCode.LOCKED_OUT
    assert "15 minutes" in fifth.message

    locked = flows.login(EMAIL, PASSWORD)
    assert locked.code is ErrorCode.LOCKED_OUT
    assert AuditEventType.ACCOUNT_LOCKED.value in _event_types(services)


def test_login_after_lock_expiry_succeeds(flows, user_id, clock):
    for _ in range(5):
        flows.login(EMAIL, "Wrong1@pass")
    clock.advance(minutes=15)
    assert flows.login(EMAIL, PASSWORD).success


def test_successful_login_resets_counter(services, flows, user_id):
    for _ in range(3):
        flows.login(EMAIL, "Wrong1@pass")
    assert flows.login(EMAIL, PASSWORD).success
    assert services.guard.store.get_login_attempt(user_id) is None


def test_login_reports_expired_password(flows, user_id, clock):
    clock.advance(days=91)
    result = flows.login(EMAIL, PASSWORD)
    assert result.success
    assert result.data["password_expired"] is True


def test_inactive_account_cannot_log_in(services, flows, user_id):
    services.users.deactivate_user(user_id)
    assert flows.login(EMAIL, PASSWORD).code is ErrorCode.ACCOUNT_INACTIVE


# ------------------------------------------------------------------
# Change password
# ------------------------------------------------------------------

def test_change_password(services, flows, user_id):
    keep = flows.login(EMAIL, PASSWORD).data["token"]
    other = flows.login(EMAIL, PASSWORD).data["token"]

    result = flows.change_password(user_id, PASSWORD, "Ghijkl2$", keep_session=keep)

    assert result.success
    assert result.data["sessions_revoked"] == 1
    assert flows.login(EMAIL, "Ghijkl2$").success
    assert not flows.login(EMAIL, PASSWORD).success
    services.sessions.validate_session(keep)
    with pytest.raises(SessionInvalidError):
        services.sessions.validate_session(other)


def test_change_password_requires_current(flows, user_id):
    result = flows.change_password(user_id, "Wrong1@pass", "Ghijkl2$")
    assert result.code is ErrorCode.INVALID_CREDENTIALS


def test_change_password_rejects_same_password(flows, user_id):
    result = flows.change_password(user_id, PASSWORD, PASSWORD)
    assert result.code is ErrorCode.POLICY_VIOLATION


def test_change_password_rejects_recent_password(flows, user_id):
    assert flows.change_password(user_id, PASSWORD, "Ghijkl2$").success
    result = flows.change_password(user_id, "Ghijkl2$", PASSWORD)
    assert result.code is ErrorCode.REUSE_VIOLATION


def test_change_password_unknown_owner(flows):
    assert flows.change_password("missing", PASSWORD, "Ghijkl2$").code is ErrorCode.NOT_FOUND


# ------------------------------------------------------------------
# Forgot / reset password
# ------------------------------------------------------------------

def test_reset_request_does_not_reveal_account(flows, outbox, user_id):
    known = flows.request_password_reset(EMAIL)
    unknown = flows.request_password_reset("nobody@logisync.com")

    assert known.to_dict() == unknown.to_dict()
    assert known.message == RESET_REQUESTED_MESSAGE
    assert len(outbox) == 1
    assert outbox[0][0].id == user_id


def test_reset_request_survives_delivery_failure(services, user_id):
    def broken_sender(user, token):
        raise ConnectionError("smtp down")

    services.flows._send_reset_token = broken_sender
    result = services.flows.request_password_reset(EMAIL)
    assert result.success


def test_full_reset_flow(services, flows, outbox, user_id):
    session = flows.login(EMAIL, PASSWORD).data["token"]
    for _ in range(2):
        flows.login(EMAIL, "Wrong1@pass")
    flows.request_password_reset(EMAIL)
    token = outbox[-1][1]

    result = flows.reset_password(token, "Ghijkl2$")

    assert result.success
    assert services.guard.store.get_login_attempt(user_id) is None
    assert flows.login(EMAIL, "Ghijkl2$").success
    with pytest.raises(SessionInvalidError):
        services.sessions.validate_session(session)
    assert AuditEventType.PASSWORD_RESET_COMPLETED.value in _event_types(services)


def test_reset_token_cannot_be_replayed(flows, outbox, user_id):
    flows.request_password_reset(EMAIL)
    token = outbox[-1][1]

    assert flows.reset_password(token, "Ghijkl2$").success
    replay = flows.reset_password(token, "Mnopqr3%")
    assert replay.code is ErrorCode.TOKEN_INVALID
    assert replay.message == "Reset token has already been used"


def test_reset_with_expired_token(flows, outbox, user_id, clock):
    flows.request_password_reset(EMAIL)
    clock.advance(hours=2)

    result = flows.reset_password(outbox[-1][1], "Ghijkl2$")
    assert result.code is ErrorCode.TOKEN_INVALID
    assert result.message == "Reset token has expired"


def test_reset_rejects_reused_password_and_keeps_token(services, flows, outbox, user_id):
    flows.request_password_reset(EMAIL)
    token = outbox[-1][1]

    result = flows.reset_password(token, PASSWORD)
    assert result.code is ErrorCode.REUSE_VIOLATION
    assert services.guard.verify_password_reset_token(token).valid


def test_reset_rejects_malformed_token(flows):
    assert flows.reset_password("xyz", "Ghijkl2$").code is ErrorCode.VALIDATION_ERROR


def test_audit_log_never_contains_secrets(services, flows, outbox, user_id):
    flows.login(EMAIL, PASSWORD)
    flows.request_password_reset(EMAIL)
    token = outbox[-1][1]
    flows.reset_password(token, "Ghijkl2$")

    raw = services.config.paths.audit_log_path.read_text()
    assert PASSWORD not in raw
    assert "Ghijkl2$" not in raw
    assert token not in raw
    assert "$argon2" not in raw
    assert services.audit.verify_integrity() == (True, services.audit.event_count)


def test_reset_with_largest_token_size(config, hasher, clock):
    sent = []
    services = build_services(
        GuardConfig(
            paths=config.paths,
            hashing=config.hashing,
            reset_tokens=ResetTokenConfig(token_bytes=64),
        ),
        hasher=hasher,
        clock=clock,
        send_reset_token=lambda user, token: sent.append(token),
        enable_audit=False,
    )
    try:
        services.flows.register(EMAIL, PASSWORD)
        services.flows.request_password_reset(EMAIL)
        assert len(sent[-1]) == 128

        assert services.flows.reset_password(sent[-1], "Xyzabc9@").success
    finally:
        services.close()


def test_reset_keeps_token_when_password_update_fails(
    services, flows, outbox, user_id, monkeypatch
):
    flows.request_password_reset(EMAIL)
    token = outbox[-1][1]

    def unavailable(self, user_id, password_hash):
        raise GuardStoreError("database is locked")

    monkeypatch.setattr(UserManager, "update_password_hash", unavailable)
    with pytest.raises(GuardStoreError):
        flows.reset_password(token, "Ghijkl2$")
    assert services.guard.verify_password_reset_token(token).valid

    monkeypatch.undo()
    assert flows.reset_password(token, "Ghijkl2$").success
    assert flows.login(EMAIL, "Ghijkl2$").success


# ------------------------------------------------------------------
# Hash upgrades
# ------------------------------------------------------------------

def test_login_upgrades_outdated_hash(services, flows):
    weaker = Argon2Hasher(memory_cost=512, time_cost=1, parallelism=1, enforce_minimums=False)
    user = services.users.create_user(EMAIL, weaker.hash(PASSWORD))

    assert flows.login(EMAIL, PASSWORD).success

    upgraded = services.users.get_user(user.id)
    assert upgraded.password_hash != user.password_hash
    assert not services.guard.needs_rehash(upgraded.password_hash)
    assert upgraded.password_created_at == user.password_created_at
    assert flows.login(EMAIL, PASSWORD).success


def test_login_keeps_current_hash(services, flows, user_id):
    before = services.users.get_user(user_id).password_hash
    assert flows.login(EMAIL, PASSWORD).success
    assert services.users.get_user(user_id).password_hash == before


# ------------------------------------------------------------------
# Email verification
# ------------------------------------------------------------------

def test_register_issues_verification_token(services, verification_outbox, user_id):
    assert len(verification_outbox) == 1
    user, token = verification_outbox[0]
    assert user.id == user_id
    assert services.guard.store.get_verification_token(hash_token(token)).owner_id == user_id
    assert services.users.get_user(user_id).is_verified is False


def test_verify_email(services, flows, verification_outbox, user_id):
    token = verification_outbox[-1][1]

    result = flows.verify_email(token)

    assert result.success
    assert services.users.get_user(user_id).is_verified is True
    assert flows.login(EMAIL, PASSWORD).data["email_verified"] is True
    assert AuditEventType.EMAIL_VERIFIED.value in _event_types(services)

    replay = flows.verify_email(token)
    assert replay.code is ErrorCode.TOKEN_INVALID
    assert replay.message == "Invalid or expired verification token"


def test_verification_token_expires_after_a_day(services, flows, verification_outbox,
                                                user_id, clock):
    token = verification_outbox[-1][1]
    clock.advance(hours=24)

    result = flows.verify_email(token)
    assert result.code is ErrorCode.TOKEN_INVALID
    assert services.users.get_user(user_id).is_verified is False


def test_resend_replaces_earlier_tokens(flows, verification_outbox, user_id):
    first = verification_outbox[-1][1]

    result = flows.resend_verification(EMAIL)
    assert result.message == VERIFICATION_REQUESTED_MESSAGE
    second = verification_outbox[-1][1]

    assert flows.verify_email(first).code is ErrorCode.TOKEN_INVALID
    assert flows.verify_email(second).success


def test_resend_does_not_reveal_account(flows, verification_outbox, user_id):
    known = flows.resend_verification(EMAIL)
    unknown = flows.resend_verification("nobody@logisync.com")

    assert known.to_dict() == unknown.to_dict()
    assert len(verification_outbox) == 2


def test_resend_after_verification_is_rejected(flows, verification_outbox, user_id):
    flows.verify_email(verification_outbox[-1][1])
    result = flows.resend_verification(EMAIL)
    assert result.code is ErrorCode.ALREADY_VERIFIED
    assert len(verification_outbox) == 1


def test_verification_delivery_failure_does_not_fail_registration(services):
    def broken_sender(user, token):
        raise ConnectionError("smtp down")

    services.flows._send_verification_token = broken_sender
    assert services.flows.register(EMAIL, PASSWORD).success
