from __future__ import annotations

from datetime import datetime

import pytest

from fakes import FakeIdentityProvider, SessionRecorder, drain
from recipebox.errors import AuthError, RepositoryError
from recipebox.models import Identity, SessionState
from recipebox.session import SessionStore

ANONYMOUS = SessionState.ANONYMOUS
AUTHENTICATED = SessionState.AUTHENTICATED


@pytest.fixture
def session_store(identity, document_store):
    store = SessionStore(identity, document_store)
    store.start()
    yield store
    store.close()


def test_store_is_unresolved_until_the_provider_reports():
    provider = FakeIdentityProvider(resolved=False)
    store = SessionStore(provider, None)
    store.start()
    recorder = SessionRecorder()
    store.observe(recorder)

    assert store.current.state is SessionState.UNRESOLVED
    assert not store.current.resolved

    provider.resolve()

    assert [s.state for s in recorder.wait_for(1)] == [ANONYMOUS]
    assert store.current.state is ANONYMOUS
    store.close()


def test_restored_session_is_reported_as_authenticated():
    cook = Identity(uid="uid-9", email="chef@example.com")
    provider = FakeIdentityProvider(user=cook)
    store = SessionStore(provider, None)
    store.start()
    recorder = SessionRecorder()

    store.observe(recorder)

    sessions = recorder.wait_for(1)
    assert sessions[0].state is AUTHENTICATED
    assert sessions[0].identity.uid == "uid-9"
    store.close()


def test_sign_in_notifies_observers(session_store):
    recorder = SessionRecorder()
    session_store.observe(recorder)

    identity = session_store.sign_in("cook@example.com", "secret123")

    sessions = recorder.wait_for(2)
    assert [s.state for s in sessions] == [ANONYMOUS, AUTHENTICATED]
    assert sessions[-1].identity == identity
    assert session_store.current.authenticated


def test_sign_in_failure_raises_auth_error_and_keeps_state(session_store):
    with pytest.raises(AuthError) as excinfo:
        session_store.sign_in("cook@example.com", "wrong")

    assert excinfo.value.message == "INVALID_LOGIN_CREDENTIALS"
    assert session_store.current.state is ANONYMOUS


def test_sign_out_reaches_every_observer_exactly_once(session_store):
    session_store.sign_in("cook@example.com", "secret123")
    first = SessionRecorder()
    second = SessionRecorder()
    session_store.observe(first)
    session_store.observe(second)
    first.wait_for(1)
    second.wait_for(1)

    session_store.sign_out()
    drain(session_store)

    assert first.states == [AUTHENTICATED, ANONYMOUS]
    assert second.states == [AUTHENTICATED, ANONYMOUS]
    assert session_store.current.state is ANONYMOUS


def test_observer_registered_after_sign_out_sees_anonymous(session_store):
    session_store.sign_in("cook@example.com", "secret123")
    session_store.sign_out()
    recorder = SessionRecorder()

    session_store.observe(recorder)

    assert [s.state for s in recorder.wait_for(1)] == [ANONYMOUS]


def test_sign_out_provider_failure_propagates(session_store, identity):
    session_store.sign_in("cook@example.com", "secret123")
    identity.fail_with = AuthError("NETWORK_REQUEST_FAILED", "NETWORK_REQUEST_FAILED")

    with pytest.raises(AuthError):
        session_store.sign_out()

    assert session_store.current.authenticated


def test_sign_up_creates_the_profile_record(session_store, document_store):
    identity = session_store.sign_up("new@example.com", "hunter22")

    profile = document_store.collections["users"][identity.uid]
    assert profile["email"] == "new@example.com"
    assert isinstance(profile["createdAt"], datetime)
    assert session_store.current.identity.uid == identity.uid


def test_sign_up_rejection_surfaces_provider_message(session_store, document_store):
    with pytest.raises(AuthError) as excinfo:
        session_store.sign_up("cook@example.com", "whatever")

    assert str(excinfo.value) == "EMAIL_EXISTS"
    assert "set" not in document_store.calls


def test_profile_write_failure_keeps_the_new_session(session_store, identity, document_store):
    document_store.fail("set", "network down")

    with pytest.raises(RepositoryError):
        session_store.sign_up("a@b.com", "pw")

    assert identity.current_user is not None
    assert identity.current_user.email == "a@b.com"
    assert session_store.current.authenticated


def test_unsubscribe_stops_notifications(session_store):
    recorder = SessionRecorder()
    unsubscribe = session_store.observe(recorder)
    recorder.wait_for(1)

    unsubscribe()
    session_store.sign_in("cook@example.com", "secret123")
    drain(session_store)

    assert recorder.states == [ANONYMOUS]


def test_provider_revocation_signs_the_user_out(session_store, identity):
    session_store.sign_in("cook@example.com", "secret123")
    recorder = SessionRecorder()
    session_store.observe(recorder)
    recorder.wait_for(1)

    identity.revoke()

    assert [s.state for s in recorder.wait_for(2)] == [AUTHENTICATED, ANONYMOUS]


def test_revalidate_keeps_a_live_session(session_store, identity):
    session_store.sign_in("cook@example.com", "secret123")

    session = session_store.revalidate()

    assert session.state is AUTHENTICATED
    assert identity.session_checks == 1


def test_revalidate_ends_a_revoked_session(session_store, identity):
    session_store.sign_in("cook@example.com", "secret123")
    recorder = SessionRecorder()
    session_store.observe(recorder)
    recorder.wait_for(1)
    identity.token_revoked = True

    with pytest.raises(AuthError) as excinfo:
        session_store.revalidate()

    assert excinfo.value.code == "TOKEN_EXPIRED"
    assert session_store.current.state is ANONYMOUS
    assert [s.state for s in recorder.wait_for(2)] == [AUTHENTICATED, ANONYMOUS]


def test_switching_identity_passes_through_anonymous(session_store, identity):
    session_store.sign_in("cook@example.com", "secret123")
    recorder = SessionRecorder()
    session_store.observe(recorder)
    recorder.wait_for(1)

    identity.switch_user(Identity(uid="uid-other", email="other@example.com"))

    sessions = recorder.wait_for(3)
    assert [s.state for s in sessions] == [AUTHENTICATED, ANONYMOUS, AUTHENTICATED]
    assert sessions[-1].identity.uid == "uid-other"


def test_failing_observer_does_not_block_the_others(session_store):
    def broken(_session):
        raise RuntimeError("boom")

    recorder = SessionRecorder()
    session_store.observe(broken)
    session_store.observe(recorder)

    session_store.sign_in("cook@example.com", "secret123")

    assert [s.state for s in recorder.wait_for(2)] == [ANONYMOUS, AUTHENTICATED]
