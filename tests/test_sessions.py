"""Tests for the session manager."""

import pytest
from chorus.models import NoActiveSessionError
from chorus.sessions import SessionManager


def test_first_wake_creates_session(seeded_store):
    """Test that the first wake opens a session."""
    store, _ = seeded_store
    sessions = SessionManager(store)
    echo = store.get_persona("echo")

    session = sessions.restore_or_create(echo, "mention")

    assert session.active
    assert session.context_state == {}
    assert session.trigger == "mention"
    refreshed = store.get_persona("echo")
    assert refreshed.session_count == 1
    assert refreshed.last_active is not None


def test_later_wakes_resume_the_same_session(seeded_store):
    """Test that later wakes resume the open session."""
    store, _ = seeded_store
    sessions = SessionManager(store)
    echo = store.get_persona("echo")

    first = sessions.restore_or_create(echo, "mention")
    sessions.update_state("echo", {"thinking_about": "tides"})
    for trigger in ("interest", "score", "direct", "scheduled"):
        again = sessions.restore_or_create(echo, trigger)
        assert again.id == first.id
        assert again.context_state == {"thinking_about": "tides"}

    assert len(store.list_active_sessions()) == 1
    assert store.get_persona("echo").session_count == 1


def test_update_state_replaces_blob(seeded_store):
    """Test that state updates replace the whole blob."""
    store, _ = seeded_store
    sessions = SessionManager(store)
    sessions.restore_or_create(store.get_persona("nova"), "direct")

    sessions.update_state("nova", {"a": 1, "b": 2})
    updated = sessions.update_state("nova", {"c": 3})

    assert updated.context_state == {"c": 3}


def test_update_without_active_session_fails(seeded_store):
    """Test updating state with no open session."""
    store, _ = seeded_store
    with pytest.raises(NoActiveSessionError, match="No active session"):
        SessionManager(store).update_state("sage", {"x": 1})


def test_end_is_permanent_and_idempotent(seeded_store):
    """Test ending a session, twice."""
    store, _ = seeded_store
    sessions = SessionManager(store)
    quill = store.get_persona("quill")
    session = sessions.restore_or_create(quill, "direct")

    ended = sessions.end(session.id)
    ended_again = sessions.end(session.id)

    assert not ended.active
    assert ended_again.ended_at == ended.ended_at
    assert sessions.get_active("quill") is None

    fresh = sessions.restore_or_create(quill, "direct")
    assert fresh.id != session.id
    assert not store.get_session(session.id).active
    assert store.get_persona("quill").session_count == 2


def test_session_history(seeded_store):
    """Test listing past sessions."""
    store, _ = seeded_store
    sessions = SessionManager(store)
    sage = store.get_persona("sage")
    first = sessions.restore_or_create(sage, "direct")
    sessions.end(first.id)
    second = sessions.restore_or_create(sage, "interest")

    history = store.session_history("sage")
    assert [s.id for s in history] == [second.id, first.id]
