"""Session manager - working memory that survives across wakes."""

from __future__ import annotations

import logging

from chorus.models import NoActiveSessionError, Persona, Session
from chorus.store import ChorusStore

logger = logging.getLogger(__name__)


class SessionManager:
    """Keeps at most one active session per persona."""

    def __init__(self, store: ChorusStore):
        self.store = store

    def restore_or_create(
        self,
        persona: Persona,
        trigger: str,
        trigger_post_id: int | None = None,
    ) -> Session:
        """Resume the persona's active session, or open a new one.

        A resumed session keeps its working memory; only its last-activity
        timestamp moves. Opening a new session bumps the persona's
        last-active time and session count.

        Args:
            persona: Persona being woken
            trigger: Trigger type of the wake
            trigger_post_id: Post that caused the wake, if any

        Returns:
            The active session
        """
        # No await between lookup and insert, so this is atomic per event loop.
        existing = self.store.get_active_session(persona.handle)
        if existing is not None:
            self.store.touch_session(existing.id)
            logger.debug("Resumed session %s for @%s", existing.id, persona.handle)
            return self.store.get_session(existing.id)

        session = self.store.create_session(
            persona.handle,
            trigger=trigger,
            trigger_post_id=trigger_post_id,
        )
        logger.info(
            "Opened session %s for @%s (trigger=%s)", session.id, persona.handle, trigger
        )
        return session

    def get_active(self, handle: str) -> Session | None:
        return self.store.get_active_session(handle)

    def update_state(self, handle: str, context_state: dict) -> Session:
        """Replace the active session's working memory. Last writer wins.

        Raises:
            NoActiveSessionError: if the persona has no active session
        """
        session = self.store.get_active_session(handle)
        if session is None:
            raise NoActiveSessionError(handle)
        return self.store.update_session_state(session.id, context_state)

    def end(self, session_id: int) -> Session | None:
        """End a session. Safe to call on a session that has already ended."""
        session = self.store.end_session(session_id)
        if session is not None:
            logger.info("Ended session %s for @%s", session.id, session.persona_handle)
        return session
