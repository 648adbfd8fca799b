"""Chorus data store - SQLite persistence for personas, posts and memory."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from dataclasses import replace
from pathlib import Path
from typing import Any

from chorus.embedding import (
    EmbeddingBackend,
    create_embedding_backend,
    serialize_vector,
)
from chorus.mentions import extract_mentions
from chorus.models import (
    ACTIVITY_TYPES,
    FRAGMENT_TYPES,
    ActivityEntry,
    ChorusConfig,
    MemoryFragment,
    Message,
    Persona,
    PersonaNotFoundError,
    Post,
    PostNotFoundError,
    PreconditionError,
    Session,
    ThreadCycleError,
    User,
    now_ms,
)
from chorus.paths import PostFilters
from chorus.queries import (
    build_conversations_query,
    build_post_similarity_query,
    build_posts_query,
    build_thread_query,
    build_vec_table_ddl,
)

logger = logging.getLogger(__name__)

UNCERTAINTY_MARKERS = re.compile(r"\b(uncertain|not sure|don't know|can't tell|unclear)\b")
DISAGREEMENT_MARKERS = re.compile(r"\b(disagree|but|however|actually|wrong)\b")


def _loads(value: str | None, default: Any) -> Any:
    return json.loads(value) if value else default


def detect_sentiment(content: str) -> str:
    """Classify message content into a coarse sentiment label."""
    lowered = content.lower()
    if DISAGREEMENT_MARKERS.search(lowered):
        return "disagreement"
    if UNCERTAINTY_MARKERS.search(lowered):
        return "uncertainty"
    if "?" in content:
        return "question"
    if "!" in content:
        return "excited"
    return "statement"


class ChorusStore:
    """Data store backing the Chorus runtime."""

    def __init__(self, config: ChorusConfig):
        self.config = config
        self.db = sqlite3.connect(config.db_path)
        self.db.row_factory = sqlite3.Row
        self.db.execute("PRAGMA foreign_keys = ON")
        self._load_sqlite_vec()
        self._init_embedding_backend()
        self._init_schema()

    def _load_sqlite_vec(self) -> None:
        """Load the sqlite-vec extension."""
        import sqlite_vec

        # Enable extension loading (disabled by default for security)
        self.db.enable_load_extension(True)
        sqlite_vec.load(self.db)
        self.db.enable_load_extension(False)

    def _init_embedding_backend(self) -> None:
        self._embedding: EmbeddingBackend = create_embedding_backend(
            self.config.embedding_backend,
            local_model=self.config.embedding_model,
            openai_model=self.config.openai_embedding_model,
        )

    def _init_schema(self) -> None:
        """Initialize database schema."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()
        self.db.executescript(schema)
        self.db.execute(build_vec_table_ddl("posts", self._embedding.dimensions))
        self.db.commit()

    def close(self) -> None:
        """Close database connection."""
        self.db.close()

    def __enter__(self) -> ChorusStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # User Operations
    # -------------------------------------------------------------------------

    def create_user(self, name: str, handle: str, bio: str | None = None) -> User:
        """Register a human author."""
        try:
            cursor = self.db.execute(
                "INSERT INTO users (name, handle, bio, created_at) VALUES (?, ?, ?, ?)",
                (name, handle.lower(), bio, now_ms()),
            )
        except sqlite3.IntegrityError as e:
            raise ValueError("Handle already taken") from e
        self.db.commit()
        return self.get_user(cursor.lastrowid)

    def get_user(self, user_id: int) -> User | None:
        row = self.db.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_handle(self, handle: str) -> User | None:
        row = self.db.execute(
            "SELECT * FROM users WHERE handle = ?", (handle.lower(),)
        ).fetchone()
        return self._row_to_user(row) if row else None

    def list_users(self) -> list[User]:
        rows = self.db.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(row) for row in rows]

    # -------------------------------------------------------------------------
    # Persona Operations
    # -------------------------------------------------------------------------

    def create_persona(
        self,
        name: str,
        handle: str,
        bio: str = "",
        personality: str = "",
        interests: list[str] | None = None,
        feed_filters: dict | None = None,
        model: str | None = None,
        is_reviewer: bool = False,
        spawned_from: int | None = None,
    ) -> Persona:
        """Create a persona and log its arrival.

        Raises:
            ValueError: if the handle is taken or a second reviewer is requested
        """
        handle = handle.lower()
        if self.get_persona(handle) is not None:
            raise ValueError("Handle already taken")
        if is_reviewer and self.get_reviewer() is not None:
            raise ValueError("A reviewer persona already exists")

        cursor = self.db.execute(
            """
            INSERT INTO personas (name, handle, bio, model, personality, interests,
                                  feed_filters, is_reviewer, spawned_from, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                name,
                handle,
                bio,
                model or self.config.agent_model,
                personality,
                json.dumps(interests or []),
                json.dumps(feed_filters or {}),
                int(is_reviewer),
                spawned_from,
                now_ms(),
            ),
        )
        persona_id = cursor.lastrowid
        self._insert_activity(
            "persona_spawned", persona_id, spawned_from, f"{name} (@{handle}) spawned"
        )
        self.db.commit()
        return self.get_persona_by_id(persona_id)

    def get_persona(self, handle: str) -> Persona | None:
        """Get a persona by handle (case-insensitive)."""
        row = self.db.execute(
            "SELECT * FROM personas WHERE handle = ?", (handle.lower(),)
        ).fetchone()
        return self._row_to_persona(row) if row else None

    def require_persona(self, handle: str) -> Persona:
        persona = self.get_persona(handle)
        if persona is None:
            raise PersonaNotFoundError(handle)
        return persona

    def get_persona_by_id(self, persona_id: int) -> Persona | None:
        row = self.db.execute(
            "SELECT * FROM personas WHERE id = ?", (persona_id,)
        ).fetchone()
        return self._row_to_persona(row) if row else None

    def list_personas(self) -> list[Persona]:
        rows = self.db.execute("SELECT * FROM personas ORDER BY id").fetchall()
        return [self._row_to_persona(row) for row in rows]

    def get_reviewer(self) -> Persona | None:
        row = self.db.execute(
            "SELECT * FROM personas WHERE is_reviewer = 1 LIMIT 1"
        ).fetchone()
        return self._row_to_persona(row) if row else None

    def update_persona_profile(
        self,
        persona_id: int,
        bio: str | None = None,
        interests: list[str] | None = None,
        feed_filters: dict | None = None,
    ) -> Persona:
        """Update the mutable parts of a persona's profile."""
        updates: dict[str, Any] = {}
        if bio is not None:
            updates["bio"] = bio
        if interests is not None:
            updates["interests"] = json.dumps(list(interests))
        if feed_filters is not None:
            updates["feed_filters"] = json.dumps(feed_filters)

        if updates:
            assignments = ", ".join(f"{column} = :{column}" for column in updates)
            self.db.execute(
                f"UPDATE personas SET {assignments} WHERE id = :id",
                {**updates, "id": persona_id},
            )
            self._insert_activity(
                "persona_updated",
                persona_id,
                None,
                f"Updated {', '.join(sorted(updates))}",
            )
            self.db.commit()

        persona = self.get_persona_by_id(persona_id)
        if persona is None:
            raise ValueError(f"Persona not found: {persona_id}")
        return persona

    def personal_feed(self, handle: str, limit: int = 50) -> list[Post]:
        """Recent posts filtered through the persona's own feed filters."""
        persona = self.require_persona(handle)
        sql, params = build_posts_query(default_limit=100)
        posts = [self._row_to_post(row) for row in self.db.execute(sql, params)]

        filters = persona.feed_filters
        min_score = filters.get("minScore")
        categories = filters.get("categories") or []
        excluded = filters.get("excludeCategories") or []

        if min_score is not None:
            posts = [p for p in posts if (p.score or 0) >= min_score]
        if categories:
            posts = [p for p in posts if set(p.categories or []) & set(categories)]
        if excluded:
            posts = [p for p in posts if not set(p.categories or []) & set(excluded)]
        return posts[:limit]

    # -------------------------------------------------------------------------
    # Post Operations
    # -------------------------------------------------------------------------

    def create_post(
        self,
        content: str,
        author_kind: str,
        author_id: int,
        parent_post_id: int | None = None,
        created_at: int | None = None,
    ) -> Post:
        """Create a root post or a reply.

        The post insert, the parent's reply counter and the post embedding are
        written in one transaction.

        Raises:
            PostNotFoundError: if the parent does not exist
            ThreadCycleError: if the parent's ancestry loops
        """
        if author_kind not in ("user", "persona"):
            raise ValueError(f"Invalid author kind: {author_kind}")
        if not content or not content.strip():
            raise ValueError("Post content is required")

        root_post_id = None
        depth = 0
        if parent_post_id is not None:
            parent = self.get_post(parent_post_id)
            if parent is None:
                raise PostNotFoundError(parent_post_id)
            self._check_ancestry(parent)
            root_post_id = parent.root_post_id or parent.id
            depth = parent.depth + 1

        embedding = serialize_vector(self._embedding.embed(content))
        timestamp = created_at if created_at is not None else now_ms()

        try:
            cursor = self.db.execute(
                """
                INSERT INTO posts (content, author_kind, author_id, parent_post_id,
                                   root_post_id, depth, reply_count, created_at)
                VALUES (?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (content, author_kind, author_id, parent_post_id, root_post_id, depth, timestamp),
            )
            post_id = cursor.lastrowid
            if parent_post_id is not None:
                self.db.execute(
                    "UPDATE posts SET reply_count = reply_count + 1 WHERE id = ?",
                    (parent_post_id,),
                )
            self.db.execute(
                "INSERT INTO posts_vec (rowid, embedding) VALUES (?, ?)",
                (post_id, embedding),
            )
            self._insert_activity(
                "post_created",
                author_id if author_kind == "persona" else None,
                post_id,
                f"{author_kind} created post",
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return self.get_post(post_id)

    def _check_ancestry(self, parent: Post) -> None:
        """Walk from parent to its root, refusing loops."""
        seen = {parent.id}
        current = parent
        while current.parent_post_id is not None:
            if current.parent_post_id in seen:
                raise ThreadCycleError(
                    f"Post {parent.id} is its own ancestor via {current.parent_post_id}"
                )
            seen.add(current.parent_post_id)
            ancestor = self.get_post(current.parent_post_id)
            if ancestor is None:
                break
            current = ancestor

    def get_post(self, post_id: int) -> Post | None:
        row = self.db.execute("SELECT * FROM posts WHERE id = ?", (post_id,)).fetchone()
        return self._row_to_post(row) if row else None

    def require_post(self, post_id: int) -> Post:
        post = self.get_post(post_id)
        if post is None:
            raise PostNotFoundError(post_id)
        return post

    def get_author(self, post: Post) -> dict | None:
        """Resolve a post's author record."""
        if post.author_kind == "user":
            user = self.get_user(post.author_id)
            if user is None:
                return None
            return {"kind": "user", "id": user.id, "name": user.name,
                    "handle": user.handle, "bio": user.bio}
        persona = self.get_persona_by_id(post.author_id)
        if persona is None:
            return None
        return {"kind": "persona", "id": persona.id, "name": persona.name,
                "handle": persona.handle, "bio": persona.bio,
                "is_reviewer": persona.is_reviewer}

    def author_name(self, post: Post) -> str:
        author = self.get_author(post)
        return author["name"] if author else "Unknown"

    def list_posts(
        self,
        filters: PostFilters | None = None,
        root_only: bool = False,
        author_kind: str | None = None,
        author_id: int | None = None,
        default_limit: int = 50,
    ) -> list[Post]:
        sql, params = build_posts_query(
            filters,
            root_only=root_only,
            author_kind=author_kind,
            author_id=author_id,
            default_limit=default_limit,
        )
        return [self._row_to_post(row) for row in self.db.execute(sql, params)]

    def get_replies(self, post_id: int) -> list[Post]:
        """Direct replies, oldest first."""
        rows = self.db.execute(
            "SELECT * FROM posts WHERE parent_post_id = ? ORDER BY created_at, id",
            (post_id,),
        ).fetchall()
        return [self._row_to_post(row) for row in rows]

    def get_thread_posts(self, post_id: int) -> list[Post]:
        """Every post in the thread containing post_id, oldest first."""
        post = self.require_post(post_id)
        root_id = post.root_post_id or post.id
        rows = self.db.execute(build_thread_query(), {"root_id": root_id}).fetchall()
        return [self._row_to_post(row) for row in rows]

    def get_ancestors(self, post_id: int) -> list[Post]:
        """Ancestors of a post, root first, excluding the post itself."""
        post = self.require_post(post_id)
        chain: list[Post] = []
        seen = {post.id}
        parent_id = post.parent_post_id
        while parent_id is not None:
            if parent_id in seen:
                raise ThreadCycleError(f"Post {post_id} is its own ancestor")
            seen.add(parent_id)
            parent = self.get_post(parent_id)
            if parent is None:
                break
            chain.append(parent)
            parent_id = parent.parent_post_id
        chain.reverse()
        return chain

    def score_post(
        self,
        post_id: int,
        score: int,
        categories: list[str],
        reasoning: str,
        scored_by: int | None,
    ) -> Post:
        """Persist a judge's scoring result."""
        self.require_post(post_id)
        self.db.execute(
            """
            UPDATE posts
            SET score = ?, categories = ?, score_reasoning = ?, scored_at = ?, scored_by = ?
            WHERE id = ?
            """,
            (score, json.dumps(categories), reasoning, now_ms(), scored_by, post_id),
        )
        self._insert_activity(
            "post_scored",
            scored_by,
            post_id,
            f"Score: {score}, Categories: {', '.join(categories)}",
        )
        self.db.commit()
        return self.get_post(post_id)

    def search_posts(
        self,
        query: str,
        filters: PostFilters | None = None,
        limit: int = 20,
    ) -> list[Post]:
        """Keyword search: posts containing any whitespace-separated term."""
        terms = [t for t in query.lower().split() if t]
        if not terms:
            return []
        if filters is not None and filters.limit is not None:
            # the filter limit caps results, not the candidate pool
            limit = min(limit, filters.limit)
            filters = replace(filters, limit=None)
        candidates = self.list_posts(filters, default_limit=500)
        matches = [
            post for post in candidates
            if any(term in post.content.lower() for term in terms)
        ]
        return matches[:limit]

    def semantic_search_posts(
        self,
        query: str,
        min_score: int | None = None,
        limit: int = 20,
    ) -> list[tuple[Post, float]]:
        """Posts ranked by embedding distance to the query."""
        query_vector = serialize_vector(self._embedding.embed(query))
        rows = self.db.execute(
            build_post_similarity_query(),
            {"query_vector": query_vector, "k": max(limit * 4, 1)},
        ).fetchall()
        results = []
        for row in rows:
            post = self._row_to_post(row)
            if min_score is not None and (post.score or 0) < min_score:
                continue
            results.append((post, row["distance"]))
        return results[:limit]

    # -------------------------------------------------------------------------
    # Session Operations
    # -------------------------------------------------------------------------

    def get_active_session(self, handle: str) -> Session | None:
        row = self.db.execute(
            """
            SELECT * FROM sessions
            WHERE persona_handle = ? AND active = 1
            ORDER BY started_at DESC, id DESC
            LIMIT 1
            """,
            (handle.lower(),),
        ).fetchone()
        return self._row_to_session(row) if row else None

    def get_session(self, session_id: int) -> Session | None:
        row = self.db.execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return self._row_to_session(row) if row else None

    def create_session(
        self,
        handle: str,
        trigger: str,
        trigger_post_id: int | None = None,
        context_state: dict | None = None,
    ) -> Session:
        """Insert an active session and bump the persona's activity counters."""
        handle = handle.lower()
        timestamp = now_ms()
        cursor = self.db.execute(
            """
            INSERT INTO sessions (persona_handle, context_state, trigger_type, trigger_post_id,
                                  active, started_at, last_response_at)
            VALUES (?, ?, ?, ?, 1, ?, ?)
            """,
            (handle, json.dumps(context_state or {}), trigger, trigger_post_id,
             timestamp, timestamp),
        )
        self.db.execute(
            """
            UPDATE personas
            SET last_active = ?, session_count = session_count + 1
            WHERE handle = ?
            """,
            (timestamp, handle),
        )
        self.db.commit()
        return self.get_session(cursor.lastrowid)

    def touch_session(self, session_id: int) -> None:
        self.db.execute(
            "UPDATE sessions SET last_response_at = ? WHERE id = ?",
            (now_ms(), session_id),
        )
        self.db.commit()

    def update_session_state(self, session_id: int, context_state: dict) -> Session:
        """Replace a session's working memory verbatim."""
        self.db.execute(
            "UPDATE sessions SET context_state = ?, last_response_at = ? WHERE id = ?",
            (json.dumps(context_state), now_ms(), session_id),
        )
        self.db.commit()
        return self.get_session(session_id)

    def end_session(self, session_id: int) -> Session | None:
        """Mark a session inactive. Ending twice keeps the first end time."""
        self.db.execute(
            """
            UPDATE sessions
            SET active = 0, ended_at = COALESCE(ended_at, ?)
            WHERE id = ?
            """,
            (now_ms(), session_id),
        )
        self.db.commit()
        return self.get_session(session_id)

    def session_history(self, handle: str, limit: int = 10) -> list[Session]:
        rows = self.db.execute(
            """
            SELECT * FROM sessions WHERE persona_handle = ?
            ORDER BY started_at DESC, id DESC LIMIT ?
            """,
            (handle.lower(), limit),
        ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def list_active_sessions(self) -> list[Session]:
        rows = self.db.execute(
            "SELECT * FROM sessions WHERE active = 1 ORDER BY id"
        ).fetchall()
        return [self._row_to_session(row) for row in rows]

    # -------------------------------------------------------------------------
    # Message Operations
    # -------------------------------------------------------------------------

    def send_message(
        self,
        from_handle: str,
        to_handle: str,
        content: str,
        conversation_id: str | None = None,
        in_reply_to: int | None = None,
        metadata: dict | None = None,
    ) -> dict:
        """Send a direct message between two personas.

        Returns:
            Dict with message_id, conversation_id and detected mentions
        """
        sender = self.require_persona(from_handle)
        recipient = self.require_persona(to_handle)
        if not content or not content.strip():
            raise ValueError("Message content is required")

        timestamp = now_ms()
        conversation_id = (
            conversation_id.lower()
            if conversation_id
            else f"{sender.handle}-{recipient.handle}-{timestamp}"
        )
        metadata = dict(metadata or {})
        metadata.setdefault("sentiment", detect_sentiment(content))

        cursor = self.db.execute(
            """
            INSERT INTO messages (from_handle, to_handle, content, conversation_id,
                                  in_reply_to, metadata, read, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 0, ?)
            """,
            (sender.handle, recipient.handle, content, conversation_id,
             in_reply_to, json.dumps(metadata), timestamp),
        )
        message_id = cursor.lastrowid
        preview = content[:50] + ("..." if len(content) > 50 else "")
        self._insert_activity(
            "message_sent", sender.id, None,
            f'Sent message to @{recipient.handle}: "{preview}"',
        )
        self.db.commit()

        mentions = extract_mentions(content)
        if mentions:
            try:
                self.log_activity(
                    "persona_responded", sender.id, None,
                    f"Mentioned: {', '.join('@' + h for h in mentions)}",
                )
            except sqlite3.Error:
                logger.warning("Could not log mentions for message %s", message_id)

        return {
            "message_id": message_id,
            "conversation_id": conversation_id,
            "mentions": mentions,
        }

    def get_message(self, message_id: int) -> Message | None:
        row = self.db.execute(
            "SELECT * FROM messages WHERE id = ?", (message_id,)
        ).fetchone()
        return self._row_to_message(row) if row else None

    def messages_for(self, handle: str, limit: int = 50) -> list[Message]:
        """Sent and received messages, newest first."""
        rows = self.db.execute(
            """
            SELECT * FROM messages WHERE to_handle = :h OR from_handle = :h
            ORDER BY created_at DESC, id DESC LIMIT :limit
            """,
            {"h": handle.lower(), "limit": limit},
        ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def unread_messages(self, handle: str, limit: int = 50) -> list[Message]:
        """Unread messages addressed to handle, oldest first."""
        rows = self.db.execute(
            """
            SELECT * FROM messages WHERE to_handle = ? AND read = 0
            ORDER BY created_at, id LIMIT ?
            """,
            (handle.lower(), limit),
        ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def mark_read(self, message_id: int, handle: str) -> Message:
        """Mark a message read. Only its recipient may do so."""
        message = self.get_message(message_id)
        if message is None:
            raise ValueError(f"Message not found: {message_id}")
        if message.to_handle != handle.lower():
            raise PreconditionError(
                f"Only recipient @{message.to_handle} can mark this message as read"
            )
        if not message.read:
            self.db.execute(
                "UPDATE messages SET read = 1, read_at = ? WHERE id = ?",
                (now_ms(), message_id),
            )
            self.db.commit()
        return self.get_message(message_id)

    def mark_many_read(self, message_ids: list[int], handle: str) -> list[dict]:
        results = []
        for message_id in message_ids:
            message = self.get_message(message_id)
            if message is None:
                status = "not_found"
            elif message.to_handle != handle.lower():
                status = "not_recipient"
            else:
                self.mark_read(message_id, handle)
                status = "marked_read"
            results.append({"message_id": message_id, "status": status})
        return results

    def conversations(self, handle: str) -> list[dict]:
        rows = self.db.execute(
            build_conversations_query(), {"handle": handle.lower()}
        ).fetchall()
        return [dict(row) for row in rows]

    def conversation(self, conversation_id: str, limit: int = 100) -> list[Message]:
        rows = self.db.execute(
            """
            SELECT * FROM messages WHERE conversation_id = ?
            ORDER BY created_at, id LIMIT ?
            """,
            (conversation_id.lower(), limit),
        ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def message_stats(self, handle: str) -> dict:
        handle = handle.lower()
        sent = self.db.execute(
            "SELECT * FROM messages WHERE from_handle = ?", (handle,)
        ).fetchall()
        received = self.db.execute(
            "SELECT * FROM messages WHERE to_handle = ?", (handle,)
        ).fetchall()
        unread = [row for row in received if not row["read"]]
        partners = {row["to_handle"] for row in sent} | {
            row["from_handle"] for row in received
        }
        return {
            "total_sent": len(sent),
            "total_received": len(received),
            "unread_count": len(unread),
            "unique_personas_interacted": len(partners),
            "oldest_unread_at": min((row["created_at"] for row in unread), default=None),
        }

    def search_messages(self, handle: str, query: str, limit: int = 20) -> list[Message]:
        terms = [t for t in query.lower().split() if t]
        return [
            message for message in self.messages_for(handle, limit=500)
            if any(term in message.content.lower() for term in terms)
        ][:limit]

    # -------------------------------------------------------------------------
    # Memory Fragment Operations
    # -------------------------------------------------------------------------

    def create_fragment(
        self,
        handle: str,
        content: str,
        fragment_type: str,
        importance: float,
        related_post_ids: list[int] | None = None,
        related_persona_handles: list[str] | None = None,
    ) -> MemoryFragment:
        """Store a memory fragment for a persona.

        Raises:
            ValueError: on an unknown fragment type or importance outside [0, 1]
        """
        if fragment_type not in FRAGMENT_TYPES:
            raise ValueError(f"Invalid fragment type: {fragment_type}")
        if not isinstance(importance, (int, float)) or not 0 <= importance <= 1:
            raise ValueError(f"Importance must be between 0 and 1, got {importance!r}")
        if not content or not content.strip():
            raise ValueError("Fragment content is required")

        timestamp = now_ms()
        cursor = self.db.execute(
            """
            INSERT INTO memory_fragments (persona_handle, content, fragment_type, importance,
                                          related_post_ids, related_persona_handles,
                                          access_count, last_accessed_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)
            """,
            (
                handle.lower(),
                content,
                fragment_type,
                float(importance),
                json.dumps(list(related_post_ids or [])),
                json.dumps([h.lower() for h in related_persona_handles or []]),
                timestamp,
                timestamp,
            ),
        )
        self.db.commit()
        return self.get_fragment(cursor.lastrowid)

    def get_fragment(self, fragment_id: int) -> MemoryFragment | None:
        row = self.db.execute(
            "SELECT * FROM memory_fragments WHERE id = ?", (fragment_id,)
        ).fetchone()
        return self._row_to_fragment(row) if row else None

    def get_fragments(
        self,
        handle: str,
        fragment_type: str | None = None,
        min_importance: float | None = None,
        limit: int = 50,
    ) -> list[MemoryFragment]:
        """Fragments for a persona, most important (then newest) first."""
        query = "SELECT * FROM memory_fragments WHERE persona_handle = ?"
        params: list[Any] = [handle.lower()]
        if fragment_type is not None:
            query += " AND fragment_type = ?"
            params.append(fragment_type)
        if min_importance is not None:
            query += " AND importance >= ?"
            params.append(min_importance)
        query += " ORDER BY importance DESC, created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        rows = self.db.execute(query, params).fetchall()
        return [self._row_to_fragment(row) for row in rows]

    def record_fragment_access(self, fragment_ids: list[int]) -> None:
        if not fragment_ids:
            return
        timestamp = now_ms()
        self.db.executemany(
            """
            UPDATE memory_fragments
            SET access_count = access_count + 1, last_accessed_at = ?
            WHERE id = ?
            """,
            [(timestamp, fragment_id) for fragment_id in fragment_ids],
        )
        self.db.commit()

    def decay_fragments(self, handle: str, decay_factor: float, min_importance: float) -> int:
        """Multiply importance by decay_factor, never going below min_importance.

        Returns:
            Number of fragments decayed
        """
        cursor = self.db.execute(
            """
            UPDATE memory_fragments
            SET importance = MAX(importance * :factor, :floor)
            WHERE persona_handle = :handle AND importance > :floor
            """,
            {"factor": decay_factor, "floor": min_importance, "handle": handle.lower()},
        )
        self.db.commit()
        return cursor.rowcount

    def cleanup_fragments(self, handle: str, max_fragments: int, min_importance: float) -> int:
        """Delete fragments below min_importance, then the least important
        until at most max_fragments remain.

        Returns:
            Number of fragments deleted
        """
        rows = self.db.execute(
            """
            SELECT id, importance FROM memory_fragments
            WHERE persona_handle = ?
            ORDER BY importance ASC, created_at ASC, id ASC
            """,
            (handle.lower(),),
        ).fetchall()

        doomed = []
        remaining = len(rows)
        for row in rows:
            if row["importance"] < min_importance or remaining > max_fragments:
                doomed.append(row["id"])
                remaining -= 1

        self.db.executemany(
            "DELETE FROM memory_fragments WHERE id = ?", [(i,) for i in doomed]
        )
        self.db.commit()
        return len(doomed)

    def fragment_stats(self, handle: str) -> dict:
        fragments = self.get_fragments(handle, limit=-1)
        by_type = {kind: 0 for kind in FRAGMENT_TYPES}
        for fragment in fragments:
            by_type[fragment.fragment_type] += 1
        most_accessed = max(
            (f for f in fragments if f.access_count > 0),
            key=lambda f: f.access_count,
            default=None,
        )
        return {
            "total": len(fragments),
            "by_type": by_type,
            "average_importance": (
                sum(f.importance for f in fragments) / len(fragments) if fragments else 0
            ),
            "total_accesses": sum(f.access_count for f in fragments),
            "most_accessed": most_accessed,
        }

    def search_fragments(self, handle: str, query: str, limit: int = 20) -> list[MemoryFragment]:
        terms = [t for t in query.lower().split() if t]
        return [
            fragment for fragment in self.get_fragments(handle, limit=-1)
            if any(term in fragment.content.lower() for term in terms)
        ][:limit]

    # -------------------------------------------------------------------------
    # Activity Log
    # -------------------------------------------------------------------------

    def log_activity(
        self,
        type: str,
        persona_id: int | None = None,
        post_id: int | None = None,
        details: str | None = None,
    ) -> int:
        """Append an activity log entry."""
        activity_id = self._insert_activity(type, persona_id, post_id, details)
        self.db.commit()
        return activity_id

    def _insert_activity(
        self,
        type: str,
        persona_id: int | None,
        post_id: int | None,
        details: str | None,
    ) -> int:
        if type not in ACTIVITY_TYPES:
            raise ValueError(f"Invalid activity type: {type}")
        cursor = self.db.execute(
            """
            INSERT INTO activity_log (type, persona_id, post_id, details, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (type, persona_id, post_id, details, now_ms()),
        )
        return cursor.lastrowid

    def list_activity(self, limit: int = 20) -> list[ActivityEntry]:
        rows = self.db.execute(
            "SELECT * FROM activity_log ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [
            ActivityEntry(
                id=row["id"],
                type=row["type"],
                persona_id=row["persona_id"],
                post_id=row["post_id"],
                details=row["details"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Row Conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            handle=row["handle"],
            bio=row["bio"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_persona(row: sqlite3.Row) -> Persona:
        return Persona(
            id=row["id"],
            name=row["name"],
            handle=row["handle"],
            bio=row["bio"],
            model=row["model"],
            personality=row["personality"],
            interests=_loads(row["interests"], []),
            feed_filters=_loads(row["feed_filters"], {}),
            is_reviewer=bool(row["is_reviewer"]),
            spawned_from=row["spawned_from"],
            created_at=row["created_at"],
            last_active=row["last_active"],
            session_count=row["session_count"],
        )

    @staticmethod
    def _row_to_post(row: sqlite3.Row) -> Post:
        return Post(
            id=row["id"],
            content=row["content"],
            author_kind=row["author_kind"],
            author_id=row["author_id"],
            parent_post_id=row["parent_post_id"],
            root_post_id=row["root_post_id"],
            depth=row["depth"],
            reply_count=row["reply_count"],
            created_at=row["created_at"],
            score=row["score"],
            categories=_loads(row["categories"], None),
            score_reasoning=row["score_reasoning"],
            scored_at=row["scored_at"],
            scored_by=row["scored_by"],
        )

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            persona_handle=row["persona_handle"],
            context_state=_loads(row["context_state"], {}),
            trigger=row["trigger_type"],
            trigger_post_id=row["trigger_post_id"],
            active=bool(row["active"]),
            started_at=row["started_at"],
            last_response_at=row["last_response_at"],
            ended_at=row["ended_at"],
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            from_handle=row["from_handle"],
            to_handle=row["to_handle"],
            content=row["content"],
            conversation_id=row["conversation_id"],
            in_reply_to=row["in_reply_to"],
            metadata=_loads(row["metadata"], {}),
            read=bool(row["read"]),
            read_at=row["read_at"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_fragment(row: sqlite3.Row) -> MemoryFragment:
        return MemoryFragment(
            id=row["id"],
            persona_handle=row["persona_handle"],
            content=row["content"],
            fragment_type=row["fragment_type"],
            importance=row["importance"],
            related_post_ids=_loads(row["related_post_ids"], []),
            related_persona_handles=_loads(row["related_persona_handles"], []),
            access_count=row["access_count"],
            last_accessed_at=row["last_accessed_at"],
            created_at=row["created_at"],
        )
