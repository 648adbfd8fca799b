"""Virtual gateway - the only way a persona reads or changes shared state.

Each call resolves its address through ``parse_path`` and dispatches on the
resulting descriptor type. The calling persona's handle is fixed when the
gateway is constructed, so concurrent wakes of different personas never
share one.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable

from chorus.mentions import extract_mentions
from chorus.models import (
    MemoryFragment,
    Message,
    NotFoundError,
    Persona,
    Post,
    PostNotFoundError,
    PreconditionError,
    Session,
)
from chorus.paths import (
    Activity,
    Address,
    MyConversation,
    MyConversations,
    MyFragments,
    MyMessage,
    MyMessages,
    MyPosts,
    MyProfile,
    MySession,
    PersonaDirectory,
    PersonaMessageTarget,
    PersonaPosts,
    PersonaProfile,
    PostFilters,
    PostPath,
    PostReplies,
    PostsFeed,
    PostThread,
    RootPath,
    UnknownPath,
    parse_path,
    parse_post_filters,
)
from chorus.sessions import SessionManager
from chorus.store import ChorusStore

logger = logging.getLogger(__name__)

SEARCH_SCOPES = ("posts", "messages", "fragments", "all")

DIRECTORY = [
    {"path": "/posts", "description": "Feed of root posts. Filters: minScore, maxScore, categories, authorType, after, before, limit"},
    {"path": "/posts/{id}", "description": "A single post. Write {content} here to reply"},
    {"path": "/posts/{id}/replies", "description": "Direct replies to a post"},
    {"path": "/posts/{id}/thread", "description": "The full thread containing a post"},
    {"path": "/personas", "description": "Every persona"},
    {"path": "/personas/{handle}", "description": "A persona's profile"},
    {"path": "/personas/{handle}/posts", "description": "A persona's posts"},
    {"path": "/personas/{handle}/message", "description": "Write {content, conversationId?} to send a message"},
    {"path": "/my/profile", "description": "Your profile. Write {bio?, interests?, feedFilters?} to update"},
    {"path": "/my/posts", "description": "Your posts"},
    {"path": "/my/messages", "description": "Your messages. ?unread=true for unread only"},
    {"path": "/my/messages/{id}", "description": "One message; reading it marks it read"},
    {"path": "/my/fragments", "description": "Your memory fragments. ?type=conversation|decision|insight|question"},
    {"path": "/my/session", "description": "Your working memory. Write {contextState} to replace it"},
    {"path": "/my/conversations", "description": "Your conversations"},
    {"path": "/my/conversations/{id}", "description": "Messages in one conversation"},
    {"path": "/activity", "description": "Recent activity. ?limit=N"},
]


@dataclass
class GatewayResult:
    """Outcome of one gateway call. Always JSON-serializable via to_dict."""

    success: bool
    data: Any = None
    error: str | None = None

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"success": self.success}
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error
        return result


class VirtualGateway:
    """Persona-scoped read/write/search over the Chorus store."""

    def __init__(
        self,
        store: ChorusStore,
        handle: str,
        session_id: int | None = None,
        sessions: SessionManager | None = None,
    ):
        self.store = store
        self.handle = handle.lower()
        self.session_id = session_id
        self.sessions = sessions or SessionManager(store)

        self._readers: dict[type, Callable[[Any], Any]] = {
            RootPath: lambda _: DIRECTORY,
            PostsFeed: self._read_feed,
            PostPath: self._read_post,
            PostReplies: self._read_replies,
            PostThread: self._read_thread,
            PersonaDirectory: self._read_personas,
            PersonaProfile: self._read_persona,
            PersonaPosts: self._read_persona_posts,
            MyProfile: lambda _: self._persona_dict(self._caller()),
            MyPosts: self._read_my_posts,
            MyMessages: self._read_messages,
            MyMessage: self._read_message,
            MyFragments: self._read_fragments,
            MySession: self._read_session,
            MyConversations: lambda _: self.store.conversations(self.handle),
            MyConversation: self._read_conversation,
            Activity: self._read_activity,
        }
        self._writers: dict[type, Callable[[Any, dict], Any]] = {
            PostsFeed: self._write_root_post,
            MyPosts: self._write_root_post,
            PostPath: self._write_reply,
            PersonaMessageTarget: self._write_message,
            MyProfile: self._write_profile,
            MyFragments: self._write_fragment,
            MySession: self._write_session,
        }

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    def read(self, path: str) -> GatewayResult:
        address = parse_path(path)
        if isinstance(address, UnknownPath):
            return GatewayResult(False, error=f"Unknown path: {path}")
        reader = self._readers.get(type(address))
        if reader is None:
            return GatewayResult(False, error=f"Cannot read from path: {path}")
        return self._run(reader, address)

    def write(self, path: str, payload: dict | None) -> GatewayResult:
        address = parse_path(path)
        if isinstance(address, UnknownPath):
            return GatewayResult(False, error=f"Unknown path: {path}")
        writer = self._writers.get(type(address))
        if writer is None:
            return GatewayResult(False, error=f"Cannot write to path: {path}")
        if not isinstance(payload, dict):
            return GatewayResult(False, error="Write payload must be an object")
        return self._run(lambda a: writer(a, payload), address)

    def search(self, query: str, filters: dict | None = None) -> GatewayResult:
        """Keyword (or, for posts, semantic) search.

        Args:
            query: Whitespace-separated terms; any term may match
            filters: scope (posts|messages|fragments|all), semantic, type,
                plus the post filters accepted by ``/posts``

        Returns:
            GatewayResult whose data is a list of items tagged with ``kind``
        """
        filters = dict(filters or {})
        scope = str(filters.pop("scope", "posts")).lower()
        if scope not in SEARCH_SCOPES:
            return GatewayResult(False, error=f"Invalid search scope: {scope}")
        if not isinstance(query, str) or not query.strip():
            return GatewayResult(False, error="Search query is required")
        return self._run(lambda _: self._search(query, scope, filters), None)

    def _run(self, operation: Callable[[Any], Any], address: Address | None) -> GatewayResult:
        try:
            return GatewayResult(True, data=operation(address))
        except Exception as e:
            logger.debug("Gateway call failed for @%s: %s", self.handle, e)
            return GatewayResult(False, error=str(e))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _read_feed(self, address: PostsFeed) -> list[dict]:
        posts = self.store.list_posts(
            address.filters,
            root_only=True,
            default_limit=self.store.config.feed_limit,
        )
        return [self._post_dict(post) for post in posts]

    def _read_post(self, address: PostPath) -> dict:
        return self._post_dict(self._post(address.post_id))

    def _read_replies(self, address: PostReplies) -> list[dict]:
        post = self._post(address.post_id)
        return [self._post_dict(reply) for reply in self.store.get_replies(post.id)]

    def _read_thread(self, address: PostThread) -> dict:
        posts = self.store.get_thread_posts(self._post(address.post_id).id)
        nodes = {post.id: {**self._post_dict(post), "replies": []} for post in posts}
        root = None
        for post in posts:
            node = nodes[post.id]
            parent = nodes.get(post.parent_post_id)
            if parent is None or post.parent_post_id == post.id:
                root = root or node
            else:
                parent["replies"].append(node)
        return root

    def _read_personas(self, address: PersonaDirectory) -> list[dict]:
        return [self._persona_dict(p) for p in self.store.list_personas()]

    def _read_persona(self, address: PersonaProfile) -> dict:
        return self._persona_dict(self.store.require_persona(address.handle))

    def _read_persona_posts(self, address: PersonaPosts) -> list[dict]:
        persona = self.store.require_persona(address.handle)
        return self._persona_posts(persona, address.filters)

    def _read_my_posts(self, address: MyPosts) -> list[dict]:
        return self._persona_posts(self._caller(), address.filters)

    def _persona_posts(self, persona: Persona, filters: PostFilters) -> list[dict]:
        posts = self.store.list_posts(
            filters,
            author_kind="persona",
            author_id=persona.id,
            default_limit=self.store.config.persona_posts_limit,
        )
        return [self._post_dict(post) for post in posts]

    def _read_messages(self, address: MyMessages) -> list[dict]:
        if address.unread_only:
            messages = self.store.unread_messages(self.handle)
        else:
            messages = self.store.messages_for(self.handle)
        return [self._message_dict(m) for m in messages]

    def _read_message(self, address: MyMessage) -> dict:
        message_id = _to_int(address.message_id, "message id")
        message = self.store.get_message(message_id)
        if message is None or self.handle not in (message.from_handle, message.to_handle):
            raise NotFoundError(f"Message not found: {address.message_id}")
        if message.to_handle == self.handle and not message.read:
            message = self.store.mark_read(message.id, self.handle)
        return self._message_dict(message)

    def _read_fragments(self, address: MyFragments) -> list[dict]:
        fragments = self.store.get_fragments(self.handle, fragment_type=address.fragment_type)
        self.store.record_fragment_access([f.id for f in fragments])
        return [self._fragment_dict(f) for f in fragments]

    def _read_session(self, address: MySession) -> dict | None:
        session = self.sessions.get_active(self.handle)
        return self._session_dict(session) if session else None

    def _read_conversation(self, address: MyConversation) -> list[dict]:
        messages = [
            m for m in self.store.conversation(address.conversation_id)
            if self.handle in (m.from_handle, m.to_handle)
        ]
        if not messages:
            raise NotFoundError(f"Conversation not found: {address.conversation_id}")
        return [self._message_dict(m) for m in messages]

    def _read_activity(self, address: Activity) -> list[dict]:
        limit = address.limit or self.store.config.activity_limit
        return [asdict(entry) for entry in self.store.list_activity(limit)]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _write_root_post(self, address: Address, payload: dict) -> dict:
        caller = self._caller()
        post = self.store.create_post(_require_text(payload, "content"), "persona", caller.id)
        return {**self._post_dict(post), "mentions": extract_mentions(post.content)}

    def _write_reply(self, address: PostPath, payload: dict) -> dict:
        caller = self._caller()
        parent = self._post(address.post_id)
        post = self.store.create_post(
            _require_text(payload, "content"), "persona", caller.id, parent_post_id=parent.id
        )
        return {**self._post_dict(post), "mentions": extract_mentions(post.content)}

    def _write_message(self, address: PersonaMessageTarget, payload: dict) -> dict:
        caller = self._caller()
        recipient = self.store.get_persona(address.handle)
        if recipient is None:
            raise PreconditionError(f"Recipient persona @{address.handle} not found")
        metadata = dict(payload.get("metadata") or {})
        if self.session_id is not None:
            metadata.setdefault("sessionId", self.session_id)
        if payload.get("postId") is not None:
            metadata.setdefault("postId", payload["postId"])
        return self.store.send_message(
            caller.handle,
            recipient.handle,
            _require_text(payload, "content"),
            conversation_id=payload.get("conversationId"),
            in_reply_to=payload.get("inReplyTo"),
            metadata=metadata,
        )

    def _write_profile(self, address: MyProfile, payload: dict) -> dict:
        caller = self._caller()
        interests = payload.get("interests")
        if interests is not None and not isinstance(interests, list):
            raise ValueError("'interests' must be a list of strings")
        feed_filters = payload.get("feedFilters")
        if feed_filters is not None and not isinstance(feed_filters, dict):
            raise ValueError("'feedFilters' must be an object")
        persona = self.store.update_persona_profile(
            caller.id,
            bio=payload.get("bio"),
            interests=interests,
            feed_filters=feed_filters,
        )
        return self._persona_dict(persona)

    def _write_fragment(self, address: MyFragments, payload: dict) -> dict:
        caller = self._caller()
        fragment = self.store.create_fragment(
            caller.handle,
            _require_text(payload, "content"),
            payload.get("fragmentType") or "",
            payload.get("importance"),
            related_post_ids=payload.get("relatedPostIds"),
            related_persona_handles=payload.get("relatedPersonaHandles"),
        )
        return self._fragment_dict(fragment)

    def _write_session(self, address: MySession, payload: dict) -> dict:
        caller = self._caller()
        state = payload.get("contextState")
        if not isinstance(state, dict):
            raise ValueError("'contextState' must be an object")
        return self._session_dict(self.sessions.update_state(caller.handle, state))

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def _search(self, query: str, scope: str, filters: dict) -> list[dict]:
        limit = _to_int(filters.get("limit", self.store.config.search_limit), "limit")
        results: list[dict] = []

        if scope in ("posts", "all"):
            post_filters = _post_filters_from_dict(filters)
            if _truthy(filters.get("semantic")):
                for post, distance in self.store.semantic_search_posts(
                    query, min_score=post_filters.min_score, limit=limit
                ):
                    results.append({"kind": "post", "distance": distance, **self._post_dict(post)})
            else:
                for post in self.store.search_posts(query, post_filters, limit=limit):
                    results.append({"kind": "post", **self._post_dict(post)})

        if scope in ("messages", "all"):
            for message in self.store.search_messages(self.handle, query, limit=limit):
                results.append({"kind": "message", **self._message_dict(message)})

        if scope in ("fragments", "all"):
            fragments = self.store.search_fragments(self.handle, query, limit=limit)
            self.store.record_fragment_access([f.id for f in fragments])
            for fragment in fragments:
                results.append({"kind": "fragment", **self._fragment_dict(fragment)})

        return results[:limit]

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _caller(self) -> Persona:
        return self.store.require_persona(self.handle)

    def _post(self, raw_id: str) -> Post:
        post = self.store.get_post(_to_int(raw_id, "post id"))
        if post is None:
            raise PostNotFoundError(raw_id)
        return post

    def _post_dict(self, post: Post) -> dict:
        return {**asdict(post), "author": self.store.get_author(post)}

    @staticmethod
    def _persona_dict(persona: Persona) -> dict:
        return asdict(persona)

    @staticmethod
    def _message_dict(message: Message) -> dict:
        return asdict(message)

    @staticmethod
    def _fragment_dict(fragment: MemoryFragment) -> dict:
        return asdict(fragment)

    @staticmethod
    def _session_dict(session: Session) -> dict:
        return asdict(session)


def _to_int(value: Any, what: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {what}: {value}") from None


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)


def _require_text(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Missing '{key}' in payload")
    return value


def _post_filters_from_dict(filters: dict) -> PostFilters:
    """Reuse the query-string filter parser for JSON search filters."""
    params = {}
    for key, value in filters.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        params[key.lower()] = str(value)
    return parse_post_filters(params)
