"""Data models for Chorus."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

FRAGMENT_TYPES = ("conversation", "decision", "insight", "question")
TRIGGER_TYPES = ("mention", "interest", "score", "direct", "scheduled")
ACTIVITY_TYPES = (
    "post_created",
    "post_scored",
    "persona_spawned",
    "persona_responded",
    "persona_updated",
    "message_sent",
)


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


# -------------------------------------------------------------------------
# Errors
# -------------------------------------------------------------------------


class ChorusError(Exception):
    """Base class for Chorus errors."""


class NotFoundError(ChorusError):
    """A referenced entity does not exist."""


class PersonaNotFoundError(NotFoundError):
    def __init__(self, handle: str):
        super().__init__(f"Persona @{handle} not found")
        self.handle = handle


class PostNotFoundError(NotFoundError):
    def __init__(self, post_id: Any):
        super().__init__(f"Post not found: {post_id}")
        self.post_id = post_id


class PreconditionError(ChorusError):
    """An operation was attempted in a state that does not allow it."""


class NoActiveSessionError(PreconditionError):
    def __init__(self, handle: str | None = None):
        super().__init__("No active session to update")
        self.handle = handle


class ThreadCycleError(ChorusError):
    """A reply would make a post its own ancestor."""


class JudgeError(ChorusError):
    """The judge returned something that could not be interpreted."""


# -------------------------------------------------------------------------
# Configuration
# -------------------------------------------------------------------------


@dataclass
class ChorusConfig:
    """Configuration for a Chorus runtime."""

    db_path: str
    embedding_backend: str = "local"  # "local" | "openai" | "hash"
    embedding_model: str = "all-MiniLM-L6-v2"  # for local
    openai_embedding_model: str = "text-embedding-3-small"  # if backend="openai"
    agent_model: str = "gpt-4o"
    judge_model: str = "gpt-4o-mini"
    max_iterations: int = 10
    interest_threshold: int = 50
    spawn_threshold: int = 70
    max_interest_wakes: int = 3
    feed_limit: int = 50
    persona_posts_limit: int = 20
    search_limit: int = 20
    activity_limit: int = 20
    serialize_persona_wakes: bool = True


# -------------------------------------------------------------------------
# Entities
# -------------------------------------------------------------------------


@dataclass
class User:
    """A human author."""

    id: int
    name: str
    handle: str
    bio: str | None
    created_at: int


@dataclass
class Persona:
    """An autonomous persona backed by a language model."""

    id: int
    name: str
    handle: str
    bio: str
    model: str
    personality: str
    interests: list[str] = field(default_factory=list)
    feed_filters: dict = field(default_factory=dict)
    is_reviewer: bool = False
    spawned_from: int | None = None
    created_at: int = 0
    last_active: int | None = None
    session_count: int = 0


@dataclass
class Post:
    """A post in the feed, root or reply."""

    id: int
    content: str
    author_kind: str  # 'user' | 'persona'
    author_id: int
    parent_post_id: int | None
    root_post_id: int | None
    depth: int
    reply_count: int
    created_at: int
    score: int | None = None
    categories: list[str] | None = None
    score_reasoning: str | None = None
    scored_at: int | None = None
    scored_by: int | None = None


@dataclass
class Session:
    """Working memory for one persona."""

    id: int
    persona_handle: str
    context_state: dict
    trigger: str
    trigger_post_id: int | None
    active: bool
    started_at: int
    last_response_at: int
    ended_at: int | None = None


@dataclass
class Message:
    """A direct message between two personas."""

    id: int
    from_handle: str
    to_handle: str
    content: str
    conversation_id: str
    in_reply_to: int | None
    metadata: dict
    read: bool
    read_at: int | None
    created_at: int


@dataclass
class MemoryFragment:
    """A longer-lived, importance-weighted unit of persona memory."""

    id: int
    persona_handle: str
    content: str
    fragment_type: str  # 'conversation', 'decision', 'insight', 'question'
    importance: float
    related_post_ids: list[int] = field(default_factory=list)
    related_persona_handles: list[str] = field(default_factory=list)
    access_count: int = 0
    last_accessed_at: int | None = None
    created_at: int = 0


@dataclass
class ActivityEntry:
    """Append-only record of a domain event."""

    id: int
    type: str
    persona_id: int | None
    post_id: int | None
    details: str | None
    created_at: int


# -------------------------------------------------------------------------
# Wake request / response
# -------------------------------------------------------------------------


@dataclass
class TriggerPost:
    """The post that caused a wake."""

    id: int | None
    content: str
    author_name: str
    author_kind: str
    categories: list[str] | None = None
    score: int | None = None


@dataclass
class ThreadEntry:
    author: str
    content: str
    author_kind: str


@dataclass
class ThreadContext:
    """Flattened view of the thread a triggering post lives in."""

    root_content: str
    root_author: str
    chain: list[ThreadEntry] = field(default_factory=list)

    def render(self) -> str:
        lines = "\n\n".join(
            f"{entry.author} ({entry.author_kind}): {entry.content}"
            for entry in self.chain
        )
        return (
            f"Original post by {self.root_author}:\n{self.root_content}"
            f"\n\nThread:\n{lines}"
        )


@dataclass
class WakeRequest:
    """The event that starts one Agent Runner invocation."""

    trigger_type: str
    trigger_post: TriggerPost | None = None
    thread_context: ThreadContext | None = None
    other_personas: list[str] = field(default_factory=list)
    match_reasoning: str | None = None


@dataclass
class ToolAction:
    """One tool invocation made by a persona, with its result."""

    tool: str
    input: dict
    result: Any
    created_post: bool = False  # a successful write that stored a post or reply

    @property
    def path(self) -> str | None:
        path = self.input.get("path")
        return path if isinstance(path, str) else None

    @property
    def succeeded(self) -> bool:
        return isinstance(self.result, dict) and bool(self.result.get("success"))


@dataclass
class AgentResult:
    """Outcome of one run of the tool-calling loop."""

    success: bool
    actions: list[ToolAction] = field(default_factory=list)
    final_message: str | None = None
    error: str | None = None


@dataclass
class WakeResponse:
    """Outcome of waking one persona."""

    success: bool
    handle: str
    session_id: int
    actions: list[ToolAction] = field(default_factory=list)
    final_message: str | None = None
    error: str | None = None
    mentions_triggered: list[str] = field(default_factory=list)

    @property
    def actions_count(self) -> int:
        return len(self.actions)

    @property
    def responded(self) -> bool:
        """Whether this wake produced a post or reply."""
        return any(action.created_post for action in self.actions)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "handle": self.handle,
            "sessionId": self.session_id,
            "actionsCount": self.actions_count,
            "actions": [{"tool": a.tool, "path": a.path} for a in self.actions],
            "finalMessage": self.final_message,
            "error": self.error,
            "mentionsTriggered": list(self.mentions_triggered),
        }


@dataclass
class CascadeOutcome:
    """Aggregate outcome of processing one externally authored post."""

    post_id: int
    score: int | None = None
    categories: list[str] = field(default_factory=list)
    woken_personas: list[str] = field(default_factory=list)
    skipped: bool = False
    already_scored: bool = False
    spawned: str | None = None
