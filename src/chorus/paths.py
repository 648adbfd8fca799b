"""Address parsing for the Chorus gateway.

Every address a persona reads from or writes to is turned into exactly one
of the descriptor types below by ``parse_path``. Nothing outside this module
looks at raw path strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import unquote

from chorus.models import FRAGMENT_TYPES, now_ms


@dataclass(frozen=True)
class PostFilters:
    """Filters accepted by post listings."""

    min_score: int | None = None
    max_score: int | None = None
    categories: tuple[str, ...] = ()
    author_kind: str | None = None  # 'user' | 'persona'
    after: int | None = None  # epoch ms
    before: int | None = None
    limit: int | None = None


# -------------------------------------------------------------------------
# Address descriptors
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class Address:
    """Base class for parsed addresses."""


@dataclass(frozen=True)
class RootPath(Address):
    pass


@dataclass(frozen=True)
class PostsFeed(Address):
    filters: PostFilters = field(default_factory=PostFilters)


@dataclass(frozen=True)
class PostPath(Address):
    post_id: str


@dataclass(frozen=True)
class PostReplies(Address):
    post_id: str


@dataclass(frozen=True)
class PostThread(Address):
    post_id: str


@dataclass(frozen=True)
class PersonaDirectory(Address):
    pass


@dataclass(frozen=True)
class PersonaProfile(Address):
    handle: str


@dataclass(frozen=True)
class PersonaPosts(Address):
    handle: str
    filters: PostFilters = field(default_factory=PostFilters)


@dataclass(frozen=True)
class PersonaMessageTarget(Address):
    handle: str


@dataclass(frozen=True)
class MyProfile(Address):
    pass


@dataclass(frozen=True)
class MyPosts(Address):
    filters: PostFilters = field(default_factory=PostFilters)


@dataclass(frozen=True)
class MyMessages(Address):
    unread_only: bool = False


@dataclass(frozen=True)
class MyMessage(Address):
    message_id: str


@dataclass(frozen=True)
class MyFragments(Address):
    fragment_type: str | None = None


@dataclass(frozen=True)
class MySession(Address):
    pass


@dataclass(frozen=True)
class MyConversations(Address):
    pass


@dataclass(frozen=True)
class MyConversation(Address):
    conversation_id: str


@dataclass(frozen=True)
class Activity(Address):
    limit: int | None = None


@dataclass(frozen=True)
class UnknownPath(Address):
    path: str


# -------------------------------------------------------------------------
# Parsing
# -------------------------------------------------------------------------

_RELATIVE_TIME = re.compile(r"^(\d+)([dhm])$")
_UNIT_MS = {"d": 24 * 60 * 60 * 1000, "h": 60 * 60 * 1000, "m": 60 * 1000}


def parse_path(path: str) -> Address:
    """Parse an address string into a typed descriptor.

    Never raises; anything unrecognised becomes ``UnknownPath``.
    """
    if not isinstance(path, str):
        return UnknownPath(path=repr(path))

    raw_path, _, raw_query = path.partition("?")
    normalized = raw_path.strip().strip("/").lower()
    params = parse_query_params(raw_query)

    if not normalized:
        return RootPath()

    parts = normalized.split("/")
    if any(not part for part in parts):
        return UnknownPath(path=path)

    first, rest = parts[0], parts[1:]

    if first == "posts":
        return _parse_posts(rest, params, path)
    if first == "personas":
        return _parse_personas(rest, params, path)
    if first == "my":
        return _parse_my(rest, params, path)
    if first == "activity" and not rest:
        return Activity(limit=_parse_int(params.get("limit")))

    return UnknownPath(path=path)


def _parse_posts(rest: list[str], params: dict[str, str], path: str) -> Address:
    if not rest:
        return PostsFeed(filters=parse_post_filters(params))
    post_id = rest[0]
    if len(rest) == 1:
        return PostPath(post_id=post_id)
    if len(rest) == 2 and rest[1] == "replies":
        return PostReplies(post_id=post_id)
    if len(rest) == 2 and rest[1] == "thread":
        return PostThread(post_id=post_id)
    return UnknownPath(path=path)


def _parse_personas(rest: list[str], params: dict[str, str], path: str) -> Address:
    if not rest:
        return PersonaDirectory()
    handle = rest[0]
    if len(rest) == 1:
        return PersonaProfile(handle=handle)
    if len(rest) == 2 and rest[1] == "posts":
        return PersonaPosts(handle=handle, filters=parse_post_filters(params))
    if len(rest) == 2 and rest[1] == "message":
        return PersonaMessageTarget(handle=handle)
    return UnknownPath(path=path)


def _parse_my(rest: list[str], params: dict[str, str], path: str) -> Address:
    if not rest or rest == ["profile"]:
        return MyProfile()

    section, tail = rest[0], rest[1:]

    if section == "posts" and not tail:
        return MyPosts(filters=parse_post_filters(params))
    if section == "messages":
        if not tail:
            return MyMessages(unread_only=params.get("unread", "").lower() == "true")
        if len(tail) == 1:
            return MyMessage(message_id=tail[0])
    if section == "fragments" and not tail:
        fragment_type = params.get("type", "").lower()
        return MyFragments(
            fragment_type=fragment_type if fragment_type in FRAGMENT_TYPES else None
        )
    if section == "session" and not tail:
        return MySession()
    if section == "conversations":
        if not tail:
            return MyConversations()
        if len(tail) == 1:
            return MyConversation(conversation_id=tail[0])

    return UnknownPath(path=path)


POST_WRITE_ADDRESSES = (PostsFeed, MyPosts, PostPath)


def creates_post(path: str | None) -> bool:
    """Whether a write to this address creates a post or a reply."""
    return isinstance(parse_path(path), POST_WRITE_ADDRESSES)


def parse_query_params(query: str) -> dict[str, str]:
    """Parse ``a=1&b=2`` into a dict with lowercased keys.

    Pairs without a value, or with an empty value, are dropped.
    """
    params: dict[str, str] = {}
    if not query:
        return params
    for pair in query.split("&"):
        key, sep, value = pair.partition("=")
        if not key or not sep or value == "":
            continue
        params[unquote(key).strip().lower()] = unquote(value).strip()
    return params


def parse_post_filters(params: dict[str, str]) -> PostFilters:
    """Build post filters from parsed query parameters."""
    author_kind = params.get("authortype", "").lower()
    categories = tuple(
        c.strip() for c in params.get("categories", "").split(",") if c.strip()
    )
    return PostFilters(
        min_score=_parse_int(params.get("minscore")),
        max_score=_parse_int(params.get("maxscore")),
        categories=categories,
        author_kind=author_kind if author_kind in ("user", "persona") else None,
        after=parse_time(params["after"]) if "after" in params else None,
        before=parse_time(params["before"]) if "before" in params else None,
        limit=_parse_int(params.get("limit")),
    )


def parse_time(value: str, now: int | None = None) -> int:
    """Interpret a time token as epoch milliseconds.

    Accepts epoch integers, relative tokens (``7d``, ``24h``, ``30m`` before
    now) and ISO timestamps. Anything else means now.
    """
    current = now if now is not None else now_ms()
    value = value.strip()

    # isdigit() alone accepts digits like "²" that int() rejects
    if value.isascii() and value.isdigit():
        return int(value)

    match = _RELATIVE_TIME.match(value.lower())
    if match:
        return current - int(match.group(1)) * _UNIT_MS[match.group(2)]

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return current
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
