"""Tests for address parsing."""

import pytest
from chorus.paths import (
    Activity,
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
    PostPath,
    PostReplies,
    PostsFeed,
    PostThread,
    RootPath,
    UnknownPath,
    creates_post,
    parse_path,
    parse_query_params,
    parse_time,
)

NOW = 1_700_000_000_000


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/", RootPath()),
        ("/posts/42", PostPath(post_id="42")),
        ("/posts/42/replies", PostReplies(post_id="42")),
        ("/posts/42/thread", PostThread(post_id="42")),
        ("/personas", PersonaDirectory()),
        ("/personas/echo", PersonaProfile(handle="echo")),
        ("/personas/echo/message", PersonaMessageTarget(handle="echo")),
        ("/my", MyProfile()),
        ("/my/profile", MyProfile()),
        ("/my/messages", MyMessages(unread_only=False)),
        ("/my/messages?unread=true", MyMessages(unread_only=True)),
        ("/my/messages/7", MyMessage(message_id="7")),
        ("/my/session", MySession()),
        ("/my/conversations", MyConversations()),
        ("/my/conversations/cas-echo-1", MyConversation(conversation_id="cas-echo-1")),
        ("/activity", Activity(limit=None)),
        ("/activity?limit=5", Activity(limit=5)),
    ],
)
def test_parse_known_paths(path, expected):
    """Test every recognised address."""
    assert parse_path(path) == expected


def test_path_portion_is_case_insensitive():
    """Test that the path is matched case-insensitively."""
    assert parse_path("/Personas/ECHO/Posts") == PersonaPosts(handle="echo")
    assert parse_path("/MY/Session") == MySession()


def test_trailing_slash_is_ignored():
    """Test addresses with a trailing slash."""
    assert parse_path("/posts/3/") == PostPath(post_id="3")


@pytest.mark.parametrize(
    "path",
    ["/nope", "/posts/1/likes", "/my/everything", "/posts//1", "/posts/1/thread/extra", "/activity/1"],
)
def test_unrecognized_paths_are_unknown(path):
    """Test addresses that match no route."""
    result = parse_path(path)
    assert isinstance(result, UnknownPath)
    assert result.path == path


def test_parse_never_raises_on_garbage():
    """Test that malformed input still parses to an address."""
    assert isinstance(parse_path(None), UnknownPath)
    assert isinstance(parse_path("/posts?&&==&"), PostsFeed)
    assert isinstance(parse_path("???"), RootPath)
    assert isinstance(parse_path("/posts?after=²&before=٣x&limit=²"), PostsFeed)


def test_feed_filters():
    """Test the feed query filters."""
    address = parse_path(
        "/posts?minScore=50&maxScore=90&categories=art, ethics&authorType=User&limit=10"
    )
    assert isinstance(address, PostsFeed)
    filters = address.filters
    assert filters.min_score == 50
    assert filters.max_score == 90
    assert filters.categories == ("art", "ethics")
    assert filters.author_kind == "user"
    assert filters.limit == 10


def test_bad_filter_values_are_dropped():
    """Test that unparseable filter values are ignored."""
    filters = parse_path("/posts?minScore=lots&authorType=robot&limit=").filters
    assert filters.min_score is None
    assert filters.author_kind is None
    assert filters.limit is None


def test_my_posts_accepts_filters():
    """Test filters on the caller's own posts."""
    address = parse_path("/my/posts?minScore=70")
    assert isinstance(address, MyPosts)
    assert address.filters.min_score == 70


def test_fragment_type_filter():
    """Test the fragment type filter."""
    assert parse_path("/my/fragments?type=insight") == MyFragments(fragment_type="insight")
    assert parse_path("/my/fragments?type=gossip") == MyFragments(fragment_type=None)


def test_query_params_tolerate_missing_values():
    """Test query pairs without values."""
    assert parse_query_params("a=1&b&c=&D=x%20y") == {"a": "1", "d": "x y"}


def test_parse_time_relative_tokens():
    """Test relative time tokens."""
    assert parse_time("7d", now=NOW) == NOW - 7 * 24 * 60 * 60 * 1000
    assert parse_time("24h", now=NOW) == NOW - 24 * 60 * 60 * 1000
    assert parse_time("30m", now=NOW) == NOW - 30 * 60 * 1000


def test_parse_time_absolute():
    """Test epoch and ISO timestamps."""
    assert parse_time("1699999999999", now=NOW) == 1699999999999
    assert parse_time("2024-01-01T00:00:00Z", now=NOW) == 1704067200000
    assert parse_time("2024-01-01T00:00:00", now=NOW) == 1704067200000


def test_parse_time_defaults_to_now():
    """Test that unreadable times mean now."""
    assert parse_time("yesterday-ish", now=NOW) == NOW
    assert parse_time("²", now=NOW) == NOW


def test_creates_post():
    """Test which write addresses create posts or replies."""
    for path in ("/posts", "posts", "/my/posts", "/MY/POSTS/", "/posts/3?x=1"):
        assert creates_post(path), path
    for path in ("/posts/3/replies", "/personas/nova/message", "/my/session", "", None):
        assert not creates_post(path), path


def test_time_window_filters():
    """Test the after and before filters."""
    filters = parse_path("/posts?after=1000&before=2000").filters
    assert filters.after == 1000
    assert filters.before == 2000
