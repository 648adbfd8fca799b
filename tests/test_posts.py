"""Tests for post storage, threading and search."""

import pytest
from chorus.models import PostNotFoundError, ThreadCycleError
from chorus.paths import PostFilters


def test_store_creates_tables(store):
    """Test that the schema creates every table."""
    tables = {
        row[0]
        for row in store.db.execute("SELECT name FROM sqlite_master WHERE type='table'")
    }
    for table in ("users", "personas", "posts", "sessions", "messages",
                  "memory_fragments", "activity_log", "posts_vec"):
        assert table in tables


def test_root_post(seeded_store):
    """Test creating a root post."""
    store, user = seeded_store
    post = store.create_post("Hello, chorus", "user", user.id)
    assert post.depth == 0
    assert post.parent_post_id is None
    assert post.root_post_id is None
    assert post.reply_count == 0
    assert post.score is None


def test_thread_positions(seeded_store):
    """Test depth, root and reply counts down a thread."""
    store, user = seeded_store
    echo = store.get_persona("echo")

    root = store.create_post("root", "user", user.id)
    child = store.create_post("child", "persona", echo.id, parent_post_id=root.id)
    grandchild = store.create_post("grandchild", "user", user.id, parent_post_id=child.id)

    assert (child.depth, child.root_post_id) == (1, root.id)
    assert (grandchild.depth, grandchild.root_post_id) == (2, root.id)
    assert store.get_post(root.id).reply_count == 1
    assert store.get_post(child.id).reply_count == 1


def test_reply_to_missing_parent(seeded_store):
    """Test replying to a missing parent."""
    store, user = seeded_store
    with pytest.raises(PostNotFoundError):
        store.create_post("orphan", "user", user.id, parent_post_id=999)
    assert store.list_posts() == []


def test_reply_under_cyclic_ancestry_is_rejected(seeded_store):
    """Test that a reply under a looping thread is refused."""
    store, user = seeded_store
    a = store.create_post("a", "user", user.id)
    b = store.create_post("b", "user", user.id, parent_post_id=a.id)
    # Corrupt the data so a and b are each other's parent
    store.db.execute("UPDATE posts SET parent_post_id = ? WHERE id = ?", (b.id, a.id))
    store.db.commit()

    with pytest.raises(ThreadCycleError):
        store.create_post("c", "user", user.id, parent_post_id=b.id)
    with pytest.raises(ThreadCycleError):
        store.get_ancestors(b.id)
    assert store.get_post(b.id).reply_count == 0


def test_ancestors_root_first(seeded_store):
    """Test that ancestors come back root first."""
    store, user = seeded_store
    root = store.create_post("root", "user", user.id)
    mid = store.create_post("mid", "user", user.id, parent_post_id=root.id)
    leaf = store.create_post("leaf", "user", user.id, parent_post_id=mid.id)

    assert [p.content for p in store.get_ancestors(leaf.id)] == ["root", "mid"]
    assert store.get_ancestors(root.id) == []


def test_list_posts_newest_first_with_filters(seeded_store):
    """Test post listing order and filters."""
    store, user = seeded_store
    nova = store.get_persona("nova")
    old = store.create_post("old", "user", user.id, created_at=1000)
    mid = store.create_post("mid", "persona", nova.id, created_at=2000)
    new = store.create_post("new", "user", user.id, created_at=3000)
    store.score_post(old.id, 90, ["art"], "good", None)
    store.score_post(mid.id, 40, ["ethics"], "fine", None)

    assert [p.id for p in store.list_posts()] == [new.id, mid.id, old.id]
    assert [p.id for p in store.list_posts(PostFilters(min_score=50))] == [old.id]
    # unscored posts count as zero
    assert [p.id for p in store.list_posts(PostFilters(max_score=40))] == [new.id, mid.id]
    assert [p.id for p in store.list_posts(PostFilters(categories=("ethics", "x")))] == [mid.id]
    assert [p.id for p in store.list_posts(PostFilters(author_kind="persona"))] == [mid.id]
    assert [p.id for p in store.list_posts(PostFilters(after=1500, before=2500))] == [mid.id]
    assert [p.id for p in store.list_posts(PostFilters(limit=2))] == [new.id, mid.id]


def test_root_only_listing(seeded_store):
    """Test listing only root posts."""
    store, user = seeded_store
    root = store.create_post("root", "user", user.id)
    store.create_post("reply", "user", user.id, parent_post_id=root.id)
    assert [p.id for p in store.list_posts(root_only=True)] == [root.id]


def test_score_post(seeded_store):
    """Test storing a score on a post."""
    store, user = seeded_store
    cas = store.get_reviewer()
    post = store.create_post("Is anyone there?", "user", user.id)

    scored = store.score_post(post.id, 72, ["uncertainty"], "A real question.", cas.id)

    assert scored.score == 72
    assert scored.categories == ["uncertainty"]
    assert scored.scored_by == cas.id
    assert scored.scored_at is not None
    assert store.list_activity(1)[0].type == "post_scored"


def test_get_author(seeded_store):
    """Test resolving the author of a post."""
    store, user = seeded_store
    echo = store.get_persona("echo")
    by_user = store.create_post("u", "user", user.id)
    by_persona = store.create_post("p", "persona", echo.id)

    assert store.get_author(by_user)["handle"] == "joshua"
    assert store.get_author(by_persona)["name"] == "Echo"
    assert store.get_author(by_persona)["kind"] == "persona"


def test_keyword_search_matches_any_term(seeded_store):
    """Test that keyword search matches any term."""
    store, user = seeded_store
    store.create_post("Thinking about memory today", "user", user.id)
    store.create_post("Painting the sky", "user", user.id)
    store.create_post("Nothing relevant", "user", user.id)

    results = store.search_posts("MEMORY painting")
    assert {p.content for p in results} == {"Thinking about memory today", "Painting the sky"}
    assert store.search_posts("   ") == []


def test_semantic_search_ranks_identical_text_first(seeded_store):
    """Test that identical text ranks first in semantic search."""
    store, user = seeded_store
    target = store.create_post("The tide remembers the shore", "user", user.id)
    store.create_post("Completely different words", "user", user.id)

    results = store.semantic_search_posts("The tide remembers the shore", limit=2)
    post, distance = results[0]
    assert post.id == target.id
    assert distance == pytest.approx(0.0, abs=1e-5)


def test_personal_feed_uses_feed_filters(seeded_store):
    """Test that a persona's feed filters shape its feed."""
    store, user = seeded_store
    sage = store.get_persona("sage")
    store.update_persona_profile(
        sage.id, feed_filters={"minScore": 50, "excludeCategories": ["humor"]}
    )
    good = store.create_post("good", "user", user.id)
    funny = store.create_post("funny", "user", user.id)
    store.create_post("unscored", "user", user.id)
    store.score_post(good.id, 80, ["ethics"], "", None)
    store.score_post(funny.id, 80, ["humor"], "", None)

    assert [p.id for p in store.personal_feed("sage")] == [good.id]
