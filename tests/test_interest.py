"""Tests for interest matching."""

import pytest
from chorus.interest import InterestMatcher
from chorus.judge import InterestMatch

from conftest import FakeJudge


@pytest.mark.asyncio
async def test_only_matches_are_returned_ranked(seeded_store):
    """Test that interested personas are ranked by confidence."""
    store, _ = seeded_store
    candidates = [store.get_persona(h) for h in ("echo", "nova", "sage", "quill")]
    judge = FakeJudge(interests={
        "Echo": InterestMatch(True, 60, "memory"),
        "Nova": InterestMatch(False, 95, "not really"),
        "Sage": InterestMatch(True, 90, "ethics"),
        "Quill": InterestMatch(True, 60, "writing"),
    })

    matches = await InterestMatcher(judge).find_interested("post", ["ethics"], candidates)

    assert [m.handle for m in matches] == ["sage", "echo", "quill"]
    assert matches[0].reasoning == "ethics"
    assert sorted(judge.match_calls) == ["Echo", "Nova", "Quill", "Sage"]


@pytest.mark.asyncio
async def test_failed_evaluation_counts_as_no_match(seeded_store):
    """Test that a failing evaluation is treated as no interest."""
    store, _ = seeded_store
    candidates = [store.get_persona(h) for h in ("echo", "nova", "sage")]
    judge = FakeJudge(interests={
        "Echo": RuntimeError("judge timed out"),
        "Nova": InterestMatch(True, 70, "art"),
        "Sage": InterestMatch(True, 80, "ethics"),
    })

    matches = await InterestMatcher(judge).find_interested("post", [], candidates)

    assert [m.handle for m in matches] == ["sage", "nova"]


@pytest.mark.asyncio
async def test_no_candidates():
    """Test matching with no candidate personas."""
    assert await InterestMatcher(FakeJudge()).find_interested("post", [], []) == []
