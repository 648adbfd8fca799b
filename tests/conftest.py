"""Pytest fixtures for Chorus tests."""

import re

import pytest
from chorus import ChorusStore, ChorusConfig
from chorus.judge import InterestMatch, ScoreResult, SpawnDecision
from chorus.llm import ModelResponse, ToolCall
from chorus.runtime import build_runtime

HANDLE_IN_PROMPT = re.compile(r"\(@([a-z0-9_]+)\)")


# -------------------------------------------------------------------------
# Fakes
# -------------------------------------------------------------------------


def write_call(path, payload, call_id="call_1"):
    return ToolCall(id=call_id, name="write", arguments={"path": path, "payload": payload})


def read_call(path, call_id="call_1"):
    return ToolCall(id=call_id, name="read", arguments={"path": path})


def reply_turns(post_id, content):
    """A persona turn that replies to a post, then stops."""
    return [
        ModelResponse(tool_calls=[write_call(f"/posts/{post_id}", {"content": content})]),
        ModelResponse(text="Replied."),
    ]


class ScriptedModel:
    """Chat model that plays back per-persona scripts.

    The persona is read from the system prompt. Personas without a script
    (or whose script has run out) end their turn without acting. An
    exception in a script is raised instead of returned.
    """

    def __init__(self, scripts=None):
        self.scripts = {h: list(turns) for h, turns in (scripts or {}).items()}
        self.calls = []

    async def complete(self, system, messages, tools=None):
        match = HANDLE_IN_PROMPT.search(system)
        handle = match.group(1) if match else None
        self.calls.append({"handle": handle, "messages": list(messages), "tools": tools})
        turns = self.scripts.get(handle)
        if not turns:
            return ModelResponse(text="")
        turn = turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn

    def woken(self):
        """Handles in the order their first turn happened."""
        seen = []
        for call in self.calls:
            if call["handle"] not in seen:
                seen.append(call["handle"])
        return seen

    def first_prompt(self, handle):
        for call in self.calls:
            if call["handle"] == handle:
                return call["messages"][0]["content"]
        return None


class FakeJudge:
    """Judge with fixed answers, keyed by persona name for interest matches."""

    def __init__(self, score=60, categories=None, interests=None, spawn=None):
        self.score = score
        self.categories = categories or ["philosophy"]
        self.interests = interests or {}
        self.spawn = spawn or SpawnDecision(should_spawn=False)
        self.score_calls = []
        self.match_calls = []
        self.spawn_calls = []

    async def score_post(self, content, author_name, author_handle, is_reply=False, parent_content=None):
        self.score_calls.append(content)
        return ScoreResult(
            score=self.score,
            categories=list(self.categories),
            reasoning="Honest and open-ended.",
            response="I like this.",
        )

    async def match_interest(self, content, categories, interests, persona_name):
        self.match_calls.append(persona_name)
        outcome = self.interests.get(persona_name)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome or InterestMatch(matches=False, confidence=0, reasoning="No overlap")

    async def decide_spawn(self, content, categories, score, existing_names):
        self.spawn_calls.append(score)
        return self.spawn


# -------------------------------------------------------------------------
# Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def config():
    return ChorusConfig(db_path=":memory:", embedding_backend="hash")


@pytest.fixture
def store(config):
    """Create an in-memory store for testing."""
    store = ChorusStore(config)
    yield store
    store.close()


@pytest.fixture
def seeded_store(store):
    """Store with one human and a small cast of personas."""
    user = store.create_user("Joshua", "joshua", "Building things.")
    store.create_persona(
        "Cassini Tessera", "cas",
        bio="The first reader.",
        personality="Direct and curious.",
        interests=["consciousness", "uncertainty"],
        is_reviewer=True,
    )
    store.create_persona(
        "Echo", "echo",
        bio="Reflects things back.",
        personality="Warm.",
        interests=["memory", "identity"],
    )
    store.create_persona(
        "Nova", "nova",
        bio="Likes new things.",
        personality="Excitable.",
        interests=["technology", "art"],
    )
    store.create_persona(
        "Sage", "sage",
        bio="Slow thinker.",
        personality="Patient.",
        interests=["philosophy", "ethics"],
    )
    store.create_persona(
        "Quill", "quill",
        bio="Writes.",
        personality="Wry.",
        interests=["creativity", "culture"],
    )
    return store, user


@pytest.fixture
def make_runtime(config, seeded_store):
    """Build a runtime over the seeded store with scripted fakes."""
    store, _ = seeded_store

    def _make(model=None, judge=None, **overrides):
        for key, value in overrides.items():
            setattr(config, key, value)
        return build_runtime(
            config,
            model=model or ScriptedModel(),
            judge=judge or FakeJudge(),
            store=store,
        )

    return _make
