"""Tests for the MCP tool surface."""

import json

import pytest
from chorus import mcp

from conftest import FakeJudge, ScriptedModel, reply_turns


@pytest.fixture
def runtime(make_runtime, monkeypatch):
    runtime = make_runtime(model=ScriptedModel(), judge=FakeJudge(score=30))
    monkeypatch.setattr(mcp, "_runtime", runtime)
    monkeypatch.delenv("CHORUS_PERSONA", raising=False)
    return runtime


async def call(name, arguments):
    contents = await mcp.call_tool(name, arguments)
    return contents[0].text


def test_tool_names():
    """Test the tools the server exposes."""
    assert [tool.name for tool in mcp.TOOLS] == [
        "read", "write", "search", "wake_persona", "process_post", "create_post", "seed",
    ]


@pytest.mark.asyncio
async def test_read_and_write_as_persona(runtime):
    """Test reading and writing as a named persona."""
    written = json.loads(await call("write", {
        "path": "/posts", "payload": {"content": "hello"}, "persona": "nova",
    }))
    assert written["success"]

    read = json.loads(await call("read", {"path": "/my/posts", "persona": "nova"}))
    assert [p["content"] for p in read["data"]] == ["hello"]


@pytest.mark.asyncio
async def test_persona_from_environment(runtime, monkeypatch):
    """Test taking the persona from the environment."""
    monkeypatch.setenv("CHORUS_PERSONA", "sage")
    result = json.loads(await call("read", {"path": "/my/profile"}))
    assert result["data"]["handle"] == "sage"


@pytest.mark.asyncio
async def test_missing_persona_is_reported(runtime):
    """Test calling a persona tool without a persona."""
    text = await call("read", {"path": "/posts"})
    assert text.startswith("Error:")


@pytest.mark.asyncio
async def test_search(runtime):
    """Test the search tool."""
    store = runtime.store
    store.create_post("Tides and memory", "user", store.get_user_by_handle("joshua").id)
    result = json.loads(await call("search", {"query": "tides", "persona": "echo"}))
    assert [item["content"] for item in result["data"]] == ["Tides and memory"]


@pytest.mark.asyncio
async def test_create_post_runs_cascade(runtime):
    """Test that creating a post runs the cascade."""
    result = json.loads(await call("create_post", {"user_handle": "joshua", "content": "hi all"}))
    assert result["post"]["content"] == "hi all"
    assert result["cascade"]["score"] == 30
    assert runtime.store.get_post(result["post"]["id"]).score == 30


@pytest.mark.asyncio
async def test_create_post_without_cascade(runtime):
    """Test creating a post with the cascade turned off."""
    result = json.loads(await call("create_post", {
        "user_handle": "joshua", "content": "quiet", "process": False,
    }))
    assert "cascade" not in result
    assert runtime.store.get_post(result["post"]["id"]).score is None


@pytest.mark.asyncio
async def test_create_post_unknown_user(runtime):
    """Test creating a post for a missing user."""
    text = await call("create_post", {"user_handle": "ghost", "content": "boo"})
    assert text == "User not found: ghost"


@pytest.mark.asyncio
async def test_wake_persona(runtime):
    """Test waking a persona through the server."""
    post = runtime.store.create_post("hey", "user", runtime.store.get_user_by_handle("joshua").id)
    runtime.wakes.runner.model.scripts["echo"] = reply_turns(post.id, "hey back")

    result = json.loads(await call("wake_persona", {"handle": "echo", "post_id": post.id}))

    assert result["success"]
    assert result["actionsCount"] == 1


@pytest.mark.asyncio
async def test_wake_unknown_persona(runtime):
    """Test waking a missing persona through the server."""
    text = await call("wake_persona", {"handle": "ghost"})
    assert text == "Error: Persona @ghost not found"


@pytest.mark.asyncio
async def test_wake_with_unknown_trigger_type(runtime):
    """Test that the server reports an unrecognised trigger type."""
    text = await call("wake_persona", {"handle": "echo", "trigger_type": "whenever"})
    assert text == "Error: Invalid trigger type: whenever"


@pytest.mark.asyncio
async def test_process_post_skips_persona_posts(runtime):
    """Test processing a persona's post through the server."""
    post = runtime.store.create_post("me", "persona", runtime.store.get_persona("echo").id)
    result = json.loads(await call("process_post", {"post_id": post.id}))
    assert result["skipped"]


@pytest.mark.asyncio
async def test_seed_on_existing_data(runtime):
    """Test seeding a store that already has data."""
    assert json.loads(await call("seed", {})) == {"seeded": False}


@pytest.mark.asyncio
async def test_unknown_tool(runtime):
    """Test calling a tool the server does not have."""
    assert await call("dance", {}) == "Unknown tool: dance"
