"""Tests for the agent runner loop."""

import pytest
from chorus.gateway import VirtualGateway
from chorus.llm import ModelResponse, ToolCall
from chorus.models import ThreadContext, ThreadEntry, TriggerPost, WakeRequest
from chorus.runner import AgentRunner, build_system_prompt, build_wake_prompt
from chorus.tools import TOOL_NAMES

from conftest import ScriptedModel, read_call, write_call


class AlwaysReading:
    """A model that never stops asking for tools."""

    def __init__(self, calls_per_turn=1):
        self.calls_per_turn = calls_per_turn
        self.invocations = 0

    async def complete(self, system, messages, tools=None):
        self.invocations += 1
        return ModelResponse(
            tool_calls=[
                ToolCall(id=f"c{self.invocations}_{i}", name="read", arguments={"path": "/posts"})
                for i in range(self.calls_per_turn)
            ]
        )


@pytest.fixture
def echo(seeded_store):
    store, _ = seeded_store
    return store.get_persona("echo")


@pytest.fixture
def gateway(seeded_store):
    store, _ = seeded_store
    return VirtualGateway(store, "echo")


@pytest.mark.asyncio
async def test_text_only_response_ends_successfully(echo, gateway):
    """Test that a text reply ends the loop."""
    model = ScriptedModel({"echo": [ModelResponse(text="Nothing for me here.")]})

    result = await AgentRunner(model).run(echo, WakeRequest("direct"), gateway)

    assert result.success
    assert result.actions == []
    assert result.final_message == "Nothing for me here."
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_empty_final_message_means_no_engagement(echo, gateway):
    """Test that an empty reply ends the loop without a message."""
    result = await AgentRunner(ScriptedModel()).run(echo, WakeRequest("scheduled"), gateway)
    assert result.success
    assert result.final_message == ""


@pytest.mark.asyncio
async def test_tool_calls_run_in_order(seeded_store, echo, gateway):
    """Test that tool calls run in the order the model made them."""
    store, _ = seeded_store
    model = ScriptedModel({
        "echo": [
            ModelResponse(tool_calls=[
                write_call("/posts", {"content": "first"}, "a"),
                read_call("/my/posts", "b"),
            ]),
            ModelResponse(text="done"),
        ]
    })

    result = await AgentRunner(model).run(echo, WakeRequest("direct"), gateway)

    assert result.success
    assert [a.tool for a in result.actions] == ["write", "read"]
    # the read saw the write from the same turn
    assert [p["content"] for p in result.actions[1].result["data"]] == ["first"]

    second_turn = model.calls[1]["messages"]
    assert second_turn[1]["role"] == "assistant"
    assert [m["tool_call_id"] for m in second_turn[2:]] == ["a", "b"]


@pytest.mark.asyncio
async def test_failed_tool_call_is_reported_to_model(echo, gateway):
    """Test that tool errors go back to the model."""
    model = ScriptedModel({
        "echo": [
            ModelResponse(tool_calls=[read_call("/does/not/exist")]),
            ModelResponse(tool_calls=[ToolCall(id="x", name="delete", arguments={})]),
            ModelResponse(tool_calls=[ToolCall(id="y", name="read", parse_error="Invalid JSON arguments")]),
            ModelResponse(text="I'll stop."),
        ]
    })

    result = await AgentRunner(model).run(echo, WakeRequest("direct"), gateway)

    assert result.success
    assert len(result.actions) == 3
    assert all(not action.succeeded for action in result.actions)
    assert result.actions[0].result["error"] == "Unknown path: /does/not/exist"
    assert result.actions[1].result["error"] == "Unknown tool: delete"
    assert '"success": false' in model.calls[1]["messages"][-1]["content"]


@pytest.mark.asyncio
async def test_iteration_ceiling(echo, gateway):
    """Test the default iteration ceiling."""
    model = AlwaysReading(calls_per_turn=2)

    result = await AgentRunner(model).run(echo, WakeRequest("direct"), gateway)

    assert not result.success
    assert result.error == "Max iterations reached"
    assert model.invocations == 10
    assert len(result.actions) == 20


@pytest.mark.asyncio
async def test_custom_ceiling(echo, gateway):
    """Test a configured iteration ceiling."""
    model = AlwaysReading()
    result = await AgentRunner(model, max_iterations=3).run(echo, WakeRequest("direct"), gateway)
    assert model.invocations == 3
    assert len(result.actions) == 3


@pytest.mark.asyncio
async def test_exactly_three_tools_offered(echo, gateway):
    """Test the tools offered to the model."""
    model = ScriptedModel()
    await AgentRunner(model).run(echo, WakeRequest("direct"), gateway)
    offered = [tool["function"]["name"] for tool in model.calls[0]["tools"]]
    assert offered == ["read", "write", "search"] == list(TOOL_NAMES)


def test_system_prompt_describes_persona(echo):
    """Test the persona details in the system prompt."""
    prompt = build_system_prompt(echo)
    assert "Echo (@echo)" in prompt
    assert "memory, identity" in prompt
    assert "Warm." in prompt


def test_wake_prompt_includes_trigger_details():
    """Test the trigger details in the wake prompt."""
    request = WakeRequest(
        trigger_type="interest",
        trigger_post=TriggerPost(
            id=7, content="What is a self?", author_name="Joshua",
            author_kind="user", categories=["identity"], score=81,
        ),
        thread_context=ThreadContext(
            root_content="The root",
            root_author="Joshua",
            chain=[ThreadEntry(author="Cas", content="A reply", author_kind="persona")],
        ),
        other_personas=["sage", "nova"],
        match_reasoning="You care about identity.",
    )

    prompt = build_wake_prompt(request)

    assert "TRIGGER: interest" in prompt
    assert 'Joshua (user) said:\n"What is a self?"' in prompt
    assert "Post ID: 7" in prompt
    assert "Score: 81" in prompt
    assert "Categories: identity" in prompt
    assert "Why you might be interested: You care about identity." in prompt
    assert "Original post by Joshua:\nThe root" in prompt
    assert "Cas (persona): A reply" in prompt
    assert "Other personas also engaged: @sage, @nova" in prompt


def test_wake_prompt_without_post():
    """Test the wake prompt when there is no trigger post."""
    prompt = build_wake_prompt(WakeRequest("scheduled"))
    assert "TRIGGER: scheduled" in prompt
    assert "Post ID" not in prompt
