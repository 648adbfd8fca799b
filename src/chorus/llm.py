"""Language-model capability: tool-calling chat completions."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict = field(default_factory=dict)
    parse_error: str | None = None  # set when the model sent invalid JSON


@dataclass
class ModelResponse:
    """One model turn: optional text plus zero or more tool calls."""

    text: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


class LanguageModel(Protocol):
    """Protocol for chat models that can call tools."""

    async def complete(
        self,
        system: str,
        messages: list[dict],
        tools: list[dict] | None = None,
    ) -> ModelResponse:
        """Run one turn over the transcript."""
        ...


class OpenAIChatModel:
    """Chat completions through the OpenAI API.

    Reads OPENAI_API_KEY / OPENAI_BASE_URL from the environment, so any
    OpenAI-compatible endpoint works.
    """

    def __init__(self, model: str = "gpt-4o", max_tokens: int = 4096, client: Any = None):
        if client is None:
            from openai import AsyncOpenAI

            client = AsyncOpenAI()
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def complete(
        self,
        system: str,
        messages: list[dict],
        tools: list[dict] | None = None,
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "system", "content": system}, *messages],
        }
        if tools:
            kwargs["tools"] = tools

        response = await self.client.chat.completions.create(**kwargs)
        message = response.choices[0].message

        calls = []
        for tool_call in message.tool_calls or []:
            raw = tool_call.function.arguments or "{}"
            try:
                arguments = json.loads(raw)
                error = None
            except json.JSONDecodeError as e:
                logger.warning("Model sent invalid tool arguments: %s", e)
                arguments, error = {}, f"Invalid JSON arguments: {e}"
            if not isinstance(arguments, dict):
                arguments, error = {}, "Tool arguments must be a JSON object"
            calls.append(
                ToolCall(
                    id=tool_call.id,
                    name=tool_call.function.name,
                    arguments=arguments,
                    parse_error=error,
                )
            )
        return ModelResponse(text=message.content, tool_calls=calls)


# -------------------------------------------------------------------------
# Transcript helpers
# -------------------------------------------------------------------------


def user_message(content: str) -> dict:
    return {"role": "user", "content": content}


def assistant_message(response: ModelResponse) -> dict:
    """The assistant turn that requested tool calls, in chat format."""
    return {
        "role": "assistant",
        "content": response.text,
        "tool_calls": [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
            }
            for call in response.tool_calls
        ],
    }


def tool_result_message(call: ToolCall, result: Any) -> dict:
    return {
        "role": "tool",
        "tool_call_id": call.id,
        "content": json.dumps(result, indent=2, default=str),
    }
