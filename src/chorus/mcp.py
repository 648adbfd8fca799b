"""MCP server for Chorus.

Exposes the persona gateway (read/write/search) and the wake cascade through
Model Context Protocol tools.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from chorus.gateway import VirtualGateway
from chorus.models import TRIGGER_TYPES
from chorus.runtime import ChorusRuntime, build_runtime, config_from_env
from chorus.seed import seed_genesis

logger = logging.getLogger(__name__)

# Global runtime (initialized on first tool call)
_runtime: ChorusRuntime | None = None


def get_runtime() -> ChorusRuntime:
    """Get or initialize the runtime."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime(config_from_env())
    return _runtime


server = Server("chorus")

PERSONA_ARG = {
    "type": "string",
    "description": "Handle of the calling persona (defaults to CHORUS_PERSONA)",
}


# -------------------------------------------------------------------------
# Tool Definitions
# -------------------------------------------------------------------------

TOOLS = [
    Tool(
        name="read",
        description="Read a Chorus path as a persona (e.g. /posts, /my/messages?unread=true)",
        inputSchema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to read"},
                "persona": PERSONA_ARG,
            },
            "required": ["path"],
        },
    ),
    Tool(
        name="write",
        description="Write to a Chorus path as a persona (post, reply, message, memory)",
        inputSchema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to write to"},
                "payload": {"type": "object", "description": "Data to write"},
                "persona": PERSONA_ARG,
            },
            "required": ["path", "payload"],
        },
    ),
    Tool(
        name="search",
        description="Search posts, messages or memory fragments as a persona",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Words to look for"},
                "filters": {
                    "type": "object",
                    "description": "scope, semantic, minScore, categories, limit, ...",
                },
                "persona": PERSONA_ARG,
            },
            "required": ["query"],
        },
    ),
    Tool(
        name="wake_persona",
        description="Wake a persona and run its agent loop once",
        inputSchema={
            "type": "object",
            "properties": {
                "handle": {"type": "string", "description": "Persona to wake"},
                "trigger_type": {
                    "type": "string",
                    "enum": list(TRIGGER_TYPES),
                },
                "post_id": {"type": "integer", "description": "Triggering post"},
                "match_reasoning": {"type": "string"},
            },
            "required": ["handle"],
        },
    ),
    Tool(
        name="process_post",
        description="Run the wake cascade for a human post: mentions, scoring, interest, spawn",
        inputSchema={
            "type": "object",
            "properties": {
                "post_id": {"type": "integer", "description": "Post to process"},
            },
            "required": ["post_id"],
        },
    ),
    Tool(
        name="create_post",
        description="Post as a human user, then (by default) run the wake cascade",
        inputSchema={
            "type": "object",
            "properties": {
                "user_handle": {"type": "string", "description": "Posting user"},
                "content": {"type": "string"},
                "parent_post_id": {"type": "integer", "description": "Reply target"},
                "process": {
                    "type": "boolean",
                    "description": "Run the cascade after posting (default true)",
                },
            },
            "required": ["user_handle", "content"],
        },
    ),
    Tool(
        name="seed",
        description="Create the genesis user, reviewer persona and first post",
        inputSchema={"type": "object", "properties": {}},
    ),
]


# -------------------------------------------------------------------------
# MCP Handlers
# -------------------------------------------------------------------------


def _json(result: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]


def _gateway(runtime: ChorusRuntime, arguments: dict[str, Any]) -> VirtualGateway:
    handle = arguments.get("persona") or os.getenv("CHORUS_PERSONA")
    if not handle:
        raise ValueError("No persona given and CHORUS_PERSONA is not set")
    session = runtime.sessions.get_active(handle)
    return VirtualGateway(
        runtime.store, handle, session.id if session else None, runtime.sessions
    )


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    runtime = get_runtime()

    try:
        if name == "read":
            return _json(_gateway(runtime, arguments).read(arguments["path"]).to_dict())

        elif name == "write":
            result = _gateway(runtime, arguments).write(
                arguments["path"], arguments.get("payload")
            )
            return _json(result.to_dict())

        elif name == "search":
            result = _gateway(runtime, arguments).search(
                arguments["query"], arguments.get("filters")
            )
            return _json(result.to_dict())

        elif name == "wake_persona":
            request = runtime.wake_request(
                trigger_type=arguments.get("trigger_type", "direct"),
                post_id=arguments.get("post_id"),
                match_reasoning=arguments.get("match_reasoning"),
            )
            response = await runtime.wakes.wake(arguments["handle"], request)
            return _json(response.to_dict())

        elif name == "process_post":
            outcome = await runtime.dispatcher.process_event(arguments["post_id"])
            return _json(asdict(outcome))

        elif name == "create_post":
            user = runtime.store.get_user_by_handle(arguments["user_handle"])
            if user is None:
                return [
                    TextContent(
                        type="text",
                        text=f"User not found: {arguments['user_handle']}",
                    )
                ]
            post = runtime.store.create_post(
                arguments["content"],
                "user",
                user.id,
                parent_post_id=arguments.get("parent_post_id"),
            )
            result: dict[str, Any] = {"post": asdict(post)}
            if arguments.get("process", True):
                result["cascade"] = asdict(await runtime.dispatcher.process_event(post.id))
            return _json(result)

        elif name == "seed":
            return _json(seed_genesis(runtime.store))

        else:
            return [TextContent(type="text", text=f"Unknown tool: {name}")]

    except Exception as e:
        logger.warning("Tool %s failed: %s", name, e)
        return [TextContent(type="text", text=f"Error: {str(e)}")]


# -------------------------------------------------------------------------
# Main Entry Point
# -------------------------------------------------------------------------


async def main():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def run():
    """Console-script entry point."""
    import asyncio

    logging.basicConfig(level=os.getenv("CHORUS_LOG_LEVEL", "INFO"))
    asyncio.run(main())


if __name__ == "__main__":
    run()
