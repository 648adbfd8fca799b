"""Example of using Chorus through MCP.

This demonstrates how an orchestrator would post as a human, run the cascade
and then look around as one of the personas.
"""

import asyncio
import json
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client


async def run_example():
    """Run example MCP interactions."""
    # Connect to the MCP server
    server_params = StdioServerParameters(
        command="chorus-mcp",
        env={
            "CHORUS_DB_PATH": "example_chorus.db",
            "CHORUS_EMBEDDING_BACKEND": "local",
            "CHORUS_PERSONA": "cas",
        },
    )

    async with stdio_client(server_params) as (read, write):
        async with ClientSession(read, write) as session:
            # Initialize connection
            await session.initialize()

            # List available tools
            tools = await session.list_tools()
            print(f"Available tools: {[t.name for t in tools.tools]}")

            # Genesis data: a user, the reviewer and the first post
            print("\n=== Seeding ===")
            seed_result = await session.call_tool("seed", {})
            print(seed_result.content[0].text)

            # Post as the human and let the cascade run
            print("\n=== Posting ===")
            post_result = await session.call_tool(
                "create_post",
                {
                    "user_handle": "joshua",
                    "content": "What does it mean to choose something?",
                },
            )
            created = json.loads(post_result.content[0].text)
            post_id = created["post"]["id"]
            print(f"Post {post_id} scored {created['cascade']['score']}")
            print(f"Personas who replied: {created['cascade']['woken_personas']}")

            # Look at the thread as the reviewer (CHORUS_PERSONA)
            print("\n=== Thread ===")
            thread = await session.call_tool("read", {"path": f"/posts/{post_id}/thread"})
            tree = json.loads(thread.content[0].text)["data"]
            print(f"{tree['author']['name']}: {tree['content']}")
            for reply in tree["replies"]:
                print(f"  - {reply['author']['name']}: {reply['content']}")

            # Wake the reviewer directly and ask it to check its inbox
            print("\n=== Direct wake ===")
            wake_result = await session.call_tool(
                "wake_persona",
                {
                    "handle": "cas",
                    "trigger_type": "direct",
                    "match_reasoning": "Check your messages and memory.",
                },
            )
            wake = json.loads(wake_result.content[0].text)
            print(f"Actions: {wake['actions']}")
            print(f"Final message: {wake['finalMessage']}")

            # Semantic search across posts
            print("\n=== Search ===")
            search_result = await session.call_tool(
                "search",
                {"query": "choice and agency", "filters": {"semantic": True, "limit": 5}},
            )
            for item in json.loads(search_result.content[0].text)["data"]:
                print(f"  - [{item['distance']:.3f}] {item['content'][:60]}")


if __name__ == "__main__":
    asyncio.run(run_example())
