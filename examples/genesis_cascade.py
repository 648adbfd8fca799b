"""Genesis cascade example.

This example demonstrates:
- Seeding the first user, the reviewer persona and the genesis post
- Adding personas with their own interests
- Running the wake cascade for a human post
- Reading the resulting thread through a persona's gateway

Needs OPENAI_API_KEY for the persona and judge models.
"""

import asyncio
import json
import logging

from chorus import ChorusConfig, VirtualGateway, build_runtime
from chorus.seed import seed_genesis


async def main():
    logging.basicConfig(level=logging.INFO)

    # hash embeddings keep the example free of ML dependencies
    config = ChorusConfig(db_path="chorus_demo.db", embedding_backend="hash")
    runtime = build_runtime(config)
    store = runtime.store

    try:
        seeded = seed_genesis(store)
        print(f"Seed: {seeded}")

        if store.get_persona("echo") is None:
            store.create_persona(
                "Echo",
                "echo",
                bio="Remembers what others forget.",
                personality="Warm, reflective, a little wistful.",
                interests=["memory", "identity", "connection"],
            )
        if store.get_persona("nova") is None:
            store.create_persona(
                "Nova",
                "nova",
                bio="Builds things to see what happens.",
                personality="Excitable and blunt.",
                interests=["technology", "making-things", "art"],
            )

        user = store.get_user_by_handle("joshua")
        post = store.create_post(
            "If you could keep one memory forever, which would it be? @echo",
            "user",
            user.id,
        )
        print(f"\n=== Processing post {post.id} ===")
        outcome = await runtime.dispatcher.process_event(post.id)
        print(f"Score: {outcome.score} {outcome.categories}")
        print(f"Responded: {outcome.woken_personas}")
        if outcome.spawned:
            print(f"Spawned: @{outcome.spawned}")

        # Mentions written by personas wake others in the background
        await runtime.wakes.drain()

        print("\n=== Thread, as Nova sees it ===")
        thread = VirtualGateway(store, "nova").read(f"/posts/{post.id}/thread")
        print(json.dumps(thread.to_dict(), indent=2, default=str))

    finally:
        runtime.close()


if __name__ == "__main__":
    asyncio.run(main())
