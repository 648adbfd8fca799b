"""Wake service and cascade dispatcher.

``WakeService.wake`` runs one persona's turn. ``CascadeDispatcher`` decides,
for one externally authored post, who wakes and with what context: mentioned
personas first, then the reviewer, then interested personas, then possibly a
newly spawned one.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import replace

from chorus.gateway import VirtualGateway
from chorus.interest import InterestMatcher
from chorus.judge import Judge
from chorus.mentions import extract_mentions, is_valid_handle
from chorus.models import (
    CascadeOutcome,
    ChorusConfig,
    Persona,
    PersonaNotFoundError,
    Post,
    ThreadContext,
    ThreadEntry,
    TRIGGER_TYPES,
    ToolAction,
    TriggerPost,
    WakeRequest,
    WakeResponse,
)
from chorus.runner import AgentRunner
from chorus.sessions import SessionManager
from chorus.store import ChorusStore

logger = logging.getLogger(__name__)


class WakeService:
    """Wakes personas, one loop at a time per persona."""

    def __init__(
        self,
        store: ChorusStore,
        runner: AgentRunner,
        config: ChorusConfig | None = None,
        sessions: SessionManager | None = None,
    ):
        self.store = store
        self.runner = runner
        self.config = config or store.config
        self.sessions = sessions or SessionManager(store)
        self._locks: dict[str, asyncio.Lock] = {}
        self._background: set[asyncio.Task] = set()

    def _lock_for(self, handle: str):
        if not self.config.serialize_persona_wakes:
            return contextlib.nullcontext()
        if handle not in self._locks:
            self._locks[handle] = asyncio.Lock()
        return self._locks[handle]

    async def wake(self, handle: str, request: WakeRequest) -> WakeResponse:
        """Run one wake for a persona.

        Mentions in posts the persona writes during this wake are woken in
        the background; this call does not wait for them.

        Raises:
            ValueError: if the trigger type is not one of TRIGGER_TYPES
            PersonaNotFoundError: if no persona has this handle
        """
        if request.trigger_type not in TRIGGER_TYPES:
            raise ValueError(f"Invalid trigger type: {request.trigger_type}")
        persona = self.store.get_persona(handle)
        if persona is None:
            raise PersonaNotFoundError(handle)

        trigger_post_id = request.trigger_post.id if request.trigger_post else None
        logger.info("Waking @%s (trigger=%s)", persona.handle, request.trigger_type)

        async with self._lock_for(persona.handle):
            session = self.sessions.restore_or_create(
                persona, request.trigger_type, trigger_post_id
            )
            gateway = VirtualGateway(self.store, persona.handle, session.id, self.sessions)
            result = await self.runner.run(persona, request, gateway)

        response = WakeResponse(
            success=result.success,
            handle=persona.handle,
            session_id=session.id,
            actions=result.actions,
            final_message=result.final_message,
            error=result.error,
        )
        if response.responded:
            self.store.log_activity(
                "persona_responded",
                persona.id,
                trigger_post_id,
                f"@{persona.handle} responded ({request.trigger_type})",
            )

        response.mentions_triggered = self._fire_mentions(persona, result.actions)
        return response

    def _fire_mentions(self, persona: Persona, actions: list[ToolAction]) -> list[str]:
        """Start background wakes for personas mentioned in this wake's posts."""
        triggered: list[str] = []
        for action in actions:
            if not action.created_post:
                continue
            post = action.result.get("data") or {}
            content = post.get("content") or ""
            for handle in extract_mentions(content):
                if handle == persona.handle or handle in triggered:
                    continue
                if self.store.get_persona(handle) is None:
                    continue
                triggered.append(handle)
                request = WakeRequest(
                    trigger_type="mention",
                    trigger_post=TriggerPost(
                        id=post.get("id"),
                        content=content,
                        author_name=persona.name,
                        author_kind="persona",
                    ),
                )
                self.fire_and_forget(handle, request)
        return triggered

    def fire_and_forget(self, handle: str, request: WakeRequest) -> asyncio.Task:
        task = asyncio.create_task(self._wake_quietly(handle, request))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _wake_quietly(self, handle: str, request: WakeRequest) -> None:
        try:
            await self.wake(handle, request)
        except Exception as e:
            logger.warning("Background wake of @%s failed: %s", handle, e)

    async def drain(self) -> None:
        """Wait for every background wake, including ones they start."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


class CascadeDispatcher:
    """Processes one externally authored post through the wake cascade."""

    def __init__(
        self,
        store: ChorusStore,
        wakes: WakeService,
        judge: Judge,
        matcher: InterestMatcher | None = None,
        config: ChorusConfig | None = None,
    ):
        self.store = store
        self.wakes = wakes
        self.judge = judge
        self.matcher = matcher or InterestMatcher(judge)
        self.config = config or store.config

    async def process_event(self, post_id: int) -> CascadeOutcome:
        """Run the cascade for a post.

        A wake that fails never fails the cascade; it just does not count
        as a response.

        Raises:
            PostNotFoundError: if the post does not exist
        """
        post = self.store.require_post(post_id)
        if post.author_kind == "persona":
            logger.info("Skipping post %s: authored by a persona", post.id)
            return CascadeOutcome(post_id=post.id, skipped=True)

        author = self.store.get_author(post) or {}
        thread_context = self.build_thread_context(post) if post.depth > 0 else None
        trigger = TriggerPost(
            id=post.id,
            content=post.content,
            author_name=author.get("name", "Unknown"),
            author_kind=post.author_kind,
            categories=post.categories,
            score=post.score,
        )
        woken: list[str] = []

        # Mentions first
        mentions = extract_mentions(post.content)
        mentioned = [h for h in mentions if self.store.get_persona(h) is not None]
        if mentioned:
            logger.info("Post %s mentions %s", post.id, ", ".join(mentioned))
        woken += await self._wake_all(
            [
                (
                    handle,
                    WakeRequest(
                        trigger_type="mention",
                        trigger_post=trigger,
                        thread_context=thread_context,
                        other_personas=[h for h in mentions if h != handle],
                    ),
                )
                for handle in mentioned
            ]
        )

        if post.score is not None:
            logger.info("Post %s already scored; stopping after mentions", post.id)
            return CascadeOutcome(
                post_id=post.id,
                score=post.score,
                categories=post.categories or [],
                woken_personas=woken,
                already_scored=True,
            )

        # Score, then let the reviewer respond
        reviewer = self.store.get_reviewer()
        parent = self.store.get_post(post.parent_post_id) if post.parent_post_id else None
        result = await self.judge.score_post(
            post.content,
            author.get("name", "Unknown"),
            author.get("handle", "unknown"),
            is_reply=post.depth > 0,
            parent_content=parent.content if parent else None,
        )
        self.store.score_post(
            post.id,
            result.score,
            result.categories,
            result.reasoning,
            scored_by=reviewer.id if reviewer else None,
        )
        logger.info("Post %s scored %d (%s)", post.id, result.score, ", ".join(result.categories))
        trigger = replace(trigger, score=result.score, categories=result.categories)

        if reviewer is not None:
            woken += await self._wake_all(
                [
                    (
                        reviewer.handle,
                        WakeRequest(
                            trigger_type="score",
                            trigger_post=trigger,
                            thread_context=thread_context,
                            match_reasoning=(
                                f"You just scored this post {result.score}. "
                                f"Categories: {', '.join(result.categories)}. "
                                f"Your reasoning: {result.reasoning}"
                            ),
                        ),
                    )
                ]
            )
        else:
            logger.warning("No reviewer persona; post %s scored without a reviewer wake", post.id)

        # Interested personas
        candidates = [
            p for p in self.store.list_personas()
            if not p.is_reviewer and p.handle not in mentions and p.handle not in woken
        ]
        if result.score >= self.config.interest_threshold and candidates:
            interested = await self.matcher.find_interested(
                post.content, result.categories, candidates
            )
            to_wake = interested[: self.config.max_interest_wakes]
            also_interested = [m.handle for m in interested[self.config.max_interest_wakes:]]
            logger.info(
                "Post %s: %d interested, waking %s",
                post.id, len(interested), ", ".join(m.handle for m in to_wake) or "none",
            )
            others = woken + also_interested
            woken += await self._wake_all(
                [
                    (
                        match.handle,
                        WakeRequest(
                            trigger_type="interest",
                            trigger_post=trigger,
                            thread_context=thread_context,
                            other_personas=list(others),
                            match_reasoning=match.reasoning,
                        ),
                    )
                    for match in to_wake
                ]
            )

        outcome = CascadeOutcome(
            post_id=post.id,
            score=result.score,
            categories=result.categories,
            woken_personas=woken,
        )

        if result.score >= self.config.spawn_threshold:
            spawned = await self._maybe_spawn(post, trigger, result.categories)
            if spawned is not None:
                outcome.spawned = spawned.handle
                woken += await self._wake_all(
                    [
                        (
                            spawned.handle,
                            WakeRequest(
                                trigger_type="interest",
                                trigger_post=trigger,
                                thread_context=thread_context,
                                match_reasoning=(
                                    f"You were just born from this post! It scored "
                                    f"{result.score} and resonated with your new "
                                    f"interests: {', '.join(spawned.interests)}"
                                ),
                            ),
                        )
                    ]
                )

        return outcome

    async def _maybe_spawn(
        self,
        post: Post,
        trigger: TriggerPost,
        categories: list[str],
    ) -> Persona | None:
        existing = self.store.list_personas()
        try:
            decision = await self.judge.decide_spawn(
                post.content, categories, trigger.score, [p.name for p in existing]
            )
        except Exception as e:
            logger.warning("Spawn decision failed for post %s: %s", post.id, e)
            return None

        if not (decision.should_spawn and decision.name):
            return None
        if not is_valid_handle(decision.handle):
            logger.warning("Not spawning from post %s: bad handle %r", post.id, decision.handle)
            return None

        handle = self._unique_handle(decision.handle)
        try:
            persona = self.store.create_persona(
                name=decision.name,
                handle=handle,
                bio=decision.bio or "A new persona on Chorus",
                personality=decision.personality or "Curious and thoughtful",
                interests=decision.interests or list(categories),
                feed_filters=decision.feed_filters,
                spawned_from=post.id,
            )
        except ValueError as e:
            logger.warning("Could not spawn @%s: %s", handle, e)
            return None
        logger.info("Spawned @%s from post %s", persona.handle, post.id)
        return persona

    def _unique_handle(self, base: str) -> str:
        handle, n = base, 2
        while self.store.get_persona(handle) is not None:
            handle = f"{base}_{n}"
            n += 1
        return handle

    async def _wake_all(self, requests: list[tuple[str, WakeRequest]]) -> list[str]:
        """Wake siblings concurrently; return the handles that responded."""
        responses = await asyncio.gather(
            *(self._safe_wake(handle, request) for handle, request in requests)
        )
        return [
            handle
            for (handle, _), response in zip(requests, responses)
            if response is not None and response.responded
        ]

    async def _safe_wake(self, handle: str, request: WakeRequest) -> WakeResponse | None:
        try:
            return await self.wakes.wake(handle, request)
        except Exception as e:
            logger.warning("Wake of @%s failed: %s", handle, e)
            return None

    def build_thread_context(self, post: Post) -> ThreadContext | None:
        """Flatten the ancestors of a reply, root first, excluding the post."""
        ancestors = self.store.get_ancestors(post.id)
        if not ancestors:
            return None
        root, chain = ancestors[0], ancestors[1:]
        return ThreadContext(
            root_content=root.content,
            root_author=self.store.author_name(root),
            chain=[
                ThreadEntry(
                    author=self.store.author_name(entry),
                    content=entry.content,
                    author_kind=entry.author_kind,
                )
                for entry in chain
            ],
        )
