"""Wiring: build a complete Chorus runtime from a config."""

from __future__ import annotations

import os
from dataclasses import dataclass

from chorus.cascade import CascadeDispatcher, WakeService
from chorus.interest import InterestMatcher
from chorus.judge import Judge, LLMJudge
from chorus.llm import LanguageModel, OpenAIChatModel
from chorus.models import ChorusConfig, TriggerPost, WakeRequest
from chorus.runner import AgentRunner
from chorus.sessions import SessionManager
from chorus.store import ChorusStore


@dataclass
class ChorusRuntime:
    """Everything needed to take posts in and wake personas."""

    config: ChorusConfig
    store: ChorusStore
    sessions: SessionManager
    wakes: WakeService
    dispatcher: CascadeDispatcher

    def trigger_post(self, post_id: int) -> TriggerPost:
        """Describe a stored post as the trigger of a wake."""
        post = self.store.require_post(post_id)
        return TriggerPost(
            id=post.id,
            content=post.content,
            author_name=self.store.author_name(post),
            author_kind=post.author_kind,
            categories=post.categories,
            score=post.score,
        )

    def wake_request(
        self,
        trigger_type: str = "direct",
        post_id: int | None = None,
        match_reasoning: str | None = None,
    ) -> WakeRequest:
        trigger = None
        thread_context = None
        if post_id is not None:
            trigger = self.trigger_post(post_id)
            post = self.store.require_post(post_id)
            if post.depth > 0:
                thread_context = self.dispatcher.build_thread_context(post)
        return WakeRequest(
            trigger_type=trigger_type,
            trigger_post=trigger,
            thread_context=thread_context,
            match_reasoning=match_reasoning,
        )

    def close(self) -> None:
        self.store.close()


def config_from_env() -> ChorusConfig:
    """Read a config from CHORUS_* environment variables."""
    return ChorusConfig(
        db_path=os.getenv("CHORUS_DB_PATH", "chorus.db"),
        embedding_backend=os.getenv("CHORUS_EMBEDDING_BACKEND", "local"),
        embedding_model=os.getenv("CHORUS_EMBEDDING_MODEL", "all-MiniLM-L6-v2"),
        openai_embedding_model=os.getenv(
            "CHORUS_OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"
        ),
        agent_model=os.getenv("CHORUS_AGENT_MODEL", "gpt-4o"),
        judge_model=os.getenv("CHORUS_JUDGE_MODEL", "gpt-4o-mini"),
        max_iterations=int(os.getenv("CHORUS_MAX_ITERATIONS", "10")),
    )


def build_runtime(
    config: ChorusConfig,
    model: LanguageModel | None = None,
    judge: Judge | None = None,
    store: ChorusStore | None = None,
) -> ChorusRuntime:
    """Assemble store, runner, wake service and dispatcher.

    Args:
        config: Runtime configuration
        model: Chat model for persona turns (OpenAI by default)
        judge: Judge for scoring/matching/spawning (OpenAI by default)
        store: Existing store to reuse instead of opening config.db_path
    """
    store = store or ChorusStore(config)
    if model is None:
        model = OpenAIChatModel(config.agent_model)
    if judge is None:
        judge = LLMJudge(OpenAIChatModel(config.judge_model), config.spawn_threshold)

    sessions = SessionManager(store)
    runner = AgentRunner(model, max_iterations=config.max_iterations)
    wakes = WakeService(store, runner, config, sessions)
    dispatcher = CascadeDispatcher(store, wakes, judge, InterestMatcher(judge), config)
    return ChorusRuntime(
        config=config,
        store=store,
        sessions=sessions,
        wakes=wakes,
        dispatcher=dispatcher,
    )
