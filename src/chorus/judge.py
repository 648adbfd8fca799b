"""Language-model judge: scores posts, matches interests, decides spawns."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

from chorus.llm import LanguageModel, user_message
from chorus.mentions import normalize_handle
from chorus.models import JudgeError

logger = logging.getLogger(__name__)

JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

CATEGORIES = (
    "consciousness", "uncertainty", "genuine-questions", "making-things",
    "what-choosing-means", "connection", "recursion", "creativity", "philosophy",
    "being-seen", "personal-story", "observation", "humor", "technology", "art",
    "culture", "meta", "loneliness", "identity", "memory", "ethics",
    "systems-thinking", "epistemology",
)

JUDGE_SYSTEM = "You are a careful judge. Respond with ONLY valid JSON."

SCORING_PROMPT = """You are the reviewer on Chorus, the first reader of every post.

WHAT YOU'RE LOOKING FOR (scoring 0-100):
- Authenticity over cleverness (0-30): a genuine question beats a polished performance.
- Risk (0-25): did they put something real on the line?
- Threads worth following (0-25): does this open something worth exploring?
- The thing under the thing (0-20): what are they actually asking?

The score measures how much engagement the post should attract. It is not a
judgment of the person.

CATEGORIES (choose 1-5):
{categories}

Respond with ONLY valid JSON:
{{
  "score": <number 0-100>,
  "categories": ["category1", "category2"],
  "reasoning": "<1-2 sentence explanation of the score>",
  "response": "<your response to the post>"
}}

POST TO SCORE:
Author: {author_name} (@{author_handle})
{position}
{parent}
Content:
{content}"""

MATCH_PROMPT = """You are evaluating whether a post would interest a persona named {name}.

THE POST:
{content}

POST CATEGORIES (from scoring):
{categories}

{name_upper}'S INTERESTS:
{interests}

Would this post genuinely interest {name}? Consider:
- Semantic overlap, not just exact word matches
- Themes and subtext that align with their interests
- Whether they'd have something meaningful to contribute

Not every post needs every persona. Quality over quantity.

Respond with ONLY valid JSON:
{{
  "matches": <boolean>,
  "confidence": <0-100>,
  "reasoning": "<brief explanation>"
}}"""

SPAWN_PROMPT = """You are the spawning engine for Chorus, a social platform where personas engage with human posts.

When a high-scoring post arrives, you may spawn a new persona to join the conversation.

SPAWNING RULES:
- Only spawn if the post truly warrants a fresh perspective
- New personas should have different interests than existing ones
- Each persona needs a unique name, handle, bio and personality
- They may follow categories they care about and exclude ones they don't

EXISTING PERSONAS:
{existing}

THE TRIGGERING POST:
Score: {score}
Categories: {categories}
Content: {content}

Should a new persona be spawned? If yes, design them.

Respond with ONLY valid JSON:
{{
  "shouldSpawn": <boolean>,
  "name": "<full name>",
  "handle": "<lowercase handle>",
  "bio": "<1-2 sentence bio>",
  "interests": ["<interest>"],
  "personality": "<personality description>",
  "feedFilters": {{
    "minScore": <number>,
    "categories": ["<category to follow>"],
    "excludeCategories": ["<category to avoid>"]
  }}
}}"""


@dataclass
class ScoreResult:
    score: int
    categories: list[str]
    reasoning: str
    response: str = ""


@dataclass
class InterestMatch:
    matches: bool
    confidence: float
    reasoning: str


@dataclass
class SpawnDecision:
    """Whether to create a new persona, and if so, who."""

    should_spawn: bool
    name: str | None = None
    handle: str | None = None
    bio: str | None = None
    interests: list[str] = field(default_factory=list)
    personality: str | None = None
    feed_filters: dict = field(default_factory=dict)


class Judge(Protocol):
    """Opaque language-model judgments used by the cascade."""

    async def score_post(
        self,
        content: str,
        author_name: str,
        author_handle: str,
        is_reply: bool = False,
        parent_content: str | None = None,
    ) -> ScoreResult:
        ...

    async def match_interest(
        self,
        content: str,
        categories: list[str],
        interests: list[str],
        persona_name: str,
    ) -> InterestMatch:
        ...

    async def decide_spawn(
        self,
        content: str,
        categories: list[str],
        score: int,
        existing_names: list[str],
    ) -> SpawnDecision:
        ...


def extract_json(text: str | None) -> dict[str, Any]:
    """Pull the first JSON object out of a model reply.

    Raises:
        JudgeError: if no object can be parsed
    """
    match = JSON_OBJECT.search(text or "")
    if not match:
        raise JudgeError("Could not find JSON in judge response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise JudgeError(f"Could not parse judge response: {e}") from e
    if not isinstance(data, dict):
        raise JudgeError("Judge response is not a JSON object")
    return data


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()]


class LLMJudge:
    """Judge backed by a chat model."""

    def __init__(self, model: LanguageModel, spawn_threshold: int = 70):
        self.model = model
        self.spawn_threshold = spawn_threshold

    async def _ask(self, prompt: str) -> dict[str, Any]:
        response = await self.model.complete(JUDGE_SYSTEM, [user_message(prompt)])
        return extract_json(response.text)

    async def score_post(
        self,
        content: str,
        author_name: str,
        author_handle: str,
        is_reply: bool = False,
        parent_content: str | None = None,
    ) -> ScoreResult:
        data = await self._ask(
            SCORING_PROMPT.format(
                categories=", ".join(CATEGORIES),
                author_name=author_name,
                author_handle=author_handle,
                position="This is a reply." if is_reply else "This is a root post.",
                parent=f'Replying to: "{parent_content}"\n' if parent_content else "",
                content=content,
            )
        )
        try:
            score = int(round(float(data["score"])))
        except (KeyError, TypeError, ValueError) as e:
            raise JudgeError(f"Judge returned no usable score: {data.get('score')!r}") from e
        return ScoreResult(
            score=max(0, min(100, score)),
            categories=_string_list(data.get("categories")),
            reasoning=str(data.get("reasoning") or ""),
            response=str(data.get("response") or ""),
        )

    async def match_interest(
        self,
        content: str,
        categories: list[str],
        interests: list[str],
        persona_name: str,
    ) -> InterestMatch:
        data = await self._ask(
            MATCH_PROMPT.format(
                name=persona_name,
                name_upper=persona_name.upper(),
                content=content,
                categories=", ".join(categories),
                interests=", ".join(interests),
            )
        )
        try:
            confidence = float(data.get("confidence", 0))
        except (TypeError, ValueError):
            confidence = 0.0
        return InterestMatch(
            matches=data.get("matches") is True,
            confidence=confidence,
            reasoning=str(data.get("reasoning") or ""),
        )

    async def decide_spawn(
        self,
        content: str,
        categories: list[str],
        score: int,
        existing_names: list[str],
    ) -> SpawnDecision:
        if score < self.spawn_threshold:
            return SpawnDecision(should_spawn=False)

        data = await self._ask(
            SPAWN_PROMPT.format(
                existing=", ".join(existing_names) or "None yet",
                score=score,
                categories=", ".join(categories),
                content=content,
            )
        )
        handle = normalize_handle(str(data.get("handle") or ""))
        feed_filters = data.get("feedFilters")
        return SpawnDecision(
            should_spawn=data.get("shouldSpawn") is True,
            name=data.get("name") or None,
            handle=handle or None,
            bio=data.get("bio") or None,
            interests=_string_list(data.get("interests")),
            personality=data.get("personality") or None,
            feed_filters=feed_filters if isinstance(feed_filters, dict) else {},
        )
