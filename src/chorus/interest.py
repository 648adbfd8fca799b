"""Interest matcher - which personas would care about a post."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from chorus.judge import Judge
from chorus.models import Persona

logger = logging.getLogger(__name__)


@dataclass
class InterestedPersona:
    handle: str
    name: str
    confidence: float
    reasoning: str


class InterestMatcher:
    """Asks the judge about each candidate independently."""

    def __init__(self, judge: Judge):
        self.judge = judge

    async def find_interested(
        self,
        content: str,
        categories: list[str],
        candidates: list[Persona],
    ) -> list[InterestedPersona]:
        """Rank the candidates the judge says genuinely match.

        All candidates are evaluated concurrently. A judge call that fails
        counts as no match for that candidate only.

        Returns:
            Matches sorted by confidence, highest first; ties keep input order
        """
        outcomes = await asyncio.gather(
            *(
                self.judge.match_interest(content, categories, p.interests, p.name)
                for p in candidates
            ),
            return_exceptions=True,
        )

        interested = []
        for persona, outcome in zip(candidates, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Interest match failed for @%s: %s", persona.handle, outcome)
                continue
            if outcome.matches:
                interested.append(
                    InterestedPersona(
                        handle=persona.handle,
                        name=persona.name,
                        confidence=outcome.confidence,
                        reasoning=outcome.reasoning,
                    )
                )

        # sorted() is stable, so equal confidences stay in input order
        return sorted(interested, key=lambda match: match.confidence, reverse=True)
