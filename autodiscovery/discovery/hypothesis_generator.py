"""
LLM-backed hypothesis generator
"""

import logging
from typing import Any

from autodiscovery.exceptions import OracleMalformedResponse
from autodiscovery.llm.base import LLMInterface
from autodiscovery.prompt.templates import HYPOTHESIS_SYSTEM_TEMPLATE, HYPOTHESIS_USER_TEMPLATE

logger = logging.getLogger(__name__)


def _bullets(lines: list[str], empty: str) -> str:
    if not lines:
        return empty
    return "\n".join(f"- {line}" for line in lines)


class LLMHypothesisGenerator:
    """Proposes refinements of a hypothesis by prompting an LLM for JSON"""

    def __init__(self, llm: LLMInterface, **generation_kwargs: Any):
        self.llm = llm
        self.generation_kwargs = generation_kwargs

    async def generate(
        self,
        parent_hypothesis: str,
        ancestor_chain: list[str],
        fact_context: list[str],
        count: int,
    ) -> list[dict[str, Any]]:
        user_prompt = HYPOTHESIS_USER_TEMPLATE.format(
            parent_hypothesis=parent_hypothesis,
            ancestor_chain=_bullets(ancestor_chain, "- (this is the starting hypothesis)"),
            fact_context=_bullets(fact_context, "Nothing has been tested yet."),
            count=count,
        )
        data = await self.llm.generate_json(
            HYPOTHESIS_SYSTEM_TEMPLATE, user_prompt, **self.generation_kwargs
        )
        hypotheses = data.get("hypotheses")
        if not isinstance(hypotheses, list):
            raise OracleMalformedResponse("Response JSON has no 'hypotheses' list")

        logger.debug(f"LLM proposed {len(hypotheses)} hypotheses for {parent_hypothesis!r}")
        return hypotheses[:count]
