"""
The LLM port used by the oracle adapters

Hypothesis generation and evidence gathering only ever talk to an
``LLMInterface``. Implementations must report failures through the oracle
exceptions so the orchestrator can tell a retryable timeout from an answer
that should be asked for again:

- ``OracleTimeout`` when the model did not answer in time
- ``OracleMalformedResponse`` when it answered with nothing usable

Any other exception is treated by the orchestrator like a malformed answer.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any

from autodiscovery.exceptions import OracleMalformedResponse


def parse_json_response(response: str) -> dict[str, Any]:
    """Extract the JSON object from an LLM response, tolerating prose and code fences"""
    json_match = re.search(r"\{[\s\S]*\}", response or "")
    if not json_match:
        raise OracleMalformedResponse(f"No JSON object in response: {(response or '')[:200]!r}")
    try:
        data = json.loads(json_match.group())
    except json.JSONDecodeError as e:
        raise OracleMalformedResponse(f"Invalid JSON in response: {e}") from e
    if not isinstance(data, dict):
        raise OracleMalformedResponse("Response JSON is not an object")
    return data


class LLMInterface(ABC):
    """A chat model that answers with text"""

    system_message: str | None = None

    @abstractmethod
    async def generate_with_context(
        self, system_message: str, messages: list[dict[str, str]], **kwargs
    ) -> str:
        """
        Answer the last of ``messages`` under ``system_message``.

        Raises:
            OracleTimeout: no answer within the configured timeout
            OracleMalformedResponse: the answer was empty or not text
        """

    async def generate(self, prompt: str, **kwargs) -> str:
        """Answer a single user prompt under the default system message"""
        return await self.generate_with_context(
            system_message=self.system_message,
            messages=[{"role": "user", "content": prompt}],
            **kwargs,
        )

    async def generate_json(self, system_message: str, user_prompt: str, **kwargs) -> dict[str, Any]:
        """
        Ask for a JSON object and parse it.

        Raises:
            OracleMalformedResponse: the answer holds no JSON object
        """
        response = await self.generate_with_context(
            system_message=system_message,
            messages=[{"role": "user", "content": user_prompt}],
            **kwargs,
        )
        return parse_json_response(response)
