"""
OpenAI API interface for LLMs
"""

import asyncio
import logging
from typing import Any

import openai

from autodiscovery.exceptions import OracleMalformedResponse, OracleTimeout
from autodiscovery.llm.base import LLMInterface

logger = logging.getLogger(__name__)

# Reasoning models take max_completion_tokens and reject temperature/top_p
REASONING_MODEL_PREFIXES = ("o1", "o3", "o4-", "gpt-5", "gpt-oss-")


class OpenAILLM(LLMInterface):
    """LLM interface using OpenAI-compatible APIs"""

    def __init__(self, model_cfg):
        self.model = model_cfg.name
        self.weight = model_cfg.weight
        self.system_message = model_cfg.system_message
        self.temperature = model_cfg.temperature
        self.top_p = model_cfg.top_p
        self.max_tokens = model_cfg.max_tokens
        self.timeout = model_cfg.timeout
        self.retries = model_cfg.retries
        self.retry_delay = model_cfg.retry_delay
        self.api_base = model_cfg.api_base
        self.api_key = model_cfg.api_key
        self.random_seed = getattr(model_cfg, "random_seed", None)

        # Retries are handled here, not by the SDK. The async client lets a
        # timeout or cancellation abort the request itself.
        self.client = openai.AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.api_base,
            timeout=self.timeout,
            max_retries=0,
        )
        logger.info(f"Initialized OpenAI LLM with model: {self.model}")

    async def generate_with_context(
        self, system_message: str, messages: list[dict[str, str]], **kwargs
    ) -> str:
        """
        Generate text using a system message and conversational context.

        Raises:
            OracleTimeout: every attempt exceeded the timeout
            OracleMalformedResponse: the last attempt returned no usable text
        """
        formatted_messages = []
        if system_message:
            formatted_messages.append({"role": "system", "content": system_message})
        formatted_messages.extend(messages)

        params: dict[str, Any] = {"model": self.model, "messages": formatted_messages}
        if str(self.model).lower().startswith(REASONING_MODEL_PREFIXES):
            params["max_completion_tokens"] = kwargs.get("max_tokens", self.max_tokens)
        else:
            params["temperature"] = kwargs.get("temperature", self.temperature)
            params["max_tokens"] = kwargs.get("max_tokens", self.max_tokens)
            top_p = kwargs.get("top_p", self.top_p)
            if top_p is not None:
                params["top_p"] = top_p

        seed = kwargs.get("seed", self.random_seed)
        if seed is not None:
            params["seed"] = seed

        retries = kwargs.get("retries", self.retries)
        try:
            retries = int(retries) if retries is not None else 0
        except (TypeError, ValueError):
            retries = 0

        retry_delay = kwargs.get("retry_delay", self.retry_delay)
        try:
            retry_delay = float(retry_delay) if retry_delay is not None else 0.0
        except (TypeError, ValueError):
            retry_delay = 0.0

        timeout = kwargs.get("timeout", self.timeout)

        for attempt in range(retries + 1):
            try:
                response = await asyncio.wait_for(self._call_api(params), timeout=timeout)
                if response is None:
                    raise OracleMalformedResponse(f"Empty response (None) from model {self.model}")
                if not isinstance(response, str):
                    raise OracleMalformedResponse(
                        f"Non-text response ({type(response).__name__}) from model {self.model}"
                    )
                if not response.strip():
                    raise OracleMalformedResponse(f"Empty response (blank) from model {self.model}")
                return response
            except asyncio.TimeoutError as e:
                if attempt < retries:
                    logger.warning(f"Timeout on attempt {attempt + 1}/{retries + 1}. Retrying...")
                    await asyncio.sleep(retry_delay)
                else:
                    logger.error(f"All {retries + 1} attempts failed with timeout")
                    raise OracleTimeout(
                        f"Model {self.model} did not answer within {timeout}s"
                    ) from e
            except OracleMalformedResponse as e:
                if attempt < retries:
                    logger.warning(f"{e} on attempt {attempt + 1}/{retries + 1}. Retrying...")
                    await asyncio.sleep(retry_delay)
                else:
                    logger.error(f"All {retries + 1} attempts returned no usable text")
                    raise
            except openai.OpenAIError as e:
                if attempt < retries:
                    logger.warning(
                        f"Error on attempt {attempt + 1}/{retries + 1}: {e!s}. Retrying..."
                    )
                    await asyncio.sleep(retry_delay)
                else:
                    logger.error(f"All {retries + 1} attempts failed with error: {e!s}")
                    raise

    async def _call_api(self, params: dict[str, Any]) -> str | None:
        """Make the actual API call"""
        response = await self.client.chat.completions.create(**params)
        logger.debug(f"API parameters: {params}")
        logger.debug(f"API response: {response.choices[0].message.content}")
        return response.choices[0].message.content
