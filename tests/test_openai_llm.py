import asyncio
import unittest
from unittest.mock import AsyncMock, Mock, patch

from autodiscovery.config import LLMModelConfig
from autodiscovery.exceptions import OracleMalformedResponse, OracleTimeout
from autodiscovery.llm.base import LLMInterface, parse_json_response
from autodiscovery.llm.ensemble import LLMEnsemble
from autodiscovery.llm.openai import OpenAILLM


def make_model_cfg(name: str = "gpt-4o-mini") -> Mock:
    model_cfg = Mock()
    model_cfg.name = name
    model_cfg.weight = 1.0
    model_cfg.system_message = "system"
    model_cfg.temperature = 0.0
    model_cfg.top_p = None
    model_cfg.max_tokens = 128
    model_cfg.timeout = 30
    model_cfg.retries = 1
    model_cfg.retry_delay = 0
    model_cfg.api_base = "http://localhost:8317/v1"
    model_cfg.api_key = "test-key"
    model_cfg.random_seed = None
    return model_cfg


class TestOpenAILLMRetry(unittest.IsolatedAsyncioTestCase):
    def _llm(self, model_cfg) -> OpenAILLM:
        with patch("openai.AsyncOpenAI"):
            return OpenAILLM(model_cfg)

    async def _ask(self, llm: OpenAILLM) -> str:
        return await llm.generate_with_context(
            system_message="sys", messages=[{"role": "user", "content": "hi"}]
        )

    async def test_none_content_is_retried(self):
        llm = self._llm(make_model_cfg())
        calls = 0

        async def fake_call_api(_params):
            nonlocal calls
            calls += 1
            if calls == 1:
                return None
            return "ok"

        llm._call_api = fake_call_api  # type: ignore[method-assign]

        self.assertEqual(await self._ask(llm), "ok")
        self.assertEqual(calls, 2)

    async def test_empty_after_retries_is_malformed(self):
        llm = self._llm(make_model_cfg())

        async def fake_call_api(_params):
            return "   "

        llm._call_api = fake_call_api  # type: ignore[method-assign]

        with self.assertRaises(OracleMalformedResponse):
            await self._ask(llm)

    async def test_timeout_after_retries(self):
        model_cfg = make_model_cfg()
        model_cfg.timeout = 0.01
        llm = self._llm(model_cfg)
        calls = 0

        async def slow_call_api(_params):
            nonlocal calls
            calls += 1
            await asyncio.sleep(1)
            return "too late"

        llm._call_api = slow_call_api  # type: ignore[method-assign]

        with self.assertRaises(OracleTimeout):
            await self._ask(llm)
        self.assertEqual(calls, 2)

    async def test_request_parameters(self):
        captured = []

        async def fake_call_api(params):
            captured.append(params)
            return "ok"

        chat = self._llm(make_model_cfg())
        chat._call_api = fake_call_api  # type: ignore[method-assign]
        await self._ask(chat)

        reasoning = self._llm(make_model_cfg(name="o3-mini"))
        reasoning._call_api = fake_call_api  # type: ignore[method-assign]
        await self._ask(reasoning)

        self.assertEqual(captured[0]["messages"][0], {"role": "system", "content": "sys"})
        self.assertEqual(captured[0]["max_tokens"], 128)
        self.assertNotIn("top_p", captured[0])
        self.assertEqual(captured[1]["max_completion_tokens"], 128)
        self.assertNotIn("temperature", captured[1])


class TestOpenAILLMClient(unittest.IsolatedAsyncioTestCase):
    async def test_request_goes_through_async_client(self):
        with patch("openai.AsyncOpenAI") as client_cls:
            llm = OpenAILLM(make_model_cfg())
        llm.retries = 0
        message = Mock()
        message.content = "answer"
        response = Mock()
        response.choices = [Mock(message=message)]
        llm.client.chat.completions.create = AsyncMock(return_value=response)

        self.assertEqual(await llm.generate("hi"), "answer")
        client_cls.assert_called_once()
        self.assertEqual(client_cls.call_args.kwargs["max_retries"], 0)
        sent = llm.client.chat.completions.create.call_args.kwargs
        self.assertEqual(sent["messages"][0], {"role": "system", "content": "system"})
        self.assertEqual(sent["messages"][1], {"role": "user", "content": "hi"})

    async def test_timeout_cancels_the_request(self):
        model_cfg = make_model_cfg()
        model_cfg.retries = 0
        model_cfg.timeout = 0.01
        with patch("openai.AsyncOpenAI"):
            llm = OpenAILLM(model_cfg)
        cancelled = asyncio.Event()

        async def hanging_create(**params):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        llm.client.chat.completions.create = hanging_create

        with self.assertRaises(OracleTimeout):
            await llm.generate("hi")
        self.assertTrue(cancelled.is_set())


class TestLLMInterface(unittest.IsolatedAsyncioTestCase):
    async def test_generate_json_parses_fenced_answer(self):
        llm = FakeLLM(LLMModelConfig(name='Here you go:\n```json\n{"hypotheses": ["a"]}\n```'))

        self.assertEqual(await llm.generate_json("sys", "prompt"), {"hypotheses": ["a"]})

    def test_parse_json_response_rejects_non_objects(self):
        for response in ["no json here", "{not: valid}", None]:
            with self.subTest(response=response):
                with self.assertRaises(OracleMalformedResponse):
                    parse_json_response(response)


class FakeLLM(LLMInterface):
    def __init__(self, model_cfg):
        self.name = model_cfg.name

    async def generate(self, prompt, **kwargs):
        return self.name

    async def generate_with_context(self, system_message, messages, **kwargs):
        return self.name


class TestLLMEnsemble(unittest.IsolatedAsyncioTestCase):
    def _models(self, seed=7):
        return [
            LLMModelConfig(name="small", weight=3.0, init_client=FakeLLM, random_seed=seed),
            LLMModelConfig(name="large", weight=1.0, init_client=FakeLLM, random_seed=seed),
        ]

    async def test_seeded_sampling_is_reproducible(self):
        first = LLMEnsemble(self._models())
        second = LLMEnsemble(self._models())

        picks_first = [await first.generate("p") for _ in range(20)]
        picks_second = [await second.generate("p") for _ in range(20)]

        self.assertEqual(picks_first, picks_second)
        self.assertEqual(set(picks_first) | {"small", "large"}, {"small", "large"})

    def test_weights_are_normalized(self):
        ensemble = LLMEnsemble(self._models())
        self.assertEqual(ensemble.weights, [0.75, 0.25])

    def test_empty_ensemble_is_rejected(self):
        with self.assertRaises(ValueError):
            LLMEnsemble([])


if __name__ == "__main__":
    unittest.main()
