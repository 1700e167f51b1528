"""
Model ensemble for LLMs
"""

import logging
import random

from autodiscovery.config import LLMModelConfig
from autodiscovery.llm.base import LLMInterface
from autodiscovery.llm.openai import OpenAILLM

logger = logging.getLogger(__name__)


class LLMEnsemble(LLMInterface):
    """Weighted ensemble of LLMs; each request goes to one sampled model"""

    def __init__(self, models_cfg: list[LLMModelConfig]):
        if not models_cfg:
            raise ValueError("LLMEnsemble needs at least one model configuration")
        self.models_cfg = models_cfg

        self.models = [
            model_cfg.init_client(model_cfg) if model_cfg.init_client else OpenAILLM(model_cfg)
            for model_cfg in models_cfg
        ]

        # Normalize weights, falling back to uniform if misconfigured
        weights = [model.weight for model in models_cfg]
        total = sum(weights)
        if total <= 0:
            self.weights = [1.0 / len(weights)] * len(weights)
        else:
            self.weights = [w / total for w in weights]

        # Deterministic model selection when a seed is configured
        self.random_state = random.Random()
        if models_cfg[0].random_seed is not None:
            self.random_state.seed(models_cfg[0].random_seed)
            logger.debug(f"LLMEnsemble: Set random seed to {models_cfg[0].random_seed}")

        logger.info(
            "Initialized LLM ensemble with models: "
            + ", ".join(
                f"{model.name} (weight: {weight:.2f})"
                for model, weight in zip(models_cfg, self.weights)
            )
        )

    async def generate(self, prompt: str, **kwargs) -> str:
        """Generate text using a randomly selected model based on weights"""
        model = self._sample_model()
        return await model.generate(prompt, **kwargs)

    async def generate_with_context(
        self, system_message: str, messages: list[dict[str, str]], **kwargs
    ) -> str:
        """Generate text using a system message and conversational context"""
        model = self._sample_model()
        return await model.generate_with_context(system_message, messages, **kwargs)

    def _sample_model(self) -> LLMInterface:
        """Sample a model from the ensemble based on weights"""
        index = self.random_state.choices(range(len(self.models)), weights=self.weights, k=1)[0]
        sampled_model = self.models[index]
        logger.debug(f"Sampled model: {self.models_cfg[index].name}")
        return sampled_model
