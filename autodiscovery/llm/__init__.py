"""
LLM clients used by the hypothesis and evidence adapters
"""

from autodiscovery.llm.base import LLMInterface
from autodiscovery.llm.ensemble import LLMEnsemble
from autodiscovery.llm.openai import OpenAILLM

__all__ = ["LLMInterface", "LLMEnsemble", "OpenAILLM"]
