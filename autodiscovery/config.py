"""
Configuration handling for AutoDiscovery
"""

import math
import os
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from autodiscovery.exceptions import ConfigValidationError

REWARD_MODES = ("belief", "kl", "belief_and_kl")
SELECTION_POLICIES = ("ucb1", "thompson")


@dataclass
class LLMModelConfig:
    """Configuration for a single LLM model"""

    # API configuration
    api_base: str = None
    api_key: str | None = None
    name: str = None

    # Custom LLM client
    init_client: Callable | None = None

    # Weight for model in ensemble
    weight: float = 1.0

    # Generation parameters
    system_message: str | None = None
    temperature: float = None
    top_p: float = None
    max_tokens: int = None

    # Request parameters
    timeout: int = None
    retries: int = None
    retry_delay: int = None

    # Reproducibility
    random_seed: int | None = None


@dataclass
class LLMConfig(LLMModelConfig):
    """Configuration for the LLM ensemble used by the hypothesis and evidence adapters"""

    # API configuration
    api_base: str = "https://api.openai.com/v1"

    # Generation parameters
    system_message: str | None = None
    temperature: float = 0.7
    top_p: float = 0.95
    max_tokens: int = 2048

    # Request parameters
    timeout: int = 60
    retries: int = 3
    retry_delay: int = 5

    # n-model configuration for the ensemble
    models: list[LLMModelConfig] = field(default_factory=list)

    # Shorthand for a single model
    primary_model: str = None

    def __post_init__(self):
        if self.primary_model and not any(m.name == self.primary_model for m in self.models):
            self.models.append(LLMModelConfig(name=self.primary_model, weight=1.0))

        # Update models with shared configuration values
        self.update_model_params(self._shared_params())

    def rebuild_models(self) -> None:
        """Rebuild the models list after a primary_model change"""
        self.models = []
        self.__post_init__()

    def _shared_params(self) -> dict[str, Any]:
        return {
            "api_base": self.api_base,
            "api_key": self.api_key,
            "system_message": self.system_message,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
            "retries": self.retries,
            "retry_delay": self.retry_delay,
            "random_seed": self.random_seed,
        }

    def update_model_params(self, args: dict[str, Any], overwrite: bool = False) -> None:
        """Update model parameters for all models"""
        for model in self.models:
            for key, value in args.items():
                if overwrite or getattr(model, key, None) is None:
                    setattr(model, key, value)


@dataclass
class SearchConfig:
    """Configuration for the Bayesian MCTS search"""

    max_iterations: int = 500
    exploration_constant: float = math.sqrt(2)
    max_depth: int = 10

    # A node is reported as surprising when its score reaches this value
    surprisal_threshold: float = 0.5

    # Progressive widening: at most ceil(k * visits**alpha) children per node
    progressive_widening_k: float = 1.0
    progressive_widening_alpha: float = 0.5

    # Reward: "belief", "kl" or "belief_and_kl"
    reward_mode: str = "kl"
    # Weight of the belief shift in "belief_and_kl" (KL gets 1 - weight)
    belief_kl_weight: float = 0.5

    # Number of targets selected and evaluated concurrently per batch
    parallel_expansion: int = 10

    # "ucb1" or "thompson"
    selection_policy: str = "ucb1"

    # Prior for every new hypothesis
    prior_alpha: float = 0.5
    prior_beta: float = 0.5

    # Number of findings reported in the result
    top_k: int = 10

    # Budgets (None = unlimited)
    time_budget_ms: float | None = None
    cost_budget: float | None = None


@dataclass
class EvidenceConfig:
    """Configuration for calls to the hypothesis generator and evidence gatherers"""

    # Per-call deadline in seconds
    timeout: float = 60.0
    # Retries after a timeout before the node is degraded
    max_retries: int = 2
    # Re-requests after a malformed response
    malformed_retries: int = 1
    retry_delay: float = 0.0

    # LLM belief elicitation
    belief_sample_weight: float = 1.0
    belief_samples: int = 3

    # Pseudo-observations contributed by one dataset test
    dataset_evidence_weight: float = 4.0

    # Proposals requested from the generator per expansion
    hypotheses_per_expansion: int = 3


@dataclass
class Config:
    """Master configuration for AutoDiscovery"""

    # General settings
    random_seed: int | None = 42
    log_level: str = "INFO"
    log_dir: str | None = None

    # JSONL log of surprising findings
    discovery_log_path: str | None = None

    # Optional CSV dataset for statistical evidence
    dataset_path: str | None = None

    # Component configurations
    llm: LLMConfig = field(default_factory=LLMConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    evidence: EvidenceConfig = field(default_factory=EvidenceConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file"""
        with open(path) as f:
            config_dict = yaml.safe_load(f) or {}
        return cls.from_dict(config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "Config":
        """Create configuration from a dictionary"""
        config = Config()

        nested_keys = ["llm", "search", "evidence"]

        # Update top-level fields
        for key, value in config_dict.items():
            if key not in nested_keys and hasattr(config, key):
                setattr(config, key, value)

        # Update nested configs
        if "llm" in config_dict:
            llm_dict = dict(config_dict["llm"])
            if "models" in llm_dict:
                llm_dict["models"] = [LLMModelConfig(**m) for m in llm_dict["models"]]
            config.llm = LLMConfig(**llm_dict)
        if "search" in config_dict:
            config.search = SearchConfig(**config_dict["search"])
        if "evidence" in config_dict:
            config.evidence = EvidenceConfig(**config_dict["evidence"])

        # Ensure models inherit the random seed if not explicitly set
        if config.llm.random_seed is None and config.random_seed is not None:
            config.llm.update_model_params({"random_seed": config.random_seed})

        return config

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for model in data["llm"]["models"]:
            model.pop("init_client", None)
        data["llm"].pop("init_client", None)
        return data

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file"""
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)

    def validate(self) -> None:
        """Check every setting, raising ConfigValidationError listing all problems"""
        problems = []
        s = self.search
        e = self.evidence

        def check(condition: bool, message: str) -> None:
            if not condition:
                problems.append(message)

        check(
            _integer(s.max_iterations) and s.max_iterations > 0,
            f"search.max_iterations must be a positive integer, got {s.max_iterations!r}",
        )
        check(
            _finite(s.exploration_constant) and s.exploration_constant > 0,
            f"search.exploration_constant must be > 0, got {s.exploration_constant!r}",
        )
        check(
            _integer(s.max_depth) and s.max_depth >= 1,
            f"search.max_depth must be an integer >= 1, got {s.max_depth!r}",
        )
        check(
            _finite(s.surprisal_threshold) and s.surprisal_threshold >= 0,
            f"search.surprisal_threshold must be >= 0, got {s.surprisal_threshold!r}",
        )
        check(
            _finite(s.progressive_widening_k) and s.progressive_widening_k > 0,
            f"search.progressive_widening_k must be > 0, got {s.progressive_widening_k!r}",
        )
        check(
            _finite(s.progressive_widening_alpha) and 0 <= s.progressive_widening_alpha <= 1,
            "search.progressive_widening_alpha must lie in [0, 1], "
            f"got {s.progressive_widening_alpha!r}",
        )
        check(
            s.reward_mode in REWARD_MODES,
            f"search.reward_mode must be one of {REWARD_MODES}, got {s.reward_mode!r}",
        )
        check(
            _finite(s.belief_kl_weight) and 0 <= s.belief_kl_weight <= 1,
            f"search.belief_kl_weight must lie in [0, 1], got {s.belief_kl_weight!r}",
        )
        check(
            _integer(s.parallel_expansion) and s.parallel_expansion >= 1,
            f"search.parallel_expansion must be an integer >= 1, got {s.parallel_expansion!r}",
        )
        check(
            s.selection_policy in SELECTION_POLICIES,
            f"search.selection_policy must be one of {SELECTION_POLICIES}, "
            f"got {s.selection_policy!r}",
        )
        check(
            _finite(s.prior_alpha) and s.prior_alpha > 0,
            f"search.prior_alpha must be > 0, got {s.prior_alpha!r}",
        )
        check(
            _finite(s.prior_beta) and s.prior_beta > 0,
            f"search.prior_beta must be > 0, got {s.prior_beta!r}",
        )
        check(
            _integer(s.top_k) and s.top_k >= 1,
            f"search.top_k must be an integer >= 1, got {s.top_k!r}",
        )
        check(
            s.time_budget_ms is None or (_finite(s.time_budget_ms) and s.time_budget_ms > 0),
            f"search.time_budget_ms must be > 0 when set, got {s.time_budget_ms!r}",
        )
        check(
            s.cost_budget is None or (_finite(s.cost_budget) and s.cost_budget > 0),
            f"search.cost_budget must be > 0 when set, got {s.cost_budget!r}",
        )

        check(
            _finite(e.timeout) and e.timeout > 0,
            f"evidence.timeout must be > 0, got {e.timeout!r}",
        )
        check(
            _integer(e.max_retries) and e.max_retries >= 0,
            f"evidence.max_retries must be an integer >= 0, got {e.max_retries!r}",
        )
        check(
            _integer(e.malformed_retries) and e.malformed_retries >= 0,
            f"evidence.malformed_retries must be an integer >= 0, got {e.malformed_retries!r}",
        )
        check(
            _finite(e.retry_delay) and e.retry_delay >= 0,
            f"evidence.retry_delay must be >= 0, got {e.retry_delay!r}",
        )
        check(
            _finite(e.belief_sample_weight) and e.belief_sample_weight >= 0,
            f"evidence.belief_sample_weight must be >= 0, got {e.belief_sample_weight!r}",
        )
        check(
            _integer(e.belief_samples) and e.belief_samples >= 1,
            f"evidence.belief_samples must be an integer >= 1, got {e.belief_samples!r}",
        )
        check(
            _finite(e.dataset_evidence_weight) and e.dataset_evidence_weight >= 0,
            f"evidence.dataset_evidence_weight must be >= 0, got {e.dataset_evidence_weight!r}",
        )
        check(
            _integer(e.hypotheses_per_expansion) and e.hypotheses_per_expansion >= 1,
            "evidence.hypotheses_per_expansion must be an integer >= 1, "
            f"got {e.hypotheses_per_expansion!r}",
        )

        if problems:
            raise ConfigValidationError(problems)


def _integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _finite(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from a YAML file or use defaults"""
    if config_path and os.path.exists(config_path):
        config = Config.from_yaml(config_path)
    else:
        config = Config()

    # Use environment variables if available
    api_key = os.environ.get("OPENAI_API_KEY")
    api_base = os.environ.get("OPENAI_API_BASE")
    if config.llm.api_key is None and api_key:
        config.llm.api_key = api_key
    if api_base and not (config_path and os.path.exists(config_path)):
        config.llm.api_base = api_base
    config.llm.update_model_params({"api_key": config.llm.api_key, "api_base": config.llm.api_base})

    return config
