"""
AutoDiscovery: Bayesian Monte Carlo Tree Search over natural-language hypotheses
"""

from autodiscovery._version import __version__
from autodiscovery.api import build_orchestrator, run_discovery, setup_logging
from autodiscovery.config import Config, EvidenceConfig, LLMConfig, SearchConfig, load_config
from autodiscovery.discovery import DiscoveryOrchestrator, DiscoveryResult, RunStatus
from autodiscovery.exceptions import (
    ConfigValidationError,
    DiscoveryError,
    NumericDomainError,
    OracleError,
    OracleMalformedResponse,
    OracleTimeout,
)
from autodiscovery.interfaces import (
    Evidence,
    EvidenceGatherer,
    EvidenceRef,
    HypothesisCandidate,
    HypothesisGenerator,
)

__all__ = [
    "__version__",
    # High-level API
    "run_discovery",
    "build_orchestrator",
    "setup_logging",
    # Configuration
    "Config",
    "SearchConfig",
    "EvidenceConfig",
    "LLMConfig",
    "load_config",
    # Engine
    "DiscoveryOrchestrator",
    "DiscoveryResult",
    "RunStatus",
    # Ports
    "HypothesisGenerator",
    "HypothesisCandidate",
    "EvidenceGatherer",
    "Evidence",
    "EvidenceRef",
    # Errors
    "DiscoveryError",
    "ConfigValidationError",
    "OracleError",
    "OracleTimeout",
    "OracleMalformedResponse",
    "NumericDomainError",
]
