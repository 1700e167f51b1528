"""
Error taxonomy for AutoDiscovery
"""


class DiscoveryError(Exception):
    """Base class for all AutoDiscovery errors"""


class ConfigValidationError(DiscoveryError, ValueError):
    """Raised before a run starts when the configuration is malformed"""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + "; ".join(self.problems))


class OracleError(DiscoveryError):
    """Base class for failures of an external oracle (generator or evidence source)"""


class OracleTimeout(OracleError):
    """An oracle call exceeded its deadline"""


class OracleMalformedResponse(OracleError):
    """An oracle response could not be parsed into the expected shape"""


class NumericDomainError(DiscoveryError, ValueError):
    """A special function received an argument outside its domain"""
