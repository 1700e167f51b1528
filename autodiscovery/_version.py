"""Version information for autodiscovery"""

__version__ = "0.1.0"
