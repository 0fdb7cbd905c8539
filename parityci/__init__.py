"""
parityci - Local-first CI runner

Runs a project's declared build/test steps inside rootless containers so that
a developer machine and a CI server execute identical environments.
"""

__version__ = "0.1.0"


__all__ = ["ParityConfig", "load_config", "get_parityci_home"]

from .config import ParityConfig, load_config, get_parityci_home
