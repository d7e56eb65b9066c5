"""
teedeploy - Deploy and upgrade TEE apps anchored on-chain
"""

__version__ = "0.1.0"

from .core import TeeDeployer
from .errors import DeployerError

__all__ = ["TeeDeployer", "DeployerError"]
