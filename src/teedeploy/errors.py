"""Domain errors for teedeploy."""


class DeployerError(RuntimeError):
    """Raised when a deploy, upgrade or lifecycle operation cannot continue safely."""


class ConfigError(DeployerError):
    """Unknown environment, missing RPC URL or invalid option values."""


class AuthError(DeployerError):
    """Missing or malformed credential, or a signing failure."""


class NetworkError(DeployerError):
    """RPC node, registry or status API unreachable."""


class ChainStateError(DeployerError):
    """Chain id mismatch, simulated revert or reverted transaction."""


class BuildError(DeployerError):
    """Image build, push or digest resolution failed."""


class PushPermissionError(BuildError):
    """The registry denied write access for the image push."""


class ConvergenceFailure(DeployerError):
    """The status API reported a terminal failure while watching."""
