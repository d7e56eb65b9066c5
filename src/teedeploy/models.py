"""Shared domain models for teedeploy."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, Optional, Tuple

WEI_PER_ETH = Decimal(10) ** 18


class ContractStatus(IntEnum):
    """Application status codes stored by the application controller."""

    UNKNOWN = -1
    NONE = 0
    STARTED = 1
    STOPPED = 2
    TERMINATED = 3
    SUSPENDED = 4

    @classmethod
    def from_code(cls, code: int) -> "ContractStatus":
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN

    @property
    def label(self) -> str:
        return CONTRACT_STATUS_LABELS[self]


CONTRACT_STATUS_LABELS = {
    ContractStatus.UNKNOWN: "Unknown",
    ContractStatus.NONE: "None",
    ContractStatus.STARTED: "Running",
    ContractStatus.STOPPED: "Stopped",
    ContractStatus.TERMINATED: "Terminated",
    ContractStatus.SUSPENDED: "Suspended",
}


class ApiStatus:
    """Status strings reported by the off-chain status API that the watcher acts on."""

    RUNNING = "Running"
    STOPPED = "Stopped"
    FAILED = "Failed"
    EXITED = "Exited"


class LogVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    OFF = "off"

    @property
    def log_redirect(self) -> str:
        return "" if self is LogVisibility.OFF else "always"

    @property
    def public_logs(self) -> bool:
        return self is LogVisibility.PUBLIC


class WatchTarget(str, Enum):
    RUNNING = "running"
    UPGRADE_COMPLETE = "upgrade_complete"


@dataclass(frozen=True)
class Credential:
    """Signing key plus the checksummed address derived from it."""

    private_key: str = field(repr=False)
    address: str


@dataclass(frozen=True)
class EnvironmentConfig:
    name: str
    chain_id: int
    default_rpc_url: str
    app_controller_address: str
    permission_controller_address: str
    delegator_address: str
    user_api_url: str


@dataclass(frozen=True)
class PreflightContext:
    """Everything a pipeline stage needs to talk to the target chain."""

    credential: Credential
    environment: EnvironmentConfig
    rpc_url: str
    transport: Any


@dataclass(frozen=True)
class Artifact:
    digest: bytes
    registry: str

    def __post_init__(self):
        if len(self.digest) != 32:
            raise ValueError(f"Artifact digest must be 32 bytes, got {len(self.digest)}")
        if not self.registry:
            raise ValueError("Artifact registry must not be empty")


@dataclass(frozen=True)
class ReleaseDescriptor:
    """Image artifacts and environment payloads submitted with a deploy or upgrade."""

    artifacts: Tuple[Artifact, ...]
    upgrade_by_time: int
    public_env: bytes
    encrypted_env: bytes

    def __post_init__(self):
        if not self.artifacts:
            raise ValueError("Release must contain at least one artifact")


@dataclass(frozen=True)
class Execution:
    target: str
    call_data: bytes
    value: int = 0


@dataclass(frozen=True)
class PreparedBatch:
    """Ordered calls plus the signer context; built but not yet submitted."""

    app_id: str
    executions: Tuple[Execution, ...]
    context: PreflightContext
    image_ref: str
    permission_change_needed: bool
    description: str


@dataclass(frozen=True)
class GasEstimate:
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    @property
    def max_cost_wei(self) -> int:
        return self.gas_limit * self.max_fee_per_gas

    @property
    def max_cost_eth(self) -> str:
        return format_eth(self.max_cost_wei)


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    block_number: int
    succeeded: bool


@dataclass(frozen=True)
class AppInfo:
    """One app entry returned by the status API."""

    address: str
    status: str = ""
    ip: str = ""
    machine_type: str = ""
    evm_addresses: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AppStatusSnapshot:
    contract_status: ContractStatus
    api_status: str
    display_status: str
    ip: Optional[str] = None
    instance_type: Optional[str] = None
    release_block: int = 0


@dataclass(frozen=True)
class DeployResult:
    app_id: str
    tx_hash: str
    image_ref: str
    ip: Optional[str]


@dataclass(frozen=True)
class UpgradeResult:
    app_id: str
    tx_hash: str
    image_ref: str
    status: str


def format_eth(wei: int) -> str:
    """Formats a wei amount as ETH with up to six decimals."""
    text = f"{Decimal(wei) / WEI_PER_ETH:.6f}".rstrip("0").rstrip(".")
    if text == "0" and wei > 0:
        return "<0.000001"
    return text
