"""Target network definitions and lookup."""

from typing import Dict, Optional

from teedeploy.errors import ConfigError
from teedeploy.errors_catalog import actionable_error
from teedeploy.models import EnvironmentConfig

MAINNET_CHAIN_ID = 1
ERC7702_DELEGATOR_ADDRESS = "0x63c0c19a282a1b52b07dd5a65b58948a07dae32b"

ENVIRONMENTS: Dict[str, EnvironmentConfig] = {
    "sepolia": EnvironmentConfig(
        name="sepolia",
        chain_id=11155111,
        default_rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
        app_controller_address="0x0dd810a6ffba6a9820a10d97b659f07d8d23d4E2",
        permission_controller_address="0x44632dfBdCb6D3E21EF613B0ca8A6A0c618F5a37",
        delegator_address=ERC7702_DELEGATOR_ADDRESS,
        user_api_url="https://userapi-compute-sepolia-prod.eigencloud.xyz",
    ),
    "mainnet-alpha": EnvironmentConfig(
        name="mainnet-alpha",
        chain_id=MAINNET_CHAIN_ID,
        default_rpc_url="https://ethereum-rpc.publicnode.com",
        app_controller_address="0xc38d35Fc995e75342A21CBd6D770305b142Fbe67",
        permission_controller_address="0x25E5F8B1E7aDf44518d35D5B2271f114e081f0E5",
        delegator_address=ERC7702_DELEGATOR_ADDRESS,
        user_api_url="https://userapi-compute.eigencloud.xyz",
    ),
}

DEFAULT_ENVIRONMENT = "sepolia"


def resolve_environment(name: str, chain_id: Optional[int] = None) -> EnvironmentConfig:
    environment = ENVIRONMENTS.get(name)
    if environment is None:
        raise ConfigError(
            actionable_error("unknown_environment", name=name, known=", ".join(sorted(ENVIRONMENTS)))
        )

    if chain_id is not None and int(chain_id) != environment.chain_id:
        raise ConfigError(
            f"Environment {name} does not match chain ID {chain_id} "
            f"(expected {environment.chain_id})."
        )

    return environment


def is_mainnet(environment: EnvironmentConfig) -> bool:
    return environment.chain_id == MAINNET_CHAIN_ID
