"""Protocol constants shared across teedeploy services."""


# Permission controller appointee for "anyone" and the API permissions target.
ANYONE_CAN_CALL_ADDRESS = "0x493219d9949348178af1f58740655951a8cd110c"
API_PERMISSIONS_TARGET_ADDRESS = "0x57ee1fb74c1087e26446abc4fb87fd8f07c43d8d"
CAN_VIEW_APP_LOGS_SELECTOR = bytes.fromhex("2fd3f2fe")
CAN_VIEW_SENSITIVE_APP_INFO_SELECTOR = bytes.fromhex("0e67b22f")

# ERC-7579 batch call mode: callType 0x01, everything else zeroed.
BATCH_EXECUTE_MODE = bytes([0x01]) + bytes(31)
DELEGATION_CODE_PREFIX = bytes.fromhex("ef0100")
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

UPGRADE_WINDOW_SECONDS = 3600
REGISTRY_PROPAGATION_SECONDS = 3.0
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_API_TIMEOUT_SECONDS = 30.0
DEFAULT_RECEIPT_TIMEOUT_SECONDS = 300.0
API_AUTH_EXPIRY_SECONDS = 5 * 60

PRIVATE_KEY_ENV_VAR = "TEEDEPLOY_PRIVATE_KEY"
RPC_URL_ENV_VAR = "RPC_URL"

BUILD_PLATFORM = "linux/amd64"
BUILD_TAG_PREFIX = "teedeploy"
DOCKER_HUB_REGISTRY = "docker.io"

MACHINE_TYPE_ENV_KEY = "EIGEN_MACHINE_TYPE_PUBLIC"
PUBLIC_ENV_SUFFIX = "_PUBLIC"
DROPPED_ENV_KEYS = ("MNEMONIC",)

KMS_APP_ID_HEADER = "x-eigenx-app-id"
