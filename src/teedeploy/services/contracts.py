"""ABI encoding and decoding for the application and permission controllers."""

from typing import Dict, Optional, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_bytes, to_checksum_address

from teedeploy.constants import (
    API_PERMISSIONS_TARGET_ADDRESS,
    ANYONE_CAN_CALL_ADDRESS,
    BATCH_EXECUTE_MODE,
    CAN_VIEW_APP_LOGS_SELECTOR,
)
from teedeploy.models import Execution, ReleaseDescriptor

RELEASE_TYPE = "(((bytes32,string)[],uint32),bytes,bytes)"
EXECUTIONS_TYPE = "(address,uint256,bytes)[]"

ERROR_STRING_SELECTOR = bytes.fromhex("08c379a0")
PANIC_SELECTOR = bytes.fromhex("4e487b71")

APP_CONTROLLER_ERRORS = {
    "MaxActiveAppsExceeded": (
        "you have reached your app deployment limit. Request a higher limit before deploying again"
    ),
    "GlobalMaxActiveAppsExceeded": (
        "the platform has reached the maximum number of active apps. please try again later"
    ),
    "InvalidPermissions": "you don't have permission to perform this operation",
    "AppAlreadyExists": "an app with this owner and salt already exists",
    "AppDoesNotExist": "the specified app does not exist",
    "InvalidAppStatus": "the app is in an invalid state for this operation",
    "MoreThanOneArtifact": "only one artifact is allowed per release",
    "InvalidSignature": "invalid signature provided",
    "SignatureExpired": "the provided signature has expired",
    "InvalidReleaseMetadataURI": "invalid release metadata URI provided",
    "InvalidShortString": "invalid short string format",
}


def selector(signature: str) -> bytes:
    return function_signature_to_4byte_selector(signature)


_ERROR_SELECTORS: Dict[bytes, str] = {selector(f"{name}()"): name for name in APP_CONTROLLER_ERRORS}


def encode_call(signature: str, types: Sequence[str], args: Sequence) -> bytes:
    return selector(signature) + encode(list(types), list(args))


def _release_tuple(release: ReleaseDescriptor) -> Tuple:
    artifacts = [(artifact.digest, artifact.registry) for artifact in release.artifacts]
    return (
        (artifacts, release.upgrade_by_time),
        release.public_env,
        release.encrypted_env,
    )


def encode_create_app(salt: bytes, release: ReleaseDescriptor) -> bytes:
    return encode_call(
        f"createApp(bytes32,{RELEASE_TYPE})",
        ["bytes32", RELEASE_TYPE],
        [salt, _release_tuple(release)],
    )


def encode_upgrade_app(app_id: str, release: ReleaseDescriptor) -> bytes:
    return encode_call(
        f"upgradeApp(address,{RELEASE_TYPE})",
        ["address", RELEASE_TYPE],
        [to_checksum_address(app_id), _release_tuple(release)],
    )


def encode_app_call(function_name: str, app_id: str) -> bytes:
    """Encodes the single-address controller calls (startApp, stopApp, terminateApp, ...)."""
    return encode_call(f"{function_name}(address)", ["address"], [to_checksum_address(app_id)])


def encode_accept_admin(app_id: str) -> bytes:
    return encode_app_call("acceptAdmin", app_id)


def _log_permission_args(app_id: str) -> list:
    return [
        to_checksum_address(app_id),
        to_checksum_address(ANYONE_CAN_CALL_ADDRESS),
        to_checksum_address(API_PERMISSIONS_TARGET_ADDRESS),
        CAN_VIEW_APP_LOGS_SELECTOR,
    ]


PERMISSION_ARG_TYPES = ["address", "address", "address", "bytes4"]


def encode_set_log_permission(app_id: str, public: bool) -> bytes:
    function_name = "setAppointee" if public else "removeAppointee"
    return encode_call(
        f"{function_name}(address,address,address,bytes4)",
        PERMISSION_ARG_TYPES,
        _log_permission_args(app_id),
    )


def encode_can_call_logs(app_id: str) -> bytes:
    return encode_call(
        "canCall(address,address,address,bytes4)",
        PERMISSION_ARG_TYPES,
        _log_permission_args(app_id),
    )


def encode_calculate_app_id(owner: str, salt: bytes) -> bytes:
    return encode_call(
        "calculateAppId(address,bytes32)",
        ["address", "bytes32"],
        [to_checksum_address(owner), salt],
    )


def encode_execute_batch(executions: Sequence[Execution]) -> bytes:
    """Encodes ``execute(bytes32 mode, bytes executionData)`` for the EIP-7702 delegator."""
    execution_data = encode(
        [EXECUTIONS_TYPE],
        [[(to_checksum_address(item.target), item.value, item.call_data) for item in executions]],
    )
    return encode_call("execute(bytes32,bytes)", ["bytes32", "bytes"], [BATCH_EXECUTE_MODE, execution_data])


def decode_single(abi_type: str, data: bytes):
    return decode([abi_type], data)[0]


def decode_address(data: bytes) -> str:
    return to_checksum_address(decode_single("address", data))


def decode_revert_reason(data) -> Optional[str]:
    """Turns revert data into a readable reason, or None when it cannot be decoded."""
    if data is None:
        return None
    if isinstance(data, str):
        try:
            data = to_bytes(hexstr=data)
        except ValueError:
            return None
    if len(data) < 4:
        return None

    prefix, payload = data[:4], data[4:]
    try:
        if prefix == ERROR_STRING_SELECTOR:
            return decode_single("string", payload)
        if prefix == PANIC_SELECTOR:
            return f"panic code {decode_single('uint256', payload):#x}"
    except (DecodingError, UnicodeDecodeError):
        return f"contract error 0x{prefix.hex()}"

    error_name = _ERROR_SELECTORS.get(prefix)
    if error_name:
        return APP_CONTROLLER_ERRORS[error_name]
    return f"contract error 0x{prefix.hex()}"
