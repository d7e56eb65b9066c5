from eth_abi import decode, encode

from teedeploy.constants import BATCH_EXECUTE_MODE, CAN_VIEW_APP_LOGS_SELECTOR
from teedeploy.models import Artifact, Execution, ReleaseDescriptor
from teedeploy.services.contracts import (
    EXECUTIONS_TYPE,
    decode_revert_reason,
    encode_create_app,
    encode_execute_batch,
    encode_set_log_permission,
    encode_upgrade_app,
    selector,
)

APP_ID = "0x1111111111111111111111111111111111111111"
CONTROLLER = "0x0dd810a6ffba6a9820a10d97b659f07d8d23d4E2"


def _release():
    return ReleaseDescriptor(
        artifacts=(Artifact(digest=bytes(range(32)), registry="docker.io/acme/app"),),
        upgrade_by_time=1_700_003_600,
        public_env=b'{"A_PUBLIC":"1"}',
        encrypted_env=b"jwe-token",
    )


def test_execute_batch_uses_delegator_selector_and_batch_mode():
    executions = [Execution(CONTROLLER, b"\x01\x02"), Execution(APP_ID, b"\x03")]

    data = encode_execute_batch(executions)

    assert data[:4] == bytes.fromhex("e9ae5c53")
    mode, execution_data = decode(["bytes32", "bytes"], data[4:])
    assert mode == BATCH_EXECUTE_MODE
    decoded = decode([EXECUTIONS_TYPE], execution_data)[0]
    assert [item[2] for item in decoded] == [b"\x01\x02", b"\x03"]
    assert decoded[0][0].lower() == CONTROLLER.lower()


def test_create_and_upgrade_use_different_selectors():
    release = _release()

    create = encode_create_app(b"\x07" * 32, release)
    upgrade = encode_upgrade_app(APP_ID, release)

    assert create[:4] != upgrade[:4]
    assert b"docker.io/acme/app" in create
    assert b"docker.io/acme/app" in upgrade


def test_log_permission_call_toggles_between_set_and_remove():
    public = encode_set_log_permission(APP_ID, public=True)
    private = encode_set_log_permission(APP_ID, public=False)

    assert public[:4] == selector("setAppointee(address,address,address,bytes4)")
    assert private[:4] == selector("removeAppointee(address,address,address,bytes4)")
    args = decode(["address", "address", "address", "bytes4"], public[4:])
    assert args[0].lower() == APP_ID
    assert args[3] == CAN_VIEW_APP_LOGS_SELECTOR


def test_decode_revert_reason_handles_error_string():
    data = selector("Error(string)") + encode(["string"], ["insufficient funds"])

    assert decode_revert_reason(data) == "insufficient funds"
    assert decode_revert_reason("0x" + data.hex()) == "insufficient funds"


def test_decode_revert_reason_maps_known_controller_errors():
    assert decode_revert_reason(selector("AppDoesNotExist()")) == "the specified app does not exist"


def test_decode_revert_reason_reports_unknown_selectors():
    assert decode_revert_reason(bytes.fromhex("deadbeef")) == "contract error 0xdeadbeef"
    assert decode_revert_reason(None) is None
    assert decode_revert_reason(b"\x01") is None


def test_decode_revert_reason_tolerates_truncated_payloads():
    truncated = selector("Error(string)") + bytes(8)

    assert decode_revert_reason(truncated) == "contract error 0x08c379a0"
    assert decode_revert_reason(bytes.fromhex("4e487b71") + b"\x01") == "contract error 0x4e487b71"
