"""Read access and call encoding for the application controller contract."""

from teedeploy.models import ContractStatus, EnvironmentConfig
from teedeploy.services.contracts import (
    decode_address,
    decode_single,
    encode_app_call,
    encode_calculate_app_id,
)

LIFECYCLE_FUNCTIONS = {
    "start": "startApp",
    "stop": "stopApp",
    "terminate": "terminateApp",
}


class AppControllerClient:
    def __init__(self, transport, environment: EnvironmentConfig):
        self.transport = transport
        self.environment = environment

    def _call(self, data: bytes) -> bytes:
        return self.transport.call(self.environment.app_controller_address, data)

    def calculate_app_id(self, owner: str, salt: bytes) -> str:
        return decode_address(self._call(encode_calculate_app_id(owner, salt)))

    def get_app_status(self, app_id: str) -> ContractStatus:
        code = decode_single("uint8", self._call(encode_app_call("getAppStatus", app_id)))
        return ContractStatus.from_code(code)

    def get_latest_release_block(self, app_id: str) -> int:
        return decode_single("uint32", self._call(encode_app_call("getAppLatestReleaseBlockNumber", app_id)))

    def get_active_app_count(self, owner: str) -> int:
        return decode_single("uint32", self._call(encode_app_call("getActiveAppCount", owner)))

    def get_max_active_apps(self, owner: str) -> int:
        return decode_single("uint32", self._call(encode_app_call("getMaxActiveAppsPerUser", owner)))

    def lifecycle_call(self, action: str, app_id: str) -> bytes:
        function_name = LIFECYCLE_FUNCTIONS.get(action)
        if function_name is None:
            raise ValueError(f"Unsupported lifecycle action: {action}")
        return encode_app_call(function_name, app_id)
