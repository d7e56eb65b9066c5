"""Client for the off-chain status API."""

import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from eth_account import Account
from eth_account.messages import encode_defunct

from teedeploy.constants import (
    API_AUTH_EXPIRY_SECONDS,
    CAN_VIEW_APP_LOGS_SELECTOR,
    CAN_VIEW_SENSITIVE_APP_INFO_SELECTOR,
    DEFAULT_API_TIMEOUT_SECONDS,
)
from teedeploy.errors import NetworkError
from teedeploy.models import AppInfo, Credential, EnvironmentConfig

MAX_ADDRESS_COUNT = 5


def _as_str(value) -> str:
    return value if isinstance(value, str) else ""


def parse_app_info(payload: Dict[str, Any], fallback_address: str, address_count: int = 1) -> AppInfo:
    addresses = (((payload.get("addresses") or {}).get("data") or {}).get("evmAddresses")) or []
    evm_addresses = tuple(addresses[: max(1, min(address_count, MAX_ADDRESS_COUNT))])
    return AppInfo(
        address=evm_addresses[0] if evm_addresses else fallback_address,
        status=_as_str(payload.get("app_status")),
        ip=_as_str(payload.get("ip")),
        machine_type=_as_str(payload.get("machine_type")),
        evm_addresses=evm_addresses,
    )


class UserApiClient:
    """Reads app status, IP and instance type, plus the SKU catalog."""

    def __init__(
        self,
        environment: EnvironmentConfig,
        credential: Optional[Credential] = None,
        logger=None,
        requests_module=requests,
        timeout: float = DEFAULT_API_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.environment = environment
        self.credential = credential
        self.logger = logger
        self.requests = requests_module
        self.timeout = timeout
        self.clock = clock

    def auth_headers(self, permission: bytes) -> Dict[str, str]:
        if self.credential is None:
            return {}

        permission_hex = "0x" + permission.hex()
        expiry = int(self.clock()) + API_AUTH_EXPIRY_SECONDS
        message = f"{permission_hex}{expiry:064x}"
        signed = Account.sign_message(encode_defunct(text=message), private_key=self.credential.private_key)
        return {
            "X-Auth-Address": self.credential.address,
            "X-Auth-Permission": permission_hex,
            "X-Auth-Expiry": str(expiry),
            "X-Auth-Signature-R": f"0x{signed.r:064x}",
            "X-Auth-Signature-S": f"0x{signed.s:064x}",
            "X-Auth-Signature-V": f"0x{signed.v:02x}",
        }

    def _request(self, path: str, params=None, permission: Optional[bytes] = None):
        url = f"{self.environment.user_api_url}{path}"
        headers = self.auth_headers(permission) if permission else {}
        try:
            response = self.requests.get(url, params=params, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except self.requests.RequestException as exc:
            raise NetworkError(f"Status API request to {url} failed: {exc}") from exc
        return response

    def _get(self, path: str, params=None, permission: Optional[bytes] = None) -> Dict[str, Any]:
        url = f"{self.environment.user_api_url}{path}"
        response = self._request(path, params=params, permission=permission)
        try:
            payload = response.json()
        except ValueError as exc:
            raise NetworkError(f"Status API returned invalid JSON from {url}: {exc}") from exc

        if self.logger is not None:
            self.logger.debug("Status API %s -> %s", path, payload)
        if not isinstance(payload, dict):
            raise NetworkError(f"Status API returned an unexpected payload from {url}.")
        return payload

    def get_infos(self, app_ids: Sequence[str], address_count: int = 1) -> List[AppInfo]:
        payload = self._get(
            "/info",
            params={"apps": ",".join(app_ids)},
            permission=CAN_VIEW_SENSITIVE_APP_INFO_SELECTOR,
        )
        apps = payload.get("apps") or []
        infos = []
        for index, app in enumerate(apps):
            fallback = app_ids[index] if index < len(app_ids) else app_ids[0]
            infos.append(parse_app_info(app or {}, fallback, address_count))
        return infos

    def get_info(self, app_id: str) -> Optional[AppInfo]:
        infos = self.get_infos([app_id])
        return infos[0] if infos else None

    def get_skus(self) -> List[Dict[str, Any]]:
        payload = self._get("/skus")
        return list(payload.get("skus") or payload.get("SKUs") or [])

    def get_logs(self, app_id: str) -> str:
        """Returns the app's log text. Needs the log-view permission unless logs are public."""
        response = self._request(f"/logs/{app_id}", permission=CAN_VIEW_APP_LOGS_SELECTOR)
        return response.text or ""
