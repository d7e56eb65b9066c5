import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from teedeploy.errors import NetworkError
from teedeploy.models import Credential
from teedeploy.services.environment import ENVIRONMENTS
from teedeploy.services.user_api import UserApiClient, parse_app_info

KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
APP_ID = "0x1111111111111111111111111111111111111111"


class FakeRequestException(Exception):
    pass


class FakeResponse:
    def __init__(self, payload, status_error=None, text=""):
        self.payload = payload
        self.status_error = status_error
        self.text = text

    def raise_for_status(self):
        if self.status_error:
            raise self.status_error

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeRequestsModule:
    RequestException = FakeRequestException

    def __init__(self, response):
        self.response = response
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def build_client(response, credential=None):
    requests_module = FakeRequestsModule(response)
    client = UserApiClient(
        ENVIRONMENTS["sepolia"],
        credential=credential,
        requests_module=requests_module,
        timeout=5,
        clock=lambda: 1_000,
    )
    return client, requests_module


def test_get_info_parses_first_app():
    payload = {
        "apps": [
            {
                "app_status": "Running",
                "ip": "10.0.0.5",
                "machine_type": "g1-standard-4t",
                "addresses": {"data": {"evmAddresses": ["0xabc"]}},
            }
        ]
    }
    client, requests_module = build_client(FakeResponse(payload))

    info = client.get_info(APP_ID)

    assert info.status == "Running"
    assert info.ip == "10.0.0.5"
    assert info.machine_type == "g1-standard-4t"
    assert info.address == "0xabc"
    call = requests_module.calls[0]
    assert call["url"] == "https://userapi-compute-sepolia-prod.eigencloud.xyz/info"
    assert call["params"] == {"apps": APP_ID}
    assert call["timeout"] == 5


def test_get_info_without_apps_is_none():
    client, _ = build_client(FakeResponse({"apps": []}))

    assert client.get_info(APP_ID) is None


def test_auth_headers_sign_permission_and_expiry():
    client, _ = build_client(FakeResponse({}), credential=Credential(KEY, ADDRESS))

    headers = client.auth_headers(bytes.fromhex("0e67b22f"))

    assert headers["X-Auth-Address"] == ADDRESS
    assert headers["X-Auth-Permission"] == "0x0e67b22f"
    assert headers["X-Auth-Expiry"] == "1300"
    message = encode_defunct(text="0x0e67b22f" + f"{1300:064x}")
    expected = Account.sign_message(message, private_key=KEY)
    assert headers["X-Auth-Signature-R"] == f"0x{expected.r:064x}"
    assert headers["X-Auth-Signature-V"] == f"0x{expected.v:02x}"


def test_transport_failure_becomes_network_error():
    client, _ = build_client(FakeRequestException("connection reset"))

    with pytest.raises(NetworkError, match="connection reset"):
        client.get_info(APP_ID)


def test_invalid_json_becomes_network_error():
    client, _ = build_client(FakeResponse(ValueError("Expecting value")))

    with pytest.raises(NetworkError, match="invalid JSON"):
        client.get_skus()


def test_get_skus_accepts_either_key():
    client, requests_module = build_client(FakeResponse({"SKUs": [{"sku": "g1-standard-4t"}]}))

    assert client.get_skus() == [{"sku": "g1-standard-4t"}]
    assert requests_module.calls[0]["headers"] == {}


def test_parse_app_info_falls_back_to_app_id():
    info = parse_app_info({"app_status": None}, APP_ID)

    assert info.address == APP_ID
    assert info.status == ""
    assert info.evm_addresses == ()


def test_get_logs_returns_text_with_log_permission_headers():
    response = FakeResponse(None, text="booting\nready\n")
    client, requests_module = build_client(response, credential=Credential(KEY, ADDRESS))

    assert client.get_logs(APP_ID) == "booting\nready\n"
    call = requests_module.calls[0]
    assert call["url"] == f"https://userapi-compute-sepolia-prod.eigencloud.xyz/logs/{APP_ID}"
    assert call["headers"]["X-Auth-Permission"] == "0x2fd3f2fe"
    assert call["timeout"] == 5


def test_get_logs_http_error_becomes_network_error():
    response = FakeResponse(None, status_error=FakeRequestException("403 Forbidden"))
    client, _ = build_client(response, credential=Credential(KEY, ADDRESS))

    with pytest.raises(NetworkError, match="403 Forbidden"):
        client.get_logs(APP_ID)
