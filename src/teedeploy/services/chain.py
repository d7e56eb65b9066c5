"""Chain transport for teedeploy, a thin layer over web3 and eth-account."""

from typing import Any, Callable, Dict, Optional

import requests
from eth_account import Account
from eth_utils import to_bytes, to_checksum_address
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from teedeploy.constants import DEFAULT_API_TIMEOUT_SECONDS, DEFAULT_RECEIPT_TIMEOUT_SECONDS, DELEGATION_CODE_PREFIX
from teedeploy.errors import ChainStateError, NetworkError
from teedeploy.models import Credential, GasEstimate, TxReceipt
from teedeploy.services.contracts import decode_revert_reason

BASE_FEE_MULTIPLIER_NUMERATOR = 12
BASE_FEE_MULTIPLIER_DENOMINATOR = 10


def delegation_code(delegator_address: str) -> bytes:
    return DELEGATION_CODE_PREFIX + to_bytes(hexstr=delegator_address)


class ChainTransport:
    """Reads chain state and submits signed transactions through one RPC endpoint.

    Every failure is translated into the teedeploy error taxonomy: connection
    problems become ``NetworkError``, reverts and rejected transactions become
    ``ChainStateError``.
    """

    def __init__(
        self,
        web3,
        logger,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS,
        account_module=Account,
    ):
        self.web3 = web3
        self.logger = logger
        self.receipt_timeout = receipt_timeout
        self.account = account_module

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        logger,
        timeout: float = DEFAULT_API_TIMEOUT_SECONDS,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS,
    ) -> "ChainTransport":
        # No provider-level retries.
        provider = Web3.HTTPProvider(
            rpc_url,
            request_kwargs={"timeout": timeout},
            exception_retry_configuration=None,
        )
        web3 = Web3(provider)
        return cls(web3, logger=logger, receipt_timeout=receipt_timeout)

    def _rpc(self, description: str, callback: Callable, *args, **kwargs):
        try:
            return callback(*args, **kwargs)
        except ContractLogicError as exc:
            reason = decode_revert_reason(exc.data) or exc.message or str(exc)
            raise ChainStateError(f"{description} reverted: {reason}") from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"RPC request failed during {description}: {exc}") from exc
        except TimeExhausted as exc:
            raise NetworkError(f"Timed out during {description}: {exc}") from exc
        except Web3Exception as exc:
            raise ChainStateError(f"RPC error during {description}: {exc}") from exc
        except ConnectionError as exc:
            raise NetworkError(f"RPC connection failed during {description}: {exc}") from exc

    def chain_id(self) -> int:
        return int(self._rpc("chain id query", lambda: self.web3.eth.chain_id))

    def call(self, to: str, data: bytes, sender: Optional[str] = None) -> bytes:
        tx: Dict[str, Any] = {"to": to_checksum_address(to), "data": data}
        if sender:
            tx["from"] = to_checksum_address(sender)
        return bytes(self._rpc("eth_call", self.web3.eth.call, tx, "latest"))

    def get_code(self, address: str) -> bytes:
        return bytes(self._rpc("code lookup", self.web3.eth.get_code, to_checksum_address(address)))

    def is_delegated(self, address: str, delegator_address: str) -> bool:
        return self.get_code(address) == delegation_code(delegator_address)

    def estimate_gas(
        self,
        sender: str,
        to: str,
        data: bytes,
        code_override: Optional[bytes] = None,
    ) -> int:
        tx = {
            "from": to_checksum_address(sender),
            "to": to_checksum_address(to),
            "data": data,
            "value": 0,
        }
        state_override = None
        if code_override is not None:
            state_override = {to_checksum_address(sender): {"code": Web3.to_hex(code_override)}}
        return int(self._rpc("gas simulation", self.web3.eth.estimate_gas, tx, None, state_override))

    def fee_estimate(self):
        """Returns ``(max_fee_per_gas, max_priority_fee_per_gas)``."""
        priority_fee = int(self._rpc("priority fee query", lambda: self.web3.eth.max_priority_fee))
        latest = self._rpc("block query", self.web3.eth.get_block, "latest")
        base_fee = int(latest.get("baseFeePerGas") or 0)
        max_fee = base_fee * BASE_FEE_MULTIPLIER_NUMERATOR // BASE_FEE_MULTIPLIER_DENOMINATOR + priority_fee
        return max_fee, priority_fee

    def pending_nonce(self, address: str) -> int:
        return int(
            self._rpc(
                "nonce query",
                self.web3.eth.get_transaction_count,
                to_checksum_address(address),
                "pending",
            )
        )

    def send_transaction(
        self,
        credential: Credential,
        chain_id: int,
        to: str,
        data: bytes,
        gas: GasEstimate,
        delegate_to: Optional[str] = None,
    ) -> str:
        """Signs and broadcasts one transaction, returning its hash.

        With ``delegate_to`` the transaction carries an EIP-7702 authorization
        that points the sender's code at that delegator.
        """
        nonce = self.pending_nonce(credential.address)
        tx: Dict[str, Any] = {
            "chainId": chain_id,
            "nonce": nonce,
            "to": to_checksum_address(to),
            "value": 0,
            "data": data,
            "gas": gas.gas_limit,
            "maxFeePerGas": gas.max_fee_per_gas,
            "maxPriorityFeePerGas": gas.max_priority_fee_per_gas,
        }

        if delegate_to:
            # The sender's own nonce is bumped by the transaction before the
            # authorization is processed.
            authorization = self.account.sign_authorization(
                {
                    "chainId": chain_id,
                    "address": to_checksum_address(delegate_to),
                    "nonce": nonce + 1,
                },
                credential.private_key,
            )
            tx["type"] = 4
            tx["authorizationList"] = [authorization]
            self.logger.debug("Attaching EIP-7702 authorization for delegator %s", delegate_to)

        signed = self.account.sign_transaction(tx, credential.private_key)
        tx_hash = self._rpc("transaction broadcast", self.web3.eth.send_raw_transaction, signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        receipt = self._rpc(
            "receipt wait",
            self.web3.eth.wait_for_transaction_receipt,
            tx_hash,
            timeout=self.receipt_timeout,
        )
        return TxReceipt(
            tx_hash=tx_hash,
            block_number=int(receipt["blockNumber"]),
            succeeded=int(receipt["status"]) == 1,
        )

    def revert_reason(self, sender: str, to: str, data: bytes) -> str:
        """Replays a call to recover the revert reason of a failed transaction."""
        try:
            self.call(to, data, sender=sender)
        except ChainStateError as exc:
            return str(exc)
        return "unknown reason"
