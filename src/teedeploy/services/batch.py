"""EIP-7702 batch building, gas estimation and execution."""

from typing import List, Optional

from teedeploy.constants import ZERO_ADDRESS
from teedeploy.errors import ChainStateError
from teedeploy.models import (
    Execution,
    GasEstimate,
    PreflightContext,
    PreparedBatch,
    ReleaseDescriptor,
    TxReceipt,
)
from teedeploy.services.chain import delegation_code
from teedeploy.services.contracts import (
    encode_accept_admin,
    encode_create_app,
    encode_execute_batch,
    encode_set_log_permission,
    encode_upgrade_app,
)

GAS_LIMIT_BUFFER_PERCENT = 20
AUTHORIZATION_GAS = 25_000


class BatchBuilder:
    """Assembles the ordered controller calls for a deploy or an upgrade.

    Building never touches the network, so identical inputs always produce
    identical calldata.
    """

    def build_batch(
        self,
        app_id: str,
        release: ReleaseDescriptor,
        desired_public_logs: bool,
        permission_change_needed: bool,
        image_ref: str,
        context: PreflightContext,
        salt: Optional[bytes] = None,
    ) -> PreparedBatch:
        environment = context.environment
        executions: List[Execution] = []

        if salt is not None:
            if len(salt) != 32:
                raise ValueError("Deploy salt must be 32 bytes")
            executions.append(Execution(environment.app_controller_address, encode_create_app(salt, release)))
            executions.append(Execution(environment.permission_controller_address, encode_accept_admin(app_id)))
            action = "Deploy"
        else:
            executions.append(Execution(environment.app_controller_address, encode_upgrade_app(app_id, release)))
            action = "Upgrade"

        if permission_change_needed:
            executions.append(
                Execution(
                    environment.permission_controller_address,
                    encode_set_log_permission(app_id, public=desired_public_logs),
                )
            )
            visibility = "public" if desired_public_logs else "private"
            description = f"{action} {app_id} ({image_ref}) and make logs {visibility}"
        else:
            description = f"{action} {app_id} ({image_ref})"

        return PreparedBatch(
            app_id=app_id,
            executions=tuple(executions),
            context=context,
            image_ref=image_ref,
            permission_change_needed=permission_change_needed,
            description=description,
        )


class BatchExecutor:
    """Simulates, signs and submits prepared batches as one self-call transaction."""

    def __init__(self, logger, console):
        self.logger = logger
        self.console = console

    def _needs_authorization(self, context: PreflightContext) -> bool:
        return not context.transport.is_delegated(
            context.credential.address, context.environment.delegator_address
        )

    def _fees(self, context: PreflightContext, gas_used: int, needs_authorization: bool) -> GasEstimate:
        max_fee, priority_fee = context.transport.fee_estimate()
        gas_limit = gas_used * (100 + GAS_LIMIT_BUFFER_PERCENT) // 100
        if needs_authorization:
            gas_limit += AUTHORIZATION_GAS
        return GasEstimate(
            gas_limit=gas_limit,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    def estimate_gas(self, batch: PreparedBatch) -> GasEstimate:
        context = batch.context
        sender = context.credential.address
        needs_authorization = self._needs_authorization(context)
        code_override = delegation_code(context.environment.delegator_address) if needs_authorization else None

        gas_used = context.transport.estimate_gas(
            sender,
            sender,
            encode_execute_batch(batch.executions),
            code_override=code_override,
        )
        estimate = self._fees(context, gas_used, needs_authorization)
        self.logger.debug(
            "Estimated %s gas for %s call(s), max cost %s ETH",
            estimate.gas_limit,
            len(batch.executions),
            estimate.max_cost_eth,
        )
        return estimate

    def _submit(
        self,
        context: PreflightContext,
        to: str,
        data: bytes,
        gas: GasEstimate,
        description: str,
        delegate_to: Optional[str] = None,
    ) -> TxReceipt:
        transport = context.transport
        tx_hash = transport.send_transaction(
            context.credential,
            context.environment.chain_id,
            to,
            data,
            gas,
            delegate_to=delegate_to,
        )
        self.console.print(f"[blue]{description}: transaction sent {tx_hash}[/blue]")
        self.logger.info("Waiting for transaction %s", tx_hash)

        receipt = transport.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            reason = transport.revert_reason(context.credential.address, to, data)
            raise ChainStateError(f"Transaction reverted: {tx_hash}. Reason: {reason}")

        self.logger.info("Transaction %s confirmed in block %s", tx_hash, receipt.block_number)
        return receipt

    def execute(self, batch: PreparedBatch, gas: Optional[GasEstimate] = None) -> TxReceipt:
        context = batch.context
        if gas is None:
            gas = self.estimate_gas(batch)

        delegate_to = context.environment.delegator_address if self._needs_authorization(context) else None
        return self._submit(
            context,
            context.credential.address,
            encode_execute_batch(batch.executions),
            gas,
            batch.description,
            delegate_to=delegate_to,
        )

    def send_call(self, context: PreflightContext, target: str, call_data: bytes, description: str) -> TxReceipt:
        """Sends a single plain contract call, e.g. start/stop/terminate."""
        sender = context.credential.address
        gas_used = context.transport.estimate_gas(sender, target, call_data)
        gas = self._fees(context, gas_used, needs_authorization=False)
        return self._submit(context, target, call_data, gas, description)

    def is_account_delegated(self, context: PreflightContext) -> bool:
        return bool(context.transport.get_code(context.credential.address))

    def estimate_undelegate(self, context: PreflightContext) -> GasEstimate:
        sender = context.credential.address
        # Simulate against the account as a plain EOA.
        gas_used = context.transport.estimate_gas(sender, sender, b"", code_override=b"")
        return self._fees(context, gas_used, needs_authorization=True)

    def undelegate(self, context: PreflightContext, gas: Optional[GasEstimate] = None) -> TxReceipt:
        """Clears the account's EIP-7702 delegation with an authorization to the zero address."""
        if gas is None:
            gas = self.estimate_undelegate(context)
        sender = context.credential.address
        return self._submit(context, sender, b"", gas, f"Undelegate {sender}", delegate_to=ZERO_ADDRESS)
