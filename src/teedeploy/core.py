import logging
import secrets
import threading
from typing import Callable, Optional

from eth_utils import is_address, to_checksum_address
from rich.console import Console

from .constants import DEFAULT_API_TIMEOUT_SECONDS, DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_RECEIPT_TIMEOUT_SECONDS
from .errors import ChainStateError, ConfigError, DeployerError
from .errors_catalog import actionable_error
from .models import (
    AppStatusSnapshot,
    DeployResult,
    GasEstimate,
    LogVisibility,
    PreflightContext,
    PreparedBatch,
    TxReceipt,
    UpgradeResult,
    WatchTarget,
)
from .services.app_controller import AppControllerClient
from .services.batch import BatchBuilder, BatchExecutor
from .services.chain import ChainTransport
from .services.command_runner import CommandRunner
from .services.credentials import CredentialResolver
from .services.docker_runtime import DockerRuntimeService
from .services.environment import DEFAULT_ENVIRONMENT, is_mainnet, resolve_environment
from .services.kms import JweEncryptor
from .services.logs import LogViewer
from .services.permissions import current_log_visibility_is_public, permission_change_needed
from .services.preflight import PreflightService
from .services.release import ReleasePreparer, parse_log_visibility
from .services.user_api import UserApiClient
from .services.watcher import StatusWatcher, cancel_on_signals

console = Console()
logger = logging.getLogger("teedeploy")


def validate_app_id(app_id: str) -> str:
    if not app_id or not is_address(app_id):
        raise ConfigError(f"Invalid app id '{app_id}'. Expected a 0x-prefixed 20-byte address.")
    return to_checksum_address(app_id)


class TeeDeployer:
    LOG_VISIBILITIES = [item.value for item in LogVisibility]

    def __init__(
        self,
        environment: str = DEFAULT_ENVIRONMENT,
        private_key: Optional[str] = None,
        rpc_url: Optional[str] = None,
        kms_public_key_file: Optional[str] = None,
        verbose: bool = False,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        api_timeout: float = DEFAULT_API_TIMEOUT_SECONDS,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS,
        assume_yes: bool = False,
        confirm: Optional[Callable[[str, GasEstimate], bool]] = None,
        key_store=None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.environment = resolve_environment(environment)
        self.private_key = private_key
        self.rpc_url = rpc_url
        self.kms_public_key_file = kms_public_key_file
        self.verbose = verbose
        self.api_timeout = api_timeout
        self.receipt_timeout = receipt_timeout
        self.assume_yes = assume_yes
        self.confirm = confirm
        self.cancel_event = cancel_event or threading.Event()
        self.current_step_name: Optional[str] = None

        self.command_runner = CommandRunner(logger=logger)
        self.docker_service = DockerRuntimeService(
            logger=logger,
            console=console,
            command_runner=self.command_runner,
            verbose=verbose,
        )
        self.credential_resolver = CredentialResolver(store=key_store)
        self.preflight_service = PreflightService(
            logger=logger,
            console=console,
            transport_factory=self._connect,
        )
        self.release_preparer = ReleasePreparer(
            logger=logger,
            console=console,
            docker_service=self.docker_service,
            encryptor_factory=self._encryptor_for,
        )
        self.batch_builder = BatchBuilder()
        self.batch_executor = BatchExecutor(logger=logger, console=console)
        self.status_watcher = StatusWatcher(
            logger=logger,
            console=console,
            api_client_factory=self._api_client_for,
            poll_interval=poll_interval_seconds,
            notify=self._notify,
        )
        self.log_viewer = LogViewer(
            logger=logger,
            console=console,
            api_client_factory=self._api_client_for,
            poll_interval=poll_interval_seconds,
        )

    def _connect(self, rpc_url: str) -> ChainTransport:
        return ChainTransport.connect(
            rpc_url,
            logger=logger,
            timeout=self.api_timeout,
            receipt_timeout=self.receipt_timeout,
        )

    def _encryptor_for(self, environment):
        if not self.kms_public_key_file:
            raise ConfigError(actionable_error("missing_kms_key", name=environment.name))
        return JweEncryptor.from_file(self.kms_public_key_file)

    def _api_client_for(self, context: PreflightContext) -> UserApiClient:
        return UserApiClient(
            context.environment,
            credential=context.credential,
            logger=logger,
            timeout=self.api_timeout,
        )

    def _notify(self, message: str):
        console.print(f"[cyan]{message}[/cyan]")
        logger.debug(message)

    def _run_step(self, name: str, callback, *args, **kwargs):
        logger.debug("Step started: %s", name)
        self.current_step_name = name
        result = callback(*args, **kwargs)
        self.current_step_name = None
        logger.debug("Step finished: %s", name)
        return result

    def _watch(self, app_id: str, target, context: PreflightContext, **kwargs) -> AppStatusSnapshot:
        with cancel_on_signals(self.cancel_event):
            return self.status_watcher.watch_until(
                app_id, target, context, cancel_event=self.cancel_event, **kwargs
            )

    def preflight(self) -> PreflightContext:
        credential = self.credential_resolver.resolve(self.private_key)
        return self.preflight_service.check(credential, self.environment, self.rpc_url)

    def check_quota(self, context: PreflightContext):
        controller = AppControllerClient(context.transport, context.environment)
        address = context.credential.address
        limit = controller.get_max_active_apps(address)
        if limit == 0:
            raise ChainStateError(
                actionable_error("no_quota", address=address, environment=context.environment.name)
            )
        active = controller.get_active_app_count(address)
        if active >= limit:
            raise ChainStateError(actionable_error("quota_reached", active=str(active), limit=str(limit)))
        logger.debug("Quota: %s/%s active apps", active, limit)

    def _confirm_cost(self, description: str, environment, estimate: GasEstimate):
        console.print(
            f"[blue]{description}[/blue]\n"
            f"Estimated max cost: {estimate.max_cost_eth} ETH (gas limit {estimate.gas_limit})"
        )
        if self.assume_yes or not is_mainnet(environment):
            return
        if self.confirm is None:
            raise DeployerError("Mainnet transactions need confirmation. Re-run with --yes to proceed.")
        if not self.confirm(description, estimate):
            raise DeployerError("Operation cancelled by user.")

    def _submit_batch(self, batch: PreparedBatch) -> TxReceipt:
        estimate = self._run_step("estimate_gas", self.batch_executor.estimate_gas, batch)
        self._confirm_cost(batch.description, batch.context.environment, estimate)
        return self._run_step("execute_batch", self.batch_executor.execute, batch, estimate)

    def deploy(
        self,
        image_ref: str,
        dockerfile_path: Optional[str] = None,
        env_file: Optional[str] = None,
        instance_type: Optional[str] = None,
        log_visibility="private",
    ) -> DeployResult:
        visibility = parse_log_visibility(log_visibility)
        context = self._run_step("preflight", self.preflight)
        self._run_step("check_quota", self.check_quota, context)

        salt = secrets.token_bytes(32)
        controller = AppControllerClient(context.transport, context.environment)
        app_id = self._run_step(
            "calculate_app_id", controller.calculate_app_id, context.credential.address, salt
        )
        console.print(f"[bold blue]App ID: {app_id}[/bold blue]")

        release, final_ref = self._run_step(
            "prepare_release",
            self.release_preparer.prepare,
            app_id,
            context.environment,
            instance_type,
            visibility,
            dockerfile_path=dockerfile_path,
            image_ref=image_ref,
            env_file_path=env_file,
        )

        # A new app starts with private logs.
        batch = self.batch_builder.build_batch(
            app_id,
            release,
            desired_public_logs=visibility.public_logs,
            permission_change_needed=visibility.public_logs,
            image_ref=final_ref,
            context=context,
            salt=salt,
        )
        receipt = self._submit_batch(batch)
        console.print(f"[green]App deployed in transaction {receipt.tx_hash}.[/green]")

        snapshot = self._run_step(
            "watch_deploy",
            self._watch,
            app_id,
            WatchTarget.RUNNING,
            context,
        )
        return DeployResult(app_id=app_id, tx_hash=receipt.tx_hash, image_ref=final_ref, ip=snapshot.ip)

    def upgrade(
        self,
        app_id: str,
        image_ref: str,
        dockerfile_path: Optional[str] = None,
        env_file: Optional[str] = None,
        instance_type: Optional[str] = None,
        log_visibility="private",
    ) -> UpgradeResult:
        app_id = validate_app_id(app_id)
        visibility = parse_log_visibility(log_visibility)
        context = self._run_step("preflight", self.preflight)

        release, final_ref = self._run_step(
            "prepare_release",
            self.release_preparer.prepare,
            app_id,
            context.environment,
            instance_type,
            visibility,
            dockerfile_path=dockerfile_path,
            image_ref=image_ref,
            env_file_path=env_file,
        )

        currently_public = self._run_step(
            "check_permissions", current_log_visibility_is_public, context, app_id
        )
        change_needed = permission_change_needed(currently_public, visibility.public_logs)
        batch = self.batch_builder.build_batch(
            app_id,
            release,
            desired_public_logs=visibility.public_logs,
            permission_change_needed=change_needed,
            image_ref=final_ref,
            context=context,
        )
        receipt = self._submit_batch(batch)
        console.print(f"[green]Upgrade submitted in transaction {receipt.tx_hash}.[/green]")

        snapshot = self._run_step(
            "watch_upgrade",
            self._watch,
            app_id,
            WatchTarget.UPGRADE_COMPLETE,
            context,
            release_block=receipt.block_number,
            permission_change_needed=change_needed,
        )
        return UpgradeResult(
            app_id=app_id,
            tx_hash=receipt.tx_hash,
            image_ref=final_ref,
            status=snapshot.display_status,
        )

    def info(self, app_id: str, watch: bool = False) -> AppStatusSnapshot:
        app_id = validate_app_id(app_id)
        context = self._run_step("preflight", self.preflight)
        if watch:
            snapshot = self._watch(app_id, None, context)
        else:
            snapshot = self.status_watcher.snapshot(app_id, context)

        console.print(f"[bold]App:[/bold] {app_id}")
        console.print(f"[bold]Status:[/bold] {snapshot.display_status}")
        console.print(f"[bold]IP:[/bold] {snapshot.ip or '-'}")
        console.print(f"[bold]Instance type:[/bold] {snapshot.instance_type or '-'}")
        return snapshot

    def list_skus(self):
        context = self._run_step("preflight", self.preflight)
        skus = self._api_client_for(context).get_skus()
        for sku in skus:
            console.print(f"{sku.get('sku', '?')}  {sku.get('Description', '')}")
        return skus

    def logs(self, app_id: str, watch: bool = False) -> str:
        app_id = validate_app_id(app_id)
        context = self._run_step("preflight", self.preflight)
        if not watch:
            return self._run_step("read_logs", self.log_viewer.show, app_id, context)
        with cancel_on_signals(self.cancel_event):
            return self._run_step(
                "watch_logs",
                self.log_viewer.show,
                app_id,
                context,
                watch=True,
                cancel_event=self.cancel_event,
            )

    def lifecycle(self, action: str, app_id: str) -> TxReceipt:
        app_id = validate_app_id(app_id)
        context = self._run_step("preflight", self.preflight)
        controller = AppControllerClient(context.transport, context.environment)
        call_data = controller.lifecycle_call(action, app_id)
        receipt = self._run_step(
            f"{action}_app",
            self.batch_executor.send_call,
            context,
            context.environment.app_controller_address,
            call_data,
            f"{action.capitalize()} {app_id}",
        )
        console.print(f"[green]{action.capitalize()} confirmed for {app_id}.[/green]")
        return receipt

    def start(self, app_id: str) -> TxReceipt:
        return self.lifecycle("start", app_id)

    def stop(self, app_id: str) -> TxReceipt:
        return self.lifecycle("stop", app_id)

    def terminate(self, app_id: str) -> TxReceipt:
        return self.lifecycle("terminate", app_id)

    def undelegate(self) -> Optional[TxReceipt]:
        context = self._run_step("preflight", self.preflight)
        address = context.credential.address
        if not self.batch_executor.is_account_delegated(context):
            console.print(f"[yellow]{address} has no EIP-7702 delegation. Nothing to undelegate.[/yellow]")
            return None

        estimate = self._run_step("estimate_gas", self.batch_executor.estimate_undelegate, context)
        self._confirm_cost(f"Undelegate {address}", context.environment, estimate)
        receipt = self._run_step("undelegate", self.batch_executor.undelegate, context, estimate)
        console.print(f"[green]Delegation cleared in transaction {receipt.tx_hash}.[/green]")
        return receipt

    def run(self, operation: Callable, *args, **kwargs) -> int:
        try:
            operation(*args, **kwargs)
            return 0
        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            return 1
        except DeployerError as exc:
            step = f" during {self.current_step_name}" if self.current_step_name else ""
            console.print(f"[bold red]Error{step}:[/bold red] {exc}")
            logger.error(str(exc))
            return 1
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            logger.exception("Unexpected error")
            return 1
