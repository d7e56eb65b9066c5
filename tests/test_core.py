import io

import pytest
from rich.console import Console

import teedeploy.core as core_module
from teedeploy.core import TeeDeployer, validate_app_id
from teedeploy.errors import BuildError, ChainStateError, ConfigError, DeployerError
from teedeploy.models import (
    AppStatusSnapshot,
    Artifact,
    ContractStatus,
    Credential,
    GasEstimate,
    PreflightContext,
    ReleaseDescriptor,
    TxReceipt,
    WatchTarget,
)
from teedeploy.services.environment import ENVIRONMENTS

KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
APP_ID = "0x1111111111111111111111111111111111111111"
FINAL_REF = "docker.io/acme/app@sha256:" + "cd" * 32


class FakeController:
    max_active_apps = 5
    active_apps = 1

    def __init__(self, transport, environment):
        self.environment = environment

    def get_max_active_apps(self, owner):
        return self.max_active_apps

    def get_active_app_count(self, owner):
        return self.active_apps

    def calculate_app_id(self, owner, salt):
        return APP_ID

    def lifecycle_call(self, action, app_id):
        return action.encode("ascii")


class FakeReleasePreparer:
    def __init__(self):
        self.calls = []

    def prepare(self, app_id, environment, instance_type, log_visibility, **kwargs):
        self.calls.append((app_id, log_visibility, kwargs))
        release = ReleaseDescriptor(
            artifacts=(Artifact(digest=bytes.fromhex("cd" * 32), registry="docker.io/acme/app"),),
            upgrade_by_time=1_700_000_000,
            public_env=b"{}",
            encrypted_env=b"jwe",
        )
        return release, FINAL_REF


class FakeExecutor:
    def __init__(self, delegated=True):
        self.executed = []
        self.calls = []
        self.delegated = delegated
        self.undelegations = []

    def estimate_gas(self, batch):
        return GasEstimate(gas_limit=100_000, max_fee_per_gas=10**9, max_priority_fee_per_gas=10**8)

    def execute(self, batch, gas=None):
        self.executed.append(batch)
        return TxReceipt(tx_hash="0xfeed", block_number=123, succeeded=True)

    def send_call(self, context, target, call_data, description):
        self.calls.append((target, call_data, description))
        return TxReceipt(tx_hash="0xbeef", block_number=124, succeeded=True)

    def is_account_delegated(self, context):
        return self.delegated

    def estimate_undelegate(self, context):
        return GasEstimate(gas_limit=50_000, max_fee_per_gas=10**9, max_priority_fee_per_gas=10**8)

    def undelegate(self, context, gas=None):
        self.undelegations.append(gas)
        return TxReceipt(tx_hash="0xd00d", block_number=125, succeeded=True)


class FakeWatcher:
    def __init__(self):
        self.watches = []

    def watch_until(self, app_id, target, context, **kwargs):
        self.watches.append((app_id, target, kwargs))
        return AppStatusSnapshot(ContractStatus.STARTED, "Running", "Running", ip="10.0.0.5")

    def snapshot(self, app_id, context):
        return AppStatusSnapshot(ContractStatus.STOPPED, "Stopped", "Stopped")


@pytest.fixture(autouse=True)
def quiet_console(monkeypatch):
    output = io.StringIO()
    monkeypatch.setattr(core_module, "console", Console(file=output, width=200))
    monkeypatch.setattr(core_module, "AppControllerClient", FakeController)
    return output


def build_deployer(environment="sepolia", **kwargs):
    deployer = TeeDeployer(environment=environment, **kwargs)
    context = PreflightContext(
        credential=Credential(KEY, ADDRESS),
        environment=ENVIRONMENTS[environment],
        rpc_url=ENVIRONMENTS[environment].default_rpc_url,
        transport=object(),
    )
    deployer.preflight = lambda: context
    deployer.release_preparer = FakeReleasePreparer()
    deployer.batch_executor = FakeExecutor()
    deployer.status_watcher = FakeWatcher()
    return deployer


def test_validate_app_id_checksums_and_rejects_garbage():
    assert validate_app_id(APP_ID.lower()) == APP_ID
    with pytest.raises(ConfigError, match="Invalid app id"):
        validate_app_id("not-an-address")


def test_deploy_with_private_logs_creates_app_and_waits_for_running():
    deployer = build_deployer()

    result = deployer.deploy("acme/app:latest", log_visibility="private")

    batch = deployer.batch_executor.executed[0]
    assert len(batch.executions) == 2
    assert batch.image_ref == FINAL_REF
    assert deployer.status_watcher.watches == [(APP_ID, WatchTarget.RUNNING, {"cancel_event": deployer.cancel_event})]
    assert result.app_id == APP_ID
    assert result.tx_hash == "0xfeed"
    assert result.ip == "10.0.0.5"


def test_deploy_with_public_logs_adds_permission_call():
    deployer = build_deployer()

    deployer.deploy("acme/app:latest", log_visibility="public")

    batch = deployer.batch_executor.executed[0]
    assert len(batch.executions) == 3
    assert batch.permission_change_needed is True


def test_deploy_stops_when_quota_reached(monkeypatch):
    monkeypatch.setattr(FakeController, "active_apps", 5)
    deployer = build_deployer()

    with pytest.raises(ChainStateError, match="5/5"):
        deployer.deploy("acme/app:latest")

    assert deployer.release_preparer.calls == []


def test_deploy_without_quota_allocation(monkeypatch):
    monkeypatch.setattr(FakeController, "max_active_apps", 0)
    deployer = build_deployer()

    with pytest.raises(ChainStateError, match="No app quota"):
        deployer.deploy("acme/app:latest")


def test_upgrade_checks_permissions_once_and_watches_release_block(monkeypatch):
    checks = []

    def fake_is_public(context, app_id):
        checks.append(app_id)
        return False

    monkeypatch.setattr(core_module, "current_log_visibility_is_public", fake_is_public)
    deployer = build_deployer()

    result = deployer.upgrade(APP_ID.lower(), "acme/app:v2", log_visibility="public")

    assert checks == [APP_ID]
    batch = deployer.batch_executor.executed[0]
    assert len(batch.executions) == 2
    _app_id, target, kwargs = deployer.status_watcher.watches[0]
    assert target is WatchTarget.UPGRADE_COMPLETE
    assert kwargs["release_block"] == 123
    assert kwargs["permission_change_needed"] is True
    assert result.status == "Running"


def test_upgrade_without_permission_change_is_single_call(monkeypatch):
    monkeypatch.setattr(core_module, "current_log_visibility_is_public", lambda context, app_id: False)
    deployer = build_deployer()

    deployer.upgrade(APP_ID, "acme/app:v2", log_visibility="private")

    assert len(deployer.batch_executor.executed[0].executions) == 1


def test_mainnet_requires_confirmation_or_yes(monkeypatch):
    monkeypatch.setattr(core_module, "current_log_visibility_is_public", lambda context, app_id: False)
    deployer = build_deployer(environment="mainnet-alpha")

    with pytest.raises(DeployerError, match="--yes"):
        deployer.upgrade(APP_ID, "acme/app:v2")

    assert deployer.batch_executor.executed == []


def test_mainnet_declined_confirmation_cancels(monkeypatch):
    monkeypatch.setattr(core_module, "current_log_visibility_is_public", lambda context, app_id: False)
    prompts = []

    def confirm(description, estimate):
        prompts.append((description, estimate.max_cost_eth))
        return False

    deployer = build_deployer(environment="mainnet-alpha", confirm=confirm)

    with pytest.raises(DeployerError, match="cancelled"):
        deployer.upgrade(APP_ID, "acme/app:v2")

    assert prompts == [(f"Upgrade {APP_ID} ({FINAL_REF})", "0.0001")]
    assert deployer.batch_executor.executed == []


def test_mainnet_assume_yes_skips_prompt(monkeypatch):
    monkeypatch.setattr(core_module, "current_log_visibility_is_public", lambda context, app_id: False)
    deployer = build_deployer(environment="mainnet-alpha", assume_yes=True)

    deployer.upgrade(APP_ID, "acme/app:v2")

    assert len(deployer.batch_executor.executed) == 1


def test_lifecycle_sends_controller_call():
    deployer = build_deployer()

    deployer.stop(APP_ID)

    target, call_data, description = deployer.batch_executor.calls[0]
    assert target == ENVIRONMENTS["sepolia"].app_controller_address
    assert call_data == b"stop"
    assert description == f"Stop {APP_ID}"


def test_info_prints_snapshot(quiet_console):
    deployer = build_deployer()

    snapshot = deployer.info(APP_ID)

    assert snapshot.display_status == "Stopped"
    assert "Status: Stopped" in quiet_console.getvalue()


def test_run_reports_failed_step(quiet_console):
    deployer = build_deployer()

    def failing_step():
        deployer._run_step("prepare_release", _raise, BuildError("push failed"))

    assert deployer.run(failing_step) == 1
    assert "Error during prepare_release" in quiet_console.getvalue()
    assert "push failed" in quiet_console.getvalue()


def test_run_returns_zero_on_success():
    deployer = build_deployer()

    assert deployer.run(lambda: None) == 0


def test_run_maps_unexpected_errors_to_exit_code(quiet_console):
    deployer = build_deployer()

    assert deployer.run(_raise, RuntimeError("kaboom")) == 1
    assert "Unexpected error" in quiet_console.getvalue()


def test_unknown_environment_is_rejected():
    with pytest.raises(ConfigError, match="Unknown environment"):
        TeeDeployer(environment="devnet")


class RevertingExecutor(FakeExecutor):
    def estimate_gas(self, batch):
        raise ChainStateError("gas simulation reverted: the app is in an invalid state for this operation")


def test_simulated_revert_stops_before_confirmation(monkeypatch):
    monkeypatch.setattr(core_module, "current_log_visibility_is_public", lambda context, app_id: False)
    prompts = []
    deployer = build_deployer(environment="mainnet-alpha", confirm=lambda *args: prompts.append(args) or True)
    deployer.batch_executor = RevertingExecutor()

    with pytest.raises(ChainStateError, match="invalid state"):
        deployer.upgrade(APP_ID, "acme/app:v2")

    assert prompts == []
    assert deployer.batch_executor.executed == []
    assert deployer.current_step_name == "estimate_gas"


class FakeLogViewer:
    def __init__(self):
        self.calls = []

    def show(self, app_id, context, watch=False, cancel_event=None):
        self.calls.append((app_id, watch, cancel_event))
        return "ready\n"


def test_logs_reads_once_or_follows_with_cancel_event():
    deployer = build_deployer()
    deployer.log_viewer = FakeLogViewer()

    assert deployer.logs(APP_ID.lower()) == "ready\n"
    deployer.logs(APP_ID, watch=True)

    assert deployer.log_viewer.calls == [
        (APP_ID, False, None),
        (APP_ID, True, deployer.cancel_event),
    ]


def test_logs_rejects_invalid_app_id():
    deployer = build_deployer()
    deployer.log_viewer = FakeLogViewer()

    with pytest.raises(ConfigError, match="Invalid app id"):
        deployer.logs("0x123")

    assert deployer.log_viewer.calls == []


def test_undelegate_sends_clearing_transaction(quiet_console):
    deployer = build_deployer()

    receipt = deployer.undelegate()

    assert receipt.tx_hash == "0xd00d"
    assert deployer.batch_executor.undelegations[0].gas_limit == 50_000
    assert "Delegation cleared" in quiet_console.getvalue()


def test_undelegate_skips_plain_account(quiet_console):
    deployer = build_deployer()
    deployer.batch_executor = FakeExecutor(delegated=False)

    assert deployer.undelegate() is None
    assert deployer.batch_executor.undelegations == []
    assert "Nothing to undelegate" in quiet_console.getvalue()


def test_undelegate_on_mainnet_asks_for_confirmation():
    prompts = []

    def confirm(description, estimate):
        prompts.append(description)
        return False

    deployer = build_deployer(environment="mainnet-alpha", confirm=confirm)

    with pytest.raises(DeployerError, match="cancelled"):
        deployer.undelegate()

    assert prompts == [f"Undelegate {ADDRESS}"]
    assert deployer.batch_executor.undelegations == []


def _raise(exc):
    raise exc
