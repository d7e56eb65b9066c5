"""Dual-source app status reconciliation and watching."""

import contextlib
import signal
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional

from teedeploy.constants import DEFAULT_POLL_INTERVAL_SECONDS
from teedeploy.errors import ConvergenceFailure, NetworkError
from teedeploy.models import ApiStatus, AppStatusSnapshot, ContractStatus, PreflightContext, WatchTarget
from teedeploy.services.app_controller import AppControllerClient

DEFAULT_TRANSITIONS: Mapping[ContractStatus, str] = {
    ContractStatus.STARTED: "Starting",
    ContractStatus.STOPPED: "Stopping",
    ContractStatus.TERMINATED: "Terminating",
}


@dataclass(frozen=True)
class TransitionPolicy:
    """Labels shown while contract state and API state disagree.

    ``transitions`` is keyed by contract status: when the contract already
    reports that status and the API has not caught up, the label is shown.
    """

    transitions: Mapping[ContractStatus, str] = field(default_factory=lambda: dict(DEFAULT_TRANSITIONS))
    permission_update_label: str = "Updating"


DEFAULT_POLICY = TransitionPolicy()


@contextlib.contextmanager
def cancel_on_signals(cancel_event: threading.Event, signals=(signal.SIGINT, signal.SIGTERM)):
    """Turns SIGINT/SIGTERM into ``cancel_event.set()`` for the duration of the block."""
    if threading.current_thread() is not threading.main_thread():
        yield cancel_event
        return

    def _handler(_signum, _frame):
        cancel_event.set()

    previous = {sig: signal.signal(sig, _handler) for sig in signals}
    try:
        yield cancel_event
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def api_status_is(value: Optional[str], known: str) -> bool:
    return bool(value) and value.lower() == known.lower()


def reconcile(
    contract_status: ContractStatus,
    api_status: Optional[str],
    policy: TransitionPolicy = DEFAULT_POLICY,
    permission_change_in_flight: bool = False,
) -> str:
    contract_label = contract_status.label
    if not api_status:
        return contract_label
    if api_status_is(api_status, ApiStatus.EXITED):
        return api_status
    if api_status_is(api_status, contract_label):
        return api_status
    if permission_change_in_flight:
        return policy.permission_update_label

    transition_label = policy.transitions.get(contract_status)
    if transition_label:
        return transition_label
    return api_status


class WatchState:
    """Remembers the first and latest snapshot and whether anything has moved since."""

    def __init__(self):
        self.initial: Optional[AppStatusSnapshot] = None
        self.last: Optional[AppStatusSnapshot] = None
        self.changed = False

    def observe(self, snapshot: AppStatusSnapshot) -> List[str]:
        if self.initial is None:
            self.initial = self.last = snapshot
            return []

        last = self.last
        notices = []
        if snapshot.display_status != last.display_status:
            notices.append(f"Status changed: {last.display_status} → {snapshot.display_status}")
        if snapshot.ip and snapshot.ip != last.ip:
            notices.append(f"IP assigned: {snapshot.ip}")
        if snapshot.instance_type and last.instance_type and snapshot.instance_type != last.instance_type:
            notices.append(f"Instance type changed: {last.instance_type} → {snapshot.instance_type}")

        if (
            notices
            or snapshot.contract_status != last.contract_status
            or snapshot.release_block != last.release_block
        ):
            self.changed = True
        self.last = snapshot
        return notices


def deploy_converged(state: WatchState, snapshot: AppStatusSnapshot) -> bool:
    if snapshot.contract_status is not ContractStatus.STARTED or not snapshot.ip:
        return False
    initial = state.initial
    initially_not_running = initial.contract_status is not ContractStatus.STARTED or not api_status_is(
        initial.api_status, ApiStatus.RUNNING
    )
    return state.changed or initially_not_running


def upgrade_converged(state: WatchState, snapshot: AppStatusSnapshot, release_block: Optional[int]) -> bool:
    if release_block is not None and snapshot.release_block < release_block:
        return False
    if not snapshot.ip:
        return False
    if snapshot.contract_status is ContractStatus.STOPPED:
        return True
    return (
        snapshot.contract_status is ContractStatus.STARTED
        and api_status_is(snapshot.api_status, ApiStatus.RUNNING)
        and state.changed
    )


class StatusWatcher:
    """Polls contract and API state until the app reaches the watched target."""

    def __init__(
        self,
        logger,
        console,
        api_client_factory: Callable[[PreflightContext], object],
        controller_factory=AppControllerClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        policy: TransitionPolicy = DEFAULT_POLICY,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.logger = logger
        self.console = console
        self.api_client_factory = api_client_factory
        self.controller_factory = controller_factory
        self.poll_interval = poll_interval
        self.policy = policy
        self.notify = notify or logger.info

    def _read(
        self,
        app_id: str,
        controller,
        api_client,
        permission_change_in_flight: bool = False,
        raise_on_failure: bool = True,
    ) -> AppStatusSnapshot:
        contract_status = controller.get_app_status(app_id)
        release_block = controller.get_latest_release_block(app_id)

        info = None
        try:
            info = api_client.get_info(app_id)
        except NetworkError as exc:
            self.logger.debug("Status API read failed for %s: %s", app_id, exc)

        api_status = info.status if info else ""
        if raise_on_failure and api_status_is(api_status, ApiStatus.FAILED):
            raise ConvergenceFailure(f"App {app_id} reported status {api_status}. Check the app logs.")

        return AppStatusSnapshot(
            contract_status=contract_status,
            api_status=api_status,
            display_status=reconcile(contract_status, api_status, self.policy, permission_change_in_flight),
            ip=(info.ip or None) if info else None,
            instance_type=(info.machine_type or None) if info else None,
            release_block=release_block,
        )

    def snapshot(self, app_id: str, context: PreflightContext) -> AppStatusSnapshot:
        controller = self.controller_factory(context.transport, context.environment)
        return self._read(app_id, controller, self.api_client_factory(context), raise_on_failure=False)

    def watch_until(
        self,
        app_id: str,
        target: Optional[WatchTarget],
        context: PreflightContext,
        release_block: Optional[int] = None,
        permission_change_needed: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> AppStatusSnapshot:
        """Polls until ``target`` is reached, a failure is reported, or ``cancel_event`` is set.

        With ``target`` None the loop only reports changes until cancelled.
        """
        cancel_event = cancel_event or threading.Event()
        controller = self.controller_factory(context.transport, context.environment)
        api_client = self.api_client_factory(context)
        state = WatchState()

        while True:
            snapshot = self._read(
                app_id,
                controller,
                api_client,
                permission_change_needed,
                raise_on_failure=target is not None,
            )
            first_read = state.initial is None
            for notice in state.observe(snapshot):
                self.notify(notice)
            if first_read:
                self.logger.info("Current status: %s", snapshot.display_status)

            if target is WatchTarget.RUNNING and deploy_converged(state, snapshot):
                if state.initial.ip:
                    self.notify("App is now running")
                else:
                    self.notify(f"App is now running with IP: {snapshot.ip}")
                return snapshot

            if target is WatchTarget.UPGRADE_COMPLETE and upgrade_converged(state, snapshot, release_block):
                self.notify("App upgrade complete.")
                return snapshot

            if cancel_event.wait(self.poll_interval):
                self.notify("Stopped watching")
                return snapshot
