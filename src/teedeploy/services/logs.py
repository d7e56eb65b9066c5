"""App log reading with an optional follow mode."""

import threading
from typing import Callable, Optional, Tuple

from teedeploy.constants import DEFAULT_POLL_INTERVAL_SECONDS
from teedeploy.errors import DeployerError, NetworkError
from teedeploy.models import PreflightContext

# How much of the previous log text is searched for in a fresh read when the
# server has trimmed the start of the log.
LOG_TAIL_MATCH_CHARS = 64 * 1024

LOGS_RESTARTED = "--- Logs restarted ---"
LOG_GAP_DETECTED = "--- Log stream gap detected ---"

MISSING_LOG_MESSAGES = {
    "created": "{app} is currently being provisioned. Logs will be available once deployment is complete.",
    "deploying": "{app} is currently being provisioned. Logs will be available once deployment is complete.",
    "upgrading": "{app} is currently upgrading. Logs will be available once upgrade is complete.",
    "resuming": "{app} is currently resuming. Logs will be available shortly.",
    "stopping": "{app} is currently stopping. Logs may be limited.",
    "stopped": "{app} is stopped. Logs are not available.",
    "terminating": "{app} is terminating. Logs are not available.",
    "terminated": "{app} is terminated. Logs are not available.",
    "suspended": "{app} is suspended. Logs are not available.",
    "failed": "{app} has failed. Check the app status for more information.",
}


def new_log_output(previous: str, current: str) -> Tuple[str, Optional[str]]:
    """Returns the text not yet shown and, when continuity was lost, a marker line."""
    if current == previous:
        return "", None
    if current.startswith(previous):
        return current[len(previous):], None

    tail = previous[-LOG_TAIL_MATCH_CHARS:]
    index = current.rfind(tail)
    if index != -1:
        return current[index + len(tail):], None
    if len(current) < len(previous):
        return current, LOGS_RESTARTED
    return current, LOG_GAP_DETECTED


class LogViewer:
    def __init__(
        self,
        logger,
        console,
        api_client_factory: Callable[[PreflightContext], object],
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ):
        self.logger = logger
        self.console = console
        self.api_client_factory = api_client_factory
        self.poll_interval = poll_interval

    def _write(self, text: str):
        self.console.print(text.rstrip("\n"), markup=False, highlight=False)

    def _explain_missing_logs(self, app_id: str, api_client) -> Optional[str]:
        try:
            info = api_client.get_info(app_id)
        except NetworkError as exc:
            self.logger.debug("Status lookup for %s failed: %s", app_id, exc)
            return None
        if info is None:
            return None
        template = MISSING_LOG_MESSAGES.get(info.status.lower())
        return template.format(app=app_id) if template else None

    def show(
        self,
        app_id: str,
        context: PreflightContext,
        watch: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Prints the current logs and, with ``watch``, keeps printing new lines until cancelled.

        Returns the last log text read.
        """
        api_client = self.api_client_factory(context)
        error = None
        try:
            text = api_client.get_logs(app_id)
        except NetworkError as exc:
            error = exc
            text = ""

        if not text.strip():
            if watch:
                self.logger.info("Waiting for logs to become available...")
                return self._follow(app_id, api_client, "", cancel_event)

            message = self._explain_missing_logs(app_id, api_client)
            if message:
                self.logger.info(message)
                return ""
            hint = f"Failed to get logs for {app_id}; re-run with --watch to wait for them"
            if error is not None:
                raise NetworkError(f"{hint}: {error}") from error
            raise DeployerError(f"{hint}: empty logs")

        self._write(text)
        if not watch:
            return text
        return self._follow(app_id, api_client, text, cancel_event)

    def _follow(self, app_id: str, api_client, previous: str, cancel_event: Optional[threading.Event]) -> str:
        cancel_event = cancel_event or threading.Event()
        while not cancel_event.wait(self.poll_interval):
            try:
                current = api_client.get_logs(app_id)
            except NetworkError as exc:
                self.logger.debug("Log read for %s failed: %s", app_id, exc)
                continue

            output, marker = new_log_output(previous, current)
            if marker:
                self.console.print(marker, style="yellow", markup=False)
            if output:
                self._write(output)
            previous = current

        self.logger.info("Stopped watching")
        return previous
