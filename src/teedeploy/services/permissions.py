"""Log visibility permission lookup and diff."""

from teedeploy.models import PreflightContext
from teedeploy.services.contracts import decode_single, encode_can_call_logs


def current_log_visibility_is_public(context: PreflightContext, app_id: str) -> bool:
    """Returns True when anyone may read the app's logs through the API."""
    result = context.transport.call(
        context.environment.permission_controller_address,
        encode_can_call_logs(app_id),
    )
    return bool(decode_single("bool", result))


def permission_change_needed(currently_public: bool, desired_public: bool) -> bool:
    return currently_public != desired_public
