"""Actionable error catalog for teedeploy."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "unknown_environment": {
        "what": "Unknown environment: {name}",
        "next": "Use one of: {known}.",
    },
    "missing_rpc_url": {
        "what": "No RPC URL available for environment '{name}'.",
        "next": "Pass `--rpc-url`, set `RPC_URL`, or add `rpc_url` to the config file.",
    },
    "private_key_not_found": {
        "what": "No private key found.",
        "next": "Pass `--private-key`, set `{env_var}`, or store a key in the keyring.",
    },
    "invalid_private_key": {
        "what": "Invalid private key format from {source}.",
        "next": "Provide 64 hexadecimal characters, optionally prefixed with `0x`.",
    },
    "push_permission_denied": {
        "what": "Permission denied while pushing {image_ref}.",
        "next": "Check that you are logged in to {registry} with write access (`docker login {registry}`).",
    },
    "docker_not_running": {
        "what": "Docker is not running or not installed.",
        "next": "Start Docker Desktop or the Docker daemon and try again.",
    },
    "no_quota": {
        "what": "No app quota is allocated to {address} on {environment}.",
        "next": "Request deployment access for this address before deploying.",
    },
    "quota_reached": {
        "what": "Deploy quota reached: {active}/{limit} apps are active.",
        "next": "Terminate an existing app or request a higher quota.",
    },
    "missing_kms_key": {
        "what": "No KMS public key configured for environment '{name}'.",
        "next": "Set `kms_public_key_file` in the config file or pass `--kms-public-key-file`.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
