"""Preflight checks run before any build or transaction."""

import os
from typing import Mapping, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from teedeploy.constants import RPC_URL_ENV_VAR
from teedeploy.errors import AuthError, ChainStateError, ConfigError
from teedeploy.errors_catalog import actionable_error
from teedeploy.models import Credential, EnvironmentConfig, PreflightContext
from teedeploy.services.chain import ChainTransport

PREFLIGHT_MESSAGE = "teedeploy preflight"


class PreflightService:
    """Confirms the credential signs, the RPC answers, and the chain is the expected one.

    Nothing here retries. A connectivity or identity problem is reported as
    soon as it is seen.
    """

    def __init__(self, logger, console, transport_factory=None, environ: Optional[Mapping[str, str]] = None):
        self.logger = logger
        self.console = console
        self.transport_factory = transport_factory or (lambda url: ChainTransport.connect(url, logger=logger))
        self.environ = os.environ if environ is None else environ

    def resolve_rpc_url(self, environment: EnvironmentConfig, rpc_url_override: Optional[str] = None) -> str:
        rpc_url = rpc_url_override or self.environ.get(RPC_URL_ENV_VAR) or environment.default_rpc_url
        if not rpc_url:
            raise ConfigError(actionable_error("missing_rpc_url", name=environment.name))
        return rpc_url

    def verify_signer(self, credential: Credential):
        message = encode_defunct(text=PREFLIGHT_MESSAGE)
        try:
            signed = Account.sign_message(message, private_key=credential.private_key)
            recovered = Account.recover_message(message, signature=signed.signature)
        except (ValueError, TypeError) as exc:
            raise AuthError(f"Credential cannot sign: {exc}") from exc
        if recovered.lower() != credential.address.lower():
            raise AuthError("Credential signature does not recover to its own address.")

    def check(
        self,
        credential: Credential,
        environment: EnvironmentConfig,
        rpc_url_override: Optional[str] = None,
    ) -> PreflightContext:
        self.verify_signer(credential)
        rpc_url = self.resolve_rpc_url(environment, rpc_url_override)

        self.logger.debug("Connecting to %s", rpc_url)
        transport = self.transport_factory(rpc_url)
        chain_id = transport.chain_id()
        if chain_id != environment.chain_id:
            raise ChainStateError(f"Chain ID mismatch: expected {environment.chain_id}, got {chain_id}")

        self.logger.info("Using %s (chain %s) as %s", environment.name, chain_id, credential.address)
        return PreflightContext(
            credential=credential,
            environment=environment,
            rpc_url=rpc_url,
            transport=transport,
        )
