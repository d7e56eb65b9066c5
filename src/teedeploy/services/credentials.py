"""Signing key resolution for teedeploy."""

import os
import re
from typing import Mapping, Optional, Tuple

from eth_account import Account

from teedeploy.constants import PRIVATE_KEY_ENV_VAR
from teedeploy.errors import AuthError
from teedeploy.errors_catalog import actionable_error
from teedeploy.models import Credential

PRIVATE_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


def normalize_private_key(value: str) -> Optional[str]:
    clean_value = value.strip()
    if clean_value.startswith(("0x", "0X")):
        clean_value = clean_value[2:]
    if not PRIVATE_KEY_PATTERN.match(clean_value):
        return None
    return "0x" + clean_value.lower()


class CredentialResolver:
    """Resolves the signing key from an explicit value, the environment, or a secure store.

    The first tier holding a value wins. A malformed value fails immediately
    instead of falling through to the next tier.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        store=None,
        env_var: str = PRIVATE_KEY_ENV_VAR,
    ):
        self.environ = os.environ if environ is None else environ
        self.store = store
        self.env_var = env_var

    def _find_raw_key(self, explicit: Optional[str]) -> Optional[Tuple[str, str]]:
        if explicit:
            return explicit, "the --private-key option"

        env_value = self.environ.get(self.env_var)
        if env_value:
            return env_value, f"the {self.env_var} environment variable"

        if self.store is not None:
            stored = self.store.get()
            if stored:
                return stored, "the secure store"

        return None

    def resolve(self, explicit: Optional[str] = None) -> Credential:
        found = self._find_raw_key(explicit)
        if found is None:
            raise AuthError(actionable_error("private_key_not_found", env_var=self.env_var))

        raw_key, source = found
        private_key = normalize_private_key(raw_key)
        if private_key is None:
            raise AuthError(actionable_error("invalid_private_key", source=source))

        try:
            account = Account.from_key(private_key)
        except ValueError as exc:
            raise AuthError(f"Private key from {source} cannot sign: {exc}") from exc

        return Credential(private_key=private_key, address=account.address)
