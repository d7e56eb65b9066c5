"""JWE envelope encryption of private environment payloads."""

import base64
import json
import os
from pathlib import Path
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from teedeploy.constants import KMS_APP_ID_HEADER
from teedeploy.errors import ConfigError

CONTENT_KEY_BYTES = 32
IV_BYTES = 12
GCM_TAG_BYTES = 16


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


class JweEncryptor:
    """Encrypts payloads for the KMS as compact JWE (RSA-OAEP-256 + A256GCM).

    The app id travels in the protected header so the KMS only releases the
    payload to that app.
    """

    def __init__(self, public_key, random_bytes=os.urandom):
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise ConfigError("KMS public key must be an RSA public key.")
        self.public_key = public_key
        self.random_bytes = random_bytes

    @classmethod
    def from_pem(cls, pem: bytes) -> "JweEncryptor":
        try:
            public_key = serialization.load_pem_public_key(pem)
        except (ValueError, UnsupportedAlgorithm) as exc:
            raise ConfigError(f"Invalid KMS public key: {exc}") from exc
        return cls(public_key)

    @classmethod
    def from_file(cls, path: Optional[str]) -> "JweEncryptor":
        if not path:
            raise ConfigError("No KMS public key file configured.")
        try:
            pem = Path(path).read_bytes()
        except OSError as exc:
            raise ConfigError(f"Cannot read KMS public key file '{path}': {exc}") from exc
        return cls.from_pem(pem)

    def encrypt(self, plaintext: bytes, app_id: str) -> bytes:
        header = {"alg": "RSA-OAEP-256", "enc": "A256GCM", KMS_APP_ID_HEADER: app_id}
        protected = _b64url(json.dumps(header, separators=(",", ":")).encode("utf-8"))

        content_key = self.random_bytes(CONTENT_KEY_BYTES)
        iv = self.random_bytes(IV_BYTES)
        encrypted_key = self.public_key.encrypt(
            content_key,
            padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None),
        )
        sealed = AESGCM(content_key).encrypt(iv, plaintext, protected.encode("ascii"))
        ciphertext, tag = sealed[:-GCM_TAG_BYTES], sealed[-GCM_TAG_BYTES:]

        token = ".".join(
            [protected, _b64url(encrypted_key), _b64url(iv), _b64url(ciphertext), _b64url(tag)]
        )
        return token.encode("ascii")
