from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from psagate.core.config import Settings, get_settings
from psagate.core.errors import DecryptionError


logger = logging.getLogger(__name__)

_NONCE_BYTES = 12


def decode_key_material(value: str) -> bytes:
    """Decode base64 or hex key material into raw bytes."""
    stripped = value.strip()
    if not stripped:
        raise ValueError("key material is empty")
    try:
        return bytes.fromhex(stripped)
    except ValueError:
        try:
            return base64.b64decode(stripped, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("key material must be base64 or hex") from exc


def _aad(tenant_id: str, slug: str) -> bytes:
    # Bind each blob to its row so a copied blob fails to open under another tenant.
    return f"{tenant_id}:{slug}".encode("utf-8")


class CredentialCipher:
    """AES-GCM wrapper for stored integration configs (``nonce || ciphertext+tag``, base64)."""

    def __init__(self, key: bytes) -> None:
        if len(key) not in {16, 24, 32}:
            raise ValueError("credentials key must be 128, 192 or 256 bits")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CredentialCipher | None":
        settings = settings or get_settings()
        if not settings.credentials_key:
            return None
        return cls(decode_key_material(settings.credentials_key))

    def encrypt_json(self, payload: dict[str, Any], *, tenant_id: str, slug: str) -> str:
        nonce = os.urandom(_NONCE_BYTES)
        plaintext = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        sealed = self._aesgcm.encrypt(nonce, plaintext, _aad(tenant_id, slug))
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt_json(self, blob: str, *, tenant_id: str, slug: str) -> dict[str, Any]:
        try:
            raw = base64.b64decode(blob.encode("ascii"), validate=True)
            nonce, sealed = raw[:_NONCE_BYTES], raw[_NONCE_BYTES:]
            plaintext = self._aesgcm.decrypt(nonce, sealed, _aad(tenant_id, slug))
            payload = json.loads(plaintext)
        except (binascii.Error, ValueError, InvalidTag) as exc:
            logger.error("credential_decrypt_failed tenant_id=%s slug=%s", tenant_id, slug)
            raise DecryptionError(f"Unable to decrypt {slug} credentials") from exc
        if not isinstance(payload, dict):
            raise DecryptionError(f"Unable to decrypt {slug} credentials")
        return payload
