from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

MASTER_KEY_ENV = "SW_MASTER_KEY"
KEY_ID_ENV = "SW_KEY_ID"

DEFAULT_KEY_ID = "v1"
HKDF_INFO = b"sportswriter:api-keys:v1"
NONCE_BYTES = 12


@dataclass(frozen=True)
class SecretBox:
    key_id: str
    aesgcm: AESGCM


@dataclass(frozen=True)
class SealedApiKey:
    name: str
    key_id: str
    blob: str
    last4: str


def master_key_configured() -> bool:
    return bool(os.environ.get(MASTER_KEY_ENV))


def load_secret_box() -> SecretBox:
    """Derive the AES-GCM key for API keys from SW_MASTER_KEY.

    Raises ValueError when the master key is absent or malformed.
    """
    master_b64 = os.environ.get(MASTER_KEY_ENV, "")
    if not master_b64:
        raise ValueError(f"Master key is not set. Set {MASTER_KEY_ENV}.")
    try:
        master = base64.urlsafe_b64decode(_pad_b64(master_b64))
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Master key is not valid base64url") from exc
    if len(master) != 32:
        raise ValueError("Master key must be 32 bytes (base64url encoded)")

    derived = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=HKDF_INFO).derive(master)
    return SecretBox(key_id=os.environ.get(KEY_ID_ENV) or DEFAULT_KEY_ID, aesgcm=AESGCM(derived))


def seal_api_key(name: str, value: str) -> SealedApiKey:
    value = value.strip()
    if not value:
        raise ValueError(f"empty_api_key name={name}")
    box = load_secret_box()
    nonce = os.urandom(NONCE_BYTES)
    ciphertext = box.aesgcm.encrypt(nonce, value.encode("utf-8"), api_key_aad(name))
    return SealedApiKey(
        name=name,
        key_id=box.key_id,
        blob=base64.urlsafe_b64encode(nonce + ciphertext).decode("utf-8"),
        last4=value[-4:],
    )


def open_api_key(name: str, key_id: str, blob: str) -> str:
    box = load_secret_box()
    if key_id != box.key_id:
        raise ValueError(f"key_id_mismatch name={name} stored={key_id} active={box.key_id}")
    data = base64.urlsafe_b64decode(_pad_b64(blob))
    try:
        plaintext = box.aesgcm.decrypt(data[:NONCE_BYTES], data[NONCE_BYTES:], api_key_aad(name))
    except InvalidTag as exc:
        raise ValueError(f"secret_decrypt_failed name={name}") from exc
    return plaintext.decode("utf-8")


def api_key_aad(name: str) -> bytes:
    # Ciphertext only opens under the name it was sealed with.
    return f"api_secret:{name}".encode("utf-8")


def _pad_b64(value: str) -> str:
    return value + "=" * (-len(value) % 4)
