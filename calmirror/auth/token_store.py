"""Encrypted per-profile secret storage."""

import base64
import json
import logging
import os
import re
import secrets
from typing import Any, Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

logger = logging.getLogger(__name__)

ALGORITHM = "aes-256-gcm"
VERSION = 1
SALT_BYTES = 16
NONCE_BYTES = 12
SCRYPT_N = 1 << 15
SCRYPT_R = 8
SCRYPT_P = 1
FILE_MODE = 0o600
DIR_MODE = 0o700

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def derive_key(passphrase: str, salt: bytes) -> bytes:
    """Derive a 32-byte key from a passphrase with scrypt."""
    kdf = Scrypt(salt=salt, length=32, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt_payload(passphrase: str, payload: Any) -> bytes:
    """
    Encrypt a JSON-serializable payload.

    Returns a JSON envelope holding the version, salt, nonce, ciphertext
    and GCM tag, each base64 encoded. A fresh salt and nonce are drawn
    for every write.
    """
    salt = os.urandom(SALT_BYTES)
    nonce = os.urandom(NONCE_BYTES)
    key = derive_key(passphrase, salt)

    sealed = AESGCM(key).encrypt(nonce, json.dumps(payload).encode("utf-8"), None)
    # AESGCM appends the 16-byte tag to the ciphertext
    ciphertext, tag = sealed[:-16], sealed[-16:]

    envelope = {
        "v": VERSION,
        "alg": ALGORITHM,
        "salt": base64.b64encode(salt).decode("ascii"),
        "nonce": base64.b64encode(nonce).decode("ascii"),
        "ct": base64.b64encode(ciphertext).decode("ascii"),
        "tag": base64.b64encode(tag).decode("ascii"),
    }
    return json.dumps(envelope).encode("utf-8")


def decrypt_payload(passphrase: str, data: bytes) -> Any:
    """Decrypt an envelope produced by encrypt_payload."""
    envelope = json.loads(data.decode("utf-8"))
    if envelope.get("v") != VERSION:
        raise ValueError("Unsupported token file version")

    salt = base64.b64decode(envelope["salt"])
    nonce = base64.b64decode(envelope["nonce"])
    sealed = base64.b64decode(envelope["ct"]) + base64.b64decode(envelope["tag"])

    key = derive_key(passphrase, salt)
    plaintext = AESGCM(key).decrypt(nonce, sealed, None)
    return json.loads(plaintext.decode("utf-8"))


class TokenStore:
    """One encrypted JSON file per profile key."""

    def __init__(self, store_dir: str, secret: Optional[str]):
        if not secret or len(secret) < 16:
            raise ValueError(
                "TOKEN_STORE_SECRET missing or too short. Set a strong secret in env."
            )
        self.store_dir = store_dir
        self._secret = secret
        self._ensure_dir()

    def _ensure_dir(self) -> None:
        os.makedirs(self.store_dir, mode=DIR_MODE, exist_ok=True)
        try:
            os.chmod(self.store_dir, DIR_MODE)
        except OSError:
            # Non-POSIX filesystems
            pass

    def path_for(self, profile_key: str) -> str:
        safe = _UNSAFE_CHARS.sub("_", str(profile_key))
        return os.path.join(self.store_dir, f"{safe}.json")

    def _atomic_write(self, path: str, data: bytes) -> None:
        tmp = os.path.join(
            os.path.dirname(path),
            f".tmp-{os.path.basename(path)}-{secrets.token_hex(6)}",
        )
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        os.chmod(path, FILE_MODE)

    def save(self, profile_key: str, payload: Any) -> None:
        """Encrypt and store a payload under a profile key."""
        self._atomic_write(self.path_for(profile_key), encrypt_payload(self._secret, payload))
        logger.info(f"Stored credentials for profile {profile_key}")

    def load(self, profile_key: str) -> Optional[Any]:
        """Load and decrypt a payload; None if nothing is stored."""
        path = self.path_for(profile_key)
        if not os.path.exists(path):
            return None
        with open(path, "rb") as f:
            return decrypt_payload(self._secret, f.read())

    def remove(self, profile_key: str) -> bool:
        path = self.path_for(profile_key)
        if os.path.exists(path):
            os.remove(path)
            return True
        return False

    def list_ids(self) -> list[str]:
        return sorted(
            name[: -len(".json")]
            for name in os.listdir(self.store_dir)
            if name.endswith(".json") and not name.startswith(".tmp-")
            and os.path.isfile(os.path.join(self.store_dir, name))
        )

    def harden(self) -> None:
        """Re-apply restrictive permissions after moves or restores."""
        self._ensure_dir()
        for name in os.listdir(self.store_dir):
            try:
                os.chmod(os.path.join(self.store_dir, name), FILE_MODE)
            except OSError:
                pass
