# ql_platform/vault.py
# QLSync - Secret vault for the panel client secret (AES-GCM + PBKDF2)
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import base64
import binascii
import os
import re
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionError

SALT_LEN = 16
IV_LEN = 12
TAG_LEN = 16
KEY_LEN = 32
ITERATIONS = 100_000
KEY_LABEL = "qinglong-cookie-sync"

_B64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")


def new_install_id() -> str:
    return secrets.token_hex(16)


def looks_encrypted(value: str | None) -> bool:
    """Heuristic used by the storage layer to avoid double encryption.

    salt+iv alone is 28 bytes (~38 base64 chars); anything shorter than 32 chars
    or outside the base64 alphabet is treated as plaintext.
    """
    if not value or not isinstance(value, str):
        return False
    cleaned = re.sub(r"\s+", "", value)
    if len(cleaned) < 32:
        return False
    return bool(_B64_RE.match(cleaned))


class SecretVault:
    def __init__(self, install_id: str, *, iterations: int = ITERATIONS) -> None:
        if not install_id:
            raise ValueError("install_id is required")
        self.install_id = str(install_id)
        self.iterations = int(iterations)

    def _key_source(self, password: str | None) -> str:
        return password or f"{self.install_id}-{KEY_LABEL}"

    def _derive_key(self, key_source: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_LEN, salt=salt, iterations=self.iterations)
        return kdf.derive(key_source.encode("utf-8"))

    def encrypt(self, plaintext: str, password: str | None = None) -> str:
        salt = os.urandom(SALT_LEN)
        iv = os.urandom(IV_LEN)
        key = self._derive_key(self._key_source(password), salt)
        ct = AESGCM(key).encrypt(iv, str(plaintext).encode("utf-8"), None)
        return base64.b64encode(salt + iv + ct).decode("ascii")

    def decrypt(self, blob: str, password: str | None = None) -> str:
        if not isinstance(blob, str):
            raise DecryptionError("解密失败: 密文格式错误 (not a string)")
        try:
            raw = base64.b64decode(re.sub(r"\s+", "", blob), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"解密失败: 密文格式错误 ({e})") from e
        if len(raw) < SALT_LEN + IV_LEN + TAG_LEN:
            raise DecryptionError("解密失败: 密文格式错误 (payload too short)")

        salt, iv, ct = raw[:SALT_LEN], raw[SALT_LEN:SALT_LEN + IV_LEN], raw[SALT_LEN + IV_LEN:]
        key = self._derive_key(self._key_source(password), salt)
        try:
            pt = AESGCM(key).decrypt(iv, ct, None)
        except InvalidTag as e:
            raise DecryptionError("解密失败: 认证失败 (authentication tag mismatch)") from e
        try:
            return pt.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("解密失败: 明文编码错误") from e


__all__ = ["SecretVault", "looks_encrypted", "new_install_id", "DecryptionError"]
