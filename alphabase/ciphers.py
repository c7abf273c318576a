"""
Symmetric cipher strategies for encryption at rest.

Each cipher turns a UTF-8 string into a transport-safe ciphertext string and
back. The set is closed: `CipherType` names every implementation and
`get_cipher` is the only way to obtain one.
"""

from __future__ import annotations

import base64
import binascii
import os
from enum import Enum
from typing import Any, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionFailure, MissingPassphrase, UnsupportedCipher

SALT_BYTES = 16
NONCE_BYTES = 12
KEY_BYTES = 32
KDF_ITERATIONS = 100_000


class CipherType(str, Enum):
    NONE = "None"
    BASE64 = "Base64"
    XOR = "XOR"
    AES = "AES"
    CHACHA20 = "ChaCha20"

    @classmethod
    def parse(cls, name: Any) -> "CipherType":
        if isinstance(name, CipherType):
            return name
        if isinstance(name, str):
            wanted = name.strip().lower()
            for member in cls:
                if member.value.lower() == wanted:
                    return member
        raise UnsupportedCipher(name)

    @property
    def requires_passphrase(self) -> bool:
        return get_cipher(self).requires_passphrase


class Cipher(Protocol):
    requires_passphrase: bool

    def encrypt(self, text: str, passphrase: str | None) -> str:
        ...

    def decrypt(self, ciphertext: str, passphrase: str | None) -> str:
        ...


class NoopCipher:
    requires_passphrase = False

    def encrypt(self, text: str, passphrase: str | None) -> str:
        return text

    def decrypt(self, ciphertext: str, passphrase: str | None) -> str:
        return ciphertext


class Base64Cipher:
    """Reversible text-safe encoding. Obfuscation only, not secret."""

    requires_passphrase = False

    def encrypt(self, text: str, passphrase: str | None) -> str:
        return base64.b64encode(text.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str, passphrase: str | None) -> str:
        try:
            return base64.b64decode(ciphertext, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise DecryptionFailure(f"invalid Base64 payload: {e}") from e


class XorCipher:
    """
    Repeating-key XOR over the UTF-8 bytes, base64 framed.

    Needs no crypto library. A wrong passphrase does not raise here; it yields
    bytes that fail UTF-8 or JSON decoding downstream.
    """

    requires_passphrase = True

    def encrypt(self, text: str, passphrase: str | None) -> str:
        key = _require_passphrase(passphrase, CipherType.XOR).encode("utf-8")
        return base64.b64encode(_xor(text.encode("utf-8"), key)).decode("ascii")

    def decrypt(self, ciphertext: str, passphrase: str | None) -> str:
        key = _require_passphrase(passphrase, CipherType.XOR).encode("utf-8")
        try:
            raw = base64.b64decode(ciphertext, validate=True)
            return _xor(raw, key).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            raise DecryptionFailure(f"XOR payload could not be decoded: {e}") from e


class _AeadCipher:
    """
    Passphrase-keyed AEAD cipher.

    Layout of the decoded ciphertext: salt (16) | nonce (12) | ciphertext+tag.
    The key is derived per message with PBKDF2-HMAC-SHA256 over the salt.
    """

    requires_passphrase = True
    tag: CipherType

    def _aead(self, key: bytes) -> Any:
        raise NotImplementedError

    def encrypt(self, text: str, passphrase: str | None) -> str:
        secret = _require_passphrase(passphrase, self.tag)
        salt = os.urandom(SALT_BYTES)
        nonce = os.urandom(NONCE_BYTES)
        aead = self._aead(_derive_key(secret, salt))
        sealed = aead.encrypt(nonce, text.encode("utf-8"), None)
        return base64.b64encode(salt + nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str, passphrase: str | None) -> str:
        secret = _require_passphrase(passphrase, self.tag)
        try:
            raw = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionFailure(f"{self.tag.value} payload is not base64: {e}") from e
        if len(raw) <= SALT_BYTES + NONCE_BYTES:
            raise DecryptionFailure(f"{self.tag.value} payload is truncated")
        salt = raw[:SALT_BYTES]
        nonce = raw[SALT_BYTES:SALT_BYTES + NONCE_BYTES]
        sealed = raw[SALT_BYTES + NONCE_BYTES:]
        aead = self._aead(_derive_key(secret, salt))
        try:
            return aead.decrypt(nonce, sealed, None).decode("utf-8")
        except InvalidTag as e:
            raise DecryptionFailure(f"{self.tag.value} authentication failed (wrong passphrase?)") from e
        except UnicodeDecodeError as e:
            raise DecryptionFailure(f"{self.tag.value} plaintext is not UTF-8") from e


class AesCipher(_AeadCipher):
    tag = CipherType.AES

    def _aead(self, key: bytes) -> AESGCM:
        return AESGCM(key)


class ChaCha20Cipher(_AeadCipher):
    tag = CipherType.CHACHA20

    def _aead(self, key: bytes) -> ChaCha20Poly1305:
        return ChaCha20Poly1305(key)


_CIPHERS: dict[CipherType, Cipher] = {
    CipherType.NONE: NoopCipher(),
    CipherType.BASE64: Base64Cipher(),
    CipherType.XOR: XorCipher(),
    CipherType.AES: AesCipher(),
    CipherType.CHACHA20: ChaCha20Cipher(),
}


def get_cipher(cipher: CipherType | str) -> Cipher:
    return _CIPHERS[CipherType.parse(cipher)]


def encrypt(text: str, passphrase: str | None, cipher: CipherType | str = CipherType.AES) -> str:
    return get_cipher(cipher).encrypt(text, passphrase)


def decrypt(ciphertext: str, passphrase: str | None, cipher: CipherType | str = CipherType.AES) -> str:
    return get_cipher(cipher).decrypt(ciphertext, passphrase)


def _require_passphrase(passphrase: str | None, cipher: CipherType) -> str:
    if not passphrase:
        raise MissingPassphrase(cipher.value)
    return passphrase


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def _xor(data: bytes, key: bytes) -> bytes:
    return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))
