"""AES-CBC encryption with PKCS#5 padding, carried as hex or URL-safe base64 text."""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

BLOCK_SIZE = 16
_KEY_SIZES = (16, 24, 32)


class CryptoError(ValueError):
    """Raised when data cannot be encrypted or decrypted."""


def _as_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def _check_key(key: bytes) -> None:
    if len(key) not in _KEY_SIZES:
        raise CryptoError(f"crypto/aes: invalid key size {len(key)}")


def _base64_encode(data: bytes) -> bytes:
    return base64.urlsafe_b64encode(data).rstrip(b"=")


def _base64_decode(data: bytes) -> bytes:
    if b"=" in data or len(data) % 4 == 1:
        raise CryptoError("illegal base64 data")
    padded = data + b"=" * (-len(data) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except binascii.Error as exc:
        raise CryptoError(f"illegal base64 data: {exc}") from exc


def _hex_encode(data: bytes) -> bytes:
    return binascii.hexlify(data).upper()


def _hex_decode(data: bytes) -> bytes:
    try:
        return binascii.unhexlify(data.lower())
    except binascii.Error as exc:
        raise CryptoError(f"invalid hex data: {exc}") from exc


def _pkcs5_pad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    n = block_size - len(data) % block_size
    return data + bytes([n]) * n


def _pkcs5_unpad(data: bytes) -> bytes:
    if not data:
        raise CryptoError("input padded bytes is empty")
    last = data[-1]
    if len(data) - last < 0:
        raise CryptoError("input padded bytes is invalid")
    if any(b != last for b in data[len(data) - last:]):
        raise CryptoError("remove pad error")
    return data[: len(data) - last]


def aes_cbc_encrypt(
    cipher_key: bytes | str, plaintext: bytes | str, use_base64: bool = False
) -> bytes:
    """Encrypt with a random IV prepended; return upper-case hex or raw URL base64."""
    key = _as_bytes(cipher_key)
    _check_key(key)
    padded = _pkcs5_pad(_as_bytes(plaintext))
    iv = os.urandom(BLOCK_SIZE)
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = iv + encryptor.update(padded) + encryptor.finalize()
    return _base64_encode(ciphertext) if use_base64 else _hex_encode(ciphertext)


def aes_cbc_decrypt(
    cipher_key: bytes | str, ciphertext: bytes | str, use_base64: bool = False
) -> bytes:
    """Decode and decrypt data produced by :func:`aes_cbc_encrypt`."""
    raw = _as_bytes(ciphertext)
    data = _base64_decode(raw) if use_base64 else _hex_decode(raw)
    if len(data) < BLOCK_SIZE:
        raise CryptoError("ciphertext too short")
    iv, body = data[:BLOCK_SIZE], data[BLOCK_SIZE:]
    if len(body) % BLOCK_SIZE:
        raise CryptoError("ciphertext is not a multiple of the block size")
    key = _as_bytes(cipher_key)
    _check_key(key)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    plaintext = decryptor.update(body) + decryptor.finalize()
    return _pkcs5_unpad(plaintext)