"""Cryptographic functions for cryptmirror.

This module provides:
- Key loading from configuration (raw, base64, or passphrase)
- Key derivation using Argon2id or SHA-256
- Streaming file encryption using AES-256-GCM segments

Encrypted file layout:

    nonce_prefix (8) || segment_size (4, big-endian)
    || segment_0 || segment_1 || ... || segment_n

Each segment is one plaintext block of segment_size bytes (the last one
may be shorter, or empty for an empty file) sealed as ciphertext || tag (16).
Segment i uses the nonce nonce_prefix || i (4 bytes, big-endian). The
associated data is the header plus a flag byte marking the final segment,
so segments cannot be reordered, dropped or truncated undetected.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
import struct
import tempfile
from pathlib import Path
from typing import BinaryIO

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cryptmirror.core.types import CryptMirrorError

# Argon2id parameters (OWASP recommendations for password hashing)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MiB
ARGON2_PARALLELISM = 4

KEY_SIZE = 32  # 256 bits
NONCE_SIZE = 12  # 96 bits (recommended for AES-GCM)
NONCE_PREFIX_SIZE = 8
COUNTER_SIZE = NONCE_SIZE - NONCE_PREFIX_SIZE
TAG_SIZE = 16
SALT_SIZE = 16

SEGMENT_SIZE = 1024 * 1024  # 1 MiB of plaintext per segment
MAX_SEGMENT_SIZE = 64 * 1024 * 1024
HEADER_FORMAT = ">I"
HEADER_SIZE = NONCE_PREFIX_SIZE + struct.calcsize(HEADER_FORMAT)
MAX_SEGMENTS = 2 ** (8 * COUNTER_SIZE)

_MIDDLE = b"\x00"
_FINAL = b"\x01"

ENCRYPTED_SUFFIX = ".enc"


class CryptoError(CryptMirrorError):
    """Raised when a file cannot be encrypted or decrypted."""


def generate_salt() -> bytes:
    """Generate a random 16-byte salt for passphrase derivation."""
    return os.urandom(SALT_SIZE)


def derive_key(passphrase: str, salt: bytes | None = None) -> bytes:
    """Derive a 256-bit key from a passphrase.

    With a salt, Argon2id is used. Without one the key is the SHA-256
    digest of the passphrase, which keeps keys stable across machines
    that only share the passphrase.

    Args:
        passphrase: The configured passphrase.
        salt: Optional salt enabling Argon2id derivation.

    Returns:
        32 bytes suitable for AES-256.
    """
    if salt is None:
        return hashlib.sha256(passphrase.encode("utf-8")).digest()
    return hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
        hash_len=KEY_SIZE,
        type=Type.ID,
    )


def load_key(material: str, salt: bytes | None = None) -> bytes:
    """Turn configured key material into a 32-byte key.

    Resolution order:
    1. A string of exactly 32 bytes is used as-is.
    2. Base64 that decodes to exactly 32 bytes is used decoded.
    3. Anything else is a passphrase passed to derive_key().

    Args:
        material: Key material from configuration.
        salt: Optional salt for passphrase derivation.

    Returns:
        32-byte encryption key.

    Raises:
        CryptoError: If the material is empty.
    """
    if not material:
        raise CryptoError("Encryption key is empty")

    raw = material.encode("utf-8")
    if len(raw) == KEY_SIZE:
        return raw

    try:
        decoded = base64.b64decode(material, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == KEY_SIZE:
        return decoded

    return derive_key(material, salt)



def _segment_nonce(prefix: bytes, index: int) -> bytes:
    if index >= MAX_SEGMENTS:
        raise CryptoError("File too large to encrypt (segment counter exhausted)")
    return prefix + index.to_bytes(COUNTER_SIZE, "big")


def encrypt_file(
    key: bytes,
    in_path: Path | str,
    out_path: Path | str,
    segment_size: int = SEGMENT_SIZE,
) -> None:
    """Encrypt in_path into out_path, one segment at a time.

    Memory use is bounded by segment_size regardless of the file size.

    Args:
        key: 32-byte encryption key.
        in_path: Plaintext file.
        out_path: Destination for the framed ciphertext.
        segment_size: Plaintext bytes per segment.

    Raises:
        ValueError: If segment_size is out of range.
        CryptoError: If the file has more segments than the nonce allows.
        OSError: If the input cannot be read or the output written.
    """
    if not 0 < segment_size <= MAX_SEGMENT_SIZE:
        raise ValueError(f"segment_size must be in 1..{MAX_SEGMENT_SIZE}")

    aesgcm = AESGCM(key)
    prefix = os.urandom(NONCE_PREFIX_SIZE)
    header = prefix + struct.pack(HEADER_FORMAT, segment_size)

    with open(in_path, "rb") as src, open(out_path, "wb") as dst:
        dst.write(header)
        block = src.read(segment_size)
        index = 0
        while True:
            following = src.read(segment_size)
            flag = _MIDDLE if following else _FINAL
            dst.write(aesgcm.encrypt(_segment_nonce(prefix, index), block, header + flag))
            if not following:
                return
            block = following
            index += 1


def _decrypt_segments(aesgcm: AESGCM, src: BinaryIO, dst: BinaryIO) -> None:
    header = src.read(HEADER_SIZE)
    if len(header) < HEADER_SIZE:
        raise CryptoError("Ciphertext too short")
    prefix = header[:NONCE_PREFIX_SIZE]
    (segment_size,) = struct.unpack(HEADER_FORMAT, header[NONCE_PREFIX_SIZE:])
    if not 0 < segment_size <= MAX_SEGMENT_SIZE:
        raise CryptoError(f"Invalid segment size in header: {segment_size}")

    block_size = segment_size + TAG_SIZE
    block = src.read(block_size)
    index = 0
    while True:
        following = src.read(block_size)
        flag = _MIDDLE if following else _FINAL
        if len(block) < TAG_SIZE:
            raise CryptoError("Ciphertext truncated")
        try:
            dst.write(aesgcm.decrypt(_segment_nonce(prefix, index), block, header + flag))
        except InvalidTag as e:
            raise CryptoError(
                f"Authentication failed at segment {index} (wrong key or tampered data)"
            ) from e
        if not following:
            return
        block = following
        index += 1


def decrypt_file(key: bytes, in_path: Path | str, out_path: Path | str) -> None:
    """Decrypt an artifact produced by encrypt_file() into out_path.

    Plaintext is streamed into a temporary sibling that replaces out_path
    only once every segment has authenticated.

    Raises:
        CryptoError: If the data is truncated, tampered, or the key is wrong.
        OSError: If the input cannot be read or the output written.
    """
    out_path = Path(out_path)
    aesgcm = AESGCM(key)
    with open(in_path, "rb") as src:
        fd, tmp_name = tempfile.mkstemp(
            dir=out_path.parent, prefix=f".{out_path.name}.", suffix=".part"
        )
        done = False
        try:
            with os.fdopen(fd, "wb") as dst:
                _decrypt_segments(aesgcm, src, dst)
            os.replace(tmp_name, out_path)
            done = True
        finally:
            if not done:
                Path(tmp_name).unlink(missing_ok=True)
