"""
Account-address utilities for FarmFlow.

Accounts are identified by XRPL-style addresses:

    address = base58check(version=0, hash160(public_key))

using the ``r``-first base58 alphabet, so every valid
address starts with ``r``.  ``ZERO_ADDRESS`` (twenty zero bytes) is the
placeholder that must never be used as a real account.

Key generation uses ``ecdsa`` (secp256k1); RIPEMD-160 comes from
``pycryptodome`` because OpenSSL 3 builds of ``hashlib`` may not ship it.
"""

from __future__ import annotations

import hashlib

from Crypto.Hash import RIPEMD160
from ecdsa import SECP256k1, SigningKey

ALPHABET = "rpshnaf39wBUDNEGHJKLM4PQRST7VWXYZ2bcdeCg65jkm8oFqi1tuvAxyz"
_INDEX = {ch: i for i, ch in enumerate(ALPHABET)}

ACCOUNT_VERSION = 0
ACCOUNT_ID_BYTES = 20


# ── hashing ─────────────────────────────────────────────────────────────

def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def sha256d(data: bytes) -> bytes:
    """Double SHA-256."""
    return sha256(sha256(data))


def ripemd160(data: bytes) -> bytes:
    return RIPEMD160.new(data).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD-160 of SHA-256 — the account-id digest."""
    return ripemd160(sha256(data))


# ── base58 ──────────────────────────────────────────────────────────────

def base58_encode(payload: bytes) -> str:
    num = int.from_bytes(payload, "big")
    chars: list[str] = []
    while num > 0:
        num, rem = divmod(num, 58)
        chars.append(ALPHABET[rem])
    # Leading zero bytes map to the first alphabet character
    pad = len(payload) - len(payload.lstrip(b"\x00"))
    return ALPHABET[0] * pad + "".join(reversed(chars))


def base58_decode(text: str) -> bytes:
    num = 0
    for ch in text:
        if ch not in _INDEX:
            raise ValueError(f"Invalid base58 character: {ch!r}")
        num = num * 58 + _INDEX[ch]
    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    pad = len(text) - len(text.lstrip(ALPHABET[0]))
    return b"\x00" * pad + body


def base58check_encode(version: int, payload: bytes) -> str:
    data = bytes([version]) + payload
    return base58_encode(data + sha256d(data)[:4])


def base58check_decode(text: str) -> bytes:
    """Decode and verify the checksum; returns the payload without version."""
    raw = base58_decode(text)
    if len(raw) < 5:
        raise ValueError("base58check string too short")
    data, checksum = raw[:-4], raw[-4:]
    if sha256d(data)[:4] != checksum:
        raise ValueError("base58check checksum mismatch")
    return data[1:]


# ── keys and addresses ──────────────────────────────────────────────────

def generate_keypair() -> tuple[bytes, bytes]:
    """Return ``(private_key, public_key)``; the public key is uncompressed (65 bytes)."""
    sk = SigningKey.generate(curve=SECP256k1)
    pub = b"\x04" + sk.get_verifying_key().to_string()
    return sk.to_string(), pub


def derive_address(public_key: bytes) -> str:
    return base58check_encode(ACCOUNT_VERSION, hash160(public_key))


def address_from_label(label: str) -> str:
    """Deterministic address for a system account (custody, treasury, ...)."""
    return base58check_encode(ACCOUNT_VERSION, hash160(label.encode("utf-8")))


ZERO_ADDRESS: str = base58check_encode(ACCOUNT_VERSION, b"\x00" * ACCOUNT_ID_BYTES)


def is_valid_address(address: object) -> bool:
    """True for a well-formed, checksummed, non-zero account address."""
    if not isinstance(address, str) or not address.startswith(ALPHABET[0]):
        return False
    if address == ZERO_ADDRESS:
        return False
    try:
        payload = base58check_decode(address)
    except ValueError:
        return False
    return len(payload) == ACCOUNT_ID_BYTES
