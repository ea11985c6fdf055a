"""
Wallet address format validation.

Wallet addresses are Solana public keys: Base58 text that decodes to
exactly 32 bytes. This is a format check only; proving ownership of the
key is the caller's concern.
"""

from __future__ import annotations

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_PUBLIC_KEY_LENGTH = 32


def validate_wallet_address(address: str) -> bool:
    """
    Validate a wallet address format.

    Args:
        address: The wallet address string to validate.

    Returns:
        True if the address format is valid.

    Raises:
        ValueError: If the address is not a Base58-encoded 32-byte public key.
    """
    if not address or not isinstance(address, str):
        msg = "Address must be a non-empty string"
        raise ValueError(msg)

    if not 32 <= len(address) <= 44:
        msg = "Invalid wallet address length"
        raise ValueError(msg)

    decoded = _base58_decode(address)
    if len(decoded) != _PUBLIC_KEY_LENGTH:
        msg = f"Wallet address must decode to {_PUBLIC_KEY_LENGTH} bytes, got {len(decoded)}"
        raise ValueError(msg)
    return True


def _base58_decode(s: str) -> bytes:
    """Decode a Base58 string to bytes."""
    n = 0
    for char in s:
        idx = _BASE58_ALPHABET.find(char)
        if idx == -1:
            msg = f"Invalid Base58 character: {char}"
            raise ValueError(msg)
        n = n * 58 + idx
    result = n.to_bytes((n.bit_length() + 7) // 8, "big") if n > 0 else b""
    # Preserve leading zeros
    pad_size = 0
    for char in s:
        if char == "1":
            pad_size += 1
        else:
            break
    return b"\x00" * pad_size + result
