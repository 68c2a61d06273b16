"""Identifier helpers for connections and emitted events."""

import secrets

from ..constants import EVENT_ID_PREFIX

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def encode_base58(data: bytes) -> str:
    """Encode bytes using the Bitcoin base58 alphabet."""
    if not data:
        return ""

    num = int.from_bytes(data, "big")
    encoded = ""
    while num > 0:
        num, remainder = divmod(num, 58)
        encoded = BASE58_ALPHABET[remainder] + encoded

    # Leading zero bytes are encoded as the first alphabet character
    padding = len(data) - len(data.lstrip(b"\x00"))
    return BASE58_ALPHABET[0] * padding + encoded


def generate_event_id() -> str:
    return f"{EVENT_ID_PREFIX}{encode_base58(secrets.token_bytes(10))}"
