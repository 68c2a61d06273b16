"""Tests for identifier helpers."""

import pytest

from connection_broker.constants import EVENT_ID_PREFIX
from connection_broker.utils.connection_utils import (
    BASE58_ALPHABET,
    encode_base58,
    generate_event_id,
)


class TestEncodeBase58:
    """Test base58 encoding."""

    @pytest.mark.parametrize(
        "data,expected",
        [
            (b"", ""),
            (b"\x00", "1"),
            (b"\x00\x00\x01", "112"),
            (b"hello world", "StV1DL6CwTryKyV"),
        ],
    )
    def test_known_vectors(self, data, expected):
        """Encodes with the Bitcoin alphabet, keeping leading zero bytes."""
        assert encode_base58(data) == expected


class TestGenerateEventId:
    """Test event id generation."""

    def test_prefix_and_alphabet(self):
        """Event ids carry the evt_ prefix followed by base58 characters."""
        event_id = generate_event_id()

        assert event_id.startswith(EVENT_ID_PREFIX)
        body = event_id[len(EVENT_ID_PREFIX):]
        assert body
        assert all(ch in BASE58_ALPHABET for ch in body)

    def test_ids_are_unique(self):
        assert len({generate_event_id() for _ in range(200)}) == 200
