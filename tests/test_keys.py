"""
tests/test_keys.py -- Unit tests for auth/keys.py.

Coverage:
  - generate_key(): requested length, uniqueness, rejects non-positive
    lengths, EntropyError when the OS source fails
  - encode_key(): URL-safe alphabet, no padding
  - decode_key(): inverse of encode_key, rejects non-canonical text
"""

from __future__ import annotations

import pytest

from auth.errors import EntropyError, MalformedKeyError
from auth.keys import decode_key, encode_key, generate_key


class TestGenerateKey:
    def test_returns_requested_length(self) -> None:
        assert len(generate_key(64)) == 64
        assert len(generate_key(16)) == 16

    def test_keys_are_unique(self) -> None:
        keys = {generate_key(32) for _ in range(100)}
        assert len(keys) == 100

    @pytest.mark.parametrize("length", [0, -1])
    def test_non_positive_length_rejected(self, length: int) -> None:
        with pytest.raises(ValueError):
            generate_key(length)

    def test_os_failure_raises_entropy_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """No weaker fallback: an unreadable random source fails the call."""

        def broken(n: int) -> bytes:
            raise OSError("getrandom failed")

        monkeypatch.setattr("auth.keys.secrets.token_bytes", broken)
        with pytest.raises(EntropyError) as exc_info:
            generate_key(64)
        assert exc_info.value.kind == "entropy_error"


class TestEncodeKey:
    def test_url_safe_without_padding(self) -> None:
        text = encode_key(b"\xfb\xff\xfe")
        assert text == "-__-"
        assert "=" not in encode_key(b"\x00")

    def test_64_byte_key_length(self) -> None:
        # 64 bytes -> 86 base64 characters once padding is stripped
        assert len(encode_key(generate_key(64))) == 86


class TestDecodeKey:
    @pytest.mark.parametrize("length", [1, 2, 3, 64])
    def test_inverts_encode(self, length: int) -> None:
        key = generate_key(length)
        assert decode_key(encode_key(key)) == key

    def test_empty_string_is_empty_key(self) -> None:
        assert decode_key("") == b""

    @pytest.mark.parametrize(
        "text",
        [
            "AA==",  # padding is never produced by encode_key
            "a+b/",  # standard alphabet, not URL-safe
            "abc d",  # whitespace
            "A",  # one dangling character cannot encode a byte
            "AB",  # non-zero unused bits; canonical form of b"\x00" is "AA"
            "ключ",  # non-ASCII
        ],
    )
    def test_non_canonical_rejected(self, text: str) -> None:
        with pytest.raises(MalformedKeyError) as exc_info:
            decode_key(text)
        assert exc_info.value.kind == "invalid"

    def test_non_string_rejected(self) -> None:
        with pytest.raises(MalformedKeyError):
            decode_key(b"AAAA")  # type: ignore[arg-type]

    def test_accepted_text_round_trips(self) -> None:
        text = encode_key(generate_key(64))
        assert encode_key(decode_key(text)) == text
