"""Tests for webhooks/signature.py."""

from __future__ import annotations

import pytest

from hubcore.webhooks.signature import compute_signature, verify_signature

SECRET = "It's a Secret to Everybody"
PAYLOAD = "Hello, World!"


class TestComputeSignature:
    def test_known_vector(self) -> None:
        # Example from GitHub's webhook validation documentation
        assert compute_signature(PAYLOAD, SECRET) == (
            "sha256=757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17"
        )

    def test_str_and_bytes_agree(self) -> None:
        assert compute_signature(PAYLOAD, SECRET) == compute_signature(
            PAYLOAD.encode(), SECRET.encode()
        )

    def test_sha1_prefix(self) -> None:
        assert compute_signature(PAYLOAD, SECRET, "sha1").startswith("sha1=")


class TestVerifySignature:
    def test_valid(self) -> None:
        assert verify_signature(PAYLOAD, compute_signature(PAYLOAD, SECRET), SECRET) is True

    def test_uppercase_hex_accepted(self) -> None:
        algorithm, _, digest = compute_signature(PAYLOAD, SECRET).partition("=")
        assert verify_signature(PAYLOAD, f"{algorithm}={digest.upper()}", SECRET) is True

    def test_single_byte_mutation_fails(self) -> None:
        signature = compute_signature(PAYLOAD, SECRET)
        assert verify_signature("Hello, World?", signature, SECRET) is False

    def test_wrong_secret_fails(self) -> None:
        signature = compute_signature(PAYLOAD, SECRET)
        assert verify_signature(PAYLOAD, signature, "another-secret") is False

    def test_sha1_respects_flag(self) -> None:
        signature = compute_signature(PAYLOAD, SECRET, "sha1")
        assert verify_signature(PAYLOAD, signature, SECRET, allow_sha1=True) is True
        assert verify_signature(PAYLOAD, signature, SECRET, allow_sha1=False) is False

    @pytest.mark.parametrize(
        "signature",
        [
            None,
            "",
            "sha256",
            "sha256=",
            "md5=abcdef",
            "sha256=not-hex-at-all",
            "757107ea0eb2509fc211221cce984b8a37570b6d7586c22c46f4379c8b043e17",
        ],
    )
    def test_malformed_rejected(self, signature) -> None:
        assert verify_signature(PAYLOAD, signature, SECRET) is False

    def test_empty_secret_rejected(self) -> None:
        assert verify_signature(PAYLOAD, compute_signature(PAYLOAD, "x"), "") is False
